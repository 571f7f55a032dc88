##########################################################################################
#
# Script name: web.py
#
# Description: Flask endpoints for scheduled/manual generation, ad-hoc URL generation and moderation.
#
##########################################################################################


import hmac
import logging
import secrets
from functools import wraps

from flask import Flask, current_app, jsonify, request, session
from flask_cors import CORS

from .catalog import add_source, effective_settings, list_sources, remove_source, toggle_source, update_setting
from .config import DEFAULT_CATEGORY, EnvConfig, build_settings, load_env_config
from .errors import (
    ConfigurationError,
    DomainError,
    FetchError,
    GenerationError,
    NotFoundError,
    PersistenceError,
)
from .ledger import recent_entries
from .models import DRAFT_STATUSES, GeneratedArticle
from .moderation import (
    approve_draft,
    create_manual_article,
    delete_draft,
    list_drafts,
    reject_draft,
    unpublish_article,
    update_draft,
)
from .pipeline import build_generator, generate_from_url, run_scheduled
from .store import SQLiteStore
from .utils import as_keyword_list


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

AD_HOC_CORS = {
    r'/api/generate-from-url': {
        'origins': '*',
        'methods': ['POST', 'OPTIONS'],
        'allow_headers': ['Content-Type', 'Authorization'],
    },
}


# ****************************************************************************************
# Functions
# ****************************************************************************************


def _env() -> EnvConfig:
    return current_app.config['NEWS_DESK_ENV']


def _store() -> SQLiteStore:
    store = current_app.config.get('NEWS_DESK_STORE')
    if store is None:
        store = SQLiteStore(_env().database_path)
        current_app.config['NEWS_DESK_STORE'] = store
    return store


def _bearer_token() -> str:
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):].strip()
    return ''


def _matches(expected: str | None, presented: str) -> bool:
    return bool(expected and presented and hmac.compare_digest(presented, expected))


def _has_admin_secret() -> bool:
    return _matches(_env().admin_secret, _bearer_token())


def require_secret(f):
    """Decorator requiring the shared admin secret as a Bearer token."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _has_admin_secret():
            return jsonify({'error': 'Unauthorized'}), 401
        return f(*args, **kwargs)
    return decorated_function


def require_scheduler(f):
    """Decorator for the scheduled trigger: open unless CRON_SECRET is configured."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        cron_secret = _env().cron_secret
        if cron_secret and not (_matches(cron_secret, _bearer_token()) or _has_admin_secret()):
            log.warning('Rejected scheduled trigger without scheduler secret')
            return jsonify({'error': 'Unauthorized'}), 401
        return f(*args, **kwargs)
    return decorated_function


def require_editor(f):
    """Decorator accepting either an editor session or the shared admin secret."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get('editor') and not _has_admin_secret():
            log.info('Auth failed for %s', request.path)
            return jsonify({'error': 'Unauthorized - please log in to admin'}), 401
        return f(*args, **kwargs)
    return decorated_function


def _run_generation():
    try:
        summary = current_app.config['NEWS_DESK_RUN'](
            env=_env(),
            store=_store(),
            client=current_app.config.get('NEWS_DESK_CLIENT'),
        )
    except ConfigurationError as exc:
        log.error('Missing configuration: %s', exc)
        return jsonify({'error': f'Missing configuration: {exc}'}), 500
    except Exception as exc:  # noqa: BLE001
        log.exception('Generation run failed')
        return jsonify({'error': str(exc)}), 500
    return jsonify(summary.to_dict()), 200


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def create_app(env: EnvConfig | None = None, store: SQLiteStore | None = None, client=None, run_fn=None) -> Flask:
    env = env or load_env_config()
    app = Flask(__name__)
    app.config['SECRET_KEY'] = env.flask_secret_key or secrets.token_hex(32)
    app.config['NEWS_DESK_ENV'] = env
    app.config['NEWS_DESK_STORE'] = store
    app.config['NEWS_DESK_CLIENT'] = client
    app.config['NEWS_DESK_RUN'] = run_fn or run_scheduled
    CORS(app, resources=AD_HOC_CORS)

    @app.errorhandler(405)
    def method_not_allowed(_error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(DomainError)
    def domain_error(error):
        status = 404 if isinstance(error, NotFoundError) else 409
        return jsonify({'error': str(error)}), status

    @app.errorhandler(PersistenceError)
    def persistence_error(error):
        log.error('Row store failure: %s', error)
        return jsonify({'error': str(error)}), 500

    @app.errorhandler(ValueError)
    def invalid_value(error):
        return jsonify({'error': str(error)}), 400

    @app.route('/api/health')
    def health():
        return jsonify({'status': 'ok'})

    # Triggers

    @app.route('/api/generate-articles', methods=['GET', 'POST'])
    @require_scheduler
    def generate_articles():
        log.info('Scheduled generation triggered')
        return _run_generation()

    @app.route('/api/trigger-generation', methods=['POST'])
    @require_secret
    def trigger_generation():
        log.info('Manual generation triggered')
        return _run_generation()

    @app.route('/api/generate-from-url', methods=['POST', 'OPTIONS'])
    def generate_from_url_view():
        if request.method == 'OPTIONS':
            return '', 204
        return _generate_from_url()

    # Editor session

    @app.route('/api/login', methods=['POST'])
    def login():
        data = _json_body()
        if not _matches(_env().admin_secret, str(data.get('secret') or '')):
            log.info('Editor login failed')
            return jsonify({'error': 'Invalid credentials'}), 401
        session.clear()
        session['editor'] = str(data.get('editor') or 'editor')
        log.info('Editor %s logged in', session['editor'])
        return jsonify({'success': True, 'editor': session['editor']})

    @app.route('/api/logout', methods=['POST'])
    def logout():
        session.clear()
        return jsonify({'success': True})

    # Moderation queue

    @app.route('/api/queue')
    @require_secret
    def queue():
        status = request.args.get('status') or None
        if status and status not in DRAFT_STATUSES:
            return jsonify({'error': f'unknown status {status!r}'}), 400
        drafts = list_drafts(_store(), status=status)
        return jsonify({'drafts': [draft.__dict__ for draft in drafts]})

    @app.route('/api/queue/<int:draft_id>', methods=['PATCH'])
    @require_secret
    def edit_draft(draft_id: int):
        draft = update_draft(_store(), draft_id, **_json_body())
        return jsonify({'success': True, 'draft': draft.__dict__})

    @app.route('/api/queue/<int:draft_id>', methods=['DELETE'])
    @require_secret
    def remove_draft(draft_id: int):
        delete_draft(_store(), draft_id)
        return jsonify({'success': True})

    @app.route('/api/queue/<int:draft_id>/approve', methods=['POST'])
    @require_secret
    def approve(draft_id: int):
        article_id = approve_draft(_store(), draft_id)
        return jsonify({'success': True, 'article_id': article_id})

    @app.route('/api/queue/<int:draft_id>/reject', methods=['POST'])
    @require_secret
    def reject(draft_id: int):
        data = _json_body()
        reject_draft(_store(), draft_id, note=data.get('note'))
        return jsonify({'success': True})

    # Published articles

    @app.route('/api/articles', methods=['POST'])
    @require_secret
    def publish_manual():
        data = _json_body()
        title = str(data.get('title') or '').strip()
        content = str(data.get('content') or '').strip()
        if not title or not content:
            return jsonify({'error': 'title and content are required'}), 400
        article = GeneratedArticle(
            title=title,
            slug=str(data.get('slug') or ''),
            excerpt=str(data.get('excerpt') or ''),
            content=content,
            category=str(data.get('category') or DEFAULT_CATEGORY),
            seo_title=str(data.get('seo_title') or ''),
            seo_description=str(data.get('seo_description') or ''),
            seo_keywords=as_keyword_list(data.get('seo_keywords')),
        )
        article_id = create_manual_article(_store(), article)
        return jsonify({'success': True, 'article_id': article_id}), 201

    @app.route('/api/articles/<int:article_id>/unpublish', methods=['POST'])
    @require_secret
    def unpublish(article_id: int):
        draft_id = unpublish_article(_store(), article_id)
        return jsonify({'success': True, 'draft_id': draft_id})

    # Sources and settings

    @app.route('/api/sources', methods=['GET'])
    @require_secret
    def sources():
        active_only = request.args.get('active') == '1'
        return jsonify({'sources': [source.__dict__ for source in list_sources(_store(), active_only)]})

    @app.route('/api/sources', methods=['POST'])
    @require_secret
    def create_source():
        source = add_source(_store(), _json_body())
        return jsonify({'success': True, 'source': source.__dict__}), 201

    @app.route('/api/sources/<int:source_id>/toggle', methods=['POST'])
    @require_secret
    def toggle(source_id: int):
        source = toggle_source(_store(), source_id)
        return jsonify({'success': True, 'source': source.__dict__})

    @app.route('/api/sources/<int:source_id>', methods=['DELETE'])
    @require_secret
    def delete_source(source_id: int):
        remove_source(_store(), source_id)
        return jsonify({'success': True})

    @app.route('/api/settings', methods=['GET'])
    @require_secret
    def settings():
        return jsonify({'settings': effective_settings(_store())})

    @app.route('/api/settings/<key>', methods=['PUT'])
    @require_secret
    def put_setting(key: str):
        data = _json_body()
        if 'value' not in data:
            return jsonify({'error': 'value is required'}), 400
        return jsonify({'success': True, 'settings': update_setting(_store(), key, data['value'])})

    @app.route('/api/generation-log')
    @require_secret
    def generation_log():
        try:
            limit = int(request.args.get('limit') or 50)
        except ValueError:
            return jsonify({'error': 'limit must be an integer'}), 400
        entries = recent_entries(_store(), limit=max(1, min(limit, 500)))
        return jsonify({'entries': [entry.__dict__ for entry in entries]})

    return app


@require_editor
def _generate_from_url():
    env = _env()
    data = _json_body()
    url = str(data.get('url') or '').strip()
    category = str(data.get('category') or DEFAULT_CATEGORY).strip() or DEFAULT_CATEGORY
    if not url:
        return jsonify({'error': 'URL is required'}), 400
    try:
        env.require_generation()
    except ConfigurationError as exc:
        return jsonify({'error': f'Missing configuration - {exc}'}), 500

    store = _store()
    settings = build_settings(store.get_settings())
    generator = build_generator(env, settings, client=current_app.config.get('NEWS_DESK_CLIENT'))
    try:
        draft = generate_from_url(
            store,
            generator,
            url,
            category,
            fetch_timeout=env.url_fetch_timeout,
            cost_per_1k_tokens=env.cost_per_1k_tokens,
        )
    except FetchError as exc:
        if exc.retryable:
            return jsonify({'error': str(exc), 'retryable': True}), 504
        message = f'Could not fetch content from URL: {exc}'
        return jsonify({'error': message, 'blocked': exc.blocked}), 400
    except GenerationError as exc:
        if exc.retryable:
            return jsonify({'error': str(exc), 'retryable': True}), 504
        log.error('Error generating article from %s: %s', url, exc)
        return jsonify({'error': f'Failed to generate article: {exc}'}), 500
    except PersistenceError as exc:
        log.error('Could not queue article from %s: %s', url, exc)
        return jsonify({'error': str(exc)}), 500

    return jsonify({
        'success': True,
        'message': 'Article generated and added to queue',
        'article': {
            'id': draft.id,
            'title': draft.title,
            'category': draft.category,
            'status': draft.status,
        },
    }), 200
