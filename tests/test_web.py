##########################################################################################
#
# Script name: test_web.py
#
# Description: HTTP surface status codes for triggers, ad-hoc URL generation and moderation.
#
##########################################################################################

import pytest

from conftest import FakeClient, make_env
from news_desk import pipeline
from news_desk.errors import ConfigurationError, FetchError, FetchTimeout
from news_desk.models import GeneratedArticle, PageContent, Provenance, RunSummary, SourceOutcome
from news_desk.web import create_app


AUTH = {'Authorization': 'Bearer s3cret'}


def _page(url, timeout=20.0):
    return PageContent(url=url, title='Source page', description='desc', content='content')


@pytest.fixture
def run_calls():
    return []


@pytest.fixture
def app(store, run_calls):
    def fake_run(env, store, client):
        run_calls.append(env)
        return RunSummary(
            articles_generated=1,
            results=[SourceOutcome(source='Feed', kind='feed', outcome='success', title='T', draft_id=1)],
        )

    application = create_app(env=make_env(), store=store, client=FakeClient(), run_fn=fake_run)
    application.config['TESTING'] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


def test_scheduled_trigger_returns_summary(client, run_calls) -> None:
    response = client.post('/api/generate-articles')
    assert response.status_code == 200
    body = response.get_json()
    assert body['success'] is True
    assert body['articles_generated'] == 1
    assert body['results'][0]['outcome'] == 'success'
    assert len(run_calls) == 1


def test_scheduled_trigger_reports_configuration_error(store) -> None:
    def misconfigured(env, store, client):
        raise ConfigurationError('OPENAI_API_KEY is missing')

    application = create_app(env=make_env(), store=store, run_fn=misconfigured)
    response = application.test_client().get('/api/generate-articles')
    assert response.status_code == 500
    assert 'OPENAI_API_KEY' in response.get_json()['error']


def test_manual_trigger_checks_secret_and_verb(client, run_calls) -> None:
    assert client.get('/api/trigger-generation', headers=AUTH).status_code == 405
    assert client.post('/api/trigger-generation').status_code == 401
    assert client.post('/api/trigger-generation', headers={'Authorization': 'Bearer wrong'}).status_code == 401
    assert run_calls == []
    assert client.post('/api/trigger-generation', headers=AUTH).status_code == 200
    assert len(run_calls) == 1


def test_generate_from_url_requires_auth(client) -> None:
    response = client.post('/api/generate-from-url', json={'url': 'https://example.com/post'})
    assert response.status_code == 401
    assert client.get('/api/generate-from-url', headers=AUTH).status_code == 405
    assert client.options('/api/generate-from-url').status_code == 204


def test_generate_from_url_requires_url(client) -> None:
    response = client.post('/api/generate-from-url', json={}, headers=AUTH)
    assert response.status_code == 400
    assert response.get_json()['error'] == 'URL is required'


def test_generate_from_url_success(client, store, monkeypatch) -> None:
    monkeypatch.setattr(pipeline, 'fetch_page', _page)
    response = client.post(
        '/api/generate-from-url', json={'url': 'https://example.com/post', 'category': 'Tools'}, headers=AUTH
    )
    assert response.status_code == 200
    article = response.get_json()['article']
    assert article['status'] == 'pending'
    assert article['title'] == 'Why Agents Need Guardrails'
    assert store.get_draft(article['id']).source_url == 'https://example.com/post'


def test_generate_from_url_accepts_editor_session(client, monkeypatch) -> None:
    monkeypatch.setattr(pipeline, 'fetch_page', _page)
    with client.session_transaction() as session:
        session['editor'] = 'editor@example.com'
    response = client.post('/api/generate-from-url', json={'url': 'https://example.com/post'})
    assert response.status_code == 200


def test_generate_from_url_blocked_site_is_bad_request(client, store, monkeypatch) -> None:
    def blocked(url, timeout=20.0):
        raise FetchError('Site returned HTTP 403 - the site may be blocking automated requests', 403, blocked=True)

    monkeypatch.setattr(pipeline, 'fetch_page', blocked)
    response = client.post('/api/generate-from-url', json={'url': 'https://example.com/post'}, headers=AUTH)
    assert response.status_code == 400
    body = response.get_json()
    assert body['blocked'] is True
    assert 'blocking automated requests' in body['error']
    assert store.list_ledger()[0].source_ref == 'https://example.com/post'


def test_generate_from_url_timeout_is_retryable(client, monkeypatch) -> None:
    def slow(url, timeout=20.0):
        raise FetchTimeout('Timed out fetching https://example.com/post after 5s')

    monkeypatch.setattr(pipeline, 'fetch_page', slow)
    response = client.post('/api/generate-from-url', json={'url': 'https://example.com/post'}, headers=AUTH)
    assert response.status_code == 504
    assert response.get_json()['retryable'] is True


def test_generate_from_url_generation_failure(store, monkeypatch) -> None:
    monkeypatch.setattr(pipeline, 'fetch_page', _page)
    application = create_app(env=make_env(), store=store, client=FakeClient('no json at all'))
    response = application.test_client().post(
        '/api/generate-from-url', json={'url': 'https://example.com/post'}, headers=AUTH
    )
    assert response.status_code == 500
    assert 'Failed to generate article' in response.get_json()['error']
    assert store.list_drafts() == []
    assert store.list_ledger()[0].outcome == 'failed'


def test_generate_from_url_missing_api_key(store) -> None:
    application = create_app(env=make_env(openai_api_key=None), store=store)
    response = application.test_client().post(
        '/api/generate-from-url', json={'url': 'https://example.com/post'}, headers=AUTH
    )
    assert response.status_code == 500


def _pending_draft(store) -> int:
    article = GeneratedArticle(title='T', slug='t', excerpt='', content='body', category='AI')
    return store.insert_draft(article, Provenance(kind='topic', ref='1'))


def test_moderation_endpoints(client, store) -> None:
    draft_id = _pending_draft(store)
    assert client.post(f'/api/queue/{draft_id}/approve').status_code == 401

    response = client.post(f'/api/queue/{draft_id}/approve', headers=AUTH)
    assert response.status_code == 200
    article_id = response.get_json()['article_id']

    conflict = client.post(f'/api/queue/{draft_id}/reject', json={'note': 'late'}, headers=AUTH)
    assert conflict.status_code == 409
    assert 'not pending' in conflict.get_json()['error']

    response = client.post(f'/api/articles/{article_id}/unpublish', headers=AUTH)
    assert response.status_code == 200
    restored = response.get_json()['draft_id']
    assert store.get_draft(restored).status == 'pending'

    assert client.post('/api/queue/999/approve', headers=AUTH).status_code == 404

    queue = client.get('/api/queue?status=pending', headers=AUTH).get_json()['drafts']
    assert [draft['id'] for draft in queue] == [restored]
    assert client.get('/api/queue?status=bogus', headers=AUTH).status_code == 400


def test_generation_log_endpoint(client, store) -> None:
    store.insert_ledger_entry(source_id=None, source_kind='url', outcome='failed', error_message='boom')
    response = client.get('/api/generation-log?limit=5', headers=AUTH)
    assert response.status_code == 200
    assert response.get_json()['entries'][0]['error_message'] == 'boom'


ORIGIN = {'Origin': 'https://editor.example.com'}


def test_generate_from_url_cors_headers_on_errors(client) -> None:
    unauthorized = client.post('/api/generate-from-url', json={'url': 'https://example.com/post'}, headers=ORIGIN)
    assert unauthorized.status_code == 401
    assert unauthorized.headers['Access-Control-Allow-Origin'] in ('*', ORIGIN['Origin'])

    wrong_verb = client.get('/api/generate-from-url', headers=ORIGIN)
    assert wrong_verb.status_code == 405
    assert wrong_verb.headers['Access-Control-Allow-Origin'] in ('*', ORIGIN['Origin'])


def test_generate_from_url_preflight(client) -> None:
    response = client.options(
        '/api/generate-from-url',
        headers={**ORIGIN, 'Access-Control-Request-Method': 'POST', 'Access-Control-Request-Headers': 'Authorization'},
    )
    assert response.status_code == 204
    assert response.headers['Access-Control-Allow-Origin'] in ('*', ORIGIN['Origin'])
    assert 'POST' in response.headers['Access-Control-Allow-Methods']


def test_moderation_routes_do_not_send_cors_headers(client) -> None:
    response = client.get('/api/queue', headers={**AUTH, **ORIGIN})
    assert response.status_code == 200
    assert 'Access-Control-Allow-Origin' not in response.headers


def test_login_opens_editor_session(client, monkeypatch) -> None:
    monkeypatch.setattr(pipeline, 'fetch_page', _page)
    assert client.post('/api/login', json={'secret': 'wrong'}).status_code == 401
    assert client.post('/api/login', json={}).status_code == 401
    assert client.post('/api/generate-from-url', json={'url': 'https://example.com/post'}).status_code == 401

    response = client.post('/api/login', json={'secret': 's3cret', 'editor': 'ana@example.com'})
    assert response.status_code == 200
    assert response.get_json()['editor'] == 'ana@example.com'
    with client.session_transaction() as session:
        assert session['editor'] == 'ana@example.com'
    assert client.post('/api/generate-from-url', json={'url': 'https://example.com/post'}).status_code == 200

    assert client.post('/api/logout').status_code == 200
    assert client.post('/api/generate-from-url', json={'url': 'https://example.com/post'}).status_code == 401


def test_login_without_admin_secret_configured_is_refused(store) -> None:
    application = create_app(env=make_env(admin_secret=None), store=store)
    response = application.test_client().post('/api/login', json={'secret': ''})
    assert response.status_code == 401


def test_scheduled_trigger_requires_cron_secret_when_configured(store, run_calls) -> None:
    def fake_run(env, store, client):
        run_calls.append(env)
        return RunSummary(articles_generated=0, results=[])

    application = create_app(env=make_env(cron_secret='cron'), store=store, run_fn=fake_run)
    test_client = application.test_client()
    assert test_client.get('/api/generate-articles').status_code == 401
    assert test_client.get('/api/generate-articles', headers={'Authorization': 'Bearer nope'}).status_code == 401
    assert run_calls == []
    assert test_client.get('/api/generate-articles', headers={'Authorization': 'Bearer cron'}).status_code == 200
    assert test_client.post('/api/generate-articles', headers=AUTH).status_code == 200
    assert len(run_calls) == 2


def test_edit_and_delete_draft_endpoints(client, store) -> None:
    draft_id = _pending_draft(store)
    assert client.patch(f'/api/queue/{draft_id}', json={'title': 'New'}).status_code == 401

    response = client.patch(
        f'/api/queue/{draft_id}', json={'title': 'New title', 'seo_keywords': 'a, b'}, headers=AUTH
    )
    assert response.status_code == 200
    assert response.get_json()['draft']['title'] == 'New title'
    assert store.get_draft(draft_id).seo_keywords == ['a', 'b']

    assert client.patch(f'/api/queue/{draft_id}', json={'status': 'approved'}, headers=AUTH).status_code == 400
    assert client.patch('/api/queue/999', json={'title': 'x'}, headers=AUTH).status_code == 404

    assert client.delete(f'/api/queue/{draft_id}', headers=AUTH).status_code == 200
    assert store.get_draft(draft_id) is None
    assert client.delete(f'/api/queue/{draft_id}', headers=AUTH).status_code == 404


def test_edit_of_approved_draft_conflicts(client, store) -> None:
    draft_id = _pending_draft(store)
    client.post(f'/api/queue/{draft_id}/approve', headers=AUTH)
    response = client.patch(f'/api/queue/{draft_id}', json={'title': 'Late'}, headers=AUTH)
    assert response.status_code == 409


def test_manual_article_endpoint(client, store) -> None:
    assert client.post('/api/articles', json={'title': 'T', 'content': 'x'}).status_code == 401
    assert client.post('/api/articles', json={'title': 'Only a title'}, headers=AUTH).status_code == 400

    response = client.post(
        '/api/articles',
        json={'title': 'Editor Notes', 'content': 'Body', 'category': 'Opinion', 'seo_keywords': ['notes']},
        headers=AUTH,
    )
    assert response.status_code == 201
    published = store.get_published(response.get_json()['article_id'])
    assert published.slug == 'editor-notes'
    assert published.category == 'Opinion'
    assert published.source_kind == 'manual'
    assert published.seo_keywords == ['notes']


def test_source_endpoints(client, store) -> None:
    response = client.post(
        '/api/sources',
        json={'name': 'Lab blog', 'type': 'rss', 'url': 'https://lab.example.com/rss'},
        headers=AUTH,
    )
    assert response.status_code == 201
    source = response.get_json()['source']
    assert source['kind'] == 'feed'

    assert client.post('/api/sources', json={'name': 'Broken', 'kind': 'feed'}, headers=AUTH).status_code == 400
    assert client.post(f'/api/sources/{source["id"]}/toggle').status_code == 401

    toggled = client.post(f'/api/sources/{source["id"]}/toggle', headers=AUTH)
    assert toggled.status_code == 200
    assert toggled.get_json()['source']['active'] is False
    assert store.list_sources(active_only=True) == []

    listed = client.get('/api/sources', headers=AUTH).get_json()['sources']
    assert [item['name'] for item in listed] == ['Lab blog']

    assert client.delete(f'/api/sources/{source["id"]}', headers=AUTH).status_code == 200
    assert store.get_source(source['id']) is None
    assert client.post(f'/api/sources/{source["id"]}/toggle', headers=AUTH).status_code == 404


def test_settings_endpoints(client, store) -> None:
    assert client.put('/api/settings/max_articles_per_day', json={'value': 5}).status_code == 401

    settings = client.get('/api/settings', headers=AUTH).get_json()['settings']
    assert settings['max_articles_per_day'] == 3

    response = client.put('/api/settings/max_articles_per_day', json={'value': 5}, headers=AUTH)
    assert response.status_code == 200
    assert response.get_json()['settings']['max_articles_per_day'] == 5
    assert store.get_settings()['max_articles_per_day'] == 5

    assert client.put('/api/settings/max_articles_per_day', json={'value': 'lots'}, headers=AUTH).status_code == 400
    assert client.put('/api/settings/favourite_colour', json={'value': 'red'}, headers=AUTH).status_code == 400
    assert client.put('/api/settings/tone_of_voice', json={}, headers=AUTH).status_code == 400
