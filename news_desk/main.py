##########################################################################################
#
# Script name: main.py
#
# Description: CLI entrypoint for running generation, serving the API and moderating drafts.
#
##########################################################################################

import argparse
import json
import logging
import os
import sys
from dataclasses import replace
from datetime import date

from .catalog import effective_settings, list_sources, remove_source, toggle_source, update_setting
from .config import DEFAULT_CATEGORY, build_settings, load_env_config, load_source_config
from .errors import ConfigurationError, NewsDeskError
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
from .web import create_app


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(os.path.basename(sys.argv[0]))
log.setLevel(logging.DEBUG)
log.propagate = False
formatter = logging.Formatter(
    '%(asctime)-15s [%(funcName)25s:%(lineno)-5s] %(levelname)-8s %(message)s'
)
root_log = logging.getLogger()


# ****************************************************************************************
# Functions
# ****************************************************************************************


def _writes_to_stdout(handler: logging.Handler) -> bool:
    return not isinstance(handler, logging.FileHandler) and getattr(handler, 'stream', None) is sys.stdout


def cmd_run(args: argparse.Namespace, store: SQLiteStore) -> int:
    summary = run_scheduled(env=args.env, store=store)
    print(json.dumps(summary.to_dict(), indent=2))
    return 0


def cmd_serve(args: argparse.Namespace, store: SQLiteStore) -> int:
    app = create_app(env=args.env, store=store)
    app.run(host=args.host, port=args.port)
    return 0


def cmd_from_url(args: argparse.Namespace, store: SQLiteStore) -> int:
    env = args.env
    env.require_generation()
    generator = build_generator(env, build_settings(store.get_settings()))
    draft = generate_from_url(
        store,
        generator,
        args.url,
        args.category,
        fetch_timeout=env.url_fetch_timeout,
        cost_per_1k_tokens=env.cost_per_1k_tokens,
    )
    log.info('Queued draft %s: %s', draft.id, draft.title)
    return 0


def cmd_load_sources(args: argparse.Namespace, store: SQLiteStore) -> int:
    existing = {(source.kind, source.name) for source in store.list_sources()}
    added = 0
    for source in load_source_config(args.path):
        if (source.kind, source.name) in existing:
            log.debug('Source already present, skipping: %s', source.name)
            continue
        store.add_source(source)
        added += 1
    log.info('Added %d new source(s).', added)
    return 0


def cmd_queue(args: argparse.Namespace, store: SQLiteStore) -> int:
    for draft in list_drafts(store, status=args.status):
        print(f'{draft.id:>5}  {draft.status:<9} {draft.source_kind:<6} {draft.slug}  {draft.title}')
    return 0


def cmd_approve(args: argparse.Namespace, store: SQLiteStore) -> int:
    article_id = approve_draft(store, args.draft_id)
    print(f'Published article {article_id}')
    return 0


def cmd_reject(args: argparse.Namespace, store: SQLiteStore) -> int:
    reject_draft(store, args.draft_id, note=args.note)
    return 0


def cmd_unpublish(args: argparse.Namespace, store: SQLiteStore) -> int:
    draft_id = unpublish_article(store, args.article_id)
    print(f'Moved back to queue as draft {draft_id}')
    return 0


def cmd_ledger(args: argparse.Namespace, store: SQLiteStore) -> int:
    for entry in recent_entries(store, limit=args.limit):
        print(
            f'{entry.generated_at}  {entry.outcome:<8} {entry.source_kind:<6} '
            f'source={entry.source_id} draft={entry.draft_id} {entry.error_message or ""}'
        )
    return 0


def _read_text(path: str) -> str:
    with open(path, 'r', encoding='utf-8') as handle:
        return handle.read()


def cmd_edit(args: argparse.Namespace, store: SQLiteStore) -> int:
    fields = {
        key: value
        for key, value in (
            ('title', args.title),
            ('slug', args.slug),
            ('excerpt', args.excerpt),
            ('category', args.category),
            ('seo_keywords', args.seo_keywords),
        )
        if value is not None
    }
    if args.content_file:
        fields['content'] = _read_text(args.content_file)
    draft = update_draft(store, args.draft_id, **fields)
    print(f'Updated draft {draft.id}: {draft.title}')
    return 0


def cmd_delete_draft(args: argparse.Namespace, store: SQLiteStore) -> int:
    delete_draft(store, args.draft_id)
    print(f'Deleted draft {args.draft_id}')
    return 0


def cmd_publish(args: argparse.Namespace, store: SQLiteStore) -> int:
    article = GeneratedArticle(
        title=args.title,
        slug=args.slug or '',
        excerpt=args.excerpt or '',
        content=_read_text(args.content_file),
        category=args.category,
        seo_keywords=as_keyword_list(args.seo_keywords),
    )
    article_id = create_manual_article(store, article)
    print(f'Published article {article_id}')
    return 0


def cmd_sources(args: argparse.Namespace, store: SQLiteStore) -> int:
    for source in list_sources(store, active_only=args.active):
        state = 'active' if source.active else 'inactive'
        detail = source.url or source.schedule_day or source.topic_prompt or ''
        print(f'{source.id:>5}  {source.kind:<6} {state:<9} {source.name}  {detail}')
    return 0


def cmd_toggle_source(args: argparse.Namespace, store: SQLiteStore) -> int:
    source = toggle_source(store, args.source_id)
    print(f'Source {source.id} is now {"active" if source.active else "inactive"}')
    return 0


def cmd_remove_source(args: argparse.Namespace, store: SQLiteStore) -> int:
    remove_source(store, args.source_id)
    print(f'Removed source {args.source_id}')
    return 0


def cmd_settings(args: argparse.Namespace, store: SQLiteStore) -> int:
    print(json.dumps(effective_settings(store), indent=2))
    return 0


def cmd_set_setting(args: argparse.Namespace, store: SQLiteStore) -> int:
    try:
        value = json.loads(args.value)
    except ValueError:
        value = args.value
    print(json.dumps(update_setting(store, args.key, value), indent=2))
    return 0


# ****************************************************************************************
# Handle the arguments
# ****************************************************************************************


def handle_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Generate, queue and publish news articles.')
    parser.add_argument('--db', default=None, help='Path to the SQLite database (overrides NEWS_DESK_DB).')
    parser.add_argument('--log-file', default='news_desk.log', help='Debug log file.')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose output to stdout.')
    parser.add_argument('-q', '--quiet', action='store_true', help='Minimal stdout.')
    commands = parser.add_subparsers(dest='command', required=True)

    run = commands.add_parser('run', help='Run one scheduled generation pass.')
    run.set_defaults(handler=cmd_run)

    serve = commands.add_parser('serve', help='Serve the HTTP API.')
    serve.add_argument('--host', default='127.0.0.1')
    serve.add_argument('--port', type=int, default=8000)
    serve.set_defaults(handler=cmd_serve)

    from_url = commands.add_parser('from-url', help='Generate a draft from a single URL.')
    from_url.add_argument('url')
    from_url.add_argument('--category', default=DEFAULT_CATEGORY)
    from_url.set_defaults(handler=cmd_from_url)

    load_sources = commands.add_parser('load-sources', help='Add sources from a YAML file.')
    load_sources.add_argument('path')
    load_sources.set_defaults(handler=cmd_load_sources)

    queue = commands.add_parser('queue', help='List drafts in the moderation queue.')
    queue.add_argument('--status', choices=DRAFT_STATUSES, default='pending')
    queue.set_defaults(handler=cmd_queue)

    approve = commands.add_parser('approve', help='Publish a pending draft.')
    approve.add_argument('draft_id', type=int)
    approve.set_defaults(handler=cmd_approve)

    reject = commands.add_parser('reject', help='Reject a pending draft.')
    reject.add_argument('draft_id', type=int)
    reject.add_argument('--note', default=None)
    reject.set_defaults(handler=cmd_reject)

    unpublish = commands.add_parser('unpublish', help='Move a published article back to the queue.')
    unpublish.add_argument('article_id', type=int)
    unpublish.set_defaults(handler=cmd_unpublish)

    ledger = commands.add_parser('ledger', help='Show recent generation attempts.')
    ledger.add_argument('--limit', type=int, default=50)
    ledger.set_defaults(handler=cmd_ledger)

    edit = commands.add_parser('edit', help='Edit fields of a pending draft.')
    edit.add_argument('draft_id', type=int)
    edit.add_argument('--title', default=None)
    edit.add_argument('--slug', default=None)
    edit.add_argument('--excerpt', default=None)
    edit.add_argument('--category', default=None)
    edit.add_argument('--seo-keywords', default=None, help='Comma separated keywords.')
    edit.add_argument('--content-file', default=None, help='File holding the new article body.')
    edit.set_defaults(handler=cmd_edit)

    delete = commands.add_parser('delete-draft', help='Delete a draft from the queue.')
    delete.add_argument('draft_id', type=int)
    delete.set_defaults(handler=cmd_delete_draft)

    publish = commands.add_parser('publish', help='Publish an editor-written article directly.')
    publish.add_argument('--title', required=True)
    publish.add_argument('--content-file', required=True)
    publish.add_argument('--category', default=DEFAULT_CATEGORY)
    publish.add_argument('--slug', default=None)
    publish.add_argument('--excerpt', default=None)
    publish.add_argument('--seo-keywords', default=None, help='Comma separated keywords.')
    publish.set_defaults(handler=cmd_publish)

    sources = commands.add_parser('sources', help='List configured sources.')
    sources.add_argument('--active', action='store_true', help='Only active sources.')
    sources.set_defaults(handler=cmd_sources)

    toggle = commands.add_parser('toggle-source', help='Flip a source between active and inactive.')
    toggle.add_argument('source_id', type=int)
    toggle.set_defaults(handler=cmd_toggle_source)

    remove = commands.add_parser('remove-source', help='Delete a source.')
    remove.add_argument('source_id', type=int)
    remove.set_defaults(handler=cmd_remove_source)

    settings = commands.add_parser('settings', help='Show the effective settings.')
    settings.set_defaults(handler=cmd_settings)

    set_setting = commands.add_parser('set-setting', help='Store one setting (value parsed as JSON when possible).')
    set_setting.add_argument('key')
    set_setting.add_argument('value')
    set_setting.set_defaults(handler=cmd_set_setting)

    args = parser.parse_args(argv)

    # File handler for logging, added once per log file
    log_path = os.path.abspath(args.log_file)
    if not any(isinstance(handler, logging.FileHandler) and handler.baseFilename == log_path for handler in log.handlers):
        fh = logging.FileHandler(log_path, mode='a')
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)
        log.addHandler(fh)
        root_log.addHandler(fh)
    root_log.setLevel(logging.DEBUG)

    # Configure stdout logging based on arguments
    ch = next((handler for handler in log.handlers if _writes_to_stdout(handler)), None)
    if ch is None:
        ch = logging.StreamHandler(sys.stdout)
        ch.setFormatter(formatter)
        log.addHandler(ch)
        root_log.addHandler(ch)
    if args.verbose:
        ch.setLevel(logging.DEBUG)
    elif args.quiet:
        ch.setLevel(logging.ERROR)
    else:
        ch.setLevel(logging.INFO)

    log.info('++++++++++++++++++++++++++++++++++++++++++++++')
    log.info('+  %s %s', os.path.basename(sys.argv[0]), args.command)
    log.info('+  Python Version: %s', sys.version.split()[0])
    log.info('+  Today is: %s', date.today())
    log.info('++++++++++++++++++++++++++++++++++++++++++++++')
    return args


# ****************************************************************************************
# Main
# ****************************************************************************************


def main(argv: list[str] | None = None) -> int:
    args = handle_args(argv)
    env = load_env_config()
    if args.db:
        env = replace(env, database_path=args.db)
    args.env = env
    store = SQLiteStore(env.database_path)
    try:
        return args.handler(args, store)
    except ConfigurationError as exc:
        log.error('Configuration error: %s', exc)
        return 2
    except NewsDeskError as exc:
        log.error('%s', exc)
        return 1
    except ValueError as exc:
        log.error('Invalid value: %s', exc)
        return 2
    finally:
        store.close()


if __name__ == '__main__':
    sys.exit(main())
