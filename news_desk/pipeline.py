##########################################################################################
#
# Script name: pipeline.py
#
# Description: Runs scheduled generation over configured sources and ad-hoc URL generation.
#
##########################################################################################

import logging
import random
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

from .config import EnvConfig, Settings, build_settings, day_start_utc_iso, load_env_config, resolve_today
from .dedup import first_unseen, known_feed_links
from .errors import FetchError, GenerationError, PersistenceError
from .fetchers import fetch_feed, fetch_page
from .generator import ArticleGenerator, build_openai_client
from .ledger import estimate_cost, record_attempt
from .models import SOURCE_KINDS, Draft, GeneratedArticle, Provenance, RunSummary, SourceOutcome, WorkItem
from .scheduler import Budget, select_work
from .store import SQLiteStore


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)


@dataclass
class RunContext:
    store: SQLiteStore
    generator: ArticleGenerator
    known_links: frozenset
    feed_timeout: float = 20.0
    cost_per_1k_tokens: float | None = None
    fetch_feed: Callable = fetch_feed


# ****************************************************************************************
# Functions
# ****************************************************************************************


def _save_draft(ctx: RunContext, item: WorkItem, article: GeneratedArticle, provenance: Provenance) -> SourceOutcome:
    source = item.source
    draft_id = ctx.store.insert_draft(article, provenance)
    try:
        ctx.store.stamp_source_fetched(source.id)
    except PersistenceError as exc:
        log.warning('Could not stamp last fetch time for %s: %s', source.name, exc)
    record_attempt(
        ctx.store,
        source,
        item.kind,
        'success',
        origin_ref=provenance.url,
        draft_id=draft_id,
        tokens_used=article.tokens_used,
        cost_estimate=estimate_cost(article.tokens_used, ctx.cost_per_1k_tokens),
    )
    log.info('Queued draft %s from %s: %s', draft_id, source.name, article.title)
    return SourceOutcome(source=source.name, kind=item.kind, outcome='success', title=article.title, draft_id=draft_id)


def _failed(ctx: RunContext, item: WorkItem, exc: Exception, origin_ref: str | None = None) -> SourceOutcome:
    log.error('Error processing %s source %s: %s', item.kind, item.source.name, exc)
    record_attempt(ctx.store, item.source, item.kind, 'failed', origin_ref=origin_ref, error=str(exc))
    return SourceOutcome(source=item.source.name, kind=item.kind, outcome='failed', error=str(exc))


def _skipped(ctx: RunContext, item: WorkItem, reason: str) -> SourceOutcome:
    log.info('Skipping %s: %s', item.source.name, reason)
    record_attempt(ctx.store, item.source, item.kind, 'skipped', error=reason)
    return SourceOutcome(source=item.source.name, kind=item.kind, outcome='skipped', error=reason)


def process_feed_source(ctx: RunContext, item: WorkItem) -> SourceOutcome:
    source = item.source
    try:
        entries = ctx.fetch_feed(source.url, timeout=ctx.feed_timeout)
    except FetchError as exc:
        return _failed(ctx, item, exc, origin_ref=source.url)
    if not entries:
        return _skipped(ctx, item, 'feed returned no items')

    candidate = first_unseen(entries, ctx.known_links)
    if candidate is None:
        return _skipped(ctx, item, 'no new items in feed')

    try:
        article = ctx.generator.generate('feed', candidate, category=source.category)
        provenance = Provenance(kind='feed', ref=str(source.id), title=candidate.title, url=candidate.link)
        return _save_draft(ctx, item, article, provenance)
    except (GenerationError, PersistenceError) as exc:
        return _failed(ctx, item, exc, origin_ref=candidate.link)


def process_prompt_source(ctx: RunContext, item: WorkItem) -> SourceOutcome:
    source = item.source
    try:
        article = ctx.generator.generate(item.kind, source, category=source.category)
        provenance = Provenance(kind=item.kind, ref=str(source.id), title=source.name)
        return _save_draft(ctx, item, article, provenance)
    except (GenerationError, PersistenceError) as exc:
        return _failed(ctx, item, exc)


def process_work_item(ctx: RunContext, item: WorkItem) -> SourceOutcome:
    log.info('Processing %s source: %s', item.kind, item.source.name)
    try:
        if item.kind == 'feed':
            return process_feed_source(ctx, item)
        if item.kind in ('theme', 'topic'):
            return process_prompt_source(ctx, item)
        return _failed(ctx, item, ValueError(f'unsupported source kind {item.kind!r}'))
    except Exception as exc:  # noqa: BLE001
        log.exception('Unexpected failure processing %s', item.source.name)
        return _failed(ctx, item, exc)


def _settle(budget: Budget, outcome: SourceOutcome) -> SourceOutcome:
    if outcome.outcome == 'success':
        budget.commit()
    else:
        budget.release()
    return outcome


def _claim_and_process(ctx: RunContext, budget: Budget, item: WorkItem) -> SourceOutcome | None:
    if not budget.try_claim():
        return None
    return _settle(budget, process_work_item(ctx, item))


def _pool_worker(ctx: RunContext, budget: Budget, queue, queue_lock: threading.Lock, results: dict) -> None:
    while budget.claim():
        with queue_lock:
            entry = next(queue, None)
        if entry is None:
            budget.release()
            return
        index, item = entry
        results[index] = _settle(budget, process_work_item(ctx, item))


def run_generation(
    store: SQLiteStore,
    generator: ArticleGenerator,
    settings: Settings,
    today: str,
    rng: random.Random | None = None,
    max_workers: int = 1,
    feed_timeout: float = 20.0,
    cost_per_1k_tokens: float | None = None,
    fetch_feed_fn: Callable = fetch_feed,
    already_generated: int = 0,
) -> RunSummary:
    """Process selected work under the daily ceiling.

    ``already_generated`` counts drafts an earlier run produced today; they come
    out of the same ceiling.
    """
    sources = store.list_sources(active_only=True)
    log.info('Found %d active source(s); today is %s', len(sources), today)
    work = select_work(sources, settings, today, rng=rng)
    budget = Budget(settings.max_articles_per_day - already_generated)
    ctx = RunContext(
        store=store,
        generator=generator,
        known_links=known_feed_links(store),
        feed_timeout=feed_timeout,
        cost_per_1k_tokens=cost_per_1k_tokens,
        fetch_feed=fetch_feed_fn,
    )

    results: list[SourceOutcome] = []
    if max_workers <= 1:
        for item in work:
            outcome = _claim_and_process(ctx, budget, item)
            if outcome is None:
                log.info('Daily limit of %d reached, leaving remaining sources.', budget.limit)
                break
            results.append(outcome)
    else:
        queue = iter(enumerate(work))
        queue_lock = threading.Lock()
        slots: dict[int, SourceOutcome] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            workers = [
                pool.submit(_pool_worker, ctx, budget, queue, queue_lock, slots)
                for _ in range(min(max_workers, len(work)))
            ]
            for worker in workers:
                worker.result()
        results = [slots[index] for index in sorted(slots)]

    generated = sum(1 for result in results if result.outcome == 'success')
    log.info('Generated %d article(s)', generated)
    return RunSummary(articles_generated=generated, results=results)


def build_generator(env: EnvConfig, settings: Settings, client=None) -> ArticleGenerator:
    return ArticleGenerator(
        client=client or build_openai_client(env),
        model=env.openai_model,
        max_tokens=env.model_max_tokens,
        style_guide=settings.tone_of_voice,
    )


def run_scheduled(env: EnvConfig | None = None, store: SQLiteStore | None = None, client=None) -> RunSummary:
    """Entry point for the daily trigger. Raises ConfigurationError before doing any work."""
    env = env or load_env_config()
    env.require_generation()
    store = store or SQLiteStore(env.database_path)
    settings = build_settings(store.get_settings())
    generator = build_generator(env, settings, client=client)
    already = store.count_outcomes_since('success', day_start_utc_iso(env.timezone), SOURCE_KINDS)
    if already:
        log.info('%d draft(s) already generated today', already)
    return run_generation(
        store,
        generator,
        settings,
        today=resolve_today(env.timezone),
        max_workers=env.generation_workers,
        feed_timeout=env.feed_fetch_timeout,
        cost_per_1k_tokens=env.cost_per_1k_tokens,
        already_generated=already,
    )


def generate_from_url(
    store: SQLiteStore,
    generator: ArticleGenerator,
    url: str,
    category: str,
    fetch_timeout: float = 20.0,
    cost_per_1k_tokens: float | None = None,
    fetch_page_fn: Callable | None = None,
) -> Draft:
    """Fetch one page, rewrite it and queue the result. Errors propagate to the caller."""
    log.info('Generating article from URL: %s', url)
    fetch_page_fn = fetch_page_fn or fetch_page
    try:
        page = fetch_page_fn(url, timeout=fetch_timeout)
        article = generator.generate('url', page, category=category)
    except (FetchError, GenerationError) as exc:
        record_attempt(store, None, 'url', 'failed', origin_ref=url, error=str(exc))
        raise
    provenance = Provenance(kind='url', title=page.title or url, url=url)
    draft_id = store.insert_draft(article, provenance)
    record_attempt(
        store,
        None,
        'url',
        'success',
        origin_ref=url,
        draft_id=draft_id,
        tokens_used=article.tokens_used,
        cost_estimate=estimate_cost(article.tokens_used, cost_per_1k_tokens),
    )
    return store.get_draft(draft_id)
