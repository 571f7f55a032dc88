"""Queue and approval state machine.

pending -> approved and pending -> rejected are the only transitions; both are
terminal. Promotion and rejection run as single store transactions. Unpublishing
creates a fresh pending draft before deleting the published row, so an interrupted
unpublish leaves a duplicate rather than losing the article.
"""
from __future__ import annotations

import logging

from .errors import DomainError, NotFoundError
from .models import Draft, GeneratedArticle, Provenance
from .utils import as_keyword_list, slugify


log = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "title",
    "slug",
    "excerpt",
    "content",
    "category",
    "seo_title",
    "seo_description",
    "seo_keywords",
)


def approve_draft(store, draft_id: int) -> int:
    published_id = store.approve_draft(draft_id)
    log.info("Approved draft %s as published article %s", draft_id, published_id)
    return published_id


def reject_draft(store, draft_id: int, note: str | None = None) -> None:
    store.reject_draft(draft_id, note=note)
    log.info("Rejected draft %s%s", draft_id, f" ({note})" if note else "")


def unpublish_article(store, article_id: int) -> int:
    article = store.get_published(article_id)
    if article is None:
        raise NotFoundError(f"published article {article_id} not found")
    restored = GeneratedArticle(
        title=article.title,
        slug=article.slug,
        excerpt=article.excerpt,
        content=article.content,
        category=article.category,
        seo_title=article.seo_title,
        seo_description=article.seo_description,
        seo_keywords=list(article.seo_keywords),
    )
    provenance = Provenance(
        kind=article.source_kind or "manual",
        ref=article.source_ref,
        title=article.source_title,
        url=article.source_url,
    )
    draft_id = store.insert_draft(restored, provenance)
    store.delete_published(article_id)
    log.info("Unpublished article %s back to pending draft %s", article_id, draft_id)
    return draft_id


def update_draft(store, draft_id: int, **fields) -> Draft:
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"fields not editable: {', '.join(sorted(unknown))}")
    if "seo_keywords" in fields:
        fields["seo_keywords"] = as_keyword_list(fields["seo_keywords"])
    if "slug" in fields:
        fields["slug"] = slugify(fields["slug"])
    if fields and store.update_pending_draft(draft_id, fields) == 0:
        if store.get_draft(draft_id) is None:
            raise NotFoundError(f"draft {draft_id} not found in queue")
        raise DomainError(f"draft {draft_id} is not pending and cannot be edited")
    draft = store.get_draft(draft_id)
    if draft is None:
        raise NotFoundError(f"draft {draft_id} not found in queue")
    return draft


def delete_draft(store, draft_id: int) -> None:
    if store.delete_draft(draft_id) == 0:
        raise NotFoundError(f"draft {draft_id} not found in queue")


def list_drafts(store, status: str | None = None) -> list[Draft]:
    return store.list_drafts(status=status)


def create_manual_article(store, article: GeneratedArticle) -> int:
    """Publish an editor-written article directly, bypassing the queue."""
    if not article.slug:
        article.slug = slugify(article.title)
    return store.insert_published(article, Provenance(kind="manual"))
