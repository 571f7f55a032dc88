from __future__ import annotations

from typing import Iterable

from .models import CandidateItem


def known_feed_links(store) -> frozenset[str]:
    """Links already turned into a draft or a published article by a feed source.

    Both tables count: an approved article leaves the queue but must still block
    regeneration of its origin item.
    """
    return frozenset(store.feed_origin_links())


def first_unseen(items: Iterable[CandidateItem], known: frozenset[str]) -> CandidateItem | None:
    for item in items:
        if item.link and item.link not in known:
            return item
    return None
