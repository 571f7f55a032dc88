"""Operator-facing edits of the source catalog and runtime settings."""
from __future__ import annotations

import logging

from .config import DEFAULT_SETTINGS, build_settings, source_from_mapping
from .errors import NotFoundError
from .models import Source


log = logging.getLogger(__name__)


def list_sources(store, active_only: bool = False) -> list[Source]:
    return store.list_sources(active_only=active_only)


def add_source(store, entry: dict) -> Source:
    """Validate a source mapping (same keys as the YAML registry) and store it."""
    source = source_from_mapping(entry)
    store.add_source(source)
    log.info("Added %s source %s: %s", source.kind, source.id, source.name)
    return source


def set_source_active(store, source_id: int, active: bool) -> Source:
    if store.set_source_active(source_id, active) == 0:
        raise NotFoundError(f"source {source_id} not found")
    log.info("Source %s is now %s", source_id, "active" if active else "inactive")
    return store.get_source(source_id)


def toggle_source(store, source_id: int) -> Source:
    source = store.get_source(source_id)
    if source is None:
        raise NotFoundError(f"source {source_id} not found")
    return set_source_active(store, source_id, not source.active)


def remove_source(store, source_id: int) -> None:
    if store.delete_source(source_id) == 0:
        raise NotFoundError(f"source {source_id} not found")
    log.info("Removed source %s", source_id)


def update_setting(store, key: str, value) -> dict:
    """Store one setting and return the effective settings.

    Only keys with a built-in default are accepted, and the value must survive
    the same coercion the pipeline applies when it reads settings back.
    """
    if key not in DEFAULT_SETTINGS:
        raise ValueError(f"unknown setting {key!r}")
    if key == "max_articles_per_day":
        try:
            value = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError("max_articles_per_day must be an integer") from exc
        if value < 0:
            raise ValueError("max_articles_per_day must not be negative")
    store.set_setting(key, value)
    log.info("Setting %s updated", key)
    return effective_settings(store)


def effective_settings(store) -> dict:
    settings = build_settings(store.get_settings())
    return {
        "max_articles_per_day": settings.max_articles_per_day,
        "tone_of_voice": settings.tone_of_voice,
        "seo_site_name": settings.seo_site_name,
    }
