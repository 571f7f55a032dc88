from __future__ import annotations

import logging

from .models import LedgerEntry, Source


log = logging.getLogger(__name__)


def estimate_cost(tokens_used: int | None, cost_per_1k_tokens: float | None) -> float | None:
    if tokens_used is None or cost_per_1k_tokens is None:
        return None
    return round(tokens_used / 1000.0 * cost_per_1k_tokens, 4)


def record_attempt(
    store,
    source: Source | None,
    kind: str,
    outcome: str,
    origin_ref: str | None = None,
    draft_id: int | None = None,
    error: str | None = None,
    tokens_used: int | None = None,
    cost_estimate: float | None = None,
) -> int | None:
    """Append one ledger row. Store failures are logged and never raised."""
    source_id = source.id if source is not None else None
    try:
        return store.insert_ledger_entry(
            source_id=source_id,
            source_kind=kind,
            outcome=outcome,
            source_ref=origin_ref,
            draft_id=draft_id,
            error_message=error,
            tokens_used=tokens_used,
            cost_estimate=cost_estimate,
        )
    except Exception:  # noqa: BLE001
        log.exception('Failed to write ledger entry for source=%s outcome=%s', source_id, outcome)
        return None


def recent_entries(store, limit: int = 50) -> list[LedgerEntry]:
    return store.list_ledger(limit=limit)
