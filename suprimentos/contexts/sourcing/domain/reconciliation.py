"""Reducer puro que incorpora um snapshot remoto a lista canonica local.

Precedencia de casamento por cotacao local: id remoto, depois id local, depois
email do fornecedor para quem ficou sem casamento por id. Cotacoes
entregues, canceladas ou confirmadas com pedido nunca sao tocadas.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, List, Sequence, Set, Tuple

from suprimentos.contexts.sourcing.domain.deduplication import deduplicate
from suprimentos.contexts.sourcing.domain.identity import email_match_tier
from suprimentos.contexts.sourcing.domain.mapping import pair_items, rematch_items
from suprimentos.contexts.sourcing.domain.models import Quotation
from suprimentos.contexts.sourcing.domain.status import (
    AWAITING,
    CONFIRMED,
    QUOTED,
    TERMINAL_STATUSES,
    max_status,
    status_rank,
)


logger = logging.getLogger("suprimentos.sourcing.reconciliation")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Campos em que o valor remoto, quando definido, prevalece sobre o local.
_REMOTE_WINS_FIELDS = (
    "reply_from",
    "reply_body",
    "reply_received_at",
    "quoted_total",
    "expected_delivery",
    "delivery_days",
    "payment_terms",
    "problem_summary",
    "urgency",
    "suggested_action",
    "supplier_notes",
    "order_id",
    "confirmed_at",
    "delivered_at",
)


@dataclass(frozen=True)
class ReconcileResult:
    quotations: Tuple[Quotation, ...]
    changed: bool = False
    bootstrapped: bool = False
    updated_ids: Tuple[str, ...] = ()
    newly_quoted: Tuple[str, ...] = ()
    newly_auto_confirmed: Tuple[str, ...] = ()


def _adopt_remote(remote: Quotation) -> Quotation:
    return replace(remote, last_remote_status=remote.status)


def _is_fuzzy_candidate(remote: Quotation) -> bool:
    return remote.status in (AWAITING, QUOTED) or remote.reply_received_at is not None


def _match_by_id(local: Quotation, snapshot: Sequence[Quotation]) -> int | None:
    if local.remote_id:
        for index, remote in enumerate(snapshot):
            if remote.remote_id == local.remote_id:
                return index
    for index, remote in enumerate(snapshot):
        if remote.remote_id == local.id or remote.id == local.id:
            return index
    return None


def _match_by_email(local: Quotation, snapshot: Sequence[Quotation], claimed: Set[int]) -> int | None:
    candidates: List[int] = []
    for index, remote in enumerate(snapshot):
        if index in claimed or not _is_fuzzy_candidate(remote):
            continue
        if email_match_tier(local.supplier_email, remote.supplier_email) or email_match_tier(
            local.supplier_email, remote.reply_from
        ):
            candidates.append(index)
    if not candidates:
        return None

    def reply_time(index: int) -> datetime:
        return snapshot[index].reply_received_at or _EPOCH

    latest = max(reply_time(index) for index in candidates)
    best = [index for index in candidates if reply_time(index) == latest]
    if len(best) > 1:
        logger.info(
            "reconciliation_fuzzy_tie",
            extra={"quotation_id": local.id, "candidates": [snapshot[index].remote_id for index in best]},
        )
    return best[0]


def _quoted_prices_missing(local: Quotation, remote: Quotation) -> bool:
    if remote.quoted_total is not None and remote.quoted_total != local.quoted_total:
        return True
    for local_item, remote_item in pair_items(local.items, remote.items):
        if remote_item is None or remote_item.quoted_unit_price is None:
            continue
        if local_item.quoted_unit_price != remote_item.quoted_unit_price:
            return True
    return False


def has_new_information(local: Quotation, remote: Quotation) -> bool:
    if remote.reply_received_at is not None and (
        local.reply_received_at is None or remote.reply_received_at > local.reply_received_at
    ):
        return True
    if remote.status != local.last_remote_status:
        return True
    if _quoted_prices_missing(local, remote):
        return True
    if remote.order_id and remote.order_id != local.order_id:
        return True
    if remote.confirmed_at is not None and local.confirmed_at is None:
        return True
    if remote.confirmed_manually and not local.confirmed_manually:
        return True
    if remote.remote_id and remote.remote_id != local.remote_id:
        return True
    return False


def merge_quotation(local: Quotation, remote: Quotation) -> Quotation:
    """Merge nao destrutivo: remoto vence onde define valor, status nunca regride."""
    changes: Dict[str, object] = {}
    for field_name in _REMOTE_WINS_FIELDS:
        value = getattr(remote, field_name)
        if value is not None and value != "":
            changes[field_name] = value
    if remote.reply_received_at is not None or remote.has_quote_data:
        changes["has_problems"] = remote.has_problems
        changes["has_delay"] = remote.has_delay

    items = local.items if local.items else remote.items
    if local.items and remote.items:
        items = rematch_items(local.items, remote.items)
    changes["items"] = items
    changes["confirmed_manually"] = local.confirmed_manually or remote.confirmed_manually
    changes["status"] = max_status(local.status, remote.status)
    changes["remote_id"] = remote.remote_id or local.remote_id
    changes["last_remote_status"] = remote.status
    return replace(local, **changes)


def _should_skip(local: Quotation) -> bool:
    if local.status in TERMINAL_STATUSES:
        return True
    return local.status == CONFIRMED and local.has_order


def reconcile_snapshot(local: Sequence[Quotation], snapshot: Sequence[Quotation]) -> ReconcileResult:
    current = tuple(local)
    remote_records = [record for record in snapshot if record is not None]

    if not current:
        adopted = tuple(_adopt_remote(record) for record in deduplicate(remote_records))
        return ReconcileResult(quotations=adopted, changed=bool(adopted), bootstrapped=True)

    matches: Dict[int, int] = {}
    claimed: Set[int] = set()
    for position, quotation in enumerate(current):
        index = _match_by_id(quotation, remote_records)
        if index is not None:
            matches[position] = index
            claimed.add(index)

    for position, quotation in enumerate(current):
        if position in matches or _should_skip(quotation):
            continue
        index = _match_by_email(quotation, remote_records, claimed)
        if index is not None:
            matches[position] = index
            claimed.add(index)

    merged: List[Quotation] = []
    updated: List[str] = []
    newly_quoted: List[str] = []
    newly_confirmed: List[str] = []
    for position, quotation in enumerate(current):
        index = matches.get(position)
        if index is None or _should_skip(quotation):
            merged.append(quotation)
            continue
        remote = remote_records[index]
        if not has_new_information(quotation, remote):
            merged.append(quotation)
            continue

        result = merge_quotation(quotation, remote)
        merged.append(result)
        updated.append(result.id)
        if status_rank(quotation.status) < status_rank(QUOTED) and result.status == QUOTED:
            newly_quoted.append(result.id)
        if quotation.status != CONFIRMED and result.status == CONFIRMED and not result.confirmed_manually:
            newly_confirmed.append(result.id)

    return ReconcileResult(
        quotations=tuple(merged),
        changed=bool(updated),
        updated_ids=tuple(updated),
        newly_quoted=tuple(newly_quoted),
        newly_auto_confirmed=tuple(newly_confirmed),
    )
