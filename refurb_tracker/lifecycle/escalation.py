"""
Read-time auto-escalation.

Reading the request collection may advance records whose escalation date has
passed (in the shipping lifecycle: `Shipped` with `expected_delivery` on or
before today becomes `Received`). The side effect is split in two so it stays
visible and testable:

- `reconcile(records, now, definition)` is pure and returns the records as the
  caller should see them plus the writes that make that true;
- `persist(store, writes)` applies those writes concurrently (each touches a
  different row) and returns only after all of them have finished.

Writes are conditional on the source status, so re-running after a
successful escalation, or racing another reader, never fires twice.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Tuple

from refurb_tracker.domain.models import RefurbRequest
from refurb_tracker.infrastructure.store import TableStore
from refurb_tracker.lifecycle.abstract import Actor, LifecycleDefinition, TransitionOutcome
from refurb_tracker.lifecycle.persistence import SYSTEM_PERFORMER, apply_transition
from refurb_tracker.utils.logging import get_logger
from refurb_tracker.utils.time import local_today

log = get_logger(__name__)


@dataclass(frozen=True)
class PendingWrite:
    request_id: str
    outcome: TransitionOutcome


def _as_date(value: object) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def reconcile(
    records: Iterable[RefurbRequest],
    now: datetime,
    definition: LifecycleDefinition,
    tz_name: str = "UTC",
) -> Tuple[List[RefurbRequest], List[PendingWrite]]:
    """
    Apply the definition's escalation rule to `records` in memory.

    Returns the records with due escalations applied and the writes needed to
    persist them. Definitions without an escalation rule pass records through.
    """
    records = list(records)
    rule = definition.escalation
    if rule is None:
        return records, []

    today = local_today(now, tz_name)
    result: List[RefurbRequest] = []
    writes: List[PendingWrite] = []
    for record in records:
        due = getattr(record, rule.date_field, None)
        if record.status == rule.source and due is not None and _as_date(due) <= today:
            outcome = definition.attempt_transition(
                record.status, rule.target, actor=Actor.SYSTEM, now=now, request=record
            )
            outcome.details[rule.date_field] = _as_date(due).isoformat()
            result.append(record.model_copy(update=outcome.changes))
            writes.append(PendingWrite(request_id=record.id, outcome=outcome))
        else:
            result.append(record)
    return result, writes


async def persist(store: TableStore, writes: Iterable[PendingWrite]) -> List[str]:
    """
    Apply escalation writes and wait for every one of them.

    Returns the ids that this call actually moved. If any write fails, the
    first error is raised after all writes have settled.
    """
    writes = list(writes)
    if not writes:
        return []

    results = await asyncio.gather(
        *(apply_transition(store, w.request_id, w.outcome, SYSTEM_PERFORMER) for w in writes),
        return_exceptions=True,
    )

    applied: List[str] = []
    errors: List[BaseException] = []
    for write, result in zip(writes, results):
        if isinstance(result, BaseException):
            errors.append(result)
            log.error(
                "Auto-escalation write failed",
                extra={"request_id": write.request_id, "error": str(result)},
            )
        elif result is None:
            log.debug(
                "Auto-escalation already applied elsewhere",
                extra={"request_id": write.request_id},
            )
        else:
            applied.append(write.request_id)
            log.info(
                "Auto-escalated request",
                extra={
                    "request_id": write.request_id,
                    "from_state": write.outcome.previous_state,
                    "to_state": write.outcome.new_state,
                },
            )
    if errors:
        raise errors[0]
    return applied


__all__ = ["PendingWrite", "persist", "reconcile"]
