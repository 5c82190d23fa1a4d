"""
Applying a validated transition to the store.

The status write is conditional on the status that was validated, and the
audit entry is appended in the same transaction, so a committed transition
always has exactly one activity-log row and a lost race writes nothing.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from refurb_tracker.infrastructure.store import TableStore, eq
from refurb_tracker.lifecycle.abstract import TransitionOutcome, action_for
from refurb_tracker.tables import ACTIVITY_LOG, REQUESTS

SYSTEM_PERFORMER = "system"


async def apply_transition(
    store: TableStore,
    request_id: str,
    outcome: TransitionOutcome,
    performed_by: str,
) -> Optional[Dict[str, Any]]:
    """
    Persist `outcome` for one request and append its audit entry.

    Returns the updated row, or None when the request was no longer in
    `outcome.previous_state` (someone else moved it first).
    """
    async with store.transaction() as tx:
        rows = await tx.update(
            REQUESTS,
            outcome.changes,
            filters=[eq("id", request_id), eq("status", outcome.previous_state)],
        )
        if not rows:
            return None
        await tx.insert(
            ACTIVITY_LOG,
            {
                "request_id": request_id,
                "action": action_for(outcome.new_state),
                "details": outcome.details,
                "performed_by": performed_by,
                "created_at": outcome.changes["updated_at"],
            },
        )
        return rows[0]


__all__ = ["SYSTEM_PERFORMER", "apply_transition"]
