"""
Four-state fulfillment lifecycle.

    Pending -> In Progress -> Fulfilled
    Pending | In Progress -> Cancelled

All moves after submission are made by a hub operator from the management
surface; nothing escalates on its own. Fulfilling a different quantity than
was requested is allowed and reported as a `quantity_mismatch` warning.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from refurb_tracker.domain.models import RefurbRequest, RequestDraft
from refurb_tracker.lifecycle.abstract import (
    Actor,
    LifecycleDefinition,
    TransitionRule,
    TransitionWarning,
)


class FulfillmentStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"


class FulfillPayload(BaseModel):
    quantity_fulfilled: int = Field(..., ge=0, le=999)
    fulfilled_by: str = Field(..., min_length=1)
    fulfillment_notes: Optional[str] = None

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class CancelPayload(BaseModel):
    reason: Optional[str] = None

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


def quantity_mismatch(request: RefurbRequest, payload: BaseModel) -> Optional[TransitionWarning]:
    fulfilled = getattr(payload, "quantity_fulfilled", None)
    if fulfilled is None or fulfilled == request.quantity_requested:
        return None
    return TransitionWarning(
        code="quantity_mismatch",
        message=f"Fulfilling {fulfilled} of {request.quantity_requested} requested units.",
    )


F = FulfillmentStatus

FULFILLMENT_LIFECYCLE = LifecycleDefinition(
    name="fulfillment",
    description="Hub fulfillment of location requests, with cancellation.",
    states=[s.value for s in FulfillmentStatus],
    initial_state=F.PENDING.value,
    transitions=[
        TransitionRule(
            None, F.PENDING.value, Actor.TECHNICIAN, payload_model=RequestDraft, stamp="created_at"
        ),
        TransitionRule(F.PENDING.value, F.IN_PROGRESS.value, Actor.HUB_OPERATOR),
        TransitionRule(
            F.IN_PROGRESS.value,
            F.FULFILLED.value,
            Actor.HUB_OPERATOR,
            payload_model=FulfillPayload,
            stamp="fulfilled_at",
            checks=(quantity_mismatch,),
        ),
        TransitionRule(
            F.PENDING.value,
            F.CANCELLED.value,
            Actor.HUB_OPERATOR,
            payload_model=CancelPayload,
            columns={"reason": "fulfillment_notes"},
        ),
        TransitionRule(
            F.IN_PROGRESS.value,
            F.CANCELLED.value,
            Actor.HUB_OPERATOR,
            payload_model=CancelPayload,
            columns={"reason": "fulfillment_notes"},
        ),
    ],
)


__all__ = [
    "CancelPayload",
    "FULFILLMENT_LIFECYCLE",
    "FulfillPayload",
    "FulfillmentStatus",
    "quantity_mismatch",
]
