"""
Six-state shipping lifecycle.

    Requested -> Shipped -> Received -> In Progress -> Complete -> Picked Up

Technicians submit, start and complete work; the hub ships and confirms
pickup; `Shipped -> Received` belongs to the system and fires when the
expected delivery date arrives (see `lifecycle.escalation`). There is no
cancellation path in this variant.
"""

from __future__ import annotations

from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict

from refurb_tracker.domain.models import RequestDraft
from refurb_tracker.lifecycle.abstract import (
    Actor,
    EscalationRule,
    LifecycleDefinition,
    TransitionRule,
)


class ShippingStatus(str, Enum):
    REQUESTED = "Requested"
    SHIPPED = "Shipped"
    RECEIVED = "Received"
    IN_PROGRESS = "In Progress"
    COMPLETE = "Complete"
    PICKED_UP = "Picked Up"


class ShipPayload(BaseModel):
    expected_delivery: date

    model_config = ConfigDict(extra="forbid")


S = ShippingStatus

SHIPPING_LIFECYCLE = LifecycleDefinition(
    name="shipping",
    description="Field location -> hub shipment, repair and pickup.",
    states=[s.value for s in ShippingStatus],
    initial_state=S.REQUESTED.value,
    transitions=[
        TransitionRule(
            None, S.REQUESTED.value, Actor.TECHNICIAN, payload_model=RequestDraft, stamp="created_at"
        ),
        TransitionRule(
            S.REQUESTED.value,
            S.SHIPPED.value,
            Actor.HUB_OPERATOR,
            payload_model=ShipPayload,
            stamp="shipped_at",
        ),
        TransitionRule(S.SHIPPED.value, S.RECEIVED.value, Actor.SYSTEM),
        TransitionRule(S.RECEIVED.value, S.IN_PROGRESS.value, Actor.TECHNICIAN, stamp="started_at"),
        TransitionRule(S.IN_PROGRESS.value, S.COMPLETE.value, Actor.TECHNICIAN, stamp="completed_at"),
        TransitionRule(S.COMPLETE.value, S.PICKED_UP.value, Actor.HUB_OPERATOR, stamp="picked_up_at"),
    ],
    escalation=EscalationRule(
        source=S.SHIPPED.value, target=S.RECEIVED.value, date_field="expected_delivery"
    ),
)


__all__ = ["SHIPPING_LIFECYCLE", "ShipPayload", "ShippingStatus"]
