"""
Lifecycle package for the refurb tracker.

Re-exports the definition primitives and both deployment variants, and keeps
the registry the application uses to pick exactly one variant at startup.
"""

from __future__ import annotations

from typing import Callable, Dict, List

from refurb_tracker.lifecycle.abstract import (
    Actor,
    EscalationRule,
    LifecycleDefinition,
    TransitionOutcome,
    TransitionRule,
    TransitionWarning,
    action_for,
)
from refurb_tracker.lifecycle.escalation import PendingWrite, persist, reconcile
from refurb_tracker.lifecycle.fulfillment import FULFILLMENT_LIFECYCLE, FulfillmentStatus
from refurb_tracker.lifecycle.shipping import SHIPPING_LIFECYCLE, ShippingStatus


def _lifecycle_factories() -> Dict[str, Callable[[], LifecycleDefinition]]:
    """Registry of available lifecycle definitions."""
    return {
        "shipping": lambda: SHIPPING_LIFECYCLE,
        "fulfillment": lambda: FULFILLMENT_LIFECYCLE,
    }


def available_lifecycles() -> List[str]:
    """List available lifecycle names."""
    return sorted(_lifecycle_factories().keys())


def resolve_lifecycle(name: str) -> LifecycleDefinition:
    factories = _lifecycle_factories()
    if name not in factories:
        raise ValueError(f"Unknown lifecycle '{name}'. Available: {', '.join(factories)}")
    return factories[name]()


__all__ = [
    "Actor",
    "EscalationRule",
    "FULFILLMENT_LIFECYCLE",
    "FulfillmentStatus",
    "LifecycleDefinition",
    "PendingWrite",
    "SHIPPING_LIFECYCLE",
    "ShippingStatus",
    "TransitionOutcome",
    "TransitionRule",
    "TransitionWarning",
    "action_for",
    "available_lifecycles",
    "persist",
    "reconcile",
    "resolve_lifecycle",
]
