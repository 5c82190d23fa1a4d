"""
Lifecycle definitions and the transition function.

A `LifecycleDefinition` is the strategy the application selects at startup: a
state set, a transition table (`TransitionRule` per legal edge, including the
virtual creation edge), the actor allowed to fire each edge, the payload each
edge requires, and an optional time-based `EscalationRule`.

`attempt_transition` is pure: it validates a requested move against the table
and returns the column changes and audit details to persist, or raises
`RejectedTransition`. Writing the changes is the request store's job.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ValidationError

from refurb_tracker.domain.models import RefurbRequest
from refurb_tracker.errors import RejectedTransition
from refurb_tracker.utils.time import utcnow


class Actor(str, Enum):
    TECHNICIAN = "technician"
    HUB_OPERATOR = "hub_operator"
    SYSTEM = "system"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


@dataclass(frozen=True)
class TransitionWarning:
    """Operator-visible note attached to a transition that still went through."""

    code: str
    message: str


WarningCheck = Callable[[RefurbRequest, BaseModel], Optional[TransitionWarning]]


@dataclass(frozen=True)
class TransitionRule:
    """
    One legal edge of the lifecycle graph.

    `source=None` marks the creation edge. `stamp` names the timestamp column
    set to `now` when the edge fires. `columns` maps payload fields onto
    request columns; fields left out of the mapping keep their own name.
    """

    source: Optional[str]
    target: str
    actor: Actor
    payload_model: Optional[Type[BaseModel]] = None
    stamp: Optional[str] = None
    columns: Mapping[str, str] = field(default_factory=dict)
    checks: Tuple[WarningCheck, ...] = ()

    def column_for(self, payload_field: str) -> str:
        return self.columns.get(payload_field, payload_field)


@dataclass(frozen=True)
class EscalationRule:
    """Move `source` -> `target` once the date in `date_field` is today or earlier."""

    source: str
    target: str
    date_field: str


@dataclass(frozen=True)
class TransitionOutcome:
    previous_state: Optional[str]
    new_state: str
    changes: Dict[str, Any]
    details: Dict[str, Any]
    warnings: Tuple[TransitionWarning, ...] = ()

    def has_warning(self, code: str) -> bool:
        return any(w.code == code for w in self.warnings)


def action_for(state: str) -> str:
    """Audit action name for entering `state`, e.g. STATUS_CHANGED_TO_IN_PROGRESS."""
    return "STATUS_CHANGED_TO_" + state.upper().replace(" ", "_")


class LifecycleDefinition:
    """
    State set + transition table for one deployment variant.

    The constructor checks the table is self-consistent: every rule refers to
    known states, there is exactly one creation edge and it targets the
    initial state, no edge is declared twice, and the escalation edge (if any)
    exists in the table and belongs to the system actor.
    """

    def __init__(
        self,
        name: str,
        states: Sequence[str],
        initial_state: str,
        transitions: Sequence[TransitionRule],
        escalation: Optional[EscalationRule] = None,
        description: str = "",
    ) -> None:
        self.name = name
        self.description = description
        self.states: Tuple[str, ...] = tuple(states)
        self.initial_state = initial_state
        self.transitions: Tuple[TransitionRule, ...] = tuple(transitions)
        self.escalation = escalation
        self._edges: Dict[Tuple[Optional[str], str], TransitionRule] = {}

        if initial_state not in self.states:
            raise ValueError(f"Initial state '{initial_state}' is not one of {self.states}")
        for rule in self.transitions:
            for state in (rule.source, rule.target):
                if state is not None and state not in self.states:
                    raise ValueError(f"Rule {rule.source!r} -> {rule.target!r} uses unknown state")
            key = (rule.source, rule.target)
            if key in self._edges:
                raise ValueError(f"Duplicate rule {rule.source!r} -> {rule.target!r}")
            self._edges[key] = rule

        creation = [r for r in self.transitions if r.source is None]
        if len(creation) != 1 or creation[0].target != initial_state:
            raise ValueError("Exactly one creation rule targeting the initial state is required")
        self.creation_rule = creation[0]

        if escalation is not None:
            rule = self._edges.get((escalation.source, escalation.target))
            if rule is None or rule.actor is not Actor.SYSTEM:
                raise ValueError("Escalation must match a system-actor transition")

        self._required_stamps = self._compute_required_stamps()

    def __repr__(self) -> str:
        return f"LifecycleDefinition(name={self.name!r}, states={self.states!r})"

    @property
    def terminal_states(self) -> Tuple[str, ...]:
        """States with no outgoing edge."""
        sources = {r.source for r in self.transitions}
        return tuple(s for s in self.states if s not in sources)

    @property
    def open_states(self) -> Tuple[str, ...]:
        terminal = set(self.terminal_states)
        return tuple(s for s in self.states if s not in terminal)

    def is_state(self, state: str) -> bool:
        return state in self.states

    def rule_for(self, current: Optional[str], requested: str) -> Optional[TransitionRule]:
        return self._edges.get((current, requested))

    def allowed_targets(self, current: str, actor: Optional[Actor] = None) -> List[str]:
        """Targets reachable in one step from `current`, optionally for one actor."""
        return [
            r.target
            for r in self.transitions
            if r.source == current and (actor is None or r.actor is actor)
        ]

    def attempt_transition(
        self,
        current_state: Optional[str],
        requested_state: str,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        actor: Optional[Actor] = None,
        now: Optional[datetime] = None,
        request: Optional[RefurbRequest] = None,
    ) -> TransitionOutcome:
        """
        Validate a move and compute what to persist.

        Parameters
        ----------
        current_state : str | None
            Status the request is in now; None when creating a request.
        requested_state : str
            Status the caller wants to move to.
        payload : mapping, optional
            Side data the edge requires (validated by the rule's payload model).
        actor : Actor, optional
            Who is asking. When given it must match the rule's actor.
        now : datetime, optional
            Clock used for `updated_at` and the edge's timestamp column.
        request : RefurbRequest, optional
            Current record; enables the rule's warning checks.

        Returns
        -------
        TransitionOutcome
            Column changes, audit details, and any warnings.

        Raises
        ------
        RejectedTransition
            On an unknown state, a non-adjacent move, the wrong actor, or an
            invalid payload.
        """
        if requested_state not in self.states:
            raise RejectedTransition(current_state, requested_state, "unknown state")
        if current_state is not None and current_state not in self.states:
            raise RejectedTransition(
                current_state, requested_state, f"current state is not part of '{self.name}'"
            )

        rule = self.rule_for(current_state, requested_state)
        if rule is None:
            if current_state == requested_state:
                reason = "request is already in that state"
            else:
                allowed = self.allowed_targets(current_state) if current_state else []
                reason = (
                    f"not an adjacent state (allowed: {', '.join(allowed)})"
                    if allowed
                    else "no transitions are allowed from this state"
                )
            raise RejectedTransition(current_state, requested_state, reason)

        if actor is not None and actor is not rule.actor:
            raise RejectedTransition(
                current_state, requested_state, f"only the {rule.actor.label} can do this"
            )

        parsed: Optional[BaseModel] = None
        if rule.payload_model is not None:
            try:
                parsed = rule.payload_model.model_validate(dict(payload or {}))
            except ValidationError as exc:
                problems = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}"
                    for err in exc.errors()
                )
                raise RejectedTransition(current_state, requested_state, problems) from exc
        elif payload:
            raise RejectedTransition(
                current_state, requested_state, f"unexpected input: {', '.join(payload)}"
            )

        moment = now or utcnow()
        changes: Dict[str, Any] = {"status": requested_state, "updated_at": moment}
        if rule.stamp:
            changes[rule.stamp] = moment

        details: Dict[str, Any] = {"from": current_state, "to": requested_state}
        warnings: List[TransitionWarning] = []
        if parsed is not None:
            supplied = parsed.model_dump(exclude_none=True)
            if rule.source is not None:
                for name, value in supplied.items():
                    changes[rule.column_for(name)] = value
            details.update(parsed.model_dump(mode="json", exclude_none=True))
            if request is not None:
                for check in rule.checks:
                    warning = check(request, parsed)
                    if warning is not None:
                        warnings.append(warning)

        return TransitionOutcome(
            previous_state=current_state,
            new_state=requested_state,
            changes=changes,
            details=details,
            warnings=tuple(warnings),
        )

    def _compute_required_stamps(self) -> Dict[str, Tuple[str, ...]]:
        # Breadth-first from creation: the stamps on the shortest path into each
        # state are the ones a record in that state must carry.
        start = self.creation_rule
        first = (start.stamp,) if start.stamp else ()
        required: Dict[str, Tuple[str, ...]] = {start.target: first}
        queue = deque([start.target])
        while queue:
            state = queue.popleft()
            for rule in self.transitions:
                if rule.source == state and rule.target not in required:
                    extra = (rule.stamp,) if rule.stamp else ()
                    required[rule.target] = required[state] + extra
                    queue.append(rule.target)
        return required

    def required_timestamps(self, state: str) -> Tuple[str, ...]:
        """Timestamp columns that must be set on a record in `state`."""
        return self._required_stamps.get(state, ())

    def missing_timestamps(self, request: RefurbRequest) -> List[str]:
        """Required timestamps that are unset, i.e. violations of transition order."""
        return [
            column
            for column in self.required_timestamps(request.status)
            if getattr(request, column, None) is None
        ]


__all__ = [
    "Actor",
    "EscalationRule",
    "LifecycleDefinition",
    "TransitionOutcome",
    "TransitionRule",
    "TransitionWarning",
    "WarningCheck",
    "action_for",
]
