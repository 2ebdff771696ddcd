"""
Status engine for non-conformities and corrective actions.

Both lifecycles are expressed as enum-keyed transition tables; the functions
here are pure (no session, no clock) so the API layer, the service layer and
any client export share exactly one definition.

Corrective action:

    PENDING -> IN_PROGRESS -> COMPLETED -> VERIFIED
       ^            |  ^          |
       +------------+  +----------+

VERIFIED is terminal and is only entered through ``verify_action``.

Non-conformity:

    OPEN -> IN_PROGRESS -> RESOLVED -> CLOSED
     ^          |  ^          |  |
     +----------+  +----------+  +--> OPEN (reopen)

CLOSED is terminal and requires every corrective action to be VERIFIED.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum

from app.qms.errors import (
    ActionsIncomplete,
    InvalidTransition,
    OpenActionsRemain,
    TerminalState,
    ValidationError,
)


class ActionStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    VERIFIED = "VERIFIED"


class NCRStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Severity(str, Enum):
    MINOR = "MINOR"
    MAJOR = "MAJOR"
    CRITICAL = "CRITICAL"


ACTION_TRANSITIONS: Mapping[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.PENDING: frozenset({ActionStatus.IN_PROGRESS}),
    ActionStatus.IN_PROGRESS: frozenset({ActionStatus.COMPLETED, ActionStatus.PENDING}),
    ActionStatus.COMPLETED: frozenset({ActionStatus.VERIFIED, ActionStatus.IN_PROGRESS}),
    ActionStatus.VERIFIED: frozenset(),
}

NCR_TRANSITIONS: Mapping[NCRStatus, frozenset[NCRStatus]] = {
    NCRStatus.OPEN: frozenset({NCRStatus.IN_PROGRESS}),
    NCRStatus.IN_PROGRESS: frozenset({NCRStatus.RESOLVED, NCRStatus.OPEN}),
    NCRStatus.RESOLVED: frozenset({NCRStatus.CLOSED, NCRStatus.IN_PROGRESS, NCRStatus.OPEN}),
    NCRStatus.CLOSED: frozenset(),
}

# Display metadata shared with clients (label + badge colour).
ACTION_STATUS_DISPLAY: Mapping[ActionStatus, dict[str, str]] = {
    ActionStatus.PENDING: {"label": "Pending", "color": "gray"},
    ActionStatus.IN_PROGRESS: {"label": "In Progress", "color": "blue"},
    ActionStatus.COMPLETED: {"label": "Completed", "color": "amber"},
    ActionStatus.VERIFIED: {"label": "Verified", "color": "green"},
}

NCR_STATUS_DISPLAY: Mapping[NCRStatus, dict[str, str]] = {
    NCRStatus.OPEN: {"label": "Open", "color": "red"},
    NCRStatus.IN_PROGRESS: {"label": "In Progress", "color": "blue"},
    NCRStatus.RESOLVED: {"label": "Resolved", "color": "amber"},
    NCRStatus.CLOSED: {"label": "Closed", "color": "green"},
}


def _coerce(enum_cls, value, what: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {what}: {value}. Must be one of: {allowed}")


def parse_action_status(value) -> ActionStatus:
    return _coerce(ActionStatus, value, "status")


def parse_ncr_status(value) -> NCRStatus:
    return _coerce(NCRStatus, value, "status")


def parse_priority(value) -> Priority:
    return _coerce(Priority, value, "priority")


def parse_severity(value) -> Severity:
    return _coerce(Severity, value, "severity")


def _describe(allowed: Iterable[Enum]) -> str:
    names = sorted(a.value for a in allowed)
    return ", ".join(names) if names else "none (terminal state)"


# ---------- Corrective actions ----------
def plain_action_targets(current) -> frozenset[ActionStatus]:
    """Statuses reachable from ``current`` through a plain status change (never VERIFIED)."""
    cur = parse_action_status(current)
    return ACTION_TRANSITIONS[cur] - {ActionStatus.VERIFIED}


def transition_action(current, requested) -> ActionStatus:
    """
    Validate a plain status change and return the new status.

    Raises TerminalState when ``current`` has no outgoing edges and
    InvalidTransition when ``requested`` is not an allowed edge or is VERIFIED.
    """
    cur = parse_action_status(current)
    req = parse_action_status(requested)
    if not ACTION_TRANSITIONS[cur]:
        raise TerminalState(f"Corrective action is {cur.value}; no further status changes are allowed.")
    if req is ActionStatus.VERIFIED:
        raise InvalidTransition("VERIFIED can only be set by verifying a COMPLETED action.")
    if req not in ACTION_TRANSITIONS[cur]:
        raise InvalidTransition(
            f"Invalid status transition from {cur.value} to {req.value}. "
            f"Allowed transitions: {_describe(plain_action_targets(cur))}"
        )
    return req


def verify_action(current) -> ActionStatus:
    """Validate verification of an action; only COMPLETED actions can be verified."""
    cur = parse_action_status(current)
    if not ACTION_TRANSITIONS[cur]:
        raise TerminalState(f"Corrective action is already {cur.value}.")
    if cur is not ActionStatus.COMPLETED:
        raise InvalidTransition(f"Cannot verify an action with status {cur.value}. Action must be COMPLETED first.")
    return ActionStatus.VERIFIED


# ---------- Non-conformities ----------
def ncr_targets(current) -> frozenset[NCRStatus]:
    return NCR_TRANSITIONS[parse_ncr_status(current)]


def transition_ncr(current, requested, action_statuses: Iterable = ()) -> NCRStatus:
    """
    Validate an NCR status change against the table and its guards.

    ``action_statuses`` are the statuses of the NCR's corrective actions.
    RESOLVED needs at least one action and all of them COMPLETED or VERIFIED;
    CLOSED needs all of them VERIFIED.
    """
    cur = parse_ncr_status(current)
    req = parse_ncr_status(requested)
    if not NCR_TRANSITIONS[cur]:
        raise TerminalState(f"Non-conformity is {cur.value}; no further status changes are allowed.")
    if req not in NCR_TRANSITIONS[cur]:
        raise InvalidTransition(
            f"Invalid status transition from {cur.value} to {req.value}. "
            f"Allowed transitions: {_describe(NCR_TRANSITIONS[cur])}"
        )

    statuses = [parse_action_status(a) for a in action_statuses]
    if req is NCRStatus.RESOLVED:
        if not statuses:
            raise ActionsIncomplete("Cannot resolve an NCR without any corrective actions.")
        done = {ActionStatus.COMPLETED, ActionStatus.VERIFIED}
        if any(st not in done for st in statuses):
            raise ActionsIncomplete("Cannot resolve an NCR until all corrective actions are completed.")
    elif req is NCRStatus.CLOSED:
        unverified = sum(1 for st in statuses if st is not ActionStatus.VERIFIED)
        if unverified:
            raise OpenActionsRemain(
                "Cannot close an NCR until all corrective actions are verified.",
                details={"unverified_actions": unverified},
            )
    return req


def workflow_definition() -> dict:
    """Serializable form of both tables for clients."""
    return {
        "corrective_action": {
            "transitions": {k.value: sorted(v.value for v in vals) for k, vals in ACTION_TRANSITIONS.items()},
            "plain_transitions": {k.value: sorted(v.value for v in plain_action_targets(k)) for k in ActionStatus},
            "display": {k.value: dict(v) for k, v in ACTION_STATUS_DISPLAY.items()},
        },
        "non_conformity": {
            "transitions": {k.value: sorted(v.value for v in vals) for k, vals in NCR_TRANSITIONS.items()},
            "display": {k.value: dict(v) for k, v in NCR_STATUS_DISPLAY.items()},
        },
    }
