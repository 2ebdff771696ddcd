"""
Non-conformities service layer.
Handles NCR CRUD and lifecycle, corrective actions, verification, assignment
and the per-NCR action summaries.
"""
from __future__ import annotations

import logging
import threading
from collections import Counter
from datetime import date, datetime
from typing import Any

from flask import current_app, has_app_context
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.qms.api import iso, json_str, parse_date, user_ref
from app.qms.audit import record_event
from app.qms.constants import FAILING_SCORE_MAX
from app.qms.errors import AuthorizationError, NotFoundError, ValidationError
from app.qms.models import User
from app.qms.modules.assessments.models import Assessment, QuestionResponse
from app.qms.modules.assessments.service import can_edit_assessment, can_verify_actions, ensure_editable
from app.qms.rbac import user_has_permission

from . import workflow
from .models import CorrectiveAction, NonConformity
from .workflow import ActionStatus, NCRStatus, Priority, Severity

logger = logging.getLogger(__name__)

OPEN_ACTION_STATUSES = {ActionStatus.PENDING.value, ActionStatus.IN_PROGRESS.value}
DONE_ACTION_STATUSES = {ActionStatus.COMPLETED.value, ActionStatus.VERIFIED.value}


# ---------- Summary cache ----------
class ActionSummaryCache:
    """Action summaries keyed by NCR id, each stored with the stamp it was computed under.

    A lookup only hits when the caller's stamp (built from the stored actions and
    today's date) matches, so writes made by another process are never masked.
    """

    def __init__(self) -> None:
        self._data: dict[int, tuple[tuple, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get(self, ncr_id: int, stamp: tuple) -> dict[str, Any] | None:
        with self._lock:
            entry = self._data.get(ncr_id)
            if entry is None or entry[0] != stamp:
                return None
            return dict(entry[1])

    def set(self, ncr_id: int, stamp: tuple, summary: dict[str, Any]) -> None:
        with self._lock:
            self._data[ncr_id] = (stamp, dict(summary))

    def invalidate(self, ncr_id: int) -> None:
        with self._lock:
            self._data.pop(ncr_id, None)


def summary_cache() -> ActionSummaryCache:
    if not has_app_context():
        return ActionSummaryCache()
    return current_app.extensions.setdefault("action_summary_cache", ActionSummaryCache())


def summary_stamp(actions: list[CorrectiveAction], today: date | None = None) -> tuple:
    today = today or utc_today()
    return (today, tuple(sorted((a.id, a.status, a.updated_at) for a in actions)))


def utc_today() -> date:
    return datetime.utcnow().date()


# ---------- Lookup ----------
def get_ncr(s: Session, ncr_id: int, organization_id: int) -> NonConformity:
    ncr = s.get(NonConformity, ncr_id)
    if not ncr:
        raise NotFoundError("Non-Conformity", ncr_id)
    if ncr.assessment.organization_id != organization_id:
        raise AuthorizationError("You do not have access to this non-conformity")
    return ncr


def get_action(s: Session, action_id: int, organization_id: int) -> CorrectiveAction:
    action = s.get(CorrectiveAction, action_id)
    if not action:
        raise NotFoundError("Corrective Action", action_id)
    if action.non_conformity.assessment.organization_id != organization_id:
        raise AuthorizationError("You do not have access to this corrective action")
    return action


def _assignee(s: Session, assigned_to_id: Any, organization_id: int) -> User | None:
    if assigned_to_id in (None, ""):
        return None
    try:
        uid = int(assigned_to_id)
    except (TypeError, ValueError):
        raise ValidationError("assigned_to_id must be a user id")
    user = s.get(User, uid)
    if not user:
        raise NotFoundError("User", uid)
    if user.organization_id != organization_id:
        raise ValidationError("Assigned user must belong to the same organization")
    return user


# ---------- NCR listing ----------
def list_ncrs(
    s: Session,
    organization_id: int,
    *,
    assessment_id: int | None = None,
    status: str | None = None,
    severity: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[NonConformity], int]:
    q = s.query(NonConformity).join(Assessment).filter(Assessment.organization_id == organization_id)
    if assessment_id:
        q = q.filter(NonConformity.assessment_id == assessment_id)
    if status:
        q = q.filter(NonConformity.status == workflow.parse_ncr_status(status).value)
    if severity:
        q = q.filter(NonConformity.severity == workflow.parse_severity(severity).value)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(NonConformity.title.ilike(like), NonConformity.description.ilike(like)))
    total = q.count()
    items = (
        q.order_by(NonConformity.created_at.desc(), NonConformity.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


# ---------- NCR CRUD ----------
def _validate_response_link(s: Session, assessment: Assessment, response_id: Any) -> int | None:
    if response_id in (None, ""):
        return None
    try:
        rid = int(response_id)
    except (TypeError, ValueError):
        raise ValidationError("response_id must be an integer")
    response = s.get(QuestionResponse, rid)
    if not response:
        raise NotFoundError("Question Response", rid)
    if response.assessment_id != assessment.id:
        raise ValidationError("The response does not belong to this assessment")
    return rid


def create_ncr(s: Session, assessment: Assessment, payload: dict, user: User) -> NonConformity:
    if not can_edit_assessment(user, assessment):
        raise AuthorizationError("You do not have permission to create non-conformities for this assessment")
    ensure_editable(assessment, "create non-conformities for")

    title = json_str(payload, "title")
    description = json_str(payload, "description")
    if not title:
        raise ValidationError("Title is required")
    if not description:
        raise ValidationError("Description is required")
    severity = workflow.parse_severity(json_str(payload, "severity"))

    now = datetime.utcnow()
    ncr = NonConformity(
        assessment_id=assessment.id,
        response_id=_validate_response_link(s, assessment, payload.get("response_id")),
        title=title,
        description=description,
        severity=severity.value,
        status=NCRStatus.OPEN.value,
        root_cause=json_str(payload, "root_cause") or None,
        root_cause_method=json_str(payload, "root_cause_method") or None,
        created_by_user_id=user.id,
        created_at=now,
        updated_at=now,
    )
    s.add(ncr)
    s.flush()

    record_event(
        s,
        actor=user,
        action="ncr.create",
        entity_type="NonConformity",
        entity_id=str(ncr.id),
        metadata={"assessment_id": assessment.id, "title": title, "severity": severity.value},
    )
    return ncr


def update_ncr(s: Session, ncr: NonConformity, payload: dict, user: User) -> NonConformity:
    """Edit descriptive fields and root cause; a ``status`` key goes through the lifecycle."""
    assessment = ncr.assessment
    if not can_edit_assessment(user, assessment):
        raise AuthorizationError("You do not have permission to update this non-conformity")
    ensure_editable(assessment, "update non-conformities for")
    if ncr.status == NCRStatus.CLOSED.value:
        raise ValidationError("Cannot update a closed non-conformity")

    changes: dict[str, Any] = {}
    for field in ("title", "description"):
        if field in payload:
            new = json_str(payload, field)
            if not new:
                raise ValidationError(f"{field.capitalize()} cannot be empty")
            if new != getattr(ncr, field):
                changes[field] = {"old": getattr(ncr, field), "new": new}
                setattr(ncr, field, new)
    if json_str(payload, "severity"):
        severity = workflow.parse_severity(payload["severity"]).value
        if severity != ncr.severity:
            changes["severity"] = {"old": ncr.severity, "new": severity}
            ncr.severity = severity
    for field in ("root_cause", "root_cause_method"):
        if field in payload:
            new = json_str(payload, field) or None
            if new != getattr(ncr, field):
                changes[field] = {"old": getattr(ncr, field), "new": new}
                setattr(ncr, field, new)
    if "response_id" in payload:
        ncr.response_id = _validate_response_link(s, assessment, payload.get("response_id"))

    ncr.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="ncr.edit",
        entity_type="NonConformity",
        entity_id=str(ncr.id),
        metadata={"title": ncr.title, "changes": changes},
    )

    new_status = json_str(payload, "status")
    if new_status and new_status.upper() != ncr.status:
        transition_ncr_status(s, ncr, new_status, user)
    return ncr


def delete_ncr(s: Session, ncr: NonConformity, user: User) -> None:
    if not user_has_permission(user, "ncr.delete"):
        raise AuthorizationError("Only system administrators and quality managers can delete non-conformities")
    ensure_editable(ncr.assessment, "delete non-conformities from")
    if ncr.corrective_actions:
        raise ValidationError(
            "Cannot delete a non-conformity that has corrective actions. Delete the corrective actions first."
        )
    if ncr.status == NCRStatus.CLOSED.value:
        raise ValidationError("Cannot delete a closed non-conformity")

    record_event(
        s,
        actor=user,
        action="ncr.delete",
        entity_type="NonConformity",
        entity_id=str(ncr.id),
        metadata={"assessment_id": ncr.assessment_id, "title": ncr.title},
    )
    summary_cache().invalidate(ncr.id)
    s.delete(ncr)


# ---------- NCR lifecycle ----------
def transition_ncr_status(
    s: Session,
    ncr: NonConformity,
    new_status: str,
    user: User,
    *,
    reason: str | None = None,
    root_cause: str | None = None,
) -> NonConformity:
    """Move an NCR along its lifecycle; closing requires verified actions and a root cause."""
    if not can_edit_assessment(user, ncr.assessment):
        raise AuthorizationError("You do not have permission to change the status of this non-conformity")

    target = workflow.transition_ncr(ncr.status, new_status, [a.status for a in ncr.corrective_actions])

    if root_cause is not None and root_cause.strip():
        ncr.root_cause = root_cause.strip()
    if target is NCRStatus.CLOSED and not (ncr.root_cause or "").strip():
        raise ValidationError("A root cause must be documented before closing a non-conformity")

    old_status = ncr.status
    now = datetime.utcnow()
    ncr.status = target.value
    ncr.closed_at = now if target is NCRStatus.CLOSED else None
    ncr.updated_at = now
    summary_cache().invalidate(ncr.id)

    record_event(
        s,
        actor=user,
        action="ncr.status_change",
        entity_type="NonConformity",
        entity_id=str(ncr.id),
        reason=reason,
        metadata={"title": ncr.title, "from": old_status, "to": target.value},
    )
    logger.info("NCR %s moved %s -> %s by user=%s", ncr.id, old_status, target.value, user.id)
    return ncr


def severity_for_score(score: int) -> Severity:
    return Severity.MINOR if score == FAILING_SCORE_MAX else Severity.MAJOR


def create_from_failing_responses(s: Session, assessment: Assessment, user: User) -> list[NonConformity]:
    """One OPEN NCR per submitted failing response that has no NCR yet."""
    if not can_edit_assessment(user, assessment):
        raise AuthorizationError("You do not have permission to create non-conformities for this assessment")
    ensure_editable(assessment, "create non-conformities for")

    failing = (
        s.query(QuestionResponse)
        .filter(
            QuestionResponse.assessment_id == assessment.id,
            QuestionResponse.is_draft.is_(False),
            QuestionResponse.score.isnot(None),
            QuestionResponse.score <= FAILING_SCORE_MAX,
            ~QuestionResponse.non_conformities.any(),
        )
        .order_by(QuestionResponse.question_id.asc())
        .all()
    )

    now = datetime.utcnow()
    created: list[NonConformity] = []
    for response in failing:
        question = response.question
        section_info = (
            f"{response.section.section_number} {response.section.title}" if response.section else "Unknown Section"
        )
        ncr = NonConformity(
            assessment_id=assessment.id,
            response_id=response.id,
            title=f"Non-Compliance: {question.question_number}",
            description=(
                f"Non-compliance identified for question {question.question_number} in {section_info}.\n\n"
                f"Question: {question.question_text}"
            ),
            severity=severity_for_score(response.score).value,
            status=NCRStatus.OPEN.value,
            created_by_user_id=user.id,
            created_at=now,
            updated_at=now,
        )
        s.add(ncr)
        created.append(ncr)
    s.flush()

    if created:
        record_event(
            s,
            actor=user,
            action="ncr.create_from_responses",
            entity_type="Assessment",
            entity_id=str(assessment.id),
            metadata={"created": len(created), "ncr_ids": [n.id for n in created]},
        )
    return created


def ncr_summary(s: Session, assessment: Assessment) -> dict[str, Any]:
    rows = s.query(NonConformity.status, NonConformity.severity).filter(
        NonConformity.assessment_id == assessment.id
    ).all()
    by_status = Counter(status for status, _ in rows)
    by_severity = Counter(severity for _, severity in rows)
    return {
        "total": len(rows),
        "by_status": {st.value: by_status.get(st.value, 0) for st in NCRStatus},
        "by_severity": {sv.value: by_severity.get(sv.value, 0) for sv in Severity},
        "open_count": by_status.get(NCRStatus.OPEN.value, 0) + by_status.get(NCRStatus.IN_PROGRESS.value, 0),
        "closed_count": by_status.get(NCRStatus.CLOSED.value, 0),
    }


# ---------- Corrective actions ----------
def _ensure_action_manager(user: User, action_or_ncr: CorrectiveAction | NonConformity, what: str) -> None:
    ncr = action_or_ncr.non_conformity if isinstance(action_or_ncr, CorrectiveAction) else action_or_ncr
    if not can_edit_assessment(user, ncr.assessment):
        raise AuthorizationError(f"You do not have permission to {what} this corrective action")


def create_action(s: Session, ncr: NonConformity, payload: dict, user: User) -> CorrectiveAction:
    if not can_edit_assessment(user, ncr.assessment):
        raise AuthorizationError("You do not have permission to create corrective actions")
    ensure_editable(ncr.assessment, "create corrective actions for")
    if ncr.status == NCRStatus.CLOSED.value:
        raise ValidationError("Cannot create corrective actions for a closed non-conformity")

    description = json_str(payload, "description")
    if not description:
        raise ValidationError("Description is required")
    priority = workflow.parse_priority(json_str(payload, "priority") or Priority.MEDIUM.value)
    assignee = _assignee(s, payload.get("assigned_to_id"), ncr.assessment.organization_id)

    now = datetime.utcnow()
    action = CorrectiveAction(
        non_conformity_id=ncr.id,
        description=description,
        status=ActionStatus.PENDING.value,
        priority=priority.value,
        target_date=parse_date(payload.get("target_date"), "target_date"),
        assigned_to=assignee,
        created_at=now,
        updated_at=now,
    )
    ncr.corrective_actions.append(action)
    s.flush()
    summary_cache().invalidate(ncr.id)

    record_event(
        s,
        actor=user,
        action="corrective_action.create",
        entity_type="CorrectiveAction",
        entity_id=str(action.id),
        metadata={"ncr_id": ncr.id, "priority": priority.value, "assigned_to_id": action.assigned_to_id},
    )
    return action


def update_action(s: Session, action: CorrectiveAction, payload: dict, user: User) -> CorrectiveAction:
    _ensure_action_manager(user, action, "update")
    ensure_editable(action.non_conformity.assessment, "update corrective actions for")
    if action.status == ActionStatus.VERIFIED.value:
        raise ValidationError("Cannot update a verified corrective action")

    changes: dict[str, Any] = {}
    if "description" in payload:
        description = json_str(payload, "description")
        if not description:
            raise ValidationError("Description cannot be empty")
        if description != action.description:
            changes["description"] = {"old": action.description, "new": description}
            action.description = description
    if json_str(payload, "priority"):
        priority = workflow.parse_priority(payload["priority"]).value
        if priority != action.priority:
            changes["priority"] = {"old": action.priority, "new": priority}
            action.priority = priority
    if "target_date" in payload:
        target = parse_date(payload.get("target_date"), "target_date")
        if target != action.target_date:
            changes["target_date"] = {"old": iso(action.target_date), "new": iso(target)}
            action.target_date = target
    if "assigned_to_id" in payload:
        assignee = _assignee(s, payload.get("assigned_to_id"), action.non_conformity.assessment.organization_id)
        action.assigned_to_id = assignee.id if assignee else None
        action.assigned_to = assignee
        changes["assigned_to_id"] = action.assigned_to_id

    action.updated_at = datetime.utcnow()
    summary_cache().invalidate(action.non_conformity_id)
    record_event(
        s,
        actor=user,
        action="corrective_action.edit",
        entity_type="CorrectiveAction",
        entity_id=str(action.id),
        metadata={"ncr_id": action.non_conformity_id, "changes": changes},
    )

    new_status = json_str(payload, "status")
    if new_status and new_status.upper() != action.status:
        change_action_status(s, action, new_status, user)
    return action


def delete_action(s: Session, action: CorrectiveAction, user: User) -> None:
    if not user_has_permission(user, "actions.delete"):
        raise AuthorizationError("Only system administrators and quality managers can delete corrective actions")
    ncr = action.non_conformity
    ensure_editable(ncr.assessment, "delete corrective actions from")
    if ncr.status == NCRStatus.CLOSED.value:
        raise ValidationError("Cannot delete corrective actions from a closed non-conformity")
    if action.status == ActionStatus.VERIFIED.value:
        raise ValidationError("Cannot delete a verified corrective action")

    record_event(
        s,
        actor=user,
        action="corrective_action.delete",
        entity_type="CorrectiveAction",
        entity_id=str(action.id),
        metadata={"ncr_id": ncr.id, "description": action.description},
    )
    ncr.corrective_actions.remove(action)
    s.delete(action)
    summary_cache().invalidate(ncr.id)


def change_action_status(s: Session, action: CorrectiveAction, new_status: str, user: User) -> CorrectiveAction:
    """Plain status change; VERIFIED is only reachable through ``verify_action``."""
    _ensure_action_manager(user, action, "update the status of")

    target = workflow.transition_action(action.status, new_status)

    old_status = action.status
    now = datetime.utcnow()
    action.status = target.value
    if target is ActionStatus.COMPLETED:
        action.completed_date = now
    elif old_status == ActionStatus.COMPLETED.value:
        action.completed_date = None
    action.updated_at = now
    summary_cache().invalidate(action.non_conformity_id)

    record_event(
        s,
        actor=user,
        action="corrective_action.status_change",
        entity_type="CorrectiveAction",
        entity_id=str(action.id),
        metadata={"ncr_id": action.non_conformity_id, "from": old_status, "to": target.value},
    )
    return action


def verify_action(
    s: Session,
    action: CorrectiveAction,
    user: User,
    effectiveness_notes: str | None = None,
) -> CorrectiveAction:
    if not can_verify_actions(user, action.non_conformity.assessment):
        raise AuthorizationError(
            "You do not have permission to verify corrective actions. "
            "Only lead auditors, quality managers, or system administrators can verify actions."
        )

    target = workflow.verify_action(action.status)

    now = datetime.utcnow()
    action.status = target.value
    action.verified_by_id = user.id
    action.verified_by = user
    action.verified_date = now
    action.effectiveness_notes = (effectiveness_notes or "").strip() or None
    action.updated_at = now
    summary_cache().invalidate(action.non_conformity_id)

    record_event(
        s,
        actor=user,
        action="corrective_action.verify",
        entity_type="CorrectiveAction",
        entity_id=str(action.id),
        reason=action.effectiveness_notes,
        metadata={"ncr_id": action.non_conformity_id},
    )
    return action


def assign_action(s: Session, action: CorrectiveAction, assigned_to_id: Any, user: User) -> CorrectiveAction:
    _ensure_action_manager(user, action, "assign")
    ensure_editable(action.non_conformity.assessment, "assign corrective actions for")
    if action.status == ActionStatus.VERIFIED.value:
        raise ValidationError("Cannot assign a verified corrective action")
    if assigned_to_id in (None, ""):
        raise ValidationError("assigned_to_id is required")

    assignee = _assignee(s, assigned_to_id, action.non_conformity.assessment.organization_id)
    previous = action.assigned_to_id
    action.assigned_to_id = assignee.id
    action.assigned_to = assignee
    action.updated_at = datetime.utcnow()
    summary_cache().invalidate(action.non_conformity_id)

    record_event(
        s,
        actor=user,
        action="corrective_action.assign",
        entity_type="CorrectiveAction",
        entity_id=str(action.id),
        metadata={"ncr_id": action.non_conformity_id, "from": previous, "to": assignee.id},
    )
    return action


def is_overdue(action: CorrectiveAction, today: date | None = None) -> bool:
    today = today or utc_today()
    return (
        action.target_date is not None
        and action.target_date < today
        and action.status not in DONE_ACTION_STATUSES
    )


def compute_action_summary(actions: list[CorrectiveAction], today: date | None = None) -> dict[str, Any]:
    by_status = Counter(a.status for a in actions)
    by_priority = Counter(a.priority for a in actions)
    return {
        "total": len(actions),
        "by_status": {st.value: by_status.get(st.value, 0) for st in ActionStatus},
        "by_priority": {p.value: by_priority.get(p.value, 0) for p in Priority},
        "overdue_count": sum(1 for a in actions if is_overdue(a, today)),
        "completed_count": sum(by_status.get(st, 0) for st in DONE_ACTION_STATUSES),
        "pending_count": sum(by_status.get(st, 0) for st in OPEN_ACTION_STATUSES),
    }


def action_summary(ncr: NonConformity) -> dict[str, Any]:
    actions = list(ncr.corrective_actions)
    today = utc_today()
    stamp = summary_stamp(actions, today)
    cache = summary_cache()
    cached = cache.get(ncr.id, stamp)
    if cached is not None:
        return cached
    summary = compute_action_summary(actions, today)
    cache.set(ncr.id, stamp, summary)
    return summary


# ---------- Serialization ----------
def serialize_action(a: CorrectiveAction) -> dict[str, Any]:
    return {
        "id": a.id,
        "non_conformity_id": a.non_conformity_id,
        "description": a.description,
        "status": a.status,
        "priority": a.priority,
        "target_date": iso(a.target_date),
        "completed_date": iso(a.completed_date),
        "verified_date": iso(a.verified_date),
        "effectiveness_notes": a.effectiveness_notes,
        "assigned_to": user_ref(a.assigned_to),
        "verified_by": user_ref(a.verified_by),
        "is_overdue": is_overdue(a),
        "allowed_transitions": sorted(st.value for st in workflow.plain_action_targets(a.status)),
        "can_verify": a.status == ActionStatus.COMPLETED.value,
        "created_at": iso(a.created_at),
        "updated_at": iso(a.updated_at),
    }


def serialize_ncr(n: NonConformity, *, include_actions: bool = False) -> dict[str, Any]:
    response = n.response
    data: dict[str, Any] = {
        "id": n.id,
        "assessment": {"id": n.assessment.id, "title": n.assessment.title, "status": n.assessment.status},
        "response": (
            {
                "id": response.id,
                "score": response.score,
                "question": {
                    "id": response.question.id,
                    "question_number": response.question.question_number,
                    "question_text": response.question.question_text,
                },
            }
            if response is not None
            else None
        ),
        "title": n.title,
        "description": n.description,
        "severity": n.severity,
        "status": n.status,
        "root_cause": n.root_cause,
        "root_cause_method": n.root_cause_method,
        "allowed_transitions": sorted(st.value for st in workflow.ncr_targets(n.status)),
        "action_count": len(n.corrective_actions),
        "created_at": iso(n.created_at),
        "updated_at": iso(n.updated_at),
        "closed_at": iso(n.closed_at),
    }
    if include_actions:
        data["corrective_actions"] = [serialize_action(a) for a in n.corrective_actions]
    return data
