"""
Assessments service layer.
Handles assessment CRUD, status transitions, team membership, responses and
score recalculation.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.qms.api import iso, json_bool, json_str, parse_date, user_ref
from app.qms.audit import record_event
from app.qms.constants import JUSTIFICATION_REQUIRED_BELOW, MAX_SCORE, MIN_SCORE
from app.qms.errors import AuthorizationError, NotFoundError, ValidationError
from app.qms.models import User
from app.qms.rbac import user_has_permission

from .models import Assessment, AssessmentTeamMember, QuestionResponse

if TYPE_CHECKING:
    from app.qms.modules.standards.models import AuditQuestion

logger = logging.getLogger(__name__)

# Valid statuses
VALID_STATUSES = {"DRAFT", "IN_PROGRESS", "UNDER_REVIEW", "COMPLETED", "ARCHIVED"}
READ_ONLY_STATUSES = {"COMPLETED", "ARCHIVED"}

# Valid status transitions
STATUS_TRANSITIONS = {
    "DRAFT": {"IN_PROGRESS", "ARCHIVED"},
    "IN_PROGRESS": {"UNDER_REVIEW", "DRAFT", "ARCHIVED"},
    "UNDER_REVIEW": {"COMPLETED", "IN_PROGRESS", "ARCHIVED"},
    "COMPLETED": {"ARCHIVED"},
    "ARCHIVED": {"DRAFT"},
}

AUDIT_TYPES = {"INTERNAL", "EXTERNAL", "SURVEILLANCE", "CERTIFICATION"}


# ---------- Access ----------
def can_edit_assessment(user: User, assessment: Assessment) -> bool:
    """Managers edit anything; the lead auditor and contributing team members edit their own."""
    if user.organization_id != assessment.organization_id:
        return False
    if user_has_permission(user, "assessments.manage"):
        return True
    if assessment.lead_auditor_id == user.id:
        return True
    return assessment.is_team_member(user.id) and user_has_permission(user, "assessments.contribute")


def can_verify_actions(user: User, assessment: Assessment) -> bool:
    """Only the lead auditor or holders of actions.verify may verify corrective actions."""
    if user.organization_id != assessment.organization_id:
        return False
    return user_has_permission(user, "actions.verify") or assessment.lead_auditor_id == user.id


def ensure_editable(assessment: Assessment, what: str = "modify") -> None:
    if assessment.status in READ_ONLY_STATUSES:
        raise ValidationError(f"Cannot {what} a completed or archived assessment")


def get_assessment(s: Session, assessment_id: int, organization_id: int) -> Assessment:
    assessment = s.get(Assessment, assessment_id)
    if not assessment or assessment.organization_id != organization_id:
        raise NotFoundError("Assessment", assessment_id)
    return assessment


def _validate_team(s: Session, organization_id: int, user_ids: list[Any]) -> list[User]:
    try:
        ids = sorted({int(x) for x in user_ids})
    except (TypeError, ValueError):
        raise ValidationError("team_member_ids must be a list of user ids")
    if not ids:
        return []
    users = (
        s.query(User)
        .filter(User.id.in_(ids), User.organization_id == organization_id, User.is_active.is_(True))
        .all()
    )
    if len(users) != len(ids):
        raise ValidationError("One or more team members are invalid")
    return users


# ---------- CRUD ----------
def validate_assessment_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate assessment creation/update payload. Returns list of errors."""
    errors = []
    if not partial or "title" in payload:
        if not json_str(payload, "title"):
            errors.append("Title is required.")
    audit_type = json_str(payload, "audit_type").upper()
    if audit_type and audit_type not in AUDIT_TYPES:
        errors.append(f"Invalid audit_type. Must be one of: {', '.join(sorted(AUDIT_TYPES))}")
    objectives = payload.get("objectives")
    if objectives is not None and not isinstance(objectives, list):
        errors.append("objectives must be a list.")
    return errors


def create_assessment(s: Session, payload: dict, user: User) -> Assessment:
    """Create a new assessment led by ``user``."""
    from app.qms.modules.standards.service import get_template

    errors = validate_assessment_payload(payload)
    if errors:
        raise ValidationError("; ".join(errors))

    template_id = json_str(payload, "template_id") or None
    if template_id:
        get_template(s, template_id, user.organization_id)

    team = _validate_team(s, user.organization_id, payload.get("team_member_ids") or [])

    now = datetime.utcnow()
    assessment = Assessment(
        organization_id=user.organization_id,
        title=json_str(payload, "title"),
        description=json_str(payload, "description") or None,
        audit_type=json_str(payload, "audit_type").upper() or "INTERNAL",
        scope=json_str(payload, "scope") or None,
        objectives=payload.get("objectives") or [],
        scheduled_date=parse_date(payload.get("scheduled_date"), "scheduled_date"),
        due_date=parse_date(payload.get("due_date"), "due_date"),
        lead_auditor_id=user.id,
        template_id=template_id,
        status="DRAFT",
        created_at=now,
        updated_at=now,
    )
    for member in team:
        assessment.team_members.append(AssessmentTeamMember(user_id=member.id, role="AUDITOR"))
    s.add(assessment)
    s.flush()

    record_event(
        s,
        actor=user,
        action="assessment.create",
        entity_type="Assessment",
        entity_id=str(assessment.id),
        metadata={"title": assessment.title, "template_id": template_id, "team": [m.id for m in team]},
    )
    return assessment


def list_assessments(
    s: Session,
    organization_id: int,
    *,
    statuses: list[str] | None = None,
    lead_auditor_id: int | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Assessment], int]:
    q = s.query(Assessment).filter(Assessment.organization_id == organization_id)
    if statuses:
        q = q.filter(Assessment.status.in_(statuses))
    if lead_auditor_id:
        q = q.filter(Assessment.lead_auditor_id == lead_auditor_id)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Assessment.title.ilike(like), Assessment.description.ilike(like)))
    total = q.count()
    items = q.order_by(Assessment.created_at.desc(), Assessment.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return items, total


def update_assessment(s: Session, assessment: Assessment, payload: dict, user: User) -> Assessment:
    """Update non-status fields; a ``status`` key is routed through the transition table."""
    if not can_edit_assessment(user, assessment):
        raise AuthorizationError("You do not have permission to edit this assessment")
    if set(payload) - {"status"}:
        ensure_editable(assessment)

    errors = validate_assessment_payload(payload, partial=True)
    if errors:
        raise ValidationError("; ".join(errors))

    changes: dict[str, Any] = {}
    for field in ("title", "description", "scope"):
        if field in payload:
            new = json_str(payload, field) or None
            if new != getattr(assessment, field):
                changes[field] = {"old": getattr(assessment, field), "new": new}
                setattr(assessment, field, new)
    new_type = json_str(payload, "audit_type").upper()
    if new_type and new_type != assessment.audit_type:
        changes["audit_type"] = {"old": assessment.audit_type, "new": new_type}
        assessment.audit_type = new_type
    if "objectives" in payload:
        assessment.objectives = payload.get("objectives") or []
    for field in ("scheduled_date", "due_date"):
        if field in payload:
            new_date = parse_date(payload.get(field), field)
            if new_date != getattr(assessment, field):
                changes[field] = {"old": iso(getattr(assessment, field)), "new": iso(new_date)}
                setattr(assessment, field, new_date)
    if "team_member_ids" in payload:
        team = _validate_team(s, assessment.organization_id, payload.get("team_member_ids") or [])
        wanted = {m.id for m in team}
        assessment.team_members[:] = [tm for tm in assessment.team_members if tm.user_id in wanted]
        present = {tm.user_id for tm in assessment.team_members}
        for member_id in sorted(wanted - present):
            assessment.team_members.append(AssessmentTeamMember(user_id=member_id, role="AUDITOR"))
        changes["team_member_ids"] = sorted(wanted)

    assessment.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="assessment.edit",
        entity_type="Assessment",
        entity_id=str(assessment.id),
        metadata={"title": assessment.title, "changes": changes},
    )

    new_status = json_str(payload, "status")
    if new_status and new_status.upper() != assessment.status:
        change_assessment_status(s, assessment, new_status, user)
    return assessment


def change_assessment_status(
    s: Session,
    assessment: Assessment,
    new_status: str,
    user: User,
    reason: str | None = None,
) -> Assessment:
    """Change assessment status with validation."""
    if not can_edit_assessment(user, assessment):
        raise AuthorizationError("You do not have permission to change the status of this assessment")

    new_status = (new_status or "").strip().upper()
    if new_status not in VALID_STATUSES:
        raise ValidationError(f"Invalid status: {new_status}")
    if new_status not in STATUS_TRANSITIONS[assessment.status]:
        raise ValidationError(f"Cannot transition from {assessment.status} to {new_status}")

    old_status = assessment.status
    assessment.status = new_status
    if new_status == "COMPLETED":
        # Final scores are frozen at completion.
        calculate_scores(s, assessment)
        assessment.completed_date = datetime.utcnow()
    elif old_status == "ARCHIVED" and new_status == "DRAFT":
        assessment.completed_date = None
    assessment.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="assessment.status_change",
        entity_type="Assessment",
        entity_id=str(assessment.id),
        reason=reason,
        metadata={"title": assessment.title, "from": old_status, "to": new_status},
    )
    return assessment


def archive_assessment(s: Session, assessment: Assessment, user: User) -> Assessment:
    """Soft delete: archive instead of removing rows."""
    if not user_has_permission(user, "assessments.delete"):
        raise AuthorizationError("You do not have permission to delete assessments")
    if assessment.status == "ARCHIVED":
        return assessment
    old_status = assessment.status
    assessment.status = "ARCHIVED"
    assessment.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="assessment.archive",
        entity_type="Assessment",
        entity_id=str(assessment.id),
        metadata={"title": assessment.title, "from": old_status},
    )
    return assessment


def clone_assessment(s: Session, original: Assessment, user: User, title: str | None = None) -> Assessment:
    """Start a follow-up assessment with the same scope and team; responses are not copied."""
    new_title = (title or "").strip() or f"{original.title} (copy)"
    now = datetime.utcnow()
    cloned = Assessment(
        organization_id=original.organization_id,
        title=new_title,
        description=original.description,
        audit_type=original.audit_type,
        scope=original.scope,
        objectives=list(original.objectives or []),
        lead_auditor_id=user.id,
        template_id=original.template_id,
        previous_assessment_id=original.id,
        status="DRAFT",
        created_at=now,
        updated_at=now,
    )
    for tm in original.team_members:
        if tm.user_id != user.id:
            cloned.team_members.append(AssessmentTeamMember(user_id=tm.user_id, role=tm.role))
    s.add(cloned)
    s.flush()
    record_event(
        s,
        actor=user,
        action="assessment.clone",
        entity_type="Assessment",
        entity_id=str(cloned.id),
        metadata={"source_id": original.id, "title": cloned.title},
    )
    return cloned


# ---------- Scores ----------
def calculate_scores(s: Session, assessment: Assessment) -> dict[str, Any]:
    """Recompute overall and per-section compliance from submitted (non-draft) responses."""
    from app.qms.modules.dashboard.aggregation import ResponseRow, overall_compliance, section_breakdown
    from app.qms.modules.dashboard.service import load_section_refs

    rows = [
        ResponseRow(question_id=qid, score=score)
        for qid, score in s.query(QuestionResponse.question_id, QuestionResponse.score)
        .filter(QuestionResponse.assessment_id == assessment.id, QuestionResponse.is_draft.is_(False))
        .all()
    ]
    refs = load_section_refs(s, assessment.template)
    in_scope = set().union(*(r.question_ids for r in refs)) if refs else set()
    scoped_rows = [r for r in rows if r.question_id in in_scope]

    breakdown = [b.to_dict() for b in section_breakdown(refs, scoped_rows)]
    overall = overall_compliance(scoped_rows)
    assessment.overall_score = overall
    assessment.section_scores = breakdown
    logger.debug("Scores recalculated assessment=%s overall=%s rows=%d", assessment.id, overall, len(scoped_rows))
    return {"overall_score": overall, "section_scores": breakdown}


def scoped_question_ids(s: Session, assessment: Assessment) -> set[int]:
    """Active question ids covered by the assessment's template."""
    from app.qms.modules.dashboard.service import load_section_refs

    refs = load_section_refs(s, assessment.template)
    return set().union(*(r.question_ids for r in refs)) if refs else set()


# ---------- Responses ----------
def validate_score(score: Any, question_ref: object | None = None) -> int | None:
    if score is None or score == "":
        return None
    if isinstance(score, bool):
        raise ValidationError("Score must be an integer")
    try:
        value = int(score)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError("Score must be an integer")
    if value != score and str(value) != str(score).strip():
        raise ValidationError("Score must be an integer")
    if not MIN_SCORE <= value <= MAX_SCORE:
        suffix = f" (question {question_ref})" if question_ref is not None else ""
        raise ValidationError(f"Score must be between {MIN_SCORE} and {MAX_SCORE}{suffix}")
    return value


def _validate_response_payload(item: dict) -> tuple[int, int | None, bool]:
    if not isinstance(item, dict):
        raise ValidationError("Each response must be an object")
    try:
        question_id = int(item.get("question_id"))
    except (TypeError, ValueError):
        raise ValidationError("question_id is required")
    score = validate_score(item.get("score"), question_id)
    is_draft = json_bool(item, "is_draft", True)
    justification = json_str(item, "justification")
    if not is_draft and score is not None and score < JUSTIFICATION_REQUIRED_BELOW and not justification:
        raise ValidationError(
            f"Justification is required for question {question_id} with score {score}"
        )
    return question_id, score, is_draft


def _apply_response(
    s: Session,
    assessment: Assessment,
    question: "AuditQuestion",
    item: dict,
    score: int | None,
    is_draft: bool,
    user: User,
) -> QuestionResponse:
    response = (
        s.query(QuestionResponse)
        .filter(QuestionResponse.assessment_id == assessment.id, QuestionResponse.question_id == question.id)
        .one_or_none()
    )
    now = datetime.utcnow()
    if response is None:
        response = QuestionResponse(
            assessment_id=assessment.id,
            question_id=question.id,
            section_id=question.section_id,
            created_at=now,
        )
        s.add(response)
    response.score = score
    response.justification = json_str(item, "justification") or None
    response.is_draft = is_draft
    response.action_proposal = json_str(item, "action_proposal") or None
    response.conclusion = json_str(item, "conclusion") or None
    response.user_id = user.id
    response.updated_at = now
    return response


def upsert_response(s: Session, assessment: Assessment, item: dict, user: User) -> QuestionResponse:
    """Create or update the response to one question and recalculate scores."""
    from app.qms.modules.standards.models import AuditQuestion

    if not can_edit_assessment(user, assessment):
        raise AuthorizationError("You do not have permission to edit responses for this assessment")
    ensure_editable(assessment, "modify responses for")

    question_id, score, is_draft = _validate_response_payload(item)
    question = s.get(AuditQuestion, question_id)
    if not question:
        raise NotFoundError("Audit Question", question_id)

    response = _apply_response(s, assessment, question, item, score, is_draft, user)
    s.flush()
    # A response demoted to draft must drop out of the scores too.
    calculate_scores(s, assessment)
    return response


def bulk_upsert_responses(s: Session, assessment: Assessment, items: list[dict], user: User) -> list[QuestionResponse]:
    """Validate every item first, then apply them all in the caller's transaction."""
    from app.qms.modules.standards.models import AuditQuestion

    if not can_edit_assessment(user, assessment):
        raise AuthorizationError("You do not have permission to edit responses for this assessment")
    ensure_editable(assessment, "modify responses for")
    if not isinstance(items, list) or not items:
        raise ValidationError("responses must be a non-empty list")

    # Last entry wins when a question appears twice.
    validated = list({v[1]: v for v in ((item, *_validate_response_payload(item)) for item in items)}.values())
    question_ids = {qid for _, qid, _, _ in validated}
    questions = {q.id: q for q in s.query(AuditQuestion).filter(AuditQuestion.id.in_(question_ids)).all()}
    missing = sorted(question_ids - set(questions))
    if missing:
        raise ValidationError(f"Invalid question IDs: {', '.join(str(m) for m in missing)}")

    results = [
        _apply_response(s, assessment, questions[qid], item, score, is_draft, user)
        for item, qid, score, is_draft in validated
    ]
    s.flush()
    calculate_scores(s, assessment)
    record_event(
        s,
        actor=user,
        action="assessment.responses_bulk_update",
        entity_type="Assessment",
        entity_id=str(assessment.id),
        metadata={"count": len(results)},
    )
    return results


def list_responses(
    s: Session,
    assessment: Assessment,
    *,
    section_id: int | None = None,
    is_draft: bool | None = None,
    has_score: bool | None = None,
) -> tuple[list[QuestionResponse], dict[str, Any]]:
    q = s.query(QuestionResponse).filter(QuestionResponse.assessment_id == assessment.id)
    if section_id:
        q = q.filter(QuestionResponse.section_id == section_id)
    if is_draft is not None:
        q = q.filter(QuestionResponse.is_draft.is_(is_draft))
    if has_score is not None:
        q = q.filter(QuestionResponse.score.isnot(None) if has_score else QuestionResponse.score.is_(None))
    responses = q.order_by(QuestionResponse.question_id.asc()).all()
    return responses, progress_summary(s, assessment)


def progress_summary(s: Session, assessment: Assessment) -> dict[str, Any]:
    """Progress over in-scope questions; responses to questions outside the template are ignored."""
    in_scope = scoped_question_ids(s, assessment)
    rows = [
        (qid, score, is_draft)
        for qid, score, is_draft in s.query(
            QuestionResponse.question_id, QuestionResponse.score, QuestionResponse.is_draft
        ).filter(QuestionResponse.assessment_id == assessment.id)
        if qid in in_scope
    ]
    total_questions = len(in_scope)
    answered = sum(1 for _, score, _ in rows if score is not None)
    drafts = sum(1 for _, _, is_draft in rows if is_draft)
    return {
        "total_questions": total_questions,
        "answered_count": answered,
        "draft_count": drafts,
        "progress": round(answered / total_questions * 100) if total_questions else 0,
    }


# ---------- Serialization ----------
def serialize_assessment(a: Assessment, *, detail: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": a.id,
        "organization_id": a.organization_id,
        "title": a.title,
        "description": a.description,
        "status": a.status,
        "audit_type": a.audit_type,
        "scope": a.scope,
        "objectives": a.objectives or [],
        "scheduled_date": iso(a.scheduled_date),
        "due_date": iso(a.due_date),
        "completed_date": iso(a.completed_date),
        "overall_score": a.overall_score,
        "template": {"id": a.template.id, "name": a.template.name} if a.template else None,
        "previous_assessment_id": a.previous_assessment_id,
        "lead_auditor": user_ref(a.lead_auditor),
        "created_at": iso(a.created_at),
        "updated_at": iso(a.updated_at),
    }
    if detail:
        data["section_scores"] = a.section_scores or []
        data["team_members"] = [{"role": tm.role, "user": user_ref(tm.user)} for tm in a.team_members]
        data["allowed_transitions"] = sorted(STATUS_TRANSITIONS.get(a.status, set()))
    return data


def serialize_response(r: QuestionResponse) -> dict[str, Any]:
    return {
        "id": r.id,
        "assessment_id": r.assessment_id,
        "question": {
            "id": r.question.id,
            "question_number": r.question.question_number,
            "question_text": r.question.question_text,
        },
        "section": (
            {"id": r.section.id, "section_number": r.section.section_number, "title": r.section.title}
            if r.section
            else None
        ),
        "score": r.score,
        "justification": r.justification,
        "is_draft": r.is_draft,
        "action_proposal": r.action_proposal,
        "conclusion": r.conclusion,
        "user_id": r.user_id,
        "updated_at": iso(r.updated_at),
    }
