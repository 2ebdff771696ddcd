"""
Assessment routes.
Handles assessments, status workflow, cloning and question responses.
"""
from __future__ import annotations

from flask import Blueprint, request
from sqlalchemy.orm import Session

from app.qms.api import arg_int, current_user, json_body, json_str, ok, page_args, pagination_meta
from app.qms.audit import entity_history, serialize_event
from app.qms.db import db_session
from app.qms.errors import ValidationError
from app.qms.rbac import require_permission

from .service import (
    VALID_STATUSES,
    archive_assessment,
    bulk_upsert_responses,
    change_assessment_status,
    clone_assessment,
    create_assessment,
    get_assessment,
    list_assessments,
    list_responses,
    progress_summary,
    serialize_assessment,
    serialize_response,
    update_assessment,
    upsert_response,
)

bp = Blueprint("assessments", __name__)


def _arg_bool(name: str) -> bool | None:
    raw = (request.args.get(name) or "").strip().lower()
    if not raw:
        return None
    if raw in ("1", "true", "yes"):
        return True
    if raw in ("0", "false", "no"):
        return False
    raise ValidationError(f"{name} must be true or false.")


# ---------- Assessments ----------
@bp.get("/assessments")
@require_permission("assessments.view")
def assessment_list():
    s: Session = db_session()
    page, limit = page_args()
    statuses = [st.strip().upper() for st in (request.args.get("status") or "").split(",") if st.strip()]
    unknown = [st for st in statuses if st not in VALID_STATUSES]
    if unknown:
        raise ValidationError(f"Invalid status filter: {', '.join(unknown)}")
    items, total = list_assessments(
        s,
        current_user().organization_id,
        statuses=statuses or None,
        lead_auditor_id=arg_int("lead_auditor_id"),
        search=(request.args.get("search") or "").strip() or None,
        page=page,
        limit=limit,
    )
    return ok([serialize_assessment(a) for a in items], pagination=pagination_meta(page, limit, total))


@bp.post("/assessments")
@require_permission("assessments.create")
def assessment_create():
    s: Session = db_session()
    assessment = create_assessment(s, json_body(), current_user())
    s.commit()
    return ok(serialize_assessment(assessment, detail=True), status=201)


@bp.get("/assessments/<int:assessment_id>")
@require_permission("assessments.view")
def assessment_detail(assessment_id: int):
    s: Session = db_session()
    assessment = get_assessment(s, assessment_id, current_user().organization_id)
    data = serialize_assessment(assessment, detail=True)
    data["progress"] = progress_summary(s, assessment)
    return ok(data)


@bp.patch("/assessments/<int:assessment_id>")
@require_permission("assessments.view")
def assessment_update(assessment_id: int):
    s: Session = db_session()
    user = current_user()
    assessment = get_assessment(s, assessment_id, user.organization_id)
    update_assessment(s, assessment, json_body(), user)
    s.commit()
    return ok(serialize_assessment(assessment, detail=True))


@bp.delete("/assessments/<int:assessment_id>")
@require_permission("assessments.delete")
def assessment_delete(assessment_id: int):
    s: Session = db_session()
    user = current_user()
    assessment = get_assessment(s, assessment_id, user.organization_id)
    archive_assessment(s, assessment, user)
    s.commit()
    return ok(serialize_assessment(assessment))


@bp.post("/assessments/<int:assessment_id>/clone")
@require_permission("assessments.create")
def assessment_clone(assessment_id: int):
    s: Session = db_session()
    user = current_user()
    original = get_assessment(s, assessment_id, user.organization_id)
    cloned = clone_assessment(s, original, user, json_str(json_body(), "title"))
    s.commit()
    return ok(serialize_assessment(cloned, detail=True), status=201)


@bp.post("/assessments/<int:assessment_id>/status")
@require_permission("assessments.view")
def assessment_change_status(assessment_id: int):
    s: Session = db_session()
    user = current_user()
    payload = json_body()
    new_status = json_str(payload, "status")
    if not new_status:
        raise ValidationError("status is required")
    assessment = get_assessment(s, assessment_id, user.organization_id)
    change_assessment_status(s, assessment, new_status, user, json_str(payload, "reason") or None)
    s.commit()
    return ok(serialize_assessment(assessment, detail=True))


@bp.get("/assessments/<int:assessment_id>/history")
@require_permission("assessments.view")
def assessment_history(assessment_id: int):
    s: Session = db_session()
    assessment = get_assessment(s, assessment_id, current_user().organization_id)
    events = entity_history(s, [("Assessment", assessment.id)])
    return ok([serialize_event(ev) for ev in events])


# ---------- Responses ----------
@bp.get("/assessments/<int:assessment_id>/responses")
@require_permission("assessments.view")
def response_list(assessment_id: int):
    s: Session = db_session()
    assessment = get_assessment(s, assessment_id, current_user().organization_id)
    responses, summary = list_responses(
        s,
        assessment,
        section_id=arg_int("section_id"),
        is_draft=_arg_bool("is_draft"),
        has_score=_arg_bool("has_score"),
    )
    return ok({"responses": [serialize_response(r) for r in responses], "summary": summary})


@bp.put("/assessments/<int:assessment_id>/responses")
@require_permission("assessments.view")
def response_upsert(assessment_id: int):
    s: Session = db_session()
    user = current_user()
    assessment = get_assessment(s, assessment_id, user.organization_id)
    response = upsert_response(s, assessment, json_body(), user)
    s.commit()
    return ok(serialize_response(response))


@bp.post("/assessments/<int:assessment_id>/responses/bulk")
@require_permission("assessments.view")
def response_bulk_upsert(assessment_id: int):
    s: Session = db_session()
    user = current_user()
    assessment = get_assessment(s, assessment_id, user.organization_id)
    responses = bulk_upsert_responses(s, assessment, json_body().get("responses"), user)
    s.commit()
    return ok({"responses": [serialize_response(r) for r in responses], "count": len(responses)})
