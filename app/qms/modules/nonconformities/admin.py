"""
Non-conformity and corrective-action routes.
"""
from __future__ import annotations

from flask import Blueprint, request
from sqlalchemy.orm import Session

from app.qms.api import current_user, json_body, json_str, ok, page_args, pagination_meta
from app.qms.audit import entity_history, serialize_event
from app.qms.db import db_session
from app.qms.errors import ValidationError
from app.qms.modules.assessments.service import get_assessment
from app.qms.rbac import require_permission

from .service import (
    action_summary,
    assign_action,
    change_action_status,
    create_action,
    create_from_failing_responses,
    create_ncr,
    delete_action,
    delete_ncr,
    get_action,
    get_ncr,
    list_ncrs,
    ncr_summary,
    serialize_action,
    serialize_ncr,
    transition_ncr_status,
    update_action,
    update_ncr,
    verify_action,
)
from .workflow import workflow_definition

bp = Blueprint("nonconformities", __name__)


def _list_filters() -> dict:
    return {
        "status": (request.args.get("status") or "").strip() or None,
        "severity": (request.args.get("severity") or "").strip() or None,
        "search": (request.args.get("search") or "").strip() or None,
    }


# ---------- Workflow ----------
@bp.get("/workflow")
@require_permission("ncr.view")
def workflow_tables():
    return ok(workflow_definition())


# ---------- Non-conformities ----------
@bp.get("/non-conformities")
@require_permission("ncr.view")
def ncr_list():
    s: Session = db_session()
    page, limit = page_args()
    items, total = list_ncrs(s, current_user().organization_id, page=page, limit=limit, **_list_filters())
    return ok([serialize_ncr(n) for n in items], pagination=pagination_meta(page, limit, total))


@bp.get("/assessments/<int:assessment_id>/non-conformities")
@require_permission("ncr.view")
def assessment_ncr_list(assessment_id: int):
    s: Session = db_session()
    user = current_user()
    assessment = get_assessment(s, assessment_id, user.organization_id)
    page, limit = page_args()
    items, total = list_ncrs(
        s, user.organization_id, assessment_id=assessment.id, page=page, limit=limit, **_list_filters()
    )
    return ok([serialize_ncr(n) for n in items], pagination=pagination_meta(page, limit, total))


@bp.post("/assessments/<int:assessment_id>/non-conformities")
@require_permission("ncr.view")
def assessment_ncr_create(assessment_id: int):
    s: Session = db_session()
    user = current_user()
    assessment = get_assessment(s, assessment_id, user.organization_id)
    ncr = create_ncr(s, assessment, json_body(), user)
    s.commit()
    return ok(serialize_ncr(ncr, include_actions=True), status=201)


@bp.post("/assessments/<int:assessment_id>/non-conformities/from-responses")
@require_permission("ncr.view")
def assessment_ncr_from_responses(assessment_id: int):
    s: Session = db_session()
    user = current_user()
    assessment = get_assessment(s, assessment_id, user.organization_id)
    created = create_from_failing_responses(s, assessment, user)
    s.commit()
    message = (
        f"Created {len(created)} non-conformity record(s) from failing responses"
        if created
        else "No failing responses found without existing NCRs"
    )
    return ok(
        {"created": len(created), "ncrs": [serialize_ncr(n) for n in created], "message": message},
        status=201 if created else 200,
    )


@bp.get("/assessments/<int:assessment_id>/non-conformities/summary")
@require_permission("ncr.view")
def assessment_ncr_summary(assessment_id: int):
    s: Session = db_session()
    assessment = get_assessment(s, assessment_id, current_user().organization_id)
    return ok(ncr_summary(s, assessment))


@bp.get("/non-conformities/<int:ncr_id>")
@require_permission("ncr.view")
def ncr_detail(ncr_id: int):
    s: Session = db_session()
    ncr = get_ncr(s, ncr_id, current_user().organization_id)
    return ok(serialize_ncr(ncr, include_actions=True))


@bp.patch("/non-conformities/<int:ncr_id>")
@require_permission("ncr.view")
def ncr_update(ncr_id: int):
    s: Session = db_session()
    user = current_user()
    ncr = get_ncr(s, ncr_id, user.organization_id)
    update_ncr(s, ncr, json_body(), user)
    s.commit()
    return ok(serialize_ncr(ncr, include_actions=True))


@bp.delete("/non-conformities/<int:ncr_id>")
@require_permission("ncr.delete")
def ncr_delete(ncr_id: int):
    s: Session = db_session()
    user = current_user()
    ncr = get_ncr(s, ncr_id, user.organization_id)
    delete_ncr(s, ncr, user)
    s.commit()
    return ok({"deleted": True, "id": ncr_id})


@bp.post("/non-conformities/<int:ncr_id>/transition")
@require_permission("ncr.view")
def ncr_transition(ncr_id: int):
    s: Session = db_session()
    user = current_user()
    payload = json_body()
    new_status = json_str(payload, "status")
    if not new_status:
        raise ValidationError("status is required")
    ncr = get_ncr(s, ncr_id, user.organization_id)
    transition_ncr_status(
        s,
        ncr,
        new_status,
        user,
        reason=json_str(payload, "reason") or None,
        root_cause=json_str(payload, "root_cause") or None,
    )
    s.commit()
    return ok(serialize_ncr(ncr, include_actions=True))


@bp.get("/non-conformities/<int:ncr_id>/history")
@require_permission("ncr.view")
def ncr_history(ncr_id: int):
    s: Session = db_session()
    ncr = get_ncr(s, ncr_id, current_user().organization_id)
    entities = [("NonConformity", ncr.id)] + [("CorrectiveAction", a.id) for a in ncr.corrective_actions]
    return ok([serialize_event(ev) for ev in entity_history(s, entities)])


# ---------- Corrective actions ----------
@bp.get("/non-conformities/<int:ncr_id>/actions")
@require_permission("ncr.view")
def action_list(ncr_id: int):
    s: Session = db_session()
    ncr = get_ncr(s, ncr_id, current_user().organization_id)
    actions = list(ncr.corrective_actions)
    status = (request.args.get("status") or "").strip().upper()
    if status:
        actions = [a for a in actions if a.status == status]
    return ok([serialize_action(a) for a in actions])


@bp.post("/non-conformities/<int:ncr_id>/actions")
@require_permission("ncr.view")
def action_create(ncr_id: int):
    s: Session = db_session()
    user = current_user()
    ncr = get_ncr(s, ncr_id, user.organization_id)
    action = create_action(s, ncr, json_body(), user)
    s.commit()
    return ok(serialize_action(action), status=201)


@bp.get("/non-conformities/<int:ncr_id>/actions/summary")
@require_permission("ncr.view")
def action_summary_view(ncr_id: int):
    s: Session = db_session()
    ncr = get_ncr(s, ncr_id, current_user().organization_id)
    return ok(action_summary(ncr))


@bp.get("/actions/<int:action_id>")
@require_permission("ncr.view")
def action_detail(action_id: int):
    s: Session = db_session()
    action = get_action(s, action_id, current_user().organization_id)
    return ok(serialize_action(action))


@bp.patch("/actions/<int:action_id>")
@require_permission("ncr.view")
def action_update(action_id: int):
    s: Session = db_session()
    user = current_user()
    action = get_action(s, action_id, user.organization_id)
    update_action(s, action, json_body(), user)
    s.commit()
    return ok(serialize_action(action))


@bp.delete("/actions/<int:action_id>")
@require_permission("actions.delete")
def action_delete(action_id: int):
    s: Session = db_session()
    user = current_user()
    action = get_action(s, action_id, user.organization_id)
    delete_action(s, action, user)
    s.commit()
    return ok({"deleted": True, "id": action_id})


@bp.patch("/actions/<int:action_id>/status")
@require_permission("ncr.view")
def action_change_status(action_id: int):
    s: Session = db_session()
    user = current_user()
    new_status = json_str(json_body(), "status")
    if not new_status:
        raise ValidationError("status is required")
    action = get_action(s, action_id, user.organization_id)
    change_action_status(s, action, new_status, user)
    s.commit()
    return ok(serialize_action(action))


@bp.post("/actions/<int:action_id>/verify")
@require_permission("ncr.view")
def action_verify(action_id: int):
    s: Session = db_session()
    user = current_user()
    action = get_action(s, action_id, user.organization_id)
    verify_action(s, action, user, json_str(json_body(), "effectiveness_notes") or None)
    s.commit()
    return ok(serialize_action(action))


@bp.post("/actions/<int:action_id>/assign")
@require_permission("ncr.view")
def action_assign(action_id: int):
    s: Session = db_session()
    user = current_user()
    action = get_action(s, action_id, user.organization_id)
    assign_action(s, action, json_body().get("assigned_to_id"), user)
    s.commit()
    return ok(serialize_action(action))
