from __future__ import annotations

from flask import Blueprint, current_app

from app.qms.api import arg_int, current_user, ok
from app.qms.db import db_session
from app.qms.errors import ValidationError
from app.qms.modules.assessments.service import get_assessment
from app.qms.rbac import require_permission

from .service import overview, section_breakdown, trends

bp = Blueprint("dashboard", __name__)

MAX_TREND_MONTHS = 24


@bp.get("/dashboard/overview")
@require_permission("dashboard.view")
def dashboard_overview():
    s = db_session()
    return ok(overview(s, current_user().organization_id))


@bp.get("/dashboard/sections")
@require_permission("dashboard.view")
def dashboard_sections():
    s = db_session()
    org_id = current_user().organization_id
    assessment_id = arg_int("assessment_id")
    if assessment_id is not None:
        get_assessment(s, assessment_id, org_id)
    return ok(section_breakdown(s, org_id, assessment_id))


@bp.get("/dashboard/trends")
@require_permission("dashboard.view")
def dashboard_trends():
    s = db_session()
    months = arg_int("months")
    if months is None:
        months = int(current_app.config.get("TREND_MONTHS", 6))
    if not 1 <= months <= MAX_TREND_MONTHS:
        raise ValidationError(f"months must be between 1 and {MAX_TREND_MONTHS}")
    return ok(trends(s, current_user().organization_id, months))
