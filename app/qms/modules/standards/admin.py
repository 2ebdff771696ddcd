from __future__ import annotations

from flask import Blueprint, request

from app.qms.api import current_user, ok
from app.qms.db import db_session
from app.qms.rbac import require_permission

from .service import (
    get_section,
    get_template,
    list_section_tree,
    list_templates,
    serialize_section_detail,
    serialize_template,
)

bp = Blueprint("standards", __name__)


# ---------- Sections ----------
@bp.get("/standards/sections")
@require_permission("standards.view")
def sections_tree():
    s = db_session()
    template = None
    template_id = (request.args.get("template_id") or "").strip()
    if template_id:
        template = get_template(s, template_id, current_user().organization_id)
    return ok(list_section_tree(s, template))


@bp.get("/standards/sections/<int:section_id>")
@require_permission("standards.view")
def section_detail(section_id: int):
    s = db_session()
    return ok(serialize_section_detail(get_section(s, section_id)))


# ---------- Templates ----------
@bp.get("/templates")
@require_permission("standards.view")
def templates_list():
    s = db_session()
    templates = list_templates(s, current_user().organization_id)
    return ok({"templates": [serialize_template(t) for t in templates], "total": len(templates)})


@bp.get("/templates/<template_id>")
@require_permission("standards.view")
def template_detail(template_id: str):
    s = db_session()
    return ok(serialize_template(get_template(s, template_id, current_user().organization_id)))
