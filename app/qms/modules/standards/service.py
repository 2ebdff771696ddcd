"""
Standards service layer.
ISO section tree, question lookup, and template-driven section selection.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.qms.errors import NotFoundError

from .models import AuditQuestion, ISOStandardSection

if TYPE_CHECKING:
    from app.qms.modules.assessments.models import AssessmentTemplate


def _matches_clause(section_number: str, clauses: Iterable[str]) -> bool:
    # "5" matches "5", "5.1", "5.1.1" but not "50"
    return any(section_number == c or section_number.startswith(c + ".") for c in clauses)


def filter_sections(
    sections: Sequence[ISOStandardSection],
    *,
    included_clauses: Sequence[str] | None = None,
    included_sections: Sequence[Any] | None = None,
) -> list[ISOStandardSection]:
    """
    Apply a template's selectors.

    Explicit section ids take precedence over clause numbers. Both None means
    "all sections". Ancestors of a selected section are kept so the result still
    forms a tree.
    """
    if included_sections is None and included_clauses is None:
        return list(sections)

    by_id = {sec.id: sec for sec in sections}
    if included_sections is not None:
        wanted = {str(x) for x in included_sections}
        include_ids = {sec.id for sec in sections if str(sec.id) in wanted}
    else:
        clauses = [str(c).strip() for c in included_clauses or [] if str(c).strip()]
        include_ids = {sec.id for sec in sections if _matches_clause(sec.section_number, clauses)}

    for sid in list(include_ids):
        parent_id = by_id[sid].parent_id
        while parent_id is not None and parent_id in by_id:
            include_ids.add(parent_id)
            parent_id = by_id[parent_id].parent_id

    return [sec for sec in sections if sec.id in include_ids]


def build_section_tree(
    sections: Sequence[ISOStandardSection],
    question_counts: dict[int, int] | None = None,
) -> list[dict[str, Any]]:
    """Nest a flat, ordered section list. Orphans (parent filtered out) become roots."""
    question_counts = question_counts or {}
    nodes: dict[int, dict[str, Any]] = {}
    for sec in sections:
        nodes[sec.id] = {
            "id": sec.id,
            "section_number": sec.section_number,
            "title": sec.title,
            "description": sec.description,
            "order": sec.order,
            "parent_id": sec.parent_id,
            "question_count": question_counts.get(sec.id, 0),
            "children": [],
        }

    roots: list[dict[str, Any]] = []
    for sec in sections:
        node = nodes[sec.id]
        parent = nodes.get(sec.parent_id) if sec.parent_id is not None else None
        if parent is not None:
            parent["children"].append(node)
        else:
            roots.append(node)
    return roots


def descendant_ids(sections: Sequence[ISOStandardSection], root_id: int) -> set[int]:
    """root_id plus every section below it."""
    children: dict[int | None, list[int]] = {}
    for sec in sections:
        children.setdefault(sec.parent_id, []).append(sec.id)
    out = {root_id}
    stack = [root_id]
    while stack:
        for child in children.get(stack.pop(), []):
            if child not in out:
                out.add(child)
                stack.append(child)
    return out


def all_sections(s: Session) -> list[ISOStandardSection]:
    return (
        s.query(ISOStandardSection)
        .order_by(ISOStandardSection.order.asc(), ISOStandardSection.section_number.asc())
        .all()
    )


def _active_question_counts(s: Session) -> dict[int, int]:
    rows = (
        s.query(AuditQuestion.section_id, func.count(AuditQuestion.id))
        .filter(AuditQuestion.is_active.is_(True))
        .group_by(AuditQuestion.section_id)
        .all()
    )
    return {section_id: count for section_id, count in rows}


def sections_for_template(s: Session, template: "AssessmentTemplate | None") -> list[ISOStandardSection]:
    sections = all_sections(s)
    if template is None:
        return sections
    return filter_sections(
        sections,
        included_clauses=template.included_clauses,
        included_sections=template.included_sections,
    )


def list_section_tree(s: Session, template: "AssessmentTemplate | None" = None) -> list[dict[str, Any]]:
    return build_section_tree(sections_for_template(s, template), _active_question_counts(s))


def get_section(s: Session, section_id: int) -> ISOStandardSection:
    section = s.get(ISOStandardSection, section_id)
    if not section:
        raise NotFoundError("Section", section_id)
    return section


def serialize_question(q: AuditQuestion) -> dict[str, Any]:
    return {
        "id": q.id,
        "section_id": q.section_id,
        "question_number": q.question_number,
        "question_text": q.question_text,
        "guidance": q.guidance,
        "standard_reference": q.standard_reference,
        "is_active": q.is_active,
        "order": q.order,
    }


def serialize_section_detail(section: ISOStandardSection) -> dict[str, Any]:
    parent = section.parent
    return {
        "id": section.id,
        "section_number": section.section_number,
        "title": section.title,
        "description": section.description,
        "order": section.order,
        "parent": (
            {"id": parent.id, "section_number": parent.section_number, "title": parent.title}
            if parent is not None
            else None
        ),
        "children": [
            {"id": c.id, "section_number": c.section_number, "title": c.title, "order": c.order}
            for c in section.children
        ],
        "questions": [serialize_question(q) for q in section.questions if q.is_active],
    }


def active_question_ids(s: Session, section_ids: Iterable[int] | None = None) -> list[int]:
    q = s.query(AuditQuestion.id).filter(AuditQuestion.is_active.is_(True))
    if section_ids is not None:
        q = q.filter(AuditQuestion.section_id.in_(list(section_ids)))
    return [row[0] for row in q.all()]


def list_templates(s: Session, organization_id: int) -> list["AssessmentTemplate"]:
    from app.qms.modules.assessments.models import AssessmentTemplate

    return (
        s.query(AssessmentTemplate)
        .filter(AssessmentTemplate.organization_id == organization_id)
        .order_by(AssessmentTemplate.is_default.desc(), AssessmentTemplate.name.asc())
        .all()
    )


def get_template(s: Session, template_id: str, organization_id: int) -> "AssessmentTemplate":
    from app.qms.modules.assessments.models import AssessmentTemplate

    template = (
        s.query(AssessmentTemplate)
        .filter(AssessmentTemplate.id == template_id, AssessmentTemplate.organization_id == organization_id)
        .one_or_none()
    )
    if not template:
        raise NotFoundError("Assessment Template", template_id)
    return template


def serialize_template(t: "AssessmentTemplate") -> dict[str, Any]:
    return {
        "id": t.id,
        "name": t.name,
        "description": t.description,
        "is_default": t.is_default,
        "included_clauses": t.included_clauses,
        "included_sections": t.included_sections,
        "organization_id": t.organization_id,
    }
