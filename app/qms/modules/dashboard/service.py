"""
Dashboard service layer.
Loads rows for an organization and feeds them to the aggregation reducers.
"""
from __future__ import annotations

from collections import Counter
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from app.qms.modules.assessments.models import Assessment, QuestionResponse
from app.qms.modules.nonconformities.models import NonConformity
from app.qms.modules.nonconformities.workflow import NCRStatus, Severity
from app.qms.modules.standards.models import AuditQuestion
from app.qms.modules.standards.service import descendant_ids, sections_for_template

from .aggregation import (
    AssessmentPoint,
    NCRPoint,
    ResponseRow,
    SectionRef,
    monthly_trends,
    section_breakdown as reduce_sections,
)

if TYPE_CHECKING:
    from app.qms.modules.assessments.models import AssessmentTemplate

ASSESSMENT_STATUSES = ("DRAFT", "IN_PROGRESS", "UNDER_REVIEW", "COMPLETED", "ARCHIVED")


def load_section_refs(s: Session, template: "AssessmentTemplate | None" = None) -> list[SectionRef]:
    """
    Top-level sections in scope, each carrying the active question ids of its subtree.

    Sections whose subtree has no active question are left out.
    """
    sections = sections_for_template(s, template)
    in_scope = {sec.id for sec in sections}
    questions_by_section: dict[int, set[int]] = {}
    for qid, section_id in s.query(AuditQuestion.id, AuditQuestion.section_id).filter(
        AuditQuestion.is_active.is_(True)
    ):
        questions_by_section.setdefault(section_id, set()).add(qid)

    refs: list[SectionRef] = []
    for sec in sections:
        if sec.parent_id is not None and sec.parent_id in in_scope:
            continue
        subtree = descendant_ids(sections, sec.id)
        qids = frozenset(q for sid in subtree for q in questions_by_section.get(sid, ()))
        if qids:
            refs.append(SectionRef(id=sec.id, section_number=sec.section_number, title=sec.title, question_ids=qids))
    return refs


def overview(s: Session, organization_id: int, *, today: date | None = None) -> dict[str, Any]:
    today = today or datetime.utcnow().date()
    month_start = datetime(today.year, today.month, 1)

    assessments = s.query(Assessment).filter(Assessment.organization_id == organization_id).all()
    ncrs = (
        s.query(NonConformity)
        .join(Assessment)
        .filter(Assessment.organization_id == organization_id)
        .all()
    )

    assessment_status = Counter(a.status for a in assessments)
    ncr_status = Counter(n.status for n in ncrs)
    ncr_severity = Counter(n.severity for n in ncrs)

    completed_scores = [a.overall_score for a in assessments if a.status == "COMPLETED" and a.overall_score is not None]
    compliance_score = round(sum(completed_scores) / len(completed_scores), 1) if completed_scores else None

    return {
        "compliance_score": compliance_score,
        "assessment_counts": {
            "total": len(assessments),
            "by_status": {st: assessment_status.get(st, 0) for st in ASSESSMENT_STATUSES},
        },
        "ncr_counts": {
            "total": len(ncrs),
            "open": ncr_status.get(NCRStatus.OPEN.value, 0) + ncr_status.get(NCRStatus.IN_PROGRESS.value, 0),
            "closed": ncr_status.get(NCRStatus.CLOSED.value, 0),
            "by_status": {st.value: ncr_status.get(st.value, 0) for st in NCRStatus},
            "by_severity": {sv.value: ncr_severity.get(sv.value, 0) for sv in Severity},
        },
        "recent_activity": {
            "assessments_this_month": sum(1 for a in assessments if a.created_at >= month_start),
            "ncrs_created_this_month": sum(1 for n in ncrs if n.created_at >= month_start),
            "ncrs_closed_this_month": sum(1 for n in ncrs if n.closed_at is not None and n.closed_at >= month_start),
        },
    }


def section_breakdown(s: Session, organization_id: int, assessment_id: int | None = None) -> list[dict[str, Any]]:
    """Per top-level section compliance over submitted responses, optionally for one assessment."""
    q = (
        s.query(QuestionResponse.question_id, QuestionResponse.score)
        .join(Assessment, QuestionResponse.assessment_id == Assessment.id)
        .filter(Assessment.organization_id == organization_id, QuestionResponse.is_draft.is_(False))
    )
    template = None
    if assessment_id is not None:
        q = q.filter(QuestionResponse.assessment_id == assessment_id)
        assessment = s.get(Assessment, assessment_id)
        if assessment is not None and assessment.organization_id == organization_id:
            template = assessment.template
    rows = [ResponseRow(question_id=qid, score=score) for qid, score in q.all()]
    return [b.to_dict() for b in reduce_sections(load_section_refs(s, template), rows)]


def trends(s: Session, organization_id: int, months: int = 6, *, today: date | None = None) -> list[dict[str, Any]]:
    today = today or datetime.utcnow().date()
    assessment_points = [
        AssessmentPoint(completed_date=completed, overall_score=score)
        for completed, score in s.query(Assessment.completed_date, Assessment.overall_score).filter(
            Assessment.organization_id == organization_id,
            Assessment.status == "COMPLETED",
            Assessment.completed_date.isnot(None),
        )
    ]
    ncr_points = [
        NCRPoint(created_at=created, closed_at=closed)
        for created, closed in s.query(NonConformity.created_at, NonConformity.closed_at)
        .join(Assessment)
        .filter(Assessment.organization_id == organization_id)
    ]
    return [p.to_dict() for p in monthly_trends(assessment_points, ncr_points, today=today, months=months)]
