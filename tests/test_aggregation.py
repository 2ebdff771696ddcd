from datetime import date, datetime

from app.qms.modules.dashboard.aggregation import (
    AssessmentPoint,
    NCRPoint,
    ResponseRow,
    SectionRef,
    compliance_percentage,
    month_window,
    monthly_trends,
    overall_compliance,
    section_breakdown,
)

LEADERSHIP = SectionRef(id=5, section_number="5", title="Leadership", question_ids=frozenset({1, 2, 3}))
PLANNING = SectionRef(id=6, section_number="6", title="Planning", question_ids=frozenset({4, 5}))


def test_all_top_scores_are_full_compliance():
    rows = [ResponseRow(q, 5) for q in (1, 2, 3)]
    assert overall_compliance(rows) == 100.0


def test_all_zero_scores_are_zero_not_missing():
    rows = [ResponseRow(q, 0) for q in (1, 2, 3)]
    assert overall_compliance(rows) == 0.0


def test_not_applicable_rows_are_excluded():
    assert compliance_percentage([None, None]) is None
    assert compliance_percentage([4, None]) == 80.0


def test_mixed_scores_round_to_one_decimal():
    # (3 + 4 + 4) / 3 / 5 * 100 = 73.33..
    assert compliance_percentage([3, 4, 4]) == 73.3


def test_section_breakdown_counts_answered_and_compliance():
    rows = [ResponseRow(1, 5), ResponseRow(2, 3), ResponseRow(3, None), ResponseRow(99, 0)]
    leadership, planning = section_breakdown([LEADERSHIP, PLANNING], rows)

    assert leadership.section_number == "5"
    assert leadership.total_questions == 3
    assert leadership.questions_answered == 2
    assert leadership.answered_percentage == 66.7
    assert leadership.compliance_percentage == 80.0

    assert planning.questions_answered == 0
    assert planning.answered_percentage == 0.0
    assert planning.compliance_percentage is None


def test_section_breakdown_pools_rows_from_several_assessments():
    rows = [ResponseRow(1, 5), ResponseRow(1, 1)]
    (leadership,) = section_breakdown([LEADERSHIP], rows)
    assert leadership.questions_answered == 1
    assert leadership.compliance_percentage == 60.0


def test_month_window_crosses_year_boundary():
    assert month_window(date(2026, 2, 14), 4) == [(2025, 11), (2025, 12), (2026, 1), (2026, 2)]


def test_monthly_trends_buckets_by_month():
    today = date(2026, 3, 10)
    assessments = [
        AssessmentPoint(datetime(2026, 3, 1, 9), 80.0),
        AssessmentPoint(datetime(2026, 3, 5, 9), 60.0),
        AssessmentPoint(datetime(2026, 1, 20), None),
        AssessmentPoint(datetime(2025, 6, 1), 10.0),
    ]
    ncrs = [
        NCRPoint(datetime(2026, 2, 2), datetime(2026, 3, 3)),
        NCRPoint(datetime(2026, 3, 4), None),
    ]
    points = monthly_trends(assessments, ncrs, today=today, months=3)

    assert [(p.year, p.month, p.label) for p in points] == [(2026, 1, "Jan"), (2026, 2, "Feb"), (2026, 3, "Mar")]
    jan, feb, mar = points
    assert jan.assessments_completed == 1
    assert jan.compliance_score is None
    assert feb.compliance_score is None
    assert feb.ncrs_opened == 1
    assert mar.compliance_score == 70.0
    assert mar.assessments_completed == 2
    assert mar.ncrs_opened == 1
    assert mar.ncrs_closed == 1


def test_trend_point_serializes_flat():
    (point,) = monthly_trends([], [], today=date(2026, 5, 1), months=1)
    assert point.to_dict() == {
        "year": 2026,
        "month": 5,
        "label": "May",
        "compliance_score": None,
        "assessments_completed": 0,
        "ncrs_opened": 0,
        "ncrs_closed": 0,
    }
