"""
Compliance aggregation.

Pure reducers over plain rows: callers load ``ResponseRow`` / ``SectionRef`` /
``AssessmentPoint`` / ``NCRPoint`` values from the store and pass them in, so
every figure here is reproducible without a database.

Compliance of one response is ``score / 5 * 100``. A null score is N/A and is
left out of both numerator and denominator; a section where nothing is
answered has no compliance figure at all (``None``), which is not the same as
0%.
"""
from __future__ import annotations

import calendar
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass
from datetime import date, datetime

from app.qms.constants import MAX_SCORE


@dataclass(frozen=True)
class ResponseRow:
    question_id: int
    score: int | None


@dataclass(frozen=True)
class SectionRef:
    id: int
    section_number: str
    title: str
    question_ids: frozenset[int]


@dataclass(frozen=True)
class SectionCompliance:
    section_id: int
    section_number: str
    section_title: str
    total_questions: int
    questions_answered: int
    answered_percentage: float
    compliance_percentage: float | None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AssessmentPoint:
    completed_date: datetime | date | None
    overall_score: float | None


@dataclass(frozen=True)
class NCRPoint:
    created_at: datetime | date | None
    closed_at: datetime | date | None


@dataclass(frozen=True)
class TrendPoint:
    year: int
    month: int
    label: str
    compliance_score: float | None
    assessments_completed: int
    ncrs_opened: int
    ncrs_closed: int

    def to_dict(self) -> dict:
        return asdict(self)


def _round(value: float | None) -> float | None:
    return None if value is None else round(value, 1)


def _mean(values: Sequence[float]) -> float | None:
    return sum(values) / len(values) if values else None


def score_percentage(score: int) -> float:
    return score / MAX_SCORE * 100


def compliance_percentage(scores: Iterable[int | None]) -> float | None:
    """Mean of score/5*100 over answered scores; None when nothing is answered."""
    return _round(_mean([score_percentage(s) for s in scores if s is not None]))


def overall_compliance(rows: Iterable[ResponseRow]) -> float | None:
    return compliance_percentage(r.score for r in rows)


def section_breakdown(sections: Iterable[SectionRef], rows: Iterable[ResponseRow]) -> list[SectionCompliance]:
    """
    One entry per section, in the order given; question_ids should include descendants.

    Rows may span several assessments: every answered row counts toward the
    section's mean, while ``questions_answered`` counts distinct questions.
    """
    scores_by_question: dict[int, list[int]] = {}
    for r in rows:
        if r.score is not None:
            scores_by_question.setdefault(r.question_id, []).append(r.score)

    out: list[SectionCompliance] = []
    for sec in sections:
        answered = [qid for qid in sec.question_ids if qid in scores_by_question]
        total = len(sec.question_ids)
        out.append(
            SectionCompliance(
                section_id=sec.id,
                section_number=sec.section_number,
                section_title=sec.title,
                total_questions=total,
                questions_answered=len(answered),
                answered_percentage=_round(len(answered) / total * 100) if total else 0.0,
                compliance_percentage=compliance_percentage(
                    score for qid in answered for score in scores_by_question[qid]
                ),
            )
        )
    return out


def _month_key(value: datetime | date | None) -> tuple[int, int] | None:
    if value is None:
        return None
    return value.year, value.month


def month_window(today: date, months: int) -> list[tuple[int, int]]:
    """(year, month) pairs for the last ``months`` months, oldest first, ending with today's month."""
    out: list[tuple[int, int]] = []
    year, month = today.year, today.month
    for _ in range(max(months, 0)):
        out.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(out))


def monthly_trends(
    assessments: Iterable[AssessmentPoint],
    ncrs: Iterable[NCRPoint],
    *,
    today: date,
    months: int = 6,
) -> list[TrendPoint]:
    window = month_window(today, months)
    scores: dict[tuple[int, int], list[float]] = {key: [] for key in window}
    completed: dict[tuple[int, int], int] = {key: 0 for key in window}
    opened: dict[tuple[int, int], int] = {key: 0 for key in window}
    closed: dict[tuple[int, int], int] = {key: 0 for key in window}

    for a in assessments:
        key = _month_key(a.completed_date)
        if key not in completed:
            continue
        completed[key] += 1
        if a.overall_score is not None:
            scores[key].append(a.overall_score)

    for n in ncrs:
        key = _month_key(n.created_at)
        if key in opened:
            opened[key] += 1
        key = _month_key(n.closed_at)
        if key in closed:
            closed[key] += 1

    return [
        TrendPoint(
            year=year,
            month=month,
            label=calendar.month_abbr[month],
            compliance_score=_round(_mean(scores[(year, month)])),
            assessments_completed=completed[(year, month)],
            ncrs_opened=opened[(year, month)],
            ncrs_closed=closed[(year, month)],
        )
        for year, month in window
    ]
