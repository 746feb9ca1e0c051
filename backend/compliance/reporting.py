"""Read-only aggregation over a user's progress record.

Nothing in this module mutates the record it is given. The functions
accept any object exposing the `UserProgress` attributes, which keeps
them usable on detached or hand-built records in tests.
"""

from collections import OrderedDict
from typing import Dict, List

from .recommendations import generate_recommendations
from .schemas import AttemptRow, ReportData
from . import thresholds

NO_ASSESSMENTS = 'No assessments yet'


def latest_attempt_number(progress) -> int:
    """Highest attempt number in the submission history, 0 when there is none."""
    return max((h.attempt_number or 0 for h in progress.assessment_history), default=0)


def latest_category_snapshot(progress) -> Dict[str, float]:
    """Map category -> percentage for the latest attempt, in first-scored order."""
    latest = latest_attempt_number(progress)
    snapshot: Dict[str, float] = OrderedDict()
    for row in progress.category_scores:
        if row.attempt_number == latest:
            snapshot[row.compliance_category] = row.percentage_score
    return snapshot


def previous_score(progress) -> float:
    history = progress.assessment_history
    if len(history) < 2:
        return 0.0
    return history[-2].overall_percentage or 0.0


def score_delta(progress) -> float:
    """Change in overall percentage between the two most recent submissions."""
    history = progress.assessment_history
    if len(history) < 2:
        return 0.0
    return (history[-1].overall_percentage or 0.0) - (history[-2].overall_percentage or 0.0)


def attempt_rows(progress) -> List[AttemptRow]:
    """History rows, each with its change versus the preceding row."""
    rows = []
    prev = None
    for h in progress.assessment_history:
        change = 0.0 if prev is None else h.overall_percentage - prev
        rows.append(AttemptRow(
            attempt_number=h.attempt_number,
            overall_percentage=h.overall_percentage,
            completed_at=h.completed_at,
            user_name=h.user_name,
            change=change,
        ))
        prev = h.overall_percentage
    return rows


def weak_areas(progress, limit: int = thresholds.WEAK_AREA_LIMIT) -> List[str]:
    """Latest-attempt categories below the weak-area threshold."""
    # TODO: confirm with the product owner that weak areas should read
    # percentage_score; earlier dashboards filtered on an unset `score` and listed none.
    snapshot = latest_category_snapshot(progress)
    weak = [c for c, score in snapshot.items() if score < thresholds.WEAK_AREA_THRESHOLD]
    return weak[:limit]


def _date(value) -> str:
    return value.strftime('%Y-%m-%d')


def build_report_data(progress) -> ReportData:
    """Assemble the report payload from a progress record."""
    snapshot = latest_category_snapshot(progress)
    history = progress.assessment_history
    last_assessment = _date(history[-1].completed_at) if history and history[-1].completed_at else NO_ASSESSMENTS
    overall = progress.overall_percentage or 0.0
    return ReportData(
        user_name=progress.name or 'Default User',
        email=progress.email or '',
        overall_score=overall,
        previous_score=previous_score(progress),
        score_change=score_delta(progress),
        last_assessment=last_assessment,
        total_assessments=progress.assessment_attempts or 0,
        attempts=attempt_rows(progress),
        category_scores=dict(snapshot),
        recommendations=generate_recommendations(snapshot),
        benchmarks=dict(thresholds.BENCHMARKS),
        join_date=_date(progress.created_at) if progress.created_at else None,
        rank=thresholds.rank_for(overall),
        achievements=len(history),
    )
