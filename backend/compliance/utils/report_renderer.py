"""Report document model and HTML rendering.

`build_report_document` turns report data into a `ReportDocument`, the
single layout every delivery channel renders: the HTML page here, the
PDF in `report_pdf` and the e-mail attachment built from that PDF.
Sections always appear in the same order:

    header, overall score, categories, benchmarks, history,
    recommendations, compliance frameworks
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from html import escape
from typing import List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from .. import thresholds
from ..errors import ReportDataError
from ..schemas import AttemptRow, Recommendation, ReportData

NO_ASSESSMENTS = 'No assessments yet'
NO_HISTORY = 'No assessment history available.'
NO_RECOMMENDATIONS = 'No recommendations available. Your security practices are excellent!'
NOT_ASSESSED_RECOMMENDATIONS = 'Complete an assessment to receive recommendations.'

SECTION_ORDER = (
    'header', 'overall', 'categories', 'benchmarks', 'history', 'recommendations', 'frameworks',
)

RISK_COLOURS = {'low': '#16a34a', 'medium': '#d97706', 'high': '#dc2626'}
PRIORITY_COLOURS = {'High': '#dc2626', 'Medium': '#d97706', 'Low': '#2563eb'}
STATUS_COLOURS = {'Compliant': '#16a34a', 'Partial': '#d97706', 'Non-Compliant': '#dc2626'}


@dataclass
class CategoryLine:
    name: str
    score: float
    risk: str


@dataclass
class BenchmarkLine:
    label: str
    value: float
    difference: float


@dataclass
class ReportDocument:
    user_name: str
    email: str
    generated_at: str
    overall_score: float
    risk: str
    last_assessment: str
    total_assessments: int
    previous_score: float
    score_change: float
    rank: str
    join_date: Optional[str]
    categories: List[CategoryLine] = field(default_factory=list)
    benchmarks: List[BenchmarkLine] = field(default_factory=list)
    attempts: List[AttemptRow] = field(default_factory=list)
    recommendations: List[Recommendation] = field(default_factory=list)
    recommendations_message: Optional[str] = None
    history_message: Optional[str] = None
    frameworks: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def risk_label(self) -> str:
        return f"{self.risk.title()} Risk"


def _coerce(data: Union[ReportData, Mapping]) -> ReportData:
    if isinstance(data, ReportData):
        return data
    if not isinstance(data, Mapping):
        raise ReportDataError(f'Unsupported report data: {type(data).__name__}')
    if data.get('overall_score') is None:
        raise ReportDataError('Report data is missing overall_score')
    try:
        return ReportData.model_validate(dict(data))
    except ValidationError as e:
        raise ReportDataError(f'Invalid report data: {e.errors()[0].get("msg")}')


def build_report_document(data: Union[ReportData, Mapping], generated_at: Optional[datetime] = None) -> ReportDocument:
    """Lay out `data` as a report document.

    Raises `ReportDataError` when `overall_score` is absent or not a
    finite number. Every other field falls back to a placeholder, and a
    user without attempts gets the empty-state texts instead of errors.
    """
    data = _coerce(data)
    if not math.isfinite(data.overall_score):
        raise ReportDataError('overall_score must be a finite number')
    assessed = data.total_assessments > 0 or bool(data.attempts)
    overall = data.overall_score
    generated_at = generated_at or datetime.now(timezone.utc)

    if data.recommendations:
        rec_message = None
    elif assessed:
        rec_message = NO_RECOMMENDATIONS
    else:
        rec_message = NOT_ASSESSED_RECOMMENDATIONS

    return ReportDocument(
        user_name=data.user_name or 'Default User',
        email=data.email or '',
        generated_at=generated_at.strftime('%Y-%m-%d %H:%M UTC'),
        overall_score=overall,
        risk=thresholds.risk_level(overall),
        last_assessment=data.last_assessment if assessed else NO_ASSESSMENTS,
        total_assessments=data.total_assessments,
        previous_score=data.previous_score,
        score_change=data.score_change,
        rank=data.rank,
        join_date=data.join_date,
        categories=[
            CategoryLine(name, score, thresholds.risk_level(score))
            for name, score in data.category_scores.items()
        ],
        benchmarks=[
            BenchmarkLine(thresholds.BENCHMARK_LABELS.get(key, key), value, overall - value)
            for key, value in data.benchmarks.items()
        ],
        attempts=list(data.attempts),
        recommendations=list(data.recommendations),
        recommendations_message=rec_message,
        history_message=None if data.attempts else NO_HISTORY,
        frameworks=thresholds.framework_statuses(overall),
    )


def _signed(value: float) -> str:
    return f"{value:+.2f}"


def _bar(score: float, colour: str) -> str:
    width = max(0.0, min(100.0, score))
    return (
        '<div class="bar"><div class="fill" '
        f'style="width:{width:.1f}%;background:{colour}"></div></div>'
    )


_STYLE = """
  body { font-family: Arial, sans-serif; margin: 32px; color: #1f2937; }
  section { margin-bottom: 24px; }
  h1 { margin-bottom: 4px; }
  .muted { color: #6b7280; }
  .score { font-size: 40px; font-weight: bold; }
  .badge { display: inline-block; padding: 2px 10px; border-radius: 12px; color: #fff; }
  .bar { background: #e5e7eb; border-radius: 4px; height: 10px; width: 100%; }
  .fill { height: 10px; border-radius: 4px; }
  table { border-collapse: collapse; width: 100%; }
  th, td { border-bottom: 1px solid #e5e7eb; padding: 6px 8px; text-align: left; }
  .card { border: 1px solid #ddd; border-left-width: 4px; border-radius: 8px; padding: 12px; margin-bottom: 8px; }
"""


def render_html(doc: ReportDocument) -> str:
    """Render the document as a standalone HTML page."""
    e = escape
    parts = []

    parts.append(
        '<section id="header">'
        f'<h1>Security Compliance Report</h1>'
        f'<div><strong>{e(doc.user_name)}</strong> <span class="muted">{e(doc.email)}</span></div>'
        f'<div class="muted">Generated {e(doc.generated_at)}</div>'
        '</section>'
    )

    parts.append(
        '<section id="overall">'
        '<h2>Overall Score</h2>'
        f'<div class="score">{doc.overall_score:.2f}%</div>'
        f'<span class="badge" style="background:{RISK_COLOURS[doc.risk]}">{e(doc.risk_label)}</span>'
        f'<p>Last assessment: {e(doc.last_assessment)} &middot; Assessments: {doc.total_assessments}'
        f' &middot; Previous score: {doc.previous_score:.2f}% ({_signed(doc.score_change)})'
        f' &middot; Rank: {e(doc.rank)}</p>'
        '</section>'
    )

    rows = ''.join(
        f'<tr><td>{e(c.name)}</td><td>{c.score:.2f}%</td><td>{_bar(c.score, RISK_COLOURS[c.risk])}</td></tr>'
        for c in doc.categories
    ) or '<tr><td colspan="3" class="muted">No category scores yet.</td></tr>'
    parts.append(
        '<section id="categories"><h2>Category Breakdown</h2>'
        f'<table><tr><th>Category</th><th>Score</th><th></th></tr>{rows}</table></section>'
    )

    rows = ''.join(
        f'<tr><td>{e(b.label)}</td><td>{b.value:.0f}%</td><td>{_signed(b.difference)}</td></tr>'
        for b in doc.benchmarks
    )
    parts.append(
        '<section id="benchmarks"><h2>Benchmark Comparison</h2>'
        f'<table><tr><th>Benchmark</th><th>Score</th><th>Your difference</th></tr>{rows}</table></section>'
    )

    if doc.history_message:
        body = f'<p class="muted">{e(doc.history_message)}</p>'
    else:
        rows = ''.join(
            f'<tr><td>{a.attempt_number}</td>'
            f'<td>{a.completed_at.strftime("%Y-%m-%d") if a.completed_at else "-"}</td>'
            f'<td>{a.overall_percentage:.2f}%</td><td>{_signed(a.change)}</td></tr>'
            for a in doc.attempts
        )
        body = f'<table><tr><th>Attempt</th><th>Date</th><th>Score</th><th>Change</th></tr>{rows}</table>'
    parts.append(f'<section id="history"><h2>Assessment History</h2>{body}</section>')

    if doc.recommendations_message:
        body = f'<p>{e(doc.recommendations_message)}</p>'
    else:
        body = ''.join(
            f'<div class="card" style="border-left-color:{PRIORITY_COLOURS.get(r.priority, "#6b7280")}">'
            f'<strong>{e(r.issue)}</strong> <span class="muted">({e(r.priority)} priority)</span>'
            f'<p>{e(r.description)}</p><p>{e(r.action)}</p></div>'
            for r in doc.recommendations
        )
    parts.append(f'<section id="recommendations"><h2>Recommendations</h2>{body}</section>')

    rows = ''.join(
        f'<tr><td>{e(name)}</td><td><span class="badge" '
        f'style="background:{STATUS_COLOURS.get(status, "#6b7280")}">{e(status)}</span></td></tr>'
        for name, status in doc.frameworks
    )
    parts.append(
        '<section id="frameworks"><h2>Compliance Frameworks</h2>'
        f'<table><tr><th>Framework</th><th>Status</th></tr>{rows}</table></section>'
    )

    return (
        '<!DOCTYPE html>\n<html>\n<head>\n<meta charset="UTF-8" />\n'
        f'<title>Compliance Report - {e(doc.user_name)}</title>\n<style>{_STYLE}</style>\n'
        '</head>\n<body>\n' + '\n'.join(parts) + '\n</body>\n</html>\n'
    )
