from datetime import datetime, timezone

import pytest

from compliance.errors import ReportDataError
from compliance.recommendations import generate_recommendations
from compliance.schemas import AttemptRow, ReportData
from compliance.utils import report_renderer
from compliance.utils.report_pdf import render_pdf
from compliance.utils.report_renderer import build_report_document, render_html


def _data(**overrides):
    scores = {'Password Management': 77.78, 'Authentication': 35.0}
    fields = dict(
        user_name='Alice <Admin>',
        email='alice@example.com',
        overall_score=61.5,
        previous_score=50.0,
        score_change=11.5,
        last_assessment='2024-03-01',
        total_assessments=2,
        attempts=[
            AttemptRow(attempt_number=1, overall_percentage=50.0,
                       completed_at=datetime(2024, 2, 1, tzinfo=timezone.utc)),
            AttemptRow(attempt_number=2, overall_percentage=61.5,
                       completed_at=datetime(2024, 3, 1, tzinfo=timezone.utc), change=11.5),
        ],
        category_scores=scores,
        recommendations=generate_recommendations(scores),
    )
    fields.update(overrides)
    return ReportData(**fields)


def test_document_sections_and_risk():
    doc = build_report_document(_data())
    assert doc.risk == 'medium'
    assert [c.name for c in doc.categories] == ['Password Management', 'Authentication']
    assert [b.value for b in doc.benchmarks] == [75, 68, 92]
    assert doc.benchmarks[0].difference == pytest.approx(-13.5)
    assert [r.priority for r in doc.recommendations] == ['Low', 'High']
    assert doc.recommendations_message is None
    assert doc.history_message is None
    assert dict(doc.frameworks)['NIST Framework'] == 'Partial'


def test_html_sections_in_fixed_order_and_escaped():
    page = render_html(build_report_document(_data()))
    positions = [page.index(f'<section id="{name}">') for name in report_renderer.SECTION_ORDER]
    assert positions == sorted(positions)
    assert 'Alice &lt;Admin&gt;' in page
    assert 'Alice <Admin>' not in page
    assert 'Low score in Authentication' in page


def test_zero_attempts_renders_empty_state():
    doc = build_report_document({'overall_score': 0.0})
    assert doc.overall_score == 0.0
    assert doc.last_assessment == report_renderer.NO_ASSESSMENTS
    assert doc.history_message == report_renderer.NO_HISTORY
    assert doc.recommendations_message == report_renderer.NOT_ASSESSED_RECOMMENDATIONS
    page = render_html(doc)
    assert 'No assessments yet' in page
    assert '0.00%' in page


def test_supplied_score_is_kept_without_history_metadata():
    doc = build_report_document({'overall_score': 85.0})
    assert doc.overall_score == 85.0
    assert doc.risk == 'low'
    assert dict(doc.frameworks)['NIST Framework'] == 'Compliant'
    assert doc.last_assessment == report_renderer.NO_ASSESSMENTS
    assert doc.history_message == report_renderer.NO_HISTORY


def test_congratulates_when_no_recommendations():
    doc = build_report_document(_data(category_scores={'A': 95.0}, recommendations=[], overall_score=95.0))
    assert doc.recommendations_message == report_renderer.NO_RECOMMENDATIONS
    assert report_renderer.NO_RECOMMENDATIONS in render_html(doc)


def test_missing_overall_score_is_rejected():
    with pytest.raises(ReportDataError):
        build_report_document({'user_name': 'Bob'})


def test_non_numeric_overall_score_is_rejected():
    with pytest.raises(ReportDataError):
        build_report_document({'overall_score': 'lots'})
    with pytest.raises(ReportDataError):
        build_report_document({'overall_score': float('nan')})


def test_placeholders_for_missing_fields():
    doc = build_report_document({'overall_score': 70, 'total_assessments': 1})
    assert doc.user_name == 'Default User'
    assert doc.email == ''
    assert doc.categories == []


def test_pdf_output():
    pdf = render_pdf(build_report_document(_data()))
    assert pdf.startswith(b'%PDF')
    assert len(pdf) > 1000


def test_pdf_for_empty_report():
    assert render_pdf(build_report_document({'overall_score': 0})).startswith(b'%PDF')
