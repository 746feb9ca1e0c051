"""PDF rendering of a `ReportDocument` with reportlab."""

from html import escape
from io import BytesIO
from typing import List

from reportlab.graphics.shapes import Drawing, Rect
from reportlab.lib import colors
from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .report_renderer import PRIORITY_COLOURS, RISK_COLOURS, STATUS_COLOURS, ReportDocument

BAR_WIDTH = 2.2 * inch
BAR_HEIGHT = 8


class ReportPDFBuilder:
    """Lay out a report document on A4 pages."""

    def __init__(self):
        self.styles = getSampleStyleSheet()
        self.styles.add(ParagraphStyle(
            name='ReportTitle',
            parent=self.styles['Title'],
            fontSize=22,
            textColor=HexColor('#1f2937'),
            spaceAfter=6,
            fontName='Helvetica-Bold',
        ))
        self.styles.add(ParagraphStyle(
            name='Section',
            parent=self.styles['Heading2'],
            textColor=HexColor('#2c3e50'),
            spaceBefore=14,
            spaceAfter=6,
            keepWithNext=True,
        ))
        self.styles.add(ParagraphStyle(
            name='Muted',
            parent=self.styles['Normal'],
            textColor=HexColor('#6b7280'),
        ))
        self.styles.add(ParagraphStyle(
            name='Score',
            parent=self.styles['Normal'],
            fontSize=32,
            leading=38,
            fontName='Helvetica-Bold',
        ))

    def _table(self, rows, col_widths=None) -> Table:
        table = Table(rows, colWidths=col_widths, hAlign='LEFT')
        table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('BACKGROUND', (0, 0), (-1, 0), HexColor('#f3f4f6')),
            ('LINEBELOW', (0, 0), (-1, -1), 0.5, HexColor('#e5e7eb')),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
        ]))
        return table

    @staticmethod
    def _bar(score: float, colour: str) -> Drawing:
        fraction = max(0.0, min(100.0, score)) / 100.0
        drawing = Drawing(BAR_WIDTH, BAR_HEIGHT)
        drawing.add(Rect(0, 0, BAR_WIDTH, BAR_HEIGHT, fillColor=HexColor('#e5e7eb'), strokeColor=None))
        if fraction > 0:
            drawing.add(Rect(0, 0, BAR_WIDTH * fraction, BAR_HEIGHT, fillColor=HexColor(colour), strokeColor=None))
        return drawing

    def _p(self, text: str, style: str = 'Normal') -> Paragraph:
        return Paragraph(escape(text), self.styles[style])

    def story(self, doc: ReportDocument) -> List:
        s = self.styles
        story = [
            self._p('Security Compliance Report', 'ReportTitle'),
            Paragraph(f'<b>{escape(doc.user_name)}</b> {escape(doc.email)}', s['Normal']),
            self._p(f'Generated {doc.generated_at}', 'Muted'),
            Spacer(1, 12),
        ]

        story.append(self._p('Overall Score', 'Section'))
        story.append(self._p(f'{doc.overall_score:.2f}%', 'Score'))
        story.append(Paragraph(
            f'<font color="{RISK_COLOURS[doc.risk]}"><b>{escape(doc.risk_label)}</b></font>', s['Normal']
        ))
        story.append(self._p(
            f'Last assessment: {doc.last_assessment} | Assessments: {doc.total_assessments} | '
            f'Previous score: {doc.previous_score:.2f}% ({doc.score_change:+.2f}) | Rank: {doc.rank}'
        ))

        story.append(self._p('Category Breakdown', 'Section'))
        if doc.categories:
            rows = [['Category', 'Score', '']]
            rows += [[c.name, f'{c.score:.2f}%', self._bar(c.score, RISK_COLOURS[c.risk])] for c in doc.categories]
            story.append(self._table(rows, [2.6 * inch, 0.9 * inch, BAR_WIDTH + 12]))
        else:
            story.append(self._p('No category scores yet.', 'Muted'))

        story.append(self._p('Benchmark Comparison', 'Section'))
        rows = [['Benchmark', 'Score', 'Your difference']]
        rows += [[b.label, f'{b.value:.0f}%', f'{b.difference:+.2f}'] for b in doc.benchmarks]
        story.append(self._table(rows))

        story.append(self._p('Assessment History', 'Section'))
        if doc.history_message:
            story.append(self._p(doc.history_message, 'Muted'))
        else:
            rows = [['Attempt', 'Date', 'Score', 'Change']]
            rows += [
                [str(a.attempt_number), a.completed_at.strftime('%Y-%m-%d') if a.completed_at else '-',
                 f'{a.overall_percentage:.2f}%', f'{a.change:+.2f}']
                for a in doc.attempts
            ]
            story.append(self._table(rows))

        story.append(self._p('Recommendations', 'Section'))
        if doc.recommendations_message:
            story.append(self._p(doc.recommendations_message))
        for r in doc.recommendations:
            colour = PRIORITY_COLOURS.get(r.priority, '#6b7280')
            story.append(Paragraph(
                f'<font color="{colour}"><b>[{escape(r.priority)}]</b></font> <b>{escape(r.issue)}</b>',
                s['Normal'],
            ))
            story.append(self._p(r.description))
            story.append(self._p(r.action, 'Muted'))
            story.append(Spacer(1, 6))

        story.append(self._p('Compliance Frameworks', 'Section'))
        rows = [['Framework', 'Status']] + [[name, status] for name, status in doc.frameworks]
        table = self._table(rows, [2.6 * inch, 1.6 * inch])
        for i, (_, status) in enumerate(doc.frameworks, start=1):
            table.setStyle(TableStyle([
                ('TEXTCOLOR', (1, i), (1, i), HexColor(STATUS_COLOURS.get(status, '#6b7280'))),
            ]))
        story.append(table)
        return story

    def build(self, doc: ReportDocument) -> bytes:
        buffer = BytesIO()
        pdf = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=0.75 * inch,
            rightMargin=0.75 * inch,
            topMargin=0.75 * inch,
            bottomMargin=0.75 * inch,
            title=f'Compliance Report - {doc.user_name}',
        )
        pdf.build(self.story(doc), onFirstPage=_footer, onLaterPages=_footer)
        return buffer.getvalue()


def _footer(canvas, pdf):
    canvas.saveState()
    canvas.setFont('Helvetica', 8)
    canvas.setFillColor(colors.grey)
    canvas.drawRightString(A4[0] - 0.75 * inch, 0.5 * inch, f'Page {pdf.page}')
    canvas.restoreState()


def render_pdf(doc: ReportDocument) -> bytes:
    """Return the PDF bytes for `doc`."""
    return ReportPDFBuilder().build(doc)
