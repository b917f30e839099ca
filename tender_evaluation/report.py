"""
report.py — PDF reports for evaluations and comparisons.

Drawn directly on a reportlab canvas rather than through platypus: the
layout needs to know, before drawing anything, whether a block fits on the
current page, and it needs a footer and a condensed header on every page
break. So the renderer is a small state machine:

    MEASURING  → work out how tall the next block is (wrapped line counts)
    WRITING    → it fits: draw it and advance the cursor
    PAGE_BREAK → it doesn't: footer, new page, condensed header, back to
                 WRITING at the continuation top offset
    DONE       → last footer drawn, document saved

The cursor runs top-down in points (0 = top edge) and is converted to
reportlab's bottom-up coordinates only when drawing. Nothing is ever
drawn below ``page_height - footer_reserve`` except the footer itself.

Long paragraphs flow line by line across pages. Headings are kept with
the first lines of what follows them. Table rows are wrapped to their
full height; a row taller than a page is split and the header row is
repeated on the next page.
- Prathamesh, 2026-03-12
"""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Sequence

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas as pdf_canvas

from tender_evaluation.config import Config, ReportConfig, config as default_config
from tender_evaluation.errors import RenderFailure
from tender_evaluation.evaluator import PLACEHOLDER_MARKERS
from tender_evaluation.report_table import (
    CELL_PADDING,
    FONT,
    FONT_BOLD,
    FONT_ITALIC,
    Segment,
    TableRow,
    column_widths,
    header_texts,
    measure_row,
    ordinal,
    parse_inline,
    row_texts,
    wrap_segments,
)
from tender_evaluation.schemas import (
    CaseInfo,
    ComparisonRecord,
    LotEvaluationResult,
    OverallScore,
    ProposalEvaluation,
    Score,
)
from tender_evaluation.summary import NO_PROPOSAL_NAME

logger = logging.getLogger(__name__)

SCORE_LABELS = {
    Score.MEETS_SUCCESSFULLY: "Meets successfully",
    Score.REGULAR: "Regular",
    Score.INSUFFICIENT: "Insufficient",
}
OVERALL_LABELS = {
    OverallScore.EXCELLENT: "Excellent",
    OverallScore.GOOD: "Good",
    OverallScore.AVERAGE: "Average",
    OverallScore.POOR: "Poor",
}
SCORE_COLORS = {
    Score.MEETS_SUCCESSFULLY: colors.HexColor("#1E7B34"),
    Score.REGULAR: colors.HexColor("#B7791F"),
    Score.INSUFFICIENT: colors.HexColor("#C53030"),
}

ACCENT = colors.HexColor("#1F3A68")
MUTED = colors.HexColor("#6B7280")
GRID = colors.HexColor("#D1D5DB")
HEADER_FILL = colors.HexColor("#E8EDF5")
STRENGTH_COLOR = colors.HexColor("#1E7B34")
IMPROVEMENT_COLOR = colors.HexColor("#C53030")
NOTICE_FILL = colors.HexColor("#FFF7D6")
NOTICE_BORDER = colors.HexColor("#E0B400")

BODY_SIZE = 10.0
SMALL_SIZE = 8.0
SECTION_SIZE = 14.0
SUBSECTION_SIZE = 12.0
INFO_VALUE_OFFSET = 142.0  # label column width (~50 mm)

REFERENCE_MIN_LENGTH = 10
REFERENCE_MAX_LENGTH = 200

NO_PROPOSAL_NOTICE = "No proposal was submitted for this lot"


class RenderState(str, Enum):
    MEASURING = "MEASURING"
    WRITING = "WRITING"
    PAGE_BREAK = "PAGE_BREAK"
    DONE = "DONE"


@dataclass
class RenderedReport:
    content: bytes
    filename: str
    page_count: int


def report_filename(kind: str, case_id: str, on: Optional[date] = None) -> str:
    """
    ``{kind}_{case_id}_{YYYY-MM-DD}.pdf`` with anything that isn't safe in
    a file name replaced by '-'.
    """
    def sanitize(value: str, fallback: str) -> str:
        cleaned = re.sub(r"[^A-Za-z0-9.-]+", "-", value or "").strip("-.")
        return cleaned or fallback

    day = (on or date.today()).isoformat()
    return f"{sanitize(kind, 'report')}_{sanitize(case_id, 'unnamed')}_{day}.pdf"


def printable_references(references: Sequence[str]) -> List[str]:
    """References worth printing: no placeholder markers, 10 < len < 200."""
    markers = [m.lower() for m in PLACEHOLDER_MARKERS] + ["error", "manual review"]
    kept = []
    for ref in references:
        text = ref.strip()
        if any(m in text.lower() for m in markers):
            continue
        if REFERENCE_MIN_LENGTH < len(text) < REFERENCE_MAX_LENGTH:
            kept.append(text)
    return kept


class PageLayout:
    """
    Cursor, pages and the state machine. One instance per document.

    Drawing methods all follow the same pattern: measure → ensure(height)
    → draw → advance.
    """

    def __init__(self, cfg: ReportConfig, title: str, subtitle: str, running_header: str):
        self.cfg = cfg
        self.buffer = io.BytesIO()
        self.canvas = pdf_canvas.Canvas(self.buffer, pagesize=A4)
        self.canvas.setTitle(title)
        self.page_width, self.page_height = A4
        self.left = cfg.margin
        self.content_width = self.page_width - 2 * cfg.margin
        self.bottom_limit = self.page_height - cfg.footer_reserve
        self.running_header = running_header
        self.page_number = 1
        self.state = RenderState.WRITING
        self.transitions: List[RenderState] = []

        self._first_page_header(title, subtitle)
        self.cursor = cfg.first_page_top
        self.page_top = cfg.first_page_top

    # ── state machine ────────────────────────────────────────────────────

    def _enter(self, state: RenderState) -> None:
        self.state = state
        self.transitions.append(state)

    def fits(self, height: float) -> bool:
        return self.cursor + height <= self.bottom_limit

    def ensure(self, height: float) -> None:
        """
        MEASURING → (PAGE_BREAK →) WRITING. A block that doesn't fit even on
        a fresh page is drawn anyway at the top; the callers that can split
        (paragraphs, table rows) never ask for more than one line at a time.
        """
        self._enter(RenderState.MEASURING)
        if not self.fits(height) and self.cursor > self.page_top:
            self.page_break()
        self._enter(RenderState.WRITING)

    def page_break(self) -> None:
        self._enter(RenderState.PAGE_BREAK)
        self._footer()
        self.canvas.showPage()
        self.page_number += 1
        self._continuation_header()
        self.cursor = self.cfg.continuation_top
        self.page_top = self.cfg.continuation_top

    def finish(self) -> bytes:
        self._footer()
        self.canvas.save()
        self._enter(RenderState.DONE)
        return self.buffer.getvalue()

    # ── page furniture ───────────────────────────────────────────────────

    def y(self, cursor: float) -> float:
        return self.page_height - cursor

    def _first_page_header(self, title: str, subtitle: str) -> None:
        c = self.canvas
        c.setFillColor(ACCENT)
        c.setFont(FONT_BOLD, 18)
        c.drawString(self.left, self.y(113), title)
        if subtitle:
            c.setFillColor(colors.black)
            c.setFont(FONT, 12)
            c.drawString(self.left, self.y(156), _fit(subtitle, FONT, 12, self.content_width))
        c.setStrokeColor(ACCENT)
        c.setLineWidth(1.2)
        c.line(self.left, self.y(184), self.left + self.content_width, self.y(184))
        c.setFillColor(colors.black)

    def _continuation_header(self) -> None:
        c = self.canvas
        c.setFillColor(MUTED)
        c.setFont(FONT, 9)
        c.drawString(self.left, self.y(57), _fit(self.running_header, FONT, 9, self.content_width))
        c.setStrokeColor(GRID)
        c.setLineWidth(0.5)
        c.line(self.left, self.y(71), self.left + self.content_width, self.y(71))
        c.setFillColor(colors.black)

    def _footer(self) -> None:
        cfg = self.cfg
        c = self.canvas
        c.saveState()
        base = 71.0  # 25 mm from the bottom edge
        c.setStrokeColor(GRID)
        c.setLineWidth(0.5)
        c.line(self.left, base + 12, self.left + self.content_width, base + 12)
        c.setFont(FONT, SMALL_SIZE)
        c.setFillColor(MUTED)
        c.drawString(self.left, base, cfg.organisation)
        if cfg.website:
            c.drawCentredString(self.page_width / 2, base, cfg.website)
        c.drawRightString(self.left + self.content_width, base, f"Page {self.page_number}")
        if cfg.address:
            c.drawString(self.left, base - 11, _fit(cfg.address, FONT, SMALL_SIZE, self.content_width))
        c.restoreState()

    # ── blocks ───────────────────────────────────────────────────────────

    def space(self, points: float) -> None:
        if self.cursor > self.page_top:
            self.cursor = min(self.cursor + points, self.bottom_limit)

    def heading(self, text: str, size: float = SECTION_SIZE, color=ACCENT, keep_lines: int = 3) -> None:
        """Heading kept together with ``keep_lines`` body lines after it."""
        lh = size * 1.3
        lines = wrap_segments([(text, True)], size, self.content_width)
        self.ensure(len(lines) * lh + keep_lines * self.cfg.line_height)
        self.canvas.setFillColor(color)
        for line in lines:
            self.cursor += size
            self._draw_line(line, self.left, size)
            self.cursor += lh - size
        self.canvas.setFillColor(colors.black)
        self.cursor += size * 0.5

    def paragraph(
        self,
        text: str,
        size: float = BODY_SIZE,
        indent: float = 0.0,
        color=colors.black,
        font: str = FONT,
        rich: bool = True,
    ) -> None:
        """Wrapped text that flows across pages one line at a time."""
        segments: List[Segment] = parse_inline(text) if rich else [(text, False)]
        lines = wrap_segments(segments, size, self.content_width - indent, font=font)
        self._flow(lines, self.left + indent, size, color, font)

    def _flow(self, lines, x: float, size: float, color, font: str = FONT) -> None:
        lh = self.cfg.line_height * size / BODY_SIZE
        for line in lines:
            self.ensure(lh)
            if line:
                self.canvas.setFillColor(color)
                self.cursor += size
                self._draw_line(line, x, size, font)
                self.cursor += lh - size
            else:
                self.cursor += lh * 0.5
        self.canvas.setFillColor(colors.black)

    def bullets(self, items: Sequence[str], color=colors.black, size: float = BODY_SIZE) -> None:
        indent = 14.0
        for item in items:
            lines = wrap_segments(parse_inline(item), size, self.content_width - indent)
            if not lines:
                continue
            lh = self.cfg.line_height * size / BODY_SIZE
            self.ensure(lh)
            self.canvas.setFillColor(color)
            self.canvas.setFont(FONT, size)
            self.canvas.drawString(self.left + 4, self.y(self.cursor + size), "•")
            self._flow(lines, self.left + indent, size, color)

    def info_item(self, label: str, value: str) -> None:
        """'Label:' in bold, value in the second column, wrapped."""
        width = self.content_width - INFO_VALUE_OFFSET
        lines = wrap_segments([(value or "-", False)], BODY_SIZE, width)
        lh = self.cfg.line_height
        self.ensure(lh * min(len(lines), 2))
        self.canvas.setFont(FONT_BOLD, BODY_SIZE)
        self.canvas.drawString(self.left, self.y(self.cursor + BODY_SIZE), f"{label}:")
        self._flow(lines, self.left + INFO_VALUE_OFFSET, BODY_SIZE, colors.black)

    def labelled(self, label: str, text: str, color=colors.black) -> None:
        self.paragraph(f"**{label}** {text}", color=color)

    def rule(self, color=GRID) -> None:
        self.ensure(10)
        self.cursor += 5
        self.canvas.setStrokeColor(color)
        self.canvas.setLineWidth(0.5)
        self.canvas.line(self.left, self.y(self.cursor), self.left + self.content_width, self.y(self.cursor))
        self.cursor += 5

    def notice(self, text: str, fill=NOTICE_FILL, border=NOTICE_BORDER) -> None:
        """A filled box with a short message. Never split."""
        pad = 8.0
        lines = wrap_segments([(text, True)], BODY_SIZE, self.content_width - 2 * pad)
        height = len(lines) * self.cfg.line_height + 2 * pad
        self.ensure(height + 6)
        c = self.canvas
        c.setFillColor(fill)
        c.setStrokeColor(border)
        c.setLineWidth(0.8)
        c.rect(self.left, self.y(self.cursor + height), self.content_width, height, stroke=1, fill=1)
        c.setFillColor(colors.black)
        self.cursor += pad
        for line in lines:
            self.cursor += BODY_SIZE
            self._draw_line(line, self.left + pad, BODY_SIZE)
            self.cursor += self.cfg.line_height - BODY_SIZE
        self.cursor += pad + 6

    # ── table ────────────────────────────────────────────────────────────

    def table(self, header: Sequence[str], rows: Sequence[Sequence[str]], size: float = 8.5) -> None:
        """
        Measure-then-wrap table. Cells keep all their lines; the header row
        is redrawn at the top of every page the table continues on.
        """
        widths = column_widths(self.content_width, len(header) - 1)
        lh = size * 1.3
        head = measure_row(header, widths, size, lh, bold=True)

        def draw_header():
            self._draw_row(head, widths, size, 0, head.line_count, fill=HEADER_FILL)

        # header plus at least one line of the first row on the same page
        self.ensure(head.height + lh + 2 * CELL_PADDING)
        draw_header()

        fresh_page_room = self.bottom_limit - self.cfg.continuation_top - head.height

        def break_table():
            self._enter(RenderState.MEASURING)
            self.page_break()
            self._enter(RenderState.WRITING)
            draw_header()

        for texts in rows:
            row = measure_row(texts, widths, size, lh)
            # a row that fits on a fresh page is moved there whole, not split
            if row.height > self.bottom_limit - self.cursor and row.height <= fresh_page_room:
                break_table()
            start = 0
            while start < row.line_count:
                room = int((self.bottom_limit - self.cursor - 2 * CELL_PADDING) // lh)
                if room < 1:
                    break_table()
                    room = int((self.bottom_limit - self.cursor - 2 * CELL_PADDING) // lh)
                    if room < 1:
                        raise ValueError("Page too small to hold a single table line")
                end = min(row.line_count, start + room)
                self._draw_row(row, widths, size, start, end)
                start = end
        self.cursor += 8

    def _draw_row(
        self,
        row: TableRow,
        widths: Sequence[float],
        size: float,
        start: int,
        end: int,
        fill=None,
    ) -> None:
        c = self.canvas
        height = (end - start) * row.line_height + 2 * CELL_PADDING
        top = self.cursor
        x = self.left
        for width, cell in zip(widths, row.cells):
            if fill is not None:
                c.setFillColor(fill)
                c.rect(x, self.y(top + height), width, height, stroke=0, fill=1)
            c.setStrokeColor(GRID)
            c.setLineWidth(0.5)
            c.rect(x, self.y(top + height), width, height, stroke=1, fill=0)
            c.setFillColor(colors.black)
            c.setFont(FONT_BOLD if row.bold else FONT, size)
            line_top = top + CELL_PADDING
            for text in cell[start:end]:
                c.drawString(x + CELL_PADDING, self.y(line_top + size), text)
                line_top += row.line_height
            x += width
        self.cursor = top + height

    # ── low level ────────────────────────────────────────────────────────

    def _draw_line(self, words: Sequence[Segment], x: float, size: float, font: str = FONT) -> None:
        """Draw one wrapped line at the current cursor baseline."""
        c = self.canvas
        baseline = self.y(self.cursor)
        for i, (word, bold) in enumerate(words):
            face = FONT_BOLD if bold else font
            text = word if i == len(words) - 1 else word + " "
            c.setFont(face, size)
            c.drawString(x, baseline, text)
            x += c.stringWidth(text, face, size)


def _fit(text: str, font: str, size: float, width: float) -> str:
    """Single-line text cut to width with an ellipsis (headers and footers only)."""
    if stringWidth(text, font, size) <= width:
        return text
    while text and stringWidth(text + "...", font, size) > width:
        text = text[:-1]
    return text + "..."


class ReportRenderer:
    """
    Builds the two report kinds. Stateless apart from config; safe to
    share between requests.
    """

    def __init__(self, cfg: Optional[Config] = None):
        self.cfg = cfg or default_config

    # ── evaluation ───────────────────────────────────────────────────────

    def render_evaluation(
        self,
        result: LotEvaluationResult,
        case: Optional[CaseInfo] = None,
        on: Optional[date] = None,
    ) -> RenderedReport:
        """
        Title → general info → overall summary → per lot / per proposal
        criteria → overall recommendation. Footer on every page.

        Raises:
            RenderFailure: anything that goes wrong while laying out or saving.
        """
        case = case or CaseInfo()
        day = on or date.today()
        try:
            layout = PageLayout(
                self.cfg.report,
                title="Tender Evaluation Report",
                subtitle=case.title or case.expedient,
                running_header=_running_header("Tender Evaluation Report", case),
            )
            self._evaluation_body(layout, result, case, day)
            content = layout.finish()
        except Exception as exc:
            logger.error("Evaluation report failed: %s", exc)
            raise RenderFailure(
                f"Could not render evaluation report: {exc}",
                user_message="The PDF report could not be generated.",
            ) from exc

        name = report_filename("evaluation", case.expedient, day)
        logger.info("Rendered %s (%d pages, %d bytes)", name, layout.page_number, len(content))
        return RenderedReport(content=content, filename=name, page_count=layout.page_number)

    def _evaluation_body(self, layout: PageLayout, result: LotEvaluationResult, case: CaseInfo, day: date) -> None:
        submitted = [e for e in result.evaluations if e.has_proposal]

        layout.heading("General information")
        _case_info(layout, case, day)
        layout.info_item("Lots", str(len(result.extracted_lots) or 1))
        layout.info_item("Proposals evaluated", str(len(submitted)))
        if result.extracted_criteria:
            layout.info_item("Criteria", str(len(result.extracted_criteria)))
        if submitted:
            layout.info_item("Overall confidence", f"{result.overall_confidence:.0%}")
        layout.space(10)

        if result.overall_summary:
            layout.heading("Overall summary")
            layout.paragraph(result.overall_summary)
            layout.space(10)

        by_lot: Dict[int, List[ProposalEvaluation]] = {}
        for evaluation in result.evaluations:
            by_lot.setdefault(evaluation.lot_number, []).append(evaluation)
        titles = {l.lot_number: l.title for l in result.extracted_lots}
        lot_numbers = sorted(set(by_lot) | set(result.failed_lots) | set(titles))

        for lot_number in lot_numbers:
            title = titles.get(lot_number) or next(
                (e.lot_title for e in by_lot.get(lot_number, [])), f"Lot {lot_number}"
            )
            layout.heading(f"Lot {lot_number}: {title}")
            if lot_number in result.failed_lots:
                layout.notice(f"This lot could not be evaluated: {result.failed_lots[lot_number]}")
                continue
            evaluations = by_lot.get(lot_number, [])
            if not evaluations:
                layout.notice(NO_PROPOSAL_NOTICE)
                continue
            for evaluation in evaluations:
                self._proposal_block(layout, evaluation)

        if result.overall_recommendation:
            layout.heading("General analysis")
            layout.paragraph(result.overall_recommendation)

    def _proposal_block(self, layout: PageLayout, evaluation: ProposalEvaluation) -> None:
        if not evaluation.has_proposal:
            if evaluation.proposal_name and evaluation.proposal_name != NO_PROPOSAL_NAME:
                layout.heading(f"Proposal: {evaluation.proposal_name}", size=SUBSECTION_SIZE, color=colors.black)
            layout.notice(NO_PROPOSAL_NOTICE)
            return

        layout.heading(f"Proposal: {evaluation.proposal_name}", size=SUBSECTION_SIZE, color=colors.black)
        layout.info_item("Confidence", f"{evaluation.confidence:.0%}")
        if evaluation.summary:
            layout.labelled("Summary:", "")
            layout.paragraph(evaluation.summary)
        layout.space(6)

        for judgment in evaluation.criteria:
            layout.heading(judgment.criterion, size=11, color=ACCENT, keep_lines=2)
            layout.paragraph(
                f"**Score:** {SCORE_LABELS[judgment.score]}",
                color=SCORE_COLORS[judgment.score],
            )
            if judgment.justification:
                layout.paragraph("**Explanation:**")
                layout.paragraph(judgment.justification)
            if judgment.strengths:
                layout.paragraph("**Strengths:**", color=STRENGTH_COLOR)
                layout.bullets(judgment.strengths, color=STRENGTH_COLOR)
            if judgment.improvements:
                layout.paragraph("**Improvements:**", color=IMPROVEMENT_COLOR)
                layout.bullets(judgment.improvements, color=IMPROVEMENT_COLOR)
            references = printable_references(judgment.references)
            if references:
                layout.paragraph(
                    "References: " + ", ".join(references),
                    size=9, color=MUTED, font=FONT_ITALIC, rich=False,
                )
            layout.rule()

        if evaluation.recommendation:
            layout.labelled("Recommendation:", "")
            layout.paragraph(evaluation.recommendation)
        layout.space(10)

    # ── comparison ───────────────────────────────────────────────────────

    def render_comparison(
        self,
        record: ComparisonRecord,
        case: Optional[CaseInfo] = None,
        on: Optional[date] = None,
    ) -> RenderedReport:
        """
        Title → general info → comparison summary → global ranking →
        criteria table → detailed analysis per criterion. Footer on every page.

        Raises:
            RenderFailure: anything that goes wrong while laying out or saving.
        """
        case = case or CaseInfo()
        day = on or date.today()
        try:
            layout = PageLayout(
                self.cfg.report,
                title="Proposal Comparison Report",
                subtitle=f"Lot {record.lot_number}: {record.lot_title}",
                running_header=_running_header(
                    f"Proposal Comparison Report, lot {record.lot_number}", case
                ),
            )
            self._comparison_body(layout, record, case, day)
            content = layout.finish()
        except Exception as exc:
            logger.error("Comparison report failed: %s", exc)
            raise RenderFailure(
                f"Could not render comparison report: {exc}",
                user_message="The PDF comparison report could not be generated.",
            ) from exc

        case_id = f"{case.expedient}_lot-{record.lot_number}" if case.expedient else f"lot-{record.lot_number}"
        name = report_filename("comparison", case_id, day)
        logger.info("Rendered %s (%d pages, %d bytes)", name, layout.page_number, len(content))
        return RenderedReport(content=content, filename=name, page_count=layout.page_number)

    def _comparison_body(self, layout: PageLayout, record: ComparisonRecord, case: CaseInfo, day: date) -> None:
        layout.heading("General information")
        _case_info(layout, case, day)
        layout.info_item("Lot", f"{record.lot_number}: {record.lot_title}")
        layout.info_item("Proposals compared", ", ".join(record.proposal_names))
        layout.info_item("Confidence", f"{record.confidence:.0%}")
        layout.space(10)

        if record.summary:
            layout.heading("Comparison summary")
            layout.paragraph(record.summary)
            layout.space(10)

        layout.heading("Global ranking")
        for entry in sorted(record.global_ranking, key=lambda r: r.position):
            layout.heading(
                f"{ordinal(entry.position)} place: {entry.proposal_name}",
                size=SUBSECTION_SIZE, color=colors.black, keep_lines=2,
            )
            layout.paragraph(f"**Overall score:** {OVERALL_LABELS[entry.overall_score]}")
            if entry.strengths:
                layout.paragraph("**Strengths:**", color=STRENGTH_COLOR)
                layout.bullets(entry.strengths, color=STRENGTH_COLOR)
            if entry.weaknesses:
                layout.paragraph("**Weaknesses:**", color=IMPROVEMENT_COLOR)
                layout.bullets(entry.weaknesses, color=IMPROVEMENT_COLOR)
            if entry.recommendation:
                layout.paragraph(f"**Recommendation:** {entry.recommendation}")
            layout.space(8)

        if record.criteria_comparisons:
            # column order follows the ranking so the best proposal is leftmost
            names = [r.proposal_name for r in sorted(record.global_ranking, key=lambda r: r.position)]
            names = names or list(record.proposal_names)
            layout.heading("Criteria comparison table", keep_lines=4)
            layout.paragraph(
                "COMP = meets successfully, REG = regular, INS = insufficient. "
                "The ordinal is the position for that criterion.",
                size=8, color=MUTED, rich=False,
            )
            layout.space(4)
            layout.table(
                header_texts(names),
                [row_texts(c, names) for c in record.criteria_comparisons],
            )

            layout.heading("Detailed analysis by criterion")
            for comparison in record.criteria_comparisons:
                layout.heading(comparison.criterion, size=11, color=ACCENT, keep_lines=2)
                for entry in sorted(comparison.proposals, key=lambda e: e.position):
                    layout.paragraph(
                        f"**{ordinal(entry.position)}. {entry.proposal_name}** "
                        f"({SCORE_LABELS[entry.score]})",
                        color=SCORE_COLORS[entry.score],
                    )
                    if entry.arguments:
                        layout.bullets(entry.arguments)
                layout.rule()


def _running_header(title: str, case: CaseInfo) -> str:
    parts = [title]
    if case.expedient:
        parts.append(case.expedient)
    if case.title:
        parts.append(case.title)
    return " | ".join(parts)


def _case_info(layout: PageLayout, case: CaseInfo, day: date) -> None:
    if case.expedient:
        layout.info_item("Case", case.expedient)
    if case.title:
        layout.info_item("Title", case.title)
    if case.entity:
        layout.info_item("Contracting entity", case.entity)
    if case.context:
        layout.info_item("Context", case.context)
    layout.info_item("Date", day.strftime("%d/%m/%Y"))
