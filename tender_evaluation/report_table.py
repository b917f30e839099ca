"""
report_table.py — Text measurement and the comparison table geometry.

Everything here is pure measurement: given fonts and widths, how many
lines does this text take, and how tall is this table row. No drawing.
That's what lets the renderer measure a block before it commits to
placing it on the page.

Widths come from reportlab's ``pdfmetrics.stringWidth``, which uses the
real AFM metrics of the standard fonts, so a line that measures as
fitting does fit.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from reportlab.pdfbase.pdfmetrics import stringWidth

from tender_evaluation.schemas import CriterionComparison, Score

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
FONT_ITALIC = "Helvetica-Oblique"

# A run of text and whether it's bold.
Segment = Tuple[str, bool]

SHORT_SCORE_LABELS = {
    Score.MEETS_SUCCESSFULLY: "COMP",
    Score.REGULAR: "REG",
    Score.INSUFFICIENT: "INS",
}

_BOLD_RE = re.compile(r"\*\*(.+?)\*\*", re.DOTALL)


def parse_inline(text: str) -> List[Segment]:
    """
    Split '**bold**' markup into segments. Stray single asterisks (the
    model's attempt at italics or leftover list markers) are dropped.
    """
    segments: List[Segment] = []
    pos = 0
    for match in _BOLD_RE.finditer(text or ""):
        if match.start() > pos:
            segments.append((text[pos:match.start()].replace("*", ""), False))
        segments.append((match.group(1).replace("*", ""), True))
        pos = match.end()
    if pos < len(text or ""):
        segments.append((text[pos:].replace("*", ""), False))
    return [(t, b) for t, b in segments if t]


def _split_long_word(word: str, font: str, size: float, width: float) -> List[str]:
    """Hard-break a word that is wider than the whole line (URLs, ids)."""
    pieces: List[str] = []
    current = ""
    for ch in word:
        if current and stringWidth(current + ch, font, size) > width:
            pieces.append(current)
            current = ch
        else:
            current += ch
    if current:
        pieces.append(current)
    return pieces


def wrap_segments(
    segments: Sequence[Segment],
    size: float,
    width: float,
    font: str = FONT,
    bold_font: str = FONT_BOLD,
) -> List[List[Segment]]:
    """
    Greedy word wrap over mixed regular/bold runs.

    Returns lines; each line is a list of (word, bold) pairs. Newlines in
    the input force a line break, blank lines are kept as empty lines.
    """
    words: List[Tuple[str, bool, bool]] = []  # (word, bold, hard break after)
    for text, bold in segments:
        paragraphs = text.split("\n")
        for i, para in enumerate(paragraphs):
            for w in para.split():
                words.append((w, bold, False))
            if i < len(paragraphs) - 1:
                words.append(("", bold, True))

    lines: List[List[Segment]] = []
    line: List[Segment] = []
    line_width = 0.0

    for word, bold, hard_break in words:
        if hard_break:
            lines.append(line)
            line, line_width = [], 0.0
            continue
        face = bold_font if bold else font
        space = stringWidth(" ", face, size) if line else 0.0
        w = stringWidth(word, face, size)

        if line and line_width + space + w > width:
            lines.append(line)
            line, line_width, space = [], 0.0, 0.0

        if w > width:
            for piece in _split_long_word(word, face, size, width):
                if line:
                    lines.append(line)
                line = [(piece, bold)]
                line_width = stringWidth(piece, face, size)
            continue

        line.append((word, bold))
        line_width += space + w

    if line:
        lines.append(line)

    # collapse runs of empty lines and drop leading/trailing ones
    cleaned: List[List[Segment]] = []
    for ln in lines:
        if not ln and (not cleaned or not cleaned[-1]):
            continue
        cleaned.append(ln)
    while cleaned and not cleaned[-1]:
        cleaned.pop()
    return cleaned


def wrap_text(text: str, size: float, width: float, font: str = FONT) -> List[str]:
    """Plain word wrap. Returns the lines as strings."""
    lines = wrap_segments([(text or "", False)], size, width, font=font, bold_font=font)
    return [" ".join(w for w, _ in ln) for ln in lines]


def ordinal(n: int) -> str:
    """1st, 2nd, 3rd, 4th ... 11th, 12th, 13th, 21st."""
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


# ── Comparison table ──────────────────────────────────────────────────────

CRITERION_COLUMN_SHARE = 0.35
CRITERION_COLUMN_MAX = 180.0
CELL_PADDING = 4.0


def column_widths(content_width: float, proposal_count: int) -> List[float]:
    """
    Criterion column first, then one equal column per proposal.
    The criterion column takes 35% of the width but never more than 180pt.
    """
    if proposal_count < 1:
        raise ValueError("A comparison table needs at least one proposal column")
    first = min(content_width * CRITERION_COLUMN_SHARE, CRITERION_COLUMN_MAX)
    rest = (content_width - first) / proposal_count
    return [first] + [rest] * proposal_count


@dataclass
class TableRow:
    """One measured row: wrapped lines per cell and the row height."""
    cells: List[List[str]]
    bold: bool = False
    line_height: float = 11.0
    height: float = field(init=False)

    def __post_init__(self):
        self.height = self.line_count * self.line_height + 2 * CELL_PADDING

    @property
    def line_count(self) -> int:
        return max((len(c) for c in self.cells), default=1) or 1


def measure_row(
    texts: Sequence[str],
    widths: Sequence[float],
    size: float,
    line_height: float,
    bold: bool = False,
) -> TableRow:
    """Wrap every cell to its column (minus padding) and measure the row."""
    font = FONT_BOLD if bold else FONT
    cells = [
        wrap_text(text, size, max(w - 2 * CELL_PADDING, 1.0), font=font) or [""]
        for text, w in zip(texts, widths)
    ]
    return TableRow(cells=cells, bold=bold, line_height=line_height)


def header_texts(proposal_names: Sequence[str]) -> List[str]:
    return ["Criterion"] + list(proposal_names)


def row_texts(comparison: CriterionComparison, proposal_names: Sequence[str]) -> List[str]:
    """
    Criterion name, then per proposal: position and short score on the
    first line, arguments below. Columns follow ``proposal_names`` order.
    """
    by_name = {e.proposal_name: e for e in comparison.proposals}
    texts = [comparison.criterion]
    for name in proposal_names:
        entry = by_name.get(name)
        if entry is None:
            texts.append("-")
            continue
        lines = [f"{ordinal(entry.position)} · {SHORT_SCORE_LABELS.get(entry.score, entry.score.value)}"]
        lines.extend(f"- {arg}" for arg in entry.arguments)
        texts.append("\n".join(lines))
    return texts
