"""
normalizer.py — Clean extracted document text before it goes into a prompt.

Text from pdfplumber and python-docx arrives with CRLF line endings, form
feeds, NUL bytes from broken fonts, U+FFFD replacement chars and runs of
spaces used for layout. None of it helps the model and all of it costs
tokens.

The order of the steps matters for idempotence: control characters are
removed *before* whitespace is collapsed, otherwise "a \x01 b" turns into
two spaces on the first pass and one on the second.
"""

from __future__ import annotations

import re

# C0 controls except \t and \n, DEL, and C1 controls.
_CONTROL_RE = re.compile(r"[\x00-\x08\x0B-\x1F\x7F-\x9F]")
_HSPACE_RE = re.compile(r"[ \t ]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def normalize_text(text: str) -> str:
    """
    Normalize line endings, strip control characters and collapse spacing.

    Paragraph breaks survive as a single blank line; everything else is
    single-spaced. normalize_text(normalize_text(x)) == normalize_text(x).
    """
    if not text:
        return ""

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_RE.sub("", text)
    text = text.replace("�", "")
    text = _HSPACE_RE.sub(" ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def is_meaningful(text: str, min_chars: int = 50) -> bool:
    """
    True if the text has at least ``min_chars`` non-whitespace characters.

    Below that it's almost always a scanned PDF with no text layer, or a
    placeholder — either way not something worth sending to the model.
    """
    if not text:
        return False
    return len(re.sub(r"\s", "", text)) >= min_chars
