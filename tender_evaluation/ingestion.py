"""
ingestion.py — Turn an uploaded file into a Document's text.

The upload collaborator for the evaluation service: PDF via pdfplumber,
DOCX via python-docx, plain text as-is. It runs on bytes (that's what the
HTTP upload gives us) and also on paths, for the CLI.

Failures are per document. A corrupt proposal shouldn't fail the upload
of the other four, so everything comes back as an UploadResult with
success/error rather than an exception.

Scanned PDFs without a text layer come out nearly empty. We don't OCR
here; anything under 50 characters after normalisation is reported as a
soft failure so the evaluator knows to supply a text version.
- Prathamesh, 2026-03-08
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import List, Optional

import pdfplumber

from tender_evaluation.config import Config, config as default_config
from tender_evaluation.errors import DocumentError
from tender_evaluation.normalizer import is_meaningful, normalize_text
from tender_evaluation.schemas import Document, DocumentRole, UploadResult

logger = logging.getLogger(__name__)


def extract_text(name: str, data: bytes, cfg: Optional[Config] = None) -> str:
    """
    Raw text of a document, by extension.

    Raises:
        DocumentError: unsupported type, too large, or unreadable.
    """
    cfg = cfg or default_config
    ing = cfg.ingestion

    suffix = Path(name).suffix.lower()
    if suffix not in ing.supported_formats:
        raise DocumentError(
            f"Unsupported format '{suffix or name}'. Supported: {', '.join(ing.supported_formats)}"
        )

    size_mb = len(data) / (1024 * 1024)
    if size_mb > ing.max_file_size_mb:
        raise DocumentError(
            f"File too large ({size_mb:.1f} MB). Max: {ing.max_file_size_mb} MB"
        )

    try:
        if suffix == ".pdf":
            return _pdf_text(name, data)
        if suffix == ".docx":
            return _docx_text(name, data)
        return _txt_text(data)
    except DocumentError:
        raise
    except Exception as exc:
        # pdfplumber/pdfminer and python-docx raise a zoo of exception types
        # for corrupt files; all of them mean the same thing to the user.
        kind = {".pdf": "PDF", ".docx": "Word"}.get(suffix, "text")
        raise DocumentError(
            f"Could not read {name}: {exc}",
            user_message=f"The {kind} document could not be processed. Check that it is not corrupt.",
        ) from exc


def _pdf_text(name: str, data: bytes) -> str:
    pages: List[str] = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page in pdf.pages:
            pages.append(page.extract_text() or "")
    logger.info("Read PDF %s: %d pages", name, len(pages))
    return "\n\n".join(pages)


def _docx_text(name: str, data: bytes) -> str:
    """
    Paragraphs plus tables. Tender forms put half their content in tables
    (the criteria weighting grid, the team CVs), so skipping them loses a lot.
    """
    from docx import Document as DocxDocument

    doc = DocxDocument(io.BytesIO(data))
    parts: List[str] = [p.text for p in doc.paragraphs if p.text.strip()]

    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                parts.append(" | ".join(cells))

    logger.info("Read DOCX %s: %d text blocks", name, len(parts))
    return "\n".join(parts)


def _txt_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        # Windows-exported tender forms
        return data.decode("latin-1")


def load_upload(
    name: str,
    data: bytes,
    role: DocumentRole,
    cfg: Optional[Config] = None,
) -> UploadResult:
    """Read, normalise and check one uploaded document. Never raises."""
    cfg = cfg or default_config
    try:
        content = normalize_text(extract_text(name, data, cfg))
    except DocumentError as exc:
        logger.warning("Upload %s failed: %s", name, exc)
        return UploadResult(name=name, role=role, success=False, error=exc.user_message)

    if not is_meaningful(content, cfg.ingestion.min_content_chars):
        logger.warning(
            "Upload %s has only %d characters of text; probably a scan.", name, len(content)
        )
        return UploadResult(
            name=name,
            content=content,
            role=role,
            success=False,
            error=(
                "The document has little or no extractable text. "
                "If it is a scanned PDF, upload a text version."
            ),
        )

    return UploadResult(name=name, content=content, role=role, success=True)


def load_path(path: str, role: DocumentRole, cfg: Optional[Config] = None) -> UploadResult:
    """load_upload for a file on disk (CLI)."""
    p = Path(path)
    if not p.exists():
        return UploadResult(name=p.name, role=role, success=False, error=f"File not found: {path}")
    return load_upload(p.name, p.read_bytes(), role, cfg)


def to_document(result: UploadResult, lot_number: Optional[int] = None) -> Document:
    return Document(
        name=result.name,
        content=result.content,
        role=result.role,
        lot_number=lot_number,
    )
