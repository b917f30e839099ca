"""
lots.py — Find the lots a tender is split into.

Most tenders we see are either a single lot or "Lot 1 ... Lot N" with a
title each. One model call; if it fails, or finds nothing, the tender is
treated as one lot so evaluation can still go ahead.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from tender_evaluation.context import EvaluationContext
from tender_evaluation.llm import CompletionService
from tender_evaluation.parsing import parse_json_output
from tender_evaluation.prompts import LOTS_PROMPT, format_documents
from tender_evaluation.schemas import Document, LotInfo

SINGLE_LOT = LotInfo(lot_number=1, title="Single lot", description="")


def parse_lots_response(text: str) -> List[LotInfo]:
    """Valid, de-duplicated lots sorted by number. Bad entries are skipped."""
    data = parse_json_output(text, expect="array")
    if data is None:
        wrapped = parse_json_output(text, expect="object")
        data = wrapped.get("lots") if isinstance(wrapped, dict) else None
    if not isinstance(data, list):
        return []

    lots: Dict[int, LotInfo] = {}
    for item in data:
        if not isinstance(item, dict):
            continue
        try:
            lot = LotInfo.model_validate(item)
        except ValidationError:
            continue
        if not lot.title.strip():
            lot = lot.model_copy(update={"title": f"Lot {lot.lot_number}"})
        # first occurrence of a number wins
        lots.setdefault(lot.lot_number, lot)
    return [lots[n] for n in sorted(lots)]


async def extract_lots(
    specifications: Sequence[Document],
    service: CompletionService,
    ctx: EvaluationContext,
) -> List[LotInfo]:
    """Lots of the tender, or a single default lot. Never raises."""
    log = ctx.logger
    if not specifications:
        log.info("No specifications for lot extraction; using a single lot.")
        return [SINGLE_LOT]

    try:
        raw = await service.complete(LOTS_PROMPT, format_documents(specifications), expect_json="array")
    except Exception as exc:
        log.warning("Lot extraction call failed: %s. Using a single lot.", exc)
        return [SINGLE_LOT]

    lots = parse_lots_response(raw)
    if not lots:
        log.info("No lots found in the specifications; using a single lot.")
        return [SINGLE_LOT]

    log.info("Found %d lots: %s", len(lots), ", ".join(str(l.lot_number) for l in lots))
    return lots


def lot_title(lots: Sequence[LotInfo], lot_number: int, default: Optional[str] = None) -> str:
    for lot in lots:
        if lot.lot_number == lot_number:
            return lot.title
    return default or f"Lot {lot_number}"
