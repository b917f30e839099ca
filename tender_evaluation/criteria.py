"""
criteria.py — Derive the subjective evaluation criteria for a lot.

One model call per lot. The criteria come from the specification only,
so every proposal in the lot is scored against the same list, in the same
order (the order is also the display order in the report).

Two parse paths:
  1. The response is (or contains) a JSON array of strings → clean it.
  2. Anything else → heuristic line parser over the raw text.
If both give nothing, the lot can't be evaluated: ExtractionFailure.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from tender_evaluation.config import Config, config as default_config
from tender_evaluation.context import EvaluationContext
from tender_evaluation.errors import ExtractionFailure, describe_error
from tender_evaluation.llm import CompletionService
from tender_evaluation.parsing import clean_criteria_list, heuristic_criteria, parse_json_output
from tender_evaluation.prompts import CRITERIA_PROMPT, format_documents
from tender_evaluation.schemas import Document


def parse_criteria_response(text: str, cfg: Optional[Config] = None) -> List[str]:
    """
    Turn a raw criteria response into 0..max_criteria clean strings.

    Never raises; an empty list means neither path found anything.
    """
    ev = (cfg or default_config).evaluation

    parsed = parse_json_output(text, expect="array")
    if parsed is not None:
        criteria = clean_criteria_list(
            parsed,
            max_items=ev.max_criteria,
            min_length=ev.criterion_min_clean_length,
            max_length=ev.criterion_max_line_length,
        )
        if criteria:
            return criteria

    return heuristic_criteria(
        text,
        max_items=ev.max_criteria,
        min_line_length=ev.criterion_min_line_length,
        max_line_length=ev.criterion_max_line_length,
        min_clean_length=ev.criterion_min_clean_length,
    )


async def extract_criteria(
    specifications: Sequence[Document],
    service: CompletionService,
    ctx: EvaluationContext,
    cfg: Optional[Config] = None,
    lot_number: Optional[int] = None,
) -> List[str]:
    """
    Ask the model for the lot's criteria.

    Raises:
        ExtractionFailure: the call failed, or no criteria could be parsed.
    """
    cfg = cfg or default_config
    log = ctx.logger

    if not specifications:
        raise ExtractionFailure(
            "No specification documents were provided; criteria cannot be derived.",
            lot_number=lot_number,
        )

    instructions = CRITERIA_PROMPT.format(max_criteria=cfg.evaluation.max_criteria)
    context = format_documents(specifications)

    try:
        raw = await service.complete(instructions, context, expect_json="array")
    except Exception as exc:
        log.error("Criteria extraction call failed for lot %s: %s", lot_number, exc)
        raise ExtractionFailure(
            f"Criteria could not be extracted: {describe_error(exc)}", lot_number=lot_number
        ) from exc

    criteria = parse_criteria_response(raw, cfg)
    if not criteria:
        log.error(
            "No criteria parsed for lot %s. First 300 chars: %s", lot_number, raw[:300]
        )
        raise ExtractionFailure(
            "No evaluation criteria could be derived from the specifications.",
            lot_number=lot_number,
        )

    log.info("Extracted %d criteria for lot %s", len(criteria), lot_number)
    for i, c in enumerate(criteria, 1):
        log.debug("  criterion %d: %s", i, c)
    return criteria
