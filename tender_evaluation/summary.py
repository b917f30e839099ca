"""
summary.py — Executive summary, recommendation and confidence per proposal.

One model call. When it fails or comes back unparseable we don't leave the
evaluator with nothing: a deterministic fallback averages the criterion
scores (3/2/1) and picks one of two canned texts. The 0.75 confidence in
that path is a fixed heuristic, not a calibrated number; it's a named
constant so whoever wants to change the policy changes it in one place.
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple

from tender_evaluation.config import Config, config as default_config
from tender_evaluation.context import EvaluationContext
from tender_evaluation.errors import SummaryDegradation
from tender_evaluation.llm import CompletionService
from tender_evaluation.parsing import parse_json_output
from tender_evaluation.prompts import SUMMARY_PROMPT, format_excerpts, format_judgments
from tender_evaluation.schemas import CriterionJudgment, Document, Score

SCORE_WEIGHTS: Dict[Score, int] = {
    Score.MEETS_SUCCESSFULLY: 3,
    Score.REGULAR: 2,
    Score.INSUFFICIENT: 1,
}
FALLBACK_CONFIDENCE = 0.75
FALLBACK_THRESHOLD = 2.5

# Narrative for lots/proposals that were never submitted.
NO_PROPOSAL_NAME = "No proposal"
NO_PROPOSAL_SUMMARY = "No proposal was submitted for this lot."
NO_PROPOSAL_RECOMMENDATION = (
    "No evaluation is possible because no proposal was submitted for this lot."
)

SummaryResult = Tuple[str, str, float]


def average_weight(judgments: Sequence[CriterionJudgment]) -> float:
    """Mean score weight. An empty list counts as all-REGULAR."""
    if not judgments:
        return float(SCORE_WEIGHTS[Score.REGULAR])
    return sum(SCORE_WEIGHTS[j.score] for j in judgments) / len(judgments)


def fallback_summary(judgments: Sequence[CriterionJudgment]) -> SummaryResult:
    """Deterministic (summary, recommendation, confidence) from score counts."""
    average = average_weight(judgments)
    satisfactory = average >= FALLBACK_THRESHOLD

    performance = (
        "satisfactory performance"
        if satisfactory
        else "performance that requires improvement"
    )
    summary = (
        f"The proposal has been evaluated against {len(judgments)} main criteria. "
        f"The results show {performance} in most of the evaluated aspects."
    )
    recommendation = (
        "It is recommended to consider this proposal for award with the suggested improvements."
        if satisfactory
        else "It is recommended to request clarifications or improvements before the award."
    )
    return summary, recommendation, FALLBACK_CONFIDENCE


def parse_summary(text: str) -> SummaryResult:
    """
    Raises:
        SummaryDegradation: no object, or no usable summary text in it.
    """
    data = parse_json_output(text, expect="object")
    if data is None:
        raise SummaryDegradation("Summary response contained no JSON object")

    summary = str(data.get("summary") or "").strip()
    recommendation = str(data.get("recommendation") or "").strip()
    if not summary:
        raise SummaryDegradation("Summary response had an empty summary")

    try:
        confidence = float(data.get("confidence"))
    except (TypeError, ValueError):
        confidence = FALLBACK_CONFIDENCE
    if confidence != confidence:  # NaN
        confidence = FALLBACK_CONFIDENCE
    confidence = min(1.0, max(0.0, confidence))
    return summary, recommendation, confidence


async def synthesize_summary(
    judgments: Sequence[CriterionJudgment],
    specifications: Sequence[Document],
    proposal: Document,
    service: CompletionService,
    ctx: EvaluationContext,
    cfg: Optional[Config] = None,
) -> SummaryResult:
    """Summary via the model, or the fallback. Never raises."""
    cfg = cfg or default_config
    log = ctx.logger
    limit = cfg.evaluation.summary_excerpt_chars

    instructions = SUMMARY_PROMPT.format(criteria_results=format_judgments(judgments))
    context = (
        f"TENDER SPECIFICATIONS:\n{format_excerpts(specifications, limit)}\n\n"
        f"EVALUATED PROPOSAL:\n{format_excerpts([proposal], limit)}"
    )

    try:
        raw = await service.complete(instructions, context, expect_json="object")
    except Exception as exc:
        log.warning("Summary call failed for %s: %s. Using fallback.", proposal.name, exc)
        return fallback_summary(judgments)

    try:
        return parse_summary(raw)
    except SummaryDegradation as exc:
        log.warning("Summary for %s degraded: %s. Using fallback.", proposal.name, exc)
        return fallback_summary(judgments)
