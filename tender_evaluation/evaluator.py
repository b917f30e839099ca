"""
evaluator.py — Score one proposal against one criterion.

This is the stage that runs most often (criteria × proposals calls per
lot), so it's also the one that fails most often. The rule is simple: it
NEVER raises. A timeout, a quota error, or a response that isn't JSON all
end in the same place — a stub judgment scored REGULAR that tells the
evaluator to look at this criterion by hand. One bad criterion must not
cost us the other seven, or the whole lot.

The stub is deliberately recognisable: the marker strings below are what
the report uses to leave "Processing error" out of the references list.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from tender_evaluation.config import Config, config as default_config
from tender_evaluation.context import EvaluationContext
from tender_evaluation.errors import JudgmentDegradation
from tender_evaluation.llm import CompletionService
from tender_evaluation.parsing import parse_json_output
from tender_evaluation.prompts import EVALUATION_PROMPT
from tender_evaluation.schemas import CriterionJudgment, Score

# Degradation policy. Change these, not the code below.
STUB_SCORE = Score.REGULAR
MANUAL_REVIEW_MARKER = "Manual review required"
AUTOMATIC_EVALUATION_FAILED = "Automatic evaluation failed"
PROCESSING_ERROR_REFERENCE = "Processing error"

PLACEHOLDER_MARKERS = (
    MANUAL_REVIEW_MARKER,
    AUTOMATIC_EVALUATION_FAILED,
    PROCESSING_ERROR_REFERENCE,
)


def stub_judgment(criterion: str) -> CriterionJudgment:
    """The deterministic stand-in used whenever scoring degrades."""
    return CriterionJudgment(
        criterion=criterion,
        score=STUB_SCORE,
        justification=(
            f'Could not automatically evaluate criterion "{criterion}". '
            f"{MANUAL_REVIEW_MARKER}."
        ),
        strengths=[MANUAL_REVIEW_MARKER],
        improvements=[AUTOMATIC_EVALUATION_FAILED],
        references=[PROCESSING_ERROR_REFERENCE],
    )


def parse_judgment(
    criterion: str,
    text: str,
    max_items: int = 4,
) -> CriterionJudgment:
    """
    Build a CriterionJudgment from a raw scoring response.

    The criterion name comes from us, not the response: the model likes to
    rephrase it, and the report and comparison key on the exact string.

    Raises:
        JudgmentDegradation: no JSON object could be found in the text.
    """
    data = parse_json_output(text, expect="object")
    if data is None:
        raise JudgmentDegradation(
            f"Scoring response for '{criterion}' contained no JSON object"
        )

    payload: Dict[str, Any] = {
        "criterion": criterion,
        "score": data.get("score"),
        "justification": str(data.get("justification") or "").strip(),
    }
    for key in ("strengths", "improvements", "references"):
        payload[key] = data.get(key) or []

    judgment = CriterionJudgment.model_validate(payload)
    # Lists are capped after validation so junk entries don't eat the slots.
    return judgment.model_copy(update={
        "strengths": judgment.strengths[:max_items],
        "improvements": judgment.improvements[:max_items],
        "references": judgment.references[:max_items],
    })


async def evaluate_criterion(
    criterion: str,
    specification_text: str,
    proposal_text: str,
    service: CompletionService,
    ctx: EvaluationContext,
    cfg: Optional[Config] = None,
) -> CriterionJudgment:
    """
    Score the proposal on one criterion. Always returns a judgment.
    """
    cfg = cfg or default_config
    log = ctx.logger

    instructions = EVALUATION_PROMPT.format(criterion=criterion)
    context = (
        f"TENDER SPECIFICATIONS:\n{specification_text}\n\n"
        f"PROPOSAL TO EVALUATE:\n{proposal_text}"
    )

    try:
        raw = await service.complete(instructions, context, expect_json="object")
    except Exception as exc:
        log.warning("Scoring call failed for '%s': %s. Using stub judgment.", criterion, exc)
        return stub_judgment(criterion)

    try:
        judgment = parse_judgment(criterion, raw, max_items=cfg.evaluation.max_list_items)
    except (JudgmentDegradation, ValueError) as exc:
        log.warning(
            "Unparseable scoring response for '%s': %s. First 200 chars: %s",
            criterion, exc, raw[:200],
        )
        return stub_judgment(criterion)

    _warn_on_short_lists(judgment, cfg, log)
    log.debug("Scored '%s' as %s", criterion, judgment.score.value)
    return judgment


def _warn_on_short_lists(judgment: CriterionJudgment, cfg: Config, log) -> None:
    """2-4 strengths/improvements is asked for, not enforced. Just note it."""
    minimum = cfg.evaluation.min_list_items
    short: List[str] = [
        name for name in ("strengths", "improvements")
        if len(getattr(judgment, name)) < minimum
    ]
    if short:
        log.info(
            "Judgment for '%s' has fewer than %d %s",
            judgment.criterion, minimum, " and ".join(short),
        )
