"""
comparator.py — Rank two or more scored proposals for the same lot.

The model does the comparing. We don't compute a ranking of our own and we
don't break ties: if the model says B beats A, B beats A. What we DO check
is that the answer is well-formed before anybody sees it:

  - every criterion of the lot has a comparison
  - every comparison and the global ranking have exactly one entry per
    proposal, using the proposal names we sent (no inventions)
  - positions are 1..N with no gaps or duplicates

A malformed answer is retried (the model usually gets it right the second
time); after ``comparison_attempts`` we give up with ComparisonFailure.
There is no fallback ranking. A made-up order would be worse than none.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from tender_evaluation.config import Config, config as default_config
from tender_evaluation.context import EvaluationContext
from tender_evaluation.errors import ComparisonFailure, describe_error
from tender_evaluation.llm import CompletionService
from tender_evaluation.parsing import parse_json_output
from tender_evaluation.prompts import COMPARISON_PROMPT, format_evaluation_for_comparison
from tender_evaluation.schemas import (
    ComparisonRecord,
    CriterionComparison,
    ProposalEvaluation,
    RankingEntry,
)


def validate_positions(positions: Iterable[int], count: int) -> bool:
    """True when positions are exactly a permutation of 1..count."""
    positions = list(positions)
    return len(positions) == count and sorted(positions) == list(range(1, count + 1))


def check_preconditions(evaluations: Sequence[ProposalEvaluation]) -> None:
    """
    Raises ComparisonFailure before any call if the input can't be compared.
    """
    submitted = [e for e in evaluations if e.has_proposal]
    if len(submitted) < 2:
        raise ComparisonFailure(
            f"At least 2 submitted proposals are needed to compare, got {len(submitted)}."
        )
    lots = {e.lot_number for e in submitted}
    if len(lots) != 1:
        raise ComparisonFailure(
            f"Proposals from different lots cannot be compared: {sorted(lots)}."
        )
    names = [e.proposal_name for e in submitted]
    if len(set(names)) != len(names):
        raise ComparisonFailure("Proposal names must be unique within a comparison.")
    unscored = [e.proposal_name for e in submitted if not e.criteria]
    if unscored:
        raise ComparisonFailure(
            f"These proposals have not been scored yet: {', '.join(unscored)}."
        )


def _expected_criteria(evaluations: Sequence[ProposalEvaluation]) -> List[str]:
    """Criteria in display order, from the first evaluation that has them."""
    seen: List[str] = []
    for evaluation in evaluations:
        for judgment in evaluation.criteria:
            if judgment.criterion not in seen:
                seen.append(judgment.criterion)
    return seen


def _match_name(name: str, names: Sequence[str]) -> Optional[str]:
    """Exact match first, then case/whitespace-insensitive. No fuzzy guessing."""
    if name in names:
        return name
    folded = " ".join(name.split()).casefold()
    for candidate in names:
        if " ".join(candidate.split()).casefold() == folded:
            return candidate
    return None


def parse_comparison(
    text: str,
    evaluations: Sequence[ProposalEvaluation],
) -> ComparisonRecord:
    """
    Validate a raw comparison response into a ComparisonRecord.

    Raises:
        ComparisonFailure: with a reason describing the first problem found.
    """
    data = parse_json_output(text, expect="object")
    if data is None:
        raise ComparisonFailure("Comparison response contained no JSON object")

    names = [e.proposal_name for e in evaluations]
    count = len(names)
    criteria = _expected_criteria(evaluations)

    try:
        raw_comparisons = [
            CriterionComparison.model_validate(c) for c in _as_list(data, "criteriaComparisons")
        ]
        raw_ranking = [
            RankingEntry.model_validate(r) for r in _as_list(data, "globalRanking")
        ]
    except ValidationError as exc:
        raise ComparisonFailure(f"Comparison response has invalid entries: {exc}") from exc

    # Global ranking
    ranking = _canonical_names(raw_ranking, names, "global ranking")
    if not validate_positions((r.position for r in ranking), count):
        raise ComparisonFailure(
            f"Global ranking positions {sorted(r.position for r in ranking)} "
            f"are not a permutation of 1..{count}"
        )

    # Per-criterion comparisons, keyed back to our exact criterion strings
    by_criterion: Dict[str, CriterionComparison] = {}
    for comparison in raw_comparisons:
        key = _match_name(comparison.criterion, criteria)
        if key is None:
            raise ComparisonFailure(f"Unknown criterion in comparison: '{comparison.criterion}'")
        if key in by_criterion:
            raise ComparisonFailure(f"Criterion '{key}' appears twice in comparison")
        entries = _canonical_names(comparison.proposals, names, f"criterion '{key}'")
        if not validate_positions((e.position for e in entries), count):
            raise ComparisonFailure(
                f"Positions for criterion '{key}' are not a permutation of 1..{count}"
            )
        by_criterion[key] = CriterionComparison(
            criterion=key,
            proposals=sorted(entries, key=lambda e: e.position),
        )

    missing = [c for c in criteria if c not in by_criterion]
    if missing:
        raise ComparisonFailure(f"Comparison is missing criteria: {missing}")

    try:
        confidence = min(1.0, max(0.0, float(data.get("confidence", 0.0))))
    except (TypeError, ValueError):
        confidence = 0.0

    first = evaluations[0]
    return ComparisonRecord(
        lot_number=first.lot_number,
        lot_title=first.lot_title,
        proposal_names=names,
        criteria_comparisons=[by_criterion[c] for c in criteria],
        global_ranking=sorted(ranking, key=lambda r: r.position),
        summary=str(data.get("summary") or "").strip(),
        confidence=confidence,
    )


def _as_list(data: Dict[str, Any], key: str) -> List[Any]:
    value = data.get(key)
    if not isinstance(value, list):
        raise ComparisonFailure(f"Comparison response field '{key}' is missing or not a list")
    return value


def _canonical_names(entries, names: Sequence[str], where: str):
    """
    Rewrite each entry's proposal_name to the exact name we sent, and check
    every proposal appears exactly once.
    """
    result = []
    seen = set()
    for entry in entries:
        name = _match_name(entry.proposal_name, names)
        if name is None:
            raise ComparisonFailure(f"Unknown proposal '{entry.proposal_name}' in {where}")
        if name in seen:
            raise ComparisonFailure(f"Proposal '{name}' appears twice in {where}")
        seen.add(name)
        result.append(entry.model_copy(update={"proposal_name": name}))
    if len(result) != len(names):
        missing = [n for n in names if n not in seen]
        raise ComparisonFailure(f"{where} is missing proposals: {missing}")
    return result


async def compare_proposals(
    evaluations: Sequence[ProposalEvaluation],
    service: CompletionService,
    ctx: EvaluationContext,
    cfg: Optional[Config] = None,
) -> ComparisonRecord:
    """
    Compare the submitted proposals of one lot.

    Raises:
        ComparisonFailure: bad input, failed call, or no valid answer after
            all attempts.
    """
    cfg = cfg or default_config
    log = ctx.logger

    check_preconditions(evaluations)
    submitted = [e for e in evaluations if e.has_proposal]
    first = submitted[0]

    instructions = COMPARISON_PROMPT.format(
        count=len(submitted),
        lot_number=first.lot_number,
        lot_title=first.lot_title,
        proposal_names=", ".join(f'"{e.proposal_name}"' for e in submitted),
    )
    context = "\n\n".join(format_evaluation_for_comparison(e) for e in submitted)

    attempts = cfg.evaluation.comparison_attempts
    last_problem = ""
    for attempt in range(1, attempts + 1):
        log.info(
            "Comparing %d proposals for lot %d (attempt %d/%d)",
            len(submitted), first.lot_number, attempt, attempts,
        )
        try:
            raw = await service.complete(instructions, context, expect_json="object")
        except Exception as exc:
            log.error("Comparison call failed: %s", exc)
            raise ComparisonFailure(
                f"Comparison call failed: {exc}",
                user_message=f"The comparison could not be completed. {describe_error(exc)}",
            ) from exc

        try:
            record = parse_comparison(raw, submitted)
        except ComparisonFailure as exc:
            last_problem = str(exc)
            log.warning("Invalid comparison on attempt %d/%d: %s", attempt, attempts, exc)
            continue

        log.info(
            "Comparison done: %s",
            ", ".join(f"{r.position}. {r.proposal_name}" for r in record.global_ranking),
        )
        return record

    raise ComparisonFailure(
        f"No valid comparison after {attempts} attempts: {last_problem}",
        user_message="The comparison could not be completed. Please try again.",
    )
