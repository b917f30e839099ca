"""
main.py — Pipeline orchestration for TenderEval.

One class that owns the stages, a CLI on top. Per lot the stages are

  [1/3] criteria   — once per lot, shared by every proposal of the lot
  [2/3] scoring    — one call per criterion, in criterion order
  [3/3] summary    — once per proposal

Lots are evaluated one after another and so are the proposals inside a
lot. That's what makes the progress bar go 0 → 100 without jumping back.
Parallel criterion scoring can be switched on (max_concurrency > 1); the
judgments still come back in criterion order.

Failure policy, in one place:
  - a criterion that can't be scored → stub judgment, lot continues
  - a summary that can't be generated → fallback summary, lot continues
  - a lot with no derivable criteria → ExtractionFailure for that lot; in
    a multi-lot run the other lots still get evaluated
  - no credential → ConfigurationError before anything starts
- Prathamesh, 2026-03-10
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from tender_evaluation.comparator import compare_proposals
from tender_evaluation.config import Config, config as default_config
from tender_evaluation.context import EvaluationContext
from tender_evaluation.criteria import extract_criteria
from tender_evaluation.errors import ExtractionFailure, TenderEvaluationError
from tender_evaluation.evaluator import MANUAL_REVIEW_MARKER, evaluate_criterion
from tender_evaluation.llm import CompletionService
from tender_evaluation.lots import SINGLE_LOT, extract_lots
from tender_evaluation.normalizer import is_meaningful
from tender_evaluation.prompts import format_documents
from tender_evaluation.schemas import (
    ComparisonRecord,
    CriterionJudgment,
    Document,
    LotEvaluationResult,
    LotInfo,
    ProgressUpdate,
    ProposalEvaluation,
)
from tender_evaluation.summary import (
    NO_PROPOSAL_NAME,
    NO_PROPOSAL_RECOMMENDATION,
    NO_PROPOSAL_SUMMARY,
    synthesize_summary,
)

logger = logging.getLogger("tender_evaluation")

class TenderEvaluationPipeline:
    """
    End-to-end evaluation pipeline.

    Usage:
        service = build_completion_service()
        pipeline = TenderEvaluationPipeline(service)
        result = asyncio.run(pipeline.evaluate_lots(specs, proposals))
    """

    def __init__(
        self,
        service: CompletionService,
        cfg: Optional[Config] = None,
        ctx: Optional[EvaluationContext] = None,
    ):
        self.service = service
        self.cfg = cfg or default_config
        self.ctx = ctx or EvaluationContext(diagnostics_capacity=self.cfg.diagnostics_buffer_size)
        # Progress bookkeeping for the run in flight: proposals finished / total.
        self._units_done = 0
        self._units_total = 1
        self._in_run = False

    @property
    def log(self):
        return self.ctx.logger

    # ── Progress ─────────────────────────────────────────────────────────

    def _progress(self, stage: str, fraction: float = 0.0, **fields) -> None:
        done = min(self._units_done + fraction, self._units_total)
        pct = round(100.0 * done / max(self._units_total, 1), 1)
        if stage == "done":
            pct = 100.0
        self.ctx.report(ProgressUpdate(stage=stage, percentage=pct, **fields))

    # ── Lots ─────────────────────────────────────────────────────────────

    async def extract_lots(self, specifications: Sequence[Document]) -> List[LotInfo]:
        self._progress("lots", message="Identifying lots")
        return await extract_lots(specifications, self.service, self.ctx)

    # ── One proposal ─────────────────────────────────────────────────────

    def placeholder_evaluation(self, lot: LotInfo, proposal_name: str = NO_PROPOSAL_NAME) -> ProposalEvaluation:
        """The standard 'not submitted' record. No model calls."""
        return ProposalEvaluation(
            lot_number=lot.lot_number,
            lot_title=lot.title,
            proposal_name=proposal_name,
            has_proposal=False,
            criteria=[],
            summary=NO_PROPOSAL_SUMMARY,
            recommendation=NO_PROPOSAL_RECOMMENDATION,
            confidence=0.0,
        )

    async def evaluate_proposal(
        self,
        lot: LotInfo,
        criteria: Sequence[str],
        specifications: Sequence[Document],
        proposal: Document,
        index: int = 1,
        count: int = 1,
    ) -> ProposalEvaluation:
        """Score one proposal on every criterion, then summarise it."""
        t0 = time.time()
        self._progress(
            "proposal",
            lot_number=lot.lot_number,
            proposal_index=index,
            proposal_count=count,
            proposal_name=proposal.name,
            message=f"Evaluating proposal {index}/{count}: {proposal.name}",
        )

        spec_text = format_documents(specifications)
        judgments = await self._score_criteria(lot, criteria, spec_text, proposal, index, count)

        stubs = sum(1 for j in judgments if MANUAL_REVIEW_MARKER in j.strengths)
        self.log.info(
            "  ✓ %s: %d criteria scored (%d need manual review) in %.1fs",
            proposal.name, len(judgments), stubs, time.time() - t0,
        )

        self._progress(
            "summary",
            fraction=0.95,
            lot_number=lot.lot_number,
            proposal_index=index,
            proposal_count=count,
            proposal_name=proposal.name,
            message=f"Writing summary for {proposal.name}",
        )
        summary, recommendation, confidence = await synthesize_summary(
            judgments, specifications, proposal, self.service, self.ctx, self.cfg
        )

        return ProposalEvaluation(
            lot_number=lot.lot_number,
            lot_title=lot.title,
            proposal_name=proposal.name,
            has_proposal=True,
            criteria=judgments,
            summary=summary,
            recommendation=recommendation,
            confidence=confidence,
        )

    async def _score_criteria(
        self,
        lot: LotInfo,
        criteria: Sequence[str],
        spec_text: str,
        proposal: Document,
        index: int,
        count: int,
    ) -> List[CriterionJudgment]:
        total = len(criteria)

        def report(k: int, criterion: str) -> None:
            self._progress(
                "criterion",
                fraction=0.9 * k / max(total, 1),
                lot_number=lot.lot_number,
                proposal_index=index,
                proposal_count=count,
                proposal_name=proposal.name,
                message=f"Criterion {k}/{total}: {criterion}",
            )

        limit = self.cfg.evaluation.max_concurrency
        if limit <= 1:
            judgments: List[CriterionJudgment] = []
            for k, criterion in enumerate(criteria, 1):
                judgments.append(
                    await evaluate_criterion(
                        criterion, spec_text, proposal.content, self.service, self.ctx, self.cfg
                    )
                )
                report(k, criterion)
            return judgments

        semaphore = asyncio.Semaphore(limit)

        async def bounded(criterion: str) -> CriterionJudgment:
            async with semaphore:
                return await evaluate_criterion(
                    criterion, spec_text, proposal.content, self.service, self.ctx, self.cfg
                )

        # gather keeps argument order, so judgments stay in criterion order
        results = await asyncio.gather(*(bounded(c) for c in criteria))
        for k, criterion in enumerate(criteria, 1):
            report(k, criterion)
        return list(results)

    # ── One lot ──────────────────────────────────────────────────────────

    async def evaluate_lot(
        self,
        lot: LotInfo,
        specifications: Sequence[Document],
        proposals: Sequence[Document],
        has_proposal: bool = True,
    ) -> LotEvaluationResult:
        """
        Evaluate every proposal of one lot against criteria derived once.

        Proposals without usable text get a placeholder evaluation. If none
        has text (or has_proposal is False) no model call is made at all.
        The overall summary fields are filled in as for a one-lot tender.

        Raises:
            ExtractionFailure: no criteria could be derived for this lot.
        """
        t_lot = time.time()
        if not self._in_run:
            self._units_done = 0
            self._units_total = max(len(proposals), 1)
        self.log.info("=" * 60)
        self.log.info("Lot %d — %s (%d proposals)", lot.lot_number, lot.title, len(proposals))
        self.log.info("=" * 60)

        min_chars = self.cfg.ingestion.min_content_chars
        usable = [p for p in proposals if has_proposal and is_meaningful(p.content, min_chars)]

        if not usable:
            self.log.info("  ⊘ No proposal submitted for lot %d; skipping all calls", lot.lot_number)
            placeholders = (
                [self.placeholder_evaluation(lot, p.name) for p in proposals]
                if has_proposal and proposals
                else [self.placeholder_evaluation(lot)]
            )
            self._units_done += max(len(proposals), 1)
            result = LotEvaluationResult(extracted_lots=[lot], evaluations=placeholders)
            _aggregate(result)
            return result

        # ── Stage 1: Criteria ─────────────────────────────────────
        t0 = time.time()
        self.log.info("[1/3] Extracting criteria ...")
        self._progress("criteria", lot_number=lot.lot_number, message=f"Extracting criteria for lot {lot.lot_number}")
        criteria = await extract_criteria(
            specifications, self.service, self.ctx, self.cfg, lot_number=lot.lot_number
        )
        self.log.info("  ✓ %d criteria in %.1fs", len(criteria), time.time() - t0)

        # ── Stages 2-3: Scoring + summary, proposal by proposal ──
        self.log.info("[2/3] Scoring proposals ...")
        evaluations: List[ProposalEvaluation] = []
        count = len(proposals)
        for index, proposal in enumerate(proposals, 1):
            if proposal in usable:
                evaluations.append(
                    await self.evaluate_proposal(lot, criteria, specifications, proposal, index, count)
                )
            else:
                self.log.warning(
                    "  ⊘ %s has no usable text; recorded as not submitted", proposal.name
                )
                evaluations.append(self.placeholder_evaluation(lot, proposal.name))
            self._units_done += 1

        self.log.info("[3/3] Lot %d done in %.1fs", lot.lot_number, time.time() - t_lot)
        result = LotEvaluationResult(
            extracted_lots=[lot],
            extracted_criteria=list(criteria),
            evaluations=evaluations,
        )
        _aggregate(result)
        return result

    # ── Many lots ────────────────────────────────────────────────────────

    async def evaluate_lots(
        self,
        specifications: Sequence[Document],
        proposals: Sequence[Document],
        lots: Optional[Sequence[LotInfo]] = None,
    ) -> LotEvaluationResult:
        """
        Evaluate a whole tender.

        Specifications without a lot_number apply to every lot; proposals
        without one belong to the first lot. A lot whose criteria can't be
        derived is recorded in ``failed_lots`` and the run goes on.
        """
        overall_start = time.time()
        if lots is None:
            lots = await self.extract_lots(specifications)
        lots = list(lots) or [SINGLE_LOT]

        by_lot = _group_by_lot(proposals, lots)
        self._units_done = 0
        self._units_total = sum(max(len(by_lot[l.lot_number]), 1) for l in lots)
        self._in_run = True
        try:
            result = await self._evaluate_each_lot(specifications, lots, by_lot)
        finally:
            self._in_run = False

        if not result.evaluations and result.failed_lots:
            # Nothing at all could be evaluated; that's a failure, not a report.
            first = min(result.failed_lots)
            raise ExtractionFailure(result.failed_lots[first], lot_number=first)

        _aggregate(result)
        self._progress("done", message="Evaluation complete")
        self.log.info(
            "DONE in %.1fs | %d lots | %d evaluations | %d failed lots",
            time.time() - overall_start, len(lots), len(result.evaluations), len(result.failed_lots),
        )
        return result

    async def _evaluate_each_lot(
        self,
        specifications: Sequence[Document],
        lots: Sequence[LotInfo],
        by_lot: Dict[int, List[Document]],
    ) -> LotEvaluationResult:
        result = LotEvaluationResult(extracted_lots=list(lots))
        for lot in lots:
            lot_specs = [
                s for s in specifications
                if s.lot_number is None or s.lot_number == lot.lot_number
            ]
            lot_proposals = by_lot[lot.lot_number]
            units_before = self._units_done
            try:
                lot_result = await self.evaluate_lot(
                    lot, lot_specs, lot_proposals, has_proposal=bool(lot_proposals)
                )
            except ExtractionFailure as exc:
                self.log.error("Lot %d could not be evaluated: %s", lot.lot_number, exc)
                result.failed_lots[lot.lot_number] = exc.user_message
                self._units_done = units_before + max(len(lot_proposals), 1)
                continue
            for criterion in lot_result.extracted_criteria:
                if criterion not in result.extracted_criteria:
                    result.extracted_criteria.append(criterion)
            result.evaluations.extend(lot_result.evaluations)
        return result

    async def compare(self, evaluations: Sequence[ProposalEvaluation]) -> ComparisonRecord:
        return await compare_proposals(evaluations, self.service, self.ctx, self.cfg)


def _group_by_lot(proposals: Sequence[Document], lots: Sequence[LotInfo]) -> Dict[int, List[Document]]:
    known = {l.lot_number for l in lots}
    default = lots[0].lot_number
    grouped: Dict[int, List[Document]] = {n: [] for n in known}
    for p in proposals:
        n = p.lot_number if p.lot_number in known else default
        if p.lot_number is not None and p.lot_number not in known:
            logger.warning("Proposal %s names unknown lot %s; using lot %d", p.name, p.lot_number, default)
        grouped[n].append(p)
    return grouped


def _aggregate(result: LotEvaluationResult) -> None:
    """
    Overall narrative and confidence across lots.

    One real evaluation → reuse its texts. Several → one paragraph per
    evaluation. Confidence is the mean over evaluations that had a proposal.
    """
    real = [e for e in result.evaluations if e.has_proposal]
    if not real:
        result.overall_summary = NO_PROPOSAL_SUMMARY
        result.overall_recommendation = NO_PROPOSAL_RECOMMENDATION
        result.overall_confidence = 0.0
        return

    result.overall_confidence = round(sum(e.confidence for e in real) / len(real), 3)
    if len(real) == 1 and not result.failed_lots:
        result.overall_summary = real[0].summary
        result.overall_recommendation = real[0].recommendation
        return

    summary_parts = [
        f"Lot {e.lot_number} ({e.lot_title}), {e.proposal_name}: {e.summary}" for e in real
    ]
    recommendation_parts = [
        f"Lot {e.lot_number} ({e.lot_title}), {e.proposal_name}: {e.recommendation}" for e in real
    ]
    for lot_number, reason in sorted(result.failed_lots.items()):
        summary_parts.append(f"Lot {lot_number} could not be evaluated: {reason}")
    result.overall_summary = "\n\n".join(summary_parts)
    result.overall_recommendation = "\n\n".join(recommendation_parts)


# ── CLI ───────────────────────────────────────────────────────────────────

def _load_documents(
    paths: Sequence[str], role: str, lot_number: Optional[int], cfg: Config
) -> List[Document]:
    from tender_evaluation.ingestion import load_path, to_document

    docs: List[Document] = []
    for path in paths:
        upload = load_path(path, role, cfg)
        if not upload.success:
            logger.warning("%s: %s", upload.name, upload.error)
        # unreadable proposals are kept so they show up as "not submitted"
        if upload.content or role == "proposal":
            docs.append(to_document(upload, lot_number))
    return docs


async def _run_cli(args, cfg: Config) -> int:
    from tender_evaluation.llm import build_completion_service
    from tender_evaluation.report import ReportRenderer
    from tender_evaluation.schemas import CaseInfo

    service = build_completion_service(cfg)
    pipeline = TenderEvaluationPipeline(service, cfg)

    specs = _load_documents(args.spec, "specification", None, cfg)
    proposals = _load_documents(args.proposal, "proposal", args.lot, cfg)
    if not specs:
        logger.error("No readable specification documents.")
        return 1

    lots = None
    if args.lot is not None:
        lots = [LotInfo(lot_number=args.lot, title=args.lot_title or f"Lot {args.lot}")]
    elif args.single_lot:
        lots = [SINGLE_LOT]

    result = await pipeline.evaluate_lots(specs, proposals, lots)
    output = {"evaluation": result.model_dump(by_alias=True, mode="json")}

    comparison = None
    if args.compare:
        submitted = [e for e in result.evaluations if e.has_proposal]
        lot_numbers = sorted({e.lot_number for e in submitted})
        comparisons = []
        for n in lot_numbers:
            group = [e for e in submitted if e.lot_number == n]
            if len(group) >= 2:
                comparisons.append(await pipeline.compare(group))
        output["comparisons"] = [c.model_dump(by_alias=True, mode="json") for c in comparisons]
        comparison = comparisons[0] if comparisons else None

    if args.report:
        case = CaseInfo(title=args.title or "", expedient=args.case_id or "")
        renderer = ReportRenderer(cfg)
        os.makedirs(args.report, exist_ok=True)
        reports = [renderer.render_evaluation(result, case)]
        if comparison is not None:
            reports.append(renderer.render_comparison(comparison, case))
        for report in reports:
            target = Path(args.report, report.filename)
            target.write_bytes(report.content)
            logger.info("Report written to: %s (%d pages)", target, report.page_count)

    text = json.dumps(output, indent=2, ensure_ascii=False)
    if args.output:
        os.makedirs(os.path.dirname(args.output) or ".", exist_ok=True)
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text)
        logger.info("Output written to: %s", args.output)
    else:
        print(text)
    return 0


def main():
    """CLI entry point."""
    from dotenv import load_dotenv

    parser = argparse.ArgumentParser(
        prog="tender-eval",
        description="TenderEval — Evaluate tender proposals against specification documents",
    )
    parser.add_argument("--spec", "-s", action="append", required=True,
                        help="Specification document (PDF, DOCX, TXT). Repeatable.")
    parser.add_argument("--proposal", "-p", action="append", default=[],
                        help="Proposal document. Repeatable.")
    parser.add_argument("--lot", type=int, default=None, help="Evaluate as this lot number (skips lot detection)")
    parser.add_argument("--lot-title", default=None, help="Title for --lot")
    parser.add_argument("--single-lot", action="store_true", help="Skip lot detection, treat as one lot")
    parser.add_argument("--compare", action="store_true", help="Also compare proposals of each lot")
    parser.add_argument("--report", default=None, help="Directory to write PDF reports to")
    parser.add_argument("--case-id", default=None, help="Case/expedient id for the report")
    parser.add_argument("--title", default=None, help="Case title for the report")
    parser.add_argument("--output", "-o", default=None, help="JSON output path (default: stdout)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    args = parser.parse_args()
    load_dotenv()

    try:
        # Built after load_dotenv so .env values are picked up.
        cfg = Config()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else cfg.log_level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        code = asyncio.run(_run_cli(args, cfg))
    except TenderEvaluationError as exc:
        logger.error("%s: %s", exc.code, exc.user_message)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
