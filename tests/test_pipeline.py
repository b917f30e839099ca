"""
test_pipeline.py — Tests for the TenderEval evaluation pipeline.

No network and no API key needed: every model call goes to the scripted
fake in tests/fakes.py. They validate:
  - Text normalisation and the "is there any text at all" check
  - The multi-strategy JSON parser and the heuristic criteria parser
  - Criteria extraction (JSON path, prose path, failure)
  - Criterion scoring and its stub judgment on any failure
  - Summary synthesis and its deterministic fallback
  - The OpenAI-backed service's retry loop (with a fake client)
  - Lot orchestration: call counts, progress, concurrency, failed lots
  - The per-run context: run-tagged diagnostics, bounded buffer

Run with:
    python tests/test_pipeline.py
    python -m pytest tests/test_pipeline.py -v
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from types import SimpleNamespace

# Make sure the project root (and the fakes next to this file) are importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from fakes import (
    ScriptedCompletionService,
    criterion_of,
    judgment_json,
    standard_router,
    summary_json,
)
from tender_evaluation.config import Config, LLMConfig
from tender_evaluation.context import DiagnosticsBuffer, EvaluationContext
from tender_evaluation.criteria import extract_criteria, parse_criteria_response
from tender_evaluation.errors import CompletionError, ConfigurationError, ExtractionFailure
from tender_evaluation.evaluator import (
    AUTOMATIC_EVALUATION_FAILED,
    MANUAL_REVIEW_MARKER,
    evaluate_criterion,
    parse_judgment,
)
from tender_evaluation.llm import OpenAICompletionService
from tender_evaluation.lots import SINGLE_LOT, parse_lots_response
from tender_evaluation.main import TenderEvaluationPipeline
from tender_evaluation.normalizer import is_meaningful, normalize_text
from tender_evaluation.parsing import heuristic_criteria, parse_json_output
from tender_evaluation.schemas import (
    CriterionJudgment,
    Document,
    LotInfo,
    Score,
    coerce_overall_score,
    coerce_score,
    OverallScore,
)
from tender_evaluation.summary import (
    FALLBACK_CONFIDENCE,
    NO_PROPOSAL_NAME,
    NO_PROPOSAL_SUMMARY,
    fallback_summary,
    parse_summary,
    synthesize_summary,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(message)s")


# ── Fixtures ──────────────────────────────────────────────────────────────

CRITERIA = [
    "Methodology and work plan",
    "Experience of the proposed team",
    "Quality assurance and control",
]

SPEC = Document(
    name="pliego_tecnico.pdf",
    role="specification",
    content=(
        "Lot 1: Cleaning of municipal buildings. The contractor shall present a "
        "methodology and work plan, describe the experience of the proposed team "
        "and its quality assurance procedures. Evaluation is qualitative."
    ),
)


def make_proposal(name: str, lot_number=None) -> Document:
    return Document(
        name=name,
        role="proposal",
        lot_number=lot_number,
        content=(
            f"{name} proposes a three-phase cleaning plan with weekly audits, a team "
            "of twelve certified operators and an ISO 9001 quality system."
        ),
    )


def make_ctx() -> EvaluationContext:
    return EvaluationContext(diagnostics=DiagnosticsBuffer(capacity=100))


def make_config(**evaluation) -> Config:
    cfg = Config()
    for key, value in evaluation.items():
        setattr(cfg.evaluation, key, value)
    return cfg


# ── Normalisation ─────────────────────────────────────────────────────────

def test_normalize_text_cleans_and_is_idempotent():
    """CRLF, control chars and runs of spaces/blank lines are normalised once."""
    raw = "Title\r\n\r\n\r\n\r\nLine\x00 one\t\t has   gaps \x07\rLast line�  "
    once = normalize_text(raw)
    assert once == "Title\n\nLine one has gaps\nLast line", repr(once)
    assert normalize_text(once) == once
    for sample in ["", "   ", "a\n\n\n\nb", "x\r\ny\rz", "\x1b[0mtext"]:
        assert normalize_text(normalize_text(sample)) == normalize_text(sample)
    print("  ✓ test_normalize_text_cleans_and_is_idempotent")


def test_is_meaningful_counts_non_whitespace():
    """Fifty visible characters is the threshold; whitespace doesn't count."""
    assert not is_meaningful("")
    assert not is_meaningful("a " * 49)
    assert is_meaningful("a " * 50)
    assert is_meaningful("x" * 50)
    print("  ✓ test_is_meaningful_counts_non_whitespace")


# ── Parsing ───────────────────────────────────────────────────────────────

def test_parse_json_output_strategies():
    """Direct, fenced and prose-wrapped JSON all decode; wrong shape is None."""
    assert parse_json_output('{"a": 1}') == {"a": 1}
    assert parse_json_output('```json\n{"a": 2}\n```') == {"a": 2}
    prose = 'Sure! Here it is: {"justification": "uses } inside", "score": "REGULAR"} Hope it helps.'
    assert parse_json_output(prose) == {"justification": "uses } inside", "score": "REGULAR"}
    assert parse_json_output('Criteria: ["A one", "B two"]', expect="array") == ["A one", "B two"]
    assert parse_json_output('["only", "array"]', expect="object") is None
    assert parse_json_output('{"truncated": "yes', expect="object") is None
    assert parse_json_output("") is None
    print("  ✓ test_parse_json_output_strategies")


def test_heuristic_criteria_filters_and_caps():
    """10 valid bullets + 2 short lines → first 8, markers stripped."""
    valid = [
        "Methodology and work plan",
        "Experience of the proposed team",
        "Quality assurance and control",
        "Environmental management measures",
        "Occupational health and safety plan",
        "Training programme for staff",
        "Incident response procedures",
        "Communication with the contracting body",
        "Innovation and technical improvements",
        "Continuity of service during strikes",
    ]
    text = "Criteria:\n" + "\n".join(f"- {c}" for c in valid[:5])
    text += "\n* Cost\n- Price\n"
    text += "\n".join(f"{i}. {c}" for i, c in enumerate(valid[5:], 6))

    result = heuristic_criteria(text)
    assert result == valid[:8], result
    assert all(not c.startswith(("-", "*", "•")) and not c[0].isdigit() for c in result)
    print("  ✓ test_heuristic_criteria_filters_and_caps")


def test_heuristic_criteria_dedupes_and_bounds():
    """Duplicates (case-insensitive) and over-long lines are dropped."""
    text = "\n".join([
        "1. Methodology and work plan",
        "2. METHODOLOGY AND WORK PLAN",
        "3. " + "x" * 120,
        '"Quality assurance and control",',
    ])
    assert heuristic_criteria(text) == [
        "Methodology and work plan",
        "Quality assurance and control",
    ]
    print("  ✓ test_heuristic_criteria_dedupes_and_bounds")


def test_heuristic_criteria_strips_markers_keeps_leading_digits():
    """Bracketed, lettered and unusual bullets go; digits that are part of the text stay."""
    text = "\n".join([
        "(1) Methodology and work plan",
        "+ Experience of the proposed team",
        "▪ Quality assurance and control",
        "a) Environmental management measures",
        "- 24/7 incident response capability",
        "- 3D modelling of the proposed works",
        "◦ Risk management approach",
        "iv. Sustainability of materials",
    ])
    assert heuristic_criteria(text) == [
        "Methodology and work plan",
        "Experience of the proposed team",
        "Quality assurance and control",
        "Environmental management measures",
        "24/7 incident response capability",
        "3D modelling of the proposed works",
        "Risk management approach",
        "Sustainability of materials",
    ]
    print("  ✓ test_heuristic_criteria_strips_markers_keeps_leading_digits")


def test_parse_criteria_response_json_path():
    """A JSON array of 5 criteria comes back as exactly those 5, in order."""
    five = CRITERIA + ["Environmental management measures", "Training programme for staff"]
    assert parse_criteria_response(json.dumps(five)) == five
    fenced = "```json\n" + json.dumps(five[:2]) + "\n```"
    assert parse_criteria_response(fenced) == five[:2]
    print("  ✓ test_parse_criteria_response_json_path")


def test_parse_criteria_response_caps_at_eight():
    """Even a well-formed array never yields more than 8 criteria."""
    many = [f"Qualitative criterion number {i}" for i in range(12)]
    assert len(parse_criteria_response(json.dumps(many))) == 8
    print("  ✓ test_parse_criteria_response_caps_at_eight")


# ── Criteria extraction ───────────────────────────────────────────────────

def test_extract_criteria_uses_one_call():
    """One call per lot, JSON array hint, criteria returned in order."""
    service = ScriptedCompletionService([json.dumps(CRITERIA)])
    criteria = asyncio.run(extract_criteria([SPEC], service, make_ctx(), lot_number=1))
    assert criteria == CRITERIA
    assert service.call_count == 1
    assert service.calls[0]["kind"] == "criteria"
    assert service.calls[0]["expect_json"] == "array"
    assert "=== DOCUMENT: pliego_tecnico.pdf ===" in service.calls[0]["context"]
    print("  ✓ test_extract_criteria_uses_one_call")


def test_extract_criteria_failures():
    """Empty output, a failed call and missing specs all raise ExtractionFailure."""
    for responses in (["   "], [ConnectionError("connection reset by peer")]):
        service = ScriptedCompletionService(responses)
        try:
            asyncio.run(extract_criteria([SPEC], service, make_ctx(), lot_number=3))
        except ExtractionFailure as exc:
            assert exc.lot_number == 3
        else:
            raise AssertionError("ExtractionFailure not raised")

    service = ScriptedCompletionService([])
    try:
        asyncio.run(extract_criteria([], service, make_ctx()))
    except ExtractionFailure:
        assert service.call_count == 0
    else:
        raise AssertionError("ExtractionFailure not raised for missing specs")
    print("  ✓ test_extract_criteria_failures")


# ── Criterion scoring ─────────────────────────────────────────────────────

def test_evaluate_criterion_network_error_gives_stub():
    """A failed call yields REGULAR + the manual review marker, never an exception."""
    service = ScriptedCompletionService([ConnectionError("network unreachable")])
    judgment = asyncio.run(
        evaluate_criterion("Team experience", "spec", "proposal", service, make_ctx())
    )
    assert judgment.criterion == "Team experience"
    assert judgment.score is Score.REGULAR
    assert MANUAL_REVIEW_MARKER in judgment.strengths
    assert AUTOMATIC_EVALUATION_FAILED in judgment.improvements
    assert "Manual review required" in judgment.justification
    print("  ✓ test_evaluate_criterion_network_error_gives_stub")


def test_evaluate_criterion_unparseable_gives_stub():
    """Prose with no JSON object degrades to the same stub."""
    service = ScriptedCompletionService(["I think the proposal is fine overall."])
    judgment = asyncio.run(
        evaluate_criterion("Team experience", "spec", "proposal", service, make_ctx())
    )
    assert judgment.score is Score.REGULAR
    assert judgment.strengths == [MANUAL_REVIEW_MARKER]
    print("  ✓ test_evaluate_criterion_unparseable_gives_stub")


def test_parse_judgment_normalises_response():
    """Our criterion name wins, legacy scores map, lists are capped at 4."""
    raw = "Result:\n" + judgment_json(
        score="cumple exitosamente",
        criterion="Something the model rephrased",
        strengths=["a1", "a2", "a3", "a4", "a5", "a6"],
        improvements=None,
    )
    judgment = parse_judgment("Methodology and work plan", raw)
    assert judgment.criterion == "Methodology and work plan"
    assert judgment.score is Score.MEETS_SUCCESSFULLY
    assert judgment.strengths == ["a1", "a2", "a3", "a4"]
    assert judgment.improvements == []
    print("  ✓ test_parse_judgment_normalises_response")


def test_score_coercion():
    """Unknown labels fall back to the safe middle values."""
    assert coerce_score("INSUFICIENTE") is Score.INSUFFICIENT
    assert coerce_score("meets successfully") is Score.MEETS_SUCCESSFULLY
    assert coerce_score("SUPERB") is Score.REGULAR
    assert coerce_score(None) is Score.REGULAR
    assert coerce_overall_score("Excelente") is OverallScore.EXCELLENT
    assert coerce_overall_score("regular") is OverallScore.AVERAGE
    assert coerce_overall_score("???") is OverallScore.AVERAGE
    print("  ✓ test_score_coercion")


# ── Summary ───────────────────────────────────────────────────────────────

def _judgments(*scores: Score):
    return [CriterionJudgment(criterion=f"Criterion {i}", score=s) for i, s in enumerate(scores)]


def test_fallback_summary_threshold():
    """Average >= 2.5 reads satisfactory; below reads 'requires improvement'."""
    good = _judgments(Score.MEETS_SUCCESSFULLY, Score.MEETS_SUCCESSFULLY, Score.REGULAR)
    summary, recommendation, confidence = fallback_summary(good)
    assert "evaluated against 3 main criteria" in summary
    assert "satisfactory performance" in summary
    assert "for award" in recommendation
    assert confidence == FALLBACK_CONFIDENCE == 0.75

    weak = _judgments(Score.MEETS_SUCCESSFULLY, Score.REGULAR)  # exactly 2.5
    assert "satisfactory performance" in fallback_summary(weak)[0]

    poor = _judgments(Score.REGULAR, Score.INSUFFICIENT)
    assert "requires improvement" in fallback_summary(poor)[0]
    assert "requires improvement" in fallback_summary([])[0]
    print("  ✓ test_fallback_summary_threshold")


def test_parse_summary_clamps_confidence():
    """Confidence outside [0,1] is clamped; garbage confidence becomes 0.75."""
    assert parse_summary(summary_json(confidence=1.7))[2] == 1.0
    assert parse_summary(summary_json(confidence=-0.2))[2] == 0.0
    raw = json.dumps({"summary": "Good.", "recommendation": "Award.", "confidence": "high"})
    assert parse_summary(raw) == ("Good.", "Award.", 0.75)
    print("  ✓ test_parse_summary_clamps_confidence")


def test_synthesize_summary_falls_back():
    """An empty summary or a failed call produces the deterministic fallback."""
    judgments = _judgments(Score.INSUFFICIENT, Score.INSUFFICIENT)
    proposal = make_proposal("acme.pdf")
    for response in ('{"summary": "", "confidence": 0.9}', TimeoutError("timed out")):
        service = ScriptedCompletionService([response])
        result = asyncio.run(
            synthesize_summary(judgments, [SPEC], proposal, service, make_ctx())
        )
        assert result == fallback_summary(judgments)
    print("  ✓ test_synthesize_summary_falls_back")


# ── Completion service ────────────────────────────────────────────────────

class _FlakyCompletions:
    """Stands in for client.chat.completions: fails ``failures`` times first."""

    def __init__(self, failures: int, text: str = '{"ok": true}'):
        self.failures = failures
        self.text = text
        self.requests = []

    async def create(self, **request):
        self.requests.append(request)
        if len(self.requests) <= self.failures:
            raise ConnectionError("connection reset")
        message = SimpleNamespace(content=self.text)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _service_with(completions: _FlakyCompletions) -> OpenAICompletionService:
    cfg = Config(llm=LLMConfig(api_key="test-key", max_retries=3, retry_base_delay=0.0))
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAICompletionService(cfg, client=client)


def test_completion_service_retries_then_succeeds():
    """Two transport failures, third attempt answers; JSON mode only for objects."""
    completions = _FlakyCompletions(failures=2)
    service = _service_with(completions)
    text = asyncio.run(service.complete("Do it", "ctx", expect_json="object"))
    assert text == '{"ok": true}'
    assert len(completions.requests) == 3
    assert completions.requests[0]["response_format"] == {"type": "json_object"}
    assert completions.requests[0]["messages"][1]["content"] == "Do it\n\nctx"

    array_completions = _FlakyCompletions(failures=0, text="[]")
    asyncio.run(_service_with(array_completions).complete("List", expect_json="array"))
    assert "response_format" not in array_completions.requests[0]
    print("  ✓ test_completion_service_retries_then_succeeds")


def test_completion_service_gives_up():
    """After max_retries the service raises CompletionError with a user message."""
    completions = _FlakyCompletions(failures=10)
    try:
        asyncio.run(_service_with(completions).complete("Do it"))
    except CompletionError as exc:
        assert len(completions.requests) == 3
        assert exc.user_message.startswith("Connection error")
    else:
        raise AssertionError("CompletionError not raised")
    print("  ✓ test_completion_service_gives_up")


def test_config_validation():
    """Bad settings fail at construction; a missing key fails on demand."""
    try:
        Config(llm=LLMConfig(api_key="k", temperature=5.0))
    except ValueError:
        pass
    else:
        raise AssertionError("ValueError not raised for temperature 5.0")

    try:
        Config(llm=LLMConfig(api_key="")).require_api_key()
    except ConfigurationError as exc:
        assert "OPENAI_API_KEY" in str(exc)
    else:
        raise AssertionError("ConfigurationError not raised")
    cfg = Config(llm=LLMConfig(api_key="k"), log_level=" debug ")
    assert cfg.log_level == "DEBUG"
    try:
        Config(llm=LLMConfig(api_key="k"), log_level="LOUD")
    except ValueError as exc:
        assert "LOG_LEVEL" in str(exc)
    else:
        raise AssertionError("ValueError not raised for LOG_LEVEL=LOUD")
    print("  ✓ test_config_validation")


# ── Lots ──────────────────────────────────────────────────────────────────

def test_parse_lots_response():
    """Wrapped or bare arrays; bad entries skipped; first duplicate wins; sorted."""
    raw = json.dumps({"lots": [
        {"lotNumber": 2, "title": "Gardening"},
        {"lotNumber": 1, "title": "Cleaning"},
        {"lotNumber": 2, "title": "Duplicate"},
        {"lotNumber": 0, "title": "Invalid"},
        "junk",
    ]})
    lots = parse_lots_response(raw)
    assert [(l.lot_number, l.title) for l in lots] == [(1, "Cleaning"), (2, "Gardening")]
    assert parse_lots_response("no lots here") == []
    print("  ✓ test_parse_lots_response")


# ── Orchestration ─────────────────────────────────────────────────────────

def test_lot_without_proposal_makes_no_calls():
    """has_proposal=False → zero calls, empty criteria, the 'no proposal' record."""
    service = ScriptedCompletionService([])
    pipeline = TenderEvaluationPipeline(service, make_config(), make_ctx())
    lot = LotInfo(lot_number=2, title="Gardening")
    result = asyncio.run(pipeline.evaluate_lot(lot, [SPEC], [make_proposal("x.pdf")], has_proposal=False))

    assert service.call_count == 0
    assert result.extracted_criteria == []
    assert len(result.evaluations) == 1
    evaluation = result.evaluations[0]
    assert evaluation.has_proposal is False
    assert evaluation.proposal_name == NO_PROPOSAL_NAME
    assert evaluation.criteria == []
    assert evaluation.summary == NO_PROPOSAL_SUMMARY
    assert evaluation.confidence == 0.0
    print("  ✓ test_lot_without_proposal_makes_no_calls")


def test_evaluate_lot_call_count_and_order():
    """1 criteria call + (criteria + 1 summary) per proposal, criteria shared."""
    service = ScriptedCompletionService(router=standard_router(CRITERIA))
    pipeline = TenderEvaluationPipeline(service, make_config(), make_ctx())
    lot = LotInfo(lot_number=1, title="Cleaning")
    proposals = [make_proposal("acme.pdf"), make_proposal("globex.pdf")]

    result = asyncio.run(pipeline.evaluate_lot(lot, [SPEC], proposals))

    assert service.call_count == 1 + 2 * (len(CRITERIA) + 1)
    assert len(service.calls_of("criteria")) == 1
    assert result.extracted_criteria == CRITERIA
    for evaluation in result.evaluations:
        assert [j.criterion for j in evaluation.criteria] == CRITERIA
        assert evaluation.has_proposal
        assert evaluation.confidence == 0.82
    # criteria scored in order, proposal by proposal
    scored = [criterion_of(c["instructions"]) for c in service.calls_of("criterion")]
    assert scored == CRITERIA + CRITERIA
    print("  ✓ test_evaluate_lot_call_count_and_order")


def test_evaluate_lot_fills_overall_fields():
    """A single lot carries the same overall summary a one-lot tender would."""
    service = ScriptedCompletionService(router=standard_router(CRITERIA))
    pipeline = TenderEvaluationPipeline(service, make_config(), make_ctx())
    lot = LotInfo(lot_number=2, title="Gardening")

    result = asyncio.run(pipeline.evaluate_lot(lot, [SPEC], [make_proposal("acme.pdf")]))
    evaluation = result.evaluations[0]
    assert result.overall_summary == evaluation.summary
    assert result.overall_recommendation == evaluation.recommendation
    assert result.overall_confidence == 0.82

    empty = asyncio.run(pipeline.evaluate_lot(lot, [SPEC], [], has_proposal=False))
    assert empty.overall_summary == NO_PROPOSAL_SUMMARY
    assert empty.overall_recommendation
    assert empty.overall_confidence == 0.0
    print("  ✓ test_evaluate_lot_fills_overall_fields")


def test_unreadable_proposal_recorded_as_not_submitted():
    """A proposal with no usable text gets a placeholder; the others are scored."""
    service = ScriptedCompletionService(router=standard_router(CRITERIA))
    pipeline = TenderEvaluationPipeline(service, make_config(), make_ctx())
    scan = Document(name="scan.pdf", role="proposal", content="  \n ")
    result = asyncio.run(
        pipeline.evaluate_lot(SINGLE_LOT, [SPEC], [make_proposal("acme.pdf"), scan])
    )
    assert [e.has_proposal for e in result.evaluations] == [True, False]
    assert result.evaluations[1].proposal_name == "scan.pdf"
    assert service.call_count == 1 + len(CRITERIA) + 1
    print("  ✓ test_unreadable_proposal_recorded_as_not_submitted")


def test_progress_is_ordered_and_monotonic():
    """Progress starts at criteria, never goes backwards and ends at done/100."""
    updates = []
    ctx = EvaluationContext(diagnostics=DiagnosticsBuffer(), progress=updates.append)
    service = ScriptedCompletionService(router=standard_router(CRITERIA))
    pipeline = TenderEvaluationPipeline(service, make_config(), ctx)
    lots = [LotInfo(lot_number=1, title="Cleaning")]
    proposals = [make_proposal("acme.pdf"), make_proposal("globex.pdf")]

    result = asyncio.run(pipeline.evaluate_lots([SPEC], proposals, lots))

    stages = [u.stage for u in updates]
    assert stages[0] == "criteria"
    assert stages[-1] == "done"
    assert stages.count("proposal") == 2
    assert stages.count("criterion") == 2 * len(CRITERIA)
    percentages = [u.percentage for u in updates]
    assert percentages == sorted(percentages), percentages
    assert percentages[-1] == 100.0
    assert [u.proposal_index for u in updates if u.stage == "proposal"] == [1, 2]
    assert result.overall_confidence == 0.82
    print("  ✓ test_progress_is_ordered_and_monotonic")


def test_broken_progress_callback_is_ignored():
    """A callback that raises doesn't stop the evaluation."""
    def explode(update):
        raise RuntimeError("display went away")

    ctx = EvaluationContext(diagnostics=DiagnosticsBuffer(), progress=explode)
    service = ScriptedCompletionService(router=standard_router(CRITERIA))
    pipeline = TenderEvaluationPipeline(service, make_config(), ctx)
    result = asyncio.run(pipeline.evaluate_lots([SPEC], [make_proposal("acme.pdf")], [SINGLE_LOT]))
    assert len(result.evaluations) == 1
    assert ctx.diagnostics.entries("WARNING")
    print("  ✓ test_broken_progress_callback_is_ignored")


def test_concurrent_scoring_keeps_criterion_order():
    """With max_concurrency > 1 the slowest-first criterion still comes first."""
    scores = {
        CRITERIA[0]: judgment_json(score="INSUFFICIENT"),
        CRITERIA[1]: judgment_json(score="REGULAR"),
        CRITERIA[2]: judgment_json(score="MEETS_SUCCESSFULLY"),
    }

    def slow_first(kind, instructions):
        return 0.05 if criterion_of(instructions) == CRITERIA[0] else 0.0

    service = ScriptedCompletionService(router=standard_router(CRITERIA, scores), delay=slow_first)
    pipeline = TenderEvaluationPipeline(service, make_config(max_concurrency=3), make_ctx())
    result = asyncio.run(pipeline.evaluate_lot(SINGLE_LOT, [SPEC], [make_proposal("acme.pdf")]))

    judgments = result.evaluations[0].criteria
    assert [j.criterion for j in judgments] == CRITERIA
    assert [j.score for j in judgments] == [
        Score.INSUFFICIENT, Score.REGULAR, Score.MEETS_SUCCESSFULLY,
    ]
    print("  ✓ test_concurrent_scoring_keeps_criterion_order")


def _multi_lot_router(fail_lot_two: bool, fail_lot_one: bool = False):
    ok = standard_router(CRITERIA)

    def route(kind, instructions, context):
        if kind == "criteria":
            if fail_lot_two and "lot2_spec.pdf" in context:
                return "Sorry."
            if fail_lot_one and "lot1_spec.pdf" in context:
                return "Sorry."
        return ok(kind, instructions, context)

    return route


def _multi_lot_inputs():
    specs = [
        SPEC.model_copy(update={"name": "lot1_spec.pdf", "lot_number": 1}),
        SPEC.model_copy(update={"name": "lot2_spec.pdf", "lot_number": 2}),
    ]
    proposals = [make_proposal("acme.pdf", lot_number=1), make_proposal("globex.pdf", lot_number=2)]
    lots = [LotInfo(lot_number=1, title="Cleaning"), LotInfo(lot_number=2, title="Gardening")]
    return specs, proposals, lots


def test_failed_lot_does_not_stop_the_run():
    """Lot 2 has no derivable criteria → recorded in failed_lots, lot 1 evaluated."""
    specs, proposals, lots = _multi_lot_inputs()
    service = ScriptedCompletionService(router=_multi_lot_router(fail_lot_two=True))
    pipeline = TenderEvaluationPipeline(service, make_config(), make_ctx())

    result = asyncio.run(pipeline.evaluate_lots(specs, proposals, lots))

    assert list(result.failed_lots) == [2]
    assert [e.lot_number for e in result.evaluations] == [1]
    assert "Lot 2 could not be evaluated" in result.overall_summary
    # lot 2 spec never leaks into lot 1's criteria prompt
    criteria_calls = service.calls_of("criteria")
    assert "lot2_spec.pdf" not in criteria_calls[0]["context"]
    print("  ✓ test_failed_lot_does_not_stop_the_run")


def test_all_lots_failed_raises():
    """If no lot yields criteria the whole run fails with ExtractionFailure."""
    specs, proposals, lots = _multi_lot_inputs()
    service = ScriptedCompletionService(router=_multi_lot_router(fail_lot_two=True, fail_lot_one=True))
    pipeline = TenderEvaluationPipeline(service, make_config(), make_ctx())
    try:
        asyncio.run(pipeline.evaluate_lots(specs, proposals, lots))
    except ExtractionFailure as exc:
        assert exc.lot_number == 1
    else:
        raise AssertionError("ExtractionFailure not raised")
    print("  ✓ test_all_lots_failed_raises")


def test_lots_extracted_when_not_given():
    """Without explicit lots one lot-detection call runs first."""
    def route(kind, instructions, context):
        if kind == "lots":
            return '[{"lotNumber": 1, "title": "Cleaning"}]'
        return standard_router(CRITERIA)(kind, instructions, context)

    service = ScriptedCompletionService(router=route)
    pipeline = TenderEvaluationPipeline(service, make_config(), make_ctx())
    result = asyncio.run(pipeline.evaluate_lots([SPEC], [make_proposal("acme.pdf")]))
    assert service.calls[0]["kind"] == "lots"
    assert [l.title for l in result.extracted_lots] == ["Cleaning"]
    assert result.evaluations[0].lot_title == "Cleaning"
    print("  ✓ test_lots_extracted_when_not_given")


# ── Context ───────────────────────────────────────────────────────────────

def test_diagnostics_tagged_and_bounded():
    """Entries carry the run id; the buffer keeps only the newest 100."""
    buffer = DiagnosticsBuffer(capacity=100)
    ctx = EvaluationContext(run_id="run42", diagnostics=buffer)
    service = ScriptedCompletionService([ConnectionError("boom")])
    asyncio.run(evaluate_criterion("Team experience", "s", "p", service, ctx))

    warnings = buffer.entries("warning")
    assert warnings and warnings[0]["runId"] == "run42"
    assert warnings[0]["message"].startswith("[run42] ")

    for i in range(150):
        ctx.logger.info("message %d", i)
    assert len(buffer) == 100
    assert buffer.entries()[-1]["message"] == "[run42] message 149"
    ctx.close()
    print("  ✓ test_diagnostics_tagged_and_bounded")


def test_contexts_do_not_share_diagnostics():
    """Two runs with their own buffers never see each other's entries."""
    a = EvaluationContext(run_id="a1", diagnostics=DiagnosticsBuffer())
    b = EvaluationContext(run_id="b2", diagnostics=DiagnosticsBuffer())
    a.logger.warning("only in a")
    assert len(a.diagnostics) == 1
    assert len(b.diagnostics) == 0
    a.close()
    b.close()
    print("  ✓ test_contexts_do_not_share_diagnostics")


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.NOTSET)
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())


def test_contexts_share_one_logger():
    """Hundreds of runs leave the logger registry the size it was."""
    EvaluationContext(diagnostics=DiagnosticsBuffer()).close()
    before = len(logging.Logger.manager.loggerDict)
    for _ in range(300):
        with EvaluationContext(diagnostics=DiagnosticsBuffer()) as ctx:
            ctx.logger.debug("scoring")
    assert len(logging.Logger.manager.loggerDict) == before
    assert not logging.getLogger("tender_evaluation.pipeline").handlers
    print("  ✓ test_contexts_share_one_logger")


def test_debug_lines_follow_console_level():
    """DEBUG reaches the run's buffer but not an INFO console."""
    root = logging.getLogger()
    console = _ListHandler()
    old_level = root.level
    root.addHandler(console)
    root.setLevel(logging.INFO)
    try:
        ctx = EvaluationContext(run_id="dbg1", diagnostics=DiagnosticsBuffer())
        ctx.logger.debug("criterion detail")
        ctx.logger.info("criterion done")
        assert console.messages == ["[dbg1] criterion done"]
        assert [e["level"] for e in ctx.diagnostics.entries()] == ["DEBUG", "INFO"]

        root.setLevel(logging.DEBUG)
        ctx.logger.debug("verbose now")
        assert console.messages[-1] == "[dbg1] verbose now"
        ctx.close()
    finally:
        root.removeHandler(console)
        root.setLevel(old_level)
    print("  ✓ test_debug_lines_follow_console_level")


# ── Runner ────────────────────────────────────────────────────────────────

def run_all_tests():
    """Run all tests and report results."""
    print("\n" + "=" * 60)
    print("  TenderEval — Pipeline Test Suite")
    print("=" * 60 + "\n")

    tests = [
        # Normalisation
        test_normalize_text_cleans_and_is_idempotent,
        test_is_meaningful_counts_non_whitespace,
        # Parsing
        test_parse_json_output_strategies,
        test_heuristic_criteria_filters_and_caps,
        test_heuristic_criteria_dedupes_and_bounds,
        test_heuristic_criteria_strips_markers_keeps_leading_digits,
        test_parse_criteria_response_json_path,
        test_parse_criteria_response_caps_at_eight,
        # Criteria
        test_extract_criteria_uses_one_call,
        test_extract_criteria_failures,
        # Scoring
        test_evaluate_criterion_network_error_gives_stub,
        test_evaluate_criterion_unparseable_gives_stub,
        test_parse_judgment_normalises_response,
        test_score_coercion,
        # Summary
        test_fallback_summary_threshold,
        test_parse_summary_clamps_confidence,
        test_synthesize_summary_falls_back,
        # Completion service + config
        test_completion_service_retries_then_succeeds,
        test_completion_service_gives_up,
        test_config_validation,
        # Lots + orchestration
        test_parse_lots_response,
        test_lot_without_proposal_makes_no_calls,
        test_evaluate_lot_call_count_and_order,
        test_evaluate_lot_fills_overall_fields,
        test_unreadable_proposal_recorded_as_not_submitted,
        test_progress_is_ordered_and_monotonic,
        test_broken_progress_callback_is_ignored,
        test_concurrent_scoring_keeps_criterion_order,
        test_failed_lot_does_not_stop_the_run,
        test_all_lots_failed_raises,
        test_lots_extracted_when_not_given,
        # Context
        test_diagnostics_tagged_and_bounded,
        test_contexts_do_not_share_diagnostics,
        test_contexts_share_one_logger,
        test_debug_lines_follow_console_level,
    ]

    passed = 0
    failed = 0

    for test_fn in tests:
        try:
            test_fn()
            passed += 1
        except Exception as exc:
            failed += 1
            print(f"  ✗ {test_fn.__name__} FAILED: {exc}")

    print(f"\n{'=' * 60}")
    print(f"  Results: {passed} passed, {failed} failed, {len(tests)} total")
    print(f"{'=' * 60}\n")

    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
