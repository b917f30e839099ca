"""
schemas.py — Pydantic v2 models for the evaluation data model.

Python code uses snake_case; everything that crosses the HTTP boundary or
comes back from the model is camelCase (``lotNumber``, ``globalRanking``),
so every model gets a camelCase alias and accepts both spellings.

Score and overallScore are closed enums. The model has been seen to answer
with the Spanish/Catalan spellings from older prompt versions, lowercase
variants, or things like "EXCELLENT!" — anything we don't recognise is
coerced to a safe middle value instead of leaking into reports.
- Prathamesh, 2026-03-05
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FrozenModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


DocumentRole = Literal["specification", "proposal"]


class Score(str, Enum):
    INSUFFICIENT = "INSUFFICIENT"
    REGULAR = "REGULAR"
    MEETS_SUCCESSFULLY = "MEETS_SUCCESSFULLY"


class OverallScore(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    AVERAGE = "AVERAGE"
    POOR = "POOR"


DEFAULT_SCORE = Score.REGULAR
DEFAULT_OVERALL_SCORE = OverallScore.AVERAGE

_SCORE_ALIASES = {
    "INSUFFICIENT": Score.INSUFFICIENT,
    "INSUFICIENTE": Score.INSUFFICIENT,
    "INSUFICIENT": Score.INSUFFICIENT,
    "REGULAR": Score.REGULAR,
    "MEETS_SUCCESSFULLY": Score.MEETS_SUCCESSFULLY,
    "CUMPLE_EXITOSAMENTE": Score.MEETS_SUCCESSFULLY,
    "COMPLEIX_EXITOSAMENT": Score.MEETS_SUCCESSFULLY,
}

_OVERALL_ALIASES = {
    "EXCELLENT": OverallScore.EXCELLENT,
    "EXCELENTE": OverallScore.EXCELLENT,
    "EXCEL·LENT": OverallScore.EXCELLENT,
    "GOOD": OverallScore.GOOD,
    "BUENO": OverallScore.GOOD,
    "BO": OverallScore.GOOD,
    "AVERAGE": OverallScore.AVERAGE,
    "REGULAR": OverallScore.AVERAGE,
    "MITJÀ": OverallScore.AVERAGE,
    "POOR": OverallScore.POOR,
    "DEFICIENTE": OverallScore.POOR,
    "DOLENT": OverallScore.POOR,
}


def _enum_key(value: Any) -> str:
    return str(value).strip().upper().replace(" ", "_").replace("-", "_")


def coerce_score(value: Any) -> Score:
    """Map any model answer onto the three-way enum. Unknown → REGULAR."""
    if isinstance(value, Score):
        return value
    return _SCORE_ALIASES.get(_enum_key(value), DEFAULT_SCORE)


def coerce_overall_score(value: Any) -> OverallScore:
    """Map any model answer onto the ranking bucket. Unknown → AVERAGE."""
    if isinstance(value, OverallScore):
        return value
    return _OVERALL_ALIASES.get(_enum_key(value), DEFAULT_OVERALL_SCORE)


def _string_list(value: Any) -> List[str]:
    """Model lists come back as None, a bare string, or mixed junk."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, (list, tuple)):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


# ── Inputs ────────────────────────────────────────────────────────────────

class Document(_FrozenModel):
    """Extracted document text. Immutable once ingestion hands it over."""
    name: str
    content: str
    role: DocumentRole
    lot_number: Optional[int] = None


class CaseInfo(_Model):
    """Tender case metadata printed in report headers."""
    title: str = ""
    expedient: str = ""
    entity: str = ""
    context: str = ""


class UploadResult(_Model):
    """Per-document result of the upload collaborator."""
    name: str
    content: str = ""
    role: DocumentRole
    success: bool
    error: Optional[str] = None


class LotInfo(_Model):
    lot_number: int = Field(..., ge=1)
    title: str
    description: str = ""


# ── Evaluation ────────────────────────────────────────────────────────────

class CriterionJudgment(_FrozenModel):
    """One proposal scored against one criterion. Created once, never edited."""
    criterion: str
    score: Score = DEFAULT_SCORE
    justification: str = ""
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    references: List[str] = Field(default_factory=list)

    @field_validator("score", mode="before")
    @classmethod
    def _coerce_score(cls, v: Any) -> Score:
        return coerce_score(v)

    @field_validator("strengths", "improvements", "references", mode="before")
    @classmethod
    def _coerce_lists(cls, v: Any) -> List[str]:
        return _string_list(v)


class ProposalEvaluation(_Model):
    lot_number: int
    lot_title: str
    proposal_name: str
    has_proposal: bool = True
    criteria: List[CriterionJudgment] = Field(default_factory=list)
    summary: str = ""
    recommendation: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class LotEvaluationResult(_Model):
    """Everything produced for one evaluation run (one or more lots)."""
    extracted_lots: List[LotInfo] = Field(default_factory=list)
    extracted_criteria: List[str] = Field(default_factory=list)
    evaluations: List[ProposalEvaluation] = Field(default_factory=list)
    overall_summary: str = ""
    overall_recommendation: str = ""
    overall_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    # lot_number -> user-facing reason, for lots that could not be evaluated
    failed_lots: Dict[int, str] = Field(default_factory=dict)


# ── Comparison ────────────────────────────────────────────────────────────

class ProposalComparisonEntry(_Model):
    proposal_name: str
    score: Score = DEFAULT_SCORE
    arguments: List[str] = Field(default_factory=list)
    position: int

    @field_validator("score", mode="before")
    @classmethod
    def _coerce_score(cls, v: Any) -> Score:
        return coerce_score(v)

    @field_validator("arguments", mode="before")
    @classmethod
    def _coerce_lists(cls, v: Any) -> List[str]:
        return _string_list(v)


class CriterionComparison(_Model):
    criterion: str
    proposals: List[ProposalComparisonEntry] = Field(default_factory=list)


class RankingEntry(_Model):
    proposal_name: str
    position: int
    overall_score: OverallScore = DEFAULT_OVERALL_SCORE
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    recommendation: str = ""

    @field_validator("overall_score", mode="before")
    @classmethod
    def _coerce_overall(cls, v: Any) -> OverallScore:
        return coerce_overall_score(v)

    @field_validator("strengths", "weaknesses", mode="before")
    @classmethod
    def _coerce_lists(cls, v: Any) -> List[str]:
        return _string_list(v)


class ComparisonRecord(_Model):
    lot_number: int
    lot_title: str
    proposal_names: List[str]
    criteria_comparisons: List[CriterionComparison] = Field(default_factory=list)
    global_ranking: List[RankingEntry] = Field(default_factory=list)
    summary: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


# ── Progress ──────────────────────────────────────────────────────────────

class ProgressUpdate(_Model):
    """Status line for the caller's progress display. Observational only."""
    stage: Literal["lots", "criteria", "proposal", "criterion", "summary", "done"]
    lot_number: Optional[int] = None
    proposal_index: int = 0
    proposal_count: int = 0
    proposal_name: Optional[str] = None
    percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    message: str = ""


# ── Smoke test ────────────────────────────────────────────────────────────

if __name__ == "__main__":
    # Test 1: unknown score coerced, lists cleaned
    j = CriterionJudgment.model_validate({
        "criterion": "Methodology and work plan",
        "score": "SUPERB",
        "strengths": ["Clear plan", None, "  "],
    })
    assert j.score is Score.REGULAR
    assert j.strengths == ["Clear plan"]
    print("Test 1 passed: unknown score coerced to REGULAR")

    # Test 2: Spanish spelling mapped
    j2 = CriterionJudgment(criterion="Team experience", score="CUMPLE_EXITOSAMENTE")
    assert j2.score is Score.MEETS_SUCCESSFULLY
    print("Test 2 passed: legacy spelling mapped")

    # Test 3: camelCase round-trip
    ev = ProposalEvaluation(lot_number=1, lot_title="Cleaning", proposal_name="acme.pdf")
    data = ev.model_dump(by_alias=True)
    assert data["lotNumber"] == 1 and data["hasProposal"] is True
    print("Test 3 passed: camelCase aliases")

    print("\nAll schema tests passed.")
