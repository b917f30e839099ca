"""
errors.py — Error taxonomy for the evaluation pipeline.

Two kinds of failure, handled very differently:

  * Failures with an honest fallback (a single criterion that couldn't be
    scored, a summary the model botched) are *degradations*. They're raised
    by the parsers, caught right where they happen, logged to diagnostics,
    and replaced with a deterministic stand-in. Callers never see them.

  * Failures with no honest fallback (no credential, no criteria, no usable
    comparison, broken report) propagate with a message we can show a user.
"""

from __future__ import annotations

from typing import Optional


class TenderEvaluationError(Exception):
    """Base class. ``user_message`` is safe to show in the UI."""

    code = "TENDER_EVALUATION_ERROR"

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or message


class ConfigurationError(TenderEvaluationError):
    """Missing credential or invalid setting. Fatal, never retried."""

    code = "CONFIGURATION_ERROR"


class CompletionError(TenderEvaluationError):
    """The completion service failed after all retries."""

    code = "COMPLETION_ERROR"


class ExtractionFailure(TenderEvaluationError):
    """No criteria could be derived. Terminal for the affected lot only."""

    code = "EXTRACTION_FAILURE"

    def __init__(self, message: str, lot_number: Optional[int] = None):
        super().__init__(message)
        self.lot_number = lot_number


class JudgmentDegradation(TenderEvaluationError):
    """A criterion response could not be parsed. Absorbed by the evaluator."""

    code = "JUDGMENT_DEGRADATION"


class SummaryDegradation(TenderEvaluationError):
    """A summary response could not be parsed. Absorbed by the synthesizer."""

    code = "SUMMARY_DEGRADATION"


class ComparisonFailure(TenderEvaluationError):
    """Comparison call or validation failed. Surfaced, no stub."""

    code = "COMPARISON_FAILURE"


class RenderFailure(TenderEvaluationError):
    """PDF layout/serialization error. Fatal for the report request only."""

    code = "RENDER_FAILURE"


class DocumentError(TenderEvaluationError):
    """An uploaded document could not be read."""

    code = "DOCUMENT_ERROR"


def describe_error(exc: BaseException) -> str:
    """
    Map any exception to a message an evaluator can act on.

    Our own errors carry one already. For everything else we look for the
    usual suspects in the message text — the OpenAI SDK and httpx don't give
    us a stable type hierarchy across versions, the text is more reliable.
    """
    if isinstance(exc, TenderEvaluationError):
        return exc.user_message

    message = str(exc).lower()
    if "timeout" in message or "timed out" in message:
        return "The operation exceeded the time limit. Please try again."
    if "api key" in message or "unauthorized" in message or "401" in message:
        return "The evaluation service is misconfigured. Contact the administrator."
    if "network" in message or "connection" in message:
        return "Connection error. Check the network connection and try again."
    if "pdf" in message:
        return "The PDF document could not be processed. Check that it is not corrupt."
    if "docx" in message or "word" in message:
        return "The Word document could not be processed. Check that it is not corrupt."
    return "An unexpected error occurred. Please try again."
