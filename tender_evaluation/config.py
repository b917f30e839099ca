"""
config.py — Central configuration for TenderEval.

Every tunable number lives here, and most of them can be overridden
from the environment. The evaluation
limits (8 criteria, 10-100 char criterion lines, 50-char minimum document
content) come straight from how the procurement team runs evaluations by
hand — more than 8 qualitative criteria and the evaluators stop reading
the justifications.

Modules take a ``Config`` argument and only fall back to the module-level
``config`` instance when the caller doesn't pass one, so tests can build
their own without touching the environment.
- Prathamesh, 2026-03-04
"""

from dataclasses import dataclass, field
import os
import logging

from tender_evaluation.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class LLMConfig:
    """
    Text-completion service settings (OpenAI chat completions API).

    0.3 temperature is what the evaluators signed off on: at 0.0 the
    justifications became copy-pasted boilerplate across criteria, above
    0.5 the same proposal would flip between REGULAR and MEETS_SUCCESSFULLY
    on re-runs far too often. Some run-to-run variation is still expected.
    """
    api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", "").strip())
    base_url: str = field(default_factory=lambda: os.getenv("OPENAI_BASE_URL", "").strip())
    model: str = field(default_factory=lambda: os.getenv("OPENAI_MODEL", "gpt-4o-mini").strip())
    temperature: float = field(default_factory=lambda: float(os.getenv("LLM_TEMPERATURE", "0.3")))
    max_tokens: int = 4000
    # Per-request timeout in seconds. Long proposals + 8 criteria can take a
    # while, but a single call over two minutes has always been a hung socket.
    timeout: float = 120.0
    max_retries: int = field(default_factory=lambda: int(os.getenv("LLM_MAX_RETRIES", "3")))
    retry_base_delay: float = 1.0


@dataclass
class EvaluationConfig:
    """Limits for criteria extraction, scoring and comparison."""
    max_criteria: int = 8
    # Heuristic line parser bounds (exclusive), and the post-strip minimum.
    criterion_min_line_length: int = 10
    criterion_max_line_length: int = 100
    criterion_min_clean_length: int = 5
    min_list_items: int = 2
    max_list_items: int = 4
    # Specs/proposals are cut to this many chars in the summary prompt; the
    # judgments already carry the detail.
    summary_excerpt_chars: int = 1000
    # 1 = strictly sequential (criteria in order, one at a time).
    max_concurrency: int = field(
        default_factory=lambda: int(os.getenv("EVALUATION_MAX_CONCURRENCY", "1"))
    )
    comparison_attempts: int = 2


@dataclass
class IngestionConfig:
    """Upload limits. 50 chars is the 'probably a scanned PDF' signal."""
    max_file_size_mb: int = 10
    min_content_chars: int = 50
    supported_formats: tuple = (".pdf", ".docx", ".txt")


@dataclass
class ReportConfig:
    """
    PDF layout constants, in points (A4 = 595 x 842).

    footer_reserve is measured from the bottom edge: nothing but the footer
    is allowed below page_height - footer_reserve.
    """
    margin: float = 56.0
    first_page_top: float = 255.0
    continuation_top: float = 170.0
    footer_reserve: float = 170.0
    line_height: float = 14.0
    organisation: str = field(default_factory=lambda: os.getenv("REPORT_ORGANISATION", "TenderEval"))
    website: str = field(default_factory=lambda: os.getenv("REPORT_WEBSITE", ""))
    address: str = field(default_factory=lambda: os.getenv("REPORT_ADDRESS", ""))


@dataclass
class Config:
    """Master config — instantiated once, used everywhere."""
    llm: LLMConfig = field(default_factory=LLMConfig)
    evaluation: EvaluationConfig = field(default_factory=EvaluationConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    report: ReportConfig = field(default_factory=ReportConfig)

    diagnostics_buffer_size: int = 100
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    def __post_init__(self):
        """Validate config on startup so a bad env var fails the process,
        not the fifth criterion of the third proposal."""
        if not 0.0 <= self.llm.temperature <= 2.0:
            raise ValueError(f"LLM temperature must be [0,2], got {self.llm.temperature}")
        if self.llm.max_retries < 1:
            raise ValueError(f"LLM max_retries must be >= 1, got {self.llm.max_retries}")
        if not 1 <= self.evaluation.max_criteria <= 8:
            raise ValueError(f"max_criteria must be [1,8], got {self.evaluation.max_criteria}")
        if self.evaluation.max_concurrency < 1:
            raise ValueError(
                f"max_concurrency must be >= 1, got {self.evaluation.max_concurrency}"
            )
        if self.evaluation.comparison_attempts < 1:
            raise ValueError(
                f"comparison_attempts must be >= 1, got {self.evaluation.comparison_attempts}"
            )
        self.log_level = self.log_level.strip().upper()
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"LOG_LEVEL must be a logging level name, got {self.log_level!r}")

        if self.evaluation.max_concurrency > 1:
            logger.warning(
                "Parallel criterion evaluation enabled (max_concurrency=%d). "
                "Results keep criterion order but calls overlap.",
                self.evaluation.max_concurrency,
            )

    def require_api_key(self) -> str:
        """Return the service credential or fail the whole request."""
        if not self.llm.api_key:
            raise ConfigurationError(
                "OPENAI_API_KEY is not set. The evaluation service cannot start "
                "without a credential for the text-completion API."
            )
        return self.llm.api_key


# Singleton, the default for every module that isn't handed a Config
config = Config()
