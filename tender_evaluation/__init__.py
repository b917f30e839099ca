"""
TenderEval — LLM-assisted evaluation of public-tender proposals

Derives qualitative criteria from tender specifications, scores each
proposal against them with justified judgments, compares competing
proposals per lot and renders the results as a paginated PDF report.
"""

__version__ = "1.0.0"
__author__ = "TenderEval"
