"""
prompts.py — Prompt templates for every model call.

Lessons carried over from the extraction prompts:
  - Say "respond ONLY with JSON" and show the exact shape. Showing an
    example array for the criteria cut the prose answers roughly in half.
  - Enumerate the score values literally. If the prompt says "insufficient /
    regular / meets successfully" in prose, the model invents spellings.
  - The double-brace {{}} is str.format escaping, not a typo.

Document blocks keep their "=== DOCUMENT: name ===" headers so a reference
like "see Technical Specs, section 4" can be traced back by a human.
"""

from __future__ import annotations

from typing import Iterable, List

from tender_evaluation.schemas import CriterionJudgment, Document, ProposalEvaluation

CRITERIA_PROMPT = """Analyse the following tender specification documents and extract ONLY the SUBJECTIVE criteria that require qualitative evaluation.

INSTRUCTIONS:
1. Identify only criteria that need subjective/qualitative assessment.
2. Exclude objective technical requirements (such as "must hold certification X").
3. Include aspects such as: experience, methodology, quality, innovation, organisation, etc.
4. Each criterion must be assessable in terms of quality/adequacy.
5. At most {max_criteria} criteria, so the evaluation stays manageable.

RESPONSE FORMAT:
Respond ONLY with a JSON array of strings, without any further explanation:
["Criterion 1", "Criterion 2", "Criterion 3", ...]

EXAMPLE:
["Experience and technical capacity of the team", "Methodology and project planning", "Quality of the technical proposal", "Innovation and added value"]

SPECIFICATION DOCUMENTS:"""

EVALUATION_PROMPT = """Evaluate the following criterion based on the tender specifications and the submitted proposal.

CRITERION TO EVALUATE: {criterion}

EVALUATION INSTRUCTIONS:
1. Analyse what the specifications require for this criterion.
2. Assess how the proposal meets those requirements.
3. Assign exactly one of these scores:
   - INSUFFICIENT: does not meet the minimum requirements
   - REGULAR: partially meets the requirements
   - MEETS_SUCCESSFULLY: exceeds expectations
4. Provide a detailed justification (at least 100 words).
5. Identify 2-4 specific strengths.
6. Identify 2-4 specific areas for improvement.
7. Reference specific sections of the specifications.

RESPONSE FORMAT (JSON):
{{
  "score": "INSUFFICIENT|REGULAR|MEETS_SUCCESSFULLY",
  "justification": "Detailed justification of at least 100 words...",
  "strengths": ["Strength 1", "Strength 2", "Strength 3"],
  "improvements": ["Improvement 1", "Improvement 2", "Improvement 3"],
  "references": ["Reference 1", "Reference 2"]
}}

Respond ONLY with the JSON, no additional text."""

SUMMARY_PROMPT = """Based on the following evaluation results, write an executive summary and a final recommendation.

EVALUATION RESULTS:
{criteria_results}

INSTRUCTIONS:
1. Write a 2-3 paragraph executive summary of the main findings.
2. Give a clear, justified final recommendation.
3. Assign a confidence level (0.0 to 1.0) based on how clear the documentation is.
4. Keep a professional and objective tone.

RESPONSE FORMAT (JSON):
{{
  "summary": "Executive summary of 2-3 paragraphs...",
  "recommendation": "Clear and justified final recommendation...",
  "confidence": 0.85
}}

Respond ONLY with the JSON, no additional text."""

COMPARISON_PROMPT = """Compare the following {count} proposals submitted for lot {lot_number} ("{lot_title}"). Each proposal has already been evaluated criterion by criterion.

PROPOSALS: {proposal_names}

INSTRUCTIONS:
1. For EVERY criterion, compare all proposals: give each one a score, 1-3 arguments, and a position (1 = best).
2. Positions for a criterion must be exactly 1..{count}, each used once.
3. Build a global ranking with one entry per proposal, positions exactly 1..{count}, each used once.
4. For each ranked proposal give an overall score, strengths, weaknesses and a targeted recommendation.
5. Use the proposal names EXACTLY as written above.
6. Scores: INSUFFICIENT | REGULAR | MEETS_SUCCESSFULLY. Overall scores: EXCELLENT | GOOD | AVERAGE | POOR.

RESPONSE FORMAT (JSON):
{{
  "criteriaComparisons": [
    {{
      "criterion": "...",
      "proposals": [
        {{"proposalName": "...", "score": "REGULAR", "arguments": ["..."], "position": 1}}
      ]
    }}
  ],
  "globalRanking": [
    {{
      "proposalName": "...",
      "position": 1,
      "overallScore": "GOOD",
      "strengths": ["..."],
      "weaknesses": ["..."],
      "recommendation": "..."
    }}
  ],
  "summary": "Comparative summary...",
  "confidence": 0.8
}}

Respond ONLY with the JSON, no additional text.

EVALUATIONS:"""

LOTS_PROMPT = """Identify the lots into which the following tender is divided.

INSTRUCTIONS:
1. A lot is an independently awarded part of the tender, usually introduced as "Lot 1", "Lot 2"...
2. Return one entry per lot with its number, its title and a short description.
3. If the tender is not divided into lots, return an empty array.

RESPONSE FORMAT:
Respond ONLY with a JSON array:
[{{"lotNumber": 1, "title": "...", "description": "..."}}]

SPECIFICATION DOCUMENTS:"""


def format_documents(documents: Iterable[Document], label: str = "DOCUMENT") -> str:
    """Concatenate documents with a boundary header per document."""
    return "\n\n".join(f"=== {label}: {doc.name} ===\n{doc.content}" for doc in documents)


def format_excerpts(documents: Iterable[Document], limit: int) -> str:
    """First ``limit`` chars of each document, for the summary prompt."""
    lines: List[str] = []
    for doc in documents:
        excerpt = doc.content[:limit]
        suffix = "..." if len(doc.content) > limit else ""
        lines.append(f"{doc.name}: {excerpt}{suffix}")
    return "\n".join(lines)


def format_judgments(judgments: Iterable[CriterionJudgment]) -> str:
    return "\n".join(
        f"- {j.criterion}: {j.score.value}\n  {j.justification}" for j in judgments
    )


def format_evaluation_for_comparison(evaluation: ProposalEvaluation) -> str:
    """One proposal's full evaluation, as the comparison prompt sees it."""
    parts = [f"=== PROPOSAL: {evaluation.proposal_name} ==="]
    if evaluation.summary:
        parts.append(f"Summary: {evaluation.summary}")
    for j in evaluation.criteria:
        parts.append(f"- Criterion: {j.criterion}")
        parts.append(f"  Score: {j.score.value}")
        if j.justification:
            parts.append(f"  Justification: {j.justification}")
        if j.strengths:
            parts.append(f"  Strengths: {'; '.join(j.strengths)}")
        if j.improvements:
            parts.append(f"  Improvements: {'; '.join(j.improvements)}")
    return "\n".join(parts)
