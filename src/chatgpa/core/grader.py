"""Quiz grading module.

Responsibilities:
- Grade MCQs deterministically (loose string equality against the key)
- Grade short answers with a reference via normalized equality or
  token-set Jaccard similarity
- Grade short answers without a reference with one batched LLM call,
  falling back to "incorrect" plus a generic tip when the call fails
- Aggregate a percent score, a letter grade and a summary line

The grader performs no persistence; callers store the resulting attempt.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

from chatgpa.core.text_normalizer import eq_loose, jaccard
from chatgpa.llm.client import LLMClient, LLMError, Message

logger = structlog.get_logger(__name__)

# =============================================================================
# TYPES
# =============================================================================

QuestionType = Literal["mcq", "short"]

# =============================================================================
# CONSTANTS
# =============================================================================

JACCARD_THRESHOLD = 0.6

# Summary bands (percent)
STRONG_BAND = 85
SOLID_BAND = 70

# Letter grade cut-offs (percent), highest first
LETTER_BANDS = [(90, "A"), (80, "B"), (70, "C"), (60, "D")]

AI_GRADE_TEMPERATURE = 0.1
AI_GRADE_MAX_TOKENS = 512

AI_GRADE_PROMPT = (
    "Grade these short answers. Return JSON: "
    "{results:[{id,correct:boolean,feedback:string,improvement:string}]}.\n"
)

FEEDBACK_MCQ_CORRECT = "Correct — matches the key."
FEEDBACK_MCQ_INCORRECT = "Incorrect. Review the concept and why the correct option fits better."
IMPROVE_MCQ = "Re-read the prompt and eliminate distractors before choosing."
FEEDBACK_REF_CORRECT = "Good — your answer matches the reference closely."
FEEDBACK_REF_INCORRECT = "Your answer misses key elements compared to the reference."
IMPROVE_REF = "Mention the missing key terms and define them briefly to tighten your answer."
FEEDBACK_NO_REF = "Graded without a reference. Provide clear definitions and reasoning."
IMPROVE_NO_REF = "Structure your answer: definition → key points → brief example to show understanding."

SUMMARY_STRONG = "Great work — strong grasp overall. Skim the few missed concepts."
SUMMARY_SOLID = "Solid base — focus revisions on the questions you missed."
SUMMARY_REVIEW = "You're close — review fundamentals and key terms, then retake a focused quiz."


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class Question:
    """A quiz question.

    ``answer`` is the correct option for an MCQ and the optional reference
    text for a short question.
    """

    id: str
    type: QuestionType
    prompt: str
    options: list[str] = field(default_factory=list)
    answer: str | None = None
    explanation: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Question:
        """Build from a stored/generated question dict."""
        return cls(
            id=str(data["id"]),
            type=data.get("type", "short"),
            prompt=data.get("prompt", ""),
            options=list(data.get("options") or []),
            answer=data.get("answer"),
            explanation=data.get("explanation"),
        )

    @property
    def has_reference(self) -> bool:
        """Short question carries a non-blank reference answer."""
        return bool(self.answer and self.answer.strip())


@dataclass
class BreakdownItem:
    """Per-question grading result."""

    id: str
    type: QuestionType
    prompt: str
    user_answer: str
    correct: bool
    feedback: str
    correct_answer: str | None = None
    improvement: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "prompt": self.prompt,
            "user_answer": self.user_answer,
            "correct": self.correct,
            "feedback": self.feedback,
        }
        if self.correct_answer is not None:
            result["correct_answer"] = self.correct_answer
        if self.improvement is not None:
            result["improvement"] = self.improvement
        return result


@dataclass
class AIVerdict:
    """LLM verdict for one unreferenced short answer."""

    correct: bool
    feedback: str
    improvement: str


@dataclass
class GradeOutput:
    """Aggregate grading result."""

    percent: int
    correct_count: int
    total: int
    breakdown: list[BreakdownItem]
    summary: str

    @property
    def letter(self) -> str:
        return letter_grade(self.percent)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "percent": self.percent,
            "correctCount": self.correct_count,
            "total": self.total,
            "breakdown": [item.to_dict() for item in self.breakdown],
            "summary": self.summary,
        }


# =============================================================================
# SCORING HELPERS
# =============================================================================


def _round_half_up(value: float) -> int:
    """Round .5 upwards (Python's round() rounds half to even)."""
    return int(math.floor(value + 0.5))


def percent_score(correct: int, total: int) -> int:
    """Percentage of correct answers, clamped to [0, 100].

    A total of 0 is treated as 1 so an empty quiz scores 0.
    """
    total = total or 1
    return max(0, min(100, _round_half_up(correct / total * 100)))


def summary_for(percent: int) -> str:
    """One-line advice for a percent score."""
    if percent >= STRONG_BAND:
        return SUMMARY_STRONG
    if percent >= SOLID_BAND:
        return SUMMARY_SOLID
    return SUMMARY_REVIEW


def letter_grade(percent: float) -> str:
    """Map a percent score to A-F."""
    for cutoff, letter in LETTER_BANDS:
        if percent >= cutoff:
            return letter
    return "F"


# =============================================================================
# AI-ASSISTED GRADING
# =============================================================================


def _parse_verdicts(payload: dict[str, Any]) -> dict[str, AIVerdict]:
    verdicts: dict[str, AIVerdict] = {}
    results = payload.get("results")
    if not isinstance(results, list):
        return verdicts

    for item in results:
        if not isinstance(item, dict) or not item.get("id"):
            continue
        feedback = item.get("feedback")
        improvement = item.get("improvement")
        verdicts[str(item["id"])] = AIVerdict(
            correct=bool(item.get("correct")),
            feedback=feedback if isinstance(feedback, str) else "",
            improvement=improvement if isinstance(improvement, str) else "",
        )
    return verdicts


def ai_short_feedback(
    client: LLMClient | None,
    shorts: list[Question],
    responses: dict[str, str],
    model: str | None = None,
) -> dict[str, AIVerdict]:
    """Ask the LLM to judge short answers that have no reference.

    All questions go out in a single request. Any failure (no client,
    network, auth, timeout, malformed JSON) yields an empty mapping so the
    caller falls back to the heuristic verdict.

    Args:
        client: LLM client, or None when no provider is configured
        shorts: Unreferenced short questions
        responses: Question id → user answer
        model: Grading model override

    Returns:
        Question id → AIVerdict for every item the model answered
    """
    if client is None or not shorts:
        return {}

    items = [
        {"id": q.id, "q": q.prompt, "ref": q.answer or "", "ans": responses.get(q.id, "")}
        for q in shorts
    ]
    payload = json.dumps(items)
    max_tokens = min(AI_GRADE_MAX_TOKENS, 64 + 64 * len(shorts))

    logger.info(
        "grade_ai",
        question_count=len(shorts),
        prompt_chars=len(payload),
        estimated_tokens=round(len(payload) / 4),
    )

    try:
        parsed = client.chat_json(
            [Message(role="user", content=AI_GRADE_PROMPT + payload)],
            temperature=AI_GRADE_TEMPERATURE,
            max_tokens=max_tokens,
            max_retries=0,
            model=model,
        )
    except (LLMError, ValueError, TypeError) as e:
        logger.warning("grade_ai_failed", error=str(e), question_count=len(shorts))
        return {}

    return _parse_verdicts(parsed)


# =============================================================================
# MAIN FUNCTION
# =============================================================================


def grade_submission(
    questions: list[Question],
    responses: dict[str, str],
    client: LLMClient | None = None,
    model: str | None = None,
) -> GradeOutput:
    """Grade a set of responses against a quiz.

    Breakdown order is MCQs, then short answers with a reference, then
    short answers without one; each group keeps quiz order.

    Args:
        questions: Quiz questions in order
        responses: Question id → free-text answer (missing means "")
        client: LLM client for unreferenced short answers (optional)
        model: Grading model override

    Returns:
        GradeOutput with percent, counts, breakdown and summary
    """
    breakdown: list[BreakdownItem] = []
    correct = 0

    mcqs = [q for q in questions if q.type == "mcq"]
    shorts = [q for q in questions if q.type == "short"]
    with_ref = [q for q in shorts if q.has_reference]
    without_ref = [q for q in shorts if not q.has_reference]

    for q in mcqs:
        user = str(responses.get(q.id, "") or "")
        is_correct = bool(q.answer) and eq_loose(user, q.answer)
        if is_correct:
            correct += 1
            feedback = FEEDBACK_MCQ_CORRECT
        elif q.explanation:
            feedback = f"Incorrect. {q.explanation}"
        else:
            feedback = FEEDBACK_MCQ_INCORRECT
        breakdown.append(
            BreakdownItem(
                id=q.id,
                type="mcq",
                prompt=q.prompt,
                user_answer=user,
                correct=is_correct,
                correct_answer=q.answer,
                feedback=feedback,
                improvement=None if is_correct else IMPROVE_MCQ,
            )
        )

    for q in with_ref:
        user = str(responses.get(q.id, "") or "")
        ref = q.answer or ""
        is_correct = eq_loose(user, ref) or jaccard(user, ref) >= JACCARD_THRESHOLD
        if is_correct:
            correct += 1
        breakdown.append(
            BreakdownItem(
                id=q.id,
                type="short",
                prompt=q.prompt,
                user_answer=user,
                correct=is_correct,
                correct_answer=ref,
                feedback=FEEDBACK_REF_CORRECT if is_correct else FEEDBACK_REF_INCORRECT,
                improvement=None if is_correct else IMPROVE_REF,
            )
        )

    verdicts = ai_short_feedback(client, without_ref, responses, model=model)

    for q in without_ref:
        user = str(responses.get(q.id, "") or "")
        verdict = verdicts.get(q.id)
        is_correct = verdict.correct if verdict else False
        if is_correct:
            correct += 1
        breakdown.append(
            BreakdownItem(
                id=q.id,
                type="short",
                prompt=q.prompt,
                user_answer=user,
                correct=is_correct,
                feedback=(verdict.feedback if verdict else "") or FEEDBACK_NO_REF,
                improvement=(verdict.improvement if verdict else "") or IMPROVE_NO_REF,
            )
        )

    total = len(questions) or 1
    percent = percent_score(correct, total)

    logger.debug(
        "submission_graded",
        total=total,
        correct=correct,
        percent=percent,
        ai_verdicts=len(verdicts),
    )

    return GradeOutput(
        percent=percent,
        correct_count=correct,
        total=total,
        breakdown=breakdown,
        summary=summary_for(percent),
    )
