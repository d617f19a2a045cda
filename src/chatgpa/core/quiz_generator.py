"""Quiz generation from notes.

Responsibilities:
- Validate and default the quiz configuration (type, count, coverage,
  difficulty)
- Build the generation prompt for the configured quiz shape
- Call the LLM, validate the returned questions and retry once on
  unparseable output
- Derive a title and subject for the stored quiz
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Annotated, Any, Literal, Union

import structlog
from pydantic import BaseModel, Field, ValidationError, model_validator

from chatgpa.core.text_normalizer import normalize
from chatgpa.llm.client import LLMClient, LLMError, LLMResponseError, Message

logger = structlog.get_logger(__name__)

# =============================================================================
# CONFIGURATION MODELS
# =============================================================================


class QuestionCounts(BaseModel):
    """Split of a hybrid quiz."""

    mcq: int = Field(ge=0)
    typing: int = Field(ge=0)


class QuizConfig(BaseModel):
    """How a quiz should be generated."""

    question_type: Literal["mcq", "typing", "hybrid"] = "mcq"
    question_count: int = Field(default=8, ge=1, le=10)
    coverage: Literal["key_concepts", "broad_sample"] = "key_concepts"
    difficulty: Literal["low", "medium", "high"] = "medium"
    question_counts: QuestionCounts | None = None

    @model_validator(mode="after")
    def _check_hybrid_counts(self) -> QuizConfig:
        if self.question_type == "hybrid":
            counts = self.question_counts
            if counts is None or counts.mcq + counts.typing != self.question_count:
                raise ValueError(
                    "For hybrid type, question_counts must be provided and sum to question_count"
                )
        return self


DEFAULT_QUIZ_CONFIG = QuizConfig()

# =============================================================================
# GENERATED QUESTION MODELS
# =============================================================================

MAX_PROMPT_CHARS = 180


class GeneratedMCQ(BaseModel):
    id: str
    type: Literal["mcq"]
    prompt: str = Field(max_length=MAX_PROMPT_CHARS)
    options: list[str] = Field(min_length=3, max_length=5)
    answer: str

    @model_validator(mode="after")
    def _answer_in_options(self) -> GeneratedMCQ:
        if self.answer not in self.options:
            raise ValueError("MCQ answer must match one of the options")
        return self


class GeneratedShort(BaseModel):
    id: str
    type: Literal["short"]
    prompt: str = Field(max_length=MAX_PROMPT_CHARS)
    answer: str


GeneratedQuestion = Annotated[Union[GeneratedMCQ, GeneratedShort], Field(discriminator="type")]


class GeneratedQuiz(BaseModel):
    questions: list[GeneratedQuestion] = Field(min_length=1, max_length=10)


class QuizGenerationError(Exception):
    """Quiz could not be generated; carries an API error code."""

    def __init__(self, code: str, message: str, status: int = 502):
        self.code = code
        self.status = status
        super().__init__(message)


# =============================================================================
# PROMPTS
# =============================================================================

PROMPT_TEMPLATE = """You are ChatGPA's quiz generator.

Goal
- Create a concise quiz strictly from the provided NOTES.
- Return JSON only with this shape (no prose, no markdown):

{{"questions": [{{"id": "q1", "type": "mcq" | "short", "prompt": "string",
  "options": ["string", "string", "string", "string"], "answer": "string"}}]}}

"options" is for mcq only. For mcq the answer must equal one option; for short
it is a concise reference answer.

Constraints
- Length: generate exactly {count} questions.
{types}
- MCQ: 4 plausible options; the single correct answer must exactly match one option.
- Prompts of at most 180 characters; unambiguous; no trivia.
- Write in the same language as the NOTES.
- No outside knowledge: every prompt and answer must be supported by the NOTES.

{coverage}

{difficulty}

Quality rules
- Avoid duplicates and near-duplicates.
- Prefer concept-level understanding over exact wording.
- Keep short answers to a sentence or a key phrase.

NOTES:
{notes}

Now generate the quiz JSON."""

TYPE_INSTRUCTIONS = {
    "mcq": "- Types: only multiple-choice questions (type \"mcq\").",
    "typing": "- Types: only short-answer questions (type \"short\"); students answer in their own words.",
}

COVERAGE_INSTRUCTIONS = {
    "key_concepts": (
        "Coverage\n"
        "- Focus on the 3-5 most important concepts in the NOTES.\n"
        "- Prefer depth over breadth; omit low-value details."
    ),
    "broad_sample": (
        "Coverage\n"
        "- Distribute questions across all major topics of the NOTES.\n"
        "- Include material from the beginning, middle and end."
    ),
}

DIFFICULTY_INSTRUCTIONS = {
    "low": (
        "Difficulty: low\n"
        "- Recall and recognition: definitions, basic facts, single-step questions.\n"
        "- MCQ distractors clearly distinct from the answer."
    ),
    "medium": (
        "Difficulty: medium\n"
        "- Application and explanation, small scenarios, 1-2 reasoning steps.\n"
        "- MCQ distractors plausible but distinguishable with solid understanding."
    ),
    "high": (
        "Difficulty: high\n"
        "- Synthesis and evaluation, edge cases, multi-step reasoning.\n"
        "- MCQ distractors that need careful analysis to eliminate."
    ),
}


def _type_instructions(config: QuizConfig) -> str:
    if config.question_type == "hybrid":
        counts = config.question_counts
        if counts is None:
            return "- Types: a balanced mix of MCQ and short-answer questions."
        return (
            f"- Types: exactly {counts.mcq} MCQ questions and "
            f"{counts.typing} short-answer questions (type \"short\")."
        )
    return TYPE_INSTRUCTIONS[config.question_type]


def build_prompt(config: QuizConfig, notes_text: str) -> str:
    """Render the generation prompt for a config and notes."""
    return PROMPT_TEMPLATE.format(
        count=config.question_count,
        types=_type_instructions(config),
        coverage=COVERAGE_INSTRUCTIONS[config.coverage],
        difficulty=DIFFICULTY_INSTRUCTIONS[config.difficulty],
        notes=notes_text,
    )


# =============================================================================
# TITLE / SUBJECT
# =============================================================================

STOPWORDS = {
    "the", "a", "an", "and", "or", "but", "is", "are", "was", "were",
    "be", "been", "being", "have", "has", "had", "do", "does", "did",
    "will", "would", "could", "should", "may", "might", "can",
    "what", "which", "who", "when", "where", "why", "how",
    "of", "to", "in", "for", "on", "with", "as", "by", "from", "at",
    "this", "that", "these", "those", "it", "its", "they", "them",
}

SUBJECT_KEYWORDS = {
    "Biology": ["biology", "cell", "organism", "evolution", "dna", "gene", "protein", "enzyme", "photosynthesis", "ecology"],
    "Chemistry": ["chemistry", "atom", "molecule", "element", "compound", "reaction", "bond", "acid", "base", "electron"],
    "Physics": ["physics", "force", "energy", "motion", "gravity", "quantum", "velocity", "acceleration", "momentum"],
    "Mathematics": ["math", "equation", "theorem", "proof", "calculus", "algebra", "geometry", "integral", "derivative", "matrix"],
    "Computer Science": ["computer", "algorithm", "data structure", "programming", "software", "code", "function", "class", "variable", "array"],
    "History": ["history", "war", "revolution", "empire", "civilization", "ancient", "medieval", "century", "dynasty"],
    "Economics": ["economics", "market", "supply", "demand", "trade", "inflation", "gdp", "fiscal", "monetary"],
    "Psychology": ["psychology", "behavior", "cognitive", "brain", "memory", "perception", "emotion", "consciousness"],
    "English": ["literature", "novel", "poetry", "grammar", "writing", "essay", "author", "shakespeare", "rhetoric"],
    "Philosophy": ["philosophy", "ethics", "logic", "metaphysics", "epistemology", "kant", "plato", "aristotle"],
}

MAX_TITLE_CHARS = 100


def short_date(when: datetime | None = None) -> str:
    """Month abbreviation and day, e.g. "Jan 5"."""
    when = when or datetime.now()
    return f"{when:%b} {when.day}"


def detect_subject(notes_text: str, class_name: str | None = None) -> str:
    """Best keyword match over the notes; a matching class name wins."""
    normalized = normalize(notes_text)
    subject, best = "General", 0
    for name, keywords in SUBJECT_KEYWORDS.items():
        matches = sum(1 for kw in keywords if kw in normalized)
        if matches > best:
            subject, best = name, matches

    if class_name:
        class_lower = class_name.lower()
        for name, keywords in SUBJECT_KEYWORDS.items():
            if any(kw in class_lower for kw in keywords):
                return name
    return subject


def generate_quiz_metadata(
    notes_text: str,
    class_name: str | None = None,
    question_count: int | None = None,
) -> tuple[str, str]:
    """Derive a (title, subject) pair from the notes.

    The title uses the most frequent content words, prefixed by the class
    name when there is one, and falls back to a dated title.
    """
    words = [w for w in normalize(notes_text).split(" ") if len(w) > 3 and w not in STOPWORDS]
    top = [word for word, _ in Counter(words).most_common(3)]
    subject = detect_subject(notes_text, class_name)

    if top and class_name:
        title = f"{class_name} - {top[0].capitalize()}"
    elif top:
        title = f"{subject}: {' & '.join(w.capitalize() for w in top[:2])}"
    elif class_name:
        title = f"{class_name} Quiz - {short_date()}"
    else:
        title = f"{subject} Quiz - {short_date()}"

    if question_count:
        title += f" ({question_count}Q)"

    return title[:MAX_TITLE_CHARS], subject


# =============================================================================
# GENERATION
# =============================================================================

def validate_questions(payload: dict[str, Any]) -> list[dict[str, Any]]:
    """Validate LLM output against the question schema.

    Raises:
        QuizGenerationError: QUIZ_VALIDATION_FAILED if the shape is wrong
    """
    try:
        quiz = GeneratedQuiz.model_validate(payload)
    except ValidationError as e:
        issues = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()[:3]]
        logger.error("quiz_validation_failed", issues=issues)
        raise QuizGenerationError(
            "QUIZ_VALIDATION_FAILED",
            "Generated quiz did not match expected schema",
            status=500,
        ) from e
    return [q.model_dump() for q in quiz.questions]


def generate_questions(
    client: LLMClient,
    config: QuizConfig,
    notes_text: str,
    model: str | None = None,
    retry_on_invalid_json: bool = True,
) -> list[dict[str, Any]]:
    """Ask the LLM for a quiz and return validated question dicts.

    Args:
        client: LLM client
        config: Quiz configuration
        notes_text: Source notes
        model: Generation model override
        retry_on_invalid_json: Let the client send one JSON repair request
            when the model returns no usable JSON

    Returns:
        Validated question dicts

    Raises:
        QuizGenerationError: MODEL_INVALID_OUTPUT, OPENAI_ERROR or
            QUIZ_VALIDATION_FAILED
    """
    prompt = build_prompt(config, notes_text)
    messages = [Message(role="user", content=prompt)]

    try:
        payload = client.chat_json(
            messages,
            temperature=0.7,
            model=model,
            max_retries=1 if retry_on_invalid_json else 0,
        )
    except LLMResponseError as e:
        logger.warning("quiz_generation_invalid_output", error=str(e))
        raise QuizGenerationError(
            "MODEL_INVALID_OUTPUT",
            "AI returned an invalid response after retry. Please try generating again.",
        ) from e
    except LLMError as e:
        logger.error("quiz_generation_failed", error=str(e))
        raise QuizGenerationError(
            "OPENAI_ERROR", "Failed to generate quiz. Please try again.", status=500
        ) from e

    questions = validate_questions(payload)
    logger.info(
        "quiz_generated",
        requested=config.question_count,
        actual=len(questions),
        question_type=config.question_type,
    )
    return questions
