"""
Pydantic models for the AI Grader system.

These models define the schemas for:
- Problems (essay and reading comprehension) with their rubrics and questions
- Submissions and the feedback attached to them
- Grading inputs and outputs exchanged with the LLM and with callers

Attributes are snake_case in Python; the stored and wire form is camelCase.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase keys."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Dump to a camelCase, JSON-compatible dict without unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ==============================================================================
# Problem Models
# ==============================================================================


class ProblemType(str, Enum):
    """Kind of assignment."""

    ESSAY = "essay"
    READING_COMPREHENSION = "reading_comprehension"


class QuestionType(str, Enum):
    """Kind of reading-comprehension question."""

    MULTIPLE_CHOICE = "multiple_choice"
    SHORT_ANSWER = "short_answer"


class RubricItem(CamelModel):
    """A single essay grading criterion with its maximum score."""

    id: str | None = None

    criterion: str = Field(
        ...,
        min_length=1,
        description="Name of the criterion (e.g., 'Introduction')",
    )

    max_score: float = Field(
        ...,
        ge=0,
        description="Maximum score for this criterion",
    )


class QuestionOption(CamelModel):
    """One option of a multiple-choice question."""

    id: str
    text: str = ""
    is_correct: bool = False


class Question(CamelModel):
    """
    A reading-comprehension question.

    Multiple-choice questions are graded by option id; short-answer
    questions are graded against their grading criteria.
    """

    id: str
    question_text: str = ""
    question_type: QuestionType
    options: list[QuestionOption] = Field(default_factory=list)
    correct_option_id: str | None = None
    max_score: float | None = Field(default=None, ge=0)
    grading_criteria: str | None = None

    @property
    def effective_max_score(self) -> float:
        """Maximum score, defaulting to 1 when the question sets none."""
        return self.max_score if self.max_score is not None else 1.0

    def resolve_correct_option_id(self) -> str | None:
        """Return the designated correct option id, or the first option flagged correct."""
        if self.correct_option_id:
            return self.correct_option_id
        for option in self.options:
            if option.is_correct:
                return option.id
        return None


class Problem(CamelModel):
    """An assignment owned by the teacher who created it."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: ProblemType
    title: str = ""
    prompt: str | None = None
    passage: str | None = None
    raw_rubric: str | None = None
    rubric_items: list[RubricItem] = Field(default_factory=list)
    custom_max_score: float | None = Field(default=None, gt=0)
    questions: list[Question] = Field(default_factory=list)
    created_by: str | None = None
    created_at: int | None = None

    @field_validator("custom_max_score", mode="before")
    @classmethod
    def blank_max_score_to_none(cls, v: Any) -> Any:
        """Treat an empty form value or zero as 'not set'."""
        if isinstance(v, str) and not v.strip():
            return None
        if v == 0:
            return None
        return v


# ==============================================================================
# Submission & Feedback Models
# ==============================================================================


class Answer(CamelModel):
    """A student's answer to one reading-comprehension question."""

    question_id: str
    selected_option_id: str | None = None
    written_answer: str | None = None

    @property
    def is_empty(self) -> bool:
        """True when neither an option nor any written text was given."""
        return not self.selected_option_id and not (self.written_answer or "").strip()


class DetailedFeedbackItem(CamelModel):
    """Score and commentary for one criterion or question."""

    criterion: str
    score: float = Field(..., ge=0)
    feedback: str = ""
    question_id: str | None = None


class Feedback(CamelModel):
    """
    Complete grading result for a submission.

    Replaced wholesale by a regrade or a teacher edit, never merged.
    """

    detailed_feedback: list[DetailedFeedbackItem] = Field(default_factory=list)
    total_score: float = Field(..., ge=0)
    max_score: float = Field(..., ge=0)
    general_suggestions: list[str] = Field(default_factory=list)


class SimilarityCheckResult(CamelModel):
    """How closely an essay matches earlier essays for the same problem."""

    similarity_percentage: float = Field(..., ge=0, le=100)
    explanation: str = ""
    most_similar_essay_index: int = -1


class Submission(CamelModel):
    """One student's answer to one problem."""

    model_config = ConfigDict(extra="allow")

    id: str
    problem_id: str
    submitter_id: str = ""
    submitted_at: int | None = None
    essay: str | None = None
    answers: list[Answer] | None = None
    feedback: Feedback | None = None
    similarity_check: SimilarityCheckResult | None = None
    last_edited_by_teacher_at: datetime | None = Field(
        default=None,
        description="Set when a teacher corrected the feedback; marks human ground truth",
    )

    @field_validator("last_edited_by_teacher_at")
    @classmethod
    def ensure_timezone(cls, v: datetime | None) -> datetime | None:
        """Treat naive timestamps as UTC so they compare with epoch-derived ones."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def is_teacher_edited(self) -> bool:
        """Whether the stored feedback is a human correction."""
        return self.last_edited_by_teacher_at is not None


# ==============================================================================
# Grading Input / Output Models
# ==============================================================================


class ReferenceExample(CamelModel):
    """A teacher-corrected essay used only to calibrate feedback style."""

    essay: str
    feedback: Feedback


class AnswerDistributionEntry(CamelModel):
    """One question's answer recovered from free-form student text."""

    question_id: str
    selected_option_id: str | None = None
    written_answer: str | None = None


class EssayGradingOutcome(CamelModel):
    """Result of grading one essay: feedback plus similarity check."""

    feedback: Feedback
    similarity_check: SimilarityCheckResult


class RegradeResult(CamelModel):
    """Summary of a batch regrade."""

    success: bool = True
    updated_count: int = Field(default=0, ge=0)
    attempted_count: int = Field(default=0, ge=0)
    failed_ids: list[str] = Field(default_factory=list)
    cancelled: bool = False


class ConnectionStatus(CamelModel):
    """Outcome of an LLM connectivity check."""

    success: bool
    message: str
    latency_ms: int = 0


# ==============================================================================
# Problem Extraction Models
# ==============================================================================


class ExtractedOption(CamelModel):
    """A multiple-choice option recovered from raw teacher text."""

    text: str
    is_correct: bool = False


class ExtractedQuestion(CamelModel):
    """A question recovered from raw teacher text, before ids are assigned."""

    question_text: str
    question_type: QuestionType
    max_score: float = Field(default=1.0, ge=0)
    options: list[ExtractedOption] = Field(default_factory=list)
    grading_criteria: str | None = None


class EssayData(CamelModel):
    """Essay fields recovered from raw teacher text."""

    prompt: str = ""
    raw_rubric: str = ""
    rubric_items: list[RubricItem] = Field(default_factory=list)
    custom_max_score: float | None = Field(default=None, gt=0)


class ReadingCompData(CamelModel):
    """Reading-comprehension fields recovered from raw teacher text."""

    passage: str = ""
    questions: list[ExtractedQuestion] = Field(default_factory=list)


class SmartExtractResult(CamelModel):
    """A problem draft classified and structured from raw teacher text."""

    type: ProblemType
    title: str
    essay_data: EssayData | None = None
    reading_comp_data: ReadingCompData | None = None
