"""
Response parser and scorer for LLM grading output.

Extracts the JSON payload from a model response, validates it against the
expected contract, and enforces score bounds: every criterion score is
clamped to [0, criterion maximum] and essay totals are rescaled onto the
problem's target scale.
"""

import json
import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ai_grader.grading.extractor import extract_json
from ai_grader.grading.schemas import unwrap_array
from ai_grader.models import (
    AnswerDistributionEntry,
    DetailedFeedbackItem,
    Feedback,
    Question,
    QuestionType,
    RubricItem,
    SmartExtractResult,
)

logger = logging.getLogger(__name__)

INVALID_RESULT_MESSAGE = "AI did not return a valid result."

_LABEL_PATTERN = re.compile(r"^\(?\s*([A-Za-z])\s*[.):]?$")


class MalformedResponseError(Exception):
    """Raised when a model response holds no usable JSON or the JSON has the wrong shape."""

    def __init__(self, message: str = INVALID_RESULT_MESSAGE, raw_response: str | None = None):
        self.raw_response = raw_response
        super().__init__(message)


# ==============================================================================
# Raw Response Shapes
# ==============================================================================


class _RawModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class _RawFeedbackItem(_RawModel):
    criterion: str = ""
    score: float
    feedback: str = ""
    question_id: str | None = None


class _RawGradingResult(_RawModel):
    detailed_feedback: list[_RawFeedbackItem]
    total_score: float
    max_score: float
    general_suggestions: list[str] = Field(default_factory=list)


class _RawAnswer(_RawModel):
    question_id: str
    selected_option_id: str | None = None
    written_answer: str | None = None


# ==============================================================================
# Score Arithmetic
# ==============================================================================


def clamp_score(score: float, max_score: float | None) -> float:
    """Clamp a score to [0, max_score]; only the lower bound applies when max is unknown."""
    score = max(0.0, score)
    if max_score is not None:
        score = min(score, max_score)
    return score


def rescale_total(raw_sum: float, rubric_max_sum: float, target_max: float) -> float:
    """
    Convert a raw rubric total onto the target scale.

    Args:
        raw_sum: Sum of per-criterion scores.
        rubric_max_sum: Sum of per-criterion maxima.
        target_max: The problem's max score.

    Returns:
        raw_sum / rubric_max_sum * target_max, rounded to 2 decimals; the raw sum
        when the rubric total is zero or already equals the target.
    """
    if rubric_max_sum <= 0 or rubric_max_sum == target_max:
        return round(raw_sum, 2)
    return round(raw_sum / rubric_max_sum * target_max, 2)


# ==============================================================================
# Parser
# ==============================================================================


class ResponseParser:
    """
    Parses and validates LLM responses for every contract.

    Ensures:
    1. A JSON payload can be recovered from the response
    2. The payload matches the expected contract
    3. Scores are within valid ranges
    """

    def load(self, response: str) -> Any:
        """
        Recover and decode the JSON payload of a response.

        Args:
            response: Raw model output.

        Returns:
            The decoded JSON value.

        Raises:
            MalformedResponseError: If no valid JSON can be recovered.
        """
        json_str = extract_json(response)
        if json_str is None:
            raise MalformedResponseError(raw_response=response)

        try:
            return json.loads(json_str)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(raw_response=response) from e

    def parse_essay_feedback(
        self,
        response: str,
        rubric_items: Sequence[RubricItem],
        target_max: float,
    ) -> Feedback:
        """
        Parse an essay grading response into Feedback on the target scale.

        Args:
            response: Raw model output.
            rubric_items: Criteria with known maxima (may be empty).
            target_max: The problem's max score.

        Returns:
            Feedback whose criterion scores are clamped and whose total is rescaled.

        Raises:
            MalformedResponseError: If the payload is missing or has the wrong shape.
        """
        raw = self._validate_grading_result(response)

        lookup = {item.criterion.strip().lower(): item for item in rubric_items}
        seen: set[str] = set()
        details: list[DetailedFeedbackItem] = []

        for entry in raw.detailed_feedback:
            rubric_item = self._match_criterion(entry.criterion, lookup)
            if rubric_item is not None:
                key = rubric_item.criterion.strip().lower()
                if key in seen:
                    raise MalformedResponseError(
                        f"Duplicate criterion in response: '{entry.criterion}'",
                        raw_response=response,
                    )
                seen.add(key)
                name, max_score = rubric_item.criterion, rubric_item.max_score
            elif lookup:
                # Criteria outside the rubric never count toward the total
                logger.warning("Dropping unknown criterion '%s'", entry.criterion)
                continue
            else:
                name, max_score = entry.criterion, None

            details.append(
                DetailedFeedbackItem(
                    criterion=name,
                    score=clamp_score(entry.score, max_score),
                    feedback=entry.feedback,
                )
            )

        for key, rubric_item in lookup.items():
            if key not in seen:
                logger.warning("Model skipped criterion '%s'; scoring it 0", rubric_item.criterion)
                details.append(
                    DetailedFeedbackItem(
                        criterion=rubric_item.criterion,
                        score=0.0,
                        feedback="Not assessed by the grader.",
                    )
                )

        if rubric_items:
            rubric_max_sum = sum(item.max_score for item in rubric_items)
        else:
            rubric_max_sum = max(raw.max_score, 0.0)

        raw_sum = sum(d.score for d in details)
        total = clamp_score(rescale_total(raw_sum, rubric_max_sum, target_max), target_max)

        return Feedback(
            detailed_feedback=details,
            total_score=total,
            max_score=target_max,
            general_suggestions=raw.general_suggestions,
        )

    def parse_short_answers(
        self,
        response: str,
        questions: Mapping[str, Question],
    ) -> dict[str, DetailedFeedbackItem]:
        """
        Parse a short-answer grading response, keyed by question id.

        Entries for questions that were not asked are ignored.

        Args:
            response: Raw model output.
            questions: The graded questions by id.

        Returns:
            Clamped feedback items for the questions the model scored.

        Raises:
            MalformedResponseError: If the payload is missing or has the wrong shape.
        """
        raw = self._validate_grading_result(response)

        results: dict[str, DetailedFeedbackItem] = {}
        for entry in raw.detailed_feedback:
            question = questions.get(entry.question_id or "")
            if question is None:
                logger.warning("Model scored unknown question '%s'", entry.question_id)
                continue
            results[question.id] = DetailedFeedbackItem(
                criterion=question.question_text or entry.criterion or question.id,
                score=clamp_score(entry.score, question.effective_max_score),
                feedback=entry.feedback,
                question_id=question.id,
            )
        return results

    def parse_rubric_items(self, response: str) -> list[RubricItem]:
        """
        Parse a rubric extraction response.

        Raises:
            MalformedResponseError: If the payload is not a list of criteria.
        """
        data = unwrap_array(self.load(response))
        if not isinstance(data, list):
            raise MalformedResponseError("Rubric extraction must be a list", raw_response=response)

        try:
            return [RubricItem.model_validate(item) for item in data]
        except ValidationError as e:
            raise MalformedResponseError(f"Invalid rubric item: {e}", raw_response=response) from e

    def parse_distribution(
        self,
        response: str,
        questions: Sequence[Question],
    ) -> list[AnswerDistributionEntry]:
        """
        Parse an answer distribution response.

        Accepts the canonical list of {questionId, selectedOptionId?, writtenAnswer?}
        as well as the legacy {questionId: {...}} mapping. Option letters and option
        texts are resolved to option ids; unknown questions and empty answers are dropped.

        Args:
            response: Raw model output.
            questions: The ordered question list.

        Returns:
            One entry per answered question, in response order.

        Raises:
            MalformedResponseError: If the payload has neither shape.
        """
        data = unwrap_array(self.load(response))

        if isinstance(data, dict):
            data = [
                {"questionId": question_id, **value}
                for question_id, value in data.items()
                if isinstance(value, dict)
            ]
        if not isinstance(data, list):
            raise MalformedResponseError("Answer distribution must be a list", raw_response=response)

        by_id = {q.id: q for q in questions}
        entries: list[AnswerDistributionEntry] = []

        for item in data:
            try:
                raw = _RawAnswer.model_validate(item)
            except ValidationError as e:
                raise MalformedResponseError(f"Invalid answer entry: {e}", raw_response=response) from e

            question = by_id.get(raw.question_id)
            if question is None:
                logger.warning("Distribution referenced unknown question '%s'", raw.question_id)
                continue

            entry = self._normalize_answer(raw, question)
            if entry is not None:
                entries.append(entry)

        return entries

    def parse_smart_extract(self, response: str) -> SmartExtractResult:
        """
        Parse a problem extraction response.

        Raises:
            MalformedResponseError: If the payload does not describe a problem.
        """
        data = self.load(response)
        try:
            return SmartExtractResult.model_validate(data)
        except ValidationError as e:
            raise MalformedResponseError(f"Invalid problem extraction: {e}", raw_response=response) from e

    def _validate_grading_result(self, response: str) -> _RawGradingResult:
        """Decode and validate the grading result contract."""
        data = self.load(response)
        if not isinstance(data, dict):
            raise MalformedResponseError("Grading result must be an object", raw_response=response)

        try:
            return _RawGradingResult.model_validate(data)
        except ValidationError as e:
            raise MalformedResponseError(f"Invalid grading result: {e}", raw_response=response) from e

    @staticmethod
    def _match_criterion(name: str, lookup: Mapping[str, RubricItem]) -> RubricItem | None:
        """Find the rubric item for a criterion name, exactly or by containment."""
        key = name.strip().lower()
        if not key:
            return None
        if key in lookup:
            return lookup[key]
        for candidate, item in lookup.items():
            if candidate in key or key in candidate:
                return item
        return None

    @staticmethod
    def _normalize_answer(raw: _RawAnswer, question: Question) -> AnswerDistributionEntry | None:
        """Resolve option references for one answer; None when nothing usable remains."""
        written = (raw.written_answer or "").strip() or None
        selected = (raw.selected_option_id or "").strip() or None

        if question.question_type == QuestionType.MULTIPLE_CHOICE:
            selected = resolve_option_id(question, selected) or resolve_option_id(question, written)
            if selected is not None and written is not None and resolve_option_id(question, written):
                written = None
        else:
            selected = None

        if selected is None and written is None:
            return None
        return AnswerDistributionEntry(
            question_id=question.id,
            selected_option_id=selected,
            written_answer=written,
        )


def resolve_option_id(question: Question, reference: str | None) -> str | None:
    """
    Resolve an option id, letter label (A, b., (C)) or option text to an option id.

    Args:
        question: A multiple-choice question.
        reference: What the student or model wrote.

    Returns:
        The matching option id, or None.
    """
    if not reference:
        return None
    reference = reference.strip()

    for option in question.options:
        if option.id == reference:
            return option.id

    label = _LABEL_PATTERN.match(reference)
    if label:
        index = ord(label.group(1).upper()) - ord("A")
        if 0 <= index < len(question.options):
            return question.options[index].id

    lowered = reference.lower()
    for option in question.options:
        if option.text and option.text.strip().lower() == lowered:
            return option.id
    return None
