"""
Grading engine - the core orchestrator of LLM calls.

Every model call goes through the retry governor and every response through
the ResponseParser, so callers only ever see validated, bounded results.
"""

import logging
import time
from collections.abc import Sequence

from ai_grader.config import Settings, get_settings
from ai_grader.grading.llm_client import LLMClient, LLMError
from ai_grader.grading.prompt_builder import PromptBuilder, option_label
from ai_grader.grading.retry import retry_operation
from ai_grader.grading.schemas import (
    ANSWER_DISTRIBUTION_FORMAT,
    GRADING_RESULT_FORMAT,
    PROBLEM_EXTRACTION_FORMAT,
    RUBRIC_EXTRACTION_FORMAT,
)
from ai_grader.grading.scorer import MalformedResponseError, ResponseParser
from ai_grader.models import (
    Answer,
    AnswerDistributionEntry,
    ConnectionStatus,
    DetailedFeedbackItem,
    Feedback,
    Problem,
    Question,
    QuestionType,
    ReferenceExample,
    RubricItem,
    SmartExtractResult,
)
from ai_grader.rubric import RubricParser

logger = logging.getLogger(__name__)

HEALTH_CHECK_RETRIES = 1
HEALTH_CHECK_DELAY_MS = 1000


class GradingEngine:
    """
    Async grading engine.

    Grades essays against rubrics, grades reading-comprehension answers,
    and runs the auxiliary extraction calls (answer distribution, rubric
    and problem extraction).
    """

    def __init__(self, settings: Settings | None = None, llm_client: LLMClient | None = None):
        """
        Initialize the grading engine.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            llm_client: LLM client to use. Built from settings if not provided.
        """
        self._settings = settings or get_settings()
        self._llm_client = llm_client or LLMClient(self._settings)
        self._response_parser = ResponseParser()
        self._rubric_parser = RubricParser()

    @property
    def settings(self) -> Settings:
        return self._settings

    # ==========================================================================
    # Essay Grading
    # ==========================================================================

    async def grade_essay(
        self,
        prompt: str,
        essay: str,
        rubric_items: Sequence[RubricItem] = (),
        raw_rubric: str | None = None,
        custom_max_score: float | None = None,
        reference_example: ReferenceExample | None = None,
    ) -> Feedback:
        """
        Grade an essay against a rubric.

        Args:
            prompt: The assignment prompt.
            essay: The student's essay.
            rubric_items: Structured criteria with maxima.
            raw_rubric: Free-text rubric, preferred in the prompt when present.
            custom_max_score: Target scale for the total (defaults to settings).
            reference_example: Teacher-corrected example for feedback calibration.

        Returns:
            Feedback with clamped criterion scores and a rescaled total.

        Raises:
            LLMError: If the model call fails after retries.
            MalformedResponseError: If the response cannot be parsed.
        """
        target_max = custom_max_score or self._settings.default_max_score

        # Criterion maxima are needed for clamping even when only free text is stored
        items = list(rubric_items) or self._rubric_parser.parse_lenient(raw_rubric)

        user_prompt = PromptBuilder.build_essay_prompt(
            prompt=prompt,
            essay=essay,
            rubric_items=items,
            raw_rubric=raw_rubric,
            max_score=target_max,
            reference_example=reference_example,
        )

        raw_response = await self._invoke(
            user_prompt, PromptBuilder.ESSAY_SYSTEM_PROMPT, GRADING_RESULT_FORMAT
        )
        feedback = self._response_parser.parse_essay_feedback(raw_response, items, target_max)

        logger.info(
            "Essay graded: %s/%s (%d criteria, reference=%s)",
            feedback.total_score,
            feedback.max_score,
            len(feedback.detailed_feedback),
            reference_example is not None,
        )
        return feedback

    # ==========================================================================
    # Reading Comprehension Grading
    # ==========================================================================

    async def grade_reading_comprehension(
        self,
        problem: Problem,
        answers: Sequence[Answer],
    ) -> Feedback:
        """
        Grade a set of answers to a reading-comprehension problem.

        Multiple-choice questions are scored locally. Answered short-answer
        questions are graded together in a single model call.

        Args:
            problem: The problem with its questions.
            answers: The student's answers (any order, any subset).

        Returns:
            Feedback with one entry per question, in question order.

        Raises:
            LLMError: If the short-answer call fails after retries.
            MalformedResponseError: If the model omits an answered question.
        """
        by_question = {a.question_id: a for a in answers}
        to_grade: list[tuple[Question, Answer]] = []

        for question in problem.questions:
            answer = by_question.get(question.id)
            if (
                question.question_type == QuestionType.SHORT_ANSWER
                and answer is not None
                and not answer.is_empty
            ):
                to_grade.append((question, answer))

        graded: dict[str, DetailedFeedbackItem] = {}
        if to_grade:
            user_prompt = PromptBuilder.build_short_answer_prompt(problem.passage, to_grade)
            raw_response = await self._invoke(
                user_prompt, PromptBuilder.READING_SYSTEM_PROMPT, GRADING_RESULT_FORMAT
            )
            graded = self._response_parser.parse_short_answers(
                raw_response, {q.id: q for q, _ in to_grade}
            )
            missing = [q.id for q, _ in to_grade if q.id not in graded]
            if missing:
                raise MalformedResponseError(
                    f"Model did not grade questions: {', '.join(missing)}",
                    raw_response=raw_response,
                )

        details: list[DetailedFeedbackItem] = []
        for number, question in enumerate(problem.questions, start=1):
            if question.id in graded:
                details.append(graded[question.id])
                continue

            answer = by_question.get(question.id)
            if answer is None or answer.is_empty:
                details.append(
                    DetailedFeedbackItem(
                        criterion=_question_label(question, number),
                        score=0.0,
                        feedback="No answer given.",
                        question_id=question.id,
                    )
                )
            else:
                details.append(_score_multiple_choice(question, answer, number))

        total = round(sum(d.score for d in details), 2)
        max_score = round(sum(q.effective_max_score for q in problem.questions), 2)

        logger.info(
            "Reading comprehension graded: %s/%s (%d short answers sent to model)",
            total,
            max_score,
            len(to_grade),
        )
        return Feedback(detailed_feedback=details, total_score=total, max_score=max_score)

    # ==========================================================================
    # Extraction Calls
    # ==========================================================================

    async def distribute_answers(
        self,
        raw_text: str,
        questions: Sequence[Question],
    ) -> list[AnswerDistributionEntry]:
        """
        Split free-form student text into per-question answers.

        Args:
            raw_text: The student's unstructured answers.
            questions: The problem's questions, in order.

        Returns:
            Entries for the questions that have a discernible answer.
        """
        if not raw_text.strip() or not questions:
            return []

        user_prompt = PromptBuilder.build_distribution_prompt(raw_text, questions)
        raw_response = await self._invoke(
            user_prompt, PromptBuilder.DISTRIBUTION_SYSTEM_PROMPT, ANSWER_DISTRIBUTION_FORMAT
        )
        entries = self._response_parser.parse_distribution(raw_response, questions)
        logger.info("Distributed answers to %d of %d questions", len(entries), len(questions))
        return entries

    async def parse_rubric(self, raw_rubric: str) -> list[RubricItem]:
        """
        Extract structured criteria from a free-text rubric.

        Args:
            raw_rubric: The teacher's rubric text.

        Returns:
            Criteria with their maximum scores.
        """
        user_prompt = PromptBuilder.build_rubric_prompt(raw_rubric)
        raw_response = await self._invoke(
            user_prompt, PromptBuilder.RUBRIC_SYSTEM_PROMPT, RUBRIC_EXTRACTION_FORMAT
        )
        return self._response_parser.parse_rubric_items(raw_response)

    async def smart_extract_problem(self, raw_content: str) -> SmartExtractResult:
        """
        Classify raw teacher text as an essay or reading-comprehension problem
        and structure it.

        Args:
            raw_content: Mixed text with prompt, passage, questions or rubric.

        Returns:
            The structured problem draft.
        """
        user_prompt = PromptBuilder.build_smart_extract_prompt(raw_content)
        raw_response = await self._invoke(
            user_prompt, PromptBuilder.SMART_EXTRACT_SYSTEM_PROMPT, PROBLEM_EXTRACTION_FORMAT
        )
        return self._response_parser.parse_smart_extract(raw_response)

    async def health_check(self) -> ConnectionStatus:
        """
        Check if the LLM API is reachable.

        Returns:
            ConnectionStatus with the outcome and round-trip latency.
        """
        started = time.perf_counter()
        try:
            await retry_operation(
                self._llm_client.ping,
                max_retries=HEALTH_CHECK_RETRIES,
                initial_delay_ms=HEALTH_CHECK_DELAY_MS,
            )
        except LLMError as e:
            latency_ms = int((time.perf_counter() - started) * 1000)
            logger.warning("Health check failed: %s", e)
            return ConnectionStatus(success=False, message=str(e), latency_ms=latency_ms)

        latency_ms = int((time.perf_counter() - started) * 1000)
        return ConnectionStatus(
            success=True,
            message=f"Connected to {self._llm_client.model}",
            latency_ms=latency_ms,
        )

    async def _invoke(
        self,
        content: str,
        system_instruction: str,
        response_format: dict,
    ) -> str:
        """Call the model through the retry governor."""
        return await retry_operation(
            lambda: self._llm_client.generate(
                content,
                system_instruction=system_instruction,
                response_schema=response_format,
            ),
            max_retries=self._settings.retry_max_attempts,
            initial_delay_ms=self._settings.retry_initial_delay_ms,
        )


def merge_answers(
    existing: Sequence[Answer],
    distributed: Sequence[AnswerDistributionEntry],
) -> list[Answer]:
    """
    Merge distributed answers into existing ones without overwriting.

    An existing non-empty answer always wins; distributed entries only fill
    questions that are unanswered. Order: existing answers first, then new
    questions in distribution order.

    Args:
        existing: Answers already on the submission.
        distributed: Output of GradingEngine.distribute_answers.

    Returns:
        The merged answer list.
    """
    merged: dict[str, Answer] = {a.question_id: a for a in existing}

    for entry in distributed:
        current = merged.get(entry.question_id)
        if current is not None and not current.is_empty:
            continue
        merged[entry.question_id] = Answer(
            question_id=entry.question_id,
            selected_option_id=entry.selected_option_id,
            written_answer=entry.written_answer,
        )

    return list(merged.values())


def _question_label(question: Question, number: int) -> str:
    return question.question_text or f"Question {number}"


def _score_multiple_choice(question: Question, answer: Answer, number: int) -> DetailedFeedbackItem:
    """Score a multiple-choice answer by comparing option ids."""
    correct_id = question.resolve_correct_option_id()

    if correct_id is None:
        logger.warning("Question %s has no correct option configured", question.id)
        score, feedback = 0.0, "No correct option is configured for this question."
    elif answer.selected_option_id == correct_id:
        score, feedback = question.effective_max_score, "Correct."
    else:
        label = next(
            (option_label(i) for i, o in enumerate(question.options) if o.id == correct_id),
            correct_id,
        )
        score, feedback = 0.0, f"Incorrect. The correct answer is {label}."

    return DetailedFeedbackItem(
        criterion=_question_label(question, number),
        score=score,
        feedback=feedback,
        question_id=question.id,
    )
