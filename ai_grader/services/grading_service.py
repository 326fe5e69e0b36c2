"""
Grading service.

Binds the grading engine to the repositories: loads the context a grading
call needs (reference example, earlier essays), runs the calls, and
persists results. Also implements the teacher correction flow that turns a
submission into a reference example.
"""

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, NamedTuple

from ai_grader.grading.engine import GradingEngine
from ai_grader.grading.reference import essay_corpus, select_reference_example
from ai_grader.grading.scorer import clamp_score, rescale_total
from ai_grader.grading.similarity import check_similarity
from ai_grader.models import (
    Answer,
    DetailedFeedbackItem,
    EssayGradingOutcome,
    Feedback,
    Problem,
    ProblemType,
    ReferenceExample,
    RubricItem,
    Submission,
)
from ai_grader.rubric import RubricParser
from ai_grader.storage.base import ProblemRepository, SubmissionRepository

logger = logging.getLogger(__name__)


class GradingContext(NamedTuple):
    """Per-problem inputs shared by every submission graded in one pass."""

    reference_example: ReferenceExample | None
    corpus: list[tuple[str, str]]


class NothingToGradeError(Exception):
    """Raised when a submission has neither an essay nor answers."""

    def __init__(self, submission_id: str):
        self.submission_id = submission_id
        super().__init__(f"Submission {submission_id} has nothing to grade")


class GradingService:
    """Grades submissions of stored problems and persists the results."""

    def __init__(
        self,
        engine: GradingEngine,
        problems: ProblemRepository,
        submissions: SubmissionRepository,
    ):
        self.engine = engine
        self.problems = problems
        self.submissions = submissions
        self._rubric_parser = RubricParser()

    # ==========================================================================
    # Grading
    # ==========================================================================

    async def grade_essay_submission(
        self,
        problem_id: str,
        prompt: str,
        essay: str,
        rubric_items: Sequence[RubricItem] = (),
        raw_rubric: str | None = None,
        custom_max_score: float | None = None,
    ) -> EssayGradingOutcome:
        """
        Grade a new essay for a problem, with similarity against earlier essays.

        The latest teacher-corrected essay of the problem, if any, is used as the
        reference example. Nothing is persisted.

        Args:
            problem_id: Problem the essay answers.
            prompt: The assignment prompt.
            essay: The essay to grade.
            rubric_items: Structured criteria.
            raw_rubric: Free-text rubric.
            custom_max_score: Target scale for the total.

        Returns:
            Feedback and similarity check.
        """
        prior = self.submissions.find_by_problem(problem_id)
        context = self.build_context(problem_id, prior)

        feedback, similarity = await asyncio.gather(
            self.engine.grade_essay(
                prompt=prompt,
                essay=essay,
                rubric_items=rubric_items,
                raw_rubric=raw_rubric,
                custom_max_score=custom_max_score,
                reference_example=context.reference_example,
            ),
            check_similarity(essay, [text for _, text in context.corpus]),
        )
        return EssayGradingOutcome(feedback=feedback, similarity_check=similarity)

    async def grade_reading_submission(self, problem_id: str, answers: Sequence[Answer]) -> Feedback:
        """
        Grade answers to a stored reading-comprehension problem.

        Raises:
            ProblemNotFoundError: If the problem does not exist.
        """
        problem = self.problems.get(problem_id)
        return await self.engine.grade_reading_comprehension(problem, answers)

    async def grade_submission(self, submission_id: str) -> Submission:
        """
        Grade a stored submission and persist the result.

        Raises:
            SubmissionNotFoundError: If the submission does not exist.
            ProblemNotFoundError: If its problem does not exist.
            NothingToGradeError: If it has no essay or answers.
        """
        submission = self.submissions.get(submission_id)
        problem = self.problems.get(submission.problem_id)
        context = self.build_context(problem.id, self.submissions.find_by_problem(problem.id))

        fields = await self.grade_existing(problem, submission, context)
        if fields is None:
            raise NothingToGradeError(submission_id)
        return self.submissions.update(submission_id, **fields)

    def build_context(self, problem_id: str, submissions: Sequence[Submission]) -> GradingContext:
        """Select the reference example and collect the essay corpus of a problem."""
        return GradingContext(
            reference_example=select_reference_example(submissions, problem_id),
            corpus=essay_corpus(submissions, problem_id),
        )

    async def grade_existing(
        self,
        problem: Problem,
        submission: Submission,
        context: GradingContext,
    ) -> dict[str, Any] | None:
        """
        Grade a stored submission without persisting.

        Args:
            problem: The submission's problem.
            submission: The submission to grade.
            context: Shared reference example and essay corpus.

        Returns:
            The fields to persist (feedback, similarity check, cleared teacher
            edit), or None when the submission has nothing to grade.
        """
        if problem.type == ProblemType.ESSAY:
            if not submission.essay:
                return None
            others = [text for sid, text in context.corpus if sid != submission.id]
            feedback, similarity = await asyncio.gather(
                self.engine.grade_essay(
                    prompt=problem.prompt or "",
                    essay=submission.essay,
                    rubric_items=problem.rubric_items,
                    raw_rubric=problem.raw_rubric,
                    custom_max_score=problem.custom_max_score,
                    reference_example=context.reference_example,
                ),
                check_similarity(submission.essay, others),
            )
            return {
                "feedback": feedback,
                "similarity_check": similarity,
                "last_edited_by_teacher_at": None,
            }

        if not submission.answers:
            return None
        feedback = await self.engine.grade_reading_comprehension(problem, submission.answers)
        return {"feedback": feedback, "last_edited_by_teacher_at": None}

    # ==========================================================================
    # Teacher Corrections
    # ==========================================================================

    def apply_teacher_edit(self, submission_id: str, feedback: Feedback) -> Submission:
        """
        Store a teacher's corrected feedback.

        Each score is clamped to its criterion (or question) maximum and the
        total is recomputed on the feedback's scale. The submission is marked
        as teacher-edited, which makes it eligible as a reference example.

        Args:
            submission_id: Submission being corrected.
            feedback: The corrected feedback.

        Returns:
            The updated submission.

        Raises:
            SubmissionNotFoundError: If the submission does not exist.
            ProblemNotFoundError: If its problem does not exist.
        """
        submission = self.submissions.get(submission_id)
        problem = self.problems.get(submission.problem_id)

        maxima, rubric_total = self._criterion_maxima(problem)

        details: list[DetailedFeedbackItem] = []
        for item in feedback.detailed_feedback:
            key = item.question_id if item.question_id in maxima else item.criterion.strip().lower()
            limit = maxima.get(key)
            details.append(item.model_copy(update={"score": clamp_score(item.score, limit)}))

        raw_total = sum(d.score for d in details)
        total = rescale_total(raw_total, rubric_total, feedback.max_score)
        if feedback.max_score > 0:
            total = clamp_score(total, feedback.max_score)

        corrected = feedback.model_copy(update={"detailed_feedback": details, "total_score": total})
        logger.info("Teacher edit on %s: total %s/%s", submission_id, total, feedback.max_score)

        return self.submissions.update(
            submission_id,
            feedback=corrected,
            last_edited_by_teacher_at=datetime.now(timezone.utc),
        )

    def _criterion_maxima(self, problem: Problem) -> tuple[dict[str, float], float]:
        """Per-criterion maxima keyed by question id or lowercased name, and their sum."""
        if problem.type == ProblemType.READING_COMPREHENSION:
            maxima: dict[str, float] = {}
            for question in problem.questions:
                maxima[question.id] = question.effective_max_score
                if question.question_text:
                    maxima[question.question_text.strip().lower()] = question.effective_max_score
            return maxima, sum(q.effective_max_score for q in problem.questions)

        items = problem.rubric_items or self._rubric_parser.parse_lenient(problem.raw_rubric)
        return (
            {item.criterion.strip().lower(): item.max_score for item in items},
            sum(item.max_score for item in items),
        )
