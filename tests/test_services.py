"""
Tests for the grading service and the batch regrade orchestrator.
"""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from ai_grader.grading import LLMError, LLMErrorCode, select_reference_example
from ai_grader.models import (
    Answer,
    DetailedFeedbackItem,
    Feedback,
    Submission,
)
from ai_grader.services import GradingService, NothingToGradeError, RegradeOrchestrator
from ai_grader.storage import (
    InMemorySubmissionRepository,
    ProblemNotFoundError,
    SubmissionNotFoundError,
)

REFERENCE_ESSAY = "Bài văn thứ hai đã được giáo viên chấm lại."


def _essay_marker(essay: str) -> str:
    return f"---BEGIN ESSAY---\n{essay}"


# ==============================================================================
# Grading Service
# ==============================================================================


class TestGradeEssaySubmission:
    """Tests for GradingService.grade_essay_submission."""

    @pytest.mark.asyncio
    async def test_uses_teacher_reference_and_checks_similarity(
        self,
        grading_service: GradingService,
        mock_llm_client: MagicMock,
        sample_rubric_items,
    ) -> None:
        outcome = await grading_service.grade_essay_submission(
            problem_id="problem_1",
            prompt="Đề",
            essay="Bài văn thứ nhất.",
            rubric_items=sample_rubric_items,
            custom_max_score=10,
        )

        assert outcome.feedback.total_score == 7.5
        assert outcome.similarity_check.similarity_percentage == 100
        assert outcome.similarity_check.most_similar_essay_index == 0
        content = mock_llm_client.generate.await_args.args[0]
        assert "REFERENCE EXAMPLE" in content
        assert REFERENCE_ESSAY in content

    @pytest.mark.asyncio
    async def test_no_reference_without_teacher_edits(
        self,
        grading_service: GradingService,
        submission_repo: InMemorySubmissionRepository,
        mock_llm_client: MagicMock,
        sample_rubric_items,
    ) -> None:
        submission_repo.update("s2", last_edited_by_teacher_at=None)

        await grading_service.grade_essay_submission(
            problem_id="problem_1", prompt="Đề", essay="Bài mới", rubric_items=sample_rubric_items
        )

        content = mock_llm_client.generate.await_args.args[0]
        assert "REFERENCE EXAMPLE" not in content


class TestGradeSubmission:
    """Tests for grading stored submissions."""

    @pytest.mark.asyncio
    async def test_persists_feedback_and_clears_teacher_edit(
        self,
        grading_service: GradingService,
        submission_repo: InMemorySubmissionRepository,
    ) -> None:
        updated = await grading_service.grade_submission("s2")

        assert updated.feedback is not None
        assert updated.feedback.total_score == 7.5
        assert updated.similarity_check is not None
        assert updated.last_edited_by_teacher_at is None
        assert submission_repo.get("s2") == updated

    @pytest.mark.asyncio
    async def test_similarity_excludes_own_essay(self, grading_service: GradingService) -> None:
        updated = await grading_service.grade_submission("s1")

        assert updated.similarity_check is not None
        assert updated.similarity_check.similarity_percentage < 100

    @pytest.mark.asyncio
    async def test_nothing_to_grade(
        self,
        grading_service: GradingService,
        submission_repo: InMemorySubmissionRepository,
    ) -> None:
        submission_repo.create(Submission(id="empty", problem_id="problem_1"))

        with pytest.raises(NothingToGradeError):
            await grading_service.grade_submission("empty")

    @pytest.mark.asyncio
    async def test_unknown_submission(self, grading_service: GradingService) -> None:
        with pytest.raises(SubmissionNotFoundError):
            await grading_service.grade_submission("missing")

    @pytest.mark.asyncio
    async def test_grade_reading_submission(
        self,
        grading_service: GradingService,
        mock_llm_client: MagicMock,
        reading_answers: list[Answer],
    ) -> None:
        mock_llm_client.generate.return_value = json.dumps(
            {
                "detailedFeedback": [
                    {"criterion": "q3", "questionId": "q3", "score": 0.5, "feedback": "Chưa đủ ý."}
                ],
                "totalScore": 0.5,
                "maxScore": 1,
                "generalSuggestions": [],
            }
        )

        feedback = await grading_service.grade_reading_submission("problem_rc", reading_answers)

        assert feedback.total_score == 2.5
        assert feedback.max_score == 3


class TestApplyTeacherEdit:
    """Tests for the teacher correction flow."""

    def test_clamps_rescales_and_marks_edit(
        self,
        grading_service: GradingService,
        submission_repo: InMemorySubmissionRepository,
    ) -> None:
        edited = Feedback(
            detailed_feedback=[
                DetailedFeedbackItem(criterion="Mở bài", score=5, feedback="Rất tốt."),
                DetailedFeedbackItem(criterion="Thân bài", score=3, feedback="Khá."),
                DetailedFeedbackItem(criterion="Kết bài", score=1, feedback="Ngắn."),
            ],
            total_score=0,
            max_score=10,
        )
        before = datetime.now(timezone.utc)

        updated = grading_service.apply_teacher_edit("s1", edited)

        assert [d.score for d in updated.feedback.detailed_feedback] == [2, 3, 1]
        assert updated.feedback.total_score == 7.5
        assert updated.last_edited_by_teacher_at is not None
        assert updated.last_edited_by_teacher_at >= before

        example = select_reference_example(submission_repo.find_by_problem("problem_1"))
        assert example is not None
        assert example.essay == "Bài văn thứ nhất."

    def test_reading_edit_uses_question_maxima(
        self,
        grading_service: GradingService,
        submission_repo: InMemorySubmissionRepository,
        reading_answers: list[Answer],
    ) -> None:
        submission_repo.create(
            Submission(id="rc1", problem_id="problem_rc", answers=reading_answers)
        )
        edited = Feedback(
            detailed_feedback=[
                DetailedFeedbackItem(criterion="Câu 1", score=1, question_id="q1"),
                DetailedFeedbackItem(criterion="Câu 2", score=0, question_id="q2"),
                DetailedFeedbackItem(criterion="Câu 3", score=4, question_id="q3"),
            ],
            total_score=5,
            max_score=3,
        )

        updated = grading_service.apply_teacher_edit("rc1", edited)

        assert [d.score for d in updated.feedback.detailed_feedback] == [1, 0, 1]
        assert updated.feedback.total_score == 2

    def test_unknown_submission(self, grading_service: GradingService, sample_feedback: Feedback) -> None:
        with pytest.raises(SubmissionNotFoundError):
            grading_service.apply_teacher_edit("missing", sample_feedback)


# ==============================================================================
# Regrade Orchestrator
# ==============================================================================


@pytest.fixture
def orchestrator(grading_service: GradingService) -> RegradeOrchestrator:
    return RegradeOrchestrator(grading_service)


class TestRegradeOrchestrator:
    """Tests for RegradeOrchestrator."""

    @pytest.mark.asyncio
    async def test_partial_failure_updates_the_rest(
        self,
        orchestrator: RegradeOrchestrator,
        mock_llm_client: MagicMock,
        submission_repo: InMemorySubmissionRepository,
        sample_llm_response: str,
    ) -> None:
        async def fake_generate(content: str, **kwargs) -> str:
            if _essay_marker("Bài văn thứ ba.") in content:
                return "I am unable to grade this essay."
            return sample_llm_response

        mock_llm_client.generate.side_effect = fake_generate

        result = await orchestrator.regrade_all("problem_1")

        assert result.success is True
        assert result.updated_count == 2
        assert result.attempted_count == 3
        assert result.failed_ids == ["s3"]
        assert submission_repo.get("s3").feedback is None

    @pytest.mark.asyncio
    async def test_transient_exhaustion_is_a_per_item_failure(
        self,
        orchestrator: RegradeOrchestrator,
        mock_llm_client: MagicMock,
        sample_llm_response: str,
    ) -> None:
        async def fake_generate(content: str, **kwargs) -> str:
            if _essay_marker("Bài văn thứ nhất.") in content:
                raise LLMError("The model is overloaded", code=LLMErrorCode.OVERLOADED)
            return sample_llm_response

        mock_llm_client.generate.side_effect = fake_generate

        result = await orchestrator.regrade_all("problem_1")

        assert result.updated_count == 2
        assert result.failed_ids == ["s1"]
        # 4 attempts for s1, one each for s2 and s3
        assert mock_llm_client.generate.await_count == 6

    @pytest.mark.asyncio
    async def test_regrade_clears_teacher_edit(
        self,
        orchestrator: RegradeOrchestrator,
        submission_repo: InMemorySubmissionRepository,
    ) -> None:
        await orchestrator.regrade_all("problem_1")

        regraded = submission_repo.get("s2")
        assert regraded.last_edited_by_teacher_at is None
        assert regraded.feedback is not None
        assert regraded.feedback.total_score == 7.5

    @pytest.mark.asyncio
    async def test_reference_is_computed_once_per_batch(
        self,
        orchestrator: RegradeOrchestrator,
        mock_llm_client: MagicMock,
    ) -> None:
        await orchestrator.regrade_all("problem_1")

        prompts = [c.args[0] for c in mock_llm_client.generate.await_args_list]
        assert len(prompts) == 3
        assert all(REFERENCE_ESSAY in p for p in prompts)

    @pytest.mark.asyncio
    async def test_regrade_selected(
        self,
        orchestrator: RegradeOrchestrator,
        mock_llm_client: MagicMock,
        submission_repo: InMemorySubmissionRepository,
    ) -> None:
        result = await orchestrator.regrade_selected("problem_1", ["s1", "unknown"])

        assert result.updated_count == 1
        assert mock_llm_client.generate.await_count == 1
        assert submission_repo.get("s1").feedback is not None
        assert submission_repo.get("s3").feedback is None

    @pytest.mark.asyncio
    async def test_submissions_without_content_are_skipped(
        self,
        orchestrator: RegradeOrchestrator,
        submission_repo: InMemorySubmissionRepository,
    ) -> None:
        submission_repo.create(Submission(id="blank", problem_id="problem_1"))

        result = await orchestrator.regrade_all("problem_1")

        assert result.updated_count == 3
        assert result.attempted_count == 3

    @pytest.mark.asyncio
    async def test_reading_problem(
        self,
        orchestrator: RegradeOrchestrator,
        mock_llm_client: MagicMock,
        submission_repo: InMemorySubmissionRepository,
        reading_answers: list[Answer],
    ) -> None:
        submission_repo.create(Submission(id="rc1", problem_id="problem_rc", answers=reading_answers))
        mock_llm_client.generate.return_value = json.dumps(
            {
                "detailedFeedback": [{"criterion": "q3", "questionId": "q3", "score": 1, "feedback": "Tốt."}],
                "totalScore": 1,
                "maxScore": 1,
                "generalSuggestions": [],
            }
        )

        result = await orchestrator.regrade_all("problem_rc")

        assert result.updated_count == 1
        regraded = submission_repo.get("rc1")
        assert regraded.feedback.total_score == 3
        assert regraded.similarity_check is None

    @pytest.mark.asyncio
    async def test_unknown_problem(self, orchestrator: RegradeOrchestrator) -> None:
        with pytest.raises(ProblemNotFoundError):
            await orchestrator.regrade_all("missing")

    @pytest.mark.asyncio
    async def test_cancel_before_start(
        self,
        orchestrator: RegradeOrchestrator,
        mock_llm_client: MagicMock,
    ) -> None:
        cancel = asyncio.Event()
        cancel.set()

        result = await orchestrator.regrade_all("problem_1", cancel_event=cancel)

        assert result.cancelled is True
        assert result.updated_count == 0
        mock_llm_client.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_between_items(
        self,
        orchestrator: RegradeOrchestrator,
        mock_llm_client: MagicMock,
        sample_llm_response: str,
    ) -> None:
        cancel = asyncio.Event()

        async def fake_generate(content: str, **kwargs) -> str:
            cancel.set()
            return sample_llm_response

        mock_llm_client.generate.side_effect = fake_generate

        result = await orchestrator.regrade_all("problem_1", cancel_event=cancel)

        assert result.cancelled is True
        assert result.updated_count == 1
        assert mock_llm_client.generate.await_count == 1

    @pytest.mark.asyncio
    async def test_bounded_concurrency(
        self,
        grading_service: GradingService,
        mock_llm_client: MagicMock,
        sample_llm_response: str,
    ) -> None:
        in_flight = 0
        peak = 0

        async def fake_generate(content: str, **kwargs) -> str:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return sample_llm_response

        mock_llm_client.generate.side_effect = fake_generate

        result = await RegradeOrchestrator(grading_service, concurrency=2).regrade_all("problem_1")

        assert result.updated_count == 3
        assert peak == 2
