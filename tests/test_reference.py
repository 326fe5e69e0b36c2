"""
Unit tests for reference-example selection and the essay similarity check.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from ai_grader.grading.reference import essay_corpus, select_reference_example
from ai_grader.grading.similarity import check_similarity
from ai_grader.models import Feedback, Submission


def _submission(
    submission_id: str,
    feedback: Feedback | None = None,
    edited_at: datetime | None = None,
    essay: str | None = "Một bài văn.",
    problem_id: str = "problem_1",
) -> Submission:
    return Submission(
        id=submission_id,
        problem_id=problem_id,
        essay=essay,
        feedback=feedback,
        last_edited_by_teacher_at=edited_at,
    )


class TestSelectReferenceExample:
    """Tests for select_reference_example."""

    def test_latest_teacher_edit_wins(self, sample_feedback: Feedback) -> None:
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        high_ai_score = sample_feedback.model_copy(update={"total_score": 10.0})
        submissions = [
            _submission("ai_only", feedback=high_ai_score),
            _submission("older", feedback=sample_feedback, edited_at=base, essay="Cũ"),
            _submission("newer", feedback=sample_feedback, edited_at=base + timedelta(days=1), essay="Mới"),
        ]

        example = select_reference_example(submissions, "problem_1")

        assert example is not None
        assert example.essay == "Mới"
        assert example.feedback == sample_feedback

    def test_no_fallback_to_highest_ai_score(self, sample_feedback: Feedback) -> None:
        submissions = [
            _submission("a", feedback=sample_feedback.model_copy(update={"total_score": 9.5})),
            _submission("b", feedback=sample_feedback.model_copy(update={"total_score": 4.0})),
        ]

        assert select_reference_example(submissions, "problem_1") is None

    def test_requires_essay_and_feedback(self, sample_feedback: Feedback) -> None:
        edited = datetime(2024, 1, 1, tzinfo=timezone.utc)
        submissions = [
            _submission("no_essay", feedback=sample_feedback, edited_at=edited, essay=None),
            _submission("no_feedback", edited_at=edited),
        ]

        assert select_reference_example(submissions) is None

    def test_filters_by_problem(self, sample_feedback: Feedback) -> None:
        edited = datetime(2024, 1, 1, tzinfo=timezone.utc)
        submissions = [
            _submission("other", feedback=sample_feedback, edited_at=edited, problem_id="problem_2"),
        ]

        assert select_reference_example(submissions, "problem_1") is None
        assert select_reference_example(submissions, "problem_2") is not None

    def test_naive_timestamps_compare_with_aware_ones(self, sample_feedback: Feedback) -> None:
        submissions = [
            _submission("naive", feedback=sample_feedback, edited_at=datetime(2024, 3, 1), essay="Naive"),
            _submission(
                "aware",
                feedback=sample_feedback,
                edited_at=datetime(2024, 2, 1, tzinfo=timezone.utc),
                essay="Aware",
            ),
        ]

        example = select_reference_example(submissions)

        assert example is not None
        assert example.essay == "Naive"

    def test_essay_corpus_skips_empty_essays(self) -> None:
        submissions = [
            _submission("s1", essay="Một"),
            _submission("s2", essay=None),
            _submission("s3", essay="Ba", problem_id="problem_2"),
        ]

        assert essay_corpus(submissions, "problem_1") == [("s1", "Một")]


class TestCheckSimilarity:
    """Tests for check_similarity."""

    @pytest.mark.asyncio
    async def test_no_earlier_essays(self) -> None:
        result = await check_similarity("Bài văn mới.", [])

        assert result.similarity_percentage == 0
        assert result.most_similar_essay_index == -1

    @pytest.mark.asyncio
    async def test_identical_essay_scores_100(self) -> None:
        essay = "Bước ra khỏi vùng an toàn giúp người trẻ trưởng thành."
        result = await check_similarity(essay, ["Một bài khác hẳn về mùa xuân.", essay])

        assert result.similarity_percentage == 100
        assert result.most_similar_essay_index == 1
        assert "#2" in result.explanation

    @pytest.mark.asyncio
    async def test_reordered_copy_still_matches(self) -> None:
        original = "người trẻ cần dũng cảm thử thách chính mình để phát triển"
        reordered = "để phát triển người trẻ cần dũng cảm thử thách chính mình"

        result = await check_similarity(reordered, [original])

        assert result.similarity_percentage >= 90

    @pytest.mark.asyncio
    async def test_blank_candidates_are_skipped(self) -> None:
        result = await check_similarity("Bài văn.", ["", "   "])

        assert result.most_similar_essay_index == -1
        assert result.similarity_percentage == 0

    @pytest.mark.asyncio
    async def test_custom_scorer(self) -> None:
        result = await check_similarity("a", ["b", "c"], scorer=lambda x, y: 40 if y == "c" else 10)

        assert result.similarity_percentage == 40
        assert result.most_similar_essay_index == 1

    @pytest.mark.asyncio
    async def test_scoring_runs_off_the_event_loop_thread(self) -> None:
        loop_thread = threading.get_ident()
        scorer_threads: list[int] = []

        def scorer(a: str, b: str) -> int:
            scorer_threads.append(threading.get_ident())
            return 50

        await check_similarity("a", ["b", "c"], scorer=scorer)

        assert len(scorer_threads) == 2
        assert loop_thread not in scorer_threads


def test_is_teacher_edited_marks_reference_candidates(sample_feedback: Feedback) -> None:
    edited_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    edited = _submission("edited", feedback=sample_feedback, edited_at=edited_at)
    ai_only = _submission("ai_only", feedback=sample_feedback)

    assert edited.is_teacher_edited is True
    assert ai_only.is_teacher_edited is False
    assert select_reference_example([ai_only, edited]) == select_reference_example([edited])
