"""
Reference-example selection for essay grading.

The most recently teacher-corrected essay for a problem is shown to the model
as a calibration anchor for feedback style. When no teacher correction exists,
no example is used: feeding the model its own highest-scored output back in
would let scores drift upward from batch to batch.
"""

from collections.abc import Iterable

from ai_grader.models import ReferenceExample, Submission


def select_reference_example(
    submissions: Iterable[Submission],
    problem_id: str | None = None,
) -> ReferenceExample | None:
    """
    Pick the calibration example for a problem.

    Args:
        submissions: Candidate submissions, typically all submissions of the problem.
        problem_id: If given, submissions for other problems are ignored.

    Returns:
        The latest teacher-edited essay with its feedback, or None.
    """
    candidates = [
        s
        for s in submissions
        if (problem_id is None or s.problem_id == problem_id)
        and s.essay
        and s.feedback is not None
        and s.is_teacher_edited
    ]
    if not candidates:
        return None

    latest = max(candidates, key=lambda s: s.last_edited_by_teacher_at)
    return ReferenceExample(essay=latest.essay, feedback=latest.feedback)


def essay_corpus(
    submissions: Iterable[Submission], problem_id: str | None = None
) -> list[tuple[str, str]]:
    """(submission id, essay) pairs of a problem, in submission order, for similarity checks."""
    return [
        (s.id, s.essay)
        for s in submissions
        if (problem_id is None or s.problem_id == problem_id) and s.essay
    ]
