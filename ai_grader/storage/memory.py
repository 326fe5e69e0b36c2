"""In-memory repositories for tests and embedding."""

from collections.abc import Iterable
from typing import Any

from ai_grader.models import Problem, Submission
from ai_grader.storage.base import (
    ProblemRepository,
    SubmissionNotFoundError,
    SubmissionRepository,
    apply_fields,
)


class InMemoryProblemRepository(ProblemRepository):
    def __init__(self, problems: Iterable[Problem] = ()):
        self._problems: dict[str, Problem] = {p.id: p for p in problems}

    def find_by_id(self, problem_id: str) -> Problem | None:
        return self._problems.get(problem_id)

    def save(self, problem: Problem) -> None:
        self._problems[problem.id] = problem


class InMemorySubmissionRepository(SubmissionRepository):
    def __init__(self, submissions: Iterable[Submission] = ()):
        self._submissions: dict[str, Submission] = {s.id: s for s in submissions}

    def find_by_id(self, submission_id: str) -> Submission | None:
        return self._submissions.get(submission_id)

    def find_by_problem(self, problem_id: str) -> list[Submission]:
        return [s for s in self._submissions.values() if s.problem_id == problem_id]

    def create(self, submission: Submission) -> Submission:
        if submission.id in self._submissions:
            raise ValueError(f"Submission already exists: {submission.id}")
        self._submissions[submission.id] = submission
        return submission

    def update(self, submission_id: str, **fields: Any) -> Submission:
        current = self._submissions.get(submission_id)
        if current is None:
            raise SubmissionNotFoundError(submission_id)
        updated = apply_fields(current, fields)
        self._submissions[submission_id] = updated
        return updated
