"""
Repository interfaces for problems and submissions.

Grading code depends only on these abstractions; concrete stores are
injected by the caller.
"""

from abc import ABC, abstractmethod
from typing import Any

from ai_grader.models import Problem, Submission


class NotFoundError(Exception):
    """Raised when a record does not exist."""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} not found: {record_id}")


class ProblemNotFoundError(NotFoundError):
    """Raised when a problem id is unknown."""

    def __init__(self, problem_id: str):
        super().__init__("Problem", problem_id)


class SubmissionNotFoundError(NotFoundError):
    """Raised when a submission id is unknown."""

    def __init__(self, submission_id: str):
        super().__init__("Submission", submission_id)


class StorageError(Exception):
    """Raised when persisted data cannot be read or written."""


class ProblemRepository(ABC):
    """Read access to problems, plus saving for imports and tests."""

    @abstractmethod
    def find_by_id(self, problem_id: str) -> Problem | None:
        """Return the problem, or None if it does not exist."""

    @abstractmethod
    def save(self, problem: Problem) -> None:
        """Insert or replace a problem."""

    def get(self, problem_id: str) -> Problem:
        """
        Return the problem.

        Raises:
            ProblemNotFoundError: If it does not exist.
        """
        problem = self.find_by_id(problem_id)
        if problem is None:
            raise ProblemNotFoundError(problem_id)
        return problem


class SubmissionRepository(ABC):
    """Access to submissions."""

    @abstractmethod
    def find_by_id(self, submission_id: str) -> Submission | None:
        """Return the submission, or None if it does not exist."""

    @abstractmethod
    def find_by_problem(self, problem_id: str) -> list[Submission]:
        """Return the problem's submissions in insertion order."""

    @abstractmethod
    def create(self, submission: Submission) -> Submission:
        """Store a new submission."""

    @abstractmethod
    def update(self, submission_id: str, **fields: Any) -> Submission:
        """
        Replace the given fields of one submission and persist it.

        Fields use attribute names; passing None clears a field.

        Raises:
            SubmissionNotFoundError: If the id is unknown.
        """

    def get(self, submission_id: str) -> Submission:
        """
        Return the submission.

        Raises:
            SubmissionNotFoundError: If it does not exist.
        """
        submission = self.find_by_id(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(submission_id)
        return submission


def apply_fields(submission: Submission, fields: dict[str, Any]) -> Submission:
    """Return a copy of the submission with fields replaced and revalidated."""
    unknown = set(fields) - set(Submission.model_fields)
    if unknown:
        raise ValueError(f"Unknown submission fields: {', '.join(sorted(unknown))}")
    data = submission.model_dump()
    data.update(fields)
    return Submission.model_validate(data)
