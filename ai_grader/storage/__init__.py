"""
Storage Module.

Repository interfaces with JSON-file and in-memory implementations.
"""

from ai_grader.storage.base import (
    NotFoundError,
    ProblemNotFoundError,
    ProblemRepository,
    StorageError,
    SubmissionNotFoundError,
    SubmissionRepository,
)
from ai_grader.storage.json_store import JsonFileStore
from ai_grader.storage.memory import InMemoryProblemRepository, InMemorySubmissionRepository

__all__ = [
    "InMemoryProblemRepository",
    "InMemorySubmissionRepository",
    "JsonFileStore",
    "NotFoundError",
    "ProblemNotFoundError",
    "ProblemRepository",
    "StorageError",
    "SubmissionNotFoundError",
    "SubmissionRepository",
]
