"""
JSON file store.

Persists problems and submissions as camelCase JSON arrays in
`problems.json` and `submissions.json` under a data directory. Unset
optional fields are omitted, so clearing a field removes its key.
"""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ai_grader.models import Problem, Submission
from ai_grader.storage.base import (
    ProblemRepository,
    StorageError,
    SubmissionNotFoundError,
    SubmissionRepository,
    apply_fields,
)

logger = logging.getLogger(__name__)


class JsonFileStore:
    """
    File-backed store exposing problem and submission repositories.

    Every write rewrites the whole file through a temporary file, so a crash
    never leaves a half-written array behind.
    """

    PROBLEMS_FILE = "problems.json"
    SUBMISSIONS_FILE = "submissions.json"

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)
        self.problems = JsonProblemRepository(self)
        self.submissions = JsonSubmissionRepository(self)

    def load(self, file_name: str) -> list[dict[str, Any]]:
        """
        Read one collection.

        Args:
            file_name: File inside the data directory.

        Returns:
            The stored records; empty when the file is missing or blank.

        Raises:
            StorageError: If the file is not a JSON array.
        """
        path = self.directory / file_name
        if not path.exists():
            return []

        content = path.read_text(encoding="utf-8")
        if not content.strip():
            return []

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StorageError(f"Invalid JSON in {path}: {e}") from e
        if not isinstance(data, list):
            raise StorageError(f"Expected a JSON array in {path}")
        return data

    def save(self, file_name: str, records: list[dict[str, Any]]) -> None:
        """Write one collection atomically."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / file_name
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(json.dumps(records, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(path)
        logger.debug("Wrote %d records to %s", len(records), path)


def _parse(model: type, record: dict[str, Any], file_name: str):
    try:
        return model.model_validate(record)
    except ValidationError as e:
        raise StorageError(f"Invalid record {record.get('id')!r} in {file_name}: {e}") from e


class JsonProblemRepository(ProblemRepository):
    def __init__(self, store: JsonFileStore):
        self._store = store

    def _all(self) -> list[Problem]:
        file_name = self._store.PROBLEMS_FILE
        return [_parse(Problem, r, file_name) for r in self._store.load(file_name)]

    def find_by_id(self, problem_id: str) -> Problem | None:
        return next((p for p in self._all() if p.id == problem_id), None)

    def save(self, problem: Problem) -> None:
        problems = [p for p in self._all() if p.id != problem.id]
        problems.append(problem)
        self._store.save(self._store.PROBLEMS_FILE, [p.to_json_dict() for p in problems])


class JsonSubmissionRepository(SubmissionRepository):
    def __init__(self, store: JsonFileStore):
        self._store = store

    def _all(self) -> list[Submission]:
        file_name = self._store.SUBMISSIONS_FILE
        return [_parse(Submission, r, file_name) for r in self._store.load(file_name)]

    def _write(self, submissions: list[Submission]) -> None:
        self._store.save(self._store.SUBMISSIONS_FILE, [s.to_json_dict() for s in submissions])

    def find_by_id(self, submission_id: str) -> Submission | None:
        return next((s for s in self._all() if s.id == submission_id), None)

    def find_by_problem(self, problem_id: str) -> list[Submission]:
        return [s for s in self._all() if s.problem_id == problem_id]

    def create(self, submission: Submission) -> Submission:
        submissions = self._all()
        if any(s.id == submission.id for s in submissions):
            raise ValueError(f"Submission already exists: {submission.id}")
        submissions.append(submission)
        self._write(submissions)
        return submission

    def update(self, submission_id: str, **fields: Any) -> Submission:
        submissions = self._all()
        for index, current in enumerate(submissions):
            if current.id == submission_id:
                updated = apply_fields(current, fields)
                submissions[index] = updated
                self._write(submissions)
                return updated
        raise SubmissionNotFoundError(submission_id)
