"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules.
"""

import json
import tempfile
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest

from ai_grader.config import Settings
from ai_grader.grading import GradingEngine, LLMClient
from ai_grader.models import (
    Answer,
    DetailedFeedbackItem,
    Feedback,
    Problem,
    ProblemType,
    Question,
    QuestionOption,
    QuestionType,
    RubricItem,
    Submission,
)
from ai_grader.services import GradingService
from ai_grader.storage import InMemoryProblemRepository, InMemorySubmissionRepository


# ==============================================================================
# Directory Fixtures
# ==============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ==============================================================================
# Sample Rubric Fixtures
# ==============================================================================


@pytest.fixture
def sample_rubric_items() -> list[RubricItem]:
    """Rubric whose maxima sum to 8, graded on a 10-point scale."""
    return [
        RubricItem(criterion="Mở bài", max_score=2),
        RubricItem(criterion="Thân bài", max_score=4),
        RubricItem(criterion="Kết bài", max_score=2),
    ]


@pytest.fixture
def sample_raw_rubric() -> str:
    """Sample rubric in free-text form."""
    return """Hướng dẫn chấm

- Mở bài: 2 điểm
- Thân bài: 4 điểm
- Kết bài: 2 điểm
"""


# ==============================================================================
# Sample Essay Fixtures
# ==============================================================================


@pytest.fixture
def sample_prompt() -> str:
    return "Viết bài văn nghị luận về việc thế hệ trẻ bước ra khỏi vùng an toàn."


@pytest.fixture
def sample_essay() -> str:
    """Sample student essay text."""
    return """
Vùng an toàn là nơi mỗi người cảm thấy quen thuộc và dễ chịu. Tuy nhiên, nếu
chỉ ở mãi trong đó, chúng ta sẽ bỏ lỡ nhiều cơ hội trưởng thành.

Bước ra khỏi vùng an toàn giúp người trẻ khám phá năng lực của bản thân, học
hỏi từ thất bại và mở rộng các mối quan hệ.

Tóm lại, thế hệ trẻ cần dũng cảm thử thách chính mình để phát triển.
"""


# ==============================================================================
# Feedback & LLM Response Fixtures
# ==============================================================================


@pytest.fixture
def sample_feedback() -> Feedback:
    """Sample teacher-quality feedback on a 10-point scale."""
    return Feedback(
        detailed_feedback=[
            DetailedFeedbackItem(criterion="Mở bài", score=2, feedback="Giới thiệu vấn đề rõ ràng."),
            DetailedFeedbackItem(criterion="Thân bài", score=3, feedback="Lập luận tốt, thiếu dẫn chứng."),
            DetailedFeedbackItem(criterion="Kết bài", score=1.5, feedback="Kết luận còn ngắn."),
        ],
        total_score=8.13,
        max_score=10,
        general_suggestions=["Bổ sung dẫn chứng thực tế."],
    )


@pytest.fixture
def make_grading_response() -> Callable[..., str]:
    """Factory for grading-result JSON as the model would return it."""

    def _make(scores: dict[str, float], max_score: float = 8, **extra: Any) -> str:
        payload = {
            "detailedFeedback": [
                {"criterion": name, "score": score, "feedback": f"Feedback for {name}"}
                for name, score in scores.items()
            ],
            "totalScore": sum(scores.values()),
            "maxScore": max_score,
            "generalSuggestions": ["Keep practising."],
        }
        payload.update(extra)
        return json.dumps(payload, ensure_ascii=False)

    return _make


@pytest.fixture
def sample_llm_response(make_grading_response: Callable[..., str]) -> str:
    """Essay grading response scoring 6 of 8 raw points."""
    return make_grading_response({"Mở bài": 2, "Thân bài": 3, "Kết bài": 1})


# ==============================================================================
# Problem & Submission Fixtures
# ==============================================================================


@pytest.fixture
def essay_problem(sample_prompt: str, sample_rubric_items: list[RubricItem]) -> Problem:
    return Problem(
        id="problem_1",
        type=ProblemType.ESSAY,
        title="Nghị luận về vùng an toàn",
        prompt=sample_prompt,
        rubric_items=sample_rubric_items,
        custom_max_score=10,
    )


@pytest.fixture
def reading_problem() -> Problem:
    """Reading problem with two multiple-choice questions and one short answer."""
    return Problem(
        id="problem_rc",
        type=ProblemType.READING_COMPREHENSION,
        title="Đọc hiểu",
        passage="Mùa xuân đến, cây cối đâm chồi nảy lộc.",
        questions=[
            Question(
                id="q1",
                question_text="Đoạn văn nói về mùa nào?",
                question_type=QuestionType.MULTIPLE_CHOICE,
                options=[
                    QuestionOption(id="q1_a", text="Mùa hạ"),
                    QuestionOption(id="q1_b", text="Mùa xuân", is_correct=True),
                ],
                correct_option_id="q1_b",
                max_score=1,
            ),
            Question(
                id="q2",
                question_text="Cây cối thay đổi thế nào?",
                question_type=QuestionType.MULTIPLE_CHOICE,
                options=[
                    QuestionOption(id="q2_a", text="Đâm chồi nảy lộc", is_correct=True),
                    QuestionOption(id="q2_b", text="Rụng lá"),
                ],
                max_score=1,
            ),
            Question(
                id="q3",
                question_text="Nêu cảm nhận của em về đoạn văn.",
                question_type=QuestionType.SHORT_ANSWER,
                max_score=1,
                grading_criteria="Nêu được vẻ đẹp tươi mới của mùa xuân.",
            ),
        ],
    )


@pytest.fixture
def reading_answers() -> list[Answer]:
    return [
        Answer(question_id="q1", selected_option_id="q1_b"),
        Answer(question_id="q2", selected_option_id="q2_a"),
        Answer(question_id="q3", written_answer="Mùa xuân tươi mới, tràn đầy sức sống."),
    ]


@pytest.fixture
def essay_submissions(sample_feedback: Feedback) -> list[Submission]:
    """Three essay submissions; s2 carries a teacher correction."""
    return [
        Submission(id="s1", problem_id="problem_1", submitter_id="u1", essay="Bài văn thứ nhất."),
        Submission(
            id="s2",
            problem_id="problem_1",
            submitter_id="u2",
            essay="Bài văn thứ hai đã được giáo viên chấm lại.",
            feedback=sample_feedback,
            last_edited_by_teacher_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        ),
        Submission(id="s3", problem_id="problem_1", submitter_id="u3", essay="Bài văn thứ ba."),
    ]


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """Create test settings with mocked values and no backoff delay."""
    return Settings(
        llm_api_key="test-api-key-for-testing",
        llm_base_url="https://test.api.local/",
        llm_model="test-model",
        llm_temperature=0.0,
        retry_max_attempts=3,
        retry_initial_delay_ms=0,
        data_directory=temp_dir / "data",
    )


# ==============================================================================
# Mock Fixtures
# ==============================================================================


@pytest.fixture
def mock_llm_client(sample_llm_response: str) -> MagicMock:
    """Mock the LLM client to avoid actual API calls."""
    client = MagicMock(spec=LLMClient)
    client.generate = AsyncMock(return_value=sample_llm_response)
    client.ping = AsyncMock(return_value=None)
    client.model = "test-model"
    return client


@pytest.fixture
def engine(test_settings: Settings, mock_llm_client: MagicMock) -> GradingEngine:
    return GradingEngine(test_settings, llm_client=mock_llm_client)


@pytest.fixture
def problem_repo(essay_problem: Problem, reading_problem: Problem) -> InMemoryProblemRepository:
    return InMemoryProblemRepository([essay_problem, reading_problem])


@pytest.fixture
def submission_repo(essay_submissions: list[Submission]) -> InMemorySubmissionRepository:
    return InMemorySubmissionRepository(essay_submissions)


@pytest.fixture
def grading_service(
    engine: GradingEngine,
    problem_repo: InMemoryProblemRepository,
    submission_repo: InMemorySubmissionRepository,
) -> GradingService:
    return GradingService(engine, problem_repo, submission_repo)
