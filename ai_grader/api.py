"""
Action router for the grading API.

Requests are `{"action": ..., "payload": {...}}` envelopes validated into a
tagged union; each variant is dispatched to the engine, the grading service
or the regrade orchestrator. Responses are camelCase JSON-compatible dicts
paired with an HTTP-like status code.
"""

import logging
from typing import Annotated, Any, Literal, NamedTuple, Union

from pydantic import Field, TypeAdapter, ValidationError, field_validator

from ai_grader.config import ConfigurationError
from ai_grader.grading.engine import GradingEngine
from ai_grader.grading.llm_client import LLMError
from ai_grader.grading.scorer import MalformedResponseError
from ai_grader.models import Answer, CamelModel, Feedback, Problem, Question, RubricItem
from ai_grader.services.grading_service import GradingService, NothingToGradeError
from ai_grader.services.regrade import RegradeOrchestrator
from ai_grader.storage.base import NotFoundError

logger = logging.getLogger(__name__)


# ==============================================================================
# Request Payloads
# ==============================================================================


class GradePayload(CamelModel):
    problem_id: str
    prompt: str = ""
    essay: str = Field(..., min_length=1)
    rubric: list[RubricItem] = Field(default_factory=list)
    raw_rubric: str | None = None
    custom_max_score: float | None = Field(default=None, gt=0)

    @field_validator("custom_max_score", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class RegradePayload(CamelModel):
    problem_id: str


class RegradeSelectedPayload(RegradePayload):
    submission_ids: list[str]


class ReadingPayload(CamelModel):
    problem: Problem
    answers: list[Answer]


class RubricPayload(CamelModel):
    raw_rubric_text: str = Field(..., min_length=1)


class SmartExtractPayload(CamelModel):
    raw_content: str = Field(..., min_length=1)


class DistributePayload(CamelModel):
    raw_text: str
    questions: list[Question]


class TeacherEditPayload(CamelModel):
    submission_id: str
    feedback: Feedback


# ==============================================================================
# Request Variants
# ==============================================================================


class ConnectionCheckRequest(CamelModel):
    action: Literal["test_connection"]


class GradeRequest(CamelModel):
    action: Literal["grade"]
    payload: GradePayload


class RegradeAllRequest(CamelModel):
    action: Literal["regrade_all"]
    payload: RegradePayload


class RegradeSelectedRequest(CamelModel):
    action: Literal["regrade_selected"]
    payload: RegradeSelectedPayload


class GradeReadingRequest(CamelModel):
    action: Literal["grade_reading_comprehension"]
    payload: ReadingPayload


class ParseRubricRequest(CamelModel):
    action: Literal["parseRubric"]
    payload: RubricPayload


class SmartExtractRequest(CamelModel):
    action: Literal["smart_extract"]
    payload: SmartExtractPayload


class DistributeAnswersRequest(CamelModel):
    action: Literal["distribute_answers"]
    payload: DistributePayload


class TeacherEditRequest(CamelModel):
    action: Literal["teacher_edit"]
    payload: TeacherEditPayload


ActionRequest = Annotated[
    Union[
        ConnectionCheckRequest,
        GradeRequest,
        RegradeAllRequest,
        RegradeSelectedRequest,
        GradeReadingRequest,
        ParseRubricRequest,
        SmartExtractRequest,
        DistributeAnswersRequest,
        TeacherEditRequest,
    ],
    Field(discriminator="action"),
]

_REQUEST_ADAPTER: TypeAdapter[ActionRequest] = TypeAdapter(ActionRequest)

ACTIONS = frozenset(
    {
        "test_connection",
        "grade",
        "regrade_all",
        "regrade_selected",
        "grade_reading_comprehension",
        "parseRubric",
        "smart_extract",
        "distribute_answers",
        "teacher_edit",
    }
)


# ==============================================================================
# Responses
# ==============================================================================


class ErrorResponse(CamelModel):
    error: str
    details: str | None = None


class ApiResponse(NamedTuple):
    """Status code and JSON body of a dispatched action."""

    status: int
    body: Any


def _error(status: int, error: str, details: str | None = None) -> ApiResponse:
    return ApiResponse(status, ErrorResponse(error=error, details=details).to_json_dict())


# ==============================================================================
# Router
# ==============================================================================


class ActionRouter:
    """Dispatches validated action requests."""

    def __init__(
        self,
        engine: GradingEngine,
        service: GradingService,
        orchestrator: RegradeOrchestrator | None = None,
    ):
        self._engine = engine
        self._service = service
        self._orchestrator = orchestrator or RegradeOrchestrator(service)

    async def dispatch(self, body: dict[str, Any]) -> ApiResponse:
        """
        Validate and execute one request.

        Args:
            body: The decoded request envelope.

        Returns:
            200 with the result; 400 for an unknown action or invalid payload;
            404 for a missing problem or submission; 500 for any other failure.
        """
        action = body.get("action") if isinstance(body, dict) else None
        if action not in ACTIONS:
            return _error(400, "Invalid action")

        try:
            request = _REQUEST_ADAPTER.validate_python(body)
        except ValidationError as e:
            return _error(400, "Invalid request payload", str(e))

        logger.info("Executing action: %s", action)
        try:
            result = await self._execute(request)
        except NotFoundError as e:
            return _error(404, f"{e.kind} not found", str(e))
        except NothingToGradeError as e:
            return _error(400, "Nothing to grade", str(e))
        except (ConfigurationError, LLMError, MalformedResponseError) as e:
            logger.error("Action %s failed: %s", action, e)
            return _error(500, "Failed to process AI request.", str(e))
        except Exception as e:
            logger.exception("Action %s failed unexpectedly", action)
            return _error(500, "Failed to process AI request.", str(e))

        return ApiResponse(200, result)

    async def _execute(self, request: ActionRequest) -> Any:
        if isinstance(request, ConnectionCheckRequest):
            return (await self._engine.health_check()).to_json_dict()

        if isinstance(request, GradeRequest):
            p = request.payload
            outcome = await self._service.grade_essay_submission(
                problem_id=p.problem_id,
                prompt=p.prompt,
                essay=p.essay,
                rubric_items=p.rubric,
                raw_rubric=p.raw_rubric,
                custom_max_score=p.custom_max_score,
            )
            return outcome.to_json_dict()

        if isinstance(request, RegradeAllRequest):
            result = await self._orchestrator.regrade_all(request.payload.problem_id)
            return result.to_json_dict()

        if isinstance(request, RegradeSelectedRequest):
            p = request.payload
            result = await self._orchestrator.regrade_selected(p.problem_id, p.submission_ids)
            return result.to_json_dict()

        if isinstance(request, GradeReadingRequest):
            p = request.payload
            feedback = await self._engine.grade_reading_comprehension(p.problem, p.answers)
            return feedback.to_json_dict()

        if isinstance(request, ParseRubricRequest):
            items = await self._engine.parse_rubric(request.payload.raw_rubric_text)
            return [item.to_json_dict() for item in items]

        if isinstance(request, SmartExtractRequest):
            extracted = await self._engine.smart_extract_problem(request.payload.raw_content)
            return extracted.to_json_dict()

        if isinstance(request, DistributeAnswersRequest):
            p = request.payload
            entries = await self._engine.distribute_answers(p.raw_text, p.questions)
            return [entry.to_json_dict() for entry in entries]

        if isinstance(request, TeacherEditRequest):
            p = request.payload
            submission = self._service.apply_teacher_edit(p.submission_id, p.feedback)
            return submission.to_json_dict()

        raise ValueError(f"Unhandled action: {request.action}")
