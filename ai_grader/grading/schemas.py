"""
Structured output contracts for every LLM call.

Each contract is a JSON Schema sent as an OpenAI-compatible `response_format`.
Those formats require an object at the root, so array-shaped contracts are
wrapped in a one-key envelope (`{"items": [...]}`) on the wire; the parser
accepts both the envelope and a bare array.
"""

from typing import Any

ENVELOPE_KEY = "items"

# ==============================================================================
# Contract Shapes
# ==============================================================================

GRADING_RESULT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "detailedFeedback": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "criterion": {"type": "string"},
                    "score": {"type": "number"},
                    "feedback": {"type": "string"},
                    "questionId": {"type": "string"},
                },
                "required": ["criterion", "score", "feedback"],
            },
        },
        "totalScore": {"type": "number"},
        "maxScore": {"type": "number"},
        "generalSuggestions": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["detailedFeedback", "totalScore", "maxScore", "generalSuggestions"],
}

RUBRIC_EXTRACTION_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "criterion": {"type": "string"},
            "maxScore": {"type": "number"},
        },
        "required": ["criterion", "maxScore"],
    },
}

ANSWER_DISTRIBUTION_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "questionId": {"type": "string"},
            "selectedOptionId": {"type": "string"},
            "writtenAnswer": {"type": "string"},
        },
        "required": ["questionId"],
    },
}

# The earlier mapping shape {"<questionId>": {"selectedOptionId", "writtenAnswer"}}
# is no longer requested but is still accepted by ResponseParser.parse_distribution.

_EXTRACTED_QUESTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "questionText": {"type": "string"},
        "questionType": {"type": "string", "enum": ["multiple_choice", "short_answer"]},
        "maxScore": {"type": "number"},
        "options": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "text": {"type": "string"},
                    "isCorrect": {"type": "boolean"},
                },
                "required": ["text", "isCorrect"],
            },
        },
        "gradingCriteria": {"type": "string"},
    },
    "required": ["questionText", "questionType", "maxScore"],
}

PROBLEM_EXTRACTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"type": "string", "enum": ["essay", "reading_comprehension"]},
        "title": {"type": "string"},
        "essayData": {
            "type": "object",
            "properties": {
                "prompt": {"type": "string"},
                "rawRubric": {"type": "string"},
                "rubricItems": RUBRIC_EXTRACTION_SCHEMA,
                "customMaxScore": {"type": "number"},
            },
        },
        "readingCompData": {
            "type": "object",
            "properties": {
                "passage": {"type": "string"},
                "questions": {"type": "array", "items": _EXTRACTED_QUESTION_SCHEMA},
            },
        },
    },
    "required": ["type", "title"],
}


# ==============================================================================
# Wire Helpers
# ==============================================================================


def response_format(name: str, schema: dict[str, Any]) -> dict[str, Any]:
    """
    Build an OpenAI-compatible `response_format` for a contract.

    Args:
        name: Identifier for the schema (letters, digits, underscores).
        schema: One of the contract shapes above.

    Returns:
        The `response_format` payload, with array roots wrapped in an envelope.
    """
    if schema.get("type") == "array":
        schema = {
            "type": "object",
            "properties": {ENVELOPE_KEY: schema},
            "required": [ENVELOPE_KEY],
        }
    return {
        "type": "json_schema",
        "json_schema": {"name": name, "schema": schema},
    }


def unwrap_array(data: Any) -> Any:
    """Return the list inside an `{"items": [...]}` envelope, or the data unchanged."""
    if isinstance(data, dict) and set(data) == {ENVELOPE_KEY} and isinstance(data[ENVELOPE_KEY], list):
        return data[ENVELOPE_KEY]
    return data


GRADING_RESULT_FORMAT = response_format("grading_result", GRADING_RESULT_SCHEMA)
RUBRIC_EXTRACTION_FORMAT = response_format("rubric_items", RUBRIC_EXTRACTION_SCHEMA)
ANSWER_DISTRIBUTION_FORMAT = response_format("answer_distribution", ANSWER_DISTRIBUTION_SCHEMA)
PROBLEM_EXTRACTION_FORMAT = response_format("problem_extraction", PROBLEM_EXTRACTION_SCHEMA)
