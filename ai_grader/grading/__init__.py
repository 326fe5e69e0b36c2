"""
Grading Engine Module.

LLM-backed grading with schema-constrained output, bounded retries and
score clamping.
"""

from ai_grader.grading.engine import GradingEngine, merge_answers
from ai_grader.grading.extractor import extract_json
from ai_grader.grading.llm_client import LLMClient, LLMError, LLMErrorCode
from ai_grader.grading.prompt_builder import PromptBuilder
from ai_grader.grading.reference import essay_corpus, select_reference_example
from ai_grader.grading.retry import is_transient_error, retry_operation
from ai_grader.grading.scorer import MalformedResponseError, ResponseParser
from ai_grader.grading.similarity import check_similarity

__all__ = [
    "GradingEngine",
    "LLMClient",
    "LLMError",
    "LLMErrorCode",
    "MalformedResponseError",
    "PromptBuilder",
    "ResponseParser",
    "check_similarity",
    "essay_corpus",
    "extract_json",
    "is_transient_error",
    "merge_answers",
    "retry_operation",
    "select_reference_example",
]
