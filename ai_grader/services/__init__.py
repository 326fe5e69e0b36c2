"""
Services Module.

Repository-bound grading and batch regrading.
"""

from ai_grader.services.grading_service import GradingService, NothingToGradeError
from ai_grader.services.regrade import RegradeOrchestrator

__all__ = [
    "GradingService",
    "NothingToGradeError",
    "RegradeOrchestrator",
]
