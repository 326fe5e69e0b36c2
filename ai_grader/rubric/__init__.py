"""
Rubric Processing Module.

Provides local parsing of free-text grading rubrics.
"""

from ai_grader.rubric.parser import RubricParseError, RubricParser

__all__ = [
    "RubricParser",
    "RubricParseError",
]
