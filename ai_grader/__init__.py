"""
AI Grader - LLM grading orchestration for essay and reading-comprehension assignments.

This package prepares grading requests, calibrates them with teacher-corrected
reference examples, invokes an LLM with structured output schemas, validates
the results, and re-grades whole batches of submissions consistently.
"""

__version__ = "1.0.0"
__author__ = "AI Grader Team"
