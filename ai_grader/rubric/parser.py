"""
Rubric parser module.

Parses free-text rubrics into structured RubricItem lists without calling the LLM.
Supports numbered lists, dash- and colon-separated lines, inline scores such as
"Mở bài 0.5đ", and markdown tables. Used to recover per-criterion maxima for
problems that only carry a raw rubric.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Sequence

from ai_grader.models import RubricItem

_UNIT = r"(?:points?|pts?|marks?|điểm|đ)"
_NUMBER = r"(\d+(?:[.,]\d+)?)"

# Summary lines such as "Total: 10 points" are not criteria
_TOTAL_LABELS = frozenset({"total", "total points", "tổng", "tổng điểm", "tổng cộng"})


class RubricParseError(Exception):
    """Raised when rubric parsing fails."""

    def __init__(self, message: str, line_number: int | None = None):
        self.line_number = line_number
        if line_number:
            message = f"Line {line_number}: {message}"
        super().__init__(message)


class RubricParser:
    """
    Parses rubric text into RubricItem lists.

    Supports formats:
    1. Numbered list: "1. Criterion Name (10 points): Description"
    2. Simple format: "Criterion Name - 10 pts - Description"
    3. Colon format: "Criterion Name: 10 points, Description"
    4. Inline score: "- Thân bài: 3,0 điểm" or "Mở bài 0.5đ"
    5. Markdown table: "| Criterion | Points | Description |"
    """

    # Patterns for different rubric formats
    NUMBERED_PATTERN = re.compile(
        r"^\s*(?:\d+|[a-z])[.)]\s*"  # Number or letter with dot/paren
        r"([^(]+?)\s*"  # Criterion name
        r"\(\s*" + _NUMBER + r"\s*" + _UNIT + r"\s*\)"  # Score in parentheses
        r"[:\s]*"  # Optional colon/space
        r"(.*)$",  # Description
        re.IGNORECASE,
    )

    SIMPLE_PATTERN = re.compile(
        r"^\s*"
        r"([^-–—]+?)"  # Criterion name
        r"\s*[-–—]\s*"  # Dash separator
        + _NUMBER + r"\s*" + _UNIT  # Score
        + r"\s*[-–—]\s*"  # Dash separator
        r"(.+)$",  # Description
        re.IGNORECASE,
    )

    COLON_PATTERN = re.compile(
        r"^\s*"
        r"([^:]+)"  # Criterion name
        r":\s*"  # Colon separator
        + _NUMBER + r"\s*" + _UNIT  # Score
        + r"[,;:\s]+"  # Separator
        r"(.+)$",  # Description
        re.IGNORECASE,
    )

    INLINE_PATTERN = re.compile(
        r"^\s*(?:[-*•+]\s*)?"  # Optional bullet
        r"([^\d:()]+?)"  # Criterion name
        r"\s*[:(\-–—]?\s*"  # Optional separator
        + _NUMBER + r"\s*" + _UNIT  # Score
        + r"\s*\)?\.?\s*$",
        re.IGNORECASE,
    )

    def parse(self, content: str) -> list[RubricItem]:
        """
        Parse rubric content into rubric items.

        Args:
            content: Raw text content of the rubric.

        Returns:
            Rubric items in the order they appear.

        Raises:
            RubricParseError: If the content is empty or contains no criteria.
        """
        if not content or not content.strip():
            raise RubricParseError("Rubric content is empty")

        items = self._parse_lines(content.strip().split("\n"))

        if not items:
            raise RubricParseError(
                "No valid criteria found. Expected format like:\n"
                "  1. Content Accuracy (10 points): Description\n"
                "  OR: Mở bài - 0.5đ - Description"
            )

        return items

    def parse_lenient(self, content: str | None) -> list[RubricItem]:
        """Parse rubric content, returning an empty list when nothing is recognizable."""
        if not content or not content.strip():
            return []
        return self._parse_lines(content.strip().split("\n"))

    def _parse_lines(self, lines: Sequence[str]) -> list[RubricItem]:
        """
        Parse lines and extract criteria.

        Tries multiple patterns to handle different formats.
        """
        items: list[RubricItem] = []

        for line_num, line in enumerate(lines, start=1):
            # Skip empty lines, headings, and table separators
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or stripped.startswith("---"):
                continue
            if stripped.startswith("|") and set(stripped.replace("|", "").strip()) <= {"-", ":"}:
                continue

            # Try each pattern
            item = (
                self._try_pattern(self.NUMBERED_PATTERN, stripped, line_num)
                or self._try_pattern(self.SIMPLE_PATTERN, stripped, line_num)
                or self._try_pattern(self.COLON_PATTERN, stripped, line_num)
                or self._try_pattern(self.INLINE_PATTERN, stripped, line_num)
                or self._try_table_format(stripped, line_num)
            )

            if item:
                items.append(item)

        return items

    def _try_pattern(self, pattern: re.Pattern[str], line: str, line_num: int) -> RubricItem | None:
        """Try to parse a line with one of the name/score patterns."""
        match = pattern.match(line)
        if not match:
            return None

        name = match.group(1).strip(" -*•+:")
        score = self._parse_score(match.group(2), line_num)
        # Zero-score lines ("Không làm bài: 0 điểm") describe a band, not a criterion
        if not name or name.lower() in _TOTAL_LABELS or score <= 0:
            return None
        return RubricItem(criterion=name, max_score=score)

    def _try_table_format(self, line: str, line_num: int) -> RubricItem | None:
        """Try to parse a markdown table row."""
        if not line.startswith("|"):
            return None

        # Split table cells
        cells = [c.strip() for c in line.split("|")]
        cells = [c for c in cells if c]  # Remove empty cells from edges

        if len(cells) < 2:
            return None

        # The first cell is the criterion; the first later cell holding a number is its score
        for cell in cells[1:]:
            score_match = re.fullmatch(_NUMBER + r"\s*" + _UNIT + r"?", cell, re.IGNORECASE)
            if score_match:
                score = self._parse_score(score_match.group(1), line_num)
                if score > 0:
                    return RubricItem(criterion=cells[0], max_score=score)
        return None

    def _parse_score(self, score_str: str, line_num: int) -> float:
        """Parse a score value, accepting a comma as decimal separator."""
        try:
            score = Decimal(score_str.strip().replace(",", "."))
        except InvalidOperation as e:
            raise RubricParseError(f"Invalid score value: {score_str}", line_num) from e
        return float(score)
