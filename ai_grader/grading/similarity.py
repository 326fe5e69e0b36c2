"""
Essay similarity check against earlier submissions of the same problem.

Uses fuzzy token-set matching so that reordered or lightly edited copies
still score high.
"""

import asyncio
import logging

from fuzzywuzzy import fuzz

from ai_grader.models import SimilarityCheckResult

logger = logging.getLogger(__name__)


async def check_similarity(
    current_essay: str,
    existing_essays: list[str],
    scorer=fuzz.token_set_ratio,
) -> SimilarityCheckResult:
    """
    Compare an essay with earlier essays for the same problem.

    Args:
        current_essay: The essay being graded.
        existing_essays: Essays already submitted for the problem.
        scorer: Fuzzy matching algorithm returning 0-100.

    Returns:
        SimilarityCheckResult with the highest match and its index in existing_essays.
    """
    best_score, best_index = await asyncio.to_thread(
        _best_match, current_essay.strip(), existing_essays, scorer
    )

    if best_index == -1:
        best_score = 0
        explanation = "No earlier essays to compare against."
    else:
        explanation = f"Closest match is earlier essay #{best_index + 1} ({best_score}% token overlap)."

    logger.debug("Similarity check: best=%s index=%s", best_score, best_index)
    return SimilarityCheckResult(
        similarity_percentage=float(best_score),
        explanation=explanation,
        most_similar_essay_index=best_index,
    )


def _best_match(text: str, existing_essays: list[str], scorer) -> tuple[int, int]:
    """Highest score and its index; (-1, -1) when no candidate is non-blank."""
    best_score = -1
    best_index = -1
    for index, other in enumerate(existing_essays):
        candidate = (other or "").strip()
        if not candidate:
            continue
        score = scorer(text, candidate)
        if score > best_score:
            best_score = score
            best_index = index
    return best_score, best_index
