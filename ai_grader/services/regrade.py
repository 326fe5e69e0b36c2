"""
Batch regrade orchestrator.

Regrades all or selected submissions of a problem. A failure on one
submission is logged and skipped so it never aborts the batch.
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from ai_grader.models import Problem, RegradeResult, Submission
from ai_grader.services.grading_service import GradingContext, GradingService

logger = logging.getLogger(__name__)


@dataclass
class _BatchProgress:
    attempted: int = 0
    updated: int = 0
    failed_ids: list[str] = field(default_factory=list)
    cancelled: bool = False


class RegradeOrchestrator:
    """
    Regrades submissions with bounded concurrency.

    The reference example and essay corpus are computed once per batch from
    the problem's submissions as they were before the batch started.
    """

    def __init__(self, service: GradingService, concurrency: int | None = None):
        """
        Initialize the orchestrator.

        Args:
            service: Grading service bound to the repositories.
            concurrency: Submissions graded at once. Defaults to the
                `regrade_concurrency` setting (1, i.e. sequential).
        """
        self._service = service
        self._concurrency = concurrency or service.engine.settings.regrade_concurrency

    async def regrade(
        self,
        problem_id: str,
        submission_ids: Sequence[str] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RegradeResult:
        """
        Regrade submissions of a problem.

        Args:
            problem_id: The problem whose submissions are regraded.
            submission_ids: Restrict to these submissions; all when None.
            cancel_event: When set, no further submission is started.

        Returns:
            RegradeResult with the number of submissions updated.

        Raises:
            ProblemNotFoundError: If the problem does not exist.
        """
        problem = self._service.problems.get(problem_id)
        all_submissions = self._service.submissions.find_by_problem(problem_id)
        context = self._service.build_context(problem_id, all_submissions)

        targets = all_submissions
        if submission_ids is not None:
            wanted = set(submission_ids)
            targets = [s for s in all_submissions if s.id in wanted]
            unknown = wanted - {s.id for s in targets}
            if unknown:
                logger.warning(
                    "Ignoring submissions not found for problem %s: %s",
                    problem_id,
                    ", ".join(sorted(unknown)),
                )

        logger.info("Regrading %d submissions of problem %s", len(targets), problem_id)

        progress = _BatchProgress()
        semaphore = asyncio.Semaphore(self._concurrency)

        async def run(submission: Submission) -> None:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    progress.cancelled = True
                    return
                await self._regrade_one(problem, submission, context, progress)

        await asyncio.gather(*(run(s) for s in targets))

        logger.info(
            "Regrade of problem %s finished: %d updated, %d failed%s",
            problem_id,
            progress.updated,
            len(progress.failed_ids),
            " (cancelled)" if progress.cancelled else "",
        )
        return RegradeResult(
            success=True,
            updated_count=progress.updated,
            attempted_count=progress.attempted,
            failed_ids=progress.failed_ids,
            cancelled=progress.cancelled,
        )

    async def regrade_all(
        self, problem_id: str, cancel_event: asyncio.Event | None = None
    ) -> RegradeResult:
        """Regrade every submission of a problem."""
        return await self.regrade(problem_id, cancel_event=cancel_event)

    async def regrade_selected(
        self,
        problem_id: str,
        submission_ids: Sequence[str],
        cancel_event: asyncio.Event | None = None,
    ) -> RegradeResult:
        """Regrade the given submissions of a problem."""
        return await self.regrade(problem_id, submission_ids, cancel_event)

    async def _regrade_one(
        self,
        problem: Problem,
        submission: Submission,
        context: GradingContext,
        progress: _BatchProgress,
    ) -> None:
        """Grade and persist one submission, recording the outcome."""
        if not (submission.essay or submission.answers):
            logger.debug("Skipping submission %s: nothing to grade", submission.id)
            return

        progress.attempted += 1
        try:
            fields = await self._service.grade_existing(problem, submission, context)
            if fields is None:
                return
            self._service.submissions.update(submission.id, **fields)
            progress.updated += 1
        except Exception:
            progress.failed_ids.append(submission.id)
            logger.exception("Failed to regrade submission %s", submission.id)
