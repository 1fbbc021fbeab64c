# commandcenter/filters/builtin.py
from datetime import timedelta
import logging

from commandcenter.common.exceptions import is_retryable
from commandcenter.common.states import FailedState, PendingState
from commandcenter.filters.base import JobFilter
from commandcenter.server.context import ElectStateContext

logger = logging.getLogger(__name__)


def backoff_delay(attempts: int, base: int = 2) -> int:
    """Seconds to wait after the `attempts`-th failed execution: 1, 2, 4, ..."""
    return base ** max(attempts - 1, 0)


class RetryFilter(JobFilter):
    """Turns a failure back into a delayed pending state while retries remain."""

    def __init__(self, backoff_base: int = 2):
        self.backoff_base = backoff_base

    def on_state_election(self, elect_state_context: ElectStateContext):
        job = elect_state_context.job
        candidate_state = elect_state_context.candidate_state

        if not isinstance(candidate_state, FailedState):
            return

        exception = elect_state_context.exception
        if exception is not None and not is_retryable(exception):
            logger.debug(
                f"RetryFilter: Job {job.id} failed with non-retryable {type(exception).__name__}."
            )
            return

        if job.attempts < job.max_retries:
            delay = backoff_delay(job.attempts, self.backoff_base)
            logger.debug(
                f"RetryFilter: Re-scheduling job {job.id} in {delay}s. Attempts: {job.attempts}, Max retries: {job.max_retries}"
            )
            elect_state_context.candidate_state = PendingState(
                run_at=elect_state_context.now + timedelta(seconds=delay),
                error=candidate_state.error,
                reason=f"Retrying job... Attempt {job.attempts} of {job.max_retries} failed",
            )
        else:
            logger.debug(
                f"RetryFilter: Job {job.id} retries exhausted. Moving to Failed state."
            )
