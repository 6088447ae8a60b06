"""
Job wait state machine.

Waiting -> Succeeded | Failed | TimedOut | Cancelled

Each cycle fetches the status once, then sleeps one poll interval on the
cancellation token. The timeout is only evaluated after a full sleep, so a
poll interval longer than the remaining budget still completes before the
run is declared timed out. Cancellation interrupts the sleep immediately.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from aap_provisioner.core.aap_client import JobStatus
from aap_provisioner.core.cancellation import CancellationToken
from aap_provisioner.core.errors import (
    JobFailedError,
    JobTimeoutError,
    ProvisionerError,
    ProvisioningCancelledError,
)

logger = logging.getLogger(__name__)


class WaitOutcome(str, Enum):
    """Terminal states of the wait."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class JobWaitResult:
    """Outcome of waiting on one job."""

    outcome: WaitOutcome
    job_id: int
    status: Optional[JobStatus] = None
    error: Optional[ProvisionerError] = None
    elapsed: float = 0.0
    polls: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome is WaitOutcome.SUCCEEDED


def wait_for_job(
    client,
    job_id: int,
    timeout: float,
    poll_interval: float,
    workflow: bool = False,
    token: Optional[CancellationToken] = None,
    correlation_id: str = "",
    clock: Callable[[], float] = time.monotonic,
) -> JobWaitResult:
    """
    Poll a job until it reaches a terminal state.

    Args:
        client: AAPClient (or anything with get_job_status/fetch_job_output)
        job_id: Job to wait on
        timeout: Overall budget in seconds
        poll_interval: Seconds between status fetches
        workflow: Poll the workflow job endpoint instead
        token: Cancellation token; a fresh one is used if omitted
        correlation_id: For log tracing
        clock: Monotonic clock, replaceable in tests

    Returns:
        JobWaitResult; never raises for job, transport or timeout failures
    """
    token = token or CancellationToken()
    log_prefix = f"[{correlation_id}] " if correlation_id else ""
    start = clock()
    polls = 0
    status = None

    def finish(outcome: WaitOutcome, error: Optional[ProvisionerError] = None) -> JobWaitResult:
        elapsed = clock() - start
        return JobWaitResult(
            outcome=outcome,
            job_id=job_id,
            status=status,
            error=error,
            elapsed=elapsed,
            polls=polls,
        )

    logger.info(
        f"{log_prefix}Waiting for job {job_id} "
        f"(timeout={timeout}s, poll_interval={poll_interval}s)"
    )

    while True:
        if token.cancelled:
            return finish(WaitOutcome.CANCELLED, _cancelled(job_id, token))

        try:
            status = client.get_job_status(
                job_id, workflow=workflow, token=token, correlation_id=correlation_id,
            )
        except ProvisioningCancelledError:
            return finish(WaitOutcome.CANCELLED, _cancelled(job_id, token))
        except ProvisionerError as e:
            error = JobFailedError(f"failed to poll job {job_id}: {e}", job_id=job_id)
            error.__cause__ = e
            logger.error(f"{log_prefix}{error}")
            return finish(WaitOutcome.FAILED, error)
        polls += 1

        if status.is_successful:
            logger.info(f"{log_prefix}Job {job_id} finished successfully after {polls} polls")
            return finish(WaitOutcome.SUCCEEDED)

        if status.is_failed:
            diagnostics = status.result_stdout or _job_output(
                client, job_id, workflow, correlation_id,
            )
            message = f"job {job_id} failed (status: {status.status or 'unknown'})"
            if diagnostics:
                message = f"{message}: {diagnostics}"
            logger.error(f"{log_prefix}Job {job_id} failed (status: {status.status})")
            return finish(
                WaitOutcome.FAILED,
                JobFailedError(message, job_id=job_id, diagnostics=diagnostics),
            )

        logger.debug(f"{log_prefix}Job {job_id} is {status.status or 'pending'}")

        if token.wait(poll_interval):
            return finish(WaitOutcome.CANCELLED, _cancelled(job_id, token))

        if clock() - start > timeout:
            logger.error(f"{log_prefix}Timed out waiting for job {job_id} after {timeout}s")
            return finish(
                WaitOutcome.TIMED_OUT,
                JobTimeoutError(
                    f"timeout waiting for job {job_id} completion after {timeout}s",
                    job_id=job_id,
                ),
            )


def _cancelled(job_id: int, token: CancellationToken) -> ProvisioningCancelledError:
    return ProvisioningCancelledError(f"wait for job {job_id} cancelled: {token.cause}")


def _job_output(client, job_id: int, workflow: bool, correlation_id: str) -> Optional[str]:
    """Best-effort stdout for a failed job. Workflow jobs have none."""
    if workflow:
        return None
    log_prefix = f"[{correlation_id}] " if correlation_id else ""
    try:
        output = client.fetch_job_output(job_id, correlation_id=correlation_id)
    except ProvisionerError as e:
        logger.warning(f"{log_prefix}Could not fetch output of job {job_id}: {e}")
        return None
    return output.strip() or None
