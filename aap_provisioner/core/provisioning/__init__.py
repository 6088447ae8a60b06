"""
Provisioning workflow: temporary resources, job launch, wait and teardown.

Usage:
    from aap_provisioner.core.provisioning import ProvisioningExecutor, RunStatus

    executor = ProvisioningExecutor(config, client)
    run = executor.run()
    if run.status is RunStatus.COMPLETED:
        print(f"job {run.job_id} succeeded")
    for warning in run.cleanup_errors:
        print(f"cleanup: {warning}")
"""

from aap_provisioner.core.provisioning.state import (
    ProvisioningRun,
    RunStatus,
    UnwindStack,
)
from aap_provisioner.core.provisioning.job_wait import (
    JobWaitResult,
    WaitOutcome,
    wait_for_job,
)
from aap_provisioner.core.provisioning.executor import (
    ProgressReporter,
    ProvisioningExecutor,
    provision,
)

__all__ = [
    "ProvisioningRun",
    "RunStatus",
    "UnwindStack",
    "JobWaitResult",
    "WaitOutcome",
    "wait_for_job",
    "ProgressReporter",
    "ProvisioningExecutor",
    "provision",
]
