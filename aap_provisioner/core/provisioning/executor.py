"""
Provisioning execution.

Drives one run end to end:

1. inventory: use the configured inventory (or the template's own), or
   create a temporary one and register the build instance as a host in it
2. credential: optionally create a machine credential for that host
3. launch the job or workflow template
4. wait for the job to reach a terminal state
5. unwind every temporary resource, whatever happened in 1-4

Undo actions are registered right after each successful creation, so the
cleanup scope only ever grows with what actually exists on the controller.
"""

import logging
import threading
from typing import Callable, Optional

from aap_provisioner.config.host_details import HostConnectionDetails, discover_host_details
from aap_provisioner.config.settings import ClientSettings, ProvisioningConfig
from aap_provisioner.core.aap_client import AAPClient
from aap_provisioner.core.cancellation import CancellationToken
from aap_provisioner.core.errors import (
    JobTimeoutError,
    ProvisioningCancelledError,
    RemoteRejectedError,
)
from aap_provisioner.core.provisioning.job_wait import wait_for_job
from aap_provisioner.core.provisioning.state import ProvisioningRun, RunStatus, UnwindStack

logger = logging.getLogger(__name__)


class ProgressReporter:
    """
    Receives the human-readable milestones of a run.

    The default implementation only logs; a host program can subclass it
    to forward messages to its own UI.
    """

    def message(self, text: str) -> None:
        logger.info(text)

    def error(self, text: str) -> None:
        logger.error(text)


class ProvisioningExecutor:
    """
    Executes one provisioning run.

    One executor (and one AAPClient) per run; instances share no mutable
    state, so concurrent runs need separate executors.

    Usage:
        executor = ProvisioningExecutor(config, AAPClient(ClientSettings.from_config(config)))
        run = executor.run()
        run.raise_for_failure()
    """

    def __init__(
        self,
        config: ProvisioningConfig,
        client: AAPClient,
        reporter: Optional[ProgressReporter] = None,
        host_discovery: Optional[Callable[..., HostConnectionDetails]] = None,
    ):
        self.config = config
        self.client = client
        self.reporter = reporter or ProgressReporter()
        self.host_discovery = host_discovery
        self.token = CancellationToken()
        self._lock = threading.Lock()
        self._started = False

    def cancel(self, cause: str = "cancelled by caller") -> None:
        """Request cancellation; safe to call from another thread."""
        self.token.cancel(cause)

    def run(self, correlation_id: Optional[str] = None) -> ProvisioningRun:
        """
        Execute the workflow and tear down temporary resources.

        Returns:
            The run record; ``success`` tells whether the job succeeded.
            Failures are recorded on the record, not raised.
        """
        with self._lock:
            if self._started:
                raise RuntimeError("a ProvisioningExecutor runs at most one workflow")
            self._started = True

        run = ProvisioningRun.new(correlation_id)
        unwind = UnwindStack()
        log_prefix = f"[{run.correlation_id}]"
        run.start()

        try:
            self._run_steps(run, unwind)
            run.complete()
            logger.info(f"{log_prefix} Provisioning run completed (job {run.job_id})")
        except ProvisioningCancelledError as e:
            run.fail(e, RunStatus.CANCELLED)
            self._report_error(run, str(e))
        except KeyboardInterrupt:
            self.token.cancel("interrupted")
            error = ProvisioningCancelledError(f"operation cancelled: {self.token.cause}")
            run.fail(error, RunStatus.CANCELLED)
            self._report_error(run, str(error))
        except JobTimeoutError as e:
            run.fail(e, RunStatus.TIMED_OUT)
            self._report_error(run, str(e))
        except Exception as e:
            logger.error(f"{log_prefix} Provisioning failed at step '{run.step}': {e}")
            run.fail(e)
            self._report_error(run, str(e))
        finally:
            self._execute_unwind(run, unwind)

        return run

    # =========================================================================
    # Workflow steps
    # =========================================================================

    def _run_steps(self, run: ProvisioningRun, unwind: UnwindStack) -> None:
        cfg = self.config
        details: Optional[HostConnectionDetails] = None

        # Step 1: inventory
        run.begin_step("acquire_inventory")
        if cfg.dynamic_inventory:
            discover = self.host_discovery or discover_host_details
            details = discover(correlation_id=run.correlation_id)
            self.token.raise_if_cancelled()
            self._create_inventory(run, unwind)
            self._create_host(run, unwind, details)
        elif cfg.inventory_id:
            run.inventory_id = cfg.inventory_id
            logger.info(f"[{run.correlation_id}] Using existing inventory {run.inventory_id}")
        else:
            logger.info(f"[{run.correlation_id}] Using the template's own inventory")

        # Step 2: credential (dynamic inventory only)
        if details is not None and cfg.create_credential:
            run.begin_step("acquire_credential")
            self._create_credential(run, unwind, details)

        # Step 3: launch
        run.begin_step("launch_job")
        run.job_id = self.client.launch_job(
            run.inventory_id,
            job_template_id=cfg.job_template_id,
            workflow_template_id=cfg.workflow_template_id,
            credential_id=run.credential_id,
            extra_vars=dict(cfg.extra_vars),
            token=self.token,
            correlation_id=run.correlation_id,
        )
        kind = "workflow job" if cfg.is_workflow else "job"
        self._report(run, f"Launched AAP {kind} {run.job_id}")

        # Step 4: wait
        run.begin_step("wait_for_job")
        result = wait_for_job(
            self.client,
            run.job_id,
            timeout=cfg.timeout.total_seconds(),
            poll_interval=cfg.poll_interval.total_seconds(),
            workflow=cfg.is_workflow,
            token=self.token,
            correlation_id=run.correlation_id,
        )
        if not result.succeeded:
            raise result.error
        self._report(run, f"AAP {kind} {run.job_id} completed successfully")

    def _create_inventory(self, run: ProvisioningRun, unwind: UnwindStack) -> None:
        inventory_id = self.client.create_inventory(
            self.config.organization_id, token=self.token, correlation_id=run.correlation_id,
        )
        run.inventory_id = inventory_id
        run.record_created("inventory", inventory_id)
        self._report(run, f"Created temporary inventory {inventory_id}")

        if self.config.keep_temp_inventory:
            run.record_retained("inventory", inventory_id)
        else:
            unwind.push(
                "delete_inventory", "inventory", inventory_id,
                lambda: self.client.delete_inventory(
                    inventory_id,
                    timeout=self._grace_period,
                    correlation_id=run.correlation_id,
                ),
            )

    def _create_host(
        self, run: ProvisioningRun, unwind: UnwindStack, details: HostConnectionDetails
    ) -> None:
        host_id = self.client.create_host(
            run.inventory_id, details, token=self.token, correlation_id=run.correlation_id,
        )
        run.host_id = host_id
        run.record_created("host", host_id)
        self._report(run, f"Created temporary host {host_id} ({details.host}:{details.port})")

        if self.config.keep_temp_inventory:
            run.record_retained("host", host_id)
        else:
            unwind.push(
                "delete_host", "host", host_id,
                lambda: self.client.delete_host(
                    host_id,
                    timeout=self._grace_period,
                    correlation_id=run.correlation_id,
                ),
            )

    def _create_credential(
        self, run: ProvisioningRun, unwind: UnwindStack, details: HostConnectionDetails
    ) -> None:
        kind = details.credential_kind
        credential_id = self.client.create_credential(
            kind,
            self.config.organization_id,
            details.username,
            details.credential_secret or "",
            token=self.token,
            correlation_id=run.correlation_id,
        )
        run.credential_id = credential_id
        run.record_created("credential", credential_id)
        self._report(run, f"Created temporary {kind.value} credential {credential_id}")

        if self.config.keep_temp_credential:
            run.record_retained("credential", credential_id)
        else:
            unwind.push(
                "delete_credential", "credential", credential_id,
                lambda: self.client.delete_credential(
                    credential_id,
                    timeout=self._grace_period,
                    correlation_id=run.correlation_id,
                ),
            )

    # =========================================================================
    # Unwind
    # =========================================================================

    @property
    def _grace_period(self) -> float:
        return self.config.cleanup_grace_period.total_seconds()

    def _execute_unwind(self, run: ProvisioningRun, unwind: UnwindStack) -> None:
        """
        Execute undo actions in reverse order.

        Runs without the run's cancellation token, each call bounded by the
        cleanup grace period. A failed action never stops the next one.
        """
        log_prefix = f"[{run.correlation_id}]"
        actions = unwind.pop_all()

        if not actions:
            logger.debug(f"{log_prefix} No temporary resources to clean up")
            return

        logger.info(f"{log_prefix} Cleaning up {len(actions)} temporary resources")

        for action in actions:
            record = {
                "action": action.action,
                "resource": action.resource,
                "id": action.resource_id,
                "result": "deleted",
            }
            try:
                action.undo()
                self._report(run, f"Deleted temporary {action.resource} {action.resource_id}")
            except RemoteRejectedError as e:
                if e.is_not_found:
                    record["result"] = "already_gone"
                    warning = f"{action.resource} {action.resource_id} was already deleted"
                    logger.warning(f"{log_prefix} {warning}")
                    run.cleanup_errors.append(warning)
                else:
                    record["result"] = "failed"
                    self._cleanup_failed(run, action.resource, action.resource_id, e)
            except Exception as e:
                record["result"] = "failed"
                self._cleanup_failed(run, action.resource, action.resource_id, e)
            run.unwind_actions.append(record)

    def _cleanup_failed(self, run: ProvisioningRun, resource: str, resource_id: int, error: Exception) -> None:
        message = f"Failed to delete {resource} {resource_id}: {error}"
        run.cleanup_errors.append(message)
        self._report_error(run, message)

    # =========================================================================
    # Reporting
    # =========================================================================

    def _report(self, run: ProvisioningRun, text: str) -> None:
        run.messages.append(text)
        self.reporter.message(f"[{run.correlation_id}] {text}")

    def _report_error(self, run: ProvisioningRun, text: str) -> None:
        run.messages.append(text)
        self.reporter.error(f"[{run.correlation_id}] {text}")


def provision(
    config: ProvisioningConfig,
    reporter: Optional[ProgressReporter] = None,
    host_discovery: Optional[Callable[..., HostConnectionDetails]] = None,
    correlation_id: Optional[str] = None,
) -> ProvisioningRun:
    """Run one provisioning workflow with a client built from ``config``."""
    with AAPClient(ClientSettings.from_config(config)) as client:
        executor = ProvisioningExecutor(config, client, reporter, host_discovery)
        return executor.run(correlation_id)
