"""
Provisioning run state.

Tracks one provisioning run: progress through the workflow steps, the
remote resources it created, and the ordered unwind list that tears them
down again. Nothing is persisted; the record lives for one run.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class RunStatus(Enum):
    """Provisioning run status values."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


def isonow() -> str:
    """Current UTC time as an ISO 8601 string with +00:00 offset."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class UnwindAction:
    """One undo step registered after a successful creation."""

    action: str
    resource: str
    resource_id: int
    undo: Callable[[], None] = field(repr=False)


class UnwindStack:
    """
    Ordered list of undo actions.

    Actions are appended right after each successful creation and executed
    in reverse order, so dependents (hosts) go before what they reference
    (inventories).
    """

    def __init__(self):
        self._actions: List[UnwindAction] = []

    def push(self, action: str, resource: str, resource_id: int, undo: Callable[[], None]) -> None:
        self._actions.append(UnwindAction(action, resource, resource_id, undo))

    def pop_all(self) -> List[UnwindAction]:
        """Remove and return every action, last registered first."""
        actions = list(reversed(self._actions))
        self._actions.clear()
        return actions

    def __len__(self) -> int:
        return len(self._actions)


@dataclass
class ProvisioningRun:
    """
    A single provisioning run with full tracking.

    Attributes:
        run_id: Unique run identifier (UUID)
        correlation_id: Prefix used in every log line of this run
        status: Current run status
        step: Current step being executed
        steps_completed: Completed step names, in order
        started_at: Run start timestamp (ISO format)
        completed_at: Run completion timestamp (ISO format)
        inventory_id: Inventory the job ran against (0 = none)
        host_id: Temporary host ID (0 = not created)
        credential_id: Temporary credential ID (0 = not created)
        job_id: Launched job ID (0 = not launched)
        created_resources: Every remote resource this run created
        retained_resources: Created resources deliberately kept
        unwind_actions: Teardown steps that were executed, with their result
        cleanup_errors: Teardown failures, reported as warnings
        error: Primary error message if the run failed
        error_kind: Kind of the primary error
        messages: Progress messages emitted during the run
    """

    run_id: str
    correlation_id: str
    status: RunStatus = RunStatus.PENDING
    step: str = ""
    steps_completed: List[str] = field(default_factory=list)
    started_at: str = ""
    completed_at: str = ""
    inventory_id: int = 0
    host_id: int = 0
    credential_id: int = 0
    job_id: int = 0
    created_resources: List[Dict[str, Any]] = field(default_factory=list)
    retained_resources: List[Dict[str, Any]] = field(default_factory=list)
    unwind_actions: List[Dict[str, Any]] = field(default_factory=list)
    cleanup_errors: List[str] = field(default_factory=list)
    error: str = ""
    error_kind: str = ""
    messages: List[str] = field(default_factory=list)
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @classmethod
    def new(cls, correlation_id: Optional[str] = None) -> "ProvisioningRun":
        run_id = str(uuid.uuid4())
        return cls(
            run_id=run_id,
            correlation_id=correlation_id or f"aap-{run_id[:8]}",
        )

    @property
    def success(self) -> bool:
        return self.status is RunStatus.COMPLETED

    def start(self) -> None:
        self.status = RunStatus.RUNNING
        self.started_at = isonow()

    def begin_step(self, step: str) -> None:
        if self.step and self.step not in self.steps_completed:
            self.steps_completed.append(self.step)
        self.step = step

    def record_created(self, resource: str, resource_id: int) -> None:
        self.created_resources.append({"resource": resource, "id": resource_id})

    def record_retained(self, resource: str, resource_id: int) -> None:
        self.retained_resources.append({"resource": resource, "id": resource_id})

    def complete(self) -> None:
        self.begin_step("")
        self.status = RunStatus.COMPLETED
        self.completed_at = isonow()

    def fail(self, error: BaseException, status: RunStatus = RunStatus.FAILED) -> None:
        self.status = status
        self.error = str(error)
        self.error_kind = getattr(error, "kind", type(error).__name__)
        self.exception = error
        self.completed_at = isonow()

    def raise_for_failure(self) -> None:
        """Re-raise the primary error of a failed run."""
        if self.success:
            return
        if self.exception is not None:
            raise self.exception
        raise RuntimeError(f"provisioning run {self.run_id} did not complete: {self.status.value}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "run_id": self.run_id,
            "correlation_id": self.correlation_id,
            "status": self.status.value,
            "success": self.success,
            "step": self.step,
            "steps_completed": list(self.steps_completed),
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "inventory_id": self.inventory_id,
            "host_id": self.host_id,
            "credential_id": self.credential_id,
            "job_id": self.job_id,
            "created_resources": [dict(r) for r in self.created_resources],
            "retained_resources": [dict(r) for r in self.retained_resources],
            "unwind_actions": [dict(a) for a in self.unwind_actions],
            "cleanup_errors": list(self.cleanup_errors),
            "error": self.error,
            "error_kind": self.error_kind,
        }
