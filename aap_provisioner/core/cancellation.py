"""
Cancellation token shared by one provisioning run.

A thin wrapper around threading.Event: the run and the poll loop wait on
it, any other thread may fire it. Waiting returns as soon as the token is
cancelled, so sleeps are interruptible.
"""

import threading
from typing import Optional

from aap_provisioner.core.errors import ProvisioningCancelledError


class CancellationToken:
    """Cancellable context for a single run."""

    def __init__(self):
        self._event = threading.Event()
        self._cause: Optional[str] = None

    def cancel(self, cause: str = "cancelled") -> None:
        """Fire the token. The first cause wins."""
        if not self._event.is_set():
            self._cause = cause
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def cause(self) -> Optional[str]:
        return self._cause

    def wait(self, seconds: float) -> bool:
        """
        Sleep up to ``seconds``.

        Returns:
            True if the token was cancelled before or during the sleep
        """
        return self._event.wait(max(seconds, 0))

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ProvisioningCancelledError(f"operation cancelled: {self._cause}")
