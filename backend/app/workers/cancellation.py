"""Cooperative cancellation for running import jobs."""

from __future__ import annotations

import threading

from app.core.exceptions import ImportCancelledError


class CancellationToken:
    """Advisory stop signal handed to a processor.

    Setting the token never interrupts the processor. A processor that
    never checks it runs to completion; the queue then records the
    attempt as cancelled anyway.
    """

    def __init__(self, job_id: str | None = None) -> None:
        self.job_id = job_id
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ImportCancelledError(self.job_id)

    def wait(self, timeout: float | None = None) -> bool:
        """Sleep up to ``timeout`` seconds, waking early on cancellation."""
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        return f"<CancellationToken job={self.job_id} cancelled={self.cancelled}>"
