"""
Worker threads.

A :class:`Worker` pulls work items from the provider and runs them until
it is cancelled.  Cancellation is cooperative: the stop event is checked
between items, and an item that has already been dispatched runs to
completion.  A failing item ends only its own worker; siblings carry on
until the driver stops them.
"""

from __future__ import annotations

import logging
import threading

from psnbench.exceptions import WorkItemError
from psnbench.provider import WorkProvider

logger = logging.getLogger(__name__)


class Worker(threading.Thread):
    """
    Thread that repeatedly requests and executes work items.

    Attributes:
        items_run: Number of work items this worker completed.
        error: The exception that terminated the worker, if any.
    """

    def __init__(self, provider: WorkProvider, index: int = 0) -> None:
        super().__init__(name=f"{provider.config.name}-worker-{index}", daemon=True)
        self.provider = provider
        self.items_run = 0
        self.error: BaseException | None = None
        self._stop_event = threading.Event()

    def cancel(self) -> None:
        """Ask the worker to stop before its next item."""
        self._stop_event.set()

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    @property
    def failed(self) -> bool:
        return self.error is not None

    def run(self) -> None:
        try:
            while not self._stop_event.is_set():
                item = self.provider.get_work()
                if self._stop_event.is_set():
                    break
                item.run()
                self.items_run += 1
        except WorkItemError as exc:
            self.error = exc
            logger.error(
                "%s stopped: %s failed on record %s: %s",
                self.name,
                exc.kind.name,
                exc.record if exc.record is not None else "-",
                exc.__cause__,
                exc_info=exc,
            )
        except Exception as exc:
            self.error = exc
            logger.exception("%s stopped by unexpected error", self.name)
