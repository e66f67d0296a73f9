"""
Import status poller.

Observes an import's status at a fixed interval while it is uploaded or
processing, and stops at the first observation outside those statuses.
No read is issued after that observation.
"""

from typing import Callable, Optional
import threading
import time
import structlog

from config import settings
from models.imports import ImportStatusSnapshot
from exceptions import AnalysisTimeoutError

logger = structlog.get_logger(__name__)


class ImportStatusPoller:
    """
    Synchronous status poller for one import.

    `cancel()` may be called from the update callback or from another thread;
    it interrupts a pending wait.
    """

    def __init__(
        self,
        import_id: str,
        fetch: Callable[[], ImportStatusSnapshot],
        interval: Optional[float] = None,
        max_wait_seconds: Optional[float] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.import_id = import_id
        self.fetch = fetch
        self.interval = interval if interval is not None else settings.poll_interval_seconds
        self.max_wait_seconds = max_wait_seconds
        self.clock = clock
        self.polls = 0
        self._cancelled = threading.Event()
        self._sleep = sleep or self._cancelled.wait

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop polling; the current wait returns early."""
        self._cancelled.set()

    def run(
        self,
        on_update: Optional[Callable[[ImportStatusSnapshot], None]] = None
    ) -> Optional[ImportStatusSnapshot]:
        """
        Poll until the status leaves uploaded/processing or polling is cancelled.

        Args:
            on_update: Called with every observation

        Returns:
            Last observation, or None if cancelled before the first read

        Raises:
            AnalysisTimeoutError: If max_wait_seconds elapses first
        """
        started = self.clock()
        snapshot = None

        while not self.cancelled:
            snapshot = self.fetch()
            self.polls += 1

            if on_update:
                on_update(snapshot)

            if not snapshot.keep_polling:
                logger.info(
                    "import_status_settled",
                    import_id=self.import_id,
                    status=snapshot.status.value,
                    polls=self.polls
                )
                return snapshot

            if self.cancelled:
                break

            waited = self.clock() - started
            if self.max_wait_seconds is not None and waited + self.interval > self.max_wait_seconds:
                logger.warning(
                    "import_status_wait_timeout",
                    import_id=self.import_id,
                    waited_seconds=waited
                )
                raise AnalysisTimeoutError(self.import_id, waited)

            self._sleep(self.interval)

        logger.debug("import_status_polling_cancelled", import_id=self.import_id, polls=self.polls)
        return snapshot
