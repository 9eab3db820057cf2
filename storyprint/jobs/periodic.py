import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Runs `func` every `interval_seconds` on a daemon thread until stopped.

    The first run happens one interval after start(), unless run_immediately
    is set. Exceptions from `func` are logged and the loop keeps going.
    Tests call run_once() instead of starting the thread.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Any],
        interval_seconds: float,
        run_immediately: bool = False,
    ):
        self.name = name
        self._func = func
        self._interval = interval_seconds
        self._run_immediately = run_immediately
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0
        self.last_result: Any = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def interval_seconds(self) -> float:
        return self._interval

    def start(self) -> None:
        """Safe to call multiple times - only starts if not already running."""
        if self.is_running:
            logger.warning(f"{self.name} already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info(f"{self.name} started (every {self._interval}s)")

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return

        self._stop_event.set()
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(f"{self.name} did not stop cleanly")

        self._thread = None
        logger.info(f"{self.name} stopped")

    def run_once(self) -> Any:
        try:
            self.last_result = self._func()
        except Exception:
            logger.exception(f"{self.name} run failed")
            self.last_result = None
        self.runs += 1
        return self.last_result

    def _loop(self) -> None:
        if self._run_immediately:
            self.run_once()

        # wait() returns True once stop() sets the event
        while not self._stop_event.wait(self._interval):
            self.run_once()
