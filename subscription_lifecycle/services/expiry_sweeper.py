"""Periodic expiry sweep on a background thread.

Owned by the application lifespan: nothing starts on import.
"""

import threading
from typing import Optional

from subscription_lifecycle.logging_config import get_logger
from subscription_lifecycle.services.lifecycle_engine import LifecycleEngine, get_lifecycle_engine
from subscription_lifecycle.services.time_controller import TimeController

logger = get_logger(__name__)


class ExpirySweeper:
    """Runs LifecycleEngine.sweep_expired every interval_seconds.

    Several sweepers (threads or processes sharing a store) may run at once;
    the engine's conditional writes keep each expiry single.
    """

    def __init__(
        self,
        engine: Optional[LifecycleEngine] = None,
        interval_seconds: float = 60.0,
        clock: Optional[TimeController] = None,
    ):
        self.engine = engine if engine is not None else get_lifecycle_engine()
        self.clock = clock if clock is not None else self.engine.clock
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def start(self) -> None:
        """Start the sweep loop. No-op if already running.

        Raises:
            RuntimeError: If a previous loop was told to stop but has not exited yet
        """
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                if self._stop_event.is_set():
                    raise RuntimeError("expiry sweeper is still stopping, previous loop has not exited")
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run_loop, name="expiry-sweeper", daemon=True
            )
            self._thread.start()
        logger.info("expiry_sweeper_started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Signal the loop to stop and wait for the current tick to finish."""
        with self._lock:
            self._stop_event.set()
            thread = self._thread
        if thread is None:
            return

        thread.join(timeout)
        if thread.is_alive():
            # _thread stays set until the old loop exits
            logger.warning("expiry_sweeper_stop_timeout", timeout=timeout)
            return

        with self._lock:
            if self._thread is thread:
                self._thread = None
        logger.info("expiry_sweeper_stopped")

    def run_once(self) -> int:
        """Run a single sweep at the clock's current time."""
        return self.engine.sweep_expired(self.clock.get_current_time())

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.error("expiry_sweep_tick_failed", error=str(e), exc_info=True)
            self._stop_event.wait(self.interval_seconds)
