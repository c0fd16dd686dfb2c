"""Injectable clock for the lifecycle engine and the expiry sweeper.

By default the clock follows wall time plus an offset, so the /control
endpoints can fast-forward a running service while the sweeper keeps
expiring subscriptions in real time. A clock built with a start_time (or
frozen=True) stands still between advances, which lets tests walk
subscriptions past their end dates deterministically.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from subscription_lifecycle.logging_config import get_logger

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TimeController:
    """Clock injected into every time-dependent service.

    Args:
        start_time: fixed starting instant; implies a frozen clock. Naive
            datetimes are taken as UTC.
        frozen: override whether the clock stands still between advances.
            Defaults to True when start_time is given, else False.
    """

    def __init__(self, start_time: Optional[datetime] = None, frozen: Optional[bool] = None) -> None:
        # guards _base and _offset
        self._lock = threading.RLock()
        if start_time is not None and start_time.tzinfo is None:
            start_time = start_time.replace(tzinfo=timezone.utc)
        self._frozen = start_time is not None if frozen is None else frozen
        self._base = start_time if start_time is not None else _utc_now()
        self._offset = timedelta(0)

        logger.info(
            "time_controller_initialized",
            current_time=self.get_current_time().isoformat(),
            frozen=self._frozen,
        )

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get_current_time(self) -> datetime:
        """Current time: the frozen base or wall time, plus the offset."""
        with self._lock:
            base = self._base if self._frozen else _utc_now()
            return base + self._offset

    def now(self) -> datetime:
        return self.get_current_time()

    @property
    def offset(self) -> timedelta:
        """How far time has been moved forward since the last reset."""
        with self._lock:
            return self._offset

    def advance_time(self, days: int = 0, hours: int = 0, minutes: int = 0) -> dict:
        """Move the clock forward (days, hours, minutes).

        Returns:
            Dictionary with previous_time and current_time

        Raises:
            ValueError: if time values are negative
        """
        if days < 0 or hours < 0 or minutes < 0:
            raise ValueError("Cannot advance time backwards, negative values are not allowed.")

        step = timedelta(days=days, hours=hours, minutes=minutes)

        with self._lock:
            previous = self.get_current_time()
            self._offset += step
            current = previous + step

        if step:
            logger.info(
                "time_advanced",
                previous_time=previous.isoformat(),
                current_time=current.isoformat(),
                days=days,
                hours=hours,
                minutes=minutes,
            )

        return {"previous_time": previous, "current_time": current}

    def set_time(self, target: datetime) -> dict:
        """Jump to a specific instant.

        Raises:
            ValueError: If target is before the current time
        """
        if target.tzinfo is None:
            target = target.replace(tzinfo=timezone.utc)

        with self._lock:
            previous = self.get_current_time()
            if target < previous:
                raise ValueError(
                    f"cannot set time backwards, current: {previous.isoformat()}, "
                    f"requested: {target.isoformat()}"
                )
            self._offset += target - previous

        logger.info(
            "time_set",
            previous_time=previous.isoformat(),
            current_time=target.isoformat(),
        )
        return {"previous_time": previous, "current_time": target}

    def reset_time(self) -> dict:
        """Drop the offset and return to real current time.

        A frozen clock is re-based on the real time and stays frozen.
        """
        with self._lock:
            previous = self.get_current_time()
            self._base = _utc_now()
            self._offset = timedelta(0)
            current = self.get_current_time()

        logger.info(
            "time_reset",
            previous_time=previous.isoformat(),
            current_time=current.isoformat(),
        )
        return {"previous_time": previous, "current_time": current}


_time_controller_instance: Optional[TimeController] = None
_controller_lock = threading.Lock()


def get_time_controller() -> TimeController:
    global _time_controller_instance
    if _time_controller_instance is None:
        with _controller_lock:
            if _time_controller_instance is None:
                _time_controller_instance = TimeController()
    return _time_controller_instance


def reset_time_controller() -> None:
    global _time_controller_instance
    with _controller_lock:
        _time_controller_instance = TimeController()
