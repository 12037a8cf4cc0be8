from datetime import date, datetime
from typing import Callable

DEFAULT_DAILY_LIMIT = 30

Clock = Callable[[], datetime]


class DailyQuota:
    """
    Per-day message counter.

    Check and consume are separate calls, so two concurrent senders can both
    pass `can_consume` and overshoot the limit by one. That is acceptable for a
    soft cap.
    """

    def __init__(self, limit: int = DEFAULT_DAILY_LIMIT, clock: Clock = datetime.now) -> None:
        self.limit = max(0, limit)
        self._clock = clock
        self._day: date = clock().date()
        self._used = 0

    def _roll(self) -> None:
        today = self._clock().date()
        if today != self._day:
            self._day = today
            self._used = 0

    @property
    def used(self) -> int:
        self._roll()
        return self._used

    def remaining(self) -> int:
        self._roll()
        return max(0, self.limit - self._used)

    def can_consume(self, amount: int = 1) -> bool:
        self._roll()
        return self._used + amount <= self.limit

    def consume(self, amount: int = 1) -> None:
        self._roll()
        self._used += amount
