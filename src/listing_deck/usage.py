from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Optional, Protocol

from listing_deck.errors import UsageStoreError
from listing_deck.models import UsageCounter, utcnow


logger = logging.getLogger("listing_deck.usage")

DEFAULT_MONTHLY_QUOTA = 1000


def next_month_start(now: datetime) -> datetime:
    """First instant of the calendar month after ``now`` (same tzinfo)."""
    if now.month == 12:
        return now.replace(year=now.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return now.replace(month=now.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


class UsageStore(Protocol):
    def load_usage(self, key: str) -> Optional[UsageCounter]: ...

    def save_usage(self, key: str, counter: UsageCounter) -> None: ...


class MemoryUsageStore:
    def __init__(self) -> None:
        self._counters: Dict[str, UsageCounter] = {}

    def load_usage(self, key: str) -> Optional[UsageCounter]:
        counter = self._counters.get(key)
        if counter is None:
            return None
        return UsageCounter(count=counter.count, period_end=counter.period_end)

    def save_usage(self, key: str, counter: UsageCounter) -> None:
        self._counters[key] = UsageCounter(count=counter.count, period_end=counter.period_end)


class UsageTracker:
    """Monthly call quota for the listings API.

    ``can_consume`` is a routing signal, not an error: callers fall back to the
    cache when it returns False. ``consume`` increments unconditionally.
    Increments are serialized with a lock and written through to ``store`` so
    the count survives restarts.
    """

    def __init__(
        self,
        store: Optional[UsageStore] = None,
        *,
        quota: int = DEFAULT_MONTHLY_QUOTA,
        warn_ratio: float = 0.9,
        key: str = "listings_api",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store if store is not None else MemoryUsageStore()
        self.quota = quota
        self.warn_ratio = warn_ratio
        self.key = key
        self.clock = clock
        self._lock = threading.Lock()
        self._warned = False
        with self._lock:
            counter = self.store.load_usage(key)
            if counter is None:
                counter = UsageCounter(count=0, period_end=next_month_start(clock()))
                self._persist(counter)
            self._counter = counter
            self._warned = counter.count >= self._warn_threshold

    def _persist(self, counter: UsageCounter) -> None:
        # The in-memory counter stays authoritative when the store is down.
        try:
            self.store.save_usage(self.key, counter)
        except UsageStoreError as exc:
            logger.error("Could not persist API usage (%d/%d): %s", counter.count, self.quota, exc)

    @property
    def _warn_threshold(self) -> int:
        return int(self.quota * self.warn_ratio)

    def _reset_locked(self) -> bool:
        now = self.clock()
        if now <= self._counter.period_end:
            return False
        self._counter = UsageCounter(count=0, period_end=next_month_start(now))
        self._warned = False
        self._persist(self._counter)
        logger.info(
            "Monthly API usage reset; next reset at %s",
            self._counter.period_end.isoformat(),
        )
        return True

    def reset_if_period_elapsed(self) -> bool:
        with self._lock:
            return self._reset_locked()

    def can_consume(self) -> bool:
        with self._lock:
            self._reset_locked()
            if self._counter.count >= self.quota:
                logger.warning(
                    "Monthly API limit reached (%d/%d)", self._counter.count, self.quota
                )
                return False
            return True

    def consume(self) -> int:
        with self._lock:
            self._reset_locked()
            self._counter.count += 1
            count = self._counter.count
            self._persist(self._counter)
            logger.debug("API usage: %d/%d", count, self.quota)
            if count >= self._warn_threshold and not self._warned:
                self._warned = True
                logger.warning("Approaching API limit (%d/%d)", count, self.quota)
            return count

    @property
    def current_usage(self) -> int:
        with self._lock:
            return self._counter.count

    @property
    def max_usage(self) -> int:
        return self.quota

    @property
    def usage_percentage(self) -> float:
        return self.current_usage / self.quota * 100.0

    @property
    def period_end(self) -> datetime:
        with self._lock:
            return self._counter.period_end

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            count = self._counter.count
            period_end = self._counter.period_end
        return {
            "count": count,
            "quota": self.quota,
            "percentage": round(count / self.quota * 100.0, 1),
            "period_end": period_end.isoformat(),
        }
