"""Per-credential call budgeting for the classification service."""

from __future__ import annotations

import time
from datetime import date
from typing import Callable

from app.utils.log import get_logger

logger = get_logger(__name__)

# Stay a little under the provider's documented requests-per-minute ceiling.
_RPM_SAFETY_FACTOR = 0.95
DEFAULT_RELOAD_INTERVAL_SEC = 10.0


class QuotaManager:
    """Round-robin-by-recency selection over a pool of interchangeable API keys.

    A single pipeline worker owns the instance, so no locking is done. Daily
    exhaustion flags clear when the calendar day changes; a restart clears
    them too since nothing is persisted.
    """

    def __init__(
        self,
        credentials: list[str],
        *,
        requests_per_minute: int = 30,
        loader: Callable[[], list[str]] | None = None,
        reload_interval_sec: float = DEFAULT_RELOAD_INTERVAL_SEC,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        today: Callable[[], date] = date.today,
    ) -> None:
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self._credentials: list[str] = []
        self._last_call: list[float | None] = []
        self._exhausted: list[bool] = []
        for value in credentials:
            self._append(value)
        self.min_delay_sec = 60.0 / (requests_per_minute * _RPM_SAFETY_FACTOR)
        self._loader = loader
        self._reload_interval_sec = reload_interval_sec
        self._last_reload: float | None = None
        self._clock = clock
        self._sleep = sleep
        self._today = today
        self._day = today()

    def _append(self, value: str) -> None:
        self._credentials.append(value)
        self._last_call.append(None)
        self._exhausted.append(False)

    def __len__(self) -> int:
        return len(self._credentials)

    @property
    def all_exhausted(self) -> bool:
        self._maybe_reset_day()
        return all(self._exhausted)

    def credential(self, index: int) -> str:
        return self._credentials[index]

    def is_exhausted(self, index: int) -> bool:
        return self._exhausted[index]

    def _maybe_reset_day(self) -> None:
        current = self._today()
        if current != self._day:
            if any(self._exhausted):
                logger.info("Quota day rolled over; clearing %d exhausted credential(s)", sum(self._exhausted))
            self._exhausted = [False] * len(self._credentials)
            self._day = current

    def select_credential(self) -> int | None:
        """Pick the available credential that has been idle the longest."""
        self._maybe_reset_day()
        best: int | None = None
        best_last = 0.0
        for idx, exhausted in enumerate(self._exhausted):
            if exhausted:
                continue
            last = self._last_call[idx]
            last_value = float("-inf") if last is None else last
            if best is None or last_value < best_last:
                best = idx
                best_last = last_value
        return best

    def record_call(self, index: int) -> None:
        self._last_call[index] = self._clock()

    def mark_exhausted(self, index: int) -> None:
        if not self._exhausted[index]:
            logger.warning("Credential key%d hit its daily limit", index + 1)
        self._exhausted[index] = True

    def wait_for(self, index: int) -> float:
        """Block until the minimum delay since the credential's last call has elapsed."""
        last = self._last_call[index]
        if last is None:
            return 0.0
        remaining = self.min_delay_sec - (self._clock() - last)
        if remaining > 0:
            self._sleep(remaining)
            return remaining
        return 0.0

    def acquire(self) -> int | None:
        idx = self.select_credential()
        if idx is None:
            return None
        self.wait_for(idx)
        self.record_call(idx)
        return idx

    def reload_from_config(self, *, force: bool = False) -> int:
        """Pick up credentials added to configuration since the last scan."""
        if self._loader is None:
            return 0
        now = self._clock()
        if not force and self._last_reload is not None and now - self._last_reload < self._reload_interval_sec:
            return 0
        self._last_reload = now
        try:
            fresh = self._loader()
        except OSError as exc:
            logger.warning("Credential reload failed: %s", exc)
            return 0
        added = 0
        for value in fresh:
            if value and value not in self._credentials:
                self._append(value)
                added += 1
        if added:
            logger.info("Hot-reloaded %d new credential(s); pool size is now %d", added, len(self._credentials))
        return added

    def snapshot(self) -> dict[str, object]:
        return {
            "pool_size": len(self._credentials),
            "exhausted": list(self._exhausted),
            "min_delay_sec": round(self.min_delay_sec, 3),
        }
