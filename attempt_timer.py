# attempt_timer.py
# -----------------------------------------------------------------------------
# Attempt countdown. Remaining time is ALWAYS recomputed from the stored
# started_at, never from a held countdown.
# -----------------------------------------------------------------------------

import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Any) -> datetime:
    """datetime (naive = UTC) or ISO-8601 string -> aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    else:
        raise ValueError(f"unsupported timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def elapsed_seconds(started_at: Any, now: Optional[datetime] = None) -> int:
    now = as_utc(now) if now is not None else _utcnow()
    return max(0, int((now - as_utc(started_at)).total_seconds()))


def remaining_seconds(started_at: Any, duration_minutes: int, now: Optional[datetime] = None) -> int:
    total = int(duration_minutes or 0) * 60
    now = as_utc(now) if now is not None else _utcnow()
    passed = int((now - as_utc(started_at)).total_seconds() // 1)
    return max(0, total - passed)


def is_expired(started_at: Any, duration_minutes: int, now: Optional[datetime] = None) -> bool:
    return remaining_seconds(started_at, duration_minutes, now) <= 0


class AttemptTimer:
    """
    One-second ticking countdown for a single attempt.

    tick() recomputes the remaining time; the first tick that sees 0 calls
    on_expire() and the timer stops. Later ticks return 0 without firing again.
    """

    def __init__(self, started_at: Any, duration_minutes: int,
                 on_expire: Callable[[], Any],
                 clock: Callable[[], datetime] = _utcnow):
        self.started_at = as_utc(started_at)
        self.duration_minutes = int(duration_minutes or 0)
        self._on_expire = on_expire
        self._clock = clock
        self._fired = False
        self.result: Any = None

    @property
    def expired(self) -> bool:
        return self._fired

    def remaining(self) -> int:
        return remaining_seconds(self.started_at, self.duration_minutes, self._clock())

    def tick(self) -> int:
        if self._fired:
            return 0
        left = self.remaining()
        if left <= 0:
            self._fired = True
            self.result = self._on_expire()
            return 0
        return left

    def run(self, sleep: Callable[[float], Any] = time.sleep, interval: float = 1.0) -> Any:
        """Tick every `interval` seconds until the forced submission has fired."""
        while self.tick() > 0:
            sleep(interval)
        return self.result


# ------------------------------- display helpers ------------------------------
def format_clock(seconds: int) -> str:
    seconds = max(0, int(seconds or 0))
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    if h:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


def format_duration(seconds: int) -> str:
    seconds = max(0, int(seconds or 0))
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    if h:
        return f"{h}h {m}m {s}s"
    return f"{m}m {s}s"


def time_band(remaining: int, duration_minutes: int) -> str:
    total = int(duration_minutes or 0) * 60
    if total <= 0:
        return "danger"
    pct = 100.0 * int(remaining or 0) / total
    if pct > 50:
        return "ok"
    if pct > 25:
        return "warn"
    return "danger"
