import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from attempt_timer import (  # noqa: E402
    AttemptTimer, as_utc, format_clock, format_duration, is_expired, remaining_seconds, time_band,
)

START = datetime(2024, 5, 1, 9, 0, 0, tzinfo=timezone.utc)


def test_remaining_is_recomputed_from_started_at():
    now = START + timedelta(minutes=59, seconds=55)
    assert remaining_seconds(START, 60, now) == 5
    assert not is_expired(START, 60, now)
    assert remaining_seconds(START, 60, START + timedelta(minutes=61)) == 0
    assert is_expired(START, 60, START + timedelta(minutes=60))


def test_naive_and_iso_timestamps_are_utc():
    assert as_utc("2024-05-01T09:00:00Z") == START
    assert as_utc(datetime(2024, 5, 1, 9, 0, 0)) == START
    assert remaining_seconds("2024-05-01T09:00:00Z", 1, START + timedelta(seconds=30)) == 30


def test_timer_fires_once_at_zero():
    now = [START + timedelta(minutes=59, seconds=55)]
    calls = []

    def on_expire():
        calls.append(now[0])
        return "submitted"

    timer = AttemptTimer(START, 60, on_expire, clock=lambda: now[0])
    assert timer.tick() == 5
    now[0] += timedelta(seconds=5)
    assert timer.tick() == 0
    now[0] += timedelta(seconds=5)
    assert timer.tick() == 0
    assert len(calls) == 1
    assert timer.expired
    assert timer.result == "submitted"


def test_run_sleeps_until_expiry():
    now = [START + timedelta(minutes=59, seconds=57)]
    sleeps = []

    def fake_sleep(interval):
        sleeps.append(interval)
        now[0] += timedelta(seconds=interval)

    timer = AttemptTimer(START, 60, lambda: "done", clock=lambda: now[0])
    assert timer.run(sleep=fake_sleep) == "done"
    assert sleeps == [1.0, 1.0, 1.0]


def test_display_helpers():
    assert format_clock(5) == "0:05"
    assert format_clock(3725) == "1:02:05"
    assert format_duration(3725) == "1h 2m 5s"
    assert format_duration(65) == "1m 5s"
    assert time_band(1800, 60) == "warn"
    assert time_band(1801, 60) == "ok"
    assert time_band(900, 60) == "danger"
