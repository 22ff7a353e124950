# navigator.py
# In-memory question navigation for one take-test view. Nothing here is
# persisted: a reload loses the position, never the recorded answers.

from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Set


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionNavigator:
    def __init__(self, question_count: int, current_index: int = 0,
                 clock: Callable[[], datetime] = _utcnow,
                 question_started_at: Optional[datetime] = None,
                 answered: Optional[Iterable[Any]] = None):
        self.question_count = max(0, int(question_count or 0))
        self._clock = clock
        self.current_index = 0
        self.question_started_at = question_started_at or clock()
        self._answered: Set[str] = {str(a) for a in (answered or [])}
        if current_index:
            self.go_to(current_index)

    def in_range(self, index: Any) -> bool:
        try:
            i = int(index)
        except (TypeError, ValueError):
            return False
        return 0 <= i < self.question_count

    def go_to(self, index: Any) -> bool:
        """Move to `index`. Out-of-range (or junk) input is a no-op returning False."""
        if not self.in_range(index):
            return False
        self.current_index = int(index)
        self.question_started_at = self._clock()
        return True

    def next(self) -> bool:
        return self.go_to(self.current_index + 1)

    def previous(self) -> bool:
        return self.go_to(self.current_index - 1)

    @property
    def is_first(self) -> bool:
        return self.current_index == 0

    @property
    def is_last(self) -> bool:
        return self.current_index >= self.question_count - 1

    def time_spent(self, now: Optional[datetime] = None) -> int:
        """Whole seconds since the current question was shown."""
        now = now or self._clock()
        return max(0, int((now - self.question_started_at).total_seconds()))

    def mark_answered(self, question_id: Any) -> None:
        self._answered.add(str(question_id))

    def is_answered(self, question_id: Any) -> bool:
        return str(question_id) in self._answered

    @property
    def answered_count(self) -> int:
        return len(self._answered)

    @property
    def unanswered_count(self) -> int:
        return max(0, self.question_count - self.answered_count)

    @property
    def progress_percent(self) -> int:
        if not self.question_count:
            return 0
        return int(round(100.0 * self.answered_count / self.question_count))
