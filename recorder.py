# recorder.py
# -----------------------------------------------------------------------------
# Response Recorder + answer outbox.
# Every selection is written immediately. A failed write is logged and parked
# in the outbox; it is retried with exponential backoff on the next action for
# that attempt (next answer, status poll, submit) and dropped after max_tries.
# -----------------------------------------------------------------------------

import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from practice_store import AttemptClosed, InvalidOption
from scoring import normalize_option

Key = Tuple[str, str]


class AnswerOutbox:
    """
    Pending answer writes, one per (attempt, question); newest selection wins.
    `tries` counts failed writes; an entry is dropped once it reaches max_tries.
    """

    def __init__(self, max_tries: int = 5, base_delay: float = 1.0, max_delay: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.max_tries = max(1, int(max_tries))
        self.base_delay = float(base_delay)
        self.max_delay = float(max_delay)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[Key, Dict[str, Any]] = {}

    def backoff(self, tries: int) -> float:
        if tries <= 0:
            return 0.0
        return min(self.base_delay * (2 ** (tries - 1)), self.max_delay)

    def enqueue(self, attempt_id: str, question_id: str, selected: Optional[str],
                time_spent: int, tries: int = 1) -> None:
        key = (str(attempt_id), str(question_id))
        with self._lock:
            self._entries[key] = {
                "attempt_id": key[0],
                "question_id": key[1],
                "selected": selected,
                "time_spent": int(time_spent or 0),
                "tries": tries,
                "next_at": self._clock() + self.backoff(tries),
            }

    def discard(self, attempt_id: str, question_id: str) -> None:
        with self._lock:
            self._entries.pop((str(attempt_id), str(question_id)), None)

    def pending(self, attempt_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(e) for k, e in self._entries.items()
                    if attempt_id is None or k[0] == str(attempt_id)]

    def flush(self, writer: Callable[[str, str, Optional[str], int], Any],
              attempt_id: Optional[str] = None, force: bool = False) -> int:
        """
        Retry due entries through `writer(attempt_id, question_id, selected, time_spent)`.
        force=True ignores backoff. Returns the number of entries written.
        """
        now = self._clock()
        with self._lock:
            due = [dict(e) for k, e in self._entries.items()
                   if (attempt_id is None or k[0] == str(attempt_id))
                   and (force or e["next_at"] <= now)]

        written = 0
        for e in due:
            key = (e["attempt_id"], e["question_id"])
            try:
                writer(e["attempt_id"], e["question_id"], e["selected"], e["time_spent"])
            except AttemptClosed:
                print(f"[outbox] dropping answer for closed attempt {key[0]} / {key[1]}")
                self._drop_if_unchanged(key, e)
                continue
            except Exception as exc:
                tries = e["tries"] + 1
                if tries >= self.max_tries:
                    print(f"[outbox] giving up on {key[0]} / {key[1]} after {tries} tries: {exc}")
                    self._drop_if_unchanged(key, e)
                else:
                    print(f"[outbox] retry {tries}/{self.max_tries} failed for {key[0]} / {key[1]}: {exc}")
                    with self._lock:
                        cur = self._entries.get(key)
                        if cur is not None and cur["selected"] == e["selected"]:
                            cur["tries"] = tries
                            cur["next_at"] = self._clock() + self.backoff(tries)
                continue
            written += 1
            self._drop_if_unchanged(key, e)
        return written

    def _drop_if_unchanged(self, key: Key, entry: Dict[str, Any]) -> None:
        # a newer selection may have been queued while we were writing
        with self._lock:
            cur = self._entries.get(key)
            if cur is not None and cur["selected"] == entry["selected"] \
                    and cur["time_spent"] == entry["time_spent"]:
                del self._entries[key]


class ResponseRecorder:
    def __init__(self, store, outbox: Optional[AnswerOutbox] = None):
        self.store = store
        self.outbox = outbox or AnswerOutbox()

    def _write(self, attempt_id: str, question_id: str, selected: Optional[str], time_spent: int):
        return self.store.upsert_response(attempt_id, question_id, selected, time_spent)

    def flush(self, attempt_id: Optional[str] = None, force: bool = False) -> int:
        return self.outbox.flush(self._write, attempt_id=attempt_id, force=force)

    def record(self, attempt_id: str, question_id: str, selected_option: Any,
               time_spent_seconds: int = 0) -> Dict[str, Any]:
        """
        Persist one selection now. Returns {"saved": bool, "queued": bool}.
        Raises InvalidOption for a bad option and AttemptClosed once the attempt
        is finalized; any other write failure is logged and queued.
        """
        try:
            selected = normalize_option(selected_option)
        except ValueError as e:
            raise InvalidOption(str(e)) from e
        spent = max(0, int(time_spent_seconds or 0))

        self.flush(attempt_id)
        # this write supersedes anything still parked for the same question
        self.outbox.discard(attempt_id, question_id)
        try:
            self._write(attempt_id, question_id, selected, spent)
        except (AttemptClosed, InvalidOption):
            raise
        except Exception as e:
            print(f"[practice] answer save failed for {attempt_id} / {question_id}: {e}")
            self.outbox.enqueue(attempt_id, question_id, selected, spent)
            return {"saved": False, "queued": True}
        return {"saved": True, "queued": False}
