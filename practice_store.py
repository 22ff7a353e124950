# practice_store.py
# -----------------------------------------------------------------------------
# Persistence for practice tests: question bank, test definitions, attempts and
# responses. All SQL lives here. The store is constructed with the DB callables
# (fetch_one / fetch_all / execute / execute_returning) instead of importing a
# global client.
# -----------------------------------------------------------------------------

import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from attempt_timer import as_utc, elapsed_seconds, is_expired
from scoring import OPTIONS, normalize_option, score_attempt, summarize_attempts

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
COMPLETION_REASONS = ("submitted", "timeout", "expired")


class AttemptNotFound(LookupError):
    pass


class AttemptClosed(RuntimeError):
    """Write attempted against an attempt that is no longer in progress."""


class InvalidOption(ValueError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_uuid(value: Any) -> bool:
    try:
        uuid.UUID(str(value))
    except (TypeError, ValueError):
        return False
    return True


SCHEMA_SQL = [
    """
    CREATE TABLE IF NOT EXISTS public.quizzes (
      id              UUID PRIMARY KEY,
      module_id       TEXT,
      question        TEXT NOT NULL,
      option_a        TEXT NOT NULL,
      option_b        TEXT NOT NULL,
      option_c        TEXT NOT NULL,
      option_d        TEXT NOT NULL,
      correct_answer  TEXT NOT NULL CHECK (correct_answer IN ('A','B','C','D')),
      explanation     TEXT,
      created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS public.practice_tests (
      id                UUID PRIMARY KEY,
      title             TEXT NOT NULL,
      description       TEXT,
      duration_minutes  INTEGER NOT NULL CHECK (duration_minutes > 0),
      passing_score     NUMERIC(5,2) NOT NULL DEFAULT 40,
      total_questions   INTEGER NOT NULL DEFAULT 0,
      is_active         BOOLEAN NOT NULL DEFAULT TRUE,
      created_at        TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS public.practice_test_questions (
      practice_test_id  UUID NOT NULL REFERENCES public.practice_tests(id),
      quiz_id           UUID NOT NULL REFERENCES public.quizzes(id),
      question_order    INTEGER NOT NULL,
      PRIMARY KEY (practice_test_id, quiz_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS public.practice_test_attempts (
      id                  UUID PRIMARY KEY,
      user_id             BIGINT NOT NULL,
      practice_test_id    UUID NOT NULL REFERENCES public.practice_tests(id),
      started_at          TIMESTAMPTZ NOT NULL,
      completed_at        TIMESTAMPTZ,
      status              TEXT NOT NULL DEFAULT 'in_progress'
                          CHECK (status IN ('in_progress','completed')),
      score               NUMERIC(5,2),
      correct_count       INTEGER,
      wrong_count         INTEGER,
      unanswered_count    INTEGER,
      time_taken_seconds  INTEGER,
      completion_reason   TEXT
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS public.practice_test_responses (
      attempt_id          UUID NOT NULL REFERENCES public.practice_test_attempts(id),
      question_id         UUID NOT NULL REFERENCES public.quizzes(id),
      selected_answer     TEXT,
      time_spent_seconds  INTEGER NOT NULL DEFAULT 0,
      is_correct          BOOLEAN,
      created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
      PRIMARY KEY (attempt_id, question_id)
    );
    """,
]

_ATTEMPT_SELECT = """
    SELECT a.id, a.user_id, a.practice_test_id, a.started_at, a.completed_at,
           a.status, a.score, a.correct_count, a.wrong_count, a.unanswered_count,
           a.time_taken_seconds, a.completion_reason,
           t.title, t.duration_minutes, t.passing_score, t.total_questions
      FROM public.practice_test_attempts a
      JOIN public.practice_tests t ON t.id = a.practice_test_id
"""


class PracticeStore:
    def __init__(self, fetch_one: Callable, fetch_all: Callable, execute: Callable,
                 execute_returning: Callable, clock: Callable[[], datetime] = _utcnow):
        self.fetch_one = fetch_one
        self.fetch_all = fetch_all
        self.execute = execute
        self.execute_returning = execute_returning
        self.clock = clock
        self._schema_ready = False

    # ------------------------------- schema -----------------------------------
    def ensure_schema(self) -> None:
        if self._schema_ready:
            return
        for stmt in SCHEMA_SQL:
            self.execute(stmt, ())
        self._schema_ready = True

    # ------------------------------- question bank ----------------------------
    def add_quiz(self, question: str, options: Dict[str, str], correct_answer: str,
                 explanation: Optional[str] = None, module_id: Optional[str] = None) -> str:
        text = (question or "").strip()
        if not text:
            raise ValueError("question text is required")
        opts = {k.upper(): str(v or "").strip() for k, v in (options or {}).items()}
        missing = [o for o in OPTIONS if not opts.get(o)]
        if missing:
            raise ValueError(f"missing options: {', '.join(missing)}")
        try:
            correct = normalize_option(correct_answer)
        except ValueError:
            correct = None
        if correct is None:
            raise ValueError("correct_answer must be one of A, B, C, D")

        quiz_id = str(uuid.uuid4())
        rows = self.execute_returning("""
            INSERT INTO public.quizzes
                (id, module_id, question, option_a, option_b, option_c, option_d, correct_answer, explanation)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id;
        """, (quiz_id, module_id, text, opts["A"], opts["B"], opts["C"], opts["D"], correct, explanation))
        return str(rows[0]["id"]) if rows else quiz_id

    def find_quiz(self, question: str, module_id: Optional[str] = None) -> Optional[str]:
        row = self.fetch_one("""
            SELECT id FROM public.quizzes
             WHERE question = %s AND module_id IS NOT DISTINCT FROM %s
             LIMIT 1;
        """, ((question or "").strip(), module_id))
        return str(row["id"]) if row else None

    def add_quiz_if_missing(self, question: str, options: Dict[str, str], correct_answer: str,
                            explanation: Optional[str] = None,
                            module_id: Optional[str] = None) -> Tuple[str, bool]:
        """Returns (quiz_id, created). A bank item matching on (module_id, question) is reused."""
        existing = self.find_quiz(question, module_id) if (question or "").strip() else None
        if existing:
            return existing, False
        return self.add_quiz(question, options, correct_answer,
                             explanation=explanation, module_id=module_id), True

    def list_quizzes(self, module_id: Optional[str] = None, limit: int = 200) -> List[Dict[str, Any]]:
        if module_id:
            return self.fetch_all("""
                SELECT id, module_id, question, correct_answer
                  FROM public.quizzes
                 WHERE module_id = %s
                 ORDER BY created_at DESC
                 LIMIT %s;
            """, (module_id, int(limit)))
        return self.fetch_all("""
            SELECT id, module_id, question, correct_answer
              FROM public.quizzes
             ORDER BY created_at DESC
             LIMIT %s;
        """, (int(limit),))

    def random_quiz_ids(self, count: int, module_id: Optional[str] = None) -> List[str]:
        if module_id:
            rows = self.fetch_all("""
                SELECT id FROM public.quizzes
                 WHERE module_id = %s
                 ORDER BY random()
                 LIMIT %s;
            """, (module_id, int(count)))
        else:
            rows = self.fetch_all("""
                SELECT id FROM public.quizzes
                 ORDER BY random()
                 LIMIT %s;
            """, (int(count),))
        return [str(r["id"]) for r in rows or []]

    def existing_quiz_ids(self, quiz_ids: List[str]) -> List[str]:
        if not quiz_ids:
            return []
        rows = self.fetch_all("""
            SELECT id FROM public.quizzes
             WHERE id::text = ANY(%s);
        """, ([str(q) for q in quiz_ids],))
        return [str(r["id"]) for r in rows or []]

    # ------------------------------- test definitions -------------------------
    def create_test(self, title: str, duration_minutes: int, passing_score: float,
                    quiz_ids: List[str], description: Optional[str] = None) -> str:
        title = (title or "").strip()
        if not title:
            raise ValueError("title is required")
        if int(duration_minutes or 0) <= 0:
            raise ValueError("duration_minutes must be positive")
        if not (0 <= float(passing_score) <= 100):
            raise ValueError("passing_score must be between 0 and 100")

        ordered: List[str] = []
        for q in quiz_ids or []:
            if str(q) not in ordered:
                ordered.append(str(q))
        if not ordered:
            raise ValueError("a practice test needs at least one question")
        known = set(self.existing_quiz_ids(ordered))
        unknown = [q for q in ordered if q not in known]
        if unknown:
            raise ValueError(f"unknown quiz ids: {', '.join(unknown)}")

        test_id = str(uuid.uuid4())
        self.execute_returning("""
            INSERT INTO public.practice_tests
                (id, title, description, duration_minutes, passing_score, total_questions, is_active)
            VALUES (%s, %s, %s, %s, %s, %s, TRUE)
            RETURNING id;
        """, (test_id, title, description, int(duration_minutes), float(passing_score), len(ordered)))
        for order, quiz_id in enumerate(ordered, start=1):
            self.execute("""
                INSERT INTO public.practice_test_questions (practice_test_id, quiz_id, question_order)
                VALUES (%s, %s, %s);
            """, (test_id, quiz_id, order))
        return test_id

    def set_test_active(self, test_id: str, active: bool) -> bool:
        if not is_uuid(test_id):
            return False
        rows = self.execute_returning("""
            UPDATE public.practice_tests
               SET is_active = %s
             WHERE id = %s
            RETURNING id;
        """, (bool(active), str(test_id)))
        return bool(rows)

    def list_tests(self, active_only: bool = True) -> List[Dict[str, Any]]:
        if active_only:
            return self.fetch_all("""
                SELECT id, title, description, duration_minutes, passing_score, total_questions, is_active
                  FROM public.practice_tests
                 WHERE is_active
                 ORDER BY created_at DESC;
            """, ())
        return self.fetch_all("""
            SELECT id, title, description, duration_minutes, passing_score, total_questions, is_active
              FROM public.practice_tests
             ORDER BY created_at DESC;
        """, ())

    def get_test(self, test_id: str) -> Optional[Dict[str, Any]]:
        if not is_uuid(test_id):
            return None
        return self.fetch_one("""
            SELECT id, title, description, duration_minutes, passing_score, total_questions, is_active
              FROM public.practice_tests
             WHERE id = %s;
        """, (str(test_id),))

    def test_questions(self, test_id: str) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT q.id, q.question, q.option_a, q.option_b, q.option_c, q.option_d,
                   q.correct_answer, q.explanation, ptq.question_order
              FROM public.practice_test_questions ptq
              JOIN public.quizzes q ON q.id = ptq.quiz_id
             WHERE ptq.practice_test_id = %s
             ORDER BY ptq.question_order;
        """, (str(test_id),))

    # ------------------------------- attempts ---------------------------------
    def create_attempt(self, user_id: int, test_id: str) -> Dict[str, Any]:
        attempt_id = str(uuid.uuid4())
        self.execute_returning("""
            INSERT INTO public.practice_test_attempts
                (id, user_id, practice_test_id, started_at, status)
            VALUES (%s, %s, %s, %s, 'in_progress')
            RETURNING id;
        """, (attempt_id, user_id, str(test_id), self.clock()))
        return self.get_attempt(attempt_id)

    def get_attempt(self, attempt_id: str, user_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        if not is_uuid(attempt_id):
            return None
        if user_id is None:
            return self.fetch_one(_ATTEMPT_SELECT + " WHERE a.id = %s;", (str(attempt_id),))
        return self.fetch_one(_ATTEMPT_SELECT + " WHERE a.id = %s AND a.user_id = %s;",
                              (str(attempt_id), user_id))

    def open_attempts(self, user_id: int, test_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if test_id:
            return self.fetch_all(
                _ATTEMPT_SELECT + " WHERE a.user_id = %s AND a.status = 'in_progress'"
                                  " AND a.practice_test_id = %s ORDER BY a.started_at DESC;",
                (user_id, str(test_id)))
        return self.fetch_all(
            _ATTEMPT_SELECT + " WHERE a.user_id = %s AND a.status = 'in_progress'"
                              " ORDER BY a.started_at DESC;",
            (user_id,))

    def user_attempts(self, user_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        return self.fetch_all(
            _ATTEMPT_SELECT + " WHERE a.user_id = %s ORDER BY a.started_at DESC LIMIT %s;",
            (user_id, int(limit)))

    def start_or_resume(self, user_id: int, test_id: str,
                        before_finalize: Optional[Callable[[str], Any]] = None) -> Dict[str, Any]:
        """
        Resume the user's open attempt on this test while it has time left; else start fresh.
        `before_finalize(attempt_id)` runs ahead of closing a stale attempt (e.g. to push
        parked answers).
        """
        test = self.get_test(test_id)
        if not test or not test.get("is_active"):
            raise LookupError("practice test not found")
        now = self.clock()
        for a in self.open_attempts(user_id, test_id):
            if not is_expired(a["started_at"], a["duration_minutes"], now):
                return a
            if before_finalize is not None:
                before_finalize(str(a["id"]))
            self.finalize(a["id"], reason="expired")
        return self.create_attempt(user_id, test_id)

    # ------------------------------- responses --------------------------------
    def responses(self, attempt_id: str) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT attempt_id, question_id, selected_answer, time_spent_seconds, is_correct
              FROM public.practice_test_responses
             WHERE attempt_id = %s;
        """, (str(attempt_id),))

    def upsert_response(self, attempt_id: str, question_id: str,
                        selected_answer: Optional[str], time_spent_seconds: int = 0) -> Dict[str, Any]:
        """
        One row per (attempt, question); a later selection overwrites the earlier
        one. The write only lands while the attempt is in progress.
        """
        try:
            selected = normalize_option(selected_answer)
        except ValueError as e:
            raise InvalidOption(str(e)) from e
        rows = self.execute_returning("""
            INSERT INTO public.practice_test_responses
                (attempt_id, question_id, selected_answer, time_spent_seconds, updated_at)
            SELECT %s, %s, %s, %s, now()
             WHERE EXISTS (SELECT 1 FROM public.practice_test_attempts
                            WHERE id = %s AND status = 'in_progress')
            ON CONFLICT (attempt_id, question_id)
            DO UPDATE SET selected_answer = EXCLUDED.selected_answer,
                          time_spent_seconds = EXCLUDED.time_spent_seconds,
                          updated_at = now()
            RETURNING attempt_id, question_id, selected_answer, time_spent_seconds;
        """, (str(attempt_id), str(question_id), selected, max(0, int(time_spent_seconds or 0)),
              str(attempt_id)))
        if not rows:
            raise AttemptClosed(f"attempt {attempt_id} is not in progress")
        return rows[0]

    def review_rows(self, attempt_id: str) -> List[Dict[str, Any]]:
        return self.fetch_all("""
            SELECT r.question_id, r.selected_answer, r.is_correct, r.time_spent_seconds,
                   q.question, q.option_a, q.option_b, q.option_c, q.option_d,
                   q.correct_answer, q.explanation, ptq.question_order
              FROM public.practice_test_responses r
              JOIN public.practice_test_attempts a ON a.id = r.attempt_id
              JOIN public.quizzes q ON q.id = r.question_id
              LEFT JOIN public.practice_test_questions ptq
                     ON ptq.practice_test_id = a.practice_test_id AND ptq.quiz_id = r.question_id
             WHERE r.attempt_id = %s
             ORDER BY ptq.question_order;
        """, (str(attempt_id),))

    # ------------------------------- scoring ----------------------------------
    def finalize(self, attempt_id: str, reason: str = "submitted") -> Dict[str, Any]:
        """
        Close the attempt: tally responses, flag each response, write the
        result. No-op (returns the stored row) if the attempt is already closed.
        """
        if reason not in COMPLETION_REASONS:
            raise ValueError(f"unknown completion reason {reason!r}")
        attempt = self.get_attempt(attempt_id)
        if not attempt:
            raise AttemptNotFound(f"attempt {attempt_id} not found")
        if attempt.get("status") == STATUS_COMPLETED:
            return attempt

        questions = self.test_questions(attempt["practice_test_id"])
        tally = score_attempt(questions, self.responses(attempt_id))

        now = self.clock()
        limit = int(attempt.get("duration_minutes") or 0) * 60
        taken = elapsed_seconds(attempt["started_at"], now)
        # capped at the allotted time; a late poll or sweep closes after the deadline
        if limit:
            taken = min(taken, limit)

        for qid, res in tally["per_question"].items():
            self.execute("""
                INSERT INTO public.practice_test_responses
                    (attempt_id, question_id, selected_answer, time_spent_seconds, is_correct)
                SELECT %s, %s, NULL, 0, %s
                 WHERE EXISTS (SELECT 1 FROM public.practice_test_attempts
                                WHERE id = %s AND status = 'in_progress')
                ON CONFLICT (attempt_id, question_id)
                DO UPDATE SET is_correct = EXCLUDED.is_correct;
            """, (str(attempt_id), qid, bool(res["is_correct"]), str(attempt_id)))

        closed = self.execute_returning("""
            UPDATE public.practice_test_attempts
               SET status = 'completed',
                   completed_at = %s,
                   score = %s,
                   correct_count = %s,
                   wrong_count = %s,
                   unanswered_count = %s,
                   time_taken_seconds = %s,
                   completion_reason = %s
             WHERE id = %s AND status = 'in_progress'
            RETURNING id;
        """, (now, tally["score"], tally["correct"], tally["wrong"], tally["unanswered"],
              taken, reason, str(attempt_id)))
        if closed:
            print(f"[practice] attempt {attempt_id} completed ({reason}): "
                  f"{tally['correct']}/{tally['total']} = {tally['score']}%")
        return self.get_attempt(attempt_id)

    def finalize_if_expired(self, attempt: Dict[str, Any], reason: str = "timeout") -> Dict[str, Any]:
        if attempt.get("status") != STATUS_IN_PROGRESS:
            return attempt
        if is_expired(attempt["started_at"], attempt["duration_minutes"], self.clock()):
            return self.finalize(attempt["id"], reason=reason)
        return attempt

    # ------------------------------- sweep ------------------------------------
    def expired_attempt_ids(self) -> List[str]:
        rows = self.fetch_all("""
            SELECT a.id
              FROM public.practice_test_attempts a
              JOIN public.practice_tests t ON t.id = a.practice_test_id
             WHERE a.status = 'in_progress'
               AND a.started_at + make_interval(mins => t.duration_minutes) <= %s
             ORDER BY a.started_at;
        """, (self.clock(),))
        return [str(r["id"]) for r in rows or []]

    def sweep_expired(self) -> int:
        done = 0
        for attempt_id in self.expired_attempt_ids():
            try:
                self.finalize(attempt_id, reason="expired")
                done += 1
            except Exception as e:
                print(f"[practice] sweep failed for {attempt_id}: {e}")
        return done

    # ------------------------------- stats ------------------------------------
    def user_stats(self, user_id: int) -> Dict[str, Any]:
        rows = self.fetch_all("""
            SELECT status, score, time_taken_seconds
              FROM public.practice_test_attempts
             WHERE user_id = %s;
        """, (user_id,))
        return summarize_attempts(rows)


def started_at_iso(attempt: Dict[str, Any]) -> str:
    return as_utc(attempt["started_at"]).strftime("%Y-%m-%dT%H:%M:%SZ")
