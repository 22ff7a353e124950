import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from psycopg.errors import InvalidTextRepresentation

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from practice_store import PracticeStore  # noqa: E402


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 5, 1, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


def _uuid_column(value):
    try:
        uuid.UUID(str(value))
    except ValueError:
        raise InvalidTextRepresentation(f'invalid input syntax for type uuid: "{value}"')
    return str(value)


class FakeDB:
    """In-memory stand-in for the four DB callables, keyed on the SQL the store issues."""

    def __init__(self):
        self.quizzes = {}
        self.tests = {}
        self.test_questions = []
        self.attempts = {}
        self.responses = {}
        self.roles = {}
        self.executed = []
        self.fail_upserts = 0
        self.fail_finalize = False
        self.upsert_calls = 0

    # ------------------------------------------------------------ seeding
    def add_quiz(self, correct="A", question=None, module_id="m1", explanation=None):
        qid = str(uuid.uuid4())
        self.quizzes[qid] = {
            "id": qid, "module_id": module_id,
            "question": question or f"Question {len(self.quizzes) + 1}?",
            "option_a": "alpha", "option_b": "bravo", "option_c": "charlie", "option_d": "delta",
            "correct_answer": correct, "explanation": explanation,
            "created_at": len(self.quizzes),
        }
        return qid

    def add_test(self, quiz_ids, duration_minutes=10, passing_score=40, title="Mock test", is_active=True):
        tid = str(uuid.uuid4())
        self.tests[tid] = {
            "id": tid, "title": title, "description": None,
            "duration_minutes": duration_minutes, "passing_score": passing_score,
            "total_questions": len(quiz_ids), "is_active": is_active,
            "created_at": len(self.tests),
        }
        for order, qid in enumerate(quiz_ids, start=1):
            self.test_questions.append((tid, qid, order))
        return tid

    # ------------------------------------------------------------ helpers
    def _attempt_view(self, a):
        t = self.tests[a["practice_test_id"]]
        row = dict(a)
        row.update({
            "title": t["title"], "duration_minutes": t["duration_minutes"],
            "passing_score": t["passing_score"], "total_questions": t["total_questions"],
        })
        return row

    def _in_progress(self, attempt_id):
        a = self.attempts.get(str(attempt_id))
        return bool(a and a["status"] == "in_progress")

    def _order_of(self, test_id, quiz_id):
        for tid, qid, order in self.test_questions:
            if tid == test_id and qid == quiz_id:
                return order
        return None

    # ------------------------------------------------------------ callables
    def fetch_all(self, sql, params=()):
        if "FROM public.practice_test_attempts a" in sql and "SELECT a.id, a.user_id" in sql:
            rows = list(self.attempts.values())
            if "WHERE a.id = %s" in sql:
                _uuid_column(params[0])
            if "WHERE a.id = %s AND a.user_id = %s" in sql:
                rows = [a for a in rows if a["id"] == str(params[0]) and a["user_id"] == params[1]]
            elif "WHERE a.id = %s" in sql:
                rows = [a for a in rows if a["id"] == str(params[0])]
            elif "a.status = 'in_progress'" in sql:
                rows = [a for a in rows if a["user_id"] == params[0] and a["status"] == "in_progress"]
                if "a.practice_test_id = %s" in sql:
                    rows = [a for a in rows if a["practice_test_id"] == str(params[1])]
            else:
                rows = [a for a in rows if a["user_id"] == params[0]]
            rows.sort(key=lambda a: a["started_at"], reverse=True)
            if "LIMIT %s" in sql:
                rows = rows[:params[-1]]
            return [self._attempt_view(a) for a in rows]
        if "make_interval" in sql:
            now = params[0]
            return [{"id": a["id"]} for a in self.attempts.values()
                    if a["status"] == "in_progress"
                    and a["started_at"] + timedelta(minutes=self.tests[a["practice_test_id"]]["duration_minutes"]) <= now]
        if "SELECT status, score, time_taken_seconds" in sql:
            return [a for a in self.attempts.values() if a["user_id"] == params[0]]
        if "FROM public.practice_test_responses r" in sql:
            aid = str(params[0])
            a = self.attempts[aid]
            out = []
            for (raid, qid), r in self.responses.items():
                if raid != aid:
                    continue
                row = dict(self.quizzes[qid])
                row.update(r)
                row["question_order"] = self._order_of(a["practice_test_id"], qid)
                out.append(row)
            return sorted(out, key=lambda r: r["question_order"] or 0)
        if "FROM public.practice_test_responses" in sql:
            return [dict(r) for (aid, _), r in self.responses.items() if aid == str(params[0])]
        if "FROM public.practice_test_questions ptq" in sql:
            rows = []
            for tid, qid, order in sorted(self.test_questions, key=lambda t: t[2]):
                if tid == str(params[0]):
                    row = dict(self.quizzes[qid])
                    row["question_order"] = order
                    rows.append(row)
            return rows
        if "id::text = ANY" in sql:
            return [{"id": q} for q in params[0] if q in self.quizzes]
        if "ORDER BY random()" in sql:
            rows = list(self.quizzes.values())
            if "module_id = %s" in sql:
                rows = [q for q in rows if q["module_id"] == params[0]]
            return [{"id": q["id"]} for q in rows[:params[-1]]]
        if "module_id IS NOT DISTINCT FROM" in sql:
            question, module_id = params
            return [{"id": q["id"]} for q in self.quizzes.values()
                    if q["question"] == question and q["module_id"] == module_id][:1]
        if "FROM public.quizzes" in sql:
            rows = list(self.quizzes.values())
            if "module_id = %s" in sql:
                rows = [q for q in rows if q["module_id"] == params[0]]
            return rows
        if "FROM public.practice_tests" in sql:
            rows = list(self.tests.values())
            if "WHERE id = %s" in sql:
                _uuid_column(params[0])
                rows = [t for t in rows if t["id"] == str(params[0])]
            elif "WHERE is_active" in sql:
                rows = [t for t in rows if t["is_active"]]
            return rows
        if "FROM public.users" in sql:
            role = self.roles.get(str(params[0]).lower())
            return [{"role": role}] if role else []
        return []

    def fetch_one(self, sql, params=()):
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def execute(self, sql, params=()):
        self.executed.append((sql, params))
        if "CREATE TABLE" in sql:
            return
        if "INSERT INTO public.practice_test_questions" in sql:
            self.test_questions.append((str(params[0]), str(params[1]), params[2]))
            return
        if "INSERT INTO public.practice_test_responses" in sql and "is_correct)" in sql:
            aid, qid, is_correct, _ = params
            if not self._in_progress(aid):
                return
            row = self.responses.setdefault((str(aid), str(qid)), {
                "attempt_id": str(aid), "question_id": str(qid),
                "selected_answer": None, "time_spent_seconds": 0, "is_correct": None,
            })
            row["is_correct"] = is_correct
            return

    def execute_returning(self, sql, params=()):
        self.executed.append((sql, params))
        if "INSERT INTO public.quizzes" in sql:
            qid, module_id, question, a, b, c, d, correct, explanation = params
            self.quizzes[qid] = {
                "id": qid, "module_id": module_id, "question": question,
                "option_a": a, "option_b": b, "option_c": c, "option_d": d,
                "correct_answer": correct, "explanation": explanation,
                "created_at": len(self.quizzes),
            }
            return [{"id": qid}]
        if "INSERT INTO public.practice_tests" in sql:
            tid, title, description, duration, passing, total = params
            self.tests[tid] = {
                "id": tid, "title": title, "description": description,
                "duration_minutes": duration, "passing_score": passing,
                "total_questions": total, "is_active": True, "created_at": len(self.tests),
            }
            return [{"id": tid}]
        if "UPDATE public.practice_tests" in sql:
            active, tid = params
            _uuid_column(tid)
            if tid not in self.tests:
                return []
            self.tests[tid]["is_active"] = active
            return [{"id": tid}]
        if "INSERT INTO public.practice_test_attempts" in sql:
            aid, user_id, tid, started_at = params
            self.attempts[aid] = {
                "id": aid, "user_id": user_id, "practice_test_id": tid,
                "started_at": started_at, "completed_at": None, "status": "in_progress",
                "score": None, "correct_count": None, "wrong_count": None,
                "unanswered_count": None, "time_taken_seconds": None, "completion_reason": None,
            }
            return [{"id": aid}]
        if "INSERT INTO public.practice_test_responses" in sql:
            self.upsert_calls += 1
            if self.fail_upserts:
                self.fail_upserts -= 1
                raise RuntimeError("connection reset")
            aid, qid, selected, spent, _ = params
            if not self._in_progress(aid):
                return []
            row = self.responses.setdefault((str(aid), str(qid)), {
                "attempt_id": str(aid), "question_id": str(qid), "is_correct": None,
            })
            row.update({"selected_answer": selected, "time_spent_seconds": spent})
            return [dict(row)]
        if "UPDATE public.practice_test_attempts" in sql:
            if self.fail_finalize:
                raise RuntimeError("connection reset")
            now, score, correct, wrong, unanswered, taken, reason, aid = params
            if not self._in_progress(aid):
                return []
            self.attempts[aid].update({
                "status": "completed", "completed_at": now, "score": score,
                "correct_count": correct, "wrong_count": wrong, "unanswered_count": unanswered,
                "time_taken_seconds": taken, "completion_reason": reason,
            })
            return [{"id": aid}]
        return []

    def deps(self):
        return {
            "fetch_one": self.fetch_one,
            "fetch_all": self.fetch_all,
            "execute": self.execute,
            "execute_returning": self.execute_returning,
        }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db():
    return FakeDB()


@pytest.fixture
def store(db, clock):
    return PracticeStore(db.fetch_one, db.fetch_all, db.execute, db.execute_returning, clock=clock)
