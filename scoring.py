# scoring.py
# -----------------------------------------------------------------------------
# Pure scoring helpers for practice tests. No Flask, no DB: every function takes
# plain rows (dicts) and returns plain dicts.
# -----------------------------------------------------------------------------

from typing import Any, Dict, Iterable, List, Optional

OPTIONS = ("A", "B", "C", "D")
REVIEW_FILTERS = ("all", "correct", "wrong", "unanswered")


def normalize_option(value: Any) -> Optional[str]:
    """'b' / ' B ' -> 'B'; empty -> None. Raises ValueError for anything else."""
    if value is None:
        return None
    s = str(value).strip().upper()
    if not s:
        return None
    if s not in OPTIONS:
        raise ValueError(f"invalid option {value!r}")
    return s


def _correct_option(question: Dict[str, Any]) -> Optional[str]:
    try:
        return normalize_option(question.get("correct_answer"))
    except ValueError:
        return None


def score_attempt(questions: List[Dict[str, Any]],
                  responses: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Tally one attempt.

    questions: ordered rows with 'id' and 'correct_answer'
    responses: rows with 'question_id' and 'selected_answer' (None = unanswered)

    Responses for questions outside the test are ignored. Returns
    {total, correct, wrong, unanswered, score, per_question}, where
    per_question maps question id -> {"selected", "is_correct"}.
    """
    by_qid: Dict[str, Dict[str, Any]] = {}
    for r in responses or []:
        by_qid[str(r.get("question_id"))] = r

    correct = wrong = unanswered = 0
    per_question: Dict[str, Dict[str, Any]] = {}
    for q in questions or []:
        qid = str(q.get("id"))
        r = by_qid.get(qid) or {}
        try:
            selected = normalize_option(r.get("selected_answer"))
        except ValueError:
            selected = None
        if selected is None:
            unanswered += 1
            per_question[qid] = {"selected": None, "is_correct": False}
            continue
        ok = selected == _correct_option(q)
        if ok:
            correct += 1
        else:
            wrong += 1
        per_question[qid] = {"selected": selected, "is_correct": ok}

    total = len(questions or [])
    score = round(100.0 * correct / total, 2) if total else 0.0
    return {
        "total": total,
        "correct": correct,
        "wrong": wrong,
        "unanswered": unanswered,
        "score": score,
        "per_question": per_question,
    }


# ------------------------------- results review -------------------------------
def _is_correct(row: Dict[str, Any]) -> bool:
    return bool(row.get("is_correct"))


def _is_unanswered(row: Dict[str, Any]) -> bool:
    return not row.get("selected_answer")


def filter_review(rows: List[Dict[str, Any]], kind: Optional[str]) -> List[Dict[str, Any]]:
    """Filter already-fetched review rows; unknown filters behave like 'all'."""
    kind = (kind or "all").strip().lower()
    if kind == "correct":
        return [r for r in rows if _is_correct(r)]
    if kind == "wrong":
        return [r for r in rows if not _is_correct(r) and not _is_unanswered(r)]
    if kind == "unanswered":
        return [r for r in rows if _is_unanswered(r)]
    return list(rows)


def review_counts(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    return {k: len(filter_review(rows, k)) for k in REVIEW_FILTERS}


def score_band(score: Optional[float], passing_score: Optional[float]) -> str:
    """'pass' at or above the pass mark, 'near' within 80% of it, else 'fail'."""
    s = float(score or 0.0)
    p = float(passing_score or 0.0)
    if s >= p:
        return "pass"
    if s >= p * 0.8:
        return "near"
    return "fail"


def efficiency(correct: Optional[int], time_taken_seconds: Optional[int]) -> float:
    """Correct answers per minute."""
    secs = int(time_taken_seconds or 0)
    if secs <= 0:
        return 0.0
    return round(int(correct or 0) / (secs / 60.0), 2)


def result_summary(attempt: Dict[str, Any]) -> Dict[str, Any]:
    score = float(attempt.get("score") or 0.0)
    passing = float(attempt.get("passing_score") or 0.0)
    return {
        "score": round(score, 2),
        "passing_score": passing,
        "passed": score >= passing,
        "band": score_band(score, passing),
        "correct": int(attempt.get("correct_count") or 0),
        "wrong": int(attempt.get("wrong_count") or 0),
        "unanswered": int(attempt.get("unanswered_count") or 0),
        "time_taken_seconds": int(attempt.get("time_taken_seconds") or 0),
        "efficiency": efficiency(attempt.get("correct_count"), attempt.get("time_taken_seconds")),
    }


# ------------------------------- user statistics ------------------------------
def summarize_attempts(rows: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    rows = list(rows or [])
    scores = [float(r["score"]) for r in rows if r.get("score") is not None]
    total_time = sum(int(r.get("time_taken_seconds") or 0) for r in rows)
    return {
        "total_attempts": len(rows),
        "completed_tests": sum(1 for r in rows if r.get("status") == "completed"),
        "average_score": round(sum(scores) / len(scores), 2) if scores else 0.0,
        "best_score": max(scores) if scores else 0.0,
        "time_spent_minutes": int(round(total_time / 60.0)),
    }
