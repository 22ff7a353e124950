import os
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flask import Blueprint, render_template, render_template_string, g, redirect, request
from jinja2 import TemplateNotFound
from urllib.parse import quote

from attempt_timer import format_duration
from practice_store import PracticeStore
from scoring import score_band, summarize_attempts

# =============================== Env / BASE PATH ==============================
BASE_PATH = (os.getenv("BASE_PATH", "") or "").rstrip("/")
RECENT_ATTEMPTS = int(os.getenv("PROFILE_RECENT_ATTEMPTS") or 10)


def _bp(path: str = "") -> str:
    p = path or "/"
    if not p.startswith("/"):
        p = "/" + p
    if BASE_PATH and (p == BASE_PATH or p.startswith(BASE_PATH + "/")):
        return p
    return (BASE_PATH + p) if BASE_PATH else p


def _as_float(x) -> Optional[float]:
    if x is None: return None
    if isinstance(x, Decimal): return float(x)
    try: return float(x)
    except Exception: return None


def _fmt_dt_simple(v) -> Optional[str]:
    if v is None: return None
    if isinstance(v, datetime):
        return v.strftime("%Y-%m-%d %H:%M")
    try:
        return datetime.fromisoformat(str(v).replace("Z", "+00:00")).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return str(v)


def _attempt_row(a: Dict[str, Any]) -> Dict[str, Any]:
    score = _as_float(a.get("score"))
    passing = _as_float(a.get("passing_score")) or 0.0
    return {
        "id": str(a["id"]),
        "title": a.get("title"),
        "status": a.get("status"),
        "started_at": _fmt_dt_simple(a.get("started_at")),
        "completed_at": _fmt_dt_simple(a.get("completed_at")),
        "score": score,
        "passed": (score is not None and score >= passing),
        "band": score_band(score, passing) if score is not None else None,
        "time_taken": format_duration(a.get("time_taken_seconds") or 0),
    }


def create_profile_blueprint(deps: Dict[str, Any], name: str = "profile") -> Blueprint:
    """
    Profile page: the signed-in learner's practice-test statistics and recent attempts.
    deps: fetch_one, fetch_all, execute, execute_returning (or store)
    """
    store: PracticeStore = deps.get("store") or PracticeStore(
        deps["fetch_one"], deps["fetch_all"], deps["execute"], deps["execute_returning"]
    )
    bp = Blueprint(name, __name__)

    @bp.context_processor
    def inject_profile_utils():
        return {"bp": _bp, "base_path": BASE_PATH}

    def profile_view():
        user_id = getattr(g, "user_id", None)
        email = getattr(g, "user_email", None)
        if not user_id:
            full = request.full_path if request.query_string else request.path
            return redirect(f"{_bp('/login')}?next={quote(full, safe='/:?&=')}")

        error = None
        stats = summarize_attempts([])
        attempts: List[Dict[str, Any]] = []
        try:
            store.ensure_schema()
            stats = store.user_stats(user_id)
            attempts = [_attempt_row(a) for a in store.user_attempts(user_id, limit=RECENT_ATTEMPTS)]
        except Exception as e:
            print(f"[profile] practice stats unavailable for {email}: {e}")
            error = "Profile data is temporarily unavailable. Please try again shortly."

        context = {
            "email": email,
            "stats": stats,
            "attempts": attempts,
            "error": error,
        }
        try:
            return render_template("profile.html", **context)
        except TemplateNotFound:
            return render_template_string(_PROFILE_INLINE, **context)

    bp.add_url_rule("/profile", view_func=profile_view, methods=["GET"], endpoint="profile_view")
    if BASE_PATH:
        bp.add_url_rule(f"{BASE_PATH}/profile", view_func=profile_view, methods=["GET"], endpoint="profile_view_alias")

    return bp


_PROFILE_INLINE = """
<!doctype html><html><head><meta charset="utf-8"/><title>Profile</title>
<meta name="viewport" content="width=device-width,initial-scale=1"/></head>
<body style="font-family:system-ui,sans-serif;margin:24px">
<h1>{{ email or 'Profile' }}</h1>
{% if error %}<p class="error">{{ error }}</p>{% endif %}
<ul>
  <li>Attempts: {{ stats.total_attempts }}</li>
  <li>Completed: {{ stats.completed_tests }}</li>
  <li>Average score: {{ stats.average_score }}%</li>
  <li>Best score: {{ stats.best_score }}%</li>
  <li>Time spent: {{ stats.time_spent_minutes }} min</li>
</ul>
<table>
  <tr><th>Test</th><th>Started</th><th>Status</th><th>Score</th><th>Time</th></tr>
  {% for a in attempts %}
  <tr>
    <td>{{ a.title }}</td><td>{{ a.started_at }}</td><td>{{ a.status }}</td>
    <td>{% if a.score is not none %}{{ a.score }}% ({{ 'pass' if a.passed else 'fail' }}){% else %}&mdash;{% endif %}</td>
    <td>{{ a.time_taken }}</td>
  </tr>
  {% endfor %}
</table>
</body></html>
"""
