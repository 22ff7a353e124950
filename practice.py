# practice.py
# -----------------------------------------------------------------------------
# Practice-test engine (timed MCQ attempts) mounted under <BASE_PATH>/practice-tests
# - Catalog + start/resume; one open attempt per user per test
# - Take view: server-side navigator (?q=), answers saved one by one (outbox on failure)
# - Timer recomputed from stored started_at on every poll; forced submit at 0
# - Submit/timeout/expiry all converge on PracticeStore.finalize (idempotent)
# - Results gated on status == completed; review filters are pure predicates
# -----------------------------------------------------------------------------

import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from flask import (
    Blueprint, request, jsonify, render_template, render_template_string,
    redirect, url_for, g
)
from jinja2 import TemplateNotFound

from attempt_timer import (
    AttemptTimer, as_utc, format_clock, format_duration, remaining_seconds, time_band
)
from navigator import SessionNavigator
from practice_store import (
    AttemptClosed, AttemptNotFound, InvalidOption, PracticeStore,
    STATUS_COMPLETED, STATUS_IN_PROGRESS, started_at_iso
)
from recorder import AnswerOutbox, ResponseRecorder
from rich_text import render_rich
from scoring import OPTIONS, REVIEW_FILTERS, filter_review, result_summary, review_counts


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Blueprint factory
# -----------------------------------------------------------------------------
def create_practice_blueprint(base_path: str, deps: Dict[str, Any], name: str = "practice") -> Blueprint:
    """
    Factory that returns a Blueprint mounted at <base_path>/practice-tests.
    Required deps: fetch_one, fetch_all, execute, execute_returning
    Optional deps: store (PracticeStore), outbox (AnswerOutbox), clock
    """
    url_prefix = (base_path.rstrip("/") if base_path else "") + "/practice-tests"
    bp = Blueprint(name, __name__, url_prefix=url_prefix)

    # ---- Config --------------------------------------------------------------
    OUTBOX_MAX_TRIES  = int(os.getenv("PRACTICE_OUTBOX_MAX_TRIES") or 5)
    OUTBOX_BASE_DELAY = float(os.getenv("PRACTICE_OUTBOX_BASE_DELAY") or 1.0)
    OUTBOX_MAX_DELAY  = float(os.getenv("PRACTICE_OUTBOX_MAX_DELAY") or 30.0)

    # ---- Deps ----------------------------------------------------------------
    clock: Callable[[], datetime] = deps.get("clock") or _utcnow
    store: PracticeStore = deps.get("store") or PracticeStore(
        deps["fetch_one"], deps["fetch_all"], deps["execute"], deps["execute_returning"], clock=clock
    )
    outbox: AnswerOutbox = deps.get("outbox") or AnswerOutbox(
        max_tries=OUTBOX_MAX_TRIES, base_delay=OUTBOX_BASE_DELAY, max_delay=OUTBOX_MAX_DELAY
    )
    recorder = ResponseRecorder(store, outbox)
    bp.store = store
    bp.recorder = recorder

    @bp.before_request
    def _schema():
        try:
            store.ensure_schema()
        except Exception as e:
            print(f"[practice] ensure schema failed: {e}")

    # ------------------------------- helpers ----------------------------------
    def _user_id() -> Optional[int]:
        return getattr(g, "user_id", None)

    def _wants_json() -> bool:
        if request.is_json or (request.args.get("format") or "").lower() == "json":
            return True
        best = request.accept_mimetypes.best_match(["application/json", "text/html"])
        return best == "application/json" and request.accept_mimetypes[best] > request.accept_mimetypes["text/html"]

    def _url(endpoint: str, fallback: str, **kw) -> str:
        try:
            return url_for(endpoint, **kw)
        except Exception:
            return fallback

    def _login_url() -> str:
        return _url("login", "/login", next=request.path)

    def _catalog_url() -> str:
        return url_for(f"{bp.name}.catalog")

    def _take_url(attempt_id: str) -> str:
        return url_for(f"{bp.name}.take_view", attempt_id=attempt_id)

    def _results_url(attempt_id: str) -> str:
        return url_for(f"{bp.name}.results_view", attempt_id=attempt_id)

    def _render(template: str, inline: str, **context):
        try:
            return render_template(template, **context)
        except TemplateNotFound:
            return render_template_string(inline, **context)

    def _iso(value: Any) -> Optional[str]:
        if value is None:
            return None
        return as_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")

    def _num(value: Any) -> Optional[float]:
        return None if value is None else round(float(value), 2)

    def _attempt_json(a: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": str(a["id"]),
            "practice_test_id": str(a["practice_test_id"]),
            "title": a.get("title"),
            "status": a.get("status"),
            "started_at": _iso(a.get("started_at")),
            "completed_at": _iso(a.get("completed_at")),
            "duration_minutes": int(a.get("duration_minutes") or 0),
            "passing_score": _num(a.get("passing_score")),
            "score": _num(a.get("score")),
            "correct_count": a.get("correct_count"),
            "wrong_count": a.get("wrong_count"),
            "unanswered_count": a.get("unanswered_count"),
            "time_taken_seconds": a.get("time_taken_seconds"),
            "completion_reason": a.get("completion_reason"),
        }

    def _public_question(q: Dict[str, Any], index: int) -> Dict[str, Any]:
        # never leak correct_answer / explanation while the attempt is open
        return {
            "index": index,
            "id": str(q["id"]),
            "question": q.get("question"),
            "options": {o: q.get(f"option_{o.lower()}") for o in OPTIONS},
        }

    def _close(attempt_id: str, reason: str) -> Dict[str, Any]:
        """Push any parked answers, then finalize."""
        recorder.flush(attempt_id, force=True)
        return store.finalize(attempt_id, reason=reason)

    def _expire_if_due(attempt: Dict[str, Any]) -> Dict[str, Any]:
        if attempt.get("status") != STATUS_IN_PROGRESS:
            return attempt
        timer = AttemptTimer(attempt["started_at"], attempt["duration_minutes"],
                             on_expire=lambda: _close(str(attempt["id"]), "timeout"), clock=clock)
        timer.tick()
        return timer.result if timer.expired else attempt

    def _finalize_failed(attempt_id: str, err: Exception, as_json: bool, retry_url: Optional[str] = None):
        print(f"[practice] forced submit failed for {attempt_id}: {err}")
        if as_json:
            return jsonify({"ok": False, "error": "submit failed, please retry", "retry": True}), 500
        return _render("practice_retry.html", _RETRY_INLINE,
                       retry_url=retry_url or request.path, catalog_url=_catalog_url()), 500

    def _own_attempt(attempt_id: str) -> Optional[Dict[str, Any]]:
        return store.get_attempt(attempt_id, _user_id())

    def _parse_shown_at(raw: Any) -> Optional[datetime]:
        if raw in (None, ""):
            return None
        try:
            if isinstance(raw, (int, float)) or str(raw).replace(".", "", 1).isdigit():
                return datetime.fromtimestamp(float(raw), tz=timezone.utc)
            return as_utc(str(raw))
        except (TypeError, ValueError, OverflowError, OSError):
            return None

    # --------------------------------- routes ---------------------------------
    @bp.get("/", endpoint="catalog")
    def catalog():
        uid = _user_id()
        if not uid:
            if _wants_json():
                return jsonify({"ok": False, "error": "unauthorized"}), 401
            return redirect(_login_url())
        tests = store.list_tests(active_only=True)
        open_attempts = []
        for a in store.open_attempts(uid):
            try:
                a = _expire_if_due(a)
            except Exception as e:
                print(f"[practice] expiry failed for {a['id']}: {e}")
                continue
            if a.get("status") == STATUS_IN_PROGRESS:
                open_attempts.append(a)

        if _wants_json():
            return jsonify({
                "ok": True,
                "tests": [{
                    "id": str(t["id"]),
                    "title": t.get("title"),
                    "description": t.get("description"),
                    "duration_minutes": int(t.get("duration_minutes") or 0),
                    "passing_score": _num(t.get("passing_score")),
                    "total_questions": int(t.get("total_questions") or 0),
                } for t in tests],
                "open_attempts": [dict(_attempt_json(a), take_url=_take_url(str(a["id"])))
                                  for a in open_attempts],
            })
        return _render("practice_catalog.html", _CATALOG_INLINE,
                       tests=tests, open_attempts=open_attempts,
                       start_url=lambda tid: url_for(f"{bp.name}.start_attempt", test_id=tid),
                       take_url=_take_url)

    @bp.get("/stats")
    def stats():
        uid = _user_id()
        if not uid:
            return jsonify({"ok": False, "error": "unauthorized"}), 401
        return jsonify({"ok": True, "stats": store.user_stats(uid)})

    @bp.post("/<test_id>/start")
    def start_attempt(test_id: str):
        uid = _user_id()
        if not uid:
            if _wants_json():
                return jsonify({"ok": False, "error": "unauthorized"}), 401
            return redirect(_login_url())
        try:
            attempt = store.start_or_resume(
                uid, test_id, before_finalize=lambda aid: recorder.flush(aid, force=True))
        except LookupError:
            if _wants_json():
                return jsonify({"ok": False, "error": "practice test not found"}), 404
            return redirect(_catalog_url())
        except Exception as e:
            return _finalize_failed(test_id, e, _wants_json(), retry_url=_catalog_url())
        attempt_id = str(attempt["id"])
        if _wants_json():
            return jsonify({"ok": True, "attempt": _attempt_json(attempt), "take_url": _take_url(attempt_id)})
        return redirect(_take_url(attempt_id))

    @bp.get("/take/<attempt_id>", endpoint="take_view")
    def take_view(attempt_id: str):
        if not _user_id():
            return redirect(_login_url())
        attempt = _own_attempt(attempt_id)
        if not attempt:
            return redirect(_catalog_url())
        recorder.flush(attempt_id)
        try:
            attempt = _expire_if_due(attempt)
        except Exception as e:
            return _finalize_failed(attempt_id, e, as_json=False)
        if attempt.get("status") == STATUS_COMPLETED:
            return redirect(_results_url(attempt_id))

        questions = store.test_questions(attempt["practice_test_id"])
        saved = {str(r["question_id"]): r.get("selected_answer") for r in store.responses(attempt_id)}
        for p in outbox.pending(attempt_id):
            saved[p["question_id"]] = p["selected"]

        nav = SessionNavigator(len(questions), clock=clock,
                               answered=[qid for qid, sel in saved.items() if sel])
        nav.go_to(request.args.get("q", 0))
        left = remaining_seconds(attempt["started_at"], attempt["duration_minutes"], clock())

        current = _public_question(questions[nav.current_index], nav.current_index) if questions else None
        return _render("practice_take.html", _TAKE_INLINE,
                       attempt=_attempt_json(attempt),
                       question=current,
                       selected=(saved.get(current["id"]) if current else None),
                       nav=nav,
                       index_urls=[url_for(f"{bp.name}.take_view", attempt_id=attempt_id, q=i)
                                   for i in range(len(questions))],
                       answered_flags=[nav.is_answered(q["id"]) for q in questions],
                       remaining=left,
                       clock_text=format_clock(left),
                       band=time_band(left, attempt["duration_minutes"]),
                       shown_at=nav.question_started_at.timestamp(),
                       answer_url=url_for(f"{bp.name}.record_answer", attempt_id=attempt_id),
                       submit_url=url_for(f"{bp.name}.submit_attempt", attempt_id=attempt_id),
                       status_url=url_for(f"{bp.name}.attempt_status", attempt_id=attempt_id),
                       results_url=_results_url(attempt_id))

    @bp.get("/take/<attempt_id>/state")
    def attempt_state(attempt_id: str):
        if not _user_id():
            return jsonify({"ok": False, "error": "unauthorized"}), 401
        attempt = _own_attempt(attempt_id)
        if not attempt:
            return jsonify({"ok": False, "error": "attempt not found"}), 404
        recorder.flush(attempt_id)
        try:
            attempt = _expire_if_due(attempt)
        except Exception as e:
            return _finalize_failed(attempt_id, e, as_json=True)
        if attempt.get("status") == STATUS_COMPLETED:
            return jsonify({"ok": False, "error": "attempt completed",
                            "results_url": _results_url(attempt_id)}), 409
        questions = store.test_questions(attempt["practice_test_id"])
        answers = {str(r["question_id"]): {"selected_answer": r.get("selected_answer"),
                                           "time_spent_seconds": int(r.get("time_spent_seconds") or 0)}
                   for r in store.responses(attempt_id)}
        for p in outbox.pending(attempt_id):
            answers[p["question_id"]] = {"selected_answer": p["selected"],
                                         "time_spent_seconds": p["time_spent"], "queued": True}
        left = remaining_seconds(attempt["started_at"], attempt["duration_minutes"], clock())
        return jsonify({
            "ok": True,
            "attempt": _attempt_json(attempt),
            "started_at": started_at_iso(attempt),
            "remaining_seconds": left,
            "questions": [_public_question(q, i) for i, q in enumerate(questions)],
            "answers": answers,
        })

    @bp.get("/take/<attempt_id>/status")
    def attempt_status(attempt_id: str):
        if not _user_id():
            return jsonify({"ok": False, "error": "unauthorized"}), 401
        attempt = _own_attempt(attempt_id)
        if not attempt:
            return jsonify({"ok": False, "error": "attempt not found"}), 404
        recorder.flush(attempt_id)
        try:
            attempt = _expire_if_due(attempt)
        except Exception as e:
            return _finalize_failed(attempt_id, e, as_json=True)

        if attempt.get("status") == STATUS_COMPLETED:
            return jsonify({"ok": True, "status": STATUS_COMPLETED, "remaining_seconds": 0,
                            "clock": format_clock(0), "results_url": _results_url(attempt_id)})
        left = remaining_seconds(attempt["started_at"], attempt["duration_minutes"], clock())
        return jsonify({
            "ok": True,
            "status": STATUS_IN_PROGRESS,
            "remaining_seconds": left,
            "clock": format_clock(left),
            "band": time_band(left, attempt["duration_minutes"]),
            "queued_answers": len(outbox.pending(attempt_id)),
        })

    @bp.post("/take/<attempt_id>/answer")
    def record_answer(attempt_id: str):
        if not _user_id():
            return jsonify({"ok": False, "error": "unauthorized"}), 401
        attempt = _own_attempt(attempt_id)
        if not attempt:
            return jsonify({"ok": False, "error": "attempt not found"}), 404
        try:
            attempt = _expire_if_due(attempt)
        except Exception as e:
            return _finalize_failed(attempt_id, e, as_json=True)
        if attempt.get("status") == STATUS_COMPLETED:
            return jsonify({"ok": False, "error": "attempt already submitted",
                            "results_url": _results_url(attempt_id)}), 409

        data = request.get_json(silent=True) or {}
        question_id = str(data.get("question_id") or "")
        questions = store.test_questions(attempt["practice_test_id"])
        if question_id not in {str(q["id"]) for q in questions}:
            return jsonify({"ok": False, "error": "question not in this test"}), 400

        shown_at = _parse_shown_at(data.get("shown_at"))
        if shown_at is not None:
            spent = SessionNavigator(len(questions), clock=clock, question_started_at=shown_at).time_spent()
        else:
            try:
                spent = int(data.get("time_spent_seconds") or 0)
            except (TypeError, ValueError):
                spent = 0
        spent = max(0, min(spent, int(attempt["duration_minutes"]) * 60))

        try:
            res = recorder.record(attempt_id, question_id, data.get("selected_answer"), spent)
        except InvalidOption as e:
            return jsonify({"ok": False, "error": str(e)}), 400
        except AttemptClosed:
            return jsonify({"ok": False, "error": "attempt already submitted",
                            "results_url": _results_url(attempt_id)}), 409
        return jsonify({"ok": True, "time_spent_seconds": spent, **res})

    @bp.post("/take/<attempt_id>/submit")
    def submit_attempt(attempt_id: str):
        if not _user_id():
            return jsonify({"ok": False, "error": "unauthorized"}), 401
        attempt = _own_attempt(attempt_id)
        if not attempt:
            return jsonify({"ok": False, "error": "attempt not found"}), 404
        if attempt.get("status") != STATUS_COMPLETED:
            try:
                attempt = _close(attempt_id, "submitted")
            except AttemptNotFound:
                return jsonify({"ok": False, "error": "attempt not found"}), 404
            except Exception as e:
                print(f"[practice] submit failed for {attempt_id}: {e}")
                return jsonify({"ok": False, "error": "submit failed, please retry", "retry": True}), 500
        return jsonify({"ok": True,
                        "attempt": _attempt_json(attempt),
                        "summary": result_summary(attempt),
                        "results_url": _results_url(attempt_id)})

    # ------------------------------- results ----------------------------------
    def _load_results(attempt_id: str):
        """Returns (attempt, review_rows) or (attempt, None) if not completed."""
        attempt = _own_attempt(attempt_id)
        if not attempt:
            return None, None
        attempt = _expire_if_due(attempt)
        if attempt.get("status") != STATUS_COMPLETED:
            return attempt, None
        return attempt, store.review_rows(attempt_id)

    def _review_json(r: Dict[str, Any], index: int) -> Dict[str, Any]:
        return {
            "index": index,
            "question_id": str(r["question_id"]),
            "question": r.get("question"),
            "options": {o: r.get(f"option_{o.lower()}") for o in OPTIONS},
            "selected_answer": r.get("selected_answer"),
            "correct_answer": r.get("correct_answer"),
            "is_correct": bool(r.get("is_correct")),
            "time_spent_seconds": int(r.get("time_spent_seconds") or 0),
            "explanation": r.get("explanation"),
        }

    @bp.get("/results/<attempt_id>", endpoint="results_view")
    def results_view(attempt_id: str):
        if not _user_id():
            return redirect(_login_url())
        try:
            attempt, rows = _load_results(attempt_id)
        except Exception as e:
            return _finalize_failed(attempt_id, e, as_json=False)
        if attempt is None:
            return redirect(_catalog_url())
        if rows is None:
            return redirect(_take_url(attempt_id))
        kind = (request.args.get("filter") or "wrong").lower()
        if kind not in REVIEW_FILTERS:
            kind = "all"
        summary = result_summary(attempt)
        return _render("practice_results.html", _RESULTS_INLINE,
                       attempt=_attempt_json(attempt),
                       summary=summary,
                       time_text=format_duration(summary["time_taken_seconds"]),
                       review=filter_review(rows, kind),
                       counts=review_counts(rows),
                       active_filter=kind,
                       filters=REVIEW_FILTERS,
                       filter_url=lambda k: url_for(f"{bp.name}.results_view", attempt_id=attempt_id, filter=k),
                       options=OPTIONS,
                       rich=render_rich,
                       catalog_url=_catalog_url())

    @bp.get("/results/<attempt_id>/data")
    def results_data(attempt_id: str):
        if not _user_id():
            return jsonify({"ok": False, "error": "unauthorized"}), 401
        try:
            attempt, rows = _load_results(attempt_id)
        except Exception as e:
            return _finalize_failed(attempt_id, e, as_json=True)
        if attempt is None:
            return jsonify({"ok": False, "error": "attempt not found"}), 404
        if rows is None:
            return jsonify({"ok": False, "error": "attempt not completed",
                            "take_url": _take_url(attempt_id)}), 409
        kind = (request.args.get("filter") or "all").lower()
        if kind not in REVIEW_FILTERS:
            return jsonify({"ok": False, "error": f"unknown filter '{kind}'"}), 400
        ordered = [_review_json(r, i) for i, r in enumerate(rows)]
        return jsonify({
            "ok": True,
            "attempt": _attempt_json(attempt),
            "summary": result_summary(attempt),
            "counts": review_counts(rows),
            "filter": kind,
            "review": filter_review(ordered, kind),
        })

    return bp


# -----------------------------------------------------------------------------
# Inline fallbacks (used when templates/ does not ship a page)
# -----------------------------------------------------------------------------
_CATALOG_INLINE = """
<!doctype html><html><head><meta charset="utf-8"/><title>Practice Tests</title>
<meta name="viewport" content="width=device-width,initial-scale=1"/></head>
<body style="font-family:system-ui,sans-serif;margin:24px">
<h1>Practice Tests</h1>
{% if open_attempts %}
  <h2>In progress</h2>
  <ul>{% for a in open_attempts %}
    <li><a href="{{ take_url(a.id|string) }}">{{ a.title }}</a></li>
  {% endfor %}</ul>
{% endif %}
<ul>
{% for t in tests %}
  <li>
    <strong>{{ t.title }}</strong> &middot; {{ t.total_questions }} questions &middot;
    {{ t.duration_minutes }} min &middot; pass {{ t.passing_score }}%
    <form method="post" action="{{ start_url(t.id|string) }}" style="display:inline">
      <button type="submit">Start</button>
    </form>
  </li>
{% else %}
  <li>No practice tests yet.</li>
{% endfor %}
</ul>
</body></html>
"""

_TAKE_INLINE = """
<!doctype html><html><head><meta charset="utf-8"/><title>{{ attempt.title }}</title>
<meta name="viewport" content="width=device-width,initial-scale=1"/></head>
<body style="font-family:system-ui,sans-serif;margin:24px">
<h1>{{ attempt.title }}</h1>
<p>Time left: <strong id="clock" class="{{ band }}">{{ clock_text }}</strong>
 &middot; Answered {{ nav.answered_count }}/{{ nav.question_count }} ({{ nav.progress_percent }}%)</p>
<nav>{% for u in index_urls %}
  <a href="{{ u }}">{% if loop.index0 == nav.current_index %}[{{ loop.index }}]{% else %}{{ loop.index }}{% endif %}{% if answered_flags[loop.index0] %}*{% endif %}</a>
{% endfor %}</nav>
{% if question %}
<form id="q">
  <p><strong>Q{{ question.index + 1 }}.</strong> {{ question.question }}</p>
  {% for key, text in question.options.items() %}
    <label style="display:block"><input type="radio" name="opt" value="{{ key }}" {% if selected == key %}checked{% endif %}> {{ key }}. {{ text }}</label>
  {% endfor %}
</form>
{% endif %}
<p>
  {% if not nav.is_first %}<a href="{{ index_urls[nav.current_index - 1] }}">Previous</a>{% endif %}
  {% if not nav.is_last %}<a href="{{ index_urls[nav.current_index + 1] }}">Next</a>{% endif %}
  <button id="submit">Submit test</button>
</p>
<script>
(function(){
  var shownAt = {{ shown_at }};
  function post(url, body){
    return fetch(url, {method:'POST', headers:{'Content-Type':'application/json'}, body: JSON.stringify(body||{})})
      .then(function(r){ return r.json(); });
  }
  document.querySelectorAll('input[name=opt]').forEach(function(el){
    el.addEventListener('change', function(){
      post('{{ answer_url }}', {question_id: '{{ question.id if question else "" }}', selected_answer: el.value, shown_at: shownAt});
    });
  });
  var btn = document.getElementById('submit');
  btn.addEventListener('click', function(){
    btn.disabled = true;
    post('{{ submit_url }}').then(function(d){
      if (d.ok) { location.href = d.results_url; } else { alert(d.error || 'Submit failed'); btn.disabled = false; }
    }).catch(function(){ alert('Submit failed'); btn.disabled = false; });
  });
  var timer = setInterval(function(){
    fetch('{{ status_url }}').then(function(r){ return r.json(); }).then(function(d){
      if (!d.ok) return;
      document.getElementById('clock').textContent = d.clock;
      if (d.status === 'completed') { clearInterval(timer); location.href = d.results_url; }
    });
  }, 1000);
})();
</script>
</body></html>
"""

_RETRY_INLINE = """
<!doctype html><html><head><meta charset="utf-8"/><title>Submit failed</title>
<meta name="viewport" content="width=device-width,initial-scale=1"/></head>
<body style="font-family:system-ui,sans-serif;margin:24px">
<h1>Submit failed</h1>
<p>Time is up, but your test could not be submitted yet. Your saved answers are kept.</p>
<p><a href="{{ retry_url }}">Retry</a> &middot; <a href="{{ catalog_url }}">Back to practice tests</a></p>
</body></html>
"""

_RESULTS_INLINE = """
<!doctype html><html><head><meta charset="utf-8"/><title>Results &middot; {{ attempt.title }}</title>
<meta name="viewport" content="width=device-width,initial-scale=1"/></head>
<body style="font-family:system-ui,sans-serif;margin:24px">
<h1>{{ attempt.title }}</h1>
<p class="{{ summary.band }}"><strong>{{ summary.score }}%</strong>
  &middot; {% if summary.passed %}Passed{% else %}Not passed{% endif %} (pass mark {{ summary.passing_score }}%)</p>
<p>Correct {{ summary.correct }} &middot; Wrong {{ summary.wrong }} &middot; Unanswered {{ summary.unanswered }}
  &middot; Time {{ time_text }} &middot; {{ summary.efficiency }} correct/min</p>
<p>{% for f in filters %}
  <a href="{{ filter_url(f) }}">{% if f == active_filter %}<strong>{{ f }} ({{ counts[f] }})</strong>{% else %}{{ f }} ({{ counts[f] }}){% endif %}</a>
{% endfor %}</p>
{% for r in review %}
  <div style="border:1px solid #e5e7eb;border-radius:8px;padding:12px;margin:8px 0">
    <p>{{ r.question }}</p>
    <ul>{% for o in options %}
      {% set text = r['option_' ~ o|lower] %}
      <li>{{ o }}. {{ text }}{% if o == r.correct_answer %} &#10003;{% endif %}{% if o == r.selected_answer and o != r.correct_answer %} &#10007;{% endif %}</li>
    {% endfor %}</ul>
    {% if not r.selected_answer %}<p><em>Not answered</em></p>{% endif %}
    {% if r.explanation %}<div>{{ rich(r.explanation) }}</div>{% endif %}
  </div>
{% else %}
  <p>Nothing to show for this filter.</p>
{% endfor %}
<p><a href="{{ catalog_url }}">Back to practice tests</a></p>
</body></html>
"""
