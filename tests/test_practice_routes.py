import sys
from pathlib import Path

import pytest
from flask import Flask, g

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import practice  # noqa: E402
from practice import create_practice_blueprint  # noqa: E402
from recorder import AnswerOutbox  # noqa: E402


def _make_app(db, clock, user_id=1, **extra):
    app = Flask(__name__)
    app.testing = True
    bp = create_practice_blueprint("", dict(db.deps(), clock=clock, **extra))
    app.register_blueprint(bp)

    @app.before_request
    def _set_user():
        if user_id is not None:
            g.user_id = user_id
            g.user_email = "learner@example.com"

    return app, bp


@pytest.fixture
def setup(db, clock):
    q1, q2 = db.add_quiz("A", question="Which key copies?"), db.add_quiz("C", explanation="**C** is right")
    tid = db.add_test([q1, q2], duration_minutes=10, passing_score=40, title="RS-CIT Mock 1")
    app, bp = _make_app(db, clock)
    return app.test_client(), bp, tid, q1, q2


def _start(client, tid):
    resp = client.post(f"/practice-tests/{tid}/start", json={})
    assert resp.status_code == 200
    return resp.get_json()["attempt"]["id"]


def test_catalog_json_lists_active_tests(db, setup):
    client, _, tid, _, _ = setup
    db.add_test([db.add_quiz("B")], title="Hidden", is_active=False)
    data = client.get("/practice-tests/?format=json").get_json()
    assert data["ok"] is True
    assert [t["id"] for t in data["tests"]] == [tid]
    assert data["tests"][0]["total_questions"] == 2


def test_start_resumes_open_attempt(setup):
    client, _, tid, _, _ = setup
    first = _start(client, tid)
    assert _start(client, tid) == first


def test_start_unknown_test_returns_404(setup):
    client, _, _, _, _ = setup
    resp = client.post("/practice-tests/00000000-0000-0000-0000-000000000000/start", json={})
    assert resp.status_code == 404


def test_state_hides_correct_answers(setup):
    client, _, tid, q1, _ = setup
    aid = _start(client, tid)
    client.post(f"/practice-tests/take/{aid}/answer", json={"question_id": q1, "selected_answer": "b"})
    data = client.get(f"/practice-tests/take/{aid}/state").get_json()
    assert data["remaining_seconds"] == 600
    assert all("correct_answer" not in q for q in data["questions"])
    assert data["answers"][q1]["selected_answer"] == "B"


def test_answer_then_submit(db, clock, setup):
    client, _, tid, q1, q2 = setup
    aid = _start(client, tid)
    clock.advance(seconds=30)
    resp = client.post(f"/practice-tests/take/{aid}/answer",
                       json={"question_id": q1, "selected_answer": "A", "time_spent_seconds": 12})
    assert resp.get_json() == {"ok": True, "saved": True, "queued": False, "time_spent_seconds": 12}
    client.post(f"/practice-tests/take/{aid}/answer", json={"question_id": q2, "selected_answer": "B"})
    clock.advance(seconds=30)

    first = client.post(f"/practice-tests/take/{aid}/submit", json={}).get_json()
    assert first["ok"] is True
    assert first["summary"]["score"] == 50.0
    assert first["summary"]["passed"] is True
    assert first["summary"]["time_taken_seconds"] == 60
    assert first["results_url"].endswith(f"/practice-tests/results/{aid}")

    clock.advance(seconds=30)
    again = client.post(f"/practice-tests/take/{aid}/submit", json={}).get_json()
    assert again["attempt"]["completed_at"] == first["attempt"]["completed_at"]


def test_answer_time_from_shown_at(clock, setup):
    client, _, tid, q1, _ = setup
    aid = _start(client, tid)
    shown = clock().timestamp()
    clock.advance(seconds=42)
    resp = client.post(f"/practice-tests/take/{aid}/answer",
                       json={"question_id": q1, "selected_answer": "A", "shown_at": shown})
    assert resp.get_json()["time_spent_seconds"] == 42


def test_answer_validation(setup):
    client, _, tid, q1, _ = setup
    aid = _start(client, tid)
    bad_q = client.post(f"/practice-tests/take/{aid}/answer", json={"question_id": "nope", "selected_answer": "A"})
    assert bad_q.status_code == 400
    bad_opt = client.post(f"/practice-tests/take/{aid}/answer", json={"question_id": q1, "selected_answer": "E"})
    assert bad_opt.status_code == 400


def test_answer_after_completion_conflicts(setup):
    client, _, tid, q1, _ = setup
    aid = _start(client, tid)
    client.post(f"/practice-tests/take/{aid}/submit", json={})
    resp = client.post(f"/practice-tests/take/{aid}/answer", json={"question_id": q1, "selected_answer": "A"})
    assert resp.status_code == 409
    assert resp.get_json()["ok"] is False


def test_failed_answer_is_queued_and_lands_on_submit(db, clock, setup):
    _, _, tid, q1, _ = setup
    ticks = [100.0]
    app, bp = _make_app(db, clock, outbox=AnswerOutbox(clock=lambda: ticks[0]))
    client = app.test_client()
    aid = _start(client, tid)
    db.fail_upserts = 1
    resp = client.post(f"/practice-tests/take/{aid}/answer", json={"question_id": q1, "selected_answer": "A"})
    assert resp.status_code == 200
    assert resp.get_json()["saved"] is False
    assert resp.get_json()["queued"] is True

    # not due yet: the first retry waits base_delay
    status = client.get(f"/practice-tests/take/{aid}/status").get_json()
    assert status["queued_answers"] == 1
    assert db.responses == {}

    done = client.post(f"/practice-tests/take/{aid}/submit", json={}).get_json()
    assert done["summary"]["correct"] == 1
    assert bp.recorder.outbox.pending() == []


def test_status_forces_submit_at_zero(db, clock, setup):
    client, _, tid, q1, _ = setup
    aid = _start(client, tid)
    client.post(f"/practice-tests/take/{aid}/answer", json={"question_id": q1, "selected_answer": "D"})

    clock.advance(minutes=9, seconds=55)
    running = client.get(f"/practice-tests/take/{aid}/status").get_json()
    assert running["status"] == "in_progress"
    assert running["remaining_seconds"] == 5
    assert running["clock"] == "0:05"
    assert running["band"] == "danger"

    clock.advance(seconds=5)
    done = client.get(f"/practice-tests/take/{aid}/status").get_json()
    assert done["status"] == "completed"
    assert done["remaining_seconds"] == 0
    attempt = db.attempts[aid]
    assert attempt["completion_reason"] == "timeout"
    assert attempt["wrong_count"] == 1
    assert attempt["unanswered_count"] == 1


def test_submit_failure_is_retryable(db, setup):
    client, _, tid, _, _ = setup
    aid = _start(client, tid)
    db.fail_finalize = True
    resp = client.post(f"/practice-tests/take/{aid}/submit", json={})
    assert resp.status_code == 500
    assert resp.get_json() == {"ok": False, "error": "submit failed, please retry", "retry": True}
    assert db.attempts[aid]["status"] == "in_progress"

    db.fail_finalize = False
    resp = client.post(f"/practice-tests/take/{aid}/submit", json={})
    assert resp.status_code == 200
    assert db.attempts[aid]["status"] == "completed"


def test_results_gated_until_completed(setup):
    client, _, tid, _, _ = setup
    aid = _start(client, tid)
    data = client.get(f"/practice-tests/results/{aid}/data")
    assert data.status_code == 409
    assert data.get_json()["take_url"].endswith(f"/practice-tests/take/{aid}")

    page = client.get(f"/practice-tests/results/{aid}")
    assert page.status_code == 302
    assert page.headers["Location"].endswith(f"/practice-tests/take/{aid}")


def test_results_data_filters(setup):
    client, _, tid, q1, q2 = setup
    aid = _start(client, tid)
    client.post(f"/practice-tests/take/{aid}/answer", json={"question_id": q1, "selected_answer": "B"})
    client.post(f"/practice-tests/take/{aid}/submit", json={})

    data = client.get(f"/practice-tests/results/{aid}/data").get_json()
    assert data["counts"] == {"all": 2, "correct": 0, "wrong": 1, "unanswered": 1}
    assert [r["question_id"] for r in data["review"]] == [q1, q2]
    assert data["review"][0]["correct_answer"] == "A"

    wrong = client.get(f"/practice-tests/results/{aid}/data?filter=wrong").get_json()
    assert [r["question_id"] for r in wrong["review"]] == [q1]
    unanswered = client.get(f"/practice-tests/results/{aid}/data?filter=unanswered").get_json()
    assert [r["question_id"] for r in unanswered["review"]] == [q2]

    assert client.get(f"/practice-tests/results/{aid}/data?filter=maybe").status_code == 400


def test_results_page_defaults_to_wrong_filter(monkeypatch, setup):
    client, _, tid, q1, _ = setup
    captured = {}

    def fake_render(template_name, **context):
        captured.update(context, template=template_name)
        return template_name

    monkeypatch.setattr(practice, "render_template", fake_render)
    aid = _start(client, tid)
    client.post(f"/practice-tests/take/{aid}/answer", json={"question_id": q1, "selected_answer": "A"})
    client.post(f"/practice-tests/take/{aid}/submit", json={})

    assert client.get(f"/practice-tests/results/{aid}").status_code == 200
    assert captured["template"] == "practice_results.html"
    assert captured["active_filter"] == "wrong"
    assert captured["review"] == []

    client.get(f"/practice-tests/results/{aid}?filter=whatever")
    assert captured["active_filter"] == "all"
    assert len(captured["review"]) == 2


def test_results_page_renders_inline_fallback(setup):
    client, _, tid, _, q2 = setup
    aid = _start(client, tid)
    client.post(f"/practice-tests/take/{aid}/answer", json={"question_id": q2, "selected_answer": "A"})
    client.post(f"/practice-tests/take/{aid}/submit", json={})
    body = client.get(f"/practice-tests/results/{aid}?filter=all").get_data(as_text=True)
    assert "RS-CIT Mock 1" in body
    assert "<strong>C</strong> is right" in body


def test_take_view(setup):
    client, _, tid, _, _ = setup
    aid = _start(client, tid)
    page = client.get(f"/practice-tests/take/{aid}?q=0")
    assert page.status_code == 200
    assert "Which key copies?" in page.get_data(as_text=True)

    # out-of-range index keeps the first question
    assert "Which key copies?" in client.get(f"/practice-tests/take/{aid}?q=10").get_data(as_text=True)

    client.post(f"/practice-tests/take/{aid}/submit", json={})
    done = client.get(f"/practice-tests/take/{aid}")
    assert done.status_code == 302
    assert done.headers["Location"].endswith(f"/practice-tests/results/{aid}")


def test_attempts_are_private(db, clock, setup):
    client, _, tid, _, _ = setup
    aid = _start(client, tid)
    other_app, _ = _make_app(db, clock, user_id=2)
    other = other_app.test_client()
    assert other.get(f"/practice-tests/take/{aid}/status").status_code == 404
    assert other.post(f"/practice-tests/take/{aid}/submit", json={}).status_code == 404


def test_anonymous_requests_are_rejected(db, clock):
    app, _ = _make_app(db, clock, user_id=None)
    client = app.test_client()
    assert client.get("/practice-tests/stats").status_code == 401
    resp = client.get("/practice-tests/")
    assert resp.status_code == 302


def test_stats(setup):
    client, _, tid, q1, _ = setup
    aid = _start(client, tid)
    client.post(f"/practice-tests/take/{aid}/answer", json={"question_id": q1, "selected_answer": "A"})
    client.post(f"/practice-tests/take/{aid}/submit", json={})
    stats = client.get("/practice-tests/stats").get_json()["stats"]
    assert stats["completed_tests"] == 1
    assert stats["average_score"] == 50.0


def test_parked_answer_lands_before_stale_attempt_is_closed(db, clock, setup):
    client, bp, tid, q1, _ = setup
    old = _start(client, tid)
    db.fail_upserts = 1
    queued = client.post(f"/practice-tests/take/{old}/answer", json={"question_id": q1, "selected_answer": "A"})
    assert queued.get_json()["queued"] is True

    clock.advance(minutes=11)
    fresh = _start(client, tid)
    assert fresh != old
    attempt = db.attempts[old]
    assert attempt["completion_reason"] == "expired"
    assert (attempt["correct_count"], attempt["unanswered_count"]) == (1, 1)
    assert bp.recorder.outbox.pending(old) == []


def test_expiry_submit_failure_degrades(db, clock, setup):
    client, _, tid, _, _ = setup
    aid = _start(client, tid)
    clock.advance(minutes=11)
    db.fail_finalize = True

    page = client.get(f"/practice-tests/take/{aid}")
    assert page.status_code == 500
    assert "Submit failed" in page.get_data(as_text=True)
    assert client.get(f"/practice-tests/results/{aid}").status_code == 500

    retry = {"ok": False, "error": "submit failed, please retry", "retry": True}
    for resp in (client.get(f"/practice-tests/results/{aid}/data"),
                 client.get(f"/practice-tests/take/{aid}/state"),
                 client.get(f"/practice-tests/take/{aid}/status"),
                 client.post(f"/practice-tests/take/{aid}/answer", json={"selected_answer": "A"})):
        assert resp.status_code == 500
        assert resp.get_json() == retry

    catalog = client.get("/practice-tests/?format=json")
    assert catalog.status_code == 200
    assert catalog.get_json()["open_attempts"] == []
    assert db.attempts[aid]["status"] == "in_progress"

    db.fail_finalize = False
    done = client.get(f"/practice-tests/take/{aid}")
    assert done.status_code == 302
    assert done.headers["Location"].endswith(f"/practice-tests/results/{aid}")


@pytest.mark.parametrize("path", [
    "/practice-tests/take/abc/state",
    "/practice-tests/take/abc/status",
    "/practice-tests/results/abc/data",
])
def test_malformed_attempt_id_is_not_found(setup, path):
    client = setup[0]
    resp = client.get(path)
    assert resp.status_code == 404
    assert resp.get_json()["ok"] is False


def test_malformed_ids_fall_back_to_catalog(setup):
    client = setup[0]
    for path in ("/practice-tests/take/abc", "/practice-tests/results/abc"):
        resp = client.get(path)
        assert resp.status_code == 302
        assert resp.headers["Location"].endswith("/practice-tests/")
    assert client.post("/practice-tests/abc/start", json={}).status_code == 404
    assert client.post("/practice-tests/take/abc/submit", json={}).status_code == 404
    assert client.post("/practice-tests/take/abc/answer", json={}).status_code == 404
