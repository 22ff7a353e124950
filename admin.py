import os
from typing import Any, Dict, List, Optional

from flask import Blueprint, jsonify, abort, request, g

from practice_store import PracticeStore, is_uuid
from question_bank_loader import load_question_bank

# =========================
# Admin gating / constants
# =========================
AUTH_REQUIRED = os.getenv("AUTH_REQUIRED", "1").lower() in ("1", "true", "yes")
_ADMIN_EMAILS_RAW = os.getenv("ADMIN_EMAILS", "")
ADMIN_EMAILS = {
    e.strip().lower()
    for part in _ADMIN_EMAILS_RAW.split(";")
    for e in part.split(",")
    if e.strip()
}
ADMIN_ROLES = ("admin", "instructor")

DEFAULT_DURATION_MIN = int(os.getenv("PRACTICE_DEFAULT_DURATION_MIN") or 60)
DEFAULT_PASS_SCORE = float(os.getenv("PRACTICE_PASS_SCORE") or 40)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


# =========================
# Blueprint factory
# =========================
def create_admin_blueprint(
    url_prefix: str,
    deps: Dict[str, Any],
    name: str = "admin",
) -> Blueprint:
    """
    Admin blueprint for the practice-test question bank:
      • add / list / seed bank questions (quizzes)
      • build practice tests from picked or randomly drawn questions
      • activate / deactivate tests
    deps:
      - fetch_one(sql, params), fetch_all(sql, params)
      - execute(sql, params), execute_returning(sql, params)
      - store (optional PracticeStore)
      - admin_emails (optional set, defaults to ADMIN_EMAILS)
    """
    fetch_one = deps["fetch_one"]
    store: PracticeStore = deps.get("store") or PracticeStore(
        fetch_one, deps["fetch_all"], deps["execute"], deps["execute_returning"]
    )
    admin_emails = {e.lower() for e in (deps.get("admin_emails") or ADMIN_EMAILS)}
    load_bank = deps.get("load_question_bank") or load_question_bank

    mount_prefix = (url_prefix.rstrip("/") + "/admin") if url_prefix else "/admin"
    bp = Blueprint(name, __name__, url_prefix=mount_prefix)

    # ---------- Gate ----------
    def _user_role(email: str) -> Optional[str]:
        try:
            row = fetch_one("SELECT role FROM public.users WHERE lower(email) = lower(%s);", (email,))
        except Exception as e:
            print(f"[admin] role lookup failed for {email}: {e}")
            return None
        return (row or {}).get("role")

    def is_admin(email: Optional[str]) -> bool:
        email = (email or "").strip().lower()
        if not email:
            return False
        if email in admin_emails:
            return True
        return (_user_role(email) or "").lower() in ADMIN_ROLES

    def require_admin():
        email = getattr(g, "user_email", None)
        if not email:
            abort(401)
        if not is_admin(email):
            abort(403)

    bp.is_admin = is_admin

    @bp.before_request
    def _gate():
        if request.endpoint == f"{bp.name}.admin_whoami":
            return
        require_admin()
        try:
            store.ensure_schema()
        except Exception as e:
            print(f"[admin] ensure schema failed: {e}")

    # ---------- Diagnostics ----------
    @bp.get("/whoami")
    def admin_whoami():
        email = getattr(g, "user_email", None)
        return jsonify({
            "auth_required": AUTH_REQUIRED,
            "current_user_email": email,
            "is_admin": is_admin(email),
            "admin_emails_enforced": bool(admin_emails),
        })

    # ---------- Question bank ----------
    @bp.get("/quizzes")
    def list_quizzes():
        module_id = (request.args.get("module_id") or "").strip() or None
        rows = store.list_quizzes(module_id=module_id)
        return jsonify({"ok": True, "quizzes": [
            {"id": str(r["id"]), "module_id": r.get("module_id"),
             "question": r.get("question"), "correct_answer": r.get("correct_answer")}
            for r in rows
        ]})

    @bp.post("/quizzes")
    def add_quiz():
        data = request.get_json(silent=True) or request.form.to_dict()
        options = data.get("options") or {o: data.get(f"option_{o.lower()}") for o in "ABCD"}
        try:
            quiz_id = store.add_quiz(
                question=data.get("question") or "",
                options=options,
                correct_answer=data.get("correct_answer") or "",
                explanation=(data.get("explanation") or None),
                module_id=(data.get("module_id") or None),
            )
        except ValueError as e:
            return jsonify({"ok": False, "error": str(e)}), 400
        return jsonify({"ok": True, "id": quiz_id}), 201

    @bp.post("/quizzes/seed")
    def seed_quizzes():
        items = load_bank()
        added, existing, skipped = 0, 0, []
        for i, item in enumerate(items, start=1):
            try:
                _, created = store.add_quiz_if_missing(
                    question=item.get("question") or "",
                    options=item.get("options") or {},
                    correct_answer=item.get("correct_answer") or "",
                    explanation=item.get("explanation"),
                    module_id=item.get("module_id"),
                )
            except ValueError as e:
                skipped.append({"item": i, "error": str(e)})
                continue
            if created:
                added += 1
            else:
                existing += 1
        if skipped:
            print(f"[admin] seed skipped {len(skipped)} bank item(s)")
        return jsonify({"ok": True, "added": added, "existing": existing, "skipped": skipped})

    # ---------- Practice tests ----------
    @bp.get("/practice-tests")
    def list_practice_tests():
        rows = store.list_tests(active_only=False)
        return jsonify({"ok": True, "tests": [
            {"id": str(t["id"]), "title": t.get("title"),
             "duration_minutes": int(t.get("duration_minutes") or 0),
             "passing_score": float(t.get("passing_score") or 0),
             "total_questions": int(t.get("total_questions") or 0),
             "is_active": bool(t.get("is_active"))}
            for t in rows
        ]})

    @bp.post("/practice-tests")
    def create_practice_test():
        data = request.get_json(silent=True) or {}
        quiz_ids: List[str] = [str(q) for q in (data.get("quiz_ids") or [])]
        bad = [q for q in quiz_ids if not is_uuid(q)]
        if bad:
            return jsonify({"ok": False, "error": f"malformed quiz ids: {', '.join(bad)}"}), 400
        try:
            duration = int(data.get("duration_minutes") or DEFAULT_DURATION_MIN)
            passing = float(data.get("passing_score") if data.get("passing_score") is not None else DEFAULT_PASS_SCORE)
            count = int(data.get("count") or 0)
        except (TypeError, ValueError):
            return jsonify({"ok": False, "error": "duration_minutes, passing_score and count must be numbers"}), 400

        if not quiz_ids and count > 0:
            quiz_ids = store.random_quiz_ids(count, module_id=(data.get("module_id") or None))
            if len(quiz_ids) < count:
                return jsonify({"ok": False,
                                "error": f"question bank has only {len(quiz_ids)} question(s), {count} requested"}), 400
        try:
            test_id = store.create_test(
                title=data.get("title") or "",
                description=data.get("description"),
                duration_minutes=duration,
                passing_score=passing,
                quiz_ids=quiz_ids,
            )
        except ValueError as e:
            return jsonify({"ok": False, "error": str(e)}), 400
        print(f"[admin] practice test {test_id} created with {len(quiz_ids)} question(s)")
        return jsonify({"ok": True, "id": test_id, "total_questions": len(quiz_ids)}), 201

    @bp.post("/practice-tests/<test_id>/active")
    def set_practice_test_active(test_id: str):
        data = request.get_json(silent=True) or request.form.to_dict()
        active = _as_bool(data.get("active"))
        if not store.set_test_active(test_id, active):
            return jsonify({"ok": False, "error": "practice test not found"}), 404
        return jsonify({"ok": True, "id": test_id, "is_active": active})

    return bp
