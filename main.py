# main.py: practice-test portal shell, login-ready, BASE_PATH-aware (psycopg3 + pooling)
# Wires the practice engine, the question-bank admin and the profile page onto one app.

import os
from contextlib import contextmanager
from urllib.parse import urlparse, parse_qs, unquote, quote, urlsplit, urlunsplit
from typing import Optional

import click
from flask import (
    Flask, abort, request, redirect, jsonify, url_for, g, session, flash,
    render_template, render_template_string,
)
from jinja2 import TemplateNotFound

# Database (psycopg 3)
from psycopg_pool import ConnectionPool
from psycopg.rows import dict_row

# OAuth (Google via Authlib)
from authlib.integrations.flask_client import OAuth

from admin import create_admin_blueprint
from attempt_timer import format_duration
from practice import create_practice_blueprint
from practice_store import PracticeStore
from learner_profile import create_profile_blueprint
from rich_text import render_rich

# =============================================================================
# BASE_PATH & Flask app
# =============================================================================
BASE_PATH = (os.getenv("BASE_PATH", "") or "").rstrip("/")
STATIC_URL_PATH = (BASE_PATH + "/static") if BASE_PATH else "/static"

app = Flask(
    __name__,
    static_folder="static",
    static_url_path=STATIC_URL_PATH,
    template_folder="templates",
)
app.url_map.strict_slashes = False
app.secret_key = os.getenv("SECRET_KEY", "dev-secret")
app.config.update(
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=os.getenv("SESSION_COOKIE_SECURE", "1").lower() in {"1", "true", "yes"},
)

# =============================================================================
# Auth mode
# =============================================================================
AUTH_REQUIRED = os.getenv("AUTH_REQUIRED", "1").lower() in {"1", "true", "yes"}

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
OAUTH_REDIRECT_BASE = (os.getenv("OAUTH_REDIRECT_BASE", "") or "").rstrip("/")

oauth: Optional[OAuth] = None
if GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET:
    oauth = OAuth(app)
    oauth.register(
        "google",
        client_id=GOOGLE_CLIENT_ID,
        client_secret=GOOGLE_CLIENT_SECRET,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )

def _require_oauth() -> OAuth:
    if oauth is None:
        abort(503, description="Google OAuth is not configured.")
    return oauth

def _bp(path: str = "") -> str:
    """Prefix a path with BASE_PATH (if set)."""
    p = path or "/"
    if not p.startswith("/"):
        p = "/" + p
    if BASE_PATH and (p == BASE_PATH or p.startswith(BASE_PATH + "/")):
        return p
    return (BASE_PATH + p) if BASE_PATH else p

def _oauth_callback_url() -> str:
    """
    Build the external callback URL:
    - If OAUTH_REDIRECT_BASE is a full callback, use it as-is.
    - Else treat it as a base and append '/auth/google/callback'.
    - If empty, derive from request.url_root + BASE_PATH.
    """
    base = OAUTH_REDIRECT_BASE or (request.url_root.rstrip("/") + (BASE_PATH or ""))
    if base.endswith("/auth/callback") or base.endswith("/auth/google/callback"):
        return base
    return base.rstrip("/") + "/auth/google/callback"

SIMPLE_LOGIN_PASSWORD = os.getenv("SIMPLE_LOGIN_PASSWORD", "")
SIMPLE_LOGIN_USER_EMAIL = os.getenv("SIMPLE_LOGIN_USER_EMAIL") or "practice-user@example.com"
_enable_password_login_env = os.getenv("ENABLE_PASSWORD_LOGIN")
if _enable_password_login_env is not None:
    ENABLE_PASSWORD_LOGIN = _enable_password_login_env.lower() in {"1", "true", "yes"}
else:
    ENABLE_PASSWORD_LOGIN = not (GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)
PASSWORD_LOGIN_ENABLED = ENABLE_PASSWORD_LOGIN or oauth is None

if AUTH_REQUIRED:
    if PASSWORD_LOGIN_ENABLED:
        if oauth is None:
            print("[Auth] Google OAuth not configured; falling back to single-password login.", flush=True)
        else:
            print("[Auth] Password login enabled; Google OAuth will be bypassed.", flush=True)
    elif oauth is not None:
        print("[Auth] Google OAuth configured; password login disabled by default.", flush=True)

# =============================================================================
# DB configuration
# =============================================================================
DB_USER = os.getenv("DB_USER")
DB_PASS = os.getenv("DB_PASS") or os.getenv("DB_PASSWORD")  # support either name
DB_NAME = os.getenv("DB_NAME")

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_URL_LOCAL = os.getenv("DATABASE_URL_LOCAL")
DB_HOST_OVERRIDE = os.getenv("DB_HOST")
DB_PORT_OVERRIDE = os.getenv("DB_PORT")
DB_POOL_MAX = int(os.getenv("DB_POOL_MAX") or 6)

def _log_choice(kwargs: dict, origin: str):
    host = kwargs.get("host", "localhost")
    port = kwargs.get("port", 5432)
    print(f"[DB] {origin}: {host}:{port}")

def _parse_database_url(url: str) -> dict:
    if not url:
        raise ValueError("Empty DATABASE_URL")
    # SQLAlchemy-style schemes are accepted for convenience
    for pref in ("postgresql+psycopg://", "postgres+psycopg://",
                 "postgresql+psycopg2://", "postgres+psycopg2://"):
        if url.startswith(pref):
            url = "postgresql://" + url.split("://", 1)[1]
            break

    p = urlparse(url)
    if p.scheme not in ("postgresql", "postgres"):
        raise ValueError(f"Unsupported scheme '{p.scheme}'")
    qs = parse_qs(p.query or "", keep_blank_values=True)
    host = p.hostname
    if "host" in qs and qs["host"]:
        host = qs["host"][0]
    dbname = (p.path or "").lstrip("/")
    if not dbname:
        if "dbname" in qs and qs["dbname"]:
            dbname = qs["dbname"][0]
        else:
            raise ValueError("DATABASE_URL missing dbname")
    kwargs = {
        "dbname": dbname,
        "user": unquote(p.username or ""),
        "password": unquote(p.password or ""),
        "connect_timeout": 10,
        "options": "-c search_path=public",
    }
    if host:
        kwargs["host"] = host
    if p.port and not (isinstance(host, str) and host.startswith("/")):
        kwargs["port"] = p.port
    if "sslmode" in qs and qs["sslmode"]:
        kwargs["sslmode"] = qs["sslmode"][0]
    return kwargs

def _tcp_kwargs() -> dict:
    if not all([DB_NAME, DB_USER, DB_PASS]):
        raise RuntimeError("Set DATABASE_URL, or DB_NAME, DB_USER and DB_PASS.")
    return {
        "host": DB_HOST_OVERRIDE or "127.0.0.1",
        "port": int(DB_PORT_OVERRIDE or "5432"),
        "dbname": DB_NAME,
        "user": DB_USER,
        "password": DB_PASS,
        "sslmode": "disable",
        "connect_timeout": 10,
        "options": "-c search_path=public",
    }

def _connection_kwargs() -> dict:
    for name, url in (("DATABASE_URL_LOCAL", DATABASE_URL_LOCAL), ("DATABASE_URL", DATABASE_URL)):
        if not url:
            continue
        try:
            kwargs = _parse_database_url(url)
            _log_choice(kwargs, f"Using {name}")
            return kwargs
        except Exception as e:
            print(f"[DB] Ignoring {name}: {e}")

    kwargs = _tcp_kwargs(); _log_choice(kwargs, "DB_* settings"); return kwargs

# =============================================================================
# psycopg3 Connection Pool + helpers
# =============================================================================
_pg_pool: Optional[ConnectionPool] = None

def _to_conninfo(kwargs: dict) -> str:
    parts = []
    for k, v in kwargs.items():
        if v is None:
            continue
        s = str(v)
        if any(ch.isspace() for ch in s) or "'" in s or '"' in s:
            s = "'" + s.replace("'", r"\'") + "'"
        parts.append(f"{k}={s}")
    return " ".join(parts)

def init_pool():
    global _pg_pool
    if _pg_pool is not None:
        return
    conninfo = _to_conninfo(_connection_kwargs())
    _pg_pool = ConnectionPool(conninfo=conninfo, min_size=1, max_size=DB_POOL_MAX)

@contextmanager
def get_conn():
    if _pg_pool is None:
        init_pool()
    with _pg_pool.connection() as conn:
        yield conn

def fetch_all(q, params=None):
    with get_conn() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(q, params or ())
            return cur.fetchall()

def fetch_one(q, params=None):
    rows = fetch_all(q, params)
    return rows[0] if rows else None

def execute(q, params=None):
    with get_conn() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(q, params or ())
        conn.commit()

def execute_returning(q, params=None):
    with get_conn() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(q, params or ())
            rows = cur.fetchall()
        conn.commit()
        return rows

# =============================================================================
# Rendering helpers
# =============================================================================
app.jinja_env.filters["rich"] = render_rich
app.jinja_env.filters["duration"] = format_duration

@app.context_processor
def inject_user_and_base():
    return {
        "current_user_email": getattr(g, "user_email", None),
        "base_path": BASE_PATH,
        "bp": _bp,
    }

# =============================================================================
# Identity helpers
# =============================================================================
_USERS_SQL = """
    CREATE TABLE IF NOT EXISTS public.users (
      id          BIGSERIAL PRIMARY KEY,
      email       TEXT NOT NULL UNIQUE,
      full_name   TEXT,
      role        TEXT NOT NULL DEFAULT 'learner',
      created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
    );
"""
_users_ready = False

def _session_email() -> Optional[str]:
    u = session.get("user") or {}
    e = (u.get("email") or "").strip().lower()
    return e or None

def current_user_email() -> Optional[str]:
    return _session_email()

def ensure_user_row(email: str) -> int:
    global _users_ready
    if not _users_ready:
        execute(_USERS_SQL)
        _users_ready = True
    row = fetch_one("SELECT id FROM public.users WHERE email = %s;", (email,))
    if row:
        return row["id"]
    display = email.split("@", 1)[0].replace(".", " ").title()
    rows = execute_returning("""
        INSERT INTO public.users (email, full_name, role)
        VALUES (%s, %s, 'learner')
        ON CONFLICT (email) DO UPDATE SET full_name = EXCLUDED.full_name
        RETURNING id;
    """, (email, display))
    return rows[0]["id"]

# =============================================================================
# Routes (auth, health)
# =============================================================================
@app.get("/healthz")
def healthz():
    try:
        row = fetch_one("SELECT 1 AS ok;")
        ok = bool(row and row.get("ok") == 1)
        return ("ok" if ok else "db-fail", 200 if ok else 500)
    except Exception as e:
        return (f"error: {e}", 500)

@app.get("/favicon.ico")
def favicon():
    return ("", 204)

@app.get("/")
def index():
    return redirect(url_for("practice.catalog"))

def _sanitize_next(next_url: Optional[str]) -> str:
    if not next_url:
        return _bp("/")
    parts = urlsplit(next_url)
    if parts.scheme or parts.netloc:
        return _bp("/")
    path = parts.path or "/"
    blocked_prefixes = {_bp("/login"), _bp("/auth"), "/login", "/auth"}
    if any(path == p or path.startswith(p + "/") for p in blocked_prefixes):
        return _bp("/")
    safe = urlunsplit(("", "", path, parts.query, ""))
    return safe or _bp("/")

_LOGIN_INLINE = """
<!doctype html><html><head><meta charset="utf-8"/><title>Sign in</title>
<meta name="viewport" content="width=device-width,initial-scale=1"/></head>
<body style="font-family:system-ui,sans-serif;margin:2rem">
<h1>Sign in</h1>
{% if error %}<p style="color:#b00">{{ error }}</p>{% endif %}
<form method="post">
  <input type="hidden" name="next" value="{{ next_url }}"/>
  <input type="password" name="password" placeholder="Password" autofocus/>
  <button type="submit">Continue</button>
</form>
</body></html>
"""

@app.route("/login", methods=["GET", "POST"])
def login():
    if PASSWORD_LOGIN_ENABLED:
        source = request.form if request.method == "POST" else request.args
        next_url = _sanitize_next(source.get("next") or session.get("login_next"))
        session["login_next"] = next_url

        error = None
        if request.method == "POST":
            password = (request.form.get("password") or "").strip()
            if SIMPLE_LOGIN_PASSWORD and password == SIMPLE_LOGIN_PASSWORD:
                email = SIMPLE_LOGIN_USER_EMAIL.strip().lower()
                session["user"] = {
                    "email": email,
                    "name": "Practice User",
                    "picture": None,
                    "sub": "password-login",
                }
                try:
                    ensure_user_row(email)
                except Exception as e:
                    print(f"[Auth] ensure_user_row failed for {email}: {e}")
                return redirect(_sanitize_next(session.pop("login_next", None)))
            error = "Incorrect password. Please try again."

        context = {"next_url": next_url, "error": error, "base_path": BASE_PATH}
        try:
            return render_template("password_login.html", **context)
        except TemplateNotFound:
            return render_template_string(_LOGIN_INLINE, **context)

    provider = _require_oauth()
    session["login_next"] = _sanitize_next(request.args.get("next"))
    return provider.google.authorize_redirect(_oauth_callback_url())

@app.get("/logout")
def logout():
    session.clear()
    flash("Signed out.", "success")
    return redirect(_bp("/"))

@app.get("/auth/callback")
@app.get("/auth/google/callback")
def auth_callback():
    provider = _require_oauth()
    token = provider.google.authorize_access_token()

    # Prefer ID token; fallback to userinfo
    claims = None
    try:
        claims = provider.google.parse_id_token(token)
    except Exception:
        claims = None
    if not claims:
        try:
            meta = provider.google.load_server_metadata() or {}
        except Exception:
            meta = {}
        userinfo_url = meta.get("userinfo_endpoint") or "https://openidconnect.googleapis.com/v1/userinfo"
        claims = provider.google.get(userinfo_url).json()

    email = (claims.get("email") or "").strip().lower()
    if not email:
        abort(400, description="Google authentication failed (no email).")

    session["user"] = {
        "email": email,
        "name": claims.get("name"),
        "picture": claims.get("picture"),
        "sub": claims.get("sub"),
    }
    try:
        ensure_user_row(email)
    except Exception as e:
        print(f"[Auth] ensure_user_row failed for {email}: {e}")

    return redirect(_sanitize_next(session.pop("login_next", None)))

# --- Register the SAME routes under BASE_PATH aliases ---
if BASE_PATH:
    app.add_url_rule(f"{BASE_PATH}/", endpoint="index_bp", view_func=index, methods=["GET"])
    app.add_url_rule(f"{BASE_PATH}/healthz", endpoint="healthz_bp", view_func=healthz, methods=["GET"])
    app.add_url_rule(f"{BASE_PATH}/login", endpoint="login_bp", view_func=login, methods=["GET", "POST"])
    app.add_url_rule(f"{BASE_PATH}/logout", endpoint="logout_bp", view_func=logout, methods=["GET"])
    app.add_url_rule(f"{BASE_PATH}/auth/callback", endpoint="auth_callback_bp", view_func=auth_callback, methods=["GET"])
    app.add_url_rule(f"{BASE_PATH}/auth/google/callback", endpoint="auth_callback_google_bp", view_func=auth_callback, methods=["GET"])

def _is_public_path(path: str) -> bool:
    if path.startswith(STATIC_URL_PATH):
        return True
    public_exact = set()
    for p in ("/", "/favicon.ico", "/healthz", "/login", "/logout",
              "/auth/callback", "/auth/google/callback", "/admin/whoami"):
        public_exact.update({p, _bp(p)})
    return path in public_exact

def _wants_json_response() -> bool:
    if request.is_json or (request.args.get("format") or "").lower() == "json":
        return True
    best = request.accept_mimetypes.best_match(["application/json", "text/html"])
    return best == "application/json" and request.accept_mimetypes[best] > request.accept_mimetypes["text/html"]

@app.before_request
def enforce_or_attach_identity():
    path = request.path
    email = current_user_email()
    if email:
        g.user_email = email
        try:
            g.user_id = ensure_user_row(email)
        except Exception as e:
            print(f"[Auth] ensure_user_row failed for {email}: {e}")
        return
    if _is_public_path(path) or not AUTH_REQUIRED:
        return
    if _wants_json_response() or request.method != "GET":
        return jsonify({"ok": False, "error": "unauthorized"}), 401
    full = request.full_path if request.query_string else request.path
    next_url = _sanitize_next(full)
    return redirect(f"{_bp('/login')}?next={quote(next_url, safe='/:?&=')}")

# =============================================================================
# Blueprints
# =============================================================================
_store = PracticeStore(fetch_one, fetch_all, execute, execute_returning)
_deps = {
    "fetch_one": fetch_one,
    "fetch_all": fetch_all,
    "execute": execute,
    "execute_returning": execute_returning,
    "store": _store,
}
app.register_blueprint(create_practice_blueprint(BASE_PATH, _deps, name="practice"))

app.register_blueprint(create_admin_blueprint("", _deps, name="admin"))
if BASE_PATH:
    app.register_blueprint(create_admin_blueprint(BASE_PATH, _deps, name="admin_alias"))

app.register_blueprint(create_profile_blueprint(_deps))  # handles its own BASE_PATH aliasing

# =============================================================================
# CLI
# =============================================================================
@app.cli.command("sweep-attempts")
def sweep_attempts():
    """Finalize every in-progress attempt whose time has run out."""
    _store.ensure_schema()
    closed = _store.sweep_expired()
    click.echo(f"[practice] sweep closed {closed} expired attempt(s)")

# =============================================================================
# Local dev entry
# =============================================================================
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=True)
