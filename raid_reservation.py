"""
Raid Reservation (Flask, SQLite, single file)
- Viewer flow: pick a raid, enter today's access code, submit a sign-up form
- Operator panel under a secret path: set codes, confirm, comment, delete
- Minimal UI (Bootstrap CDN)

How to run:
  pip install -e .
  export ADMIN_KEY="change-me" ADMIN_PATH="ops_9f3k2" FLASK_SECRET="change-me"
  python raid_reservation.py
Then open http://127.0.0.1:3000 (operator panel at /<ADMIN_PATH>)
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import secrets
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Optional

from flask import (
    Blueprint,
    Flask,
    current_app,
    flash,
    g,
    jsonify,
    redirect,
    render_template_string,
    request,
    session,
    url_for,
)
from jinja2 import DictLoader
from werkzeug.exceptions import InternalServerError
from werkzeug.security import check_password_hash, generate_password_hash

APP_TITLE = "Devonvale Raid Reservation"

# same name Flask gives app.logger, also when run as a script
logger = logging.getLogger("raid_reservation")

RAID_OPTIONS = (
    ("dirige", "Dirige"),
    ("dirige-hard", "Dirige (Hard)"),
    ("inhwagongjeon", "Inhwa Gongjeon"),
    ("narbel", "Artificial God: Narbel"),
    ("narbel-hard", "Narbel (Hard)"),
)

GRADE_OPTIONS = (
    ("burning", "Burning Cheese"),
    ("pink", "Pink Cheese"),
    ("yellow", "Yellow Cheese"),
    ("normal", "Normal"),
)

# lower sorts first; anything unknown goes last
GRADE_PRIORITY = {"burning": 1, "pink": 2, "yellow": 3, "normal": 4}
UNKNOWN_GRADE_PRIORITY = 99

RAIDS = dict(RAID_OPTIONS)
GRADES = dict(GRADE_OPTIONS)

COUNT_MAX = 999
COMMENT_MAX = 200
SORT_MODES = ("time", "grade")

ACCESS_TTL = timedelta(hours=24)
ADMIN_TTL = timedelta(days=7)

# ---------------------------- Config ---------------------------- #

@dataclass(frozen=True)
class Config:
    admin_key: str = ""
    admin_path: str = ""
    port: int = 3000
    db_path: str = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data.db")
    secret_key: str = ""
    tz_offset_hours: int = 9
    cookie_secure: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ=None) -> "Config":
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            admin_key=env.get("ADMIN_KEY", "").strip(),
            admin_path=env.get("ADMIN_PATH", "").strip().strip("/"),
            port=int(env.get("PORT", defaults.port)),
            db_path=env.get("DB_PATH", defaults.db_path),
            secret_key=env.get("FLASK_SECRET", "") or secrets.token_hex(16),
            tz_offset_hours=int(env.get("TZ_OFFSET_HOURS", defaults.tz_offset_hours)),
            cookie_secure=env.get("COOKIE_SECURE", "0") == "1",
            log_level=env.get("LOG_LEVEL", defaults.log_level),
        )

    @property
    def admin_base(self) -> Optional[str]:
        """URL prefix of the operator panel, or None when it must not be mounted."""
        if not self.admin_path or self.admin_path.split("/")[0] == "admin":
            return None
        return "/" + self.admin_path


def configure_logging(log_level: str = "INFO"):
    logging.basicConfig(
        level=log_level.upper(),
        datefmt="%Y-%m-%dT%H:%M:%S",
        format="[%(asctime)s] %(name)s %(levelname)s %(message)s",
    )
    logger.setLevel(logging.getLevelName(log_level.upper()))
    return logger

# ---------------------------- Errors ---------------------------- #

class ReservationError(Exception):
    pass


class ValidationError(ReservationError):
    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class AuthError(ReservationError):
    def __init__(self, message: str = "Incorrect key."):
        super().__init__(message)
        self.message = message

# ---------------------------- DB Helpers ---------------------------- #

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS applications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date_kst TEXT NOT NULL,
    raid_key TEXT NOT NULL,
    viewer_grade TEXT NOT NULL,
    nickname TEXT NOT NULL,
    group_name TEXT NOT NULL,
    dealer_count INTEGER NOT NULL,
    buffer_count INTEGER NOT NULL,
    confirmed INTEGER NOT NULL DEFAULT 0,
    comment TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_applications_date_raid
ON applications(date_kst, raid_key);

CREATE TABLE IF NOT EXISTS day_codes (
    date_kst TEXT NOT NULL,
    raid_key TEXT NOT NULL,
    code_hash TEXT NOT NULL,
    PRIMARY KEY (date_kst, raid_key)
);
"""


def connect(db_path: str) -> sqlite3.Connection:
    db = sqlite3.connect(db_path)
    db.row_factory = sqlite3.Row
    return db


def init_db(db: sqlite3.Connection):
    db.executescript(SCHEMA_SQL)
    db.commit()


def get_config() -> Config:
    return current_app.config["RAID_CONFIG"]


def get_db():
    if "db" not in g:
        g.db = connect(get_config().db_path)
    return g.db


def close_db(exception):
    db = g.pop("db", None)
    if db is not None:
        db.close()

# ---------------------------- Utility Logic ---------------------------- #

def local_today(tz_offset_hours: int = 9) -> str:
    tz = timezone(timedelta(hours=tz_offset_hours))
    return datetime.now(tz).strftime("%Y-%m-%d")


def today() -> str:
    return local_today(get_config().tz_offset_hours)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def raid_label(key) -> Optional[str]:
    return RAIDS.get(key)


def grade_label(key) -> str:
    return GRADES.get(key, key)


def grade_priority(key) -> int:
    return GRADE_PRIORITY.get(key, UNKNOWN_GRADE_PRIORITY)


def display_status(row) -> str:
    return "confirmed" if row["confirmed"] else "pending"


def parse_count(value, field: str) -> int:
    text = str(value).strip() if value is not None else ""
    # int() alone would also take "9_9" and non-ASCII digits
    if not (text.isascii() and text.isdigit()):
        raise ValidationError(field, f"{field} must be a whole number.")
    count = int(text)
    if count < 0 or count > COUNT_MAX:
        raise ValidationError(field, f"{field} must be between 0 and {COUNT_MAX}.")
    return count


def normalize_sort(sort) -> str:
    return sort if sort in SORT_MODES else "time"

# ---------------------------- Access Codes ---------------------------- #

def set_code(db, raid: str, day: str, code: str):
    """Create or replace the access code for ``raid`` on ``day``."""
    if raid not in RAIDS:
        raise ValidationError("raid", "Unknown raid.")
    code = (code or "").strip()
    if not code:
        raise ValidationError("code", "Access code cannot be blank.")
    db.execute(
        """
        INSERT INTO day_codes(date_kst, raid_key, code_hash) VALUES (?,?,?)
        ON CONFLICT(date_kst, raid_key) DO UPDATE SET code_hash=excluded.code_hash
        """,
        (day, raid, generate_password_hash(code)),
    )
    db.commit()
    logger.info("Access code set for raid=%s day=%s", raid, day)


def check_code(db, raid: str, day: str, submitted: str) -> bool:
    row = db.execute(
        "SELECT code_hash FROM day_codes WHERE date_kst=? AND raid_key=?", (day, raid)
    ).fetchone()
    if row is None:
        return False
    return check_password_hash(row["code_hash"], (submitted or "").strip())


def has_code(db, raid: str, day: str) -> bool:
    row = db.execute(
        "SELECT 1 FROM day_codes WHERE date_kst=? AND raid_key=?", (day, raid)
    ).fetchone()
    return row is not None


def verify_access(db, raid: str, day: str, submitted: str):
    if not check_code(db, raid, day, submitted):
        raise AuthError("Incorrect access code.")

# ---------------------------- Applications ---------------------------- #

def submit_application(db, raid, viewer_grade, nickname, group_name,
                       dealer_count, buffer_count, day: str) -> int:
    """Validate a sign-up and insert it. Returns the new row id.

    Raises ValidationError naming the first offending field; nothing is
    written in that case.
    """
    if raid not in RAIDS:
        raise ValidationError("raid", "Unknown raid.")
    if viewer_grade not in GRADES:
        raise ValidationError("viewer_grade", "Please choose your viewer grade.")
    nickname = (nickname or "").strip()
    group_name = (group_name or "").strip()
    if not nickname:
        raise ValidationError("nickname", "Nickname is required.")
    if not group_name:
        raise ValidationError("group_name", "Group name is required.")
    dealers = parse_count(dealer_count, "dealer_count")
    buffers = parse_count(buffer_count, "buffer_count")

    cur = db.execute(
        """
        INSERT INTO applications
        (date_kst, raid_key, viewer_grade, nickname, group_name, dealer_count, buffer_count, confirmed, comment, created_at)
        VALUES (?,?,?,?,?,?,?,0,'',?)
        """,
        (day, raid, viewer_grade, nickname, group_name, dealers, buffers, now_iso()),
    )
    db.commit()
    logger.info("Application %s submitted for raid=%s day=%s", cur.lastrowid, raid, day)
    return cur.lastrowid


def list_today(db, raid: str, day: str) -> list:
    rows = db.execute(
        """
        SELECT * FROM applications
        WHERE date_kst=? AND raid_key=?
        ORDER BY created_at ASC, id ASC
        """,
        (day, raid),
    ).fetchall()
    return [dict(r, status=display_status(r)) for r in rows]


def list_applications(db, raid: str, day: str, sort: str = "time") -> list:
    if normalize_sort(sort) == "grade":
        whens = " ".join("WHEN ? THEN ?" for _ in GRADE_PRIORITY)
        params = [v for item in GRADE_PRIORITY.items() for v in item]
        order = f"CASE viewer_grade {whens} ELSE {UNKNOWN_GRADE_PRIORITY} END ASC, created_at ASC, id ASC"
    else:
        params = []
        order = "created_at ASC, id ASC"
    rows = db.execute(
        f"SELECT * FROM applications WHERE date_kst=? AND raid_key=? ORDER BY {order}",
        (day, raid, *params),
    ).fetchall()
    return [dict(r, status=display_status(r)) for r in rows]


def toggle_confirm(db, application_id: int, confirmed: bool):
    # missing ids are a no-op
    db.execute(
        "UPDATE applications SET confirmed=? WHERE id=?",
        (1 if confirmed else 0, application_id),
    )
    db.commit()


def set_comment(db, application_id: int, text: str):
    db.execute(
        "UPDATE applications SET comment=? WHERE id=?",
        ((text or "")[:COMMENT_MAX], application_id),
    )
    db.commit()


def delete_one(db, application_id: int):
    db.execute("DELETE FROM applications WHERE id=?", (application_id,))
    db.commit()
    logger.info("Application %s deleted", application_id)


def delete_all_for_raid_today(db, raid: str, day: str) -> int:
    cur = db.execute(
        "DELETE FROM applications WHERE date_kst=? AND raid_key=?", (day, raid)
    )
    db.commit()
    logger.info("Cleared %s applications for raid=%s day=%s", cur.rowcount, raid, day)
    return cur.rowcount

# ---------------------------- Auth Utils ---------------------------- #

def admin_login(config: Config, submitted: str):
    key = (submitted or "").strip()
    if not config.admin_key or not hmac.compare_digest(key.encode(), config.admin_key.encode()):
        raise AuthError("Incorrect key.")


def grant_access(raid: str, day: str):
    access = dict(session.get("access", {}))
    access[raid] = {"day": day, "exp": time.time() + ACCESS_TTL.total_seconds()}
    session["access"] = access
    session.permanent = True


def has_access(raid: str, day: str) -> bool:
    marker = session.get("access", {}).get(raid)
    if not marker:
        return False
    return marker.get("day") == day and marker.get("exp", 0) > time.time()


def admin_digest(secret_key: str, admin_key: str) -> str:
    return hmac.new(secret_key.encode(), admin_key.encode(), hashlib.sha256).hexdigest()


def grant_admin():
    session["admin_until"] = time.time() + ADMIN_TTL.total_seconds()
    session["admin_digest"] = admin_digest(current_app.secret_key, get_config().admin_key)
    session.permanent = True


def is_admin() -> bool:
    """Valid only while the configured key is the one used at login."""
    key = get_config().admin_key
    if not key or session.get("admin_until", 0) <= time.time():
        return False
    stored = session.get("admin_digest", "")
    return hmac.compare_digest(stored, admin_digest(current_app.secret_key, key))


def admin_required(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not is_admin():
            return redirect(url_for("admin.login"))
        return f(*args, **kwargs)
    return wrapper

# ---------------------------- Templates ---------------------------- #

BASE_HTML = """
<!doctype html>
<html lang="ko">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{{ title or app_title }}</title>
  <link href="https://cdn.jsdelivr.net/npm/bootstrap@5.3.3/dist/css/bootstrap.min.css" rel="stylesheet">
  <style>
    body { padding-top: 4.5rem; }
    .brand { font-weight: 700; }
    .card { border-radius: 1rem; }
  </style>
</head>
<body>
<nav class="navbar navbar-expand-lg navbar-dark bg-dark fixed-top">
  <div class="container-fluid">
    <a class="navbar-brand brand" href="{{ url_for('index') }}">{{ app_title }}</a>
    <ul class="navbar-nav me-auto">
      <li class="nav-item"><a class="nav-link" href="{{ url_for('check') }}">Check Reservations</a></li>
    </ul>
    {% if admin %}
      <ul class="navbar-nav">
        <li class="nav-item"><a class="nav-link" href="{{ url_for('admin.raid') }}">Operator</a></li>
        <li class="nav-item"><a class="btn btn-outline-light btn-sm" href="{{ url_for('admin.logout') }}">Logout</a></li>
      </ul>
    {% endif %}
  </div>
</nav>

<main class="container">
  {% with messages = get_flashed_messages(with_categories=true) %}
    {% if messages %}
      {% for category, message in messages %}
        <div class="alert alert-{{ category }} alert-dismissible fade show" role="alert">{{ message }}
          <button type="button" class="btn-close" data-bs-dismiss="alert" aria-label="Close"></button>
        </div>
      {% endfor %}
    {% endif %}
  {% endwith %}

  {% block content %}{% endblock %}
</main>
<script src="https://cdn.jsdelivr.net/npm/bootstrap@5.3.3/dist/js/bootstrap.bundle.min.js"></script>
</body>
</html>
"""

HOME_HTML = """
{% extends 'base.html' %}
{% block content %}
<div class="card p-4 shadow-sm">
  <h3 class="mb-3">Choose a raid</h3>
  <div class="d-flex flex-wrap gap-2">
    {% for key, label in raids %}
      <a class="btn btn-primary" href="{{ url_for(target, raid=key) }}">{{ label }}</a>
    {% endfor %}
  </div>
  {% if target == 'verify' %}
  <p class="text-muted mt-3 mb-0">
    Viewers do not pick a section or run. The streamer places everyone by hand.<br>
    After applying, see "Check Reservations" for your status and the streamer's comment.
  </p>
  {% endif %}
</div>
{% endblock %}
"""

VERIFY_HTML = """
{% extends 'base.html' %}
{% block content %}
<div class="row justify-content-center">
  <div class="col-md-6">
    <div class="card p-4 shadow-sm">
      <h3 class="mb-3">{{ raid_name }}: today's access code</h3>
      <form method="post">
        <input type="hidden" name="raid" value="{{ raid }}">
        <div class="mb-3">
          <input name="code" class="form-control" placeholder="Access code" autocomplete="off" required>
        </div>
        <button class="btn btn-primary w-100">Continue</button>
      </form>
      <p class="text-muted mt-3 mb-0">The streamer sets a separate code for each raid every day.</p>
    </div>
  </div>
</div>
{% endblock %}
"""

RESERVE_HTML = """
{% extends 'base.html' %}
{% block content %}
<div class="row justify-content-center">
  <div class="col-md-8">
    <div class="card p-4 shadow-sm">
      <h3 class="mb-3">{{ raid_name }}: sign up</h3>
      <form method="post">
        <input type="hidden" name="raid" value="{{ raid }}">
        <div class="mb-3">
          <label class="form-label">Viewer grade</label>
          <select name="viewer_grade" class="form-select" required>
            <option value="">Choose...</option>
            {% for key, label in grades %}
              <option value="{{ key }}" {% if form.get('viewer_grade') == key %}selected{% endif %}>{{ label }}</option>
            {% endfor %}
          </select>
        </div>
        <div class="mb-3">
          <label class="form-label">Nickname</label>
          <input name="nickname" class="form-control" value="{{ form.get('nickname', '') }}" required>
        </div>
        <div class="mb-3">
          <label class="form-label">Group name</label>
          <input name="group_name" class="form-control" value="{{ form.get('group_name', '') }}" required>
        </div>
        <div class="row g-3 mb-3">
          <div class="col-6">
            <label class="form-label">Dealers</label>
            <input type="number" name="dealer_count" min="0" max="{{ count_max }}" class="form-control" value="{{ form.get('dealer_count', '0') }}" required>
          </div>
          <div class="col-6">
            <label class="form-label">Buffers</label>
            <input type="number" name="buffer_count" min="0" max="{{ count_max }}" class="form-control" value="{{ form.get('buffer_count', '0') }}" required>
          </div>
        </div>
        <button class="btn btn-primary w-100">Apply</button>
      </form>
      <p class="text-muted mt-3 mb-0">
        One run seats 3 buffers and 9 dealers (12 total), up to 20 runs a day, placed by hand.<br>
        After applying, "Check Reservations" shows <b>confirmed/pending</b> and the streamer's comment.
      </p>
    </div>
  </div>
</div>
{% endblock %}
"""

CHECK_HTML = """
{% extends 'base.html' %}
{% block content %}
<div class="card p-4 shadow-sm">
  <h3 class="mb-3">{{ raid_name }}: today's applications ({{ day }})
    <span class="badge bg-success">Confirmed {{ apps|selectattr('confirmed')|list|length }}/{{ apps|length }}</span></h3>
  <div class="table-responsive">
    <table class="table table-striped align-middle">
      <thead><tr><th>#</th><th>Grade</th><th>Nickname</th><th>Group</th><th>Dealers</th><th>Buffers</th><th>Status</th><th>Comment</th></tr></thead>
      <tbody>
        {% for a in apps %}
        <tr>
          <td>{{ loop.index }}</td>
          <td>{{ grade_label(a.viewer_grade) }}</td>
          <td>{{ a.nickname }}</td>
          <td>{{ a.group_name }}</td>
          <td>{{ a.dealer_count }}</td>
          <td>{{ a.buffer_count }}</td>
          <td>{% if a.status == 'confirmed' %}<span class="badge bg-success">Confirmed</span>{% else %}<span class="badge bg-secondary">Pending</span>{% endif %}</td>
          <td>{{ a.comment }}</td>
        </tr>
        {% else %}
        <tr><td colspan="8" class="text-center text-muted">No applications today.</td></tr>
        {% endfor %}
      </tbody>
    </table>
  </div>
</div>
{% endblock %}
"""

ADMIN_LOGIN_HTML = """
{% extends 'base.html' %}
{% block content %}
<div class="row justify-content-center">
  <div class="col-md-6">
    <div class="card p-4 shadow-sm">
      <h3 class="mb-3">Operator login</h3>
      <form method="post">
        <div class="mb-3">
          <input type="password" name="key" class="form-control" placeholder="Operator key" required>
        </div>
        <button class="btn btn-primary w-100">Log in</button>
      </form>
    </div>
  </div>
</div>
{% endblock %}
"""

ADMIN_RAID_HTML = """
{% extends 'base.html' %}
{% block content %}
<div class="row g-3">
  <div class="col-md-6">
    <div class="card p-4 shadow-sm">
      <h4 class="mb-3">Applications</h4>
      <form method="get" action="{{ url_for('admin.listing') }}" class="row g-3">
        <div class="col-8">
          <select name="raid" class="form-select">
            {% for key, label in raids %}<option value="{{ key }}">{{ label }}</option>{% endfor %}
          </select>
        </div>
        <div class="col-4"><button class="btn btn-primary w-100">Open</button></div>
      </form>
    </div>
  </div>
  <div class="col-md-6">
    <div class="card p-4 shadow-sm">
      <h4 class="mb-3">Today's access code</h4>
      <form method="post" action="{{ url_for('admin.code') }}" class="row g-3">
        <div class="col-12">
          <select name="raid" class="form-select">
            {% for key, label in raids %}<option value="{{ key }}">{{ label }}{% if key in codes_set %} (set){% endif %}</option>{% endfor %}
          </select>
        </div>
        <div class="col-8"><input name="code" class="form-control" placeholder="New code" autocomplete="off" required></div>
        <div class="col-4"><button class="btn btn-warning w-100">Save</button></div>
      </form>
      <p class="text-muted mt-3 mb-0">Date (KST): <b>{{ day }}</b>. Changing a code only affects new verifications.</p>
    </div>
  </div>
</div>
{% endblock %}
"""

ADMIN_LIST_HTML = """
{% extends 'base.html' %}
{% block content %}
<div class="card p-4 shadow-sm">
  <div class="d-flex justify-content-between align-items-center mb-3">
    <h3 class="mb-0">{{ raid_name }}: applications ({{ day }})
      <span class="badge bg-success">Confirmed {{ apps|selectattr('confirmed')|list|length }}/{{ apps|length }}</span></h3>
    <form method="post" action="{{ url_for('admin.clear') }}" onsubmit="return confirm('Delete every application for this raid today? This cannot be undone.');">
      <input type="hidden" name="raid" value="{{ raid }}">
      <input type="hidden" name="sort" value="{{ sort }}">
      <button class="btn btn-outline-danger btn-sm">Clear today</button>
    </form>
  </div>
  <div class="table-responsive">
    <table class="table table-striped align-middle">
      <thead><tr>
        <th>#</th>
        <th><a href="{{ url_for('admin.listing', raid=raid, sort='time' if sort == 'grade' else 'grade') }}">Grade{% if sort == 'grade' %} &#9660;{% endif %}</a></th>
        <th>Nickname</th><th>Group</th><th>Dealers</th><th>Buffers</th><th>Confirmed</th><th>Comment</th><th></th>
      </tr></thead>
      <tbody>
        {% for a in apps %}
        <tr>
          <td>{{ loop.index }}</td>
          <td>{{ grade_label(a.viewer_grade) }}</td>
          <td>{{ a.nickname }}</td>
          <td>{{ a.group_name }}</td>
          <td>{{ a.dealer_count }}</td>
          <td>{{ a.buffer_count }}</td>
          <td>
            <form method="post" action="{{ url_for('admin.confirm') }}" id="confirmForm_{{ a.id }}">
              <input type="hidden" name="id" value="{{ a.id }}">
              <input type="hidden" name="raid" value="{{ raid }}">
              <input type="hidden" name="sort" value="{{ sort }}">
              <input type="hidden" name="confirmed" value="{{ 0 if a.confirmed else 1 }}">
              <input type="checkbox" class="form-check-input" {% if a.confirmed %}checked{% endif %} onchange="this.form.submit()">
            </form>
          </td>
          <td>
            <form method="post" action="{{ url_for('admin.comment') }}" class="d-flex gap-1">
              <input type="hidden" name="id" value="{{ a.id }}">
              <input type="hidden" name="raid" value="{{ raid }}">
              <input type="hidden" name="sort" value="{{ sort }}">
              <input name="comment" class="form-control form-control-sm" maxlength="{{ comment_max }}" value="{{ a.comment }}" placeholder="e.g. run 3 / ping on discord">
              <button class="btn btn-sm btn-outline-primary">Save</button>
            </form>
          </td>
          <td>
            <form method="post" action="{{ url_for('admin.delete') }}" onsubmit="return confirm('Delete this application?');">
              <input type="hidden" name="id" value="{{ a.id }}">
              <input type="hidden" name="raid" value="{{ raid }}">
              <input type="hidden" name="sort" value="{{ sort }}">
              <button class="btn btn-sm btn-outline-danger">Delete</button>
            </form>
          </td>
        </tr>
        {% else %}
        <tr><td colspan="9" class="text-center text-muted">No applications today.</td></tr>
        {% endfor %}
      </tbody>
    </table>
  </div>
  <p class="text-muted mb-0">
    Click "Grade" to sort Burning &rarr; Pink &rarr; Yellow &rarr; Normal; click again for time order.
    Comments are visible to viewers.
  </p>
</div>
{% endblock %}
"""

ERROR_HTML = """
{% extends 'base.html' %}
{% block content %}
<div class="card p-4 shadow-sm">
  <h3 class="mb-3">Something went wrong</h3>
  <p class="mb-0">Please try again in a moment.</p>
</div>
{% endblock %}
"""

# ---------------------------- Viewer Routes ---------------------------- #

def index():
    return render_template_string(HOME_HTML, raids=RAID_OPTIONS, target="verify")


def verify():
    raid = request.values.get("raid", "")
    name = raid_label(raid)
    if not name:
        return redirect(url_for("index"))

    if request.method == "POST":
        day = today()
        try:
            verify_access(get_db(), raid, day, request.form.get("code", ""))
        except AuthError as e:
            flash(f"{e.message} Please try again.", "danger")
        else:
            grant_access(raid, day)
            return redirect(url_for("reserve", raid=raid))
    return render_template_string(VERIFY_HTML, raid=raid, raid_name=name)


def reserve():
    raid = request.values.get("raid", "")
    name = raid_label(raid)
    if not name:
        return redirect(url_for("index"))

    day = today()
    if not has_access(raid, day):
        flash("Enter today's access code first.", "warning")
        return redirect(url_for("verify", raid=raid))

    if request.method == "POST":
        form = request.form
        try:
            submit_application(
                get_db(), raid,
                form.get("viewer_grade", ""),
                form.get("nickname", ""),
                form.get("group_name", ""),
                form.get("dealer_count", ""),
                form.get("buffer_count", ""),
                day,
            )
        except ValidationError as e:
            flash(e.message, "danger")
            return render_template_string(
                RESERVE_HTML, raid=raid, raid_name=name, grades=GRADE_OPTIONS,
                form=form, count_max=COUNT_MAX,
            )
        flash("Your application has been registered.", "success")
        return redirect(url_for("check", raid=raid))

    return render_template_string(
        RESERVE_HTML, raid=raid, raid_name=name, grades=GRADE_OPTIONS,
        form={}, count_max=COUNT_MAX,
    )


def check():
    raid = request.args.get("raid", "")
    name = raid_label(raid)
    if not name:
        return render_template_string(HOME_HTML, raids=RAID_OPTIONS, target="check")
    day = today()
    apps = list_today(get_db(), raid, day)
    return render_template_string(CHECK_HTML, raid_name=name, apps=apps, day=day)


def health():
    return jsonify(ok=True, date_kst=today())


def hidden_admin(rest=None):
    return "Not Found", 404

# ---------------------------- Admin ---------------------------- #

admin = Blueprint("admin", __name__)


def back_to_list(raid, sort):
    if raid_label(raid):
        return redirect(url_for("admin.listing", raid=raid, sort=normalize_sort(sort)))
    return redirect(url_for("admin.raid"))


@admin.route("")
def admin_root():
    if is_admin():
        return redirect(url_for("admin.raid"))
    return redirect(url_for("admin.login"))


@admin.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "POST":
        try:
            admin_login(get_config(), request.form.get("key", ""))
        except AuthError as e:
            current_app.logger.warning("Failed operator login from %s", request.remote_addr)
            flash(e.message, "danger")
        else:
            grant_admin()
            current_app.logger.info("Operator logged in from %s", request.remote_addr)
            return redirect(url_for("admin.raid"))
    return render_template_string(ADMIN_LOGIN_HTML)


@admin.route("/logout")
def logout():
    session.pop("admin_until", None)
    session.pop("admin_digest", None)
    flash("Logged out.", "info")
    return redirect(url_for("admin.login"))


@admin.route("/raid", endpoint="raid")
@admin_required
def choose_raid():
    day = today()
    db = get_db()
    codes_set = {key for key, _ in RAID_OPTIONS if has_code(db, key, day)}
    return render_template_string(ADMIN_RAID_HTML, raids=RAID_OPTIONS, day=day, codes_set=codes_set)


@admin.route("/code", methods=["POST"], endpoint="code")
@admin_required
def save_code():
    try:
        set_code(get_db(), request.form.get("raid", ""), today(), request.form.get("code", ""))
    except ValidationError as e:
        flash(e.message, "danger")
    else:
        flash("Access code saved.", "success")
    return redirect(url_for("admin.raid"))


@admin.route("/list")
@admin_required
def listing():
    raid_key = request.args.get("raid", "")
    name = raid_label(raid_key)
    if not name:
        return redirect(url_for("admin.raid"))
    sort = normalize_sort(request.args.get("sort", "time"))
    day = today()
    apps = list_applications(get_db(), raid_key, day, sort)
    return render_template_string(
        ADMIN_LIST_HTML, raid=raid_key, raid_name=name, sort=sort, day=day,
        apps=apps, comment_max=COMMENT_MAX,
    )


@admin.route("/confirm", methods=["POST"])
@admin_required
def confirm():
    app_id = request.form.get("id", type=int)
    if app_id is not None:
        toggle_confirm(get_db(), app_id, request.form.get("confirmed", "0") == "1")
    return back_to_list(request.form.get("raid", ""), request.form.get("sort", "time"))


@admin.route("/comment", methods=["POST"])
@admin_required
def comment():
    app_id = request.form.get("id", type=int)
    if app_id is not None:
        set_comment(get_db(), app_id, request.form.get("comment", ""))
    return back_to_list(request.form.get("raid", ""), request.form.get("sort", "time"))


@admin.route("/delete", methods=["POST"])
@admin_required
def delete():
    app_id = request.form.get("id", type=int)
    if app_id is not None:
        delete_one(get_db(), app_id)
    return back_to_list(request.form.get("raid", ""), request.form.get("sort", "time"))


@admin.route("/clear", methods=["POST"])
@admin_required
def clear():
    raid_key = request.form.get("raid", "")
    if not raid_label(raid_key):
        return redirect(url_for("admin.raid"))
    delete_all_for_raid_today(get_db(), raid_key, today())
    return back_to_list(raid_key, request.form.get("sort", "time"))

# ---------------------------- App Factory ---------------------------- #

def create_app(config: Optional[Config] = None) -> Flask:
    config = config or Config.from_env()
    app = Flask(__name__)
    app.config.update(
        RAID_CONFIG=config,
        SECRET_KEY=config.secret_key or secrets.token_hex(16),
        PERMANENT_SESSION_LIFETIME=ADMIN_TTL,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=config.cookie_secure,
    )
    # Serve our inline strings as if they were templates
    app.jinja_loader = DictLoader({"base.html": BASE_HTML})
    app.teardown_appcontext(close_db)

    @app.context_processor
    def inject_globals():
        return dict(app_title=APP_TITLE, admin=is_admin() if config.admin_base else False,
                    grade_label=grade_label)

    app.add_url_rule("/", "index", index)
    app.add_url_rule("/verify", "verify", verify, methods=["GET", "POST"])
    app.add_url_rule("/reserve", "reserve", reserve, methods=["GET", "POST"])
    app.add_url_rule("/check", "check", check)
    app.add_url_rule("/health", "health", health)
    # the literal /admin path never answers
    app.add_url_rule("/admin", "hidden_admin", hidden_admin)
    app.add_url_rule("/admin/<path:rest>", "hidden_admin", hidden_admin)

    if config.admin_base:
        app.register_blueprint(admin, url_prefix=config.admin_base)
    else:
        app.logger.warning("ADMIN_PATH is empty or reserved; operator panel is not mounted.")
    if not config.admin_key:
        app.logger.warning("ADMIN_KEY is empty; operator login will always fail.")

    # Flask has already logged the traceback by the time this runs
    @app.errorhandler(InternalServerError)
    def internal_error(e):
        return render_template_string(ERROR_HTML), 500

    with app.app_context():
        init_db(get_db())
    return app


if __name__ == "__main__":
    cfg = Config.from_env()
    configure_logging(cfg.log_level)
    create_app(cfg).run(host="0.0.0.0", port=cfg.port)
