from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, request, session
from werkzeug.security import check_password_hash

from app.qms.api import current_user, json_body, json_str, ok, user_ref
from app.qms.audit import record_event
from app.qms.db import db_session
from app.qms.errors import AuthenticationError, QMSError
from app.qms.models import User
from app.qms.security import ensure_csrf_token

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


class RateLimitError(QMSError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    s = db_session()
    user = s.get(User, int(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


def _me_payload(user: User) -> dict:
    data = user_ref(user) or {}
    data.update(
        {
            "organization_id": user.organization_id,
            "roles": sorted(user.role_keys),
            "permissions": sorted({p.key for r in user.roles for p in r.permissions}),
            "csrf_token": ensure_csrf_token(),
        }
    )
    return data


@bp.post("/login")
def login_post():
    payload = json_body() if request.is_json else request.form.to_dict()
    email = json_str(payload, "email").lower()
    password = json_str(payload, "password", strip=False)
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        raise RateLimitError("Too many login attempts. Please wait 5 minutes.")

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        current_app.logger.info("Login failed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise AuthenticationError("Invalid credentials.")

    session.clear()
    session["user_id"] = user.id
    _login_attempts[ip].clear()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return ok(_me_payload(user))


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return ok({"logged_out": True})


@bp.get("/me")
def me():
    return ok(_me_payload(current_user()))
