from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from app.qms.db import db_ping

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Liveness plus database connectivity."""
    try:
        db_ok = db_ping()
    except SQLAlchemyError as e:
        current_app.logger.error("Health check DB error: %s", e)
        db_ok = False
    return {"ok": db_ok, "db": "up" if db_ok else "down"}, (200 if db_ok else 503)


@bp.get("/healthz")
def healthz():
    """Probe endpoint: no DB access."""
    return "ok", 200
