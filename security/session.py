import hashlib
import secrets
from datetime import datetime, timedelta
from flask import request, current_app, has_request_context

from models import db
from models.session import Session

def _hash_token(token: str) -> str:
    # SHA-256 is fine for hashing random session tokens
    return hashlib.sha256(token.encode("utf-8")).hexdigest()

def create_session(user_id: int, ip=None, user_agent=None) -> str:
    """
    Creates a server-side session and returns the RAW token (cookie or bearer value).
    Only the hash is stored in DB. Usable outside a request (CLI bootstrap).
    """
    raw_token = secrets.token_urlsafe(32)
    token_hash = _hash_token(raw_token)

    lifetime = current_app.config.get("SESSION_LIFETIME_SECONDS", 28800)
    expires_at = datetime.utcnow() + timedelta(seconds=lifetime)

    if has_request_context():
        ip = ip or request.headers.get("X-Forwarded-For", request.remote_addr)
        user_agent = user_agent or request.headers.get("User-Agent")

    row = Session(
        user_id=user_id,
        token_hash=token_hash,
        expires_at=expires_at,
        ip=ip,
        user_agent=(user_agent or "")[:255] or None,
    )
    db.session.add(row)
    db.session.commit()
    return raw_token

def token_from_request():
    """Returns (raw_token, source) where source is "bearer" or "cookie"."""
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        token = auth[7:].strip()
        if token:
            return token, "bearer"

    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "placeslot_session")
    raw_token = request.cookies.get(cookie_name)
    if raw_token:
        return raw_token, "cookie"
    return None, None

def get_session_from_request():
    raw_token, _ = token_from_request()
    if not raw_token:
        return None

    token_hash = _hash_token(raw_token)
    now = datetime.utcnow()

    idle_seconds = current_app.config.get("IDLE_TIMEOUT_SECONDS", 1200)
    sess = Session.query.filter_by(token_hash=token_hash, revoked=False).first()
    if not sess or not sess.is_live(now, idle_seconds):
        return None

    # Update activity timestamp (touch)
    sess.last_seen_at = now
    db.session.commit()

    return sess


def revoke_session(raw_token: str) -> bool:
    if not raw_token:
        return False
    token_hash = _hash_token(raw_token)
    sess = Session.query.filter_by(token_hash=token_hash).first()
    if not sess:
        return False
    sess.revoked = True
    db.session.commit()
    return True
