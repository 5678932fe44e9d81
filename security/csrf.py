import hmac
import secrets
from flask import request, jsonify, current_app, g

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"

UNSAFE_METHODS = ("POST", "PUT", "PATCH", "DELETE")

# Gateway callbacks are signed, not cookie-authenticated
CSRF_EXEMPT_PREFIXES = ("/click/",)

def issue_csrf_token(resp):
    token = secrets.token_urlsafe(32)
    resp.set_cookie(
        CSRF_COOKIE,
        token,
        httponly=False,  # must be readable by client JS
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        path="/",
    )
    return resp

def csrf_required() -> bool:
    if request.method not in UNSAFE_METHODS:
        return False
    if request.path.startswith(CSRF_EXEMPT_PREFIXES):
        return False
    # bearer tokens are never sent ambiently, so only cookie sessions need the double submit
    return getattr(g, "user", None) is not None and getattr(g, "auth_source", None) == "cookie"

def require_csrf():
    if not csrf_required():
        return None
    cookie_token = request.cookies.get(CSRF_COOKIE)
    header_token = request.headers.get(CSRF_HEADER)
    if not cookie_token or not header_token or not hmac.compare_digest(cookie_token, header_token):
        current_app.logger.info("csrf rejected for %s %s", request.method, request.path)
        return jsonify(error="CSRF validation failed"), 403
    return None
