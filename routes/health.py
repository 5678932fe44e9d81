from flask import Blueprint, jsonify, make_response, current_app

from security.csrf import issue_csrf_token
from security.session import revoke_session, token_from_request
from utils.auth_context import login_required

health_bp = Blueprint("health", __name__)

@health_bp.get("/health")
def health():
    return jsonify(status="ok"), 200

@health_bp.get("/csrf-token")
def csrf_token():
    # cookie-authenticated browsers echo this cookie back in X-CSRF-Token
    return issue_csrf_token(make_response(jsonify(message="CSRF cookie issued"), 200))

@health_bp.post("/logout")
@login_required
def logout():
    raw_token, _ = token_from_request()
    revoke_session(raw_token)
    resp = make_response(jsonify(message="Logged out"), 200)
    resp.delete_cookie(current_app.config.get("AUTH_COOKIE_NAME", "placeslot_session"), path="/")
    return resp
