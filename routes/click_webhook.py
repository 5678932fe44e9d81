from flask import Blueprint, request, jsonify, current_app

from services import factory
from utils.audit import log_event

click_bp = Blueprint("click", __name__, url_prefix="/click")

AUDIT_ACTIONS = {
    ("prepare", 0): "CLICK_PREPARE",
    ("complete", 0): "CLICK_COMPLETE_PAID",
}


def _params():
    # Click posts form-encoded bodies; JSON is accepted for tooling
    if request.form:
        return request.form.to_dict()
    return request.get_json(silent=True) or {}


def _audit(stage, params, body):
    action = AUDIT_ACTIONS.get((stage, body["error"]), "CLICK_%s_REJECTED" % stage.upper())
    request_id = params.get("merchant_trans_id")
    booking = factory.booking_repository().get_by_request_id(request_id) if request_id else None
    log_event(action, user_id=None, entity="booking", entity_id=booking.id if booking else None,
              metadata={"merchant_trans_id": request_id, "click_trans_id": params.get("click_trans_id"),
                        "error": body["error"], "error_note": body["error_note"],
                        "gateway_error": params.get("error")})


@click_bp.post("/prepare")
def click_prepare():
    params = _params()
    body = factory.click_handler().prepare(params)
    _audit("prepare", params, body)
    return jsonify(body), 200


@click_bp.post("/complete")
def click_complete():
    params = _params()
    body = factory.click_handler().complete(params)
    _audit("complete", params, body)
    current_app.logger.info("click complete merchant_trans_id=%s error=%s",
                            params.get("merchant_trans_id"), body["error"])
    return jsonify(body), 200
