import json

from flask import Blueprint, request, jsonify, g

from services import factory
from security.rbac import require_roles
from services.errors import ValidationFailed
from utils.auth_context import login_required
from utils.audit import log_event
from utils.serializers import booking_to_dict

booking_bp = Blueprint("booking", __name__, url_prefix="/bookings")

STATUS_AUDIT_ACTIONS = {
    "selected": "BOOKING_SELECT",
    "approved": "BOOKING_APPROVE",
    "rejected": "BOOKING_REJECT",
}


def _as_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes")


# ---------- CLIENT ----------
@booking_bp.post("")
@login_required
def create_booking():
    data = request.get_json(silent=True) or {}
    booking = factory.booking_lifecycle().create(g.user, data)

    log_event("BOOKING_CREATE", user_id=g.user.id, entity="booking", entity_id=booking.id,
              metadata={"place_id": booking.place_id, "unique_request_id": booking.unique_request_id})
    return jsonify(booking_to_dict(booking)), 201


@booking_bp.get("")
@login_required
def list_bookings():
    user_id = request.args.get("userId", type=int)
    paid_to_host = request.args.get("paidToHost")
    if paid_to_host is not None:
        paid_to_host = _as_bool(paid_to_host)

    bookings = factory.booking_lifecycle().list_for_actor(g.user, user_id=user_id, paid_to_host=paid_to_host)
    return jsonify([booking_to_dict(b) for b in bookings]), 200


@booking_bp.get("/counts")
@login_required
@require_roles("HOST", message="Only hosts and agents can view booking counts")
def booking_counts():
    return jsonify(factory.booking_lifecycle().counts(g.user)), 200


# ---------- HOST / AGENT ----------
@booking_bp.get("/competing")
@login_required
@require_roles("HOST", message="Only the place owner or an agent can view competing bookings")
def competing_bookings():
    place_id = request.args.get("placeId", type=int)
    exclude_id = request.args.get("excludeBookingId", type=int)
    if not place_id:
        raise ValidationFailed("placeId is required")
    try:
        slots = json.loads(request.args.get("timeSlots") or "[]")
    except ValueError:
        raise ValidationFailed("Invalid timeSlots format")

    competing = factory.booking_lifecycle().competing(g.user, place_id, slots, exclude_id=exclude_id)
    return jsonify([booking_to_dict(b) for b in competing]), 200


@booking_bp.get("/<int:booking_id>")
@login_required
def get_booking(booking_id: int):
    booking = factory.booking_lifecycle().get_for_actor(booking_id, g.user)
    return jsonify(booking_to_dict(booking)), 200


@booking_bp.put("/<int:booking_id>")
@login_required
def update_booking_status(booking_id: int):
    data = request.get_json(silent=True) or {}
    status = (data.get("status") or "").strip().lower()
    if not status:
        raise ValidationFailed("status is required")

    booking = factory.booking_lifecycle().update_status(
        booking_id,
        g.user,
        status,
        payment_confirmed=_as_bool(data.get("paymentConfirmed", False)),
        agent_approval=_as_bool(data.get("agentApproval", False)),
        reason=data.get("reason"),
    )

    log_event(STATUS_AUDIT_ACTIONS.get(booking.status, "BOOKING_UPDATE"), user_id=g.user.id,
              entity="booking", entity_id=booking.id,
              metadata={"status": booking.status, "agent_approval": bool(data.get("agentApproval"))})
    return jsonify(booking_to_dict(booking)), 200


@booking_bp.post("/<int:booking_id>/paid-to-host")
@login_required
@require_roles("AGENT", message="Only agents can mark bookings as paid to host")
def mark_paid_to_host(booking_id: int):
    booking = factory.booking_lifecycle().mark_paid_to_host(booking_id, g.user)
    log_event("BOOKING_PAID_TO_HOST", user_id=g.user.id, entity="booking", entity_id=booking.id)
    return jsonify(booking_to_dict(booking)), 200


@booking_bp.post("/<int:booking_id>/check-payment-smart")
@login_required
def check_payment_smart(booking_id: int):
    booking = factory.booking_lifecycle().get_for_actor(booking_id, g.user)
    was_status = booking.status

    result = factory.payment_reconciler().smart_check(booking)
    if booking.status != was_status:
        log_event("BOOKING_RECONCILED", user_id=g.user.id, entity="booking", entity_id=booking.id,
                  metadata={"from": was_status, "to": booking.status})

    result["booking"] = booking_to_dict(booking)
    return jsonify(result), 200
