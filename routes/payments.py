from datetime import datetime
from urllib.parse import urlencode

from flask import Blueprint, request, jsonify, g, current_app

from models import db
from models.booking import Booking
from services import factory
from services.errors import AccessDenied, BookingNotFound, GatewayApiError, InvalidTransition, ValidationFailed
from services.ledger import SqlTransactionLedger
from services.reconciliation import STATUS_CREATED, STATUS_PAID, STATUS_PROCESSING
from utils.auth_context import login_required
from utils.audit import log_event
from utils.serializers import payment_event_to_dict, transaction_to_dict

payments_bp = Blueprint("payments", __name__)


def checkout_url(booking: Booking) -> str:
    cfg = current_app.config
    return_url = "%s/pay/return?%s" % (
        cfg.get("APP_BASE_URL", "").rstrip("/"), urlencode({"booking_id": booking.id}))
    params = {
        "service_id": cfg.get("CLICK_SERVICE_ID"),
        "merchant_id": cfg.get("CLICK_MERCHANT_ID"),
        "amount": "%.2f" % booking.final_total,
        "transaction_param": booking.unique_request_id,
        "return_url": return_url,
    }
    return "%s/services/pay?%s" % (cfg.get("CLICK_CHECKOUT_BASE_URL", "").rstrip("/"), urlencode(params))


@payments_bp.post("/payment/create-invoice")
@login_required
def create_invoice():
    data = request.get_json(silent=True) or {}
    try:
        booking_id = int(data.get("bookingId"))
    except (TypeError, ValueError):
        raise ValidationFailed("bookingId is required and must be a number")

    booking = db.session.get(Booking, booking_id)
    if not booking:
        raise BookingNotFound()
    if booking.user_id != g.user.id:
        raise AccessDenied("You can only pay for your own bookings")
    if booking.status != "selected":
        raise InvalidTransition("Payment is only available for selected bookings")
    if booking.final_total is None or booking.final_total <= 0:
        raise ValidationFailed("Invalid booking amount")

    url = checkout_url(booking)
    if booking.click_invoice_id:
        return jsonify(bookingId=booking.id, invoiceId=booking.click_invoice_id, alreadyExists=True,
                       checkoutUrl=url, amount="%.2f" % booking.final_total), 200

    api = factory.merchant_api()
    invoice_id = None
    if api.configured:
        phone = (data.get("userPhone") or g.user.phone_number or "").strip()
        if not phone:
            raise ValidationFailed("userPhone is required to create an invoice")
        try:
            result = api.create_invoice(booking.final_total, phone, booking.unique_request_id)
        except GatewayApiError as e:
            current_app.logger.warning("invoice creation failed for booking %s: %s", booking.id, e)
            return jsonify(error="Payment provider is unavailable", checkoutUrl=url), 502

        invoice_id = str(result.get("invoice_id"))
        now = datetime.utcnow()
        booking.click_invoice_id = invoice_id
        booking.click_invoice_created_at = now
        SqlTransactionLedger().record_event(booking, "INVOICE", result, when=now)
        db.session.commit()
        log_event("PAYMENT_INVOICE_CREATED", user_id=g.user.id, entity="booking", entity_id=booking.id,
                  metadata={"invoice_id": invoice_id})

    return jsonify(bookingId=booking.id, invoiceId=invoice_id, alreadyExists=False,
                   checkoutUrl=url, amount="%.2f" % booking.final_total), 200


@payments_bp.get("/payment/status/<int:booking_id>")
@login_required
def payment_status(booking_id: int):
    booking = factory.booking_lifecycle().get_for_actor(booking_id, g.user)
    ledger = SqlTransactionLedger()
    history = ledger.history(booking.id)

    if booking.payment_status == "paid" or any(t.state == "PAID" for t in history):
        status = STATUS_PAID
    elif any(t.state == "PENDING" for t in history):
        status = STATUS_PROCESSING
    else:
        status = STATUS_CREATED

    body = {
        "bookingId": booking.id,
        "bookingStatus": booking.status,
        "paymentStatus": status,
        "isPaid": status == STATUS_PAID,
        "paidAt": booking.paid_at.isoformat() if booking.paid_at else None,
        "finalTotal": "%.2f" % booking.final_total,
        "invoiceId": booking.click_invoice_id,
        "lastGatewayResponse": booking.payment_response,
        "transactions": [transaction_to_dict(t) for t in history],
        "events": [payment_event_to_dict(e) for e in ledger.events(booking.id)],
    }

    # Advisory lookup only; the ledger stays authoritative
    if request.args.get("gateway") == "1":
        api = factory.merchant_api()
        if api.configured:
            try:
                body["gatewayStatus"] = api.payment_status_by_mti(booking.unique_request_id)
                if booking.click_invoice_id:
                    body["invoiceStatus"] = api.invoice_status(booking.click_invoice_id)
            except GatewayApiError as e:
                body["gatewayStatus"] = {"error": str(e)}

    return jsonify(body), 200


@payments_bp.get("/pay/return")
def pay_return():
    # Landing page the gateway redirects to after checkout
    booking_id = request.args.get("booking_id", type=int)
    base_url = current_app.config.get("FRONTEND_BASE_URL", "http://localhost:5173").rstrip("/")
    target = "%s/account/bookings/%s" % (base_url, booking_id) if booking_id else "%s/account/bookings" % base_url

    booking = db.session.get(Booking, booking_id) if booking_id else None
    if booking and booking.payment_status == "paid":
        headline = "Payment received"
        message = "Your payment was confirmed and the booking is approved."
    else:
        headline = "Payment is being processed"
        message = "We are waiting for the payment confirmation. Your booking page will update automatically."

    return """
    <html>
      <head><title>""" + headline + """</title></head>
      <body style="font-family: system-ui; max-width: 720px; margin: 40px auto;">
        <h1>""" + headline + """</h1>
        <p>""" + message + """</p>
        <a href=\"""" + target + """\" style="display: inline-block; padding: 12px 18px; background: #0ea5e9; color: white; text-decoration: none; border-radius: 8px; font-weight: 600;">Go to my booking</a>
      </body>
    </html>
    """, 200
