"""Wire request-scoped service objects from the Flask app config."""
from flask import current_app

from services.availability import AvailabilityEngine
from services.booking_lifecycle import BookingLifecycle
from services.click_merchant_api import ClickMerchantApi
from services.click_protocol import ClickProtocolHandler
from services.ledger import SqlTransactionLedger
from services.reconciliation import PaymentReconciler
from services.repositories import SqlBookingRepository


def booking_repository():
    return SqlBookingRepository()


def availability_engine(bookings=None):
    return AvailabilityEngine(bookings or booking_repository())


def booking_lifecycle(bookings=None, ledger=None):
    bookings = bookings or booking_repository()
    return BookingLifecycle(
        bookings,
        ledger or SqlTransactionLedger(),
        availability=AvailabilityEngine(bookings),
        timezone=current_app.config.get("APP_TIMEZONE", "Asia/Tashkent"),
    )


def click_handler():
    bookings = booking_repository()
    ledger = SqlTransactionLedger()
    return ClickProtocolHandler(
        bookings,
        ledger,
        booking_lifecycle(bookings, ledger),
        secret_key=current_app.config.get("CLICK_SECRET_KEY"),
        service_id=current_app.config.get("CLICK_SERVICE_ID"),
    )


def payment_reconciler():
    bookings = booking_repository()
    ledger = SqlTransactionLedger()
    return PaymentReconciler(bookings, ledger, booking_lifecycle(bookings, ledger))


def merchant_api():
    # tests may pin a pre-built client with a fake HTTP session
    api = current_app.extensions.get("click_merchant_api")
    if api is None:
        api = ClickMerchantApi.from_config(current_app.config)
    return api
