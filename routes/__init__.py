from .health import health_bp
from .booking import booking_bp
from .places import places_bp
from .payments import payments_bp
from .click_webhook import click_bp
