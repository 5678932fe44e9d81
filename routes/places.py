from datetime import datetime
from zoneinfo import ZoneInfo

from flask import Blueprint, request, jsonify, current_app

from models import db
from models.place import Place
from services import factory
from services.availability import parse_filters
from services.errors import PlaceNotFound, ValidationFailed
from services.slots import parse_date

places_bp = Blueprint("places", __name__, url_prefix="/places")


def _today():
    tz = ZoneInfo(current_app.config.get("APP_TIMEZONE", "Asia/Tashkent"))
    return datetime.now(tz).date()


# Public: availability is readable without a session
@places_bp.get("/<int:place_id>/availability")
def place_availability(place_id: int):
    place = db.session.get(Place, place_id)
    if not place:
        raise PlaceNotFound()

    d = parse_date(request.args.get("date") or "")
    if d is None:
        raise ValidationFailed("date is required (YYYY-MM-DD)")

    return jsonify(factory.availability_engine().day_view(place, d)), 200


@places_bp.get("/available")
def available_places():
    ids = []
    for raw in (request.args.get("ids") or "").split(","):
        raw = raw.strip()
        if raw.isdigit():
            ids.append(int(raw))

    q = Place.query
    if ids:
        q = q.filter(Place.id.in_(ids))
    places = q.order_by(Place.id.asc()).all()

    filters = parse_filters(request.args, today=_today())
    available = factory.availability_engine().filter_available(places, filters)
    return jsonify(
        placeIds=available,
        dates=[d.isoformat() for d in filters.dates],
        timeFiltered=filters.start_time is not None,
    ), 200
