"""
Admin handlers, gated by a signed session cookie

- POST       /api/admin/login     form field `password`
- GET|POST   /api/admin/logout
- GET        /api/admin/bookings  ?status=&limit=
- PATCH      /api/admin/bookings  {id, status?, assigned_driver?, internal_notes?, price_final?}
"""
import hmac
import logging
from functools import wraps

from flask import Blueprint, request, jsonify, redirect, session

from api_gateway.context import get_coordinator, get_settings
from booking_service.store import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT
from schemas.booking import AdminBookingPatch

logger = logging.getLogger(__name__)

bp = Blueprint("admin", __name__)

ADMIN_HOME = "/admin/"


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not session.get("admin"):
            return jsonify({"ok": False, "error": "Unauthorized"}), 401
        return view(*args, **kwargs)

    return wrapper


@bp.route("/api/admin/login", methods=["POST"])
def login():
    password = request.form.get("password", "")
    expected = get_settings().admin_password or ""
    if not expected or not hmac.compare_digest(password.encode(), expected.encode()):
        logger.warning("Failed admin login from %s", request.remote_addr)
        return redirect(f"{ADMIN_HOME}?err=1", code=302)

    session.clear()
    session["admin"] = True
    return redirect(ADMIN_HOME, code=302)


@bp.route("/api/admin/logout", methods=["GET", "POST"])
def logout():
    session.clear()
    return redirect(ADMIN_HOME, code=302)


@bp.route("/api/admin/bookings", methods=["GET"])
@admin_required
def list_bookings():
    status = request.args.get("status") or None
    try:
        limit = int(request.args.get("limit", DEFAULT_LIST_LIMIT))
    except ValueError:
        limit = DEFAULT_LIST_LIMIT
    limit = max(1, min(limit, MAX_LIST_LIMIT))

    bookings = get_coordinator().list_bookings(status=status, limit=limit)
    return jsonify({"ok": True, "data": [b.model_dump(mode="json") for b in bookings]}), 200


@bp.route("/api/admin/bookings", methods=["PATCH"])
@admin_required
def update_booking():
    patch = AdminBookingPatch.model_validate(request.get_json(silent=True) or {})
    booking = get_coordinator().admin_update(patch)
    return jsonify({"ok": True, "data": booking.model_dump(mode="json")}), 200
