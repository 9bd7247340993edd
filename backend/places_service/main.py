"""
Address autocomplete proxy in front of Google Places, keeps the key server-side
"""
import logging

import requests
from flask import Blueprint, request, jsonify

from api_gateway.context import get_settings

logger = logging.getLogger(__name__)

bp = Blueprint("places", __name__)

AUTOCOMPLETE_URL = "https://maps.googleapis.com/maps/api/place/autocomplete/json"
DETAILS_URL = "https://maps.googleapis.com/maps/api/place/details/json"

# bias around Montreal, still allow broader Quebec results
MONTREAL_LOCATION = "45.5017,-73.5673"
BIAS_RADIUS_M = 80000


def _google_get(url: str, params: dict, cache_control: str):
    settings = get_settings()
    if not settings.google_places_server_key:
        return jsonify({"error": "Missing GOOGLE_PLACES_SERVER_KEY"}), 500

    try:
        resp = requests.get(
            url,
            params={**params, "key": settings.google_places_server_key},
            timeout=settings.request_timeout,
        )
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.error("Google Places request failed: %s", e)
        return jsonify({"error": "Places lookup failed"}), 502

    response = jsonify(data)
    response.headers["Cache-Control"] = cache_control
    return response, 200


@bp.route("/api/places-autocomplete", methods=["GET"])
def autocomplete():
    query = (request.args.get("q") or "").strip()
    if len(query) < 2:
        return jsonify({"predictions": []}), 200

    return _google_get(
        AUTOCOMPLETE_URL,
        {
            "input": query,
            "components": "country:ca",
            "location": MONTREAL_LOCATION,
            "radius": BIAS_RADIUS_M,
        },
        "s-maxage=120, stale-while-revalidate=600",
    )


@bp.route("/api/place-details", methods=["GET"])
def place_details():
    place_id = (request.args.get("placeId") or "").strip()
    if not place_id:
        return jsonify({"error": "placeId required"}), 400

    return _google_get(
        DETAILS_URL,
        {"place_id": place_id, "fields": "name,formatted_address,geometry"},
        "s-maxage=600, stale-while-revalidate=3600",
    )
