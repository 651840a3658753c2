# app.py
from __future__ import annotations

import os
import math
import logging
from datetime import timezone, tzinfo
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests
from dotenv import load_dotenv
from flask import Flask, jsonify, request, abort
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from pymongo import MongoClient
from pymongo.errors import PyMongoError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration

from analytics import aggregate, period_cutoff
from emissions import (
    TRANSPORT_TYPES,
    calculate_co2_savings,
    emission_factor,
    equivalent_miles,
    equivalent_trees,
    estimate_savings,
    transport_label,
)
from progress import achievement_progress, compute_streak
from store import CommuteStore, ConflictError, NotFoundError
from validation import (
    ValidationError,
    parse_limit,
    parse_period,
    validate_comment,
    validate_commute,
    validate_post,
    validate_profile,
)

# ──────────────────────────────────────────────────────────────────────────────
# Load .env for local development (no effect in production)
# ──────────────────────────────────────────────────────────────────────────────
load_dotenv()

# ──────────────────────────────────────────────────────────────────────────────
# Sentry setup
# ──────────────────────────────────────────────────────────────────────────────
SENTRY_DSN = os.getenv("SENTRY_DSN", "")
if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[FlaskIntegration()],
        environment=os.getenv("SENTRY_ENV") or None,
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "1.0")),
        send_default_pii=False,
    )

# ──────────────────────────────────────────────────────────────────────────────
# Config & logging
# ──────────────────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL)
log = logging.getLogger("greencommute")

FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "")
API_KEY = os.getenv("API_KEY", "")

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB", "greencommute")
MONGO_TIMEOUT_MS = int(os.getenv("MONGO_TIMEOUT_MS", "5000"))

DEFAULT_LIMITS = os.getenv("DEFAULT_LIMITS", "200 per minute")
LIMITER_STORAGE_URI = os.getenv("LIMITER_STORAGE_URI", "memory://")

COMMUTE_TZ = os.getenv("COMMUTE_TZ", "UTC")

# Google Maps Platform server-side key (Directions)
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
if not GOOGLE_API_KEY:
    log.error("GOOGLE_API_KEY not set in environment. Google routing will be disabled.")


def _resolve_tz(name: Optional[str]) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


DEFAULT_TZ = _resolve_tz(COMMUTE_TZ)

# ──────────────────────────────────────────────────────────────────────────────
# Flask app setup
# ──────────────────────────────────────────────────────────────────────────────
app = Flask(__name__)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_port=1, x_prefix=1)

cors_origins: List[str] = [FRONTEND_ORIGIN] if FRONTEND_ORIGIN else ["*"]
CORS(app, resources={r"/api/*": {"origins": cors_origins}}, supports_credentials=False)

limiter = Limiter(
    key_func=get_remote_address,
    app=app,
    default_limits=[DEFAULT_LIMITS] if DEFAULT_LIMITS else [],
    storage_uri=LIMITER_STORAGE_URI,
)
log.info("Rate limiting enabled with %s via %s", DEFAULT_LIMITS, LIMITER_STORAGE_URI)

# ──────────────────────────────────────────────────────────────────────────────
# Mongo client
# ──────────────────────────────────────────────────────────────────────────────
mongo_client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=MONGO_TIMEOUT_MS, retryWrites=True)
store = CommuteStore(mongo_client[MONGO_DB_NAME], tz=DEFAULT_TZ)
try:
    store.ping()
    store.ensure_indexes()
except PyMongoError as e:
    log.error("MongoDB not reachable at startup: %s", e)

# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────
def require_key() -> None:
    if not API_KEY:
        abort(500, description="Server not configured with API_KEY")
    if request.headers.get("x-api-key") != API_KEY:
        abort(401, description="Unauthorized")

def _mongo_ok() -> bool:
    try:
        store.ping()
        return True
    except PyMongoError:
        return False

def _require_db() -> None:
    if not _mongo_ok():
        abort(503, description="Database unavailable")

def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError({"body": "JSON object expected"})
    return payload

def _request_tz() -> tzinfo:
    name = request.args.get("tz")
    if not name:
        return DEFAULT_TZ
    try:
        return _resolve_tz(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError({"tz": f"unknown time zone: {name}"}) from None

# ──────────────────────────────────────────────────────────────────────────────
# Error handlers
# ──────────────────────────────────────────────────────────────────────────────
@app.errorhandler(HTTPException)
def handle_http_error(e: HTTPException):
    return jsonify({"error": e.description}), e.code

@app.errorhandler(ValidationError)
def handle_validation_error(e: ValidationError):
    return jsonify({"error": "Invalid request", "fields": e.fields}), 400

@app.errorhandler(NotFoundError)
def handle_not_found(e: NotFoundError):
    return jsonify({"error": str(e)}), 404

@app.errorhandler(ConflictError)
def handle_conflict(e: ConflictError):
    return jsonify({"error": str(e)}), 409

@app.errorhandler(PyMongoError)
def handle_db_error(e: PyMongoError):
    log.exception("Database error on %s %s", request.method, request.path)
    return jsonify({"error": "Database unavailable"}), 503

# ----------------------------- Google helpers ------------------------------
# Directions travel mode per green transport type
DIRECTIONS_MODE = {
    "walking": "walking",
    "biking": "bicycling",
    "public_transit": "transit",
    "carpool": "driving",
    "electric_vehicle": "driving",
}

def _parse_latlng(value: str) -> Optional[tuple[float, float]]:
    try:
        lat, lng = (float(p) for p in str(value).split(","))
    except ValueError:
        return None
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None
    return lat, lng

def _haversine_km(a: tuple[float, float] | None, b: tuple[float, float] | None) -> float:
    if not a or not b:
        return 0.0
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    R = 6371.0088
    h = (math.sin(dlat/2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon/2) ** 2)
    return 2 * R * math.asin(math.sqrt(h))

def _directions(origin_str: str, dest_str: str, mode: str) -> dict:
    """
    Call Google Directions. Returns:
      { ok, distance_km, duration_min }
    """
    failed = {"ok": False, "distance_km": None, "duration_min": None}
    if not GOOGLE_API_KEY:
        return failed

    url = "https://maps.googleapis.com/maps/api/directions/json"
    params = {
        "origin": origin_str,
        "destination": dest_str,
        "mode": mode,  # driving | transit | bicycling | walking
        "alternatives": "false",
        "key": GOOGLE_API_KEY,
    }
    if mode in ("driving", "transit"):
        params["departure_time"] = "now"

    try:
        r = requests.get(url, params=params, timeout=10)
        data = r.json()
        if data.get("status") != "OK":
            log.warning("Directions status %s (%s)", data.get("status"), mode)
            return failed

        leg = data["routes"][0]["legs"][0]
        dist_m = leg["distance"]["value"]
        sec = (leg.get("duration_in_traffic") or leg["duration"])["value"]
        return {
            "ok": True,
            "distance_km": round(dist_m / 1000.0, 3),
            "duration_min": round(sec / 60.0, 1),
        }
    except (requests.RequestException, ValueError, KeyError, IndexError) as e:
        log.warning("Directions error (%s): %s", mode, e)
        return failed

def _offline_time_min(distance_km: float, transport_type: str) -> float:
    SPEED_KMH = {
        "walking": 5.0, "biking": 15.5, "public_transit": 18.0,
        "carpool": 35.0, "electric_vehicle": 35.0,
    }
    OVERHEAD = {
        "walking": 0.0, "biking": 2.0, "public_transit": 6.0,
        "carpool": 5.0, "electric_vehicle": 5.0,
    }
    sp = max(SPEED_KMH.get(transport_type, 30.0), 1e-6)
    oh = OVERHEAD.get(transport_type, 0.0)
    return round(oh + (distance_km / sp) * 60.0, 1)

# ──────────────────────────────────────────────────────────────────────────────
# Health / diagnostics
# ──────────────────────────────────────────────────────────────────────────────
@app.get("/")
def root():
    return jsonify({
        "name": "Green Commute API",
        "version": "v1",
        "health": "/health",
        "db_ping": "/db-ping",
        "routes": "/_routes",
    }), 200

@app.get("/health")
def health_root():
    return jsonify({"status": "ok"}), 200

@app.get("/db-ping")
def db_ping_root():
    try:
        store.ping()
        return jsonify({"ok": True}), 200
    except PyMongoError as e:
        return jsonify({"ok": False, "error": str(e)}), 500

# Versioned
@app.get("/api/v1/health")
def health_v1():
    return health_root()

@app.get("/api/v1/db-ping")
def db_ping_v1():
    return db_ping_root()

# ──────────────────────────────────────────────────────────────────────────────
# CO2 estimates
# ──────────────────────────────────────────────────────────────────────────────
@app.get("/api/v1/transport-modes")
def transport_modes():
    return jsonify([
        {
            "type": t,
            "label": transport_label(t),
            "factor_kg_per_km": emission_factor(t),
            "saved_kg_per_km": calculate_co2_savings(t, 1.0),
        }
        for t in TRANSPORT_TYPES
    ]), 200

@app.post("/api/v1/co2/estimate")
def co2_estimate():
    commute = validate_commute(_json_body())
    return jsonify(estimate_savings(commute["transportType"], commute["distance"])), 200

@app.post("/api/v1/commutes/route-estimate")
def route_estimate():
    """
    Distance and duration for a trip from Google Directions, with the CO2
    saved by making it with the chosen transport type. Falls back to a
    straight-line distance when both endpoints are "lat,lng" pairs.
    """
    require_key()
    data = _json_body()
    origin = data.get("origin")
    destination = data.get("destination")
    transport_type = data.get("transportType")

    errors = {}
    if not origin:
        errors["origin"] = "origin is required"
    if not destination:
        errors["destination"] = "destination is required"
    if transport_type not in DIRECTIONS_MODE:
        errors["transportType"] = f"transportType must be one of: {', '.join(TRANSPORT_TYPES)}"
    if errors:
        raise ValidationError(errors)

    resp = _directions(origin, destination, DIRECTIONS_MODE[transport_type])
    if resp["ok"]:
        distance_km = float(resp["distance_km"])
        duration_min = float(resp["duration_min"])
        source = "google"
    else:
        a, b = _parse_latlng(origin), _parse_latlng(destination)
        if not a or not b:
            abort(502, description="Routing unavailable for these locations")
        distance_km = round(_haversine_km(a, b), 3)
        duration_min = _offline_time_min(distance_km, transport_type)
        source = "haversine"

    return jsonify({
        **estimate_savings(transport_type, distance_km),
        "duration": duration_min,
        "source": source,
    }), 200

# ──────────────────────────────────────────────────────────────────────────────
# Profiles
# ──────────────────────────────────────────────────────────────────────────────
@app.post("/api/v1/users")
def create_user():
    require_key()
    fields = validate_profile(_json_body())
    _require_db()
    user_id = fields.pop("id")
    return jsonify(store.create_profile(user_id, fields)), 201

@app.get("/api/v1/users/<user_id>")
def get_user(user_id: str):
    _require_db()
    return jsonify(store.get_profile(user_id)), 200

@app.patch("/api/v1/users/<user_id>")
def update_user(user_id: str):
    require_key()
    updates = validate_profile(_json_body(), partial=True)
    _require_db()
    return jsonify(store.update_profile(user_id, updates)), 200

@app.post("/api/v1/users/<user_id>/following/<target_id>")
def follow_user(user_id: str, target_id: str):
    require_key()
    if user_id == target_id:
        raise ValidationError({"target": "cannot follow yourself"})
    _require_db()
    return jsonify(store.follow(user_id, target_id)), 200

@app.delete("/api/v1/users/<user_id>/following/<target_id>")
def unfollow_user(user_id: str, target_id: str):
    require_key()
    _require_db()
    return jsonify(store.unfollow(user_id, target_id)), 200

@app.get("/api/v1/leaderboard")
def leaderboard():
    limit = parse_limit(request.args.get("limit"), default=10, maximum=100)
    _require_db()
    return jsonify(store.leaderboard(limit)), 200

# ──────────────────────────────────────────────────────────────────────────────
# Commute routes
# ──────────────────────────────────────────────────────────────────────────────
@app.post("/api/v1/users/<user_id>/commutes")
def add_commute(user_id: str):
    require_key()
    commute = validate_commute(_json_body())
    _require_db()
    entry, created = store.add_commute(user_id, commute, request_id=commute.get("requestId"))
    return jsonify(entry), 201 if created else 200

@app.get("/api/v1/users/<user_id>/commutes")
def list_commutes(user_id: str):
    limit = parse_limit(request.args.get("limit"), default=50, maximum=500)
    _require_db()
    store.get_profile(user_id)
    return jsonify(store.list_commutes(user_id, limit)), 200

@app.get("/api/v1/users/<user_id>/analytics")
def commute_analytics(user_id: str):
    period = parse_period(request.args.get("period"))
    tz = _request_tz()
    _require_db()
    store.get_profile(user_id)
    entries = store.commutes_since(user_id, period_cutoff(period))
    return jsonify(aggregate(entries, period, tz=tz)), 200

@app.get("/api/v1/users/<user_id>/impact")
def commute_impact(user_id: str):
    tz = _request_tz()
    _require_db()
    profile = store.get_profile(user_id)
    dates = store.commute_dates(user_id)
    total = profile.get("totalCO2Saved", 0.0)
    streak = compute_streak(dates, tz=tz)
    return jsonify({
        "totalCO2Saved": total,
        "totalCommutes": len(dates),
        "equivalentTrees": equivalent_trees(total),
        "equivalentMiles": equivalent_miles(total),
        "streak": streak,
        "badges": profile.get("badges", []),
        "achievements": achievement_progress(len(dates), streak, total),
    }), 200

# ──────────────────────────────────────────────────────────────────────────────
# Social feed
# ──────────────────────────────────────────────────────────────────────────────
@app.get("/api/v1/posts")
def list_posts():
    limit = parse_limit(request.args.get("limit"), default=20, maximum=100)
    _require_db()
    return jsonify(store.list_posts(limit)), 200

@app.post("/api/v1/users/<user_id>/posts")
def add_post(user_id: str):
    require_key()
    post = validate_post(_json_body())
    _require_db()
    return jsonify(store.add_post(user_id, post["content"], post["type"])), 201

@app.post("/api/v1/posts/<post_id>/likes")
def like_post(post_id: str):
    require_key()
    _require_db()
    return jsonify(store.like_post(post_id)), 200

@app.post("/api/v1/posts/<post_id>/comments")
def add_comment(post_id: str):
    require_key()
    comment = validate_comment(_json_body())
    _require_db()
    return jsonify(store.add_comment(post_id, comment["userId"], comment["content"])), 201

# ──────────────────────────────────────────────────────────────────────────────
# Test route for Sentry
# ──────────────────────────────────────────────────────────────────────────────
@app.get("/api/v1/test-error")
def test_error():
    if os.getenv("SENTRY_ENV") != "staging":
        abort(404)
    if request.headers.get("x-admin-key") != os.getenv("ADMIN_KEY"):
        abort(403)
    1 / 0  # intentional error

# ──────────────────────────────────────────────────────────────────────────────
# Routes list
# ──────────────────────────────────────────────────────────────────────────────
@app.get("/_routes")
def list_routes():
    rules = []
    for r in app.url_map.iter_rules():
        methods = ",".join(sorted(r.methods - {"HEAD", "OPTIONS"}))
        rules.append({"rule": str(r), "endpoint": r.endpoint, "methods": methods})
    rules.sort(key=lambda x: x["rule"])
    return jsonify(rules), 200

# ──────────────────────────────────────────────────────────────────────────────
# Entrypoint
# ──────────────────────────────────────────────────────────────────────────────
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
