import os
import logging
import uuid
from functools import wraps
from flask import Flask, request, jsonify, g
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

from alerts import compute_alerts, compute_dashboard_stats
from assignment import Actor
from errors import Forbidden, Unauthorized, ValidationError, VisitError
from models import init_db, _get_db
from records import Role
from visits import (
    create_visit, complete_existing_visit, get_visit_for_actor,
    list_my_visits, list_all_visits, list_family_visits,
)

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking: gated on SENTRY_DSN, silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration

    def _sentry_before_send(event, hint):
        """Client-facing visit errors (404/403/400) are expected; don't report them."""
        exc_info = hint.get("exc_info")
        if exc_info and exc_info[0] is not None and issubclass(exc_info[0], VisitError):
            return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        release=os.environ.get("GIT_COMMIT_SHA"),
        environment=os.environ.get("DEPLOY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)

# Behind a reverse proxy / auth gateway that sets X-Forwarded-For.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting. In-memory storage is per-process (with 2 gunicorn workers
# the effective limit is ~2x nominal).
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "120/minute")
RATE_LIMIT_CHECKIN = os.environ.get("RATE_LIMIT_CHECKIN", "30/minute")

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Request ID middleware: every request gets a unique ID for tracing
# ---------------------------------------------------------------------------
def _generate_request_id():
    return uuid.uuid4().hex[:10]


@app.before_request
def _set_request_context():
    g.request_id = request.headers.get("X-Request-ID") or _generate_request_id()
    g.actor = None


@app.after_request
def _after_request(response):
    response.headers["X-Request-ID"] = g.get("request_id", "")
    actor = g.get("actor")
    logger.info(
        "[%s] %s %s -> %s (actor=%s)",
        g.get("request_id", "-"), request.method, request.path,
        response.status_code, actor.id if actor else "-",
    )
    return response


# ---------------------------------------------------------------------------
# Actor injection. Authentication happens upstream: the auth gateway
# verifies the session and forwards the user's id and role as headers.
# ---------------------------------------------------------------------------
def _current_actor():
    user_id = request.headers.get("X-User-Id", "").strip()
    role = request.headers.get("X-User-Role", "").strip().upper()
    if not user_id or not role:
        raise Unauthorized("Authentication required.")
    try:
        return Actor(id=user_id, role=Role(role))
    except ValueError:
        raise Unauthorized("Unknown role.") from None


def require_actor(*roles):
    """Resolve g.actor for the view; with roles, only those roles may call it."""
    allowed = {Role(r) for r in roles}

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            g.actor = _current_actor()
            if allowed and g.actor.role not in allowed:
                raise Forbidden("Insufficient rights for this action.")
            return view(*args, **kwargs)
        return wrapper
    return decorator


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("body", "must be a JSON object")
    return data


def _ok(data, status=200, **extra):
    body = {"success": True, "data": data}
    body.update(extra)
    return jsonify(body), status


# ---------------------------------------------------------------------------
# Visits
# ---------------------------------------------------------------------------

@app.route("/api/visits", methods=["POST"])
@require_actor()
def create_visit_route():
    body = _json_body()
    outcome = create_visit(body.get("familyId"), g.actor, body)
    return _ok(outcome.to_dict(), status=201)


@app.route("/api/visits", methods=["GET"])
@require_actor(Role.ADMIN, Role.COORDINATOR)
def all_visits_route():
    result = list_all_visits()
    return _ok(result["visits"], count=result["count"])


@app.route("/api/visits/my-visits")
@require_actor()
def my_visits_route():
    visits = list_my_visits(g.actor)
    return _ok(visits, count=len(visits))


@app.route("/api/visits/family/<family_id>")
@require_actor(Role.ADMIN, Role.COORDINATOR)
def family_visits_route(family_id):
    visits = list_family_visits(family_id)
    return _ok(visits, count=len(visits))


@app.route("/api/visits/<visit_id>")
@require_actor()
def visit_detail_route(visit_id):
    return _ok(get_visit_for_actor(visit_id, g.actor))


@app.route("/api/visits/<visit_id>/validate", methods=["PATCH"])
@limiter.limit(RATE_LIMIT_CHECKIN)
@require_actor()
def validate_visit_route(visit_id):
    outcome = complete_existing_visit(visit_id, g.actor, _json_body(),
                                      entry_point="validate")
    return _ok(outcome.to_dict())


@app.route("/api/visits/<visit_id>/check-in", methods=["POST"])
@limiter.limit(RATE_LIMIT_CHECKIN)
@require_actor()
def checkin_visit_route(visit_id):
    outcome = complete_existing_visit(visit_id, g.actor, _json_body(),
                                      entry_point="checkin")
    return _ok(outcome.to_dict())


# ---------------------------------------------------------------------------
# Alerts & dashboard
# ---------------------------------------------------------------------------

@app.route("/api/alerts")
@require_actor(Role.ADMIN, Role.COORDINATOR)
def alerts_route():
    return _ok(compute_alerts().to_dict())


@app.route("/api/stats")
@require_actor(Role.ADMIN, Role.COORDINATOR)
def stats_route():
    return _ok(compute_dashboard_stats())


@app.route("/healthz")
@limiter.exempt
def healthz():
    try:
        conn = _get_db()
        conn.execute("SELECT 1").fetchone()
        conn.close()
    except Exception:
        logger.exception("Health check: database unavailable")
        return jsonify({"status": "error", "database": "unavailable"}), 503
    return jsonify({"status": "ok"}), 200


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(VisitError)
def visit_error(e):
    if e.status_code >= 500:
        logger.error("[%s] %s", g.get("request_id", "-"), e.message)
    return jsonify(e.to_dict()), e.status_code


@app.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify({
        "success": False,
        "error": "Too many requests. Please wait and try again.",
    }), 429


@app.errorhandler(HTTPException)
def http_error(e):
    return jsonify({"success": False, "error": e.description or e.name}), e.code


@app.errorhandler(500)
def internal_error(e):
    return jsonify({"success": False, "error": "Internal server error."}), 500


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

# Initialize database on import (safe to call repeatedly)
init_db()

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
