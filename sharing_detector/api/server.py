# sharing_detector/api/server.py
import os
import logging

from flask import Flask, jsonify, request
from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from sharing_detector import __version__
from sharing_detector.analyzer.scoring import SuspicionLevel
from sharing_detector.exceptions import (
    InvalidSettings, UnknownNAS, UnreachableNAS, PartialRuleApplication, ScanAlreadyRunning
)

logger = logging.getLogger(__name__)

load_dotenv()
API_KEY = os.getenv("API_KEY", "changeme")

MAX_PAGE_SIZE = 500
MAX_WINDOW_DAYS = 365


class InvalidParameter(ValueError):
    """Bad query string value"""
    def __init__(self, name, message):
        self.name = name
        super().__init__(f"{name}: {message}")


def _respond(data=None, message=None, success=True, status=200, **extra):
    body = {"success": success, "data": data, "message": message}
    body.update(extra)
    return jsonify(body), status


def _int_arg(name, default, minimum=1, maximum=None):
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise InvalidParameter(name, "must be an integer")
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise InvalidParameter(name, f"must be {bounds}")
    return value


class SharingAPI:
    """
    HTTP API over the detection components.

    Every route except /api/health requires the API key, given either as
    the `key` query argument or the X-API-Key header.
    """
    def __init__(self, context, api_key=None):
        self.context = context
        self.api_key = api_key or API_KEY
        self.server = Flask(__name__)

        self.setup_auth()
        self.setup_error_handlers()
        self.setup_api_routes()

    def setup_auth(self):
        @self.server.before_request
        def check_key():
            if request.path == "/api/health":
                return None
            key = request.args.get("key") or request.headers.get("X-API-Key")
            if key != self.api_key:
                return _respond(message="unauthorized", success=False, status=403)
            return None

    def setup_error_handlers(self):
        app = self.server

        @app.errorhandler(InvalidSettings)
        def invalid_settings(e):
            return _respond(message="invalid settings", success=False, status=400, errors=e.errors)

        @app.errorhandler(InvalidParameter)
        def invalid_parameter(e):
            return _respond(message=str(e), success=False, status=400, errors={e.name: str(e)})

        @app.errorhandler(UnknownNAS)
        def unknown_nas(e):
            return _respond(message=str(e), success=False, status=404)

        @app.errorhandler(UnreachableNAS)
        def unreachable_nas(e):
            return _respond(data=e.to_dict(), message=str(e), success=False, status=502)

        @app.errorhandler(PartialRuleApplication)
        def partial_rules(e):
            return _respond(data=e.result.to_dict(), message=str(e), success=False, status=502)

        @app.errorhandler(ScanAlreadyRunning)
        def scan_running(e):
            return _respond(message=str(e), success=False, status=409)

        @app.errorhandler(SQLAlchemyError)
        def database_error(e):
            logger.error(f"Database error handling {request.path}: {e}")
            return _respond(message="database error", success=False, status=500)

    def setup_api_routes(self):
        app = self.server
        ctx = self.context

        @app.route("/api/health")
        def health():
            return jsonify({
                "status": "ok",
                "version": __version__,
                "scan_state": ctx.scheduler.state.value,
                "nas_count": len(ctx.nas_registry)
            })

        @app.route("/api/sharing/live")
        def live():
            threshold = _int_arg("threshold", None)
            settings = ctx.settings.get()
            snapshot = ctx.live_analyzer.snapshot(settings, threshold=threshold)
            return _respond(data=snapshot.to_dict())

        @app.route("/api/sharing/subscribers/<username>")
        def subscriber(username):
            settings = ctx.settings.get()
            result = ctx.live_analyzer.subscriber_detail(username, settings)
            records = [
                r for r in ctx.history.history(days=settings.retention_days, username=username, limit=0)
                if r.username == username
            ]
            if result is None and not records:
                return _respond(message=f"subscriber {username} not found", success=False, status=404)
            return _respond(data={
                "username": username,
                "online": result is not None,
                "live": result.to_dict() if result else None,
                "history": [r.to_dict() for r in records],
                "detection_count": len(records)
            })

        @app.route("/api/sharing/nas/rules")
        def rule_statuses():
            statuses = ctx.rule_manager.get_all_statuses(ctx.nas_registry.all(), max_workers=ctx.max_workers)
            return _respond(data=[s.to_dict() for s in statuses])

        @app.route("/api/sharing/nas/<int:nas_id>/rules/generate", methods=["POST"])
        def generate_rules(nas_id):
            nas = ctx.nas_registry.get(nas_id)
            result = ctx.rule_manager.generate_rules(nas)
            message = f"{len(result.created)} TTL rules created on {nas.name}"
            return _respond(data=result.to_dict(), message=message)

        @app.route("/api/sharing/nas/<int:nas_id>/rules/remove", methods=["POST"])
        def remove_rules(nas_id):
            nas = ctx.nas_registry.get(nas_id)
            result = ctx.rule_manager.remove_rules(nas)
            message = f"{result.removed_count} TTL rules removed from {nas.name}"
            return _respond(data=result.to_dict(), message=message, success=result.success)

        @app.route("/api/sharing/scan", methods=["POST"])
        def scan():
            summary = ctx.scheduler.run_scan("manual")
            return _respond(data=summary.to_dict(), message=f"{summary.saved_count} detections saved")

        @app.route("/api/sharing/history", methods=["GET"])
        def history():
            days = _int_arg("days", 7, maximum=MAX_WINDOW_DAYS)
            page = _int_arg("page", 1)
            limit = _int_arg("limit", 50, maximum=MAX_PAGE_SIZE)
            username = request.args.get("username") or None

            level = request.args.get("suspicion_level") or None
            if level is not None:
                try:
                    level = SuspicionLevel.parse(level)
                except ValueError:
                    raise InvalidParameter("suspicion_level", "must be low, medium or high")

            records = ctx.history.history(
                days=days, suspicion_level=level, username=username,
                limit=limit, offset=(page - 1) * limit
            )
            total = ctx.history.count_history(days=days, suspicion_level=level, username=username)
            return _respond(data={
                "records": [r.to_dict() for r in records],
                "total": total,
                "page": page,
                "limit": limit
            })

        @app.route("/api/sharing/history", methods=["DELETE"])
        def purge_history():
            deleted = ctx.history.purge_all()
            return _respond(data={"deleted": deleted}, message=f"{deleted} records deleted")

        @app.route("/api/sharing/trends")
        def trends():
            days = _int_arg("days", 7, maximum=MAX_WINDOW_DAYS)
            return _respond(data=ctx.history.trends(days=days))

        @app.route("/api/sharing/repeat-offenders")
        def repeat_offenders():
            settings = ctx.settings.get()
            days = _int_arg("days", 30, maximum=MAX_WINDOW_DAYS)
            min_count = _int_arg("min_count", settings.repeat_threshold)
            return _respond(data=ctx.history.repeat_offenders(days=days, min_count=min_count))

        @app.route("/api/sharing/settings", methods=["GET"])
        def get_settings():
            return _respond(data=ctx.settings.get().to_dict())

        @app.route("/api/sharing/settings", methods=["PUT"])
        def update_settings():
            changes = request.get_json(silent=True)
            if changes is None:
                raise InvalidSettings({"body": "expected a JSON object"})
            settings = ctx.settings.update(changes)
            return _respond(data=settings.to_dict(), message="settings updated")

    def run_server(self, host='0.0.0.0', port=8060, debug=False):
        """Run the Flask server; blocks until it shuts down"""
        try:
            logger.info(f"Starting API on http://{host}:{port}")
            self.server.run(debug=debug, host=host, port=port, use_reloader=False)
        except Exception as e:
            logger.error(f"Failed to start API server: {e}")
            raise


def create_app(context, api_key=None):
    """Flask application for `context`"""
    return SharingAPI(context, api_key=api_key).server
