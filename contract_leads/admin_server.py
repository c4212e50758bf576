"""
Admin Trigger Server for Contract Leads.

A small Flask server for manual triggers. It does no work itself: each
endpoint emits the same event the schedule would, and the job runner picks
it up.

    POST /admin/sync/<source>   sam-gov | boston-bids | commbuys-email
    POST /admin/archive
    POST /admin/alerts/check    optional JSON body {"savedSearchId": "..."}

Requests must carry the shared secret in the ``X-Admin-Token`` header.
"""

import hmac
import logging

from flask import Flask, abort, jsonify, request

from .jobs import (
    ALERTS_CHECK,
    BOSTON_BIDS_SYNC,
    COMMBUYS_EMAIL_SYNC,
    CONTRACTS_ARCHIVE,
    CONTRACTS_SYNC,
    JobRunner,
)

logger = logging.getLogger(__name__)

SYNC_EVENTS = {
    "sam-gov": CONTRACTS_SYNC,
    "boston-bids": BOSTON_BIDS_SYNC,
    "commbuys-email": COMMBUYS_EMAIL_SYNC,
}


def create_app(runner: JobRunner, admin_token: str) -> Flask:
    """
    Build the admin Flask app.

    Args:
        runner: Job runner that receives the emitted events
        admin_token: Shared secret; when empty every admin request is refused
    """
    app = Flask(__name__)

    def require_token() -> None:
        supplied = request.headers.get("X-Admin-Token", "")
        if not admin_token or not hmac.compare_digest(supplied, admin_token):
            logger.warning(f"Rejected admin request to {request.path}")
            abort(401)

    def accepted(event: str, data: dict):
        triggered = runner.send(event, data)
        logger.info(f"Manual trigger {event} -> {triggered}")
        return jsonify({"success": True, "event": event, "triggered": triggered}), 202

    @app.route("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    @app.route("/admin/sync/<source>", methods=["POST"])
    def trigger_sync(source: str):
        require_token()
        event = SYNC_EVENTS.get(source)
        if event is None:
            abort(404)
        return accepted(event, {"force": True})

    @app.route("/admin/archive", methods=["POST"])
    def trigger_archive():
        require_token()
        return accepted(CONTRACTS_ARCHIVE, {})

    @app.route("/admin/alerts/check", methods=["POST"])
    def trigger_alert_check():
        require_token()
        body = request.get_json(silent=True) or {}
        data = {}
        if body.get("savedSearchId"):
            data["savedSearchId"] = body["savedSearchId"]
        return accepted(ALERTS_CHECK, data)

    @app.errorhandler(401)
    def unauthorized(_error):
        return jsonify({"error": "Unauthorized"}), 401

    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"error": "Not found"}), 404

    return app


def run_server(host: str = "0.0.0.0", port: int = 5000, debug: bool = False):
    """
    Run the admin server with a background job runner.

    The runner here only executes triggered workflows; cron jobs belong to
    the scheduler process.
    """
    from .pipeline import build_runner

    runner, services = build_runner(schedule_cron=False)
    runner.start()
    app = create_app(runner, services.settings.app.admin_token)
    try:
        app.run(host=host, port=port, debug=debug, use_reloader=False)
    finally:
        runner.shutdown(wait=False)


def main():
    """CLI entry point for the admin server."""
    import argparse

    parser = argparse.ArgumentParser(description="Contract Leads Admin Trigger Server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=5000, help="Port to bind to")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )

    logger.info(f"Starting admin trigger server on {args.host}:{args.port}")
    run_server(args.host, args.port, args.debug)


if __name__ == "__main__":
    main()
