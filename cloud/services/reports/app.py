#!/usr/bin/env python3
"""
Fleet Report Console

HTTP surface for the fleet dashboard's report screens. Each screen picks
devices/groups, a time window and report-specific filters; the console turns
that into a backend query and either returns formatted rows, redirects to the
XLSX export, asks the backend to mail the report, or stores it as a
scheduled report. The route planning screen gets decoded, enriched route
alternatives for a device.

Backend contract (fleet server):
  GET  /api/reports/<kind>[/xlsx|/mail]?deviceId=..&groupId=..&from=..&to=..
  POST /api/reports, POST /api/permissions/bulk   (scheduled reports)
  GET  /api/devices
  GET  /api/route?deviceId=..&start=..&end=..
"""

import logging
import os
from typing import Any, Dict, Optional

from flask import Flask, jsonify, redirect, request

from access_jwt import AccessVerifier, extract_token
from backend_client import BackendClient
from console_config import ConsoleConfig, configure_logging
from report_dispatch import DispatchMode, Failed, Redirected, ReportScreen, Rows
from report_errors import NetworkFailure, ReportKindError, RoutePlanningError, SchedulePersistFailure
from report_format import format_rows
from report_kinds import REPORT_KINDS, ReportKind, get_report_kind
from report_query import FilterState
from report_schedule import schedule_report, to_schedule_request
from route_planner import RoutePlanner, require_places

logger = logging.getLogger(__name__)


def _no_store(resp):
    resp.headers["Cache-Control"] = "no-store, max-age=0"
    resp.headers["Pragma"] = "no-cache"
    return resp


def _error(message: str, status: Optional[int] = None):
    if not status or status < 400:
        status = 502
    return jsonify({"error": message}), status


def _filter_state_from_args(kind: ReportKind, args) -> FilterState:
    fields: Dict[str, Any] = kind.initial_filters()
    for item in kind.filters:
        if item.name in args:
            fields[item.name] = args.get(item.name)
    return FilterState(
        device_ids=args.getlist("deviceId"),
        group_ids=args.getlist("groupId"),
        from_time=args.get("from") or None,
        to_time=args.get("to") or None,
        fields=fields,
    )


def create_app(
    config: Optional[ConsoleConfig] = None,
    client: Optional[BackendClient] = None,
) -> Flask:
    config = config or ConsoleConfig.from_env()
    configure_logging(config)
    client = client or BackendClient(config)
    verifier = AccessVerifier(config.access, timeout=config.backend_timeout)

    app = Flask(__name__)
    app.extensions["report_console"] = {"config": config, "client": client, "verifier": verifier}

    @app.before_request
    def _enforce_access_jwt() -> Optional[Any]:
        if not verifier.requires_token(request.path):
            return None
        token = extract_token(request.headers, config.access.jwt_header)
        if not token:
            return jsonify({"error": "access_token_required"}), 401
        if not verifier.verify(token):
            return jsonify({"error": "access_token_invalid"}), 401
        return None

    @app.errorhandler(ReportKindError)
    def _unknown_kind(exc: ReportKindError):
        return jsonify({"error": str(exc)}), 404

    @app.route("/api/health", methods=["GET"])
    def api_health() -> Any:
        version = os.getenv("APP_VERSION") or "dev"
        git_sha = os.getenv("GIT_SHA", "")
        return jsonify({
            "status": "ok",
            "version": version,
            "git_sha": git_sha,
            "reports": sorted(REPORT_KINDS),
        })

    @app.route("/reports/<kind_name>", methods=["GET"])
    async def reports_run(kind_name: str) -> Any:
        kind = get_report_kind(kind_name)
        try:
            mode = DispatchMode.parse(request.args.get("type"))
        except ValueError:
            return jsonify({"error": "type must be generate, export or mail"}), 400

        screen = ReportScreen(client, kind)
        outcome = await screen.submit(_filter_state_from_args(kind, request.args), mode)

        if isinstance(outcome, Failed):
            return _error(outcome.message, outcome.status_code)
        if isinstance(outcome, Redirected):
            return redirect(outcome.url)
        if isinstance(outcome, Rows):
            return _no_store(jsonify({
                "report": kind.name,
                "columns": [{"key": column.key, "label": column.label} for column in kind.columns],
                "items": format_rows(outcome.rows, kind, config.reports_timezone),
            }))
        return jsonify({"ok": True})

    @app.route("/reports/<kind_name>/schedule", methods=["POST"])
    async def reports_schedule(kind_name: str) -> Any:
        kind = get_report_kind(kind_name)
        payload = request.get_json(silent=True) or {}
        report = payload.get("report") or {}
        device_ids = payload.get("deviceIds") or []
        if not device_ids and not payload.get("groupIds"):
            return jsonify({"error": "deviceIds or groupIds required"}), 400

        schedule = to_schedule_request(
            device_ids,
            payload.get("groupIds") or [],
            kind,
            base_attributes=report.get("attributes") or {},
            report_state={**kind.initial_filters(), **(payload.get("filters") or {})},
            report_fields=report,
        )
        try:
            await schedule_report(client, schedule)
        except SchedulePersistFailure as exc:
            return jsonify({"error": exc.message}), 400
        except NetworkFailure as exc:
            return _error(exc.message, exc.status_code)
        return jsonify({"ok": True, "location": config.scheduled_reports_path})

    @app.route("/routes/devices", methods=["GET"])
    async def routes_devices() -> Any:
        planner = RoutePlanner(client)
        try:
            devices = await planner.load_devices()
        except NetworkFailure as exc:
            return _error(exc.message, exc.status_code)
        return _no_store(jsonify({"devices": [device.to_dict() for device in devices]}))

    @app.route("/routes/plan", methods=["POST"])
    async def routes_plan() -> Any:
        payload = request.get_json(silent=True) or {}
        planner = RoutePlanner(client)
        if payload.get("mapReady", True):
            planner.mark_map_ready()
        try:
            require_places(payload.get("start"), payload.get("end"))
            if not planner.map_ready:
                raise RoutePlanningError("map is not ready")
            await planner.load_devices()
            planner.select_device(payload.get("deviceId"))
            await planner.plan_routes(payload.get("deviceId"), payload.get("start"), payload.get("end"))
        except RoutePlanningError as exc:
            return jsonify({"error": str(exc)}), 400
        except NetworkFailure as exc:
            body = planner.snapshot()
            body["error"] = exc.message
            status = exc.status_code if exc.status_code and exc.status_code >= 400 else 502
            return jsonify(body), status
        return _no_store(jsonify(planner.snapshot()))

    return app


app = create_app()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "8082")))
