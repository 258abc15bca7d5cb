from __future__ import annotations

from flask import Blueprint, current_app, g, request

from storefront.blueprints import json_body
from storefront.errors import ServiceUnavailableError, ValidationError
from storefront.monitoring import MonitoringService
from storefront.responses import parse_positive_int, success_response
from storefront.security import admin_required

monitoring_bp = Blueprint("monitoring", __name__, url_prefix="/api/monitoring")


def _get_monitoring_service() -> MonitoringService:
    service = current_app.extensions.get("monitoring")
    if service is None:
        raise ServiceUnavailableError("Monitoring is not configured")
    return service


@monitoring_bp.route("/status", methods=["GET"])
@admin_required
def monitoring_status():
    return success_response(_get_monitoring_service().get_status(), "Monitoring status retrieved")


@monitoring_bp.route("/metrics", methods=["GET"])
@admin_required
def monitoring_metrics():
    history = _get_monitoring_service().get_metrics_history(request.args.get("metric"))
    return success_response(history, "Metric history retrieved")


@monitoring_bp.route("/alerts", methods=["GET"])
@admin_required
def monitoring_alerts():
    alerts = _get_monitoring_service().list_alerts(
        severity=request.args.get("severity"), status=request.args.get("status")
    )
    return success_response({"items": alerts, "total": len(alerts)}, "Alerts retrieved")


@monitoring_bp.route("/collect", methods=["POST"])
@admin_required
def collect_metrics():
    metrics, opened = _get_monitoring_service().collect_and_evaluate()
    return success_response(
        {"metrics": metrics, "new_alerts": [alert.to_dict() for alert in opened]},
        "Metrics collected",
    )


@monitoring_bp.route("/health-check", methods=["POST"])
@admin_required
def health_check():
    return success_response(_get_monitoring_service().check_service_health(), "Health check completed")


@monitoring_bp.route("/alerts/cleanup", methods=["DELETE"])
@admin_required
def cleanup_alerts():
    days = parse_positive_int(request.args.get("days"), 7)
    removed = _get_monitoring_service().cleanup_old_alerts(days)
    return success_response({"removed": removed, "days": days}, f"Alerts older than {days} day(s) removed")


@monitoring_bp.route("/silence", methods=["POST"])
@admin_required
def silence_alerts():
    payload = json_body()
    duration = payload.get("duration_seconds")
    if duration is not None and (isinstance(duration, bool) or not isinstance(duration, int) or duration < 1):
        raise ValidationError({"duration_seconds": "duration_seconds must be a positive integer"})
    silence = _get_monitoring_service().silence(
        duration, reason=str(payload.get("reason") or ""), creator=g.current_user.email
    )
    return success_response(silence.to_dict(), "Alert notifications silenced")


@monitoring_bp.route("/silence", methods=["DELETE"])
@admin_required
def unsilence_alerts():
    return success_response(_get_monitoring_service().unsilence().to_dict(), "Alert notifications resumed")
