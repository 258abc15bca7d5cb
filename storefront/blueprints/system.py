"""Health probe, admin metrics and the in-app notification inbox."""
from __future__ import annotations

from datetime import datetime, timezone

from flask import Blueprint, g, jsonify, request

from storefront.config import Config
from storefront.database import get_db
from storefront.errors import NotFoundError
from storefront.observability import check_database_health, get_metrics_snapshot
from storefront.responses import parse_positive_int, success_response
from storefront.security import admin_required, login_required
from storefront.services.notification_service import NotificationService
from storefront.services.order_service import OrderService

system_bp = Blueprint("system", __name__, url_prefix="/api")


@system_bp.route("/health", methods=["GET"])
def health():
    database = check_database_health()
    healthy = database["status"] == "UP"
    payload = {
        "status": "ok" if healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {"database": database},
        "service": {"name": Config.APP_NAME, "version": Config.APP_VERSION},
    }
    return jsonify(payload), 200 if healthy else 503


@system_bp.route("/admin/metrics", methods=["GET"])
@admin_required
def admin_metrics():
    snapshot = get_metrics_snapshot()
    snapshot["orders_by_status"] = OrderService(get_db()).summarize_orders()
    return success_response(snapshot, "Metrics snapshot")


@system_bp.route("/notifications", methods=["GET"])
@login_required
def list_notifications():
    service = NotificationService()
    user_id = g.current_user.userID
    unread_only = request.args.get("unread_only", "").lower() in {"1", "true", "yes"}
    limit = parse_positive_int(request.args.get("limit"), 20, 50)
    return success_response(
        {
            "items": service.get_notifications(user_id, unread_only=unread_only, limit=limit),
            "unread_count": service.get_unread_count(user_id),
        },
        "Notifications retrieved",
    )


@system_bp.route("/notifications/<notification_id>/read", methods=["PUT"])
@login_required
def mark_notification_read(notification_id: str):
    if not NotificationService().mark_as_read(g.current_user.userID, notification_id):
        raise NotFoundError("Notification not found")
    return success_response(None, "Notification marked as read")


@system_bp.route("/notifications/read-all", methods=["PUT"])
@login_required
def mark_all_notifications_read():
    count = NotificationService().mark_all_as_read(g.current_user.userID)
    return success_response({"updated": count}, "All notifications marked as read")
