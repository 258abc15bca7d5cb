from __future__ import annotations

from datetime import datetime, timezone

from flask import Blueprint, Response, request

from storefront.blueprints import json_body
from storefront.database import get_db
from storefront.errors import ValidationError
from storefront.responses import paginate_payload, success_response
from storefront.security import admin_required
from storefront.serializers import serialize_feedback
from storefront.services.feedback_service import FeedbackService
from storefront.validators import validate_date_range, validate_pagination

feedback_bp = Blueprint("feedback", __name__, url_prefix="/api/feedback")


def _get_feedback_service() -> FeedbackService:
    return FeedbackService(get_db())


def _filters_from_args() -> dict:
    errors, start, end = validate_date_range(request.args.get("start_date"), request.args.get("end_date"))
    if errors:
        raise ValidationError(errors)
    return {
        "start_date": start,
        "end_date": end,
        "feedback_type": request.args.get("feedback_type"),
        "rating": request.args.get("rating"),
        "status": request.args.get("status"),
    }


def _client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    return forwarded.split(",")[0].strip() or request.remote_addr or ""


@feedback_bp.route("", methods=["POST"])
def submit_feedback():
    feedback = _get_feedback_service().submit(json_body(), ip_address=_client_ip())
    return success_response({"id": feedback.feedbackID}, "Thank you for your feedback", 201)


@feedback_bp.route("/stats", methods=["GET"])
@admin_required
def feedback_stats():
    errors, start, end = validate_date_range(request.args.get("start_date"), request.args.get("end_date"))
    if errors:
        raise ValidationError(errors)
    return success_response(_get_feedback_service().stats(start, end), "Feedback statistics retrieved")


@feedback_bp.route("", methods=["GET"])
@admin_required
def list_feedback():
    errors, page, page_size = validate_pagination(request.args.get("page"), request.args.get("page_size"))
    if errors:
        raise ValidationError(errors)
    feedbacks, total = _get_feedback_service().list(
        _filters_from_args(),
        page=page,
        page_size=page_size,
        sort_by=request.args.get("sort_by", "created_at"),
        sort_order=request.args.get("sort_order", "desc"),
    )
    return success_response(
        paginate_payload([serialize_feedback(item) for item in feedbacks], page, page_size, total),
        "Feedback retrieved",
    )


@feedback_bp.route("/export", methods=["GET"])
@admin_required
def export_feedback():
    content = _get_feedback_service().export_csv(_filters_from_args())
    filename = f"feedback-{datetime.now(timezone.utc):%Y%m%d%H%M%S}.csv"
    return Response(
        content,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@feedback_bp.route("/high-priority", methods=["GET"])
@admin_required
def high_priority_feedback():
    feedbacks = _get_feedback_service().high_priority()
    return success_response([serialize_feedback(item) for item in feedbacks], "High priority feedback retrieved")


@feedback_bp.route("/<int:feedback_id>", methods=["GET"])
@admin_required
def get_feedback(feedback_id: int):
    return success_response(serialize_feedback(_get_feedback_service().get(feedback_id)), "Feedback retrieved")


@feedback_bp.route("/<int:feedback_id>/status", methods=["PUT"])
@admin_required
def update_feedback_status(feedback_id: int):
    payload = json_body()
    feedback = _get_feedback_service().update_status(feedback_id, payload.get("status"), payload.get("comment"))
    return success_response(serialize_feedback(feedback), "Feedback status updated")
