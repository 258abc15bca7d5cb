"""
User feedback intake, triage and reporting.

Low ratings notify administrators by email and in-app; delivery problems
are logged and never fail the submission.
"""
from __future__ import annotations

import csv
import io
import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import asc, desc, func
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.errors import NotFoundError, ValidationError
from storefront.models import Feedback, FeedbackComment, FeedbackStatus, FeedbackType, User, UserRole
from storefront.observability import increment_counter, record_event
from storefront.services.email_service import EmailService
from storefront.services.notification_service import NotificationService
from storefront.validators import (
    is_valid_email,
    sanitize_text,
    validate_feedback_input,
    validate_feedback_status,
)

FEEDBACK_TYPE_LABELS = {
    FeedbackType.BUG: "Bug",
    FeedbackType.SUGGESTION: "Suggestion",
    FeedbackType.PERFORMANCE: "Performance issue",
    FeedbackType.UI: "UI / experience",
    FeedbackType.CONTENT: "Content error",
    FeedbackType.OTHER: "Other",
}

SORTABLE_FIELDS = {
    "created_at": Feedback.created_at,
    "updated_at": Feedback.updated_at,
    "rating": Feedback.rating,
    "status": Feedback.status,
    "feedback_type": Feedback.feedback_type,
}

CSV_HEADERS = ["ID", "Type", "Issues", "Rating", "Description", "Contact", "Status", "Created At", "Updated At"]

HIGH_PRIORITY_LIMIT = 10
TREND_DAYS = 7


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class FeedbackService:
    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        email_service: Optional[EmailService] = None,
        notification_service: Optional[NotificationService] = None,
    ) -> None:
        self.db = db_session
        self.config = config
        self.email_service = email_service or EmailService(config)
        self.notification_service = notification_service or NotificationService()
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------
    def submit(self, payload: Mapping[str, Any], ip_address: Optional[str] = None) -> Feedback:
        errors = validate_feedback_input(payload)
        if errors:
            raise ValidationError(errors)

        contact = (payload.get("contact_method") or "").strip() or None
        feedback = Feedback(
            feedback_type=FeedbackType(payload["feedback_type"]),
            selected_issues=[sanitize_text(str(issue)) for issue in payload.get("selected_issues") or []],
            rating=payload["rating"],
            description=sanitize_text(payload["description"]),
            contact_method=contact,
            browser_info=payload.get("browser_info"),
            receive_reply=bool(payload.get("receive_reply")),
            ip_address=ip_address,
            status=FeedbackStatus.PENDING,
        )
        self.db.add(feedback)
        self.db.commit()
        self.db.refresh(feedback)

        increment_counter(
            "feedback_submitted_total",
            labels={"type": feedback.feedback_type.value, "rating": str(feedback.rating)},
        )
        self.logger.info(
            "Feedback %s received",
            feedback.feedbackID,
            extra={"feedback_type": feedback.feedback_type.value, "rating": feedback.rating},
        )

        if feedback.rating <= self.config.FEEDBACK_HIGH_PRIORITY_RATING:
            self.send_high_priority_notification(feedback)
        return feedback

    def send_high_priority_notification(self, feedback: Feedback) -> None:
        priority = "high" if feedback.rating <= 2 else "medium"
        type_label = FEEDBACK_TYPE_LABELS.get(FeedbackType(feedback.feedback_type), feedback.feedback_type)
        title = f"[High priority feedback] New {type_label} feedback"
        issues = ", ".join(feedback.selected_issues or []) or "none selected"
        message = f"User rating: {feedback.rating}\nIssues: {issues}\n\n{feedback.description}"
        if feedback.contact_method:
            message += f"\n\nContact: {feedback.contact_method}"

        try:
            admins = self.db.query(User).filter(User.role == UserRole.ADMIN, User.is_active.is_(True)).all()
            recipients = list(self.config.ADMIN_EMAILS) or [admin.email for admin in admins]
            if recipients:
                self.email_service.send(recipients, title, message)
            self.notification_service.broadcast(
                [admin.userID for admin in admins],
                "feedback_high_priority",
                title,
                message,
                reference_id=feedback.feedbackID,
                reference_type="feedback",
                priority=priority,
            )
        except Exception:
            # Notification is best-effort; the feedback itself is already stored
            self.logger.exception("High priority notification failed for feedback %s", feedback.feedbackID)
            return

        increment_counter("feedback_high_priority_total", labels={"priority": priority})
        record_event("feedback_high_priority", {"feedback_id": feedback.feedbackID, "priority": priority})

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def _filtered_query(self, filters: Mapping[str, Any]):
        query = self.db.query(Feedback)
        if filters.get("start_date"):
            query = query.filter(Feedback.created_at >= _as_naive_utc(filters["start_date"]))
        if filters.get("end_date"):
            query = query.filter(Feedback.created_at <= _as_naive_utc(filters["end_date"]))
        if filters.get("feedback_type"):
            try:
                query = query.filter(Feedback.feedback_type == FeedbackType(filters["feedback_type"]))
            except ValueError:
                raise ValidationError({"feedback_type": "Invalid feedback type"})
        if filters.get("status"):
            try:
                query = query.filter(Feedback.status == FeedbackStatus(filters["status"]))
            except ValueError:
                raise ValidationError({"status": "Invalid feedback status"})
        if filters.get("rating") not in (None, ""):
            try:
                query = query.filter(Feedback.rating == int(filters["rating"]))
            except (TypeError, ValueError):
                raise ValidationError({"rating": "Rating must be an integer"})
        return query

    def stats(self, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None) -> Dict[str, Any]:
        filters = {"start_date": start_date, "end_date": end_date}
        base = self._filtered_query(filters)
        total = base.count()
        average = base.with_entities(func.avg(Feedback.rating)).scalar()

        type_rows = (
            base.with_entities(Feedback.feedback_type, func.count(Feedback.feedbackID))
            .group_by(Feedback.feedback_type)
            .order_by(desc(func.count(Feedback.feedbackID)))
            .all()
        )
        rating_rows = (
            base.with_entities(Feedback.rating, func.count(Feedback.feedbackID))
            .group_by(Feedback.rating)
            .order_by(asc(Feedback.rating))
            .all()
        )
        status_rows = (
            base.with_entities(Feedback.status, func.count(Feedback.feedbackID))
            .group_by(Feedback.status)
            .all()
        )

        return {
            "total_feedbacks": total,
            "average_rating": round(float(average), 2) if average is not None else 0,
            "type_distribution": [
                {
                    "type": FeedbackType(feedback_type).value,
                    "count": count,
                    "percentage": round(count / total * 100, 1) if total else 0,
                }
                for feedback_type, count in type_rows
            ],
            "rating_distribution": [{"rating": rating, "count": count} for rating, count in rating_rows],
            "status_distribution": [
                {"status": FeedbackStatus(status).value, "count": count} for status, count in status_rows
            ],
            "weekly_trend": self.weekly_trend(end_date),
        }

    def weekly_trend(self, end_date: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Daily counts and average rating for the seven days ending at ``end_date``."""
        end = _as_naive_utc(end_date) if end_date else datetime.now(timezone.utc).replace(tzinfo=None)
        start = (end - timedelta(days=TREND_DAYS - 1)).replace(hour=0, minute=0, second=0, microsecond=0)
        rows = (
            self.db.query(Feedback.created_at, Feedback.rating)
            .filter(Feedback.created_at >= start, Feedback.created_at <= end)
            .all()
        )

        buckets: "OrderedDict[str, List[int]]" = OrderedDict(
            ((start + timedelta(days=offset)).date().isoformat(), []) for offset in range(TREND_DAYS)
        )
        for created_at, rating in rows:
            key = created_at.date().isoformat()
            if key in buckets:
                buckets[key].append(rating)

        return [
            {
                "date": day,
                "count": len(ratings),
                "average_rating": round(sum(ratings) / len(ratings), 2) if ratings else 0,
            }
            for day, ratings in buckets.items()
        ]

    def list(
        self,
        filters: Mapping[str, Any],
        page: int = 1,
        page_size: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Tuple[List[Feedback], int]:
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError({"sort_by": f"sort_by must be one of {', '.join(sorted(SORTABLE_FIELDS))}"})
        column = SORTABLE_FIELDS[sort_by]
        query = self._filtered_query(filters)
        total = query.count()
        ordering = asc(column) if sort_order == "asc" else desc(column)
        feedbacks = (
            query.order_by(ordering, desc(Feedback.feedbackID))
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return feedbacks, total

    def get(self, feedback_id: int) -> Feedback:
        feedback = self.db.query(Feedback).filter_by(feedbackID=feedback_id).first()
        if feedback is None:
            raise NotFoundError("Feedback not found")
        return feedback

    def update_status(self, feedback_id: int, status: Any, comment: Optional[str] = None) -> Feedback:
        errors = validate_feedback_status(status)
        if errors:
            raise ValidationError(errors)
        new_status = FeedbackStatus(status)
        feedback = self.get(feedback_id)
        old_status = FeedbackStatus(feedback.status)
        comment_text = sanitize_text(comment) or None

        feedback.status = new_status
        feedback.comments.append(FeedbackComment(status=new_status, comment=comment_text))
        self.db.commit()
        self.db.refresh(feedback)

        increment_counter("feedback_status_changes_total", labels={"to_status": new_status.value})
        self.logger.info("Feedback %s moved from %s to %s", feedback_id, old_status.value, new_status.value)

        if (
            new_status == FeedbackStatus.RESOLVED
            and feedback.receive_reply
            and is_valid_email(feedback.contact_method)
        ):
            self.send_resolution_email(feedback, comment_text)
        return feedback

    def send_resolution_email(self, feedback: Feedback, comment: Optional[str]) -> None:
        type_label = FEEDBACK_TYPE_LABELS.get(FeedbackType(feedback.feedback_type), feedback.feedback_type)
        body = (
            f"Thank you for your {type_label.lower()} feedback (#{feedback.feedbackID}).\n\n"
            f"Your report:\n{feedback.description}\n\n"
            f"Resolution:\n{comment or 'Your feedback has been resolved.'}"
        )
        result = self.email_service.send([feedback.contact_method.strip()], "Your feedback has been resolved", body)
        if not result.success:
            self.logger.warning("Resolution email for feedback %s not delivered: %s", feedback.feedbackID, result.error)

    def high_priority(self) -> List[Feedback]:
        return (
            self.db.query(Feedback)
            .filter(
                Feedback.rating <= self.config.FEEDBACK_HIGH_PRIORITY_RATING,
                Feedback.status != FeedbackStatus.CLOSED,
            )
            .order_by(asc(Feedback.rating), desc(Feedback.created_at), desc(Feedback.feedbackID))
            .limit(HIGH_PRIORITY_LIMIT)
            .all()
        )

    def export_csv(self, filters: Mapping[str, Any]) -> str:
        feedbacks = (
            self._filtered_query(filters)
            .order_by(desc(Feedback.created_at), desc(Feedback.feedbackID))
            .all()
        )
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for feedback in feedbacks:
            writer.writerow(
                [
                    feedback.feedbackID,
                    FEEDBACK_TYPE_LABELS.get(FeedbackType(feedback.feedback_type), feedback.feedback_type),
                    ";".join(feedback.selected_issues or []),
                    feedback.rating,
                    feedback.description,
                    feedback.contact_method or "",
                    FeedbackStatus(feedback.status).value,
                    feedback.created_at.isoformat() if feedback.created_at else "",
                    feedback.updated_at.isoformat() if feedback.updated_at else "",
                ]
            )
        increment_counter("feedback_exports_total")
        return buffer.getvalue()
