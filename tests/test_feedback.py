import csv
import io
from datetime import datetime, timedelta, timezone

import pytest

from storefront.errors import NotFoundError, ValidationError
from storefront.models import Feedback, FeedbackStatus, FeedbackType
from storefront.services.email_service import DeliveryResult
from storefront.services.feedback_service import CSV_HEADERS, FeedbackService
from storefront.services.notification_service import NotificationService


class RecordingEmailService:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send(self, recipients, subject, body):
        if self.fail:
            raise RuntimeError("smtp exploded")
        self.sent.append({"recipients": list(recipients), "subject": subject, "body": body})
        return DeliveryResult(True, "email", list(recipients))


@pytest.fixture
def email_service():
    return RecordingEmailService()


@pytest.fixture
def feedback_service(db_session, email_service):
    return FeedbackService(db_session, email_service=email_service)


def _payload(**overrides):
    payload = {
        "feedback_type": "bug",
        "rating": 4,
        "description": "The checkout button does nothing on Safari.",
        "selected_issues": ["checkout", "browser"],
        "contact_method": "reporter@example.com",
        "receive_reply": True,
        "browser_info": {"userAgent": "Safari/17"},
    }
    payload.update(overrides)
    return payload


def test_submit_feedback_via_api(client, db_session):
    response = client.post(
        "/api/feedback",
        json=_payload(description="<script>alert(1)</script>Page is broken badly"),
        headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
    )
    assert response.status_code == 201
    feedback_id = response.get_json()["data"]["id"]

    feedback = db_session.get(Feedback, feedback_id)
    assert feedback.status == FeedbackStatus.PENDING
    assert feedback.ip_address == "203.0.113.7"
    assert "<script>" not in feedback.description
    assert feedback.description.endswith("Page is broken badly")


@pytest.mark.parametrize(
    "overrides,field",
    [
        ({"feedback_type": "rant"}, "feedback_type"),
        ({"rating": 0}, "rating"),
        ({"rating": 4.5}, "rating"),
        ({"description": "   short   "}, "description"),
        ({"description": "<p>          </p><br><br>"}, "description"),
        ({"description": "x" * 1001}, "description"),
        ({"selected_issues": []}, "selected_issues"),
        ({"selected_issues": ["a", "b", "c", "d", "e", "f"]}, "selected_issues"),
        ({"contact_method": "not a contact"}, "contact_method"),
        ({"contact_method": None, "receive_reply": True}, "receive_reply"),
        ({"browser_info": "Safari"}, "browser_info"),
    ],
)
def test_submit_feedback_validation(feedback_service, overrides, field):
    with pytest.raises(ValidationError) as excinfo:
        feedback_service.submit(_payload(**overrides))
    assert field in excinfo.value.errors


def test_phone_contact_is_accepted(feedback_service):
    feedback = feedback_service.submit(_payload(contact_method="+86 138-0013-8000"))
    assert feedback.contact_method == "+86 138-0013-8000"


def test_good_rating_sends_no_priority_notification(feedback_service, email_service, admin):
    feedback_service.submit(_payload(rating=4))
    assert email_service.sent == []
    assert NotificationService().get_unread_count(admin.userID) == 0


@pytest.mark.parametrize("rating,priority", [(1, "high"), (2, "high"), (3, "medium")])
def test_low_rating_notifies_admins(feedback_service, email_service, admin, rating, priority):
    feedback_service.submit(_payload(rating=rating))

    assert len(email_service.sent) == 1
    assert email_service.sent[0]["recipients"] == [admin.email]
    inbox = NotificationService().get_notifications(admin.userID)
    assert len(inbox) == 1
    assert inbox[0]["priority"] == priority


def test_notification_failure_does_not_fail_submission(db_session, admin):
    service = FeedbackService(db_session, email_service=RecordingEmailService(fail=True))
    feedback = service.submit(_payload(rating=1))
    assert feedback.feedbackID is not None
    assert db_session.query(Feedback).count() == 1


def test_stats(feedback_service, db_session):
    for feedback_type, rating in [("bug", 1), ("bug", 5), ("ui", 4), ("content", 3)]:
        feedback_service.submit(_payload(feedback_type=feedback_type, rating=rating))
    feedback_service.update_status(1, "resolved")

    stats = feedback_service.stats()
    assert stats["total_feedbacks"] == 4
    assert stats["average_rating"] == 3.25
    assert stats["type_distribution"][0] == {"type": "bug", "count": 2, "percentage": 50.0}
    assert {row["rating"]: row["count"] for row in stats["rating_distribution"]} == {1: 1, 3: 1, 4: 1, 5: 1}
    assert {row["status"]: row["count"] for row in stats["status_distribution"]} == {"pending": 3, "resolved": 1}

    trend = stats["weekly_trend"]
    assert len(trend) == 7
    assert trend[-1]["count"] == 4
    assert sum(day["count"] for day in trend[:-1]) == 0


def test_stats_respects_date_range(feedback_service, db_session):
    old = feedback_service.submit(_payload())
    old.created_at = datetime.now(timezone.utc) - timedelta(days=30)
    db_session.commit()
    feedback_service.submit(_payload())

    stats = feedback_service.stats(start_date=datetime.now(timezone.utc) - timedelta(days=7))
    assert stats["total_feedbacks"] == 1


def test_list_filters_and_paginates(feedback_service):
    for rating in (1, 2, 5):
        feedback_service.submit(_payload(rating=rating))
    feedback_service.submit(_payload(feedback_type="suggestion", rating=4))

    items, total = feedback_service.list({"feedback_type": "bug"}, page=1, page_size=2, sort_by="rating", sort_order="asc")
    assert total == 3
    assert [item.rating for item in items] == [1, 2]

    items, total = feedback_service.list({"rating": "4"})
    assert total == 1
    assert items[0].feedback_type == FeedbackType.SUGGESTION

    with pytest.raises(ValidationError):
        feedback_service.list({}, sort_by="ip_address")
    with pytest.raises(ValidationError):
        feedback_service.list({"status": "archived"})


def test_update_status_appends_history_and_emails_on_resolution(feedback_service, email_service):
    feedback = feedback_service.submit(_payload(rating=5))
    feedback_service.update_status(feedback.feedbackID, "processing", "Looking into it")
    feedback = feedback_service.update_status(feedback.feedbackID, "resolved", "Fixed in 2.3.1")

    assert [comment.status for comment in feedback.comments] == [FeedbackStatus.PROCESSING, FeedbackStatus.RESOLVED]
    assert feedback.comments[1].comment == "Fixed in 2.3.1"
    assert len(email_service.sent) == 1
    assert email_service.sent[0]["recipients"] == ["reporter@example.com"]
    assert "Fixed in 2.3.1" in email_service.sent[0]["body"]


def test_resolution_email_needs_email_contact_and_reply_request(feedback_service, email_service):
    by_phone = feedback_service.submit(_payload(rating=5, contact_method="+15551234567"))
    no_reply = feedback_service.submit(_payload(rating=5, receive_reply=False))
    feedback_service.update_status(by_phone.feedbackID, "resolved")
    feedback_service.update_status(no_reply.feedbackID, "resolved")
    assert email_service.sent == []


def test_update_status_rejects_unknown_status_and_missing_feedback(feedback_service):
    feedback = feedback_service.submit(_payload())
    with pytest.raises(ValidationError):
        feedback_service.update_status(feedback.feedbackID, "archived")
    with pytest.raises(NotFoundError):
        feedback_service.update_status(999, "closed")


def test_high_priority_ordering(feedback_service):
    ids = {}
    for rating in (3, 1, 5, 2, 1):
        ids.setdefault(rating, []).append(feedback_service.submit(_payload(rating=rating)).feedbackID)
    feedback_service.update_status(ids[2][0], "closed")

    items = feedback_service.high_priority()
    assert [item.rating for item in items] == [1, 1, 3]
    # newest first among equal ratings
    assert [item.feedbackID for item in items[:2]] == sorted(ids[1], reverse=True)


def test_export_csv(feedback_service):
    feedback_service.submit(_payload(description='Says "hello", then crashes badly'))
    content = feedback_service.export_csv({})

    rows = list(csv.reader(io.StringIO(content)))
    assert rows[0] == CSV_HEADERS
    assert rows[1][1] == "Bug"
    assert rows[1][2] == "checkout;browser"
    assert rows[1][4] == 'Says "hello", then crashes badly'


def test_admin_feedback_endpoints(client, admin_headers, customer_headers):
    client.post("/api/feedback", json=_payload(rating=2))
    client.post("/api/feedback", json=_payload(rating=5, feedback_type="ui"))

    assert client.get("/api/feedback/stats", headers=customer_headers).status_code == 403

    stats = client.get("/api/feedback/stats", headers=admin_headers).get_json()["data"]
    assert stats["total_feedbacks"] == 2

    listing = client.get("/api/feedback?page_size=1", headers=admin_headers).get_json()["data"]
    assert listing["pagination"] == {"page": 1, "pages": 2, "page_size": 1, "total": 2}
    assert "ip_address" not in listing["items"][0]

    too_big = client.get("/api/feedback?page_size=500", headers=admin_headers)
    assert too_big.status_code == 400

    bad_range = client.get("/api/feedback/stats?start_date=2024-05-01&end_date=2024-01-01", headers=admin_headers)
    assert bad_range.status_code == 400

    feedback_id = listing["items"][0]["id"]
    assert client.get(f"/api/feedback/{feedback_id}", headers=admin_headers).status_code == 200
    response = client.put(
        f"/api/feedback/{feedback_id}/status", json={"status": "closed", "comment": "dup"}, headers=admin_headers
    )
    assert response.get_json()["data"]["status"] == "closed"

    high = client.get("/api/feedback/high-priority", headers=admin_headers).get_json()["data"]
    assert [item["rating"] for item in high] == [2]

    export = client.get("/api/feedback/export", headers=admin_headers)
    assert export.status_code == 200
    assert export.mimetype == "text/csv"
    assert "attachment" in export.headers["Content-Disposition"]


def test_markup_only_description_is_rejected_over_http(client, db_session):
    response = client.post("/api/feedback", json=_payload(description="<p>          </p><br><br>"))
    assert response.status_code == 400
    assert "description" in response.get_json()["errors"]
    assert db_session.query(Feedback).count() == 0
