"""
Tests: response submission pipeline.

Covers:
    - save_progress upsert, idempotency and monotonic last_saved_at
    - submit validation field map (no row written on failure)
    - write-once after submit
    - assignment / closed / draft guards
    - post-commit notifications and failure isolation
    - attester and owner read models
"""

import pytest
from sqlalchemy import func, select

from app.core.exceptions import (
    ClosedCertificationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.models import db as _db
from app.models.certification import AttestationResponse
from app.models.notification import Notification
from app.services import assignment_service, response_service
from app.services.notification import set_notification_sink

QUESTIONS = [
    {"id": "q1", "question": "Are all accounts reviewed?", "type": "yes_no", "required": True},
    {"id": "q2", "question": "Which systems?", "type": "multiple_choice",
     "options": ["ERP", "CRM", "HR"], "required": True},
    {"id": "q3", "question": "Notes", "type": "text", "required": False},
]

COMPLETE = [
    {"question_id": "q1", "answer": "yes", "comments": "checked"},
    {"question_id": "q2", "answer": ["ERP", "HR"]},
]


@pytest.fixture()
def open_cert(draft_certification, owner, make_user, notifications):
    """Open certification with two L1 attesters in G1 and reviewer R."""
    draft_certification.questions = QUESTIONS
    draft_certification.status = "open"
    _db.session.commit()

    a, b, r = make_user("alice"), make_user("bob"), make_user("rita")
    assignment_service.replace_assignments(
        draft_certification.id,
        [{"user_id": a.id, "group_id": "G1"}, {"user_id": b.id, "group_id": "G1"}],
        [{"user_id": r.id, "group_id": "G1"}],
        actor_id=owner.id,
    )
    notifications.messages.clear()
    return draft_certification, a, b, r


def _response_count(cert_id):
    return _db.session.execute(
        select(func.count(AttestationResponse.id)).where(AttestationResponse.certification_id == cert_id)
    ).scalar_one()


class TestSaveProgress:
    def test_creates_in_progress_row(self, open_cert):
        cert, a, _, _ = open_cert
        saved_at = response_service.save_progress(cert.id, a.id, [{"question_id": "q1", "answer": "no"}])

        row = _db.session.execute(select(AttestationResponse)).scalar_one()
        assert row.status == "in_progress"
        assert row.responses == [{"question_id": "q1", "answer": "no"}]
        assert saved_at is not None

    def test_partial_answers_allowed(self, open_cert):
        cert, a, _, _ = open_cert
        response_service.save_progress(cert.id, a.id, [])
        assert _response_count(cert.id) == 1

    def test_idempotent_and_monotonic(self, open_cert):
        cert, a, _, _ = open_cert
        answers = [{"question_id": "q1", "answer": "yes"}]

        first = response_service.save_progress(cert.id, a.id, answers)
        second = response_service.save_progress(cert.id, a.id, answers)

        assert second > first
        row = _db.session.execute(select(AttestationResponse)).scalar_one()
        assert row.responses == answers
        assert _response_count(cert.id) == 1

    def test_malformed_answers(self, open_cert):
        cert, a, _, _ = open_cert
        with pytest.raises(ValidationError) as exc:
            response_service.save_progress(cert.id, a.id, [{"answer": "yes"}])
        assert "answers[0]" in exc.value.details

        with pytest.raises(ValidationError):
            response_service.save_progress(cert.id, a.id, {"q1": "yes"})

    def test_unassigned_user_forbidden(self, open_cert, make_user):
        cert = open_cert[0]
        outsider = make_user("outsider")
        with pytest.raises(ForbiddenError):
            response_service.save_progress(cert.id, outsider.id, [])

    def test_closed_certification(self, open_cert):
        cert, a, _, _ = open_cert
        cert.status = "closed"
        _db.session.commit()
        with pytest.raises(ClosedCertificationError):
            response_service.save_progress(cert.id, a.id, [])

    def test_missing_certification(self, open_cert):
        with pytest.raises(NotFoundError):
            response_service.save_progress(9999, open_cert[1].id, [])


class TestSubmit:
    def test_missing_required_answers_map(self, open_cert):
        cert, a, _, _ = open_cert
        with pytest.raises(ValidationError) as exc:
            response_service.submit(cert.id, a.id, [{"question_id": "q1", "answer": "yes"},
                                                    {"question_id": "q2", "answer": []}])
        assert exc.value.details == {"q2": "Please select at least one option"}
        assert _response_count(cert.id) == 0

    def test_every_offending_question_listed(self, open_cert):
        cert, a, _, _ = open_cert
        with pytest.raises(ValidationError) as exc:
            response_service.submit(cert.id, a.id, [{"question_id": "q1", "answer": ""}])
        assert set(exc.value.details) == {"q1", "q2"}
        assert exc.value.details["q1"] == "This question is required"

    def test_failed_submit_keeps_saved_draft(self, open_cert):
        cert, a, _, _ = open_cert
        response_service.save_progress(cert.id, a.id, [{"question_id": "q1", "answer": "yes"}])
        with pytest.raises(ValidationError):
            response_service.submit(cert.id, a.id, [])
        _db.session.rollback()

        row = _db.session.execute(select(AttestationResponse)).scalar_one()
        assert row.status == "in_progress"
        assert row.responses == [{"question_id": "q1", "answer": "yes"}]

    def test_submit_sets_timestamps(self, open_cert):
        cert, a, _, _ = open_cert
        result = response_service.submit(cert.id, a.id, COMPLETE)

        assert result.response.status == "submitted"
        assert result.response.submitted_at is not None
        assert result.response.submitted_at == result.response.last_saved_at
        assert result.unlock.should_unlock is False

    def test_write_once(self, open_cert):
        cert, a, _, _ = open_cert
        response_service.submit(cert.id, a.id, COMPLETE)

        with pytest.raises(ConflictError, match="Cannot modify a submitted attestation"):
            response_service.submit(cert.id, a.id, COMPLETE)
        with pytest.raises(ConflictError):
            response_service.save_progress(cert.id, a.id, [{"question_id": "q1", "answer": "no"}])

        row = _db.session.execute(select(AttestationResponse)).scalar_one()
        assert row.responses[0]["answer"] == "yes"
        assert row.status == "submitted"

    def test_submitted_then_closed_reports_closed(self, open_cert):
        cert, a, _, _ = open_cert
        response_service.submit(cert.id, a.id, COMPLETE)
        cert.status = "closed"
        _db.session.commit()
        with pytest.raises(ClosedCertificationError):
            response_service.submit(cert.id, a.id, COMPLETE)


class TestSubmitNotifications:
    def test_owner_and_backup_notified(self, open_cert, owner, backup_owner, notifications):
        cert, a, _, _ = open_cert
        response_service.submit(cert.id, a.id, COMPLETE)

        submitted = notifications.of_type("attestation_submitted")
        assert [m.user_id for m in submitted] == [owner.id, backup_owner.id]
        assert "Alice" in submitted[0].message
        assert notifications.of_type("level_unlocked") == []

    def test_last_l1_unlocks_reviewer(self, open_cert, notifications):
        cert, a, b, r = open_cert
        response_service.submit(cert.id, a.id, COMPLETE)
        result = response_service.submit(cert.id, b.id, COMPLETE)

        assert result.unlock.should_unlock is True
        assert result.unlock.l2_attester_id == r.id
        assert [m.user_id for m in notifications.of_type("level_unlocked")] == [r.id]

    def test_sink_failure_does_not_undo_submission(self, open_cert):
        cert, a, _, _ = open_cert

        class ExplodingSink:
            def enqueue(self, message):
                raise RuntimeError("queue down")

        previous = set_notification_sink(ExplodingSink())
        try:
            result = response_service.submit(cert.id, a.id, COMPLETE)
        finally:
            set_notification_sink(previous)

        assert result.response.status == "submitted"
        row = _db.session.execute(select(AttestationResponse)).scalar_one()
        assert row.status == "submitted"

    def test_database_sink_persists_rows(self, open_cert, owner):
        cert, a, _, _ = open_cert
        previous = set_notification_sink(None)  # default database sink
        try:
            response_service.submit(cert.id, a.id, COMPLETE)
        finally:
            set_notification_sink(previous)

        rows = _db.session.execute(
            select(Notification).where(Notification.user_id == owner.id)
        ).scalars().all()
        assert [n.type for n in rows] == ["attestation_submitted"]
        assert rows[0].is_read is False


class TestReadModels:
    def test_attester_view_flags(self, open_cert):
        cert, a, b, r = open_cert

        view = response_service.get_attester_view(cert.id, r.id)
        assert view["level"] == 2
        assert view["locked"] is True
        assert view["readonly"] is False
        assert view["response"] is None
        assert view["certification"]["mandate_name"] == "Access Management"

        response_service.submit(cert.id, a.id, COMPLETE)
        response_service.submit(cert.id, b.id, COMPLETE)

        assert response_service.get_attester_view(cert.id, r.id)["locked"] is False
        view_a = response_service.get_attester_view(cert.id, a.id)
        assert view_a["readonly"] is True
        assert view_a["response"]["status"] == "submitted"

    def test_draft_hidden_from_attesters(self, open_cert):
        cert, a, _, _ = open_cert
        cert.status = "draft"
        _db.session.commit()
        with pytest.raises(NotFoundError):
            response_service.get_attester_view(cert.id, a.id)
        assert response_service.list_attestations_for(a.id) == []

    def test_list_attestations_for(self, open_cert):
        cert, a, _, r = open_cert
        response_service.save_progress(cert.id, a.id, [])

        items = response_service.list_attestations_for(a.id)
        assert len(items) == 1
        assert items[0]["certification_id"] == cert.id
        assert items[0]["response_status"] == "in_progress"
        assert items[0]["locked"] is False
        assert response_service.list_attestations_for(r.id)[0]["locked"] is True

    def test_owner_responses_and_stats(self, open_cert, owner):
        cert, a, _, _ = open_cert
        response_service.submit(cert.id, a.id, COMPLETE)

        data = response_service.list_responses(cert.id, actor_id=owner.id)
        assert data["stats"] == {"total": 3, "submitted": 1, "percentage": 33}
        statuses = {row["attester_id"]: row["status"] for row in data["responses"]}
        assert statuses[a.id] == "submitted"

        detail = response_service.get_response_detail(cert.id, a.id, actor_id=owner.id)
        assert detail["response"]["answers"][1]["answer"] == ["ERP", "HR"]

    def test_owner_views_require_manager(self, open_cert, make_user):
        cert = open_cert[0]
        stranger = make_user("stranger", role="mandate_owner")
        with pytest.raises(ForbiddenError):
            response_service.list_responses(cert.id, actor_id=stranger.id)
