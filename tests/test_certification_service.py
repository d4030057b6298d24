"""
Tests: certification service — create / update / publish / close / delete
and the owner dashboard read models.
"""

from datetime import datetime, timezone

import pytest

from app.core.exceptions import (
    ClosedCertificationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.models import db as _db
from app.models.certification import Certification
from app.models.mandate import Mandate
from app.services import assignment_service, certification_service, response_service

YES_NO = {"id": "q1", "question": "Is the control effective?", "type": "yes_no", "required": True}


class TestCreate:
    def test_creates_draft(self, mandate, owner):
        cert = certification_service.create_certification(
            {"mandate_id": mandate.id, "title": "  SOX Q4  ", "questions": [YES_NO], "deadline": "2026-12-31"},
            actor_id=owner.id,
        )
        assert cert.status == "draft"
        assert cert.title == "SOX Q4"
        assert cert.questions[0]["allow_comments"] is False
        assert cert.to_dict()["deadline"].startswith("2026-12-31T23:59:59")

    def test_title_required(self, mandate, owner):
        with pytest.raises(ValidationError) as exc:
            certification_service.create_certification({"mandate_id": mandate.id, "title": " "}, actor_id=owner.id)
        assert exc.value.details == {"title": "required"}

    def test_bad_deadline(self, mandate, owner):
        with pytest.raises(ValidationError) as exc:
            certification_service.create_certification(
                {"mandate_id": mandate.id, "title": "T", "deadline": "next week"}, actor_id=owner.id,
            )
        assert "deadline" in exc.value.details

    def test_too_many_questions(self, mandate, owner):
        questions = [dict(YES_NO, id=f"q{i}") for i in range(6)]
        with pytest.raises(ValidationError):
            certification_service.create_certification(
                {"mandate_id": mandate.id, "title": "T", "questions": questions}, actor_id=owner.id,
            )

    def test_foreign_mandate(self, mandate, make_user):
        stranger = make_user("stranger", role="mandate_owner")
        with pytest.raises(ForbiddenError):
            certification_service.create_certification(
                {"mandate_id": mandate.id, "title": "T"}, actor_id=stranger.id,
            )

    def test_unknown_mandate(self, owner):
        with pytest.raises(NotFoundError):
            certification_service.create_certification({"mandate_id": 999, "title": "T"}, actor_id=owner.id)


class TestUpdate:
    def test_draft_fields_change(self, draft_certification, owner):
        cert = certification_service.update_certification(
            draft_certification.id,
            {"title": "Renamed", "description": "Yearly", "deadline": None},
            actor_id=owner.id,
        )
        assert cert.title == "Renamed"
        assert cert.description == "Yearly"

    def test_invalid_update_leaves_certification_untouched(self, draft_certification, owner):
        with pytest.raises(ValidationError):
            certification_service.update_certification(
                draft_certification.id,
                {"title": "Renamed", "questions": [{"question": "x", "type": "essay"}]},
                actor_id=owner.id,
            )
        _db.session.rollback()
        assert _db.session.get(Certification, draft_certification.id).title == "Q3 Access Review"

    def test_open_deadline_only_extends(self, draft_certification, owner):
        draft_certification.status = "open"
        draft_certification.deadline = datetime(2026, 11, 30, tzinfo=timezone.utc)
        _db.session.commit()

        with pytest.raises(ValidationError, match="only be extended"):
            certification_service.update_certification(
                draft_certification.id, {"deadline": "2026-11-01"}, actor_id=owner.id,
            )
        with pytest.raises(ValidationError, match="cannot be removed"):
            certification_service.update_certification(
                draft_certification.id, {"deadline": None}, actor_id=owner.id,
            )
        cert = certification_service.update_certification(
            draft_certification.id, {"deadline": "2026-12-15"}, actor_id=owner.id,
        )
        assert cert.to_dict()["deadline"].startswith("2026-12-15")

    def test_open_keeps_questions(self, draft_certification, owner):
        draft_certification.status = "open"
        _db.session.commit()
        with pytest.raises(ValidationError):
            certification_service.update_certification(
                draft_certification.id, {"questions": []}, actor_id=owner.id,
            )

    def test_open_update_notifies_assignees(self, draft_certification, owner, make_user, notifications):
        a = make_user("a")
        assignment_service.replace_assignments(draft_certification.id, [{"user_id": a.id}], [], actor_id=owner.id)
        draft_certification.status = "open"
        _db.session.commit()
        notifications.messages.clear()

        certification_service.update_certification(draft_certification.id, {"title": "New"}, actor_id=owner.id)
        assert [(m.type, m.user_id) for m in notifications.messages] == [("certification_updated", a.id)]

    def test_open_cannot_move_mandate(self, draft_certification, owner):
        other = Mandate(name="Other", owner_id=owner.id)
        _db.session.add(other)
        draft_certification.status = "open"
        _db.session.commit()
        with pytest.raises(ValidationError):
            certification_service.update_certification(
                draft_certification.id, {"mandate_id": other.id}, actor_id=owner.id,
            )

    def test_closed_is_frozen(self, draft_certification, owner):
        draft_certification.status = "closed"
        _db.session.commit()
        with pytest.raises(ClosedCertificationError):
            certification_service.update_certification(draft_certification.id, {"title": "x"}, actor_id=owner.id)


class TestLifecycle:
    def test_publish_requires_questions(self, draft_certification, owner):
        draft_certification.questions = []
        _db.session.commit()
        with pytest.raises(ValidationError):
            certification_service.publish_certification(draft_certification.id, actor_id=owner.id)

    def test_publish_and_republish(self, draft_certification, owner):
        cert = certification_service.publish_certification(draft_certification.id, actor_id=owner.id)
        assert cert.status == "open"
        assert cert.published_at is not None
        with pytest.raises(ConflictError, match="already published"):
            certification_service.publish_certification(draft_certification.id, actor_id=owner.id)

    def test_close_draft_rejected(self, draft_certification, owner):
        with pytest.raises(ConflictError):
            certification_service.close_certification(draft_certification.id, actor_id=owner.id)

    def test_close_is_idempotent(self, draft_certification, owner, make_user, notifications):
        a = make_user("a")
        assignment_service.replace_assignments(draft_certification.id, [{"user_id": a.id}], [], actor_id=owner.id)
        certification_service.publish_certification(draft_certification.id, actor_id=owner.id)
        response_service.submit(draft_certification.id, a.id, [{"question_id": "q1", "answer": "yes"}])

        first = certification_service.close_certification(draft_certification.id, actor_id=owner.id)
        closed_at = first.closed_at
        second = certification_service.close_certification(draft_certification.id, actor_id=owner.id)
        assert second.status == "closed"
        assert second.closed_at == closed_at

    def test_delete_only_drafts(self, draft_certification, owner):
        cid = draft_certification.id
        certification_service.delete_certification(cid, actor_id=owner.id)
        assert _db.session.get(Certification, cid) is None

    def test_delete_published_rejected(self, draft_certification, owner):
        certification_service.publish_certification(draft_certification.id, actor_id=owner.id)
        with pytest.raises(ConflictError):
            certification_service.delete_certification(draft_certification.id, actor_id=owner.id)


class TestOwnerReadModels:
    def test_list_and_stats(self, draft_certification, owner, backup_owner, make_user, notifications):
        a, b = make_user("a"), make_user("b")
        assignment_service.replace_assignments(
            draft_certification.id, [{"user_id": a.id}, {"user_id": b.id}], [], actor_id=owner.id,
        )
        certification_service.publish_certification(draft_certification.id, actor_id=owner.id)
        response_service.submit(draft_certification.id, a.id, [{"question_id": "q1", "answer": "yes"}])

        items = certification_service.list_certifications(backup_owner.id, status="open")
        assert len(items) == 1
        assert items[0]["mandate_name"] == "Access Management"
        assert items[0]["assigned_count"] == 2
        assert items[0]["completed_count"] == 1
        assert items[0]["completion_percentage"] == 50
        assert "questions" not in items[0]

        assert certification_service.list_certifications(owner.id, status="draft") == []

        stats = certification_service.owner_stats(owner.id)
        assert stats["total_mandates"] == 1
        assert stats["total_certifications"] == 1
        assert stats["active_certifications"] == 1
        assert stats["completion_data"][0]["completion_percentage"] == 50

    def test_unknown_status_filter(self, mandate, owner):
        with pytest.raises(ValidationError):
            certification_service.list_certifications(owner.id, status="archived")

    def test_no_mandates(self, make_user):
        nobody = make_user("nobody", role="mandate_owner")
        assert certification_service.list_certifications(nobody.id) == []
        assert certification_service.owner_stats(nobody.id)["total_mandates"] == 0

    def test_mandate_filter_requires_manager(self, mandate, owner, make_user):
        stranger = make_user("stranger", role="mandate_owner")
        with pytest.raises(ForbiddenError):
            certification_service.list_certifications(stranger.id, mandate_id=mandate.id)
        with pytest.raises(NotFoundError):
            certification_service.list_certifications(owner.id, mandate_id=999)

    def test_mandate_filter_narrows(self, draft_certification, owner):
        other = Mandate(name="Payments", owner_id=owner.id)
        _db.session.add(other)
        _db.session.commit()

        assert certification_service.list_certifications(owner.id, mandate_id=other.id) == []
        items = certification_service.list_certifications(owner.id, mandate_id=draft_certification.mandate_id)
        assert [i["id"] for i in items] == [draft_certification.id]
