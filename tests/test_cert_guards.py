"""
Tests: certification lifecycle guards.

Covers:
    - assert_mutable: missing → NotFoundError, closed → ClosedCertificationError
    - assert_publishable: questions required, deadline only when configured
    - assert_closable: no assignments, pending set, set (not count) comparison
"""

from datetime import datetime, timezone

import pytest

from app.core.exceptions import ClosedCertificationError, NotFoundError, ValidationError
from app.models import db as _db
from app.models.certification import AttestationResponse, CertificationAssignment
from app.services import cert_guards


def _assign(cert, user, level=1):
    a = CertificationAssignment(certification_id=cert.id, attester_id=user.id, level=level)
    _db.session.add(a)
    _db.session.commit()
    return a


def _respond(cert, user, status="submitted"):
    now = datetime.now(timezone.utc)
    r = AttestationResponse(
        certification_id=cert.id,
        attester_id=user.id,
        responses=[],
        status=status,
        last_saved_at=now,
        submitted_at=now if status == "submitted" else None,
    )
    _db.session.add(r)
    _db.session.commit()
    return r


class TestAssertMutable:
    def test_missing_certification(self):
        with pytest.raises(NotFoundError):
            cert_guards.assert_mutable(9999)

    def test_draft_and_open_pass(self, draft_certification):
        assert cert_guards.assert_mutable(draft_certification.id) is draft_certification
        draft_certification.status = "open"
        _db.session.commit()
        assert cert_guards.assert_mutable(draft_certification.id).status == "open"

    def test_closed_raises_distinct_error(self, draft_certification):
        draft_certification.status = "closed"
        _db.session.commit()
        with pytest.raises(ClosedCertificationError) as exc:
            cert_guards.assert_mutable(draft_certification.id)
        assert exc.value.certification_id == draft_certification.id
        assert not isinstance(exc.value, ValidationError)


class TestAssertPublishable:
    def test_requires_questions(self, draft_certification):
        draft_certification.questions = []
        with pytest.raises(ValidationError) as exc:
            cert_guards.assert_publishable(draft_certification)
        assert "questions" in exc.value.details

    def test_deadline_optional_by_default(self, draft_certification):
        assert draft_certification.deadline is None
        cert_guards.assert_publishable(draft_certification)

    def test_deadline_required_when_configured(self, app, draft_certification):
        app.config["PUBLISH_REQUIRES_DEADLINE"] = True
        try:
            with pytest.raises(ValidationError) as exc:
                cert_guards.assert_publishable(draft_certification)
            assert "deadline" in exc.value.details
        finally:
            app.config["PUBLISH_REQUIRES_DEADLINE"] = False


class TestAssertClosable:
    def test_no_assignments(self, draft_certification):
        with pytest.raises(ValidationError, match="no assignments"):
            cert_guards.assert_closable(draft_certification.id)

    def test_pending_attesters_listed(self, draft_certification, make_user):
        alice, bob = make_user("alice"), make_user("bob")
        _assign(draft_certification, alice)
        _assign(draft_certification, bob)
        _respond(draft_certification, alice)

        with pytest.raises(ValidationError) as exc:
            cert_guards.assert_closable(draft_certification.id)
        assert exc.value.details["pending"] == [bob.id]

    def test_in_progress_counts_as_pending(self, draft_certification, make_user):
        alice = make_user("alice")
        _assign(draft_certification, alice)
        _respond(draft_certification, alice, status="in_progress")

        with pytest.raises(ValidationError) as exc:
            cert_guards.assert_closable(draft_certification.id)
        assert exc.value.details["pending"] == [alice.id]

    def test_stale_submission_does_not_mask_pending_attester(self, draft_certification, make_user):
        """A submitted response from a removed attester must not offset a pending one."""
        alice, bob = make_user("alice"), make_user("bob")
        _assign(draft_certification, alice)
        _respond(draft_certification, bob)  # bob was unassigned after submitting

        with pytest.raises(ValidationError) as exc:
            cert_guards.assert_closable(draft_certification.id)
        assert exc.value.details["pending"] == [alice.id]

    def test_all_submitted(self, draft_certification, make_user):
        alice, bob = make_user("alice"), make_user("bob")
        _assign(draft_certification, alice)
        _assign(draft_certification, bob, level=1)
        _respond(draft_certification, alice)
        _respond(draft_certification, bob)

        cert_guards.assert_closable(draft_certification.id)
        assert cert_guards.pending_attester_ids(draft_certification.id) == []
