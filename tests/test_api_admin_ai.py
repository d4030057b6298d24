"""
Tests — admin directory endpoints, AI question drafting and health probes.
"""

import pytest

from app.ai.assistants import QuestionGenerator
from app.ai.gateway import LLMGateway
from app.ai.prompt_registry import PromptRegistry


def _as(user, role=None):
    return {"X-User-Id": str(user.id), "X-User-Role": role or user.role}


@pytest.fixture()
def admin(make_user):
    return make_user("root", role="admin")


# ═════════════════════════════════════════════════════════════════════════════
# ADMIN
# ═════════════════════════════════════════════════════════════════════════════

class TestAdminUsers:
    def test_create_and_list(self, client, admin):
        res = client.post("/api/v1/admin/users", headers=_as(admin),
                          json={"email": "Dana@Example.com", "full_name": "Dana", "role": "attester"})
        assert res.status_code == 201
        assert res.get_json()["email"] == "dana@example.com"

        listing = client.get("/api/v1/admin/users?role=attester", headers=_as(admin)).get_json()
        assert [u["full_name"] for u in listing["items"]] == ["Dana"]

    def test_duplicate_email(self, client, admin):
        body = {"email": "dup@example.com", "full_name": "Dup"}
        client.post("/api/v1/admin/users", headers=_as(admin), json=body)
        res = client.post("/api/v1/admin/users", headers=_as(admin), json=body)
        assert res.status_code == 409

    def test_invalid_user(self, client, admin):
        res = client.post("/api/v1/admin/users", headers=_as(admin),
                          json={"email": "nope", "role": "superuser"})
        assert res.status_code == 422
        assert set(res.get_json()["details"]) == {"email", "full_name", "role"}

    def test_owner_cannot_manage_users(self, client, owner):
        res = client.get("/api/v1/admin/users", headers=_as(owner))
        assert res.status_code == 403


class TestAdminMandates:
    def test_create_mandate(self, client, admin, owner, backup_owner):
        res = client.post("/api/v1/admin/mandates", headers=_as(admin), json={
            "name": "Payments", "owner_id": owner.id, "backup_owner_id": backup_owner.id,
        })
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == "open"
        assert body["backup_owner_id"] == backup_owner.id

        listing = client.get("/api/v1/admin/mandates?status=open", headers=_as(admin)).get_json()
        assert listing["total"] == 1

    def test_backup_must_differ(self, client, admin, owner):
        res = client.post("/api/v1/admin/mandates", headers=_as(admin), json={
            "name": "Payments", "owner_id": owner.id, "backup_owner_id": owner.id,
        })
        assert res.status_code == 422

    def test_unknown_owner(self, client, admin):
        res = client.post("/api/v1/admin/mandates", headers=_as(admin),
                          json={"name": "Payments", "owner_id": 4242})
        assert res.status_code == 404

    def test_admin_passes_owner_checks(self, client, admin):
        res = client.get("/api/v1/mandate-owner/stats", headers=_as(admin))
        assert res.status_code == 200


class TestAdminUserMaintenance:
    def test_rename_and_change_role(self, client, admin, make_user):
        a = make_user("a")
        res = client.patch(f"/api/v1/admin/users/{a.id}", headers=_as(admin),
                           json={"full_name": "Ada", "role": "mandate_owner"})
        assert res.status_code == 200
        assert res.get_json()["full_name"] == "Ada"
        assert res.get_json()["role"] == "mandate_owner"

    def test_unknown_role_rejected(self, client, admin, make_user):
        a = make_user("a")
        res = client.patch(f"/api/v1/admin/users/{a.id}", headers=_as(admin), json={"role": "root"})
        assert res.status_code == 422

    def test_owner_keeps_role_while_managing(self, client, admin, owner, mandate):
        res = client.patch(f"/api/v1/admin/users/{owner.id}", headers=_as(admin), json={"role": "attester"})
        assert res.status_code == 409

    def test_attester_keeps_role_while_assigned(self, client, admin, owner, draft_certification, make_user,
                                                notifications):
        from app.services import assignment_service

        a = make_user("a")
        assignment_service.replace_assignments(draft_certification.id, [{"user_id": a.id}], [], actor_id=owner.id)
        res = client.patch(f"/api/v1/admin/users/{a.id}", headers=_as(admin), json={"role": "mandate_owner"})
        assert res.status_code == 409

    def test_delete_unreferenced_user(self, client, admin, make_user):
        a = make_user("a")
        res = client.delete(f"/api/v1/admin/users/{a.id}", headers=_as(admin))
        assert res.status_code == 200
        assert client.patch(f"/api/v1/admin/users/{a.id}", headers=_as(admin),
                            json={"full_name": "x"}).status_code == 404

    def test_delete_refused_for_referenced_users(self, client, admin, owner, mandate):
        res = client.delete(f"/api/v1/admin/users/{owner.id}", headers=_as(admin))
        assert res.status_code == 409

    def test_cannot_delete_self(self, client, admin):
        res = client.delete(f"/api/v1/admin/users/{admin.id}", headers=_as(admin))
        assert res.status_code == 409


class TestAdminMandateMaintenance:
    def test_close_and_reassign(self, client, admin, owner, backup_owner, mandate, make_user):
        new_owner = make_user("nora", role="mandate_owner")
        res = client.patch(f"/api/v1/admin/mandates/{mandate.id}", headers=_as(admin), json={
            "status": "closed", "owner_id": new_owner.id, "backup_owner_id": None,
        })
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "closed"
        assert body["owner_id"] == new_owner.id
        assert body["backup_owner_id"] is None

        res = client.get("/api/v1/mandate-owner/mandates", headers=_as(owner))
        assert res.get_json()["total"] == 0

    def test_owner_must_hold_owner_role(self, client, admin, mandate, make_user):
        a = make_user("a")
        res = client.patch(f"/api/v1/admin/mandates/{mandate.id}", headers=_as(admin),
                           json={"owner_id": a.id, "name": "Renamed"})
        assert res.status_code == 422
        assert "owner_id" in res.get_json()["details"]

        listing = client.get("/api/v1/admin/mandates", headers=_as(admin)).get_json()
        assert listing["items"][0]["name"] == "Access Management"

    def test_backup_equal_to_owner(self, client, admin, owner, mandate):
        res = client.patch(f"/api/v1/admin/mandates/{mandate.id}", headers=_as(admin),
                           json={"backup_owner_id": owner.id})
        assert res.status_code == 422

    def test_bad_status_and_missing_mandate(self, client, admin, mandate):
        res = client.patch(f"/api/v1/admin/mandates/{mandate.id}", headers=_as(admin), json={"status": "archived"})
        assert res.status_code == 422
        res = client.patch("/api/v1/admin/mandates/999", headers=_as(admin), json={"status": "closed"})
        assert res.status_code == 404

    def test_create_requires_owner_role(self, client, admin, make_user):
        a = make_user("a")
        res = client.post("/api/v1/admin/mandates", headers=_as(admin), json={"name": "Payments", "owner_id": a.id})
        assert res.status_code == 422


class TestAdminStats:
    def test_counts(self, client, admin, mandate, make_user):
        make_user("a")
        res = client.get("/api/v1/admin/stats", headers=_as(admin))
        assert res.status_code == 200
        assert res.get_json() == {
            "users": {"total": 4, "by_role": {"admin": 1, "mandate_owner": 2, "attester": 1}},
            "mandates": {"total": 1, "by_status": {"open": 1, "closed": 0}},
        }


# ═════════════════════════════════════════════════════════════════════════════
# AI
# ═════════════════════════════════════════════════════════════════════════════

class _BrokenGateway:
    def chat(self, messages, model=None, *, purpose="", **kwargs):
        raise RuntimeError("provider timeout")


@pytest.fixture()
def install_generator(app, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    def _install(gateway):
        app.extensions["question_generator"] = QuestionGenerator(
            gateway=gateway, prompt_registry=PromptRegistry(),
        )

    yield _install
    app.extensions.pop("question_generator", None)


class TestGenerateQuestions:
    URL = "/api/v1/ai/generate-questions"

    def test_stub_provider(self, client, owner, install_generator):
        install_generator(LLMGateway(allow_stub=True, backoff_seconds=0))
        res = client.post(self.URL, headers=_as(owner), json={"requirement": "Quarterly access review"})
        assert res.status_code == 200
        body = res.get_json()
        assert 1 <= body["total"] <= 5
        assert all(q["type"] for q in body["questions"])

    def test_requirement_missing(self, client, owner, install_generator):
        install_generator(LLMGateway(allow_stub=True, backoff_seconds=0))
        res = client.post(self.URL, headers=_as(owner), json={"requirement": "  "})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_requirement_too_long(self, client, owner, install_generator):
        install_generator(LLMGateway(allow_stub=True, backoff_seconds=0))
        res = client.post(self.URL, headers=_as(owner), json={"requirement": "x" * 2001})
        assert res.status_code == 422

    def test_provider_not_configured(self, client, owner, install_generator):
        install_generator(LLMGateway(allow_stub=False, backoff_seconds=0))
        res = client.post(self.URL, headers=_as(owner), json={"requirement": "Backups"})
        assert res.status_code == 503
        assert res.get_json()["code"] == "ERR_UNAVAILABLE"

    def test_provider_failure(self, client, owner, install_generator):
        install_generator(_BrokenGateway())
        res = client.post(self.URL, headers=_as(owner), json={"requirement": "Backups"})
        assert res.status_code == 502
        assert res.get_json()["code"] == "ERR_UPSTREAM"

    def test_attesters_cannot_generate(self, client, make_user):
        a = make_user("a")
        res = client.post(self.URL, headers=_as(a), json={"requirement": "Backups"})
        assert res.status_code == 403

    def test_prompt_listing(self, client, admin):
        res = client.get("/api/v1/ai/prompts", headers=_as(admin))
        assert res.status_code == 200
        assert "question_generator" in [p["name"] for p in res.get_json()["prompts"]]


# ═════════════════════════════════════════════════════════════════════════════
# HEALTH
# ═════════════════════════════════════════════════════════════════════════════

class TestHealth:
    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"

    def test_unknown_api_path(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"
