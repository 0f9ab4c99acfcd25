"""HTTP-level tests for the account, team, conversation and migration routes.

Store behavior is covered in the per-store test modules; these tests pin
routing, status codes, envelopes and viewer scoping.
"""

import json
from uuid import uuid4

import pytest

from tests.factories import (
    create_test_account,
    create_test_backup,
    create_test_conversation,
)
from tests.helpers import auth_headers


@pytest.fixture
def headers(authenticated_client, subject):
    """Auth headers for a viewer whose account already exists."""
    headers = auth_headers(subject)
    assert authenticated_client.get("/me", headers=headers).status_code == 200
    return headers


class TestAccountRoutes:
    def test_onboarding(self, authenticated_client, headers):
        response = authenticated_client.post(
            "/me/onboarding",
            json={"top_strengths": ["Achiever", "Learner"], "first_name": "Jordan"},
            headers=headers,
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["has_completed_onboarding"] is True
        assert data["top_strengths"] == ["Achiever", "Learner"]
        assert data["first_name"] == "Jordan"

        me = authenticated_client.get("/me", headers=headers).json()["data"]
        assert me["has_completed_onboarding"] is True

    def test_onboarding_subscribes_to_weekly_coaching(self, authenticated_client, headers):
        authenticated_client.post(
            "/me/onboarding", json={"top_strengths": ["Focus"]}, headers=headers
        )

        subscriptions = authenticated_client.get(
            "/me/email-subscriptions", headers=headers
        ).json()["data"]
        assert {s["email_type"]: s["is_active"] for s in subscriptions} == {
            "welcome": True,
            "weekly_coaching": True,
        }

    def test_onboarding_rejects_too_many_strengths(self, authenticated_client, headers):
        response = authenticated_client.post(
            "/me/onboarding",
            json={"top_strengths": ["A", "B", "C", "D", "E", "F"]},
            headers=headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"

    def test_unsubscribe(self, authenticated_client, headers):
        response = authenticated_client.put(
            "/me/email-subscriptions/welcome", json={"is_active": False}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["data"] == {
            "email_type": "welcome",
            "is_active": False,
            "timezone": "UTC",
        }

    def test_unknown_email_type(self, authenticated_client, headers):
        response = authenticated_client.put(
            "/me/email-subscriptions/newsletter", json={"is_active": False}, headers=headers
        )
        assert response.status_code == 400


class TestAdminRoutes:
    def test_non_admin_forbidden(self, authenticated_client, headers):
        response = authenticated_client.put(
            "/admin/accounts/anyone/admin", json={"is_admin": True}, headers=headers
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_FORBIDDEN"

    def test_admin_grants_admin(self, authenticated_client, db_session, subject):
        create_test_account(
            db_session,
            account_id=subject,
            subject_id=subject,
            email=f"{subject}@example.com",
            is_admin=True,
        )
        target = create_test_account(db_session)

        response = authenticated_client.put(
            f"/admin/accounts/{target.id}/admin",
            json={"is_admin": True},
            headers=auth_headers(subject),
        )

        assert response.status_code == 200
        assert response.json()["data"]["is_admin"] is True

    def test_unknown_account(self, authenticated_client, db_session, subject):
        create_test_account(
            db_session,
            account_id=subject,
            subject_id=subject,
            email=f"{subject}@example.com",
            is_admin=True,
        )

        response = authenticated_client.put(
            "/admin/accounts/missing/admin", json={"is_admin": True}, headers=auth_headers(subject)
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_ACCOUNT_NOT_FOUND"


class TestTeamMemberRoutes:
    def test_crud(self, authenticated_client, headers):
        created = authenticated_client.post(
            "/team-members", json={"name": "Sam", "strengths": ["Woo"]}, headers=headers
        )
        assert created.status_code == 201
        member_id = created.json()["data"]["id"]

        updated = authenticated_client.patch(
            f"/team-members/{member_id}", json={"strengths": ["Woo", "Arranger"]}, headers=headers
        )
        assert updated.json()["data"]["strengths"] == ["Woo", "Arranger"]

        listed = authenticated_client.get("/team-members", headers=headers).json()["data"]
        assert [m["name"] for m in listed] == ["Sam"]

        deleted = authenticated_client.delete(f"/team-members/{member_id}", headers=headers)
        assert deleted.status_code == 204
        assert authenticated_client.get("/team-members", headers=headers).json()["data"] == []

    def test_duplicate_name_conflicts(self, authenticated_client, headers):
        authenticated_client.post("/team-members", json={"name": "Sam"}, headers=headers)

        response = authenticated_client.post("/team-members", json={"name": "Sam"}, headers=headers)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "E_TEAM_MEMBER_EXISTS"

    def test_other_roster_is_invisible(self, authenticated_client, headers):
        response = authenticated_client.delete(f"/team-members/{uuid4()}", headers=headers)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_TEAM_MEMBER_NOT_FOUND"


class TestConversationRoutes:
    def test_create_get_and_list(self, authenticated_client, headers):
        created = authenticated_client.post(
            "/conversations", json={"title": "1:1 prep", "mode": "team"}, headers=headers
        )
        assert created.status_code == 201
        conversation_id = created.json()["data"]["id"]

        message = authenticated_client.post(
            f"/conversations/{conversation_id}/messages",
            json={"role": "user", "content": "How do I coach Sam?"},
            headers=headers,
        )
        assert message.status_code == 201
        assert message.json()["data"]["seq"] == 1

        detail = authenticated_client.get(f"/conversations/{conversation_id}", headers=headers)
        assert [m["content"] for m in detail.json()["data"]["messages"]] == ["How do I coach Sam?"]

        listed = authenticated_client.get("/conversations", headers=headers).json()["data"]
        assert [c["id"] for c in listed] == [conversation_id]

    def test_rename_archive_delete(self, authenticated_client, headers):
        conversation_id = authenticated_client.post(
            "/conversations", json={"title": "Draft"}, headers=headers
        ).json()["data"]["id"]

        renamed = authenticated_client.patch(
            f"/conversations/{conversation_id}", json={"title": "Final"}, headers=headers
        )
        assert renamed.json()["data"]["title"] == "Final"

        archived = authenticated_client.post(
            f"/conversations/{conversation_id}/archive", headers=headers
        )
        assert archived.status_code == 204
        assert authenticated_client.get("/conversations", headers=headers).json()["data"] == []

        deleted = authenticated_client.delete(f"/conversations/{conversation_id}", headers=headers)
        assert deleted.status_code == 204
        missing = authenticated_client.get(f"/conversations/{conversation_id}", headers=headers)
        assert missing.status_code == 404

    def test_foreign_conversation_not_found(self, authenticated_client, db_session, headers):
        other = create_test_account(db_session)
        conversation = create_test_conversation(db_session, other.id)

        response = authenticated_client.get(f"/conversations/{conversation.id}", headers=headers)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_CONVERSATION_NOT_FOUND"

    def test_export(self, authenticated_client, headers):
        authenticated_client.post("/conversations", json={"title": "Keep"}, headers=headers)

        response = authenticated_client.get("/conversations/export", headers=headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["version"] == 1
        assert data["conversation_count"] == 1
        assert data["conversations"][0]["title"] == "Keep"

    def test_archive_inactive_defaults(self, authenticated_client, headers):
        response = authenticated_client.post("/conversations/archive-inactive", headers=headers)

        assert response.status_code == 200
        assert response.json()["data"] == {"archived": 0, "days_old": 90}

    def test_archive_inactive_custom_days(self, authenticated_client, headers):
        response = authenticated_client.post(
            "/conversations/archive-inactive", json={"days_old": 7}, headers=headers
        )
        assert response.json()["data"]["days_old"] == 7


class TestMigrationRoutes:
    def _history(self):
        return json.dumps(
            [
                {
                    "id": 1700000000000,
                    "title": "From the browser",
                    "messages": [
                        {"id": 1, "type": "user", "content": "hi"},
                        {"id": 2, "type": "ai", "content": "hello"},
                    ],
                }
            ]
        )

    def test_migrate_then_state(self, authenticated_client, headers):
        before = authenticated_client.get("/conversations/migration-state", headers=headers)
        assert before.json()["data"] == {"state": "not_migrated"}

        response = authenticated_client.post(
            "/conversations/migrate", json={"localStorageData": self._history()}, headers=headers
        )

        assert response.status_code == 200
        result = response.json()["data"]
        assert result["conversations_created"] == 1
        assert result["messages_created"] == 2
        after = authenticated_client.get("/conversations/migration-state", headers=headers)
        assert after.json()["data"] == {"state": "migrated"}

    def test_migrate_rejects_unreadable_history(self, authenticated_client, headers):
        response = authenticated_client.post(
            "/conversations/migrate", json={"local_history": "not json"}, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_LOCAL_HISTORY"

    def test_recover_unrecoverable_is_not_an_error(self, authenticated_client, headers):
        response = authenticated_client.post(
            "/conversations/recover", json={"local_history": "[[["}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["data"]["strategy"] is None


class TestBackupRoutes:
    def test_create_list_restore(self, authenticated_client, headers):
        authenticated_client.post("/conversations", json={"title": "Snapshot me"}, headers=headers)

        created = authenticated_client.post("/conversations/backups", headers=headers)
        assert created.status_code == 201
        backup = created.json()["data"]
        assert backup["source"] == "manual"
        assert backup["conversation_count"] == 1

        listed = authenticated_client.get("/conversations/backups", headers=headers).json()["data"]
        assert [b["id"] for b in listed] == [backup["id"]]

        restored = authenticated_client.post(
            f"/conversations/backups/{backup['id']}/restore", headers=headers
        )
        assert restored.status_code == 200
        assert restored.json()["data"]["conversations_restored"] == 1

    def test_foreign_backup_not_found(self, authenticated_client, db_session, headers):
        other = create_test_account(db_session)
        backup = create_test_backup(db_session, other.id)

        response = authenticated_client.post(
            f"/conversations/backups/{backup.id}/restore", headers=headers
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_BACKUP_NOT_FOUND"
