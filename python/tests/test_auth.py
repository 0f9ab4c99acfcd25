"""Integration tests for authentication middleware and identity resolution.

Tests the full auth flow including:
- Bearer token validation
- Internal header enforcement
- Identity claim validation and reconciliation
- GET /me endpoint
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from teamcoach.app import create_app
from teamcoach.auth.middleware import AuthMiddleware
from teamcoach.db.models import Account, utcnow
from teamcoach.db.session import get_db
from teamcoach.errors import ForbiddenError, IdentityResolutionFailedError
from tests.factories import create_test_account
from tests.helpers import (
    auth_headers,
    create_test_subject,
    mint_expired_token,
    mint_test_token,
    mint_token_with_bad_signature,
)
from tests.support.test_verifier import MockJwtVerifier


def _client_with_callback(db_session, stores, callback, **middleware_kwargs) -> TestClient:
    app = create_app(skip_auth_middleware=True, stores=stores)
    app.dependency_overrides[get_db] = lambda: db_session
    app.add_middleware(
        AuthMiddleware,
        verifier=MockJwtVerifier(),
        identity_callback=callback,
        **middleware_kwargs,
    )
    return TestClient(app)


class TestAuthBoundary:
    """Unauthenticated requests are rejected before reaching a route."""

    def test_no_authorization_header(self, authenticated_client):
        response = authenticated_client.get("/me")

        assert response.status_code == 401
        data = response.json()
        assert data["error"]["code"] == "E_UNAUTHENTICATED"
        assert "authentication" in data["error"]["message"].lower()

    def test_wrong_authorization_format(self, authenticated_client):
        response = authenticated_client.get("/me", headers={"Authorization": "Basic abc123"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_empty_bearer_token(self, authenticated_client):
        response = authenticated_client.get("/me", headers={"Authorization": "Bearer "})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_invalid_token_bad_signature(self, authenticated_client, subject):
        token = mint_token_with_bad_signature(subject)

        response = authenticated_client.get("/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid token signature"

    def test_expired_token(self, authenticated_client, subject):
        token = mint_expired_token(subject)

        response = authenticated_client.get("/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Token expired"

    def test_wrong_audience(self, authenticated_client, subject):
        response = authenticated_client.get(
            "/me", headers=auth_headers(subject, audience="someone-else")
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"


class TestInternalHeaderEnforcement:
    """Tests for internal header enforcement in staging/prod mode."""

    @pytest.fixture
    def staging_client(self, db_session, stores):
        return _client_with_callback(
            db_session,
            stores,
            None,
            requires_internal_header=True,
            internal_secret="test-internal-secret",
        )

    def test_missing_internal_header(self, staging_client, subject):
        response = staging_client.get("/me", headers=auth_headers(subject))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_INTERNAL_ONLY"

    def test_wrong_internal_header_value(self, staging_client, subject):
        response = staging_client.get(
            "/me",
            headers={**auth_headers(subject), "X-Teamcoach-Internal": "wrong-secret"},
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_INTERNAL_ONLY"

    def test_correct_internal_header_passes_auth(self, staging_client, subject):
        """Without a reconciler the viewer is the bare subject, which has no account."""
        response = staging_client.get(
            "/me",
            headers={**auth_headers(subject), "X-Teamcoach-Internal": "test-internal-secret"},
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_ACCOUNT_NOT_FOUND"

    def test_secret_not_configured(self, db_session, stores, subject):
        client = _client_with_callback(db_session, stores, None, requires_internal_header=True)

        response = client.get(
            "/me", headers={**auth_headers(subject), "X-Teamcoach-Internal": "anything"}
        )

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "E_INTERNAL"


class TestIdentityClaim:
    def test_token_without_email_fails_resolution(self, authenticated_client, subject):
        response = authenticated_client.get("/me", headers=auth_headers(subject, email=""))

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_IDENTITY_RESOLUTION_FAILED"

    def test_malformed_email_fails_resolution(self, authenticated_client, subject):
        response = authenticated_client.get(
            "/me", headers=auth_headers(subject, email="not-an-email")
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_IDENTITY_RESOLUTION_FAILED"

    def test_oidc_profile_claims_are_applied(self, authenticated_client, subject):
        response = authenticated_client.get(
            "/me",
            headers=auth_headers(
                subject, given_name="Ada", family_name="Lovelace", picture="https://img/a.png"
            ),
        )

        data = response.json()["data"]
        assert (data["first_name"], data["last_name"], data["profile_image_url"]) == (
            "Ada",
            "Lovelace",
            "https://img/a.png",
        )


class TestIdentityCallbackErrors:
    def test_resolution_failure_is_401(self, db_session, stores, subject):
        def fail(claim):
            raise IdentityResolutionFailedError()

        client = _client_with_callback(db_session, stores, fail)
        response = client.get("/me", headers=auth_headers(subject))

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_IDENTITY_RESOLUTION_FAILED"

    def test_other_api_errors_keep_their_status(self, db_session, stores, subject):
        def forbid(claim):
            raise ForbiddenError(message="Suspended")

        client = _client_with_callback(db_session, stores, forbid)
        response = client.get("/me", headers=auth_headers(subject))

        assert response.status_code == 403
        assert response.json()["error"]["message"] == "Suspended"

    def test_unexpected_error_is_500_without_details(self, db_session, stores, subject):
        def crash(claim):
            raise RuntimeError("SECRET_INTERNAL_DETAIL")

        client = _client_with_callback(db_session, stores, crash)
        response = client.get("/me", headers=auth_headers(subject))

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "E_INTERNAL"
        assert "SECRET_INTERNAL_DETAIL" not in response.text


class TestMeEndpoint:
    def test_first_request_creates_account(self, authenticated_client, db_session, subject):
        response = authenticated_client.get("/me", headers=auth_headers(subject))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == subject
        assert data["subject_id"] == subject
        assert data["email"] == f"{subject}@example.com"
        assert data["has_completed_onboarding"] is False
        assert db_session.get(Account, subject) is not None

    def test_repeat_requests_reuse_account(self, authenticated_client, db_session, subject):
        first = authenticated_client.get("/me", headers=auth_headers(subject)).json()["data"]
        second = authenticated_client.get("/me", headers=auth_headers(subject)).json()["data"]

        assert first["id"] == second["id"]
        accounts = db_session.scalars(select(Account).where(Account.subject_id == subject)).all()
        assert len(accounts) == 1

    def test_email_is_normalized(self, authenticated_client, subject):
        response = authenticated_client.get(
            "/me", headers=auth_headers(subject, email="  Jordan@Example.COM ")
        )

        assert response.json()["data"]["email"] == "jordan@example.com"

    def test_rotated_subject_keeps_account(self, authenticated_client, db_session):
        old_subject = create_test_subject()
        new_subject = create_test_subject()
        email = "rotating@example.com"

        first = authenticated_client.get("/me", headers=auth_headers(old_subject, email=email))
        second = authenticated_client.get("/me", headers=auth_headers(new_subject, email=email))

        assert second.status_code == 200
        assert second.json()["data"]["id"] == first.json()["data"]["id"]
        assert second.json()["data"]["subject_id"] == new_subject

    def test_deleted_account_cannot_sign_in(self, authenticated_client, db_session, subject):
        create_test_account(
            db_session, account_id=subject, subject_id=subject, deleted_at=utcnow()
        )

        response = authenticated_client.get("/me", headers=auth_headers(subject))

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_IDENTITY_RESOLUTION_FAILED"

    def test_viewer_without_reconciler_uses_subject(self, stores, db_session, subject):
        create_test_account(db_session, account_id=subject, subject_id=subject)
        app = create_app(skip_auth_middleware=True, stores=stores)
        app.dependency_overrides[get_db] = lambda: db_session
        app.add_middleware(AuthMiddleware, verifier=MockJwtVerifier())

        with TestClient(app) as client:
            token = mint_test_token(subject)
            response = client.get("/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["data"]["id"] == subject
