"""Tests for the account store and its cache invalidation."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from teamcoach.db.models import Account, utcnow
from teamcoach.errors import (
    ApiErrorCode,
    DuplicateEmailError,
    NotFoundError,
    StorageUnavailableError,
)
from teamcoach.schemas.account import AccountCreate, AccountUpdate, OnboardingRequest
from teamcoach.services.accounts import account_key, subject_key
from tests.factories import create_test_account


def _create(stores, db_session, account_id="acct-1", email="Person@Example.com"):
    return stores.accounts.create(
        db_session,
        AccountCreate(id=account_id, subject_id=account_id, email=email, first_name="Pat"),
    )


class TestCreate:
    def test_create_normalizes_email(self, db_session, stores):
        account = _create(stores, db_session)

        assert account.id == "acct-1"
        assert account.email == "person@example.com"
        assert account.is_admin is False
        assert account.has_completed_onboarding is False
        assert account.top_strengths == ()

    def test_duplicate_email_rejected(self, db_session, stores):
        _create(stores, db_session)

        with pytest.raises(DuplicateEmailError) as exc_info:
            _create(stores, db_session, account_id="acct-2", email="PERSON@example.com")
        assert exc_info.value.code == ApiErrorCode.E_DUPLICATE_EMAIL

    def test_email_of_deleted_account_is_reusable(self, db_session, stores):
        create_test_account(db_session, "old", email="reuse@example.com", deleted_at=utcnow())

        account = _create(stores, db_session, account_id="new", email="reuse@example.com")
        assert account.id == "new"


class TestReads:
    def test_get_by_id_caches(self, db_session, stores):
        create_test_account(db_session, "a1")

        first = stores.accounts.get_by_id(db_session, "a1")
        assert account_key("a1") in stores.accounts.cache
        assert stores.accounts.get_by_id(db_session, "a1") is first

    def test_cached_strengths_are_immutable(self, db_session, stores):
        create_test_account(db_session, "a1", top_strengths=["Focus"])

        cached = stores.accounts.get_by_id(db_session, "a1")
        with pytest.raises(AttributeError):
            cached.top_strengths.append("Woo")

        assert stores.accounts.get_by_id(db_session, "a1").top_strengths == ("Focus",)

    def test_get_by_id_ignores_deleted(self, db_session, stores):
        create_test_account(db_session, "gone", deleted_at=utcnow())
        assert stores.accounts.get_by_id(db_session, "gone") is None

    def test_get_missing_returns_none(self, db_session, stores):
        assert stores.accounts.get_by_id(db_session, "nope") is None
        assert stores.accounts.get_by_subject(db_session, "nope") is None
        assert stores.accounts.get_by_email(db_session, "nope@example.com") is None

    def test_get_by_subject_follows_current_link(self, db_session, stores):
        create_test_account(db_session, "a1", subject_id="subject-now")

        account = stores.accounts.get_by_subject(db_session, "subject-now")
        assert account.id == "a1"
        assert stores.accounts.cache.get(subject_key("subject-now")) == "a1"

    def test_stale_subject_mapping_is_dropped(self, db_session, stores):
        create_test_account(db_session, "a1", subject_id="s-old")
        stores.accounts.get_by_subject(db_session, "s-old")

        # Rotation performed outside the store, followed by the usual invalidation
        row = db_session.get(Account, "a1")
        row.subject_id = "s-new"
        db_session.commit()
        stores.accounts.invalidate("a1")

        assert stores.accounts.get_by_subject(db_session, "s-old") is None
        assert stores.accounts.get_by_subject(db_session, "s-new").id == "a1"

    def test_get_by_email_is_case_insensitive(self, db_session, stores):
        create_test_account(db_session, "a1", email="mixed@example.com")
        assert stores.accounts.get_by_email(db_session, "  MIXED@Example.COM ").id == "a1"


class TestUpdate:
    def test_update_invalidates_cached_account(self, db_session, stores):
        create_test_account(db_session, "a1")
        stores.accounts.get_by_id(db_session, "a1")

        stores.accounts.update(db_session, "a1", AccountUpdate(first_name="Robin"))

        assert stores.accounts.get_by_id(db_session, "a1").first_name == "Robin"

    def test_only_set_fields_change(self, db_session, stores):
        create_test_account(db_session, "a1", first_name="Ann", last_name="Lee")

        updated = stores.accounts.update(db_session, "a1", AccountUpdate(last_name="Kim"))
        assert updated.first_name == "Ann"
        assert updated.last_name == "Kim"

    def test_update_to_taken_email_conflicts(self, db_session, stores):
        create_test_account(db_session, "a1", email="one@example.com")
        create_test_account(db_session, "a2", email="two@example.com")

        with pytest.raises(DuplicateEmailError):
            stores.accounts.update(db_session, "a2", AccountUpdate(email="ONE@example.com"))

    def test_update_missing_account(self, db_session, stores):
        with pytest.raises(NotFoundError) as exc_info:
            stores.accounts.update(db_session, "missing", AccountUpdate(first_name="x"))
        assert exc_info.value.code == ApiErrorCode.E_ACCOUNT_NOT_FOUND

    def test_update_refreshes_updated_at(self, db_session, stores):
        created = utcnow() - timedelta(days=3)
        create_test_account(db_session, "a1", created_at=created)

        updated = stores.accounts.update(db_session, "a1", AccountUpdate(first_name="New"))
        assert updated.updated_at > created


class TestDelete:
    def test_soft_delete_hides_account(self, db_session, stores):
        create_test_account(db_session, "a1")
        stores.accounts.get_by_id(db_session, "a1")

        stores.accounts.delete(db_session, "a1")

        assert stores.accounts.get_by_id(db_session, "a1") is None
        assert db_session.get(Account, "a1").deleted_at is not None

    def test_delete_twice_is_not_found(self, db_session, stores):
        create_test_account(db_session, "a1")
        stores.accounts.delete(db_session, "a1")

        with pytest.raises(NotFoundError):
            stores.accounts.delete(db_session, "a1")


class TestProductActions:
    def test_complete_onboarding(self, db_session, stores):
        create_test_account(db_session, "a1")

        account = stores.accounts.complete_onboarding(
            db_session,
            "a1",
            OnboardingRequest(top_strengths=["Achiever", " Learner "], first_name="Sam"),
        )
        assert account.has_completed_onboarding is True
        assert account.top_strengths == ("Achiever", "Learner")
        assert account.first_name == "Sam"

    def test_onboarding_rejects_too_many_strengths(self):
        with pytest.raises(ValueError):
            OnboardingRequest(top_strengths=["a", "b", "c", "d", "e", "f"])

    def test_set_admin(self, db_session, stores):
        create_test_account(db_session, "a1")
        assert stores.accounts.set_admin(db_session, "a1", True).is_admin is True


class TestStorageFailures:
    def test_operational_error_becomes_storage_unavailable(self, db_session, stores, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        monkeypatch.setattr(db_session, "scalar", broken)

        with pytest.raises(StorageUnavailableError) as exc_info:
            stores.accounts.get_by_id(db_session, "a1")
        assert exc_info.value.code == ApiErrorCode.E_STORAGE_UNAVAILABLE
