"""Tests for the credential store's conditional updates."""

from datetime import UTC, datetime, timedelta

import pytest

from app.models.user import OTPPurpose, UserRole
from app.services.credential_store import normalize_email
from app.services.errors import ConflictError

pytestmark = pytest.mark.asyncio


async def test_create_user_normalizes_email(credential_store):
    user = await credential_store.create_user("  Ada  ", "  Ada@Example.COM ", "hash")
    await credential_store.commit()

    assert user.email == "ada@example.com"
    assert user.name == "Ada"
    assert user.role is UserRole.STUDENT
    assert user.is_email_verified is False
    assert user.mfa_enabled is False
    assert (await credential_store.get_by_email("ADA@example.com")).id == user.id


async def test_normalize_email():
    assert normalize_email(" Bob@Example.org ") == "bob@example.org"


async def test_duplicate_email_conflicts(credential_store, user_factory):
    await user_factory(email="taken@example.com")

    with pytest.raises(ConflictError):
        await credential_store.create_user("Other", "taken@example.com", "hash")


async def test_soft_deleted_user_is_hidden_but_reserves_email(credential_store, user_factory):
    user = await user_factory(email="gone@example.com", deleted_at=datetime.now(UTC))

    assert await credential_store.get_by_email("gone@example.com") is None
    assert await credential_store.get_by_id(user.id) is None
    assert await credential_store.email_exists("GONE@example.com") is True


async def test_set_otp_respects_pending_expiry_condition(credential_store, user_factory):
    user = await user_factory(is_email_verified=False)
    now = datetime.now(UTC)
    await credential_store.set_otp(user.id, OTPPurpose.VERIFICATION, "123456", now + timedelta(minutes=10))

    blocked = await credential_store.set_otp(
        user.id,
        OTPPurpose.VERIFICATION,
        "654321",
        now + timedelta(minutes=11),
        pending_expiry_not_after=now + timedelta(minutes=9),
    )
    assert blocked is False

    allowed = await credential_store.set_otp(
        user.id,
        OTPPurpose.VERIFICATION,
        "654321",
        now + timedelta(minutes=12),
        pending_expiry_not_after=now + timedelta(minutes=10),
    )
    assert allowed is True
    assert (await credential_store.get_by_id(user.id)).otp_code == "654321"


async def test_consume_otp_applies_values_atomically(credential_store, user_factory):
    user = await user_factory(is_email_verified=False)
    now = datetime.now(UTC)
    await credential_store.set_otp(user.id, OTPPurpose.VERIFICATION, "123456", now + timedelta(minutes=10))

    assert not await credential_store.consume_otp(
        user.id, OTPPurpose.VERIFICATION, "000000", now, is_email_verified=True
    )
    assert not (await credential_store.get_by_id(user.id)).is_email_verified

    assert await credential_store.consume_otp(
        user.id, OTPPurpose.VERIFICATION, "123456", now, is_email_verified=True
    )
    stored = await credential_store.get_by_id(user.id)
    assert stored.is_email_verified is True
    assert stored.otp_code is None
    assert stored.otp_expires_at is None


async def test_consume_otp_rejects_expired(credential_store, user_factory):
    user = await user_factory()
    now = datetime.now(UTC)
    await credential_store.set_otp(user.id, OTPPurpose.PASSWORD_RESET, "123456", now - timedelta(seconds=1))

    assert not await credential_store.consume_otp(user.id, OTPPurpose.PASSWORD_RESET, "123456", now)


async def test_enable_mfa_requires_matching_secret(credential_store, user_factory):
    user = await user_factory()
    await credential_store.store_mfa_setup(user.id, "SECRETA", ["h1", "h2"])

    assert not await credential_store.enable_mfa(user.id, "SECRETB")
    assert not (await credential_store.get_by_id(user.id)).mfa_enabled

    assert await credential_store.enable_mfa(user.id, "SECRETA")
    assert (await credential_store.get_by_id(user.id)).mfa_enabled


async def test_backup_codes_consumed_once(credential_store, user_factory):
    user = await user_factory()
    await credential_store.store_mfa_setup(user.id, "SECRET", ["h1", "h2", "h3"])

    assert await credential_store.count_backup_codes(user.id) == 3
    assert await credential_store.consume_backup_code(user.id, "h2")
    assert not await credential_store.consume_backup_code(user.id, "h2")
    assert await credential_store.count_backup_codes(user.id) == 2


async def test_backup_codes_scoped_to_user(credential_store, user_factory):
    alice = await user_factory(email="alice@example.com")
    bob = await user_factory(email="bob@example.com")
    await credential_store.store_mfa_setup(alice.id, "SECRET", ["shared"])

    assert not await credential_store.consume_backup_code(bob.id, "shared")
    assert await credential_store.consume_backup_code(alice.id, "shared")
