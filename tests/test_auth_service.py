import re
from datetime import datetime, timedelta, timezone

import pytest

from helpdesk.core.errors import (
    AccountInactive,
    Conflict,
    InvalidCredentials,
    InvalidOrExpiredSession,
    ValidationError,
)
from helpdesk.repositories.audit_logs import ActivityLogRepository
from helpdesk.repositories.auth import SessionRepository
from helpdesk.repositories.users import UserRepository
from helpdesk.security.passwords import hash_password, verify_password
from helpdesk.services.audit import ActivityLogger
from helpdesk.services.auth import AuthService
from helpdesk.services.permissions import Role, TICKET_MANAGEMENT


@pytest.fixture
def activity(database):
    return ActivityLogger(ActivityLogRepository(database))


@pytest.fixture
def auth_service(database, activity, settings):
    return AuthService(UserRepository(database), SessionRepository(database), activity, settings)


async def _create_user(database, email="alice@example.com", password="Secret123!", role=Role.AGENT, **extra):
    return await UserRepository(database).create_user(
        email=email,
        password_hash=hash_password(password),
        full_name="Alice Agent",
        role=role,
        **extra,
    )


@pytest.mark.anyio
async def test_login_issues_opaque_token_valid_for_a_day(database, auth_service, activity):
    user = await _create_user(database)

    before = datetime.now(timezone.utc)
    result = await auth_service.authenticate("alice@example.com", "Secret123!", ip_address="10.0.0.1")
    await activity.drain()

    assert re.fullmatch(r"[0-9a-f]{64}", result.session_token)
    assert result.user.id == user["id"]
    assert result.user.role == "agent"
    assert TICKET_MANAGEMENT in result.user.permissions
    expected = before + timedelta(hours=24)
    assert abs((result.expires_at - expected).total_seconds()) < 60

    stored = await UserRepository(database).get_user_by_id(user["id"])
    assert stored["last_login"] is not None
    entries = await activity.list_activity(user_id=user["id"])
    assert [entry["action"] for entry in entries] == ["login"]


@pytest.mark.anyio
async def test_login_matches_email_case_insensitively(database, auth_service):
    await _create_user(database)

    result = await auth_service.authenticate("  ALICE@Example.com ", "Secret123!")

    assert result.user.email == "alice@example.com"


@pytest.mark.anyio
async def test_unknown_user_and_wrong_password_fail_identically(database, auth_service):
    await _create_user(database)

    with pytest.raises(InvalidCredentials) as unknown:
        await auth_service.authenticate("nobody@example.com", "Secret123!")
    with pytest.raises(InvalidCredentials) as wrong:
        await auth_service.authenticate("alice@example.com", "not-the-password")

    assert unknown.value.to_payload() == wrong.value.to_payload()
    assert unknown.value.status_code == wrong.value.status_code == 401


@pytest.mark.anyio
async def test_login_requires_both_fields(auth_service):
    with pytest.raises(ValidationError):
        await auth_service.authenticate("", "Secret123!")
    with pytest.raises(ValidationError):
        await auth_service.authenticate("alice@example.com", None)


@pytest.mark.anyio
async def test_inactive_account_cannot_log_in(database, auth_service):
    await _create_user(database, is_active=False)

    with pytest.raises(AccountInactive):
        await auth_service.authenticate("alice@example.com", "Secret123!")


@pytest.mark.anyio
async def test_validate_session_resolves_owner(database, auth_service):
    await _create_user(database)
    result = await auth_service.authenticate("alice@example.com", "Secret123!")

    user = await auth_service.validate_session(result.session_token)

    assert user.email == "alice@example.com"
    assert user.session.session_token == result.session_token
    assert user.session.expires_at == result.expires_at


@pytest.mark.anyio
async def test_expired_session_is_rejected(database, auth_service):
    user = await _create_user(database)
    now = datetime.now(timezone.utc)
    await SessionRepository(database).create_session(
        user_id=user["id"],
        session_token="a" * 64,
        created_at=now - timedelta(hours=25),
        expires_at=now - timedelta(seconds=1),
        ip_address=None,
        user_agent=None,
    )

    with pytest.raises(InvalidOrExpiredSession):
        await auth_service.validate_session("a" * 64)


@pytest.mark.anyio
async def test_unknown_or_blank_token_is_rejected(auth_service):
    with pytest.raises(InvalidOrExpiredSession):
        await auth_service.validate_session("does-not-exist")
    with pytest.raises(InvalidOrExpiredSession):
        await auth_service.validate_session("   ")


@pytest.mark.anyio
async def test_deactivated_user_session_is_rejected(database, auth_service):
    user = await _create_user(database)
    result = await auth_service.authenticate("alice@example.com", "Secret123!")
    await UserRepository(database).update_user(user["id"], is_active=False)

    with pytest.raises(AccountInactive):
        await auth_service.validate_session(result.session_token)


@pytest.mark.anyio
async def test_logout_deletes_session(database, auth_service):
    await _create_user(database)
    result = await auth_service.authenticate("alice@example.com", "Secret123!")
    user = await auth_service.validate_session(result.session_token)

    await auth_service.logout(user)

    with pytest.raises(InvalidOrExpiredSession):
        await auth_service.validate_session(result.session_token)


@pytest.mark.anyio
async def test_register_creates_customer_and_rejects_duplicates(database, auth_service):
    user = await auth_service.register(
        email="Carol@Example.com", password="Password1", full_name="Carol"
    )

    assert user["role"] == "customer"
    assert user["email"] == "carol@example.com"
    with pytest.raises(Conflict):
        await auth_service.register(
            email="carol@example.com", password="Password1", full_name="Carol Again"
        )


@pytest.mark.anyio
async def test_password_reset_is_single_use_and_revokes_sessions(database, auth_service):
    user = await _create_user(database)
    login = await auth_service.authenticate("alice@example.com", "Secret123!")

    token = await auth_service.request_password_reset("alice@example.com")
    await auth_service.reset_password(token, "BrandNew456!")

    stored = await UserRepository(database).get_user_by_id(user["id"])
    assert verify_password("BrandNew456!", stored["password_hash"])
    with pytest.raises(InvalidOrExpiredSession):
        await auth_service.validate_session(login.session_token)
    with pytest.raises(ValidationError):
        await auth_service.reset_password(token, "Another789!")


@pytest.mark.anyio
async def test_password_reset_for_unknown_email_issues_nothing(auth_service):
    assert await auth_service.request_password_reset("ghost@example.com") is None
