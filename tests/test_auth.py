"""Tests for the authentication state machine: lockout, blacklist precedence, refresh rotation, providers."""

from datetime import timedelta

import pytest

from loyalty.core.clock import as_utc, utc_now
from loyalty.core.errors import (
    AccountInactive,
    AccountLocked,
    Blacklisted,
    EmailAlreadyUsed,
    InvalidCredentials,
    InvalidRefreshToken,
    InvalidResetToken,
    OAuthPasswordChange,
    PasswordMismatch,
)
from loyalty.core.security import decode_access_token
from loyalty.models.account import OAuthProvider, Role
from loyalty.services import accounts as accounts_service
from loyalty.services import auth

PASSWORD = "Secret123!"


async def fail_login(db, email, times):
    for _ in range(times):
        with pytest.raises(InvalidCredentials):
            await auth.authenticate(db, email=email, password="wrong-password")


class TestAuthenticate:
    async def test_success_issues_tokens(self, db, factory):
        account, _ = await factory.customer()

        logged_in, pair = await auth.authenticate(db, email=account.email.upper(), password=PASSWORD)

        assert logged_in.id == account.id
        assert logged_in.refresh_token == pair.refresh_token
        assert logged_in.last_login_at is not None
        payload = decode_access_token(pair.access_token)
        assert payload["sub"] == str(account.id)
        assert payload["role"] == Role.customer.value

    async def test_unknown_email(self, db):
        with pytest.raises(InvalidCredentials):
            await auth.authenticate(db, email="nobody@example.com", password=PASSWORD)

    async def test_failures_are_counted(self, db, factory):
        account, _ = await factory.customer()
        await fail_login(db, account.email, 2)

        await db.refresh(account)
        assert account.failed_login_attempts == 2
        assert account.lock_until is None

    async def test_fifth_failure_locks(self, db, factory):
        account, _ = await factory.customer()
        await fail_login(db, account.email, 5)

        await db.refresh(account)
        assert account.failed_login_attempts == 5
        assert as_utc(account.lock_until) > utc_now() + timedelta(hours=1, minutes=59)

        # even the right password is refused while locked
        with pytest.raises(AccountLocked):
            await auth.authenticate(db, email=account.email, password=PASSWORD)

    async def test_expired_lock_restarts_counter(self, db, factory):
        account, _ = await factory.customer()
        await fail_login(db, account.email, 5)

        await db.refresh(account)
        account.lock_until = utc_now() - timedelta(minutes=1)
        await db.commit()

        await fail_login(db, account.email, 1)
        await db.refresh(account)
        assert account.failed_login_attempts == 1
        assert account.lock_until is None

    async def test_success_clears_lockout_state(self, db, factory):
        account, _ = await factory.customer()
        await fail_login(db, account.email, 3)

        logged_in, _ = await auth.authenticate(db, email=account.email, password=PASSWORD)
        assert logged_in.failed_login_attempts == 0
        assert logged_in.lock_until is None

    async def test_blacklist_beats_correct_password(self, db, factory):
        account, _ = await factory.customer()
        await accounts_service.blacklist_account(db, account_id=account.id, reason="fraud")

        with pytest.raises(Blacklisted) as exc:
            await auth.authenticate(db, email=account.email, password=PASSWORD)
        assert "fraud" in exc.value.message

    async def test_blacklist_beats_lock(self, db, factory):
        account, _ = await factory.customer()
        await fail_login(db, account.email, 5)
        await accounts_service.blacklist_account(db, account_id=account.id, reason=None)

        with pytest.raises(Blacklisted):
            await auth.authenticate(db, email=account.email, password=PASSWORD)

    async def test_inactive_account(self, db, factory):
        account, _ = await factory.customer()
        await accounts_service.admin_update_account(
            db, account_id=account.id, email=None, is_active=False, is_email_verified=None, role=None
        )

        with pytest.raises(AccountInactive):
            await auth.authenticate(db, email=account.email, password=PASSWORD)

    async def test_inactive_with_wrong_password_still_counts_failure(self, db, factory):
        account, _ = await factory.customer()
        account.is_active = False
        await db.commit()

        await fail_login(db, account.email, 1)
        await db.refresh(account)
        assert account.failed_login_attempts == 1


class TestRefresh:
    async def test_rotation(self, db, factory):
        account, _ = await factory.customer()
        _, first = await auth.authenticate(db, email=account.email, password=PASSWORD)

        second = await auth.refresh(db, refresh_token=first.refresh_token)
        assert second.refresh_token != first.refresh_token

        # the old token lost the compare-and-set
        with pytest.raises(InvalidRefreshToken):
            await auth.refresh(db, refresh_token=first.refresh_token)

        third = await auth.refresh(db, refresh_token=second.refresh_token)
        assert third.access_token

    async def test_same_token_twice_only_one_wins(self, db, session_factory, factory):
        account, _ = await factory.customer()
        _, pair = await auth.authenticate(db, email=account.email, password=PASSWORD)

        outcomes = []
        for _ in range(2):
            async with session_factory() as s:
                try:
                    outcomes.append(await auth.refresh(s, refresh_token=pair.refresh_token))
                except InvalidRefreshToken:
                    outcomes.append(None)

        assert sum(1 for o in outcomes if o is not None) == 1

    async def test_garbage_token(self, db):
        with pytest.raises(InvalidRefreshToken):
            await auth.refresh(db, refresh_token="not-a-jwt")

    async def test_access_token_is_not_a_refresh_token(self, db, factory):
        account, _ = await factory.customer()
        _, pair = await auth.authenticate(db, email=account.email, password=PASSWORD)
        with pytest.raises(InvalidRefreshToken):
            await auth.refresh(db, refresh_token=pair.access_token)

    async def test_logout_revokes(self, db, factory):
        account, _ = await factory.customer()
        logged_in, pair = await auth.authenticate(db, email=account.email, password=PASSWORD)
        await auth.logout(db, account=logged_in)

        with pytest.raises(InvalidRefreshToken):
            await auth.refresh(db, refresh_token=pair.refresh_token)

    async def test_blacklisted_cannot_refresh(self, db, factory):
        account, _ = await factory.customer()
        _, pair = await auth.authenticate(db, email=account.email, password=PASSWORD)
        await accounts_service.blacklist_account(db, account_id=account.id, reason="abuse")

        with pytest.raises(InvalidRefreshToken):
            await auth.refresh(db, refresh_token=pair.refresh_token)


class TestRegistration:
    async def test_register_creates_profile_with_qr(self, db):
        account, pair = await auth.register_customer(
            db, email=" New@Example.com ", password=PASSWORD, first_name="N", last_name=None, phone=None
        )
        assert account.email == "new@example.com"
        assert account.role == Role.customer.value

        profile = await accounts_service.get_customer_profile(db, account.id)
        assert profile.qr_token.startswith("QRC_")
        assert len(profile.qr_token) == 4 + 32
        assert pair.refresh_token == account.refresh_token

    async def test_duplicate_email(self, db, factory):
        account, _ = await factory.customer()
        with pytest.raises(EmailAlreadyUsed):
            await auth.register_customer(
                db, email=account.email, password=PASSWORD, first_name=None, last_name=None, phone=None
            )

    async def test_email_reusable_after_soft_delete(self, db, factory):
        account, _ = await factory.customer()
        await accounts_service.delete_own_account(db, account=account)

        again, _ = await auth.register_customer(
            db, email=account.email, password=PASSWORD, first_name=None, last_name=None, phone=None
        )
        assert again.id != account.id


class TestProviderLogin:
    async def test_creates_verified_customer(self, db):
        account, pair = await auth.login_with_provider(
            db, provider=OAuthProvider.google, provider_id="g-123", email="g@example.com", first_name="G"
        )
        assert account.google_id == "g-123"
        assert account.is_email_verified is True
        assert account.oauth_provider == "google"
        assert (await accounts_service.get_customer_profile(db, account.id)).qr_token
        assert pair.access_token

    async def test_second_login_reuses_account(self, db):
        first, _ = await auth.login_with_provider(
            db, provider=OAuthProvider.apple, provider_id="a-1", email="a@example.com"
        )
        second, _ = await auth.login_with_provider(
            db, provider=OAuthProvider.apple, provider_id="a-1", email="a@example.com"
        )
        assert first.id == second.id

    async def test_links_existing_local_account(self, db, factory):
        account, _ = await factory.customer()
        linked, _ = await auth.login_with_provider(
            db, provider=OAuthProvider.google, provider_id="g-9", email=account.email
        )
        assert linked.id == account.id
        assert linked.google_id == "g-9"
        assert linked.is_email_verified is True

    async def test_blacklisted(self, db, factory):
        account, _ = await factory.customer()
        await accounts_service.blacklist_account(db, account_id=account.id, reason=None)
        with pytest.raises(Blacklisted):
            await auth.login_with_provider(db, provider=OAuthProvider.google, provider_id="x", email=account.email)


class TestPasswords:
    async def test_change_password(self, db, factory):
        account, _ = await factory.customer()
        await auth.change_password(db, account=account, current_password=PASSWORD, new_password="Another123!")

        await auth.authenticate(db, email=account.email, password="Another123!")

    async def test_change_password_wrong_current(self, db, factory):
        account, _ = await factory.customer()
        with pytest.raises(PasswordMismatch):
            await auth.change_password(db, account=account, current_password="nope", new_password="Another123!")

    async def test_change_password_refused_for_provider_accounts(self, db):
        account, _ = await auth.login_with_provider(
            db, provider=OAuthProvider.google, provider_id="g-2", email="oauth@example.com"
        )
        with pytest.raises(OAuthPasswordChange):
            await auth.change_password(db, account=account, current_password="x", new_password="Another123!")

    async def test_reset_flow_clears_lock(self, db, factory):
        account, _ = await factory.customer()
        await fail_login(db, account.email, 5)

        token = await auth.forgot_password(db, email=account.email)
        assert token
        await auth.reset_password(db, token=token, new_password="Brandnew123!")

        logged_in, _ = await auth.authenticate(db, email=account.email, password="Brandnew123!")
        assert logged_in.password_reset_token is None

        with pytest.raises(InvalidResetToken):
            await auth.reset_password(db, token=token, new_password="Again12345!")

    async def test_forgot_password_unknown_email_is_silent(self, db):
        assert await auth.forgot_password(db, email="ghost@example.com") is None

    async def test_expired_reset_token(self, db, factory):
        account, _ = await factory.customer()
        token = await auth.forgot_password(db, email=account.email)
        account.password_reset_expires_at = utc_now() - timedelta(seconds=1)
        await db.commit()

        with pytest.raises(InvalidResetToken):
            await auth.reset_password(db, token=token, new_password="Brandnew123!")
