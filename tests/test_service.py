"""Unit tests for auth/service.py -- the credential orchestrator.

Covers:
- register: profile + tokens, USER role, 900s expiry for "15m", Conflict on duplicates
- login: success, and enumeration resistance (same kind + message for unknown
  email and wrong password, with a bcrypt comparison on both paths)
- refresh: new access token only, minted from the live record; Unauthorized
  for bad tokens and deleted users
- request_password_reset: uniform response, single active token, hook only
  for registered emails, a failing hook is logged and invisible to callers
- reset_password: lifecycle, NotFound for unknown tokens, BadRequest for
  expired tokens (which stay resolvable afterwards), NotFound when the token
  is superseded or spent while the new password is being hashed
- current_user / get_profile
- user administration: create, paginated and filtered list, update with the
  email conflict rules, delete
"""

import logging
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from auth.errors import BadRequest, Conflict, NotFound, Unauthorized
from auth.models import ROLE_ADMIN, ROLE_USER, UserFilters
from auth.reset_tokens import ResetTokenManager
from auth.service import INVALID_CREDENTIALS, PASSWORD_RESET_REQUESTED, CredentialService

EMAIL = "x@y.com"
PASSWORD = "Password@123"


@pytest.fixture
def registered(service: CredentialService):
    return service.register(EMAIL, "X", PASSWORD)


def _delete_user(service: CredentialService, user_id: str) -> None:
    with service.store.engine.begin() as conn:
        conn.execute(text("DELETE FROM users WHERE id = :id"), {"id": user_id})


# ---------------------------------------------------------------------------
# register
# ---------------------------------------------------------------------------


class TestRegister:
    def test_returns_profile_and_tokens(self, registered) -> None:
        assert registered.profile.email == "x@y.com"
        assert registered.profile.name == "X"
        assert registered.profile.role == ROLE_USER
        assert registered.tokens.expires_in == 900
        assert registered.tokens.access_token
        assert registered.tokens.refresh_token

    def test_profile_has_no_password_hash(self, registered) -> None:
        assert not hasattr(registered.profile, "password_hash")

    def test_password_is_stored_hashed(self, service: CredentialService, registered) -> None:
        stored = service.store.find_by_id(registered.profile.id)
        assert stored.password_hash != PASSWORD
        assert service.hasher.compare(PASSWORD, stored.password_hash)

    def test_tokens_describe_new_user(self, service: CredentialService, registered) -> None:
        payload = service.tokens.verify_refresh_token(registered.tokens.refresh_token)
        assert payload.subject == registered.profile.id
        assert payload.email == "x@y.com"
        assert payload.role == ROLE_USER

    def test_duplicate_email_conflicts(self, service: CredentialService, registered) -> None:
        with pytest.raises(Conflict):
            service.register(EMAIL, "Someone Else", "Other@1234")

    def test_duplicate_email_conflicts_case_insensitively(self, service: CredentialService, registered) -> None:
        with pytest.raises(Conflict):
            service.register("X@Y.COM", "Someone Else", "Other@1234")


# ---------------------------------------------------------------------------
# login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_success(self, service: CredentialService, registered) -> None:
        result = service.login(EMAIL, PASSWORD)
        assert result.profile.id == registered.profile.id
        assert result.tokens.expires_in == 900

    def test_unknown_email_and_wrong_password_are_indistinguishable(
        self, service: CredentialService, registered
    ) -> None:
        with pytest.raises(Unauthorized) as unknown:
            service.login("nobody@y.com", PASSWORD)
        with pytest.raises(Unauthorized) as wrong:
            service.login(EMAIL, "Wrong@1234")
        assert type(unknown.value) is type(wrong.value)
        assert unknown.value.message == wrong.value.message == INVALID_CREDENTIALS
        assert unknown.value.code == wrong.value.code

    def test_unknown_email_still_runs_bcrypt(self, service: CredentialService, monkeypatch) -> None:
        calls: list[str] = []
        original = service.hasher.compare

        def spy(plain: str, hashed: str) -> bool:
            calls.append(hashed)
            return original(plain, hashed)

        monkeypatch.setattr(service.hasher, "compare", spy)
        with pytest.raises(Unauthorized):
            service.login("nobody@y.com", PASSWORD)
        assert len(calls) == 1


# ---------------------------------------------------------------------------
# refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_returns_new_access_token(self, service: CredentialService, registered) -> None:
        result = service.refresh(registered.tokens.refresh_token)
        assert result.expires_in == 900
        payload = service.tokens.verify_access_token(result.access_token)
        assert payload.subject == registered.profile.id

    def test_result_does_not_carry_refresh_token(self, service: CredentialService, registered) -> None:
        result = service.refresh(registered.tokens.refresh_token)
        assert not hasattr(result, "refresh_token")

    def test_mints_from_live_record(self, service: CredentialService, registered) -> None:
        with service.store.engine.begin() as conn:
            conn.execute(text("UPDATE users SET role = 'ADMIN' WHERE id = :id"), {"id": registered.profile.id})
        result = service.refresh(registered.tokens.refresh_token)
        assert service.tokens.verify_access_token(result.access_token).role == ROLE_ADMIN

    def test_invalid_token_unauthorized(self, service: CredentialService) -> None:
        with pytest.raises(Unauthorized):
            service.refresh("not-a-token")

    def test_access_token_cannot_refresh(self, service: CredentialService, registered) -> None:
        with pytest.raises(Unauthorized):
            service.refresh(registered.tokens.access_token)

    def test_deleted_user_unauthorized_not_not_found(self, service: CredentialService, registered) -> None:
        _delete_user(service, registered.profile.id)
        with pytest.raises(Unauthorized) as exc_info:
            service.refresh(registered.tokens.refresh_token)
        assert not isinstance(exc_info.value, NotFound)

    def test_deleted_user_message_matches_bad_token(self, service: CredentialService, registered) -> None:
        with pytest.raises(Unauthorized) as bad:
            service.refresh("not-a-token")
        _delete_user(service, registered.profile.id)
        with pytest.raises(Unauthorized) as gone:
            service.refresh(registered.tokens.refresh_token)
        assert bad.value.message == gone.value.message


# ---------------------------------------------------------------------------
# request_password_reset
# ---------------------------------------------------------------------------


class TestRequestPasswordReset:
    def test_response_is_uniform(self, service: CredentialService, registered) -> None:
        known = service.request_password_reset(EMAIL)
        unknown = service.request_password_reset("nobody@y.com")
        assert known == unknown
        assert known.message == PASSWORD_RESET_REQUESTED
        assert known.expires_in == 3600

    def test_known_email_persists_and_delivers(self, service: CredentialService, registered, delivered) -> None:
        service.request_password_reset(EMAIL)
        assert len(delivered) == 1
        user, generated = delivered[0]
        assert user.id == registered.profile.id
        owner, reset_token = service.store.find_reset_token(generated.token)
        assert owner.id == registered.profile.id
        assert reset_token.expires_at == generated.expires_at

    def test_unknown_email_persists_nothing(self, service: CredentialService, delivered) -> None:
        service.request_password_reset("nobody@y.com")
        assert delivered == []
        with service.store.engine.connect() as conn:
            assert conn.execute(text("SELECT COUNT(*) FROM password_reset_tokens")).scalar() == 0

    def test_second_request_supersedes_first(self, service: CredentialService, registered, delivered) -> None:
        service.request_password_reset(EMAIL)
        service.request_password_reset(EMAIL)
        first, second = delivered[0][1].token, delivered[1][1].token
        assert first != second
        assert service.store.find_reset_token(first) is None
        assert service.store.find_reset_token(second) is not None
        with service.store.engine.connect() as conn:
            count = conn.execute(
                text("SELECT COUNT(*) FROM password_reset_tokens WHERE user_id = :uid"),
                {"uid": registered.profile.id},
            ).scalar()
        assert count == 1

    def test_response_never_contains_token(self, service: CredentialService, registered, delivered) -> None:
        result = service.request_password_reset(EMAIL)
        assert delivered[0][1].token not in repr(result)

    def test_delivery_failure_keeps_response_uniform(self, store, hasher, tokens, caplog) -> None:
        def mailer_down(user, generated):
            raise ConnectionError("smtp down")

        service = CredentialService(
            store=store,
            hasher=hasher,
            tokens=tokens,
            reset_tokens=ResetTokenManager(expires_seconds=3600),
            on_reset_token=mailer_down,
        )
        user_id = service.register(EMAIL, "X", PASSWORD).profile.id

        with caplog.at_level(logging.ERROR, logger="credvault.auth"):
            known = service.request_password_reset(EMAIL)
        unknown = service.request_password_reset("nobody@y.com")

        assert known == unknown
        assert any("delivery failed" in r.getMessage() and user_id in r.getMessage() for r in caplog.records)
        # The token is still persisted; a retried delivery can find it.
        with store.engine.connect() as conn:
            assert conn.execute(text("SELECT COUNT(*) FROM password_reset_tokens")).scalar() == 1


# ---------------------------------------------------------------------------
# reset_password
# ---------------------------------------------------------------------------


class TestResetPassword:
    def test_lifecycle(self, service: CredentialService, registered, delivered) -> None:
        service.request_password_reset(EMAIL)
        token = delivered[0][1].token

        service.reset_password(token, "NewPass@123")

        assert service.store.find_reset_token(token) is None
        assert service.login(EMAIL, "NewPass@123").profile.id == registered.profile.id
        with pytest.raises(Unauthorized):
            service.login(EMAIL, PASSWORD)

    def test_token_is_single_use(self, service: CredentialService, registered, delivered) -> None:
        service.request_password_reset(EMAIL)
        token = delivered[0][1].token
        service.reset_password(token, "NewPass@123")
        with pytest.raises(NotFound):
            service.reset_password(token, "Another@123")

    def test_unknown_token_not_found(self, service: CredentialService) -> None:
        with pytest.raises(NotFound):
            service.reset_password("0" * 64, "NewPass@123")

    def test_expired_token_bad_request(self, service: CredentialService, registered) -> None:
        expired = datetime.now(timezone.utc) - timedelta(seconds=1)
        service.store.create_reset_token(registered.profile.id, "e" * 64, expired)

        with pytest.raises(BadRequest):
            service.reset_password("e" * 64, "NewPass@123")

        # Expired tokens are not deleted on presentation; the old password still works.
        assert service.store.find_reset_token("e" * 64) is not None
        assert service.login(EMAIL, PASSWORD).profile.id == registered.profile.id

    def test_expired_token_replaced_by_new_request(self, service: CredentialService, registered, delivered) -> None:
        expired = datetime.now(timezone.utc) - timedelta(seconds=1)
        service.store.create_reset_token(registered.profile.id, "e" * 64, expired)
        service.request_password_reset(EMAIL)
        assert service.store.find_reset_token("e" * 64) is None
        service.reset_password(delivered[0][1].token, "NewPass@123")

    def test_token_superseded_while_hashing_changes_nothing(
        self, service: CredentialService, registered, delivered, monkeypatch
    ) -> None:
        service.request_password_reset(EMAIL)
        stale = delivered[0][1].token
        real_hash = service.hasher.hash

        def hash_after_new_request(plain: str) -> str:
            service.request_password_reset(EMAIL)
            return real_hash(plain)

        monkeypatch.setattr(service.hasher, "hash", hash_after_new_request)
        with pytest.raises(NotFound):
            service.reset_password(stale, "NewPass@123")
        monkeypatch.undo()

        fresh = delivered[1][1].token
        assert service.store.find_reset_token(fresh) is not None
        assert service.login(EMAIL, PASSWORD).profile.id == registered.profile.id
        service.reset_password(fresh, "NewPass@123")
        assert service.login(EMAIL, "NewPass@123").profile.id == registered.profile.id

    def test_token_spent_by_concurrent_confirm_changes_nothing(
        self, service: CredentialService, registered, delivered, monkeypatch
    ) -> None:
        service.request_password_reset(EMAIL)
        token = delivered[0][1].token
        real_hash = service.hasher.hash

        def hash_after_other_confirm(plain: str) -> str:
            service.store.consume_reset_token(token, registered.profile.id, real_hash("First@1234"))
            return real_hash(plain)

        monkeypatch.setattr(service.hasher, "hash", hash_after_other_confirm)
        with pytest.raises(NotFound):
            service.reset_password(token, "Second@1234")
        monkeypatch.undo()

        assert service.login(EMAIL, "First@1234").profile.id == registered.profile.id
        with pytest.raises(Unauthorized):
            service.login(EMAIL, "Second@1234")

    def test_expiry_uses_injected_clock(self, pending_reset) -> None:
        service, token, expires_at = pending_reset
        service._clock = lambda: expires_at + timedelta(seconds=1)
        with pytest.raises(BadRequest):
            service.reset_password(token, "NewPass@123")


@pytest.fixture
def pending_reset(service: CredentialService, delivered):
    service.register(EMAIL, "X", PASSWORD)
    service.request_password_reset(EMAIL)
    generated = delivered[0][1]
    return service, generated.token, generated.expires_at


# ---------------------------------------------------------------------------
# identity
# ---------------------------------------------------------------------------


class TestIdentity:
    def test_current_user(self, service: CredentialService, registered) -> None:
        profile = service.current_user(registered.tokens.access_token)
        assert profile == registered.profile

    def test_current_user_rejects_refresh_token(self, service: CredentialService, registered) -> None:
        with pytest.raises(Unauthorized):
            service.current_user(registered.tokens.refresh_token)

    def test_current_user_deleted(self, service: CredentialService, registered) -> None:
        _delete_user(service, registered.profile.id)
        with pytest.raises(Unauthorized):
            service.current_user(registered.tokens.access_token)

    def test_get_profile(self, service: CredentialService, registered) -> None:
        assert service.get_profile(registered.profile.id).email == EMAIL
        with pytest.raises(NotFound):
            service.get_profile("missing")


# ---------------------------------------------------------------------------
# user administration
# ---------------------------------------------------------------------------


class TestUserAdministration:
    @pytest.fixture
    def people(self, service: CredentialService):
        return {
            "ana": service.create_user("ana@example.com", "Ana Souza", PASSWORD),
            "bob": service.create_user("bob@example.com", "Bob Lima", PASSWORD),
            "root": service.create_user("root@corp.io", "Root", PASSWORD, role=ROLE_ADMIN),
        }

    def test_create_user_with_role(self, people) -> None:
        assert people["root"].role == ROLE_ADMIN
        assert people["ana"].role == ROLE_USER

    def test_create_user_duplicate_conflicts(self, service: CredentialService, people) -> None:
        with pytest.raises(Conflict):
            service.create_user("ANA@example.com", "Again", PASSWORD)

    def test_created_user_can_log_in(self, service: CredentialService, people) -> None:
        assert service.login("bob@example.com", PASSWORD).profile.id == people["bob"].id

    def test_list_pages_newest_first(self, service: CredentialService, people) -> None:
        first = service.list_users(page=1, limit=2)
        second = service.list_users(page=2, limit=2)
        assert first.total == second.total == 3
        assert first.total_pages == 2
        assert len(first.items) == 2 and len(second.items) == 1
        stamps = [p.created_at for p in first.items + second.items]
        assert stamps == sorted(stamps, reverse=True)
        assert {p.id for p in first.items + second.items} == {p.id for p in people.values()}

    def test_list_name_filter_is_substring_or(self, service: CredentialService, people) -> None:
        result = service.list_users(1, 10, UserFilters(names=("souza", "LIMA")))
        assert {p.id for p in result.items} == {people["ana"].id, people["bob"].id}
        assert result.total == 2

    def test_list_filters_combine_with_and(self, service: CredentialService, people) -> None:
        result = service.list_users(1, 10, UserFilters(emails=("example.com",), roles=(ROLE_ADMIN,)))
        assert result.items == []
        assert result.total == 0
        result = service.list_users(1, 10, UserFilters(emails=("corp",), roles=(ROLE_ADMIN,)))
        assert [p.id for p in result.items] == [people["root"].id]

    def test_update_name_and_role(self, service: CredentialService, people) -> None:
        updated = service.update_user(people["ana"].id, name="Ana S.", role=ROLE_ADMIN)
        assert updated.name == "Ana S."
        assert updated.role == ROLE_ADMIN
        assert updated.email == "ana@example.com"

    def test_role_change_reflected_on_refresh(self, service: CredentialService, registered) -> None:
        service.update_user(registered.profile.id, role=ROLE_ADMIN)
        result = service.refresh(registered.tokens.refresh_token)
        assert service.tokens.verify_access_token(result.access_token).role == ROLE_ADMIN

    def test_update_email_to_same_value_conflicts(self, service: CredentialService, people) -> None:
        with pytest.raises(Conflict):
            service.update_user(people["ana"].id, email="Ana@Example.com")

    def test_update_email_to_taken_value_conflicts(self, service: CredentialService, people) -> None:
        with pytest.raises(Conflict):
            service.update_user(people["ana"].id, email="bob@example.com")

    def test_update_email(self, service: CredentialService, people) -> None:
        updated = service.update_user(people["ana"].id, email="ana@new.io")
        assert updated.email == "ana@new.io"
        assert service.login("ana@new.io", PASSWORD).profile.id == people["ana"].id

    def test_update_password_voids_pending_reset(self, service: CredentialService, registered, delivered) -> None:
        service.request_password_reset(EMAIL)
        token = delivered[0][1].token
        service.update_user(registered.profile.id, password="Changed@123")
        assert service.store.find_reset_token(token) is None
        assert service.login(EMAIL, "Changed@123").profile.id == registered.profile.id

    def test_update_unknown_user(self, service: CredentialService) -> None:
        with pytest.raises(NotFound):
            service.update_user("missing", name="Nobody")

    def test_delete_user(self, service: CredentialService, registered, delivered) -> None:
        service.request_password_reset(EMAIL)
        service.delete_user(registered.profile.id)
        assert service.store.find_by_id(registered.profile.id) is None
        assert service.store.find_reset_token(delivered[0][1].token) is None
        with pytest.raises(Unauthorized):
            service.refresh(registered.tokens.refresh_token)

    def test_delete_unknown_user(self, service: CredentialService) -> None:
        with pytest.raises(NotFound):
            service.delete_user("missing")
