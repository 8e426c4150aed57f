"""Unit tests for auth/signup.py and auth/changeset.py.

Covers:
- create_user length bounds (defaults 8..80 and per-call overrides)
- the hash is staged only for a valid, non-empty password
- confirmation / reset key staging
- gen_token_link key size and URL escaping
- reset_password success and rollback when the second step fails
- verify_link_token / confirm_email
"""

from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import pytest

from auth.changeset import Changeset
from auth.errors import RecordNotFound, StoreError
from auth.models import User
from auth.passwords import verify_password
from auth.signup import (
    add_confirm_token,
    add_reset_token,
    confirm_email,
    create_user,
    gen_token_link,
    reset_password,
    verify_link_token,
)
from auth.store import UserTransaction
from core.config import AuthConfig
from tests.helpers import PASSWORD, TEST_SECRET, make_user

# ---------------------------------------------------------------------------
# create_user
# ---------------------------------------------------------------------------


class TestCreateUser:
    @pytest.mark.parametrize("password", ["short", "x" * 7, "x" * 81])
    def test_out_of_bounds_password_is_rejected(self, config, password):
        cs = create_user(Changeset(User()), {"password": password}, config)
        assert not cs.valid
        assert "password" in cs.errors
        assert config.hash_name not in cs.changes

    @pytest.mark.parametrize("password", ["x" * 8, "x" * 80, "a reasonable passphrase"])
    def test_in_bounds_password_is_hashed(self, config, password):
        cs = create_user(Changeset(User()), {"password": password}, config)
        assert cs.valid
        hashed = cs.get_change(config.hash_name)
        assert hashed and hashed != password
        assert verify_password(password, hashed)

    def test_custom_bounds(self, config):
        cs = create_user(Changeset(User()), {"password": "elevenchars"}, config, min_length=12)
        assert cs.errors == {"password": ["should be at least 12 character(s)"]}
        cs = create_user(Changeset(User()), {"password": "elevenchars"}, config, max_length=10)
        assert cs.errors == {"password": ["should be at most 10 character(s)"]}

    def test_bcrypt_hash(self):
        config = AuthConfig(secret_key=TEST_SECRET, crypto_mod="bcrypt")
        cs = create_user(Changeset(User()), {"password": "bcrypt password"}, config)
        assert cs.get_change("password_hash").startswith("$2")

    def test_missing_password_keeps_existing_hash(self, config):
        cs = create_user(Changeset(User(password_hash="existing")), {"password": ""}, config)
        assert cs.valid
        assert "password_hash" not in cs.changes
        assert cs.apply().password_hash == "existing"

    def test_invalid_changeset_is_not_hashed(self, config):
        cs = Changeset(User()).add_error("username", "can't be blank")
        create_user(cs, {"password": "long enough password"}, config)
        assert "password_hash" not in cs.changes

    def test_hash_is_written_to_hash_name_field(self, config):
        cs = create_user(Changeset(User()), {"password": "long enough password"}, config)
        assert config.hash_name == "password_hash"
        assert cs.get_change("password_hash").startswith("$pbkdf2-sha512$")
        assert "reset_token" not in cs.changes

    def test_apply_drops_virtual_password(self, config):
        cs = create_user(Changeset(User(username="fred")), {"password": "long enough password"}, config)
        user = cs.apply()
        assert not hasattr(user, "password")
        assert user.username == "fred"
        assert user.password_hash == cs.get_change("password_hash")


# ---------------------------------------------------------------------------
# Token staging and links
# ---------------------------------------------------------------------------


def test_add_confirm_token_stages_key_and_timestamp():
    cs = add_confirm_token(Changeset(User()), "key123")
    assert cs.changes["confirmation_token"] == "key123"
    sent_at = datetime.fromisoformat(cs.changes["confirmation_sent_at"])
    assert datetime.now(timezone.utc) - sent_at < timedelta(seconds=5)


def test_add_reset_token_stages_key_and_timestamp():
    cs = add_reset_token(Changeset(User()), "key456")
    assert cs.changes["reset_token"] == "key456"
    assert "reset_sent_at" in cs.changes
    assert "confirmation_token" not in cs.changes


def test_gen_token_link_key_is_24_random_bytes():
    key, _ = gen_token_link("fred@example.com")
    assert len(base64.urlsafe_b64decode(key)) == 24
    other, _ = gen_token_link("fred@example.com")
    assert key != other


def test_gen_token_link_escapes_identifier():
    key, query = gen_token_link("fred+test&x=1@mail.com")
    assert query == f"email=fred%2Btest%26x%3D1%40mail.com&key={key}"
    parsed = parse_qs(query)
    assert parsed["email"] == ["fred+test&x=1@mail.com"]
    assert parsed["key"] == [key]


def test_gen_token_link_custom_identifier_name():
    key, query = gen_token_link("fred", "username")
    assert query == f"username=fred&key={key}"


# ---------------------------------------------------------------------------
# reset_password
# ---------------------------------------------------------------------------


class TestResetPassword:
    def test_success_updates_hash_and_clears_key(self, user_store, config):
        user = make_user(user_store, config, reset_token="k", reset_sent_at="2024-01-01T00:00:00+00:00")
        updated = reset_password(user_store, user, "brand new password", config)
        stored = user_store.get_by_id(user.id)
        assert stored == updated
        assert verify_password("brand new password", stored.password_hash)
        assert stored.reset_token is None
        assert stored.reset_sent_at is None

    def test_second_step_failure_rolls_back_hash(self, user_store, config, monkeypatch):
        user = make_user(user_store, config, reset_token="k", reset_sent_at="2024-01-01T00:00:00+00:00")
        original = UserTransaction.update_or_fail
        calls = []

        def failing_second_step(self, user, **fields):
            calls.append(fields)
            if len(calls) == 2:
                raise StoreError("simulated failure")
            return original(self, user, **fields)

        monkeypatch.setattr(UserTransaction, "update_or_fail", failing_second_step)
        with pytest.raises(StoreError):
            reset_password(user_store, user, "brand new password", config)

        stored = user_store.get_by_id(user.id)
        assert stored.password_hash == user.password_hash
        assert verify_password(PASSWORD, stored.password_hash)
        assert stored.reset_token == "k"

    def test_unsaved_user_fails(self, user_store, config):
        with pytest.raises(RecordNotFound):
            reset_password(user_store, User(username="ghost"), "brand new password", config)

    def test_deleted_user_fails(self, user_store, config):
        with pytest.raises(RecordNotFound):
            reset_password(user_store, User(id=999, username="ghost"), "brand new password", config)


# ---------------------------------------------------------------------------
# verify_link_token / confirm_email
# ---------------------------------------------------------------------------


def _sent(minutes_ago: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)).isoformat()


@pytest.mark.parametrize(
    "user,key,kind,expected",
    [
        (User(confirmation_token="abc", confirmation_sent_at=_sent(5)), "abc", "confirmation", True),
        (User(confirmation_token="abc", confirmation_sent_at=_sent(5)), "abd", "confirmation", False),
        (User(confirmation_token="abc", confirmation_sent_at=_sent(61)), "abc", "confirmation", False),
        (User(confirmation_token=None, confirmation_sent_at=None), "", "confirmation", False),
        (User(reset_token="abc", reset_sent_at=_sent(1)), "abc", "reset", True),
        (User(confirmation_token="abc", confirmation_sent_at=_sent(1)), "abc", "reset", False),
    ],
)
def test_verify_link_token(user, key, kind, expected):
    assert verify_link_token(user, key, kind, max_age_minutes=60) is expected


def test_verify_link_token_rejects_unknown_kind():
    with pytest.raises(ValueError):
        verify_link_token(User(), "k", "magic")


def test_confirm_email(user_store, config):
    user = make_user(user_store, config, confirmation_token="abc", confirmation_sent_at=_sent(1))
    confirmed = confirm_email(user_store, user)
    assert confirmed.confirmed_at is not None
    assert confirmed.confirmation_token is None
    assert user_store.get_by_id(user.id).confirmed_at == confirmed.confirmed_at


# ---------------------------------------------------------------------------
# Changeset
# ---------------------------------------------------------------------------


def test_cast_ignores_unpermitted_and_blank_fields():
    cs = Changeset(User()).cast({"username": "fred", "role": "admin", "email": ""}, ["username", "email"])
    assert cs.changes == {"username": "fred"}


def test_cast_rejects_unknown_field():
    with pytest.raises(ValueError):
        Changeset(User()).cast({}, ["is_admin"])


def test_validate_required():
    cs = Changeset(User(email="a@b.c")).validate_required(["username", "email"])
    assert cs.errors == {"username": ["can't be blank"]}
