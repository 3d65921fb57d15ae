"""
Unit tests for step-up sessions during sign-in

- Token-keyed sessions in Redis with a TTL
- Only a verified session completes, exactly once
- Verification attempts are capped per token
"""

import json
from unittest.mock import Mock

import pytest

from twofa_service.core.exceptions import TwoFactorErrorCode
from twofa_service.models import User
from twofa_service.services.step_up import ATTEMPTS_KEY_PREFIX, KEY_PREFIX, StepUpService, StepUpSessionStore

from tests.unit.conftest import FIXED_NOW


@pytest.fixture
def store(fake_redis):
    return StepUpSessionStore(fake_redis, ttl_seconds=300)


@pytest.fixture
def mock_event_service():
    return Mock()


@pytest.fixture
def step_up(store, two_factor_service, repository, mock_event_service):
    return StepUpService(
        store=store,
        two_factor=two_factor_service,
        repository=repository,
        event_service=mock_event_service,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def enabled_user(two_factor_service, totp_engine, user):
    """User with 2FA enabled; returns (user, manual secret, backup codes)"""
    pending = two_factor_service.setup_two_factor(user.email).data["pending"]
    result = two_factor_service.enable_two_factor(
        pending.encrypted_secret, totp_engine.current_code(pending.manual_entry_secret), user.user_id
    )
    return user, pending.manual_entry_secret, result.data["backup_codes"]


class TestSessionStore:

    def test_create_sets_ttl(self, store, fake_redis):
        token = store.create(7, FIXED_NOW, "/dashboard")

        key = f"{KEY_PREFIX}{token}"
        assert fake_redis.ttls[key] == 300
        assert json.loads(fake_redis.store[key])["user_id"] == 7

    def test_tokens_are_unique(self, store):
        assert store.create(7, FIXED_NOW) != store.create(7, FIXED_NOW)

    def test_get_unknown(self, store):
        assert store.get("missing") is None
        assert store.get("") is None

    def test_mark_verified(self, store):
        token = store.create(7, FIXED_NOW)

        assert store.mark_verified(token, "totp")
        session = store.get(token)
        assert session.verified
        assert session.method == "totp"

    def test_mark_verified_expired(self, store):
        assert not store.mark_verified("missing", "totp")

    def test_register_attempt_caps_per_token(self, fake_redis):
        store = StepUpSessionStore(fake_redis, ttl_seconds=300, max_attempts=2)
        token = store.create(7, FIXED_NOW)

        assert store.register_attempt(token)
        assert store.register_attempt(token)
        assert not store.register_attempt(token)
        assert fake_redis.ttls[f"{ATTEMPTS_KEY_PREFIX}{token}"] == 300
        assert store.register_attempt(store.create(7, FIXED_NOW))

    def test_consume_is_one_shot(self, store):
        token = store.create(7, FIXED_NOW)

        assert store.consume(token).user_id == 7
        assert store.consume(token) is None


class TestStepUpFlow:

    def test_full_flow(self, step_up, enabled_user, totp_engine, db_session, mock_event_service):
        # Arrange
        user, secret, _ = enabled_user
        token = step_up.begin(user.user_id, "/dashboard").data["token"]

        # Act
        verified = step_up.verify(token, totp_engine.current_code(secret))
        completed = step_up.complete(token)

        # Assert
        assert verified.success
        assert completed.success
        assert completed.data == {"user_id": user.user_id, "callback_url": "/dashboard"}
        db_session.expire_all()
        assert db_session.get(User, user.user_id).last_login_at is not None
        mock_event_service.publish_step_up_completed.assert_called_once_with(user.user_id, "totp")

    def test_complete_is_one_shot(self, step_up, enabled_user, totp_engine):
        user, secret, _ = enabled_user
        token = step_up.begin(user.user_id).data["token"]
        step_up.verify(token, totp_engine.current_code(secret))

        assert step_up.complete(token).success
        assert step_up.complete(token).error == TwoFactorErrorCode.STEP_UP_EXPIRED

    def test_complete_requires_verification(self, step_up, enabled_user, store):
        user, _, _ = enabled_user
        token = step_up.begin(user.user_id).data["token"]

        result = step_up.complete(token)

        assert result.error == TwoFactorErrorCode.STEP_UP_NOT_VERIFIED
        # Still usable once verified
        assert store.get(token) is not None

    def test_wrong_code_keeps_session_unverified(self, step_up, enabled_user, store):
        user, _, _ = enabled_user
        token = step_up.begin(user.user_id).data["token"]

        result = step_up.verify(token, "abcdef")

        assert not result.success
        assert not store.get(token).verified

    def test_backup_code_flow(self, step_up, enabled_user):
        user, _, backup_codes = enabled_user
        token = step_up.begin(user.user_id).data["token"]

        result = step_up.verify(token, backup_codes[0], use_backup_code=True)

        assert result.success
        assert result.data["remaining_backup_codes"] == 9
        assert step_up.complete(token).success

    def test_verify_expired_session(self, step_up):
        assert step_up.verify("missing", "123456").error == TwoFactorErrorCode.STEP_UP_EXPIRED

    def test_complete_unknown_session(self, step_up):
        assert step_up.complete("missing").error == TwoFactorErrorCode.STEP_UP_EXPIRED

    def test_begin_requires_enabled(self, step_up, user):
        assert step_up.begin(user.user_id).error == TwoFactorErrorCode.NOT_ENABLED

    def test_begin_unknown_user(self, step_up):
        assert step_up.begin(999).error == TwoFactorErrorCode.NOT_FOUND

    def test_session_dropped_after_too_many_attempts(self, fake_redis, two_factor_service, repository,
                                                     enabled_user, totp_engine):
        # Arrange
        user, secret, _ = enabled_user
        step_up = StepUpService(
            store=StepUpSessionStore(fake_redis, ttl_seconds=300, max_attempts=3),
            two_factor=two_factor_service,
            repository=repository,
            clock=lambda: FIXED_NOW,
        )
        token = step_up.begin(user.user_id).data["token"]

        # Act
        for _ in range(3):
            assert step_up.verify(token, "abcdef").error == TwoFactorErrorCode.INVALID_CODE_FORMAT
        blocked = step_up.verify(token, totp_engine.current_code(secret))

        # Assert
        assert blocked.error == TwoFactorErrorCode.STEP_UP_TOO_MANY_ATTEMPTS
        assert step_up.store.get(token) is None
        assert step_up.verify(token, totp_engine.current_code(secret)).error == TwoFactorErrorCode.STEP_UP_EXPIRED
