"""
HTTP tests for the 2FA endpoints (FastAPI TestClient)
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from twofa_service.api.dependencies import get_codec, get_totp_engine
from twofa_service.core.config import settings
from twofa_service.core.database import get_db
from twofa_service.core.exceptions import StorageError
from twofa_service.core.redis_client import get_redis
from twofa_service.main import app

PREFIX = f"{settings.API_V1_PREFIX}/2fa"


@pytest.fixture
def client(db_session, fake_redis, codec, totp_engine):
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_codec] = lambda: codec
    app.dependency_overrides[get_totp_engine] = lambda: totp_engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def enable_via_api(client, totp_engine, user):
    setup = client.post(f"{PREFIX}/setup", json={"email": user.email}).json()
    code = totp_engine.current_code(setup["manual_entry_secret"])
    enabled = client.post(f"{PREFIX}/enable", json={
        "user_id": user.user_id,
        "encrypted_secret": setup["secret"],
        "verification_code": code,
    })
    assert enabled.status_code == 200
    return setup, enabled.json()


class TestLifecycleEndpoints:

    def test_setup(self, client, user):
        response = client.post(f"{PREFIX}/setup", json={"email": user.email})

        assert response.status_code == 200
        data = response.json()
        assert data["qr_code_url"].startswith("data:image/png;base64,")
        assert len(data["backup_codes"]) == 10
        assert data["secret"] != data["manual_entry_secret"]

    def test_setup_unknown_user(self, client):
        response = client.post(f"{PREFIX}/setup", json={"email": "nobody@example.com"})

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"

    def test_enable_and_status(self, client, totp_engine, user):
        _, enabled = enable_via_api(client, totp_engine, user)

        status = client.get(f"{PREFIX}/status/{user.user_id}").json()

        assert enabled["two_factor_enabled"] is True
        assert len(enabled["backup_codes"]) == 10
        assert status["two_factor_enabled"] is True
        assert status["state"] == "enabled"
        assert status["backup_codes_remaining"] == 10

    def test_enable_wrong_code_is_field_scoped(self, client, totp_engine, user):
        setup = client.post(f"{PREFIX}/setup", json={"email": user.email}).json()

        response = client.post(f"{PREFIX}/enable", json={
            "user_id": user.user_id,
            "encrypted_secret": setup["secret"],
            "verification_code": "12ab56",
        })

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "invalid_code_format"
        assert detail["field"] == "verification_code"

    def test_enable_twice_conflicts(self, client, totp_engine, user):
        setup, _ = enable_via_api(client, totp_engine, user)

        response = client.post(f"{PREFIX}/enable", json={
            "user_id": user.user_id,
            "encrypted_secret": setup["secret"],
            "verification_code": totp_engine.current_code(setup["manual_entry_secret"]),
        })

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "already_enabled"

    def test_verify_backup_code(self, client, totp_engine, user):
        _, enabled = enable_via_api(client, totp_engine, user)

        response = client.post(f"{PREFIX}/verify", json={
            "user_id": user.user_id,
            "code": enabled["backup_codes"][0],
            "use_backup_code": True,
        })

        assert response.status_code == 200
        assert response.json()["remaining_backup_codes"] == 9

    def test_verify_wrong_code(self, client, totp_engine, user):
        setup, _ = enable_via_api(client, totp_engine, user)
        taken = {totp_engine.code_at_offset(setup["manual_entry_secret"], o) for o in (-1, 0, 1)}
        wrong = next(c for c in ("000000", "111111", "222222") if c not in taken)

        response = client.post(f"{PREFIX}/verify", json={"user_id": user.user_id, "code": wrong})

        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "invalid_code"

    def test_disable_twice(self, client, totp_engine, user):
        enable_via_api(client, totp_engine, user)

        first = client.post(f"{PREFIX}/disable", json={"user_id": user.user_id})
        second = client.post(f"{PREFIX}/disable", json={"user_id": user.user_id})

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["detail"]["error"] == "not_enabled"

    def test_regenerate_backup_codes(self, client, totp_engine, user):
        setup, _ = enable_via_api(client, totp_engine, user)

        response = client.post(f"{PREFIX}/backup-codes/regenerate", json={
            "user_id": user.user_id,
            "code": totp_engine.current_code(setup["manual_entry_secret"]),
        })

        assert response.status_code == 200
        assert len(response.json()["backup_codes"]) == 10


class TestStepUpEndpoints:

    def test_step_up_flow(self, client, totp_engine, user, fake_redis):
        setup, _ = enable_via_api(client, totp_engine, user)

        begin = client.post(f"{PREFIX}/step-up/begin", json={"user_id": user.user_id, "callback_url": "/home"})
        token = begin.json()["token"]
        verify = client.post(f"{PREFIX}/step-up/verify", json={
            "token": token,
            "code": totp_engine.current_code(setup["manual_entry_secret"]),
        })
        complete = client.post(f"{PREFIX}/step-up/complete", json={"token": token})
        replay = client.post(f"{PREFIX}/step-up/complete", json={"token": token})

        assert begin.status_code == 200
        assert begin.json()["expires_in"] == settings.STEP_UP_SESSION_TTL_SECONDS
        assert verify.status_code == 200
        assert complete.status_code == 200
        assert complete.json()["callback_url"] == "/home"
        assert replay.status_code == 401
        assert any(channel.endswith("events.auth") for channel, _ in fake_redis.published)

    def test_complete_without_verification(self, client, totp_engine, user):
        enable_via_api(client, totp_engine, user)
        token = client.post(f"{PREFIX}/step-up/begin", json={"user_id": user.user_id}).json()["token"]

        response = client.post(f"{PREFIX}/step-up/complete", json={"token": token})

        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "step_up_not_verified"

    def test_too_many_attempts(self, client, totp_engine, user):
        enable_via_api(client, totp_engine, user)
        token = client.post(f"{PREFIX}/step-up/begin", json={"user_id": user.user_id}).json()["token"]
        for _ in range(settings.STEP_UP_MAX_ATTEMPTS):
            client.post(f"{PREFIX}/step-up/verify", json={"token": token, "code": "000000x"})

        response = client.post(f"{PREFIX}/step-up/verify", json={"token": token, "code": "123456"})

        assert response.status_code == 429
        assert response.json()["detail"]["error"] == "step_up_too_many_attempts"


class TestDiagnosticsEndpoints:

    def test_time_sync(self, client):
        response = client.get(f"{PREFIX}/diagnostics/time-sync")

        assert response.status_code == 200
        assert response.json()["seconds_to_next_code"] == 20

    def test_totp_debug_disabled_by_default(self, client):
        response = client.post(f"{PREFIX}/diagnostics/totp", json={"secret": "JBSWY3DPEHPK3PXP", "code": "123456"})

        assert response.status_code == 404

    def test_totp_debug_enabled(self, client, totp_engine, monkeypatch):
        monkeypatch.setattr(settings, "FEATURE_TOTP_DEBUG_ENDPOINT", True)
        secret = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"

        response = client.post(f"{PREFIX}/diagnostics/totp", json={
            "secret": secret,
            "code": totp_engine.current_code(secret),
        })

        assert response.status_code == 200
        data = response.json()
        assert data["matched_window_offset"] == 0
        assert secret not in response.text


class TestServiceEndpoints:

    def test_health(self, client, fake_redis):
        with patch("twofa_service.main.get_redis", return_value=fake_redis):
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["checks"]["redis"] == "healthy"

    def test_metrics(self, client, totp_engine, user):
        enable_via_api(client, totp_engine, user)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "twofa_enable_attempts_total" in response.text

    def test_storage_error_maps_to_503(self, client, user):
        with patch(
            "twofa_service.repositories.sqlalchemy_repository.SqlAlchemyTwoFactorRepository.find_user",
            side_effect=StorageError("down"),
        ):
            response = client.get(f"{PREFIX}/status/{user.user_id}")

        assert response.status_code == 503
