"""API endpoint tests using FastAPI TestClient.

These tests use dependency overrides to provide an in-memory repository,
test settings and a mocked outbound HTTP client, testing the API layer in
isolation from the database and from Whoop.
"""

import json
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import httpx
import pytest
from fastapi.testclient import TestClient

from main import app
from shared.config import get_settings
from tests.conftest import (
    SLEEP_ID,
    WALLET,
    WEBHOOK_SECRET,
    WHOOP_USER_ID,
    make_settings,
    mock_http_client,
    sleep_payload,
)
from tests.fakes import FakeWhoopRepository
from whoop.dependencies import get_http_client, get_repository, get_repository_scope
from whoop.signature import compute_signature

TIMESTAMP = "1704153600000"


def whoop_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path.startswith("/developer/v2/activity/sleep/"):
        return httpx.Response(200, json=sleep_payload())
    return httpx.Response(404)


@pytest.fixture
def api():
    """TestClient plus the fake repository and a mutable settings holder."""
    repo = FakeWhoopRepository()
    state = {"settings": make_settings(), "handler": whoop_handler}

    app.dependency_overrides[get_repository] = lambda: repo
    app.dependency_overrides[get_settings] = lambda: state["settings"]
    app.dependency_overrides[get_http_client] = lambda: mock_http_client(
        lambda request: state["handler"](request)
    )
    with TestClient(app) as c:
        yield c, repo, state
    app.dependency_overrides.clear()


def _register(c, **overrides):
    body = {
        "whoopUserId": WHOOP_USER_ID,
        "walletAddress": WALLET,
        "accessToken": "access-1",
        "refreshToken": "refresh-1",
        "expiresIn": 3600,
    }
    body.update(overrides)
    return c.post("/api/whoop/register", json=body)


def _post_webhook(c, event: dict, secret: str = WEBHOOK_SECRET, signed: bool = True):
    body = json.dumps(event).encode()
    headers = {"Content-Type": "application/json"}
    if signed:
        headers["X-WHOOP-Signature"] = compute_signature(TIMESTAMP, body, secret)
        headers["X-WHOOP-Signature-Timestamp"] = TIMESTAMP
    return c.post("/api/whoop/webhook", content=body, headers=headers)


SLEEP_EVENT = {"user_id": WHOOP_USER_ID, "id": SLEEP_ID, "type": "sleep.updated"}


class TestHealthEndpoint:
    def test_health(self):
        with TestClient(app) as c:
            resp = c.get("/health")
            assert resp.status_code == 200
            assert resp.json() == {"status": "ok"}
            assert "X-Request-ID" in resp.headers

    def test_metrics_exposed(self):
        with TestClient(app) as c:
            resp = c.get("/metrics/")
            assert resp.status_code == 200
            assert "webhook_events_total" in resp.text


class TestWebhookEndpoint:
    def test_accepted_returns_plain_ok(self, api):
        c, repo, _ = api
        resp = _post_webhook(c, SLEEP_EVENT)
        assert resp.status_code == 200
        assert resp.text == "ok"
        assert len(repo.events) == 1

    def test_fetch_failure_still_returns_ok(self, api):
        c, repo, state = api
        _register(c)
        state["handler"] = lambda request: httpx.Response(500)

        resp = _post_webhook(c, SLEEP_EVENT)
        assert resp.status_code == 200
        assert resp.text == "ok"
        assert repo.sleeps == {}

    def test_registered_user_sleep_is_stored(self, api):
        c, repo, _ = api
        _register(c)
        resp = _post_webhook(c, SLEEP_EVENT)
        assert resp.status_code == 200
        assert SLEEP_ID in repo.sleeps

    def test_deferred_sync_runs_after_acknowledgment(self, api):
        c, repo, state = api
        _register(c)
        state["settings"] = make_settings(defer_sleep_sync=True)
        opened = []

        @asynccontextmanager
        async def scope():
            opened.append(repo)
            yield repo

        app.dependency_overrides[get_repository_scope] = lambda: scope

        resp = _post_webhook(c, SLEEP_EVENT)
        assert resp.status_code == 200
        assert resp.text == "ok"
        assert opened == [repo]
        assert SLEEP_ID in repo.sleeps

    def test_deferred_mode_skips_sync_for_other_domains(self, api):
        c, repo, state = api
        _register(c)
        state["settings"] = make_settings(defer_sleep_sync=True)
        opened = []

        @asynccontextmanager
        async def scope():
            opened.append(repo)
            yield repo

        app.dependency_overrides[get_repository_scope] = lambda: scope

        resp = _post_webhook(c, {**SLEEP_EVENT, "type": "workout.updated"})
        assert resp.status_code == 200
        assert opened == []
        assert repo.sleeps == {}

    def test_missing_signature_returns_401(self, api):
        c, repo, _ = api
        resp = _post_webhook(c, SLEEP_EVENT, signed=False)
        assert resp.status_code == 401
        assert resp.headers["content-type"] == "application/problem+json"
        assert resp.json()["detail"] == "Missing signature"
        assert repo.events == []

    def test_invalid_signature_returns_401(self, api):
        c, repo, _ = api
        resp = _post_webhook(c, SLEEP_EVENT, secret="wrong")
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid signature"
        assert repo.events == []

    def test_no_secret_returns_400(self, api):
        c, repo, state = api
        state["settings"] = make_settings(whoop_client_secret="")
        resp = _post_webhook(c, SLEEP_EVENT)
        assert resp.status_code == 400
        assert resp.json()["title"] == "Server Misconfigured"

    def test_malformed_body_returns_422(self, api):
        c, repo, _ = api
        resp = _post_webhook(c, {"user_id": "not-a-number", "id": "x", "type": "sleep.updated"})
        assert resp.status_code == 422
        body = resp.json()
        assert body["title"] == "Validation Error"
        assert "violations" in body
        assert repo.events == []


class TestRegisterEndpoint:
    def test_register(self, api):
        c, repo, _ = api
        resp = _register(c)
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        account = repo.accounts[WHOOP_USER_ID]
        assert account.wallet_address == WALLET
        assert account.refresh_token == "refresh-1"
        assert account.access_token_expires_at is not None

    def test_register_without_expiry(self, api):
        c, repo, _ = api
        resp = _register(c, expiresIn=None, refreshToken=None)
        assert resp.status_code == 200
        assert repo.accounts[WHOOP_USER_ID].access_token_expires_at is None

    def test_register_with_zero_expiry_is_already_expired(self, api):
        c, repo, _ = api
        before = datetime.now(UTC)
        resp = _register(c, expiresIn=0)
        assert resp.status_code == 200
        expires_at = repo.accounts[WHOOP_USER_ID].access_token_expires_at
        assert expires_at is not None
        assert expires_at <= datetime.now(UTC)
        assert expires_at >= before

    def test_reregister_replaces_tokens(self, api):
        c, repo, _ = api
        _register(c)
        _register(c, accessToken="access-9")
        assert len(repo.accounts) == 1
        assert repo.accounts[WHOOP_USER_ID].access_token == "access-9"

    def test_missing_fields_returns_400(self, api):
        c, repo, _ = api
        resp = c.post("/api/whoop/register", json={"walletAddress": WALLET})
        assert resp.status_code == 400
        body = resp.json()
        assert body["title"] == "Missing Registration Fields"
        assert {v["field"] for v in body["violations"]} == {"whoopUserId", "accessToken"}
        assert resp.headers["content-type"] == "application/problem+json"
        assert repo.accounts == {}

    def test_wallet_owned_by_another_user_returns_409(self, api):
        c, repo, _ = api
        _register(c)
        resp = _register(c, whoopUserId=WHOOP_USER_ID + 1)
        assert resp.status_code == 409
        assert repo.rollbacks == 1


class TestReadEndpoints:
    def test_user_hides_token_values(self, api):
        c, _, _ = api
        _register(c)
        resp = c.get(f"/api/whoop/user/{WALLET}")
        assert resp.status_code == 200
        body = resp.json()
        data = body["data"]
        assert data["whoop_user_id"] == WHOOP_USER_ID
        assert data["has_refresh_token"] is True
        assert "access-1" not in resp.text
        assert "refresh-1" not in resp.text
        assert body["meta"]["api_version"] == "v1"
        assert body["meta"]["request_id"] == resp.headers["X-Request-ID"]

    def test_unknown_wallet_returns_404(self, api):
        c, _, _ = api
        resp = c.get("/api/whoop/user/0xnobody")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "User not found"

    def test_latest_sleep(self, api):
        c, _, _ = api
        _register(c)
        _post_webhook(c, SLEEP_EVENT)
        resp = c.get(f"/api/whoop/sleep/{WALLET}")
        assert resp.status_code == 200
        assert resp.json()["data"]["id"] == SLEEP_ID

    def test_latest_sleep_none_yet(self, api):
        c, _, _ = api
        _register(c)
        resp = c.get(f"/api/whoop/sleep/{WALLET}")
        assert resp.status_code == 200
        assert resp.json()["data"] is None

    def test_latest_sleep_unknown_wallet(self, api):
        c, _, _ = api
        assert c.get("/api/whoop/sleep/0xnobody").status_code == 404

    def test_stats_disabled_fallback(self, api):
        c, _, _ = api
        resp = c.get(f"/api/whoop/stats/{WALLET}")
        assert resp.status_code == 200
        assert resp.json()["data"] == {
            "token_balance": 0,
            "total_tokens_earned": 0,
            "current_streak": 0,
            "longest_streak": 0,
            "total_sessions": 0,
            "is_blockchain_enabled": False,
        }


class TestLeaderboardEndpoints:
    def test_leaderboard_disabled(self, api):
        c, _, _ = api
        resp = c.get("/api/leaderboard")
        assert resp.status_code == 200
        assert resp.json()["data"] == {"users": [], "is_blockchain_enabled": False}

    def test_limit_above_cap_is_accepted(self, api):
        c, _, _ = api
        assert c.get("/api/leaderboard", params={"limit": 500}).status_code == 200

    def test_limit_below_one_is_rejected(self, api):
        c, _, _ = api
        resp = c.get("/api/leaderboard", params={"limit": 0})
        assert resp.status_code == 422
        assert resp.headers["content-type"] == "application/problem+json"

    def test_user_rank_disabled(self, api):
        c, _, _ = api
        resp = c.get(f"/api/leaderboard/user/{WALLET}")
        assert resp.status_code == 200
        assert resp.json()["data"] == {"rank": None, "total_users": 0, "user_stats": None}
