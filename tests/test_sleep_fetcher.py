"""Tests for the sleep fetcher: refresh-then-retry on 401, failure handling, upsert."""

from datetime import UTC, datetime

import httpx
import pytest

from tests.conftest import SLEEP_ID, WHOOP_USER_ID, mock_http_client, sleep_payload
from whoop.adapters.oauth import TokenManager
from whoop.adapters.sleep_fetcher import SleepFetcher
from whoop.domain.results import FetchStatus

SLEEP_URL = f"https://api.whoop.test/developer/v2/activity/sleep/{SLEEP_ID}"
TOKEN_URL = "https://api.whoop.test/oauth/oauth2/token"


class ScriptedWhoop:
    """Answers sleep requests from a scripted list of statuses; token calls succeed."""

    def __init__(self, sleep_statuses: list[int], token_status: int = 200):
        self.sleep_statuses = list(sleep_statuses)
        self.token_status = token_status
        self.sleep_calls: list[httpx.Request] = []
        self.token_calls: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            self.token_calls.append(request)
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(
                200,
                json={"access_token": "access-2", "refresh_token": "refresh-2", "expires_in": 3600},
            )
        self.sleep_calls.append(request)
        status = self.sleep_statuses.pop(0)
        if status == 200:
            return httpx.Response(200, json=sleep_payload())
        return httpx.Response(status, json={"message": "nope"})


def _fetcher(repo, settings, handler) -> SleepFetcher:
    client = mock_http_client(handler)
    return SleepFetcher(repo, TokenManager(repo, settings, client), settings, client)


class TestFetchSleep:
    async def test_unregistered_user_is_skipped(self, repo, settings):
        whoop = ScriptedWhoop([200])
        result = await _fetcher(repo, settings, whoop).fetch_sleep(WHOOP_USER_ID, SLEEP_ID)

        assert result.status is FetchStatus.SKIPPED
        assert result.reason == "user_not_registered"
        assert whoop.sleep_calls == []

    async def test_success_stores_payload(self, registered_repo, settings):
        whoop = ScriptedWhoop([200])
        result = await _fetcher(registered_repo, settings, whoop).fetch_sleep(
            WHOOP_USER_ID, SLEEP_ID
        )

        assert result.status is FetchStatus.STORED
        assert result.payload["id"] == SLEEP_ID
        request = whoop.sleep_calls[0]
        assert str(request.url) == SLEEP_URL
        assert request.headers["authorization"] == "Bearer access-1"

        stored = registered_repo.sleeps[SLEEP_ID]
        assert stored.whoop_user_id == WHOOP_USER_ID
        assert stored.start == datetime(2024, 1, 1, 23, 0, tzinfo=UTC)
        assert stored.end == datetime(2024, 1, 2, 7, 0, tzinfo=UTC)
        assert stored.raw_payload == sleep_payload()

    async def test_401_then_200_refreshes_once_and_stores(self, registered_repo, settings):
        whoop = ScriptedWhoop([401, 200])
        result = await _fetcher(registered_repo, settings, whoop).fetch_sleep(
            WHOOP_USER_ID, SLEEP_ID
        )

        assert result.status is FetchStatus.STORED
        assert len(whoop.token_calls) == 1
        assert len(whoop.sleep_calls) == 2
        assert whoop.sleep_calls[1].headers["authorization"] == "Bearer access-2"
        assert registered_repo.accounts[WHOOP_USER_ID].access_token == "access-2"
        assert SLEEP_ID in registered_repo.sleeps

    async def test_401_twice_fails_without_writing(self, registered_repo, settings):
        whoop = ScriptedWhoop([401, 401])
        result = await _fetcher(registered_repo, settings, whoop).fetch_sleep(
            WHOOP_USER_ID, SLEEP_ID
        )

        assert result.status is FetchStatus.FAILED
        assert result.reason == "unauthorized_after_refresh"
        assert len(whoop.token_calls) == 1
        assert len(whoop.sleep_calls) == 2
        assert registered_repo.sleeps == {}

    async def test_401_with_failed_refresh_does_not_retry(self, registered_repo, settings):
        whoop = ScriptedWhoop([401, 200], token_status=400)
        result = await _fetcher(registered_repo, settings, whoop).fetch_sleep(
            WHOOP_USER_ID, SLEEP_ID
        )

        assert result.status is FetchStatus.FAILED
        assert result.reason == "unauthorized_refresh_failed"
        assert len(whoop.sleep_calls) == 1
        assert registered_repo.sleeps == {}

    @pytest.mark.parametrize("status", [404, 429, 500, 503])
    async def test_other_errors_fail_after_a_single_call(self, registered_repo, settings, status):
        whoop = ScriptedWhoop([status, 200])
        result = await _fetcher(registered_repo, settings, whoop).fetch_sleep(
            WHOOP_USER_ID, SLEEP_ID
        )

        assert result.status is FetchStatus.FAILED
        assert result.reason == f"http_{status}"
        assert len(whoop.sleep_calls) == 1
        assert whoop.token_calls == []
        assert registered_repo.sleeps == {}

    async def test_timeout_is_a_failure(self, registered_repo, settings):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = await _fetcher(registered_repo, settings, handler).fetch_sleep(
            WHOOP_USER_ID, SLEEP_ID
        )
        assert result.status is FetchStatus.FAILED
        assert result.reason == "timeout"

    async def test_non_object_body_is_a_failure(self, registered_repo, settings):
        def handler(request):
            return httpx.Response(200, json=[1, 2, 3])

        result = await _fetcher(registered_repo, settings, handler).fetch_sleep(
            WHOOP_USER_ID, SLEEP_ID
        )
        assert result.status is FetchStatus.FAILED
        assert registered_repo.sleeps == {}

    async def test_refetch_without_times_keeps_stored_times(self, registered_repo, settings):
        whoop = ScriptedWhoop([200])
        await _fetcher(registered_repo, settings, whoop).fetch_sleep(WHOOP_USER_ID, SLEEP_ID)

        def handler(request):
            return httpx.Response(200, json={"id": SLEEP_ID, "score_state": "PENDING_SCORE"})

        await _fetcher(registered_repo, settings, handler).fetch_sleep(WHOOP_USER_ID, SLEEP_ID)

        stored = registered_repo.sleeps[SLEEP_ID]
        assert stored.start == datetime(2024, 1, 1, 23, 0, tzinfo=UTC)
        assert stored.raw_payload == {"id": SLEEP_ID, "score_state": "PENDING_SCORE"}
        assert len(registered_repo.sleeps) == 1
