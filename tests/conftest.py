"""Shared test fixtures."""

import sys
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.config import Settings  # noqa: E402
from tests.fakes import FakeWhoopRepository  # noqa: E402

WHOOP_USER_ID = 10129
WALLET = "0x9f8e7d6c5b4a39281706f5e4d3c2b1a098765432"
SLEEP_ID = "ecfc6a15-4661-442f-a9a4-f160dd7afae8"
WEBHOOK_SECRET = "whoop-client-secret"
GATEWAY_URL = "https://settlement.test"


def sleep_payload(**overrides) -> dict:
    """Whoop v2 sleep body whose metrics are 2024-01-01, 450, 92, 4, 60, 90."""
    payload = {
        "id": SLEEP_ID,
        "user_id": WHOOP_USER_ID,
        "start": "2024-01-01T23:00:00.000Z",
        "end": "2024-01-02T07:00:00.000Z",
        "timezone_offset": "-05:00",
        "nap": False,
        "score_state": "SCORED",
        "score": {
            "stage_summary": {
                "total_in_bed_time_milli": 28_800_000,
                "total_awake_time_milli": 1_800_000,
                "total_light_sleep_time_milli": 14_400_000,
                "total_slow_wave_sleep_time_milli": 3_600_000,
                "total_rem_sleep_time_milli": 5_400_000,
                "sleep_cycle_count": 4,
                "disturbance_count": 12,
            },
            "respiratory_rate": 16.1,
            "sleep_performance_percentage": 98,
            "sleep_efficiency_percentage": 91.7,
        },
    }
    payload.update(overrides)
    return payload


def make_settings(**overrides) -> Settings:
    values = {
        "whoop_api_hostname": "https://api.whoop.test",
        "whoop_client_id": "client-id",
        "whoop_client_secret": WEBHOOK_SECRET,
        "whoop_webhook_secret": "",
        "settlement_enabled": False,
        "settlement_gateway_url": "",
        "defer_sleep_sync": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def mock_http_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def settlement_settings():
    return make_settings(settlement_enabled=True, settlement_gateway_url=GATEWAY_URL)


@pytest.fixture
def repo():
    return FakeWhoopRepository()


@pytest.fixture
def registered_repo():
    fake = FakeWhoopRepository()
    fake.add_account(
        whoop_user_id=WHOOP_USER_ID,
        wallet_address=WALLET,
        access_token="access-1",
        refresh_token="refresh-1",
    )
    return fake
