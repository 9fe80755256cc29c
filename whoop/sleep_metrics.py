"""Whoop sleep payload → SleepMetrics extractor.

Whoop has renamed several sleep fields across API versions. Each semantic
field is read from an ordered list of candidate paths and the first non-null
value wins, so v1 ("stages", "efficiency_percentage") and v2
("stage_summary", "sleep_efficiency_percentage") payloads both extract.

Rounding is half-up to match the provider-side arithmetic the settlement
contract was calibrated against.
"""

import math
from datetime import UTC, datetime
from typing import Any

import structlog

from whoop.domain.models import SleepMetrics

logger = structlog.get_logger()

_MS_PER_MINUTE = 60_000

Path = tuple[str, ...]

_STAGE_CONTAINERS: tuple[Path, ...] = (
    ("score", "stage_summary"),
    ("score", "stages"),  # v1
)


def _stage_paths(key: str) -> tuple[Path, ...]:
    return tuple((*container, key) for container in _STAGE_CONTAINERS)


IN_BED_PATHS = _stage_paths("total_in_bed_time_milli")
AWAKE_PATHS = _stage_paths("total_awake_time_milli")
SLOW_WAVE_PATHS = _stage_paths("total_slow_wave_sleep_time_milli")
REM_PATHS = _stage_paths("total_rem_sleep_time_milli")
CYCLE_COUNT_PATHS = _stage_paths("sleep_cycle_count")
EFFICIENCY_PATHS: tuple[Path, ...] = (
    ("score", "sleep_efficiency_percentage"),
    ("score", "efficiency_percentage"),  # v1
)
START_PATHS: tuple[Path, ...] = (("start",),)


def _lookup(payload: dict[str, Any], path: Path) -> Any:
    node: Any = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def first_present(payload: dict[str, Any], paths: tuple[Path, ...], default: Any = None) -> Any:
    """Value at the first candidate path that holds a non-null value."""
    for path in paths:
        value = _lookup(payload, path)
        if value is not None:
            return value
    return default


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _number(payload: dict[str, Any], paths: tuple[Path, ...]) -> float:
    value = first_present(payload, paths, 0)
    return value if isinstance(value, (int, float)) and not isinstance(value, bool) else 0


def _parse_start_date(value: Any):
    if not isinstance(value, str):
        return None
    try:
        start = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if start.tzinfo is None:
        start = start.replace(tzinfo=UTC)
    return start.astimezone(UTC).date()


def extract_sleep_metrics(payload: dict[str, Any]) -> SleepMetrics | None:
    """Derive settlement metrics from a raw Whoop sleep payload.

    Returns None when the payload has no usable start time; extraction is an
    enrichment step and its absence only skips settlement.
    """
    if not isinstance(payload, dict):
        return None

    sleep_date = _parse_start_date(first_present(payload, START_PATHS))
    if sleep_date is None:
        logger.info("sleep_metrics_missing_start", sleep_id=payload.get("id"))
        return None

    in_bed_ms = _number(payload, IN_BED_PATHS)
    awake_ms = _number(payload, AWAKE_PATHS)

    return SleepMetrics(
        date=sleep_date,
        sleep_duration_minutes=_round_half_up(max(0, in_bed_ms - awake_ms) / _MS_PER_MINUTE),
        efficiency_percentage=_round_half_up(_number(payload, EFFICIENCY_PATHS)),
        sleep_cycles=int(_number(payload, CYCLE_COUNT_PATHS)),
        deep_sleep_minutes=_round_half_up(_number(payload, SLOW_WAVE_PATHS) / _MS_PER_MINUTE),
        rem_sleep_minutes=_round_half_up(_number(payload, REM_PATHS) / _MS_PER_MINUTE),
    )
