"""Fan speed policy: threshold mapping, hysteresis, dwell and staleness.

Everything here is pure; the orchestrator feeds in the telemetry window and the
previous state snapshot and gets a speed back.
"""

from typing import Final

from common.exceptions import StaleDataError
from common.models import FanSpeed, TelemetryWindow

# PM2.5 boundaries in ug/m3. The medium/high boundary is tuned per deployment.
LOW_MEDIUM_THRESHOLD: Final[float] = 10.0
MEDIUM_HIGH_THRESHOLD: Final[float] = 20.0
HIGH_TURBO_THRESHOLD: Final[float] = 30.0


def map_to_speed(pm25_avg: float) -> FanSpeed:
    if pm25_avg < LOW_MEDIUM_THRESHOLD:
        return "low"
    if pm25_avg < MEDIUM_HIGH_THRESHOLD:
        return "medium"
    if pm25_avg <= HIGH_TURBO_THRESHOLD:
        return "high"
    return "turbo"


def choose_with_hysteresis(pm25_avg: float, previous_speed: FanSpeed | None, deadband: float) -> FanSpeed:
    """Pick a speed, moving up only past threshold + deadband and down only past threshold - deadband."""
    if previous_speed is None:
        return map_to_speed(pm25_avg)

    up_to_medium = LOW_MEDIUM_THRESHOLD + deadband
    up_to_high = MEDIUM_HIGH_THRESHOLD + deadband
    up_to_turbo = HIGH_TURBO_THRESHOLD + deadband

    down_to_low = LOW_MEDIUM_THRESHOLD - deadband
    down_to_medium = MEDIUM_HIGH_THRESHOLD - deadband
    down_from_turbo = HIGH_TURBO_THRESHOLD - deadband

    if previous_speed == "low":
        if pm25_avg < up_to_medium:
            return "low"
        if pm25_avg < up_to_high:
            return "medium"
        if pm25_avg <= up_to_turbo:
            return "high"
        return "turbo"

    if previous_speed == "medium":
        if pm25_avg < down_to_low:
            return "low"
        if pm25_avg < up_to_high:
            return "medium"
        if pm25_avg <= up_to_turbo:
            return "high"
        return "turbo"

    if previous_speed == "high":
        if pm25_avg < down_to_low:
            return "low"
        if pm25_avg < down_to_medium:
            return "medium"
        if pm25_avg <= up_to_turbo:
            return "high"
        return "turbo"

    # turbo
    if pm25_avg < down_to_low:
        return "low"
    if pm25_avg < down_to_medium:
        return "medium"
    if pm25_avg <= down_from_turbo:
        return "high"
    return "turbo"


def apply_dwell(
    target_speed: FanSpeed,
    previous_speed: FanSpeed | None,
    previous_change_ts: int | None,
    now_ts: int,
    min_dwell_seconds: int,
) -> FanSpeed:
    """Hold the previous speed until it has been in force for at least ``min_dwell_seconds``."""
    if previous_speed is None or previous_change_ts is None:
        return target_speed
    if target_speed == previous_speed:
        return previous_speed
    if now_ts - previous_change_ts < min_dwell_seconds:
        return previous_speed
    return target_speed


def is_stale(
    sample_count: int,
    last_sample_ts: int | None,
    now_ts: int,
    min_samples: int,
    max_age_seconds: int,
) -> bool:
    if sample_count < min_samples:
        return True
    if last_sample_ts is None:
        return True
    return now_ts - last_sample_ts > max_age_seconds


def ensure_fresh(window: TelemetryWindow, now_ts: int, min_samples: int, max_age_seconds: int) -> float:
    """Return the window average, or raise StaleDataError if the window can't be trusted."""
    stale = is_stale(window.sample_count, window.last_sample_ts, now_ts, min_samples, max_age_seconds)
    if stale or window.average is None:
        last = window.last_sample_ts if window.last_sample_ts is not None else "none"
        raise StaleDataError(f"Stale PM2.5 data: samples={window.sample_count}, lastSampleTs={last}")
    return window.average
