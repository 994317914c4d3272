"""One fan control cycle.

disabled -> no record; invalid config, missing credentials, session/selection/dispatch
failures -> ``error``; thin or old telemetry -> ``skipped_stale``; otherwise ``success``.
Exactly one control record is appended for every cycle that is not disabled.
"""

import os
from collections.abc import Mapping
from typing import Literal, Protocol

from aws_lambda_powertools import Logger

from common.config import ControlConfig, load_control_config
from common.exceptions import ConfigurationError, StaleDataError, truncate_error
from common.models import (
    ControlRunRecord,
    ControlState,
    FanSpeed,
    RunResult,
    TelemetryWindow,
    WinixDevice,
)
from common.timeutil import iso_from_epoch_seconds

from .backend import ControlBackend
from .dispatcher import DeviceClient, dispatch_speed
from .policy import apply_dwell, choose_with_hysteresis, ensure_fresh
from .session import AuthProvider, resolve_session

logger = Logger()


class VendorClient(AuthProvider, DeviceClient, Protocol):
    pass


def select_target_devices(configured_ids: list[str], devices: list[WinixDevice]) -> list[str]:
    """Configured ids that exist on the account, or every account device when none are configured."""
    available = [device.device_id for device in devices if device.device_id]
    if not configured_ids:
        if not available:
            raise ConfigurationError("No Winix devices were returned by the account")
        return available

    known = set(available)
    missing = [device_id for device_id in configured_ids if device_id not in known]
    if missing:
        raise ConfigurationError(f"Configured WINIX_TARGET_DEVICE_IDS were not found: {','.join(missing)}")
    return list(configured_ids)


def _join_ids(device_ids: list[str] | None) -> str | None:
    if not device_ids:
        return None
    return ",".join(device_ids)


class _Cycle:
    """Record builders bound to one cycle's clock and previous state."""

    def __init__(self, backend: ControlBackend, now_ts: int, previous: ControlState) -> None:
        self.backend = backend
        self.now_ts = now_ts
        self.previous = previous

    def _write(self, record: ControlRunRecord) -> None:
        self.backend.append_record(record)
        logger.info(
            "control_record_appended",
            run_ts=iso_from_epoch_seconds(record.run_ts),
            run_status=record.run_status,
            effective_speed=record.effective_speed,
            speed_changed=record.speed_changed,
            error_streak=record.error_streak,
        )

    def hold(
        self,
        status: Literal["skipped_stale", "error"],
        reason: str,
        monitor_device_id: str | None,
        window: TelemetryWindow | None = None,
        device_ids: list[str] | None = None,
    ) -> RunResult:
        """Write a non-success record: devices are assumed unchanged, the streak grows."""
        message = truncate_error(reason)
        self._write(
            ControlRunRecord(
                run_ts=self.now_ts,
                run_status=status,
                monitor_device_id=monitor_device_id or None,
                target_device_ids=_join_ids(device_ids),
                pm25_avg=window.average if window else None,
                sample_count=window.sample_count if window else None,
                last_sample_ts=window.last_sample_ts if window else None,
                previous_speed=self.previous.speed,
                target_speed=None,
                effective_speed=self.previous.speed,
                speed_changed=False,
                effective_change_ts=self.previous.change_ts,
                error_streak=self.previous.error_streak + 1,
                error_message=message,
                created_ts=self.now_ts,
            )
        )
        return RunResult(
            status=status,
            pm25_avg=window.average if window else None,
            reason=message,
        )

    def succeed(
        self,
        monitor_device_id: str,
        window: TelemetryWindow,
        device_ids: list[str],
        target_speed: FanSpeed,
    ) -> RunResult:
        speed_changed = self.previous.speed != target_speed
        self._write(
            ControlRunRecord(
                run_ts=self.now_ts,
                run_status="success",
                monitor_device_id=monitor_device_id,
                target_device_ids=_join_ids(device_ids),
                pm25_avg=window.average,
                sample_count=window.sample_count,
                last_sample_ts=window.last_sample_ts,
                previous_speed=self.previous.speed,
                target_speed=target_speed,
                effective_speed=target_speed,
                speed_changed=speed_changed,
                effective_change_ts=self.now_ts if speed_changed else self.previous.change_ts,
                error_streak=0,
                error_message=None,
                created_ts=self.now_ts,
            )
        )
        return RunResult(status="success", target_speed=target_speed, pm25_avg=window.average)


def _control(
    cycle: _Cycle,
    config: ControlConfig,
    client: VendorClient,
    window: TelemetryWindow,
    pm25_avg: float,
) -> RunResult:
    backend, now_ts, previous = cycle.backend, cycle.now_ts, cycle.previous

    device_ids: list[str] | None = None
    try:
        credentials = backend.read_credentials(config.username)
        if credentials is None:
            raise ConfigurationError("Winix credentials are not configured")

        by_hysteresis = choose_with_hysteresis(pm25_avg, previous.speed, config.deadband_ugm3)
        target_speed = apply_dwell(by_hysteresis, previous.speed, previous.change_ts, now_ts, config.min_dwell_seconds)
        if target_speed != by_hysteresis:
            logger.info("speed_change_held_for_dwell", wanted=by_hysteresis, held=target_speed)

        session = resolve_session(client, credentials, backend.read_session(), now_ts)
        backend.write_session(session.auth)

        device_ids = select_target_devices(config.target_device_ids, session.devices)
        outcome = dispatch_speed(client, device_ids, target_speed, config.dry_run)
        outcome.raise_for_failures()
    except Exception as exc:  # noqa: BLE001
        logger.exception("control_cycle_failed", error_streak=previous.error_streak + 1)
        return cycle.hold("error", truncate_error(exc), config.monitor_device_id, window, device_ids)

    return cycle.succeed(config.monitor_device_id, window, device_ids, target_speed)


def run_control_loop(
    now_ts: int,
    backend: ControlBackend,
    client: VendorClient,
    environ: Mapping[str, str] | None = None,
) -> RunResult:
    env = os.environ if environ is None else environ

    config_error: ConfigurationError | None = None
    try:
        config = load_control_config(env)
    except ConfigurationError as exc:
        config, config_error = None, exc
    if config is None and config_error is None:
        logger.info("control_disabled")
        return RunResult(status="disabled")

    cycle = _Cycle(backend, now_ts, backend.read_previous_state())
    if config is None:
        logger.error("control_config_invalid", error=str(config_error))
        return cycle.hold("error", str(config_error), env.get("WINIX_MONITOR_DEVICE_ID", "").strip())

    window = backend.read_window(config.monitor_device_id, now_ts)
    try:
        pm25_avg = ensure_fresh(window, now_ts, config.min_samples_5m, config.max_sample_age_seconds)
    except StaleDataError as exc:
        logger.warning("control_skipped_stale", reason=str(exc), sample_count=window.sample_count)
        return cycle.hold("skipped_stale", str(exc), config.monitor_device_id, window)

    result = _control(cycle, config, client, window, pm25_avg)
    logger.info("control_cycle_complete", status=result.status, target_speed=result.target_speed, pm25_avg=pm25_avg)
    return result
