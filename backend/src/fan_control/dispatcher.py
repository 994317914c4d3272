from typing import Protocol

from aws_lambda_powertools import Logger
from pydantic import BaseModel, Field

from common.exceptions import DeviceCommandError, truncate_error
from common.models import DeviceState, FanSpeed

logger = Logger()

DEVICE_ERROR_LENGTH = 200


class DeviceClient(Protocol):
    def get_state(self, device_id: str) -> DeviceState: ...

    def set_power_on(self, device_id: str) -> None: ...

    def set_mode_manual(self, device_id: str) -> None: ...

    def set_airflow(self, device_id: str, speed: FanSpeed) -> None: ...


class DeviceResult(BaseModel):
    device_id: str
    ok: bool
    error: str | None = None
    commands: list[str] = Field(default_factory=list)


class DispatchOutcome(BaseModel):
    speed: FanSpeed
    dry_run: bool = False
    results: list[DeviceResult] = Field(default_factory=list)

    @property
    def failures(self) -> list[DeviceResult]:
        return [r for r in self.results if not r.ok]

    def raise_for_failures(self) -> None:
        failed = self.failures
        if failed:
            raise DeviceCommandError([(r.device_id, r.error or "unknown") for r in failed], len(self.results))


def apply_speed(client: DeviceClient, device_id: str, speed: FanSpeed) -> DeviceResult:
    """Bring one device to on/manual/``speed``, commanding only attributes that differ."""
    commands: list[str] = []
    try:
        state = client.get_state(device_id)
        if state.power != "on":
            client.set_power_on(device_id)
            commands.append("power")
        if state.mode != "manual":
            client.set_mode_manual(device_id)
            commands.append("manual")
        if state.airflow != speed:
            client.set_airflow(device_id, speed)
            commands.append("airflow")
    except Exception as exc:  # noqa: BLE001
        reason = truncate_error(exc, DEVICE_ERROR_LENGTH)
        logger.warning("winix_device_command_failed", device_id=device_id, error=reason, commands=commands)
        return DeviceResult(device_id=device_id, ok=False, error=reason, commands=commands)
    return DeviceResult(device_id=device_id, ok=True, commands=commands)


def dispatch_speed(client: DeviceClient, device_ids: list[str], speed: FanSpeed, dry_run: bool) -> DispatchOutcome:
    if dry_run:
        # Reported as ok without touching the vendor
        results = [DeviceResult(device_id=device_id, ok=True) for device_id in device_ids]
    else:
        results = [apply_speed(client, device_id, speed) for device_id in device_ids]

    outcome = DispatchOutcome(speed=speed, dry_run=dry_run, results=results)
    logger.info(
        "winix_dispatch_complete",
        speed=speed,
        dry_run=outcome.dry_run,
        device_ids=device_ids,
        failed=len(outcome.failures),
    )
    return outcome
