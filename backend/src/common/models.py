from typing import Literal

from pydantic import BaseModel, Field

# Ascending airflow order
FanSpeed = Literal["low", "medium", "high", "turbo"]
RunStatus = Literal["success", "skipped_stale", "error"]


class TelemetryWindow(BaseModel):
    average: float | None = None
    sample_count: int = 0
    last_sample_ts: int | None = None


class ControlState(BaseModel):
    speed: FanSpeed | None = None
    change_ts: int | None = None
    error_streak: int = 0


class ControlRunRecord(BaseModel):
    run_ts: int
    run_status: RunStatus
    monitor_device_id: str | None = None
    target_device_ids: str | None = None
    pm25_avg: float | None = None
    sample_count: int | None = None
    last_sample_ts: int | None = None
    previous_speed: FanSpeed | None = None
    target_speed: FanSpeed | None = None
    effective_speed: FanSpeed | None = None
    speed_changed: bool = False
    effective_change_ts: int | None = None
    error_streak: int = 0
    error_message: str | None = None
    created_ts: int

    def next_state(self) -> ControlState:
        """State the following cycle starts from."""
        return ControlState(
            speed=self.effective_speed,
            change_ts=self.effective_change_ts,
            error_streak=self.error_streak,
        )


class StoredSession(BaseModel):
    user_id: str
    access_token: str
    refresh_token: str
    access_expires_at: int


class Credentials(BaseModel):
    username: str
    password: str


class WinixDevice(BaseModel):
    device_id: str
    alias: str = ""
    model: str = ""


class DeviceState(BaseModel):
    power: str
    mode: str
    airflow: str


class ResolvedSession(BaseModel):
    auth: StoredSession
    devices: list[WinixDevice] = Field(default_factory=list)


class RunResult(BaseModel):
    status: Literal["disabled", "success", "skipped_stale", "error"]
    target_speed: FanSpeed | None = None
    pm25_avg: float | None = None
    reason: str | None = None
