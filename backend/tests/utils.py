from dataclasses import dataclass
from typing import Any

from common.models import (
    ControlRunRecord,
    ControlState,
    Credentials,
    DeviceState,
    FanSpeed,
    StoredSession,
    TelemetryWindow,
    WinixDevice,
)


@dataclass
class FakeLambdaContext:
    function_name: str = "winix-fan-control"
    memory_limit_in_mb: int = 256
    invoked_function_arn: str = "arn:aws:lambda:us-east-1:123456789012:function:winix-fan-control"
    aws_request_id: str = "test-request-id"


def control_env(**overrides: str) -> dict[str, str]:
    env = {
        "WINIX_CONTROL_ENABLED": "true",
        "WINIX_DRY_RUN": "false",
        "WINIX_MONITOR_DEVICE_ID": "monitor-1",
        "WINIX_DEADBAND_UGM3": "2",
        "WINIX_MIN_DWELL_MINUTES": "10",
        "WINIX_MIN_SAMPLES_5M": "3",
        "WINIX_MAX_SAMPLE_AGE_SECONDS": "360",
        "WINIX_USERNAME": "user@example.com",
    }
    env.update(overrides)
    return env


def build_session(**overrides: Any) -> StoredSession:
    data: dict[str, Any] = {
        "user_id": "user-1",
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "access_expires_at": 10_000,
    }
    data.update(overrides)
    return StoredSession(**data)


class InMemoryBackend:
    """ControlBackend kept in plain lists; windows are served from a per-test script."""

    def __init__(self, windows: list[TelemetryWindow] | None = None, password: str | None = "password") -> None:
        self.windows = list(windows or [])
        self.records: list[ControlRunRecord] = []
        self.password = password
        self.session: StoredSession | None = None
        self.session_writes = 0

    def read_window(self, device_id: str, now_ts: int) -> TelemetryWindow:
        return self.windows.pop(0) if self.windows else TelemetryWindow()

    def read_previous_state(self) -> ControlState:
        if not self.records:
            return ControlState()
        return self.records[-1].next_state()

    def append_record(self, record: ControlRunRecord) -> None:
        self.records.append(record)

    def read_credentials(self, username: str) -> Credentials | None:
        if not username or not self.password:
            return None
        return Credentials(username=username, password=self.password)

    def read_session(self) -> StoredSession | None:
        return self.session

    def write_session(self, session: StoredSession) -> None:
        self.session = session
        self.session_writes += 1


class FakeWinix:
    """Vendor client double that records every call in order."""

    def __init__(
        self,
        device_ids: list[str] | None = None,
        state: DeviceState | None = None,
        failing_devices: set[str] | None = None,
    ) -> None:
        self.device_ids = ["device-1"] if device_ids is None else device_ids
        self.state = state or DeviceState(power="off", mode="auto", airflow="low")
        self.failing_devices = failing_devices or set()
        self.calls: list[tuple[str, ...]] = []

    def login(self, username: str, password: str, now_ts: int) -> StoredSession:
        self.calls.append(("login", username))
        return build_session(access_expires_at=now_ts + 3600)

    def refresh(self, session: StoredSession, now_ts: int) -> StoredSession:
        self.calls.append(("refresh",))
        return build_session(access_token="refreshed", access_expires_at=now_ts + 3600)

    def list_devices(self, session: StoredSession) -> list[WinixDevice]:
        self.calls.append(("list_devices",))
        return [WinixDevice(device_id=device_id) for device_id in self.device_ids]

    def get_state(self, device_id: str) -> DeviceState:
        self.calls.append(("get_state", device_id))
        if device_id in self.failing_devices:
            raise RuntimeError("device offline")
        return self.state

    def set_power_on(self, device_id: str) -> None:
        self.calls.append(("power", device_id))

    def set_mode_manual(self, device_id: str) -> None:
        self.calls.append(("manual", device_id))

    def set_airflow(self, device_id: str, speed: FanSpeed) -> None:
        self.calls.append(("airflow", device_id, speed))
        # Device now reflects the command
        self.state = DeviceState(power="on", mode="manual", airflow=speed)

    def device_calls(self) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[0] in {"get_state", "power", "manual", "airflow"}]
