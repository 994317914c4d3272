from typing import Any, Protocol

from common.ddb import append_control_record, get_dynamodb, read_control_state, read_telemetry_window
from common.models import ControlRunRecord, ControlState, Credentials, StoredSession, TelemetryWindow
from common.secret_store import read_credentials, read_stored_session, write_stored_session


class ControlBackend(Protocol):
    """Storage the control loop reads its inputs from and writes its outcome to."""

    def read_window(self, device_id: str, now_ts: int) -> TelemetryWindow: ...

    def read_previous_state(self) -> ControlState: ...

    def append_record(self, record: ControlRunRecord) -> None: ...

    def read_credentials(self, username: str) -> Credentials | None: ...

    def read_session(self) -> StoredSession | None: ...

    def write_session(self, session: StoredSession) -> None: ...


class AwsControlBackend:
    """DynamoDB for telemetry and the control log, Secrets Manager for the vendor session."""

    def __init__(self, password_secret_name: str, session_secret_name: str, ddb: Any = None) -> None:
        self.password_secret_name = password_secret_name
        self.session_secret_name = session_secret_name
        self.ddb = ddb if ddb is not None else get_dynamodb()

    def read_window(self, device_id: str, now_ts: int) -> TelemetryWindow:
        return read_telemetry_window(self.ddb, device_id, now_ts)

    def read_previous_state(self) -> ControlState:
        return read_control_state(self.ddb)

    def append_record(self, record: ControlRunRecord) -> None:
        append_control_record(self.ddb, record)

    def read_credentials(self, username: str) -> Credentials | None:
        return read_credentials(username, self.password_secret_name)

    def read_session(self) -> StoredSession | None:
        return read_stored_session(self.session_secret_name)

    def write_session(self, session: StoredSession) -> None:
        write_stored_session(self.session_secret_name, session)
