from typing import Protocol

from aws_lambda_powertools import Logger

from common.exceptions import SessionError, truncate_error
from common.models import Credentials, ResolvedSession, StoredSession, WinixDevice

logger = Logger()

# Attempts at listing devices: the resolved session, then one forced fresh login
LIST_ATTEMPTS = 2


class AuthProvider(Protocol):
    def login(self, username: str, password: str, now_ts: int) -> StoredSession: ...

    def refresh(self, session: StoredSession, now_ts: int) -> StoredSession: ...

    def list_devices(self, session: StoredSession) -> list[WinixDevice]: ...


def resolve_auth_state(
    client: AuthProvider,
    credentials: Credentials,
    stored: StoredSession | None,
    now_ts: int,
) -> StoredSession:
    """Reuse a live stored session, refresh an expired one, or log in from scratch."""
    if stored is None:
        return client.login(credentials.username, credentials.password, now_ts)
    if stored.access_expires_at > now_ts:
        return stored
    try:
        return client.refresh(stored, now_ts)
    except Exception as exc:  # noqa: BLE001
        logger.warning("winix_refresh_failed_fallback_login", error=truncate_error(exc))
        return client.login(credentials.username, credentials.password, now_ts)


def resolve_session(
    client: AuthProvider,
    credentials: Credentials,
    stored: StoredSession | None,
    now_ts: int,
) -> ResolvedSession:
    """Resolve a session and prove it works by listing the account's devices.

    A stored session can be invalidated server-side before its expiry, so a failed
    listing discards it and retries once with a forced login. The second failure is final.
    """
    try:
        auth = resolve_auth_state(client, credentials, stored, now_ts)
    except Exception as exc:  # noqa: BLE001
        raise SessionError(f"Winix authentication failed: {truncate_error(exc)}") from exc

    for attempt in range(1, LIST_ATTEMPTS + 1):
        try:
            devices = client.list_devices(auth)
        except Exception as exc:  # noqa: BLE001
            if attempt == LIST_ATTEMPTS:
                raise SessionError(f"Winix device listing failed after re-login: {truncate_error(exc)}") from exc
            logger.warning("winix_session_unusable_forcing_login", error=truncate_error(exc))
            try:
                auth = client.login(credentials.username, credentials.password, now_ts)
            except Exception as login_exc:  # noqa: BLE001
                raise SessionError(f"Winix re-login failed: {truncate_error(login_exc)}") from login_exc
            continue
        return ResolvedSession(auth=auth, devices=devices)

    raise SessionError("Winix session could not be established")
