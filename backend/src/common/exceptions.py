"""Exceptions raised by the fan control loop and the Winix client."""

MAX_ERROR_LENGTH = 500


def truncate_error(error: BaseException | str, limit: int = MAX_ERROR_LENGTH) -> str:
    if isinstance(error, str):
        return error[:limit]
    message = str(error) or type(error).__name__
    return message[:limit]


class FanControlError(Exception):
    """Base exception for the fan control loop."""


class ConfigurationError(FanControlError):
    """Missing or invalid settings, credentials or target device ids."""


class StaleDataError(FanControlError):
    """The telemetry window is too thin or too old to act on."""


class SessionError(FanControlError):
    """A vendor session could not be established or used."""


class DeviceCommandError(FanControlError):
    """One or more devices rejected a command.

    ``failures`` holds ``(device_id, reason)`` pairs for every failed device.
    """

    def __init__(self, failures: list[tuple[str, str]], total: int) -> None:
        self.failures = failures
        self.total = total
        reasons = " | ".join(f"{device_id}:{reason}" for device_id, reason in failures)
        super().__init__(f"Failed to control one or more Winix devices ({len(failures)}/{total}): {reasons}")


class WinixApiError(RuntimeError):
    """Transport or vendor-level failure from the Winix cloud API."""
