import os
from collections.abc import Mapping
from typing import Final

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from .exceptions import ConfigurationError

SAMPLES_TABLE: Final[str] = os.environ["SAMPLES_TABLE"]
CONTROL_LOG_TABLE: Final[str] = os.environ["CONTROL_LOG_TABLE"]

ENABLED_KEY: Final[str] = "WINIX_CONTROL_ENABLED"

ENV_KEYS: Final[tuple[str, ...]] = (
    "WINIX_DRY_RUN",
    "WINIX_MONITOR_DEVICE_ID",
    "WINIX_TARGET_DEVICE_IDS",
    "WINIX_DEADBAND_UGM3",
    "WINIX_MIN_DWELL_MINUTES",
    "WINIX_MIN_SAMPLES_5M",
    "WINIX_MAX_SAMPLE_AGE_SECONDS",
    "WINIX_USERNAME",
)

_BOOL = TypeAdapter(bool)


class ControlConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dry_run: bool = Field(default=False, validation_alias="WINIX_DRY_RUN")
    monitor_device_id: str = Field(min_length=1, validation_alias="WINIX_MONITOR_DEVICE_ID")
    target_device_ids: list[str] = Field(default_factory=list, validation_alias="WINIX_TARGET_DEVICE_IDS")
    deadband_ugm3: float = Field(default=2.0, ge=0, validation_alias="WINIX_DEADBAND_UGM3")
    min_dwell_minutes: float = Field(default=10, ge=0, validation_alias="WINIX_MIN_DWELL_MINUTES")
    min_samples_5m: int = Field(default=3, ge=1, validation_alias="WINIX_MIN_SAMPLES_5M")
    max_sample_age_seconds: int = Field(default=360, ge=1, validation_alias="WINIX_MAX_SAMPLE_AGE_SECONDS")
    username: str = Field(default="", validation_alias="WINIX_USERNAME")

    @field_validator("monitor_device_id", "username", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("target_device_ids", mode="before")
    @classmethod
    def _split_csv(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        ids = [item.strip() for item in value.split(",") if item.strip()]
        # Keep first occurrence order
        return list(dict.fromkeys(ids))

    @property
    def min_dwell_seconds(self) -> int:
        return int(self.min_dwell_minutes * 60)


def control_enabled(environ: Mapping[str, str]) -> bool:
    """Read the enabled flag on its own so a disabled loop never validates the rest."""
    raw = environ.get(ENABLED_KEY, "").strip()
    if not raw:
        return False
    try:
        return _BOOL.validate_python(raw)
    except ValidationError as e:
        raise ConfigurationError(f"{ENABLED_KEY} is not a boolean: {raw!r}") from e


def load_control_config(environ: Mapping[str, str] | None = None) -> ControlConfig | None:
    """Return the validated control settings, or None when control is disabled."""
    env = os.environ if environ is None else environ
    if not control_enabled(env):
        return None

    data: dict[str, str] = {}
    for key in ENV_KEYS:
        if key in env:
            data[key] = env[key]

    try:
        return ControlConfig.model_validate(data)
    except ValidationError as e:
        problems = ", ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors(include_url=False)
        )
        raise ConfigurationError(f"Invalid control configuration: {problems}") from e
