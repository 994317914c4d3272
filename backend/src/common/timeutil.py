import time
from datetime import UTC, datetime

SECONDS_PER_DAY = 24 * 60 * 60


def epoch_seconds() -> int:
    return int(time.time())


def expires_at(ts: int, retention_days: int) -> int:
    """Epoch seconds after which a row written at ``ts`` may be expired by DynamoDB TTL."""
    return ts + retention_days * SECONDS_PER_DAY


def iso_from_epoch_seconds(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
