import time
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Final

import boto3
from boto3.dynamodb.conditions import Key

from .config import CONTROL_LOG_TABLE, SAMPLES_TABLE
from .models import ControlRunRecord, ControlState, TelemetryWindow
from .timeutil import expires_at

WINDOW_SECONDS: Final[int] = 5 * 60
CONTROL_METRIC: Final[str] = "pm25_ugm3"
CONTROL_LOG_STREAM: Final[str] = "fan-control"
CONTROL_LOG_RETENTION_DAYS: Final[int] = 30


def get_dynamodb() -> Any:
    """Return DynamoDB resource to be used by helpers below."""
    return boto3.resource("dynamodb")


def _decimalize(value: Any) -> Any:
    """Recursively convert floats to Decimal for DynamoDB compatibility."""
    if isinstance(value, float):
        # Use string constructor to avoid binary float artifacts
        return Decimal(str(value))
    if isinstance(value, Mapping):
        return {k: _decimalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_decimalize(v) for v in value)
    return value


def read_telemetry_window(
    ddb: Any,
    device_id: str,
    now_ts: int,
    metric: str = CONTROL_METRIC,
) -> TelemetryWindow:
    """Mean, count and latest timestamp of non-null ``metric`` values in (now-300, now]."""
    table = ddb.Table(SAMPLES_TABLE)
    from_ts = now_ts - WINDOW_SECONDS
    kwargs: dict[str, Any] = {
        # BETWEEN is inclusive on both ends; the lower bound is excluded below
        "KeyConditionExpression": Key("deviceId").eq(device_id) & Key("ts").between(from_ts, now_ts),
        "ProjectionExpression": "#t, #m",
        "ExpressionAttributeNames": {"#t": "ts", "#m": metric},
    }

    total = Decimal(0)
    count = 0
    last_ts: int | None = None
    while True:
        resp = table.query(**kwargs)
        for item in resp.get("Items", []):
            ts = item.get("ts")
            value = item.get(metric)
            if ts is None or value is None or ts <= from_ts:
                continue
            total += Decimal(value)
            count += 1
            last_ts = int(ts) if last_ts is None else max(last_ts, int(ts))
        start_key = resp.get("LastEvaluatedKey")
        if not start_key:
            break
        kwargs["ExclusiveStartKey"] = start_key

    if count == 0:
        return TelemetryWindow()
    return TelemetryWindow(average=float(total / count), sample_count=count, last_sample_ts=last_ts)


def read_latest_control_record(ddb: Any) -> ControlRunRecord | None:
    table = ddb.Table(CONTROL_LOG_TABLE)
    resp = table.query(
        KeyConditionExpression=Key("stream").eq(CONTROL_LOG_STREAM),
        ScanIndexForward=False,
        Limit=1,
    )
    items = resp.get("Items", [])
    if not items:
        return None
    return ControlRunRecord.model_validate(items[0])


def read_control_state(ddb: Any) -> ControlState:
    """Previous-state snapshot from the most recently appended control record."""
    latest = read_latest_control_record(ddb)
    if latest is None:
        return ControlState()
    return latest.next_state()


def append_control_record(ddb: Any, record: ControlRunRecord) -> int:
    """Append a control record; the condition guarantees an existing row is never overwritten.

    Returns the sort key the row was written under.
    """
    table = ddb.Table(CONTROL_LOG_TABLE)
    seq = time.time_ns()
    payload = _decimalize(record.model_dump(exclude_none=True))
    payload["stream"] = CONTROL_LOG_STREAM  # HASH key
    payload["seq"] = seq  # RANGE key, insertion order
    payload["expires_at"] = expires_at(record.run_ts, CONTROL_LOG_RETENTION_DAYS)  # TTL attribute
    table.put_item(
        Item=payload,
        ConditionExpression="attribute_not_exists(#s) AND attribute_not_exists(#q)",
        ExpressionAttributeNames={"#s": "stream", "#q": "seq"},
    )
    return seq
