import os
from typing import Any

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.data_classes import EventBridgeEvent, event_source

from common.timeutil import epoch_seconds
from common.winix_client import WinixClient

from .backend import AwsControlBackend
from .orchestrator import run_control_loop

logger = Logger()

password_secret_name = os.environ.get("WINIX_PASSWORD_SECRET_NAME", "winix/password")
session_secret_name = os.environ.get("WINIX_SESSION_SECRET_NAME", "winix/session")
client_id_param_name = os.environ.get("WINIX_COGNITO_CLIENT_ID_PARAM_NAME", "winix/cognito/client/id")
client_secret_name = os.environ.get("WINIX_COGNITO_CLIENT_SECRET_NAME", "winix/cognito/client/secret")
cognito_region = os.environ.get("WINIX_COGNITO_REGION", "us-east-1")


def build_backend() -> AwsControlBackend:
    return AwsControlBackend(password_secret_name=password_secret_name, session_secret_name=session_secret_name)


def build_client() -> WinixClient:
    return WinixClient(
        client_id_param_name=client_id_param_name,
        client_secret_name=client_secret_name,
        region_name=cognito_region,
    )


@event_source(data_class=EventBridgeEvent)
@logger.inject_lambda_context
def lambda_handler(event: EventBridgeEvent, context: object) -> dict[str, Any]:
    try:
        result = run_control_loop(epoch_seconds(), build_backend(), build_client())
    except Exception as exc:
        # Only storage failures while writing the control record get here
        logger.exception("fan_control_failed")
        raise exc
    return result.model_dump()
