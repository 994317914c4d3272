import contextlib
import os
from collections.abc import Iterator

import boto3
import pytest
from moto import mock_aws

# Ensure AWS SDK has a region and fake credentials for moto
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_SESSION_TOKEN", "testing")
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "winix-fan-control")

# Environment variables read at import time by common.config
os.environ.setdefault("SAMPLES_TABLE", "samples_raw")
os.environ.setdefault("CONTROL_LOG_TABLE", "winix_control_log")

# Defaults for the Winix handler
os.environ.setdefault("WINIX_PASSWORD_SECRET_NAME", "winix/password")
os.environ.setdefault("WINIX_SESSION_SECRET_NAME", "winix/session")
os.environ.setdefault("WINIX_COGNITO_CLIENT_ID_PARAM_NAME", "winix/cognito/client/id")
os.environ.setdefault("WINIX_COGNITO_CLIENT_SECRET_NAME", "winix/cognito/client/secret")

EMPTY_SESSION = "{}"


@pytest.fixture(scope="session", autouse=True)
def aws_moto() -> Iterator[None]:
    with mock_aws():
        # Create required AWS resources in moto
        # DynamoDB tables
        ddb = boto3.client("dynamodb")
        ddb.create_table(
            TableName=os.environ["SAMPLES_TABLE"],
            AttributeDefinitions=[
                {"AttributeName": "deviceId", "AttributeType": "S"},
                {"AttributeName": "ts", "AttributeType": "N"},
            ],
            KeySchema=[
                {"AttributeName": "deviceId", "KeyType": "HASH"},
                {"AttributeName": "ts", "KeyType": "RANGE"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        ddb.create_table(
            TableName=os.environ["CONTROL_LOG_TABLE"],
            AttributeDefinitions=[
                {"AttributeName": "stream", "AttributeType": "S"},
                {"AttributeName": "seq", "AttributeType": "N"},
            ],
            KeySchema=[
                {"AttributeName": "stream", "KeyType": "HASH"},
                {"AttributeName": "seq", "KeyType": "RANGE"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )

        # SSM parameter for the Cognito app client id
        ssm = boto3.client("ssm")
        ssm.put_parameter(
            Name=os.environ["WINIX_COGNITO_CLIENT_ID_PARAM_NAME"],
            Type="String",
            Value="CLIENT123",
            Overwrite=True,
        )

        # Secrets must exist for put operations
        secrets = boto3.client("secretsmanager")
        for name, value in [
            (os.environ["WINIX_PASSWORD_SECRET_NAME"], "PASSWORD"),
            (os.environ["WINIX_SESSION_SECRET_NAME"], EMPTY_SESSION),
            (os.environ["WINIX_COGNITO_CLIENT_SECRET_NAME"], "COGNITO_SECRET"),
        ]:
            with contextlib.suppress(secrets.exceptions.ResourceExistsException):  # type: ignore[attr-defined]
                secrets.create_secret(Name=name, SecretString=value)

        yield


def _clear_table(name: str, keys: tuple[str, str]) -> None:
    table = boto3.resource("dynamodb").Table(name)
    items = table.scan(ProjectionExpression="#a, #b", ExpressionAttributeNames={"#a": keys[0], "#b": keys[1]})
    with table.batch_writer() as batch:
        for item in items.get("Items", []):
            batch.delete_item(Key={keys[0]: item[keys[0]], keys[1]: item[keys[1]]})


@pytest.fixture
def clean_state(aws_moto: None) -> Iterator[None]:  # type: ignore[unused-ignore]
    """Empty tables and stored session so each test starts from no history."""
    _clear_table(os.environ["SAMPLES_TABLE"], ("deviceId", "ts"))
    _clear_table(os.environ["CONTROL_LOG_TABLE"], ("stream", "seq"))
    secrets = boto3.client("secretsmanager")
    secrets.put_secret_value(SecretId=os.environ["WINIX_SESSION_SECRET_NAME"], SecretString=EMPTY_SESSION)
    secrets.put_secret_value(SecretId=os.environ["WINIX_PASSWORD_SECRET_NAME"], SecretString="PASSWORD")
    yield
