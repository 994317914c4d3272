import json
import os

import boto3
import pytest
from aws_lambda_powertools.utilities.parameters.exceptions import GetParameterError

from common.secret_store import read_credentials, read_stored_session, write_stored_session

from .utils import build_session


def test_empty_session_secret_means_no_session(clean_state: None) -> None:
    assert read_stored_session(os.environ["WINIX_SESSION_SECRET_NAME"]) is None


def test_unparsable_session_secret_means_no_session(clean_state: None) -> None:
    secrets = boto3.client("secretsmanager")
    secrets.put_secret_value(SecretId=os.environ["WINIX_SESSION_SECRET_NAME"], SecretString="not-json")

    assert read_stored_session(os.environ["WINIX_SESSION_SECRET_NAME"]) is None


def test_missing_session_secret_means_no_session(aws_moto: None) -> None:
    assert read_stored_session("winix/does-not-exist") is None


def test_session_is_overwritten_and_read_back(clean_state: None) -> None:
    name = os.environ["WINIX_SESSION_SECRET_NAME"]
    write_stored_session(name, build_session(access_token="first"))
    write_stored_session(name, build_session(access_token="second", access_expires_at=99_999))

    stored = read_stored_session(name)

    assert stored is not None
    assert stored.access_token == "second"
    assert stored.access_expires_at == 99_999
    raw = boto3.client("secretsmanager").get_secret_value(SecretId=name)["SecretString"]
    assert json.loads(raw)["user_id"] == "user-1"


def test_reads_credentials_from_password_secret(clean_state: None) -> None:
    creds = read_credentials("user@example.com", os.environ["WINIX_PASSWORD_SECRET_NAME"])

    assert creds is not None
    assert creds.username == "user@example.com"
    assert creds.password == "PASSWORD"


def test_credentials_absent_without_username(aws_moto: None) -> None:
    assert read_credentials("", os.environ["WINIX_PASSWORD_SECRET_NAME"]) is None
    assert read_credentials("user@example.com", "") is None


def test_password_secret_read_failure_propagates(aws_moto: None) -> None:
    with pytest.raises(GetParameterError, match="ResourceNotFoundException"):
        read_credentials("user@example.com", "winix/no-such-password")
