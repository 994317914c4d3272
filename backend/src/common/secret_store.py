from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities import parameters
from aws_lambda_powertools.utilities.parameters.exceptions import GetParameterError
from pydantic import ValidationError

from .models import Credentials, StoredSession

logger = Logger()


def read_stored_session(secret_name: str) -> StoredSession | None:
    """Load the singleton vendor session; empty or unreadable values mean no session."""
    try:
        raw = parameters.get_secret(secret_name, force_fetch=True)
    except GetParameterError:
        logger.warning("stored_session_unavailable", secret_name=secret_name)
        return None
    if not raw:
        return None
    try:
        return StoredSession.model_validate_json(raw)
    except ValidationError:
        logger.warning("stored_session_unparsable", secret_name=secret_name)
        return None


def write_stored_session(secret_name: str, session: StoredSession) -> None:
    parameters.set_secret(secret_name, session.model_dump_json())


def read_credentials(username: str, password_secret_name: str) -> Credentials | None:
    """Credentials for the vendor account, or None when they are not configured.

    Secrets Manager failures propagate as ``GetParameterError``.
    """
    if not username or not password_secret_name:
        return None
    password = parameters.get_secret(password_secret_name, force_fetch=True)
    if not password:
        return None
    return Credentials(username=username, password=str(password))
