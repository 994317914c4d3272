import base64
import hashlib
import hmac
import json
import zlib
from typing import Any, Final, cast

import boto3
import requests  # type: ignore[import-untyped]
from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities import parameters
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import WinixApiError
from .models import DeviceState, FanSpeed, StoredSession, WinixDevice

logger = Logger()

# Device attribute codes used by the Winix control API
ATTR_POWER: Final[str] = "A02"
ATTR_MODE: Final[str] = "A03"
ATTR_AIRFLOW: Final[str] = "A04"

POWER_VALUES: Final[dict[str, str]] = {"0": "off", "1": "on"}
MODE_VALUES: Final[dict[str, str]] = {"01": "auto", "02": "manual"}
AIRFLOW_VALUES: Final[dict[str, str]] = {"01": "low", "02": "medium", "03": "high", "05": "turbo", "06": "sleep"}
AIRFLOW_CODES: Final[dict[FanSpeed, str]] = {"low": "01", "medium": "02", "high": "03", "turbo": "05"}


class WinixClient:
    """Encapsulates the Winix cloud calls used by the control loop.

    Authentication goes through the vendor's Cognito user pool; the app client id and
    client secret are read via AWS Parameters/Secrets names provided at construction time.
    Device listing and commands are plain HTTPS calls.

    Only the USER_PASSWORD_AUTH and REFRESH_TOKEN_AUTH flows are supported, and listing
    skips the mobile app's registerUser/checkAccessToken handshake. An account whose app
    client only allows SRP fails at login with a WinixApiError. This flow has not been
    checked against the live service.
    """

    MOBILE_URL = "https://us.mobile.winix-iot.com"
    API_URL = "https://us.api.winix-iot.com"

    def __init__(
        self,
        client_id_param_name: str,
        client_secret_name: str,
        region_name: str = "us-east-1",
        cognito: Any = None,
    ) -> None:
        self.client_id_param_name = client_id_param_name
        self.client_secret_name = client_secret_name
        self.region_name = region_name
        self._cognito = cognito

    @property
    def cognito(self) -> Any:
        if self._cognito is None:
            self._cognito = boto3.client("cognito-idp", region_name=self.region_name)
        return self._cognito

    def _get_client_credentials(self) -> tuple[str, str]:
        client_id = parameters.get_parameter(self.client_id_param_name)
        client_secret = parameters.get_secret(self.client_secret_name)
        return str(client_id), str(client_secret)

    @staticmethod
    def _secret_hash(username: str, client_id: str, client_secret: str) -> str:
        digest = hmac.new(client_secret.encode(), (username + client_id).encode(), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")

    @staticmethod
    def _token_subject(access_token: str) -> str:
        """Read the ``sub`` claim from a JWT without verifying it."""
        try:
            payload_b64 = access_token.split(".")[1]
            payload_b64 += "=" * (-len(payload_b64) % 4)
            claims = json.loads(base64.urlsafe_b64decode(payload_b64))
        except (IndexError, ValueError) as exc:
            raise WinixApiError("Winix access token is not a JWT") from exc
        sub = str(claims.get("sub", ""))
        if not sub:
            raise WinixApiError("Winix access token has no subject")
        return sub

    @staticmethod
    def _mobile_uuid(user_id: str) -> str:
        # Stable per-account identifier expected by the mobile endpoints
        first = zlib.crc32(f"winix-fan-control{user_id}".encode())
        second = zlib.crc32(f"HGF{user_id}".encode())
        return f"{first:08x}{second:08x}"

    def _initiate_auth(self, client_id: str, flow: str, auth_parameters: dict[str, str]) -> dict[str, Any]:
        try:
            resp = self.cognito.initiate_auth(
                ClientId=client_id,
                AuthFlow=flow,
                AuthParameters=auth_parameters,
            )
        except (ClientError, BotoCoreError) as exc:
            raise WinixApiError(f"Winix {flow} failed: {exc}") from exc
        if resp.get("ChallengeName"):
            raise WinixApiError(f"Winix {flow} requires unsupported challenge {resp['ChallengeName']}")
        result: dict[str, Any] = resp.get("AuthenticationResult") or {}
        if not result.get("AccessToken"):
            raise WinixApiError(f"Winix {flow} missing access token")
        return result

    def login(self, username: str, password: str, now_ts: int) -> StoredSession:
        client_id, client_secret = self._get_client_credentials()
        result = self._initiate_auth(
            client_id,
            "USER_PASSWORD_AUTH",
            {
                "USERNAME": username,
                "PASSWORD": password,
                "SECRET_HASH": self._secret_hash(username, client_id, client_secret),
            },
        )
        access_token = str(result["AccessToken"])
        refresh_token = str(result.get("RefreshToken", ""))
        if not refresh_token:
            raise WinixApiError("Winix login missing refresh token")
        logger.info("winix_login_ok", expires_in=result.get("ExpiresIn"))
        return StoredSession(
            user_id=self._token_subject(access_token),
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=now_ts + int(result.get("ExpiresIn", 3600)),
        )

    def refresh(self, session: StoredSession, now_ts: int) -> StoredSession:
        """Exchange the stored refresh token for a new access token.

        Cognito does not rotate refresh tokens on this flow, so the stored one is kept
        unless a new one is returned.
        """
        client_id, client_secret = self._get_client_credentials()
        result = self._initiate_auth(
            client_id,
            "REFRESH_TOKEN_AUTH",
            {
                "REFRESH_TOKEN": session.refresh_token,
                "SECRET_HASH": self._secret_hash(session.user_id, client_id, client_secret),
            },
        )
        logger.info("winix_refresh_ok", expires_in=result.get("ExpiresIn"))
        return StoredSession(
            user_id=session.user_id,
            access_token=str(result["AccessToken"]),
            refresh_token=str(result.get("RefreshToken") or session.refresh_token),
            access_expires_at=now_ts + int(result.get("ExpiresIn", 3600)),
        )

    def list_devices(self, session: StoredSession) -> list[WinixDevice]:
        url = f"{self.MOBILE_URL}/getDeviceInfoList"
        body = {"accessToken": session.access_token, "uuid": self._mobile_uuid(session.user_id)}
        resp = requests.post(url, json=body, timeout=10)
        logger.info("winix_device_list_status", status_code=resp.status_code)
        if resp.status_code >= 400:
            raise WinixApiError(f"Winix device listing failed: {resp.status_code}")
        payload: dict[str, Any] = resp.json()
        if "deviceInfoList" not in payload:
            raise WinixApiError(f"Winix device listing rejected: {payload.get('resultMessage', 'no device list')}")
        devices: list[WinixDevice] = []
        for item in payload.get("deviceInfoList") or []:
            device_id = str(item.get("deviceId", "")).strip()
            if not device_id:
                continue
            devices.append(
                WinixDevice(
                    device_id=device_id,
                    alias=str(item.get("deviceAlias", "")),
                    model=str(item.get("modelName", "")),
                )
            )
        return devices

    def _get_json(self, url: str, action: str) -> dict[str, Any]:
        resp = requests.get(url, timeout=10)
        if resp.status_code >= 400:
            raise WinixApiError(f"Winix {action} failed: {resp.status_code}")
        payload: dict[str, Any] = cast(dict[str, Any], resp.json())
        headers = payload.get("headers") or {}
        result_code = str(headers.get("resultCode", ""))
        if result_code and result_code != "S100":
            raise WinixApiError(f"Winix {action} rejected: {result_code} {headers.get('resultMessage', '')}".strip())
        return payload

    def get_state(self, device_id: str) -> DeviceState:
        payload = self._get_json(f"{self.API_URL}/common/event/sttus/devices/{device_id}", "state fetch")
        data = (payload.get("body") or {}).get("data") or []
        if not data:
            raise WinixApiError(f"Winix state fetch returned no data for {device_id}")
        attributes: dict[str, Any] = data[0].get("attributes") or {}
        power = str(attributes.get(ATTR_POWER, ""))
        mode = str(attributes.get(ATTR_MODE, ""))
        airflow = str(attributes.get(ATTR_AIRFLOW, ""))
        return DeviceState(
            power=POWER_VALUES.get(power, power or "unknown"),
            mode=MODE_VALUES.get(mode, mode or "unknown"),
            airflow=AIRFLOW_VALUES.get(airflow, airflow or "unknown"),
        )

    def _control(self, device_id: str, attribute: str, value: str) -> None:
        url = f"{self.API_URL}/common/control/devices/{device_id}/A211/{attribute}:{value}"
        self._get_json(url, f"control {attribute}")
        logger.info("winix_control_sent", device_id=device_id, attribute=attribute, value=value)

    def set_power_on(self, device_id: str) -> None:
        self._control(device_id, ATTR_POWER, "1")

    def set_mode_manual(self, device_id: str) -> None:
        self._control(device_id, ATTR_MODE, "02")

    def set_airflow(self, device_id: str, speed: FanSpeed) -> None:
        self._control(device_id, ATTR_AIRFLOW, AIRFLOW_CODES[speed])
