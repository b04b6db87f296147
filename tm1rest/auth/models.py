"""Data models for credential resolution."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class AuthenticationMode(Enum):
    """Authentication modes supported by TM1.

    Exactly one mode is active per session. WIA and PA_PROXY are part of the
    server's vocabulary but are never selected from credential fields.
    """

    BASIC = 1
    WIA = 2
    CAM = 3
    CAM_SSO = 4
    IBM_CLOUD_API_KEY = 5
    SERVICE_TO_SERVICE = 6
    PA_PROXY = 7
    BASIC_API_KEY = 8
    ACCESS_TOKEN = 9


class CredentialFields(BaseModel):
    """Bag of optional credential fields supplied by the caller.

    Secrets are held as SecretStr so they never appear in reprs or logs.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    access_token: SecretStr | None = None
    api_key: SecretStr | None = None
    user: str | None = None
    password: SecretStr | None = None
    namespace: str | None = None
    auth_url: str | None = None
    cam_passport: SecretStr | None = None
    application_client_id: str | None = None
    application_client_secret: SecretStr | None = None
    decode_b64: bool = Field(
        default=False, description="Password is base64 encoded and must be decoded"
    )


class ResolvedCredentials(BaseModel):
    """Outcome of credential resolution.

    Holds the selected mode together with the header material and, for CAM
    style flows, the session token obtained from the auth endpoint.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    mode: AuthenticationMode
    headers: dict[str, str] = Field(default_factory=dict)
    session_token: str | None = None
