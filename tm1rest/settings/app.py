"""Connection settings powered by Pydantic BaseSettings."""

import logging

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from tm1rest.auth.models import CredentialFields
from tm1rest.constants import DEFAULT_ADDRESS, DEFAULT_PORT, DEFAULT_TIMEOUT_SECONDS
from tm1rest.observability.logging import configure_logging
from tm1rest.transport.config import ConnectionConfig
from tm1rest.transport.models import RetryPolicy


class TM1Settings(BaseSettings):
    """Environment configuration for a single TM1 instance.

    Every field is read from a ``TM1_`` prefixed variable, e.g.
    ``TM1_ADDRESS`` or ``TM1_PASSWORD``.
    """

    model_config = SettingsConfigDict(
        env_prefix="TM1_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    address: str = DEFAULT_ADDRESS
    port: int = DEFAULT_PORT
    ssl: bool = False
    base_url: str | None = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    verify: bool = True
    session_context: str | None = None
    sandbox: str | None = None

    user: str | None = None
    password: SecretStr | None = None
    namespace: str | None = None
    decode_b64: bool = False
    api_key: SecretStr | None = None
    access_token: SecretStr | None = None
    cam_passport: SecretStr | None = None
    auth_url: str | None = None
    application_client_id: str | None = None
    application_client_secret: SecretStr | None = None

    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: int = Field(default=1000, ge=0)

    log_level: str = "INFO"
    log_json: bool = True

    def credential_fields(self) -> CredentialFields:
        """Collect the credential subset of the settings."""
        return CredentialFields(
            access_token=self.access_token,
            api_key=self.api_key,
            user=self.user,
            password=self.password,
            namespace=self.namespace,
            auth_url=self.auth_url,
            cam_passport=self.cam_passport,
            application_client_id=self.application_client_id,
            application_client_secret=self.application_client_secret,
            decode_b64=self.decode_b64,
        )

    def apply_logging(self) -> None:
        """Configure structured logging from TM1_LOG_LEVEL and TM1_LOG_JSON."""
        level = logging.getLevelNamesMapping().get(self.log_level.upper(), logging.INFO)
        configure_logging(level=level, json_format=self.log_json)

    def to_connection_config(self) -> ConnectionConfig:
        """Build a validated ConnectionConfig from the environment."""
        return ConnectionConfig(
            address=self.address,
            port=self.port,
            ssl=self.ssl,
            base_url=self.base_url,
            timeout_seconds=self.timeout_seconds,
            verify=self.verify,
            session_context=self.session_context,
            sandbox=self.sandbox,
            credentials=self.credential_fields(),
            retry_policy=RetryPolicy(
                max_retries=self.max_retries,
                base_delay_ms=self.base_delay_ms,
            ),
        )


def get_settings() -> TM1Settings:
    """Get a settings instance."""
    return TM1Settings()
