"""Configuration models for the transport layer."""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tm1rest.auth.models import CredentialFields
from tm1rest.constants import (
    API_ROOT,
    DEFAULT_ADDRESS,
    DEFAULT_CONNECTION_POOL_SIZE,
    DEFAULT_POOL_CONNECTIONS,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT_SECONDS,
)
from tm1rest.transport.models import RetryPolicy


class ConnectionConfig(BaseModel):
    """Configuration for a TM1 transport session.

    Central configuration for addressing, timeouts, pooling, credentials
    and the retry policy applied to every request.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    address: Annotated[str, Field(min_length=1)] = DEFAULT_ADDRESS
    port: Annotated[int, Field(ge=1, le=65535)] = DEFAULT_PORT
    ssl: bool = False
    base_url: str | None = Field(
        default=None, description="Overrides address, port and ssl when set"
    )
    timeout_seconds: Annotated[float, Field(gt=0.0, le=3600.0)] = (
        DEFAULT_TIMEOUT_SECONDS
    )
    connection_pool_size: Annotated[int, Field(ge=1, le=1000)] = (
        DEFAULT_CONNECTION_POOL_SIZE
    )
    pool_connections: Annotated[int, Field(ge=1, le=1000)] = DEFAULT_POOL_CONNECTIONS
    verify: bool | str = Field(
        default=True, description="TLS verification flag or CA bundle path"
    )
    session_context: str | None = None
    sandbox: str | None = None
    credentials: CredentialFields = Field(default_factory=CredentialFields)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)

    @model_validator(mode="after")
    def validate_pool(self) -> "ConnectionConfig":
        """Ensure keep-alive connections fit inside the pool."""
        if self.pool_connections > self.connection_pool_size:
            msg = "pool_connections must not exceed connection_pool_size"
            raise ValueError(msg)
        return self

    def build_base_url(self) -> str:
        """Build the service root URL.

        Returns:
            The configured base_url, or one derived from address, port and ssl.
        """
        if self.base_url:
            return self.base_url.rstrip("/")
        scheme = "https" if self.ssl else "http"
        return f"{scheme}://{self.address}:{self.port}{API_ROOT}"
