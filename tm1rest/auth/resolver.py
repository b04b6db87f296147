"""Credential resolution: selects one authentication mode and produces its material."""

import base64
from urllib.parse import urlsplit

import httpx
import structlog
from pydantic import SecretStr

from tm1rest.auth.models import AuthenticationMode, CredentialFields, ResolvedCredentials
from tm1rest.constants import (
    API_KEY_HEADER,
    CLOUD_API_KEY_USER,
    DEFAULT_TOKEN_PATH,
    NAMESPACE_HEADER,
    SESSION_COOKIE,
)
from tm1rest.errors import AuthenticationConfigError, TransportError


logger = structlog.get_logger()

_SESSION_ID_KEYS = ("sessionId", "SessionId", "session_id")


def _present(value: str | SecretStr | None) -> bool:
    """Check that a credential field holds a non-empty value."""
    if value is None:
        return False
    if isinstance(value, SecretStr):
        return bool(value.get_secret_value())
    return bool(value)


def _secret(value: SecretStr | None) -> str:
    return value.get_secret_value() if value is not None else ""


def _basic_header(user: str, password: str) -> str:
    encoded = base64.b64encode(f"{user}:{password}".encode()).decode("ascii")
    return f"Basic {encoded}"


def select_authentication_mode(fields: CredentialFields) -> AuthenticationMode:
    """Select the authentication mode for a set of credential fields.

    The checks run in a fixed order and the first match wins:
    access token, api key, CAM passport, CAM SSO, service-to-service,
    basic.

    Args:
        fields: Credential fields supplied by the caller.

    Returns:
        The selected authentication mode.

    Raises:
        AuthenticationConfigError: If no combination of fields matches.
    """
    if _present(fields.access_token):
        return AuthenticationMode.ACCESS_TOKEN

    if _present(fields.api_key):
        if fields.user == CLOUD_API_KEY_USER:
            return AuthenticationMode.IBM_CLOUD_API_KEY
        return AuthenticationMode.BASIC_API_KEY

    if _present(fields.auth_url) and _present(fields.cam_passport):
        return AuthenticationMode.CAM

    if (
        _present(fields.auth_url)
        and _present(fields.user)
        and _present(fields.password)
        and _present(fields.namespace)
    ):
        return AuthenticationMode.CAM_SSO

    if _present(fields.application_client_id) and _present(
        fields.application_client_secret
    ):
        return AuthenticationMode.SERVICE_TO_SERVICE

    if _present(fields.user) and _present(fields.password):
        return AuthenticationMode.BASIC

    msg = (
        "No usable credentials: supply an access token, an api key, "
        "CAM credentials, application client credentials or user and password"
    )
    raise AuthenticationConfigError(msg)


class CredentialResolver:
    """Turns credential fields into authentication headers and tokens.

    Modes that need a round trip to an external auth endpoint (CAM, CAM SSO,
    service-to-service) perform it through the given httpx client so that
    tests can substitute the transport.
    """

    def __init__(
        self,
        client: httpx.Client,
        base_url: str,
        timeout: float = 15.0,
    ) -> None:
        """Initialize the resolver.

        Args:
            client: HTTP client used for token exchanges.
            base_url: TM1 base URL, used to derive the default token endpoint.
            timeout: Timeout in seconds for exchange requests.
        """
        self._client = client
        self._base_url = base_url
        self._timeout = timeout
        self._log = logger.bind(component="auth")

    def resolve(self, fields: CredentialFields) -> ResolvedCredentials:
        """Resolve credential fields into authentication material.

        Args:
            fields: Credential fields supplied by the caller.

        Returns:
            The selected mode with its headers and optional session token.

        Raises:
            AuthenticationConfigError: If no combination of fields matches.
            TransportError: If an exchange with the auth endpoint fails.
        """
        mode = select_authentication_mode(fields)
        self._log.info("authentication_mode_selected", mode=mode.name)

        if mode is AuthenticationMode.ACCESS_TOKEN:
            return ResolvedCredentials(
                mode=mode,
                headers={"Authorization": f"Bearer {_secret(fields.access_token)}"},
            )

        if mode is AuthenticationMode.IBM_CLOUD_API_KEY:
            return ResolvedCredentials(
                mode=mode,
                headers={
                    "Authorization": _basic_header(
                        CLOUD_API_KEY_USER, _secret(fields.api_key)
                    )
                },
            )

        if mode is AuthenticationMode.BASIC_API_KEY:
            return ResolvedCredentials(
                mode=mode,
                headers={API_KEY_HEADER: _secret(fields.api_key)},
            )

        if mode is AuthenticationMode.CAM:
            return self._resolve_cam(fields)

        if mode is AuthenticationMode.CAM_SSO:
            return self._resolve_cam_sso(fields)

        if mode is AuthenticationMode.SERVICE_TO_SERVICE:
            return self._resolve_service_to_service(fields)

        return self._resolve_basic(fields)

    def _resolve_basic(self, fields: CredentialFields) -> ResolvedCredentials:
        password = _secret(fields.password)
        if fields.decode_b64:
            password = base64.b64decode(password).decode("utf-8")

        headers = {"Authorization": _basic_header(fields.user or "", password)}
        if fields.namespace:
            headers[NAMESPACE_HEADER] = fields.namespace
        return ResolvedCredentials(mode=AuthenticationMode.BASIC, headers=headers)

    def _resolve_cam(self, fields: CredentialFields) -> ResolvedCredentials:
        response = self._exchange(
            "cam",
            fields.auth_url or "",
            json={"passport": _secret(fields.cam_passport)},
        )
        session_id = self._extract_session_id(response)
        if not session_id:
            msg = "No session id in CAM authentication response"
            raise TransportError(msg, status_code=response.status_code)

        return ResolvedCredentials(
            mode=AuthenticationMode.CAM,
            session_token=session_id,
        )

    def _resolve_cam_sso(self, fields: CredentialFields) -> ResolvedCredentials:
        response = self._exchange(
            "cam_sso",
            fields.auth_url or "",
            json={
                "username": fields.user,
                "password": _secret(fields.password),
                "namespace": fields.namespace,
            },
        )

        access_token = self._json_value(response, "access_token")
        if access_token:
            return ResolvedCredentials(
                mode=AuthenticationMode.CAM_SSO,
                headers={"Authorization": f"Bearer {access_token}"},
            )

        session_id = self._extract_session_id(response)
        if session_id:
            return ResolvedCredentials(
                mode=AuthenticationMode.CAM_SSO,
                session_token=session_id,
            )

        msg = "No access_token or session id in CAM SSO response"
        raise TransportError(msg, status_code=response.status_code)

    def _resolve_service_to_service(
        self, fields: CredentialFields
    ) -> ResolvedCredentials:
        token_url = fields.auth_url or self.default_token_url()
        response = self._exchange(
            "service_to_service",
            token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": fields.application_client_id,
                "client_secret": _secret(fields.application_client_secret),
            },
        )

        access_token = self._json_value(response, "access_token")
        if not access_token:
            msg = "No access_token in client credentials response"
            raise TransportError(msg, status_code=response.status_code)

        return ResolvedCredentials(
            mode=AuthenticationMode.SERVICE_TO_SERVICE,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    def default_token_url(self) -> str:
        """Derive the token endpoint from the server origin.

        Returns:
            Absolute URL of the default token endpoint.
        """
        parts = urlsplit(self._base_url)
        return f"{parts.scheme}://{parts.netloc}{DEFAULT_TOKEN_PATH}"

    def _exchange(
        self,
        flow: str,
        url: str,
        json: dict[str, object] | None = None,
        data: dict[str, object] | None = None,
    ) -> httpx.Response:
        """POST to an auth endpoint and check the status.

        Raises:
            TransportError: On network errors or a non-2xx response.
        """
        log = self._log.bind(flow=flow)
        try:
            response = self._client.post(
                url, json=json, data=data, timeout=self._timeout
            )
        except httpx.HTTPError as exc:
            log.warning("auth_exchange_network_error", error=str(exc))
            msg = f"Network error during {flow} authentication: {exc}"
            raise TransportError(msg) from exc

        if not response.is_success:
            log.warning("auth_exchange_failed", status_code=response.status_code)
            msg = f"{flow} authentication failed with status {response.status_code}"
            raise TransportError(msg, status_code=response.status_code)

        log.info("auth_exchange_complete", status_code=response.status_code)
        return response

    @staticmethod
    def _json_value(response: httpx.Response, key: str) -> str | None:
        try:
            payload = response.json()
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        value = payload.get(key)
        return str(value) if value else None

    def _extract_session_id(self, response: httpx.Response) -> str | None:
        for key in _SESSION_ID_KEYS:
            value = self._json_value(response, key)
            if value:
                return value
        return response.cookies.get(SESSION_COOKIE)
