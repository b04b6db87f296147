"""TM1 REST session with credential resolution, retries and health probing."""

import re
import threading
import time
from collections.abc import Callable
from types import TracebackType
from typing import Any

import httpx
import structlog

from tm1rest.auth.models import AuthenticationMode, ResolvedCredentials
from tm1rest.auth.resolver import CredentialResolver
from tm1rest.constants import (
    ACTIVE_SESSION_ENDPOINT,
    ACTIVE_USER_ENDPOINT,
    BASE_HEADERS,
    CLOSE_SESSION_ENDPOINT,
    DEFAULT_HEALTH_CHECK_TIMEOUT_MS,
    DEFAULT_SESSION_CONTEXT,
    PRODUCT_VERSION_ENDPOINT,
    SANDBOX_HEADER,
    SERVER_NAME_ENDPOINT,
    SESSION_CONTEXT_HEADER,
    SESSION_COOKIE,
    SESSION_HEADER,
)
from tm1rest.errors import AuthenticationConfigError, TM1Error, TransportError
from tm1rest.transport.capabilities import CapabilityCheck, check_capability
from tm1rest.transport.config import ConnectionConfig
from tm1rest.transport.metrics import TransportMetrics
from tm1rest.transport.models import (
    ConnectionDiagnostics,
    FailureClass,
    HealthReport,
    ResponseEnvelope,
)
from tm1rest.transport.monitor import ConnectionMonitor
from tm1rest.transport.redact import redact_headers
from tm1rest.transport.retry import RetryExecutor, extract_error_message


logger = structlog.get_logger()

_SESSION_COOKIE_PATTERN = re.compile(rf"{SESSION_COOKIE}=([^;]+)")


def _elapsed_ms(start_ns: int) -> float:
    return (time.perf_counter_ns() - start_ns) / 1_000_000


def _value_field(payload: object) -> str | None:
    """Read the OData ``value`` field of a scalar response."""
    if isinstance(payload, dict) and payload.get("value") is not None:
        return str(payload["value"])
    return None


class TransportSession:
    """Connection to a TM1 server.

    Owns the HTTP connection pool, the server session token and the optional
    sandbox context. Every request goes through the retry executor and
    carries the current session headers.

    Session state lives on the instance only, so several sessions in one
    process never share headers.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the session without connecting.

        Args:
            config: Connection configuration.
            transport: Optional httpx transport (e.g. httpx.MockTransport).
            sleep: Sleep function used between retries.
        """
        self._config = config
        self._base_url = config.build_base_url()
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=config.timeout_seconds,
            verify=config.verify,
            limits=httpx.Limits(
                max_connections=config.connection_pool_size,
                max_keepalive_connections=config.pool_connections,
            ),
            transport=transport,
        )
        self._retry = RetryExecutor(config.retry_policy, sleep=sleep)
        self._resolver = CredentialResolver(
            self._client, self._base_url, timeout=config.timeout_seconds
        )
        self._metrics = TransportMetrics.get_instance()
        self._lock = threading.RLock()
        self._monitors: list[ConnectionMonitor] = []

        self._auth: ResolvedCredentials | None = None
        self._session_token: str | None = None
        self._sandbox: str | None = config.sandbox
        self._connected = False
        self._version: str | None = None

        self._log = logger.bind(component="transport", base_url=self._base_url)

    @property
    def config(self) -> ConnectionConfig:
        """Get the connection configuration."""
        return self._config

    @property
    def base_url(self) -> str:
        """Get the service root URL."""
        return self._base_url

    @property
    def session_id(self) -> str | None:
        """Get the current TM1 session token."""
        return self._session_token

    @property
    def sandbox(self) -> str | None:
        """Get the active sandbox name."""
        return self._sandbox

    @property
    def auth_mode(self) -> AuthenticationMode | None:
        """Get the authentication mode selected at the last connect."""
        return self._auth.mode if self._auth else None

    @property
    def connected(self) -> bool:
        """Check the connected flag."""
        return self._connected

    def set_sandbox(self, sandbox_name: str | None) -> None:
        """Set or clear the sandbox attached to subsequent requests.

        Args:
            sandbox_name: Sandbox name, or None for the base model.
        """
        self._sandbox = sandbox_name
        self._log.debug("sandbox_set", sandbox=sandbox_name)

    def is_logged_in(self) -> bool:
        """Check that the session is connected and holds a session token."""
        return self._connected and bool(self._session_token)

    # Lifecycle

    def connect(self) -> None:
        """Authenticate and open a server session.

        Resolves credentials, then probes the server name endpoint. The
        session token is read from the TM1SessionId cookie when present,
        otherwise the token produced by the resolver (CAM flows) is kept.

        Raises:
            AuthenticationConfigError: If no credential combination matches.
            TransportError: If authentication or the probe fails.
        """
        with self._lock:
            self._log.info("connect_started")
            try:
                self._auth = self._resolver.resolve(self._config.credentials)
                self._session_token = self._auth.session_token
                response = self._retry.execute(
                    lambda: self._send("GET", SERVER_NAME_ENDPOINT),
                    log=self._log.bind(path=SERVER_NAME_ENDPOINT),
                )
            except AuthenticationConfigError:
                self._log.error("connect_failed", error="no usable credentials")
                raise
            except TM1Error as exc:
                self._reset_state()
                self._log.error("connect_failed", error=str(exc))
                msg = f"Failed to connect to TM1: {exc}"
                raise TransportError(
                    msg, status_code=getattr(exc, "status_code", None)
                ) from exc

            token = self._extract_session_token(response)
            if token:
                self._session_token = token
            self._connected = True

            self._log.info(
                "connect_complete",
                mode=self._auth.mode.name,
                session_established=bool(self._session_token),
                server_name=_value_field(self._decode_quietly(response)),
            )

    def disconnect(self) -> None:
        """Close the server session, best effort.

        Failures while notifying the server are logged and never raised,
        so cleanup code is never blocked by a failing teardown.
        """
        with self._lock:
            if not self._connected:
                self._reset_state()
                return

            try:
                response = self._send("POST", CLOSE_SESSION_ENDPOINT, body={})
                if not response.is_success:
                    self._log.warning(
                        "disconnect_failed",
                        status_code=response.status_code,
                        error=extract_error_message(response),
                    )
            except Exception as e:  # noqa: BLE001
                self._log.warning("disconnect_failed", error=str(e))

            self._reset_state()
            self._log.info("disconnected")

    def re_authenticate(self) -> None:
        """Drop the current session and connect again.

        Raises:
            TransportError: If the new connection fails.
        """
        self._log.info("reauthenticate")
        with self._lock:
            self.disconnect()
            self.connect()

    def close(self) -> None:
        """Stop monitors, disconnect and release the connection pool."""
        for monitor in list(self._monitors):
            monitor.stop()
        self._monitors.clear()
        self.disconnect()
        self._client.close()

    def __enter__(self) -> "TransportSession":
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _reset_state(self) -> None:
        self._session_token = None
        self._connected = False
        self._auth = None
        self._version = None
        self._client.cookies.clear()

    # Requests

    def request(  # noqa: PLR0913
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ResponseEnvelope:
        """Send a request under the retry and re-authentication policy.

        Args:
            method: HTTP method.
            path: Path relative to the service root.
            body: JSON-serializable body, or str/bytes sent as-is.
            headers: Per-call header overrides.
            params: Query parameters.
            timeout: Per-call timeout in seconds.

        Returns:
            Decoded response envelope.

        Raises:
            TM1TimeoutError: On a client-side timeout.
            TransportError: On any other failure.
        """
        log = self._log.bind(method=method, path=path)
        response = self._retry.execute(
            lambda: self._send(method, path, body, headers, params, timeout),
            reauthenticate=self.re_authenticate,
            log=log,
        )
        return self._envelope(response)

    def get(
        self,
        path: str,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ResponseEnvelope:
        """Send a GET request."""
        return self.request("GET", path, None, headers, params, timeout)

    def post(
        self,
        path: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ResponseEnvelope:
        """Send a POST request."""
        return self.request("POST", path, body, headers, params, timeout)

    def patch(
        self,
        path: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ResponseEnvelope:
        """Send a PATCH request."""
        return self.request("PATCH", path, body, headers, params, timeout)

    def put(
        self,
        path: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ResponseEnvelope:
        """Send a PUT request."""
        return self.request("PUT", path, body, headers, params, timeout)

    def delete(
        self,
        path: str,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ResponseEnvelope:
        """Send a DELETE request."""
        return self.request("DELETE", path, None, headers, params, timeout)

    def _build_headers(self, extra_headers: dict[str, str] | None) -> dict[str, str]:
        """Build request headers from the current session state.

        Args:
            extra_headers: Per-call headers from the caller.

        Returns:
            Complete headers dictionary.
        """
        headers = dict(BASE_HEADERS)
        headers[SESSION_CONTEXT_HEADER] = (
            self._config.session_context or DEFAULT_SESSION_CONTEXT
        )
        if self._auth:
            headers.update(self._auth.headers)
        if self._session_token:
            headers[SESSION_HEADER] = self._session_token
        if self._sandbox:
            headers[SANDBOX_HEADER] = self._sandbox
        if extra_headers:
            headers.update(extra_headers)
        return headers

    def _send(  # noqa: PLR0913
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Issue a single HTTP request with freshly built session headers."""
        request_headers = self._build_headers(headers)
        self._log.debug(
            "http_request",
            method=method,
            path=path,
            headers=redact_headers(request_headers),
        )

        content: str | bytes | None = None
        json_body: Any = None
        if isinstance(body, str | bytes):
            content = body
        elif body is not None:
            json_body = body

        return self._client.request(
            method,
            path,
            content=content,
            json=json_body,
            headers=request_headers,
            params=params,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )

    def _envelope(self, response: httpx.Response) -> ResponseEnvelope:
        """Decode a response into an envelope.

        Raises:
            TransportError: If a JSON response body cannot be decoded.
        """
        data: Any = None
        if response.content:
            content_type = response.headers.get("content-type", "")
            if "json" in content_type:
                try:
                    data = response.json()
                except ValueError as exc:
                    self._metrics.record_failure(FailureClass.MALFORMED_RESPONSE)
                    msg = f"Malformed JSON response (HTTP {response.status_code})"
                    raise TransportError(
                        msg,
                        status_code=response.status_code,
                        response_body=response.text,
                    ) from exc
            else:
                data = response.text

        return ResponseEnvelope(
            status=response.status_code,
            data=data,
            headers=dict(response.headers),
        )

    @staticmethod
    def _decode_quietly(response: httpx.Response) -> object:
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _extract_session_token(response: httpx.Response) -> str | None:
        for cookie in response.headers.get_list("set-cookie"):
            match = _SESSION_COOKIE_PATTERN.search(cookie)
            if match:
                return match.group(1)
        return None

    # Diagnostics

    def health_check(
        self, timeout_ms: int = DEFAULT_HEALTH_CHECK_TIMEOUT_MS
    ) -> HealthReport:
        """Probe the server with a bounded timeout. Never raises.

        Args:
            timeout_ms: Probe timeout in milliseconds.

        Returns:
            HealthReport with latency and server name when reachable.
        """
        start_ns = time.perf_counter_ns()
        try:
            response = self._send(
                "GET", SERVER_NAME_ENDPOINT, timeout=timeout_ms / 1000.0
            )
        except httpx.HTTPError as exc:
            return HealthReport(
                healthy=False,
                latency_ms=_elapsed_ms(start_ns),
                error=str(exc) or type(exc).__name__,
            )

        latency_ms = _elapsed_ms(start_ns)
        if not response.is_success:
            return HealthReport(
                healthy=False,
                latency_ms=latency_ms,
                error=extract_error_message(response),
            )

        return HealthReport(
            healthy=True,
            latency_ms=latency_ms,
            server_name=_value_field(self._decode_quietly(response)),
        )

    def test_connection(self) -> ConnectionDiagnostics:
        """Run health, authentication and session-liveness probes.

        Returns:
            ConnectionDiagnostics collecting the outcome of every probe.
        """
        errors: list[str] = []

        health = self.health_check()
        if not health.healthy:
            errors.append(f"Health check failed: {health.error}")

        authenticated = False
        user_name: str | None = None
        try:
            envelope = self.get(ACTIVE_USER_ENDPOINT)
            authenticated = True
            if isinstance(envelope.data, dict):
                user_name = envelope.data.get("Name")
        except TM1Error as exc:
            errors.append(f"Authentication probe failed: {exc}")

        session_active = False
        if self.is_logged_in():
            try:
                self.get(ACTIVE_SESSION_ENDPOINT)
                session_active = True
            except TM1Error as exc:
                errors.append(f"Session probe failed: {exc}")
        else:
            errors.append("No active session")

        diagnostics = ConnectionDiagnostics(
            health=health,
            authenticated=authenticated,
            session_active=session_active,
            user_name=user_name,
            session_id_present=bool(self._session_token),
            errors=errors,
        )
        self._log.info(
            "connection_tested",
            success=diagnostics.success,
            error_count=len(errors),
        )
        return diagnostics

    def start_connection_monitoring(
        self,
        interval_ms: int,
        on_change: Callable[[HealthReport], None],
    ) -> Callable[[], None]:
        """Probe health on a background thread and report transitions.

        Args:
            interval_ms: Delay between probes in milliseconds.
            on_change: Called with the report whenever health flips.

        Returns:
            Function that stops the monitor.
        """
        monitor = ConnectionMonitor(self.health_check, interval_ms, on_change)
        self._monitors.append(monitor)
        monitor.start()

        def stop() -> None:
            monitor.stop()
            if monitor in self._monitors:
                self._monitors.remove(monitor)

        return stop

    # Capabilities

    def server_version(self) -> str | None:
        """Get the server product version, cached per connection.

        Raises:
            TransportError: If the version cannot be read.
        """
        if self._version is None:
            envelope = self.get(PRODUCT_VERSION_ENDPOINT)
            self._version = _value_field(envelope.data)
        return self._version

    def check_capability(self, required_version: str) -> CapabilityCheck:
        """Check that the server meets a minimum product version.

        Args:
            required_version: Minimum version, e.g. "11.8".

        Returns:
            CapabilityCheck; unsupported when the version cannot be read.
        """
        try:
            version = self.server_version()
        except TM1Error as exc:
            self._log.warning("server_version_unavailable", error=str(exc))
            version = None
        return check_capability(version, required_version)
