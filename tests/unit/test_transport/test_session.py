"""Unit tests for TransportSession lifecycle and requests."""

import base64
import json
from collections.abc import Iterator

import httpx
import pytest

from tests.helpers.http import json_response, make_session, server_name_ok
from tm1rest.auth.models import AuthenticationMode, CredentialFields
from tm1rest.errors import AuthenticationConfigError, TM1TimeoutError, TransportError
from tm1rest.transport.metrics import TransportMetrics


@pytest.fixture(autouse=True)
def reset_metrics() -> Iterator[None]:
    """Reset metrics singleton around each test."""
    TransportMetrics.reset()
    yield
    TransportMetrics.reset()


def _tm1(routes: dict[str, httpx.Response]):
    """Handler answering by path suffix, 404 otherwise."""

    def handler(request: httpx.Request) -> httpx.Response:
        for suffix, response in routes.items():
            if request.url.path.endswith(suffix):
                return httpx.Response(
                    response.status_code,
                    headers=response.headers,
                    content=response.content,
                )
        return json_response(404, {"error": {"message": "not found"}})

    return handler


class TestConnect:
    """Tests for connect and session token handling."""

    def test_connect_reads_session_cookie(self) -> None:
        """Test that connect stores the TM1SessionId cookie value."""
        session, recorder = make_session(
            _tm1({"/Configuration/ServerName": server_name_ok("abc")})
        )

        session.connect()

        assert session.connected is True
        assert session.is_logged_in() is True
        assert session.session_id == "abc"
        assert session.auth_mode is AuthenticationMode.BASIC
        assert recorder.paths == ["/Configuration/ServerName"]

    def test_connect_sends_basic_auth_and_context(self) -> None:
        """Test that the probe carries credentials and session context."""
        session, recorder = make_session(
            _tm1({"/Configuration/ServerName": server_name_ok()}),
            session_context="budget-app",
        )

        session.connect()

        probe = recorder.requests[0]
        expected = base64.b64encode(b"admin:apple").decode()
        assert probe.headers["Authorization"] == f"Basic {expected}"
        assert probe.headers["TM1-SessionContext"] == "budget-app"

    def test_connect_without_credentials_raises(self) -> None:
        """Test that missing credentials raise before any request."""
        session, recorder = make_session(
            _tm1({}), credentials=CredentialFields()
        )

        with pytest.raises(AuthenticationConfigError):
            session.connect()

        assert recorder.requests == []
        assert session.connected is False

    def test_connect_failure_wraps_error(self) -> None:
        """Test that a failing probe is retried then reported as TransportError."""
        sleeps: list[float] = []
        session, recorder = make_session(
            _tm1({"/Configuration/ServerName": json_response(503)}), sleeps=sleeps
        )

        with pytest.raises(TransportError, match="Failed to connect to TM1"):
            session.connect()

        assert len(recorder.requests) == 4
        assert sleeps == [1.0, 2.0, 4.0]
        assert session.connected is False
        assert session.session_id is None

    def test_connect_rejected_credentials(self) -> None:
        """Test that a 401 at connect is not answered by re-authentication."""
        session, recorder = make_session(
            _tm1({"/Configuration/ServerName": json_response(401)})
        )

        with pytest.raises(TransportError) as exc_info:
            session.connect()

        assert exc_info.value.status_code == 401
        assert len(recorder.requests) == 1

    def test_cam_session_token_used_without_cookie(self) -> None:
        """Test that a CAM session id is kept when the probe sets no cookie."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "cam.test":
                return json_response(200, {"sessionId": "cam-1"})
            return json_response(200, {"value": "Planning Sample"})

        session, recorder = make_session(
            handler,
            credentials=CredentialFields(
                auth_url="https://cam.test/auth", cam_passport="pp"
            ),
        )

        session.connect()

        assert session.session_id == "cam-1"
        assert recorder.requests[1].headers["TM1SessionId"] == "cam-1"

    def test_context_manager_connects_and_closes(self) -> None:
        """Test that the context manager opens and closes the server session."""
        session, recorder = make_session(
            _tm1(
                {
                    "/Configuration/ServerName": server_name_ok(),
                    "/ActiveSession/tm1.Close": json_response(204),
                }
            )
        )

        with session as active:
            assert active.connected is True

        assert session.connected is False
        assert recorder.paths[-1] == "/ActiveSession/tm1.Close"


class TestDisconnect:
    """Tests for disconnect."""

    def test_disconnect_closes_server_session(self) -> None:
        """Test that disconnect posts the close action once and clears state."""
        session, recorder = make_session(
            _tm1(
                {
                    "/Configuration/ServerName": server_name_ok(),
                    "/ActiveSession/tm1.Close": json_response(204),
                }
            )
        )
        session.connect()

        session.disconnect()

        assert len(recorder.requests_to("/ActiveSession/tm1.Close")) == 1
        assert session.connected is False
        assert session.session_id is None
        assert session.auth_mode is None

    def test_disconnect_swallows_failures(self) -> None:
        """Test that a failing close request never raises."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("tm1.Close"):
                raise httpx.ConnectError("gone", request=request)
            return server_name_ok()

        session, _ = make_session(handler)
        session.connect()

        session.disconnect()

        assert session.connected is False

    def test_disconnect_when_not_connected(self) -> None:
        """Test that disconnect without a session sends nothing."""
        session, recorder = make_session(_tm1({}))

        session.disconnect()

        assert recorder.requests == []


class TestRequests:
    """Tests for the HTTP verb primitives."""

    def test_session_and_sandbox_headers(self) -> None:
        """Test that requests carry the session token and sandbox."""
        session, recorder = make_session(
            _tm1(
                {
                    "/Configuration/ServerName": server_name_ok("abc"),
                    "/Cubes": json_response(200, {"value": []}),
                }
            )
        )
        session.connect()
        session.set_sandbox("what-if")

        session.get("/Cubes")

        request = recorder.requests_to("/Cubes")[0]
        assert request.headers["TM1SessionId"] == "abc"
        assert request.headers["TM1-Sandbox"] == "what-if"

    def test_sandbox_cleared(self) -> None:
        """Test that clearing the sandbox removes the header."""
        session, recorder = make_session(
            _tm1({"/Cubes": json_response(200, {"value": []})}), sandbox="initial"
        )
        assert session.sandbox == "initial"

        session.set_sandbox(None)
        session.get("/Cubes")

        assert "TM1-Sandbox" not in recorder.requests[0].headers

    def test_per_call_headers_override(self) -> None:
        """Test that caller headers are merged last."""
        session, recorder = make_session(
            _tm1({"/Cubes": json_response(200, {"value": []})})
        )

        session.get("/Cubes", headers={"Accept": "text/plain"})

        assert recorder.requests[0].headers["Accept"] == "text/plain"

    def test_json_body(self) -> None:
        """Test that dict bodies are JSON encoded."""
        session, recorder = make_session(
            _tm1({"/Cubes": json_response(201, {"Name": "Sales"})})
        )

        envelope = session.post("/Cubes", {"Name": "Sales"})

        assert json.loads(recorder.requests[0].content) == {"Name": "Sales"}
        assert envelope.status == 201
        assert envelope.data == {"Name": "Sales"}
        assert envelope.is_success is True

    def test_string_body_sent_verbatim(self) -> None:
        """Test that str bodies are sent without re-encoding."""
        session, recorder = make_session(_tm1({"/ExecuteMDX": json_response(200, {})}))

        session.post("/ExecuteMDX", '{"MDX": "SELECT {} ON 0 FROM [Sales]"}')

        assert recorder.requests[0].content == b'{"MDX": "SELECT {} ON 0 FROM [Sales]"}'

    def test_verbs(self) -> None:
        """Test that every verb issues the matching method."""
        session, recorder = make_session(_tm1({"/Cubes('Sales')": json_response(204)}))

        session.get("/Cubes('Sales')")
        session.post("/Cubes('Sales')")
        session.patch("/Cubes('Sales')", {"Rules": ""})
        session.put("/Cubes('Sales')", {"Rules": ""})
        session.delete("/Cubes('Sales')")

        assert [r.method for r in recorder.requests] == [
            "GET",
            "POST",
            "PATCH",
            "PUT",
            "DELETE",
        ]

    def test_empty_body_decodes_to_none(self) -> None:
        """Test that a 204 has no data."""
        session, _ = make_session(_tm1({"/Cubes": json_response(204)}))

        assert session.delete("/Cubes").data is None

    def test_text_body(self) -> None:
        """Test that non-JSON bodies are returned as text."""
        session, _ = make_session(
            _tm1({"/Cubes/$count": httpx.Response(200, text="12")})
        )

        assert session.get("/Cubes/$count").data == "12"

    def test_malformed_json_raises(self) -> None:
        """Test that an undecodable JSON body raises TransportError."""
        session, _ = make_session(
            _tm1(
                {
                    "/Cubes": httpx.Response(
                        200,
                        content=b"{broken",
                        headers={"content-type": "application/json"},
                    )
                }
            )
        )

        with pytest.raises(TransportError, match="Malformed JSON"):
            session.get("/Cubes")

        failures = TransportMetrics.get_instance().http_failures_total
        assert failures == {"MALFORMED_RESPONSE": 1}

    def test_timeout_raises_timeout_error(self) -> None:
        """Test that a transport timeout surfaces as TM1TimeoutError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        session, recorder = make_session(handler)

        with pytest.raises(TM1TimeoutError):
            session.get("/Cubes", timeout=0.5)

        assert len(recorder.requests) == 1

    def test_404_error_message(self) -> None:
        """Test that the server error message is surfaced."""
        session, _ = make_session(
            _tm1(
                {
                    "/Cubes('Nope')": json_response(
                        404, {"error": {"message": "Cube 'Nope' not found"}}
                    )
                }
            )
        )

        with pytest.raises(TransportError, match="Cube 'Nope' not found"):
            session.get("/Cubes('Nope')")


class TestReauthentication:
    """Tests for the single re-authentication on 401."""

    def test_401_reconnects_and_reissues(self) -> None:
        """Test that a 401 reconnects once and the retry carries the new token."""
        state = {"probes": 0, "cubes": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path.endswith("/Configuration/ServerName"):
                state["probes"] += 1
                return server_name_ok(f"session-{state['probes']}")
            if path.endswith("tm1.Close"):
                return json_response(204)
            state["cubes"] += 1
            if state["cubes"] == 1:
                return json_response(401)
            return json_response(200, {"value": []})

        session, recorder = make_session(handler)
        session.connect()

        envelope = session.get("/Cubes")

        assert envelope.status == 200
        assert session.session_id == "session-2"
        cube_requests = recorder.requests_to("/Cubes")
        assert [r.headers["TM1SessionId"] for r in cube_requests] == [
            "session-1",
            "session-2",
        ]
        assert len(recorder.requests_to("tm1.Close")) == 1
        assert TransportMetrics.get_instance().http_reauth_total == 1

    def test_persistent_401_surfaces(self) -> None:
        """Test that a second 401 is raised after exactly one reconnect."""

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path.endswith("/Configuration/ServerName"):
                return server_name_ok()
            if path.endswith("tm1.Close"):
                return json_response(204)
            return json_response(401)

        session, recorder = make_session(handler)
        session.connect()

        with pytest.raises(TransportError) as exc_info:
            session.get("/Cubes")

        assert exc_info.value.status_code == 401
        assert len(recorder.requests_to("/Cubes")) == 2
        assert len(recorder.requests_to("/Configuration/ServerName")) == 2
