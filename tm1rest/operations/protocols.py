"""Protocol interface for the transport used by the operation registry."""

from typing import Any, Protocol, runtime_checkable

from tm1rest.transport.models import ResponseEnvelope


@runtime_checkable
class OperationTransport(Protocol):
    """The slice of TransportSession the registry depends on.

    Any object exposing ``get`` and ``post`` with these signatures can back
    an AsyncOperationRegistry, which keeps the registry testable without a
    live server.
    """

    def get(self, path: str) -> ResponseEnvelope:
        """Send a GET request.

        Raises:
            TransportError: If the request fails.
        """
        ...

    def post(self, path: str, body: Any = None) -> ResponseEnvelope:
        """Send a POST request.

        Raises:
            TransportError: If the request fails.
        """
        ...
