"""Errors - The closed failure taxonomy of the dispatch pipeline.

Every ordinary failure (mapping, transport, stub) is delivered to the caller
as a ``Failure`` wrapping one of the ``DispatchError`` subclasses below. They
are never raised out of ``Dispatcher.dispatch``.

``ContractError`` subclasses are different: they signal a programming mistake
by the integrator (a misconfigured stub closure, a query-string encoding used
for a request body) and propagate as ordinary exceptions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from api_dispatch.models import Response


class DispatchError(Exception):
    """Base class for failures delivered through the completion channel."""

    message = "Dispatch failed."

    def __init__(self, response: Response | None = None) -> None:
        super().__init__(self.message)
        self._response = response

    @property
    def response(self) -> Response | None:
        """The response the failure is attached to, if any."""
        return self._response


class ImageMappingError(DispatchError):
    """A response body could not be mapped to an image."""

    message = "Failed to map data to an Image."


class JSONMappingError(DispatchError):
    """A response body could not be mapped to a JSON structure."""

    message = "Failed to map data to JSON."


class StringMappingError(DispatchError):
    """A response body could not be mapped to a string."""

    message = "Failed to map data to a String."


class StatusCodeError(DispatchError):
    """A response status code fell outside the accepted range."""

    message = "Status code didn't fall within the given range."


class UnderlyingError(DispatchError):
    """A transport or stub failure wrapping an opaque external cause."""

    def __init__(self, error: BaseException, response: Response | None = None) -> None:
        self.message = str(error) or type(error).__name__
        super().__init__(response)
        self.error = error


class RequestMappingError(DispatchError):
    """An Endpoint could not be turned into a NetworkRequest."""

    message = "Failed to map Endpoint to a NetworkRequest."

    def __init__(self, url: str) -> None:
        super().__init__(None)
        self.url = url

    def __str__(self) -> str:
        return f"{self.message} ({self.url})"


class UnknownTransportError(Exception):
    """The transport produced neither a response nor an error."""

    def __init__(self) -> None:
        super().__init__("The transport finished without a response or an error.")


class RequestCancelledError(Exception):
    """The shared operation behind a dispatch was cancelled."""

    def __init__(self) -> None:
        super().__init__("The request was cancelled.")


class ParameterEncodingError(Exception):
    """Parameters could not be encoded into a request."""


class ContractError(Exception):
    """Base class for integrator programming errors. Never delivered as a failure."""


class EncodingContractError(ContractError):
    """A query-string encoding was used as the body encoding of a composite task."""


class StubContractError(ContractError):
    """A stub was requested for a behaviour that has no timing strategy."""
