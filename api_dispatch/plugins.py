"""Stock plugins: network logging, access tokens, activity tracking, status filtering."""

from __future__ import annotations

import logging
from collections.abc import Container
from enum import Enum
from typing import TYPE_CHECKING, Callable

from api_dispatch.errors import StatusCodeError
from api_dispatch.models import NetworkRequest, Response, describe_headers
from api_dispatch.plugin import PluginType, RequestView
from api_dispatch.result import Failure, Result, Success
from api_dispatch.target import AuthorizationType

if TYPE_CHECKING:
    from api_dispatch.target import TargetType


network_logger = logging.getLogger("api_dispatch.network")


def _log_output(message: str) -> None:
    network_logger.info(message)


class NetworkLoggerPlugin(PluginType):
    """Logs outgoing requests and incoming responses.

    Args:
        verbose: Also log request and response bodies, one record per item.
        curl: Log requests as cURL commands instead of the itemized form.
        output: Sink for log lines. Defaults to the ``api_dispatch.network`` logger.
        request_data_formatter: Renders request bodies (defaults to UTF-8 decoding).
        response_data_formatter: Transforms response bodies before decoding.
    """

    separator = ", "

    def __init__(
        self,
        verbose: bool = False,
        curl: bool = False,
        output: Callable[[str], None] | None = None,
        request_data_formatter: Callable[[bytes], str] | None = None,
        response_data_formatter: Callable[[bytes], bytes] | None = None,
    ) -> None:
        self.verbose = verbose
        self.curl = curl
        self._output = output or _log_output
        self._request_data_formatter = request_data_formatter
        self._response_data_formatter = response_data_formatter

    def will_send(self, request: RequestView, target: TargetType) -> None:
        if self.curl:
            self._output(request.curl_description())
            return
        self._output_items(self._log_network_request(request.request))

    def did_receive(self, result: Result, target: TargetType) -> None:
        if isinstance(result, Success):
            self._output_items(self._log_network_response(result.value, target))
        else:
            response = getattr(result.error, "response", None)
            self._output_items(self._log_network_response(response, target))

    def _output_items(self, items: list[str]) -> None:
        if self.verbose:
            for item in items:
                self._output(item)
        else:
            self._output(self.separator.join(items))

    @staticmethod
    def _format(identifier: str, message: str) -> str:
        return f"{identifier}: {message}"

    def _log_network_request(self, request: NetworkRequest | None) -> list[str]:
        if request is None:
            return [self._format("Request", "(invalid request)")]

        output = [
            self._format("Request", request.url),
            self._format("Request Headers", describe_headers(request.headers)),
            self._format("HTTP Request Method", request.method.value),
        ]
        if self.verbose and request.body is not None:
            if self._request_data_formatter is not None:
                body = self._request_data_formatter(request.body)
            else:
                body = request.body.decode("utf-8", errors="replace")
            output.append(self._format("Request Body", body))
        return output

    def _log_network_response(self, response: Response | None, target: TargetType) -> list[str]:
        if response is None:
            return [self._format("Response", f"Received empty network response for {target}.")]

        url = response.response.url if response.response is not None else None
        output = [self._format("Response", f"{response.status_code} {url or ''}".rstrip())]
        if self.verbose:
            data = response.data
            if self._response_data_formatter is not None:
                data = self._response_data_formatter(data)
            output.append(data.decode("utf-8", errors="replace"))
        return output


class AccessTokenPlugin(PluginType):
    """Adds an Authorization header for targets that ask for one.

    Targets opt in through an ``authorization_type`` attribute holding an
    AuthorizationType. Targets without it are left alone.
    """

    def __init__(self, token_closure: Callable[[], str]) -> None:
        self._token_closure = token_closure

    def prepare(self, request: NetworkRequest, target: TargetType) -> NetworkRequest:
        authorization_type = getattr(target, "authorization_type", AuthorizationType.NONE)
        if authorization_type is AuthorizationType.NONE:
            return request
        value = f"{authorization_type.value} {self._token_closure()}"
        return request.with_headers({"Authorization": value})


class NetworkActivityChange(str, Enum):
    BEGAN = "began"
    ENDED = "ended"


class NetworkActivityPlugin(PluginType):
    """Reports when requests begin and end, e.g. to drive an activity indicator."""

    def __init__(self, on_change: Callable[[NetworkActivityChange, TargetType], None]) -> None:
        self._on_change = on_change

    def will_send(self, request: RequestView, target: TargetType) -> None:
        self._on_change(NetworkActivityChange.BEGAN, target)

    def did_receive(self, result: Result, target: TargetType) -> None:
        self._on_change(NetworkActivityChange.ENDED, target)


class StatusCodeFilterPlugin(PluginType):
    """Turns successes with a status outside ``codes`` into StatusCodeError failures."""

    def __init__(self, codes: Container[int] = range(200, 300)) -> None:
        self._codes = codes

    def process(self, result: Result, target: TargetType) -> Result:
        if isinstance(result, Success) and result.value.status_code not in self._codes:
            return Failure(StatusCodeError(result.value))
        return result
