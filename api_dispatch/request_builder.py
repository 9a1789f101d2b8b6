"""Request Builder - Materializes an Endpoint into a NetworkRequest.

Upload and download tasks only contribute method, URL and headers here; the
transport handles their payloads. Encoding failures and malformed URLs become
RequestMappingError. Using a query-string encoding as a composite body
encoding is a contract violation and raises EncodingContractError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

import httpx

from api_dispatch.encoding import QUERY_STRING_ENCODING, URLEncoding
from api_dispatch.errors import (
    EncodingContractError,
    ParameterEncodingError,
    RequestMappingError,
)
from api_dispatch.models import NetworkRequest
from api_dispatch.result import Failure, Result, Success
from api_dispatch.tasks import (
    DownloadDestination,
    DownloadParameters,
    RequestCompositeData,
    RequestCompositeParameters,
    RequestData,
    RequestParameters,
    RequestPlain,
    UploadCompositeMultipart,
    UploadFile,
    UploadMultipart,
)

if TYPE_CHECKING:
    from api_dispatch.endpoint import Endpoint


RequestResultClosure = Callable[[Result], None]


def _parse_url(url: str) -> str:
    """Validate that ``url`` is an absolute address with scheme and host."""
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as e:
        raise RequestMappingError(url) from e
    if not parsed.scheme or not parsed.host:
        raise RequestMappingError(url)
    return url


def build_network_request(endpoint: Endpoint) -> NetworkRequest:
    """Build the NetworkRequest for ``endpoint``.

    Raises:
        RequestMappingError: If the URL is malformed or parameters fail to encode.
        EncodingContractError: If a composite task uses a query-string body encoding.
    """
    request = NetworkRequest(
        method=endpoint.method,
        url=_parse_url(endpoint.url),
        headers=dict(endpoint.http_header_fields or {}),
    )
    task = endpoint.task

    try:
        if isinstance(task, (RequestPlain, UploadFile, UploadMultipart, DownloadDestination)):
            return request
        if isinstance(task, RequestData):
            return request.model_copy(update={"body": task.data})
        if isinstance(task, RequestParameters):
            return task.encoding.encode(request, task.parameters)
        if isinstance(task, UploadCompositeMultipart):
            return QUERY_STRING_ENCODING.encode(request, task.url_parameters)
        if isinstance(task, DownloadParameters):
            return task.encoding.encode(request, task.parameters)
        if isinstance(task, RequestCompositeData):
            request = request.model_copy(update={"body": task.body_data})
            return QUERY_STRING_ENCODING.encode(request, task.url_parameters)
        if isinstance(task, RequestCompositeParameters):
            if isinstance(task.body_encoding, URLEncoding) and task.body_encoding.writes_query_string:
                raise EncodingContractError(
                    f"{task.body_encoding!r} is disallowed as a body encoding; "
                    "use URLEncoding(destination=Destination.HTTP_BODY) or JSONEncoding"
                )
            request = task.body_encoding.encode(request, task.body_parameters)
            return QUERY_STRING_ENCODING.encode(request, task.url_parameters)
    except ParameterEncodingError as e:
        raise RequestMappingError(endpoint.url) from e

    raise TypeError(f"Unsupported task: {task!r}")


def materialize(endpoint: Endpoint) -> Result:
    """Build the request for ``endpoint`` as a Success or a RequestMappingError Failure."""
    try:
        return Success(build_network_request(endpoint))
    except RequestMappingError as e:
        return Failure(e)


def default_request_mapping(endpoint: Endpoint, closure: RequestResultClosure) -> None:
    """Request closure used when the Dispatcher is not given one."""
    closure(materialize(endpoint))
