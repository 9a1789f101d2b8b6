"""Endpoint - the resolved, immutable request blueprint derived from a Target.

Endpoints are created fresh for every dispatch and never mutated. ``adding``
and ``replacing`` return new endpoints that share the untouched fields.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Callable, Union
from urllib.parse import quote

from api_dispatch.errors import RequestMappingError
from api_dispatch.models import Method, NetworkRequest, ResponseMetadata
from api_dispatch.request_builder import build_network_request
from api_dispatch.target import TargetType
from api_dispatch.tasks import RequestPlain, Task

# Characters allowed unescaped in a URL path (RFC 3986 pchar plus "/").
# "%" is kept so paths that are already escaped pass through untouched.
_PATH_SAFE = "/:@!$&'()*+,;=%~"


# =============================================================================
# Sample Responses
# =============================================================================


@dataclass(frozen=True)
class NetworkResponse:
    """Stub: the network returned ``status_code`` with ``data``."""

    status_code: int
    data: bytes


@dataclass(frozen=True)
class FullResponse:
    """Stub: a fully customized response."""

    metadata: ResponseMetadata
    data: bytes


@dataclass(frozen=True)
class NetworkError:
    """Stub: the request failed before any response arrived (e.g. a timeout)."""

    error: BaseException


SampleResponse = Union[NetworkResponse, FullResponse, NetworkError]
SampleResponseClosure = Callable[[], SampleResponse]


# =============================================================================
# Endpoint
# =============================================================================


@dataclass(frozen=True, eq=False)
class Endpoint:
    """A fully qualified URL plus method, task, headers and stub producer.

    Equality follows the materialized request when there is one and falls back
    to the URL hash when neither side materializes. Inflight coalescing keys on
    this equality, including the weak fallback where two unmappable endpoints
    with colliding hashes compare equal.
    """

    url: str
    sample_response_closure: SampleResponseClosure
    method: Method = Method.GET
    task: Task = RequestPlain()
    http_header_fields: Mapping[str, str] | None = None

    def adding(self, new_http_header_fields: Mapping[str, str] | None) -> Endpoint:
        """Return a copy with headers merged in (new values win)."""
        return replace(self, http_header_fields=self._add(new_http_header_fields))

    def replacing(self, task: Task) -> Endpoint:
        """Return a copy with ``task`` replaced."""
        return replace(self, task=task)

    def _add(self, headers: Mapping[str, str] | None) -> Mapping[str, str] | None:
        if not headers:
            return self.http_header_fields
        merged = dict(self.http_header_fields or {})
        merged.update(headers)
        return merged

    @property
    def url_request(self) -> NetworkRequest | None:
        """The materialized request, or None if the endpoint cannot be mapped."""
        try:
            return build_network_request(self)
        except RequestMappingError:
            return None

    def __hash__(self) -> int:
        request = self.url_request
        if request is not None:
            return hash(request)
        return hash(self.url)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Endpoint):
            return NotImplemented
        lhs = self.url_request
        rhs = other.url_request
        if lhs is None and rhs is None:
            return hash(self) == hash(other)
        if lhs is None or rhs is None:
            return False
        return lhs == rhs


def target_url(target: TargetType) -> str:
    """Join the target's base URL and escaped path."""
    if not target.path:
        return target.base_url
    path = quote(target.path.lstrip("/"), safe=_PATH_SAFE)
    return f"{target.base_url.rstrip('/')}/{path}"


def default_endpoint_mapping(target: TargetType) -> Endpoint:
    """Endpoint closure used when the Dispatcher is not given one.

    Stubs answer HTTP 200 with the target's sample data.
    """
    sample_data = target.sample_data
    return Endpoint(
        url=target_url(target),
        sample_response_closure=lambda: NetworkResponse(200, sample_data),
        method=target.method,
        task=target.task,
        http_header_fields=target.headers,
    )


def endpoint_mapping_with_defaults(
    default_headers: Mapping[str, str],
) -> Callable[[TargetType], Endpoint]:
    """Endpoint closure adding ``default_headers``; headers declared by the target win."""
    defaults = dict(default_headers)

    def closure(target: TargetType) -> Endpoint:
        endpoint = default_endpoint_mapping(target)
        declared = endpoint.http_header_fields or {}
        return endpoint.adding({k: v for k, v in defaults.items() if k not in declared})

    return closure
