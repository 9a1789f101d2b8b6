"""Internal data models for api-dispatch.

All models use Pydantic v2. Requests and responses are frozen: plugins that
rewrite a request produce a copy instead of mutating the one they were given.
"""

from __future__ import annotations

from collections.abc import Container, Mapping
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from api_dispatch.errors import StatusCodeError
from api_dispatch.stubbing import StubClosure, delayed_stub, immediately_stub, never_stub


class Method(str, Enum):
    """HTTP methods."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"
    CONNECT = "CONNECT"


# =============================================================================
# Core HTTP Models
# =============================================================================


class NetworkRequest(BaseModel):
    """A concrete request derived from an Endpoint, ready for the transport.

    Query parameters are already folded into ``url``. Hashing covers every
    field so equal requests can key the inflight registry.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: Method = Field(description="HTTP method")
    url: str = Field(description="Fully qualified URL including the query string")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")
    body: bytes | None = Field(default=None, description="Request body, if any")

    def __hash__(self) -> int:
        return hash((self.method, self.url, tuple(sorted(self.headers.items())), self.body))

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def with_headers(self, headers: Mapping[str, str]) -> NetworkRequest:
        """Return a copy with ``headers`` merged in (new values win)."""
        merged = dict(self.headers)
        merged.update(headers)
        return self.model_copy(update={"headers": merged})


class ResponseMetadata(BaseModel):
    """Raw HTTP response metadata as reported by the transport.

    Header keys are lowercase. Header values are arrays for repeated headers.
    """

    model_config = ConfigDict(extra="forbid")

    status_code: int = Field(description="HTTP status code")
    url: str | None = Field(default=None, description="URL the response came from")
    headers: dict[str, list[str]] = Field(
        default_factory=dict, description="Response headers (lowercase keys, array values)"
    )
    http_version: str = Field(default="HTTP/1.1", description="Protocol version")

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> ResponseMetadata:
        headers: dict[str, list[str]] = {}
        for key, value in response.headers.multi_items():
            headers.setdefault(key.lower(), []).append(value)

        # httpx raises if a Response was built without a request attached
        try:
            url: str | None = str(response.request.url)
        except RuntimeError:
            url = None

        return cls(
            status_code=response.status_code,
            url=url,
            headers=headers,
            http_version=response.http_version,
        )


class Response(BaseModel):
    """The stable container every successful outcome carries.

    Bodies are kept as bytes. Decoding into domain objects happens outside
    the pipeline.
    """

    model_config = ConfigDict(extra="forbid")

    status_code: int = Field(description="HTTP status code")
    data: bytes = Field(default=b"", description="Response body")
    request: NetworkRequest | None = Field(default=None, description="Request that produced it")
    response: ResponseMetadata | None = Field(default=None, description="Raw response metadata")

    def __str__(self) -> str:
        return f"Status Code: {self.status_code}, Data Length: {len(self.data)}"

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")

    def filter_status_codes(self, codes: Container[int]) -> Response:
        """Return self if the status code is in ``codes``, else raise StatusCodeError."""
        if self.status_code not in codes:
            raise StatusCodeError(self)
        return self

    def filter_successful_status_codes(self) -> Response:
        return self.filter_status_codes(range(200, 300))


class ProgressResponse(BaseModel):
    """One progress update. A missing fraction counts as complete."""

    model_config = ConfigDict(extra="forbid")

    fraction_completed: float | None = Field(default=None, description="0.0 - 1.0")
    response: Response | None = Field(default=None, description="Final response, once known")

    @property
    def progress(self) -> float:
        if self.fraction_completed is None:
            return 1.0
        return self.fraction_completed

    @property
    def completed(self) -> bool:
        return self.progress == 1.0 and self.response is not None


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class StubMode(str, Enum):
    NEVER = "never"
    IMMEDIATE = "immediate"
    DELAYED = "delayed"


class TargetConfig(BaseModel):
    """Configuration for a single named target."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = Field(description="Base URL for the target")
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Headers to include (supports ${ENV_VAR} substitution)",
    )
    validate_status: bool = Field(
        default=False, alias="validate", description="Treat non-2xx live responses as failures"
    )


class StubConfig(BaseModel):
    """Stubbing configuration."""

    model_config = ConfigDict(extra="forbid")

    behavior: StubMode = Field(default=StubMode.NEVER, description="never, immediate or delayed")
    delay_seconds: float = Field(default=0.0, ge=0.0, description="Delay for delayed stubs")

    def closure(self) -> StubClosure:
        if self.behavior is StubMode.IMMEDIATE:
            return immediately_stub
        if self.behavior is StubMode.DELAYED:
            return delayed_stub(self.delay_seconds)
        return never_stub


class LoggingConfig(BaseModel):
    """NetworkLoggerPlugin configuration."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=False, description="Install a NetworkLoggerPlugin")
    verbose: bool = Field(default=False, description="Log bodies too")
    curl: bool = Field(default=False, description="Log requests as cURL commands")


class DispatcherConfig(BaseModel):
    """Top-level runtime configuration file structure."""

    model_config = ConfigDict(extra="forbid")

    targets: dict[str, TargetConfig] = Field(
        default_factory=dict, description="Target name -> config mapping"
    )
    default_headers: dict[str, str] = Field(
        default_factory=dict, description="Headers added to every endpoint"
    )
    stub: StubConfig = Field(default_factory=StubConfig, description="Stubbing settings")
    track_inflights: bool = Field(default=False, description="Coalesce identical concurrent requests")
    timeout: float = Field(default=30.0, gt=0.0, description="Transport timeout in seconds")
    max_workers: int = Field(default=8, ge=1, description="Transport worker threads")
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Network logging")


def describe_headers(headers: Mapping[str, Any]) -> str:
    """Render headers deterministically for log output."""
    return "{" + ", ".join(f"{key!r}: {value!r}" for key, value in sorted(headers.items())) + "}"
