"""Task descriptors - how a request carries its parameters and payload.

Each variant is a frozen dataclass. Consumers branch with isinstance; the set
of variants is closed (see ``Task``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from api_dispatch.encoding import ParameterEncoding


@dataclass(frozen=True)
class MultipartFormData:
    """One part of a multipart body.

    Parts without a filename are sent as plain form fields.
    """

    name: str
    data: bytes | Path
    filename: str | None = None
    mime_type: str | None = None

    def read(self) -> bytes:
        if isinstance(self.data, Path):
            return self.data.read_bytes()
        return self.data

    @property
    def is_file(self) -> bool:
        return self.filename is not None or isinstance(self.data, Path)


@dataclass(frozen=True)
class RequestPlain:
    """A request with no additional data."""


@dataclass(frozen=True)
class RequestData:
    """A request body set with raw bytes."""

    data: bytes


@dataclass(frozen=True)
class RequestParameters:
    """A request whose parameters are applied by ``encoding``."""

    parameters: dict[str, Any]
    encoding: ParameterEncoding


@dataclass(frozen=True)
class RequestCompositeData:
    """Raw body bytes combined with query-string parameters."""

    body_data: bytes
    url_parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RequestCompositeParameters:
    """Body parameters and query-string parameters encoded independently.

    ``body_encoding`` must not write to the query string.
    """

    body_parameters: dict[str, Any]
    body_encoding: ParameterEncoding
    url_parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UploadFile:
    """A file upload. The transport reads the file."""

    path: Path


@dataclass(frozen=True)
class UploadMultipart:
    """A multipart upload."""

    parts: tuple[MultipartFormData, ...]


@dataclass(frozen=True)
class UploadCompositeMultipart:
    """A multipart upload combined with query-string parameters."""

    parts: tuple[MultipartFormData, ...]
    url_parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DownloadDestination:
    """A download streamed into ``destination``."""

    destination: Path


@dataclass(frozen=True)
class DownloadParameters:
    """A download with parameters applied by ``encoding``."""

    parameters: dict[str, Any]
    encoding: ParameterEncoding
    destination: Path


Task = Union[
    RequestPlain,
    RequestData,
    RequestParameters,
    RequestCompositeData,
    RequestCompositeParameters,
    UploadFile,
    UploadMultipart,
    UploadCompositeMultipart,
    DownloadDestination,
    DownloadParameters,
]
