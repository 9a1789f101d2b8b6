"""Parameter encodings - serialize parameter mappings into a NetworkRequest.

An encoding either appends a query string to the request URL or writes the
request body, depending on its declared destination.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from enum import Enum
from typing import Any
from urllib.parse import quote, urlsplit, urlunsplit

from api_dispatch.errors import ParameterEncodingError
from api_dispatch.models import Method, NetworkRequest

# RFC 3986 sub-delimiters and gen-delimiters are escaped inside query
# components, except "/" and "?" which are allowed there.
_QUERY_SAFE = "/?"

_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=utf-8"
_JSON_CONTENT_TYPE = "application/json"


class Destination(str, Enum):
    """Where URLEncoding writes its output."""

    METHOD_DEPENDENT = "method_dependent"
    QUERY_STRING = "query_string"
    HTTP_BODY = "http_body"


class ArrayEncoding(str, Enum):
    BRACKETS = "brackets"  # key[]=a&key[]=b
    NO_BRACKETS = "no_brackets"  # key=a&key=b


class BoolEncoding(str, Enum):
    NUMERIC = "numeric"  # 1 / 0
    LITERAL = "literal"  # true / false


class ParameterEncoding(ABC):
    """Strategy for folding a parameter mapping into a request."""

    @abstractmethod
    def encode(self, request: NetworkRequest, parameters: Mapping[str, Any] | None) -> NetworkRequest:
        """Return a copy of ``request`` with ``parameters`` applied.

        Raises:
            ParameterEncodingError: If the parameters cannot be encoded.
        """

    @property
    def writes_query_string(self) -> bool:
        """True if this encoding may write into the query string."""
        return False


def _with_default_content_type(request: NetworkRequest, content_type: str) -> dict[str, str]:
    headers = dict(request.headers)
    if request.header("Content-Type") is None:
        headers["Content-Type"] = content_type
    return headers


def append_query(url: str, query: str) -> str:
    """Append an already escaped query string to ``url``, keeping any existing query."""
    if not query:
        return url
    parts = urlsplit(url)
    merged = f"{parts.query}&{query}" if parts.query else query
    return urlunsplit((parts.scheme, parts.netloc, parts.path, merged, parts.fragment))


class URLEncoding(ParameterEncoding):
    """Form/query-string encoding.

    METHOD_DEPENDENT sends parameters in the query string for GET, HEAD and
    DELETE and in a form-encoded body for every other method.
    """

    _QUERY_METHODS = frozenset({Method.GET, Method.HEAD, Method.DELETE})

    def __init__(
        self,
        destination: Destination = Destination.METHOD_DEPENDENT,
        array_encoding: ArrayEncoding = ArrayEncoding.BRACKETS,
        bool_encoding: BoolEncoding = BoolEncoding.NUMERIC,
    ) -> None:
        self.destination = destination
        self.array_encoding = array_encoding
        self.bool_encoding = bool_encoding

    def __repr__(self) -> str:
        return f"URLEncoding(destination={self.destination.value})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, URLEncoding):
            return NotImplemented
        return (self.destination, self.array_encoding, self.bool_encoding) == (
            other.destination,
            other.array_encoding,
            other.bool_encoding,
        )

    def __hash__(self) -> int:
        return hash((self.destination, self.array_encoding, self.bool_encoding))

    @property
    def writes_query_string(self) -> bool:
        return self.destination is not Destination.HTTP_BODY

    def encodes_in_url(self, method: Method) -> bool:
        if self.destination is Destination.QUERY_STRING:
            return True
        if self.destination is Destination.HTTP_BODY:
            return False
        return method in self._QUERY_METHODS

    def encode(self, request: NetworkRequest, parameters: Mapping[str, Any] | None) -> NetworkRequest:
        if not parameters:
            return request

        query = self.query(parameters)
        if self.encodes_in_url(request.method):
            return request.model_copy(update={"url": append_query(request.url, query)})

        return request.model_copy(
            update={
                "headers": _with_default_content_type(request, _FORM_CONTENT_TYPE),
                "body": query.encode("utf-8"),
            }
        )

    def query(self, parameters: Mapping[str, Any]) -> str:
        """Serialize ``parameters`` into an escaped query string, keys sorted."""
        components: list[tuple[str, str]] = []
        for key in sorted(parameters):
            components.extend(self.query_components(key, parameters[key]))
        return "&".join(f"{name}={value}" for name, value in components)

    def query_components(self, key: str, value: Any) -> list[tuple[str, str]]:
        components: list[tuple[str, str]] = []
        if isinstance(value, Mapping):
            for nested_key in sorted(value):
                components.extend(self.query_components(f"{key}[{nested_key}]", value[nested_key]))
        elif isinstance(value, (list, tuple)):
            array_key = f"{key}[]" if self.array_encoding is ArrayEncoding.BRACKETS else key
            for item in value:
                components.extend(self.query_components(array_key, item))
        elif isinstance(value, bool):
            if self.bool_encoding is BoolEncoding.NUMERIC:
                rendered = "1" if value else "0"
            else:
                rendered = "true" if value else "false"
            components.append((self.escape(key), rendered))
        else:
            components.append((self.escape(key), self.escape(str(value))))
        return components

    @staticmethod
    def escape(value: str) -> str:
        return quote(value, safe=_QUERY_SAFE)


class JSONEncoding(ParameterEncoding):
    """Writes the parameters as a JSON document in the request body."""

    def __init__(self, pretty: bool = False) -> None:
        self.pretty = pretty

    def __repr__(self) -> str:
        return f"JSONEncoding(pretty={self.pretty})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JSONEncoding):
            return NotImplemented
        return self.pretty == other.pretty

    def __hash__(self) -> int:
        return hash(("json", self.pretty))

    def encode(self, request: NetworkRequest, parameters: Mapping[str, Any] | None) -> NetworkRequest:
        if parameters is None:
            return request

        try:
            document = json.dumps(parameters, indent=2 if self.pretty else None)
        except (TypeError, ValueError) as e:
            raise ParameterEncodingError(f"Parameters are not JSON serializable: {e}") from e

        return request.model_copy(
            update={
                "headers": _with_default_content_type(request, _JSON_CONTENT_TYPE),
                "body": document.encode("utf-8"),
            }
        )


QUERY_STRING_ENCODING = URLEncoding(destination=Destination.QUERY_STRING)
