"""Plugins - observers and rewriters hooked into every dispatch.

Hook order for one dispatch:
    1. prepare(request, target)     -> request   (each plugin gets the previous output)
    2. will_send(view, target)                   (read-only, before bytes leave or the stub timer starts)
    3. did_receive(result, target)               (read-only)
    4. process(result, target)      -> result    (each plugin gets the previous output)

Hooks run inline on whatever thread the dispatch is on and must not block.
"""

from __future__ import annotations

import shlex
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from api_dispatch.models import NetworkRequest
from api_dispatch.result import Result

if TYPE_CHECKING:
    from api_dispatch.target import TargetType


@dataclass(frozen=True)
class RequestView:
    """Read-only view of the request handed to ``will_send``.

    ``is_stub`` tells observers the request will be answered by a stub.
    """

    request: NetworkRequest | None
    is_stub: bool = False

    def curl_description(self) -> str:
        """Render the request as an equivalent cURL command."""
        if self.request is None:
            return "$ curl command could not be created"

        components = ["$ curl -v", f"-X {self.request.method.value}"]
        for key, value in sorted(self.request.headers.items()):
            components.append(f"-H {shlex.quote(f'{key}: {value}')}")
        if self.request.body is not None:
            body = self.request.body.decode("utf-8", errors="replace")
            components.append(f"-d {shlex.quote(body)}")
        components.append(shlex.quote(self.request.url))
        return " \\\n\t".join(components)


class PluginType:
    """Base class for plugins. Every hook defaults to a no-op."""

    def prepare(self, request: NetworkRequest, target: TargetType) -> NetworkRequest:
        """Called to modify a request before sending."""
        return request

    def will_send(self, request: RequestView, target: TargetType) -> None:
        """Called immediately before a request is sent over the network (or stubbed)."""

    def did_receive(self, result: Result, target: TargetType) -> None:
        """Called after an outcome arrives, before the completion runs."""

    def process(self, result: Result, target: TargetType) -> Result:
        """Called to modify an outcome before completion."""
        return result


class PluginChain:
    """An ordered, immutable list of plugins applied in registration order."""

    def __init__(self, plugins: Iterable[PluginType] = ()) -> None:
        self._plugins: tuple[PluginType, ...] = tuple(plugins)

    @property
    def plugins(self) -> tuple[PluginType, ...]:
        return self._plugins

    def __len__(self) -> int:
        return len(self._plugins)

    def __iter__(self):
        return iter(self._plugins)

    def prepare(self, request: NetworkRequest, target: TargetType) -> NetworkRequest:
        for plugin in self._plugins:
            request = plugin.prepare(request, target)
        return request

    def will_send(self, request: RequestView, target: TargetType) -> None:
        for plugin in self._plugins:
            plugin.will_send(request, target)

    def did_receive(self, result: Result, target: TargetType) -> None:
        for plugin in self._plugins:
            plugin.did_receive(result, target)

    def process(self, result: Result, target: TargetType) -> Result:
        for plugin in self._plugins:
            result = plugin.process(result, target)
        return result
