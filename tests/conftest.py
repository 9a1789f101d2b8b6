"""Pytest configuration and fixtures for api-dispatch tests.

This file provides:
- GitHub: a small target family used across tests
- FakeTransport: an in-memory transport whose exchanges complete on demand
- RecordingPlugin: a plugin that logs every hook call
- Fixtures: shared dispatcher and transport instances
"""

from __future__ import annotations

import threading
from typing import Any

import httpx
import pytest

from api_dispatch.cancellation import SimpleCancellable
from api_dispatch.dispatcher import Dispatcher
from api_dispatch.models import Method, NetworkRequest, Response, ResponseMetadata
from api_dispatch.plugin import PluginType, RequestView
from api_dispatch.result import Result
from api_dispatch.target import TargetType
from api_dispatch.tasks import RequestPlain, Task
from api_dispatch.transport import HttpxTransport, Transport, TransportOutcome


class GitHub(TargetType):
    """Targets for a few GitHub API calls, with canned sample data."""

    base_url = "https://api.github.com"
    method = Method.GET
    task: Task = RequestPlain()

    def __init__(self, route: str, user: str = "octocat", validate: bool = False) -> None:
        self.route = route
        self.user = user
        self._validate = validate

    @property
    def path(self) -> str:
        if self.route == "zen":
            return "/zen"
        if self.route == "repos":
            return f"/users/{self.user}/repos"
        return f"/users/{self.user}"

    @property
    def sample_data(self) -> bytes:
        if self.route == "zen":
            return b"Half measures are as bad as nothing at all."
        if self.route == "repos":
            return b'[{"name": "Repo Name"}]'
        return f'{{"login": "{self.user}", "id": 100}}'.encode("utf-8")

    @property
    def validate(self) -> bool:
        return self._validate

    def __str__(self) -> str:
        return f"GitHub.{self.route}"


def make_response(
    status_code: int = 200,
    data: bytes = b"",
    url: str = "https://api.github.com/zen",
) -> Response:
    """Create a Response for plugin and result tests."""
    request = NetworkRequest(method=Method.GET, url=url)
    return Response(
        status_code=status_code,
        data=data,
        request=request,
        response=ResponseMetadata(status_code=status_code, url=url),
    )


class FakeTransport(Transport):
    """Transport that records sends and completes only when told to.

    With ``auto_outcome`` set, every send completes synchronously with it.
    """

    def __init__(self, auto_outcome: TransportOutcome | None = None) -> None:
        self.auto_outcome = auto_outcome
        self.sent: list[NetworkRequest] = []
        self.tasks: list[Task] = []
        self.validate_flags: list[bool] = []
        self.handles: list[SimpleCancellable] = []
        self.progress_handlers: list[Any] = []
        self._completions: list[Any] = []
        self._lock = threading.Lock()

    def send(self, request, *, task, validate, progress, completion):
        handle = SimpleCancellable()
        with self._lock:
            self.sent.append(request)
            self.tasks.append(task)
            self.validate_flags.append(validate)
            self.handles.append(handle)
            self.progress_handlers.append(progress)
            self._completions.append(completion)
        if self.auto_outcome is not None:
            completion(self.auto_outcome)
        return handle

    def complete(self, index: int, outcome: TransportOutcome) -> None:
        self._completions[index](outcome)

    def respond(self, index: int, status_code: int = 200, data: bytes = b"") -> None:
        request = self.sent[index]
        self.complete(index, TransportOutcome(
            request=request,
            response=ResponseMetadata(status_code=status_code, url=request.url),
            data=data,
        ))


class RecordingPlugin(PluginType):
    """Plugin that appends (name, hook, detail) tuples to a shared log."""

    def __init__(self, name: str, log: list[tuple[str, str, Any]]) -> None:
        self.name = name
        self.log = log

    def prepare(self, request: NetworkRequest, target: TargetType) -> NetworkRequest:
        self.log.append((self.name, "prepare", request.url))
        return request.with_headers({f"X-Prepared-By-{self.name}": "1"})

    def will_send(self, request: RequestView, target: TargetType) -> None:
        self.log.append((self.name, "will_send", request))

    def did_receive(self, result: Result, target: TargetType) -> None:
        self.log.append((self.name, "did_receive", result))

    def process(self, result: Result, target: TargetType) -> Result:
        self.log.append((self.name, "process", result))
        return result


class ResultCollector:
    """Completion callback that stores results and signals arrival."""

    def __init__(self, expected: int = 1) -> None:
        self.results: list[Result] = []
        self.threads: list[str] = []
        self._expected = expected
        self._lock = threading.Lock()
        self.done = threading.Event()

    def __call__(self, result: Result) -> None:
        with self._lock:
            self.results.append(result)
            self.threads.append(threading.current_thread().name)
            if len(self.results) >= self._expected:
                self.done.set()

    def wait(self, timeout: float = 5.0) -> bool:
        return self.done.wait(timeout)


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def collector() -> ResultCollector:
    return ResultCollector()


@pytest.fixture
def mock_http_transport():
    """Build an HttpxTransport over httpx.MockTransport from a handler function."""
    transports: list[HttpxTransport] = []

    def factory(handler) -> HttpxTransport:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        transport = HttpxTransport(client=client, max_workers=4)
        transports.append(transport)
        return transport

    yield factory

    for transport in transports:
        transport.close()
        transport._client.close()


@pytest.fixture
def dispatcher_factory(fake_transport: FakeTransport):
    """Build dispatchers that default to the fake transport."""

    def factory(**kwargs: Any) -> Dispatcher:
        kwargs.setdefault("transport", fake_transport)
        return Dispatcher(**kwargs)

    return factory
