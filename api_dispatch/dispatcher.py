"""Dispatcher - Turns a Target into a stubbed or live exchange and one outcome.

Per dispatch:
    Target -> Endpoint (endpoint_closure)
           -> NetworkRequest (request_closure) -> plugins.prepare
           -> stub or live (stub_closure)      -> plugins.will_send
           -> raw outcome -> convert_response_to_result
           -> plugins.did_receive -> plugins.process -> completion

Every ordinary failure reaches the completion as a Failure. Cancelled
dispatches receive nothing. With ``track_inflights`` enabled, dispatches whose
endpoints compare equal share one exchange and each receive its outcome.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable

from api_dispatch.cancellation import Cancellable, CancellationToken, SimpleCancellable
from api_dispatch.endpoint import (
    Endpoint,
    FullResponse,
    NetworkError,
    NetworkResponse,
    default_endpoint_mapping,
    endpoint_mapping_with_defaults,
)
from api_dispatch.errors import (
    RequestCancelledError,
    StubContractError,
    UnderlyingError,
    UnknownTransportError,
)
from api_dispatch.models import NetworkRequest, ProgressResponse, Response, ResponseMetadata
from api_dispatch.plugin import PluginChain, PluginType, RequestView
from api_dispatch.plugins import NetworkLoggerPlugin
from api_dispatch.request_builder import RequestResultClosure, default_request_mapping
from api_dispatch.result import Failure, Result, Success
from api_dispatch.stubbing import (
    Delayed,
    Immediate,
    Never,
    StubBehavior,
    StubClosure,
    is_stub_behavior,
    never_stub,
)
from api_dispatch.target import TargetType
from api_dispatch.transport import HttpxTransport, Transport, TransportOutcome

if TYPE_CHECKING:
    from api_dispatch.models import DispatcherConfig

logger = logging.getLogger(__name__)

Completion = Callable[[Result], None]
ProgressBlock = Callable[[ProgressResponse], None]
EndpointClosure = Callable[[TargetType], Endpoint]
RequestClosure = Callable[[Endpoint, RequestResultClosure], None]


def convert_response_to_result(
    response: ResponseMetadata | None,
    request: NetworkRequest | None,
    data: bytes | None,
    error: BaseException | None,
) -> Result:
    """Normalize a raw (metadata, body, error) triple into a Result.

    Metadata presence dominates: a response with an error still attaches the
    response to the failure.
    """
    if response is not None and error is None:
        return Success(Response(
            status_code=response.status_code, data=data or b"", request=request, response=response
        ))
    if response is not None and error is not None:
        attached = Response(
            status_code=response.status_code, data=data or b"", request=request, response=response
        )
        return Failure(UnderlyingError(error, attached))
    if error is not None:
        return Failure(UnderlyingError(error, None))
    return Failure(UnderlyingError(UnknownTransportError(), None))


def _cancelled_result() -> Result:
    return Failure(UnderlyingError(RequestCancelledError(), None))


@dataclass
class _Waiter:
    """One caller waiting on a dispatch outcome."""

    target: TargetType
    completion: Completion
    token: CancellationToken
    progress: ProgressBlock | None = None


class Dispatcher:
    """Dispatches targets through the plugin chain to a stub or the transport.

    Usage:
        dispatcher = Dispatcher(plugins=[NetworkLoggerPlugin()])
        token = dispatcher.dispatch(target, completion=handle_result)
        ...
        token.cancel()

    Completions, plugin outcome hooks and progress updates run on
    ``callback_queue`` when one is given (per dispatch or per dispatcher).
    Without one they run on the thread that produced the outcome: the caller
    for immediate stubs, a timer thread for delayed stubs and a transport
    worker for live calls.
    """

    def __init__(
        self,
        endpoint_closure: EndpointClosure = default_endpoint_mapping,
        request_closure: RequestClosure = default_request_mapping,
        stub_closure: StubClosure = never_stub,
        callback_queue: Executor | None = None,
        transport: Transport | None = None,
        plugins: Iterable[PluginType] = (),
        track_inflights: bool = False,
    ) -> None:
        self.endpoint_closure = endpoint_closure
        self.request_closure = request_closure
        self.stub_closure = stub_closure
        self.callback_queue = callback_queue
        self._owns_transport = transport is None
        self.transport = transport if transport is not None else HttpxTransport()
        self.plugins = PluginChain(plugins)
        self.track_inflights = track_inflights

        self._inflight_requests: dict[Endpoint, list[_Waiter]] = {}
        self._inflight_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: DispatcherConfig,
        plugins: Iterable[PluginType] = (),
        transport: Transport | None = None,
    ) -> Dispatcher:
        """Build a dispatcher from runtime configuration.

        ``default_headers`` are added to every endpoint; headers declared by
        the target win over them.
        """
        all_plugins = list(plugins)
        if config.logging.enabled:
            all_plugins.append(NetworkLoggerPlugin(verbose=config.logging.verbose, curl=config.logging.curl))

        dispatcher = cls(
            endpoint_closure=endpoint_mapping_with_defaults(config.default_headers),
            stub_closure=config.stub.closure(),
            transport=transport or HttpxTransport(timeout=config.timeout, max_workers=config.max_workers),
            plugins=all_plugins,
            track_inflights=config.track_inflights,
        )
        dispatcher._owns_transport = transport is None
        return dispatcher

    def __enter__(self) -> Dispatcher:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self, wait: bool = True) -> None:
        """Close the transport if this dispatcher created it.

        ``wait=False`` does not block on exchanges still in progress.
        """
        if self._owns_transport:
            self.transport.close(wait=wait)

    @property
    def inflight_requests(self) -> dict[Endpoint, int]:
        """Snapshot of tracked endpoints and how many callers wait on each."""
        with self._inflight_lock:
            return {endpoint: len(waiters) for endpoint, waiters in self._inflight_requests.items()}

    def endpoint(self, target: TargetType) -> Endpoint:
        """Resolve ``target`` through the endpoint closure."""
        return self.endpoint_closure(target)

    def dispatch(
        self,
        target: TargetType,
        completion: Completion,
        *,
        callback_queue: Executor | None = None,
        progress: ProgressBlock | None = None,
    ) -> CancellationToken:
        """Dispatch ``target`` and return a token that cancels it.

        Raises:
            StubContractError: If the stub closure returns something that is
                not a StubBehavior.
        """
        callback_queue = callback_queue or self.callback_queue
        endpoint = self.endpoint(target)
        stub_behavior = self.stub_closure(target)
        if not is_stub_behavior(stub_behavior):
            raise StubContractError(f"Stub closure returned {stub_behavior!r}, not a StubBehavior")

        token = CancellationToken()
        waiter = _Waiter(target=target, completion=completion, token=token, progress=progress)

        if self.track_inflights:
            with self._inflight_lock:
                waiters = self._inflight_requests.get(endpoint)
                if waiters is not None:
                    waiters.append(waiter)
                    logger.debug("Coalescing dispatch for %s into inflight request", endpoint.url)
                    return token
                self._inflight_requests[endpoint] = [waiter]

            def deliver(result: Result) -> None:
                self._fan_out(endpoint, result)
        else:
            def deliver(result: Result) -> None:
                self._deliver(waiter, result)

        def complete(result: Result) -> None:
            self.plugins.did_receive(result, target)
            deliver(result)

        def perform(request_result: Result) -> None:
            if token.is_cancelled:
                logger.debug("Dispatch for %s cancelled before it was performed", endpoint.url)
                self._on_queue(callback_queue, lambda: complete(_cancelled_result()))
                return

            if isinstance(request_result, Failure):
                logger.debug("Request mapping failed for %s: %s", endpoint.url, request_result.error)
                self._on_queue(callback_queue, lambda: deliver(request_result))
                return

            request = self.plugins.prepare(request_result.value, target)

            if isinstance(stub_behavior, Never):
                self._send_request(target, request, endpoint, callback_queue, token, progress, complete)
            else:
                token.bind(self.stub_request(
                    target, request, callback_queue, complete, endpoint, stub_behavior
                ))

        self.request_closure(endpoint, perform)
        return token

    def stub_request(
        self,
        target: TargetType,
        request: NetworkRequest,
        callback_queue: Executor | None,
        completion: Completion,
        endpoint: Endpoint,
        stub_behavior: StubBehavior,
    ) -> Cancellable:
        """Answer ``request`` with the endpoint's sample response.

        Plugins are notified with ``will_send`` before the stub is scheduled.

        Raises:
            StubContractError: If ``stub_behavior`` is Never.
        """
        if isinstance(stub_behavior, Never):
            raise StubContractError("Method called to stub request when stubbing is disabled.")

        cancellable = SimpleCancellable()
        self.plugins.will_send(RequestView(request, is_stub=True), target)
        stub = self._create_stub_function(cancellable, request, completion, endpoint)

        if isinstance(stub_behavior, Immediate):
            logger.debug("Stubbing %s immediately", endpoint.url)
            self._on_queue(callback_queue, stub)
        elif isinstance(stub_behavior, Delayed):
            logger.debug("Stubbing %s after %.3fs", endpoint.url, stub_behavior.seconds)
            timer = threading.Timer(stub_behavior.seconds, self._on_queue, args=(callback_queue, stub))
            timer.daemon = True
            timer.start()
        else:
            raise StubContractError(f"Unsupported stub behavior: {stub_behavior!r}")

        return cancellable

    def _create_stub_function(
        self,
        cancellable: Cancellable,
        request: NetworkRequest,
        completion: Completion,
        endpoint: Endpoint,
    ) -> Callable[[], None]:
        def stub() -> None:
            if cancellable.is_cancelled:
                completion(_cancelled_result())
                return

            sample = endpoint.sample_response_closure()
            if isinstance(sample, NetworkResponse):
                metadata = ResponseMetadata(status_code=sample.status_code, url=request.url)
                result = convert_response_to_result(metadata, request, sample.data, None)
            elif isinstance(sample, FullResponse):
                result = convert_response_to_result(sample.metadata, request, sample.data, None)
            elif isinstance(sample, NetworkError):
                result = convert_response_to_result(None, request, None, sample.error)
            else:
                raise TypeError(f"Unsupported sample response: {sample!r}")
            completion(result)

        return stub

    def _send_request(
        self,
        target: TargetType,
        request: NetworkRequest,
        endpoint: Endpoint,
        callback_queue: Executor | None,
        token: CancellationToken,
        progress: ProgressBlock | None,
        completion: Completion,
    ) -> None:
        self.plugins.will_send(RequestView(request), target)

        def transport_completion(outcome: TransportOutcome) -> None:
            def handle() -> None:
                completion(convert_response_to_result(
                    outcome.response, outcome.request, outcome.data, outcome.error
                ))

            self._on_queue(callback_queue, handle)

        progress_handler: Callable[[float], None] | None = None
        if progress is not None:
            def forward_progress(fraction: float) -> None:
                def report() -> None:
                    if not token.is_cancelled:
                        progress(ProgressResponse(fraction_completed=fraction))

                self._on_queue(callback_queue, report)

            progress_handler = forward_progress

        logger.debug("Sending %s %s", request.method.value, request.url)
        cancellable = self.transport.send(
            request,
            task=endpoint.task,
            validate=target.validate,
            progress=progress_handler,
            completion=transport_completion,
        )
        token.bind(cancellable)

    def _deliver(self, waiter: _Waiter, result: Result) -> None:
        """Run ``process`` for the waiter's own target, then hand the outcome over."""
        result = self.plugins.process(result, waiter.target)
        if waiter.token.is_cancelled:
            logger.debug("Dropping outcome for cancelled dispatch")
            return
        if waiter.progress is not None and isinstance(result, Success):
            waiter.progress(ProgressResponse(response=result.value))
        waiter.completion(result)

    def _fan_out(self, endpoint: Endpoint, result: Result) -> None:
        with self._inflight_lock:
            waiters = self._inflight_requests.pop(endpoint, [])
        for waiter in waiters:
            self._deliver(waiter, result)

    @staticmethod
    def _on_queue(callback_queue: Executor | None, fn: Callable[[], None]) -> None:
        if callback_queue is None:
            fn()
        else:
            callback_queue.submit(fn)
