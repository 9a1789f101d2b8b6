"""Tests for live dispatches.

Tests cover:
- Live dispatches go through prepare/will_send and the transport
- validate flag and task are handed to the transport
- Cancellation is forwarded to the transport and suppresses delivery
- Inflight tracking coalesces equal endpoints into one exchange
- Progress forwarding
- End-to-end dispatches over HttpxTransport with httpx.MockTransport
"""

import threading
from unittest.mock import patch

import httpx

from api_dispatch.dispatcher import Dispatcher
from api_dispatch.endpoint import Endpoint
from api_dispatch.errors import RequestCancelledError, RequestMappingError, UnderlyingError
from api_dispatch.plugin import PluginType
from api_dispatch.result import Failure, Success
from api_dispatch.tasks import RequestData
from api_dispatch.target import Target
from api_dispatch.transport import HttpxTransport, TransportOutcome
from tests.conftest import GitHub, RecordingPlugin, ResultCollector


class Labelled(GitHub):
    """Targets with the same endpoint that differ only by label."""

    def __init__(self, label: str) -> None:
        super().__init__("zen")
        self.label = label


class TagWithTarget(PluginType):
    def process(self, result, target):
        return Success(f"processed-for-{target.label}")


class TestLiveDispatch:
    def test_sends_prepared_request(self, dispatcher_factory, collector, fake_transport):
        dispatcher = dispatcher_factory(plugins=[RecordingPlugin("A", [])])
        dispatcher.dispatch(GitHub("zen"), completion=collector)

        assert len(fake_transport.sent) == 1
        assert fake_transport.sent[0].url == "https://api.github.com/zen"
        assert fake_transport.sent[0].headers == {"X-Prepared-By-A": "1"}
        assert collector.results == []

        fake_transport.respond(0, 200, b"ok")
        result = collector.results[0]
        assert isinstance(result, Success)
        assert result.value.data == b"ok"
        assert result.value.request.headers == {"X-Prepared-By-A": "1"}

    def test_hook_order(self, dispatcher_factory, collector, fake_transport):
        log = []
        dispatcher = dispatcher_factory(plugins=[RecordingPlugin("A", log)])
        dispatcher.dispatch(GitHub("zen"), completion=collector)
        assert [hook for _, hook, _ in log] == ["prepare", "will_send"]
        assert not log[1][2].is_stub

        fake_transport.respond(0)
        assert [hook for _, hook, _ in log] == ["prepare", "will_send", "did_receive", "process"]

    def test_validate_and_task_forwarded(self, dispatcher_factory, collector, fake_transport):
        target = Target(base_url="https://api.example.com", path="/items", task=RequestData(b"x"), validate=True)
        dispatcher_factory().dispatch(target, completion=collector)
        assert fake_transport.validate_flags == [True]
        assert fake_transport.tasks == [RequestData(b"x")]

    def test_transport_error_becomes_failure(self, dispatcher_factory, collector, fake_transport):
        dispatcher_factory().dispatch(GitHub("zen"), completion=collector)
        cause = ConnectionError("refused")
        fake_transport.complete(0, TransportOutcome(request=fake_transport.sent[0], error=cause))

        result = collector.results[0]
        assert isinstance(result, Failure)
        assert result.error.error is cause
        assert result.error.response is None

    def test_default_transport_is_httpx(self):
        with Dispatcher() as dispatcher:
            assert isinstance(dispatcher.transport, HttpxTransport)

    def test_supplied_transport_left_open(self, fake_transport):
        with patch.object(fake_transport, "close") as close:
            Dispatcher(transport=fake_transport).close()
        close.assert_not_called()

    def test_owned_transport_closed(self):
        dispatcher = Dispatcher()
        with patch.object(dispatcher.transport, "close") as close:
            dispatcher.close()
        close.assert_called_once_with(wait=True)
        dispatcher.transport.close()

    def test_close_without_wait_forwarded(self):
        dispatcher = Dispatcher()
        with patch.object(dispatcher.transport, "close") as close:
            dispatcher.close(wait=False)
        close.assert_called_once_with(wait=False)
        dispatcher.transport.close()


class TestLiveCancellation:
    def test_cancel_forwarded_to_transport(self, dispatcher_factory, collector, fake_transport):
        token = dispatcher_factory().dispatch(GitHub("zen"), completion=collector)
        token.cancel()
        assert fake_transport.handles[0].is_cancelled

    def test_cancelled_dispatch_not_delivered(self, dispatcher_factory, collector, fake_transport):
        log = []
        token = dispatcher_factory(plugins=[RecordingPlugin("A", log)]).dispatch(GitHub("zen"), completion=collector)
        token.cancel()
        fake_transport.complete(0, TransportOutcome(request=fake_transport.sent[0], error=RequestCancelledError()))

        assert collector.results == []
        assert [hook for _, hook, _ in log] == ["prepare", "will_send", "did_receive", "process"]

    def test_late_response_after_cancel_not_delivered(self, dispatcher_factory, collector, fake_transport):
        token = dispatcher_factory().dispatch(GitHub("zen"), completion=collector)
        token.cancel()
        fake_transport.respond(0, 200, b"too late")
        assert collector.results == []


class TestInflightTracking:
    def test_equal_endpoints_share_one_exchange(self, dispatcher_factory, fake_transport):
        first, second = ResultCollector(), ResultCollector()
        dispatcher = dispatcher_factory(track_inflights=True)
        dispatcher.dispatch(GitHub("zen"), completion=first)
        dispatcher.dispatch(GitHub("zen"), completion=second)

        assert len(fake_transport.sent) == 1
        assert list(dispatcher.inflight_requests.values()) == [2]

        fake_transport.respond(0, 200, b"shared")
        assert first.results[0] is second.results[0]
        assert dispatcher.inflight_requests == {}

    def test_different_endpoints_not_coalesced(self, dispatcher_factory, fake_transport):
        dispatcher = dispatcher_factory(track_inflights=True)
        dispatcher.dispatch(GitHub("zen"), completion=ResultCollector())
        dispatcher.dispatch(GitHub("repos"), completion=ResultCollector())
        assert len(fake_transport.sent) == 2

    def test_without_tracking_each_dispatch_sends(self, dispatcher_factory, fake_transport):
        dispatcher = dispatcher_factory()
        dispatcher.dispatch(GitHub("zen"), completion=ResultCollector())
        dispatcher.dispatch(GitHub("zen"), completion=ResultCollector())
        assert len(fake_transport.sent) == 2
        assert dispatcher.inflight_requests == {}

    def test_new_exchange_after_completion(self, dispatcher_factory, fake_transport):
        dispatcher = dispatcher_factory(track_inflights=True)
        dispatcher.dispatch(GitHub("zen"), completion=ResultCollector())
        fake_transport.respond(0)
        dispatcher.dispatch(GitHub("zen"), completion=ResultCollector())
        assert len(fake_transport.sent) == 2

    def test_coalesced_waiter_cancel_leaves_others(self, dispatcher_factory, fake_transport):
        first, second = ResultCollector(), ResultCollector()
        dispatcher = dispatcher_factory(track_inflights=True)
        dispatcher.dispatch(GitHub("zen"), completion=first)
        token = dispatcher.dispatch(GitHub("zen"), completion=second)
        token.cancel()

        assert not fake_transport.handles[0].is_cancelled
        fake_transport.respond(0, 200, b"ok")
        assert isinstance(first.results[0], Success)
        assert second.results == []

    def test_first_caller_cancel_fails_other_waiters(self, dispatcher_factory, fake_transport):
        first, second = ResultCollector(), ResultCollector()
        dispatcher = dispatcher_factory(track_inflights=True)
        token = dispatcher.dispatch(GitHub("zen"), completion=first)
        dispatcher.dispatch(GitHub("zen"), completion=second)
        token.cancel()

        assert fake_transport.handles[0].is_cancelled
        fake_transport.complete(0, TransportOutcome(request=fake_transport.sent[0], error=RequestCancelledError()))
        assert first.results == []
        result = second.results[0]
        assert isinstance(result, Failure)
        assert isinstance(result.error, UnderlyingError)
        assert isinstance(result.error.error, RequestCancelledError)
        assert dispatcher.inflight_requests == {}

    def test_process_runs_for_each_waiter_target(self, dispatcher_factory, fake_transport):
        log = []
        first, second = ResultCollector(), ResultCollector()
        dispatcher = dispatcher_factory(track_inflights=True, plugins=[TagWithTarget(), RecordingPlugin("R", log)])
        dispatcher.dispatch(Labelled("A"), completion=first)
        dispatcher.dispatch(Labelled("B"), completion=second)

        assert len(fake_transport.sent) == 1
        fake_transport.respond(0, 200, b"ok")

        assert first.results[0].value == "processed-for-A"
        assert second.results[0].value == "processed-for-B"
        assert [hook for _, hook, _ in log].count("did_receive") == 1
        assert [hook for _, hook, _ in log].count("process") == 2

    def test_mapping_failure_clears_registry(self, dispatcher_factory, collector):
        def endpoint_closure(target):
            return Endpoint(url="not a url", sample_response_closure=lambda: None)

        dispatcher = dispatcher_factory(endpoint_closure=endpoint_closure, track_inflights=True)
        dispatcher.dispatch(GitHub("zen"), completion=collector)
        assert isinstance(collector.results[0].error, RequestMappingError)
        assert dispatcher.inflight_requests == {}

    def test_concurrent_dispatches_coalesce(self, dispatcher_factory, fake_transport):
        collectors = [ResultCollector() for _ in range(8)]
        dispatcher = dispatcher_factory(track_inflights=True)
        barrier = threading.Barrier(len(collectors))

        def run(collector):
            barrier.wait()
            dispatcher.dispatch(GitHub("zen"), completion=collector)

        threads = [threading.Thread(target=run, args=(c,)) for c in collectors]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(fake_transport.sent) == 1
        fake_transport.respond(0, 200, b"ok")
        results = [c.results[0] for c in collectors]
        assert all(result is results[0] for result in results)


class TestLiveProgress:
    def test_progress_forwarded_then_final(self, dispatcher_factory, fake_transport):
        updates = []
        done = ResultCollector()
        dispatcher_factory().dispatch(GitHub("zen"), completion=done, progress=updates.append)

        fake_transport.progress_handlers[0](0.5)
        fake_transport.respond(0, 200, b"ok")

        assert [update.progress for update in updates] == [0.5, 1.0]
        assert not updates[0].completed
        assert updates[1].completed

    def test_no_progress_handler_without_callback(self, dispatcher_factory, fake_transport):
        dispatcher_factory().dispatch(GitHub("zen"), completion=ResultCollector())
        assert fake_transport.progress_handlers == [None]

    def test_progress_dropped_after_cancel(self, dispatcher_factory, fake_transport):
        updates = []
        token = dispatcher_factory().dispatch(GitHub("zen"), completion=ResultCollector(), progress=updates.append)
        token.cancel()
        fake_transport.progress_handlers[0](0.5)
        assert updates == []


class TestHttpxEndToEnd:
    def test_success(self, mock_http_transport):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"login": "octocat"})

        collector = ResultCollector()
        dispatcher = Dispatcher(transport=mock_http_transport(handler), plugins=[RecordingPlugin("A", [])])
        dispatcher.dispatch(GitHub("user"), completion=collector)

        assert collector.wait()
        result = collector.results[0]
        assert isinstance(result, Success)
        assert result.value.status_code == 200
        assert b"octocat" in result.value.data
        assert result.value.response.headers["content-type"] == ["application/json"]
        assert str(seen[0].url) == "https://api.github.com/users/octocat"
        assert seen[0].headers["X-Prepared-By-A"] == "1"

    def test_validate_failure_keeps_response(self, mock_http_transport):
        collector = ResultCollector()
        transport = mock_http_transport(lambda request: httpx.Response(404, text="missing"))
        Dispatcher(transport=transport).dispatch(GitHub("zen", validate=True), completion=collector)

        assert collector.wait()
        result = collector.results[0]
        assert isinstance(result, Failure)
        assert isinstance(result.error.error, httpx.HTTPStatusError)
        assert result.error.response.status_code == 404
        assert result.error.response.data == b"missing"

    def test_non_2xx_without_validate_is_success(self, mock_http_transport):
        collector = ResultCollector()
        transport = mock_http_transport(lambda request: httpx.Response(404, text="missing"))
        Dispatcher(transport=transport).dispatch(GitHub("zen"), completion=collector)

        assert collector.wait()
        assert isinstance(collector.results[0], Success)
        assert collector.results[0].value.status_code == 404

    def test_unexpected_transport_error_delivered_and_registry_cleared(self, mock_http_transport):
        def handler(request):
            raise RuntimeError("boom")

        collector = ResultCollector()
        dispatcher = Dispatcher(transport=mock_http_transport(handler), track_inflights=True)
        dispatcher.dispatch(GitHub("zen"), completion=collector)

        assert collector.wait()
        result = collector.results[0]
        assert isinstance(result, Failure)
        assert isinstance(result.error.error, RuntimeError)
        assert dispatcher.inflight_requests == {}

    def test_connection_error(self, mock_http_transport):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        collector = ResultCollector()
        Dispatcher(transport=mock_http_transport(handler)).dispatch(GitHub("zen"), completion=collector)

        assert collector.wait()
        result = collector.results[0]
        assert isinstance(result, Failure)
        assert isinstance(result.error.error, httpx.ConnectError)
        assert result.error.response is None
