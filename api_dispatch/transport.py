"""Transport - Performs the live HTTP exchange for a dispatch.

The dispatcher only relies on the ``Transport`` interface: ``send`` returns a
cancellable immediately and calls ``completion`` exactly once, from any
thread, with a TransportOutcome. A cancelled exchange still completes (with a
RequestCancelledError) so the dispatcher can release inflight state.

``HttpxTransport`` is the default implementation. Each exchange runs on a
worker thread of a shared pool and streams the response body so progress can
be reported and cancellation observed between chunks.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import httpx

from api_dispatch.cancellation import Cancellable
from api_dispatch.errors import RequestCancelledError
from api_dispatch.models import NetworkRequest, ResponseMetadata
from api_dispatch.tasks import (
    DownloadDestination,
    DownloadParameters,
    Task,
    UploadCompositeMultipart,
    UploadFile,
    UploadMultipart,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_WORKERS = 8


@dataclass(frozen=True)
class TransportOutcome:
    """Raw result of one exchange, before normalization."""

    request: NetworkRequest | None
    response: ResponseMetadata | None = None
    data: bytes | None = None
    error: BaseException | None = None


TransportCompletion = Callable[[TransportOutcome], None]
ProgressHandler = Callable[[float], None]


class Transport(ABC):
    """The external collaborator that moves bytes."""

    @abstractmethod
    def send(
        self,
        request: NetworkRequest,
        *,
        task: Task,
        validate: bool,
        progress: ProgressHandler | None,
        completion: TransportCompletion,
    ) -> Cancellable:
        """Start the exchange and return a handle that cancels it."""

    def close(self, wait: bool = True) -> None:
        """Release resources held by the transport.

        ``wait=False`` asks the transport not to block on exchanges in progress.
        """


class TransportTask:
    """Cancellable handle for one HttpxTransport exchange."""

    def __init__(self) -> None:
        self._cancelled = threading.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()


def _content_length(response: httpx.Response) -> int:
    try:
        return int(response.headers.get("content-length", "0"))
    except ValueError:
        return 0


def _download_destination(task: Task) -> Path | None:
    if isinstance(task, (DownloadDestination, DownloadParameters)):
        return task.destination
    return None


class HttpxTransport(Transport):
    """Transport backed by an ``httpx.Client`` and a thread pool.

    Usage:
        with HttpxTransport(timeout=10.0) as transport:
            dispatcher = Dispatcher(transport=transport)
            ...

    A caller-supplied client stays open on close(); a client created here is
    closed with the transport.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="api-dispatch-transport"
        )

    def __enter__(self) -> HttpxTransport:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self, wait: bool = True) -> None:
        """Shut down the worker pool, then close the client if this transport owns it.

        With ``wait=False`` queued exchanges are dropped and running ones are
        not waited for.
        """
        try:
            self._executor.shutdown(wait=wait, cancel_futures=not wait)
        finally:
            if self._owns_client:
                self._client.close()

    def send(
        self,
        request: NetworkRequest,
        *,
        task: Task,
        validate: bool,
        progress: ProgressHandler | None,
        completion: TransportCompletion,
    ) -> Cancellable:
        handle = TransportTask()
        self._executor.submit(self._run, request, task, validate, progress, completion, handle)
        return handle

    def _run(
        self,
        request: NetworkRequest,
        task: Task,
        validate: bool,
        progress: ProgressHandler | None,
        completion: TransportCompletion,
        handle: TransportTask,
    ) -> None:
        try:
            outcome = self._exchange(request, task, validate, progress, handle)
        except Exception as e:
            logger.exception("Unexpected error during %s %s", request.method.value, request.url)
            outcome = TransportOutcome(request=request, error=e)
        completion(outcome)

    def _request_kwargs(self, request: NetworkRequest, task: Task) -> dict[str, Any]:
        """Build kwargs for httpx.Client.stream, attaching upload payloads."""
        kwargs: dict[str, Any] = {
            "method": request.method.value,
            "url": request.url,
            "headers": request.headers or None,
        }

        if isinstance(task, UploadFile):
            kwargs["content"] = task.path.read_bytes()
        elif isinstance(task, (UploadMultipart, UploadCompositeMultipart)):
            # Plain fields go through ``files`` with no filename so the body is
            # multipart even when no part is a file.
            files: list[tuple[str, tuple[str | None, bytes, str | None]]] = []
            for part in task.parts:
                if part.is_file:
                    filename = part.filename
                    if filename is None and isinstance(part.data, Path):
                        filename = part.data.name
                    files.append((
                        part.name,
                        (filename or part.name, part.read(), part.mime_type or "application/octet-stream"),
                    ))
                else:
                    files.append((part.name, (None, part.read(), part.mime_type)))
            kwargs["files"] = files
        elif request.body is not None:
            kwargs["content"] = request.body

        return kwargs

    def _exchange(
        self,
        request: NetworkRequest,
        task: Task,
        validate: bool,
        progress: ProgressHandler | None,
        handle: TransportTask,
    ) -> TransportOutcome:
        if handle.is_cancelled:
            return TransportOutcome(request=request, error=RequestCancelledError())

        destination = _download_destination(task)
        metadata: ResponseMetadata | None = None
        chunks: list[bytes] = []

        try:
            kwargs = self._request_kwargs(request, task)
            logger.debug("Sending %s %s", request.method.value, request.url)

            with self._client.stream(**kwargs) as http_response:
                metadata = ResponseMetadata.from_httpx(http_response)
                total = _content_length(http_response)
                received = 0

                with (destination.open("wb") if destination is not None else nullcontext()) as sink:
                    for chunk in http_response.iter_bytes():
                        if handle.is_cancelled:
                            raise RequestCancelledError()
                        if sink is not None:
                            sink.write(chunk)
                        else:
                            chunks.append(chunk)
                        received += len(chunk)
                        if progress is not None and total > 0:
                            progress(min(received / total, 1.0))

                if validate:
                    http_response.raise_for_status()

        except (httpx.HTTPError, httpx.InvalidURL, OSError, UnicodeEncodeError, RequestCancelledError) as e:
            logger.debug("Exchange %s %s failed: %r", request.method.value, request.url, e)
            data = b"".join(chunks) if metadata is not None else None
            return TransportOutcome(request=request, response=metadata, data=data, error=e)

        logger.debug("Received %s for %s %s", metadata.status_code, request.method.value, request.url)
        return TransportOutcome(request=request, response=metadata, data=b"".join(chunks))
