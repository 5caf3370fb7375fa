"""
Background offload unit.

Runs a single-scale match in a separate execution context (a worker process
by default) so the caller's thread stays free during the window search. The
caller and the worker only exchange pickled request/reply messages; every
request carries a correlation id and replies that do not answer an
outstanding request are dropped.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import Executor, Future, InvalidStateError, ProcessPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, replace
from typing import Dict, Optional

from .errors import OffloadChannelError
from .pixels import PixelBuffer
from .sweep import MatchCandidate, match_at_scale

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OffloadRequest:
    correlation_id: str
    target: PixelBuffer
    template: PixelBuffer
    scale: float
    threshold: float = 0.0


@dataclass(frozen=True)
class OffloadReply:
    correlation_id: str
    result: Optional[MatchCandidate] = None
    error: Optional[str] = None


def handle_request(request: OffloadRequest) -> OffloadReply:
    """Worker-side handler; never raises, failures travel back as ``error``."""
    start = time.perf_counter()
    try:
        candidate = match_at_scale(
            request.target, request.template, request.scale, request.threshold
        )
    except Exception as exc:  # pylint: disable=broad-except
        return OffloadReply(request.correlation_id, error=f"{type(exc).__name__}: {exc}")
    if candidate is not None:
        candidate = replace(candidate, elapsed_ms=(time.perf_counter() - start) * 1000.0)
    return OffloadReply(request.correlation_id, result=candidate)


class OffloadChannel:
    """
    Reusable request/response channel to an isolated worker pool.

    Args:
        max_workers: Pool size for the default ``ProcessPoolExecutor``.
        executor: Use this executor instead of creating a process pool. The
            channel does not shut down executors it did not create.
    """

    def __init__(
        self, max_workers: Optional[int] = None, executor: Optional[Executor] = None
    ) -> None:
        self._owns_executor = executor is None
        self._executor: Executor = executor or ProcessPoolExecutor(max_workers=max_workers)
        self._pending: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._closed = False

    def __enter__(self) -> "OffloadChannel":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def outstanding(self) -> int:
        with self._lock:
            return len(self._pending)

    def submit(
        self,
        target: PixelBuffer,
        template: PixelBuffer,
        scale: float,
        threshold: float = 0.0,
    ) -> Future:
        """Send one request; the returned future resolves to the candidate or None."""
        if self._closed:
            raise OffloadChannelError("Offload channel is closed")
        request = OffloadRequest(
            correlation_id=uuid.uuid4().hex,
            target=target,
            template=template,
            scale=scale,
            threshold=threshold,
        )
        reply_future: Future = Future()
        with self._lock:
            self._pending[request.correlation_id] = reply_future
        try:
            worker_future = self._executor.submit(handle_request, request)
        except Exception as exc:
            with self._lock:
                self._pending.pop(request.correlation_id, None)
            raise OffloadChannelError(f"Failed to dispatch request: {exc}") from exc

        reply_future.add_done_callback(
            lambda f: worker_future.cancel() if f.cancelled() else None
        )
        worker_future.add_done_callback(
            lambda f: self._on_worker_done(request.correlation_id, f)
        )
        return reply_future

    def match_at_scale(
        self,
        target: PixelBuffer,
        template: PixelBuffer,
        scale: float,
        threshold: float = 0.0,
        timeout: Optional[float] = None,
    ) -> Optional[MatchCandidate]:
        future = self.submit(target, template, scale, threshold)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            future.cancel()
            raise OffloadChannelError(
                f"No reply for scale {scale} within {timeout}s"
            ) from exc

    def deliver(self, reply: OffloadReply) -> bool:
        """
        Resolve the outstanding request ``reply`` answers.

        Returns False (and drops the reply) when its correlation id does not
        match any outstanding request.
        """
        with self._lock:
            pending = self._pending.pop(reply.correlation_id, None)
        if pending is None:
            logger.warning("Discarding stale offload reply %s", reply.correlation_id)
            return False
        try:
            if reply.error is not None:
                pending.set_exception(OffloadChannelError(reply.error))
            else:
                pending.set_result(reply.result)
        except InvalidStateError:
            logger.debug("Reply %s arrived after its request was cancelled", reply.correlation_id)
        return True

    def _on_worker_done(self, correlation_id: str, worker_future: Future) -> None:
        if worker_future.cancelled():
            self._fail(correlation_id, OffloadChannelError("Request cancelled before it ran"))
            return
        exc = worker_future.exception()
        if exc is not None:
            self._fail(correlation_id, OffloadChannelError(f"Worker failed: {exc}"))
            return
        reply = worker_future.result()
        self.deliver(reply)
        if reply.correlation_id != correlation_id:
            self._fail(
                correlation_id,
                OffloadChannelError(f"Worker replied for {reply.correlation_id}"),
            )

    def _fail(self, correlation_id: str, error: OffloadChannelError) -> None:
        with self._lock:
            pending = self._pending.pop(correlation_id, None)
        if pending is None:
            return
        try:
            pending.set_exception(error)
        except InvalidStateError:
            logger.debug("Request %s already resolved", correlation_id)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_executor:
            self._executor.shutdown(wait=True, cancel_futures=True)
        with self._lock:
            pending = list(self._pending.items())
            self._pending.clear()
        for correlation_id, future in pending:
            if not future.done():
                future.set_exception(
                    OffloadChannelError(f"Channel closed before reply {correlation_id}")
                )
