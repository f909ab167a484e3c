"""
OpenTelemetry bridge for observed network calls.

``SpanRecorder`` is an ``onobserved`` callback that turns each start record
into a CLIENT span and ends it when the matching end record arrives.

Usage:
    >>> from netobserver import HttpObserver
    >>> from netobserver.sinks import SpanRecorder
    >>> observer = HttpObserver(onobserved=SpanRecorder())
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Tuple

from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode, Tracer

from .types import EndRecord, StartRecord

logger = logging.getLogger(__name__)

TRACER_NAME = "netobserver"

CHANNEL_ATTR = "netobserver.channel"
REQUEST_ID_ATTR = "netobserver.request_id"
METHOD_ATTR = "http.request.method"
URL_ATTR = "url.full"
STATUS_CODE_ATTR = "http.response.status_code"
ERROR_TYPE_ATTR = "error.type"

ABANDONED = "abandoned"


class SpanRecorder:
    """
    Record observed requests as OpenTelemetry spans, correlated by request id.

    Open spans are bounded like the pending-request table: a span whose end
    record never arrives (a cancelled fetch, a request that never completes)
    is ended with an error status once it outlives ``ttl`` or when more than
    ``max_open`` spans are open.
    """

    def __init__(self, tracer: Optional[Tracer] = None, max_open: int = 1024,
                 ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        if max_open < 1:
            raise ValueError("max_open must be at least 1")
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        self.tracer = tracer or trace.get_tracer(TRACER_NAME)
        self.max_open = max_open
        self.ttl = ttl
        self._clock = clock
        self._spans: "OrderedDict[str, Tuple[float, Span]]" = OrderedDict()
        self._lock = threading.Lock()
        self.abandoned = 0

    def __call__(self, record: Any) -> None:
        if isinstance(record, StartRecord):
            self._start(record)
        elif isinstance(record, EndRecord):
            self._end(record)
        else:
            logger.debug(f"Ignoring unknown record {type(record).__name__}")

    def _start(self, record: StartRecord) -> None:
        channel = record.type.value
        attributes = {CHANNEL_ATTR: channel, URL_ATTR: record.url}
        if record.method:
            attributes[METHOD_ATTR] = record.method
        if record.id is not None:
            attributes[REQUEST_ID_ATTR] = record.id

        name = f"{record.method} {channel}" if record.method else channel
        span = self.tracer.start_span(name, kind=SpanKind.CLIENT, attributes=attributes)

        if record.id is None:
            # beacons never complete
            span.end()
            return

        with self._lock:
            stale = self._expire_locked()
            previous = self._spans.pop(record.id, None)
            if previous is not None:
                stale.append(previous[1])
            self._spans[record.id] = (self._clock(), span)
            while len(self._spans) > self.max_open:
                _, (_, oldest) = self._spans.popitem(last=False)
                stale.append(oldest)

        self._abandon(stale)

    def _end(self, record: EndRecord) -> None:
        with self._lock:
            entry = self._spans.pop(record.id, None)
            stale = self._expire_locked()
        self._abandon(stale)

        if entry is None:
            logger.debug(f"No open span for request {record.id}")
            return
        span = entry[1]

        if record.status is not None:
            span.set_attribute(STATUS_CODE_ATTR, record.status)

        if record.is_error:
            span.set_attribute(ERROR_TYPE_ATTR, record.type.value)
            span.set_status(Status(StatusCode.ERROR, record.errmsg))
        elif record.status is not None and record.status >= 400:
            span.set_attribute(ERROR_TYPE_ATTR, str(record.status))
            span.set_status(Status(StatusCode.ERROR))

        span.end()

    def expire(self) -> int:
        """End spans older than ``ttl``. Returns the number ended."""
        with self._lock:
            stale = self._expire_locked()
        self._abandon(stale)
        return len(stale)

    def _expire_locked(self) -> list:
        deadline = self._clock() - self.ttl
        stale = []
        # insertion order is start order, so stop at the first fresh span
        while self._spans:
            request_id, (started, span) = next(iter(self._spans.items()))
            if started > deadline:
                break
            del self._spans[request_id]
            stale.append(span)
        return stale

    def _abandon(self, spans: list) -> None:
        for span in spans:
            span.set_attribute(ERROR_TYPE_ATTR, ABANDONED)
            span.set_status(Status(StatusCode.ERROR, "request never completed"))
            span.end()
        if spans:
            self.abandoned += len(spans)
            logger.debug(f"Ended {len(spans)} span(s) with no end record")

    @property
    def open_spans(self) -> int:
        with self._lock:
            return len(self._spans)
