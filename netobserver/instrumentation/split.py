"""
Split-call channel for legacy request objects.

A legacy request is driven through two independent calls on a stateful
instance, ``open(method, url, ...)`` then ``send(body)``, and reports its
outcome through an ``onreadystatechange`` handler that fires on every state
transition. The channel

- registers a provisional start record at ``open`` (an opened request may
  never be sent, so nothing is emitted yet),
- emits it at ``send`` with the body attached, and hooks the handler,
- emits a single end record on the terminal (``DONE``) transition, or an
  error record if ``send`` itself raises.

Per-request state (request id, own-traffic flag, completion) lives in a
:class:`RequestContext` kept beside the instance in a weak-keyed map, so the
application's request objects are never tagged with extra fields.
"""

import logging
import threading
import weakref
from dataclasses import dataclass
from typing import Any, List, Optional

from ..types import Channel, EndKind, StartRecord
from ._base import BaseChannel, PatchTarget, call_arguments, error_message
from .error_handlers import ErrorSeverity
from .pending import PendingRequestTable

logger = logging.getLogger(__name__)

DONE = 4

_ORIGINAL_HANDLER = "__netobserver_original_handler__"


@dataclass
class RequestContext:
    """Correlation state for one request instance."""

    request_id: Optional[str] = None
    own_traffic: bool = False
    dispatched: bool = False
    completed: bool = False


class SplitCallChannel(BaseChannel):
    """Instruments ``host.LegacyRequest.open`` and ``host.LegacyRequest.send``."""

    name = "split"
    attribute = "LegacyRequest"

    def __init__(self, *args, reraise_dispatch_errors: bool = True,
                 pending: Optional[PendingRequestTable] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.reraise_dispatch_errors = reraise_dispatch_errors
        self.pending = pending if pending is not None else PendingRequestTable()
        self._contexts: "weakref.WeakKeyDictionary[Any, RequestContext]" = weakref.WeakKeyDictionary()
        self._lock = threading.Lock()

    def is_supported(self, host: Any) -> bool:
        return isinstance(getattr(host, self.attribute, None), type)

    def get_patch_targets(self, host: Any) -> List[PatchTarget]:
        request_class = getattr(host, self.attribute)
        return [
            PatchTarget(request_class, "open", self._wrap_open),
            PatchTarget(request_class, "send", self._wrap_send),
        ]

    # ========== Request contexts ==========

    def context_for(self, request: Any, create: bool = False) -> Optional[RequestContext]:
        """Context of a request instance; None for unknown or unreferenceable instances."""
        try:
            with self._lock:
                context = self._contexts.get(request)
                if context is None and create:
                    context = self._contexts[request] = RequestContext()
                return context
        except TypeError:
            logger.debug(f"Cannot track {type(request).__name__} instances (not weak-referenceable)")
            return None

    def mark_own_traffic(self, request: Any) -> bool:
        """Flag a request as the observer's own traffic; it will never be recorded."""
        context = self.context_for(request, create=True)
        if context is None:
            return False
        context.own_traffic = True
        return True

    # ========== Phase 1: open ==========

    def _wrap_open(self, wrapped, instance, args, kwargs):
        request_id = None
        try:
            request_id = self._register(instance, args, kwargs)
        except Exception as e:
            self.error_handler.handle_error(e, self.name, "register", ErrorSeverity.LOW)

        try:
            return wrapped(*args, **kwargs)
        except Exception:
            # a failed open leaves nothing to send
            self.pending.pop(request_id)
            raise

    def _register(self, instance: Any, args: tuple, kwargs: dict) -> Optional[str]:
        context = self.context_for(instance, create=True)
        if context is None:
            return None

        method = args[0] if args else kwargs.get("method")
        url = args[1] if len(args) > 1 else kwargs.get("url")
        request_id = self.new_request_id()

        previous = context.request_id
        context.request_id = request_id
        context.dispatched = False
        context.completed = False
        if previous is not None:
            self.pending.pop(previous)

        self.pending.register(request_id, StartRecord(
            type=Channel.SPLIT,
            id=request_id,
            url=str(url),
            method=None if method is None else str(method),
            input=call_arguments(args, kwargs),
        ))
        return request_id

    # ========== Phase 2: send ==========

    def _wrap_send(self, wrapped, instance, args, kwargs):
        context = self.context_for(instance)
        request_id = context.request_id if context else None
        record = self.pending.get(request_id)

        if record is None or context.dispatched:
            # opened before install, never opened, or already sent
            return wrapped(*args, **kwargs)
        context.dispatched = True

        # skip the observer's own requests
        if not context.own_traffic:
            record.input = args[0] if args else kwargs.get("body")
            self.emit(record)

        self._attach_completion(instance, context, request_id)

        try:
            return wrapped(*args, **kwargs)
        except Exception as e:
            self._complete(context, request_id, EndKind.SPLIT_ERROR, errmsg=error_message(e))
            if self.reraise_dispatch_errors:
                raise
            logger.debug(f"Suppressed send error for request {request_id}: {e}")
            return None

    def _attach_completion(self, instance: Any, context: RequestContext, request_id: str) -> None:
        def on_ready_state_change():
            try:
                if getattr(instance, "ready_state", None) != DONE:
                    return
                self._complete(context, request_id, EndKind.SPLIT_END,
                               status=getattr(instance, "status", None))
            except Exception as e:
                self.error_handler.handle_error(e, self.name, "completion", ErrorSeverity.LOW)

        existing = getattr(instance, "onreadystatechange", None)
        # a handler we installed on an earlier send is replaced, not stacked
        existing = getattr(existing, _ORIGINAL_HANDLER, existing)

        if callable(existing):
            def handler(*args, **kwargs):
                on_ready_state_change()
                return existing(*args, **kwargs)
        else:
            def handler(*args, **kwargs):
                on_ready_state_change()

        setattr(handler, _ORIGINAL_HANDLER, existing)
        instance.onreadystatechange = handler

    def _complete(self, context: RequestContext, request_id: str, kind: EndKind, **fields) -> None:
        with self._lock:
            if context.completed or context.request_id != request_id:
                return
            context.completed = True

        self.pending.pop(request_id)

        if context.own_traffic:
            return
        self.emit_end(type=kind, id=request_id, **fields)

    def in_flight(self) -> int:
        """Number of requests opened or sent but not yet completed."""
        return len(self.pending)

