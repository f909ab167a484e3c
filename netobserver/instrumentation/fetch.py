"""
Fetch channel.

A fetch is a single call that settles later: the primitive returns an
awaitable (or, for a synchronous host, the response itself). The start record
is emitted before the primitive runs, and the end record when the result
settles. HTTP error statuses settle successfully; only transport-level
failures and cancellation produce a ``fetcherror`` record, after which the
original exception propagates unchanged.

Correlation is carried in the closure of each call, so any number of fetches
may be in flight and settle in any order.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Optional

from ..types import Channel, EndKind
from ._base import BaseChannel, PatchTarget, call_arguments, error_message
from .patching import is_observed

logger = logging.getLogger(__name__)

DEFAULT_METHOD = "GET"


class InputKind(Enum):
    """Shape of the first argument passed to fetch."""
    URL = "url"                 # plain string URL
    DESCRIPTOR = "descriptor"   # request object or mapping carrying url/method
    COERCED = "coerced"         # anything else, stringified


@dataclass(frozen=True)
class FetchTarget:
    """Request metadata resolved once from the fetch call shape."""

    kind: InputKind
    url: str
    method: str


def _field(source: Any, name: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _is_descriptor(value: Any) -> bool:
    if isinstance(value, Mapping):
        return "url" in value
    return hasattr(value, "url")


def normalize_fetch_input(input: Any, config: Any = None) -> FetchTarget:
    """
    Resolve url and method from ``fetch(input, config)``.

    A string input is the URL and the method defaults to GET. A request
    descriptor contributes its own url and, when set, its method. Anything
    else is stringified. A method given in ``config`` always wins.
    """
    if isinstance(input, str):
        target = FetchTarget(InputKind.URL, input, DEFAULT_METHOD)
    elif _is_descriptor(input):
        method = _field(input, "method") or DEFAULT_METHOD
        target = FetchTarget(InputKind.DESCRIPTOR, str(_field(input, "url")), str(method))
    else:
        target = FetchTarget(InputKind.COERCED, str(input), DEFAULT_METHOD)

    override = _field(config, "method")
    if override:
        target = FetchTarget(target.kind, target.url, str(override))

    return target


def response_status(response: Any) -> Optional[int]:
    """HTTP status of a response-like object (httpx ``status_code`` or ``status``)."""
    status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(response, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


class FetchChannel(BaseChannel):
    """Instruments ``host.fetch(input, config=None)``."""

    name = "fetch"
    attribute = "fetch"

    def is_supported(self, host: Any) -> bool:
        primitive = getattr(host, self.attribute, None)
        # never wrap a fetch that is already instrumented
        return callable(primitive) and not is_observed(primitive)

    def get_patch_targets(self, host: Any) -> List[PatchTarget]:
        return [PatchTarget(host, self.attribute, self._wrap_fetch)]

    def _wrap_fetch(self, wrapped, instance, args, kwargs):
        input = args[0] if args else kwargs.get("input")
        config = args[1] if len(args) > 1 else kwargs.get("config")

        try:
            target = normalize_fetch_input(input, config)
        except Exception as e:
            logger.debug(f"Could not resolve fetch target, passing through: {e}")
            return wrapped(*args, **kwargs)

        request_id = self.new_request_id()

        # record before fetch
        self.emit_start(
            type=Channel.FETCH,
            id=request_id,
            method=target.method,
            url=target.url,
            input=call_arguments(args, kwargs),
        )

        try:
            result = wrapped(*args, **kwargs)
        except Exception as e:
            self._emit_error(request_id, e)
            raise

        if asyncio.isfuture(result):
            result.add_done_callback(lambda future: self._on_future_done(request_id, future))
            return result

        if inspect.isawaitable(result):
            return self._settle(request_id, result)

        self._emit_response(request_id, result)
        return result

    async def _settle(self, request_id: str, pending: Any) -> Any:
        try:
            response = await pending
        except (Exception, asyncio.CancelledError) as e:
            self._emit_error(request_id, e)
            raise

        self._emit_response(request_id, response)
        return response

    def _on_future_done(self, request_id: str, future: "asyncio.Future") -> None:
        if future.cancelled():
            self._emit_error(request_id, asyncio.CancelledError())
            return
        exc = future.exception()
        if exc is not None:
            self._emit_error(request_id, exc)
        else:
            self._emit_response(request_id, future.result())

    def _emit_response(self, request_id: str, response: Any) -> None:
        self.emit_end(type=EndKind.FETCH_END, id=request_id, status=response_status(response))

    def _emit_error(self, request_id: str, exc: BaseException) -> None:
        self.emit_end(type=EndKind.FETCH_ERROR, id=request_id, errmsg=error_message(exc))
