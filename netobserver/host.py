"""
Default host environment backed by httpx.

Provides the three outbound primitives the observer instruments:

- ``send_beacon(url, data)`` queues a POST on a worker thread and reports
  whether it was queued,
- ``fetch(input, config)`` is an async request returning ``httpx.Response``,
- ``LegacyRequest`` is a request object driven by ``open``/``send`` that
  reports progress through ``onreadystatechange``.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)


class InvalidStateError(RuntimeError):
    """A legacy request method was called in the wrong state."""
    pass


_shared_client: Optional[httpx.Client] = None
_shared_executor: Optional[ThreadPoolExecutor] = None
_shared_lock = threading.Lock()


def _default_client() -> httpx.Client:
    global _shared_client
    with _shared_lock:
        if _shared_client is None:
            _shared_client = httpx.Client()
        return _shared_client


def _default_executor() -> ThreadPoolExecutor:
    global _shared_executor
    with _shared_lock:
        if _shared_executor is None:
            _shared_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="netobserver-request")
        return _shared_executor


class LegacyRequest:
    """
    Request object with a split ``open``/``send`` protocol.

    ``onreadystatechange`` is called with no arguments on every transition of
    ``ready_state``. In async mode (the default) the request runs on a worker
    thread and ``send`` returns immediately; use :meth:`wait` to block until
    it is done.
    """

    UNSENT = 0
    OPENED = 1
    HEADERS_RECEIVED = 2
    LOADING = 3
    DONE = 4

    def __init__(self, client: Optional[httpx.Client] = None,
                 executor: Optional[ThreadPoolExecutor] = None):
        self._client = client
        self._executor = executor
        self.onreadystatechange: Optional[Callable[..., Any]] = None
        self.ready_state = self.UNSENT
        self.status = 0
        self.response_text = ""
        self.response_headers: Dict[str, str] = {}
        self.error: Optional[BaseException] = None
        self.timeout: Optional[float] = None
        self._method: Optional[str] = None
        self._url: Optional[str] = None
        self._async = True
        self._headers: Dict[str, str] = {}
        self._sent = False
        self._aborted = False
        self._future: Optional[Future] = None

    def open(self, method: str, url: Any, async_: bool = True) -> None:
        if not method:
            raise ValueError("method is required")
        self._method = method.upper()
        self._url = str(url)
        self._async = async_
        self._headers = {}
        self._sent = False
        self._aborted = False
        self.status = 0
        self.response_text = ""
        self.response_headers = {}
        self.error = None
        self._set_state(self.OPENED)

    def set_request_header(self, name: str, value: str) -> None:
        if self.ready_state != self.OPENED or self._sent:
            raise InvalidStateError("set_request_header requires an opened, unsent request")
        self._headers[name] = value

    def send(self, body: Any = None) -> None:
        if self.ready_state != self.OPENED or self._sent:
            raise InvalidStateError("send requires an opened, unsent request")
        self._sent = True

        if self._async:
            executor = self._executor or _default_executor()
            self._future = executor.submit(self._perform, body)
        else:
            self._perform(body)

    def abort(self) -> None:
        if not self._sent or self.ready_state == self.DONE:
            return
        self._aborted = True
        self.status = 0
        self._set_state(self.DONE)

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until an async request has finished."""
        if self._future is not None:
            self._future.result(timeout=timeout)

    def _perform(self, body: Any) -> None:
        client = self._client or _default_client()
        try:
            response = client.request(
                self._method, self._url,
                content=body, headers=self._headers,
                timeout=self.timeout if self.timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except Exception as e:
            # any failure, including a rejected body, still ends the request
            logger.debug(f"{self._method} {self._url} failed: {e}")
            if not self._aborted:
                self.error = e
                self.status = 0
                self._set_state(self.DONE)
            return

        if self._aborted:
            return

        self.status = response.status_code
        self.response_headers = dict(response.headers)
        self._set_state(self.HEADERS_RECEIVED)
        self._set_state(self.LOADING)
        self.response_text = response.text
        self._set_state(self.DONE)

    def _set_state(self, state: int) -> None:
        self.ready_state = state
        handler = self.onreadystatechange
        if handler is None:
            return
        try:
            handler()
        except Exception:
            # handler errors are reported, not propagated into the request
            logger.exception("onreadystatechange handler raised")


class HttpxHost:
    """Host environment exposing ``send_beacon``, ``fetch`` and ``LegacyRequest``."""

    LegacyRequest = LegacyRequest

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        async_client: Optional[httpx.AsyncClient] = None,
        max_workers: int = 2,
    ):
        self._client = client
        self._async_client = async_client
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="netobserver-beacon")
        self._closed = False

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client()
        return self._client

    @property
    def async_client(self) -> httpx.AsyncClient:
        if self._async_client is None:
            self._async_client = httpx.AsyncClient()
        return self._async_client

    def send_beacon(self, url: Any, data: Any = None) -> bool:
        """
        Queue a POST of ``data`` to ``url``.

        Returns:
            True if the beacon was queued, False if the host is closed
        """
        if self._closed:
            return False
        try:
            self._executor.submit(self._post_beacon, str(url), data)
        except RuntimeError:
            return False
        return True

    def _post_beacon(self, url: str, data: Any) -> None:
        try:
            if isinstance(data, Mapping):
                self.client.post(url, data=data)
            else:
                self.client.post(url, content=data)
        except httpx.HTTPError as e:
            logger.debug(f"Beacon to {url} failed: {e}")

    async def fetch(self, input: Any, config: Optional[Mapping[str, Any]] = None) -> httpx.Response:
        """
        Perform a request.

        ``input`` is a URL (str or ``httpx.URL``) or an ``httpx.Request``.
        ``config`` may carry ``method``, ``headers``, ``content`` and ``params``.
        """
        config = dict(config or {})

        if isinstance(input, httpx.Request) and not config:
            return await self.async_client.send(input)

        if isinstance(input, httpx.Request):
            request = self.async_client.build_request(
                config.get("method", input.method),
                input.url,
                headers=config.get("headers", input.headers),
                content=config.get("content", input.content),
                params=config.get("params"),
            )
        else:
            request = self.async_client.build_request(
                config.get("method", "GET"),
                str(input),
                headers=config.get("headers"),
                content=config.get("content"),
                params=config.get("params"),
            )
        return await self.async_client.send(request)

    def close(self) -> None:
        self._closed = True
        self._executor.shutdown(wait=True)
        if self._client is not None:
            self._client.close()

    async def aclose(self) -> None:
        self.close()
        if self._async_client is not None:
            await self._async_client.aclose()


_default_host: Optional[HttpxHost] = None


def get_default_host() -> HttpxHost:
    """Shared host used when an observer is created without one."""
    global _default_host
    with _shared_lock:
        if _default_host is None:
            _default_host = HttpxHost()
        return _default_host
