"""Tests for the httpx-backed host and end-to-end observation through it."""

import threading
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

from netobserver import HttpObserver
from netobserver.host import HttpxHost, InvalidStateError, LegacyRequest
from netobserver.types import Channel, EndKind


class Server:
    """MockTransport handler that records requests and answers by path."""

    def __init__(self, statuses=None):
        self.statuses = statuses or {}
        self.requests = []
        self.lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self.lock:
            self.requests.append(request)
        if request.url.path == "/down":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(self.statuses.get(request.url.path, 200), text="ok")


@pytest.fixture
def server():
    return Server({"/b": 500})


@pytest.fixture
def client(server):
    client = httpx.Client(transport=httpx.MockTransport(server), base_url="https://example.test")
    yield client
    client.close()


class TestLegacyRequest:
    """Test the open/send request object."""

    def test_synchronous_request_lifecycle(self, client, server):
        request = LegacyRequest(client=client)
        states = []
        request.onreadystatechange = lambda: states.append(request.ready_state)

        request.open("post", "https://example.test/b", async_=False)
        request.set_request_header("X-Trace", "1")
        request.send(b"payload")

        assert states == [1, 2, 3, 4]
        assert request.status == 500
        assert request.response_text == "ok"
        sent = server.requests[0]
        assert sent.method == "POST"
        assert sent.content == b"payload"
        assert sent.headers["X-Trace"] == "1"

    def test_asynchronous_request(self, client):
        with ThreadPoolExecutor(max_workers=1) as executor:
            request = LegacyRequest(client=client, executor=executor)
            request.open("GET", "https://example.test/ok")
            request.send()
            request.wait(timeout=5)

        assert request.ready_state == LegacyRequest.DONE
        assert request.status == 200

    def test_transport_error_completes_with_status_zero(self, client):
        request = LegacyRequest(client=client)
        request.open("GET", "https://example.test/down", async_=False)
        request.send()

        assert request.ready_state == LegacyRequest.DONE
        assert request.status == 0
        assert isinstance(request.error, httpx.ConnectError)

    def test_unsupported_body_still_completes(self, client):
        with ThreadPoolExecutor(max_workers=1) as executor:
            request = LegacyRequest(client=client, executor=executor)
            request.open("POST", "https://example.test/ok")
            request.send(12345)
            request.wait(timeout=5)

        assert request.ready_state == LegacyRequest.DONE
        assert request.status == 0
        assert isinstance(request.error, TypeError)

    def test_send_requires_open(self, client):
        with pytest.raises(InvalidStateError):
            LegacyRequest(client=client).send()

    def test_send_twice_raises(self, client):
        request = LegacyRequest(client=client)
        request.open("GET", "https://example.test/ok", async_=False)
        request.send()

        with pytest.raises(InvalidStateError):
            request.send()

    def test_open_requires_method(self, client):
        with pytest.raises(ValueError):
            LegacyRequest(client=client).open("", "https://example.test/ok")

    def test_handler_errors_do_not_break_request(self, client, caplog):
        request = LegacyRequest(client=client)
        request.onreadystatechange = lambda: 1 / 0

        request.open("GET", "https://example.test/ok", async_=False)
        request.send()

        assert request.status == 200
        assert "onreadystatechange handler raised" in caplog.text


class TestHttpxHost:
    """Test beacon and fetch primitives."""

    def test_send_beacon_queues_post(self, client, server):
        host = HttpxHost(client=client)

        assert host.send_beacon("https://example.test/c", b"data") is True
        host.close()

        assert server.requests[0].method == "POST"
        assert server.requests[0].content == b"data"

    def test_send_beacon_after_close(self, client):
        host = HttpxHost(client=client)
        host.close()

        assert host.send_beacon("https://example.test/c", b"data") is False

    @pytest.mark.asyncio
    async def test_fetch(self, server):
        async_client = httpx.AsyncClient(transport=httpx.MockTransport(server))
        host = HttpxHost(async_client=async_client)

        response = await host.fetch("https://example.test/a")
        posted = await host.fetch(
            httpx.Request("GET", "https://example.test/a"), {"method": "PUT", "content": b"x"}
        )

        assert response.status_code == 200
        assert server.requests[1].method == "PUT"
        assert posted.status_code == 200
        await host.aclose()


class TestObservedHttpxHost:
    """End-to-end observation of the httpx host."""

    @pytest.fixture
    def host(self, server):
        host = HttpxHost(
            client=httpx.Client(transport=httpx.MockTransport(server)),
            async_client=httpx.AsyncClient(transport=httpx.MockTransport(server)),
        )
        yield host
        host.close()

    @pytest.mark.asyncio
    async def test_fetch_and_legacy_request(self, host, recorder, registry, ids):
        observer = HttpObserver(recorder, host=host, registry=registry, id_generator=ids)
        try:
            await host.fetch("https://example.test/a")

            request = host.LegacyRequest(client=host.client)
            request.open("POST", "https://example.test/b", async_=False)
            request.send("payload")
        finally:
            observer.uninstall()

        assert recorder.dicts() == [
            {"type": Channel.FETCH, "id": "req-1", "method": "GET",
             "url": "https://example.test/a", "input": ["https://example.test/a"]},
            {"type": EndKind.FETCH_END, "id": "req-1", "status": 200},
            {"type": Channel.SPLIT, "id": "req-2", "method": "POST",
             "url": "https://example.test/b", "input": "payload"},
            {"type": EndKind.SPLIT_END, "id": "req-2", "status": 500},
        ]
        assert not registry.patched()

    def test_failed_async_request_emits_end_record(self, host, recorder, registry, ids):
        observer = HttpObserver(recorder, host=host, registry=registry, id_generator=ids)
        try:
            with ThreadPoolExecutor(max_workers=1) as executor:
                request = host.LegacyRequest(client=host.client, executor=executor)
                request.open("POST", "https://example.test/b")
                request.send(12345)
                request.wait(timeout=5)
        finally:
            observer.uninstall()

        assert [r.type for r in recorder.records] == [Channel.SPLIT, EndKind.SPLIT_END]
        assert recorder.ends[0].to_dict() == {"type": EndKind.SPLIT_END, "id": "req-1", "status": 0}
        assert observer.pending_requests == 0

    def test_beacon(self, host, recorder, registry):
        observer = HttpObserver(recorder, host=host, registry=registry)
        try:
            assert host.send_beacon("https://example.test/c", b"data") is True
        finally:
            observer.uninstall()

        assert recorder.dicts() == [{"type": Channel.BEACON, "url": "https://example.test/c"}]
