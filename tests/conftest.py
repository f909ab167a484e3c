"""Pytest configuration and fixtures for netobserver tests."""

import itertools
from types import SimpleNamespace

import pytest

from netobserver import HttpObserver, PatchRegistry
from netobserver.types import EndRecord, StartRecord


def make_request_class():
    """A fresh legacy request class per host, so patching never leaks between tests."""

    class FakeLegacyRequest:
        UNSENT = 0
        OPENED = 1
        HEADERS_RECEIVED = 2
        LOADING = 3
        DONE = 4

        def __init__(self):
            self.onreadystatechange = None
            self.ready_state = self.UNSENT
            self.status = 0
            self.method = None
            self.url = None
            self.bodies = []
            self.respond_status = 200
            self.fail_with = None
            self.deferred = False

        def open(self, method, url, async_=True):
            self.method = method
            self.url = url
            self.status = 0
            self._set_state(self.OPENED)

        def send(self, body=None):
            self.bodies.append(body)
            if self.fail_with is not None:
                raise self.fail_with
            if not self.deferred:
                self.finish()

        def finish(self, status=None):
            self.status = self.respond_status if status is None else status
            self._set_state(self.HEADERS_RECEIVED)
            self._set_state(self.LOADING)
            self._set_state(self.DONE)

        def _set_state(self, state):
            self.ready_state = state
            if self.onreadystatechange is not None:
                self.onreadystatechange()

    return FakeLegacyRequest


class FakeHost:
    """In-memory host exposing the three primitives."""

    def __init__(self):
        self.beacons = []
        self.fetches = []
        self.fetch_status = 200
        self.fetch_error = None
        self.beacon_result = True
        self.LegacyRequest = make_request_class()

    def send_beacon(self, url, data=None):
        self.beacons.append((url, data))
        return self.beacon_result

    async def fetch(self, input, config=None):
        self.fetches.append((input, config))
        if self.fetch_error is not None:
            raise self.fetch_error
        return SimpleNamespace(status_code=self.fetch_status)


class Recorder:
    """onobserved callback that keeps every record."""

    def __init__(self):
        self.records = []

    def __call__(self, record):
        self.records.append(record)

    @property
    def starts(self):
        return [r for r in self.records if isinstance(r, StartRecord)]

    @property
    def ends(self):
        return [r for r in self.records if isinstance(r, EndRecord)]

    def dicts(self):
        return [r.to_dict() for r in self.records]


@pytest.fixture
def host():
    """Create a fake host environment."""
    return FakeHost()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def registry():
    """Fresh patch registry, so tests never touch the process-wide one."""
    return PatchRegistry()


@pytest.fixture
def ids():
    """Sequential request ids: req-1, req-2, ..."""
    counter = itertools.count(1)
    return lambda: f"req-{next(counter)}"


@pytest.fixture
def observer(host, recorder, registry, ids):
    """Observer installed on the fake host with all channels enabled."""
    observer = HttpObserver(recorder, host=host, registry=registry, id_generator=ids)
    yield observer
    observer.uninstall()
