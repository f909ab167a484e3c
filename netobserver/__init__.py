"""
netobserver - transparent observation of outbound network calls.

Wraps a host environment's beacon, fetch and legacy request primitives so
every call produces a start record and, when completion is observable, an
end record with the same request id, without changing what the caller sees.

Basic Usage:
    >>> from netobserver import HttpObserver
    >>> observer = HttpObserver(onobserved=lambda record: print(record.to_dict()))
    >>> # ... application traffic ...
    >>> observer.uninstall()

Selective channels:
    >>> observer = HttpObserver(print, {"beacon": False})
"""

from .config import ChannelOptions, ObserverConfig
from .observer import HttpObserver
from .types import Channel, ChannelStatus, EndKind, EndRecord, StartRecord
from .instrumentation import (
    NetObserverError,
    PatchError,
    ConfigurationError,
    PatchRegistry,
    PendingRequestTable,
    get_registry,
)

__version__ = "0.1.0"

__all__ = [
    "HttpObserver",
    "ChannelOptions",
    "ObserverConfig",
    "Channel",
    "ChannelStatus",
    "EndKind",
    "EndRecord",
    "StartRecord",
    "NetObserverError",
    "PatchError",
    "ConfigurationError",
    "PatchRegistry",
    "PendingRequestTable",
    "get_registry",
]
