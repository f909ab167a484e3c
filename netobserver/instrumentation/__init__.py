"""
Channel instrumentation for outbound network primitives.

Each channel substitutes one kind of primitive through the patch registry and
turns intercepted calls into start/end records.
"""

from ._base import BaseChannel, PatchTarget, default_id_generator
from .beacon import BeaconChannel
from .fetch import FetchChannel, FetchTarget, InputKind, normalize_fetch_input
from .split import SplitCallChannel, RequestContext
from .pending import PendingRequestTable
from .patching import PatchRegistry, ObservedFunction, get_registry, is_observed
from .error_handlers import (
    NetObserverError,
    PatchError,
    ConfigurationError,
    ErrorSeverity,
    ObserverErrorHandler,
)

__all__ = [
    "BaseChannel",
    "PatchTarget",
    "default_id_generator",
    "BeaconChannel",
    "FetchChannel",
    "FetchTarget",
    "InputKind",
    "normalize_fetch_input",
    "SplitCallChannel",
    "RequestContext",
    "PendingRequestTable",
    "PatchRegistry",
    "ObservedFunction",
    "get_registry",
    "is_observed",
    "NetObserverError",
    "PatchError",
    "ConfigurationError",
    "ErrorSeverity",
    "ObserverErrorHandler",
]
