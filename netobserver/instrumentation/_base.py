"""
Base channel framework for network call instrumentation.

Each channel knows how to detect its primitive on a host environment, which
attributes to substitute, and how to turn an intercepted call into records.
The base class owns the common lifecycle: capability-gated install through
the patch registry, channel-scoped uninstall, and isolated record emission.

Usage:
    class MyChannel(BaseChannel):
        name = "mine"

        def is_supported(self, host) -> bool:
            return callable(getattr(host, "my_primitive", None))

        def get_patch_targets(self, host) -> List[PatchTarget]:
            return [PatchTarget(host, "my_primitive", self._wrap)]
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from ..types import StartRecord, EndRecord
from .error_handlers import (
    ErrorSeverity,
    ObserverErrorHandler,
    emit_safely,
    instrumentation_context,
)
from .patching import PatchRegistry, get_registry

logger = logging.getLogger(__name__)

Observer = Callable[[Any], Any]


def default_id_generator() -> str:
    return uuid.uuid4().hex


@dataclass
class PatchTarget:
    """One attribute a channel substitutes."""

    owner: Any                      # host object or class holding the primitive
    attribute: str                  # "send_beacon", "fetch", "open", ...
    wrapper: Callable               # wrapt wrapper(wrapped, instance, args, kwargs)

    def __post_init__(self):
        if not self.attribute:
            raise ValueError("attribute is required")


class BaseChannel(ABC):
    """
    Abstract base class for all instrumented channels.

    Subclasses only decide *what* to patch and *what* to record; install,
    uninstall and emission behave the same for every channel.
    """

    name: str = "base"

    def __init__(
        self,
        onobserved: Optional[Observer] = None,
        registry: Optional[PatchRegistry] = None,
        error_handler: Optional[ObserverErrorHandler] = None,
        id_generator: Optional[Callable[[], Any]] = None,
    ):
        self.onobserved = onobserved
        self.registry = registry or get_registry()
        self.error_handler = error_handler or ObserverErrorHandler()
        self.id_generator = id_generator or default_id_generator
        self.active = False
        self._installed: List[PatchTarget] = []

    @abstractmethod
    def is_supported(self, host: Any) -> bool:
        """Capability check: does the host expose a primitive this channel can patch?"""
        pass

    @abstractmethod
    def get_patch_targets(self, host: Any) -> List[PatchTarget]:
        """Return the attributes to substitute on a supported host."""
        pass

    def install(self, host: Any) -> bool:
        """
        Patch the channel's primitives on ``host``.

        Unsupported hosts are skipped silently. A failure half way through is
        rolled back so a channel is either fully installed or not at all.

        Returns:
            True if the channel is active afterwards
        """
        if self.active:
            logger.debug(f"{self.name} channel already installed")
            return True

        if not self.is_supported(host):
            logger.debug(f"{self.name} channel not supported by host, skipping")
            return False

        installed: List[PatchTarget] = []
        with instrumentation_context(self.error_handler, self.name, "install", ErrorSeverity.HIGH):
            for target in self.get_patch_targets(host):
                self.registry.wrap(target.owner, target.attribute, target.wrapper, self.name)
                installed.append(target)
            self._installed = installed
            self.active = True

        if not self.active:
            for target in reversed(installed):
                self.registry.restore(target.owner, target.attribute)

        return self.active

    def uninstall(self) -> bool:
        """
        Restore this channel's own primitives, and nothing else.

        Requests already in flight keep their completion handlers; only future
        calls stop being observed.
        """
        if not self.active:
            return True

        restored = True
        for target in reversed(self._installed):
            with instrumentation_context(self.error_handler, self.name, "uninstall", ErrorSeverity.HIGH):
                if not self.registry.restore(target.owner, target.attribute):
                    logger.debug(f"{self.name}: {target.attribute} was not patched")
                    restored = False

        self._installed = []
        self.active = False
        return restored

    def new_request_id(self) -> str:
        return str(self.id_generator())

    def emit(self, record: Any) -> bool:
        """Hand a record to the observer; callback failures never reach the caller."""
        return emit_safely(self.onobserved, record, self.error_handler, self.name)

    def emit_start(self, **fields) -> Optional[StartRecord]:
        record = self._build(StartRecord, fields)
        if record is not None:
            self.emit(record)
        return record

    def emit_end(self, **fields) -> Optional[EndRecord]:
        record = self._build(EndRecord, fields)
        if record is not None:
            self.emit(record)
        return record

    def _build(self, model, fields):
        try:
            return model(**fields)
        except ValidationError as e:
            self.error_handler.handle_error(e, self.name, "build_record", ErrorSeverity.LOW)
            return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(active={self.active})"


def call_arguments(args: tuple, kwargs: dict) -> List[Any]:
    """Original argument list of an intercepted call; keyword arguments trail as a dict."""
    arguments = list(args)
    if kwargs:
        arguments.append(dict(kwargs))
    return arguments


def error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__
