"""
Primitive substitution with store/restore semantics.

The registry swaps an attribute on a target object (a module, a class or an
instance) for a wrapper built from the current value, and remembers the
original so it can be written back. Channels build their wrappers with
:class:`ObservedFunction`, a ``wrapt.FunctionWrapper`` that keeps the
wrapped callable's signature and method binding and marks it as already
instrumented.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import wrapt

from .error_handlers import PatchError, ErrorSeverity

logger = logging.getLogger(__name__)


class ObservedFunction(wrapt.FunctionWrapper):
    """Function wrapper tagged with the channel that installed it."""

    def __init__(self, wrapped: Callable, wrapper: Callable, channel: str):
        super().__init__(wrapped, wrapper)
        self._self_channel = channel

    @property
    def observed_channel(self) -> str:
        return self._self_channel


def is_observed(value: Any) -> bool:
    """True if value is (or is bound from) a wrapper installed by a channel."""
    if isinstance(value, ObservedFunction):
        return True
    if isinstance(value, wrapt.ObjectProxy):
        parent = getattr(value, "_self_parent", None)
        return isinstance(parent, ObservedFunction)
    return False


def _describe(target: Any) -> str:
    return getattr(target, "__name__", None) or type(target).__name__


def _owns_attribute(target: Any, name: str) -> bool:
    namespace = getattr(target, "__dict__", None)
    if namespace is None:
        # __slots__ or builtin object, assume the attribute lives on target
        return True
    return name in namespace


@dataclass
class _Patch:
    target: Any
    name: str
    original: Any
    owned: bool


class PatchRegistry:
    """
    Registry of substituted primitives.

    Exactly one writer per ``(target, name)`` is assumed. Installing the same
    attribute twice without a restore in between raises :class:`PatchError`;
    ordering of install/restore calls is otherwise the caller's business.
    """

    def __init__(self):
        self._patches: Dict[Tuple[int, str], _Patch] = {}

    @staticmethod
    def _key(target: Any, name: str) -> Tuple[int, str]:
        return (id(target), name)

    def install(self, target: Any, name: str,
                wrapper_factory: Callable[[Any], Any]) -> Any:
        """
        Replace ``target.name`` with ``wrapper_factory(original)``.

        Returns:
            The installed replacement

        Raises:
            PatchError: If the attribute is already patched or cannot be read
        """
        key = self._key(target, name)
        if key in self._patches:
            raise PatchError(
                f"{name} is already patched",
                severity=ErrorSeverity.HIGH,
                operation="install"
            )

        try:
            original = getattr(target, name)
        except AttributeError as e:
            raise PatchError(
                f"{name} not found on {target!r}",
                severity=ErrorSeverity.HIGH,
                operation="install",
                original_error=e
            )

        owned = _owns_attribute(target, name)
        if owned and hasattr(target, "__dict__"):
            # raw class attribute, so descriptors like staticmethod survive restore
            original = vars(target)[name]
        replacement = wrapper_factory(original)
        setattr(target, name, replacement)

        self._patches[key] = _Patch(target=target, name=name, original=original, owned=owned)
        logger.debug(f"Patched {name} on {_describe(target)}")
        return replacement

    def wrap(self, target: Any, name: str, wrapper: Callable, channel: str) -> Any:
        """Install a wrapt-style ``wrapper(wrapped, instance, args, kwargs)``."""
        return self.install(
            target, name,
            lambda original: ObservedFunction(original, wrapper, channel)
        )

    def restore(self, target: Any, name: str) -> bool:
        """
        Write the stored original back.

        Attributes that were inherited rather than set on the target itself
        are deleted so lookup falls through to the owner again.

        Returns:
            True if a patch was removed, False if none was installed
        """
        patch = self._patches.pop(self._key(target, name), None)
        if patch is None:
            return False

        if patch.owned:
            setattr(target, name, patch.original)
        else:
            delattr(target, name)

        logger.debug(f"Restored {name} on {_describe(target)}")
        return True

    def is_patched(self, target: Any, name: str) -> bool:
        return self._key(target, name) in self._patches

    def original(self, target: Any, name: str) -> Optional[Any]:
        """Stored original for a patched attribute, or None."""
        patch = self._patches.get(self._key(target, name))
        return patch.original if patch else None

    def patched(self) -> List[str]:
        """Names of currently patched attributes, for diagnostics."""
        return [f"{_describe(p.target)}.{p.name}" for p in self._patches.values()]

    def restore_all(self) -> int:
        """Restore every patch, newest first. Returns the number restored."""
        restored = 0
        for patch in reversed(list(self._patches.values())):
            if self.restore(patch.target, patch.name):
                restored += 1
        return restored


# Global registry instance
_registry = PatchRegistry()


def get_registry() -> PatchRegistry:
    """Get the process-wide patch registry."""
    return _registry
