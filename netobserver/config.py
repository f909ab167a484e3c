"""
Configuration management for the network observer.

Supports both programmatic configuration and environment variable-based
configuration. Explicit overrides win over environment variables, which win
over the defaults.
"""

import os
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, Mapping, Optional, Union

from .instrumentation.error_handlers import ConfigurationError


@dataclass
class ChannelOptions:
    """Per-channel enablement. All channels are enabled by default."""

    beacon: bool = True
    fetch: bool = True
    split: bool = True

    @classmethod
    def merge(cls, options: Union["ChannelOptions", Mapping[str, Any], None]) -> "ChannelOptions":
        """
        Merge user options over the defaults.

        Unknown keys are rejected so that a typo does not silently leave a
        channel enabled.

        Raises:
            ConfigurationError: If options contains an unknown channel name
        """
        if options is None:
            return cls()
        if isinstance(options, ChannelOptions):
            return cls(**asdict(options))
        if not isinstance(options, Mapping):
            raise ConfigurationError(
                f"channel options must be a mapping, got {type(options).__name__}",
                operation="merge_options"
            )

        known = {f.name for f in fields(cls)}
        unknown = set(options) - known
        if unknown:
            raise ConfigurationError(
                f"unknown channel option(s): {', '.join(sorted(unknown))}",
                operation="merge_options"
            )

        return cls(**{name: bool(value) for name, value in options.items()})

    def enabled(self) -> Dict[str, bool]:
        return asdict(self)


@dataclass
class ObserverConfig:
    """
    Configuration for the HTTP observer.

    All parameters can be set programmatically or via environment variables
    through :meth:`from_env`.
    """

    # ========== Channels ==========
    channels: ChannelOptions = field(default_factory=ChannelOptions)
    """Which channels to instrument"""

    enabled: bool = True
    """Master switch (if False, nothing is patched)"""

    # ========== Split-call behaviour ==========
    reraise_dispatch_errors: bool = True
    """Re-raise exceptions from the split-call send, like the fetch channel does"""

    pending_ttl: float = 300.0
    """Seconds an opened-but-never-sent request is kept in the pending table"""

    pending_max_size: int = 1024
    """Maximum number of pending split-call entries (oldest evicted first)"""

    # ========== Diagnostics ==========
    debug: bool = False
    """Enable debug logging for the netobserver package"""

    def __post_init__(self):
        """Validate configuration after initialization."""
        self.validate()

    def validate(self):
        """
        Validate configuration parameters.

        Raises:
            ValueError: If configuration is invalid
        """
        if not isinstance(self.channels, ChannelOptions):
            raise ValueError("channels must be a ChannelOptions instance")

        if self.pending_ttl <= 0:
            raise ValueError("pending_ttl must be positive")

        if self.pending_max_size < 1:
            raise ValueError("pending_max_size must be at least 1")

    @classmethod
    def from_env(cls, **overrides) -> "ObserverConfig":
        """
        Create configuration from environment variables.

        Environment variables:
            NETOBSERVER_ENABLED - Master switch (default: true)
            NETOBSERVER_BEACON - Instrument beacon sends (default: true)
            NETOBSERVER_FETCH - Instrument fetch requests (default: true)
            NETOBSERVER_SPLIT - Instrument legacy request objects (default: true)
            NETOBSERVER_RERAISE_DISPATCH_ERRORS - Re-raise send errors (default: true)
            NETOBSERVER_PENDING_TTL - Pending entry lifetime in seconds (default: 300)
            NETOBSERVER_PENDING_MAX_SIZE - Pending table capacity (default: 1024)
            NETOBSERVER_DEBUG - Enable debug logging (default: false)

        Args:
            **overrides: Override specific configuration values

        Returns:
            ObserverConfig instance

        Raises:
            ValueError: If environment variables are invalid
        """
        channels = overrides.get("channels")
        if channels is None:
            channels = ChannelOptions(
                beacon=cls._parse_bool(None, os.getenv("NETOBSERVER_BEACON", "true")),
                fetch=cls._parse_bool(None, os.getenv("NETOBSERVER_FETCH", "true")),
                split=cls._parse_bool(None, os.getenv("NETOBSERVER_SPLIT", "true")),
            )
        else:
            channels = ChannelOptions.merge(channels)

        enabled = cls._parse_bool(
            overrides.get("enabled"),
            os.getenv("NETOBSERVER_ENABLED", "true")
        )
        reraise_dispatch_errors = cls._parse_bool(
            overrides.get("reraise_dispatch_errors"),
            os.getenv("NETOBSERVER_RERAISE_DISPATCH_ERRORS", "true")
        )
        pending_ttl = overrides.get("pending_ttl")
        if pending_ttl is None:
            pending_ttl = os.getenv("NETOBSERVER_PENDING_TTL", "300")
        pending_max_size = overrides.get("pending_max_size")
        if pending_max_size is None:
            pending_max_size = os.getenv("NETOBSERVER_PENDING_MAX_SIZE", "1024")
        debug = cls._parse_bool(
            overrides.get("debug"),
            os.getenv("NETOBSERVER_DEBUG", "false")
        )

        return cls(
            channels=channels,
            enabled=enabled,
            reraise_dispatch_errors=reraise_dispatch_errors,
            pending_ttl=float(pending_ttl),
            pending_max_size=int(pending_max_size),
            debug=debug,
        )

    @staticmethod
    def _parse_bool(override_value: Optional[bool], env_value: str) -> bool:
        """
        Parse boolean value from override or environment variable.

        Args:
            override_value: Explicit override value (takes precedence)
            env_value: Environment variable string value

        Returns:
            Boolean value
        """
        if override_value is not None:
            return bool(override_value)

        env_lower = env_value.lower().strip()
        return env_lower in ("true", "1", "yes", "on", "enabled")

    def __repr__(self) -> str:
        return (
            f"ObserverConfig("
            f"channels={self.channels.enabled()}, "
            f"enabled={self.enabled}, "
            f"reraise_dispatch_errors={self.reraise_dispatch_errors})"
        )
