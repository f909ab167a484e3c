"""
HTTP observer facade.

Composes the beacon, fetch and split-call channels under one configuration
and one install/uninstall lifecycle.

Basic Usage:
    >>> from netobserver import HttpObserver
    >>> observer = HttpObserver(onobserved=print)
    >>> observer.status
    ChannelStatus(beacon=True, fetch=True, split=True)
    >>> observer.uninstall()
"""

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .config import ChannelOptions, ObserverConfig
from .instrumentation import (
    BaseChannel,
    BeaconChannel,
    FetchChannel,
    SplitCallChannel,
    PendingRequestTable,
    PatchRegistry,
    ObserverErrorHandler,
    get_registry,
)
from .types import ChannelStatus

logger = logging.getLogger(__name__)

Options = Union[ChannelOptions, Mapping[str, Any], bool, None]


class HttpObserver:
    """
    Observe outbound network calls of a host environment.

    Args:
        onobserved: Callback receiving every StartRecord and EndRecord
        options: Channel enablement merged over ``{beacon, fetch, split: True}``;
            ``False`` (or another falsy non-mapping) creates an inert
            observer that patches nothing
        host: Environment exposing ``send_beacon``, ``fetch`` and
            ``LegacyRequest``; defaults to the shared httpx host
        config: Full configuration; ``options`` overrides its channels
        id_generator: Callable returning unique request ids
        registry: Patch registry; defaults to the process-wide one
    """

    name = "HttpObserver"

    def __init__(
        self,
        onobserved: Optional[Callable[[Any], Any]] = None,
        options: Options = None,
        *,
        host: Any = None,
        config: Optional[ObserverConfig] = None,
        id_generator: Optional[Callable[[], Any]] = None,
        registry: Optional[PatchRegistry] = None,
        install: bool = True,
    ):
        self.onobserved = onobserved
        self.active = False
        self._status = ChannelStatus()
        self._host = host
        self.error_handler = ObserverErrorHandler()

        if options is True:
            options = None
        inert = (
            (options is not None and not isinstance(options, (Mapping, ChannelOptions)) and not options)
            or (config is not None and not config.enabled)
        )
        config = config or ObserverConfig()
        if not inert and options is not None:
            config = replace(config, channels=ChannelOptions.merge(options))
        self.config = config
        self.options = config.channels

        if config.debug:
            logging.getLogger("netobserver").setLevel(logging.DEBUG)

        channel_kwargs = dict(
            onobserved=onobserved,
            registry=registry or get_registry(),
            error_handler=self.error_handler,
            id_generator=id_generator,
        )
        self.beacon = BeaconChannel(**channel_kwargs)
        self.fetch = FetchChannel(**channel_kwargs)
        self.split = SplitCallChannel(
            reraise_dispatch_errors=config.reraise_dispatch_errors,
            pending=PendingRequestTable(max_size=config.pending_max_size, ttl=config.pending_ttl),
            **channel_kwargs,
        )

        self.inert = inert
        if inert:
            logger.debug("HTTP observer disabled by configuration")
            return

        if install:
            self.install()

    @property
    def host(self) -> Any:
        if self._host is None:
            from .host import get_default_host
            self._host = get_default_host()
        return self._host

    @property
    def status(self) -> ChannelStatus:
        """Which channels are patched and active (a copy)."""
        return replace(self._status)

    def _channels(self) -> Dict[str, BaseChannel]:
        return {"beacon": self.beacon, "fetch": self.fetch, "split": self.split}

    def install(self) -> ChannelStatus:
        """Patch every enabled channel the host supports."""
        if self.inert:
            return self.status

        enabled = self.options.enabled()
        for name, channel in self._channels().items():
            if enabled[name]:
                setattr(self._status, name, channel.install(self.host))

        self.active = True
        active = [name for name, on in self._status.to_dict().items() if on]
        logger.info(f"HTTP observer installed ({', '.join(active) or 'no channels'})")
        return self.status

    def uninstall(self) -> ChannelStatus:
        """Restore each enabled channel's own primitives."""
        if self.inert:
            return self.status

        enabled = self.options.enabled()
        for name, channel in self._channels().items():
            if enabled[name]:
                channel.uninstall()
                setattr(self._status, name, False)

        self.active = False
        logger.info("HTTP observer uninstalled")
        return self.status

    def mark_own_traffic(self, request: Any) -> bool:
        """Exclude a legacy request object (e.g. a telemetry upload) from observation."""
        return self.split.mark_own_traffic(request)

    @property
    def pending_requests(self) -> int:
        return self.split.in_flight()

    @property
    def dropped_records(self) -> int:
        """Records whose delivery failed because the callback raised."""
        return sum(
            count for key, count in self.error_handler.error_counts.items()
            if ".emit_" in key
        )

    def __enter__(self) -> "HttpObserver":
        if not self.active:
            self.install()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.uninstall()

    def __repr__(self) -> str:
        return f"{self.name}(status={self._status.to_dict()}, inert={self.inert})"
