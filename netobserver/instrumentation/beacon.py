"""
Beacon channel.

Beacons are one-shot, fire-and-forget sends: the primitive returns a boolean
saying whether the payload was queued, and nothing is ever heard back. The
channel therefore emits a single start record without an id and no end
record.
"""

import logging
from typing import Any, List

from ..types import Channel
from ._base import BaseChannel, PatchTarget

logger = logging.getLogger(__name__)


class BeaconChannel(BaseChannel):
    """Instruments ``host.send_beacon(url, data)``."""

    name = "beacon"
    attribute = "send_beacon"

    def is_supported(self, host: Any) -> bool:
        return callable(getattr(host, self.attribute, None))

    def get_patch_targets(self, host: Any) -> List[PatchTarget]:
        return [PatchTarget(host, self.attribute, self._wrap_send_beacon)]

    def _wrap_send_beacon(self, wrapped, instance, args, kwargs):
        # the send happens first, the record must not delay it
        result = wrapped(*args, **kwargs)

        url = args[0] if args else kwargs.get("url")
        self.emit_start(type=Channel.BEACON, url=str(url))

        return result
