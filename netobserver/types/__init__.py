"""
Record and status types for the network observer.
"""

from .records import (
    Channel,
    EndKind,
    StartRecord,
    EndRecord,
    ChannelStatus,
)

__all__ = [
    "Channel",
    "EndKind",
    "StartRecord",
    "EndRecord",
    "ChannelStatus",
]
