"""
Record models emitted by the network observer.

Every intercepted call produces a StartRecord and, where completion is
observable, an EndRecord carrying the same request id. Records are
ephemeral: they are built, handed to the ``onobserved`` callback and then
forgotten.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Channel(str, Enum):
    """Channel that produced a start record."""

    BEACON = "beacon"
    FETCH = "fetch"
    SPLIT = "split"


class EndKind(str, Enum):
    """Terminal outcome carried by an end record."""

    FETCH_END = "fetchend"
    FETCH_ERROR = "fetcherror"
    SPLIT_END = "splitend"
    SPLIT_ERROR = "splitError"


class _RecordBase(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict view without unset fields."""
        return self.model_dump(exclude_none=True)


class StartRecord(_RecordBase):
    """Emitted when a request is dispatched."""

    type: Channel = Field(description="Channel the request went through")
    id: Optional[str] = Field(default=None, description="Correlation id, absent for beacons")
    url: str = Field(description="Request URL")
    method: Optional[str] = Field(default=None, description="HTTP method")
    input: Any = Field(default=None, description="Original call arguments or request body")


class EndRecord(_RecordBase):
    """Emitted once when a correlated request settles."""

    type: EndKind = Field(description="Terminal outcome")
    id: str = Field(description="Id of the StartRecord this record completes")
    status: Optional[int] = Field(default=None, description="HTTP status of the response")
    errmsg: Optional[str] = Field(default=None, description="Failure message")

    @property
    def is_error(self) -> bool:
        return self.type in (EndKind.FETCH_ERROR, EndKind.SPLIT_ERROR)


@dataclass
class ChannelStatus:
    """Which channels are actually patched and active."""

    beacon: bool = False
    fetch: bool = False
    split: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)
