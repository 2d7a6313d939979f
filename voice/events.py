"""
Voice Events — Typed Values at the Platform Boundary

THIS MODULE DEFINES NO COMMANDS.

The discord.py adapter translates vendor payloads into these values.
Everything in `enforcement/` only ever sees these types.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol


@dataclass(frozen=True)
class VoicePresence:
    """Where a user is in voice and whether they are self-deafened."""

    guild_id: int
    user_id: int
    channel_id: Optional[int] = None
    self_deaf: bool = False

    @property
    def connected(self) -> bool:
        return self.channel_id is not None


@dataclass(frozen=True)
class PresenceChange:
    before: VoicePresence
    after: VoicePresence

    @property
    def user_id(self) -> int:
        return self.after.user_id

    @property
    def guild_id(self) -> int:
        return self.after.guild_id

    @property
    def joined(self) -> bool:
        return not self.before.connected and self.after.connected

    @property
    def deafened(self) -> bool:
        return not self.before.self_deaf and self.after.self_deaf


@dataclass(frozen=True)
class ChannelSnapshot:
    """Read-only view of a channel, fetched fresh at each decision point."""

    id: int
    occupant_count: int
    is_voice: bool = True
    can_connect: bool = False
    can_move: bool = False
    can_view: bool = False
    name: str = ""

    @property
    def agent_permitted(self) -> bool:
        return self.can_connect and self.can_move and self.can_view

    @property
    def empty(self) -> bool:
        return self.occupant_count == 0


class FailureKind(str, Enum):
    PERMISSION = "permission"
    NOT_CONNECTED = "not_connected"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ActionOutcome:
    ok: bool
    failure: Optional[FailureKind] = None
    detail: str = ""

    @classmethod
    def success(cls) -> "ActionOutcome":
        return cls(ok=True)

    @classmethod
    def failed(cls, failure: FailureKind, detail: str = "") -> "ActionOutcome":
        return cls(ok=False, failure=failure, detail=detail)


class VoiceGateway(Protocol):
    """Topology and action provider the enforcement core depends on."""

    def list_channels(self, guild_id: int) -> List[ChannelSnapshot]:
        ...

    def get_channel(self, guild_id: int, channel_id: int) -> Optional[ChannelSnapshot]:
        ...

    def voice_presence(self, guild_id: int, user_id: int) -> Optional[VoicePresence]:
        """Presence as reported on the member object."""
        ...

    def locate_member(self, guild_id: int, user_id: int) -> Optional[int]:
        """Channel id found by scanning channel occupancy, independent of the member's own state."""
        ...

    def find_presences(self, user_id: int) -> List[VoicePresence]:
        ...

    async def can_suspend(self, guild_id: int, user_id: int) -> bool:
        ...

    async def relocate(self, guild_id: int, user_id: int, channel_id: int, reason: str) -> ActionOutcome:
        ...

    async def remove_from_voice(self, guild_id: int, user_id: int, reason: str) -> ActionOutcome:
        ...

    async def suspend(self, guild_id: int, user_id: int, duration_seconds: float, reason: str) -> ActionOutcome:
        ...
