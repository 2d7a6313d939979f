"""
Voice Topology — Decoy Channel Eligibility

THIS MODULE DEFINES NO COMMANDS.

A decoy channel is eligible when it is voice-capable, not excluded,
empty right now, and the bot can connect, move members and view it.
Results are never cached; callers re-query at every decision point.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from voice.events import ChannelSnapshot, VoiceGateway

__all__ = [
    "is_eligible",
    "filter_eligible",
    "find_eligible_channels",
]


def is_eligible(channel: ChannelSnapshot, exclude_channel_id: Optional[int] = None) -> bool:
    if not channel.is_voice:
        return False
    if exclude_channel_id is not None and channel.id == exclude_channel_id:
        return False
    if not channel.empty:
        return False
    return channel.agent_permitted


def filter_eligible(
    channels: Iterable[ChannelSnapshot],
    exclude_channel_id: Optional[int] = None,
) -> List[ChannelSnapshot]:
    return [channel for channel in channels if is_eligible(channel, exclude_channel_id)]


def find_eligible_channels(
    gateway: VoiceGateway,
    guild_id: int,
    exclude_channel_id: Optional[int] = None,
) -> List[ChannelSnapshot]:
    """Return the currently eligible decoy channels; empty when none qualify."""
    return filter_eligible(gateway.list_channels(guild_id) or (), exclude_channel_id)
