"""
Discord Gateway — discord.py Adapter for the Enforcement Core

THIS MODULE DEFINES NO COMMANDS.

Translates guild/member/channel objects into `voice.events` values and
performs the three platform actions (move, disconnect, timeout). Platform
exceptions never escape: each action reports an `ActionOutcome` with a
classified failure.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import List, Optional, Tuple

import aiohttp
import discord

from safety import controls
from voice.events import ActionOutcome, ChannelSnapshot, FailureKind, VoicePresence

logger = logging.getLogger(__name__)

NOT_CONNECTED_CODE = 40032
UNKNOWN_MEMBER_CODE = 10007


def classify_exception(exc: BaseException) -> FailureKind:
    if isinstance(exc, discord.RateLimited):
        return FailureKind.RATE_LIMITED
    if isinstance(exc, discord.Forbidden):
        return FailureKind.PERMISSION
    if isinstance(exc, discord.HTTPException):
        if exc.status == 429:
            return FailureKind.RATE_LIMITED
        if exc.code in (NOT_CONNECTED_CODE, UNKNOWN_MEMBER_CODE):
            return FailureKind.NOT_CONNECTED
    return FailureKind.UNKNOWN


def _is_normal_voice_channel(channel: discord.abc.GuildChannel) -> bool:
    if isinstance(channel, discord.StageChannel):
        return False
    if isinstance(channel, discord.VoiceChannel):
        return True
    if getattr(channel, "type", None) == discord.ChannelType.voice:
        return True
    return False


def snapshot_channel(
    channel: discord.abc.GuildChannel,
    bot_member: Optional[discord.Member],
) -> ChannelSnapshot:
    occupants = len(getattr(channel, "voice_states", None) or channel.members)
    if bot_member is None:
        return ChannelSnapshot(
            id=channel.id,
            occupant_count=occupants,
            is_voice=_is_normal_voice_channel(channel),
            name=channel.name,
        )
    perms = channel.permissions_for(bot_member)
    return ChannelSnapshot(
        id=channel.id,
        occupant_count=occupants,
        is_voice=_is_normal_voice_channel(channel),
        can_connect=bool(perms.connect),
        can_move=bool(perms.move_members),
        can_view=bool(perms.view_channel),
        name=channel.name,
    )


def presence_from_voice_state(
    guild_id: int,
    user_id: int,
    state: Optional[discord.VoiceState],
) -> VoicePresence:
    if state is None or state.channel is None:
        return VoicePresence(guild_id=guild_id, user_id=user_id)
    return VoicePresence(
        guild_id=guild_id,
        user_id=user_id,
        channel_id=state.channel.id,
        self_deaf=bool(state.self_deaf),
    )


class DiscordGateway:
    """`VoiceGateway` implementation over a connected discord.py client."""

    def __init__(self, client: discord.Client) -> None:
        self._client = client

    def _resolve(self, guild_id: int, user_id: int) -> Tuple[Optional[discord.Guild], Optional[discord.Member]]:
        guild = self._client.get_guild(guild_id)
        if guild is None:
            return None, None
        return guild, guild.get_member(user_id)

    def list_channels(self, guild_id: int) -> List[ChannelSnapshot]:
        guild = self._client.get_guild(guild_id)
        if guild is None:
            return []
        bot_member = guild.me
        return [snapshot_channel(channel, bot_member) for channel in guild.voice_channels]

    def get_channel(self, guild_id: int, channel_id: int) -> Optional[ChannelSnapshot]:
        guild = self._client.get_guild(guild_id)
        if guild is None:
            return None
        channel = guild.get_channel(channel_id)
        if channel is None:
            return None
        return snapshot_channel(channel, guild.me)

    def voice_presence(self, guild_id: int, user_id: int) -> Optional[VoicePresence]:
        _, member = self._resolve(guild_id, user_id)
        if member is None or member.voice is None:
            return None
        return presence_from_voice_state(guild_id, user_id, member.voice)

    def locate_member(self, guild_id: int, user_id: int) -> Optional[int]:
        guild = self._client.get_guild(guild_id)
        if guild is None:
            return None
        for channel in list(guild.voice_channels) + list(guild.stage_channels):
            if user_id in channel.voice_states:
                return channel.id
        return None

    def find_presences(self, user_id: int) -> List[VoicePresence]:
        presences: List[VoicePresence] = []
        for guild in self._client.guilds:
            presence = self.voice_presence(guild.id, user_id)
            if presence is not None and presence.connected:
                presences.append(presence)
        return presences

    async def can_suspend(self, guild_id: int, user_id: int) -> bool:
        guild, member = self._resolve(guild_id, user_id)
        if guild is None:
            return False
        return controls.can_timeout(guild, member)

    async def relocate(self, guild_id: int, user_id: int, channel_id: int, reason: str) -> ActionOutcome:
        guild, member = self._resolve(guild_id, user_id)
        if member is None or member.voice is None:
            return ActionOutcome.failed(FailureKind.NOT_CONNECTED, "member not in voice")
        channel = guild.get_channel(channel_id)
        if channel is None:
            return ActionOutcome.failed(FailureKind.UNKNOWN, f"channel {channel_id} not found")
        return await self._perform(member.move_to(channel, reason=reason), "relocate", guild_id, user_id)

    async def remove_from_voice(self, guild_id: int, user_id: int, reason: str) -> ActionOutcome:
        _, member = self._resolve(guild_id, user_id)
        if member is None or member.voice is None:
            return ActionOutcome.failed(FailureKind.NOT_CONNECTED, "member not in voice")
        return await self._perform(member.move_to(None, reason=reason), "remove_from_voice", guild_id, user_id)

    async def suspend(self, guild_id: int, user_id: int, duration_seconds: float, reason: str) -> ActionOutcome:
        _, member = self._resolve(guild_id, user_id)
        if member is None:
            return ActionOutcome.failed(FailureKind.NOT_CONNECTED, "member not found")
        call = member.timeout(timedelta(seconds=duration_seconds), reason=reason)
        return await self._perform(call, "suspend", guild_id, user_id)

    async def _perform(self, call, action: str, guild_id: int, user_id: int) -> ActionOutcome:
        try:
            await call
        except discord.DiscordException as exc:
            kind = classify_exception(exc)
            logger.warning(
                "gateway_action_failed",
                extra={"action": action, "guild_id": guild_id, "user_id": user_id, "failure": kind.value},
            )
            return ActionOutcome.failed(kind, str(exc))
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning(
                "gateway_action_failed",
                extra={"action": action, "guild_id": guild_id, "user_id": user_id, "failure": "transport"},
            )
            return ActionOutcome.failed(FailureKind.UNKNOWN, repr(exc))
        return ActionOutcome.success()
