"""
Speaking Signals — Voice Receive Adapter for the Speaking Quota

THIS MODULE DEFINES NO COMMANDS.

While a speaking quota is active, the bot sits (muted, not deafened) in the
target's channel with a `VoiceRecvClient` and forwards speaking start/stop
notifications to the quota tracker. Audio is never decoded.

The monitor follows the target when they move channels and leaves voice
when monitoring stops.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Optional

import discord
from discord.ext import voice_recv

from enforcement.quota import SpeakingQuotaTracker
from voice.events import VoicePresence

logger = logging.getLogger(__name__)

logging.getLogger("discord.ext.voice_recv.opus").setLevel(logging.ERROR)


def _log_signal_failure(future: concurrent.futures.Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("speaking_signal_failed", exc_info=exc)


class SpeakingSink(voice_recv.AudioSink):
    """Sink that ignores audio and relays speaking transitions."""

    def __init__(
        self,
        tracker: SpeakingQuotaTracker,
        guild_id: int,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        super().__init__()
        self._tracker = tracker
        self._guild_id = guild_id
        self._loop = loop

    def wants_opus(self) -> bool:
        return True

    def write(self, user, data: voice_recv.VoiceData) -> None:
        return None

    def cleanup(self) -> None:
        return None

    def _submit(self, coro) -> concurrent.futures.Future:
        # Listener callbacks may arrive on the voice reader thread.
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        future.add_done_callback(_log_signal_failure)
        return future

    @voice_recv.AudioSink.listener()
    def on_voice_member_speaking_start(self, member: discord.Member) -> None:
        self._submit(self._tracker.speaking_started(self._guild_id, member.id))

    @voice_recv.AudioSink.listener()
    def on_voice_member_speaking_stop(self, member: discord.Member) -> None:
        self._submit(self._tracker.speaking_stopped(self._guild_id, member.id))


class SpeakingMonitor:
    def __init__(self, client: discord.Client, tracker: SpeakingQuotaTracker) -> None:
        self._client = client
        self._tracker = tracker

    def _current_client(self, guild: discord.Guild) -> Optional[voice_recv.VoiceRecvClient]:
        current = guild.voice_client
        if isinstance(current, voice_recv.VoiceRecvClient) and current.is_connected():
            return current
        return None

    async def _connect(self, channel: discord.VoiceChannel) -> Optional[voice_recv.VoiceRecvClient]:
        guild = channel.guild
        current = guild.voice_client
        try:
            if current and current.is_connected():
                if isinstance(current, voice_recv.VoiceRecvClient):
                    if current.channel and current.channel.id != channel.id:
                        await current.move_to(channel)
                    return current
                await current.disconnect(force=True)
            return await channel.connect(self_deaf=False, self_mute=True, cls=voice_recv.VoiceRecvClient)
        except (discord.DiscordException, asyncio.TimeoutError) as exc:
            logger.warning(
                "speaking_monitor_connect_failed",
                extra={"guild_id": guild.id, "channel_id": channel.id, "error": repr(exc)},
            )
            return None

    async def attach(self, guild_id: int, channel_id: int) -> bool:
        """Join the channel and start relaying speaking signals."""
        guild = self._client.get_guild(guild_id)
        if guild is None:
            return False
        channel = guild.get_channel(channel_id)
        if not isinstance(channel, discord.VoiceChannel):
            return False

        voice_client = await self._connect(channel)
        if voice_client is None:
            return False
        if not voice_client.is_listening():
            voice_client.listen(SpeakingSink(self._tracker, guild_id, asyncio.get_running_loop()))
        logger.info(
            "speaking_monitor_attached",
            extra={"guild_id": guild_id, "channel_id": channel_id},
        )
        return True

    async def attach_to_target(self) -> bool:
        quota = self._tracker.quota
        if quota is None or not quota.enabled:
            return False
        guild = self._client.get_guild(quota.guild_id)
        if guild is None:
            return False
        member = guild.get_member(quota.target_id)
        if member is None or member.voice is None or member.voice.channel is None:
            return False
        return await self.attach(guild.id, member.voice.channel.id)

    async def follow(self, presence: VoicePresence) -> None:
        """Keep the monitor in the same channel as the quota target."""
        quota = self._tracker.quota
        if quota is None or not quota.enabled or presence.user_id != quota.target_id:
            return
        if presence.guild_id != quota.guild_id or not presence.connected:
            return
        guild = self._client.get_guild(presence.guild_id)
        if guild is None:
            return
        current = self._current_client(guild)
        if current is not None and current.channel and current.channel.id == presence.channel_id:
            return
        await self.attach(presence.guild_id, presence.channel_id)

    async def detach(self, guild_id: int) -> bool:
        guild = self._client.get_guild(guild_id)
        if guild is None:
            return False
        current = self._current_client(guild)
        if current is None:
            return False
        if current.is_listening():
            current.stop_listening()
        await current.disconnect(force=True)
        return True
