from __future__ import annotations

import random
import sys
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from voice.events import ActionOutcome, ChannelSnapshot, FailureKind, VoicePresence  # noqa: E402

GUILD_ID = 1000
TARGET_ID = 42


class FakeChannel:
    def __init__(self, channel_id: int, *, voice: bool = True, permitted: bool = True) -> None:
        self.id = channel_id
        self.voice = voice
        self.permitted = permitted
        self.occupants: Set[int] = set()

    def snapshot(self) -> ChannelSnapshot:
        return ChannelSnapshot(
            id=self.id,
            occupant_count=len(self.occupants),
            is_voice=self.voice,
            can_connect=self.permitted,
            can_move=self.permitted,
            can_view=self.permitted,
            name=f"channel-{self.id}",
        )


class FakeGateway:
    """In-memory guild: channels, who sits where, and scripted action outcomes."""

    def __init__(self, guild_id: int = GUILD_ID) -> None:
        self.guild_id = guild_id
        self.channels: Dict[int, FakeChannel] = {}
        self.deaf: Dict[int, bool] = {}
        self.authorized = True

        self.relocate_outcomes: List[ActionOutcome] = []
        self.remove_outcomes: List[ActionOutcome] = []
        self.suspend_outcomes: List[ActionOutcome] = []

        self.relocations: List[tuple] = []
        self.removals: List[tuple] = []
        self.suspensions: List[tuple] = []
        self.list_calls = 0
        self.member_view_stale = False

    def add_channel(self, channel_id: int, **kwargs) -> FakeChannel:
        channel = FakeChannel(channel_id, **kwargs)
        self.channels[channel_id] = channel
        return channel

    def place(self, user_id: int, channel_id: Optional[int], *, deaf: bool = False) -> None:
        for channel in self.channels.values():
            channel.occupants.discard(user_id)
        if channel_id is not None:
            self.channels[channel_id].occupants.add(user_id)
        self.deaf[user_id] = deaf

    def channel_of(self, user_id: int) -> Optional[int]:
        for channel in self.channels.values():
            if user_id in channel.occupants:
                return channel.id
        return None

    # VoiceGateway -------------------------------------------------------

    def list_channels(self, guild_id: int) -> List[ChannelSnapshot]:
        self.list_calls += 1
        if guild_id != self.guild_id:
            return []
        return [channel.snapshot() for channel in self.channels.values()]

    def get_channel(self, guild_id: int, channel_id: int) -> Optional[ChannelSnapshot]:
        channel = self.channels.get(channel_id)
        return channel.snapshot() if channel else None

    def voice_presence(self, guild_id: int, user_id: int) -> Optional[VoicePresence]:
        if self.member_view_stale:
            return None
        channel_id = self.channel_of(user_id)
        if channel_id is None:
            return None
        return VoicePresence(guild_id, user_id, channel_id, self.deaf.get(user_id, False))

    def locate_member(self, guild_id: int, user_id: int) -> Optional[int]:
        return self.channel_of(user_id)

    def find_presences(self, user_id: int) -> List[VoicePresence]:
        presence = self.voice_presence(self.guild_id, user_id)
        return [presence] if presence else []

    async def can_suspend(self, guild_id: int, user_id: int) -> bool:
        return self.authorized

    async def relocate(self, guild_id, user_id, channel_id, reason) -> ActionOutcome:
        self.relocations.append((user_id, channel_id, reason))
        outcome = self.relocate_outcomes.pop(0) if self.relocate_outcomes else ActionOutcome.success()
        if outcome.ok:
            self.place(user_id, channel_id, deaf=self.deaf.get(user_id, False))
        return outcome

    async def remove_from_voice(self, guild_id, user_id, reason) -> ActionOutcome:
        self.removals.append((user_id, reason))
        outcome = self.remove_outcomes.pop(0) if self.remove_outcomes else ActionOutcome.success()
        if outcome.ok:
            self.place(user_id, None)
        return outcome

    async def suspend(self, guild_id, user_id, duration_seconds, reason) -> ActionOutcome:
        self.suspensions.append((user_id, duration_seconds, reason))
        return self.suspend_outcomes.pop(0) if self.suspend_outcomes else ActionOutcome.success()


class FakeTimer:
    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    def __init__(self) -> None:
        self.timers: List[FakeTimer] = []
        self.spawned: list = []
        self.sleeps: List[float] = []

    def call_later(self, delay, callback) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    def spawn(self, coro):
        self.spawned.append(coro)
        return coro

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    @property
    def live_timers(self) -> List[FakeTimer]:
        return [timer for timer in self.timers if not timer.cancelled]

    def fire_next(self) -> FakeTimer:
        timer = self.live_timers[0]
        timer.cancelled = True
        timer.callback()
        return timer

    async def drain(self) -> None:
        while self.spawned:
            await self.spawned.pop(0)


def failed(kind: FailureKind) -> ActionOutcome:
    return ActionOutcome.failed(kind, kind.value)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)
