from __future__ import annotations

import asyncio

import pytest

from conftest import GUILD_ID, TARGET_ID, failed
from enforcement.discipline import (
    INITIAL_INTERVAL_MS,
    MAX_INTERVAL_MS,
    DisciplineController,
    DisciplineSession,
    SessionStatus,
    StopReason,
    TickResult,
    next_interval,
)
from voice.events import ActionOutcome, ChannelSnapshot, FailureKind

A, B, C = 1, 2, 3
FRIEND_ID = 7


@pytest.fixture
def room(gateway):
    for channel_id in (A, B, C):
        gateway.add_channel(channel_id)
    gateway.place(FRIEND_ID, A)
    gateway.channels[A].occupants.add(TARGET_ID)
    gateway.deaf[TARGET_ID] = True
    return gateway


def _session(gateway, scheduler, rng) -> DisciplineSession:
    return DisciplineSession(
        guild_id=GUILD_ID,
        target_id=TARGET_ID,
        original_channel_id=A,
        gateway=gateway,
        scheduler=scheduler,
        rng=rng,
    )


def test_next_interval_chain_is_capped():
    assert next_interval(750.0) == 1125.0
    assert next_interval(1125.0) == 1687.5
    assert next_interval(4000.0) == MAX_INTERVAL_MS
    assert next_interval(MAX_INTERVAL_MS) == MAX_INTERVAL_MS


def test_moves_only_between_decoys_never_current(room, scheduler, rng):
    session = _session(room, scheduler, rng)

    async def run():
        previous = A
        for _ in range(12):
            result = await session.tick()
            assert result is TickResult.MOVED
            landed = room.channel_of(TARGET_ID)
            assert landed in (B, C)
            assert landed != previous
            previous = landed

    asyncio.run(run())
    assert session.move_count == 12
    assert session.original_channel_id == A
    assert all(channel in (B, C) for _, channel, _ in room.relocations)
    assert scheduler.sleeps == [0.1] * 12


def test_undeafen_returns_to_origin_once_and_stops(room, scheduler, rng):
    session = _session(room, scheduler, rng)

    async def run():
        await session.tick()
        await session.tick()
        room.deaf[TARGET_ID] = False
        result = await session.tick()
        assert result is TickResult.STOPPED
        assert await session.tick() is TickResult.STOPPED

    asyncio.run(run())
    assert session.status is SessionStatus.STOPPED
    assert session.stop_reason is StopReason.UNDEAFENED
    returns = [call for call in room.relocations if call[1] == A]
    assert len(returns) == 1
    assert room.channel_of(TARGET_ID) == A


def test_failed_return_leaves_target_in_place(room, scheduler, rng):
    session = _session(room, scheduler, rng)

    async def run():
        await session.tick()
        room.deaf[TARGET_ID] = False
        room.relocate_outcomes.append(failed(FailureKind.UNKNOWN))
        await session.tick()

    asyncio.run(run())
    assert session.stop_reason is StopReason.UNDEAFENED
    assert room.channel_of(TARGET_ID) in (B, C)
    assert len(room.relocations) == 2


def test_left_voice_requires_both_views_to_agree(room, scheduler, rng):
    session = _session(room, scheduler, rng)
    room.member_view_stale = True

    result = asyncio.run(session.tick())
    assert result is TickResult.MOVED
    assert session.running

    room.place(TARGET_ID, None)
    result = asyncio.run(session.tick())
    assert result is TickResult.STOPPED
    assert session.stop_reason is StopReason.LEFT_VOICE
    assert room.removals == []


def test_no_channels_stops_and_falls_back_to_removal(gateway, scheduler, rng):
    gateway.add_channel(A)
    gateway.add_channel(B)
    gateway.add_channel(C, permitted=False)
    gateway.place(FRIEND_ID, B)
    gateway.place(TARGET_ID, A, deaf=True)
    session = _session(gateway, scheduler, rng)

    result = asyncio.run(session.tick())

    assert result is TickResult.STOPPED
    assert session.stop_reason is StopReason.NO_CHANNELS
    assert len(gateway.removals) == 1
    assert gateway.relocations == []


def test_topology_is_requeried_every_tick(room, scheduler, rng):
    session = _session(room, scheduler, rng)

    async def run():
        for _ in range(3):
            await session.tick()

    asyncio.run(run())
    assert room.list_calls == 3


def test_race_on_recheck_skips_without_penalty(room, scheduler, rng, monkeypatch):
    session = _session(room, scheduler, rng)

    def occupied(guild_id, channel_id):
        return ChannelSnapshot(id=channel_id, occupant_count=1, can_connect=True, can_move=True, can_view=True)

    monkeypatch.setattr(room, "get_channel", occupied)
    result = asyncio.run(session.tick())

    assert result is TickResult.SKIPPED
    assert session.running
    assert session.interval_ms == INITIAL_INTERVAL_MS
    assert session.rate_limit_strikes == 0
    assert room.relocations == []


def test_rate_limits_back_off_and_successes_decay_strikes(room, scheduler, rng):
    session = _session(room, scheduler, rng)
    room.relocate_outcomes.extend([failed(FailureKind.RATE_LIMITED), failed(FailureKind.RATE_LIMITED)])

    async def run():
        assert await session.tick() is TickResult.RATE_LIMITED
        assert session.interval_ms == 1125.0
        assert await session.tick() is TickResult.RATE_LIMITED
        assert session.interval_ms == 1687.5
        assert session.rate_limit_strikes == 2
        assert await session.tick() is TickResult.MOVED
        assert session.rate_limit_strikes == 1
        assert await session.tick() is TickResult.MOVED
        assert await session.tick() is TickResult.MOVED

    asyncio.run(run())
    assert session.rate_limit_strikes == 0
    assert session.interval_ms == 1687.5
    assert session.running


def test_interval_never_exceeds_cap(room, scheduler, rng):
    session = _session(room, scheduler, rng)
    room.relocate_outcomes.extend(failed(FailureKind.RATE_LIMITED) for _ in range(10))

    async def run():
        seen = []
        for _ in range(10):
            await session.tick()
            seen.append(session.interval_ms)
        return seen

    seen = asyncio.run(run())
    assert seen == sorted(seen)
    assert max(seen) == MAX_INTERVAL_MS


@pytest.mark.parametrize(
    ("kind", "reason", "removals"),
    [
        (FailureKind.PERMISSION, StopReason.PERMISSION_DENIED, 1),
        (FailureKind.NOT_CONNECTED, StopReason.NOT_CONNECTED, 0),
        (FailureKind.UNKNOWN, StopReason.ERROR, 0),
    ],
)
def test_relocation_failures_stop_the_session(room, scheduler, rng, kind, reason, removals):
    session = _session(room, scheduler, rng)
    room.relocate_outcomes.append(failed(kind))

    result = asyncio.run(session.tick())

    assert result is TickResult.STOPPED
    assert session.stop_reason is reason
    assert len(room.removals) == removals


def test_unverified_move_is_not_counted(room, scheduler, rng, monkeypatch):
    session = _session(room, scheduler, rng)

    async def accepted_but_ignored(guild_id, user_id, channel_id, reason):
        return ActionOutcome.success()

    monkeypatch.setattr(room, "relocate", accepted_but_ignored)
    result = asyncio.run(session.tick())

    assert result is TickResult.MOVE_UNVERIFIED
    assert session.move_count == 0
    assert session.current_channel_id == A
    assert session.running


def test_timer_loop_keeps_one_timer_and_stop_cancels(room, scheduler, rng):
    session = _session(room, scheduler, rng)
    session.start()
    assert [timer.delay for timer in scheduler.live_timers] == [0.75]

    scheduler.fire_next()
    asyncio.run(scheduler.drain())
    assert len(scheduler.live_timers) == 1
    assert session.move_count == 1

    assert session.stop(StopReason.DISABLED) is True
    assert scheduler.live_timers == []
    assert session.stop(StopReason.DISABLED) is False
    assert session.stop_reason is StopReason.DISABLED

    with pytest.raises(RuntimeError):
        session.start()


def test_rate_limit_pauses_for_cooldown_then_resumes(room, scheduler, rng):
    session = _session(room, scheduler, rng)
    room.relocate_outcomes.append(failed(FailureKind.RATE_LIMITED))
    session.start()

    scheduler.fire_next()
    asyncio.run(scheduler.drain())
    assert [timer.delay for timer in scheduler.live_timers] == [1.0]

    scheduler.fire_next()
    assert [timer.delay for timer in scheduler.live_timers] == [pytest.approx(1.125)]


def test_stop_during_cooldown_prevents_resume(room, scheduler, rng):
    session = _session(room, scheduler, rng)
    room.relocate_outcomes.append(failed(FailureKind.RATE_LIMITED))
    session.start()
    scheduler.fire_next()
    asyncio.run(scheduler.drain())

    cooldown = scheduler.live_timers[0]
    session.stop(StopReason.DISABLED)
    assert cooldown.cancelled
    cooldown.callback()
    assert scheduler.live_timers == []
    assert scheduler.spawned == []


def test_controller_allows_one_session_per_target(room, scheduler, rng):
    controller = DisciplineController(room, scheduler, rng=rng)

    first = controller.start(GUILD_ID, TARGET_ID, A)
    assert first is not None
    assert controller.start(GUILD_ID, TARGET_ID, A) is None
    assert controller.active_sessions() == [first]

    assert controller.stop(GUILD_ID, TARGET_ID, StopReason.DISABLED) is True
    assert controller.get(GUILD_ID, TARGET_ID) is None

    second = controller.start(GUILD_ID, TARGET_ID, A)
    assert second is not None and second is not first
    assert controller.stop_all(StopReason.MODE_CHANGED) == 1
    assert controller.active_sessions() == []


def test_tick_exception_stops_session_and_frees_target(room, scheduler, rng, monkeypatch):
    controller = DisciplineController(room, scheduler, rng=rng)
    first = controller.start(GUILD_ID, TARGET_ID, A)

    def broken_listing(guild_id):
        raise RuntimeError("guild cache unavailable")

    monkeypatch.setattr(room, "list_channels", broken_listing)
    scheduler.fire_next()
    asyncio.run(scheduler.drain())

    assert not first.running
    assert first.stop_reason is StopReason.ERROR
    assert scheduler.live_timers == []
    assert controller.is_running(GUILD_ID, TARGET_ID) is False

    monkeypatch.undo()
    second = controller.start(GUILD_ID, TARGET_ID, A)
    assert second is not None and second.running


def test_stop_during_settle_does_not_count_move(room, scheduler, rng, monkeypatch):
    session = _session(room, scheduler, rng)

    async def stopped_while_settling(seconds):
        session.stop(StopReason.DISABLED)

    monkeypatch.setattr(scheduler, "sleep", stopped_while_settling)
    result = asyncio.run(session.tick())

    assert result is TickResult.STOPPED
    assert session.move_count == 0
    assert session.current_channel_id == A
    assert session.stop_reason is StopReason.DISABLED
