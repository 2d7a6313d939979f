"""
Discipline — Decoy Channel Relocation Loop

THIS MODULE DEFINES NO COMMANDS.

While a disciplined target stays self-deafened, they are bounced between
empty decoy channels instead of being removed outright.

Each session is a small state machine (RUNNING -> STOPPED) advanced by
`tick()`. The session arms exactly one timer at a time through the injected
scheduler, so tests can call `tick()` directly without real timers.

A session stops when:
- The target leaves voice
- The target undeafens (one best-effort move back to where they started)
- No eligible decoy channel remains (falls back to removal)
- A relocation fails with anything other than a rate limit

Rate limits slow the loop down (x1.5 up to 5s) and pause it for a
one second cooldown before resuming.
"""

from __future__ import annotations

import logging
import random
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from safety.audit import AuditContext, log_action, log_escalation, log_failure
from utils.timers import Scheduler, TimerHandle, _now
from voice.events import ActionOutcome, FailureKind, VoiceGateway
from voice.topology import find_eligible_channels

__all__ = [
    "DisciplineController",
    "DisciplineSession",
    "SessionStatus",
    "StopReason",
    "TickResult",
    "next_interval",
]

logger = logging.getLogger(__name__)

INITIAL_INTERVAL_MS = 750.0
MAX_INTERVAL_MS = 5000.0
BACKOFF_FACTOR = 1.5
RATE_LIMIT_COOLDOWN_SECONDS = 1.0
SETTLE_DELAY_SECONDS = 0.1

MOVE_REASON = "Discipline: relocated while deafened"
RETURN_REASON = "Discipline ended: undeafened"
FALLBACK_REASON = "Discipline fallback: removed while deafened"


class SessionStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class StopReason(str, Enum):
    LEFT_VOICE = "left voice"
    UNDEAFENED = "undeafened"
    NO_CHANNELS = "no channels"
    PERMISSION_DENIED = "permission denied"
    NOT_CONNECTED = "target not connected"
    ERROR = "error"
    DISABLED = "disabled"
    MODE_CHANGED = "mode changed"


class TickResult(str, Enum):
    MOVED = "moved"
    MOVE_UNVERIFIED = "move_unverified"
    SKIPPED = "skipped"
    RATE_LIMITED = "rate_limited"
    STOPPED = "stopped"


def next_interval(interval_ms: float) -> float:
    return min(interval_ms * BACKOFF_FACTOR, MAX_INTERVAL_MS)


SessionKey = Tuple[int, int]


class DisciplineSession:
    """Relocation loop for one deafened target."""

    def __init__(
        self,
        *,
        guild_id: int,
        target_id: int,
        original_channel_id: int,
        gateway: VoiceGateway,
        scheduler: Scheduler,
        rng: Optional[random.Random] = None,
        on_stopped: Optional[Callable[["DisciplineSession"], None]] = None,
        interval_ms: float = INITIAL_INTERVAL_MS,
    ) -> None:
        self.guild_id = guild_id
        self.target_id = target_id
        self.original_channel_id = original_channel_id
        self.current_channel_id: Optional[int] = original_channel_id
        self.move_count = 0
        self.interval_ms = min(float(interval_ms), MAX_INTERVAL_MS)
        self.rate_limit_strikes = 0
        self.status = SessionStatus.RUNNING
        self.stop_reason: Optional[StopReason] = None
        self.started_at = _now()

        self._gateway = gateway
        self._scheduler = scheduler
        self._rng = rng or random.Random()
        self._on_stopped = on_stopped
        self._timer: Optional[TimerHandle] = None
        self._ticking = False

    @property
    def key(self) -> SessionKey:
        return (self.guild_id, self.target_id)

    @property
    def running(self) -> bool:
        return self.status is SessionStatus.RUNNING

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def _context(self, **extra) -> AuditContext:
        return AuditContext(
            target_id=self.target_id,
            guild_id=self.guild_id,
            channel_id=self.current_channel_id,
            extra=extra,
        )

    # -----------------------------
    # Scheduling
    # -----------------------------

    def start(self) -> None:
        if not self.running:
            raise RuntimeError("a stopped discipline session cannot be restarted")
        self._arm(self.interval_ms / 1000.0)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm(self, delay: float) -> None:
        self._cancel_timer()
        if not self.running:
            return
        self._timer = self._scheduler.call_later(delay, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if not self.running:
            return
        self._scheduler.spawn(self._run_tick())

    async def _run_tick(self) -> None:
        try:
            result = await self.tick()
        except Exception as exc:
            log_failure("Discipline tick failed", context=self._context(), error=exc)
            self.stop(StopReason.ERROR)
            return
        if not self.running:
            return
        if result is TickResult.RATE_LIMITED:
            self._cancel_timer()
            self._timer = self._scheduler.call_later(RATE_LIMIT_COOLDOWN_SECONDS, self._resume)
            return
        self._arm(self.interval_ms / 1000.0)

    def _resume(self) -> None:
        self._timer = None
        if not self.running:
            return
        logger.debug(
            "discipline_resumed",
            extra={"target_id": self.target_id, "interval_ms": self.interval_ms},
        )
        self._arm(self.interval_ms / 1000.0)

    def stop(self, reason: StopReason) -> bool:
        """Stop the session. Safe to call more than once."""
        if not self.running:
            return False
        self._cancel_timer()
        self.status = SessionStatus.STOPPED
        self.stop_reason = reason
        log_escalation(
            f"Discipline session stopped: {reason.value}",
            context=self._context(
                moves=self.move_count,
                interval_ms=self.interval_ms,
                rate_limit_strikes=self.rate_limit_strikes,
            ),
            escalation="discipline_stopped",
        )
        if self._on_stopped is not None:
            self._on_stopped(self)
        return True

    # -----------------------------
    # State machine
    # -----------------------------

    async def tick(self) -> TickResult:
        if not self.running:
            return TickResult.STOPPED
        if self._ticking:
            return TickResult.SKIPPED
        self._ticking = True
        try:
            return await self._tick()
        finally:
            self._ticking = False

    def _observed_channel(self) -> Optional[int]:
        presence = self._gateway.voice_presence(self.guild_id, self.target_id)
        if presence is not None and presence.connected:
            return presence.channel_id
        return self._gateway.locate_member(self.guild_id, self.target_id)

    async def _tick(self) -> TickResult:
        presence = self._gateway.voice_presence(self.guild_id, self.target_id)
        located = self._gateway.locate_member(self.guild_id, self.target_id)
        member_connected = presence is not None and presence.connected

        # Both views must agree before treating the target as gone.
        if not member_connected and located is None:
            self.stop(StopReason.LEFT_VOICE)
            return TickResult.STOPPED

        current = presence.channel_id if member_connected else located
        self.current_channel_id = current

        if member_connected and not presence.self_deaf:
            self.stop(StopReason.UNDEAFENED)
            await self._return_to_origin(current)
            return TickResult.STOPPED

        eligible = find_eligible_channels(self._gateway, self.guild_id, exclude_channel_id=current)
        if not eligible:
            self.stop(StopReason.NO_CHANNELS)
            await self._fallback_remove()
            return TickResult.STOPPED

        choice = self._rng.choice(eligible)
        fresh = self._gateway.get_channel(self.guild_id, choice.id)
        if fresh is None or not fresh.agent_permitted or not fresh.empty:
            logger.debug(
                "discipline_tick_skipped",
                extra={"target_id": self.target_id, "channel_id": choice.id},
            )
            return TickResult.SKIPPED

        outcome = await self._gateway.relocate(self.guild_id, self.target_id, choice.id, MOVE_REASON)
        if not self.running:
            return TickResult.STOPPED
        if not outcome.ok:
            return await self._handle_failure(outcome, choice.id)

        await self._scheduler.sleep(SETTLE_DELAY_SECONDS)
        if not self.running:
            return TickResult.STOPPED
        after = self._observed_channel()
        if after == choice.id:
            self.move_count += 1
            self.rate_limit_strikes = max(0, self.rate_limit_strikes - 1)
            self.current_channel_id = choice.id
            log_action(
                "Relocated disciplined target",
                context=self._context(moves=self.move_count, from_channel=current),
                action="discipline_move",
            )
            return TickResult.MOVED

        log_failure(
            "Relocation did not land in the intended channel",
            context=self._context(),
            before_channel=current,
            target_channel=choice.id,
            after_channel=after,
        )
        if after is not None:
            self.current_channel_id = after
        return TickResult.MOVE_UNVERIFIED

    async def _handle_failure(self, outcome: ActionOutcome, channel_id: int) -> TickResult:
        failure = outcome.failure or FailureKind.UNKNOWN
        if failure is FailureKind.RATE_LIMITED:
            self.rate_limit_strikes += 1
            self.interval_ms = next_interval(self.interval_ms)
            log_escalation(
                "Rate limited while relocating; backing off",
                context=self._context(),
                escalation="discipline_backoff",
                interval_ms=self.interval_ms,
                rate_limit_strikes=self.rate_limit_strikes,
            )
            return TickResult.RATE_LIMITED

        log_failure(
            "Discipline relocation failed",
            context=self._context(),
            outcome=outcome,
            target_channel=channel_id,
        )
        if failure is FailureKind.PERMISSION:
            self.stop(StopReason.PERMISSION_DENIED)
            await self._fallback_remove()
        elif failure is FailureKind.NOT_CONNECTED:
            self.stop(StopReason.NOT_CONNECTED)
        else:
            self.stop(StopReason.ERROR)
        return TickResult.STOPPED

    async def _return_to_origin(self, current: Optional[int]) -> None:
        if current == self.original_channel_id:
            return
        outcome = await self._gateway.relocate(
            self.guild_id, self.target_id, self.original_channel_id, RETURN_REASON
        )
        if outcome.ok:
            log_action(
                "Returned target to original channel",
                context=self._context(original_channel=self.original_channel_id),
                action="discipline_return",
            )
            return
        log_failure(
            "Could not return target to original channel",
            context=self._context(original_channel=self.original_channel_id),
            outcome=outcome,
        )

    async def _fallback_remove(self) -> None:
        outcome = await self._gateway.remove_from_voice(self.guild_id, self.target_id, FALLBACK_REASON)
        if outcome.ok:
            log_action(
                "Removed target from voice after discipline ended",
                context=self._context(reason=self.stop_reason.value if self.stop_reason else None),
                action="discipline_fallback_remove",
            )
            return
        log_failure(
            "Fallback removal failed",
            context=self._context(),
            outcome=outcome,
        )


class DisciplineController:
    """Registry of live sessions; at most one per (guild, target)."""

    def __init__(
        self,
        gateway: VoiceGateway,
        scheduler: Scheduler,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._gateway = gateway
        self._scheduler = scheduler
        self._rng = rng
        self._sessions: Dict[SessionKey, DisciplineSession] = {}

    def get(self, guild_id: int, target_id: int) -> Optional[DisciplineSession]:
        return self._sessions.get((guild_id, target_id))

    def is_running(self, guild_id: int, target_id: int) -> bool:
        session = self.get(guild_id, target_id)
        return session is not None and session.running

    def active_sessions(self) -> List[DisciplineSession]:
        return [session for session in self._sessions.values() if session.running]

    def start(self, guild_id: int, target_id: int, channel_id: int) -> Optional[DisciplineSession]:
        """Start a session, or return None when one is already running."""
        if self.is_running(guild_id, target_id):
            logger.info(
                "discipline_already_running",
                extra={"guild_id": guild_id, "target_id": target_id},
            )
            return None

        session = DisciplineSession(
            guild_id=guild_id,
            target_id=target_id,
            original_channel_id=channel_id,
            gateway=self._gateway,
            scheduler=self._scheduler,
            rng=self._rng,
            on_stopped=self._forget,
        )
        self._sessions[session.key] = session
        log_escalation(
            "Discipline session started",
            context=AuditContext(target_id=target_id, guild_id=guild_id, channel_id=channel_id),
            escalation="discipline_started",
        )
        session.start()
        return session

    def _forget(self, session: DisciplineSession) -> None:
        if self._sessions.get(session.key) is session:
            del self._sessions[session.key]

    def stop(self, guild_id: int, target_id: int, reason: StopReason) -> bool:
        session = self.get(guild_id, target_id)
        if session is None:
            return False
        return session.stop(reason)

    def stop_all(self, reason: StopReason) -> int:
        stopped = 0
        for session in list(self._sessions.values()):
            if session.stop(reason):
                stopped += 1
        return stopped
