"""
Enforcement Engine — Deafen Triggers and Dispatch

THIS MODULE DEFINES NO COMMANDS.

Consumes voice presence changes for the designated target and decides
whether a trigger fired:
- Joining a channel while already self-deafened
- Self-deafening while already in a channel

On a trigger, KICK mode removes the target from voice once (no retry) and
DISCIPLINE mode hands the target to the discipline controller.

Operator state changes (enable/disable, mode) also pass through here so
that re-enabling can catch a target who is already deafened.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional, Set, Tuple

from enforcement.discipline import DisciplineController, StopReason
from safety.audit import AuditContext, log_action, log_escalation, log_failure
from state.moderation import Mode, ModerationState
from voice.events import PresenceChange, VoiceGateway, VoicePresence

__all__ = [
    "EnforcementEngine",
    "Trigger",
    "detect_trigger",
]

logger = logging.getLogger(__name__)


class Trigger(str, Enum):
    JOINED_DEAFENED = "joining while already deafened"
    DEAFENED = "deafening"
    ALREADY_DEAFENED = "being deafened when moderation was enabled"

    @property
    def reason(self) -> str:
        return f"Auto-kicked for {self.value}"


def detect_trigger(change: PresenceChange) -> Optional[Trigger]:
    after = change.after
    if not after.connected:
        return None
    if change.joined and after.self_deaf:
        return Trigger.JOINED_DEAFENED
    if change.before.connected and change.deafened:
        return Trigger.DEAFENED
    return None


class EnforcementEngine:
    """Owns the moderation state and routes triggers to an enforcement action."""

    def __init__(
        self,
        state: ModerationState,
        gateway: VoiceGateway,
        discipline: DisciplineController,
    ) -> None:
        self.state = state
        self._gateway = gateway
        self.discipline = discipline
        self._removals_in_flight: Set[Tuple[int, int]] = set()

    @property
    def target_id(self) -> int:
        return self.state.target_id

    def _context(self, presence: VoicePresence, **extra) -> AuditContext:
        return AuditContext(
            target_id=presence.user_id,
            guild_id=presence.guild_id,
            channel_id=presence.channel_id,
            extra=extra,
        )

    async def handle_presence_change(self, change: PresenceChange) -> Optional[Trigger]:
        """Process one presence change; returns the trigger that fired, if any."""
        if not self.state.enabled:
            return None
        if change.user_id != self.target_id:
            return None

        trigger = detect_trigger(change)
        if trigger is None:
            return None

        log_escalation(
            f"Target triggered enforcement by {trigger.value}",
            context=self._context(change.after, mode=self.state.mode.value),
            escalation=trigger.name.lower(),
        )
        await self.enforce(change.after, trigger)
        return trigger

    async def enforce(self, presence: VoicePresence, trigger: Trigger) -> bool:
        """Apply the active mode's action. Returns True when an action was started."""
        if presence.channel_id is None:
            return False
        if self.state.mode is Mode.DISCIPLINE:
            session = self.discipline.start(presence.guild_id, presence.user_id, presence.channel_id)
            return session is not None
        return await self._remove(presence, trigger)

    async def _remove(self, presence: VoicePresence, trigger: Trigger) -> bool:
        key = (presence.guild_id, presence.user_id)
        if key in self._removals_in_flight:
            logger.info(
                "removal_already_in_flight",
                extra={"guild_id": presence.guild_id, "target_id": presence.user_id},
            )
            return False

        self._removals_in_flight.add(key)
        try:
            outcome = await self._gateway.remove_from_voice(
                presence.guild_id, presence.user_id, trigger.reason
            )
        finally:
            self._removals_in_flight.discard(key)

        if outcome.ok:
            log_action(
                f"Removed target from voice ({trigger.value})",
                context=self._context(presence),
                action="remove_from_voice",
            )
        else:
            log_failure(
                "Failed to remove target from voice",
                context=self._context(presence),
                outcome=outcome,
            )
        return True

    async def set_enabled(self, enabled: bool) -> bool:
        """Flip moderation on or off. Returns False when nothing changed."""
        changed = self.state.set_enabled(enabled)
        if not changed:
            return False
        if enabled:
            await self.scan_target()
        else:
            self.discipline.stop_all(StopReason.DISABLED)
        return True

    def set_mode(self, mode: Mode) -> bool:
        changed = self.state.set_mode(mode)
        if changed and self.state.mode is not Mode.DISCIPLINE:
            self.discipline.stop_all(StopReason.MODE_CHANGED)
        return changed

    async def scan_target(self) -> List[Trigger]:
        """Enforce against a target who is already sitting deafened in voice."""
        fired: List[Trigger] = []
        if not self.state.enabled:
            return fired
        presences = self._gateway.find_presences(self.target_id)
        for presence in presences:
            if not presence.connected or not presence.self_deaf:
                continue
            log_escalation(
                "Target already deafened when moderation was enabled",
                context=self._context(presence, mode=self.state.mode.value),
                escalation="already_deafened",
            )
            if await self.enforce(presence, Trigger.ALREADY_DEAFENED):
                fired.append(Trigger.ALREADY_DEAFENED)
        return fired
