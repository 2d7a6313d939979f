"""
Speaking Quota — Per-Target Speaking Turn Limit

THIS MODULE DEFINES NO COMMANDS.

Counts speaking turns for everyone and, for the monitored target, enforces
a quota. When the quota is reached:
1. If the bot may time the target out, apply a timeout
2. Otherwise, or if the timeout fails, remove the target from voice
3. A successful action resets the count and monitoring continues
4. If both fail, the count is kept so the next turn tries again
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Set, Tuple

from safety.audit import AuditContext, log_action, log_control_change, log_escalation, log_failure
from state.moderation import DEFAULT_TIMEOUT_SECONDS, SpeakingActivity, SpeechQuota
from voice.events import VoiceGateway

__all__ = [
    "QuotaAction",
    "SpeakingQuotaTracker",
]

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "Speaking quota reached"
REMOVE_REASON = "Speaking quota reached (timeout unavailable)"


class QuotaAction(str, Enum):
    TIMEOUT = "timeout"
    REMOVED = "removed"
    FAILED = "failed"


class SpeakingQuotaTracker:
    def __init__(self, gateway: VoiceGateway, activity: Optional[SpeakingActivity] = None) -> None:
        self._gateway = gateway
        self.activity = activity or SpeakingActivity()
        self.quota: Optional[SpeechQuota] = None
        self._enforcing: Set[Tuple[int, int]] = set()

    @property
    def monitoring(self) -> bool:
        return self.quota is not None and self.quota.enabled

    def start(
        self,
        guild_id: int,
        target_id: int,
        limit: int,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> SpeechQuota:
        """Begin monitoring; replaces any quota already configured."""
        self.quota = SpeechQuota(
            target_id=target_id,
            guild_id=guild_id,
            limit=int(limit),
            timeout_seconds=float(timeout_seconds),
        )
        log_control_change(
            "Speaking quota monitoring started",
            context=AuditContext(target_id=target_id, guild_id=guild_id),
            change="quota_start",
            limit=self.quota.limit,
            timeout_seconds=self.quota.timeout_seconds,
        )
        return self.quota

    def stop(self) -> bool:
        if not self.monitoring:
            return False
        self.quota.enabled = False
        log_control_change(
            "Speaking quota monitoring stopped",
            context=AuditContext(target_id=self.quota.target_id, guild_id=self.quota.guild_id),
            change="quota_stop",
        )
        return True

    def reset(self) -> bool:
        if self.quota is None:
            return False
        self.quota.reset()
        return True

    async def handle_speaking_change(
        self,
        guild_id: int,
        user_id: int,
        was_speaking: bool,
        is_speaking: bool,
    ) -> Optional[QuotaAction]:
        """Record a speaking transition; returns the enforcement action taken, if any."""
        if not is_speaking:
            self.activity.mark_stopped(user_id)
            return None
        if was_speaking:
            return None

        self.activity.mark_started(user_id)

        quota = self.quota
        if quota is None or not quota.enabled or quota.target_id != user_id:
            return None

        quota.increment()
        logger.debug(
            "speaking_quota_progress",
            extra={"target_id": user_id, "count": quota.count, "limit": quota.limit},
        )
        if not quota.reached:
            return None
        return await self.enforce(guild_id, user_id)

    async def speaking_started(self, guild_id: int, user_id: int) -> Optional[QuotaAction]:
        return await self.handle_speaking_change(
            guild_id, user_id, self.activity.is_speaking(user_id), True
        )

    async def speaking_stopped(self, guild_id: int, user_id: int) -> None:
        await self.handle_speaking_change(guild_id, user_id, self.activity.is_speaking(user_id), False)

    async def enforce(self, guild_id: int, user_id: int) -> Optional[QuotaAction]:
        quota = self.quota
        if quota is None:
            return None
        key = (guild_id, user_id)
        if key in self._enforcing:
            logger.info(
                "quota_enforcement_in_flight",
                extra={"guild_id": guild_id, "target_id": user_id},
            )
            return None

        context = AuditContext(
            target_id=user_id,
            guild_id=guild_id,
            extra={"count": quota.count, "limit": quota.limit},
        )
        log_escalation("Speaking quota reached", context=context, escalation="quota_reached")

        self._enforcing.add(key)
        try:
            action = await self._apply(guild_id, user_id, quota, context)
        finally:
            self._enforcing.discard(key)

        if action is not QuotaAction.FAILED:
            quota.reset()
        return action

    async def _apply(
        self,
        guild_id: int,
        user_id: int,
        quota: SpeechQuota,
        context: AuditContext,
    ) -> QuotaAction:
        if await self._gateway.can_suspend(guild_id, user_id):
            outcome = await self._gateway.suspend(guild_id, user_id, quota.timeout_seconds, TIMEOUT_REASON)
            if outcome.ok:
                log_action(
                    "Timed out target for exceeding speaking quota",
                    context=context,
                    action="timeout",
                    duration_seconds=quota.timeout_seconds,
                )
                return QuotaAction.TIMEOUT
            log_failure(
                "Timeout failed; falling back to removal",
                context=context,
                outcome=outcome,
            )
        else:
            logger.info(
                "quota_timeout_not_authorized",
                extra={"guild_id": guild_id, "target_id": user_id},
            )

        outcome = await self._gateway.remove_from_voice(guild_id, user_id, REMOVE_REASON)
        if outcome.ok:
            log_action(
                "Removed target from voice for exceeding speaking quota",
                context=context,
                action="remove_from_voice",
            )
            return QuotaAction.REMOVED

        log_failure(
            "Speaking quota enforcement failed",
            context=context,
            outcome=outcome,
        )
        return QuotaAction.FAILED
