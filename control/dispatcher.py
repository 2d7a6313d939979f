"""
Command Dispatcher — Operator Intents to State Transitions

THIS MODULE DEFINES NO DISCORD COMMANDS.

Each intent returns the reply text for the operator. Replies always describe
the resulting state, including when an underlying platform action failed.
Status replies are built from last-known state only.

Intents:
- enable / disable
- set mode (kick | discipline)
- start / stop / reset the speaking quota
- status

The moderated target is refused every intent.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

from enforcement.engine import EnforcementEngine
from enforcement.quota import SpeakingQuotaTracker
from safety import controls
from safety.audit import AuditContext, log_control_change
from state.moderation import DEFAULT_TIMEOUT_SECONDS, Mode, SpeechQuota

BLOCKED_REPLY = "You cannot control this bot!"

StateHook = Callable[[bool], Awaitable[None]]
QuotaHook = Callable[[SpeechQuota], Awaitable[None]]
NameResolver = Callable[[int], Optional[str]]


class CommandDispatcher:
    def __init__(
        self,
        engine: EnforcementEngine,
        tracker: SpeakingQuotaTracker,
        *,
        on_state_change: Optional[StateHook] = None,
        on_quota_started: Optional[QuotaHook] = None,
        on_quota_stopped: Optional[QuotaHook] = None,
        resolve_name: Optional[NameResolver] = None,
    ) -> None:
        self.engine = engine
        self.tracker = tracker
        self._on_state_change = on_state_change
        self._on_quota_started = on_quota_started
        self._on_quota_stopped = on_quota_stopped
        self._resolve_name = resolve_name

    def blocked(self, actor_id: int) -> bool:
        return controls.is_operator_blocked(actor_id, self.engine.target_id)

    def _describe_user(self, user_id: int) -> str:
        name = self._resolve_name(user_id) if self._resolve_name else None
        return name or f"User ID: {user_id}"

    def _audit(self, actor_id: int, command: str, message: str, **extra) -> None:
        log_control_change(
            message,
            context=AuditContext(actor_id=actor_id, target_id=self.engine.target_id, command=command),
            change=command,
            **extra,
        )

    async def enable(self, actor_id: int) -> str:
        if self.blocked(actor_id):
            return BLOCKED_REPLY
        if not await self.engine.set_enabled(True):
            return "Voice kick bot is already **ENABLED**!"
        self._audit(actor_id, "enable", "Moderation enabled")
        if self._on_state_change is not None:
            await self._on_state_change(True)
        return "Voice kick bot is now **ENABLED**"

    async def disable(self, actor_id: int) -> str:
        if self.blocked(actor_id):
            return BLOCKED_REPLY
        if not await self.engine.set_enabled(False):
            return "Voice kick bot is already **DISABLED**!"
        self._audit(actor_id, "disable", "Moderation disabled")
        if self._on_state_change is not None:
            await self._on_state_change(False)
        return "Voice kick bot is now **DISABLED**"

    async def set_mode(self, actor_id: int, mode: str) -> str:
        if self.blocked(actor_id):
            return BLOCKED_REPLY
        try:
            resolved = Mode(str(mode).strip().lower())
        except ValueError:
            return f"Unknown mode `{mode}`. Use `kick` or `discipline`."
        label = resolved.value.upper()
        if not self.engine.set_mode(resolved):
            return f"Mode is already **{label}**!"
        self._audit(actor_id, "set_mode", f"Mode set to {resolved.value}", mode=resolved.value)
        return f"Mode is now **{label}**"

    async def start_quota(
        self,
        actor_id: int,
        guild_id: int,
        target_id: int,
        limit: int,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> str:
        if self.blocked(actor_id):
            return BLOCKED_REPLY
        try:
            quota = self.tracker.start(guild_id, target_id, limit, timeout_seconds)
        except ValueError as exc:
            return f"Invalid speaking quota: {exc}"
        if self._on_quota_started is not None:
            await self._on_quota_started(quota)
        return (
            f"Monitoring **{self._describe_user(target_id)}**: timeout after "
            f"{quota.limit} speaking turns ({int(quota.timeout_seconds)}s)."
        )

    async def stop_quota(self, actor_id: int) -> str:
        if self.blocked(actor_id):
            return BLOCKED_REPLY
        quota = self.tracker.quota
        if not self.tracker.stop():
            return "Speaking quota monitoring is not running."
        if self._on_quota_stopped is not None:
            await self._on_quota_stopped(quota)
        return "Speaking quota monitoring **STOPPED**"

    async def reset_quota(self, actor_id: int) -> str:
        if self.blocked(actor_id):
            return BLOCKED_REPLY
        if not self.tracker.reset():
            return "No speaking quota is configured."
        self._audit(actor_id, "reset_quota", "Speaking quota count reset")
        return "Speaking quota count reset to 0."

    def _quota_line(self) -> str:
        quota = self.tracker.quota
        if quota is None or not quota.enabled:
            return "**Speaking quota:** off"
        return (
            f"**Speaking quota:** {quota.count}/{quota.limit} for "
            f"{self._describe_user(quota.target_id)} (timeout {int(quota.timeout_seconds)}s)"
        )

    async def status(self, actor_id: int) -> str:
        if self.blocked(actor_id):
            return BLOCKED_REPLY
        state = self.engine.state
        lines = [
            f"**Bot Status:** {'**ENABLED**' if state.enabled else '**DISABLED**'}",
            f"**Mode:** {state.mode.value.upper()}",
            f"**Target User:** {self._describe_user(state.target_id)}",
            self._quota_line(),
        ]
        sessions = self.engine.discipline.active_sessions()
        if sessions:
            moves = sum(session.move_count for session in sessions)
            lines.append(f"**Discipline:** {len(sessions)} active session(s), {moves} move(s)")
        return "\n".join(lines)
