"""Moderation State — Enforcement Flags, Quotas and Speaking Activity

THIS MODULE DEFINES NO COMMANDS.

Holds all mutable enforcement state:
- Whether moderation is enabled and which mode is active
- The speaking quota configured for a target
- Lifetime speaking activity per user

This module contains state only and performs no Discord actions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Set, Tuple

DEFAULT_TIMEOUT_SECONDS = 60.0


class Mode(str, Enum):
    KICK = "kick"
    DISCIPLINE = "discipline"


@dataclass
class ModerationState:
    """Enabled flag and mode for the designated target."""

    target_id: int
    enabled: bool = True
    mode: Mode = Mode.KICK

    def set_enabled(self, enabled: bool) -> bool:
        """Flip the enabled flag.

        Returns False when the store was already in the requested state.
        """
        enabled = bool(enabled)
        if self.enabled == enabled:
            return False
        self.enabled = enabled
        return True

    def set_mode(self, mode: Mode) -> bool:
        mode = Mode(mode)
        if self.mode == mode:
            return False
        self.mode = mode
        return True


@dataclass
class SpeechQuota:
    target_id: int
    guild_id: int
    limit: int
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    count: int = 0
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

    @property
    def reached(self) -> bool:
        return self.count >= self.limit

    def increment(self) -> int:
        if self.enabled:
            self.count += 1
        return self.count

    def reset(self) -> None:
        self.count = 0


@dataclass
class SpeakingActivity:
    """Lifetime speak counts plus the users currently mid-utterance."""

    counts: Dict[int, int] = field(default_factory=dict)
    speaking: Set[int] = field(default_factory=set)

    def is_speaking(self, user_id: int) -> bool:
        return user_id in self.speaking

    def mark_started(self, user_id: int) -> int:
        self.speaking.add(user_id)
        self.counts[user_id] = self.counts.get(user_id, 0) + 1
        return self.counts[user_id]

    def mark_stopped(self, user_id: int) -> None:
        self.speaking.discard(user_id)

    def count_for(self, user_id: int) -> int:
        return self.counts.get(user_id, 0)

    def reset_user(self, user_id: int) -> None:
        self.counts.pop(user_id, None)
        self.speaking.discard(user_id)

    def top(self, limit: int = 5) -> Tuple[Tuple[int, int], ...]:
        ranked = sorted(self.counts.items(), key=lambda item: item[1], reverse=True)
        return tuple(ranked[:limit])


def parse_mode(raw: Optional[str], default: Mode = Mode.KICK) -> Mode:
    if not raw:
        return default
    try:
        return Mode(raw.strip().lower())
    except ValueError:
        return default
