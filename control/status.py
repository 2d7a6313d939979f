"""
Bot Status — Presence Broadcast

THIS MODULE DEFINES NO COMMANDS.

Online and "Watching <target>" while moderation is enabled,
idle and "Sleeping" while disabled.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import discord

logger = logging.getLogger(__name__)

SLEEPING_TEXT = "Sleeping"


def status_for(enabled: bool, target_name: Optional[str]) -> Tuple[discord.Status, str]:
    if enabled:
        return discord.Status.online, f"Watching {target_name or 'the target'}"
    return discord.Status.idle, SLEEPING_TEXT


class StatusPresenter:
    def __init__(self, client: discord.Client, target_id: int) -> None:
        self._client = client
        self._target_id = target_id

    def target_name(self) -> Optional[str]:
        user = self._client.get_user(self._target_id)
        if user is None:
            return None
        return getattr(user, "display_name", None) or user.name

    async def apply(self, enabled: bool) -> None:
        status, text = status_for(enabled, self.target_name())
        try:
            await self._client.change_presence(status=status, activity=discord.CustomActivity(name=text))
        except discord.DiscordException:
            logger.exception("Failed to update bot presence.")
            return
        logger.info(
            "Bot status updated: %s",
            "MONITORING (Online)" if enabled else "DISABLED (Idle)",
        )
