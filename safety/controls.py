"""
Safety Controls — Authorization Checks

THIS MODULE DEFINES NO COMMANDS.

Checks used before acting:
- The moderated target may never operate the bot
- A timeout needs moderator rank (permission + role above the target)
  and a target the bot can manage (not the owner, not an administrator)
"""

from __future__ import annotations

from typing import Optional

import discord


def is_operator_blocked(user_id: int, target_id: int) -> bool:
    return int(user_id) == int(target_id)


def _role_position(member: Optional[discord.Member]) -> int:
    role = getattr(member, "top_role", None)
    return int(getattr(role, "position", 0) or 0)


def has_moderator_rank(bot_member: Optional[discord.Member], member: Optional[discord.Member]) -> bool:
    if bot_member is None or member is None:
        return False
    perms = getattr(bot_member, "guild_permissions", None)
    if perms is None or not (perms.moderate_members or perms.administrator):
        return False
    return _role_position(bot_member) > _role_position(member)


def is_manageable(member: Optional[discord.Member], owner_id: Optional[int]) -> bool:
    if member is None:
        return False
    if owner_id is not None and member.id == owner_id:
        return False
    perms = getattr(member, "guild_permissions", None)
    if perms is not None and perms.administrator:
        return False
    return True


def can_timeout(guild: discord.Guild, member: Optional[discord.Member]) -> bool:
    bot_member = getattr(guild, "me", None)
    if not has_moderator_rank(bot_member, member):
        return False
    return is_manageable(member, getattr(guild, "owner_id", None))
