"""
Control Commands — Slash Command Suite

THIS MODULE DEFINES OPERATOR COMMANDS.

Commands:
- /wk action:on|off|check: Enable, disable or inspect the voice kick bot
- /wkmode mode:kick|discipline: Choose the enforcement mode
- /bmp start {user} {limit} [timeout_seconds]: Start a speaking quota
- /bmp stop: Stop speaking quota monitoring
- /bmp reset: Reset the speaking quota count
- /bmp status: Same report as /wk check

All logic lives in `control.dispatcher`; this module only parses
interactions and sends replies.

Registered explicitly via `register(bot, dispatcher)`.
"""

from __future__ import annotations

import logging
from typing import Awaitable

import discord
from discord import app_commands
from discord.ext import commands

from control.dispatcher import CommandDispatcher
from state.moderation import DEFAULT_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

MAX_TIMEOUT_SECONDS = 28 * 24 * 60 * 60

WK_CHOICES = [
    app_commands.Choice(name="on", value="on"),
    app_commands.Choice(name="off", value="off"),
    app_commands.Choice(name="check", value="check"),
]

MODE_CHOICES = [
    app_commands.Choice(name="kick", value="kick"),
    app_commands.Choice(name="discipline", value="discipline"),
]


async def _respond(interaction: discord.Interaction, pending: Awaitable[str]) -> None:
    # Enabling may enforce immediately, which can outlast the interaction deadline.
    await interaction.response.defer()
    reply = await pending
    await interaction.followup.send(reply, allowed_mentions=discord.AllowedMentions.none())


def register(
    bot: commands.Bot,
    dispatcher: CommandDispatcher,
    *,
    default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> None:
    @bot.tree.command(name="wk", description="Control the voice kick bot")
    @app_commands.describe(action="Turn the bot on/off or check status")
    @app_commands.choices(action=WK_CHOICES)
    async def wk_cmd(interaction: discord.Interaction, action: app_commands.Choice[str]) -> None:
        logger.info("/wk %s used by %s (%s)", action.value, interaction.user, interaction.user.id)
        actor_id = interaction.user.id
        if action.value == "on":
            await _respond(interaction, dispatcher.enable(actor_id))
        elif action.value == "off":
            await _respond(interaction, dispatcher.disable(actor_id))
        else:
            await _respond(interaction, dispatcher.status(actor_id))

    @bot.tree.command(name="wkmode", description="Choose how the voice kick bot enforces")
    @app_commands.describe(mode="kick removes from voice, discipline bounces between empty channels")
    @app_commands.choices(mode=MODE_CHOICES)
    async def wkmode_cmd(interaction: discord.Interaction, mode: app_commands.Choice[str]) -> None:
        logger.info("/wkmode %s used by %s (%s)", mode.value, interaction.user, interaction.user.id)
        await _respond(interaction, dispatcher.set_mode(interaction.user.id, mode.value))

    bmp = app_commands.Group(name="bmp", description="Speaking quota monitoring")

    @bmp.command(name="start", description="Time out a user after a number of speaking turns")
    @app_commands.describe(
        user="User to monitor",
        limit="Speaking turns allowed before enforcement",
        timeout_seconds="Timeout length in seconds",
    )
    async def bmp_start(
        interaction: discord.Interaction,
        user: discord.Member,
        limit: app_commands.Range[int, 1, 10_000],
        timeout_seconds: app_commands.Range[int, 1, MAX_TIMEOUT_SECONDS] = int(default_timeout_seconds),
    ) -> None:
        if interaction.guild is None:
            await interaction.response.send_message("This command requires a server context.")
            return
        await _respond(
            interaction,
            dispatcher.start_quota(
                interaction.user.id,
                interaction.guild.id,
                user.id,
                limit,
                float(timeout_seconds),
            ),
        )

    @bmp.command(name="stop", description="Stop speaking quota monitoring")
    async def bmp_stop(interaction: discord.Interaction) -> None:
        await _respond(interaction, dispatcher.stop_quota(interaction.user.id))

    @bmp.command(name="reset", description="Reset the speaking quota count")
    async def bmp_reset(interaction: discord.Interaction) -> None:
        await _respond(interaction, dispatcher.reset_quota(interaction.user.id))

    @bmp.command(name="status", description="Show moderation and quota status")
    async def bmp_status(interaction: discord.Interaction) -> None:
        await _respond(interaction, dispatcher.status(interaction.user.id))

    bot.tree.add_command(bmp)
