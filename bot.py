"""
VoiceWarden — Voice Moderation Bot (Main Entry Point)

This file initializes and runs VoiceWarden.

Responsibilities of this file ONLY:
- Create the Discord client/bot instance
- Load configuration and environment variables
- Build the enforcement core and its discord.py adapters
- Explicitly register command suites
- Translate gateway events into core events
- Start the health check server
- Start the bot

IMPORTANT ARCHITECTURE RULES:
- Modules do NOT self-register.
- All command registration is explicit and occurs here.
- All behavior logic lives in modules, not in this file.

VoiceWarden watches one designated user in voice and:
- Removes them when they deafen, or join already deafened (kick mode)
- Bounces them between empty channels while deafened (discipline mode)
- Times them out after too many speaking turns (speaking quota)
"""

from __future__ import annotations

import logging
import sys

import discord
from discord.ext import commands

from control import commands as control_commands
from control.dispatcher import CommandDispatcher
from control.status import StatusPresenter
from enforcement.discipline import DisciplineController
from enforcement.engine import EnforcementEngine
from enforcement.quota import SpeakingQuotaTracker
from health.server import HealthServer
from safety.audit import configure_audit_logger
from state.moderation import ModerationState, SpeechQuota
from utils.config import ConfigError, Settings, load_settings
from utils.timers import AsyncioScheduler
from voice.events import PresenceChange
from voice.gateway import DiscordGateway, presence_from_voice_state
from voice.speaking import SpeakingMonitor

logger = logging.getLogger("voicewarden")


def _build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.guilds = True
    intents.voice_states = True
    intents.members = True
    return intents


def _build_bot() -> commands.Bot:
    intents = _build_intents()
    return commands.Bot(command_prefix=commands.when_mentioned, intents=intents)


def _build_dispatcher(bot: commands.Bot, settings: Settings, scheduler: AsyncioScheduler):
    gateway = DiscordGateway(bot)
    state = ModerationState(target_id=settings.target_user_id, mode=settings.initial_mode)
    engine = EnforcementEngine(state, gateway, DisciplineController(gateway, scheduler))
    tracker = SpeakingQuotaTracker(gateway)
    monitor = SpeakingMonitor(bot, tracker)
    presenter = StatusPresenter(bot, settings.target_user_id)

    async def _quota_started(quota: SpeechQuota) -> None:
        await monitor.attach_to_target()

    async def _quota_stopped(quota: SpeechQuota) -> None:
        await monitor.detach(quota.guild_id)

    def _resolve_name(user_id: int):
        user = bot.get_user(user_id)
        return str(user) if user else None

    dispatcher = CommandDispatcher(
        engine,
        tracker,
        on_state_change=presenter.apply,
        on_quota_started=_quota_started,
        on_quota_stopped=_quota_stopped,
        resolve_name=_resolve_name,
    )
    return dispatcher, monitor, presenter


def main() -> None:
    try:
        settings = load_settings()
    except ConfigError as exc:
        logging.basicConfig(level=logging.INFO)
        logger.error("%s", exc)
        sys.exit(1)

    logging.basicConfig(level=settings.log_level)
    configure_audit_logger(settings.log_level)

    bot = _build_bot()
    scheduler = AsyncioScheduler()
    health = HealthServer(settings.port)
    dispatcher, monitor, presenter = _build_dispatcher(bot, settings, scheduler)
    engine = dispatcher.engine

    control_commands.register(bot, dispatcher, default_timeout_seconds=settings.timeout_seconds)

    @bot.event
    async def setup_hook() -> None:
        await health.start()

    @bot.event
    async def on_ready() -> None:
        logger.info("VoiceWarden connected as %s", bot.user)
        logger.info("Monitoring voice channels for user ID: %s", settings.target_user_id)
        logger.info("Bot status: %s", "ENABLED" if engine.state.enabled else "DISABLED")
        await presenter.apply(engine.state.enabled)
        try:
            synced = await bot.tree.sync()
            logger.info("Synced %s application commands.", len(synced))
        except discord.HTTPException:
            logger.exception("Failed to sync application commands.")

    @bot.listen("on_voice_state_update")
    async def voice_state_listener(
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        if member.id != settings.target_user_id and member.id != getattr(dispatcher.tracker.quota, "target_id", None):
            return
        change = PresenceChange(
            before=presence_from_voice_state(member.guild.id, member.id, before),
            after=presence_from_voice_state(member.guild.id, member.id, after),
        )
        try:
            await engine.handle_presence_change(change)
            await monitor.follow(change.after)
        except Exception:
            logger.exception("voice_state_update_failed", extra={"user_id": member.id})

    @bot.event
    async def on_error(event: str, *args, **kwargs) -> None:
        logger.exception("Discord client error in %s", event)

    bot.run(settings.token, log_handler=None)


if __name__ == "__main__":
    main()
