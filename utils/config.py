"""
Configuration — Environment and config.json Loading

THIS MODULE DEFINES NO COMMANDS.

`DISCORD_TOKEN` and `TARGET_USER_ID` come from the environment (a `.env`
file is honored). When either is missing, `config.json` is read instead,
using the keys `token` and `targetUserId`.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from state.moderation import DEFAULT_TIMEOUT_SECONDS, Mode, parse_mode

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.json"
DEFAULT_PORT = 3000


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class Settings:
    token: str
    target_user_id: int
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    initial_mode: Mode = Mode.KICK
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(
            "Environment variables not set and config.json not found! "
            "Please set DISCORD_TOKEN and TARGET_USER_ID environment variables."
        ) from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    return data


def _parse_int(raw: Any, name: str) -> int:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _parse_float(raw: Optional[str], default: float, name: str) -> float:
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be > 0")
    return value


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    *,
    load_env_file: bool = True,
) -> Settings:
    if load_env_file:
        load_dotenv()
    env = os.environ if environ is None else environ

    token = env.get("DISCORD_TOKEN")
    target = env.get("TARGET_USER_ID")
    if token and target:
        logger.info("Using environment variables")
    else:
        path = Path(env.get("VOICEWARDEN_CONFIG") or DEFAULT_CONFIG_PATH)
        logger.info("Attempting to load %s", path)
        data = _read_config_file(path)
        token = data.get("token")
        target = data.get("targetUserId")
        if not token or not target:
            raise ConfigError(f"{path} must define 'token' and 'targetUserId'")

    return Settings(
        token=str(token),
        target_user_id=_parse_int(target, "TARGET_USER_ID"),
        port=_parse_int(env.get("PORT") or DEFAULT_PORT, "PORT"),
        log_level=(env.get("VOICEWARDEN_LOG_LEVEL") or "INFO").upper(),
        initial_mode=parse_mode(env.get("VOICEWARDEN_MODE")),
        timeout_seconds=_parse_float(
            env.get("VOICEWARDEN_TIMEOUT_SECONDS"), DEFAULT_TIMEOUT_SECONDS, "VOICEWARDEN_TIMEOUT_SECONDS"
        ),
    )
