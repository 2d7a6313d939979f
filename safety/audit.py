"""
Audit Trail — One JSON Line per Enforcement Decision

THIS MODULE DEFINES NO COMMANDS.

Every removal, relocation, timeout, trigger and operator change is written
to the `voicewarden.audit` logger as a flat JSON object:

    {"ts": ..., "level": ..., "event": ..., "message": ...,
     "guild_id": ..., "target_id": ..., <details>}

`AuditContext` carries the identifiers shared by a run of related records
(a discipline session, a quota breach, a command). Failed `ActionOutcome`
values are flattened into `failure` / `detail` fields by `log_failure`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import IO, Any, Dict, Mapping, Optional, Union

from voice.events import ActionOutcome, FailureKind

AUDIT_LOGGER_NAME = "voicewarden.audit"

_RESERVED_KEYS = ("ts", "level", "event", "message")

_handler: Optional[logging.Handler] = None


class AuditEvent(str, Enum):
    ACTION = "action"
    ESCALATION = "escalation"
    CONTROL_CHANGE = "control_change"
    FAILURE = "failure"


@dataclass(frozen=True)
class AuditContext:
    """Identifiers attached to every record logged with this context."""

    guild_id: Optional[int] = None
    target_id: Optional[int] = None
    channel_id: Optional[int] = None
    actor_id: Optional[int] = None
    command: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def with_extra(self, **extra: Any) -> "AuditContext":
        return replace(self, extra={**self.extra, **extra})

    def fields(self) -> Dict[str, Any]:
        ids = {
            "guild_id": self.guild_id,
            "target_id": self.target_id,
            "channel_id": self.channel_id,
            "actor_id": self.actor_id,
            "command": self.command,
        }
        result = {key: value for key, value in ids.items() if value is not None}
        result.update(self.extra)
        return result


def outcome_fields(outcome: ActionOutcome) -> Dict[str, Any]:
    """Audit fields describing a gateway outcome. Empty for successes."""
    if outcome.ok:
        return {}
    failure = outcome.failure or FailureKind.UNKNOWN
    fields: Dict[str, Any] = {"failure": failure.value}
    if outcome.detail:
        fields["detail"] = outcome.detail
    return fields


class AuditFormatter(logging.Formatter):
    """Render audit records as a single flat JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "event": getattr(record, "audit_event", "log"),
            "message": record.getMessage(),
        }
        for key, value in (getattr(record, "audit_fields", None) or {}).items():
            if key not in _RESERVED_KEYS:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_audit_logger(
    level: Union[int, str] = logging.INFO,
    stream: Optional[IO[str]] = None,
) -> logging.Logger:
    """(Re)install the JSON handler on the audit logger.

    Calling this again replaces the previous handler, so the level and
    stream can be changed after startup.
    """
    global _handler
    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    if _handler is not None:
        logger.removeHandler(_handler)
    _handler = logging.StreamHandler(stream)
    _handler.setFormatter(AuditFormatter())
    logger.addHandler(_handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def audit_logger() -> logging.Logger:
    if _handler is None:
        return configure_audit_logger()
    return logging.getLogger(AUDIT_LOGGER_NAME)


def _emit(
    level: int,
    event: AuditEvent,
    message: str,
    context: Optional[AuditContext],
    details: Dict[str, Any],
    exc_info: Optional[BaseException] = None,
) -> None:
    merged = context.fields() if context is not None else {}
    merged.update(details)
    audit_logger().log(
        level,
        message,
        extra={"audit_event": event.value, "audit_fields": merged},
        exc_info=exc_info,
    )


def log_action(
    message: str,
    *,
    context: Optional[AuditContext] = None,
    action: Optional[str] = None,
    **details: Any,
) -> None:
    """An enforcement action that went through."""
    if action:
        details["action"] = action
    _emit(logging.INFO, AuditEvent.ACTION, message, context, details)


def log_escalation(
    message: str,
    *,
    context: Optional[AuditContext] = None,
    escalation: Optional[str] = None,
    **details: Any,
) -> None:
    if escalation:
        details["escalation"] = escalation
    _emit(logging.WARNING, AuditEvent.ESCALATION, message, context, details)


def log_control_change(
    message: str,
    *,
    context: Optional[AuditContext] = None,
    change: Optional[str] = None,
    **details: Any,
) -> None:
    if change:
        details["change"] = change
    _emit(logging.INFO, AuditEvent.CONTROL_CHANGE, message, context, details)


def log_failure(
    message: str,
    *,
    context: Optional[AuditContext] = None,
    outcome: Optional[ActionOutcome] = None,
    error: Optional[BaseException] = None,
    **details: Any,
) -> None:
    """A failed action (`outcome`) or an unexpected exception (`error`)."""
    if outcome is not None:
        details.update(outcome_fields(outcome))
    if error is not None:
        details["error"] = repr(error)
    _emit(logging.ERROR, AuditEvent.FAILURE, message, context, details, exc_info=error)
