"""
notify.message (alias notify.telegram): deliver a text message.

Delivery goes through ``context.api.notifier``. LoggingNotifier is the
default and only records what would have been sent.
"""
from __future__ import annotations

import abc
from typing import TYPE_CHECKING, Any, Literal, Optional

import structlog
from pydantic import Field

from actions.common import ActionConfig, require_service

if TYPE_CHECKING:
    from engine.action_registry import ActionContext

logger = structlog.get_logger()


class Notifier(abc.ABC):
    """Outbound message transport."""

    @abc.abstractmethod
    async def send(self, channel: str, to: str, text: str, **options: Any) -> None:
        ...


class LoggingNotifier(Notifier):
    def __init__(self):
        self.sent: list[dict[str, Any]] = []

    async def send(self, channel: str, to: str, text: str, **options: Any) -> None:
        self.sent.append({"channel": channel, "to": to, "text": text, **options})
        logger.info("notification_sent", channel=channel, to=to, length=len(text))


class NotifyConfig(ActionConfig):
    text: str
    to: Optional[str] = None                       # defaults to the current sender
    channel: Optional[str] = None                  # defaults to the session channel
    parse_mode: Optional[Literal["Markdown", "HTML"]] = Field(default=None, alias="parseMode")


async def send_message(cfg: NotifyConfig, context: "ActionContext") -> None:
    notifier: Notifier = require_service(context, "notifier", "notify.message")
    options = {"parse_mode": cfg.parse_mode} if cfg.parse_mode else {}
    await notifier.send(
        cfg.channel or context.session.channel,
        cfg.to or context.session.sender_id,
        cfg.text,
        **options,
    )
