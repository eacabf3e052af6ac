"""Notification collaborator used by ``notify`` actions."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)


class Notifier(ABC):
    @abstractmethod
    def notify(self, target: str, payload: dict[str, Any]) -> None:
        """Deliver ``payload`` to ``target``. Fire-and-forget; may raise."""


class LoggingNotifier(Notifier):
    """Default notifier: writes the notification to the application log."""

    def notify(self, target: str, payload: dict[str, Any]) -> None:
        logger.info(
            "notification for %s on ticket %s: %s",
            target,
            payload.get("ticket_id"),
            payload.get("message") or "",
        )
