"""Notification sink that writes run events to the structured log."""

from typing import Any

import structlog

from devflow.providers.base import NotificationSink

log = structlog.get_logger(__name__)


class LogNotificationSink(NotificationSink):
    """Emit every event as a structlog ``notification`` entry.

    Useful as the default sink when no chat integration is configured.
    Events are also kept in ``events`` for inspection.
    """

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def notify(self, event: str, data: dict[str, Any]) -> None:
        self.events.append((event, data))
        log.info("notification", notification_event=event, **data)
