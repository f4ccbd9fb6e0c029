import logging
from typing import Dict, Any

from core.services.notifier import Notifier

logger = logging.getLogger(__name__)


class LoggingNotifier(Notifier):
    """Used when Pusher is not configured: events only go to the log."""

    def publish(self, channel: str, event: str, data: Dict[str, Any]) -> None:
        logger.info("Event %s on %s: %s", event, channel, data)
