import logging
from typing import Dict, Any

import pusher

from core.services.notifier import Notifier

logger = logging.getLogger(__name__)


class PusherNotifier(Notifier):
    def __init__(self, app_id: str, key: str, secret: str, cluster: str):
        self.client = pusher.Pusher(app_id=app_id, key=key, secret=secret, cluster=cluster, ssl=True)

    def publish(self, channel: str, event: str, data: Dict[str, Any]) -> None:
        self.client.trigger(channel, event, data)
        logger.debug("Published %s on %s", event, channel)
