from abc import ABC, abstractmethod


class WebhookEventRepository(ABC):
    @abstractmethod
    def has_processed(self, event_id: str) -> bool:...

    @abstractmethod
    def mark_processed(self, event_id: str, event_type: str) -> None:...
