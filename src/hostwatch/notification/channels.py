from abc import ABC, abstractmethod
from typing import Dict, Any

from hostwatch.models import SendResult


class NotificationChannel(ABC):
    """Uniform send interface over one notification transport.

    Adapters never raise from send_chunk: failures come back as a
    SendResult whose `transient` flag tells the router whether a retry
    may succeed.
    """

    name = "channel"
    default_max_length = 4000

    def __init__(self, config: Dict[str, Any]):
        self.config = config or {}

    def is_enabled(self) -> bool:
        return bool(self.config.get('enabled', False))

    def max_message_length(self) -> int:
        return int(self.config.get('max_message_length', self.default_max_length))

    @abstractmethod
    async def send_chunk(self, text: str) -> SendResult:
        """Deliver one chunk of text"""

    async def start(self):
        """Open sessions or servers the channel needs"""

    async def close(self):
        """Release channel resources"""
