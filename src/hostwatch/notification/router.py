import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from hostwatch.models import AlertMessage, DispatchResult
from hostwatch.notification.channels import NotificationChannel

logger = logging.getLogger('NotificationRouter')


# =============================================================================
# Chunking
# =============================================================================

def chunk_marker(index: int, total: int) -> str:
    return f"({index}/{total})\n"


def _pack_lines(lines: List[str], budget: int) -> List[str]:
    """Greedily pack whole lines into parts of at most `budget` characters"""
    parts = []
    current = None
    for line in lines:
        if current is None:
            current = line
        elif len(current) + 1 + len(line) > budget:
            parts.append(current)
            current = line
        else:
            current = f"{current}\n{line}"
    parts.append(current)
    return parts


def chunk_message(text: str, max_length: int) -> List[str]:
    """Split text on line boundaries into `(i/N)`-prefixed chunks.

    Text that fits is returned unchanged as a single chunk. Otherwise every
    chunk, marker included, fits in max_length, unless a single line is
    longer than that on its own; such a line is kept whole in its own chunk.
    Dropping the first line of each chunk and joining the rest with newlines
    gives back the original text.
    """
    if len(text) <= max_length:
        return [text]

    lines = text.split('\n')
    total = 2
    while True:
        budget = max_length - len(chunk_marker(total, total))
        parts = _pack_lines(lines, budget)
        # marker width only grows with the digit count of N
        if len(str(len(parts))) <= len(str(total)):
            break
        total = len(parts)

    oversized = [p for p in parts if len(p) > budget]
    if oversized:
        logger.warning(f"{len(oversized)} line(s) exceed the {max_length} character limit and are sent whole")

    count = len(parts)
    return [chunk_marker(i, count) + part for i, part in enumerate(parts, 1)]


def strip_chunk_marker(chunk: str) -> str:
    return chunk.split('\n', 1)[1] if '\n' in chunk else ''


# =============================================================================
# Router
# =============================================================================

class NotificationRouter:
    """Fan a message out to every enabled channel with chunking and retry"""

    def __init__(self, channels: Sequence[NotificationChannel], retry_attempts: int = 3,
                 retry_delay: float = 2.0, chunk_delay: float = 1.0,
                 sleep: Optional[Callable[[float], Awaitable[None]]] = None):
        self.channels = list(channels)
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_delay = retry_delay
        self.chunk_delay = chunk_delay
        self._sleep = sleep or asyncio.sleep

    def enabled_channels(self) -> List[NotificationChannel]:
        enabled = []
        for channel in self.channels:
            try:
                if channel.is_enabled():
                    enabled.append(channel)
            except Exception as e:
                logger.error(f"Error checking whether {channel.name} is enabled: {e}")
        return enabled

    async def start(self):
        """Start every enabled channel"""
        for channel in self.enabled_channels():
            try:
                await channel.start()
                logger.info(f"Channel started: {channel.name}")
            except Exception as e:
                logger.error(f"Failed to start channel {channel.name}: {e}")

    async def close(self):
        for channel in self.channels:
            try:
                await channel.close()
            except Exception as e:
                logger.error(f"Error closing channel {channel.name}: {e}")

    async def send(self, message: AlertMessage) -> List[DispatchResult]:
        """Deliver a message to all enabled channels independently"""
        channels = self.enabled_channels()
        if not channels:
            logger.debug(f"No enabled channels for {message.type.value} message")
            return []

        outcomes = await asyncio.gather(
            *[self._send_to_channel(channel, message.body) for channel in channels],
            return_exceptions=True
        )

        results = []
        for channel, outcome in zip(channels, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.error(f"Unexpected error delivering to {channel.name}: {outcome}")
                results.append(DispatchResult(channel.name, False, 0))
            else:
                results.append(outcome)
        return results

    async def _send_to_channel(self, channel: NotificationChannel, text: str) -> DispatchResult:
        chunks = chunk_message(text, channel.max_message_length())
        attempts = 0
        success = True

        for index, chunk in enumerate(chunks):
            if index > 0:
                await self._sleep(self.chunk_delay)
            delivered, used = await self._send_with_retry(channel, chunk)
            attempts += used
            if not delivered:
                success = False
                logger.warning(f"{channel.name}: chunk {index + 1}/{len(chunks)} not delivered")

        if success:
            logger.info(f"Delivered to {channel.name} ({len(chunks)} chunk(s), {attempts} attempt(s))")
        return DispatchResult(channel.name, success, attempts)

    async def _send_with_retry(self, channel: NotificationChannel, chunk: str) -> Tuple[bool, int]:
        for attempt in range(1, self.retry_attempts + 1):
            try:
                result = await channel.send_chunk(chunk)
            except Exception as e:
                logger.error(f"{channel.name} raised while sending: {e}")
                return False, attempt

            if result.success:
                return True, attempt
            if not result.transient:
                logger.error(f"{channel.name} send failed permanently: {result.error}")
                return False, attempt
            if attempt < self.retry_attempts:
                logger.warning(f"{channel.name} send failed ({result.error}), "
                               f"retry {attempt}/{self.retry_attempts - 1} in {self.retry_delay}s")
                await self._sleep(self.retry_delay)

        logger.error(f"{channel.name} send failed after {self.retry_attempts} attempts")
        return False, self.retry_attempts
