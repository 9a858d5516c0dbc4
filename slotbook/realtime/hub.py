"""In-process publish/subscribe hub for live chat and booking updates.

Channels are plain strings (``conversation:<id>``, ``user:<id>``). Each
subscriber owns an asyncio queue bound to the loop it was created on, so
``publish`` is safe to call from the threadpool that runs sync route
handlers as well as from the event loop itself.
"""
import asyncio
import threading
from typing import Dict, Optional, Set

from slotbook.logger import get_logger

logger = get_logger(__name__)


def conversation_channel(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


class Subscriber:
    def __init__(self, name: str = "", loop: Optional[asyncio.AbstractEventLoop] = None):
        self.name = name
        self.loop = loop or asyncio.get_running_loop()
        self.queue: asyncio.Queue = asyncio.Queue()
        self.channels: Set[str] = set()

    def deliver(self, event: dict) -> None:
        self.loop.call_soon_threadsafe(self.queue.put_nowait, event)

    async def get(self) -> dict:
        return await self.queue.get()

    def __repr__(self):
        return f"Subscriber({self.name!r}, channels={sorted(self.channels)})"


class PubSubHub:
    def __init__(self):
        self._channels: Dict[str, Set[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber, channel: str) -> None:
        with self._lock:
            self._channels.setdefault(channel, set()).add(subscriber)
            subscriber.channels.add(channel)
        logger.debug(f"{subscriber.name or 'subscriber'} joined {channel}")

    def unsubscribe(self, subscriber: Subscriber, channel: str) -> None:
        with self._lock:
            members = self._channels.get(channel)
            if members is not None:
                members.discard(subscriber)
                if not members:
                    del self._channels[channel]
            subscriber.channels.discard(channel)
        logger.debug(f"{subscriber.name or 'subscriber'} left {channel}")

    def unsubscribe_all(self, subscriber: Subscriber) -> None:
        for channel in list(subscriber.channels):
            self.unsubscribe(subscriber, channel)

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._channels.get(channel, ()))

    def publish(self, channel: str, event: str, payload: dict) -> int:
        """Fan an event out to every subscriber of ``channel``; returns how many received it"""
        message = {"event": event, "channel": channel, "payload": payload}
        with self._lock:
            members = list(self._channels.get(channel, ()))

        delivered = 0
        for subscriber in members:
            try:
                subscriber.deliver(message)
                delivered += 1
            except RuntimeError as e:
                # The subscriber's loop is gone; drop it so it stops receiving
                logger.warning(f"Dropping dead subscriber on {channel}: {e}")
                self.unsubscribe_all(subscriber)
        return delivered


hub = PubSubHub()


def publish_safely(channel: str, event: str, payload: dict) -> None:
    """Best-effort publish used after a commit; a failed push must not fail the request"""
    try:
        hub.publish(channel, event, payload)
    except Exception as e:
        logger.error(f"Live publish of {event} on {channel} failed: {str(e)}")
