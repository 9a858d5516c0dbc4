"""Client-side real-time transport.

A ``Transport`` delivers named events from subscribed channels to registered
handlers and reports its connection status through status handlers. Handlers
may be plain callables or coroutine functions.
"""
import asyncio
import inspect
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Dict, List, Optional

from slotbook.realtime.errors import TransientChatError
from slotbook.realtime.hub import PubSubHub, Subscriber, hub as default_hub
from slotbook.logger import get_logger

logger = get_logger(__name__)


class TransportStatus(str, Enum):
    connected = "connected"
    error = "error"
    timeout = "timeout"
    closed = "closed"


async def _call(handler: Callable, *args):
    result = handler(*args)
    if inspect.isawaitable(result):
        await result


class Transport(ABC):
    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}
        self._status_handlers: List[Callable] = []

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    async def subscribe(self, channel: str) -> None:
        ...

    @abstractmethod
    async def unsubscribe(self, channel: str) -> None:
        ...

    @abstractmethod
    async def emit(self, event: str, payload: dict) -> None:
        ...

    def on(self, event: str, handler: Callable) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def on_status(self, handler: Callable) -> None:
        self._status_handlers.append(handler)

    async def _dispatch(self, event: str, payload: dict) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                await _call(handler, payload)
            except Exception as e:
                logger.error(f"Handler for {event} failed: {str(e)}")

    async def _signal(self, status: TransportStatus) -> None:
        for handler in list(self._status_handlers):
            await _call(handler, status)


class HubTransport(Transport):
    """Transport over the in-process pub/sub hub; clients living in the server process use it directly"""

    def __init__(self, hub: PubSubHub = default_hub, name: str = ""):
        super().__init__()
        self.hub = hub
        self.name = name
        self._subscriber: Optional[Subscriber] = None
        self._pump: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._subscriber is not None

    async def connect(self) -> None:
        if self._subscriber is None:
            self._subscriber = Subscriber(self.name, loop=asyncio.get_running_loop())
            self._pump = asyncio.create_task(self._run(self._subscriber))
        await self._signal(TransportStatus.connected)

    async def _run(self, subscriber: Subscriber):
        while True:
            message = await subscriber.get()
            await self._dispatch(message["event"], message["payload"])

    async def disconnect(self) -> None:
        if self._subscriber is None:
            return
        self.hub.unsubscribe_all(self._subscriber)
        self._subscriber = None
        if self._pump is not None:
            self._pump.cancel()
            self._pump = None
        await self._signal(TransportStatus.closed)

    async def subscribe(self, channel: str) -> None:
        if self._subscriber is None:
            raise TransientChatError("Transport is not connected")
        self.hub.subscribe(self._subscriber, channel)

    async def unsubscribe(self, channel: str) -> None:
        if self._subscriber is not None:
            self.hub.unsubscribe(self._subscriber, channel)

    async def emit(self, event: str, payload: dict) -> None:
        """Publish on every channel this transport has joined"""
        if self._subscriber is None:
            raise TransientChatError("Transport is not connected")
        for channel in list(self._subscriber.channels):
            self.hub.publish(channel, event, payload)
