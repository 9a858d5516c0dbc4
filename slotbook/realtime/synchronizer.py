"""Client-side chat synchronizer.

``MessageWindow`` keeps the visible slice of a conversation: ordered by
``created_at``, deduplicated by id and capped. ``ChatSession`` wires it to the
REST client and a ``Transport``: it loads history, applies live events, sends
optimistically and reconnects with capped exponential backoff until it gives
up and waits for a manual ``retry()``.
"""
import asyncio
import bisect
from enum import Enum
from typing import Callable, List, Optional, Set
from uuid import uuid4

from slotbook.config import (
    CHAT_WINDOW_CAP,
    MESSAGE_PAGE_SIZE,
    RECONNECT_BASE_DELAY_SECONDS,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_MAX_DELAY_SECONDS,
)
from slotbook.realtime.api_client import ChatApiClient
from slotbook.realtime.errors import ChatError
from slotbook.realtime.hub import conversation_channel
from slotbook.realtime.transport import Transport, TransportStatus
from slotbook.utils.timeutils import parse_timestamp, utcnow
from slotbook.logger import get_logger

logger = get_logger(__name__)

PENDING_PREFIX = "pending-"


class ConnectionState(str, Enum):
    connecting = "connecting"
    connected = "connected"
    disconnected = "disconnected"
    error = "error"
    gave_up = "gave_up"


class ReconnectPolicy:
    def __init__(self, base_delay: float = RECONNECT_BASE_DELAY_SECONDS,
                 max_delay: float = RECONNECT_MAX_DELAY_SECONDS,
                 max_attempts: int = RECONNECT_MAX_ATTEMPTS):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts

    def delay_for(self, attempt: int) -> float:
        """Delay before the ``attempt``-th reconnect (1-based)"""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts


class MessageWindow:
    def __init__(self, cap: int = CHAT_WINDOW_CAP):
        self.cap = cap
        self.messages: List[dict] = []
        self.ids: Set[str] = set()

    def __len__(self):
        return len(self.messages)

    def __contains__(self, message_id):
        return message_id in self.ids

    def __iter__(self):
        return iter(self.messages)

    def _keys(self):
        return [parse_timestamp(m["created_at"]) for m in self.messages]

    def _insert(self, message: dict):
        # Equal timestamps keep arrival order
        position = bisect.bisect_right(self._keys(), parse_timestamp(message["created_at"]))
        self.messages.insert(position, message)
        self.ids.add(message["id"])

    def _evict_oldest(self):
        while len(self.messages) > self.cap:
            self.ids.discard(self.messages.pop(0)["id"])

    def _evict_newest(self):
        while len(self.messages) > self.cap:
            self.ids.discard(self.messages.pop()["id"])

    def add_live(self, message: dict) -> bool:
        """Add a message that just happened; returns False for duplicates"""
        if message["id"] in self.ids:
            return False
        self._insert(message)
        self._evict_oldest()
        return True

    def prepend_page(self, page: List[dict]) -> int:
        """Merge an older page; the newest entries make room when the cap is hit"""
        added = 0
        for message in page:
            if message["id"] not in self.ids:
                self._insert(message)
                added += 1
        self._evict_newest()
        return added

    def reset(self, page: List[dict]) -> None:
        self.messages = []
        self.ids = set()
        for message in page:
            if message["id"] not in self.ids:
                self._insert(message)
        self._evict_oldest()

    def remove(self, message_id: str) -> bool:
        for index, message in enumerate(self.messages):
            if message["id"] == message_id:
                del self.messages[index]
                self.ids.discard(message_id)
                return True
        return False

    def replace(self, temp_id: str, message: dict) -> None:
        """Swap an optimistic entry for the server copy, which may already have arrived live"""
        self.remove(temp_id)
        self.add_live(message)

    def oldest_confirmed_timestamp(self):
        for message in self.messages:
            if not message["id"].startswith(PENDING_PREFIX):
                return parse_timestamp(message["created_at"])
        return None


def log_notifier(level: str, message: str) -> None:
    logger.info(f"[{level}] {message}")


def loop_scheduler(delay: float, callback: Callable):
    loop = asyncio.get_running_loop()
    return loop.call_later(delay, lambda: loop.create_task(callback()))


class ChatSession:
    def __init__(
            self,
            conversation_id: str,
            user_id: str,
            api: ChatApiClient,
            transport: Transport,
            notifier: Callable[[str, str], None] = log_notifier,
            policy: Optional[ReconnectPolicy] = None,
            scheduler: Callable = loop_scheduler,
            window: Optional[MessageWindow] = None,
            page_size: int = MESSAGE_PAGE_SIZE,
    ):
        self.conversation_id = conversation_id
        self.user_id = user_id
        self.api = api
        self.transport = transport
        self.notifier = notifier
        self.policy = policy or ReconnectPolicy()
        self.scheduler = scheduler
        self.window = window or MessageWindow()
        self.page_size = page_size

        self.state = ConnectionState.disconnected
        self.draft = ""
        self.attempts = 0
        self.loaded = False
        self._closed = False
        self._reconnect_handle = None
        self._tasks: Set[asyncio.Task] = set()

        transport.on("new_message", self._on_new_message)
        transport.on("messages_read", self._on_messages_read)
        transport.on_status(self._on_status)

    @property
    def channel(self) -> str:
        return conversation_channel(self.conversation_id)

    def _spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def open(self) -> None:
        self._closed = False
        await self._load_latest()
        await self._connect()

    async def _load_latest(self) -> None:
        try:
            page = await self.api.get_messages(self.conversation_id, limit=self.page_size)
        except ChatError as e:
            # Stay on the empty state; the user can reopen
            logger.warning(f"Loading conversation {self.conversation_id} failed: {str(e)}")
            self.window.reset([])
            self.loaded = False
            self.notifier("error", "Could not load messages")
            return
        self.window.reset(page)
        self.loaded = True

    async def _connect(self) -> None:
        self.state = ConnectionState.connecting
        try:
            await self.transport.connect()
        except Exception as e:
            logger.warning(f"Transport connect failed: {str(e)}")
            await self._on_status(TransportStatus.error)

    async def _on_status(self, status) -> None:
        if self._closed:
            return
        status = TransportStatus(status)
        if status == TransportStatus.connected:
            # A failed subscribe counts as a failed attempt
            await self.transport.subscribe(self.channel)
            self.state = ConnectionState.connected
            self.attempts = 0
            self._spawn(self._mark_read())
        elif status in (TransportStatus.error, TransportStatus.timeout):
            self.state = ConnectionState.error
            self._schedule_reconnect()
        elif status == TransportStatus.closed:
            self.state = ConnectionState.disconnected

    def _schedule_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            return
        if self.policy.exhausted(self.attempts):
            self.state = ConnectionState.gave_up
            logger.warning(f"Giving up on conversation {self.conversation_id} after {self.attempts} attempts")
            self.notifier("error", "Chat connection lost. Retry to reconnect.")
            return
        self.attempts += 1
        delay = self.policy.delay_for(self.attempts)
        logger.info(f"Reconnect attempt {self.attempts} in {delay}s")
        self._reconnect_handle = self.scheduler(delay, self._reconnect)

    async def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._closed:
            return
        await self._connect()

    async def retry(self) -> None:
        """Manual reconnect, available once the session has given up"""
        if self.state not in (ConnectionState.gave_up, ConnectionState.error, ConnectionState.disconnected):
            return
        self._cancel_reconnect()
        self.attempts = 0
        await self._connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    async def _mark_read(self) -> None:
        try:
            await self.api.mark_as_read(self.conversation_id)
        except ChatError as e:
            logger.warning(f"Mark as read failed for {self.conversation_id}: {str(e)}")

    async def load_older(self) -> int:
        before = self.window.oldest_confirmed_timestamp()
        if before is None:
            return 0
        try:
            page = await self.api.get_messages(self.conversation_id, limit=self.page_size, before=before)
        except ChatError as e:
            logger.warning(f"Loading older messages failed: {str(e)}")
            self.notifier("error", "Could not load older messages")
            return 0
        return self.window.prepend_page(page)

    async def send(self, content: Optional[str] = None) -> Optional[dict]:
        """Send ``content`` (or the current draft) with an optimistic entry in the window"""
        from_draft = content is None
        text = self.draft if from_draft else content
        if not text or not text.strip():
            return None

        temp_id = f"{PENDING_PREFIX}{uuid4()}"
        self.window.add_live({
            "id": temp_id,
            "conversation_id": self.conversation_id,
            "sender_id": self.user_id,
            "content": text,
            "created_at": utcnow().isoformat(),
            "is_read": False,
        })
        if from_draft:
            self.draft = ""

        try:
            message = await self.api.send_message(self.conversation_id, text)
        except ChatError as e:
            logger.warning(f"Sending message to {self.conversation_id} failed: {str(e)}")
            self.window.remove(temp_id)
            if from_draft:
                self.draft = text
            self.notifier("error", "Message failed to send")
            return None

        self.window.replace(temp_id, message)
        return message

    def _on_new_message(self, payload: dict) -> None:
        if payload.get("conversation_id") != self.conversation_id:
            return
        self.window.add_live(payload)
        if payload.get("sender_id") != self.user_id and self.state == ConnectionState.connected:
            self._spawn(self._mark_read())

    def _on_messages_read(self, payload: dict) -> None:
        if payload.get("conversation_id") != self.conversation_id or payload.get("reader_id") == self.user_id:
            return
        for message in self.window:
            if message["sender_id"] == self.user_id:
                message["is_read"] = True

    async def close(self) -> None:
        self._closed = True
        self._cancel_reconnect()
        try:
            await self.transport.unsubscribe(self.channel)
            await self.transport.disconnect()
        except ChatError as e:
            logger.warning(f"Closing transport failed: {str(e)}")
        for task in list(self._tasks):
            task.cancel()
        self.state = ConnectionState.disconnected
