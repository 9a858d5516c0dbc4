import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from slotbook.realtime.api_client import ChatApiClient
from slotbook.realtime.errors import ChatRequestError, TransientChatError
from slotbook.realtime.hub import PubSubHub, conversation_channel
from slotbook.realtime.synchronizer import ChatSession, ConnectionState, MessageWindow, ReconnectPolicy
from slotbook.realtime.transport import HubTransport, Transport, TransportStatus

BASE = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def msg(n, sender="other", conversation="c1"):
    return {
        "id": f"m{n}",
        "conversation_id": conversation,
        "sender_id": sender,
        "content": f"message {n}",
        "created_at": (BASE + timedelta(seconds=n)).isoformat(),
        "is_read": False,
    }


def ids(window):
    return [m["id"] for m in window]


def assert_lockstep(window):
    assert window.ids == {m["id"] for m in window.messages}
    assert len(window.ids) == len(window.messages)


async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


# MessageWindow

def test_duplicates_are_dropped():
    window = MessageWindow()
    assert window.add_live(msg(1))
    assert not window.add_live(msg(1))
    assert ids(window) == ["m1"]


def test_live_arrivals_evict_oldest():
    window = MessageWindow(cap=3)
    for n in range(5):
        window.add_live(msg(n))
    assert ids(window) == ["m2", "m3", "m4"]
    assert_lockstep(window)


def test_back_pagination_evicts_newest():
    window = MessageWindow(cap=3)
    window.reset([msg(5), msg(6), msg(7)])
    added = window.prepend_page([msg(3), msg(4)])
    assert added == 2
    assert ids(window) == ["m3", "m4", "m5"]
    assert_lockstep(window)


def test_out_of_order_arrival_is_placed_by_time():
    window = MessageWindow()
    window.add_live(msg(1))
    window.add_live(msg(3))
    window.add_live(msg(2))
    assert ids(window) == ["m1", "m2", "m3"]


def test_cap_holds_over_mixed_operations():
    window = MessageWindow(cap=100)
    window.reset([msg(n) for n in range(100, 200)])
    window.prepend_page([msg(n) for n in range(50, 100)])
    for n in range(200, 230):
        window.add_live(msg(n))
    window.add_live(msg(150))
    assert len(window) == 100
    assert_lockstep(window)


def test_replace_when_server_copy_already_arrived():
    window = MessageWindow()
    window.add_live({**msg(1), "id": "pending-x"})
    window.add_live(msg(1))
    window.replace("pending-x", msg(1))
    assert ids(window) == ["m1"]
    assert_lockstep(window)


def test_reconnect_delays():
    policy = ReconnectPolicy()
    assert [policy.delay_for(n) for n in range(1, 6)] == [2.0, 4.0, 8.0, 16.0, 30.0]
    assert policy.exhausted(5)
    assert not policy.exhausted(4)


# ChatSession

class FakeApi:
    def __init__(self, pages=None):
        self.pages = pages or [[msg(1), msg(2)]]
        self.sent = []
        self.read_calls = 0
        self.fail_send = False
        self.fail_load = False
        self.fail_read = False

    async def get_messages(self, conversation_id, limit=50, before=None):
        if self.fail_load:
            raise TransientChatError("offline")
        return self.pages.pop(0) if self.pages else []

    async def send_message(self, conversation_id, content):
        if self.fail_send:
            raise TransientChatError("offline")
        message = {**msg(100, sender="me"), "id": f"srv-{len(self.sent)}", "content": content}
        self.sent.append(message)
        return message

    async def mark_as_read(self, conversation_id):
        self.read_calls += 1
        if self.fail_read:
            raise ChatRequestError(500, "boom")
        return {"conversation_id": conversation_id, "messages_marked_read": 0}


class FakeTransport(Transport):
    def __init__(self, fail=False):
        super().__init__()
        self.fail = fail
        self.connects = 0
        self.channels = set()

    async def connect(self):
        self.connects += 1
        await self._signal(TransportStatus.error if self.fail else TransportStatus.connected)

    async def disconnect(self):
        await self._signal(TransportStatus.closed)

    async def subscribe(self, channel):
        self.channels.add(channel)

    async def unsubscribe(self, channel):
        self.channels.discard(channel)

    async def emit(self, event, payload):
        await self._dispatch(event, payload)


class FakeScheduler:
    def __init__(self):
        self.scheduled = []

    def __call__(self, delay, callback):
        self.scheduled.append((delay, callback))
        return self

    def cancel(self):
        pass


def make_session(api=None, transport=None, scheduler=None):
    toasts = []
    session = ChatSession(
        "c1",
        "me",
        api or FakeApi(),
        transport or FakeTransport(),
        notifier=lambda level, text: toasts.append((level, text)),
        scheduler=scheduler or FakeScheduler(),
    )
    return session, toasts


@pytest.mark.anyio
async def test_open_loads_connects_and_marks_read():
    api = FakeApi()
    transport = FakeTransport()
    session, toasts = make_session(api, transport)

    await session.open()
    await settle()

    assert session.state == ConnectionState.connected
    assert ids(session.window) == ["m1", "m2"]
    assert conversation_channel("c1") in transport.channels
    assert api.read_calls == 1
    assert toasts == []


@pytest.mark.anyio
async def test_load_failure_shows_empty_state():
    api = FakeApi()
    api.fail_load = True
    session, toasts = make_session(api)

    await session.open()

    assert len(session.window) == 0
    assert session.loaded is False
    assert toasts == [("error", "Could not load messages")]


@pytest.mark.anyio
async def test_mark_read_failure_is_only_logged():
    api = FakeApi()
    api.fail_read = True
    session, toasts = make_session(api)

    await session.open()
    await settle()

    assert api.read_calls == 1
    assert toasts == []


@pytest.mark.anyio
async def test_send_replaces_optimistic_entry():
    session, _ = make_session()
    await session.open()
    session.draft = "on my way"

    message = await session.send()

    assert message["content"] == "on my way"
    assert session.draft == ""
    assert ids(session.window)[-1] == "srv-0"
    assert not any(i.startswith("pending-") for i in session.window.ids)


@pytest.mark.anyio
async def test_send_failure_rolls_back_and_restores_draft():
    api = FakeApi()
    session, toasts = make_session(api)
    await session.open()
    api.fail_send = True
    session.draft = "running late"

    result = await session.send()

    assert result is None
    assert ids(session.window) == ["m1", "m2"]
    assert session.draft == "running late"
    assert toasts == [("error", "Message failed to send")]
    assert_lockstep(session.window)


@pytest.mark.anyio
async def test_explicit_content_leaves_draft_alone():
    api = FakeApi()
    session, _ = make_session(api)
    await session.open()
    session.draft = "half-typed"

    await session.send("quick reply")
    assert session.draft == "half-typed"

    api.fail_send = True
    assert await session.send("another") is None
    assert session.draft == "half-typed"

@pytest.mark.anyio
async def test_live_events_are_deduplicated():
    transport = FakeTransport()
    session, _ = make_session(transport=transport)
    await session.open()

    await transport.emit("new_message", msg(3))
    await transport.emit("new_message", msg(3))
    await transport.emit("new_message", msg(4, conversation="other"))

    assert ids(session.window) == ["m1", "m2", "m3"]


@pytest.mark.anyio
async def test_load_older_prepends():
    api = FakeApi(pages=[[msg(5), msg(6)], [msg(3), msg(4)]])
    session, _ = make_session(api)
    await session.open()

    assert await session.load_older() == 2
    assert ids(session.window) == ["m3", "m4", "m5", "m6"]


@pytest.mark.anyio
async def test_reconnect_backoff_then_give_up():
    scheduler = FakeScheduler()
    transport = FakeTransport(fail=True)
    session, toasts = make_session(transport=transport, scheduler=scheduler)

    await session.open()
    assert session.state == ConnectionState.error

    for _ in range(5):
        _, callback = scheduler.scheduled[-1]
        await callback()

    assert [delay for delay, _ in scheduler.scheduled] == [2.0, 4.0, 8.0, 16.0, 30.0]
    assert session.state == ConnectionState.gave_up
    assert toasts[-1][0] == "error"
    assert transport.connects == 6

    transport.fail = False
    await session.retry()
    assert session.state == ConnectionState.connected
    assert session.attempts == 0


class UnsubscribableTransport(FakeTransport):
    async def subscribe(self, channel):
        raise TransientChatError("channel refused")


@pytest.mark.anyio
async def test_failed_subscribe_still_gives_up():
    scheduler = FakeScheduler()
    transport = UnsubscribableTransport()
    session, toasts = make_session(transport=transport, scheduler=scheduler)

    await session.open()
    assert session.state == ConnectionState.error

    for _ in range(20):
        if session.state == ConnectionState.gave_up:
            break
        _, callback = scheduler.scheduled[-1]
        await callback()

    assert session.state == ConnectionState.gave_up
    assert [delay for delay, _ in scheduler.scheduled] == [2.0, 4.0, 8.0, 16.0, 30.0]
    assert toasts == [("error", "Chat connection lost. Retry to reconnect.")]

@pytest.mark.anyio
async def test_close_stops_reconnecting():
    scheduler = FakeScheduler()
    transport = FakeTransport(fail=True)
    session, _ = make_session(transport=transport, scheduler=scheduler)

    await session.open()
    await session.close()
    _, callback = scheduler.scheduled[-1]
    await callback()

    assert transport.connects == 1
    assert session.state == ConnectionState.disconnected


@pytest.mark.anyio
async def test_hub_transport_end_to_end():
    hub = PubSubHub()
    transport = HubTransport(hub=hub, name="client")
    session, _ = make_session(transport=transport)

    await session.open()
    assert hub.subscriber_count(conversation_channel("c1")) == 1

    hub.publish(conversation_channel("c1"), "new_message", msg(9))
    await settle()
    assert ids(session.window)[-1] == "m9"

    await session.close()
    assert hub.subscriber_count(conversation_channel("c1")) == 0


# ChatApiClient

def api_with(handler):
    client = httpx.AsyncClient(base_url="http://test", transport=httpx.MockTransport(handler))
    return ChatApiClient("http://test", "token", client=client)


@pytest.mark.anyio
async def test_api_client_success():
    def handler(request):
        assert request.headers["Authorization"] == "Bearer token"
        assert request.url.params["limit"] == "50"
        return httpx.Response(200, json=[msg(1)])

    api = api_with(handler)
    assert await api.get_messages("c1") == [msg(1)]
    await api.aclose()


@pytest.mark.anyio
async def test_api_client_maps_errors():
    api = api_with(lambda request: httpx.Response(503, text="unavailable"))
    with pytest.raises(TransientChatError):
        await api.send_message("c1", "hi")

    api = api_with(lambda request: httpx.Response(400, json={"detail": "Message content cannot be empty"}))
    with pytest.raises(ChatRequestError) as exc:
        await api.send_message("c1", " ")
    assert exc.value.status_code == 400
    assert exc.value.detail == "Message content cannot be empty"

    def offline(request):
        raise httpx.ConnectError("refused", request=request)

    api = api_with(offline)
    with pytest.raises(TransientChatError):
        await api.mark_as_read("c1")
