from __future__ import annotations

import asyncio

from telethon import functions
from telethon.tl.types import MessageMediaDocument, MessageMediaPhoto, PeerUser, UpdateStory

from adapters.telegram_mapper import StoryRef
from adapters.telegram_transport import TelegramTransport, resolve_target
from core.models import ContentKind, OutboundPayload, StatusEvent


class DummyDocument:
    def __init__(self, size: int) -> None:
        self.size = size
        self.attributes = []
        self.mime_type = "video/mp4"


class DummyStory:
    def __init__(self, story_id: int, caption: str) -> None:
        self.id = story_id
        self.caption = caption
        self.media = None
        self.out = False


class DummyUser:
    def __init__(self, user_id: int, *, bot: bool = False, deleted: bool = False, is_self: bool = False) -> None:
        self.id = user_id
        self.bot = bot
        self.deleted = deleted
        self.is_self = is_self


class FakeClient:
    def __init__(self, download_result: bytes = b"data", fail_send: bool = False) -> None:
        self.requests = []
        self.messages = []
        self.files = []
        self.downloads = 0
        self.handlers = []
        self.download_result = download_result
        self.fail_send = fail_send
        self.members = []

    async def get_input_entity(self, peer):
        return peer

    async def __call__(self, request):
        self.requests.append(request)
        return True

    async def download_media(self, media, file=None):
        self.downloads += 1
        return self.download_result

    async def send_message(self, target, text, parse_mode=None, link_preview=True):
        if self.fail_send:
            raise ConnectionError("network down")
        self.messages.append((target, text, parse_mode))

    async def send_file(self, target, file, caption=None, parse_mode=None, supports_streaming=False):
        self.files.append((target, file.name, file.read(), caption, parse_mode, supports_streaming))

    async def get_entity(self, target):
        return target

    async def iter_participants(self, entity):
        for user in self.members:
            yield user

    def add_event_handler(self, callback, event):
        self.handlers.append((callback, event))


def _event(media=None) -> StatusEvent:
    return StatusEvent(
        id="42:3",
        sender_id="42",
        payload={},
        ref=StoryRef(peer=PeerUser(user_id=42), story_id=3, media=media),
    )


def test_resolve_target_converts_numeric_ids() -> None:
    assert resolve_target("12345") == 12345
    assert resolve_target("-100123") == -100123
    assert resolve_target("@someone") == "@someone"
    assert resolve_target("me") == "me"


def test_acknowledge_reads_story_up_to_its_id() -> None:
    client = FakeClient()
    transport = TelegramTransport(client)

    result = asyncio.run(transport.acknowledge(_event()))

    assert result.ok
    request = client.requests[0]
    assert isinstance(request, functions.stories.ReadStoriesRequest)
    assert request.max_id == 3


def test_acknowledge_without_story_ref_fails() -> None:
    transport = TelegramTransport(FakeClient())

    result = asyncio.run(transport.acknowledge(StatusEvent(id="x", sender_id="1", payload={})))

    assert not result.ok


def test_download_refuses_oversized_document_before_fetching() -> None:
    client = FakeClient()
    transport = TelegramTransport(client)
    media = MessageMediaDocument(document=DummyDocument(size=5000))

    result = asyncio.run(transport.download(_event(media), max_bytes=1000))

    assert not result.ok
    assert client.downloads == 0


def test_download_checks_size_after_fetching() -> None:
    client = FakeClient(download_result=b"x" * 20)
    transport = TelegramTransport(client)

    too_big = asyncio.run(transport.download(_event(MessageMediaPhoto()), max_bytes=10))
    fits = asyncio.run(transport.download(_event(MessageMediaPhoto()), max_bytes=100))

    assert not too_big.ok
    assert fits.ok
    assert fits.value == b"x" * 20


def test_download_without_media_fails() -> None:
    result = asyncio.run(TelegramTransport(FakeClient()).download(_event(None)))

    assert not result.ok


def test_send_text_and_media() -> None:
    client = FakeClient()
    transport = TelegramTransport(client)

    async def send_both():
        await transport.send("123", OutboundPayload(text="**hi**", formatted=True))
        await transport.send(
            "me",
            OutboundPayload(media_bytes=b"mp4", caption="cap", file_name="status.mp4", kind=ContentKind.VIDEO),
        )

    asyncio.run(send_both())

    assert client.messages == [(123, "**hi**", "md")]
    assert client.files == [("me", "status.mp4", b"mp4", "cap", None, True)]


def test_send_failure_is_a_result() -> None:
    transport = TelegramTransport(FakeClient(fail_send=True))

    result = asyncio.run(transport.send("123", OutboundPayload(text="hi")))

    assert not result.ok
    assert result.error == "network down"


def test_group_members_skip_bots_deleted_and_self() -> None:
    client = FakeClient()
    client.members = [
        DummyUser(1),
        DummyUser(2, bot=True),
        DummyUser(3, deleted=True),
        DummyUser(4, is_self=True),
        DummyUser(5),
    ]
    transport = TelegramTransport(client)

    result = asyncio.run(transport.group_members("-100999"))

    assert result.ok
    assert result.value.member_ids == ["1", "5"]


def test_subscribe_feeds_story_updates_to_handler() -> None:
    client = FakeClient()
    transport = TelegramTransport(client)
    received = []

    async def handler(event) -> None:
        received.append(event)

    transport.subscribe(handler)
    callback, _ = client.handlers[0]

    asyncio.run(callback(UpdateStory(peer=PeerUser(user_id=42), story=DummyStory(8, "hello"))))

    assert [event.id for event in received] == ["42:8"]
    assert received[0].payload == {"text": "hello"}


def test_subscribe_handler_errors_are_contained() -> None:
    client = FakeClient()
    transport = TelegramTransport(client)

    async def handler(event) -> None:
        raise RuntimeError("boom")

    transport.subscribe(handler)
    callback, _ = client.handlers[0]

    asyncio.run(callback(UpdateStory(peer=PeerUser(user_id=42), story=DummyStory(8, "hello"))))
