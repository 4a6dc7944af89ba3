"""Tests for the notifier implementations in chime/notifications/channels/"""
from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from chime.core.errors import DeliveryError
from chime.notifications.base import Channel
from chime.notifications.channels.file import FileNotifier
from chime.notifications.channels.telegram import TelegramNotifier
from chime.scheduler.dispatcher import DeliveryOutcome, Dispatcher
from chime.scheduler.entry import Entry


@pytest.mark.asyncio
class TestFileNotifier:
    async def test_every_destination_resolves(self, tmp_path):
        notifier = FileNotifier(tmp_path / "n.log")
        channel = await notifier.resolve_channel(77)
        assert channel == Channel(id=77, name="#77")

    async def test_send_appends(self, tmp_path):
        path = tmp_path / "logs" / "n.log"
        notifier = FileNotifier(path)
        channel = await notifier.resolve_channel(1)
        assert await notifier.send(channel, "first") is True
        assert await notifier.send(channel, "second") is True
        text = path.read_text(encoding="utf-8")
        assert text.index("first") < text.index("second")
        assert "[#1]" in text

    async def test_mention_token(self, tmp_path):
        token = await FileNotifier(tmp_path / "n.log").resolve_mentionable(5)
        assert str(token) == "@5"

    async def test_unwritable_path_raises(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        notifier = FileNotifier(blocker / "n.log")
        with pytest.raises(DeliveryError):
            await notifier.send(Channel(id=1), "x")


class FakeTelegram:
    """Records requests and answers like the Bot API."""

    def __init__(self, missing_chats: set[int] | None = None, reject_send: bool = False) -> None:
        self.missing_chats = missing_chats or set()
        self.reject_send = reject_send
        self.requests: list[tuple[str, dict]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        payload = json.loads(request.content)
        self.requests.append((method, payload))
        if method == "getChat":
            if payload["chat_id"] in self.missing_chats:
                return httpx.Response(400, json={"ok": False, "description": "chat not found"})
            return httpx.Response(200, json={"ok": True, "result": {"id": payload["chat_id"], "title": "Team", "type": "group"}})
        if method == "sendMessage":
            if self.reject_send:
                return httpx.Response(200, json={"ok": False, "description": "blocked"})
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})
        return httpx.Response(404, json={"ok": False})


def telegram(api: FakeTelegram) -> TelegramNotifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(api))
    return TelegramNotifier("TOKEN", client=client)


@pytest.mark.asyncio
class TestTelegramNotifier:
    async def test_resolve_channel(self):
        notifier = telegram(FakeTelegram())
        channel = await notifier.resolve_channel(-100)
        assert channel.id == -100
        assert channel.name == "Team"
        await notifier.close()

    async def test_missing_chat_resolves_to_none(self):
        notifier = telegram(FakeTelegram(missing_chats={5}))
        assert await notifier.resolve_channel(5) is None
        await notifier.close()

    async def test_send(self):
        api = FakeTelegram()
        notifier = telegram(api)
        assert await notifier.send(Channel(id=3), "hello") is True
        method, payload = api.requests[-1]
        assert method == "sendMessage"
        assert payload == {"chat_id": 3, "text": "hello", "parse_mode": "Markdown"}
        await notifier.close()

    async def test_rejected_send_raises(self):
        notifier = telegram(FakeTelegram(reject_send=True))
        with pytest.raises(DeliveryError) as exc:
            await notifier.send(Channel(id=3), "hello")
        assert exc.value.destination == 3
        await notifier.close()

    async def test_bot_token_in_url(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"ok": True, "result": {}})

        notifier = TelegramNotifier(" TOKEN ", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        await notifier.send(Channel(id=1), "x")
        assert seen == ["https://api.telegram.org/botTOKEN/sendMessage"]
        await notifier.close()

    async def test_mention_token(self):
        notifier = telegram(FakeTelegram())
        token = await notifier.resolve_mentionable(99)
        assert token.text == "[user](tg://user?id=99)"
        await notifier.close()

    async def test_payload_markdown_escaped(self):
        api = FakeTelegram()
        notifier = telegram(api)
        entry = Entry(
            id=0,
            due_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
            destination=3,
            payload_text="check snake_case *now [x] `y`",
            requester=99,
        )
        assert await Dispatcher(notifier).fire(entry) == DeliveryOutcome.DELIVERED
        _, payload = api.requests[-1]
        assert payload["text"] == (
            "[user](tg://user?id=99) check snake\\_case \\*now \\[x] \\`y\\`"
        )
        await notifier.close()
