"""Tests for per-event-type webhook handlers."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from src.messaging.client import LineMessenger
from src.templates.renderer import TemplateRenderer
from src.webhook.handlers import (
    HELP_KEYWORDS,
    PRICE_KEYWORDS,
    STATUS_KEYWORDS,
    EventDispatcher,
    extract_symbol,
    matches_keyword,
    parse_postback_data,
)
from src.webhook.models import EventType, WebhookEvent, parse_events
from tests.conftest import USER_ID, LineApiStub, make_event, make_text_event


def _events(*raw: dict) -> list[WebhookEvent]:
    return parse_events({"events": list(raw)})


def _event(raw: dict) -> WebhookEvent:
    return _events(raw)[0]


@pytest.fixture
def dispatcher(messenger: LineMessenger, renderer: TemplateRenderer) -> EventDispatcher:
    return EventDispatcher(messenger, renderer, choice=lambda options: options[0])


def _reply_text(line_api: LineApiStub) -> str:
    [body] = line_api.bodies("/message/reply")
    return body["messages"][0]["text"]


class TestKeywordHelpers:
    def test_single_letter_keywords_need_a_whole_word(self) -> None:
        assert matches_keyword("h", ("h",)) is True
        assert matches_keyword("hello there", ("h",)) is False
        assert matches_keyword("p btc", ("p",)) is True

    def test_cjk_keywords_match_as_substring(self) -> None:
        assert matches_keyword("請給我價格", ("價格",)) is True

    def test_question_mark_only_as_whole_message(self) -> None:
        assert matches_keyword("?", HELP_KEYWORDS) is True
        assert matches_keyword(" ？ ", HELP_KEYWORDS) is True
        assert matches_keyword("btc?", HELP_KEYWORDS) is False

    def test_keywords_next_to_punctuation(self) -> None:
        assert matches_keyword("help!", HELP_KEYWORDS) is True
        assert matches_keyword("price:btc", PRICE_KEYWORDS) is True
        assert matches_keyword("status?", STATUS_KEYWORDS) is True
        assert matches_keyword("helpful", HELP_KEYWORDS) is False

    def test_extract_symbol(self) -> None:
        assert extract_symbol("how is eth doing") == "ETH"
        assert extract_symbol("BTCUSDT") is None
        assert extract_symbol("nothing here") is None

    @pytest.mark.parametrize(
        ("data", "expected"),
        [
            ('{"action":"price_check","symbol":"ETH"}', {"action": "price_check", "symbol": "ETH"}),
            ("action=settings", {"action": "settings"}),
            ("action=price_check&symbol=SOL", {"action": "price_check", "symbol": "SOL"}),
            ("", {"action": "unknown", "raw": ""}),
        ],
    )
    def test_parse_postback_data(self, data: str, expected: dict) -> None:
        assert parse_postback_data(data) == expected


class TestTextRouting:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("text", "action"),
        [
            ("help", "help_sent"),
            ("幫助", "help_sent"),
            ("price", "price_info_sent"),
            ("price btc", "crypto_price_sent"),
            ("status", "status_sent"),
            ("alert", "alert_info_sent"),
            ("BTC", "crypto_price_sent"),
            ("BTC?", "crypto_price_sent"),
            ("?", "help_sent"),
            ("help!", "help_sent"),
            ("price:eth", "crypto_price_sent"),
            ("good morning", "default_reply"),
        ],
    )
    async def test_routes(self, dispatcher: EventDispatcher, line_api: LineApiStub, text: str, action: str) -> None:
        result = await dispatcher.dispatch(_event(make_text_event(text)))
        assert result.handled is True
        assert result.action == action
        assert len(line_api.calls("/message/reply")) == 1

    @pytest.mark.asyncio
    async def test_symbol_reply_names_symbol(self, dispatcher: EventDispatcher, line_api: LineApiStub) -> None:
        result = await dispatcher.dispatch(_event(make_text_event("what about sol")))
        assert result.details == {"symbol": "SOL"}
        assert "SOL price" in _reply_text(line_api)

    @pytest.mark.asyncio
    async def test_help_reply_uses_template(self, dispatcher: EventDispatcher, line_api: LineApiStub) -> None:
        await dispatcher.dispatch(_event(make_text_event("help")))
        assert "NexusTrade commands" in _reply_text(line_api)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("message", "action"),
        [
            ({"id": "1", "type": "image"}, "image_reply"),
            ({"id": "1", "type": "sticker", "packageId": "1", "stickerId": "1"}, "sticker_reply"),
            ({"id": "1", "type": "audio"}, "unsupported_message"),
        ],
    )
    async def test_non_text_messages(
        self, dispatcher: EventDispatcher, line_api: LineApiStub, message: dict, action: str,
    ) -> None:
        result = await dispatcher.dispatch(_event(make_event("message", message=message)))
        assert result.action == action
        assert len(line_api.calls("/message/reply")) == 1


class TestLifecycleEvents:
    @pytest.mark.asyncio
    async def test_follow_sends_welcome_card_with_profile_name(
        self, dispatcher: EventDispatcher, line_api: LineApiStub,
    ) -> None:
        result = await dispatcher.dispatch(_event(make_event("follow")))
        assert result.details == {"username": "Alice"}
        assert len(line_api.calls(f"/profile/{USER_ID}")) == 1
        [body] = line_api.bodies("/message/reply")
        message = body["messages"][0]
        assert message["type"] == "flex"
        assert message["altText"] == "Welcome to NexusTrade, Alice!"

    @pytest.mark.asyncio
    async def test_follow_falls_back_to_friend(self, dispatcher: EventDispatcher, line_api: LineApiStub) -> None:
        line_api.script(f"/profile/{USER_ID}", httpx.Response(404))
        result = await dispatcher.dispatch(_event(make_event("follow")))
        assert result.details == {"username": "friend"}
        assert len(line_api.calls("/message/reply")) == 1

    @pytest.mark.asyncio
    async def test_join_replies(self, dispatcher: EventDispatcher, line_api: LineApiStub) -> None:
        result = await dispatcher.dispatch(
            _event(make_event("join", source={"type": "group", "groupId": "C" + "1" * 32})),
        )
        assert result.action == "group_welcome_sent"
        assert "Hi everyone" in _reply_text(line_api)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type", ["unfollow", "leave", "memberJoined", "memberLeft"])
    async def test_log_only_events(self, dispatcher: EventDispatcher, line_api: LineApiStub, event_type: str) -> None:
        result = await dispatcher.dispatch(_event(make_event(event_type)))
        assert result.handled is True
        assert line_api.requests == []

    @pytest.mark.asyncio
    async def test_unknown_type_not_handled(self, dispatcher: EventDispatcher, line_api: LineApiStub) -> None:
        result = await dispatcher.dispatch(_event(make_event("beacon")))
        assert result.handled is False
        assert line_api.requests == []


class TestPostback:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("data", "action"),
        [
            (json.dumps({"action": "price_check", "symbol": "eth"}), "crypto_price_sent"),
            ("action=market_summary", "price_info_sent"),
            ("action=settings", "settings_sent"),
            ("action=help", "help_sent"),
            (json.dumps({"action": "create_alert", "symbol": "BTCUSDT"}), "create_alert_sent"),
            ("action=launch_rocket", "unknown_postback"),
        ],
    )
    async def test_actions(self, dispatcher: EventDispatcher, line_api: LineApiStub, data: str, action: str) -> None:
        result = await dispatcher.dispatch(_event(make_event("postback", postback={"data": data})))
        assert result.action == action
        assert len(line_api.calls("/message/reply")) == 1

    @pytest.mark.asyncio
    async def test_create_alert_from_flex_button(self, dispatcher: EventDispatcher, line_api: LineApiStub) -> None:
        data = json.dumps({"action": "create_alert", "symbol": "BTCUSDT"})
        await dispatcher.dispatch(_event(make_event("postback", postback={"data": data})))
        assert "symbol=BTCUSDT" in _reply_text(line_api)


class TestErrorBoundary:
    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(
        self, messenger: LineMessenger, renderer: TemplateRenderer, caplog: pytest.LogCaptureFixture,
    ) -> None:
        dispatcher = EventDispatcher(messenger, renderer)
        dispatcher.handle_join = AsyncMock(side_effect=RuntimeError("boom"))  # type: ignore[method-assign]
        dispatcher._handlers[EventType.JOIN] = dispatcher.handle_join
        events = _events(make_event("join"), make_event("unfollow"))

        results = await dispatcher.dispatch_all(events)

        assert [r.handled for r in results] == [False, True]
        assert results[0].action == "error"
        assert "type=join" in caplog.text
        assert "Uaaaaaaa..." in caplog.text

    @pytest.mark.asyncio
    async def test_reply_failure_is_contained(
        self, dispatcher: EventDispatcher, line_api: LineApiStub,
    ) -> None:
        line_api.script("/message/reply", httpx.Response(400))
        result = await dispatcher.dispatch(_event(make_text_event("help")))
        assert result.handled is True

    @pytest.mark.asyncio
    async def test_missing_reply_token_skips_reply(
        self, dispatcher: EventDispatcher, line_api: LineApiStub,
    ) -> None:
        event = make_text_event("help")
        del event["replyToken"]
        await dispatcher.dispatch(_event(event))
        assert line_api.requests == []
