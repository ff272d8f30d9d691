"""Per-event-type handlers for verified webhook events.

Every event is handled inside its own error boundary: an exception is logged
with the event type, timestamp and truncated user id, and the remaining
events still run.
"""

from __future__ import annotations

import json
import logging
import random
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl

from src.messaging.masking import truncate_id
from src.templates.renderer import TemplateFamily, TemplateName, TemplateRenderer
from src.webhook.models import EventType, WebhookEvent

if TYPE_CHECKING:
    from src.messaging.client import LineMessenger

logger = logging.getLogger(__name__)

HELP_KEYWORDS = ("help", "h", "幫助", "說明", "指令", "功能", "?", "？")
PRICE_KEYWORDS = ("price", "p", "價格", "報價", "行情")
STATUS_KEYWORDS = ("status", "stat", "狀態", "狀況", "系統")
ALERT_KEYWORDS = ("alert", "alarm", "警報", "提醒", "通知", "設定")

WORD = re.compile(r"\w+")

CRYPTO_SYMBOL = re.compile(
    r"\b(BTC|ETH|BNB|XRP|ADA|SOL|DOGE|MATIC|DOT|LTC|AVAX|UNI|LINK|BCH|XLM|ICP)\b",
    re.IGNORECASE,
)

DEFAULT_REPLIES = (
    'Thanks for your message! Send "help" to see what I can do.',
    'I am the NexusTrade bot, happy to help!\nSend "help" to learn more.',
    'Need a hand? Send "help" for the command list.',
)
STICKER_REPLIES = ("😊 Nice sticker!", "👍 Got it!", "🎉 Thanks!", "😄 Cute!")


@dataclass
class HandlerResult:
    handled: bool
    action: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


def matches_keyword(text: str, keywords: tuple[str, ...]) -> bool:
    """Whole-word match for latin keywords, substring match for CJK ones.

    Single letters like ``h`` or ``p`` only count as a standalone word.
    Punctuation keywords such as ``?`` must be the entire message.
    """
    stripped = text.strip()
    words = set(WORD.findall(stripped))
    for keyword in keywords:
        if not keyword.isalnum():
            if stripped == keyword:
                return True
        elif keyword.isascii():
            if keyword in words:
                return True
        elif keyword in stripped:
            return True
    return False


def extract_symbol(text: str) -> str | None:
    match = CRYPTO_SYMBOL.search(text)
    return match.group(1).upper() if match else None


def parse_postback_data(data: str) -> dict[str, Any]:
    """JSON first, then ``key=value`` / query string form."""
    try:
        parsed = json.loads(data)
    except (TypeError, ValueError):
        parsed = None
    if isinstance(parsed, dict):
        return parsed
    pairs = parse_qsl(data or "", keep_blank_values=True)
    if pairs:
        return dict(pairs)
    return {"action": "unknown", "raw": data}


class EventDispatcher:
    """Routes each webhook event to exactly one handler."""

    def __init__(
        self,
        messenger: LineMessenger,
        renderer: TemplateRenderer | None = None,
        choice: Callable[[tuple[str, ...]], str] = random.choice,
    ) -> None:
        self._messenger = messenger
        self._renderer = renderer or TemplateRenderer()
        self._choice = choice
        self._handlers: dict[EventType, Callable[[WebhookEvent], Awaitable[HandlerResult]]] = {
            EventType.MESSAGE: self.handle_message,
            EventType.FOLLOW: self.handle_follow,
            EventType.UNFOLLOW: self.handle_unfollow,
            EventType.POSTBACK: self.handle_postback,
            EventType.JOIN: self.handle_join,
            EventType.LEAVE: self.handle_leave,
            EventType.MEMBER_JOINED: self.handle_member_joined,
            EventType.MEMBER_LEFT: self.handle_member_left,
        }

    async def dispatch_all(self, events: list[WebhookEvent]) -> list[HandlerResult]:
        results = []
        for event in events:
            results.append(await self.dispatch(event))
        handled = sum(1 for result in results if result.handled)
        logger.info("Dispatched %d webhook event(s), %d handled", len(events), handled)
        return results

    async def dispatch(self, event: WebhookEvent) -> HandlerResult:
        handler = self._handlers.get(event.event_type) if event.event_type else None
        if handler is None:
            logger.info("Unhandled webhook event type: %s", event.type)
            return HandlerResult(handled=False, details={"type": event.type})
        try:
            return await handler(event)
        except Exception:
            logger.exception(
                "Webhook handler failed (type=%s, timestamp=%s, user=%s)",
                event.type, event.timestamp, truncate_id(event.user_id),
            )
            return HandlerResult(handled=False, action="error", details={"type": event.type})

    async def _reply(self, event: WebhookEvent, message: Any) -> None:
        if not event.reply_token:
            logger.debug("No reply token on %s event; reply skipped", event.type)
            return
        await self._messenger.reply(event.reply_token, message)

    def _site(self, path: str = "") -> str:
        return f"{self._renderer.website_url}{path}"

    # --- message ---

    async def handle_message(self, event: WebhookEvent) -> HandlerResult:
        message = event.message or {}
        kind = message.get("type")
        if kind == "text":
            return await self.handle_text(event, str(message.get("text", "")))
        if kind == "image":
            await self._reply(
                event,
                "Thanks for the picture! 🖼️\n\nThe NexusTrade bot works with text commands.\n\n"
                'Send "help" to see what is available.',
            )
            return HandlerResult(handled=True, action="image_reply")
        if kind == "sticker":
            await self._reply(
                event,
                f'{self._choice(STICKER_REPLIES)}\n\nSend "help" to see what NexusTrade can do.',
            )
            return HandlerResult(handled=True, action="sticker_reply")
        await self._reply(
            event,
            f"Sorry, {kind or 'this'} messages are not supported yet.\n\n"
            'Send a text message or "help" to see what is available.',
        )
        return HandlerResult(handled=True, action="unsupported_message", details={"message_type": kind})

    async def handle_text(self, event: WebhookEvent, text: str) -> HandlerResult:
        lowered = text.lower().strip()
        if matches_keyword(lowered, HELP_KEYWORDS):
            return await self.send_help(event)
        if matches_keyword(lowered, PRICE_KEYWORDS):
            symbol = extract_symbol(text)
            if symbol:
                return await self.send_symbol_price(event, symbol)
            return await self.send_price_overview(event)
        if matches_keyword(lowered, STATUS_KEYWORDS):
            return await self.send_status(event)
        if matches_keyword(lowered, ALERT_KEYWORDS):
            return await self.send_alert_info(event)
        symbol = extract_symbol(text)
        if symbol:
            return await self.send_symbol_price(event, symbol)
        await self._reply(event, self._choice(DEFAULT_REPLIES))
        return HandlerResult(handled=True, action="default_reply")

    async def send_help(self, event: WebhookEvent) -> HandlerResult:
        await self._reply(event, self._renderer.render(TemplateName.HELP))
        return HandlerResult(handled=True, action="help_sent")

    async def send_price_overview(self, event: WebhookEvent) -> HandlerResult:
        await self._reply(
            event,
            "📊 Popular crypto prices\n\n"
            "Send a symbol such as BTC or ETH for a specific price,\n"
            f"or see live prices at {self._site('/market')}",
        )
        return HandlerResult(handled=True, action="price_info_sent")

    async def send_symbol_price(self, event: WebhookEvent, symbol: str) -> HandlerResult:
        await self._reply(
            event,
            self._renderer.render(
                TemplateName.PRICE_QUERY, {"symbol": symbol}, TemplateFamily.TEXT,
            ),
        )
        return HandlerResult(handled=True, action="crypto_price_sent", details={"symbol": symbol})

    async def send_status(self, event: WebhookEvent) -> HandlerResult:
        now = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
        await self._reply(
            event,
            "⚡ NexusTrade system status\n\n"
            "🟢 Bot: running\n🟢 API: stable\n🟢 Market data: live\n\n"
            f"⏰ Updated: {now} UTC",
        )
        return HandlerResult(handled=True, action="status_sent")

    async def send_alert_info(self, event: WebhookEvent) -> HandlerResult:
        await self._reply(
            event,
            "🚨 Price alerts\n\n"
            "1. Visit the NexusTrade website\n2. Sign in\n"
            '3. Open "Price alerts"\n4. Link your LINE account\n\n'
            f"{self._site('/alerts')}",
        )
        return HandlerResult(handled=True, action="alert_info_sent")

    # --- follow / join ---

    async def handle_follow(self, event: WebhookEvent) -> HandlerResult:
        name = "friend"
        if event.user_id:
            try:
                profile = await self._messenger.get_profile(event.user_id)
                name = profile.get("displayName") or name
            except Exception as exc:
                logger.warning("Profile lookup failed for %s: %s", truncate_id(event.user_id), exc)
        await self._reply(
            event,
            self._renderer.render(TemplateName.WELCOME, {"username": name}, TemplateFamily.FLEX),
        )
        logger.info("New follower %s", truncate_id(event.user_id))
        return HandlerResult(handled=True, action="welcome_sent", details={"username": name})

    async def handle_unfollow(self, event: WebhookEvent) -> HandlerResult:
        logger.info("User %s unfollowed", truncate_id(event.user_id))
        return HandlerResult(handled=True, action="unfollow_logged")

    async def handle_join(self, event: WebhookEvent) -> HandlerResult:
        await self._reply(
            event,
            "👋 Hi everyone! Thanks for adding the NexusTrade bot.\n\n"
            "I can help with:\n📊 Crypto prices\n📈 Market analysis\n🚨 Price alerts\n\n"
            'Send "help" for the full command list.',
        )
        return HandlerResult(handled=True, action="group_welcome_sent")

    async def handle_leave(self, event: WebhookEvent) -> HandlerResult:
        logger.info("Bot left %s %s", event.source.type, truncate_id(event.source.group_id or event.source.room_id))
        return HandlerResult(handled=True, action="leave_logged")

    async def handle_member_joined(self, event: WebhookEvent) -> HandlerResult:
        logger.info("Member joined %s", truncate_id(event.source.group_id or event.source.room_id))
        return HandlerResult(handled=True, action="member_joined_logged")

    async def handle_member_left(self, event: WebhookEvent) -> HandlerResult:
        logger.info("Member left %s", truncate_id(event.source.group_id or event.source.room_id))
        return HandlerResult(handled=True, action="member_left_logged")

    # --- postback ---

    async def handle_postback(self, event: WebhookEvent) -> HandlerResult:
        data = parse_postback_data(str((event.postback or {}).get("data", "")))
        action = data.get("action") or data.get("type")

        if action == "price_check":
            return await self.send_symbol_price(event, str(data.get("symbol") or "BTC").upper())
        if action == "market_summary":
            return await self.send_price_overview(event)
        if action == "help":
            return await self.send_help(event)
        if action == "settings":
            await self._reply(
                event,
                "⚙️ Personal settings\n\n"
                "Manage price alerts, update frequency and your watchlist on the website:\n"
                f"{self._site('/settings')}",
            )
            return HandlerResult(handled=True, action="settings_sent")
        if action == "create_alert":
            symbol = str(data.get("symbol") or "BTC").upper()
            await self._reply(
                event,
                f"🔔 Set a {symbol} price alert at {self._site('/alerts')}?symbol={symbol}",
            )
            return HandlerResult(handled=True, action="create_alert_sent", details={"symbol": symbol})

        await self._reply(event, 'Sorry, that request was not recognised.\n\nSend "help" to see what is available.')
        return HandlerResult(handled=True, action="unknown_postback", details={"data": data})
