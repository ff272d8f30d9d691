"""Plain-text message templates.

Each template takes the data mapping plus a rendering context and returns
the literal message text. Nothing is escaped; LINE renders text verbatim.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.templates.formatting import (
    format_percent,
    format_price,
    format_timestamp,
    items_of,
    marker,
    records_of,
    text_or_placeholder,
)


@dataclass(frozen=True)
class RenderContext:
    now: datetime
    website_url: str


DEFAULT_HELP_COMMANDS = (
    "price [symbol] - look up a price",
    "alert - set up price alerts",
    "market - market overview",
    "analysis [symbol] - AI analysis",
    "settings - personal settings",
)

SENTIMENT_MARKERS = {
    "bullish": "🟢",
    "bearish": "🔴",
    "neutral": "🟡",
}

ERROR_MARKERS = {
    "network": "🌐",
    "validation": "⚠️",
    "permission": "🔒",
    "limit": "⏳",
    "general": "❌",
}

LEVEL_MARKERS = {
    "info": "ℹ️",
    "warning": "⚠️",
    "error": "❌",
    "success": "✅",
}


def welcome(data: Mapping[str, Any], ctx: RenderContext) -> str:
    username = data.get("username") or "friend"
    platform = data.get("platform") or "NexusTrade"
    return (
        f"👋 Welcome to {platform}!\n\n"
        f"Hi {username}, thanks for joining us.\n\n"
        "You can now:\n"
        "📊 Track crypto prices\n"
        "🔔 Set price alerts\n"
        "🔥 Follow market movers\n"
        "💎 Get AI analysis\n\n"
        'Send "help" to see everything I can do!'
    )


def help_text(data: Mapping[str, Any], ctx: RenderContext) -> str:
    commands = items_of(data.get("commands")) or DEFAULT_HELP_COMMANDS
    lines = "\n".join(f"• {command}" for command in commands)
    return (
        "ℹ️ NexusTrade commands\n\n"
        f"Available commands:\n{lines}\n\n"
        "Examples:\n• price BTC\n• analysis ETH\n• market\n\n"
        f"More at {ctx.website_url} ❤️"
    )


def price_alert(data: Mapping[str, Any], ctx: RenderContext) -> str:
    symbol = data.get("symbol") or "BTC"
    above = (data.get("alertType") or "above") == "above"
    change = data.get("changePercent")
    headline = "🚀" if above else "📉"
    verb = "risen above" if above else "fallen below"
    return (
        f"{headline} {symbol} price alert!\n\n"
        f"{symbol} has {verb} ${format_price(data.get('targetPrice'))}\n\n"
        f"Current price: ${format_price(data.get('currentPrice'))}\n"
        f"Change: {marker(change)} {format_percent(change)}\n\n"
        f"Time: {format_timestamp(data.get('timestamp'), ctx.now)}\n\n"
        f"Details: {ctx.website_url}/market/{symbol} 👀"
    )


def market_update(data: Mapping[str, Any], ctx: RenderContext) -> str:
    trending = records_of(data.get("trending"))[:5]
    summary = data.get("summary") or "The market is steady"
    parts = ["📊 Market update\n"]
    if trending:
        parts.append("Trending coins:")
        for coin in trending:
            change = coin.get("change")
            parts.append(
                f"{marker(change)} {coin.get('symbol', '?')}: "
                f"${format_price(coin.get('price'))} ({format_percent(change)})",
            )
        parts.append("")
    parts.append(f"Summary: {summary}\n")
    parts.append(f"Updated: {format_timestamp(data.get('timestamp'), ctx.now)}")
    return "\n".join(parts)


def ai_analysis(data: Mapping[str, Any], ctx: RenderContext) -> str:
    symbol = data.get("symbol") or "BTC"
    sentiment = str(data.get("sentiment") or "neutral")
    key_points = items_of(data.get("keyPoints"))[:3]
    parts = [
        f"💎 {symbol} AI analysis\n",
        f"Sentiment: {SENTIMENT_MARKERS.get(sentiment.lower(), '🟡')} {sentiment}",
        f"Recommendation: {text_or_placeholder(data.get('recommendation'))}",
        f"Confidence: {text_or_placeholder(data.get('confidence'))}%\n",
    ]
    if key_points:
        parts.append("Key points:")
        parts.extend(f"{index}. {point}" for index, point in enumerate(key_points, start=1))
        parts.append("")
    parts.append(f"Analyzed: {format_timestamp(data.get('timestamp'), ctx.now)}")
    return "\n".join(parts)


def error(data: Mapping[str, Any], ctx: RenderContext) -> str:
    kind = str(data.get("type") or "general")
    return (
        f"{ERROR_MARKERS.get(kind, ERROR_MARKERS['general'])} Operation failed\n\n"
        f"Error: {data.get('message') or 'An unknown error occurred'}\n\n"
        f"Suggestion: {data.get('suggestion') or 'Please try again later'}"
    )


def success(data: Mapping[str, Any], ctx: RenderContext) -> str:
    message = f"✅ {data.get('action') or 'Operation'} succeeded!\n"
    if data.get("details"):
        message += f"\n{data['details']}\n"
    if data.get("nextSteps"):
        message += f"\nNext: {data['nextSteps']}"
    return message


def system_notification(data: Mapping[str, Any], ctx: RenderContext) -> str:
    level = str(data.get("level") or "info")
    return (
        f"{LEVEL_MARKERS.get(level, LEVEL_MARKERS['info'])} {data.get('title') or 'System notice'}\n\n"
        f"{data.get('message') or ''}\n\n"
        f"Time: {format_timestamp(data.get('timestamp'), ctx.now)}"
    )


def price_query(data: Mapping[str, Any], ctx: RenderContext) -> str:
    symbol = data.get("symbol") or "BTC"
    change = data.get("change24h")
    return (
        f"💰 {symbol} price\n\n"
        f"Current price: ${format_price(data.get('price'))}\n"
        f"24h change: {marker(change)} {format_percent(change)}\n\n"
        f"Volume: ${format_price(data.get('volume'))}\n"
        f"Market cap: ${format_price(data.get('marketCap'))}\n\n"
        f"Updated: {format_timestamp(data.get('timestamp'), ctx.now)}\n\n"
        f'Send "analysis {symbol}" for an AI analysis 💎'
    )


def subscription_confirm(data: Mapping[str, Any], ctx: RenderContext) -> str:
    active = (data.get("status") or "active") == "active"
    return (
        f"{'✅' if active else '⚠️'} {data.get('type') or 'Price alert'} subscription\n\n"
        f"Symbol: {text_or_placeholder(data.get('symbol'))}\n"
        f"Condition: {text_or_placeholder(data.get('condition'))}\n"
        f"Status: {'active' if active else 'inactive'}\n\n"
        "You will be notified when the condition triggers 🔔"
    )
