"""Flex "card" message templates.

Cards are built top-down from plain dicts; no node is shared or referenced
twice, so every tree serializes to JSON without cycles.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from src.messaging.flex_validator import MAX_FLEX_TEXT_LENGTH
from src.templates.formatting import (
    COLORS,
    PLACEHOLDER,
    direction_color,
    format_number,
    format_percent,
    format_price,
    format_timestamp,
    items_of,
    mapping_of,
    marker,
    records_of,
    text_or_placeholder,
)
from src.templates.text import RenderContext

# --- Node builders ---


def text_node(text: str, **style: Any) -> dict[str, Any]:
    if not text:
        text = PLACEHOLDER
    elif len(text) > MAX_FLEX_TEXT_LENGTH:
        text = text[: MAX_FLEX_TEXT_LENGTH - 1] + "…"
    return {"type": "text", "text": text, **style}


def box(layout: str, contents: list[dict[str, Any]], **style: Any) -> dict[str, Any]:
    return {"type": "box", "layout": layout, "contents": contents, **style}


def separator(margin: str = "lg") -> dict[str, Any]:
    return {"type": "separator", "margin": margin}


def field_row(label: str, value: str, *, color: str = COLORS["text"], bold: bool = True) -> dict[str, Any]:
    value_style: dict[str, Any] = {"wrap": True, "color": color, "size": "sm", "flex": 3}
    if bold:
        value_style["weight"] = "bold"
    return box(
        "baseline",
        [
            text_node(label, color=COLORS["text_muted"], size="sm", flex=2),
            text_node(value, **value_style),
        ],
        spacing="sm",
    )


def header(title: str, background: str) -> dict[str, Any]:
    return box(
        "vertical",
        [text_node(title, weight="bold", color=COLORS["white"], size="md")],
        backgroundColor=background,
        paddingAll="lg",
    )


def uri_button(label: str, uri: str, style: str = "primary") -> dict[str, Any]:
    return {
        "type": "button",
        "style": style,
        "height": "sm",
        "action": {"type": "uri", "label": label, "uri": uri},
    }


def postback_button(label: str, data: Mapping[str, Any], style: str = "secondary") -> dict[str, Any]:
    return {
        "type": "button",
        "style": style,
        "height": "sm",
        "action": {
            "type": "postback",
            "label": label,
            "data": json.dumps(dict(data), separators=(",", ":")),
        },
    }


def bubble(head: dict[str, Any], body: dict[str, Any], buttons: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "type": "bubble",
        "header": head,
        "body": body,
        "footer": box("vertical", buttons, spacing="sm"),
    }


# --- Templates ---


def price_alert(data: Mapping[str, Any], ctx: RenderContext) -> tuple[dict[str, Any], str]:
    symbol = str(data.get("symbol") or "BTCUSDT")
    above = (data.get("alertType") or "above") == "above"
    change = data.get("changePercent")
    verb = "Above" if above else "Below"
    target = format_price(data.get("targetPrice"))

    body = box(
        "vertical",
        [
            text_node(symbol, weight="bold", size="xl", color=COLORS["text"]),
            text_node(f"{verb} ${target}", size="md", color=COLORS["text_secondary"], margin="sm"),
            separator(),
            box(
                "vertical",
                [
                    field_row("Current price", f"${format_price(data.get('currentPrice'))}"),
                    field_row(
                        "Change",
                        f"{marker(change)} {format_percent(change)}",
                        color=direction_color(change),
                    ),
                    field_row(
                        "Triggered",
                        format_timestamp(data.get("timestamp"), ctx.now),
                        color=COLORS["text_secondary"],
                        bold=False,
                    ),
                ],
                margin="lg",
                spacing="sm",
            ),
        ],
    )
    contents = bubble(
        header(f"{'📈' if above else '📉'} Price alert", COLORS["success"] if above else COLORS["error"]),
        body,
        [
            uri_button("View analysis", f"{ctx.website_url}/market/{symbol}"),
            postback_button("New alert", {"action": "create_alert", "symbol": symbol}),
        ],
    )
    alt_text = f"{symbol} price alert - {verb.lower()} ${target} ({format_percent(change)})"
    return contents, alt_text


def _fear_greed_color(index: Any) -> str:
    try:
        value = float(index)
    except (TypeError, ValueError, OverflowError):
        return COLORS["text_muted"]
    if value >= 75:
        return COLORS["error"]
    if value >= 55:
        return COLORS["warning"]
    if value >= 45:
        return COLORS["info"]
    return COLORS["success"]


def market_summary(data: Mapping[str, Any], ctx: RenderContext) -> tuple[dict[str, Any], str]:
    trending = records_of(data.get("trending"))[:5]
    fear_greed = data.get("fearGreedIndex")
    coin_rows = [
        box(
            "baseline",
            [
                text_node(str(coin.get("symbol", "?")), color=COLORS["text"], size="sm", flex=2, weight="bold"),
                text_node(f"${format_price(coin.get('price'))}", color=COLORS["text_secondary"], size="sm", flex=2),
                text_node(
                    format_percent(coin.get("change")),
                    color=direction_color(coin.get("change")),
                    size="sm",
                    flex=2,
                    weight="bold",
                ),
            ],
            spacing="sm",
        )
        for coin in trending
    ]
    if not coin_rows:
        coin_rows = [text_node(PLACEHOLDER, size="sm", color=COLORS["text_muted"])]

    body = box(
        "vertical",
        [
            text_node("Market indicators", weight="bold", size="md", color=COLORS["text"]),
            box(
                "vertical",
                [
                    field_row("Total market cap", f"${format_price(data.get('totalMarketCap'))}"),
                    field_row("BTC dominance", f"{text_or_placeholder(data.get('btcDominance'))}%"),
                    field_row(
                        "Fear & greed",
                        format_number(fear_greed),
                        color=_fear_greed_color(fear_greed),
                    ),
                ],
                margin="md",
                spacing="sm",
            ),
            separator(),
            text_node("Trending coins", weight="bold", size="md", color=COLORS["text"], margin="lg"),
            box("vertical", coin_rows, margin="md", spacing="sm"),
            text_node(
                format_timestamp(data.get("timestamp"), ctx.now),
                size="xs",
                color=COLORS["text_muted"],
                margin="lg",
            ),
        ],
    )
    contents = bubble(
        header("📊 Market summary", COLORS["primary"]),
        body,
        [uri_button("Full market", f"{ctx.website_url}/market")],
    )
    return contents, "Crypto market summary"


SENTIMENT_STYLES = {
    "bullish": ("Bullish", COLORS["success"]),
    "bearish": ("Bearish", COLORS["error"]),
    "neutral": ("Neutral", COLORS["warning"]),
}


def ai_analysis_report(data: Mapping[str, Any], ctx: RenderContext) -> tuple[dict[str, Any], str]:
    symbol = str(data.get("symbol") or "BTCUSDT")
    sentiment = str(data.get("sentiment") or "neutral").lower()
    sentiment_label, sentiment_color = SENTIMENT_STYLES.get(sentiment, ("Unknown", COLORS["info"]))
    targets = mapping_of(data.get("targets"))
    key_points = items_of(data.get("keyPoints"))[:3]

    sections: list[dict[str, Any]] = [
        text_node(symbol, weight="bold", size="xl", color=COLORS["text"]),
        text_node(
            f"Current price: ${format_price(data.get('price'))}",
            size="sm",
            color=COLORS["text_secondary"],
            margin="sm",
        ),
        separator(),
        box(
            "vertical",
            [
                field_row("Sentiment", sentiment_label, color=sentiment_color),
                field_row("Recommendation", text_or_placeholder(data.get("recommendation"))),
                field_row(
                    "Confidence",
                    f"{text_or_placeholder(data.get('confidence'))}%",
                    color=COLORS["primary"],
                ),
            ],
            margin="lg",
            spacing="sm",
        ),
    ]

    target_rows = []
    if targets.get("resistance"):
        target_rows.append(field_row("Resistance", f"${format_price(targets['resistance'])}", color=COLORS["error"]))
    if targets.get("support"):
        target_rows.append(field_row("Support", f"${format_price(targets['support'])}", color=COLORS["success"]))
    if target_rows:
        sections.append(separator())
        sections.append(text_node("Price targets", weight="bold", size="md", color=COLORS["text"], margin="lg"))
        sections.append(box("vertical", target_rows, margin="md", spacing="sm"))

    if key_points:
        sections.append(separator())
        sections.append(text_node("Key points", weight="bold", size="md", color=COLORS["text"], margin="lg"))
        sections.append(
            box(
                "vertical",
                [
                    text_node(f"{index}. {point}", size="sm", color=COLORS["text_secondary"], wrap=True)
                    for index, point in enumerate(key_points, start=1)
                ],
                margin="md",
                spacing="sm",
            ),
        )

    sections.append(
        text_node(format_timestamp(data.get("timestamp"), ctx.now), size="xs", color=COLORS["text_muted"], margin="lg"),
    )
    contents = bubble(
        header("🤖 AI analysis report", COLORS["info"]),
        box("vertical", sections),
        [
            uri_button("Full analysis", f"{ctx.website_url}/analysis/{symbol}"),
            postback_button("Set price alert", {"action": "create_alert", "symbol": symbol}),
        ],
    )
    return contents, f"{symbol} AI analysis report"


def welcome(data: Mapping[str, Any], ctx: RenderContext) -> tuple[dict[str, Any], str]:
    username = str(data.get("username") or "friend")
    features = [
        ("📊", "Real-time crypto prices"),
        ("🔔", "Price alert notifications"),
        ("🤖", "AI market analysis"),
        ("⭐", "Personal watchlist"),
    ]
    body = box(
        "vertical",
        [
            text_node(f"Hi {username}!", weight="bold", size="lg", color=COLORS["text"]),
            text_node(
                "Thanks for following NexusTrade. Here is what you can do:",
                size="sm",
                color=COLORS["text_secondary"],
                wrap=True,
                margin="md",
            ),
            separator(),
            box(
                "vertical",
                [
                    box(
                        "baseline",
                        [
                            text_node(icon, size="sm", flex=1),
                            text_node(label, size="sm", color=COLORS["text"], flex=6),
                        ],
                        spacing="sm",
                    )
                    for icon, label in features
                ],
                margin="lg",
                spacing="sm",
            ),
        ],
    )
    contents = bubble(
        header("👋 Welcome to NexusTrade", COLORS["primary"]),
        body,
        [
            uri_button("Open dashboard", ctx.website_url),
            postback_button("Show commands", {"action": "help"}),
        ],
    )
    return contents, f"Welcome to NexusTrade, {username}!"
