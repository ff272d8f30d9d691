"""Tests for the template registry, text templates and Flex cards."""

from __future__ import annotations

import json
from typing import Any

import pytest

from src.messaging.errors import TemplateNotFoundError, ValidationError
from src.messaging.validator import validate_message
from src.models import FlexMessage, TextMessage
from src.templates import TemplateFamily, TemplateName, TemplateRenderer, available_templates
from tests.conftest import FIXED_NOW, price_alert_data


def _texts(node: Any) -> list[str]:
    """Every ``text`` value in a Flex tree, depth first."""
    found: list[str] = []
    if isinstance(node, dict):
        if node.get("type") == "text":
            found.append(node["text"])
        for value in node.values():
            found.extend(_texts(value))
    elif isinstance(node, list):
        for item in node:
            found.extend(_texts(item))
    return found


class TestRegistry:
    def test_available_templates_lists_both_families(self) -> None:
        templates = available_templates()
        assert set(templates) == {"text", "flex"}
        assert "priceAlert" in templates["text"]
        assert set(templates["flex"]) == {"priceAlert", "marketSummary", "aiAnalysisReport", "welcome"}
        assert len(templates["text"]) == 10

    def test_unknown_name_raises(self, renderer: TemplateRenderer) -> None:
        with pytest.raises(TemplateNotFoundError, match="Template not found: nope"):
            renderer.render("nope", {})

    def test_template_not_found_is_validation(self, renderer: TemplateRenderer) -> None:
        with pytest.raises(ValidationError):
            renderer.render("nope", {})

    def test_text_family_wins_by_default(self, renderer: TemplateRenderer) -> None:
        assert isinstance(renderer.render("priceAlert", price_alert_data()), TextMessage)

    def test_explicit_family(self, renderer: TemplateRenderer) -> None:
        message = renderer.render("priceAlert", price_alert_data(), "flex")
        assert isinstance(message, FlexMessage)

    def test_flex_only_name_falls_through(self, renderer: TemplateRenderer) -> None:
        assert isinstance(renderer.render(TemplateName.MARKET_SUMMARY, {}), FlexMessage)

    def test_name_missing_from_requested_family(self, renderer: TemplateRenderer) -> None:
        with pytest.raises(TemplateNotFoundError):
            renderer.render("marketUpdate", {}, TemplateFamily.FLEX)

    def test_unknown_family_rejected(self, renderer: TemplateRenderer) -> None:
        with pytest.raises(ValidationError, match="family"):
            renderer.render("welcome", {}, "html")

    @pytest.mark.parametrize("name", list(TemplateName))
    def test_every_template_renders_valid_message(self, renderer: TemplateRenderer, name: TemplateName) -> None:
        message = renderer.render(name, {})
        validate_message(message)

    def test_render_is_deterministic_with_fixed_clock(self) -> None:
        first = TemplateRenderer(clock=lambda: FIXED_NOW).render("aiAnalysisReport", {"symbol": "ETH"})
        second = TemplateRenderer(clock=lambda: FIXED_NOW).render("aiAnalysisReport", {"symbol": "ETH"})
        assert first.model_dump_json() == second.model_dump_json()


class TestTextTemplates:
    def test_price_alert(self, renderer: TemplateRenderer) -> None:
        message = renderer.render("priceAlert", price_alert_data())
        assert isinstance(message, TextMessage)
        assert "BTCUSDT" in message.text
        assert "+8.33%" in message.text
        assert "📈" in message.text
        assert "$60,000.00" in message.text
        assert "2025-01-15 09:30:00" in message.text
        assert "https://nexustrade.test/market/BTCUSDT" in message.text

    def test_price_alert_below(self, renderer: TemplateRenderer) -> None:
        message = renderer.render("priceAlert", price_alert_data(alertType="below", changePercent=-3.5))
        assert "fallen below" in message.text
        assert "📉 -3.50%" in message.text

    def test_missing_values_use_placeholder(self, renderer: TemplateRenderer) -> None:
        message = renderer.render("priceQuery", {"symbol": "ETH"})
        assert "calculating…" in message.text

    def test_market_update_lists_at_most_five_coins(self, renderer: TemplateRenderer) -> None:
        coins = [{"symbol": f"C{i}", "price": i + 1, "change": 1} for i in range(7)]
        message = renderer.render("marketUpdate", {"trending": coins, "summary": "Up only"})
        assert "C4" in message.text
        assert "C5" not in message.text
        assert "Up only" in message.text

    def test_help_uses_website_url(self, renderer: TemplateRenderer) -> None:
        assert "https://nexustrade.test" in renderer.render("help").text

    def test_welcome_defaults_to_friend(self, renderer: TemplateRenderer) -> None:
        assert "Hi friend" in renderer.render("welcome", {}, "text").text


class TestFlexTemplates:
    def test_price_alert_card(self, renderer: TemplateRenderer) -> None:
        message = renderer.render_flex("priceAlert", price_alert_data())
        card = message.contents
        assert card["type"] == "bubble"
        assert card["header"]["backgroundColor"] == "#4CAF50"
        texts = _texts(card)
        assert "BTCUSDT" in texts
        assert "📈 +8.33%" in texts
        assert "+8.33%" in message.alt_text

    def test_price_alert_card_buttons(self, renderer: TemplateRenderer) -> None:
        buttons = renderer.render_flex("priceAlert", price_alert_data()).contents["footer"]["contents"]
        assert buttons[0]["action"]["uri"] == "https://nexustrade.test/market/BTCUSDT"
        postback = json.loads(buttons[1]["action"]["data"])
        assert postback == {"action": "create_alert", "symbol": "BTCUSDT"}

    def test_change_row_color_follows_direction(self, renderer: TemplateRenderer) -> None:
        def change_value(change: float) -> dict[str, Any]:
            card = renderer.render_flex("priceAlert", price_alert_data(changePercent=change)).contents
            rows = card["body"]["contents"][3]["contents"]
            return rows[1]["contents"][1]

        assert change_value(8.33)["color"] == "#4CAF50"
        assert change_value(-2)["color"] == "#F44336"
        assert change_value(0)["color"] == "#999999"

    def test_flex_survives_json_round_trip(self, renderer: TemplateRenderer) -> None:
        for name in ("priceAlert", "marketSummary", "aiAnalysisReport", "welcome"):
            contents = renderer.render_flex(name, {"keyPoints": ["a"], "targets": {"support": 1}}).contents
            assert json.loads(json.dumps(contents)) == contents

    def test_market_summary_rows(self, renderer: TemplateRenderer) -> None:
        data = {
            "trending": [{"symbol": "BTC", "price": 102000.5, "change": 2.5}],
            "totalMarketCap": "2.5T",
            "fearGreedIndex": 80,
        }
        texts = _texts(renderer.render_flex("marketSummary", data).contents)
        assert "BTC" in texts
        assert "$102,000.50" in texts
        assert "+2.50%" in texts
        assert "$2.5T" in texts

    def test_ai_report_optional_sections(self, renderer: TemplateRenderer) -> None:
        bare = _texts(renderer.render_flex("aiAnalysisReport", {"symbol": "ETH"}).contents)
        assert "Key points" not in bare
        full = _texts(
            renderer.render_flex(
                "aiAnalysisReport",
                {"symbol": "ETH", "sentiment": "bullish", "keyPoints": ["ETF inflows"], "targets": {"support": 3000}},
            ).contents,
        )
        assert "1. ETF inflows" in full
        assert "Bullish" in full
        assert "$3,000.00" in full

    def test_welcome_card(self, renderer: TemplateRenderer) -> None:
        message = renderer.render_flex("welcome", {"username": "Alice"})
        assert "Hi Alice!" in _texts(message.contents)
        assert message.alt_text == "Welcome to NexusTrade, Alice!"

    def test_long_text_is_clipped_to_flex_limit(self, renderer: TemplateRenderer) -> None:
        message = renderer.render_flex("welcome", {"username": "A" * 300})
        greeting = next(text for text in _texts(message.contents) if text.startswith("Hi "))
        assert len(greeting) == 160
        assert greeting.endswith("…")
        validate_message(message)

    def test_render_flex_rejects_text_only_name(self, renderer: TemplateRenderer) -> None:
        with pytest.raises(TemplateNotFoundError):
            renderer.render_flex("marketUpdate", {})


class TestMalformedData:
    """Nested fields of the wrong shape render as if they were absent."""

    def test_text_market_update_skips_non_mapping_coins(self, renderer: TemplateRenderer) -> None:
        coins = ["BTC", 42, {"symbol": "ETH", "price": 3000, "change": 1}]
        message = renderer.render("marketUpdate", {"trending": coins})
        assert "ETH" in message.text
        assert "BTC" not in message.text

    def test_text_templates_tolerate_scalar_lists(self, renderer: TemplateRenderer) -> None:
        assert "Key points" not in renderer.render("aiAnalysis", {"symbol": "ETH", "keyPoints": "one"}).text
        assert renderer.render("marketUpdate", {"trending": "BTC"}).text
        assert renderer.render("help", {"commands": 7}).text
        assert renderer.render("error", {"type": ["nested"]}).text
        assert renderer.render("systemNotification", {"level": {"x": 1}}).text

    def test_flex_market_summary_with_string_coins(self, renderer: TemplateRenderer) -> None:
        message = renderer.render_flex("marketSummary", {"trending": ["BTC", "ETH"]})
        assert "BTC" not in _texts(message.contents)
        validate_message(message)

    @pytest.mark.parametrize(
        "data",
        [
            {"targets": [1, 2]},
            {"targets": "3000"},
            {"keyPoints": {"a": 1}},
            {"keyPoints": 5, "targets": None},
        ],
    )
    def test_flex_ai_report_with_wrong_shapes(self, renderer: TemplateRenderer, data: dict[str, Any]) -> None:
        message = renderer.render_flex("aiAnalysisReport", {"symbol": "ETH", **data})
        texts = _texts(message.contents)
        assert "Price targets" not in texts
        assert "Key points" not in texts
        validate_message(message)

    def test_huge_change_still_renders_valid_card(self, renderer: TemplateRenderer) -> None:
        message = renderer.render_flex("priceAlert", price_alert_data(changePercent=1e30))
        assert "📈 +1000000000000000000000000000000.00%" in _texts(message.contents)
        validate_message(message)
