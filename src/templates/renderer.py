"""Template registry and renderer.

Template names are strings only at the outer boundary (API payloads,
postback data, CLI arguments). Inside the package they are ``TemplateName``
members resolved against two families: plain text and Flex cards.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from src.messaging.errors import TemplateNotFoundError, ValidationError
from src.models import FlexMessage, TextMessage
from src.templates import flex, text
from src.templates.text import RenderContext

logger = logging.getLogger(__name__)

DEFAULT_WEBSITE_URL = "https://nexustrade.com"


class TemplateName(str, Enum):
    WELCOME = "welcome"
    HELP = "help"
    PRICE_ALERT = "priceAlert"
    MARKET_UPDATE = "marketUpdate"
    AI_ANALYSIS = "aiAnalysis"
    ERROR = "error"
    SUCCESS = "success"
    SYSTEM_NOTIFICATION = "systemNotification"
    PRICE_QUERY = "priceQuery"
    SUBSCRIPTION_CONFIRM = "subscriptionConfirm"
    MARKET_SUMMARY = "marketSummary"
    AI_ANALYSIS_REPORT = "aiAnalysisReport"


class TemplateFamily(str, Enum):
    TEXT = "text"
    FLEX = "flex"


TextTemplate = Callable[[Mapping[str, Any], RenderContext], str]
FlexTemplate = Callable[[Mapping[str, Any], RenderContext], tuple[dict[str, Any], str]]

TEXT_TEMPLATES: dict[TemplateName, TextTemplate] = {
    TemplateName.WELCOME: text.welcome,
    TemplateName.HELP: text.help_text,
    TemplateName.PRICE_ALERT: text.price_alert,
    TemplateName.MARKET_UPDATE: text.market_update,
    TemplateName.AI_ANALYSIS: text.ai_analysis,
    TemplateName.ERROR: text.error,
    TemplateName.SUCCESS: text.success,
    TemplateName.SYSTEM_NOTIFICATION: text.system_notification,
    TemplateName.PRICE_QUERY: text.price_query,
    TemplateName.SUBSCRIPTION_CONFIRM: text.subscription_confirm,
}

FLEX_TEMPLATES: dict[TemplateName, FlexTemplate] = {
    TemplateName.PRICE_ALERT: flex.price_alert,
    TemplateName.MARKET_SUMMARY: flex.market_summary,
    TemplateName.AI_ANALYSIS_REPORT: flex.ai_analysis_report,
    TemplateName.WELCOME: flex.welcome,
}


def lookup_name(name: str) -> TemplateName:
    """Resolve an external template string, raising ``TemplateNotFoundError``."""
    try:
        return TemplateName(name)
    except ValueError:
        raise TemplateNotFoundError(name) from None


def available_templates() -> dict[str, list[str]]:
    return {
        TemplateFamily.TEXT.value: [name.value for name in TEXT_TEMPLATES],
        TemplateFamily.FLEX.value: [name.value for name in FLEX_TEMPLATES],
    }


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TemplateRenderer:
    """Turns ``(template name, data)`` into an outbound message."""

    def __init__(
        self,
        clock: Callable[[], datetime] = _utcnow,
        website_url: str = DEFAULT_WEBSITE_URL,
    ) -> None:
        self._clock = clock
        self._website_url = website_url.rstrip("/")

    @property
    def website_url(self) -> str:
        return self._website_url

    def render(
        self,
        name: str | TemplateName,
        data: Mapping[str, Any] | None = None,
        family: str | TemplateFamily | None = None,
    ) -> TextMessage | FlexMessage:
        """Render ``name`` with ``data``.

        An explicit ``family`` restricts the lookup to that family. Otherwise
        the text family is tried first, then flex.
        """
        template = name if isinstance(name, TemplateName) else lookup_name(name)
        chosen = self._family(family)
        if chosen in (None, TemplateFamily.TEXT) and template in TEXT_TEMPLATES:
            return TextMessage(text=TEXT_TEMPLATES[template](data or {}, self._context()))
        if chosen in (None, TemplateFamily.FLEX) and template in FLEX_TEMPLATES:
            return self.render_flex(template, data)

        logger.debug("Template %s not found in family %s", template.value, chosen)
        raise TemplateNotFoundError(template.value)

    def render_flex(self, name: str | TemplateName, data: Mapping[str, Any] | None = None) -> FlexMessage:
        template = name if isinstance(name, TemplateName) else lookup_name(name)
        if template not in FLEX_TEMPLATES:
            raise TemplateNotFoundError(template.value)
        contents, alt_text = FLEX_TEMPLATES[template](data or {}, self._context())
        return FlexMessage(contents=contents, alt_text=alt_text[:400])

    def _context(self) -> RenderContext:
        return RenderContext(now=self._clock(), website_url=self._website_url)

    @staticmethod
    def _family(family: str | TemplateFamily | None) -> TemplateFamily | None:
        if family is None or isinstance(family, TemplateFamily):
            return family
        try:
            return TemplateFamily(family)
        except ValueError:
            raise ValidationError(f"Unknown template family: {family}") from None
