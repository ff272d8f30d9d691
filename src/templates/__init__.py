"""Message templates for NexusTrade LINE notifications.

Two families share one registry:
- Plain text messages
- Flex "card" messages
"""

from src.templates.renderer import (
    FLEX_TEMPLATES,
    TEXT_TEMPLATES,
    TemplateFamily,
    TemplateName,
    TemplateRenderer,
    available_templates,
    lookup_name,
)

__all__ = [
    "FLEX_TEMPLATES",
    "TEXT_TEMPLATES",
    "TemplateFamily",
    "TemplateName",
    "TemplateRenderer",
    "available_templates",
    "lookup_name",
]
