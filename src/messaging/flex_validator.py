"""Structural checks for Flex message containers.

LINE answers 400 for a malformed Flex tree without saying which node is
wrong. These checks walk the tree locally and name the first offending node
by its path, e.g. ``body.contents[2].action``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, NoReturn

from src.messaging.errors import ValidationError

MAX_FLEX_TEXT_LENGTH = 160
MAX_BUTTON_LABEL_LENGTH = 20
MAX_POSTBACK_DATA_LENGTH = 300
MAX_NESTING_DEPTH = 5
MAX_CAROUSEL_BUBBLES = 12

HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}([0-9A-Fa-f]{2})?$")
PIXEL_VALUE = re.compile(r"^\d+(\.\d+)?(px|%)$")
HTTP_URI = re.compile(r"^https?://.+")

BUBBLE_SECTIONS = ("header", "body", "footer")
BUBBLE_SIZES = frozenset({"nano", "micro", "kilo", "mega", "giga"})
LAYOUTS = frozenset({"vertical", "horizontal", "baseline"})
TEXT_SIZES = frozenset({"xxs", "xs", "sm", "md", "lg", "xl", "xxl", "3xl", "4xl", "5xl"})
WEIGHTS = frozenset({"regular", "bold"})
ALIGNS = frozenset({"start", "end", "center"})
BUTTON_STYLES = frozenset({"link", "primary", "secondary"})
BUTTON_HEIGHTS = frozenset({"sm", "md"})
SPACINGS = frozenset({"none", "xs", "sm", "md", "lg", "xl", "xxl"})
SPACING_KEYS = ("margin", "spacing", "paddingAll")
COMPONENT_TYPES = frozenset({"box", "text", "button", "separator", "image", "icon", "filler", "spacer"})
ACTION_TYPES = frozenset({"uri", "postback", "message"})


def _fail(path: str, problem: str) -> NoReturn:
    raise ValidationError(f"Invalid flex message at {path or 'root'}: {problem}")


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def validate_flex_structure(contents: Mapping[str, Any]) -> None:
    """Check a bubble or carousel; raises ``ValidationError`` naming the node."""
    if contents.get("type") != "carousel":
        _check_bubble(contents, "")
        return
    bubbles = contents.get("contents")
    if not isinstance(bubbles, list) or not bubbles:
        _fail("contents", "a carousel needs a non-empty list of bubbles")
    if len(bubbles) > MAX_CAROUSEL_BUBBLES:
        _fail("contents", f"a carousel holds at most {MAX_CAROUSEL_BUBBLES} bubbles")
    for index, item in enumerate(bubbles):
        path = f"contents[{index}]"
        if not isinstance(item, Mapping) or item.get("type") != "bubble":
            _fail(path, "carousel items must be bubbles")
        _check_bubble(item, path)


def _check_bubble(bubble: Mapping[str, Any], path: str) -> None:
    size = bubble.get("size")
    if size is not None and size not in BUBBLE_SIZES:
        _fail(_join(path, "size"), f"unsupported bubble size {size!r}")
    for section in BUBBLE_SECTIONS:
        if bubble.get(section) is not None:
            _check_box(bubble[section], _join(path, section), depth=1)


def _check_box(node: Any, path: str, depth: int) -> None:
    if not isinstance(node, Mapping):
        _fail(path, "must be an object")
    if node.get("type") != "box":
        _fail(path, "must be a box")
    if depth > MAX_NESTING_DEPTH:
        _fail(path, f"boxes nest deeper than {MAX_NESTING_DEPTH} levels")
    if node.get("layout") not in LAYOUTS:
        _fail(path, f"unsupported layout {node.get('layout')!r}")
    _check_common(node, path)

    children = node.get("contents", [])
    if not isinstance(children, list):
        _fail(_join(path, "contents"), "must be a list")
    for index, child in enumerate(children):
        _check_component(child, f"{path}.contents[{index}]", depth)


def _check_component(node: Any, path: str, depth: int) -> None:
    if not isinstance(node, Mapping):
        _fail(path, "must be an object")
    kind = node.get("type")
    if kind == "box":
        _check_box(node, path, depth + 1)
        return
    if kind not in COMPONENT_TYPES:
        _fail(path, f"unsupported component type {kind!r}")
    _check_common(node, path)
    if kind == "text":
        _check_text(node, path)
    elif kind == "button":
        _check_button(node, path)
    elif kind in ("image", "icon"):
        url = node.get("url")
        if not isinstance(url, str) or not url.startswith("https://"):
            _fail(_join(path, "url"), "must be an https URL")


def _check_common(node: Mapping[str, Any], path: str) -> None:
    for key in SPACING_KEYS:
        value = node.get(key)
        if value is None:
            continue
        if not isinstance(value, str) or not (value in SPACINGS or PIXEL_VALUE.match(value)):
            _fail(_join(path, key), f"unsupported {key} {value!r}")
    for key, value in node.items():
        if key == "color" or key.endswith("Color"):
            if not isinstance(value, str) or not HEX_COLOR.match(value):
                _fail(_join(path, key), f"color must be #RRGGBB, got {value!r}")
    if "flex" in node:
        flex = node["flex"]
        if isinstance(flex, bool) or not isinstance(flex, int) or flex < 0:
            _fail(_join(path, "flex"), "must be a non-negative integer")


def _check_text(node: Mapping[str, Any], path: str) -> None:
    text = node.get("text")
    # text may be omitted when the node is built from spans
    if not (text is None and isinstance(node.get("contents"), list)):
        if not isinstance(text, str) or not text:
            _fail(_join(path, "text"), "must be a non-empty string")
        if len(text) > MAX_FLEX_TEXT_LENGTH:
            _fail(_join(path, "text"), f"longer than {MAX_FLEX_TEXT_LENGTH} characters")

    for key, allowed in (("size", TEXT_SIZES), ("weight", WEIGHTS), ("align", ALIGNS)):
        value = node.get(key)
        if value is not None and value not in allowed:
            _fail(_join(path, key), f"unsupported {key} {value!r}")


def _check_button(node: Mapping[str, Any], path: str) -> None:
    style = node.get("style")
    if style is not None and style not in BUTTON_STYLES:
        _fail(_join(path, "style"), f"unsupported style {style!r}")
    height = node.get("height")
    if height is not None and height not in BUTTON_HEIGHTS:
        _fail(_join(path, "height"), f"unsupported height {height!r}")
    if "action" not in node:
        _fail(_join(path, "action"), "a button needs an action")
    _check_action(node["action"], _join(path, "action"))


def _check_action(action: Any, path: str) -> None:
    if not isinstance(action, Mapping):
        _fail(path, "must be an object")
    kind = action.get("type")
    if kind not in ACTION_TYPES:
        _fail(_join(path, "type"), f"unsupported action type {kind!r}")

    if kind == "uri":
        uri = action.get("uri")
        if not isinstance(uri, str) or not HTTP_URI.match(uri):
            _fail(_join(path, "uri"), "must be an http(s) URL")
    elif kind == "postback":
        data = action.get("data")
        if not isinstance(data, str) or not data:
            _fail(_join(path, "data"), "must be a non-empty string")
        elif len(data) > MAX_POSTBACK_DATA_LENGTH:
            _fail(_join(path, "data"), f"longer than {MAX_POSTBACK_DATA_LENGTH} characters")
    else:
        text = action.get("text")
        if not isinstance(text, str) or not text:
            _fail(_join(path, "text"), "must be a non-empty string")

    label = action.get("label")
    if label is not None:
        if not isinstance(label, str):
            _fail(_join(path, "label"), "must be a string")
        elif len(label) > MAX_BUTTON_LABEL_LENGTH:
            _fail(_join(path, "label"), f"longer than {MAX_BUTTON_LABEL_LENGTH} characters")
