"""Domain types and parsing for render_shorts."""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
import logging
import unicodedata
from typing import Any, Mapping, Sequence, Tuple

INVALID_CONFIG_CODE = "render_shorts.input.invalid_config"
INVALID_CONTENT_CODE = "render_shorts.input.invalid_content"
INPUT_FILE_CODE = "render_shorts.input.file_error"
INVALID_STYLE_VALUE_CODE = "render_shorts.style.invalid_value"
INVALID_GEOMETRY_CODE = "render_shorts.style.invalid_geometry"
FONT_UNAVAILABLE_CODE = "render_shorts.font.unavailable"
FONT_LOAD_CODE = "render_shorts.font.unloadable"
GRAPH_TOO_LARGE_CODE = "render_shorts.graph.too_large"

DEFAULT_CTA = "Save and try one today"
MAX_TAGS = 10
LOGGER = logging.getLogger("render_shorts")

QUOTE_TRANSLATION = str.maketrans(
    {
        "\ufeff": None,
        "\u2018": "'",
        "\u2019": "'",
        "\u201a": "'",
        "\u201b": "'",
        "\u201c": '"',
        "\u201d": '"',
        "\u201e": '"',
        "\u201f": '"',
        "\u00a0": " ",
        "\t": " ",
    }
)


class RenderValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class NoFontAvailableError(RenderValidationError):
    """Raised when no font candidate exists or loads."""

    def __init__(self, language: str, candidates: Sequence[str]) -> None:
        super().__init__(
            FONT_UNAVAILABLE_CODE,
            f"no usable font for language {language!r}; tried {', '.join(candidates)}",
        )
        self.language = language
        self.candidates = tuple(candidates)


class GraphTooLargeError(RenderValidationError):
    """Raised when a filter graph would exceed the configured node limit."""

    def __init__(self, node_count: int, max_nodes: int, counts: Mapping[str, int]) -> None:
        counts_text = ", ".join(f"{kind}={count}" for kind, count in counts.items())
        super().__init__(
            GRAPH_TOO_LARGE_CODE,
            f"filter graph needs {node_count} nodes (max {max_nodes}): {counts_text}",
        )
        self.node_count = node_count
        self.max_nodes = max_nodes
        self.counts = dict(counts)


class WrapMode(str, Enum):
    """Line wrapping strategies."""

    WORD = "word"
    GLYPH = "glyph"


class LineKind(str, Enum):
    """Kinds of text blocks drawn on the panel."""

    TITLE = "title"
    ITEM = "item"
    CTA = "cta"


@dataclass(frozen=True)
class LanguageCapability:
    """Script-dependent text handling for a language."""

    wrap_mode: WrapMode
    indent: str
    title_wrap_chars: int
    item_wrap_chars: int
    font_file: str


DEFAULT_FONT_FILE = "NotoSans-Regular.ttf"
DEFAULT_CAPABILITY = LanguageCapability(
    wrap_mode=WrapMode.WORD,
    indent="   ",
    title_wrap_chars=28,
    item_wrap_chars=36,
    font_file=DEFAULT_FONT_FILE,
)
LANGUAGE_CAPABILITIES = {
    "ja": LanguageCapability(WrapMode.GLYPH, "\u3000", 16, 18, "NotoSansJP-Regular.ttf"),
    "zh": LanguageCapability(WrapMode.GLYPH, "\u3000", 16, 18, "NotoSansSC-Regular.ttf"),
    "th": LanguageCapability(WrapMode.GLYPH, "   ", 22, 28, "NotoSansThai-Regular.ttf"),
    "lo": LanguageCapability(WrapMode.GLYPH, "   ", 22, 28, "NotoSansLao-Regular.ttf"),
    "km": LanguageCapability(WrapMode.GLYPH, "   ", 22, 28, "NotoSansKhmer-Regular.ttf"),
    "my": LanguageCapability(WrapMode.GLYPH, "   ", 22, 28, "NotoSansMyanmar-Regular.ttf"),
    "ko": LanguageCapability(WrapMode.WORD, "   ", 20, 24, "NotoSansKR-Regular.ttf"),
    "ar": LanguageCapability(WrapMode.WORD, "   ", 28, 36, "NotoSansArabic-Regular.ttf"),
    "hi": LanguageCapability(WrapMode.WORD, "   ", 28, 36, "NotoSansDevanagari-Regular.ttf"),
}


@dataclass(frozen=True)
class StyleConfig:
    """Effective style for one render, after default/language merging."""

    width: int = 1080
    height: int = 1920
    panel_margin_x: int = 0
    panel_margin_y: int = 64
    panel_padding_x: int = 64
    panel_padding_y: int = 120
    panel_alpha: float = 0.55
    panel_color: str = "black"
    title_size: int = 88
    item_size: int = 54
    cta_size: int = 52
    line_gap: int = 86
    title_line_gap: int = 72
    title_bottom_gap: int = 64
    bullet: str = "\u2022"
    font: str | None = None
    title_wrap_chars: int = DEFAULT_CAPABILITY.title_wrap_chars
    item_wrap_chars: int = DEFAULT_CAPABILITY.item_wrap_chars
    title_color: str = "white"
    item_color: str = "white"
    cta_color: str = "0xE0FFC8"
    cta_box_alpha: float = 0.55
    cta_box_border: int = 24
    fps: int = 30
    max_items: int = 8
    max_graph_nodes: int = 64


POSITIVE_STYLE_FIELDS = frozenset(
    {
        "width",
        "height",
        "title_size",
        "item_size",
        "cta_size",
        "line_gap",
        "title_wrap_chars",
        "item_wrap_chars",
        "fps",
        "max_graph_nodes",
    }
)
NON_NEGATIVE_STYLE_FIELDS = frozenset(
    {
        "panel_margin_x",
        "panel_margin_y",
        "panel_padding_x",
        "panel_padding_y",
        "title_line_gap",
        "title_bottom_gap",
        "cta_box_border",
        "max_items",
    }
)
UNIT_INTERVAL_STYLE_FIELDS = frozenset({"panel_alpha", "cta_box_alpha"})


@dataclass(frozen=True)
class ContentEntry:
    """One content record; yields exactly one rendered unit."""

    title: str
    items: Tuple[str, ...]
    cta: str
    tags: Tuple[str, ...]
    description: str | None = None


@dataclass(frozen=True)
class LineBlock:
    """A single already-wrapped display line."""

    kind: LineKind
    text: str
    index: int

    def __post_init__(self) -> None:
        if self.index < 0:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "line block index must be non-negative"
            )
        if "\n" in self.text:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "line block text must be a single line"
            )


def normalize_text(raw: Any, allow_newlines: bool = False) -> str:
    """Clean a raw string for display; never raises."""
    if isinstance(raw, bool) or raw is None:
        return ""
    if isinstance(raw, (int, float)):
        raw = str(raw)
    if not isinstance(raw, str):
        return ""

    text_value = raw.translate(QUOTE_TRANSLATION)
    text_value = text_value.replace("\r\n", "\n").replace("\r", "\n")
    if not allow_newlines:
        text_value = text_value.replace("\n", " ")
    text_value = "".join(
        character
        for character in text_value
        if character == "\n" or unicodedata.category(character) != "Cc"
    )
    return unicodedata.normalize("NFC", text_value).strip()


def language_capability(language: str) -> LanguageCapability:
    """Look up script handling for a language code such as 'ja' or 'pt-BR'."""
    base_language = language.strip().lower().replace("_", "-").split("-")[0]
    return LANGUAGE_CAPABILITIES.get(base_language, DEFAULT_CAPABILITY)


def _coerce_style_value(name: str, value: Any, default: Any) -> Any:
    """Coerce a style value to the type of its default or return the default."""
    if name == "font":
        if value is None:
            return None
        if isinstance(value, str) and value.strip():
            return value.strip()
        LOGGER.warning("%s: ignored %s=%r", INVALID_STYLE_VALUE_CODE, name, value)
        return default

    if isinstance(default, str):
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            text_value = str(value)
            if text_value.strip() or name == "bullet":
                return text_value
        LOGGER.warning("%s: ignored %s=%r", INVALID_STYLE_VALUE_CODE, name, value)
        return default

    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        LOGGER.warning("%s: ignored %s=%r", INVALID_STYLE_VALUE_CODE, name, value)
        return default
    try:
        number = float(value)
    except ValueError:
        LOGGER.warning("%s: ignored %s=%r", INVALID_STYLE_VALUE_CODE, name, value)
        return default

    if name in POSITIVE_STYLE_FIELDS and number <= 0:
        valid = False
    elif name in NON_NEGATIVE_STYLE_FIELDS and number < 0:
        valid = False
    elif name in UNIT_INTERVAL_STYLE_FIELDS and not 0.0 <= number <= 1.0:
        valid = False
    else:
        valid = True
    if not valid:
        LOGGER.warning("%s: ignored %s=%r", INVALID_STYLE_VALUE_CODE, name, value)
        return default

    if isinstance(default, int):
        return int(round(number))
    return number


def resolve_style(style_doc: Any, language: str) -> StyleConfig:
    """Merge the default style section with the language section."""
    capability = language_capability(language)
    defaults = StyleConfig(
        title_wrap_chars=capability.title_wrap_chars,
        item_wrap_chars=capability.item_wrap_chars,
    )
    if not isinstance(style_doc, Mapping):
        return defaults

    sections = style_doc.get("styles", style_doc)
    if not isinstance(sections, Mapping):
        return defaults
    default_section = sections.get("default")
    language_section = sections.get(language)
    merged: dict[str, Any] = {}
    if isinstance(default_section, Mapping):
        merged.update(default_section)
    if isinstance(language_section, Mapping):
        merged.update(language_section)

    for wrap_key in ("title_wrap_chars", "item_wrap_chars"):
        language_key = f"{wrap_key}_{language}"
        if language_key in merged:
            merged[wrap_key] = merged[language_key]

    values: dict[str, Any] = {}
    for style_field in fields(StyleConfig):
        default_value = getattr(defaults, style_field.name)
        if style_field.name not in merged:
            values[style_field.name] = default_value
            continue
        values[style_field.name] = _coerce_style_value(
            style_field.name, merged[style_field.name], default_value
        )
    return StyleConfig(**values)


def wrap_text(text_value: str, limit: int, mode: WrapMode) -> Tuple[str, ...]:
    """Split text into display lines no wider than limit characters."""
    limit = max(1, limit)
    if mode == WrapMode.GLYPH:
        if not text_value:
            return ("",)
        return tuple(
            text_value[offset : offset + limit]
            for offset in range(0, len(text_value), limit)
        )

    words = text_value.split()
    if not words:
        return ("",)
    lines: list[str] = []
    current = ""
    for word in words:
        candidate = f"{current} {word}" if current else word
        if len(candidate) > limit and current:
            lines.append(current)
            current = word
        else:
            current = candidate
    lines.append(current)
    return tuple(lines)


def format_item_lines(
    items: Sequence[str],
    limit: int,
    mode: WrapMode,
    bullet: str,
    indent: str,
) -> Tuple[str, ...]:
    """Wrap list items, bulleting first lines and indenting continuations."""
    bullet_prefix = f"{bullet} " if bullet else ""
    lines: list[str] = []
    for item in items:
        for line_index, line in enumerate(wrap_text(item, limit, mode)):
            prefix = bullet_prefix if line_index == 0 else indent
            lines.append(f"{prefix}{line}")
    return tuple(lines)


def _normalize_string_list(raw: Any) -> list[str]:
    """Normalize a YAML list (or scalar) into non-empty strings."""
    if raw is None:
        return []
    if isinstance(raw, (str, int, float)) and not isinstance(raw, bool):
        raw = [raw]
    if not isinstance(raw, Sequence):
        return []
    cleaned = (normalize_text(value) for value in raw)
    return [value for value in cleaned if value]


def parse_content_entry(raw_entry: Any, max_items: int) -> ContentEntry:
    """Build a ContentEntry from one YAML entry mapping."""
    if not isinstance(raw_entry, Mapping):
        raise RenderValidationError(
            INVALID_CONTENT_CODE, f"content entry must be a mapping, got {type(raw_entry).__name__}"
        )
    items = _normalize_string_list(raw_entry.get("items"))
    if len(items) > max_items:
        LOGGER.info(
            "render_shorts.input.items_truncated: %d items capped to %d",
            len(items),
            max_items,
        )
    description = normalize_text(raw_entry.get("description"), allow_newlines=True)
    return ContentEntry(
        title=normalize_text(raw_entry.get("title")),
        items=tuple(items[:max_items]),
        cta=normalize_text(raw_entry.get("cta")) or DEFAULT_CTA,
        tags=tuple(_normalize_string_list(raw_entry.get("tags"))),
        description=description or None,
    )


def parse_content_document(content_doc: Any, max_items: int) -> Tuple[ContentEntry, ...]:
    """Parse a content document of the form {entries: [...]}."""
    if content_doc is None:
        return ()
    if not isinstance(content_doc, Mapping):
        raise RenderValidationError(
            INVALID_CONTENT_CODE, "content document must be a mapping with 'entries'"
        )
    raw_entries = content_doc.get("entries") or []
    if not isinstance(raw_entries, Sequence) or isinstance(raw_entries, str):
        raise RenderValidationError(
            INVALID_CONTENT_CODE, "content 'entries' must be a list"
        )
    return tuple(parse_content_entry(raw_entry, max_items) for raw_entry in raw_entries)
