"""Panel and line geometry for render_shorts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

from domain.short_video import (
    INVALID_CONFIG_CODE,
    INVALID_GEOMETRY_CODE,
    ContentEntry,
    LanguageCapability,
    LineBlock,
    LineKind,
    RenderValidationError,
    StyleConfig,
    format_item_lines,
    wrap_text,
)

TITLE_LINE_SPACING_OFFSET = 10
CTA_BOTTOM_INSET = 12
CENTERED_X_EXPRESSION = "(w-text_w)/2"


@dataclass(frozen=True)
class PanelRect:
    """Translucent panel rectangle in canvas pixels."""

    x: int
    y: int
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.x < 0 or self.y < 0:
            raise RenderValidationError(
                INVALID_GEOMETRY_CODE, "panel origin must be non-negative"
            )
        if self.width <= 0 or self.height <= 0:
            raise RenderValidationError(
                INVALID_GEOMETRY_CODE, "panel must have a positive size"
            )


@dataclass(frozen=True)
class Geometry:
    """Resolved anchors for every text kind."""

    panel: PanelRect
    text_x: int
    title_top: int
    item_start: int
    cta_y: int


@dataclass(frozen=True)
class LineOrigin:
    """Top-left origin of a drawn line; x may be a runtime expression."""

    x: int | str
    y: int


def compute_geometry(style: StyleConfig) -> Geometry:
    """Convert style margins, paddings and sizes into absolute anchors."""
    for margin, dimension, axis in (
        (style.panel_margin_x, style.width, "x"),
        (style.panel_margin_y, style.height, "y"),
    ):
        if margin < 0 or 2 * margin >= dimension:
            raise RenderValidationError(
                INVALID_GEOMETRY_CODE,
                f"panel_margin_{axis}={margin} does not fit a canvas of {dimension}px",
            )

    panel = PanelRect(
        x=style.panel_margin_x,
        y=style.panel_margin_y,
        width=style.width - 2 * style.panel_margin_x,
        height=style.height - 2 * style.panel_margin_y,
    )
    title_top = panel.y + style.panel_padding_y
    item_start = (
        title_top + style.title_size + style.title_line_gap + style.title_bottom_gap
    )
    cta_y = (
        panel.y
        + panel.height
        - style.panel_padding_y
        - style.cta_size
        - CTA_BOTTOM_INSET
    )
    if cta_y < 0:
        raise RenderValidationError(
            INVALID_GEOMETRY_CODE, "panel padding leaves no room for the call to action"
        )
    return Geometry(
        panel=panel,
        text_x=panel.x + style.panel_padding_x,
        title_top=title_top,
        item_start=item_start,
        cta_y=cta_y,
    )


def title_line_advance(style: StyleConfig) -> int:
    """Vertical distance between consecutive title lines."""
    spacing = max(0, style.title_line_gap - style.title_size + TITLE_LINE_SPACING_OFFSET)
    return style.title_size + spacing


def compute_line_origin(
    geometry: Geometry, kind: LineKind, index: int, style: StyleConfig
) -> LineOrigin:
    """Compute where the index-th line of a kind is drawn."""
    if index < 0:
        raise RenderValidationError(INVALID_CONFIG_CODE, "line index must be non-negative")
    if kind == LineKind.TITLE:
        return LineOrigin(
            x=geometry.text_x,
            y=geometry.title_top + index * title_line_advance(style),
        )
    if kind == LineKind.ITEM:
        return LineOrigin(
            x=geometry.text_x, y=geometry.item_start + index * style.line_gap
        )
    return LineOrigin(x=CENTERED_X_EXPRESSION, y=geometry.cta_y)


def font_size_for(kind: LineKind, style: StyleConfig) -> int:
    """Font size used for a line kind."""
    if kind == LineKind.TITLE:
        return style.title_size
    if kind == LineKind.ITEM:
        return style.item_size
    return style.cta_size


def build_line_blocks(
    entry: ContentEntry, style: StyleConfig, capability: LanguageCapability
) -> Tuple[LineBlock, ...]:
    """Wrap an entry into title, item and CTA line blocks, in draw order."""
    blocks: list[LineBlock] = []
    if entry.title:
        title_lines = wrap_text(entry.title, style.title_wrap_chars, capability.wrap_mode)
        blocks.extend(
            LineBlock(kind=LineKind.TITLE, text=line, index=index)
            for index, line in enumerate(title_lines)
        )

    item_lines = format_item_lines(
        entry.items,
        style.item_wrap_chars,
        capability.wrap_mode,
        style.bullet,
        capability.indent,
    )
    blocks.extend(
        LineBlock(kind=LineKind.ITEM, text=line, index=index)
        for index, line in enumerate(item_lines)
    )

    if entry.cta:
        blocks.append(LineBlock(kind=LineKind.CTA, text=entry.cta, index=0))
    return tuple(blocks)


def find_panel_overflow(
    geometry: Geometry, blocks: Sequence[LineBlock], style: StyleConfig
) -> Tuple[LineBlock, ...]:
    """Return lines whose bottom edge runs into the text below them.

    Title lines are checked against the item anchor when there are items, and
    every title and item line against the CTA band (or the padded panel bottom
    when there is no CTA).
    """
    limit_y = geometry.cta_y
    has_cta = any(block.kind == LineKind.CTA for block in blocks)
    if not has_cta:
        limit_y = geometry.panel.y + geometry.panel.height - style.panel_padding_y
    has_items = any(block.kind == LineKind.ITEM for block in blocks)

    overflowing: list[LineBlock] = []
    for block in blocks:
        if block.kind == LineKind.CTA:
            continue
        origin = compute_line_origin(geometry, block.kind, block.index, style)
        bottom_y = origin.y + font_size_for(block.kind, style)
        if bottom_y > limit_y:
            overflowing.append(block)
        elif block.kind == LineKind.TITLE and has_items and bottom_y > geometry.item_start:
            overflowing.append(block)
    return tuple(overflowing)
