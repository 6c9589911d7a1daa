"""Tests for panel geometry and line placement."""

from __future__ import annotations

from dataclasses import replace

import pytest

from domain.short_video import (
    INVALID_GEOMETRY_CODE,
    ContentEntry,
    LineBlock,
    LineKind,
    RenderValidationError,
    StyleConfig,
    language_capability,
)
from service.layout import (
    CENTERED_X_EXPRESSION,
    build_line_blocks,
    compute_geometry,
    compute_line_origin,
    find_panel_overflow,
    title_line_advance,
)


def make_entry(title: str = "Two-Minute Reset", items: tuple[str, ...] = ("Drink water",)) -> ContentEntry:
    """Build a content entry with a default CTA."""
    return ContentEntry(title=title, items=items, cta="Save and try one today", tags=())


def test_default_geometry_anchors() -> None:
    """Default style yields the documented anchors."""
    geometry = compute_geometry(StyleConfig())
    assert (geometry.panel.x, geometry.panel.y) == (0, 64)
    assert (geometry.panel.width, geometry.panel.height) == (1080, 1792)
    assert geometry.text_x == 64
    assert geometry.title_top == 184
    assert geometry.item_start == 184 + 88 + 72 + 64
    assert geometry.cta_y == 64 + 1792 - 120 - 52 - 12


def test_geometry_panel_centered_on_canvas() -> None:
    """Margins are applied symmetrically."""
    style = replace(StyleConfig(), panel_margin_x=40, panel_margin_y=100)
    panel = compute_geometry(style).panel
    assert panel.x + panel.width + panel.x == style.width
    assert panel.y + panel.height + panel.y == style.height


@pytest.mark.parametrize(
    "overrides",
    [
        {"panel_margin_x": 540},
        {"panel_margin_x": 900},
        {"panel_margin_y": 960},
        {"panel_margin_y": -1},
    ],
)
def test_geometry_rejects_margins_that_do_not_fit(overrides: dict[str, int]) -> None:
    """Margins consuming the whole canvas are rejected."""
    style = replace(StyleConfig(), **overrides)
    with pytest.raises(RenderValidationError) as exc_info:
        compute_geometry(style)
    assert exc_info.value.code == INVALID_GEOMETRY_CODE


def test_title_line_advance_never_overlaps() -> None:
    """Title lines advance by at least the title size."""
    assert title_line_advance(StyleConfig()) == 88
    loose = replace(StyleConfig(), title_size=40, title_line_gap=72)
    assert title_line_advance(loose) == 40 + (72 - 40 + 10)


@pytest.mark.parametrize("kind", [LineKind.TITLE, LineKind.ITEM])
def test_line_origins_strictly_increase(kind: LineKind) -> None:
    """Consecutive lines of one kind move strictly down the panel."""
    style = StyleConfig()
    geometry = compute_geometry(style)
    positions = [compute_line_origin(geometry, kind, index, style).y for index in range(10)]
    assert positions == sorted(positions)
    assert len(set(positions)) == len(positions)


def test_item_and_cta_origins() -> None:
    """Items start at the item anchor and the CTA is centered."""
    style = StyleConfig()
    geometry = compute_geometry(style)
    second_item = compute_line_origin(geometry, LineKind.ITEM, 1, style)
    assert (second_item.x, second_item.y) == (64, geometry.item_start + 86)
    cta = compute_line_origin(geometry, LineKind.CTA, 0, style)
    assert cta.x == CENTERED_X_EXPRESSION
    assert cta.y == geometry.cta_y


def test_build_line_blocks_orders_and_indexes() -> None:
    """Titles, items and CTA are emitted with per-kind indices."""
    style = replace(StyleConfig(), title_wrap_chars=12, item_wrap_chars=14)
    entry = make_entry(
        title="Small Wins for a Tired Brain",
        items=("Drink a full glass of water", "Stretch"),
    )
    blocks = build_line_blocks(entry, style, language_capability("en"))
    assert [(block.kind, block.index) for block in blocks] == [
        (LineKind.TITLE, 0),
        (LineKind.TITLE, 1),
        (LineKind.TITLE, 2),
        (LineKind.ITEM, 0),
        (LineKind.ITEM, 1),
        (LineKind.ITEM, 2),
        (LineKind.CTA, 0),
    ]
    assert blocks[3].text == "\u2022 Drink a full"
    assert blocks[4].text == "   glass of water"
    assert blocks[-1].text == "Save and try one today"


def test_build_line_blocks_without_items_or_title() -> None:
    """Empty sections produce no blocks; the CTA still renders."""
    blocks = build_line_blocks(make_entry(title="", items=()), StyleConfig(), language_capability("en"))
    assert [block.kind for block in blocks] == [LineKind.CTA]


def test_find_panel_overflow_reports_lines_past_cta() -> None:
    """Items that reach the CTA band are reported."""
    style = StyleConfig()
    geometry = compute_geometry(style)
    blocks = [LineBlock(kind=LineKind.ITEM, text=f"item {index}", index=index) for index in range(20)]
    blocks.append(LineBlock(kind=LineKind.CTA, text="Go", index=0))
    overflowing = find_panel_overflow(geometry, blocks, style)
    first_overflow = (geometry.cta_y - style.item_size - geometry.item_start) // style.line_gap + 1
    assert [block.index for block in overflowing] == list(range(first_overflow, 20))


def test_find_panel_overflow_empty_for_short_content() -> None:
    """A typical entry fits on the panel."""
    style = StyleConfig()
    geometry = compute_geometry(style)
    blocks = build_line_blocks(make_entry(), style, language_capability("en"))
    assert find_panel_overflow(geometry, blocks, style) == ()


def test_find_panel_overflow_reports_title_running_into_items() -> None:
    """A title wrapped past the item anchor is reported line by line."""
    style = replace(StyleConfig(), title_wrap_chars=10)
    geometry = compute_geometry(style)
    blocks = build_line_blocks(
        make_entry(title="one two three four five six"), style, language_capability("en")
    )
    assert [block.text for block in blocks if block.kind == LineKind.TITLE] == [
        "one two",
        "three four",
        "five six",
    ]
    overflowing = find_panel_overflow(geometry, blocks, style)
    assert [(block.kind, block.index) for block in overflowing] == [(LineKind.TITLE, 2)]


def test_find_panel_overflow_long_title_without_items() -> None:
    """Without items a multi-line title only has to clear the CTA band."""
    style = replace(StyleConfig(), title_wrap_chars=10)
    geometry = compute_geometry(style)
    blocks = build_line_blocks(
        make_entry(title="one two three four five six", items=()), style, language_capability("en")
    )
    assert find_panel_overflow(geometry, blocks, style) == ()
