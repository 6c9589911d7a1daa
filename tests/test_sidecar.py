"""Tests for upload metadata sidecars and channel metadata parsing."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from domain.short_video import (
    INPUT_FILE_CODE,
    ContentEntry,
    RenderValidationError,
    parse_content_entry,
)
from service.sidecar import (
    DEFAULT_CHANNEL_TAGS,
    DEFAULT_SIDECAR_TITLE,
    MAX_TITLE_CHARS,
    ChannelMeta,
    build_sidecar_record,
    build_sidecar_title,
    dedupe_tags,
    load_channel_meta,
    parse_channel_meta,
    sidecar_path_for,
    write_sidecar,
)

CHANNEL_META_TEXT = """\
# channel defaults
title_suffix =  | Small Wins
description = Daily ten second habits.
Follow for more.
tags = habits, focus , , mindset
tags_extra = #shorts #habits
unknown = ignored
"""


def make_entry(title: str = "Two-Minute Reset", tags: tuple[str, ...] = ()) -> ContentEntry:
    return ContentEntry(title=title, items=("Drink water",), cta="Go", tags=tags)


def test_parse_channel_meta_fields() -> None:
    """Keys are parsed and description continuation lines are kept."""
    channel_meta = parse_channel_meta(CHANNEL_META_TEXT)
    assert channel_meta.title_suffix == "| Small Wins"
    assert channel_meta.description == "Daily ten second habits.\nFollow for more."
    assert channel_meta.tags == ("habits", "focus", "mindset")
    assert channel_meta.tags_extra == "#shorts #habits"


def test_parse_channel_meta_defaults() -> None:
    """An empty document yields the defaults."""
    assert parse_channel_meta("") == ChannelMeta()


def test_load_channel_meta_missing_file(tmp_path: Path) -> None:
    assert load_channel_meta(str(tmp_path / "absent.txt")) == ChannelMeta()


def test_load_channel_meta_rejects_undecodable_file(tmp_path: Path) -> None:
    """Unreadable metadata fails with the input file code."""
    meta_path = tmp_path / "meta.txt"
    meta_path.write_bytes(b"title_suffix = \xff\xfe\xfa")
    with pytest.raises(RenderValidationError) as exc_info:
        load_channel_meta(str(meta_path))
    assert exc_info.value.code == INPUT_FILE_CODE


@pytest.mark.parametrize(
    ("title", "suffix", "expected"),
    [
        ("Two-Minute Reset", " | Small Wins", "Two-Minute Reset | Small Wins"),
        ("Two-Minute Reset | Small Wins", " | Small Wins", "Two-Minute Reset | Small Wins"),
        ("Reset", "", "Reset"),
        ("", " | Small Wins", f"{DEFAULT_SIDECAR_TITLE} | Small Wins"),
    ],
)
def test_build_sidecar_title(title: str, suffix: str, expected: str) -> None:
    """The suffix is appended once."""
    assert build_sidecar_title(title, suffix) == expected


def test_build_sidecar_title_is_idempotent() -> None:
    """Applying the suffix twice changes nothing."""
    once = build_sidecar_title("Reset", " #shorts")
    assert build_sidecar_title(once, " #shorts") == once


def test_build_sidecar_title_is_capped() -> None:
    title = build_sidecar_title("x" * 150, " | Small Wins")
    assert len(title) == MAX_TITLE_CHARS


def test_dedupe_tags_keeps_order_and_cap() -> None:
    """Duplicates and empties are dropped; at most ten tags remain."""
    tags = ["focus", " focus", "", "habits"] + [f"tag{number}" for number in range(20)]
    assert dedupe_tags(tags) == ("focus", "habits") + tuple(f"tag{number}" for number in range(8))


def test_build_sidecar_record_prefers_entry_values() -> None:
    """Entry tags replace channel tags; extra tags are appended to the description."""
    channel_meta = parse_channel_meta(CHANNEL_META_TEXT)
    record = build_sidecar_record(make_entry(tags=("reset", "reset", "water")), channel_meta)
    assert record.title == "Two-Minute Reset| Small Wins"
    assert record.tags == ("reset", "water")
    assert record.description == "Daily ten second habits.\nFollow for more.\n#shorts #habits"


def test_build_sidecar_record_falls_back_to_channel_tags() -> None:
    record = build_sidecar_record(make_entry(), ChannelMeta())
    assert record.tags == DEFAULT_CHANNEL_TAGS


def test_write_sidecar_round_trip(tmp_path: Path) -> None:
    """The sidecar is UTF-8 JSON next to the video."""
    video_path = tmp_path / "0001.mp4"
    sidecar_path = sidecar_path_for(str(video_path))
    assert sidecar_path == str(tmp_path / "0001.json")
    record = build_sidecar_record(make_entry(title="今日の小さな勝利"), ChannelMeta())
    write_sidecar(record, sidecar_path)
    raw_text = Path(sidecar_path).read_text(encoding="utf-8")
    assert "今日の小さな勝利" in raw_text
    assert json.loads(raw_text) == {
        "title": "今日の小さな勝利",
        "description": ChannelMeta().description,
        "tags": list(DEFAULT_CHANNEL_TAGS),
    }


def test_entry_tags_are_deduplicated_before_capping() -> None:
    """Repeated tags do not push unique ones past the cap."""
    raw_tags = ["a", "a"] + [chr(code) for code in range(ord("b"), ord("l"))]
    entry = parse_content_entry({"title": "Reset", "tags": raw_tags}, max_items=8)
    assert len(entry.tags) == 12
    record = build_sidecar_record(entry, ChannelMeta())
    assert record.tags == tuple("abcdefghij")


def test_channel_tags_are_deduplicated_before_capping() -> None:
    channel_meta = parse_channel_meta("tags = x, x, x, a, b, c, d, e, f, g, h, i, j\n")
    record = build_sidecar_record(make_entry(), channel_meta)
    assert record.tags == ("x",) + tuple("abcdefghi")


def test_write_sidecar_reports_unwritable_path(tmp_path: Path) -> None:
    """Write failures surface with the input file code."""
    blocked_path = tmp_path / "0001.json"
    blocked_path.mkdir()
    record = build_sidecar_record(make_entry(), ChannelMeta())
    with pytest.raises(RenderValidationError) as exc_info:
        write_sidecar(record, str(blocked_path))
    assert exc_info.value.code == INPUT_FILE_CODE
