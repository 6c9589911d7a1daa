"""Upload metadata sidecars for rendered shorts."""

from __future__ import annotations

from dataclasses import dataclass
import json
import os
import re
from typing import Iterable, Tuple

from domain.short_video import (
    INPUT_FILE_CODE,
    MAX_TAGS,
    ContentEntry,
    RenderValidationError,
    normalize_text,
)

DEFAULT_SIDECAR_TITLE = "Small Wins"
DEFAULT_CHANNEL_DESCRIPTION = "\U0001f4cc Daily 10s 'Small Wins'. Save and try one today."
DEFAULT_CHANNEL_TAGS = ("small wins", "mindset", "self help")
MAX_TITLE_CHARS = 100
MAX_DESCRIPTION_CHARS = 4900
CHANNEL_META_LINE_PATTERN = re.compile(r"^([a-zA-Z_]+)\s*=\s*(.*)$")


@dataclass(frozen=True)
class ChannelMeta:
    """Per-language channel defaults."""

    title_suffix: str = ""
    description: str = DEFAULT_CHANNEL_DESCRIPTION
    tags: Tuple[str, ...] = DEFAULT_CHANNEL_TAGS
    tags_extra: str = ""


@dataclass(frozen=True)
class SidecarRecord:
    """Metadata written next to each rendered video."""

    title: str
    description: str
    tags: Tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "title": self.title,
            "description": self.description,
            "tags": list(self.tags),
        }


def split_tags(value: str) -> Tuple[str, ...]:
    """Split a comma separated tag list."""
    return tuple(tag.strip() for tag in value.split(",") if tag.strip())


def dedupe_tags(tags: Iterable[str]) -> Tuple[str, ...]:
    """Strip, drop empties and de-duplicate tags, keeping order, capped at MAX_TAGS."""
    cleaned = (normalize_text(tag) for tag in tags)
    unique = tuple(dict.fromkeys(tag for tag in cleaned if tag))
    return unique[:MAX_TAGS]


def parse_channel_meta(text_value: str) -> ChannelMeta:
    """Parse key = value channel metadata.

    Recognized keys are title_suffix, description, tags and tags_extra. Lines
    starting with '#' are comments; lines without a key continue the description
    when it was the last key seen.
    """
    values = {
        "title_suffix": "",
        "description": DEFAULT_CHANNEL_DESCRIPTION,
        "tags_extra": "",
    }
    tags: Tuple[str, ...] = DEFAULT_CHANNEL_TAGS
    current_key = None
    for raw_line in text_value.replace("\ufeff", "").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        match = CHANNEL_META_LINE_PATTERN.match(line)
        if match:
            current_key, value = match.group(1), match.group(2)
            if current_key == "tags":
                tags = split_tags(value)
            elif current_key in values:
                values[current_key] = value
            continue
        if current_key == "description":
            values["description"] += f"\n{line}"

    return ChannelMeta(
        title_suffix=values["title_suffix"],
        description=values["description"][:MAX_DESCRIPTION_CHARS],
        tags=tags,
        tags_extra=values["tags_extra"],
    )


def load_channel_meta(file_path: str) -> ChannelMeta:
    """Load channel metadata; a missing file yields the defaults."""
    if not os.path.isfile(file_path):
        return ChannelMeta()
    try:
        with open(file_path, "r", encoding="utf-8") as file_handle:
            return parse_channel_meta(file_handle.read())
    except (OSError, UnicodeDecodeError) as exc:
        raise RenderValidationError(
            INPUT_FILE_CODE, f"failed to read channel metadata: {file_path}"
        ) from exc


def build_sidecar_title(title: str, suffix: str) -> str:
    """Append the channel suffix unless the title already carries it."""
    base_title = title or DEFAULT_SIDECAR_TITLE
    if suffix and suffix not in base_title:
        base_title = f"{base_title}{suffix}"
    return base_title[:MAX_TITLE_CHARS]


def build_sidecar_record(entry: ContentEntry, channel_meta: ChannelMeta) -> SidecarRecord:
    """Build the upload metadata for one entry."""
    description = entry.description or channel_meta.description
    if channel_meta.tags_extra:
        description = f"{description}\n{channel_meta.tags_extra}"
    tags = dedupe_tags(entry.tags) or dedupe_tags(channel_meta.tags)
    return SidecarRecord(
        title=build_sidecar_title(entry.title, channel_meta.title_suffix),
        description=description[:MAX_DESCRIPTION_CHARS],
        tags=tags,
    )


def sidecar_path_for(video_path: str) -> str:
    """Sidecar path sharing the video's base name."""
    base_path, _ = os.path.splitext(video_path)
    return f"{base_path}.json"


def write_sidecar(record: SidecarRecord, file_path: str) -> None:
    """Write the sidecar as UTF-8 JSON."""
    try:
        with open(file_path, "w", encoding="utf-8") as file_handle:
            json.dump(record.to_dict(), file_handle, ensure_ascii=False, indent=2)
            file_handle.write("\n")
    except OSError as exc:
        raise RenderValidationError(
            INPUT_FILE_CODE, f"failed to write sidecar: {file_path} ({exc.strerror})"
        ) from exc
