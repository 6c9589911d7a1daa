#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10",
#   "pyyaml>=6"
# ]
# ///
"""Render vertical shorts: wrapped title, bullets and CTA over a looping background."""

from __future__ import annotations

import argparse
from dataclasses import dataclass, replace
import datetime
from decimal import Decimal
import json
import logging
import math
import os
import shutil
import subprocess
import sys
import tempfile
from typing import Any, Mapping, Sequence, Tuple

import yaml
from PIL import Image, UnidentifiedImageError

from domain.short_video import (
    INPUT_FILE_CODE,
    INVALID_CONFIG_CODE,
    ContentEntry,
    LanguageCapability,
    LineBlock,
    RenderValidationError,
    StyleConfig,
    language_capability,
    parse_content_document,
    resolve_style,
)
from service.filter_graph import (
    BACKGROUND_INPUT_LABEL,
    FilterGraph,
    compile_filter_graph,
    text_handle,
)
from service.font_resolver import FontResolver
from service.layout import build_line_blocks, compute_geometry, find_panel_overflow
from service.sidecar import (
    build_sidecar_record,
    load_channel_meta,
    sidecar_path_for,
    write_sidecar,
)

LOGGER = logging.getLogger("render_shorts")

FFMPEG_NOT_FOUND_CODE = "render_shorts.ffmpeg.not_found"
FFMPEG_EXEC_CODE = "render_shorts.ffmpeg.exec_error"
FFMPEG_UNSUPPORTED_CODE = "render_shorts.ffmpeg.unsupported"
FFMPEG_PROCESS_CODE = "render_shorts.ffmpeg.process_failed"
H264_CODEC = "libx264"
H264_PIXEL_FORMAT = "yuv420p"
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "192k"
AUDIO_PAD_FILTER = "apad"
SILENT_AUDIO_SOURCE = "anullsrc=cl=stereo:r=44100"
REQUIRED_FILTERS = ("drawtext", "drawbox", "scale", "format")
STDERR_TAIL_CHARS = 2000
DEFAULT_DURATION_SECONDS = "10"
DEFAULT_BACKGROUND = os.path.join("assets", "bg", "loop.mp4")
DEFAULT_AUDIO_TRACK = os.path.join("assets", "bgm", "ambient01.mp3")


class RenderPipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class RenderError(RenderPipelineError):
    """ffmpeg exited with a non-zero status while rendering one unit."""

    def __init__(
        self,
        return_code: int,
        font_path: str,
        text_files: Mapping[str, str],
        command: Sequence[str],
        stderr_text: str,
    ) -> None:
        super().__init__(
            FFMPEG_PROCESS_CODE,
            f"ffmpeg failed with exit code {return_code} (font {font_path}, "
            f"texts {', '.join(text_files)}). {stderr_text}",
        )
        self.return_code = return_code
        self.font_path = font_path
        self.text_files = dict(text_files)
        self.command = tuple(command)
        self.stderr_text = stderr_text


@dataclass(frozen=True)
class RenderRequest:
    """Parsed CLI request and runtime options."""

    language: str
    date: str
    duration_seconds: float
    background_path: str
    audio_track: str | None
    content_file: str
    style_file: str
    channel_meta_file: str
    output_dir: str
    fonts_dir: str
    max_items: int | None
    max_graph_nodes: int | None
    emit_graph: bool
    keep_going: bool


@dataclass(frozen=True)
class CompiledUnit:
    """Everything needed to render one content entry."""

    entry: ContentEntry
    blocks: Tuple[LineBlock, ...]
    graph: FilterGraph
    texts: Mapping[str, str]
    font_path: str


def configure_logging() -> None:
    """Configure logging for CLI output."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def ensure_ffmpeg_available() -> None:
    """Ensure ffmpeg is installed and executable."""
    ffmpeg_path = shutil.which("ffmpeg")
    if not ffmpeg_path:
        raise RenderPipelineError(FFMPEG_NOT_FOUND_CODE, "ffmpeg not on PATH")
    try:
        subprocess.run(
            [ffmpeg_path, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except Exception as exc:
        raise RenderPipelineError(
            FFMPEG_EXEC_CODE, "ffmpeg exists but could not be executed"
        ) from exc


def validate_ffmpeg_capabilities() -> None:
    """Validate the encoders and filters the render command relies on."""
    ensure_ffmpeg_available()
    encoders_result = subprocess.run(
        ["ffmpeg", "-hide_banner", "-encoders"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=True,
    )
    for encoder_name in (H264_CODEC, AUDIO_CODEC):
        if encoder_name not in encoders_result.stdout:
            raise RenderPipelineError(
                FFMPEG_UNSUPPORTED_CODE,
                f"ffmpeg does not support {encoder_name} encoder",
            )

    filters_result = subprocess.run(
        ["ffmpeg", "-hide_banner", "-filters"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=True,
    )
    available_filters = {
        columns[1]
        for columns in (line.split() for line in filters_result.stdout.splitlines())
        if len(columns) >= 2
    }
    for filter_name in REQUIRED_FILTERS:
        if filter_name not in available_filters:
            raise RenderPipelineError(
                FFMPEG_UNSUPPORTED_CODE,
                f"ffmpeg does not support the {filter_name} filter (is libfreetype enabled?)",
            )


def read_yaml_document(file_path: str, required: bool) -> Any:
    """Load a YAML document; optional documents may be missing."""
    if not os.path.isfile(file_path):
        if required:
            raise RenderValidationError(INPUT_FILE_CODE, f"file not found: {file_path}")
        LOGGER.warning("render_shorts.input.missing_optional: %s not found, using defaults", file_path)
        return None
    try:
        with open(file_path, "r", encoding="utf-8") as file_handle:
            return yaml.safe_load(file_handle)
    except UnicodeDecodeError as exc:
        raise RenderValidationError(
            INPUT_FILE_CODE, f"{file_path} is not valid UTF-8 at byte offset {exc.start}"
        ) from exc
    except yaml.YAMLError as exc:
        raise RenderValidationError(
            INPUT_FILE_CODE, f"{file_path} is not valid YAML: {exc}"
        ) from exc


def is_still_image(media_path: str) -> bool:
    """Return True when Pillow recognizes the file as a single-frame image."""
    try:
        with Image.open(media_path) as image:
            return getattr(image, "n_frames", 1) <= 1
    except (UnidentifiedImageError, OSError):
        return False


def format_seconds(seconds: float) -> str:
    """Plain decimal seconds for ffmpeg time options, without exponent notation."""
    text_value = format(Decimal(repr(seconds)), "f")
    if "." in text_value:
        text_value = text_value.rstrip("0").rstrip(".")
    return text_value


def build_background_input_args(background_path: str, duration_seconds: float) -> Tuple[str, ...]:
    """Loop a still image or stream-loop a clip for the duration."""
    duration_text = format_seconds(duration_seconds)
    if is_still_image(background_path):
        return ("-loop", "1", "-t", duration_text, "-i", background_path)
    return ("-stream_loop", "-1", "-t", duration_text, "-i", background_path)


def build_audio_input_args(audio_track: str | None, duration_seconds: float) -> Tuple[str, ...]:
    """Use the audio track when it exists, else a silent source of equal length."""
    if audio_track and os.path.isfile(audio_track):
        return ("-i", audio_track)
    if audio_track:
        LOGGER.warning("render_shorts.input.audio_missing: %s not found, using silence", audio_track)
    return ("-f", "lavfi", "-t", format_seconds(duration_seconds), "-i", SILENT_AUDIO_SOURCE)


def build_ffmpeg_command(
    filter_complex: str,
    output_label: str,
    background_args: Sequence[str],
    audio_args: Sequence[str],
    fps: int,
    output_path: str,
) -> list[str]:
    """Assemble the full ffmpeg argument list."""
    return [
        "ffmpeg",
        "-y",
        "-hide_banner",
        *background_args,
        *audio_args,
        "-filter_complex",
        filter_complex,
        "-map",
        f"[{output_label}]",
        "-map",
        "1:a?",
        "-shortest",
        "-r",
        str(fps),
        "-c:v",
        H264_CODEC,
        "-pix_fmt",
        H264_PIXEL_FORMAT,
        "-c:a",
        AUDIO_CODEC,
        "-b:a",
        AUDIO_BITRATE,
        "-af",
        AUDIO_PAD_FILTER,
        "-movflags",
        "+faststart",
        output_path,
    ]


def write_text_files(directory: str, texts: Mapping[str, str]) -> dict[str, str]:
    """Write each literal text to <handle>.txt and return handle -> path."""
    text_paths: dict[str, str] = {}
    for handle, text_value in texts.items():
        text_path = os.path.join(directory, f"{handle}.txt")
        with open(text_path, "w", encoding="utf-8") as file_handle:
            file_handle.write(text_value)
        text_paths[handle] = text_path
    return text_paths


def invoke_render(
    graph: FilterGraph,
    background_path: str,
    audio_track: str | None,
    duration_seconds: float,
    output_path: str,
    font_path: str,
    texts: Mapping[str, str],
    fps: int,
) -> None:
    """Run ffmpeg for one unit; text files live only for this call."""
    missing = [ref.handle for ref in graph.text_references if ref.handle not in texts]
    if missing:
        raise RenderValidationError(
            INVALID_CONFIG_CODE, f"graph references unknown texts: {', '.join(missing)}"
        )
    background_args = build_background_input_args(background_path, duration_seconds)
    audio_args = build_audio_input_args(audio_track, duration_seconds)

    with tempfile.TemporaryDirectory(prefix="render-shorts-") as text_dir:
        text_paths = write_text_files(text_dir, texts)
        command = build_ffmpeg_command(
            graph.to_filter_complex(text_paths),
            graph.output_label,
            background_args,
            audio_args,
            fps,
            output_path,
        )
        LOGGER.debug("ffmpeg command: %s", " ".join(command))
        try:
            result = subprocess.run(
                command,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                check=False,
            )
        except FileNotFoundError as exc:
            raise RenderPipelineError(FFMPEG_NOT_FOUND_CODE, "ffmpeg not found") from exc
        except OSError as exc:
            raise RenderPipelineError(
                FFMPEG_EXEC_CODE, f"ffmpeg could not be started: {exc}"
            ) from exc

    if result.returncode != 0:
        stderr_text = (result.stderr or b"").decode("utf-8", errors="replace").strip()
        raise RenderError(
            result.returncode,
            font_path,
            text_paths,
            command,
            stderr_text[-STDERR_TAIL_CHARS:],
        )


def compile_unit(
    entry: ContentEntry,
    style: StyleConfig,
    capability: LanguageCapability,
    font_path: str,
) -> CompiledUnit:
    """Wrap, lay out and compile one entry into a filter graph."""
    geometry = compute_geometry(style)
    blocks = build_line_blocks(entry, style, capability)
    overflowing = find_panel_overflow(geometry, blocks, style)
    if overflowing:
        LOGGER.warning(
            "render_shorts.layout.overflow: %d line(s) overlap the text below them (%s)",
            len(overflowing),
            ", ".join(text_handle(block) for block in overflowing),
        )
    graph = compile_filter_graph(BACKGROUND_INPUT_LABEL, geometry, blocks, font_path, style)
    return CompiledUnit(
        entry=entry,
        blocks=blocks,
        graph=graph,
        texts={text_handle(block): block.text for block in blocks},
        font_path=font_path,
    )


def output_paths(request: RenderRequest, sequence_number: int) -> Tuple[str, str]:
    """Video and sidecar paths for a unit in the dated queue directory."""
    queue_dir = os.path.join(request.output_dir, request.language, "queue", request.date)
    video_path = os.path.join(queue_dir, f"{sequence_number:04d}.mp4")
    return video_path, sidecar_path_for(video_path)


def ensure_queue_dir(video_path: str) -> None:
    """Create the dated queue directory for a unit."""
    queue_dir = os.path.dirname(video_path)
    try:
        os.makedirs(queue_dir, exist_ok=True)
    except OSError as exc:
        raise RenderValidationError(
            INPUT_FILE_CODE, f"failed to create output directory: {queue_dir} ({exc.strerror})"
        ) from exc


def emit_graphs(units: Sequence[Tuple[int, CompiledUnit]]) -> None:
    """Emit compiled graphs to stdout."""
    payload = [
        {
            "unit": sequence_number,
            "font": unit.font_path,
            "texts": dict(unit.texts),
            "graph": unit.graph.describe(),
        }
        for sequence_number, unit in units
    ]
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2))
    sys.stdout.write("\n")


def parse_duration(value: str) -> float:
    """Parse a positive duration in seconds."""
    try:
        duration_seconds = float(value)
    except ValueError as exc:
        raise RenderValidationError(
            INVALID_CONFIG_CODE, f"invalid duration: {value!r}"
        ) from exc
    if not math.isfinite(duration_seconds) or duration_seconds <= 0:
        raise RenderValidationError(INVALID_CONFIG_CODE, "duration must be a positive finite number")
    return duration_seconds


def parse_args(argv: Sequence[str]) -> RenderRequest:
    """Parse CLI arguments into a RenderRequest."""
    parser = argparse.ArgumentParser(prog="render_shorts.py", add_help=True)
    parser.add_argument("--lang", default="en")
    parser.add_argument("--date", default=None, help="YYYY-MM-DD (default: today)")
    parser.add_argument(
        "--duration-seconds",
        default=None,
        help="default: $DURATION or 10",
    )
    parser.add_argument("--background", default=DEFAULT_BACKGROUND)
    parser.add_argument("--audio-track", default=DEFAULT_AUDIO_TRACK)
    parser.add_argument("--data-dir", default="data")
    parser.add_argument("--content-file", default=None)
    parser.add_argument("--style-file", default=None)
    parser.add_argument("--channel-meta-file", default=None)
    parser.add_argument("--output-dir", default="videos")
    parser.add_argument("--fonts-dir", default=os.path.join("assets", "fonts"))
    parser.add_argument("--max-items", type=int, default=None)
    parser.add_argument("--max-graph-nodes", type=int, default=None)
    parser.add_argument("--emit-graph", action="store_true")
    parser.add_argument("--keep-going", action="store_true")

    parsed = parser.parse_args(argv)
    language = parsed.lang.strip()
    if not language or os.sep in language or language.startswith("."):
        raise RenderValidationError(INVALID_CONFIG_CODE, f"invalid language: {parsed.lang!r}")

    if parsed.date is None:
        date_value = datetime.date.today().isoformat()
    else:
        try:
            date_value = datetime.date.fromisoformat(parsed.date).isoformat()
        except ValueError as exc:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, f"invalid date: {parsed.date!r}"
            ) from exc

    duration_text = parsed.duration_seconds or os.environ.get("DURATION") or DEFAULT_DURATION_SECONDS
    duration_seconds = parse_duration(duration_text)

    if parsed.max_items is not None and parsed.max_items < 0:
        raise RenderValidationError(INVALID_CONFIG_CODE, "max-items must be non-negative")
    if parsed.max_graph_nodes is not None and parsed.max_graph_nodes <= 0:
        raise RenderValidationError(INVALID_CONFIG_CODE, "max-graph-nodes must be positive")

    data_dir = parsed.data_dir
    return RenderRequest(
        language=language,
        date=date_value,
        duration_seconds=duration_seconds,
        background_path=parsed.background,
        audio_track=parsed.audio_track or None,
        content_file=parsed.content_file
        or os.path.join(data_dir, language, f"{date_value}.yaml"),
        style_file=parsed.style_file or os.path.join(data_dir, "style.yaml"),
        channel_meta_file=parsed.channel_meta_file
        or os.path.join(data_dir, "channel_meta", f"{language}.txt"),
        output_dir=parsed.output_dir,
        fonts_dir=parsed.fonts_dir,
        max_items=parsed.max_items,
        max_graph_nodes=parsed.max_graph_nodes,
        emit_graph=parsed.emit_graph,
        keep_going=parsed.keep_going,
    )


def load_style(request: RenderRequest) -> StyleConfig:
    """Resolve the effective style, applying CLI overrides."""
    style = resolve_style(read_yaml_document(request.style_file, required=False), request.language)
    overrides: dict[str, int] = {}
    if request.max_items is not None:
        overrides["max_items"] = request.max_items
    if request.max_graph_nodes is not None:
        overrides["max_graph_nodes"] = request.max_graph_nodes
    if not overrides:
        return style
    return replace(style, **overrides)


def render_batch(request: RenderRequest) -> int:
    """Render every entry of the content file in order; return the exit code."""
    style = load_style(request)
    capability = language_capability(request.language)
    entries = parse_content_document(
        read_yaml_document(request.content_file, required=True), style.max_items
    )
    if not entries:
        LOGGER.warning("render_shorts.input.no_entries: %s has no entries", request.content_file)
        return 0

    channel_meta = load_channel_meta(request.channel_meta_file)
    font_resolver = FontResolver(request.fonts_dir)

    if request.emit_graph:
        compiled = [
            (
                sequence_number,
                compile_unit(
                    entry,
                    style,
                    capability,
                    font_resolver.resolve(request.language, style.font),
                ),
            )
            for sequence_number, entry in enumerate(entries, start=1)
        ]
        emit_graphs(compiled)
        return 0

    validate_ffmpeg_capabilities()
    failures = 0
    for sequence_number, entry in enumerate(entries, start=1):
        video_path, sidecar_path = output_paths(request, sequence_number)
        try:
            font_path = font_resolver.resolve(request.language, style.font)
            unit = compile_unit(entry, style, capability, font_path)
            ensure_queue_dir(video_path)
            invoke_render(
                unit.graph,
                request.background_path,
                request.audio_track,
                request.duration_seconds,
                video_path,
                unit.font_path,
                unit.texts,
                style.fps,
            )
            LOGGER.info("[mp4] %s", video_path)
            write_sidecar(build_sidecar_record(entry, channel_meta), sidecar_path)
        except (RenderValidationError, RenderPipelineError) as exc:
            if not request.keep_going:
                raise
            failures += 1
            LOGGER.error("%s: unit %04d: %s", exc.code, sequence_number, str(exc).strip())
            continue

        LOGGER.info("[meta] %s", sidecar_path)

    return 1 if failures else 0


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""
    configure_logging()

    try:
        request = parse_args(sys.argv[1:] if argv is None else argv)
        return render_batch(request)
    except RenderValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except RenderPipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("render_shorts.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
