"""Filter graph compilation for render_shorts.

The compiled graph is a single chain of typed nodes. Every node reads the slot
written by the node before it and writes the next ``v<n>`` slot. Text is never
placed inside the graph: draw-text nodes carry a ``TextReference`` handle that
the invoker resolves to a ``textfile=`` path when the graph is serialized.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence, Tuple

from domain.short_video import (
    INVALID_CONFIG_CODE,
    GraphTooLargeError,
    LineBlock,
    LineKind,
    RenderValidationError,
    StyleConfig,
)
from service.layout import Geometry, compute_line_origin, font_size_for

BACKGROUND_INPUT_LABEL = "0:v"
SLOT_PREFIX = "v"
TITLE_SHADOW = ("black@0.6", 2)
ITEM_SHADOW = ("black@0.5", 1)


class NodeKind(str, Enum):
    """Operation performed by a graph node."""

    PANEL_FILL = "panel-fill"
    DRAW_TEXT = "draw-text"


@dataclass(frozen=True)
class TextReference:
    """Opaque handle for a literal string drawn by a node."""

    handle: str

    def __post_init__(self) -> None:
        if not self.handle or not all(
            character.isalnum() or character in "_-" for character in self.handle
        ):
            raise RenderValidationError(
                INVALID_CONFIG_CODE, f"invalid text handle: {self.handle!r}"
            )


@dataclass(frozen=True)
class FilterStep:
    """One ffmpeg filter with ordered options."""

    name: str
    options: Tuple[Tuple[str, str], ...]

    def render(self, text_paths: Mapping[str, str], text_ref: TextReference | None) -> str:
        """Serialize the filter, resolving the textfile option when present."""
        rendered_options = [f"{key}={value}" for key, value in self.options]
        if text_ref is not None and self.name == "drawtext":
            try:
                text_path = text_paths[text_ref.handle]
            except KeyError as exc:
                raise RenderValidationError(
                    INVALID_CONFIG_CODE, f"no text file for handle {text_ref.handle!r}"
                ) from exc
            rendered_options.insert(1, f"textfile={quote_filter_value(text_path)}")
        if not rendered_options:
            return self.name
        return f"{self.name}={':'.join(rendered_options)}"


@dataclass(frozen=True)
class GraphNode:
    """A node in the chain; reads input_label and writes output_label."""

    kind: NodeKind
    input_label: str
    output_label: str
    steps: Tuple[FilterStep, ...]
    text_ref: TextReference | None = None
    line_kind: LineKind | None = None

    def __post_init__(self) -> None:
        if not self.steps:
            raise RenderValidationError(INVALID_CONFIG_CODE, "graph node has no filters")
        if (self.kind == NodeKind.DRAW_TEXT) != (self.text_ref is not None):
            raise RenderValidationError(
                INVALID_CONFIG_CODE, "only draw-text nodes reference text"
            )

    def render(self, text_paths: Mapping[str, str]) -> str:
        """Serialize the node as one filter chain segment."""
        chain = ",".join(step.render(text_paths, self.text_ref) for step in self.steps)
        return f"[{self.input_label}]{chain}[{self.output_label}]"


@dataclass(frozen=True)
class FilterGraph:
    """Ordered, single-chain filter graph."""

    nodes: Tuple[GraphNode, ...]

    def __post_init__(self) -> None:
        if not self.nodes:
            raise RenderValidationError(INVALID_CONFIG_CODE, "filter graph is empty")
        seen_labels: set[str] = set()
        previous_label = self.nodes[0].input_label
        for position, node in enumerate(self.nodes):
            if node.input_label != previous_label:
                raise RenderValidationError(
                    INVALID_CONFIG_CODE, f"node {position} breaks the chain"
                )
            if node.output_label != slot_label(position) or node.output_label in seen_labels:
                raise RenderValidationError(
                    INVALID_CONFIG_CODE, f"node {position} has slot {node.output_label!r}"
                )
            seen_labels.add(node.output_label)
            previous_label = node.output_label

    @property
    def output_label(self) -> str:
        """Slot mapped to the visible output stream."""
        return self.nodes[-1].output_label

    @property
    def text_references(self) -> Tuple[TextReference, ...]:
        """Text handles in draw order."""
        return tuple(node.text_ref for node in self.nodes if node.text_ref is not None)

    def to_filter_complex(self, text_paths: Mapping[str, str]) -> str:
        """Serialize for ffmpeg -filter_complex."""
        return ";".join(node.render(text_paths) for node in self.nodes)

    def describe(self) -> dict[str, Any]:
        """JSON-friendly description of the graph."""
        return {
            "output": self.output_label,
            "nodes": [
                {
                    "kind": node.kind.value,
                    "input": node.input_label,
                    "output": node.output_label,
                    "text": node.text_ref.handle if node.text_ref else None,
                    "line_kind": node.line_kind.value if node.line_kind else None,
                    "filters": [
                        {"name": step.name, "options": dict(step.options)}
                        for step in node.steps
                    ],
                }
                for node in self.nodes
            ],
        }


class FilterGraphBuilder:
    """Append-only node list with a monotonic slot counter."""

    def __init__(self, source_label: str) -> None:
        self._nodes: list[GraphNode] = []
        self._current_label = source_label

    def append(
        self,
        kind: NodeKind,
        steps: Sequence[FilterStep],
        text_ref: TextReference | None = None,
        line_kind: LineKind | None = None,
    ) -> str:
        """Add a node reading the current slot; return its output slot."""
        output_label = slot_label(len(self._nodes))
        self._nodes.append(
            GraphNode(
                kind=kind,
                input_label=self._current_label,
                output_label=output_label,
                steps=tuple(steps),
                text_ref=text_ref,
                line_kind=line_kind,
            )
        )
        self._current_label = output_label
        return output_label

    def build(self) -> FilterGraph:
        return FilterGraph(nodes=tuple(self._nodes))


def slot_label(position: int) -> str:
    """Slot label for the node at a chain position."""
    return f"{SLOT_PREFIX}{position}"


def quote_filter_value(value: str) -> str:
    """Quote a path for a filter option inside -filter_complex.

    Option-level escaping protects ':' and quotes from the option parser; the
    single-quoted wrapper protects the result from the graph parser.
    """
    option_level = value.replace("\\", "\\\\").replace("'", "\\'").replace(":", "\\:")
    return "'" + option_level.replace("'", "'\\''") + "'"


def text_handle(block: LineBlock) -> str:
    """Stable handle for a line block, e.g. 'item_3'."""
    return f"{block.kind.value}_{block.index}"


def build_panel_steps(geometry: Geometry, style: StyleConfig) -> Tuple[FilterStep, ...]:
    """Scale the background, make it alpha capable and fill the panel."""
    panel = geometry.panel
    return (
        FilterStep("scale", (("w", str(style.width)), ("h", str(style.height)))),
        FilterStep("format", (("pix_fmts", "rgba"),)),
        FilterStep(
            "drawbox",
            (
                ("x", str(panel.x)),
                ("y", str(panel.y)),
                ("w", str(panel.width)),
                ("h", str(panel.height)),
                ("color", f"{style.panel_color}@{style.panel_alpha}"),
                ("t", "fill"),
            ),
        ),
    )


def build_drawtext_step(
    block: LineBlock, geometry: Geometry, style: StyleConfig, font_path: str
) -> FilterStep:
    """drawtext filter for one line block; the textfile option is added at render."""
    origin = compute_line_origin(geometry, block.kind, block.index, style)
    options: list[Tuple[str, str]] = [
        ("fontfile", quote_filter_value(font_path)),
        ("expansion", "none"),
        ("x", str(origin.x)),
        ("y", str(origin.y)),
        ("fontsize", str(font_size_for(block.kind, style))),
    ]
    if block.kind == LineKind.TITLE:
        shadow_color, shadow_offset = TITLE_SHADOW
        options.append(("fontcolor", style.title_color))
    elif block.kind == LineKind.ITEM:
        shadow_color, shadow_offset = ITEM_SHADOW
        options.append(("fontcolor", style.item_color))
    else:
        options.extend(
            [
                ("fontcolor", style.cta_color),
                ("box", "1"),
                ("boxcolor", f"black@{style.cta_box_alpha}"),
                ("boxborderw", str(style.cta_box_border)),
            ]
        )
        return FilterStep("drawtext", tuple(options))
    options.extend(
        [
            ("shadowcolor", shadow_color),
            ("shadowx", str(shadow_offset)),
            ("shadowy", str(shadow_offset)),
        ]
    )
    return FilterStep("drawtext", tuple(options))


def compile_filter_graph(
    background_label: str,
    geometry: Geometry,
    blocks: Sequence[LineBlock],
    font_path: str,
    style: StyleConfig,
) -> FilterGraph:
    """Compile line blocks into a chained filter graph.

    Blocks are drawn titles first, then items, then the CTA, regardless of the
    order they are passed in. Raises GraphTooLargeError when the chain would
    exceed style.max_graph_nodes.
    """
    kind_order = {LineKind.TITLE: 0, LineKind.ITEM: 1, LineKind.CTA: 2}
    ordered_blocks = sorted(blocks, key=lambda block: (kind_order[block.kind], block.index))
    node_count = 1 + len(ordered_blocks)
    if node_count > style.max_graph_nodes:
        counts = Counter(block.kind.value for block in ordered_blocks)
        raise GraphTooLargeError(
            node_count,
            style.max_graph_nodes,
            {kind.value: counts.get(kind.value, 0) for kind in LineKind},
        )

    builder = FilterGraphBuilder(background_label)
    builder.append(NodeKind.PANEL_FILL, build_panel_steps(geometry, style))
    seen_handles: set[str] = set()
    for block in ordered_blocks:
        handle = text_handle(block)
        if handle in seen_handles:
            raise RenderValidationError(
                INVALID_CONFIG_CODE, f"duplicate line block {handle!r}"
            )
        seen_handles.add(handle)
        builder.append(
            NodeKind.DRAW_TEXT,
            (build_drawtext_step(block, geometry, style, font_path),),
            text_ref=TextReference(handle),
            line_kind=block.kind,
        )
    return builder.build()
