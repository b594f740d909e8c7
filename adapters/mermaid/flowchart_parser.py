from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from domain.models import Point, Size
from domain.ports.diagram_parser import DiagramParseError, DiagramParser

logger = logging.getLogger(__name__)

_HEADER = re.compile(r"^(graph|flowchart)(?:\s+(TD|TB|BT|LR|RL))?\s*$", re.IGNORECASE)
_NODE_ID = re.compile(r"[A-Za-z0-9_]+")
_CLASS_SUFFIX = re.compile(r":::[A-Za-z0-9_\-]+")
_PIPE_LABEL = re.compile(r"\s*\|([^|]*)\|")
_HTML_BREAK = re.compile(r"<br\s*/?>", re.IGNORECASE)
_IGNORED_STATEMENTS = ("subgraph", "classdef", "class ", "style ", "linkstyle", "click ", "direction ")

# (opener, closer, shape, rounded)
_SHAPES: Tuple[Tuple[str, str, str, bool], ...] = (
    ("([", "])", "rectangle", True),
    ("[[", "]]", "rectangle", False),
    ("((", "))", "ellipse", False),
    ("[", "]", "rectangle", False),
    ("(", ")", "rectangle", True),
    ("{", "}", "diamond", False),
)


@dataclass(frozen=True)
class _EdgeStyle:
    pattern: re.Pattern[str]
    element_type: str
    stroke_style: str = "solid"
    stroke_width: float = 2.0


_EDGE_STYLES: Tuple[_EdgeStyle, ...] = (
    _EdgeStyle(re.compile(r"--\s+(?P<label>[^\-|>][^>]*?)\s*-->"), "arrow"),
    _EdgeStyle(re.compile(r"==\s+(?P<label>[^=|>][^>]*?)\s*==>"), "arrow", stroke_width=4.0),
    _EdgeStyle(re.compile(r"-\.\s*(?P<label>[^.\->|][^>]*?)\s*\.->"), "arrow", "dashed"),
    _EdgeStyle(re.compile(r"-\.+->"), "arrow", "dashed"),
    _EdgeStyle(re.compile(r"-\.+-"), "line", "dashed"),
    _EdgeStyle(re.compile(r"==+>"), "arrow", stroke_width=4.0),
    _EdgeStyle(re.compile(r"===+"), "line", stroke_width=4.0),
    _EdgeStyle(re.compile(r"--+>"), "arrow"),
    _EdgeStyle(re.compile(r"---+"), "line"),
)


@dataclass(frozen=True)
class FlowchartLayoutConfig:
    node_size: Size = Size(160, 70)
    diamond_size: Size = Size(180, 110)
    gap_x: float = 80.0
    gap_y: float = 100.0
    font_size: float = 20.0
    arrow_gap: float = 5.0


@dataclass
class FlowNode:
    node_id: str
    label: str
    shape: str = "rectangle"
    rounded: bool = False


@dataclass
class FlowEdge:
    source: str
    target: str
    element_type: str = "arrow"
    stroke_style: str = "solid"
    stroke_width: float = 2.0
    label: str = ""


@dataclass
class Flowchart:
    direction: str = "TD"
    nodes: Dict[str, FlowNode] = field(default_factory=dict)
    edges: List[FlowEdge] = field(default_factory=list)


def _clean_label(text: str) -> str:
    value = text.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    value = _HTML_BREAK.sub(" ", value)
    return " ".join(value.split())


def _strip_comment(line: str) -> str:
    idx = line.find("%%")
    return line if idx == -1 else line[:idx]


class _StatementReader:
    """Cursor over one flowchart statement: ``node (edge node)*``."""

    def __init__(self, text: str, chart: Flowchart) -> None:
        self.text = text
        self.pos = 0
        self.chart = chart

    def skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def at_end(self) -> bool:
        self.skip_ws()
        return self.pos >= len(self.text)

    def read(self) -> None:
        source = self.read_node()
        while not self.at_end():
            edge = self.read_edge(source)
            target = self.read_node()
            edge.target = target
            self.chart.edges.append(edge)
            source = target

    def read_node(self) -> str:
        self.skip_ws()
        match = _NODE_ID.match(self.text, self.pos)
        if not match:
            raise DiagramParseError(f"Expected node id at {self.text[self.pos:self.pos + 20]!r}")
        node_id = match.group(0)
        self.pos = match.end()
        label, shape, rounded = self.read_shape(node_id)
        class_match = _CLASS_SUFFIX.match(self.text, self.pos)
        if class_match:
            self.pos = class_match.end()

        node = self.chart.nodes.get(node_id)
        if node is None:
            self.chart.nodes[node_id] = FlowNode(node_id, label or node_id, shape or "rectangle", rounded)
        elif shape:
            node.label, node.shape, node.rounded = label or node_id, shape, rounded
        return node_id

    def read_shape(self, node_id: str) -> Tuple[str, str | None, bool]:
        for opener, closer, shape, rounded in _SHAPES:
            if not self.text.startswith(opener, self.pos):
                continue
            start = self.pos + len(opener)
            if self.text.startswith('"', start):
                quote_end = self.text.find('"', start + 1)
                if quote_end == -1:
                    raise DiagramParseError(f"Unterminated quoted label for node {node_id}")
                end = self.text.find(closer, quote_end + 1)
            else:
                end = self.text.find(closer, start)
            if end == -1:
                raise DiagramParseError(f"Unbalanced {opener!r} in label for node {node_id}")
            raw = self.text[start:end]
            if opener == "[" and not raw.strip().startswith('"') and ("(" in raw or ")" in raw):
                raise DiagramParseError(f"Unquoted parentheses in label for node {node_id}")
            self.pos = end + len(closer)
            return _clean_label(raw), shape, rounded
        return "", None, False

    def read_edge(self, source: str) -> FlowEdge:
        self.skip_ws()
        for style in _EDGE_STYLES:
            match = style.pattern.match(self.text, self.pos)
            if not match:
                continue
            self.pos = match.end()
            label = match.groupdict().get("label") or ""
            pipe = _PIPE_LABEL.match(self.text, self.pos)
            if pipe:
                label = pipe.group(1)
                self.pos = pipe.end()
            return FlowEdge(
                source=source,
                target="",
                element_type=style.element_type,
                stroke_style=style.stroke_style,
                stroke_width=style.stroke_width,
                label=_clean_label(label),
            )
        raise DiagramParseError(f"Expected edge after {source!r} at {self.text[self.pos:self.pos + 20]!r}")


def parse_flowchart(markup: str) -> Flowchart:
    statements: List[str] = []
    for line in markup.split("\n"):
        for statement in _strip_comment(line).split(";"):
            statement = statement.strip()
            if statement:
                statements.append(statement)
    if not statements:
        raise DiagramParseError("Diagram markup is empty")

    header = _HEADER.match(statements[0])
    if not header:
        raise DiagramParseError(f"Unsupported diagram type: {statements[0].split()[0]!r}")
    chart = Flowchart(direction=(header.group(2) or "TD").upper())
    for statement in statements[1:]:
        lowered = statement.lower()
        if lowered == "end" or lowered.startswith(_IGNORED_STATEMENTS):
            continue
        _StatementReader(statement, chart).read()
    if not chart.nodes:
        raise DiagramParseError("Flowchart declares no nodes")
    return chart


def compute_layers(chart: Flowchart) -> Dict[str, int]:
    """Longest-path layer per node; back edges found by DFS in discovery order are ignored."""
    order = list(chart.nodes)
    adjacency: Dict[str, List[str]] = {node_id: [] for node_id in order}
    for edge in chart.edges:
        adjacency[edge.source].append(edge.target)

    state: Dict[str, int] = {}
    dag: Dict[str, List[str]] = {node_id: [] for node_id in order}
    for root in order:
        if root in state:
            continue
        state[root] = 1
        stack = [(root, iter(adjacency[root]))]
        while stack:
            node_id, children = stack[-1]
            child = next(children, None)
            if child is None:
                state[node_id] = 2
                stack.pop()
                continue
            if state.get(child) == 1:
                continue
            dag[node_id].append(child)
            if child not in state:
                state[child] = 1
                stack.append((child, iter(adjacency[child])))

    indegree = {node_id: 0 for node_id in order}
    for targets in dag.values():
        for target in targets:
            indegree[target] += 1
    levels = {node_id: 0 for node_id in order}
    queue = [node_id for node_id in order if indegree[node_id] == 0]
    while queue:
        node_id = queue.pop(0)
        for target in dag[node_id]:
            levels[target] = max(levels[target], levels[node_id] + 1)
            indegree[target] -= 1
            if indegree[target] == 0:
                queue.append(target)
    return levels


class MermaidFlowchartParser(DiagramParser):
    """Parses Mermaid flowchart text into positioned Excalidraw skeleton elements."""

    def __init__(self, config: FlowchartLayoutConfig | None = None) -> None:
        self.config = config or FlowchartLayoutConfig()

    async def parse(self, markup: str) -> dict[str, Any]:
        chart = parse_flowchart(markup)
        elements = self.layout(chart)
        logger.debug(
            "Parsed flowchart with %d nodes and %d edges", len(chart.nodes), len(chart.edges)
        )
        return {"elements": elements}

    def node_size(self, node: FlowNode) -> Size:
        base = self.config.diamond_size if node.shape == "diamond" else self.config.node_size
        text_width = len(node.label) * self.config.font_size * 0.6 + 40
        return Size(max(base.width, text_width), base.height)

    def layout(self, chart: Flowchart) -> List[Dict[str, Any]]:
        levels = compute_layers(chart)
        max_level = max(levels.values(), default=0)
        horizontal = chart.direction in {"LR", "RL"}
        reverse = chart.direction in {"BT", "RL"}

        sizes = {node_id: self.node_size(node) for node_id, node in chart.nodes.items()}
        cell = Size(
            max(size.width for size in sizes.values()),
            max(size.height for size in sizes.values()),
        )
        rows: Dict[int, List[str]] = {}
        for node_id in chart.nodes:
            level = levels[node_id]
            rows.setdefault(max_level - level if reverse else level, []).append(node_id)
        widest = max(len(members) for members in rows.values())

        boxes: Dict[str, Tuple[Point, Size]] = {}
        for level, members in rows.items():
            shift = (widest - len(members)) / 2
            for index, node_id in enumerate(members):
                slot = index + shift
                size = sizes[node_id]
                if horizontal:
                    x = level * (cell.width + self.config.gap_x) + (cell.width - size.width) / 2
                    y = slot * (cell.height + self.config.gap_y) + (cell.height - size.height) / 2
                else:
                    x = slot * (cell.width + self.config.gap_x) + (cell.width - size.width) / 2
                    y = level * (cell.height + self.config.gap_y) + (cell.height - size.height) / 2
                boxes[node_id] = (Point(x, y), size)

        shapes: Dict[str, Dict[str, Any]] = {}
        for node_id, node in chart.nodes.items():
            origin, size = boxes[node_id]
            shapes[node_id] = {
                "id": node_id,
                "type": node.shape,
                "x": origin.x,
                "y": origin.y,
                "width": size.width,
                "height": size.height,
                "roundness": {"type": 3} if node.rounded else None,
                "groupIds": [],
                "boundElements": [],
                "label": {"text": node.label},
            }

        connectors: List[Dict[str, Any]] = []
        for index, edge in enumerate(chart.edges):
            edge_id = f"edge_{index}"
            start, end = self._anchor_points(boxes[edge.source], boxes[edge.target])
            connector: Dict[str, Any] = {
                "id": edge_id,
                "type": edge.element_type,
                "x": start.x,
                "y": start.y,
                "width": abs(end.x - start.x),
                "height": abs(end.y - start.y),
                "points": [[0.0, 0.0], [end.x - start.x, end.y - start.y]],
                "strokeStyle": edge.stroke_style,
                "strokeWidth": edge.stroke_width,
                "startArrowhead": None,
                "endArrowhead": "arrow" if edge.element_type == "arrow" else None,
                "startBinding": {"elementId": edge.source, "focus": 0, "gap": self.config.arrow_gap},
                "endBinding": {"elementId": edge.target, "focus": 0, "gap": self.config.arrow_gap},
                "groupIds": [],
            }
            if edge.label:
                connector["label"] = {"text": edge.label}
            for node_id in (edge.source, edge.target):
                bound = shapes[node_id]["boundElements"]
                if not any(item["id"] == edge_id for item in bound):
                    bound.append({"type": edge.element_type, "id": edge_id})
            connectors.append(connector)
        return [*shapes.values(), *connectors]

    def _anchor_points(
        self,
        source: Tuple[Point, Size],
        target: Tuple[Point, Size],
    ) -> Tuple[Point, Point]:
        (src, src_size), (dst, dst_size) = source, target
        src_cx, src_cy = src.x + src_size.width / 2, src.y + src_size.height / 2
        dst_cx, dst_cy = dst.x + dst_size.width / 2, dst.y + dst_size.height / 2
        if dst.y >= src.y + src_size.height:
            return Point(src_cx, src.y + src_size.height), Point(dst_cx, dst.y)
        if dst.y + dst_size.height <= src.y:
            return Point(src_cx, src.y), Point(dst_cx, dst.y + dst_size.height)
        if dst.x >= src.x + src_size.width:
            return Point(src.x + src_size.width, src_cy), Point(dst.x, dst_cy)
        return Point(src.x, src_cy), Point(dst.x + dst_size.width, dst_cy)
