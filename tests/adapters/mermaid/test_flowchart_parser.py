from __future__ import annotations

import asyncio

import pytest

from adapters.mermaid.flowchart_parser import (
    MermaidFlowchartParser,
    compute_layers,
    parse_flowchart,
)
from domain.ports.diagram_parser import DiagramParseError


def test_parse_nodes_shapes_and_edges() -> None:
    chart = parse_flowchart(
        """flowchart LR
        A([Start]) --> B{Valid?}
        B -- yes --> C[Save]
        B -.->|no| D((Retry)) %% loop back
        D ==> A; C --- E[["Done"]]
        """
    )

    assert chart.direction == "LR"
    assert chart.nodes["A"].rounded
    assert chart.nodes["B"].shape == "diamond"
    assert chart.nodes["D"].shape == "ellipse"
    assert chart.nodes["E"].label == "Done"
    styles = [(edge.source, edge.target, edge.element_type, edge.stroke_style, edge.label) for edge in chart.edges]
    assert ("B", "C", "arrow", "solid", "yes") in styles
    assert ("B", "D", "arrow", "dashed", "no") in styles
    assert ("C", "E", "line", "solid", "") in styles
    thick = next(edge for edge in chart.edges if edge.source == "D")
    assert thick.stroke_width == 4.0


def test_chained_edges_and_ignored_statements() -> None:
    chart = parse_flowchart(
        "graph TD\nsubgraph api\nA --> B --> C\nend\nendpoint[Endpoint] --> A\nclassDef hot fill:#f00\nstyle A fill:#fff"
    )

    assert list(chart.nodes) == ["A", "B", "C", "endpoint"]
    assert [(edge.source, edge.target) for edge in chart.edges] == [("A", "B"), ("B", "C"), ("endpoint", "A")]


@pytest.mark.parametrize(
    "markup",
    [
        "",
        "sequenceDiagram\nA->>B: hi",
        "graph TD\nA[Start --> B",
        "graph TD\nA[Login (OAuth)] --> B",
        "graph TD\n%% only a comment",
        "graph TD\nA -> B",
    ],
)
def test_invalid_markup_raises(markup: str) -> None:
    with pytest.raises(DiagramParseError):
        parse_flowchart(markup)


def test_quoted_label_may_contain_parentheses() -> None:
    chart = parse_flowchart('graph TD\nA["Login (OAuth)"] --> B')

    assert chart.nodes["A"].label == "Login (OAuth)"
    assert chart.nodes["B"].label == "B"


def test_layers_ignore_back_edges() -> None:
    chart = parse_flowchart("graph TD\nA --> B\nB --> C\nC --> A\nA --> C")

    assert compute_layers(chart) == {"A": 0, "B": 1, "C": 2}


def test_parser_emits_bound_skeleton_elements() -> None:
    result = asyncio.run(MermaidFlowchartParser().parse("graph TD\nA[Start] -->|go| B[End]"))

    elements = result["elements"]
    shapes = {element["id"]: element for element in elements if element["type"] == "rectangle"}
    (arrow,) = [element for element in elements if element["type"] == "arrow"]
    assert set(shapes) == {"A", "B"}
    assert shapes["A"]["label"] == {"text": "Start"}
    assert shapes["B"]["y"] > shapes["A"]["y"] + shapes["A"]["height"]
    assert arrow["startBinding"]["elementId"] == "A"
    assert arrow["endBinding"]["elementId"] == "B"
    assert arrow["label"] == {"text": "go"}
    assert {"type": "arrow", "id": arrow["id"]} in shapes["A"]["boundElements"]
    assert arrow["points"][1][1] > 0


def test_left_to_right_layout_spreads_horizontally() -> None:
    result = asyncio.run(MermaidFlowchartParser().parse("graph LR\nA --> B"))

    first, second = result["elements"][:2]
    assert second["x"] > first["x"] + first["width"]
    assert second["y"] == first["y"]
