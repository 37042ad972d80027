"""Tests for DOT, networkx, GraphML and image export."""

from __future__ import annotations

import io
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import networkx as nx
import pytest

from conftest import make_graph
from soaap_graph.analysis.builders import build_priv_access_graph, build_vuln_graph
from soaap_graph.analysis.callgraph import CallGraph, GraphNode, NodeKey
from soaap_graph.analysis.graph_export import (
    classify,
    edge_width,
    export_dot,
    export_graphml,
    node_label,
    to_networkx,
    write_dot,
)
from soaap_graph.analysis.strset import StringSet
from soaap_graph.analysis.visualization import plot_call_graph
from soaap_graph.errors import EmptyGraphError


def dot_text(graph: CallGraph) -> str:
    buffer = io.StringIO()
    write_dot(graph, buffer)
    return buffer.getvalue()


@pytest.mark.parametrize(
    ("node", "shape", "fill"),
    [
        (GraphNode("f", sandbox="sb", cve=StringSet(["CVE-1"])), "octagon", "#ffff66cc"),
        (GraphNode("f", cve=StringSet(["CVE-1"])), "doubleoctagon", "#ff9999cc"),
        (GraphNode("f", owners=StringSet(["keys"])), "invhouse", "#ff99cccc"),
        (GraphNode("f", sandbox="sb"), "ellipse", "#99ff9999"),
        (GraphNode("f"), "ellipse", "#cccccccc"),
    ],
)
def test_classify(node: GraphNode, shape: str, fill: str) -> None:
    style = classify(node)

    assert (style.shape, style.fillcolor) == (shape, fill)


def test_sandboxed_nodes_are_dashed() -> None:
    assert classify(GraphNode("f", sandbox="sb")).style == "dashed,filled"


def test_node_label() -> None:
    node = GraphNode("f", sandbox="sb", cve=StringSet(["CVE-2", "CVE-1"]), owners=StringSet(["keys"]))

    assert node_label(node) == "f\n<<sb>>\n[[CVE-1]]\n[[CVE-2]]\n{keys}"


def test_edge_width_grows_with_weight() -> None:
    assert edge_width(1) == 1.0
    assert edge_width(10) > edge_width(2)


def test_dot_output(results) -> None:
    text = dot_text(build_vuln_graph(results))

    assert text.startswith("digraph {")
    assert text.rstrip().endswith("}")
    assert 'label = "parse\\n[[CVE-2014-0001]]"' in text
    assert 'shape = "doubleoctagon"' in text
    assert 'label = "lib.c:10"' in text
    assert "penwidth = 1.000" in text
    assert text.count(" -> ") == 2


def test_dot_flows_are_dashed(results) -> None:
    text = dot_text(build_priv_access_graph(results))
    edge_lines = [line for line in text.splitlines() if " -> " in line]

    assert len(edge_lines) == 6
    assert sum('style = "dashed"' in line for line in edge_lines) == 3


def test_dot_output_is_deterministic(results) -> None:
    graph = build_priv_access_graph(results)

    assert dot_text(graph) == dot_text(graph.copy())


def test_export_dot_writes_file(tmp_path: Path, results) -> None:
    destination = export_dot(build_vuln_graph(results), tmp_path / "out" / "vuln.dot")

    assert destination.read_text(encoding="utf-8").startswith("digraph {")


def test_to_networkx(results) -> None:
    nx_graph = to_networkx(build_priv_access_graph(results))

    assert nx_graph.number_of_nodes() == 5
    assert nx_graph.number_of_edges() == 6
    kinds = sorted(data["kind"] for _, _, data in nx_graph.edges(data=True))
    assert kinds == ["call"] * 3 + ["flow"] * 3
    assert nx_graph.nodes[NodeKey("use_secret")]["category"] == "private-access"
    assert nx_graph.nodes[NodeKey("use_secret")]["label"] == "use_secret"
    assert nx_graph.graph["roots"] == ["main"]


def test_export_graphml(tmp_path: Path, results) -> None:
    destination = export_graphml(build_vuln_graph(results), tmp_path / "vuln.graphml")

    loaded = nx.read_graphml(destination)
    assert loaded.number_of_nodes() == 3
    by_label = {data["label"]: data for _, data in loaded.nodes(data=True)}
    assert by_label["parse"]["cve"] == "CVE-2014-0001"


def test_keys_with_the_same_display_name_stay_distinct(tmp_path: Path) -> None:
    graph = CallGraph()
    graph.add_node(GraphNode("f <<s>>"))
    graph.add_node(GraphNode("f", sandbox="s"))

    assert to_networkx(graph).number_of_nodes() == 2
    loaded = nx.read_graphml(export_graphml(graph, tmp_path / "same.graphml"))
    assert sorted(loaded.nodes) == ["n0", "n1"]


def test_plot_call_graph(tmp_path: Path) -> None:
    graph = make_graph([("a", "b"), ("b", "c"), ("a", "c")], cve=["c"], flows=[("x", "c")])

    output = plot_call_graph(graph, tmp_path / "graph.png")

    assert output.exists()
    assert output.stat().st_size > 0


def test_plot_handles_cycles(tmp_path: Path) -> None:
    graph = make_graph([("a", "b"), ("b", "a")])

    assert plot_call_graph(graph, tmp_path / "cycle.png", title="cycle").exists()


def test_plot_rejects_empty_graph(tmp_path: Path) -> None:
    with pytest.raises(EmptyGraphError):
        plot_call_graph(CallGraph(), tmp_path / "empty.png")
