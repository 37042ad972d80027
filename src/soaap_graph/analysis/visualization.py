"""Visualization helpers for call graphs."""

from __future__ import annotations

from collections import Counter
from pathlib import Path

import matplotlib.pyplot as plt
import networkx as nx

from soaap_graph.analysis.callgraph import CallGraph, NodeKey
from soaap_graph.analysis.graph_export import classify, edge_width, to_networkx
from soaap_graph.errors import EmptyGraphError


def _subset_graph(graph: nx.MultiDiGraph, max_nodes: int | None) -> nx.MultiDiGraph:
    if max_nodes is None or graph.number_of_nodes() <= max_nodes:
        return graph

    degrees = sorted(graph.degree, key=lambda item: item[1], reverse=True)
    keep = {node for node, _ in degrees[:max_nodes]}
    return graph.subgraph(keep).copy()


def plot_call_graph(
    graph: CallGraph,
    output_path: Path,
    *,
    max_nodes: int | None = 200,
    show_labels: bool = True,
    title: str | None = None,
) -> Path:
    """
    Render a call graph to ``output_path`` using matplotlib.

    Nodes are coloured like the DOT export (vulnerable, mitigated, private
    access, sandboxed); flow edges are dashed and edge width grows with weight.
    Large graphs are cut down to the ``max_nodes`` best-connected nodes.
    """

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    nx_graph = _subset_graph(to_networkx(graph), max_nodes)
    if nx_graph.number_of_nodes() == 0:
        raise EmptyGraphError("Graph contains no nodes to visualize.")

    colours = {}
    for key, node in graph.nodes.items():
        colours[key] = classify(node).fillcolor[:7]
    node_colours = [colours[name] for name in nx_graph.nodes()]

    try:
        positions = nx.multipartite_layout(_with_layers(nx_graph), subset_key="layer", align="horizontal")
    except nx.NetworkXUnfeasible:
        positions = nx.spring_layout(nx_graph, seed=42, iterations=100)

    # parallel edges are drawn once, at their heaviest weight
    drawable = nx.DiGraph()
    drawable.add_nodes_from(nx_graph.nodes)

    plt.figure(figsize=(12, 12))
    for kind, style in (("call", "solid"), ("flow", "dashed")):
        heaviest: dict[tuple[NodeKey, NodeKey], int] = {}
        for u, v, data in nx_graph.edges(data=True):
            if data.get("kind") == kind:
                heaviest[(u, v)] = max(heaviest.get((u, v), 0), data["weight"])
        if heaviest:
            edges = sorted(heaviest)
            widths = [edge_width(heaviest[edge]) for edge in edges]
            nx.draw_networkx_edges(drawable, positions, edgelist=edges, width=widths, style=style, alpha=0.5)
    nx.draw_networkx_nodes(drawable, positions, node_color=node_colours, node_size=300, alpha=0.9)

    if show_labels and nx_graph.number_of_nodes() <= 150:
        labels = {name: data["label"] for name, data in nx_graph.nodes(data=True)}
        nx.draw_networkx_labels(drawable, positions, labels=labels, font_size=7)

    if title is None:
        summary = Counter(data.get("category", "plain") for _, data in nx_graph.nodes(data=True))
        title = ", ".join(f"{category}: {count} nodes" for category, count in sorted(summary.items()))

    plt.title(title)
    plt.axis("off")
    plt.tight_layout()
    plt.savefig(output_path, dpi=200)
    plt.close()
    return output_path


def _with_layers(graph: nx.MultiDiGraph) -> nx.MultiDiGraph:
    """Annotate each node with its topological generation (raises on cycles)."""

    layered = graph.copy()
    for depth, generation in enumerate(nx.topological_generations(layered)):
        for name in generation:
            layered.nodes[name]["layer"] = -depth
    return layered


__all__ = ["plot_call_graph"]
