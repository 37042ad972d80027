"""Export call graphs to GraphViz DOT, networkx and GraphML."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, TextIO

import networkx as nx

from soaap_graph.analysis.callgraph import Call, CallGraph, GraphNode, NodeKey

DOT_HEADER = """
	node [ fontname = "Inconsolata" ];
	edge [ fontname = "Avenir" ];

	labeljust = "l";
	labelloc = "b";
	rankdir = "BT";
"""


@dataclass(frozen=True, slots=True)
class NodeStyle:
    category: str
    shape: str
    fillcolor: str
    style: str = "filled"


MITIGATED_STYLE = NodeStyle("mitigated", "octagon", "#ffff66cc")
VULNERABLE_STYLE = NodeStyle("vulnerable", "doubleoctagon", "#ff9999cc")
PRIVATE_STYLE = NodeStyle("private-access", "invhouse", "#ff99cccc")
SANDBOXED_STYLE = NodeStyle("sandboxed", "ellipse", "#99ff9999", "dashed,filled")
DEFAULT_STYLE = NodeStyle("plain", "ellipse", "#cccccccc")


def classify(node: GraphNode) -> NodeStyle:
    """Pick the presentation class of a node from its CVE, owner and sandbox tags."""

    if node.cve and node.sandbox:
        return MITIGATED_STYLE
    if node.cve:
        return VULNERABLE_STYLE
    if node.owners:
        return PRIVATE_STYLE
    if node.sandbox:
        return SANDBOXED_STYLE
    return DEFAULT_STYLE


def node_label(node: GraphNode) -> str:
    lines = [node.function]
    if node.sandbox:
        lines.append(f"<<{node.sandbox}>>")
    lines.extend(sorted(node.cve.transform_each("[[{}]]")))
    lines.extend(sorted(node.owners.transform_each("{{{}}}")))
    return "\n".join(lines)


def edge_width(weight: int) -> float:
    return 1 + math.log(weight)


def _quote(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def _attrs(values: Dict[str, object]) -> str:
    parts = []
    for name, value in values.items():
        if isinstance(value, float):
            parts.append(f"{name} = {value:.3f}")
        else:
            parts.append(f"{name} = {_quote(str(value))}")
    return "[ " + ", ".join(parts) + " ]"


def write_dot(graph: CallGraph, out: TextIO) -> None:
    """Write ``graph`` as a GraphViz digraph to ``out``; output order is deterministic."""

    ids: Dict[NodeKey, str] = {key: f"n{index}" for index, key in enumerate(sorted(graph.nodes))}

    out.write("digraph {\n")
    out.write(DOT_HEADER)
    out.write("\n")
    for key, node_id in ids.items():
        node = graph.nodes[key]
        style = classify(node)
        attrs = {"label": node_label(node), "shape": style.shape, "style": style.style, "fillcolor": style.fillcolor}
        out.write(f"\t{node_id} {_attrs(attrs)};\n")

    def sort_key(item: tuple[Call, int]) -> tuple:
        call = item[0]
        return (call.caller, call.callee, call.location.file, call.location.line, call.sandbox)

    for weights, dashed in ((graph.calls, False), (graph.flows, True)):
        for call, weight in sorted(weights.items(), key=sort_key):
            attrs: Dict[str, object] = {"label": str(call.location), "penwidth": edge_width(weight), "weight": str(weight)}
            if dashed:
                attrs["style"] = "dashed"
            out.write(f"\t{ids[call.caller]} -> {ids[call.callee]} {_attrs(attrs)};\n")
    out.write("}\n")


def export_dot(graph: CallGraph, destination: Path) -> Path:
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    with destination.open("w", encoding="utf-8") as handle:
        write_dot(graph, handle)
    return destination


def to_networkx(graph: CallGraph) -> nx.MultiDiGraph:
    """
    Convert to a networkx multigraph keyed by :class:`NodeKey`.

    The display name is kept as the ``label`` attribute only, since distinct
    keys can render identically. Call and flow edges are distinguished by ``kind``.
    """

    result = nx.MultiDiGraph(roots=sorted(str(k) for k in graph.roots), leaves=sorted(str(k) for k in graph.leaves))
    for key, node in graph.nodes.items():
        result.add_node(
            key,
            label=str(key),
            function=node.function,
            library=node.library or None,
            sandbox=node.sandbox or None,
            cve=sorted(node.cve),
            owners=sorted(node.owners),
            category=classify(node).category,
        )
    for weights, kind in ((graph.calls, "call"), (graph.flows, "flow")):
        for call, weight in weights.items():
            result.add_edge(
                call.caller,
                call.callee,
                kind=kind,
                weight=weight,
                location=str(call.location) or None,
                sandbox=call.sandbox or None,
            )
    return result


def _sanitize_for_graphml(graph: nx.MultiDiGraph) -> nx.MultiDiGraph:
    """Return a copy of the graph with GraphML-friendly attributes."""

    def sanitize(mapping):
        for key in list(mapping.keys()):
            value = mapping[key]
            if value is None:
                # remove nulls for GraphML compatibility
                del mapping[key]
                continue
            if isinstance(value, (list, tuple, set)):
                mapping[key] = ",".join(str(item) for item in value)
            elif isinstance(value, dict):
                mapping[key] = json.dumps(value)

    copy = graph.copy()
    sanitize(copy.graph)
    for _, data in copy.nodes(data=True):
        sanitize(data)
    for _, _, data in copy.edges(data=True):
        sanitize(data)
    return copy


def export_graphml(graph: CallGraph, destination: Path) -> Path:
    """Write GraphML with the same synthetic ``n0..`` node ids as the DOT output."""

    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    ids = {key: f"n{index}" for index, key in enumerate(sorted(graph.nodes))}
    exported = nx.relabel_nodes(to_networkx(graph), ids)
    nx.write_graphml(_sanitize_for_graphml(exported), destination)
    return destination


__all__ = [
    "NodeStyle",
    "classify",
    "edge_width",
    "export_dot",
    "export_graphml",
    "node_label",
    "to_networkx",
    "write_dot",
]
