"""Shared fixtures: a small SOAAP report and hand-built graphs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Tuple

import pytest

from soaap_graph.analysis.callgraph import Call, CallGraph, GraphNode, NodeKey
from soaap_graph.analysis.results import SourceLocation
from soaap_graph.analysis.strset import StringSet
from soaap_graph.io.soaap_json import parse_results


def _site(function: str, file: str, line: int) -> dict:
    return {"function": function, "location": {"file": file, "line": line}}


SAMPLE_REPORT = {
    "soaap": {
        "vulnerability_warning": [
            {
                "function": "parse",
                "location": {"file": "parse.c", "line": 3, "library": "libparse"},
                "cve": [{"id": "CVE-2014-0001"}],
                "type": "vuln_code",
                "restricted_rights": False,
                "trace_ref": "!trace0",
            }
        ],
        "private_access": [
            {
                "function": "use_secret",
                "location": {"file": "secret.c", "line": 7},
                "sandbox_private": [{"name": "keys"}],
                "sandbox": "sb",
                "trace_ref": "!trace1",
                "sources": [
                    {"function": "load_key", "location": {"file": "key.c", "line": 2}, "trace_ref": "!trace0"}
                ],
            }
        ],
        "classified_warning": [],
        "!trace0": {"trace": [_site("helper", "lib.c", 10), _site("main", "main.c", 5)]},
        "!trace1": {"trace": [_site("read_input", "io.c", 20), {"trace_ref": "!trace0"}]},
    }
}


@pytest.fixture
def report_payload() -> dict:
    return json.loads(json.dumps(SAMPLE_REPORT))


@pytest.fixture
def results(report_payload):
    return parse_results(report_payload)


@pytest.fixture
def report_file(tmp_path: Path, report_payload: dict) -> Path:
    target = tmp_path / "report.json"
    with target.open("w", encoding="utf-8") as handle:
        json.dump(report_payload, handle)
    return target


def key(name: str) -> NodeKey:
    return NodeKey(name)


def make_graph(edges: Iterable[Tuple[str, str]], *, cve: Iterable[str] = (), flows: Iterable[Tuple[str, str]] = ()) -> CallGraph:
    """Build a graph from (caller, callee) name pairs; each edge gets its own source line."""

    cve = set(cve)
    graph = CallGraph()
    edges = list(edges)
    flows = list(flows)
    for caller, callee in edges + flows:
        for name in (caller, callee):
            graph.add_node(GraphNode(name, cve=StringSet([f"CVE-{name}"] if name in cve else [])))
    for line, (caller, callee) in enumerate(edges, start=1):
        graph.add_call(Call(key(caller), key(callee), SourceLocation(f"{caller}.c", line)))
    for line, (caller, callee) in enumerate(flows, start=100):
        graph.add_flow(Call(key(caller), key(callee), SourceLocation(f"{caller}.c", line)))
    return graph
