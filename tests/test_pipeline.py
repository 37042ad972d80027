"""Tests for the analysis step mini-language."""

from __future__ import annotations

import pytest

from conftest import key, make_graph
from soaap_graph.analysis.callgraph import CallGraph, NodeKey
from soaap_graph.analysis.pipeline import apply_analysis, filter_leaves, select_leaves
from soaap_graph.analysis.results import Results
from soaap_graph.config import AnalysisConfig
from soaap_graph.errors import UnknownCategoryError, UnknownClauseError
from soaap_graph.pipelines.build_graph import build_graph, combine_graphs


def test_bare_name_and_plus_are_unions(results) -> None:
    bare = apply_analysis("vuln", CallGraph(), results)
    plus = apply_analysis("+vuln", CallGraph(), results)

    assert bare == plus
    assert bare.size() == (3, 2, 0)


def test_union_of_both_categories(results) -> None:
    graph = apply_analysis("vuln", CallGraph(), results)
    graph = apply_analysis("+privaccess", graph, results)

    # main -> helper exists once unsandboxed (vuln) and once in "sb" (privaccess)
    assert graph.size() == (6, 5, 3)


def test_intersection_step(results) -> None:
    graph = apply_analysis("vuln", CallGraph(), results)
    graph = apply_analysis("^privaccess", graph, results, depth=3)

    assert set(graph.nodes) == {NodeKey(n) for n in ("parse", "helper", "main", "use_secret", "read_input")}
    assert len(graph.flows) == 1


def test_add_intersecting_step(results) -> None:
    graph = apply_analysis("vuln", CallGraph(), results)
    graph = apply_analysis(".privaccess", graph, results, depth=1)

    # the two leaves share no caller within one hop
    assert graph.size() == (3, 2, 0)


def test_steps_report_progress(results) -> None:
    messages: list[str] = []
    apply_analysis("vuln", CallGraph(), results, report=messages.append)

    assert messages[0] == "Adding vuln"
    assert "'vuln': 3 nodes, 2 edges, 0 flows" in messages


def test_unknown_category(results) -> None:
    with pytest.raises(UnknownCategoryError):
        apply_analysis("^nothing", CallGraph(), results)
    with pytest.raises(ValueError):
        apply_analysis("", CallGraph(), results)


def test_select_leaves_clauses() -> None:
    graph = make_graph([("main", "free"), ("main", "malloc"), ("main", "read")])

    assert select_leaves(graph, "*") == graph.leaves
    assert select_leaves(graph, "+alloc") == {key("malloc")}
    assert select_leaves(graph, "+free:+read") == {key("free"), key("read")}
    assert select_leaves(graph, "*:-free:-read") == {key("malloc")}
    assert select_leaves(graph, "-free") == set()


def test_select_leaves_rejects_bad_clauses() -> None:
    graph = make_graph([("a", "b")])

    for clauses in ("b", "", "*::+b", "+("):
        with pytest.raises(UnknownClauseError):
            select_leaves(graph, clauses)


def test_filter_leaves_keeps_ancestors_and_sources() -> None:
    graph = make_graph([("main", "free"), ("main", "use"), ("helper", "use")], flows=[("origin", "use")])

    filtered = filter_leaves(graph, "+use")

    assert set(filtered.nodes) == {key("main"), key("use"), key("helper"), key("origin")}
    assert filtered.leaves == {key("use")}
    filtered.check_invariants()


def test_filter_step(results) -> None:
    graph = apply_analysis("privaccess", CallGraph(), results)
    graph = apply_analysis(":*:-use_secret", graph, results)

    assert len(graph) == 0


def test_build_graph_runs_every_step(results) -> None:
    config = AnalysisConfig.from_options("vuln, :+parse", simplify=True)
    messages: list[str] = []

    graph = build_graph(results, config, messages.append)

    # main -> helper -> parse simplifies to one edge
    assert set(graph.nodes) == {NodeKey("main"), NodeKey("parse")}
    assert sum(graph.calls.values()) == 2
    assert messages[-1].startswith("Simplified graph has")


def test_flow_edges_survive_simplification(results) -> None:
    config = AnalysisConfig(analyses=["vuln", "+privaccess", ":+parse"], simplify=True)

    graph = build_graph(results, config)

    # the data flow into helper keeps it from being collapsed
    assert set(graph.nodes) == {NodeKey("main"), NodeKey("helper"), NodeKey("parse")}
    assert len(graph.flows) == 1


def test_build_graph_honours_progress_notifications(results) -> None:
    tripled = Results(vulnerabilities=results.vulnerabilities * 3, traces=results.traces)

    def processed(config: AnalysisConfig) -> list[str]:
        messages: list[str] = []
        build_graph(tripled, config, messages.append)
        return [message for message in messages if message.startswith("Processed")]

    assert len(processed(AnalysisConfig())) == 3
    assert processed(AnalysisConfig(progress_notifications=1)) == ["Processed 3/3 vulnerability findings"]


def test_combine_graphs() -> None:
    left = make_graph([("a", "b")])
    right = make_graph([("a", "b"), ("b", "c")])

    union = combine_graphs([left, right], "union", 3)
    assert union.size() == (3, 2, 0)

    with pytest.raises(ValueError):
        combine_graphs([left, right], "xor", 3)
    with pytest.raises(ValueError):
        combine_graphs([], "union", 3)
