"""Tests for binary graph and results persistence."""

from __future__ import annotations

import io
import pickle
from pathlib import Path

import pytest

from conftest import make_graph
from soaap_graph.analysis.builders import build_priv_access_graph
from soaap_graph.errors import EncodingError
from soaap_graph.io.graph_store import (
    graph_from_bytes,
    graph_to_bytes,
    load_graph,
    load_results,
    read_graph,
    save_graph,
    save_results,
    write_results,
)


def test_graph_round_trip(results) -> None:
    graph = build_priv_access_graph(results)

    restored = graph_from_bytes(graph_to_bytes(graph))

    assert restored == graph
    assert restored.roots == graph.roots
    assert restored.leaves == graph.leaves
    restored.check_invariants()


def test_save_and_load_graph(tmp_path: Path) -> None:
    graph = make_graph([("a", "b"), ("b", "c")], cve=["c"], flows=[("x", "c")])

    destination = save_graph(graph, tmp_path / "nested" / "graph.bin")

    assert destination.exists()
    assert load_graph(destination) == graph


def test_save_and_load_results(tmp_path: Path, results) -> None:
    destination = save_results(results, tmp_path / "report.soaap.bin")

    assert load_results(destination) == results


def test_truncated_stream() -> None:
    data = graph_to_bytes(make_graph([("a", "b")]))

    with pytest.raises(EncodingError):
        graph_from_bytes(data[: len(data) // 2])
    with pytest.raises(EncodingError, match="truncated"):
        graph_from_bytes(b"")


def test_wrong_stream_kind(results) -> None:
    buffer = io.BytesIO()
    write_results(results, buffer)
    buffer.seek(0)

    with pytest.raises(EncodingError, match="expected a callgraph stream"):
        read_graph(buffer)


def test_foreign_classes_are_refused() -> None:
    data = pickle.dumps(("soaap-graph", "callgraph", 1)) + pickle.dumps(Path("elsewhere"))

    with pytest.raises(EncodingError):
        graph_from_bytes(data)


def test_not_a_graph_stream() -> None:
    with pytest.raises(EncodingError):
        graph_from_bytes(pickle.dumps(("something", "else")))
