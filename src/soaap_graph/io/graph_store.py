"""Binary persistence for call graphs and parsed results.

Streams are a sequence of pickled objects: a header tuple followed by the
payload. A graph payload is the node mapping (edge lists elided), the root
set, the leaf set, the call weights and the flow weights, in that order;
the edge lists are rebuilt from the weight maps on load. Loading only
resolves classes from this package and a few builtins.
"""

from __future__ import annotations

import io
import logging
import pickle
from pathlib import Path
from typing import Any, BinaryIO

from soaap_graph.analysis.callgraph import CallGraph
from soaap_graph.analysis.results import Results
from soaap_graph.errors import EncodingError, GraphError

LOGGER = logging.getLogger(__name__)

MAGIC = "soaap-graph"
FORMAT_VERSION = 1
GRAPH_KIND = "callgraph"
RESULTS_KIND = "results"

_ALLOWED_BUILTINS = {"set", "frozenset", "dict", "list", "tuple", "int", "str", "bool"}


class _RestrictedUnpickler(pickle.Unpickler):
    def find_class(self, module: str, name: str) -> Any:
        if module == "builtins" and name in _ALLOWED_BUILTINS:
            return super().find_class(module, name)
        if module.startswith("soaap_graph.analysis."):
            return super().find_class(module, name)
        raise EncodingError(f"refusing to load {module}.{name} from a graph stream")


def _dump(objects: list[Any], stream: BinaryIO) -> None:
    try:
        for obj in objects:
            pickle.dump(obj, stream, protocol=pickle.HIGHEST_PROTOCOL)
    except (pickle.PicklingError, TypeError, AttributeError, OSError) as exc:
        raise EncodingError(f"failed to encode: {exc}") from exc


def _load(stream: BinaryIO, kind: str, count: int) -> list[Any]:
    unpickler = _RestrictedUnpickler(stream)
    try:
        header = unpickler.load()
        if not (isinstance(header, tuple) and len(header) == 3 and header[0] == MAGIC):
            raise EncodingError("not a soaap-graph stream")
        if header[1] != kind:
            raise EncodingError(f"expected a {kind} stream, found {header[1]!r}")
        if header[2] != FORMAT_VERSION:
            raise EncodingError(f"unsupported format version {header[2]!r}")
        return [unpickler.load() for _ in range(count)]
    except EOFError as exc:
        raise EncodingError("truncated stream") from exc
    except (pickle.UnpicklingError, AttributeError, ImportError, IndexError, TypeError, ValueError) as exc:
        raise EncodingError(f"corrupt stream: {exc}") from exc


def _expect(value: Any, expected: type, what: str) -> Any:
    if not isinstance(value, expected):
        raise EncodingError(f"expected {what} to be {expected.__name__}, got {type(value).__name__}")
    return value


def write_graph(graph: CallGraph, stream: BinaryIO) -> None:
    nodes = {key: node.detached() for key, node in graph.nodes.items()}
    _dump(
        [(MAGIC, GRAPH_KIND, FORMAT_VERSION), nodes, set(graph.roots), set(graph.leaves), dict(graph.calls), dict(graph.flows)],
        stream,
    )


def read_graph(stream: BinaryIO) -> CallGraph:
    nodes, roots, leaves, calls, flows = _load(stream, GRAPH_KIND, 5)

    graph = CallGraph()
    graph.nodes = _expect(nodes, dict, "node mapping")
    graph.calls = _expect(calls, dict, "call weights")
    graph.flows = _expect(flows, dict, "flow weights")
    try:
        graph.rebuild_adjacency()
        if roots != graph.roots or leaves != graph.leaves:
            LOGGER.warning("Stored root/leaf sets disagree with the edges; using recomputed sets")
        graph.check_invariants()
    except (GraphError, AttributeError, TypeError) as exc:
        raise EncodingError(f"inconsistent graph stream: {exc}") from exc
    return graph


def write_results(results: Results, stream: BinaryIO) -> None:
    _dump([(MAGIC, RESULTS_KIND, FORMAT_VERSION), results], stream)


def read_results(stream: BinaryIO) -> Results:
    (results,) = _load(stream, RESULTS_KIND, 1)
    return _expect(results, Results, "results")


def save_graph(graph: CallGraph, destination: Path) -> Path:
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    with destination.open("wb") as handle:
        write_graph(graph, handle)
    return destination


def load_graph(path: Path) -> CallGraph:
    with Path(path).open("rb") as handle:
        return read_graph(handle)


def save_results(results: Results, destination: Path) -> Path:
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    with destination.open("wb") as handle:
        write_results(results, handle)
    return destination


def load_results(path: Path) -> Results:
    with Path(path).open("rb") as handle:
        return read_results(handle)


def graph_to_bytes(graph: CallGraph) -> bytes:
    buffer = io.BytesIO()
    write_graph(graph, buffer)
    return buffer.getvalue()


def graph_from_bytes(data: bytes) -> CallGraph:
    return read_graph(io.BytesIO(data))


__all__ = [
    "graph_from_bytes",
    "graph_to_bytes",
    "load_graph",
    "load_results",
    "read_graph",
    "read_results",
    "save_graph",
    "save_results",
    "write_graph",
    "write_results",
]
