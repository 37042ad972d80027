"""High-level orchestration for building and combining call graphs."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Protocol, Sequence

from soaap_graph.analysis.builders import ProgressFn
from soaap_graph.analysis.callgraph import CallGraph
from soaap_graph.analysis.pipeline import apply_analysis
from soaap_graph.analysis.results import Results
from soaap_graph.config import AnalysisConfig

LOGGER = logging.getLogger(__name__)


class GraphCombiner(Protocol):
    """Folds ``other`` into ``graph`` and returns the combined graph."""

    def __call__(self, graph: CallGraph, other: CallGraph, depth: int) -> CallGraph:
        ...


COMBINE_OPERATIONS: Dict[str, GraphCombiner] = {
    "union": lambda graph, other, depth: graph.union(other),
    "intersection": lambda graph, other, depth: graph.intersect(other, depth, True),
    "addintersecting": lambda graph, other, depth: graph.add_intersecting(other, depth),
}


def _describe(graph: CallGraph) -> str:
    nodes, calls, flows = graph.size()
    return f"{nodes} nodes, {calls} edges and {flows} flows"


def build_graph(
    results: Results,
    config: AnalysisConfig,
    report: Optional[ProgressFn] = None,
) -> CallGraph:
    """
    Entry point for turning parsed results into a single graph.

    Each configured analysis step is applied in order to an initially empty
    accumulator; the result is simplified when the configuration asks for it.
    """

    notify: Callable[[str], None] = report or LOGGER.info
    graph = CallGraph()
    for step in config.analyses:
        graph = apply_analysis(step, graph, results, config.intersection_depth, notify, config=config)

    if config.simplify:
        before = graph.size()
        graph = graph.simplified()
        LOGGER.debug("simplified %s -> %s", before, graph.size())
        notify(f"Simplified graph has {_describe(graph)}")
    return graph


def combine_graphs(graphs: Sequence[CallGraph], operation: str, depth: int) -> CallGraph:
    """Fold ``graphs`` left to right with the named combining operation."""

    try:
        combine = COMBINE_OPERATIONS[operation]
    except KeyError:
        raise ValueError(f"Unknown combining operation: '{operation}'") from None
    if not graphs:
        raise ValueError("at least one graph is required")

    graph = graphs[0]
    for other in graphs[1:]:
        graph = combine(graph, other, depth)
        LOGGER.debug("after %s: %s", operation, _describe(graph))
    return graph


__all__ = ["COMBINE_OPERATIONS", "GraphCombiner", "build_graph", "combine_graphs"]
