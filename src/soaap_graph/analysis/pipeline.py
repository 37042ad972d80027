"""Combinator language for extracting and combining graphs.

An analysis step is a string:

* ``+name`` (or bare ``name``): union with the ``name`` graph
* ``^name``: intersect (with backtrace) with the ``name`` graph
* ``.name``: add the parts of the ``name`` graph that intersect
* ``:filter``: filter leaves by ``filter``, a colon-separated clause list where
  ``*`` keeps every current leaf, ``+regex`` keeps matching leaves and
  ``-regex`` drops them. ``:*:-foo:-bar`` keeps all leaves except those
  matching ``foo`` or ``bar``; ``:+foo:+bar`` keeps only those.

where ``name`` is a key of :data:`GRAPH_EXTRACTORS` (``vuln``,
``privaccess``).
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional

from soaap_graph.analysis.builders import ProgressFn, extract_graph
from soaap_graph.analysis.callgraph import UNBOUNDED, CallGraph, EdgeSelector, NodeKey
from soaap_graph.analysis.results import Results
from soaap_graph.config import DEFAULT_INTERSECTION_DEPTH, AnalysisConfig
from soaap_graph.errors import UnknownClauseError

LOGGER = logging.getLogger(__name__)


def _silent(message: str) -> None:
    LOGGER.debug(message)


def select_leaves(graph: CallGraph, clauses: str) -> set[NodeKey]:
    """Apply the clauses of a leaf filter to ``graph``'s leaves."""

    kept: set[NodeKey] = set()
    for clause in clauses.split(":"):
        if clause == "*":
            kept |= graph.leaves
            continue
        if not clause or clause[0] not in "+-":
            raise UnknownClauseError(clause)
        try:
            pattern = re.compile(clause[1:])
        except re.error as exc:
            raise UnknownClauseError(clause, str(exc)) from exc

        matching = {leaf for leaf in graph.leaves if pattern.search(str(leaf))}
        if clause[0] == "+":
            kept |= matching
        else:
            kept -= matching
    return kept


def filter_leaves(graph: CallGraph, clauses: str) -> CallGraph:
    """Keep only the selected leaves and everything upstream of them."""

    keep: set[NodeKey] = set()
    for leaf in select_leaves(graph, clauses):
        keep |= graph.collect_nodes(leaf, EdgeSelector.ALL_INPUTS, UNBOUNDED)
    return graph.subgraph(keep)


def _extract_and_combine(
    name: str,
    results: Results,
    report: ProgressFn,
    combine: Callable[[CallGraph], CallGraph],
    config: Optional[AnalysisConfig],
) -> CallGraph:
    extracted = extract_graph(name, results, report, config=config)
    nodes, calls, flows = extracted.size()
    report(f"'{name}': {nodes} nodes, {calls} edges, {flows} flows")
    return combine(extracted)


def apply_analysis(
    step: str,
    graph: CallGraph,
    results: Results,
    depth: int = DEFAULT_INTERSECTION_DEPTH,
    report: Optional[ProgressFn] = None,
    *,
    config: Optional[AnalysisConfig] = None,
) -> CallGraph:
    """
    Apply one analysis step to the accumulator ``graph`` and return the new accumulator.

    Union and add-intersecting steps mutate ``graph`` in place; intersection
    and filtering return a new graph.
    """

    report = report or _silent
    if not step:
        raise ValueError("empty analysis step")

    sigil, name = step[0], step[1:]
    if sigil == "^":
        report(f"Intersecting (depth {depth}) with {name}")
        return _extract_and_combine(name, results, report, lambda g: graph.intersect(g, depth, True), config)
    if sigil == ".":
        report(f"Adding intersection (depth {depth}) with {name}")
        return _extract_and_combine(name, results, report, lambda g: graph.add_intersecting(g, depth), config)
    if sigil == ":":
        report(f"Filtering leaves with '{name}'")
        return filter_leaves(graph, name)
    if sigil != "+":
        name = step
    report(f"Adding {name}")
    return _extract_and_combine(name, results, report, graph.union, config)


__all__ = ["apply_analysis", "filter_leaves", "select_leaves"]
