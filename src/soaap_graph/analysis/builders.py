"""Turn parsed SOAAP findings into call graphs."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Sequence

from soaap_graph.analysis.callgraph import Call, CallGraph, GraphNode
from soaap_graph.analysis.results import (
    CallSite,
    CallTrace,
    PrivateAccess,
    Results,
    Vulnerability,
    resolve_trace,
)
from soaap_graph.analysis.strset import StringSet
from soaap_graph.config import AnalysisConfig
from soaap_graph.errors import UnknownCategoryError

LOGGER = logging.getLogger(__name__)

ProgressFn = Callable[[str], None]
GraphExtractor = Callable[..., CallGraph]


def _site_node(call_site: CallSite, sandbox: str) -> GraphNode:
    return GraphNode(
        function=call_site.function,
        library=call_site.location.library,
        sandbox=sandbox,
    )


class TraceChainBuilder:
    """
    Builds the graph fragment for a single finding.

    The fragment is assembled in its own :class:`CallGraph`; the caller folds
    it into an accumulator only once the whole trace has resolved, so a bad
    trace never leaves a half-built finding behind.
    """

    def __init__(self, traces: Sequence[CallTrace], *, sandbox: str = "", node_sandbox: str = "") -> None:
        self.traces = traces
        self.sandbox = sandbox
        self.node_sandbox = node_sandbox
        self.graph = CallGraph()

    def add_top(self, call_site: CallSite, *, cve: Sequence[str] = (), owners: Sequence[str] = ()) -> GraphNode:
        node = _site_node(call_site, self.node_sandbox)
        node.cve = StringSet(cve)
        node.owners = StringSet(owners)
        return self.graph.add_node(node)

    def add_chain(self, callee: GraphNode, trace_index: int, *, flow: bool = False) -> None:
        """Link every call site of the resolved trace above ``callee``, innermost first."""

        sites = list(resolve_trace(trace_index, self.traces))
        self.link(callee, sites, flow=flow)

    def link(self, callee: GraphNode, sites: Sequence[CallSite], *, flow: bool = False) -> None:
        add_edge = self.graph.add_flow if flow else self.graph.add_call
        for site in sites:
            caller = self.graph.add_node(_site_node(site, self.node_sandbox))
            add_edge(Call(caller.key, callee.key, site.location, self.sandbox))
            callee = caller


def vuln_chain(vuln: Vulnerability, traces: Sequence[CallTrace]) -> CallGraph:
    """Graph fragment for one vulnerability: the warning site plus its trace."""

    builder = TraceChainBuilder(traces, sandbox=vuln.sandbox, node_sandbox=vuln.sandbox)
    top = builder.add_top(vuln.call_site, cve=vuln.cve)
    builder.add_chain(top, vuln.trace)
    return builder.graph


def priv_access_chain(access: PrivateAccess, traces: Sequence[CallTrace]) -> CallGraph:
    """
    Graph fragment for one private-data access.

    Call edges lead from the access site back to its root; each data source
    adds a chain of flow edges from the data's origin to the access site.
    """

    builder = TraceChainBuilder(traces, sandbox=access.sandbox)
    top = builder.add_top(access.call_site, owners=access.owners)
    builder.add_chain(top, access.trace)
    for source in access.sources:
        sites = list(resolve_trace(source.trace, traces))
        if source.call_site.function:
            sites.insert(0, source.call_site)
        builder.link(top, sites, flow=True)
    return builder.graph


def _build(
    findings: Sequence,
    chain: Callable[[object, Sequence[CallTrace]], CallGraph],
    traces: Sequence[CallTrace],
    label: str,
    report: Optional[ProgressFn],
    config: Optional[AnalysisConfig],
) -> CallGraph:
    config = config or AnalysisConfig()
    interval = config.progress_interval(len(findings))
    graph = CallGraph()
    if report:
        report(f"Building {label} graph from {len(findings)} findings")

    for count, finding in enumerate(findings, start=1):
        graph.union(chain(finding, traces))
        if report and count % interval == 0:
            report(f"Processed {count}/{len(findings)} {label} findings")

    nodes, calls, flows = graph.size()
    LOGGER.debug("%s graph: %d nodes, %d calls, %d flows", label, nodes, calls, flows)
    return graph


def build_vuln_graph(
    results: Results,
    report: Optional[ProgressFn] = None,
    *,
    config: Optional[AnalysisConfig] = None,
) -> CallGraph:
    """Union of the call chains leading to every vulnerability warning."""

    return _build(results.vulnerabilities, vuln_chain, results.traces, "vulnerability", report, config)


def build_priv_access_graph(
    results: Results,
    report: Optional[ProgressFn] = None,
    *,
    config: Optional[AnalysisConfig] = None,
) -> CallGraph:
    """Union of the call and data-flow chains around every private-data access."""

    return _build(results.private_accesses, priv_access_chain, results.traces, "private access", report, config)


GRAPH_EXTRACTORS: Dict[str, GraphExtractor] = {
    "vuln": build_vuln_graph,
    "privaccess": build_priv_access_graph,
}


def extract_graph(
    name: str,
    results: Results,
    report: Optional[ProgressFn] = None,
    *,
    config: Optional[AnalysisConfig] = None,
) -> CallGraph:
    try:
        extractor = GRAPH_EXTRACTORS[name]
    except KeyError:
        raise UnknownCategoryError(name, sorted(GRAPH_EXTRACTORS)) from None
    return extractor(results, report, config=config)


__all__ = [
    "GRAPH_EXTRACTORS",
    "TraceChainBuilder",
    "build_priv_access_graph",
    "build_vuln_graph",
    "extract_graph",
    "priv_access_chain",
    "vuln_chain",
]
