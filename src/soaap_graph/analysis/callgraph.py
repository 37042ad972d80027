"""In-memory call graph with weighted call and data-flow edges.

Nodes are keyed by :class:`NodeKey` (function, sandbox). Edge weights live in
two maps, ``calls`` and ``flows``; each node additionally caches the edges
that touch it so that traversals do not need to scan the maps. Roots (no
incoming call or flow) and leaves (no outgoing call or flow) are maintained
incrementally by the mutating operations and can be audited with
:meth:`CallGraph.check_invariants`.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, Set

from soaap_graph.analysis.results import SourceLocation
from soaap_graph.analysis.strset import StringSet
from soaap_graph.errors import DanglingEdgeError, GraphInvariantError, NameCollisionError

LOGGER = logging.getLogger(__name__)

UNBOUNDED = -1


class NodeKey(NamedTuple):
    function: str
    sandbox: str = ""

    def __str__(self) -> str:
        if self.sandbox:
            return f"{self.function} <<{self.sandbox}>>"
        return self.function


@dataclass(frozen=True, slots=True)
class Call:
    """A caller -> callee relationship observed at ``location``."""

    caller: NodeKey
    callee: NodeKey
    location: SourceLocation = field(default_factory=SourceLocation)
    sandbox: str = ""

    def __str__(self) -> str:
        return f"{self.caller} -> {self.callee}"


@dataclass(slots=True)
class GraphNode:
    function: str
    library: str = ""
    sandbox: str = ""
    cve: StringSet = field(default_factory=StringSet)
    owners: StringSet = field(default_factory=StringSet)
    callers: List[Call] = field(default_factory=list)
    callees: List[Call] = field(default_factory=list)
    flows_in: List[Call] = field(default_factory=list)
    flows_out: List[Call] = field(default_factory=list)

    @property
    def key(self) -> NodeKey:
        return NodeKey(self.function, self.sandbox)

    @property
    def has_incoming(self) -> bool:
        return bool(self.callers or self.flows_in)

    @property
    def has_outgoing(self) -> bool:
        return bool(self.callees or self.flows_out)

    def detached(self) -> "GraphNode":
        """Copy of the node's attributes without any edges."""

        return GraphNode(
            function=self.function,
            library=self.library,
            sandbox=self.sandbox,
            cve=self.cve.copy(),
            owners=self.owners.copy(),
        )

    def merge(self, other: "GraphNode") -> None:
        """Fold ``other``'s attributes into this node; existing values win."""

        if not self.library:
            self.library = other.library
        self.cve.update(other.cve)
        self.owners.update(other.owners)


class EdgeSelector(Enum):
    """Which relation :meth:`CallGraph.collect_nodes` walks."""

    CALLERS = "callers"
    ALL_INPUTS = "all-inputs"
    CALLEES = "callees"
    ALL_OUTPUTS = "all-outputs"

    def neighbours(self, node: GraphNode) -> Iterator[NodeKey]:
        if self in (EdgeSelector.CALLERS, EdgeSelector.ALL_INPUTS):
            for call in node.callers:
                yield call.caller
            if self is EdgeSelector.ALL_INPUTS:
                for flow in node.flows_in:
                    yield flow.caller
        else:
            for call in node.callees:
                yield call.callee
            if self is EdgeSelector.ALL_OUTPUTS:
                for flow in node.flows_out:
                    yield flow.callee


class CallGraph:
    """Weighted call/data-flow graph over :class:`GraphNode` values."""

    def __init__(self) -> None:
        self.nodes: Dict[NodeKey, GraphNode] = {}
        self.roots: Set[NodeKey] = set()
        self.leaves: Set[NodeKey] = set()
        self.calls: Dict[Call, int] = {}
        self.flows: Dict[Call, int] = {}

    def __contains__(self, key: object) -> bool:
        return key in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def __repr__(self) -> str:
        nodes, calls, flows = self.size()
        return f"<CallGraph nodes={nodes} calls={calls} flows={flows}>"

    def __eq__(self, other: object) -> bool:
        # Node attributes and weighted edges; adjacency order is irrelevant.
        if not isinstance(other, CallGraph):
            return NotImplemented
        if self.nodes.keys() != other.nodes.keys():
            return False
        for key, node in self.nodes.items():
            theirs = other.nodes[key]
            if (node.library, node.cve, node.owners) != (theirs.library, theirs.cve, theirs.owners):
                return False
        return self.calls == other.calls and self.flows == other.flows

    __hash__ = None  # type: ignore[assignment]

    # -- mutation ---------------------------------------------------------

    def add_node(self, node: GraphNode) -> GraphNode:
        """
        Insert ``node`` or merge it into the existing node with the same key.

        Only attributes are taken from ``node``; edges are owned by the graph
        and enter through :meth:`add_call` / :meth:`add_flow`.
        """

        key = node.key
        existing = self.nodes.get(key)
        if existing is None:
            existing = node.detached()
            self.nodes[key] = existing
        else:
            existing.merge(node)
        self._refresh_membership(key, existing)
        return existing

    def add_call(self, call: Call, weight: int = 1) -> None:
        self._add_edge(call, weight, self.calls, "callees", "callers")

    def add_flow(self, call: Call, weight: int = 1) -> None:
        self._add_edge(call, weight, self.flows, "flows_out", "flows_in")

    def _add_edge(self, call: Call, weight: int, weights: Dict[Call, int], outgoing: str, incoming: str) -> None:
        if weight < 1:
            raise ValueError(f"edge weight must be positive, got {weight}")
        caller = self.nodes.get(call.caller)
        callee = self.nodes.get(call.callee)
        if caller is None or callee is None:
            missing = call.caller if caller is None else call.callee
            raise DanglingEdgeError(f"edge {call} refers to unknown node '{missing}'")

        weights[call] = weights.get(call, 0) + weight

        out_list: List[Call] = getattr(caller, outgoing)
        if call not in out_list:
            out_list.append(call)
        in_list: List[Call] = getattr(callee, incoming)
        if call not in in_list:
            in_list.append(call)

        self.roots.discard(call.callee)
        self.leaves.discard(call.caller)

    def _refresh_membership(self, key: NodeKey, node: GraphNode) -> None:
        if node.has_incoming:
            self.roots.discard(key)
        else:
            self.roots.add(key)
        if node.has_outgoing:
            self.leaves.discard(key)
        else:
            self.leaves.add(key)

    # -- combination ------------------------------------------------------

    def union(self, other: "CallGraph") -> "CallGraph":
        """Merge ``other`` into this graph, summing the weights of shared edges."""

        for key, node in other.nodes.items():
            if node.key != key:
                raise NameCollisionError(f"node stored as '{key}' identifies itself as '{node.key}'")
        for node in other.nodes.values():
            self.add_node(node)
        for call, weight in other.calls.items():
            self.add_call(call, weight)
        for flow, weight in other.flows.items():
            self.add_flow(flow, weight)
        return self

    def collect_nodes(
        self,
        root: NodeKey,
        selector: EdgeSelector = EdgeSelector.CALLERS,
        depth: int = UNBOUNDED,
    ) -> Set[NodeKey]:
        """Keys reachable from ``root`` within ``depth`` hops of ``selector`` (root included)."""

        if root not in self.nodes:
            raise KeyError(root)
        found: Set[NodeKey] = {root}
        frontier = [root]
        hops = 0
        while frontier and (depth == UNBOUNDED or hops < depth):
            discovered: List[NodeKey] = []
            for key in frontier:
                for neighbour in selector.neighbours(self.nodes[key]):
                    if neighbour not in found:
                        found.add(neighbour)
                        discovered.append(neighbour)
            frontier = discovered
            hops += 1
        return found

    def leaf_ancestors(self, depth: int) -> Set[NodeKey]:
        """Union of the ``depth``-bounded caller sets of every leaf."""

        ancestors: Set[NodeKey] = set()
        for leaf in self.leaves:
            ancestors |= self.collect_nodes(leaf, EdgeSelector.CALLERS, depth)
        return ancestors

    def _proximate_nodes(self, ancestors: Set[NodeKey], depth: int, keep_backtrace: bool) -> Set[NodeKey]:
        keep: Set[NodeKey] = set()
        for leaf in self.leaves:
            nearby = self.collect_nodes(leaf, EdgeSelector.CALLERS, depth)
            if nearby.isdisjoint(ancestors):
                continue
            if keep_backtrace:
                nearby = self.collect_nodes(leaf, EdgeSelector.CALLERS, UNBOUNDED)
            keep |= nearby
        return keep

    def add_intersecting(self, other: "CallGraph", depth: int) -> "CallGraph":
        """
        Add the parts of ``other`` whose leaves are close to this graph's leaves.

        A leaf of ``other`` qualifies when its ``depth``-bounded caller set
        shares a node with the ``depth``-bounded caller sets of this graph's
        leaves; the qualifying caller sets are copied in with their edges.
        """

        keep = other._proximate_nodes(self.leaf_ancestors(depth), depth, keep_backtrace=False)
        LOGGER.debug("add_intersecting(depth=%d) keeps %d of %d nodes", depth, len(keep), len(other.nodes))
        for key in keep:
            self.add_node(other.nodes[key])
        for call, weight in other.calls.items():
            if call.caller in keep and call.callee in keep:
                self.add_call(call, weight)
        for flow, weight in other.flows.items():
            if flow.caller in keep and flow.callee in keep:
                self.add_flow(flow, weight)
        return self

    def intersect(self, other: "CallGraph", depth: int, keep_backtrace: bool = True) -> "CallGraph":
        """
        Return a new graph holding the leaf-proximate parts of both graphs.

        The proximity test runs in both directions. With ``keep_backtrace``
        a qualifying leaf contributes its whole caller chain rather than just
        the ``depth``-bounded prefix. Edge weights are copied; an edge present
        on both sides keeps the larger of its two weights.
        """

        keep_self = self._proximate_nodes(other.leaf_ancestors(depth), depth, keep_backtrace)
        keep_other = other._proximate_nodes(self.leaf_ancestors(depth), depth, keep_backtrace)

        result = CallGraph()
        for graph, keep in ((self, keep_self), (other, keep_other)):
            for key in keep:
                result.add_node(graph.nodes[key])
        for graph, keep in ((self, keep_self), (other, keep_other)):
            for call, weight in graph.calls.items():
                if call.caller in keep and call.callee in keep:
                    result._copy_edge(call, weight, flow=False)
            for flow, weight in graph.flows.items():
                if flow.caller in keep and flow.callee in keep:
                    result._copy_edge(flow, weight, flow=True)
        return result

    def _copy_edge(self, call: Call, weight: int, *, flow: bool) -> None:
        weights = self.flows if flow else self.calls
        current = weights.get(call, 0)
        if weight <= current:
            return
        if flow:
            self.add_flow(call, weight - current)
        else:
            self.add_call(call, weight - current)

    def subgraph(self, keys: Iterable[NodeKey]) -> "CallGraph":
        """Induced subgraph over ``keys``, weights copied."""

        keep = {key for key in keys if key in self.nodes}
        result = CallGraph()
        for key in keep:
            result.add_node(self.nodes[key])
        for call, weight in self.calls.items():
            if call.caller in keep and call.callee in keep:
                result.add_call(call, weight)
        for flow, weight in self.flows.items():
            if flow.caller in keep and flow.callee in keep:
                result.add_flow(flow, weight)
        return result

    def copy(self) -> "CallGraph":
        return self.subgraph(self.nodes)

    # -- simplification ---------------------------------------------------

    def _is_interesting(self, node: GraphNode) -> bool:
        return (
            len(node.callers) > 1
            or len(node.callees) != 1
            or bool(node.cve)
            or bool(node.flows_in or node.flows_out)
        )

    def _walk_chain(self, first: Call) -> tuple[NodeKey, int]:
        """Follow ``first`` through uninteresting nodes; return the stop node and summed weight."""

        weight = self.calls[first]
        current = first.callee
        seen = {first.caller}
        while current not in seen:
            node = self.nodes[current]
            if self._is_interesting(node):
                break
            seen.add(current)
            step = node.callees[0]
            weight += self.calls[step]
            current = step.callee
        return current, weight

    def simplified(self) -> "CallGraph":
        """
        Collapse uninteresting linear call chains into single weighted edges.

        A node is interesting when it has more than one caller, a number of
        callees other than one, a CVE, or any data-flow edge. Starting from
        every root, each outgoing call is followed until the next interesting
        node and replaced by one edge carrying the summed weight and the
        location of the first call. Flow edges are kept as they are. Nodes
        that cannot be reached from a root are dropped.

        Parallel chains that collapse onto the same edge merge, which can
        leave a join node with a single caller; passes repeat until no node
        is removed, so the result is a fixed point.
        """

        result = self._collapse_chains()
        while True:
            again = result._collapse_chains()
            if len(again) == len(result):
                return result
            result = again

    def _collapse_chains(self) -> "CallGraph":
        result = CallGraph()
        pending = deque(sorted(self.roots))
        visited: Set[NodeKey] = set(pending)
        for key in pending:
            result.add_node(self.nodes[key])

        while pending:
            start = pending.popleft()
            node = self.nodes[start]
            edges: List[tuple[Call, int, bool]] = []
            for call in node.callees:
                end, weight = self._walk_chain(call)
                edges.append((Call(start, end, call.location, call.sandbox), weight, False))
            for flow in node.flows_out:
                edges.append((flow, self.flows[flow], True))

            for edge, weight, is_flow in edges:
                result.add_node(self.nodes[edge.callee])
                if is_flow:
                    result.add_flow(edge, weight)
                else:
                    result.add_call(edge, weight)
                if edge.callee not in visited:
                    visited.add(edge.callee)
                    pending.append(edge.callee)
        return result

    # -- inspection -------------------------------------------------------

    def size(self) -> tuple[int, int, int]:
        return len(self.nodes), len(self.calls), len(self.flows)

    def node(self, key: NodeKey) -> Optional[GraphNode]:
        return self.nodes.get(key)

    def rebuild_adjacency(self) -> None:
        """Recompute every node's edge lists, roots and leaves from the edge maps."""

        for node in self.nodes.values():
            node.callers.clear()
            node.callees.clear()
            node.flows_in.clear()
            node.flows_out.clear()
        for weights, outgoing, incoming in ((self.calls, "callees", "callers"), (self.flows, "flows_out", "flows_in")):
            for call in weights:
                caller = self.nodes.get(call.caller)
                callee = self.nodes.get(call.callee)
                if caller is None or callee is None:
                    raise DanglingEdgeError(f"edge {call} refers to a missing node")
                getattr(caller, outgoing).append(call)
                getattr(callee, incoming).append(call)
        self.roots = {key for key, node in self.nodes.items() if not node.has_incoming}
        self.leaves = {key for key, node in self.nodes.items() if not node.has_outgoing}

    def check_invariants(self) -> None:
        """Raise :class:`GraphInvariantError` if cached state disagrees with the edge maps."""

        for key, node in self.nodes.items():
            if node.key != key:
                raise GraphInvariantError(f"node stored as '{key}' identifies itself as '{node.key}'")

        expected: Dict[NodeKey, Dict[str, Set[Call]]] = {
            key: {"callers": set(), "callees": set(), "flows_in": set(), "flows_out": set()} for key in self.nodes
        }
        for weights, outgoing, incoming in ((self.calls, "callees", "callers"), (self.flows, "flows_out", "flows_in")):
            for call, weight in weights.items():
                if weight < 1:
                    raise GraphInvariantError(f"edge {call} has weight {weight}")
                if call.caller not in self.nodes or call.callee not in self.nodes:
                    raise GraphInvariantError(f"dangling edge detected: {call}")
                expected[call.caller][outgoing].add(call)
                expected[call.callee][incoming].add(call)

        for key, node in self.nodes.items():
            for attr, edges in expected[key].items():
                cached = getattr(node, attr)
                if len(cached) != len(edges) or set(cached) != edges:
                    raise GraphInvariantError(f"node '{key}' has stale {attr} list")

        roots = {key for key, node in self.nodes.items() if not node.has_incoming}
        leaves = {key for key, node in self.nodes.items() if not node.has_outgoing}
        if roots != self.roots:
            raise GraphInvariantError("root set does not match the edge maps")
        if leaves != self.leaves:
            raise GraphInvariantError("leaf set does not match the edge maps")


__all__ = [
    "Call",
    "CallGraph",
    "EdgeSelector",
    "GraphNode",
    "NodeKey",
    "UNBOUNDED",
]
