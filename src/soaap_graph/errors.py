"""Exception types raised by the graph engine and its input/output layers."""

from __future__ import annotations


class SoaapGraphError(Exception):
    """Base class for every failure reported by this package."""


class ParseError(SoaapGraphError, ValueError):
    """Malformed SOAAP input or an unusable trace reference."""


class TraceIndexError(ParseError, IndexError):
    """A trace index (or trace continuation) lies outside the trace collection."""

    def __init__(self, index: int, count: int, *, referrer: int | None = None) -> None:
        self.index = index
        self.count = count
        self.referrer = referrer
        if referrer is None:
            message = f"trace {index} requested but only {count} traces are available"
        else:
            message = f"trace {referrer} references {index} but we only have {count} traces"
        super().__init__(message)


class TraceCycleError(ParseError):
    """Trace continuations loop back onto an already-visited trace."""

    def __init__(self, chain: list[int]) -> None:
        self.chain = chain
        super().__init__("cyclic trace continuation: " + " -> ".join(str(i) for i in chain))


class UnknownCategoryError(SoaapGraphError, KeyError):
    """No graph extractor is registered under the requested name."""

    def __init__(self, name: str, known: list[str]) -> None:
        self.name = name
        self.known = known
        super().__init__(name)

    def __str__(self) -> str:
        return f"unknown analysis '{self.name}' (expected one of: {', '.join(self.known)})"


class UnknownClauseError(SoaapGraphError, ValueError):
    """A leaf-filter clause is neither '*', '+regex' nor '-regex'."""

    def __init__(self, clause: str, reason: str | None = None) -> None:
        self.clause = clause
        message = f"unknown filter clause '{clause}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class GraphError(SoaapGraphError):
    """A CallGraph operation met a state it cannot represent."""


class NameCollisionError(GraphError):
    """Two nodes share a key but disagree about their identity."""


class DanglingEdgeError(GraphError):
    """An edge refers to a node that is not part of the graph."""


class GraphInvariantError(GraphError):
    """Cached roots, leaves or adjacency disagree with the edge maps."""


class EmptyGraphError(GraphError, ValueError):
    """An operation that needs at least one node was given an empty graph."""


class EncodingError(SoaapGraphError):
    """A binary graph or results stream could not be written or read back."""


__all__ = [
    "DanglingEdgeError",
    "EmptyGraphError",
    "EncodingError",
    "GraphError",
    "GraphInvariantError",
    "NameCollisionError",
    "ParseError",
    "SoaapGraphError",
    "TraceCycleError",
    "TraceIndexError",
    "UnknownCategoryError",
    "UnknownClauseError",
]
