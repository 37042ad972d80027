"""Records describing SOAAP findings and the call traces that justify them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Sequence

from soaap_graph.errors import TraceCycleError, TraceIndexError

TERMINAL = -1


@dataclass(frozen=True, slots=True)
class SourceLocation:
    file: str = ""
    line: int = 0
    library: str = ""

    @property
    def is_unknown(self) -> bool:
        """True for structural placeholders that carry neither file nor line."""

        return not self.file and self.line == 0

    def __str__(self) -> str:
        if not self.line:
            return ""
        return f"{self.file}:{self.line}"


@dataclass(frozen=True, slots=True)
class CallSite:
    """One stack frame in a trace: a function and where it makes the call."""

    function: str
    location: SourceLocation = field(default_factory=SourceLocation)

    def __str__(self) -> str:
        where = str(self.location)
        return f"{self.function} ({where})" if where else self.function


@dataclass(frozen=True, slots=True)
class CallTrace:
    """Call sites ordered from the warning location towards the root.

    ``next`` is the index of the trace fragment this one continues into, or
    ``TERMINAL`` when the trace ends here.
    """

    call_sites: tuple[CallSite, ...] = ()
    next: int = TERMINAL


@dataclass(frozen=True, slots=True)
class Vulnerability:
    call_site: CallSite
    trace: int
    sandbox: str = ""
    cve: tuple[str, ...] = ()
    type: str = ""
    restricted: bool = False


@dataclass(frozen=True, slots=True)
class DataSource:
    """Where data read at a private-access site came from."""

    call_site: CallSite
    trace: int


@dataclass(frozen=True, slots=True)
class PrivateAccess:
    call_site: CallSite
    trace: int
    owners: tuple[str, ...] = ()
    sandbox: str = ""
    sources: tuple[DataSource, ...] = ()


@dataclass(slots=True)
class Results:
    """Everything parsed from one SOAAP run."""

    vulnerabilities: list[Vulnerability] = field(default_factory=list)
    private_accesses: list[PrivateAccess] = field(default_factory=list)
    traces: list[CallTrace] = field(default_factory=list)

    def resolve(self, index: int) -> Iterator[CallSite]:
        return resolve_trace(index, self.traces)


def resolve_trace(index: int, traces: Sequence[CallTrace]) -> Iterator[CallSite]:
    """
    Yield every call site reachable from ``traces[index]``, following continuations.

    Entries with an entirely unknown location are skipped. Raises
    :class:`TraceIndexError` for an out-of-range index or continuation and
    :class:`TraceCycleError` when a continuation revisits a trace. Errors
    surface lazily, so callers that must not act on a partial trace should
    materialise the sequence first.
    """

    if not 0 <= index < len(traces):
        raise TraceIndexError(index, len(traces))

    visited: list[int] = []
    current: int = index
    while True:
        visited.append(current)
        trace = traces[current]
        for call_site in trace.call_sites:
            if call_site.location.is_unknown:
                continue
            yield call_site

        if trace.next == TERMINAL:
            return
        if not 0 <= trace.next < len(traces):
            raise TraceIndexError(trace.next, len(traces), referrer=current)
        if trace.next in visited:
            raise TraceCycleError(visited + [trace.next])
        current = trace.next


__all__ = [
    "CallSite",
    "CallTrace",
    "DataSource",
    "PrivateAccess",
    "Results",
    "SourceLocation",
    "TERMINAL",
    "Vulnerability",
    "resolve_trace",
]
