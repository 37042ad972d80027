"""Parse the JSON results emitted by SOAAP."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from soaap_graph.analysis.results import (
    TERMINAL,
    CallSite,
    CallTrace,
    DataSource,
    PrivateAccess,
    Results,
    SourceLocation,
    Vulnerability,
)
from soaap_graph.errors import ParseError, TraceIndexError

LOGGER = logging.getLogger(__name__)

TRACE_KEY = re.compile(r"^!trace(\d+)$")

VULNERABILITY_KEY = "vulnerability_warning"
PRIVATE_ACCESS_KEY = "private_access"
IGNORED_KEYS = ("access_origin_warning", "classified_warning", "private_leak")

TRACE_PROGRESS_EVERY = 10000


def trace_number(name: Any) -> int:
    """Extract the index from a trace name such as ``'!trace42'``."""

    match = TRACE_KEY.match(name) if isinstance(name, str) else None
    if match is None:
        raise ParseError(f"'{name}' is not a trace name")
    return int(match.group(1))


def _location(raw: Any) -> SourceLocation:
    if raw is None:
        return SourceLocation()
    if not isinstance(raw, dict):
        raise ParseError(f"expected a location object, got {raw!r}")
    try:
        line = int(raw.get("line") or 0)
    except (TypeError, ValueError) as exc:
        raise ParseError(f"invalid line number {raw.get('line')!r}") from exc
    return SourceLocation(
        file=str(raw.get("file") or ""),
        line=line,
        library=str(raw.get("library") or ""),
    )


def _call_site(raw: dict) -> CallSite:
    return CallSite(function=str(raw.get("function") or ""), location=_location(raw.get("location")))


def _records(value: Any, key: str) -> list[dict]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise ParseError(f"'{key}' must be a list of objects")
    return value


def _names(entries: Iterable[Any]) -> tuple[str, ...]:
    names = []
    for entry in entries or ():
        if isinstance(entry, dict):
            entry = entry.get("name") or entry.get("id") or entry.get("ID")
        if entry:
            names.append(str(entry))
    return tuple(names)


def parse_vulnerability(raw: dict) -> Vulnerability:
    return Vulnerability(
        call_site=_call_site(raw),
        trace=trace_number(raw.get("trace_ref")),
        sandbox=str(raw.get("sandbox") or ""),
        cve=_names(raw.get("cve")),
        type=str(raw.get("type") or ""),
        restricted=bool(raw.get("restricted_rights", False)),
    )


def parse_private_access(raw: dict) -> PrivateAccess:
    sources = tuple(
        DataSource(call_site=_call_site(source), trace=trace_number(source.get("trace_ref")))
        for source in _records(raw.get("sources"), "sources")
    )
    return PrivateAccess(
        call_site=_call_site(raw),
        trace=trace_number(raw.get("trace_ref")),
        owners=_names(raw.get("sandbox_private")),
        sandbox=str(raw.get("sandbox") or ""),
        sources=sources,
    )


def parse_trace(raw: Any, index: int) -> CallTrace:
    """
    Unwrap SOAAP's encoding of one trace fragment.

    Every element is a call site except, optionally, the last one, which may
    be ``{"trace_ref": "!traceN"}`` naming the fragment this one continues into.
    """

    if not isinstance(raw, dict) or not isinstance(raw.get("trace"), list):
        raise ParseError(f"trace {index} has no 'trace' list")

    entries = raw["trace"]
    call_sites: list[CallSite] = []
    next_trace = TERMINAL
    for position, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ParseError(f"trace {index} entry {position} is not an object")
        if entry.get("function"):
            call_sites.append(_call_site(entry))
            continue
        if position != len(entries) - 1:
            raise ParseError(f"trace {index} entry {position} is neither a call site nor a final trace reference")
        next_trace = trace_number(entry.get("trace_ref"))
    return CallTrace(call_sites=tuple(call_sites), next=next_trace)


def _check_references(results: Results, fragments: dict[int, CallTrace], count: int) -> None:
    def check(target: int, what: str, referrer: Optional[int] = None) -> None:
        if target >= count:
            raise TraceIndexError(target, count, referrer=referrer)
        if target not in fragments:
            raise ParseError(f"{what} refers to trace {target}, which is not defined")

    for index, fragment in fragments.items():
        if fragment.next != TERMINAL:
            check(fragment.next, f"trace {index}", referrer=index)
    for vuln in results.vulnerabilities:
        check(vuln.trace, f"vulnerability in {vuln.call_site.function}")
    for access in results.private_accesses:
        check(access.trace, f"private access in {access.call_site.function}")
        for source in access.sources:
            check(source.trace, f"data source of {access.call_site.function}")


def parse_results(payload: Any, progress: Optional[Callable[[str], None]] = None) -> Results:
    """Build :class:`Results` from an already-decoded SOAAP JSON document."""

    if not isinstance(payload, dict) or not isinstance(payload.get("soaap"), dict):
        raise ParseError("expected a top-level object with a 'soaap' mapping")

    raw = payload["soaap"]
    results = Results()
    fragments: dict[int, CallTrace] = {}

    for parsed, (key, value) in enumerate(raw.items(), start=1):
        if key == VULNERABILITY_KEY:
            results.vulnerabilities = [parse_vulnerability(item) for item in _records(value, key)]
        elif key == PRIVATE_ACCESS_KEY:
            results.private_accesses = [parse_private_access(item) for item in _records(value, key)]
        elif key in IGNORED_KEYS:
            LOGGER.debug("Skipping unsupported SOAAP category '%s'", key)
        else:
            index = trace_number(key)
            # every trace is its own entry, so no valid index reaches the entry count
            if index >= len(raw):
                raise ParseError(f"trace index {index} is out of range for a report with {len(raw)} entries")
            fragments[index] = parse_trace(value, index)

        if progress and parsed % TRACE_PROGRESS_EVERY == 0:
            progress(f"Parsed {parsed} entries")

    count = max(fragments) + 1 if fragments else 0
    _check_references(results, fragments, count)
    results.traces = [fragments.get(index, CallTrace()) for index in range(count)]
    missing = count - len(fragments)
    if missing:
        LOGGER.warning("%d trace indices below %d were never defined", missing, count)

    if progress:
        progress(
            f"Parsed {len(results.vulnerabilities)} vulnerabilities, "
            f"{len(results.private_accesses)} private accesses and {count} traces"
        )
    return results


def load_results_json(path: Path, progress: Optional[Callable[[str], None]] = None) -> Results:
    """Load a SOAAP JSON file from disk."""

    path = Path(path)
    if progress:
        progress(f"Loading {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ParseError(f"{path}: {exc}") from exc
    return parse_results(payload, progress)


__all__ = [
    "load_results_json",
    "parse_private_access",
    "parse_results",
    "parse_trace",
    "parse_vulnerability",
    "trace_number",
]
