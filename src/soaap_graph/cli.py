"""Command line entry points for the project."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer

from soaap_graph import __version__
from soaap_graph.analysis.callgraph import CallGraph
from soaap_graph.analysis.graph_export import export_dot, export_graphml, write_dot
from soaap_graph.analysis.results import Results
from soaap_graph.analysis.visualization import plot_call_graph
from soaap_graph.config import DEFAULT_INTERSECTION_DEPTH, AnalysisConfig
from soaap_graph.errors import SoaapGraphError
from soaap_graph.io.graph_store import load_graph, load_results, save_graph, save_results
from soaap_graph.io.soaap_json import load_results_json
from soaap_graph.pipelines.build_graph import COMBINE_OPERATIONS, build_graph, combine_graphs

OUTPUT_FORMATS = ("dot", "binary", "graphml", "png")
RESULTS_SUFFIX = ".soaap.bin"
GRAPH_SUFFIX = ".graph.bin"


def _report(message: str) -> None:
    typer.echo(message, err=True)


def _fail(message: str) -> None:
    typer.secho(f"error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _resolve_input(path: Path) -> Path:
    candidate = path.expanduser().resolve()
    if not candidate.exists():
        raise typer.BadParameter(f"Input not found: {candidate}")
    return candidate


def _load_results(path: Path) -> Results:
    if path.suffix.lower() == ".json":
        return load_results_json(path, _report)
    _report(f"Loading {path}")
    return load_results(path)


def _describe(graph: CallGraph) -> str:
    nodes, calls, flows = graph.size()
    return f"{nodes} nodes, {calls} edges and {flows} flows"


def _write_graph(graph: CallGraph, output: str, fmt: str, input_path: Path) -> None:
    if output == "-":
        if fmt != "dot":
            raise typer.BadParameter(f"Only the dot format can be written to stdout, not {fmt}.")
        write_dot(graph, sys.stdout)
        return

    suffix = {"dot": ".dot", "binary": GRAPH_SUFFIX, "graphml": ".graphml", "png": ".png"}[fmt]
    destination = Path(output).expanduser().resolve() if output else input_path.with_name(input_path.stem + suffix)
    if fmt == "dot":
        export_dot(graph, destination)
    elif fmt == "binary":
        save_graph(graph, destination)
    elif fmt == "graphml":
        export_graphml(graph, destination)
    else:
        plot_call_graph(graph, destination, title=f"{input_path.stem} ({_describe(graph)})")
    typer.secho(f"Graph written to {destination}", fg=typer.colors.GREEN, err=True)


app = typer.Typer(help="Build, combine and simplify call graphs from SOAAP results.")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    display_version: bool = typer.Option(False, "--version", "-V", help="Show version and exit."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging."),
) -> None:
    """Print the package version when requested and configure logging."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s %(levelname)s: %(message)s",
    )
    if display_version:
        typer.echo(__version__)
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("parse")
def parse(
    input: Path = typer.Argument(..., help="SOAAP JSON results file."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help=f"Destination (defaults to <input>{RESULTS_SUFFIX})."),
) -> None:
    """Parse SOAAP JSON into the compact binary results format."""

    input_path = _resolve_input(input)
    destination = (output or input_path.with_name(input_path.stem + RESULTS_SUFFIX)).expanduser().resolve()
    try:
        results = load_results_json(input_path, _report)
        _report("Encoding...")
        save_results(results, destination)
    except (SoaapGraphError, OSError) as exc:
        _fail(str(exc))
    typer.secho(f"Results written to {destination}", fg=typer.colors.GREEN, err=True)


@app.command("graph")
def graph(
    input: Path = typer.Argument(..., help="SOAAP JSON (.json) or binary results file."),
    analyses: str = typer.Option("vuln", "--analyses", "-a", help="Comma-separated analysis steps, e.g. 'vuln,^privaccess,:*:-free'."),
    intersection_depth: int = typer.Option(
        DEFAULT_INTERSECTION_DEPTH,
        help="How many calls to trace back from a leaf node when looking for intersections.",
    ),
    simplify: bool = typer.Option(False, help="Collapse uninteresting linear call chains."),
    export_format: str = typer.Option("dot", "--format", "-f", help=f"Output format: {', '.join(OUTPUT_FORMATS)}."),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output path, or '-' for stdout (dot only)."),
) -> None:
    """Extract and combine graphs from SOAAP results."""

    fmt = export_format.lower()
    if fmt not in OUTPUT_FORMATS:
        raise typer.BadParameter(f"Unsupported format: {export_format}")
    try:
        config = AnalysisConfig.from_options(analyses, intersection_depth=intersection_depth, simplify=simplify)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    input_path = _resolve_input(input)
    try:
        results = _load_results(input_path)
        result = build_graph(results, config, _report)
        _report(f"Final graph has {_describe(result)}.")
        _write_graph(result, output or "", fmt, input_path)
    except (SoaapGraphError, OSError) as exc:
        _fail(str(exc))


@app.command("combine")
def combine(
    inputs: List[Path] = typer.Argument(..., help="Two or more binary graph files."),
    operation: str = typer.Option("union", help=f"Combining operation: {'|'.join(COMBINE_OPERATIONS)}."),
    intersection_depth: int = typer.Option(
        DEFAULT_INTERSECTION_DEPTH,
        help="How many calls to trace back from a leaf node when looking for intersections.",
    ),
    output: Path = typer.Option(Path("combined" + GRAPH_SUFFIX), "--output", "-o", help="Destination binary graph."),
) -> None:
    """Load persisted graphs and combine them with union or intersection."""

    if len(inputs) < 2:
        raise typer.BadParameter("At least two input graphs are required.")
    if operation not in COMBINE_OPERATIONS:
        raise typer.BadParameter(f"Unknown combining operation: '{operation}'")

    graphs: List[CallGraph] = []
    for item in inputs:
        path = _resolve_input(item)
        try:
            graphs.append(load_graph(path))
        except (SoaapGraphError, OSError) as exc:
            _fail(f"error loading graph from '{path}': {exc}")

    try:
        result = combine_graphs(graphs, operation, intersection_depth)
        destination = save_graph(result, output.expanduser().resolve())
    except (SoaapGraphError, OSError) as exc:
        _fail(f"error applying '{operation}': {exc}")

    typer.echo(f"Final graph has {_describe(result)}.")
    typer.secho(f"Graph written to {destination}", fg=typer.colors.GREEN)


def run() -> None:
    """Entry point used by ``python -m soaap_graph.cli``."""

    app()


if __name__ == "__main__":
    run()
