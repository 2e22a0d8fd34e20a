#!/usr/bin/env python3
"""Thread Dump Analyzer - deadlock and lock contention diagnostics.

Reads JSON thread dumps (threads + lock table) and:
- Detects deadlock cycles in the wait-for graph, with the lock chain per cycle
- Reports self-wait anomalies separately from real deadlocks
- Ranks lock contention hotspots
- Renders Mermaid interaction, timeline and contention diagrams
- Builds a self-contained HTML report
- Exports structured JSON for flaky-test correlation

Exit codes: 0 = success (including "no deadlock"), 1 = deadlock found
(detect-deadlocks only), 2 = input error, 3 = internal or output error.
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from enum import IntEnum
from pathlib import Path
from typing import Annotated, NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from . import __version__
from .analysis import analyze_dump
from .artifacts import ArtifactWriteError, write_artifact
from .models import AnalyzerSettings, DumpAnalysis, ParsedDump, ThreadDump
from .parser import DumpParseError, load_dump
from .renderers import (
    NO_CONTENTION_TEXT,
    NO_DEADLOCKS_TEXT,
    build_blocked_rows,
    build_contention_rows,
    build_deadlock_descriptions,
    build_overview_rows,
    build_self_wait_rows,
    build_state_rows,
    build_warning_rows,
    render_contention_graph,
    render_interaction_diagram,
    render_markdown_summary,
    render_report,
    render_timeline,
)


class ExitCode(IntEnum):
    OK = 0
    DEADLOCK_FOUND = 1
    INPUT_ERROR = 2
    INTERNAL_ERROR = 3


# ============================================================
# RICH OUTPUT
# ============================================================

THREAD_ANALYZE_THEME = Theme(
    {
        "critical": "bold red",
        "warning": "bold yellow",
        "success": "bold green",
        "info": "cyan",
        "metric": "white",
        "label": "dim white",
        "header": "bold magenta",
    }
)

console = Console(theme=THREAD_ANALYZE_THEME)
error_console = Console(theme=THREAD_ANALYZE_THEME, stderr=True)

MAX_NOTES_WITHOUT_VERBOSE = 10


def create_key_value_table(title: str, rows: list[tuple[str, str]]) -> Table:
    """Create a simple two-column key/value table."""
    table = Table(title=title, show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="label")
    table.add_column("Value", style="metric")
    for label, value in rows:
        table.add_row(label, value)
    return table


def create_contention_table(rows: list[dict[str, str]], total: int) -> Table:
    title = "Lock Contention" if len(rows) == total else f"Lock Contention (top {len(rows)} of {total})"
    table = Table(title=title)
    table.add_column("#", justify="right", style="label")
    table.add_column("Lock", style="metric")
    table.add_column("Owner")
    table.add_column("Waiters", justify="right", style="warning")
    table.add_column("Waiting threads", style="label")
    for row in rows:
        table.add_row(row["rank"], row["lock"], row["owner"], row["waiters"], row["waiter_names"])
    return table


def render_deadlock_panel(analysis: DumpAnalysis, dump: ThreadDump) -> Panel:
    """Deadlock chains in a red panel, or an all-clear panel."""
    if not analysis.deadlocks:
        return Panel(Text(NO_DEADLOCKS_TEXT, style="success"), title="Deadlocks", border_style="green")

    text = Text()
    descriptions = build_deadlock_descriptions(analysis.deadlocks, dump)
    for index, chain in enumerate(descriptions, start=1):
        text.append(f"Deadlock {index} ({len(chain)} threads)\n", style="critical")
        for line in chain:
            text.append(f"  {line}\n", style="metric")
    text.rstrip()
    return Panel(
        text,
        title=f"[critical]{len(descriptions)} Deadlock(s) Detected[/critical]",
        border_style="red",
    )


def render_notes_panel(analysis: DumpAnalysis, verbose: bool) -> Panel | None:
    """Data-quality warnings from parsing; truncated unless verbose."""
    rows = build_warning_rows(analysis.warnings)
    if not rows:
        return None
    shown = rows if verbose else rows[:MAX_NOTES_WITHOUT_VERBOSE]
    text = Text()
    for index, row in enumerate(shown):
        line_ending = "\n" if index < len(shown) - 1 else ""
        text.append(row + line_ending, style="info")
    if len(shown) < len(rows):
        text.append(f"\n... {len(rows) - len(shown)} more (use --verbose)", style="label")
    return Panel(text, title="[info]Data Notes[/info]", border_style="cyan")


def render_rich_output(
    analysis: DumpAnalysis, dump: ThreadDump, settings: AnalyzerSettings, *, verbose: bool
) -> None:
    """Render the full analysis using Rich components."""
    console.print()
    console.print(
        Panel(f"Thread dump captured at: {escape(analysis.timestamp)}", style="header", expand=True)
    )
    console.print()

    console.print(create_key_value_table("Overview", build_overview_rows(analysis)))
    console.print()
    console.print(create_key_value_table("Thread States", build_state_rows(dump)))
    console.print()

    console.print(render_deadlock_panel(analysis, dump))
    console.print()

    self_wait_rows = build_self_wait_rows(analysis.self_waits, dump)
    if self_wait_rows:
        text = Text("\n".join(self_wait_rows), style="warning")
        console.print(Panel(text, title="[warning]Self-Wait Anomalies[/warning]", border_style="yellow"))
        console.print()

    contention_rows = build_contention_rows(analysis.contention, dump, settings.top_n_contention)
    if contention_rows:
        console.print(create_contention_table(contention_rows, len(analysis.contention)))
    else:
        console.print(f"[success]{NO_CONTENTION_TEXT}[/success]")
    console.print()

    blocked_rows = build_blocked_rows(dump)
    if blocked_rows:
        console.print(
            f"[warning]Found {len(blocked_rows)} BLOCKED thread(s). "
            "This may indicate contention issues.[/warning]"
        )
        for row in blocked_rows:
            console.print(f"  {escape(row)}")
        console.print()

    notes = render_notes_panel(analysis, verbose)
    if notes is not None:
        console.print(notes)


# ============================================================
# COMMAND HELPERS
# ============================================================


def build_settings(max_size_mb: float, top: int = 10, include_raw_dump: bool = True) -> AnalyzerSettings:
    return AnalyzerSettings(
        top_n_contention=top,
        max_input_bytes=max(1, int(max_size_mb * 1024 * 1024)),
        include_raw_dump=include_raw_dump,
    )


def fail(message: str, code: ExitCode) -> NoReturn:
    error_console.print(f"[critical]ERROR: {escape(message)}[/critical]")
    sys.exit(code)


def load_or_exit(path: Path, settings: AnalyzerSettings, *, verbose: bool, out: Console) -> ParsedDump:
    """Load a dump; on input errors print a message and exit with INPUT_ERROR."""
    try:
        parsed = load_dump(path, max_bytes=settings.max_input_bytes)
    except DumpParseError as e:
        fail(f"{path}: {e}", ExitCode.INPUT_ERROR)
    except Exception as e:
        if verbose:
            error_console.print_exception()
        fail(f"{path}: failed to load thread dump: {e}", ExitCode.INTERNAL_ERROR)

    if verbose:
        dump = parsed.dump
        out.print(
            f"[info]Parsed {len(dump.threads)} threads and {len(dump.locks)} locks "
            f"from {escape(str(path))}[/info]"
        )
        for row in build_warning_rows(parsed.warnings):
            out.print(f"[warning]  {escape(row)}[/warning]")
    return parsed


def write_or_exit(output: Path, content: str) -> None:
    try:
        write_artifact(output, content)
    except ArtifactWriteError as e:
        fail(f"{e.path}: {e.cause}", ExitCode.INTERNAL_ERROR)


def run_render_command(
    input_file: Path,
    output: Path,
    settings: AnalyzerSettings,
    render: Callable[[ParsedDump, DumpAnalysis], str],
    artifact_name: str,
    *,
    verbose: bool,
) -> None:
    """Shared load -> analyze -> render -> write pipeline for single-dump artifacts."""
    parsed = load_or_exit(input_file, settings, verbose=verbose, out=console)
    try:
        analysis = analyze_dump(parsed)
        content = render(parsed, analysis)
    except Exception as e:
        error_console.print(f"[critical]ERROR: failed to render {artifact_name}: {escape(str(e))}[/critical]")
        if verbose:
            error_console.print_exception()
        sys.exit(ExitCode.INTERNAL_ERROR)

    write_or_exit(output, content)

    if analysis.deadlocks:
        console.print(f"[warning]Deadlock detected! {artifact_name} saved to: {escape(str(output))}[/warning]")
    else:
        console.print(f"[success]Generated {artifact_name}: {escape(str(output))}[/success]")


# ============================================================
# TYPER CLI INTERFACE
# ============================================================

app = typer.Typer(
    name="thread-analyze",
    help="Thread dump analyzer: deadlock detection, lock contention and interaction diagrams",
    add_completion=False,
    rich_markup_mode="rich",
)

InputArgument = Annotated[
    Path,
    typer.Argument(help="Path to a JSON thread dump", dir_okay=False),
]
OutputArgument = Annotated[
    Path,
    typer.Argument(help="Path of the artifact to write"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Show parser warnings and progress details"),
]
MaxSizeOption = Annotated[
    float,
    typer.Option("--max-size-mb", help="Refuse input files larger than this (default: 10 MB)", min=0.001),
]
TopOption = Annotated[
    int,
    typer.Option("--top", "-n", help="Number of contended locks to list (default: 10)", min=1),
]


@app.command()
def diagram(
    input_file: InputArgument,
    output: OutputArgument,
    verbose: VerboseOption = False,
    max_size_mb: MaxSizeOption = 10.0,
) -> None:
    """Generate a Mermaid thread interaction diagram."""
    run_render_command(
        input_file,
        output,
        build_settings(max_size_mb),
        lambda parsed, analysis: render_interaction_diagram(
            parsed.dump, list(analysis.deadlocks), list(analysis.contention)
        ),
        "thread diagram",
        verbose=verbose,
    )


@app.command()
def timeline(
    input_files: Annotated[
        list[Path],
        typer.Argument(help="Successive JSON thread dumps of the same process, oldest first"),
    ],
    output: OutputArgument,
    verbose: VerboseOption = False,
    max_size_mb: MaxSizeOption = 10.0,
) -> None:
    """Generate a Mermaid timeline of thread states across captures."""
    settings = build_settings(max_size_mb)
    series = [load_or_exit(path, settings, verbose=verbose, out=console) for path in input_files]
    try:
        analyses = [analyze_dump(parsed) for parsed in series]
        content = render_timeline(
            [parsed.dump for parsed in series], [list(analysis.deadlocks) for analysis in analyses]
        )
    except Exception as e:
        error_console.print(f"[critical]ERROR: failed to render timeline: {escape(str(e))}[/critical]")
        if verbose:
            error_console.print_exception()
        sys.exit(ExitCode.INTERNAL_ERROR)

    write_or_exit(output, content)
    console.print(
        f"[success]Generated thread timeline ({len(series)} capture(s)): {escape(str(output))}[/success]"
    )


@app.command()
def contention(
    input_file: InputArgument,
    output: OutputArgument,
    verbose: VerboseOption = False,
    max_size_mb: MaxSizeOption = 10.0,
) -> None:
    """Generate a Mermaid lock contention graph."""
    run_render_command(
        input_file,
        output,
        build_settings(max_size_mb),
        lambda parsed, analysis: render_contention_graph(
            parsed.dump, list(analysis.deadlocks), list(analysis.contention)
        ),
        "lock contention graph",
        verbose=verbose,
    )


@app.command()
def visualize(
    input_file: InputArgument,
    output: OutputArgument,
    top: TopOption = 10,
    no_raw: Annotated[
        bool,
        typer.Option("--no-raw", help="Leave the normalized dump out of the report"),
    ] = False,
    verbose: VerboseOption = False,
    max_size_mb: MaxSizeOption = 10.0,
) -> None:
    """Generate a self-contained HTML report with all diagrams and summaries."""
    settings = build_settings(max_size_mb, top, include_raw_dump=not no_raw)
    run_render_command(
        input_file,
        output,
        settings,
        lambda parsed, analysis: render_report(
            parsed.dump,
            list(analysis.deadlocks),
            list(analysis.contention),
            warnings=parsed.warnings,
            self_waits=list(analysis.self_waits),
            settings=settings,
        ),
        "HTML thread visualization",
        verbose=verbose,
    )


@app.command()
def analyze(
    input_file: InputArgument,
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Export the analysis to a Markdown file (e.g., analysis.md)",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Print the analysis as JSON instead of tables"),
    ] = False,
    top: TopOption = 10,
    verbose: VerboseOption = False,
    max_size_mb: MaxSizeOption = 10.0,
) -> None:
    """Analyze a thread dump: states, deadlocks, self-waits and contention."""
    settings = build_settings(max_size_mb, top)
    out = error_console if json_output else console
    parsed = load_or_exit(input_file, settings, verbose=verbose, out=out)

    try:
        analysis = analyze_dump(parsed)
        markdown = render_markdown_summary(analysis, parsed.dump, settings) if output else None
    except Exception as e:
        error_console.print(f"[critical]ERROR: analysis failed: {escape(str(e))}[/critical]")
        if verbose:
            error_console.print_exception()
        sys.exit(ExitCode.INTERNAL_ERROR)

    if json_output:
        typer.echo(analysis.model_dump_json(indent=2))
    else:
        render_rich_output(analysis, parsed.dump, settings, verbose=verbose)

    if output and markdown is not None:
        write_or_exit(output, markdown)
        out.print(f"\n[success]Analysis exported to {escape(str(output))}[/success]")


@app.command("detect-deadlocks")
def detect_deadlocks(
    input_file: InputArgument,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Print deadlock groups and self-waits as JSON"),
    ] = False,
    verbose: VerboseOption = False,
    max_size_mb: MaxSizeOption = 10.0,
) -> None:
    """Check a thread dump for deadlocks.

    Exit codes: 0 = no deadlock, 1 = deadlock found, 2 = input error.
    """
    settings = build_settings(max_size_mb)
    out = error_console if json_output else console
    parsed = load_or_exit(input_file, settings, verbose=verbose, out=out)

    try:
        analysis = analyze_dump(parsed)
    except Exception as e:
        error_console.print(f"[critical]ERROR: deadlock detection failed: {escape(str(e))}[/critical]")
        if verbose:
            error_console.print_exception()
        sys.exit(ExitCode.INTERNAL_ERROR)

    if json_output:
        typer.echo(
            analysis.model_dump_json(indent=2, include={"timestamp", "deadlocks", "self_waits"})
        )
    else:
        dump = parsed.dump
        if analysis.deadlocks:
            console.print("[warning]Deadlock detected in thread dump:[/warning]")
            for index, chain in enumerate(build_deadlock_descriptions(analysis.deadlocks, dump), start=1):
                console.print(f"[critical]DEADLOCK {index} - circular wait:[/critical]")
                for line in chain:
                    console.print(f"  {escape(line)}")
        else:
            console.print(f"[info]{NO_DEADLOCKS_TEXT} in thread dump[/info]")
        for row in build_self_wait_rows(analysis.self_waits, dump):
            console.print(f"[warning]Self-wait anomaly (not a deadlock): {escape(row)}[/warning]")

    if analysis.deadlocks:
        sys.exit(ExitCode.DEADLOCK_FOUND)


@app.command()
def version() -> None:
    """Display version."""
    console.print(f"thread-analyze {__version__}")


if __name__ == "__main__":
    app()
