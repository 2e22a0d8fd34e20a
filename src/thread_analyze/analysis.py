"""One-call analysis of a parsed dump, for the CLI and for external correlators."""

from __future__ import annotations

from pathlib import Path

from .contention import count_states, rank_contention
from .deadlock import find_deadlocks, find_self_waits
from .models import AnalyzerSettings, DumpAnalysis, ParsedDump
from .parser import load_dump


def analyze_dump(parsed: ParsedDump) -> DumpAnalysis:
    """Run deadlock detection and contention ranking over a parsed dump."""
    dump = parsed.dump
    return DumpAnalysis(
        timestamp=dump.timestamp,
        thread_count=len(dump.threads),
        lock_count=len(dump.locks),
        state_counts=count_states(dump),
        deadlocks=tuple(find_deadlocks(dump)),
        self_waits=tuple(find_self_waits(dump)),
        contention=tuple(rank_contention(dump)),
        warnings=parsed.warnings,
    )


def analyze_file(path: Path, settings: AnalyzerSettings | None = None) -> DumpAnalysis:
    """Load and analyze a dump file.

    Raises:
        DumpParseError: the file is missing, empty, too large or malformed.
    """
    settings = settings or AnalyzerSettings()
    return analyze_dump(load_dump(path, max_bytes=settings.max_input_bytes))
