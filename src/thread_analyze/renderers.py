"""Diagram and report rendering.

Diagrams are Mermaid sources. ``render_*`` functions wrap them in a fenced
```` ```mermaid ```` block so they can be dropped into Markdown; ``build_*``
functions return the bare lines for embedding elsewhere (the HTML report).
Every renderer is a pure function of its arguments and accepts empty dumps.
"""

from __future__ import annotations

import html
import json
from collections.abc import Iterable, Sequence

from .contention import blocked_threads, count_states, total_waiters
from .deadlock import (
    deadlocked_locks,
    deadlocked_thread_ids,
    describe_deadlock,
    find_deadlocks,
    find_self_waits,
)
from .models import (
    AnalyzerSettings,
    ContentionEntry,
    DeadlockGroup,
    DumpAnalysis,
    DumpWarning,
    LockIdentity,
    SelfWaitAnomaly,
    ThreadDump,
    ThreadId,
    ThreadInfo,
    ThreadState,
)

NO_DEADLOCKS_TEXT = "No deadlocks detected"
NO_SELF_WAITS_TEXT = "No self-wait anomalies detected"
NO_CONTENTION_TEXT = "No contention detected"
NO_WARNINGS_TEXT = "No data problems found"

# ============================================================
# MERMAID HELPERS
# ============================================================

STATE_CLASS_DEFS: list[str] = [
    "classDef runnable fill:green,stroke:#333,stroke-width:1px,color:white",
    "classDef blocked fill:red,stroke:#333,stroke-width:1px,color:white",
    "classDef waiting fill:orange,stroke:#333,stroke-width:1px,color:white",
    "classDef timed_waiting fill:yellow,stroke:#333,stroke-width:1px,color:black",
    "classDef new fill:blue,stroke:#333,stroke-width:1px,color:white",
    "classDef terminated fill:gray,stroke:#333,stroke-width:1px,color:white",
    "classDef external fill:#eeeeee,stroke:#999,stroke-width:1px,stroke-dasharray:4 2,color:#333",
    "classDef self_wait fill:#ffe0b2,stroke:#e65100,stroke-width:2px,color:#333",
    "classDef lock fill:#eceff1,stroke:#455a64,stroke-width:1px,color:#263238",
    "classDef contended fill:#fff3e0,stroke:#ef6c00,stroke-width:2px,color:#263238",
    "classDef owner_unknown fill:#fce4ec,stroke:#ad1457,stroke-width:2px,color:#263238",
    "classDef deadlock fill:#ff6666,stroke:#990000,stroke-width:2px,color:white,font-weight:bold",
    "classDef deadlock_lock fill:#990000,stroke:#ff0000,stroke-width:2px,color:white,font-weight:bold",
]

MAX_CONTENTION_STROKE_PX = 12


def fence_mermaid(lines: Sequence[str]) -> str:
    """Wrap Mermaid source in a Markdown code fence."""
    return "```mermaid\n" + "\n".join(lines) + "\n```\n"


def mermaid_label(text: str) -> str:
    """Escape text for use inside a quoted Mermaid node or edge label."""
    return (
        text.replace("\r", " ")
        .replace("\n", " ")
        .replace('"', "#quot;")
        .replace("<", "#lt;")
        .replace(">", "#gt;")
    )


def gantt_label(text: str) -> str:
    """Gantt task and section names cannot contain ':', ';' or '#'."""
    cleaned = text.replace("\r", " ").replace("\n", " ")
    for char in ":;#":
        cleaned = cleaned.replace(char, " ")
    return " ".join(cleaned.split()) or "unnamed"


def thread_node_id(thread_id: ThreadId) -> str:
    return f"T{thread_id}" if thread_id >= 0 else f"Tn{-thread_id}"


def lock_node_ids(identities: Iterable[LockIdentity]) -> dict[LockIdentity, str]:
    """Stable node ids for lock identities (which may contain any character)."""
    return {identity: f"L{index}" for index, identity in enumerate(sorted(set(identities)))}


def state_class(state: ThreadState) -> str:
    return state.value.lower()


def thread_caption(thread: ThreadInfo) -> str:
    return f"{thread.name} ({thread.state.value})"


# ============================================================
# INTERACTION DIAGRAM
# ============================================================


def build_interaction_lines(
    dump: ThreadDump,
    deadlocks: Sequence[DeadlockGroup],
    contention: Sequence[ContentionEntry],
) -> list[str]:
    """Threads, the locks they hold or wait for, and the edges between them."""
    lines = [
        "graph TD",
        f"  %% Thread interaction diagram for dump captured at {mermaid_label(dump.timestamp)}",
    ]
    if not dump.threads:
        lines.append('  No_Threads["No threads found in thread dump"]')
        lines.append("  style No_Threads fill:#f96,stroke:#333,stroke-width:1px")
        return lines

    known = dump.thread_ids
    in_deadlock = deadlocked_thread_ids(list(deadlocks))
    locks_in_deadlock = deadlocked_locks(list(deadlocks))
    self_wait_pairs = {(anomaly.thread_id, anomaly.lock_identity) for anomaly in find_self_waits(dump)}
    self_waiting = {thread_id for thread_id, _identity in self_wait_pairs}
    contended = {entry.lock_identity for entry in contention}

    cycle_waits: set[tuple[ThreadId, LockIdentity]] = set()
    cycle_holds: set[tuple[ThreadId, LockIdentity]] = set()
    for group in deadlocks:
        size = len(group.thread_ids)
        for index, identity in enumerate(group.lock_chain):
            cycle_waits.add((group.thread_ids[index], identity))
            cycle_holds.add((group.thread_ids[(index + 1) % size], identity))

    shown_locks = [
        lock
        for lock in sorted(dump.locks, key=lambda lock: lock.identity)
        if lock.owner_thread is not None or lock.waiting_threads or lock.identity in contended
    ]
    node_ids = lock_node_ids(lock.identity for lock in shown_locks)

    external: set[ThreadId] = set()
    for lock in shown_locks:
        if lock.owner_thread is not None and lock.owner_thread not in known:
            external.add(lock.owner_thread)
        external.update(waiter for waiter in lock.waiting_threads if waiter not in known)

    lines.append('  subgraph threads["Threads"]')
    for thread in sorted(dump.threads, key=lambda t: t.id):
        if thread.id in in_deadlock:
            css = "deadlock"
        elif thread.id in self_waiting:
            css = "self_wait"
        else:
            css = state_class(thread.state)
        caption = mermaid_label(f"Thread {thread.id}: {thread_caption(thread)}")
        lines.append(f'    {thread_node_id(thread.id)}["{caption}"]:::{css}')
    for thread_id in sorted(external):
        lines.append(
            f'    {thread_node_id(thread_id)}["Thread {thread_id} (not captured)"]:::external'
        )
    lines.append("  end")

    if not shown_locks:
        lines.append('  No_Locks["No locks found in thread dump"]')
        lines.append("  style No_Locks fill:#f96,stroke:#333,stroke-width:1px")
    else:
        lines.append('  subgraph locks["Locks"]')
        for lock in shown_locks:
            if lock.identity in locks_in_deadlock:
                css = "deadlock_lock"
            elif lock.identity in contended:
                css = "contended"
            else:
                css = "lock"
            caption = mermaid_label(f"Lock: {lock.identity}")
            lines.append(f'    {node_ids[lock.identity]}["{caption}"]:::{css}')
        lines.append("  end")

    for lock in shown_locks:
        lock_node = node_ids[lock.identity]
        if lock.owner_thread is not None:
            arrow = "==>" if (lock.owner_thread, lock.identity) in cycle_holds else "-->"
            lines.append(f"  {thread_node_id(lock.owner_thread)} {arrow}|holds| {lock_node}")
        for waiter in lock.waiting_threads:
            arrow = "==>" if (waiter, lock.identity) in cycle_waits else "-.->"
            lines.append(f"  {thread_node_id(waiter)} {arrow}|waits for| {lock_node}")
        if (lock.owner_thread, lock.identity) in self_wait_pairs:
            lines.append(
                f"  {thread_node_id(lock.owner_thread)} -.->|waits for own lock| {lock_node}"
            )

    lines.append("")
    lines.append("  %% Thread state styling")
    lines.extend(f"  {definition}" for definition in STATE_CLASS_DEFS)
    return lines


def render_interaction_diagram(
    dump: ThreadDump,
    deadlocks: Sequence[DeadlockGroup],
    contention: Sequence[ContentionEntry],
) -> str:
    return fence_mermaid(build_interaction_lines(dump, deadlocks, contention))


# ============================================================
# TIMELINE
# ============================================================

GANTT_STATE_TAGS: dict[ThreadState, str] = {
    ThreadState.RUNNABLE: "active",
    ThreadState.BLOCKED: "crit",
    ThreadState.TERMINATED: "done",
}


def _task_id(thread_id: ThreadId, capture: int) -> str:
    prefix = f"t{thread_id}" if thread_id >= 0 else f"tn{-thread_id}"
    return f"{prefix}c{capture}"


def build_timeline_lines(
    dumps: Sequence[ThreadDump],
    deadlocks: Sequence[Sequence[DeadlockGroup]] | None = None,
) -> list[str]:
    """One lane per thread, one bar per run of identical state across captures.

    ``deadlocks[i]`` holds the groups found in ``dumps[i]``; when omitted they
    are computed here. Threads absent from a capture leave a gap in their lane.
    """
    if deadlocks is None:
        deadlocks = [find_deadlocks(dump) for dump in dumps]

    lines = [
        "gantt",
        f"  title Thread state timeline ({len(dumps)} capture{'s' if len(dumps) != 1 else ''})",
        "  dateFormat X",
        "  axisFormat %s",
    ]
    for index, dump in enumerate(dumps):
        lines.append(f"  %% capture {index}: {gantt_label(dump.timestamp)}")

    lanes: dict[ThreadId, list[tuple[int, ThreadState, bool] | None]] = {}
    names: dict[ThreadId, str] = {}
    for index, dump in enumerate(dumps):
        stuck = deadlocked_thread_ids(list(deadlocks[index])) if index < len(deadlocks) else set()
        for thread in dump.threads:
            lane = lanes.setdefault(thread.id, [None] * len(dumps))
            lane[index] = (index, thread.state, thread.id in stuck)
            names[thread.id] = thread.name

    if not lanes:
        lines.append("  section No threads")
        lines.append("  No threads captured :done, empty, 0, 1")
        return lines

    for thread_id in sorted(lanes):
        lines.append(f"  section {gantt_label(names[thread_id])} (id {thread_id})")
        run_start: int | None = None
        run_key: tuple[ThreadState, bool] | None = None
        for capture, point in enumerate([*lanes[thread_id], None]):
            key = None if point is None else (point[1], point[2])
            if key == run_key:
                continue
            if run_key is not None and run_start is not None:
                state, stuck = run_key
                label = f"{state.value} (deadlock)" if stuck else state.value
                tag = "crit" if stuck else GANTT_STATE_TAGS.get(state)
                tags = f"{tag}, " if tag else ""
                lines.append(
                    f"  {label} :{tags}{_task_id(thread_id, run_start)}, {run_start}, {capture}"
                )
            run_start = capture if key is not None else None
            run_key = key
    return lines


def render_timeline(
    dumps: Sequence[ThreadDump],
    deadlocks: Sequence[Sequence[DeadlockGroup]] | None = None,
) -> str:
    return fence_mermaid(build_timeline_lines(dumps, deadlocks))


# ============================================================
# CONTENTION GRAPH
# ============================================================


def contention_stroke_width(waiter_count: int, max_count: int) -> int:
    """Stroke width in px, proportional to the waiter count."""
    if max_count <= 0:
        return 1
    return max(1, round(MAX_CONTENTION_STROKE_PX * waiter_count / max_count))


def contention_font_weight(waiter_count: int, max_count: int) -> int:
    """CSS font weight from 400 to 900 in steps of 100, proportional to the waiter count."""
    if max_count <= 0:
        return 400
    return 400 + 100 * round(5 * waiter_count / max_count)


def build_contention_lines(
    dump: ThreadDump,
    deadlocks: Sequence[DeadlockGroup],
    contention: Sequence[ContentionEntry],
) -> list[str]:
    """Contended locks, the threads waiting on them and the threads owning them."""
    lines = [
        "flowchart LR",
        f"  %% Lock contention graph for dump captured at {mermaid_label(dump.timestamp)}",
    ]
    if not contention:
        lines.append(f'  No_Contention["{NO_CONTENTION_TEXT}"]')
        lines.append("  style No_Contention fill:#c8e6c9,stroke:#333,stroke-width:1px")
        return lines

    locks_in_deadlock = deadlocked_locks(list(deadlocks))
    in_deadlock = deadlocked_thread_ids(list(deadlocks))
    node_ids = lock_node_ids(entry.lock_identity for entry in contention)
    max_count = max(entry.waiter_count for entry in contention)

    if deadlocks:
        lines.append(
            '  DeadlockWarning["DEADLOCK DETECTED: circular wait between '
            f'{len(in_deadlock)} threads"]'
        )
        lines.append(
            "  style DeadlockWarning fill:#ff0000,stroke:#333,stroke-width:2px,"
            "color:#fff,font-weight:bold"
        )

    lines.append('  subgraph contended_locks["Contended locks"]')
    for entry in contention:
        if entry.owner_unknown or entry.owner_thread is None:
            owner = "owner unknown"
        else:
            owner = f"owner: {dump.thread_label(entry.owner_thread)}"
        plural = "waiter" if entry.waiter_count == 1 else "waiters"
        caption = mermaid_label(f"{entry.lock_identity} | {entry.waiter_count} {plural} | {owner}")
        if entry.lock_identity in locks_in_deadlock:
            css = "deadlock_lock"
        elif entry.owner_unknown:
            css = "owner_unknown"
        else:
            css = "contended"
        lines.append(f'    {node_ids[entry.lock_identity]}["{caption}"]:::{css}')
    lines.append("  end")

    def thread_node(thread_id: ThreadId) -> str:
        thread = dump.thread(thread_id)
        if thread is None:
            return f'    {thread_node_id(thread_id)}["Thread {thread_id} (not captured)"]:::external'
        css = "deadlock" if thread_id in in_deadlock else state_class(thread.state)
        caption = mermaid_label(f"Thread {thread_id}: {thread_caption(thread)}")
        return f'    {thread_node_id(thread_id)}["{caption}"]:::{css}'

    waiter_ids = sorted({waiter for entry in contention for waiter in entry.waiter_ids})
    lines.append('  subgraph waiting_threads["Waiting threads"]')
    lines.extend(thread_node(waiter) for waiter in waiter_ids)
    lines.append("  end")

    owner_ids = sorted(
        {entry.owner_thread for entry in contention if entry.owner_thread is not None}
        - set(waiter_ids)
    )
    if owner_ids:
        lines.append('  subgraph lock_owners["Lock owners"]')
        lines.extend(thread_node(owner) for owner in owner_ids)
        lines.append("  end")
    if any(entry.owner_thread is None for entry in contention):
        lines.append('  Owner_Unknown["owner unknown"]:::owner_unknown')

    for entry in contention:
        lock_node = node_ids[entry.lock_identity]
        if entry.owner_thread is None:
            lines.append(f"  {lock_node} -.->|owned by| Owner_Unknown")
        else:
            lines.append(f"  {lock_node} -->|owned by| {thread_node_id(entry.owner_thread)}")
        for waiter in entry.waiter_ids:
            lines.append(f"  {thread_node_id(waiter)} -.->|waits for| {lock_node}")
    for entry in contention:
        width = contention_stroke_width(entry.waiter_count, max_count)
        weight = contention_font_weight(entry.waiter_count, max_count)
        lines.append(
            f"  style {node_ids[entry.lock_identity]} stroke-width:{width}px,font-weight:{weight}"
        )

    lines.append("")
    lines.extend(f"  {definition}" for definition in STATE_CLASS_DEFS)
    return lines


def render_contention_graph(
    dump: ThreadDump,
    deadlocks: Sequence[DeadlockGroup],
    contention: Sequence[ContentionEntry],
) -> str:
    return fence_mermaid(build_contention_lines(dump, deadlocks, contention))


# ============================================================
# SHARED SUMMARY ROWS
# ============================================================


def build_overview_rows(analysis: DumpAnalysis) -> list[tuple[str, str]]:
    """Headline figures shared by console, Markdown and HTML output."""
    return [
        ("Captured", analysis.timestamp),
        ("Threads", str(analysis.thread_count)),
        ("Locks", str(analysis.lock_count)),
        ("Deadlock groups", str(len(analysis.deadlocks))),
        ("Self-wait anomalies", str(len(analysis.self_waits))),
        ("Contended locks", str(len(analysis.contention))),
        ("Waiting threads", str(total_waiters(list(analysis.contention)))),
        ("Data warnings", str(len(analysis.warnings))),
    ]


def build_state_rows(dump: ThreadDump) -> list[tuple[str, str]]:
    return [(state, str(count)) for state, count in count_states(dump).items()]


def build_deadlock_descriptions(
    deadlocks: Sequence[DeadlockGroup], dump: ThreadDump
) -> list[list[str]]:
    return [describe_deadlock(group, dump) for group in deadlocks]


def build_self_wait_rows(self_waits: Sequence[SelfWaitAnomaly], dump: ThreadDump) -> list[str]:
    return [
        f"{dump.thread_label(anomaly.thread_id)} waits for {anomaly.lock_identity}, which it holds"
        for anomaly in self_waits
    ]


def build_contention_rows(
    contention: Sequence[ContentionEntry], dump: ThreadDump, top_n: int
) -> list[dict[str, str]]:
    names = {thread.id: thread.name for thread in dump.threads}
    rows: list[dict[str, str]] = []
    for rank, entry in enumerate(contention[:top_n], start=1):
        if entry.owner_thread is None:
            owner = "unknown"
        elif entry.owner_unknown:
            owner = f"Thread {entry.owner_thread} (not captured)"
        else:
            owner = dump.thread_label(entry.owner_thread)
        waiters = [names.get(waiter, f"Thread {waiter}") for waiter in entry.waiter_ids]
        rows.append(
            {
                "rank": str(rank),
                "lock": entry.lock_identity,
                "owner": owner,
                "waiters": str(entry.waiter_count),
                "waiter_names": ", ".join(waiters),
            }
        )
    return rows


def build_blocked_rows(dump: ThreadDump) -> list[str]:
    return [f"Thread {thread.id}: {thread.name}" for thread in blocked_threads(dump)]


def build_warning_rows(warnings: Sequence[DumpWarning]) -> list[str]:
    return [f"[{warning.code}] {warning.message}" for warning in warnings]


# ============================================================
# MARKDOWN SUMMARY
# ============================================================


def render_markdown_summary(
    analysis: DumpAnalysis,
    dump: ThreadDump,
    settings: AnalyzerSettings | None = None,
) -> str:
    """Markdown analysis report, including the interaction diagram."""
    settings = settings or AnalyzerSettings()
    md_content: list[str] = []

    md_content.append("# Thread Dump Analysis\n\n")

    md_content.append("## Overview\n\n")
    for label, value in build_overview_rows(analysis):
        md_content.append(f"- **{label}:** {value}\n")
    md_content.append("\n")

    md_content.append("## Thread States\n\n")
    md_content.append("| State | Count |\n")
    md_content.append("| --- | ---: |\n")
    md_content.extend(f"| {state} | {count} |\n" for state, count in build_state_rows(dump))
    md_content.append("\n")

    md_content.append("## Deadlocks\n\n")
    descriptions = build_deadlock_descriptions(analysis.deadlocks, dump)
    if descriptions:
        md_content.append(f"**{len(descriptions)} deadlock group(s) detected.**\n\n")
        for index, chain in enumerate(descriptions, start=1):
            md_content.append(f"### Deadlock {index}\n\n")
            md_content.extend(f"- {line}\n" for line in chain)
            md_content.append("\n")
    else:
        md_content.append(f"{NO_DEADLOCKS_TEXT}.\n\n")

    md_content.append("## Self-Wait Anomalies\n\n")
    self_wait_rows = build_self_wait_rows(analysis.self_waits, dump)
    if self_wait_rows:
        md_content.extend(f"- {row}\n" for row in self_wait_rows)
        md_content.append("\n")
    else:
        md_content.append(f"{NO_SELF_WAITS_TEXT}.\n\n")

    md_content.append("## Lock Contention\n\n")
    contention_rows = build_contention_rows(analysis.contention, dump, settings.top_n_contention)
    if contention_rows:
        md_content.append("| # | Lock | Owner | Waiters | Waiting threads |\n")
        md_content.append("| ---: | --- | --- | ---: | --- |\n")
        md_content.extend(
            f"| {row['rank']} | `{row['lock']}` | {row['owner']} | {row['waiters']} | "
            f"{row['waiter_names']} |\n"
            for row in contention_rows
        )
        md_content.append("\n")
    else:
        md_content.append(f"{NO_CONTENTION_TEXT}.\n\n")

    blocked_rows = build_blocked_rows(dump)
    if blocked_rows:
        md_content.append("## Blocked Threads\n\n")
        md_content.extend(f"- {row}\n" for row in blocked_rows)
        md_content.append("\n")

    if analysis.warnings:
        md_content.append("## Data Notes\n\n")
        md_content.extend(f"- {row}\n" for row in build_warning_rows(analysis.warnings))
        md_content.append("\n")

    md_content.append("## Thread Interaction Diagram\n\n")
    md_content.append(
        render_interaction_diagram(dump, list(analysis.deadlocks), list(analysis.contention))
    )
    return "".join(md_content)


# ============================================================
# COMBINED HTML REPORT
# ============================================================

REPORT_CSS = """\
    body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Helvetica, Arial, sans-serif; line-height: 1.6; padding: 20px; max-width: 1200px; margin: 0 auto; color: #333; }
    h1, h2, h3 { margin-top: 30px; color: #0366d6; }
    h1 { border-bottom: 1px solid #eaecef; padding-bottom: 10px; }
    table { border-collapse: collapse; margin: 10px 0; }
    th, td { border: 1px solid #e1e4e8; padding: 4px 10px; text-align: left; }
    .visualization-container { margin: 20px 0; padding: 20px; border: 1px solid #e1e4e8; border-radius: 6px; background-color: #f6f8fa; }
    .timestamp { color: #666; font-style: italic; }
    .none-detected { color: #2e7d32; font-weight: bold; }
    .legend { display: flex; flex-wrap: wrap; margin: 20px 0; }
    .legend-item { display: flex; align-items: center; margin-right: 15px; margin-bottom: 5px; }
    .legend-color { width: 20px; height: 20px; margin-right: 5px; border: 1px solid #333; }
    .runnable { background-color: green; }
    .blocked { background-color: red; }
    .waiting { background-color: orange; }
    .timed_waiting { background-color: yellow; }
    .new { background-color: blue; }
    .terminated { background-color: gray; }
    .deadlock { background-color: #ff6666; }
    .deadlock-warning { background-color: #ff0000; color: white; padding: 10px; border-radius: 5px; margin: 20px 0; font-weight: bold; }
    pre { white-space: pre-wrap; }
    .tab-buttons { display: flex; margin-top: 20px; margin-bottom: -1px; }
    .tab-button { padding: 10px 20px; border: 1px solid #e1e4e8; background-color: #f6f8fa; cursor: pointer; border-bottom: none; border-radius: 6px 6px 0 0; }
    .tab-button.active { background-color: white; border-bottom: 1px solid white; }
    .tab-content { border: 1px solid #e1e4e8; padding: 20px; border-radius: 0 6px 6px 6px; display: none; background-color: white; }
    .tab-content.active { display: block; }
"""

REPORT_SCRIPT = """\
    function changeTab(tabIndex) {
      document.querySelectorAll(".tab-button").forEach((btn, idx) => {
        btn.classList.toggle("active", idx === tabIndex);
      });
      document.querySelectorAll(".tab-content").forEach((content, idx) => {
        content.classList.toggle("active", idx === tabIndex);
      });
    }
"""

LEGEND_ENTRIES: list[tuple[str, str]] = [
    ("runnable", "RUNNABLE"),
    ("blocked", "BLOCKED"),
    ("waiting", "WAITING"),
    ("timed_waiting", "TIMED_WAITING"),
    ("new", "NEW"),
    ("terminated", "TERMINATED"),
    ("deadlock", "DEADLOCK"),
]


def _html_list(items: Iterable[str]) -> str:
    return "<ul>\n" + "".join(f"  <li>{html.escape(item)}</li>\n" for item in items) + "</ul>\n"


def _html_none(text: str) -> str:
    return f'<p class="none-detected">{html.escape(text)}</p>\n'


def _mermaid_block(lines: Sequence[str]) -> str:
    source = "\n".join(lines)
    return f'<pre class="mermaid">\n{html.escape(source)}\n</pre>\n'


def render_report(
    dump: ThreadDump,
    deadlocks: Sequence[DeadlockGroup],
    contention: Sequence[ContentionEntry],
    *,
    warnings: Sequence[DumpWarning] = (),
    self_waits: Sequence[SelfWaitAnomaly] | None = None,
    settings: AnalyzerSettings | None = None,
) -> str:
    """Self-contained HTML page with every diagram and textual summaries.

    The deadlock and contention sections are always present; when an analysis
    found nothing they say so explicitly.
    """
    settings = settings or AnalyzerSettings()
    if self_waits is None:
        self_waits = find_self_waits(dump)

    analysis = DumpAnalysis(
        timestamp=dump.timestamp,
        thread_count=len(dump.threads),
        lock_count=len(dump.locks),
        state_counts=count_states(dump),
        deadlocks=tuple(deadlocks),
        self_waits=tuple(self_waits),
        contention=tuple(contention),
        warnings=tuple(warnings),
    )

    parts: list[str] = []
    parts.append("<!DOCTYPE html>\n")
    parts.append('<html lang="en">\n<head>\n')
    parts.append('  <meta charset="UTF-8">\n')
    parts.append('  <meta name="viewport" content="width=device-width, initial-scale=1.0">\n')
    parts.append("  <title>Thread Interaction Visualization</title>\n")
    parts.append(f'  <script src="{html.escape(settings.mermaid_script_url)}"></script>\n')
    parts.append("  <script>mermaid.initialize({startOnLoad:true});</script>\n")
    parts.append(f"  <style>\n{REPORT_CSS}  </style>\n")
    parts.append("</head>\n<body>\n")

    parts.append("<h1>Thread Interaction Visualization</h1>\n")
    parts.append(f'<p class="timestamp">Thread dump from: {html.escape(dump.timestamp)}</p>\n')

    if deadlocks:
        parts.append(
            '<div class="deadlock-warning">DEADLOCK DETECTED: this thread dump contains '
            f"{len(deadlocks)} circular wait(s) that will hang the application.</div>\n"
        )

    parts.append("<h2>Summary</h2>\n<table>\n")
    for label, value in build_overview_rows(analysis):
        parts.append(f"  <tr><th>{html.escape(label)}</th><td>{html.escape(value)}</td></tr>\n")
    parts.append("</table>\n")

    parts.append("<h2>Thread States</h2>\n<table>\n  <tr><th>State</th><th>Count</th></tr>\n")
    for state, count in build_state_rows(dump):
        parts.append(f"  <tr><td>{state}</td><td>{count}</td></tr>\n")
    parts.append("</table>\n")

    parts.append("<h2>Deadlocks</h2>\n")
    descriptions = build_deadlock_descriptions(deadlocks, dump)
    if descriptions:
        parts.append(f"<p>{len(descriptions)} deadlock group(s) detected.</p>\n")
        for index, chain in enumerate(descriptions, start=1):
            parts.append(f"<h3>Deadlock {index}</h3>\n")
            parts.append(_html_list(chain))
    else:
        parts.append(_html_none(NO_DEADLOCKS_TEXT))

    parts.append("<h2>Self-Wait Anomalies</h2>\n")
    self_wait_rows = build_self_wait_rows(self_waits, dump)
    parts.append(_html_list(self_wait_rows) if self_wait_rows else _html_none(NO_SELF_WAITS_TEXT))

    parts.append("<h2>Lock Contention</h2>\n")
    contention_rows = build_contention_rows(contention, dump, settings.top_n_contention)
    if contention_rows:
        if len(contention) > len(contention_rows):
            parts.append(f"<p>Top {len(contention_rows)} of {len(contention)} contended locks.</p>\n")
        parts.append(
            "<table>\n  <tr><th>#</th><th>Lock</th><th>Owner</th><th>Waiters</th>"
            "<th>Waiting threads</th></tr>\n"
        )
        for row in contention_rows:
            cells = "".join(
                f"<td>{html.escape(row[key])}</td>"
                for key in ("rank", "lock", "owner", "waiters", "waiter_names")
            )
            parts.append(f"  <tr>{cells}</tr>\n")
        parts.append("</table>\n")
    else:
        parts.append(_html_none(NO_CONTENTION_TEXT))

    parts.append("<h2>Data Notes</h2>\n")
    warning_rows = build_warning_rows(warnings)
    parts.append(_html_list(warning_rows) if warning_rows else _html_none(NO_WARNINGS_TEXT))

    parts.append("<h2>Thread State Legend</h2>\n<div class=\"legend\">\n")
    for css, label in LEGEND_ENTRIES:
        parts.append(
            f'  <div class="legend-item"><div class="legend-color {css}"></div>{label}</div>\n'
        )
    parts.append("</div>\n")

    tabs: list[tuple[str, str, str]] = [
        (
            "Thread Diagram",
            _mermaid_block(build_interaction_lines(dump, deadlocks, contention)),
            "Relationships between threads and locks. Solid arrows: holds. "
            "Dotted arrows: waits for. Thick arrows: part of a deadlock cycle.",
        ),
        (
            "Thread Timeline",
            _mermaid_block(build_timeline_lines([dump], [deadlocks])),
            "Thread states at the capture point.",
        ),
        (
            "Lock Contention",
            _mermaid_block(build_contention_lines(dump, deadlocks, contention)),
            "Contended locks and their waiting threads. Border width grows with the number "
            "of waiters.",
        ),
    ]
    if settings.include_raw_dump:
        raw = json.dumps(dump.model_dump(mode="json"), indent=2)
        tabs.append(("Normalized Dump", f"<pre>{html.escape(raw)}</pre>\n", ""))

    parts.append('<div class="tab-buttons">\n')
    for index, (title, _body, _caption) in enumerate(tabs):
        active = " active" if index == 0 else ""
        parts.append(
            f'  <div class="tab-button{active}" onclick="changeTab({index})">{title}</div>\n'
        )
    parts.append("</div>\n")
    for index, (title, body, caption) in enumerate(tabs):
        active = " active" if index == 0 else ""
        parts.append(f'<div class="tab-content{active}">\n<h2>{title}</h2>\n')
        parts.append(f'<div class="visualization-container">\n{body}</div>\n')
        if caption:
            parts.append(f"<p>{html.escape(caption)}</p>\n")
        parts.append("</div>\n")

    parts.append(f"<script>\n{REPORT_SCRIPT}</script>\n")
    parts.append("</body>\n</html>\n")
    return "".join(parts)
