from conftest import make_lock, make_thread
from thread_analyze.analysis import analyze_dump
from thread_analyze.contention import rank_contention
from thread_analyze.deadlock import find_deadlocks
from thread_analyze.models import AnalyzerSettings
from thread_analyze.parser import parse_dump
from thread_analyze.renderers import (
    NO_CONTENTION_TEXT,
    NO_DEADLOCKS_TEXT,
    build_contention_lines,
    build_interaction_lines,
    build_timeline_lines,
    contention_font_weight,
    contention_stroke_width,
    gantt_label,
    mermaid_label,
    render_contention_graph,
    render_interaction_diagram,
    render_markdown_summary,
    render_report,
    render_timeline,
)


def interaction(dump):
    return build_interaction_lines(dump, find_deadlocks(dump), rank_contention(dump))


def contention_lines(dump):
    return build_contention_lines(dump, find_deadlocks(dump), rank_contention(dump))


def report(dump, **kwargs):
    return render_report(dump, find_deadlocks(dump), rank_contention(dump), **kwargs)


# ============================================================
# INTERACTION DIAGRAM
# ============================================================


def test_interaction_diagram_is_fenced_mermaid(simple_dump):
    rendered = render_interaction_diagram(
        simple_dump, find_deadlocks(simple_dump), rank_contention(simple_dump)
    )
    assert rendered.startswith("```mermaid\ngraph TD\n")
    assert rendered.endswith("```\n")


def test_interaction_diagram_nodes_and_edges(simple_dump):
    lines = interaction(simple_dump)

    assert '    T1["Thread 1: main (RUNNABLE)"]:::runnable' in lines
    assert '    T3["Thread 3: worker-2 (BLOCKED)"]:::blocked' in lines
    assert '    L0["Lock: H"]:::contended' in lines
    assert "  T2 -->|holds| L0" in lines
    assert "  T3 -.->|waits for| L0" in lines


def test_interaction_diagram_highlights_deadlock(deadlock_dump):
    lines = interaction(deadlock_dump)

    assert '    T1["Thread 1: Thread-1 (BLOCKED)"]:::deadlock' in lines
    assert '    T3["Thread 3: main (WAITING)"]:::waiting' in lines
    assert '    L0["Lock: L1"]:::deadlock_lock' in lines
    assert "  T1 ==>|holds| L0" in lines
    assert "  T2 ==>|waits for| L0" in lines


def test_interaction_diagram_for_empty_dump(empty_dump):
    lines = interaction(empty_dump)
    assert '  No_Threads["No threads found in thread dump"]' in lines


def test_interaction_diagram_without_locks():
    dump = parse_dump({"threads": [make_thread(1)]}).dump
    lines = interaction(dump)
    assert any(line.startswith("  No_Locks[") for line in lines)


def test_interaction_diagram_marks_self_wait_and_uncaptured_threads():
    dump = parse_dump(
        {
            "threads": [make_thread(1, held=["L"], waiting=["L"]), make_thread(2, waiting=["X"])],
            "locks": [make_lock("L", owner=1, waiters=[1]), make_lock("X", owner=50, waiters=[2])],
        }
    ).dump

    lines = interaction(dump)

    assert any(line.startswith("    T1[") and line.endswith(":::self_wait") for line in lines)
    assert '    T50["Thread 50 (not captured)"]:::external' in lines
    assert "  T1 -.->|waits for own lock| L0" in lines


def test_labels_are_escaped():
    dump = parse_dump({"threads": [make_thread(1, name='pool "A" <io>')]}).dump
    lines = interaction(dump)

    assert '    T1["Thread 1: pool #quot;A#quot; #lt;io#gt; (RUNNABLE)"]:::runnable' in lines
    assert mermaid_label("a\nb") == "a b"
    assert gantt_label("db: pool #1; main") == "db pool 1 main"


def test_negative_thread_ids_get_valid_node_ids():
    dump = parse_dump({"threads": [make_thread(-3)]}).dump
    assert any(line.startswith("    Tn3[") for line in interaction(dump))


# ============================================================
# TIMELINE
# ============================================================


def test_timeline_merges_runs_of_identical_state(simple_payload):
    first = parse_dump(simple_payload).dump
    recovered = dict(simple_payload)
    recovered["threads"] = [
        make_thread(1, name="main"),
        make_thread(3, name="worker-2", state="RUNNABLE"),
    ]
    recovered["locks"] = []
    last = parse_dump(recovered).dump

    lines = build_timeline_lines([first, first, last])

    assert lines[0] == "gantt"
    assert "  title Thread state timeline (3 captures)" in lines
    assert "  section main (id 1)" in lines
    assert "  RUNNABLE :active, t1c0, 0, 3" in lines
    assert "  RUNNABLE :active, t2c0, 0, 2" in lines
    assert "  BLOCKED :crit, t3c0, 0, 2" in lines
    assert "  RUNNABLE :active, t3c2, 2, 3" in lines


def test_timeline_leaves_gap_for_missing_thread():
    present = parse_dump({"threads": [make_thread(1, state="WAITING")]}).dump
    absent = parse_dump({"threads": []}).dump

    lines = build_timeline_lines([present, absent, present])

    assert "  WAITING :t1c0, 0, 1" in lines
    assert "  WAITING :t1c2, 2, 3" in lines


def test_timeline_flags_deadlocked_threads(deadlock_dump):
    rendered = render_timeline([deadlock_dump])

    assert rendered.startswith("```mermaid\ngantt\n")
    assert "  BLOCKED (deadlock) :crit, t1c0, 0, 1" in rendered
    assert "  WAITING :t3c0, 0, 1" in rendered


def test_timeline_without_threads():
    lines = build_timeline_lines([])
    assert "  title Thread state timeline (0 captures)" in lines
    assert "  No threads captured :done, empty, 0, 1" in lines


# ============================================================
# CONTENTION GRAPH
# ============================================================


def test_contention_graph_for_single_lock(simple_dump):
    lines = contention_lines(simple_dump)

    assert lines[0] == "flowchart LR"
    assert '    L0["H | 1 waiter | owner: Thread 2 (worker-1)"]:::contended' in lines
    assert '    T3["Thread 3: worker-2 (BLOCKED)"]:::blocked' in lines
    assert "  T3 -.->|waits for| L0" in lines
    assert '    T2["Thread 2: worker-1 (RUNNABLE)"]:::runnable' in lines
    assert "  L0 -->|owned by| T2" in lines
    assert "  style L0 stroke-width:12px,font-weight:900" in lines
    assert not any("DeadlockWarning" in line for line in lines)


def test_contention_graph_without_contention(empty_dump):
    rendered = render_contention_graph(empty_dump, [], [])
    assert f'No_Contention["{NO_CONTENTION_TEXT}"]' in rendered


def test_contention_graph_warns_about_deadlock(deadlock_dump):
    lines = contention_lines(deadlock_dump)
    assert any(line.startswith('  DeadlockWarning["DEADLOCK DETECTED') for line in lines)
    assert '    L1["L2 | 1 waiter | owner: Thread 2 (Thread-2)"]:::deadlock_lock' in lines


def test_contention_graph_marks_unknown_owner():
    dump = parse_dump(
        {"threads": [make_thread(1, waiting=["L"])], "locks": [make_lock("L", waiters=[1])]}
    ).dump
    lines = contention_lines(dump)
    assert '    L0["L | 1 waiter | owner unknown"]:::owner_unknown' in lines
    assert '  Owner_Unknown["owner unknown"]:::owner_unknown' in lines
    assert "  L0 -.->|owned by| Owner_Unknown" in lines


def test_contention_graph_links_uncaptured_owner():
    dump = parse_dump(
        {"threads": [make_thread(1, waiting=["L"])], "locks": [make_lock("L", owner=9, waiters=[1])]}
    ).dump
    lines = contention_lines(dump)

    assert '    T9["Thread 9 (not captured)"]:::external' in lines
    assert "  L0 -->|owned by| T9" in lines
    assert not any("Owner_Unknown" in line for line in lines)


def test_contention_graph_owners_inside_a_cycle_are_not_redeclared(deadlock_dump):
    lines = contention_lines(deadlock_dump)

    assert "  L0 -->|owned by| T1" in lines
    assert "  L1 -->|owned by| T2" in lines
    assert sum(line.startswith("    T1[") for line in lines) == 1
    assert not any("lock_owners" in line for line in lines)


def test_stroke_width_scales_with_waiters():
    assert contention_stroke_width(4, 4) == 12
    assert contention_stroke_width(1, 4) == 3
    assert contention_stroke_width(1, 100) == 1


def test_font_weight_scales_with_waiters():
    assert contention_font_weight(4, 4) == 900
    assert contention_font_weight(2, 4) == 600
    assert contention_font_weight(1, 100) == 400


# ============================================================
# MARKDOWN SUMMARY AND HTML REPORT
# ============================================================


def test_markdown_summary_for_deadlock(fixtures_dir):
    parsed = parse_dump((fixtures_dir / "deadlock_pair.json").read_text(encoding="utf-8"))
    summary = render_markdown_summary(analyze_dump(parsed), parsed.dump)

    assert summary.startswith("# Thread Dump Analysis\n")
    assert "### Deadlock 1" in summary
    assert "- Thread 1 (Thread-1) waits for L2 held by Thread 2 (Thread-2)\n" in summary
    assert "```mermaid\ngraph TD\n" in summary


def test_markdown_summary_without_problems(simple_payload):
    parsed = parse_dump(simple_payload)
    summary = render_markdown_summary(analyze_dump(parsed), parsed.dump)

    assert f"{NO_DEADLOCKS_TEXT}." in summary
    assert "| 1 | `H` | Thread 2 (worker-1) | 1 | worker-2 |" in summary
    assert "## Data Notes" not in summary


def test_report_for_empty_dump_says_nothing_was_found(empty_dump):
    page = report(empty_dump)

    assert page.startswith("<!DOCTYPE html>")
    assert NO_DEADLOCKS_TEXT in page
    assert NO_CONTENTION_TEXT in page
    assert '<div class="deadlock-warning">' not in page


def test_report_shows_deadlock_banner_and_tabs(deadlock_dump):
    page = report(deadlock_dump)

    assert '<div class="deadlock-warning">DEADLOCK DETECTED' in page
    assert "<h3>Deadlock 1</h3>" in page
    for title in ("Thread Diagram", "Thread Timeline", "Lock Contention", "Normalized Dump"):
        assert f"<h2>{title}</h2>" in page
    assert '<pre class="mermaid">\ngraph TD' in page
    assert "T1 ==&gt;|holds| L0" in page


def test_report_escapes_dump_content():
    dump = parse_dump(
        {"timestamp": "<script>alert(1)</script>", "threads": [make_thread(1, name="<b>x</b>")]}
    ).dump
    page = report(dump)

    assert "<script>alert(1)</script>" not in page
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in page
    assert "<b>x</b>" not in page


def test_report_honours_settings():
    dump = parse_dump(
        {
            "threads": [make_thread(i) for i in range(1, 5)],
            "locks": [make_lock("A", owner=1, waiters=[2, 3]), make_lock("B", owner=1, waiters=[4])],
        }
    ).dump
    settings = AnalyzerSettings(top_n_contention=1, include_raw_dump=False)

    page = report(dump, settings=settings)

    assert "Top 1 of 2 contended locks." in page
    assert "Normalized Dump" not in page
    assert settings.mermaid_script_url in page


def test_report_is_deterministic(deadlock_dump):
    assert report(deadlock_dump) == report(deadlock_dump)
