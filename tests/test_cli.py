import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from thread_analyze import __version__
from thread_analyze.cli import ExitCode, app

BASE_DIR = Path(__file__).parent
FIXTURES = BASE_DIR / "fixtures"
SIMPLE = FIXTURES / "simple_contention.json"
DEADLOCK = FIXTURES / "deadlock_pair.json"
EMPTY = FIXTURES / "empty_dump.json"
MALFORMED = FIXTURES / "malformed.json"

runner = CliRunner()


def flat(text):
    """Undo console line wrapping so assertions don't depend on terminal width."""
    return " ".join(text.split())


def invoke(*args):
    return runner.invoke(app, [str(arg) for arg in args])


# ============================================================
# ANALYZE
# ============================================================


def test_analyze_prints_summary():
    result = invoke("analyze", SIMPLE)

    assert result.exit_code == ExitCode.OK
    output = flat(result.output)
    assert "2024-01-15T10:30:45Z" in output
    assert "No deadlocks detected" in output
    assert "worker-2" in output


def test_analyze_json_output():
    result = invoke("analyze", SIMPLE, "--json")

    assert result.exit_code == ExitCode.OK
    payload = json.loads(result.stdout)
    assert payload["thread_count"] == 3
    assert payload["deadlocks"] == []
    assert payload["contention"][0]["lock_identity"] == "H"
    assert payload["contention"][0]["waiter_ids"] == [3]
    assert payload["state_counts"]["BLOCKED"] == 1


def test_analyze_exports_markdown(tmp_path):
    target = tmp_path / "analysis.md"

    result = invoke("analyze", DEADLOCK, "--output", target)

    assert result.exit_code == ExitCode.OK
    content = target.read_text(encoding="utf-8")
    assert content.startswith("# Thread Dump Analysis")
    assert "### Deadlock 1" in content


def test_analyze_does_not_fail_on_deadlock():
    result = invoke("analyze", DEADLOCK)
    assert result.exit_code == ExitCode.OK
    assert "Deadlock 1" in flat(result.output)


# ============================================================
# DETECT-DEADLOCKS
# ============================================================


def test_detect_deadlocks_exit_code_signals_deadlock():
    result = invoke("detect-deadlocks", DEADLOCK)

    assert result.exit_code == ExitCode.DEADLOCK_FOUND
    output = flat(result.output)
    assert "DEADLOCK 1" in output
    assert "waits for L2" in output


def test_detect_deadlocks_clean_dump():
    result = invoke("detect-deadlocks", SIMPLE)

    assert result.exit_code == ExitCode.OK
    assert "No deadlocks detected" in flat(result.output)


def test_detect_deadlocks_json():
    result = invoke("detect-deadlocks", DEADLOCK, "--json")

    assert result.exit_code == ExitCode.DEADLOCK_FOUND
    payload = json.loads(result.stdout)
    assert set(payload) == {"timestamp", "deadlocks", "self_waits"}
    assert payload["deadlocks"] == [{"thread_ids": [1, 2], "lock_chain": ["L2", "L1"]}]


def test_detect_deadlocks_reports_self_wait_without_failing(tmp_path):
    source = tmp_path / "self_wait.json"
    source.write_text(
        json.dumps(
            {
                "threads": [
                    {"id": 7, "name": "loop", "state": "WAITING", "locks_held": ["M"], "locks_waiting": ["M"]}
                ],
                "locks": [{"identity": "M", "owner_thread": 7, "waiting_threads": [7]}],
            }
        ),
        encoding="utf-8",
    )

    result = invoke("detect-deadlocks", source)

    assert result.exit_code == ExitCode.OK
    assert "Self-wait anomaly" in flat(result.output)


# ============================================================
# ARTIFACT COMMANDS
# ============================================================


def test_diagram_writes_mermaid(tmp_path):
    target = tmp_path / "diagram.md"

    result = invoke("diagram", DEADLOCK, target)

    assert result.exit_code == ExitCode.OK
    assert "Deadlock detected!" in flat(result.output)
    content = target.read_text(encoding="utf-8")
    assert content.startswith("```mermaid\ngraph TD\n")
    assert ":::deadlock" in content


def test_contention_writes_mermaid(tmp_path):
    target = tmp_path / "contention.md"

    result = invoke("contention", SIMPLE, target)

    assert result.exit_code == ExitCode.OK
    assert "Generated lock contention graph" in flat(result.output)
    assert "flowchart LR" in target.read_text(encoding="utf-8")


def test_timeline_accepts_several_captures(tmp_path):
    target = tmp_path / "timeline.md"

    result = invoke("timeline", SIMPLE, DEADLOCK, EMPTY, target)

    assert result.exit_code == ExitCode.OK
    content = target.read_text(encoding="utf-8")
    assert "gantt" in content
    assert "title Thread state timeline (3 captures)" in content


def test_visualize_writes_html_report(tmp_path):
    target = tmp_path / "report.html"

    result = invoke("visualize", DEADLOCK, target)

    assert result.exit_code == ExitCode.OK
    page = target.read_text(encoding="utf-8")
    assert page.startswith("<!DOCTYPE html>")
    assert "DEADLOCK DETECTED" in page
    assert "Normalized Dump" in page


def test_visualize_without_raw_dump(tmp_path):
    target = tmp_path / "report.html"

    result = invoke("visualize", EMPTY, target, "--no-raw")

    assert result.exit_code == ExitCode.OK
    page = target.read_text(encoding="utf-8")
    assert "No deadlocks detected" in page
    assert "No contention detected" in page
    assert "Normalized Dump" not in page


def test_unwritable_output_is_internal_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("", encoding="utf-8")

    result = invoke("diagram", SIMPLE, blocker / "diagram.md")

    assert result.exit_code == ExitCode.INTERNAL_ERROR


# ============================================================
# INPUT ERRORS
# ============================================================


@pytest.mark.parametrize("command", ["diagram", "contention", "visualize"])
def test_malformed_input_writes_nothing(tmp_path, command):
    target = tmp_path / "artifact.out"

    result = invoke(command, MALFORMED, target)

    assert result.exit_code == ExitCode.INPUT_ERROR
    assert "ERROR" in result.output
    assert not target.exists()


def test_timeline_stops_at_first_bad_capture(tmp_path):
    target = tmp_path / "timeline.md"

    result = invoke("timeline", SIMPLE, MALFORMED, target)

    assert result.exit_code == ExitCode.INPUT_ERROR
    assert not target.exists()


def test_missing_input_file(tmp_path):
    result = invoke("analyze", tmp_path / "nope.json")

    assert result.exit_code == ExitCode.INPUT_ERROR
    assert "ERROR" in result.output


def test_input_over_size_limit(tmp_path):
    source = tmp_path / "large.json"
    source.write_text('{"threads": []}' + " " * 4096, encoding="utf-8")

    result = invoke("analyze", source, "--max-size-mb", "0.001")

    assert result.exit_code == ExitCode.INPUT_ERROR


def test_every_command_exits_with_documented_code(tmp_path):
    for source in (SIMPLE, DEADLOCK, EMPTY, MALFORMED):
        for command in ("diagram", "contention", "visualize", "timeline"):
            result = invoke(command, source, tmp_path / f"{command}.out")
            assert result.exit_code in (ExitCode.OK, ExitCode.INPUT_ERROR), (command, source)
        for command in ("analyze", "detect-deadlocks"):
            result = invoke(command, source)
            assert result.exit_code in (
                ExitCode.OK,
                ExitCode.DEADLOCK_FOUND,
                ExitCode.INPUT_ERROR,
            ), (command, source)


def test_version():
    result = invoke("version")

    assert result.exit_code == ExitCode.OK
    assert f"thread-analyze {__version__}" in result.output


def test_unusable_input_path_is_an_input_error(tmp_path):
    result = invoke("detect-deadlocks", tmp_path / ("x" * 300 + ".json"))

    assert result.exit_code == ExitCode.INPUT_ERROR
    assert "ERROR" in result.output


def test_output_path_that_is_a_directory_is_a_write_failure(tmp_path):
    target = tmp_path / "reports"
    target.mkdir()

    result = invoke("visualize", SIMPLE, target)

    assert result.exit_code == ExitCode.INTERNAL_ERROR
    assert target.is_dir()
    assert list(target.iterdir()) == []
