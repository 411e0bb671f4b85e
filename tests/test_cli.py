from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from adrlens import cli
from adrlens.exceptions import NotFound, ProcessFailure
from tests.fakes import FakeAnalyzer, write_adr


def _invoke(args: list[str], analyzer: FakeAnalyzer | None = None, **obj: object):
    runner = CliRunner()
    context: dict[str, object] = dict(obj)
    if analyzer is not None:
        context["analyzer_factory"] = lambda _executable, _root: analyzer
    return runner.invoke(cli.app, args, obj=context)


def test_help_lists_commands() -> None:
    result = _invoke(["--help"])
    assert result.exit_code == 0
    for name in ("scan", "tree", "metadata", "inventory", "propose", "report", "new", "index", "lsp"):
        assert name in result.output


def test_scan_text_output(tmp_path: Path) -> None:
    analyzer = FakeAnalyzer({"scan": "Found drift: X\nSeverity: high\nFile: a.md:3\n"})

    result = _invoke(["scan", "--root", str(tmp_path)], analyzer)

    assert result.exit_code == 0
    assert "a.md:3: [high] X: No description" in result.output
    assert "1 drift item detected" in result.output


def test_scan_json_output_and_fail_on_drift(tmp_path: Path) -> None:
    raw = json.dumps([{"id": "d1", "title": "T", "severity": "Low", "mlScore": 0.2}])
    analyzer = FakeAnalyzer({"scan": raw})

    result = _invoke(
        ["scan", "--root", str(tmp_path), "--format", "json", "--fail-on-drift"], analyzer
    )

    assert result.exit_code == cli.EXIT_DRIFT
    payload = json.loads(result.output)
    assert payload["drift_count"] == 1
    assert payload["exit_code"] == cli.EXIT_DRIFT
    assert payload["results"][0]["mlScore"] == 0.2
    assert payload["results"][0]["level"] == "low"


def test_scan_with_no_drift_passes_fail_on_drift(tmp_path: Path) -> None:
    result = _invoke(
        ["scan", "--root", str(tmp_path), "--fail-on-drift"], FakeAnalyzer({"scan": "[]"})
    )
    assert result.exit_code == 0
    assert "0 drift items detected" in result.output


def test_scan_failures_map_to_exit_codes(tmp_path: Path) -> None:
    failed = _invoke(
        ["scan", "--root", str(tmp_path)],
        FakeAnalyzer({"scan": ProcessFailure(1, "config error")}),
    )
    assert failed.exit_code == cli.EXIT_FAILURE
    assert "config error" in failed.output

    missing = _invoke(
        ["scan", "--root", str(tmp_path)], FakeAnalyzer({"scan": NotFound("adrscan")})
    )
    assert missing.exit_code == cli.EXIT_NOT_FOUND
    assert "Install adrscan" in missing.output


def test_unsupported_format_is_rejected(tmp_path: Path) -> None:
    result = _invoke(["tree", "--root", str(tmp_path), "--format", "xml"])
    assert result.exit_code == cli.EXIT_FAILURE


def test_tree_text_and_json(tmp_path: Path) -> None:
    write_adr(tmp_path / "docs/adr/0001.adr.md", title="Use Postgres", status="Accepted")
    write_adr(tmp_path / "docs/adr/old/0000.adr.md", title="Legacy", status="Superseded")

    text = _invoke(["tree", "--root", str(tmp_path)])
    assert text.exit_code == 0
    assert "old/" in text.output
    assert "  Legacy [Superseded] (0000.adr.md)" in text.output
    assert "Use Postgres [Accepted] (0001.adr.md)" in text.output

    as_json = _invoke(["tree", "--root", str(tmp_path), "--format", "json"])
    nodes = json.loads(as_json.output)["nodes"]
    assert [node["kind"] for node in nodes] == ["directory", "document"]
    assert nodes[1]["icon"] == {"name": "check", "color": "green"}


def test_tree_reports_missing_directory(tmp_path: Path) -> None:
    result = _invoke(["tree", "--root", str(tmp_path)])
    assert result.exit_code == 0
    assert "No ADR documents" in result.output


def test_metadata_command(tmp_path: Path) -> None:
    adr = write_adr(tmp_path / "0001.adr.md", title="Use Postgres", status="Proposed")

    text = _invoke(["metadata", str(adr)])
    assert "Status: Proposed" in text.output
    assert "Summary: Why use postgres matters." in text.output

    as_json = _invoke(["metadata", str(adr), "--format", "json"])
    assert json.loads(as_json.output)["title"] == "Use Postgres"


def test_inventory_propose_new_index_and_report(tmp_path: Path) -> None:
    context_file = tmp_path / "change.txt"
    context_file.write_text("we now publish events", encoding="utf-8")
    analyzer = FakeAnalyzer(
        {
            "list": json.dumps([{"title": "A", "status": "Accepted", "date": "2024", "file": "a.adr.md"}]),
            "propose": json.dumps({"title": "Adopt Events", "decision": "Publish events"}),
            "new": "Created: docs/adr/0009-adopt-events.adr.md",
            "index": "",
            "scan": "[]",
            "report": "",
            "init": "",
        }
    )
    root = ["--root", str(tmp_path)]

    assert "a.adr.md - Accepted - 2024 - A" in _invoke(["inventory", *root], analyzer).output
    proposed = _invoke(["propose", str(context_file), *root], analyzer)
    assert "# Adopt Events" in proposed.output
    assert "Publish events" in proposed.output
    assert "0009-adopt-events.adr.md" in _invoke(["new", "Adopt Events", *root], analyzer).output
    assert "README.md" in _invoke(["index", *root], analyzer).output
    assert "drift-report.md" in _invoke(["report", *root], analyzer).output
    assert "ADR structure initialized" in _invoke(["init", *root], analyzer).output
    assert [call[0] for call in analyzer.calls] == [
        "list",
        "propose",
        "new",
        "index",
        "scan",
        "report",
        "init",
    ]


def test_propose_with_unreadable_context_file(tmp_path: Path) -> None:
    result = _invoke(["propose", str(tmp_path / "missing.txt")], FakeAnalyzer())
    assert result.exit_code == cli.EXIT_FAILURE


def test_propose_into_missing_root_exits_with_failure(tmp_path: Path) -> None:
    context_file = tmp_path / "change.txt"
    context_file.write_text("we now publish events", encoding="utf-8")
    analyzer = FakeAnalyzer({"propose": "{}"})

    result = _invoke(
        ["propose", str(context_file), "--root", str(tmp_path / "missing")], analyzer
    )

    assert result.exit_code == cli.EXIT_FAILURE
    assert "error:" in result.output
    assert analyzer.calls == []


def test_lsp_command_uses_injected_starter() -> None:
    started: list[bool] = []
    result = _invoke(["lsp"], start_server=lambda: started.append(True))
    assert result.exit_code == 0
    assert started == [True]
