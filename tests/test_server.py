from __future__ import annotations

import asyncio
import json
import threading
from pathlib import Path

import pytest

from adrlens.config import AdrLensConfig
from adrlens.exceptions import ProcessFailure
from adrlens.host import MessageLevel
from adrlens.model import (
    DiagnosticEntry,
    DiagnosticSeverity,
    DiagnosticTag,
    RelatedInfo,
    ScanSession,
    TextRange,
)
from adrlens.workspace import WorkspaceSession
from tests.fakes import FakeAnalyzer, FakeHost, FakeScheduler, write_adr


def _load():
    pytest.importorskip("pygls")
    pytest.importorskip("lsprotocol")
    from adrlens import server

    return server


class _Protocol:
    def __init__(self) -> None:
        self.notifications: list[tuple[str, object]] = []

    def notify(self, method: str, params: object = None) -> None:
        self.notifications.append((method, params))


class _Workspace:
    def __init__(self, root: Path) -> None:
        self.root_path = str(root)
        self.folders: dict[str, object] = {}
        self.text_documents: dict[str, object] = {}


class _LanguageServer:
    def __init__(self, root: Path) -> None:
        self.workspace = _Workspace(root)
        self.protocol = _Protocol()
        self.published: list[object] = []
        self.shown: list[object] = []
        self.registrations: list[object] = []

    def text_document_publish_diagnostics(self, params: object) -> None:
        self.published.append(params)

    def window_show_message(self, params: object) -> None:
        self.shown.append(params)

    def client_register_capability(self, params: object, callback: object = None) -> None:
        self.registrations.append(params)


def _state(server, analyzer: FakeAnalyzer, root: Path, host: FakeHost):
    def _factory(roots, config, _host, *, line_source, scheduler):
        return WorkspaceSession(
            roots,
            config,
            host,
            scheduler=scheduler,
            analyzer=analyzer,
            line_source=line_source,
        )

    state = server.ServerState(session_factory=_factory)
    state.open([root], host, line_source=lambda _path: None, scheduler=FakeScheduler())
    return state


def test_start_uses_injected_callable() -> None:
    server = _load()
    called = {"value": False}

    def _start() -> None:
        called["value"] = True

    server.start(_start)
    assert called["value"] is True


def test_uri_to_path() -> None:
    server = _load()
    path = Path("/tmp/demo file.md")
    assert server._uri_to_path(path.as_uri()) == path
    assert server._uri_to_path("relative/path.md") == Path("relative/path.md")


def test_diagnostic_conversion_keeps_lsp_values() -> None:
    server = _load()
    text_range = TextRange.on_line(2, 1, 5)
    entry = DiagnosticEntry(
        range=text_range,
        message="Drift: described",
        severity=DiagnosticSeverity.WARNING,
        code="d1",
        related_info=(RelatedInfo(Path("/w/a.md"), text_range, "Category: API"),),
        tags=(DiagnosticTag.DEPRECATED,),
    )

    diagnostic = server.to_lsp_diagnostic(entry)

    assert diagnostic.range.start.line == 2
    assert diagnostic.range.end.character == 5
    assert int(diagnostic.severity) == 2
    assert diagnostic.source == "analyzer"
    assert diagnostic.code == "d1"
    assert diagnostic.related_information[0].location.uri == Path("/w/a.md").as_uri()
    assert [int(tag) for tag in diagnostic.tags] == [2]


def test_lsp_host_forwards_to_client(tmp_path: Path) -> None:
    server = _load()
    ls = _LanguageServer(tmp_path)
    host = server.LspEditorHost(ls)

    host.publish_diagnostics(tmp_path / "a.md", [])
    host.update_status(ScanSession())
    host.refresh_tree()
    host.show_message(MessageLevel.ERROR, "Analyzer failed")

    assert ls.published[0].uri == (tmp_path / "a.md").as_uri()
    assert ls.published[0].diagnostics == []
    (status_method, status_payload), (tree_method, _) = ls.protocol.notifications
    assert status_method == server.STATUS_NOTIFICATION
    assert status_payload["state"] == "idle"
    assert status_payload["text"] == "$(check) adrscan: 0 drifts"
    assert tree_method == server.TREE_NOTIFICATION
    assert ls.shown[0].message == "Analyzer failed"


def test_scan_command_returns_status_and_results(tmp_path: Path) -> None:
    server = _load()
    raw = json.dumps([{"title": "T", "severity": "High", "location": {"file": "a.md"}}])
    host = FakeHost()
    state = _state(server, FakeAnalyzer({"scan": raw}), tmp_path, host)

    response = state.execute(server.SCAN_COMMAND, {})

    assert response["state"] == "completed"
    assert response["drift_count"] == 1
    assert response["results"][0]["title"] == "T"
    assert list(host.published) == [(tmp_path / "a.md").resolve()]
    assert state.execute(server.STATUS_COMMAND)["state"] == "completed"
    settled = state.execute(server.STATUS_COMMAND)
    assert settled["state"] == "idle"
    assert settled["drift_count"] == 1
    assert state.execute(server.CANCEL_SCAN_COMMAND)["state"] == "idle"
    assert host.statuses[-1].state == "idle"


def test_tree_and_metadata_commands(tmp_path: Path) -> None:
    server = _load()
    adr = write_adr(tmp_path / "docs/adr/0001.adr.md", title="One", status="Accepted")
    state = _state(server, FakeAnalyzer(), tmp_path, FakeHost())

    nodes = state.execute(server.TREE_COMMAND)["nodes"]
    assert [node["label"] for node in nodes] == ["One"]
    assert nodes[0]["metadata"]["status"] == "Accepted"

    metadata = state.execute(server.METADATA_COMMAND, [{"path": str(adr)}])
    assert metadata["title"] == "One"
    assert state.execute(server.METADATA_COMMAND, {})["exit_code"] == 2


def test_authoring_commands(tmp_path: Path) -> None:
    server = _load()
    analyzer = FakeAnalyzer(
        {
            "init": "",
            "list": "0001.adr.md - Accepted - 2024-01-01",
            "propose": json.dumps({"title": "P"}),
            "new": "",
            "index": "",
            "report": "",
        }
    )
    host = FakeHost()
    state = _state(server, analyzer, tmp_path, host)

    assert state.execute(server.INIT_COMMAND)["message"] == "ADR structure initialized"
    assert state.execute(server.INVENTORY_COMMAND)["items"][0]["status"] == "Accepted"
    assert state.execute(server.PROPOSE_COMMAND, {"context": "ctx"})["title"] == "P"
    assert state.execute(server.PROPOSE_COMMAND, {})["errors"] == ["context is required"]
    assert state.execute(server.NEW_ADR_COMMAND, {"title": "My ADR"})["path"].endswith(
        "my-adr.adr.md"
    )
    assert state.execute(server.NEW_ADR_COMMAND, {})["exit_code"] == 2
    assert state.execute(server.INDEX_COMMAND)["path"].endswith("README.md")
    assert state.execute(server.REPORT_COMMAND)["path"].endswith("drift-report.md")
    assert host.tree_refreshes == 2


def test_command_failures_are_reported(tmp_path: Path) -> None:
    server = _load()
    host = FakeHost()
    state = _state(server, FakeAnalyzer({"list": ProcessFailure(1, "config error")}), tmp_path, host)

    response = state.execute(server.INVENTORY_COMMAND)

    assert response["exit_code"] == 2
    assert "config error" in response["errors"][0]
    assert host.messages == [(MessageLevel.ERROR, response["errors"][0])]
    assert state.execute("adrlens.bogus")["errors"] == ["unknown command: adrlens.bogus"]


def test_commands_before_initialization_fail_cleanly() -> None:
    server = _load()
    state = server.ServerState()
    assert state.execute(server.STATUS_COMMAND)["exit_code"] == 2


def test_settings_flow_into_session_config(tmp_path: Path) -> None:
    server = _load()
    seen: list[AdrLensConfig] = []

    def _factory(roots, config, host, *, line_source, scheduler):
        seen.append(config)
        return WorkspaceSession(roots, config, host, scheduler=scheduler, analyzer=FakeAnalyzer())

    state = server.ServerState(session_factory=_factory)
    state.update_settings({"adrlens": {"adrDirectory": "decisions"}})
    state.open([tmp_path], FakeHost(), line_source=lambda _path: None, scheduler=FakeScheduler())
    state.update_settings("not a mapping")
    state.open([tmp_path], FakeHost(), line_source=lambda _path: None, scheduler=FakeScheduler())
    state.close()

    assert [config.adr_directory for config in seen] == ["decisions", "docs/adr"]
    assert state.session is None


def test_initialized_registers_watcher_and_shutdown_disposes(tmp_path: Path) -> None:
    server = _load()
    write_adr(tmp_path / "docs/adr/0001.adr.md", title="One", status="Accepted")
    ls = _LanguageServer(tmp_path)

    async def _session_lifetime() -> None:
        try:
            server.initialized(ls, None)
            await asyncio.sleep(0)
        finally:
            server.shutdown(ls, None)

    asyncio.run(_session_lifetime())

    (registration_params,) = ls.registrations
    (registration,) = registration_params.registrations
    assert registration.method == "workspace/didChangeWatchedFiles"
    methods = [method for method, _ in ls.protocol.notifications]
    assert methods == [server.STATUS_NOTIFICATION, server.TREE_NOTIFICATION]
    assert server._state.session is None


def test_lsp_host_posts_client_calls_onto_the_loop(tmp_path: Path) -> None:
    server = _load()
    ls = _LanguageServer(tmp_path)
    loop = asyncio.new_event_loop()
    try:
        host = server.LspEditorHost(ls, loop)
        worker = threading.Thread(
            target=lambda: (
                host.publish_diagnostics(tmp_path / "a.md", []),
                host.show_message(MessageLevel.WARNING, "slow analyzer"),
            )
        )
        worker.start()
        worker.join()
        assert ls.published == []
        assert ls.shown == []

        loop.run_until_complete(asyncio.sleep(0))
    finally:
        loop.close()

    assert ls.published[0].uri == (tmp_path / "a.md").as_uri()
    assert ls.shown[0].message == "slow analyzer"


def test_loop_scheduler_runs_timers_and_background_work() -> None:
    server = _load()
    loop = asyncio.new_event_loop()
    scheduler = server.LoopScheduler(loop)
    fired: list[str] = []
    finished = threading.Event()
    try:
        scheduler.call_later(0, lambda: fired.append("due"))
        scheduler.call_later(60, lambda: fired.append("cancelled")).cancel()
        scheduler.run_in_background(finished.set)
        loop.run_until_complete(asyncio.sleep(0.01))
        assert finished.wait(5)
        loop.run_until_complete(loop.shutdown_default_executor())
    finally:
        loop.close()

    assert fired == ["due"]
