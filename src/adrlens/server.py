from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol, Sequence
from urllib.parse import unquote, urlparse

from pygls.lsp.server import LanguageServer
from lsprotocol.types import (
    INITIALIZE,
    INITIALIZED,
    SHUTDOWN,
    TEXT_DOCUMENT_DID_SAVE,
    WORKSPACE_DID_CHANGE_CONFIGURATION,
    WORKSPACE_DID_CHANGE_WATCHED_FILES,
    Diagnostic,
    DiagnosticRelatedInformation,
    DidChangeConfigurationParams,
    DidChangeWatchedFilesParams,
    DidChangeWatchedFilesRegistrationOptions,
    DidSaveTextDocumentParams,
    FileChangeType,
    FileSystemWatcher,
    InitializeParams,
    InitializedParams,
    Location,
    MessageType,
    Position,
    PublishDiagnosticsParams,
    Range,
    Registration,
    RegistrationParams,
    ShowMessageParams,
)
from lsprotocol.types import DiagnosticSeverity as LspDiagnosticSeverity
from lsprotocol.types import DiagnosticTag as LspDiagnosticTag

from adrlens import __version__
from adrlens.config import AdrLensConfig, resolve_config
from adrlens.diagnostics import LineSource
from adrlens.exceptions import AdrLensError, NotFound
from adrlens.host import EditorHost, MessageLevel, Scheduler
from adrlens.json_types import JSONObject
from adrlens.model import DiagnosticEntry, ScanSession, TextRange
from adrlens.schema import (
    InventoryResponse,
    MessageResponse,
    PathResponse,
    TreeResponse,
    drift_result_dto,
    inventory_dto,
    metadata_dto,
    proposal_dto,
    status_dto,
    tree_node_dto,
)
from adrlens.watch import FileEventKind
from adrlens.workspace import WorkspaceSession

logger = logging.getLogger(__name__)

server = LanguageServer("adrlens", __version__)
SCAN_COMMAND = "adrlens.scan"
CANCEL_SCAN_COMMAND = "adrlens.cancelScan"
STATUS_COMMAND = "adrlens.status"
TREE_COMMAND = "adrlens.tree"
METADATA_COMMAND = "adrlens.metadata"
INIT_COMMAND = "adrlens.init"
INVENTORY_COMMAND = "adrlens.inventory"
PROPOSE_COMMAND = "adrlens.propose"
REPORT_COMMAND = "adrlens.report"
NEW_ADR_COMMAND = "adrlens.newAdr"
INDEX_COMMAND = "adrlens.index"
STATUS_NOTIFICATION = "adrlens/status"
TREE_NOTIFICATION = "adrlens/treeChanged"
WATCHER_REGISTRATION_ID = "adrlens-watched-files"

_MESSAGE_TYPES = {
    MessageLevel.INFO: MessageType.Info,
    MessageLevel.WARNING: MessageType.Warning,
    MessageLevel.ERROR: MessageType.Error,
}
_FILE_EVENT_KINDS = {
    FileChangeType.Created: FileEventKind.CREATED,
    FileChangeType.Changed: FileEventKind.CHANGED,
    FileChangeType.Deleted: FileEventKind.DELETED,
}


class SessionFactory(Protocol):
    def __call__(
        self,
        roots: Sequence[Path],
        config: AdrLensConfig,
        host: EditorHost,
        *,
        line_source: LineSource,
        scheduler: Scheduler,
    ) -> WorkspaceSession: ...


def _uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(uri)


def _lsp_range(text_range: TextRange) -> Range:
    return Range(
        start=Position(line=text_range.start.line, character=text_range.start.character),
        end=Position(line=text_range.end.line, character=text_range.end.character),
    )


def to_lsp_diagnostic(entry: DiagnosticEntry) -> Diagnostic:
    related = [
        DiagnosticRelatedInformation(
            location=Location(uri=info.file.as_uri(), range=_lsp_range(info.range)),
            message=info.message,
        )
        for info in entry.related_info
    ]
    return Diagnostic(
        range=_lsp_range(entry.range),
        message=entry.message,
        severity=LspDiagnosticSeverity(int(entry.severity)),
        source=entry.source,
        code=entry.code,
        related_information=related or None,
        tags=[LspDiagnosticTag(int(tag)) for tag in entry.tags] or None,
    )


class LspEditorHost:
    """EditorHost backed by a connected language client.

    Scans commit from the loop's worker pool, so with a ``loop`` every client
    call is posted back onto the event loop thread.
    """

    def __init__(
        self, ls: LanguageServer, loop: asyncio.AbstractEventLoop | None = None
    ) -> None:
        self._ls = ls
        self._loop = loop

    def _post(self, call: Callable[..., Any], *args: Any) -> None:
        if self._loop is None:
            call(*args)
        else:
            self._loop.call_soon_threadsafe(call, *args)

    def publish_diagnostics(self, path: Path, entries: list[DiagnosticEntry]) -> None:
        params = PublishDiagnosticsParams(
            uri=path.as_uri(),
            diagnostics=[to_lsp_diagnostic(entry) for entry in entries],
        )
        self._post(self._ls.text_document_publish_diagnostics, params)

    def update_status(self, session: ScanSession) -> None:
        self._post(self._ls.protocol.notify, STATUS_NOTIFICATION, status_dto(session).model_dump())

    def refresh_tree(self) -> None:
        self._post(self._ls.protocol.notify, TREE_NOTIFICATION, {})

    def show_message(self, level: MessageLevel, text: str) -> None:
        params = ShowMessageParams(type=_MESSAGE_TYPES[MessageLevel(level)], message=text)
        self._post(self._ls.window_show_message, params)


def _report_background_failure(future: Future[None] | asyncio.Future[None]) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("background task failed", exc_info=exc)


class LoopScheduler:
    """Scheduler on the language server's event loop and its default executor."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._loop.call_later(delay_seconds, callback)

    def run_in_background(self, target: Callable[[], None]) -> None:
        future = self._loop.run_in_executor(None, target)
        future.add_done_callback(_report_background_failure)


def _workspace_roots(ls: LanguageServer) -> list[Path]:
    folders = getattr(ls.workspace, "folders", None) or {}
    roots = [_uri_to_path(folder.uri) for folder in folders.values()]
    if not roots and ls.workspace.root_path:
        roots = [Path(ls.workspace.root_path)]
    return roots or [Path.cwd()]


def _open_document_lines(ls: LanguageServer) -> LineSource:
    def _lines(path: Path) -> Sequence[str] | None:
        document = ls.workspace.text_documents.get(path.as_uri())
        if document is None:
            return None
        return document.lines

    return _lines


def _payload_text(payload: object, key: str) -> str | None:
    if isinstance(payload, list) and payload:
        payload = payload[0]
    if not isinstance(payload, Mapping):
        return None
    value = payload.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _failure(exc: AdrLensError) -> JSONObject:
    message = str(exc)
    if isinstance(exc, NotFound):
        message = f"{message} {exc.remediation}"
    return {"exit_code": 2, "errors": [message]}


class ServerState:
    """The workspace session owned by a language server, plus its settings."""

    def __init__(self, *, session_factory: SessionFactory = WorkspaceSession) -> None:
        self._session_factory = session_factory
        self.settings: dict[str, object] = {}
        self.session: WorkspaceSession | None = None

    def open(
        self,
        roots: Sequence[Path],
        host: EditorHost,
        *,
        line_source: LineSource,
        scheduler: Scheduler,
    ) -> WorkspaceSession:
        self.close()
        config = resolve_config(roots[0], settings=self.settings)
        self.session = self._session_factory(
            roots, config, host, line_source=line_source, scheduler=scheduler
        )
        logger.info("adrlens session opened for %s", ", ".join(str(root) for root in roots))
        return self.session

    def close(self) -> None:
        if self.session is not None:
            self.session.dispose()
            self.session = None

    def update_settings(self, settings: object) -> None:
        self.settings = dict(settings) if isinstance(settings, Mapping) else {}

    def execute(self, command: str, payload: object = None) -> JSONObject:
        session = self.session
        if session is None:
            return {"exit_code": 2, "errors": ["adrlens workspace is not initialized"]}
        handler = self._handlers().get(command)
        if handler is None:
            return {"exit_code": 2, "errors": [f"unknown command: {command}"]}
        try:
            return handler(session, payload)
        except AdrLensError as exc:
            response = _failure(exc)
            session.host.show_message(MessageLevel.ERROR, str(response["errors"][0]))
            return response

    def _handlers(self) -> dict[str, Callable[[WorkspaceSession, object], JSONObject]]:
        return {
            SCAN_COMMAND: _scan,
            CANCEL_SCAN_COMMAND: _cancel_scan,
            STATUS_COMMAND: _status,
            TREE_COMMAND: _tree,
            METADATA_COMMAND: _metadata,
            INIT_COMMAND: _init,
            INVENTORY_COMMAND: _inventory,
            PROPOSE_COMMAND: _propose,
            REPORT_COMMAND: _report,
            NEW_ADR_COMMAND: _new_adr,
            INDEX_COMMAND: _index,
        }


def _scan(session: WorkspaceSession, payload: object) -> JSONObject:
    file = _payload_text(payload, "file")
    session.scan(Path(file) if file else None)
    response = status_dto(session.status.session).model_dump()
    response["results"] = [
        drift_result_dto(result).model_dump(by_alias=True)
        for result in session.scans.last_results
    ]
    return response


def _cancel_scan(session: WorkspaceSession, payload: object) -> JSONObject:
    session.cancel_scan()
    return status_dto(session.status.session).model_dump()


def _status(session: WorkspaceSession, payload: object) -> JSONObject:
    response = status_dto(session.status.session).model_dump()
    # Once the client has read a finished scan, the session settles back to idle.
    session.status.acknowledge()
    return response


def _tree(session: WorkspaceSession, payload: object) -> JSONObject:
    path = _payload_text(payload, "path")
    nodes = session.tree_children(Path(path) if path else None)
    return TreeResponse(nodes=[tree_node_dto(node) for node in nodes]).model_dump()


def _metadata(session: WorkspaceSession, payload: object) -> JSONObject:
    path = _payload_text(payload, "path")
    if path is None:
        return {"exit_code": 2, "errors": ["path is required"]}
    return metadata_dto(path, session.metadata(Path(path))).model_dump()


def _init(session: WorkspaceSession, payload: object) -> JSONObject:
    output = session.init()
    return MessageResponse(message=output.strip() or "ADR structure initialized").model_dump()


def _inventory(session: WorkspaceSession, payload: object) -> JSONObject:
    response: InventoryResponse = inventory_dto(session.inventory())
    return response.model_dump()


def _propose(session: WorkspaceSession, payload: object) -> JSONObject:
    context = _payload_text(payload, "context")
    if context is None:
        return {"exit_code": 2, "errors": ["context is required"]}
    return proposal_dto(session.propose(context)).model_dump()


def _report(session: WorkspaceSession, payload: object) -> JSONObject:
    return PathResponse(path=str(session.report())).model_dump()


def _new_adr(session: WorkspaceSession, payload: object) -> JSONObject:
    title = _payload_text(payload, "title")
    if title is None:
        return {"exit_code": 2, "errors": ["title is required"]}
    return PathResponse(path=str(session.new_adr(title))).model_dump()


def _index(session: WorkspaceSession, payload: object) -> JSONObject:
    return PathResponse(path=str(session.generate_index())).model_dump()


_state = ServerState()


def _ensure_session(ls: LanguageServer) -> WorkspaceSession:
    if _state.session is None:
        # Handlers run on the server's event loop.
        loop = asyncio.get_running_loop()
        _state.open(
            _workspace_roots(ls),
            LspEditorHost(ls, loop),
            line_source=_open_document_lines(ls),
            scheduler=LoopScheduler(loop),
        )
    assert _state.session is not None
    return _state.session


@server.feature(INITIALIZE)
def initialize(ls: LanguageServer, params: InitializeParams) -> None:
    _state.update_settings(params.initialization_options)


@server.feature(INITIALIZED)
def initialized(ls: LanguageServer, params: InitializedParams) -> None:
    session = _ensure_session(ls)
    ls.client_register_capability(
        RegistrationParams(
            registrations=[
                Registration(
                    id=WATCHER_REGISTRATION_ID,
                    method=WORKSPACE_DID_CHANGE_WATCHED_FILES,
                    register_options=DidChangeWatchedFilesRegistrationOptions(
                        watchers=[FileSystemWatcher(glob_pattern="**/*")]
                    ),
                )
            ]
        )
    )
    if session.config.status_indicator:
        session.host.update_status(session.status.session)
    if session.tree.has_documents():
        session.host.refresh_tree()


@server.feature(WORKSPACE_DID_CHANGE_WATCHED_FILES)
def did_change_watched_files(ls: LanguageServer, params: DidChangeWatchedFilesParams) -> None:
    session = _ensure_session(ls)
    for change in params.changes:
        kind = _FILE_EVENT_KINDS.get(change.type)
        if kind is None:
            continue
        session.on_file_event(_uri_to_path(change.uri), kind)


@server.feature(TEXT_DOCUMENT_DID_SAVE)
def did_save(ls: LanguageServer, params: DidSaveTextDocumentParams) -> None:
    session = _ensure_session(ls)
    session.on_file_event(_uri_to_path(params.text_document.uri), FileEventKind.CHANGED)


@server.feature(WORKSPACE_DID_CHANGE_CONFIGURATION)
def did_change_configuration(ls: LanguageServer, params: DidChangeConfigurationParams) -> None:
    _state.update_settings(params.settings)
    _state.close()
    _ensure_session(ls)


@server.feature(SHUTDOWN)
def shutdown(ls: LanguageServer, params: object = None) -> None:
    _state.close()


@server.command(SCAN_COMMAND)
def execute_scan(ls: LanguageServer, payload: dict | None = None) -> dict:
    _ensure_session(ls)
    return _state.execute(SCAN_COMMAND, payload)


@server.command(CANCEL_SCAN_COMMAND)
def execute_cancel_scan(ls: LanguageServer, payload: dict | None = None) -> dict:
    _ensure_session(ls)
    return _state.execute(CANCEL_SCAN_COMMAND, payload)


@server.command(STATUS_COMMAND)
def execute_status(ls: LanguageServer, payload: dict | None = None) -> dict:
    _ensure_session(ls)
    return _state.execute(STATUS_COMMAND, payload)


@server.command(TREE_COMMAND)
def execute_tree(ls: LanguageServer, payload: dict | None = None) -> dict:
    _ensure_session(ls)
    return _state.execute(TREE_COMMAND, payload)


@server.command(METADATA_COMMAND)
def execute_metadata(ls: LanguageServer, payload: dict | None = None) -> dict:
    _ensure_session(ls)
    return _state.execute(METADATA_COMMAND, payload)


@server.command(INIT_COMMAND)
def execute_init(ls: LanguageServer, payload: dict | None = None) -> dict:
    _ensure_session(ls)
    return _state.execute(INIT_COMMAND, payload)


@server.command(INVENTORY_COMMAND)
def execute_inventory(ls: LanguageServer, payload: dict | None = None) -> dict:
    _ensure_session(ls)
    return _state.execute(INVENTORY_COMMAND, payload)


@server.command(PROPOSE_COMMAND)
def execute_propose(ls: LanguageServer, payload: dict | None = None) -> dict:
    _ensure_session(ls)
    return _state.execute(PROPOSE_COMMAND, payload)


@server.command(REPORT_COMMAND)
def execute_report(ls: LanguageServer, payload: dict | None = None) -> dict:
    _ensure_session(ls)
    return _state.execute(REPORT_COMMAND, payload)


@server.command(NEW_ADR_COMMAND)
def execute_new_adr(ls: LanguageServer, payload: dict | None = None) -> dict:
    _ensure_session(ls)
    return _state.execute(NEW_ADR_COMMAND, payload)


@server.command(INDEX_COMMAND)
def execute_index(ls: LanguageServer, payload: dict | None = None) -> dict:
    _ensure_session(ls)
    return _state.execute(INDEX_COMMAND, payload)


def start(start_fn: Callable[[], None] | None = None) -> None:
    """Start the language server over stdio."""
    (start_fn or server.start_io)()


if __name__ == "__main__":  # pragma: no cover
    start()  # pragma: no cover
