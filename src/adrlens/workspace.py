from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Sequence

from adrlens.analyzer import Analyzer, AnalyzerClient, CliAnalyzer
from adrlens.cancellation import CancellationToken
from adrlens.config import AdrLensConfig
from adrlens.diagnostics import (
    DiagnosticProjector,
    DiagnosticPublisher,
    LineSource,
    _no_documents,
)
from adrlens.host import EditorHost, Scheduler
from adrlens.metadata import extract_file
from adrlens.model import (
    ADRInventoryItem,
    ADRMetadata,
    ADRProposal,
    DriftResult,
    NodeKind,
    TreeNode,
)
from adrlens.process import ProcessInvoker
from adrlens.status import StatusAggregator
from adrlens.tree import TreeModel
from adrlens.watch import Debouncer, FileEventKind, ScanCoordinator, WatchCoordinator

logger = logging.getLogger(__name__)


class WorkspaceSession:
    """Every component for one open workspace, wired to one editor host."""

    def __init__(
        self,
        roots: Sequence[Path],
        config: AdrLensConfig,
        host: EditorHost,
        *,
        scheduler: Scheduler,
        analyzer: Analyzer | None = None,
        invoker: ProcessInvoker | None = None,
        line_source: LineSource = _no_documents,
        metadata_fn: Callable[[Path], ADRMetadata] = extract_file,
    ) -> None:
        if not roots:
            raise ValueError("a workspace session needs at least one root")
        self.roots = [Path(root) for root in roots]
        self.root = self.roots[0]
        self.config = config
        self.host = host
        self.client = AnalyzerClient(
            analyzer or CliAnalyzer(config.executable, self.root, invoker=invoker),
            self.root,
            config,
        )
        self.projector = DiagnosticProjector(
            self.root,
            line_source=line_source,
            max_per_file=config.max_diagnostics_per_file,
        )
        self.publisher = DiagnosticPublisher(
            host.publish_diagnostics, enabled=config.inline_diagnostics
        )
        self.status = StatusAggregator()
        self._unsubscribe = (
            self.status.subscribe(host.update_status) if config.status_indicator else None
        )
        self.tree = TreeModel(
            self.roots,
            adr_directory=config.adr_directory,
            suffixes=config.document_suffixes,
            metadata_fn=metadata_fn,
        )
        self.scans = ScanCoordinator(
            self.client,
            self.projector,
            self.publisher,
            self.status,
            host,
            spawn_fn=scheduler.run_in_background,
        )
        self.watcher = WatchCoordinator(
            self.roots,
            config,
            on_scoped_scan=self.scans.request_scan,
            on_full_scan=self.scans.request_scan,
            on_tree_refresh=host.refresh_tree,
            debouncer=Debouncer(scheduler.call_later),
        )
        self._metadata_fn = metadata_fn

    def scan(self, scope: Path | None = None) -> CancellationToken:
        return self.scans.request_scan(scope)

    def cancel_scan(self) -> None:
        self.scans.cancel()

    def on_file_event(self, path: Path, kind: FileEventKind | str) -> None:
        self.watcher.on_file_event(path, kind)

    def tree_children(self, path: Path | None = None) -> list[TreeNode]:
        if path is None:
            return self.tree.children()
        node = TreeNode(
            label=path.name,
            kind=NodeKind.DIRECTORY,
            uri=path.resolve().as_uri(),
            path=path,
        )
        return self.tree.children(node)

    def metadata(self, path: Path) -> ADRMetadata:
        return self._metadata_fn(path)

    def init(self) -> str:
        output = self.client.init()
        self.host.refresh_tree()
        return output

    def inventory(self) -> list[ADRInventoryItem]:
        return self.client.inventory()

    def propose(self, context: str) -> ADRProposal:
        return self.client.propose(context)

    def report(self, results: Sequence[DriftResult] | None = None) -> Path:
        return self.client.report(self.scans.last_results if results is None else results)

    def new_adr(self, title: str) -> Path:
        path = self.client.new_adr(title)
        self.host.refresh_tree()
        return path

    def generate_index(self) -> Path:
        return self.client.generate_index()

    def dispose(self) -> None:
        self.watcher.dispose()
        self.scans.dispose()
        self.publisher.clear()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        logger.debug("workspace session for %s disposed", self.root)
