from __future__ import annotations

import logging
import threading
from enum import StrEnum
from pathlib import Path
from typing import Callable, Hashable, Sequence

from adrlens.analyzer import TEMP_FILE_NAMES, AnalyzerClient
from adrlens.cancellation import CancellationSource, CancellationToken
from adrlens.config import AdrLensConfig
from adrlens.diagnostics import DiagnosticProjector, DiagnosticPublisher
from adrlens.exceptions import AdrLensError, Cancelled, NotFound
from adrlens.host import Cancellable, EditorHost, MessageLevel
from adrlens.model import DriftResult
from adrlens.status import StatusAggregator

logger = logging.getLogger(__name__)

IGNORED_DIRECTORIES = frozenset({".git", "node_modules", "__pycache__"})
WORKSPACE_KEY = "<workspace>"


class FileEventKind(StrEnum):
    CREATED = "created"
    CHANGED = "changed"
    DELETED = "deleted"


CallLater = Callable[[float, Callable[[], None]], Cancellable]
SpawnFn = Callable[[Callable[[], None]], None]


class Debouncer:
    """Per-key trailing-edge debounce; rescheduling a key replaces its timer."""

    def __init__(self, call_later: CallLater) -> None:
        self._call_later = call_later
        self._timers: dict[Hashable, Cancellable] = {}
        self._lock = threading.Lock()
        self._disposed = False

    def schedule(self, key: Hashable, delay_seconds: float, callback: Callable[[], None]) -> None:
        def _fire() -> None:
            with self._lock:
                if self._timers.get(key) is not timer:
                    return
                del self._timers[key]
            try:
                callback()
            except Exception:
                logger.exception("debounced callback for %s failed", key)

        with self._lock:
            if self._disposed:
                return
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()
            timer = self._call_later(delay_seconds, _fire)
            self._timers[key] = timer

    def pending(self) -> list[Hashable]:
        with self._lock:
            return list(self._timers)

    def dispose(self) -> None:
        with self._lock:
            self._disposed = True
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()


class WatchCoordinator:
    def __init__(
        self,
        roots: Sequence[Path],
        config: AdrLensConfig,
        *,
        on_scoped_scan: Callable[[Path], object],
        on_full_scan: Callable[[], object],
        on_tree_refresh: Callable[[], object],
        debouncer: Debouncer,
    ) -> None:
        self.roots = [Path(root).resolve() for root in roots]
        self.config = config
        self._on_scoped_scan = on_scoped_scan
        self._on_full_scan = on_full_scan
        self._on_tree_refresh = on_tree_refresh
        self._debouncer = debouncer

    def _root_of(self, path: Path) -> Path | None:
        for root in self.roots:
            if path == root or root in path.parents:
                return root
        return None

    def is_ignored(self, path: Path) -> bool:
        root = self._root_of(path)
        if root is None:
            return True
        relative = path.relative_to(root)
        if any(part in IGNORED_DIRECTORIES for part in relative.parts):
            return True
        return path.name in TEMP_FILE_NAMES

    def is_managed(self, path: Path) -> bool:
        name = path.name
        if name.endswith(".adr.md"):
            return True
        if not name.endswith(tuple(self.config.document_suffixes)):
            return False
        root = self._root_of(path)
        if root is None:
            return False
        adr_dir = (root / self.config.adr_directory).resolve()
        return adr_dir in path.parents

    def on_file_event(self, path: Path, kind: FileEventKind | str) -> None:
        kind = FileEventKind(kind)
        if not self.config.auto_rescan:
            return
        path = Path(path).resolve()
        if self.is_ignored(path):
            return
        if self.is_managed(path):
            if kind is FileEventKind.CHANGED:
                self._debouncer.schedule(
                    path,
                    self.config.managed_debounce_ms / 1000,
                    lambda: self._on_scoped_scan(path),
                )
            else:
                self._on_tree_refresh()
            return
        self._debouncer.schedule(
            WORKSPACE_KEY,
            self.config.workspace_debounce_ms / 1000,
            self._on_full_scan,
        )

    def dispose(self) -> None:
        self._debouncer.dispose()


class ScanCoordinator:
    """Runs scans so that only the most recently requested one is committed."""

    def __init__(
        self,
        client: AnalyzerClient,
        projector: DiagnosticProjector,
        publisher: DiagnosticPublisher,
        status: StatusAggregator,
        host: EditorHost,
        *,
        spawn_fn: SpawnFn,
    ) -> None:
        self.client = client
        self.projector = projector
        self.publisher = publisher
        self.status = status
        self.host = host
        self._spawn_fn = spawn_fn
        self._lock = threading.Lock()
        self._current: CancellationSource | None = None
        self._last_results: list[DriftResult] = []

    @property
    def last_results(self) -> list[DriftResult]:
        with self._lock:
            return list(self._last_results)

    def request_scan(self, scope: Path | None = None) -> CancellationToken:
        with self._lock:
            if self._current is not None:
                self._current.cancel()
            source = CancellationSource()
            self._current = source
            token = source.token
            # Status follows the installed token; begin under the same lock.
            self.status.begin(token, scope)
        self._spawn_fn(lambda: self.run_scan(scope, token))
        return token

    def _is_live(self, token: CancellationToken) -> bool:
        return (
            self._current is not None
            and self._current.token is token
            and not token.is_cancelled
        )

    def run_scan(self, scope: Path | None, token: CancellationToken) -> bool:
        """Scan and commit; returns False when the scan was superseded or failed."""
        try:
            results = self.client.scan(scope, token)
            projected = self.projector.project(results)
        except Cancelled:
            self.status.cancel(token)
            return False
        except NotFound as exc:
            self._fail(token, f"{exc} {exc.remediation}")
            return False
        except AdrLensError as exc:
            self._fail(token, str(exc))
            return False
        except Exception as exc:
            logger.exception("drift scan failed")
            self._fail(token, f"Drift scan failed: {exc}")
            return False
        with self._lock:
            if not self._is_live(token):
                logger.debug("discarding results of a superseded scan")
                return False
            committed_scope = None if scope is None else self.projector.resolve(str(scope))
            self.publisher.commit(projected, scope=committed_scope)
            self._last_results = self._merge(results, committed_scope)
            drift_count = len(self._last_results)
            self._current = None
        self.status.complete(token, drift_count)
        return True

    def _merge(self, results: list[DriftResult], scope: Path | None) -> list[DriftResult]:
        if scope is None:
            return list(results)
        kept = [
            result
            for result in self._last_results
            if result.location is None
            or not result.location.file
            or self.projector.resolve(result.location.file) != scope
        ]
        return kept + list(results)

    def _fail(self, token: CancellationToken, message: str) -> None:
        with self._lock:
            if not self._is_live(token):
                return
            self._current = None
        if self.status.fail(token, message):
            self.host.show_message(MessageLevel.ERROR, message)

    def cancel(self) -> None:
        with self._lock:
            source = self._current
            self._current = None
        if source is None:
            return
        source.cancel()
        self.status.cancel(source.token)

    def dispose(self) -> None:
        self.cancel()
