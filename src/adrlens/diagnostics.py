from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence, TypeAlias

from adrlens.model import (
    DiagnosticEntry,
    DiagnosticSeverity,
    DiagnosticTag,
    DriftResult,
    RelatedInfo,
    TextRange,
)

logger = logging.getLogger(__name__)

FALLBACK_WIDTH = 10

LineSource: TypeAlias = Callable[[Path], Sequence[str] | None]
PublishFn: TypeAlias = Callable[[Path, list[DiagnosticEntry]], None]

_SEVERITY_RULES: tuple[tuple[tuple[str, ...], DiagnosticSeverity], ...] = (
    (("critical", "high"), DiagnosticSeverity.ERROR),
    (("medium", "warning"), DiagnosticSeverity.WARNING),
    (("low", "info"), DiagnosticSeverity.INFORMATION),
)


def map_severity(severity: str | None) -> DiagnosticSeverity:
    lowered = (severity or "").lower()
    for needles, mapped in _SEVERITY_RULES:
        if any(needle in lowered for needle in needles):
            return mapped
    return DiagnosticSeverity.HINT


def _no_documents(_path: Path) -> Sequence[str] | None:
    return None


def diagnostic_range(
    line: int | None, column: int | None, lines: Sequence[str] | None
) -> TextRange:
    """Zero-based range for a 1-based line and 0-based column, clamped to ``lines``."""
    index = max(0, line - 1) if line is not None else 0
    start = max(0, column) if column is not None else 0
    if lines is None:
        if line is None:
            return TextRange.on_line(0, 0, 0)
        return TextRange.on_line(index, start, start + FALLBACK_WIDTH)
    if index >= len(lines):
        return TextRange.on_line(index, 0, 0)
    length = len(lines[index].rstrip("\r\n"))
    start = min(start, length)
    return TextRange.on_line(index, start, max(start, length))


def _percent(value: float) -> str:
    return f"{value * 100:.1f}%"


class DiagnosticProjector:
    def __init__(
        self,
        root: Path,
        *,
        line_source: LineSource = _no_documents,
        max_per_file: int = 100,
    ) -> None:
        self.root = root
        self._line_source = line_source
        self._max_per_file = max_per_file

    def resolve(self, file: str) -> Path:
        path = Path(file)
        if not path.is_absolute():
            path = self.root / path
        return path.resolve()

    def project(self, results: Iterable[DriftResult]) -> dict[Path, list[DiagnosticEntry]]:
        grouped: dict[Path, list[DiagnosticEntry]] = {}
        lines_cache: dict[Path, Sequence[str] | None] = {}
        for result in results:
            if result.location is None or not result.location.file:
                continue
            path = self.resolve(result.location.file)
            entries = grouped.setdefault(path, [])
            if self._max_per_file and len(entries) >= self._max_per_file:
                continue
            if path not in lines_cache:
                lines_cache[path] = self._load_lines(path)
            entries.append(self.project_one(result, path, lines_cache[path]))
        return grouped

    def _load_lines(self, path: Path) -> Sequence[str] | None:
        try:
            return self._line_source(path)
        except Exception:
            logger.exception("cannot load document lines for %s", path)
            return None

    def project_one(
        self, result: DriftResult, path: Path, lines: Sequence[str] | None
    ) -> DiagnosticEntry:
        location = result.location
        text_range = diagnostic_range(
            location.line if location else None,
            location.column if location else None,
            lines,
        )
        message = f"{result.title}: {result.description}"
        if result.suggestion:
            message += f"\n\nSuggestion: {result.suggestion}"
        related = [RelatedInfo(path, text_range, f"Category: {result.category}")]
        if result.confidence is not None:
            message += f"\n\nConfidence: {_percent(result.confidence)}"
            related.append(
                RelatedInfo(path, text_range, f"Confidence: {_percent(result.confidence)}")
            )
        if result.ml_score is not None:
            message += f"\n\nML anomaly score: {_percent(result.ml_score)}"
            related.append(
                RelatedInfo(path, text_range, f"ML anomaly score: {_percent(result.ml_score)}")
            )
        tags: tuple[DiagnosticTag, ...] = ()
        if "deprecated" in result.category.lower():
            tags = (DiagnosticTag.DEPRECATED,)
        return DiagnosticEntry(
            range=text_range,
            message=message,
            severity=map_severity(result.severity),
            code=result.id,
            related_info=tuple(related),
            tags=tags,
        )


class DiagnosticPublisher:
    """Replaces published diagnostics wholesale, one file at a time."""

    def __init__(self, publish_fn: PublishFn, *, enabled: bool = True) -> None:
        self._publish_fn = publish_fn
        self._enabled = enabled
        self._published: dict[Path, list[DiagnosticEntry]] = {}
        self._lock = threading.Lock()

    def commit(
        self,
        projected: Mapping[Path, list[DiagnosticEntry]],
        *,
        scope: Path | None = None,
    ) -> None:
        if not self._enabled:
            self.clear()
            return
        with self._lock:
            if scope is None:
                stale = [path for path in self._published if path not in projected]
            else:
                stale = [scope] if scope in self._published and scope not in projected else []
            for path in stale:
                self._published.pop(path, None)
                self._publish_fn(path, [])
            for path, entries in projected.items():
                self._published[path] = list(entries)
                self._publish_fn(path, list(entries))

    def clear(self) -> None:
        with self._lock:
            paths = list(self._published)
            self._published.clear()
            for path in paths:
                self._publish_fn(path, [])

    def published(self, path: Path) -> list[DiagnosticEntry]:
        with self._lock:
            return list(self._published.get(path, []))

    def published_paths(self) -> list[Path]:
        with self._lock:
            return sorted(self._published)
