from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Sequence

from adrlens.metadata import extract_file
from adrlens.model import ADRMetadata, NodeKind, StatusIcon, TreeNode

logger = logging.getLogger(__name__)

FOLDER_ICON = StatusIcon("folder")
DEFAULT_ICON = StatusIcon("file-text")

_STATUS_ICONS: tuple[tuple[tuple[str, ...], StatusIcon], ...] = (
    (("accepted", "approved"), StatusIcon("check", "green")),
    (("proposed", "draft"), StatusIcon("clock", "yellow")),
    (("deprecated", "superseded"), StatusIcon("archive", "gray")),
    (("rejected",), StatusIcon("x", "red")),
)


def status_icon(status: str | None) -> StatusIcon:
    lowered = (status or "").lower()
    if not lowered:
        return DEFAULT_ICON
    for needles, icon in _STATUS_ICONS:
        if any(needle in lowered for needle in needles):
            return icon
    return DEFAULT_ICON


def document_label(path: Path, suffixes: Sequence[str]) -> str:
    name = path.name
    for suffix in sorted(suffixes, key=len, reverse=True):
        if name.endswith(suffix) and len(name) > len(suffix):
            return name[: -len(suffix)]
    return path.stem


def _tooltip(metadata: ADRMetadata, path: Path, mtime: float) -> str:
    date_text = metadata.date or datetime.fromtimestamp(mtime).date().isoformat()
    lines = [
        f"**Title:** {metadata.title or 'Untitled'}",
        f"**Status:** {metadata.status or 'Unknown'}",
        f"**Date:** {date_text}",
        f"**File:** {path.name}",
    ]
    if metadata.summary:
        lines.append(f"**Summary:** {metadata.summary}")
    return "\n\n".join(lines)


class TreeModel:
    """Lazily expanded ADR navigation tree for one workspace."""

    def __init__(
        self,
        roots: Sequence[Path],
        *,
        adr_directory: str = "docs/adr",
        suffixes: Sequence[str] = (".adr.md", ".md"),
        metadata_fn: Callable[[Path], ADRMetadata] = extract_file,
    ) -> None:
        self.roots = [Path(root) for root in roots]
        self.adr_directory = adr_directory
        self.suffixes = tuple(suffixes)
        self._metadata_fn = metadata_fn

    def document_directories(self) -> list[Path]:
        return [root / self.adr_directory for root in self.roots]

    def children(self, node: TreeNode | None = None) -> list[TreeNode]:
        if node is None:
            directories = self.document_directories()
            if len(directories) == 1:
                return self._list_directory(directories[0])
            return [
                self._directory_node(
                    directory, label=f"{root.name}/{self.adr_directory}"
                )
                for root, directory in zip(self.roots, directories)
                if directory.is_dir()
            ]
        if node.kind is NodeKind.DIRECTORY:
            return self._list_directory(node.path)
        return []

    def resolve(self, node: TreeNode) -> Path:
        return node.path

    def is_document(self, path: Path) -> bool:
        return path.name.endswith(self.suffixes)

    def has_documents(self) -> bool:
        for directory in self.document_directories():
            if not directory.is_dir():
                continue
            try:
                if any(p.is_file() and self.is_document(p) for p in directory.rglob("*")):
                    return True
            except OSError as exc:
                logger.warning("cannot scan %s: %s", directory, exc)
        return False

    def _list_directory(self, directory: Path) -> list[TreeNode]:
        try:
            entries = list(directory.iterdir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.warning("cannot list ADR directory %s: %s", directory, exc)
            return []
        directories = sorted(
            (entry for entry in entries if entry.is_dir()), key=lambda entry: entry.name
        )
        documents: list[tuple[float, TreeNode]] = []
        for entry in entries:
            if not entry.is_file() or not self.is_document(entry):
                continue
            try:
                mtime = entry.stat().st_mtime
            except OSError as exc:
                logger.warning("cannot stat %s: %s", entry, exc)
                continue
            documents.append((mtime, self._document_node(entry, mtime)))
        documents.sort(key=lambda item: (-item[0], item[1].path.name))
        return [self._directory_node(entry) for entry in directories] + [
            node for _, node in documents
        ]

    def _directory_node(self, path: Path, *, label: str | None = None) -> TreeNode:
        return TreeNode(
            label=label or path.name,
            kind=NodeKind.DIRECTORY,
            uri=path.resolve().as_uri(),
            path=path,
            icon=FOLDER_ICON,
        )

    def _document_node(self, path: Path, mtime: float) -> TreeNode:
        try:
            metadata = self._metadata_fn(path)
        except Exception:
            logger.exception("metadata extraction failed for %s", path)
            metadata = ADRMetadata()
        return TreeNode(
            label=metadata.title or document_label(path, self.suffixes),
            kind=NodeKind.DOCUMENT,
            uri=path.resolve().as_uri(),
            path=path,
            description=metadata.status or "Unknown Status",
            icon=status_icon(metadata.status),
            tooltip=_tooltip(metadata, path, mtime),
            metadata=metadata,
        )
