from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum, StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from adrlens.json_types import JSONObject

if TYPE_CHECKING:
    from adrlens.cancellation import CancellationToken


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def from_text(cls, text: str | None) -> Severity:
        lowered = (text or "").strip().lower()
        for member in (cls.CRITICAL, cls.HIGH, cls.MEDIUM, cls.LOW):
            if member.value in lowered:
                return member
        return cls.MEDIUM


@dataclass(frozen=True)
class Location:
    file: str
    line: int | None = None
    column: int | None = None


@dataclass(frozen=True)
class DriftResult:
    id: str
    title: str
    severity: str
    category: str
    description: str
    suggestion: str | None = None
    location: Location | None = None
    confidence: float | None = None
    ml_score: float | None = None

    @property
    def level(self) -> Severity:
        return Severity.from_text(self.severity)

    def as_json_dict(self) -> JSONObject:
        payload: JSONObject = {
            "id": self.id,
            "title": self.title,
            "severity": self.severity,
            "category": self.category,
            "description": self.description,
        }
        if self.suggestion is not None:
            payload["suggestion"] = self.suggestion
        if self.location is not None:
            location: JSONObject = {"file": self.location.file}
            if self.location.line is not None:
                location["line"] = self.location.line
            if self.location.column is not None:
                location["column"] = self.location.column
            payload["location"] = location
        if self.confidence is not None:
            payload["confidence"] = self.confidence
        if self.ml_score is not None:
            payload["mlScore"] = self.ml_score
        return payload


@dataclass(frozen=True)
class ADRMetadata:
    title: str | None = None
    status: str | None = None
    date: str | None = None
    summary: str | None = None
    tags: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not any((self.title, self.status, self.date, self.summary, self.tags))


@dataclass(frozen=True)
class ADRInventoryItem:
    title: str
    status: str
    date: str
    file: str
    summary: str | None = None


@dataclass(frozen=True)
class ADRProposal:
    title: str
    context: str
    decision: str
    consequences: str
    confidence: str


class DiagnosticSeverity(IntEnum):
    # Values follow the LSP DiagnosticSeverity numbering.
    ERROR = 1
    WARNING = 2
    INFORMATION = 3
    HINT = 4


class DiagnosticTag(IntEnum):
    DEPRECATED = 2


@dataclass(frozen=True)
class TextPosition:
    line: int
    character: int


@dataclass(frozen=True)
class TextRange:
    start: TextPosition
    end: TextPosition

    @classmethod
    def on_line(cls, line: int, start: int, end: int) -> TextRange:
        return cls(TextPosition(line, start), TextPosition(line, end))


@dataclass(frozen=True)
class RelatedInfo:
    file: Path
    range: TextRange
    message: str


DIAGNOSTIC_SOURCE = "analyzer"


@dataclass(frozen=True)
class DiagnosticEntry:
    range: TextRange
    message: str
    severity: DiagnosticSeverity
    source: str = DIAGNOSTIC_SOURCE
    code: str | None = None
    related_info: tuple[RelatedInfo, ...] = ()
    tags: tuple[DiagnosticTag, ...] = ()


class NodeKind(StrEnum):
    DIRECTORY = "directory"
    DOCUMENT = "document"


@dataclass(frozen=True)
class StatusIcon:
    name: str
    color: str | None = None


@dataclass(frozen=True)
class TreeNode:
    label: str
    kind: NodeKind
    uri: str
    path: Path
    description: str | None = None
    icon: StatusIcon = StatusIcon("file-text")
    tooltip: str | None = None
    metadata: ADRMetadata | None = None
    children: tuple[TreeNode, ...] | None = None


class ScanState(StrEnum):
    IDLE = "idle"
    SCANNING = "scanning"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class ScanSession:
    state: ScanState = ScanState.IDLE
    drift_count: int = 0
    last_scan_time: datetime | None = None
    token: CancellationToken | None = field(default=None, compare=False)
    message: str | None = None
    scope: Path | None = None
