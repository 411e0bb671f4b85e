"""Normalization of analyzer output into model objects.

The analyzer is asked for JSON, but depending on its version and
configuration it may print line-oriented text instead. Every parser here
classifies the raw output first (``ParsedJson`` or ``ParsedText``) and then
normalizes through a single function, so callers never branch on format.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import PurePath
from typing import Mapping

from adrlens.exceptions import ParseFailure
from adrlens.json_types import JSONValue, pick_float, pick_int, pick_object, pick_text
from adrlens.model import ADRInventoryItem, ADRProposal, DriftResult, Location

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Unnamed Drift"
DEFAULT_SEVERITY = "Medium"
DEFAULT_CATEGORY = "Unknown"
DEFAULT_DESCRIPTION = "No description"

_WRAPPER_KEYS = ("results", "drifts", "items")
_START_PREFIXES = ("Found drift:", "Drift detected:")
_FIELD_PREFIXES = {
    "Severity:": "severity",
    "Category:": "category",
    "File:": "file",
    "Description:": "description",
    "Suggestion:": "suggestion",
}
_FILE_POSITION_RE = re.compile(r"^(?P<file>.+?):(?P<line>\d+)(?::(?P<column>\d+))?$")
_INVENTORY_LINE_RE = re.compile(r"^(?P<file>.+\.md)\s+-\s+(?P<status>.+?)\s+-\s+(?P<date>.+)$")


@dataclass(frozen=True)
class ParsedJson:
    value: JSONValue


@dataclass(frozen=True)
class ParsedText:
    lines: tuple[str, ...]
    looks_structured: bool = False


ParsedOutput = ParsedJson | ParsedText


def classify_output(raw: str) -> ParsedOutput:
    text = raw.strip()
    try:
        return ParsedJson(json.loads(text))
    except ValueError:
        pass
    lines = tuple(line.strip() for line in text.splitlines() if line.strip())
    return ParsedText(lines, looks_structured=text[:1] in ("[", "{"))


# -- drift results -----------------------------------------------------------


def parse_drift_results(raw: str) -> list[DriftResult]:
    if not raw or not raw.strip():
        return []
    return normalize(classify_output(raw))


def normalize(parsed: ParsedOutput) -> list[DriftResult]:
    if isinstance(parsed, ParsedJson):
        return _results_from_json(parsed.value)
    results = _results_from_text(parsed.lines)
    if not results and parsed.looks_structured:
        raise ParseFailure(
            "Analyzer output looked like JSON but could not be parsed",
            raw_output="\n".join(parsed.lines),
        )
    return results


def _unwrap_list(value: JSONValue) -> list[JSONValue] | None:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in _WRAPPER_KEYS:
            inner = value.get(key)
            if isinstance(inner, list):
                return inner
    return None


def _results_from_json(value: JSONValue) -> list[DriftResult]:
    items = _unwrap_list(value)
    if items is None:
        logger.warning("analyzer JSON is not a result list: %s", type(value).__name__)
        return []
    return [_result_from_item(item, index) for index, item in enumerate(items)]


def _clamp_unit(value: float | None) -> float | None:
    if value is None or value != value:
        return None
    return min(1.0, max(0.0, value))


def _location_from(item: Mapping[str, object]) -> Location | None:
    source = pick_object(item, "location") or item
    file = pick_text(source, "file", "path")
    if file is None:
        return None
    return Location(
        file=file,
        line=pick_int(source, "line"),
        column=pick_int(source, "column"),
    )


def _result_from_item(item: JSONValue, index: int) -> DriftResult:
    if isinstance(item, str):
        item = {"title": item}
    if not isinstance(item, dict):
        item = {}
    return DriftResult(
        id=pick_text(item, "id") or f"drift_{index}",
        title=pick_text(item, "title", "name") or DEFAULT_TITLE,
        severity=pick_text(item, "severity") or DEFAULT_SEVERITY,
        category=pick_text(item, "category") or DEFAULT_CATEGORY,
        description=pick_text(item, "description", "message") or DEFAULT_DESCRIPTION,
        suggestion=pick_text(item, "suggestion", "fix"),
        location=_location_from(item),
        confidence=_clamp_unit(pick_float(item, "confidence", "ml_confidence")),
        ml_score=_clamp_unit(pick_float(item, "ml_score", "mlScore", "anomaly_score")),
    )


def _text_location(value: str) -> Location:
    match = _FILE_POSITION_RE.match(value)
    if match is None:
        return Location(file=value)
    column = match.group("column")
    return Location(
        file=match.group("file"),
        line=int(match.group("line")),
        column=int(column) if column is not None else None,
    )


def _finalize_text_record(record: dict[str, str], index: int) -> DriftResult:
    file = record.get("file")
    return DriftResult(
        id=f"drift_{index}",
        title=record.get("title") or DEFAULT_TITLE,
        severity=record.get("severity") or DEFAULT_SEVERITY,
        category=record.get("category") or DEFAULT_CATEGORY,
        description=record.get("description") or DEFAULT_DESCRIPTION,
        suggestion=record.get("suggestion") or None,
        location=_text_location(file) if file else None,
    )


def _results_from_text(lines: tuple[str, ...]) -> list[DriftResult]:
    results: list[DriftResult] = []
    current: dict[str, str] | None = None
    for line in lines:
        start = next((prefix for prefix in _START_PREFIXES if line.startswith(prefix)), None)
        if start is not None:
            if current is not None:
                results.append(_finalize_text_record(current, len(results)))
            current = {"title": line[len(start):].strip()}
            continue
        if current is None:
            continue
        for prefix, key in _FIELD_PREFIXES.items():
            if line.startswith(prefix):
                current[key] = line[len(prefix):].strip()
                break
    if current is not None:
        results.append(_finalize_text_record(current, len(results)))
    return results


# -- inventory ---------------------------------------------------------------


def parse_inventory(raw: str) -> list[ADRInventoryItem]:
    if not raw or not raw.strip():
        return []
    parsed = classify_output(raw)
    if isinstance(parsed, ParsedJson):
        items = _unwrap_list(parsed.value) or []
        return [
            ADRInventoryItem(
                title=pick_text(item, "title") or "Untitled",
                status=pick_text(item, "status") or "Unknown",
                date=pick_text(item, "date", "created") or "Unknown",
                file=pick_text(item, "file", "path") or "Unknown",
                summary=pick_text(item, "summary", "description"),
            )
            for item in items
            if isinstance(item, dict)
        ]
    inventory: list[ADRInventoryItem] = []
    for line in parsed.lines:
        if line.startswith(("#", "-")):
            continue
        match = _INVENTORY_LINE_RE.match(line)
        if match is None:
            continue
        file = match.group("file").strip()
        inventory.append(
            ADRInventoryItem(
                title=_document_stem(file),
                status=match.group("status").strip(),
                date=match.group("date").strip(),
                file=file,
            )
        )
    return inventory


def _document_stem(file: str) -> str:
    name = PurePath(file).name
    for suffix in (".adr.md", ".md"):
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


# -- proposals ---------------------------------------------------------------

_PROPOSAL_DEFAULTS = {
    "title": "Generated ADR Proposal",
    "context": "Context analysis based on provided input",
    "decision": "Proposed decision based on analysis",
    "consequences": "Potential consequences of this decision",
    "confidence": "Medium",
}
_PROPOSAL_SECTIONS = ("context", "decision", "consequences")


def parse_proposal(raw: str) -> ADRProposal:
    fields: dict[str, str] = {}
    parsed = classify_output(raw or "")
    if isinstance(parsed, ParsedJson) and isinstance(parsed.value, dict):
        for key in _PROPOSAL_DEFAULTS:
            text = pick_text(parsed.value, key)
            if text is not None:
                fields[key] = text
    elif isinstance(parsed, ParsedText):
        fields = _proposal_from_text(parsed.lines)
    values = {key: fields.get(key) or default for key, default in _PROPOSAL_DEFAULTS.items()}
    return ADRProposal(**values)


def _proposal_from_text(lines: tuple[str, ...]) -> dict[str, str]:
    fields: dict[str, str] = {}
    section: str | None = None
    buffer: list[str] = []

    def _flush() -> None:
        if section is not None and buffer:
            fields[section] = " ".join(buffer).strip()

    for line in lines:
        label, sep, rest = line.partition(":")
        key = label.strip().lower()
        if sep and key == "title":
            fields["title"] = rest.strip()
        elif sep and key == "confidence":
            fields["confidence"] = rest.strip()
        elif sep and key in _PROPOSAL_SECTIONS:
            _flush()
            section = key
            buffer = [rest.strip()] if rest.strip() else []
        elif section is not None:
            buffer.append(line)
    _flush()
    return fields
