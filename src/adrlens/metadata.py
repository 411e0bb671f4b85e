"""ADR metadata extraction from frontmatter and heading structure."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from pathlib import Path
from typing import Mapping

import yaml

from adrlens.exceptions import MetadataReadFailure
from adrlens.model import ADRMetadata

logger = logging.getLogger(__name__)

SUMMARY_LIMIT = 200

_FRONTMATTER_RE = re.compile(r"\A\ufeff?---[ \t]*\r?\n(?P<body>.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.S)
_HEADING_RE = re.compile(r"^(?P<marks>#{1,6})\s+(?P<text>.+?)\s*#*\s*$")
_KEY_VALUE_RE = re.compile(r"^(?P<key>[A-Za-z_][\w-]*)\s*:\s*(?P<value>.*)$")
_DATE_LINE_RE = re.compile(
    r"^\s*(?:[-*]\s+)?(?:\*\*|__)?(?:date|created)(?:\*\*|__)?\s*:\s*(?:\*\*|__)?\s*(?P<value>.+?)\s*$",
    re.I | re.M,
)
_BULLET_RE = re.compile(r"^(?:[-*+]|\d+\.)\s+")


def split_frontmatter(text: str) -> tuple[dict[str, object], str]:
    """Return the parsed frontmatter mapping (keys lower-cased) and the remaining body."""
    match = _FRONTMATTER_RE.match(text)
    if match is None:
        return {}, text
    block = match.group("body")
    body = text[match.end():]
    try:
        loaded = yaml.safe_load(block)
    except yaml.YAMLError as exc:
        logger.debug("frontmatter is not valid YAML, reading it line by line: %s", exc)
        loaded = _read_key_values(block)
    if not isinstance(loaded, Mapping):
        loaded = _read_key_values(block)
    return {str(key).strip().lower(): value for key, value in loaded.items()}, body


def _read_key_values(block: str) -> dict[str, object]:
    values: dict[str, object] = {}
    for line in block.splitlines():
        match = _KEY_VALUE_RE.match(line.strip())
        if match is not None:
            values[match.group("key")] = match.group("value").strip().strip("\"'")
    return values


def _scalar_text(value: object) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    text = str(value).strip()
    return text or None


def _tags(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        parts = value.strip("[]").split(",")
    elif isinstance(value, (list, tuple)):
        parts = [str(item) for item in value if item is not None]
    else:
        return ()
    return tuple(part.strip().strip("\"'") for part in parts if part.strip())


def _sections(body: str) -> list[tuple[int, str, list[str]]]:
    """Split the body into (level, heading, lines) sections."""
    sections: list[tuple[int, str, list[str]]] = [(0, "", [])]
    fenced = False
    for line in body.splitlines():
        if line.lstrip().startswith(("```", "~~~")):
            fenced = not fenced
        match = None if fenced else _HEADING_RE.match(line)
        if match is not None:
            sections.append((len(match.group("marks")), match.group("text").strip(), []))
        else:
            sections[-1][2].append(line)
    return sections


def _section_lines(sections: list[tuple[int, str, list[str]]], name: str) -> list[str] | None:
    for level, heading, lines in sections:
        if level >= 2 and heading.lower().startswith(name):
            return lines
    return None


def _clean_inline(text: str) -> str:
    text = _BULLET_RE.sub("", text.strip())
    for marker in ("**", "__", "*", "_", "`"):
        if text.startswith(marker) and text.endswith(marker) and len(text) > 2 * len(marker):
            text = text[len(marker): -len(marker)]
    return text.strip()


def _first_line(lines: list[str] | None) -> str | None:
    for line in lines or ():
        cleaned = _clean_inline(line)
        if cleaned:
            return cleaned
    return None


def _first_paragraph(lines: list[str] | None) -> str | None:
    paragraph: list[str] = []
    for line in lines or ():
        if line.strip():
            paragraph.append(line.strip())
        elif paragraph:
            break
    if not paragraph:
        return None
    return " ".join(" ".join(paragraph).split())


def _truncate(text: str, limit: int = SUMMARY_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def extract_metadata(text: str) -> ADRMetadata:
    """Best-effort metadata for one ADR document; never raises."""
    try:
        return _extract(text)
    except Exception:
        logger.exception("metadata extraction failed")
        return ADRMetadata()


def _extract(text: str) -> ADRMetadata:
    front, body = split_frontmatter(text)
    sections = _sections(body)

    title = _scalar_text(front.get("title"))
    if title is None:
        title = next((heading for level, heading, _ in sections if level == 1), None)

    status = _scalar_text(front.get("status"))
    if status is None:
        status = _first_line(_section_lines(sections, "status"))

    date_text = _scalar_text(front.get("date")) or _scalar_text(front.get("created"))
    if date_text is None:
        date_text = _first_line(_section_lines(sections, "date"))
    if date_text is None:
        match = _DATE_LINE_RE.search(body)
        if match is not None:
            date_text = _clean_inline(match.group("value")) or None

    summary = _first_paragraph(_section_lines(sections, "context"))
    return ADRMetadata(
        title=title,
        status=status,
        date=date_text,
        summary=_truncate(summary) if summary else None,
        tags=_tags(front.get("tags")),
    )


def read_document(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise MetadataReadFailure(path, str(exc)) from exc


def extract_file(path: Path) -> ADRMetadata:
    try:
        text = read_document(path)
    except MetadataReadFailure as exc:
        logger.warning("%s", exc)
        return ADRMetadata()
    return extract_metadata(text)
