"""Capability interface between the integration core and an editor host."""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Callable, Protocol

from adrlens.model import DiagnosticEntry, ScanSession


class MessageLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class EditorHost(Protocol):
    def publish_diagnostics(self, path: Path, entries: list[DiagnosticEntry]) -> None: ...

    def update_status(self, session: ScanSession) -> None: ...

    def refresh_tree(self) -> None: ...

    def show_message(self, level: MessageLevel, text: str) -> None: ...


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Deferred and background execution owned by the host, never by the core.

    ``call_later`` callbacks run on the host's event thread. ``run_in_background``
    hands blocking work (an analyzer run) to the host's worker pool.
    """

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> Cancellable: ...

    def run_in_background(self, target: Callable[[], None]) -> None: ...
