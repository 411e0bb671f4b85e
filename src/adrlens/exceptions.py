"""Failure kinds raised by the adrlens integration layer."""

from __future__ import annotations

from pathlib import Path


class AdrLensError(RuntimeError):
    """Base class for every failure the integration layer reports."""


class NotFound(AdrLensError):
    """The analyzer executable could not be located."""

    def __init__(self, executable: str) -> None:
        self.executable = executable
        self.remediation = (
            f"Install adrscan or update the executable path in settings "
            f"(currently {executable!r})."
        )
        super().__init__(f"Analyzer executable not found: {executable}")


class ProcessFailure(AdrLensError):
    """The analyzer ran but exited with a non-zero status."""

    def __init__(self, returncode: int | None, detail: str) -> None:
        self.returncode = returncode
        self.detail = detail
        if returncode is None:
            message = f"Failed to run analyzer: {detail}"
        else:
            message = f"Analyzer failed (exit {returncode}): {detail}"
        super().__init__(message)


class Cancelled(AdrLensError):
    """The scan was superseded or cancelled before it finished."""

    def __init__(self, message: str = "Command cancelled") -> None:
        super().__init__(message)


class ParseFailure(AdrLensError):
    """Analyzer output was malformed and the text fallback found nothing."""

    def __init__(self, message: str, *, raw_output: str = "") -> None:
        self.raw_output = raw_output
        super().__init__(message)


class MetadataReadFailure(AdrLensError):
    """A single ADR document could not be read."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read ADR metadata from {path}: {reason}")
