from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Callable, Sequence

from adrlens.cancellation import CancellationToken
from adrlens.exceptions import Cancelled, NotFound, ProcessFailure

logger = logging.getLogger(__name__)

_DEFAULT_POLL_INTERVAL_SECONDS = 0.05


def resolve_executable(executable: str, working_dir: Path) -> str:
    """Prefer a workspace-relative executable when one exists on disk."""
    candidate = Path(executable)
    if candidate.is_absolute() or os.sep not in executable and "/" not in executable:
        return executable
    local = working_dir / candidate
    if local.exists():
        return str(local)
    return executable


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace")


class ProcessInvoker:
    """Runs the analyzer as a child process with buffered stdio."""

    def __init__(
        self,
        *,
        popen_fn: Callable[..., subprocess.Popen[Any]] = subprocess.Popen,
        poll_interval_seconds: float = _DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._popen_fn = popen_fn
        self._poll_interval = max(0.001, float(poll_interval_seconds))

    def run(
        self,
        executable: str,
        args: Sequence[str],
        working_dir: Path,
        token: CancellationToken | None = None,
    ) -> str:
        if token is not None and token.is_cancelled:
            raise Cancelled()
        command = [resolve_executable(executable, working_dir), *args]
        logger.debug("running %s in %s", command, working_dir)
        try:
            proc = self._popen_fn(
                command,
                cwd=str(working_dir),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            logger.warning("analyzer executable not found: %s", executable)
            raise NotFound(executable) from exc
        except OSError as exc:
            logger.warning("failed to start analyzer %s: %s", executable, exc)
            raise ProcessFailure(None, str(exc)) from exc

        unregister = token.on_cancel(proc.kill) if token is not None else None
        try:
            outcome = self._communicate(proc, token)
        finally:
            if unregister is not None:
                unregister()

        if outcome is None:
            logger.debug("analyzer run cancelled: %s", command)
            raise Cancelled()
        returncode, stdout, stderr = outcome
        out_text = _decode(stdout)
        if returncode != 0:
            detail = _decode(stderr).strip() or out_text.strip()
            logger.warning("analyzer exited with %s: %s", returncode, detail)
            raise ProcessFailure(returncode, detail)
        return out_text

    def _communicate(
        self, proc: subprocess.Popen[Any], token: CancellationToken | None
    ) -> tuple[int, bytes, bytes] | None:
        # communicate() retains partial output across TimeoutExpired.
        while True:
            if token is not None and token.is_cancelled:
                _kill(proc)
                return None
            try:
                stdout, stderr = proc.communicate(timeout=self._poll_interval)
            except subprocess.TimeoutExpired:
                continue
            if token is not None and token.is_cancelled:
                return None
            return int(proc.returncode), stdout or b"", stderr or b""

def _kill(proc: subprocess.Popen[Any]) -> None:
    try:
        proc.kill()
    except OSError:
        pass
    try:
        proc.wait(timeout=1.0)
    except subprocess.TimeoutExpired:
        logger.warning("analyzer process %s did not exit after kill", proc.pid)
