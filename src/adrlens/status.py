from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Callable

from adrlens.cancellation import CancellationToken
from adrlens.model import ScanSession, ScanState

logger = logging.getLogger(__name__)

StatusListener = Callable[[ScanSession], None]


class StatusAggregator:
    """Single scan session state: idle -> scanning -> completed|error -> idle.

    Transitions carry the token of the scan that requested them; a token that
    is no longer the active one is ignored, so a superseded scan cannot move
    the state of the scan that replaced it.
    """

    def __init__(self, *, now_fn: Callable[[], datetime] = datetime.now) -> None:
        self._now_fn = now_fn
        self._session = ScanSession()
        self._listeners: list[StatusListener] = []
        self._lock = threading.Lock()

    @property
    def session(self) -> ScanSession:
        with self._lock:
            return self._session

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def begin(self, token: CancellationToken, scope: Path | None = None) -> ScanSession:
        return self._transition(
            lambda session: replace(
                session, state=ScanState.SCANNING, token=token, message=None, scope=scope
            )
        )

    def complete(self, token: CancellationToken, drift_count: int) -> bool:
        return self._apply(
            token,
            lambda session: replace(
                session,
                state=ScanState.COMPLETED,
                drift_count=int(drift_count),
                last_scan_time=self._now_fn(),
                message=None,
            ),
        )

    def fail(self, token: CancellationToken, message: str) -> bool:
        return self._apply(
            token,
            lambda session: replace(session, state=ScanState.ERROR, message=message),
        )

    def cancel(self, token: CancellationToken) -> bool:
        return self._apply(
            token,
            lambda session: replace(session, state=ScanState.IDLE, token=None, scope=None),
        )

    def acknowledge(self) -> ScanSession:
        def _settle(session: ScanSession) -> ScanSession:
            if session.state in (ScanState.COMPLETED, ScanState.ERROR):
                return replace(session, state=ScanState.IDLE, token=None)
            return session

        return self._transition(_settle)

    def _apply(
        self, token: CancellationToken, change: Callable[[ScanSession], ScanSession]
    ) -> bool:
        with self._lock:
            current = self._session
            if current.token is not token or current.state is not ScanState.SCANNING:
                logger.debug("ignoring status update from a superseded scan")
                return False
            self._session = change(current)
            session = self._session
            listeners = list(self._listeners)
        self._notify(listeners, session)
        return True

    def _transition(self, change: Callable[[ScanSession], ScanSession]) -> ScanSession:
        with self._lock:
            self._session = change(self._session)
            session = self._session
            listeners = list(self._listeners)
        self._notify(listeners, session)
        return session

    def _notify(self, listeners: list[StatusListener], session: ScanSession) -> None:
        for listener in listeners:
            try:
                listener(session)
            except Exception:
                logger.exception("status listener failed")


@dataclass(frozen=True)
class StatusText:
    text: str
    tooltip: str
    level: str


def _plural(count: int) -> str:
    return "" if count == 1 else "s"


def _count_icon(count: int) -> str:
    if count == 0:
        return "check"
    if count <= 3:
        return "warning"
    return "error"


def render_status(session: ScanSession, *, label: str = "adrscan") -> StatusText:
    if session.state is ScanState.SCANNING:
        return StatusText(
            text=f"$(sync~spin) {label}: Scanning...",
            tooltip=f"{label} is scanning for drift...",
            level="warning",
        )
    count = session.drift_count
    parts = [f"**{label} drift detection**"]
    if session.state is ScanState.ERROR:
        icon = "error"
        level = "error"
        parts.append(f"Last scan failed: {session.message or 'unknown error'}")
    else:
        icon = _count_icon(count)
        level = "ok" if icon == "check" else icon
        if count == 0:
            parts.append("No drift detected")
        else:
            parts.append(f"{count} drift item{_plural(count)} detected")
    if session.last_scan_time is not None:
        parts.append(f"*Last scan: {session.last_scan_time.strftime('%H:%M:%S')}*")
    parts.append("Click to run drift detection")
    return StatusText(
        text=f"$({icon}) {label}: {count} drift{_plural(count)}",
        tooltip="\n\n".join(parts),
        level=level,
    )
