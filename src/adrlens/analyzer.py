from __future__ import annotations

import json
import logging
import re
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Callable, Iterator, Protocol, Sequence

from adrlens.cancellation import CancellationToken
from adrlens.config import AdrLensConfig
from adrlens.exceptions import ProcessFailure
from adrlens.model import ADRInventoryItem, ADRProposal, DriftResult
from adrlens.parsing import parse_drift_results, parse_inventory, parse_proposal
from adrlens.process import ProcessInvoker

logger = logging.getLogger(__name__)

CONTEXT_TEMP_NAME = ".adrlens-context.tmp"
RESULTS_TEMP_NAME = ".adrlens-results.tmp"
REPORT_NAME = "drift-report.md"
INDEX_NAME = "README.md"
TEMP_FILE_NAMES = frozenset({CONTEXT_TEMP_NAME, RESULTS_TEMP_NAME})

_CREATED_PATH_RE = re.compile(r"(\S+\.adr\.md)")
_SLUG_RE = re.compile(r"[^a-z0-9]+")


@contextmanager
def _temp_file(path: Path, text: str) -> Iterator[Path]:
    """Write an input file for the analyzer and remove it afterwards."""
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise ProcessFailure(None, f"cannot write {path}: {exc}") from exc
    try:
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("could not remove %s: %s", path, exc)


class Analyzer(Protocol):
    def invoke(self, args: Sequence[str], token: CancellationToken | None = None) -> str: ...


class CliAnalyzer:
    """The external analyzer reached through a child process."""

    def __init__(
        self,
        executable: str,
        working_dir: Path,
        *,
        invoker: ProcessInvoker | None = None,
    ) -> None:
        self.executable = executable
        self.working_dir = working_dir
        self._invoker = invoker or ProcessInvoker()

    def invoke(self, args: Sequence[str], token: CancellationToken | None = None) -> str:
        return self._invoker.run(self.executable, list(args), self.working_dir, token)


def slugify(title: str) -> str:
    return _SLUG_RE.sub("-", title.lower()).strip("-")


class AnalyzerClient:
    """Subcommands of the analyzer's process contract."""

    def __init__(
        self,
        analyzer: Analyzer,
        root: Path,
        config: AdrLensConfig,
        *,
        today_fn: Callable[[], date] = date.today,
    ) -> None:
        self.analyzer = analyzer
        self.root = root
        self.config = config
        self._today_fn = today_fn

    def scan_args(self, scope: Path | None = None) -> list[str]:
        args = ["scan"]
        if scope is not None:
            args.append(self.relative(scope))
        elif self.config.ml_enabled:
            args.extend(["--ml", "--confidence", str(self.config.confidence_threshold)])
        args.extend(["--format", "json"])
        return args

    def relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            return str(path)

    def scan_raw(self, scope: Path | None = None, token: CancellationToken | None = None) -> str:
        return self.analyzer.invoke(self.scan_args(scope), token)

    def scan(
        self, scope: Path | None = None, token: CancellationToken | None = None
    ) -> list[DriftResult]:
        return parse_drift_results(self.scan_raw(scope, token))

    def init(self) -> str:
        return self.analyzer.invoke(["init"])

    def inventory(self) -> list[ADRInventoryItem]:
        return parse_inventory(self.analyzer.invoke(["list", "--format", "json"]))

    def propose(self, context: str) -> ADRProposal:
        with _temp_file(self.root / CONTEXT_TEMP_NAME, context) as temp:
            output = self.analyzer.invoke(
                ["propose", "--context-file", str(temp), "--format", "json"]
            )
        return parse_proposal(output)

    def report(self, results: Sequence[DriftResult]) -> Path:
        payload = [result.as_json_dict() for result in results]
        with _temp_file(self.root / RESULTS_TEMP_NAME, json.dumps(payload, indent=2)) as temp:
            self.analyzer.invoke(["report", "--input", str(temp)])
        return self.root / REPORT_NAME

    def new_adr(self, title: str) -> Path:
        output = self.analyzer.invoke(
            ["new", title, "--template", self.config.template_format]
        )
        for line in output.splitlines():
            if "created:" not in line.lower():
                continue
            match = _CREATED_PATH_RE.search(line)
            if match is not None:
                return (self.root / match.group(1)).resolve()
        stamp = self._today_fn().isoformat()
        return self.root / self.config.adr_directory / f"{stamp}-{slugify(title)}.adr.md"

    def generate_index(self) -> Path:
        self.analyzer.invoke(["index"])
        return self.root / self.config.adr_directory / INDEX_NAME
