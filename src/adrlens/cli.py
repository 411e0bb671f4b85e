from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable, List, Mapping, NoReturn, Optional, TypeAlias

import typer

from adrlens.analyzer import Analyzer, AnalyzerClient, CliAnalyzer
from adrlens.config import resolve_config
from adrlens.exceptions import AdrLensError, NotFound
from adrlens.json_types import JSONObject
from adrlens.metadata import extract_file
from adrlens.model import DriftResult, NodeKind, TreeNode
from adrlens.schema import (
    ScanResponse,
    drift_result_dto,
    inventory_dto,
    metadata_dto,
    proposal_dto,
    tree_node_dto,
)
from adrlens.tree import TreeModel

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False)
AnalyzerFactory: TypeAlias = Callable[[str, Path], Analyzer]

EXIT_OK = 0
EXIT_DRIFT = 1
EXIT_FAILURE = 2
EXIT_NOT_FOUND = 127
_FORMATS = ("text", "json")


def _default_analyzer(executable: str, root: Path) -> Analyzer:
    return CliAnalyzer(executable, root)


def _context_analyzer_factory(ctx: typer.Context) -> AnalyzerFactory:
    obj = ctx.obj
    if isinstance(obj, Mapping):
        candidate = obj.get("analyzer_factory")
        if callable(candidate):
            return candidate
    return _default_analyzer


def _context_start_server(ctx: typer.Context) -> Callable[[], None]:
    obj = ctx.obj
    if isinstance(obj, Mapping):
        candidate = obj.get("start_server")
        if callable(candidate):
            return candidate
    from adrlens import server

    return server.start


def _client(ctx: typer.Context, root: Path, executable: Optional[str]) -> AnalyzerClient:
    config = resolve_config(root)
    if executable:
        config = config.with_overrides({"executable": executable})
    analyzer = _context_analyzer_factory(ctx)(config.executable, root)
    return AnalyzerClient(analyzer, root, config)


def _exit_code_for(exc: AdrLensError) -> int:
    return EXIT_NOT_FOUND if isinstance(exc, NotFound) else EXIT_FAILURE


def _fail(exc: AdrLensError) -> NoReturn:
    typer.echo(f"error: {exc}", err=True)
    if isinstance(exc, NotFound):
        typer.echo(exc.remediation, err=True)
    raise typer.Exit(code=_exit_code_for(exc))


def _check_format(output_format: str) -> None:
    if output_format not in _FORMATS:
        typer.echo(f"error: unsupported format {output_format!r}", err=True)
        raise typer.Exit(code=EXIT_FAILURE)


def _emit_json(payload: JSONObject) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


def _format_result(result: DriftResult) -> str:
    prefix = ""
    location = result.location
    if location is not None:
        prefix = location.file
        if location.line is not None:
            prefix += f":{location.line}"
            if location.column is not None:
                prefix += f":{location.column}"
        prefix += ": "
    return f"{prefix}[{result.severity}] {result.title}: {result.description}"


def _render_tree(model: TreeModel, nodes: List[TreeNode], depth: int = 0) -> List[str]:
    lines: List[str] = []
    for node in nodes:
        indent = "  " * depth
        if node.kind is NodeKind.DIRECTORY:
            lines.append(f"{indent}{node.label}/")
            lines.extend(_render_tree(model, model.children(node), depth + 1))
        else:
            lines.append(f"{indent}{node.label} [{node.description}] ({model.resolve(node).name})")
    return lines


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level."),
) -> None:
    """Drive the adrscan drift analyzer and browse ADR documents."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command("scan")
def scan(
    ctx: typer.Context,
    file: Optional[Path] = typer.Argument(None, help="Limit the scan to one file."),
    root: Path = typer.Option(Path("."), "--root"),
    output_format: str = typer.Option("text", "--format", help="text|json"),
    fail_on_drift: bool = typer.Option(False, "--fail-on-drift/--no-fail-on-drift"),
    executable: Optional[str] = typer.Option(None, "--executable"),
) -> None:
    """Run drift detection over the workspace or a single file."""
    _check_format(output_format)
    client = _client(ctx, root, executable)
    try:
        results = client.scan(file)
    except AdrLensError as exc:
        _fail(exc)
    exit_code = EXIT_DRIFT if fail_on_drift and results else EXIT_OK
    if output_format == "json":
        response = ScanResponse(
            results=[drift_result_dto(result) for result in results],
            drift_count=len(results),
            exit_code=exit_code,
        )
        _emit_json(response.model_dump(by_alias=True))
    else:
        for result in results:
            typer.echo(_format_result(result))
        count = len(results)
        typer.echo(f"{count} drift item{'' if count == 1 else 's'} detected")
    raise typer.Exit(code=exit_code)


@app.command("tree")
def tree(
    root: Path = typer.Option(Path("."), "--root"),
    output_format: str = typer.Option("text", "--format", help="text|json"),
) -> None:
    """Show the ADR documents the way the editor tree lists them."""
    _check_format(output_format)
    config = resolve_config(root)
    model = TreeModel(
        [root],
        adr_directory=config.adr_directory,
        suffixes=config.document_suffixes,
    )
    nodes = model.children()
    if output_format == "json":
        _emit_json({"nodes": [tree_node_dto(node).model_dump() for node in nodes]})
        return
    lines = _render_tree(model, nodes)
    if not lines:
        typer.echo(f"No ADR documents under {root / config.adr_directory}")
        return
    for line in lines:
        typer.echo(line)


@app.command("metadata")
def metadata(
    path: Path = typer.Argument(..., help="ADR markdown document."),
    output_format: str = typer.Option("text", "--format", help="text|json"),
) -> None:
    """Print the title, status, date and summary of one ADR."""
    _check_format(output_format)
    extracted = extract_file(path)
    if output_format == "json":
        _emit_json(metadata_dto(str(path), extracted).model_dump())
        return
    typer.echo(f"Title: {extracted.title or 'Untitled'}")
    typer.echo(f"Status: {extracted.status or 'Unknown'}")
    typer.echo(f"Date: {extracted.date or 'Unknown'}")
    if extracted.tags:
        typer.echo(f"Tags: {', '.join(extracted.tags)}")
    if extracted.summary:
        typer.echo(f"Summary: {extracted.summary}")


@app.command("inventory")
def inventory(
    ctx: typer.Context,
    root: Path = typer.Option(Path("."), "--root"),
    output_format: str = typer.Option("text", "--format", help="text|json"),
    executable: Optional[str] = typer.Option(None, "--executable"),
) -> None:
    """List the ADRs known to the analyzer."""
    _check_format(output_format)
    client = _client(ctx, root, executable)
    try:
        items = client.inventory()
    except AdrLensError as exc:
        _fail(exc)
    if output_format == "json":
        _emit_json(inventory_dto(items).model_dump())
        return
    for item in items:
        typer.echo(f"{item.file} - {item.status} - {item.date} - {item.title}")


@app.command("init")
def init(
    ctx: typer.Context,
    root: Path = typer.Option(Path("."), "--root"),
    executable: Optional[str] = typer.Option(None, "--executable"),
) -> None:
    """Initialize the ADR directory structure."""
    client = _client(ctx, root, executable)
    try:
        output = client.init()
    except AdrLensError as exc:
        _fail(exc)
    typer.echo(output.strip() or "ADR structure initialized")


@app.command("propose")
def propose(
    ctx: typer.Context,
    context_file: Path = typer.Argument(..., help="File describing the change."),
    root: Path = typer.Option(Path("."), "--root"),
    output_format: str = typer.Option("text", "--format", help="text|json"),
    executable: Optional[str] = typer.Option(None, "--executable"),
) -> None:
    """Ask the analyzer for an ADR proposal."""
    _check_format(output_format)
    try:
        context = context_file.read_text(encoding="utf-8")
    except OSError as exc:
        typer.echo(f"error: cannot read {context_file}: {exc}", err=True)
        raise typer.Exit(code=EXIT_FAILURE)
    client = _client(ctx, root, executable)
    try:
        proposal = client.propose(context)
    except AdrLensError as exc:
        _fail(exc)
    if output_format == "json":
        _emit_json(proposal_dto(proposal).model_dump())
        return
    typer.echo(f"# {proposal.title}")
    for heading, body in (
        ("Context", proposal.context),
        ("Decision", proposal.decision),
        ("Consequences", proposal.consequences),
    ):
        typer.echo(f"\n## {heading}\n\n{body}")
    typer.echo(f"\nConfidence: {proposal.confidence}")


@app.command("report")
def report(
    ctx: typer.Context,
    root: Path = typer.Option(Path("."), "--root"),
    executable: Optional[str] = typer.Option(None, "--executable"),
) -> None:
    """Scan the workspace and write a drift report."""
    client = _client(ctx, root, executable)
    try:
        path = client.report(client.scan())
    except AdrLensError as exc:
        _fail(exc)
    typer.echo(str(path))


@app.command("new")
def new(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Title of the new ADR."),
    root: Path = typer.Option(Path("."), "--root"),
    executable: Optional[str] = typer.Option(None, "--executable"),
) -> None:
    """Create a new ADR from the configured template."""
    client = _client(ctx, root, executable)
    try:
        path = client.new_adr(title)
    except AdrLensError as exc:
        _fail(exc)
    typer.echo(str(path))


@app.command("index")
def index(
    ctx: typer.Context,
    root: Path = typer.Option(Path("."), "--root"),
    executable: Optional[str] = typer.Option(None, "--executable"),
) -> None:
    """Regenerate the ADR index."""
    client = _client(ctx, root, executable)
    try:
        path = client.generate_index()
    except AdrLensError as exc:
        _fail(exc)
    typer.echo(str(path))


@app.command("lsp")
def lsp(ctx: typer.Context) -> None:
    """Run the language server over stdio."""
    _context_start_server(ctx)()
