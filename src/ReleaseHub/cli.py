"""Typer-based CLI for ReleaseHub with Pydantic v2 configuration."""

import json
from pathlib import Path
from typing import Dict, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ReleaseHub.config import export_config_schema, load_config, validate_config_file
from ReleaseHub.config.models import ReleaseHubConfig
from ReleaseHub.errors import ReleaseHubError
from ReleaseHub.logging_utils import setup_logging
from ReleaseHub.service import build_service
from ReleaseHub.signing import TokenAuthority

console = Console()
app = typer.Typer(help="ReleaseHub: CI build aggregation and signed artifact access")

_CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to config file",
    envvar="RELEASEHUB_CONFIG",
)

# ============================================================================
# Setup
# ============================================================================


def _load(config: Optional[str], verbose: bool = False, overrides: Optional[dict] = None) -> ReleaseHubConfig:
    try:
        cfg = load_config(path=config, cli_overrides=overrides)
    except ReleaseHubError as e:
        console.print(f"[red]✗ Invalid config: {e}[/red]")
        raise typer.Exit(code=1)
    setup_logging(
        level="DEBUG" if verbose else cfg.logging.level,
        json_output=cfg.logging.json_output,
        log_dir=Path(cfg.logging.log_dir) if cfg.logging.log_dir else None,
    )
    return cfg


class _FileSink:
    """Download sink writing the body to a local file."""

    def __init__(self, handle):
        self.handle = handle
        self.headers: Dict[str, str] = {}

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    def write(self, chunk: bytes) -> None:
        self.handle.write(chunk)


# ============================================================================
# Commands
# ============================================================================


@app.command()
def serve(
    config: Optional[str] = _CONFIG_OPTION,
    host: Optional[str] = typer.Option(None, "--host", help="Bind host"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
    no_sync: bool = typer.Option(False, "--no-sync", help="Do not start the sync scheduler"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Serve the HTTP API and run the background sync."""
    import uvicorn

    from ReleaseHub.api import create_app

    overrides: dict = {}
    if host:
        overrides.setdefault("server", {})["host"] = host
    if port:
        overrides.setdefault("server", {})["port"] = port
    if no_sync:
        overrides["sync"] = {"enabled": False}
    cfg = _load(config, verbose, overrides)

    try:
        service = build_service(cfg)
    except ReleaseHubError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(
        Panel(
            f"[bold green]✓ Config loaded[/bold green]\n"
            f"Hash: {cfg.config_hash()[:8]}...\n"
            f"Sources: {', '.join(cfg.sync.sources) or '-'}\n"
            f"Store: {cfg.store.backend}",
            title="ReleaseHub",
        )
    )
    uvicorn.run(create_app(service), host=cfg.server.host, port=cfg.server.port, log_config=None)


@app.command()
def sync(
    config: Optional[str] = _CONFIG_OPTION,
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Run one sync cycle per configured source and print a summary."""
    cfg = _load(config, verbose)
    try:
        service = build_service(cfg)
    except ReleaseHubError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)

    try:
        results = service.refresh()
        table = Table(title="Sync Summary")
        table.add_column("Source", style="cyan")
        table.add_column("Changed", style="green")
        table.add_column("Builds", style="yellow")
        table.add_column("Cursor", style="magenta")
        for engine in service.engines:
            state = engine.state.describe()
            changed = results.get(engine.name)
            table.add_row(
                engine.name,
                "[red]failed[/red]" if changed is None else str(changed),
                str(state["builds"]),
                str(state["cursor"] or "-"),
            )
        console.print(table)
        console.print(f"\n[cyan]Store: {service.store.stats()}[/cyan]")
    finally:
        service.close()

    if any(changed is None for changed in results.values()):
        raise typer.Exit(code=1)


@app.command()
def sign(
    method: str = typer.Argument(..., help="HTTP method"),
    path: str = typer.Argument(..., help="Request path"),
    config: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Print the signed form of PATH."""
    cfg = _load(config)
    if not cfg.auth.salt:
        console.print("[red]✗ auth.salt must be configured to sign URLs[/red]")
        raise typer.Exit(code=1)
    typer.echo(TokenAuthority(cfg.auth.salt).signed_path(method, path))


@app.command()
def verify(
    method: str = typer.Argument(..., help="HTTP method"),
    path: str = typer.Argument(..., help="Request path"),
    signature: str = typer.Argument(..., help="Signature to check"),
    config: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Check SIGNATURE against METHOD and PATH."""
    cfg = _load(config)
    if not cfg.auth.salt:
        console.print("[red]✗ auth.salt must be configured to verify URLs[/red]")
        raise typer.Exit(code=1)
    if TokenAuthority(cfg.auth.salt).verify(method, path, signature):
        console.print("[green]✓ Signature valid[/green]")
    else:
        console.print("[red]✗ Signature invalid[/red]")
        raise typer.Exit(code=1)


@app.command()
def download(
    artifact_id: str = typer.Argument(..., help="Artifact id"),
    output: Path = typer.Option(..., "--output", "-o", help="Destination file"),
    config: Optional[str] = _CONFIG_OPTION,
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Download one artifact known to the store."""
    cfg = _load(config, verbose)
    try:
        service = build_service(cfg)
    except ReleaseHubError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)

    try:
        with output.open("wb") as handle:
            written = service.download(artifact_id, _FileSink(handle))
    except ReleaseHubError as e:
        output.unlink(missing_ok=True)
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)
    finally:
        service.close()
    console.print(f"[green]✓ {written} bytes written to {output}[/green]")


@app.command()
def print_config(
    config: Optional[str] = _CONFIG_OPTION,
    raw: bool = typer.Option(False, "--raw", help="Raw JSON"),
) -> None:
    """Print merged effective config (secrets masked)."""
    try:
        cfg = load_config(path=config)
    except ReleaseHubError as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)

    data = cfg.redacted()
    if raw:
        typer.echo(json.dumps(data, indent=2))
    else:
        console.print(Panel(json.dumps(data, indent=2), title="ReleaseHub Config", expand=False))


@app.command()
def validate_config(
    config: str = typer.Argument(..., help="Path to config file"),
) -> None:
    """Validate a config file."""
    try:
        validate_config_file(config)
        console.print("[green]✓ Config valid[/green]")
    except ReleaseHubError as e:
        console.print(f"[red]✗ Invalid: {e}[/red]")
        raise typer.Exit(code=1)


@app.command()
def schema(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Save schema to file"),
) -> None:
    """Export JSON Schema for ReleaseHubConfig."""
    schema_data = export_config_schema()
    if output:
        output.write_text(json.dumps(schema_data, indent=2))
        console.print(f"[green]✓ Schema written to {output}[/green]")
    else:
        console.print(Panel(json.dumps(schema_data, indent=2), title="JSON Schema", expand=False))


if __name__ == "__main__":
    app()
