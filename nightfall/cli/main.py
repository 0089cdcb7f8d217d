import json
import logging
from pathlib import Path

import typer

from nightfall.config.flow import get_config_template, load_flow_registry, save_default_config
from nightfall.config.settings import Settings
from nightfall.exceptions import ConfigError, GameNotFoundError, StoreError
from nightfall.io.logging import GameLogLevel, create_game_logger
from nightfall.orchestrator.phase_orchestrator import PhaseOrchestrator
from nightfall.orchestrator.sweep import run_sweep
from nightfall.store.sqlite import SqliteRecordStore

app = typer.Typer(
    name="nightfall",
    help="nightfall - Werewolf phase orchestrator",
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_orchestrator(settings: Settings) -> PhaseOrchestrator:
    """Build an orchestrator from executor settings.

    Args:
        settings: Settings read from the environment

    Returns:
        PhaseOrchestrator bound to the SQLite store
    """
    return PhaseOrchestrator(
        SqliteRecordStore(settings.store_path),
        registry=load_flow_registry(settings.flow_config),
        executor_id=settings.executor_id,
        lease_seconds=settings.lease_seconds,
    )


@app.command()
def sweep() -> None:
    """Advance every game whose deadline has passed.

    Takes no arguments: the store location, flow configuration and archive
    directory come from NIGHTFALL_* environment variables. Meant to be run
    periodically by cron or a scheduler.
    """
    try:
        settings = Settings.from_env()
    except ValueError as e:
        typer.echo(f"Error: invalid settings: {e}", err=True)
        raise typer.Exit(code=1)

    logging.getLogger().setLevel(settings.log_level.upper())

    try:
        orchestrator = create_orchestrator(settings)
        orchestrator.add_sink(create_game_logger(log_level=GameLogLevel.MINIMAL))
        report = run_sweep(orchestrator, archive_dir=settings.archive_dir)
    except (StoreError, ConfigError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Sweep complete: {report.summary()}")
    for game_id, error in report.errors.items():
        typer.echo(f"  {game_id}: {error}", err=True)


@app.command()
def serve(
    host: str = typer.Option(
        "0.0.0.0",
        "--host",
        "-h",
        help="Host to bind the server to",
    ),
    port: int = typer.Option(
        8000,
        "--port",
        "-p",
        help="Port to run the server on",
    ),
) -> None:
    """Start the HTTP executor."""
    from nightfall.web.server import run_server

    settings = Settings.from_env()
    display_host = "localhost" if host == "0.0.0.0" else host
    typer.echo("\nnightfall HTTP executor starting...")
    typer.echo("=" * 50)
    typer.echo(f"  API Base:     http://{display_host}:{port}/api")
    typer.echo(f"  API Docs:     http://{display_host}:{port}/docs")
    typer.echo(f"  Store:        {settings.store_path}")
    typer.echo(f"  Flow Config:  {settings.flow_config or '(auto-detect or defaults)'}")
    typer.echo("=" * 50)
    typer.echo("Press Ctrl+C to stop\n")

    run_server(host=host, port=port, settings=settings)


@app.command(name="init-config")
def init_config(
    output: Path = typer.Option(
        Path("nightfall_flow.yaml"),
        "--output",
        "-o",
        help="Output path for the flow configuration file",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration file",
    ),
    template: bool = typer.Option(
        False,
        "--template",
        "-t",
        help="Generate template with comments (recommended for first-time setup)",
    ),
) -> None:
    """Generate a default flow configuration file.

    The file holds the night steps, phase durations, role->camp map and
    rule variants. Point NIGHTFALL_FLOW_CONFIG at it, or keep it in the
    working directory.
    """
    if output.exists() and not force:
        typer.echo(f"Error: File already exists: {output}", err=True)
        typer.echo("Use --force to overwrite.", err=True)
        raise typer.Exit(code=1)

    try:
        if template:
            output.parent.mkdir(parents=True, exist_ok=True)
            with open(output, "w", encoding="utf-8") as f:
                f.write(get_config_template())
        else:
            save_default_config(output)

        typer.echo(f"Configuration file created: {output}")

    except OSError as e:
        typer.echo(f"Error creating configuration file: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def inspect(
    game_id: str = typer.Argument(..., help="Game id to show"),
    show_actions: bool = typer.Option(
        False,
        "--actions",
        "-a",
        help="Include the action log",
    ),
) -> None:
    """Print a stored game record as JSON."""
    settings = Settings.from_env()
    try:
        store = SqliteRecordStore(settings.store_path)
        record = store.get(game_id)
        payload = record.model_dump(mode="json")
        if show_actions:
            payload["actions"] = [a.model_dump(mode="json") for a in store.list_actions(game_id)]
    except GameNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    except StoreError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
