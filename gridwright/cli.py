import click


@click.group()
def main() -> None:
    """Gridwright - intelligent spreadsheet service."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from GRID_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from GRID_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the sheet runtime server."""
    import uvicorn

    from gridwright.sheet_runtime.settings import GridSettings

    settings = GridSettings()

    uvicorn.run(
        "gridwright.sheet_runtime.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
    )


@main.command("match-headers")
@click.argument("source", nargs=-1, required=True)
@click.option("--target", "targets", multiple=True, required=True, help="Existing column header (repeatable).")
@click.option("--threshold", default=None, type=float, help="Auto-apply threshold (GRID_HEADER_MATCH_THRESHOLD).")
@click.option("--no-llm", is_flag=True, default=False, help="Deterministic matching only.")
def match_headers_cmd(source: tuple[str, ...], targets: tuple[str, ...], threshold: float | None, no_llm: bool) -> None:
    """Match SOURCE headers onto --target headers and print the result."""
    import asyncio

    from gridwright.sheet_runtime.engine.header_match import match_headers, partition_matches
    from gridwright.sheet_runtime.log import setup_logging
    from gridwright.sheet_runtime.settings import GridSettings

    settings = GridSettings()
    setup_logging(settings.log_level)

    config = settings.header_match_config()
    if threshold is not None:
        config.confidence_threshold = threshold
    if no_llm:
        config.use_fuzzy_matching = False

    matches = asyncio.run(match_headers(list(source), list(targets), config))
    applied, _review = partition_matches(matches, config.confidence_threshold)
    applied_sources = {m.source_header for m in applied}

    for match in matches:
        if match.target_header is None:
            click.echo(f"{match.source_header!r} -> (new column)")
            continue
        mark = "" if match.source_header in applied_sources else "  [review]"
        click.echo(f"{match.source_header!r} -> {match.target_header!r} ({match.confidence:.2f}){mark}")


# ---------------------------------------------------------------------------
# Database management
# ---------------------------------------------------------------------------


def _alembic_config():
    """Build an Alembic Config from the package's alembic.ini.

    Both alembic.ini and the alembic/ directory live inside the package,
    so this works whether running from source or from an installed package.
    """
    from pathlib import Path

    from alembic.config import Config

    ini_path = Path(__file__).parent / "sheet_runtime" / "alembic.ini"
    return Config(str(ini_path))


@main.group()
def db() -> None:
    """Database migration and management commands."""


@db.command()
@click.option("--revision", default="head", help="Target revision (default: head).")
def upgrade(revision: str) -> None:
    """Run database migrations forward."""
    from alembic import command

    command.upgrade(_alembic_config(), revision)
    click.echo(f"Database upgraded to {revision}.")


@db.command()
@click.option("--revision", default="-1", help="Target revision (default: -1, one step back).")
def downgrade(revision: str) -> None:
    """Roll back database migrations."""
    from alembic import command

    command.downgrade(_alembic_config(), revision)
    click.echo(f"Database downgraded to {revision}.")


@db.command()
@click.argument("message")
def migrate(message: str) -> None:
    """Autogenerate a new migration from table changes."""
    from alembic import command

    command.revision(_alembic_config(), message=message, autogenerate=True)
    click.echo(f"Migration generated: {message}")


@db.command()
def current() -> None:
    """Show current database revision."""
    from alembic import command

    command.current(_alembic_config(), verbose=True)


@db.command()
def history() -> None:
    """Show migration history."""
    from alembic import command

    command.history(_alembic_config(), verbose=True)


if __name__ == "__main__":
    main()
