"""
CLI for the candidates enrichment engine.
Supports one-off cycles, snapshots, the read API and scheduled mode.
"""
import asyncio
import json
import sys

import click
import structlog

from candidates_ingest.config import Settings, get_settings
from candidates_ingest.database import DatabaseManager, SqlStateStore
from candidates_ingest.errors import NotSeededError, SeedingError, UpstreamError
from candidates_ingest.ingestion import CandidateEngine
from candidates_ingest.models import Credentials
from candidates_ingest.utils import setup_logging

logger = structlog.get_logger()


def build_engine(settings: Settings) -> tuple[CandidateEngine, DatabaseManager]:
    """Engine over the configured SQL state table (created if missing)."""
    db = DatabaseManager(settings.database_url)
    db.create_tables()
    return CandidateEngine(SqlStateStore(db), settings), db


# =============================================================================
# CLI GROUP
# =============================================================================

@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, debug: bool):
    """
    Candidates enrichment CLI.

    Seeds NDC election candidates from Pikespeak and enriches them with
    data from NearBlocks, Pagoda, NEAR RPC and the Ref price sheet.
    """
    settings = get_settings()
    if debug:
        setup_logging("DEBUG", "console")
    else:
        setup_logging(settings.log_level, settings.log_format)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


# =============================================================================
# CYCLE COMMANDS
# =============================================================================

@cli.command()
@click.pass_context
def cycle(ctx):
    """Run a single enrichment cycle now."""
    settings: Settings = ctx.obj["settings"]

    async def _run():
        engine, db = build_engine(settings)
        try:
            report = await engine.run_cycle(Credentials.from_settings(settings))
        except SeedingError as e:
            click.echo(click.style(f"✗ Seeding failed: {e}", fg="red"))
            sys.exit(1)
        except UpstreamError as e:
            click.echo(click.style(f"✗ Cycle failed: {e}", fg="red"))
            sys.exit(1)
        finally:
            db.close()

        if report.seeded:
            click.echo(click.style(f"✓ Seeded {len(engine.candidates)} candidates", fg="green"))
        click.echo(f"  Enriched: {', '.join(report.enriched) or '-'}")
        click.echo(f"  Index: {report.index_before} -> {report.index_after} / {len(engine.candidates)}")
        click.echo(f"  Calls made: {report.calls_made}")
        click.echo(f"  Duration: {report.duration_seconds:.1f}s")
        if report.enrichment_error:
            click.echo(click.style(f"  Stopped early: {report.enrichment_error}", fg="yellow"))

    asyncio.run(_run())


@cli.command()
@click.pass_context
def schedule(ctx):
    """
    Run cycles on an interval without the read API, until interrupted.

    Press Ctrl+C to stop.
    """
    from candidates_ingest.scheduler import run_scheduler

    settings: Settings = ctx.obj["settings"]

    async def _run():
        engine, db = build_engine(settings)
        try:
            await run_scheduler(engine, settings)
        finally:
            db.close()

    click.echo("Starting scheduler...")
    asyncio.run(_run())


@cli.command()
@click.pass_context
def serve(ctx):
    """
    Serve the read API and run scheduled cycles in the same process.

    Routes and cycles share one engine, so each committed cycle is served
    by the next request.
    """
    import uvicorn

    from candidates_ingest.api import create_app
    from candidates_ingest.scheduler import CycleScheduler

    settings: Settings = ctx.obj["settings"]
    engine, db = build_engine(settings)
    app = create_app(engine, settings, scheduler=CycleScheduler(engine, settings), db=db)

    click.echo(f"Serving on {settings.api_host}:{settings.api_port}, cycle every {settings.cycle_interval_minutes}m")
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


# =============================================================================
# STATUS COMMANDS
# =============================================================================

@cli.command()
@click.argument("snapshot", type=click.Choice(["candidates", "ftmetas", "nftmetas"]))
@click.pass_context
def show(ctx, snapshot: str):
    """Print a snapshot as JSON."""
    settings: Settings = ctx.obj["settings"]

    async def _run():
        engine, db = build_engine(settings)
        try:
            if snapshot == "candidates":
                items = await engine.get_candidates()
            elif snapshot == "ftmetas":
                items = await engine.get_ft_metadata()
            else:
                items = await engine.get_nft_metadata()
        except NotSeededError:
            click.echo("No candidates yet. Run a cycle first.")
            sys.exit(1)
        finally:
            db.close()

        click.echo(json.dumps([item.to_json_dict() for item in items], indent=2))

    asyncio.run(_run())


@cli.command()
@click.pass_context
def status(ctx):
    """Show engine state and cursor position."""
    settings: Settings = ctx.obj["settings"]

    async def _run():
        engine, db = build_engine(settings)
        try:
            info = await engine.status()
        finally:
            db.close()

        click.echo(f"State:       {info['state']}")
        click.echo(f"Index:       {info['index']} / {info['candidates']}")
        click.echo(f"FT metas:    {info['ft_metas']}")
        click.echo(f"NFT metas:   {info['nft_metas']}")

    asyncio.run(_run())


# =============================================================================
# DATABASE COMMANDS
# =============================================================================

@cli.group()
def db():
    """Database management commands."""
    pass


@db.command()
@click.pass_context
def init(ctx):
    """Create the state table."""
    settings: Settings = ctx.obj["settings"]
    manager = DatabaseManager(settings.database_url)
    manager.create_tables()
    ok = manager.health_check()
    manager.close()

    if ok:
        click.echo(click.style("✓ State table ready", fg="green"))
    else:
        click.echo(click.style("✗ Database connection failed", fg="red"))
        sys.exit(1)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
