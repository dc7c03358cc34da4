"""CLI for the observation service.

Commands:
    init-db                         - Create tables if they don't exist
    reset-db                        - Drop and recreate all tables
    show-observation <id>           - Show observation details and resolved entities
    list-observations <user-id>     - List a user's observations with entity status
    pending                         - Submissions not yet completed
    completed                       - Submissions completed within a date window
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Annotated
from uuid import UUID

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from sqlalchemy import select

from observation_service.clients.directory import DirectoryClient
from observation_service.db import async_session_factory, init_db, reset_db
from observation_service.errors import NotFoundError
from observation_service.models import Observation, ObservationStatus, ObservationSubmission
from observation_service.services.entities import EntityResolver
from observation_service.services.reporting import ReportingService
from observation_service.utils.dates import as_utc

app = typer.Typer(
    name="observation-service",
    help="Observation service: observation lifecycle and reporting tools",
    no_args_is_help=True,
)
console = Console()


def run_async(coro):
    """Run an async coroutine in sync context."""
    return asyncio.run(coro)


@app.callback()
def configure(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log outbound calls and service decisions")
    ] = False,
):
    """Observation service operator commands."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@app.command("init-db")
def init_db_command():
    """Initialize the database schema (creates tables if they don't exist)."""
    async def _init():
        await init_db()
        console.print("[green]Database initialized successfully.[/green]")

    run_async(_init())


@app.command("reset-db")
def reset_db_command(
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Skip confirmation prompt")
    ] = False,
):
    """Drop all tables and recreate them.

    WARNING: This destroys all data!
    """
    if not force:
        confirm = typer.confirm(
            "This will DELETE ALL DATA. Are you sure?",
            default=False,
        )
        if not confirm:
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit(0)

    async def _reset():
        await reset_db()
        console.print("[green]Database reset successfully.[/green]")

    run_async(_reset())


@app.command("show-observation")
def show_observation(
    observation_id: Annotated[str, typer.Argument(help="Observation ID (UUID)")],
):
    """Show details for a specific observation."""
    try:
        oid = UUID(observation_id)
    except ValueError:
        console.print(f"[red]Error:[/red] Not a valid observation id: {observation_id}")
        raise typer.Exit(1) from None

    async def _show():
        await init_db()
        async with async_session_factory() as session:
            obs = await session.get(Observation, oid)
            if not obs:
                console.print(f"[red]Error:[/red] Observation not found: {observation_id}")
                raise typer.Exit(1)

            panel_content = []
            panel_content.append(f"[bold]ID:[/bold] {obs.observation_id}")
            panel_content.append(f"[bold]Name:[/bold] {obs.name}")
            panel_content.append(f"[bold]Status:[/bold] {obs.status.value}")
            panel_content.append(
                f"[bold]Solution:[/bold] {obs.solution_external_id or '-'} ({obs.solution_id})"
            )
            if obs.program_id:
                panel_content.append(
                    f"[bold]Program:[/bold] {obs.program_external_id or '-'} ({obs.program_id})"
                )
            panel_content.append(f"[bold]Entity type:[/bold] {obs.entity_type or '-'}")
            panel_content.append(f"[bold]Window:[/bold] {obs.start_date} → {obs.end_date}")
            panel_content.append(f"[bold]Created by:[/bold] {obs.created_by}")
            if obs.link:
                panel_content.append(f"[bold]Link:[/bold] {obs.link}")
            if obs.reference_from:
                panel_content.append(f"[bold]Reference:[/bold] {obs.reference_from}")

            console.print(Panel("\n".join(panel_content), title="Observation Details"))

            if not obs.entities:
                console.print("[dim]No entities.[/dim]")
                return

            async with DirectoryClient() as directory:
                resolved = await EntityResolver(directory).list_by_location_ids(obs.entities)

            if not resolved.success:
                console.print("[yellow]Directory unavailable; raw entity ids:[/yellow]")
                for entity_id in obs.entities:
                    console.print(f"  • {entity_id}")
                return

            table = Table(title=f"Entities ({resolved.count})")
            table.add_column("ID", style="dim")
            table.add_column("Code")
            table.add_column("Name", style="cyan")
            table.add_column("Type")
            for entity in resolved.data:
                meta = entity.get("metaInformation") or {}
                table.add_row(
                    str(entity.get("_id")),
                    str(meta.get("externalId") or "-"),
                    str(meta.get("name") or "-"),
                    str(entity.get("entityType") or "-"),
                )
            console.print(table)

    run_async(_show())


@app.command("list-observations")
def list_observations(
    user_id: Annotated[str, typer.Argument(help="Creator user id")],
    v1: Annotated[
        bool, typer.Option("--v1", help="Show each entity's first submission instead of the latest")
    ] = False,
):
    """List a user's active observations with per-entity submission status."""
    async def _list():
        await init_db()
        async with async_session_factory() as session:
            result = await session.execute(
                select(Observation)
                .where(
                    Observation.created_by == user_id,
                    Observation.status != ObservationStatus.INACTIVE,
                )
                .order_by(Observation.created_at)
            )
            observations = result.scalars().all()

            if not observations:
                console.print("[yellow]No observations found.[/yellow]")
                return

            table = Table(title=f"Observations for {user_id}")
            table.add_column("ID", style="dim")
            table.add_column("Name", style="cyan")
            table.add_column("Status")
            table.add_column("Entity")
            table.add_column("Submissions", justify="right")
            table.add_column("Entity status")

            for obs in observations:
                sub_result = await session.execute(
                    select(ObservationSubmission).where(
                        ObservationSubmission.observation_id == obs.observation_id
                    )
                )
                submissions = sorted(
                    sub_result.scalars().all(),
                    key=lambda s: (as_utc(s.created_at), s.submission_number),
                )

                if not obs.entities:
                    table.add_row(str(obs.observation_id)[:8], obs.name or "-", obs.status.value, "-", "0", "-")
                    continue

                for entity_id in obs.entities:
                    entity_subs = [s for s in submissions if s.entity_id == entity_id]
                    if entity_subs:
                        shown = entity_subs[0] if v1 else entity_subs[-1]
                        entity_status = shown.status.value
                    else:
                        entity_status = "pending"
                    table.add_row(
                        str(obs.observation_id)[:8],
                        obs.name or "-",
                        obs.status.value,
                        entity_id,
                        str(len(entity_subs)),
                        entity_status,
                    )

            console.print(table)
            console.print(f"\n[dim]{len(observations)} observation(s)[/dim]")

    run_async(_list())


def _report_table(title: str, rows: list[dict], date_key: str) -> Table:
    table = Table(title=title)
    table.add_column("Submission", style="dim")
    table.add_column("User")
    table.add_column("Solution")
    table.add_column("Entity", style="cyan")
    table.add_column(date_key)
    for row in rows:
        table.add_row(
            row["_id"][:8],
            str(row["userId"] or "-"),
            row["solutionId"],
            row["entityName"] or row["entityId"],
            str(row[date_key] or "-"),
        )
    return table


@app.command()
def pending(
    limit: Annotated[int, typer.Option(help="Maximum rows to display")] = 50,
):
    """Show submissions that are not completed."""
    async def _pending():
        await init_db()
        async with async_session_factory() as session:
            rows = await ReportingService(session).pending_observations()

        if not rows:
            console.print("[yellow]No pending submissions.[/yellow]")
            return
        console.print(_report_table("Pending submissions", rows[:limit], "createdAt"))
        console.print(f"\n[dim]Showing {min(limit, len(rows))} of {len(rows)}[/dim]")

    run_async(_pending())


@app.command()
def completed(
    from_date: Annotated[datetime, typer.Option("--from-date", help="Window start (ISO date)")],
    to_date: Annotated[datetime, typer.Option("--to-date", help="Window end (ISO date)")],
    limit: Annotated[int, typer.Option(help="Maximum rows to display")] = 50,
):
    """Show submissions completed within a date window."""
    async def _completed():
        await init_db()
        async with async_session_factory() as session:
            try:
                rows = await ReportingService(session).completed_observations(
                    as_utc(from_date), as_utc(to_date)
                )
            except NotFoundError as e:
                console.print(f"[yellow]{e.message}[/yellow]")
                raise typer.Exit(1) from None

        console.print(_report_table("Completed submissions", rows[:limit], "completedDate"))
        console.print(f"\n[dim]Showing {min(limit, len(rows))} of {len(rows)}[/dim]")

    run_async(_completed())


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
