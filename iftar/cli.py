"""Typer CLI for the iftar planner."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .bot import create_bot, run_polling
from .crud import list_feedback
from .database import get_session
from .reminders import send_reminders
from .scheduler import start_scheduler, stop_scheduler
from .seed import seed_fake_data
from .stats import collect_stats
from .storage import init_db, upgrade_database

app = typer.Typer(help="Iftar planner command-line interface")


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the SQLite database before upgrading",
    ),
) -> None:
    """Upgrade the database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        message = str(getattr(exc, "orig", exc)).lower()
        if "readonly" in message or "read-only" in message:
            typer.secho(
                "Unable to upgrade because the database is read-only. "
                f"Ensure write access to {settings.database_path}.",
                err=True,
                fg=typer.colors.RED,
            )
            raise typer.Exit(code=1)
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the HTTP API."""
    init_db()
    config = uvicorn.Config(
        "iftar.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting iftar API on {host}:{port}")
    server.run()


@app.command("runbot")
def runbot() -> None:
    """Run the Telegram bot with long polling."""
    if not settings.bot_token:
        typer.secho("Set IFTAR_BOT_TOKEN to run the bot.", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    _configure_logging()
    init_db()
    start_scheduler()
    try:
        asyncio.run(run_polling())
    finally:
        stop_scheduler()


@app.command("send-reminders")
def send_reminders_command(
    date: str | None = typer.Option(
        None,
        "--date",
        help="Event date to remind about (YYYY-MM-DD); defaults to tomorrow (UTC)",
    ),
) -> None:
    """Send day-before reminders once and exit (for cron)."""
    if not settings.bot_token:
        typer.secho("Set IFTAR_BOT_TOKEN to send reminders.", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    day = None
    if date:
        try:
            day = datetime.strptime(date, "%Y-%m-%d").date()
        except ValueError as exc:
            raise typer.BadParameter("Use YYYY-MM-DD", param_hint="--date") from exc
    _configure_logging()
    init_db()

    async def _run() -> dict[str, int]:
        bot = create_bot()
        try:
            return await send_reminders(bot, day)
        finally:
            await bot.session.close()

    result = asyncio.run(_run())
    typer.echo(
        f"Reminders: {result['events']} events, {result['sent']} sent, "
        f"{result['failed']} failed"
    )


@app.command("seed-data")
def seed_data(
    users: int = typer.Option(
        settings.seed_users, "--users", min=1, help="Number of fake users"
    ),
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Number of fake iftars"
    ),
    invitations: int = typer.Option(
        settings.seed_invitations_per_event,
        "--invitations",
        min=0,
        help="Invitations per iftar",
    ),
    seed: int | None = typer.Option(None, "--seed", help="Random seed"),
) -> None:
    """Populate the database with fake users, iftars, and RSVPs."""
    stats = seed_fake_data(
        user_count=users,
        event_count=events,
        invitations_per_event=invitations,
        seed=seed,
    )
    typer.echo(
        f"Seeded {stats['users']} users, {stats['events']} events, "
        f"{stats['invitations']} invitations."
    )


@app.command("stats")
def stats(
    limit: int = typer.Option(
        settings.stats_list_limit, "--limit", min=1, help="Rows per list"
    ),
) -> None:
    """Print usage analytics as JSON."""
    init_db()
    with get_session() as session:
        payload = collect_stats(session, limit=limit)
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@app.command("feedback")
def feedback(
    limit: int = typer.Option(20, "--limit", min=1, help="Number of entries to show"),
) -> None:
    """Print the most recent user feedback."""
    init_db()
    with get_session() as session:
        entries = [
            {
                "created_at": entry.created_at.isoformat(),
                "telegram_id": entry.telegram_id,
                "kind": entry.kind,
                "text": entry.text,
            }
            for entry in list_feedback(session, limit=limit)
        ]
    typer.echo(json.dumps(entries, indent=2, ensure_ascii=False))


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Print the effective configuration after updating"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to the TOML config file"
    ),
    database_url: str | None = typer.Option(
        None, "--database-url", help="SQLAlchemy URL; empty uses the SQLite file"
    ),
    mini_app_url: str | None = typer.Option(
        None, "--mini-app-url", help="Public URL of the mini-app"
    ),
    admin_telegram_ids: str | None = typer.Option(
        None, "--admin-ids", help="Comma-separated Telegram ids allowed admin commands"
    ),
    cors_allow_origins: str | None = typer.Option(
        None, "--cors-origins", help="Comma-separated allowed CORS origins"
    ),
    default_city: str | None = typer.Option(
        None, "--default-city", help="City used when a request names none"
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Run the daily reminder job inside runbot",
    ),
    reminder_hour: int | None = typer.Option(
        None, "--reminder-hour", min=0, max=23, help="UTC hour for the reminder job"
    ),
    stats_list_limit: int | None = typer.Option(
        None, "--stats-limit", min=1, help="Rows per analytics list"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "app_host": host,
        "app_port": port,
        "database_url": database_url,
        "mini_app_url": mini_app_url,
        "admin_telegram_ids": admin_telegram_ids,
        "cors_allow_origins": cors_allow_origins,
        "default_city": default_city,
        "enable_scheduler": enable_scheduler,
        "reminder_hour": reminder_hour,
        "stats_list_limit": stats_list_limit,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    app()
