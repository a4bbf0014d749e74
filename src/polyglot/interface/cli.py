"""polyglot CLI: study, maintenance and sync commands."""

import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Annotated, Literal

import typer

from polyglot.application.config import AppConfig, resolve_config
from polyglot.application.factory import Services, build_services
from polyglot.application.phrase_service import PhraseService
from polyglot.application.quiz import build_quiz_session, check_answer
from polyglot.application.scheduler import Rating
from polyglot.domain.errors import PhraseNotFoundError, PhraseValidationError

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="polyglot: spaced-repetition phrase study with cloud sync.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Subgroups
# ---------------------------------------------------------------------------

config_app = typer.Typer(help="Manage polyglot configuration.")
app.add_typer(config_app, name="config")

sync_app = typer.Typer(help="Cloud sync maintenance.", no_args_is_help=True)
app.add_typer(sync_app, name="sync")


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 1,
    data_dir: Annotated[
        Path | None, typer.Option(help="Directory holding the local store.")
    ] = None,
):
    """Global settings for polyglot."""
    ctx.ensure_object(dict)
    ctx.obj["verbose_bonus"] = verbose
    ctx.obj["data_dir"] = data_dir
    if verbose >= 2:
        logging.getLogger("polyglot").setLevel(logging.DEBUG)


def _config(ctx: typer.Context) -> AppConfig:
    obj = ctx.obj or {}
    return resolve_config({"data_dir": obj.get("data_dir"), "verbose": obj.get("verbose_bonus")})


async def _ensure_migrated(services: Services) -> None:
    metadata = await services.migration.get_storage_metadata()
    if not services.migration.needs_migration(metadata):
        return
    result = await services.migration.run_migration()
    if not result.success:
        typer.secho(
            f"Migration failed: {result.error}. "
            "Your data was restored; run 'polyglot migrate' to retry.",
            fg="red",
        )
        raise typer.Exit(1)
    if result.migrated_count:
        typer.secho(f"Migrated {result.migrated_count} legacy phrases.", fg="green")


async def _open(services: Services) -> PhraseService:
    await _ensure_migrated(services)
    return await services.open_phrase_service()


async def _close(services: Services, phrases: PhraseService) -> None:
    await services.close_phrase_service(phrases)
    await services.aclose()


def _parse_rating(value: str) -> Rating:
    try:
        if value.isdigit():
            return Rating(int(value))
        return Rating[value.upper()]
    except (KeyError, ValueError):
        raise typer.BadParameter(
            f"'{value}' is not a rating. Use 1-4 or again/hard/good/easy."
        ) from None


def _print_phrase(phrase) -> None:
    due = phrase.due.date().isoformat() if phrase.due else "-"
    state = phrase.state.value if phrase.state else "new"
    typer.echo(f"{phrase.id}  [{state}] due {due}  {phrase.sentence} = {phrase.meaning}")


# ---------------------------------------------------------------------------
# Root commands
# ---------------------------------------------------------------------------


@app.command()
def migrate(ctx: typer.Context):
    """[bold]Upgrade[/bold] the local store to the current schema."""

    async def run():
        services = build_services(_config(ctx))
        metadata = await services.migration.get_storage_metadata()
        if not services.migration.needs_migration(metadata):
            typer.echo(f"Store is already at schema v{metadata.schema_version}.")
            return
        result = await services.migration.run_migration()
        if not result.success:
            typer.secho(f"Migration failed and was rolled back: {result.error}", fg="red")
            raise typer.Exit(1)
        typer.secho(f"Migrated {result.migrated_count} legacy phrases.", fg="green")

    asyncio.run(run())


@app.command()
def add(
    ctx: typer.Context,
    meaning: Annotated[str, typer.Argument(help="Meaning in your own language.")],
    sentence: Annotated[str, typer.Argument(help="The phrase in the language you study.")],
    pronunciation: Annotated[str | None, typer.Option(help="Pronunciation guide.")] = None,
    tags: Annotated[str | None, typer.Option(help="Comma separated tags.")] = None,
    memo: Annotated[str | None, typer.Option(help="Free-form note.")] = None,
):
    """[bold green]Add[/bold green] a phrase to your collection."""

    async def run():
        services = build_services(_config(ctx))
        phrases = await _open(services)
        try:
            phrase = await phrases.add(
                meaning,
                sentence,
                pronunciation=pronunciation,
                tags=[t.strip() for t in tags.split(",") if t.strip()] if tags else None,
                memo=memo,
            )
        except PhraseValidationError as e:
            typer.secho(f"Invalid phrase: {e}", fg="red")
            raise typer.Exit(1) from None
        finally:
            await _close(services, phrases)
        typer.secho(f"Added {phrase.id}", fg="green")

    asyncio.run(run())


@app.command()
def review(
    ctx: typer.Context,
    phrase_id: Annotated[str, typer.Argument(help="Phrase id.")],
    rating: Annotated[str, typer.Argument(help="1-4 or again/hard/good/easy.")],
):
    """[bold]Rate[/bold] a recall attempt and reschedule the phrase."""
    parsed = _parse_rating(rating)

    async def run():
        services = build_services(_config(ctx))
        phrases = await _open(services)
        try:
            updated = await phrases.review(phrase_id, parsed)
        except PhraseNotFoundError as e:
            typer.secho(str(e), fg="red")
            raise typer.Exit(1) from None
        finally:
            await _close(services, phrases)
        typer.echo(
            f"{updated.id}: {updated.state.value}, next review in {updated.scheduled_days} day(s) "
            f"({updated.due.date().isoformat()})"
        )

    asyncio.run(run())


@app.command()
def delete(
    ctx: typer.Context,
    phrase_id: Annotated[str, typer.Argument(help="Phrase id.")],
):
    """Soft-delete a phrase (purged after the tombstone TTL)."""

    async def run():
        services = build_services(_config(ctx))
        phrases = await _open(services)
        try:
            await phrases.delete(phrase_id)
        except PhraseNotFoundError as e:
            typer.secho(str(e), fg="red")
            raise typer.Exit(1) from None
        finally:
            await _close(services, phrases)
        typer.echo(f"Deleted {phrase_id}")

    asyncio.run(run())


@app.command()
def purge(ctx: typer.Context):
    """Remove tombstones older than the TTL."""

    async def run():
        services = build_services(_config(ctx))
        phrases = await _open(services)
        try:
            removed = await phrases.purge()
        finally:
            await _close(services, phrases)
        typer.echo(f"Purged {removed} tombstone(s).")

    asyncio.run(run())


@app.command()
def due(
    ctx: typer.Context,
    limit: Annotated[int | None, typer.Option(help="Show at most this many.")] = None,
):
    """List phrases due for review, most overdue first."""

    async def run():
        services = build_services(_config(ctx))
        await _ensure_migrated(services)
        cards = await services.stats.get_due(limit=limit)
        if not cards:
            typer.secho("Nothing due.", fg="green")
            return
        for phrase in cards:
            _print_phrase(phrase)

    asyncio.run(run())


@app.command()
def forecast(
    ctx: typer.Context,
    days: Annotated[int, typer.Option("--days", "-d", min=0, help="Days to look ahead.")] = 7,
):
    """Show how many phrases fall due on each upcoming day."""

    async def run():
        services = build_services(_config(ctx))
        await _ensure_migrated(services)
        counts = await services.stats.get_forecast(days)
        for offset, count in enumerate(counts):
            label = "today" if offset == 0 else f"+{offset}d"
            typer.echo(f"{label:>6}  {count:4d}  {'#' * min(count, 50)}")

    asyncio.run(run())


@app.command()
def stats(
    ctx: typer.Context,
    as_json: Annotated[bool, typer.Option("--json", help="Print machine-readable JSON.")] = False,
):
    """Summarize your queue and retention."""

    async def run():
        services = build_services(_config(ctx))
        await _ensure_migrated(services)
        summary = await services.stats.get_summary()
        if as_json:
            typer.echo(json.dumps(asdict(summary), indent=2))
            return
        typer.echo(f"Active phrases: {summary.active_count}")
        typer.echo(f"Due now:        {summary.due_count}")
        typer.echo(f"New:            {summary.new_count}")
        typer.echo(
            f"Reviews:        {summary.retention.total_reviews} "
            f"({summary.retention.total_lapses} lapses, "
            f"{summary.retention.retention_rate:.0%} retention)"
        )
        if summary.average_retrievability is not None:
            typer.echo(f"Avg. recall:    {summary.average_retrievability:.0%}")
        typer.echo(f"Next {len(summary.forecast)} days: {summary.forecast}")

    asyncio.run(run())


@app.command()
def quiz(
    ctx: typer.Context,
    level: Annotated[
        Literal["basic", "advanced", "legend"], typer.Option(help="Question mix.")
    ] = "basic",
):
    """Run an interactive quiz session in the terminal."""

    async def run():
        services = build_services(_config(ctx))
        phrases = await _open(services)
        try:
            items = build_quiz_session(phrases.active(), level)
            if not items:
                typer.secho("No phrases to quiz yet. Add some with 'polyglot add'.", fg="yellow")
                return
            score = 0
            for n, item in enumerate(items, start=1):
                prompt = item.question_text
                if item.hint:
                    prompt = f"{prompt}\n  {item.hint}"
                answer = typer.prompt(f"[{n}/{len(items)}] {item.type.value}: {prompt}")
                correct = check_answer(answer, item.answer_text)
                if correct:
                    score += item.points
                    typer.secho("  correct", fg="green")
                else:
                    typer.secho(f"  expected: {item.answer_text}", fg="red")
                await phrases.record_quiz_answer(item, correct)
            typer.echo(f"Session points: {score}")
        finally:
            await _close(services, phrases)

    asyncio.run(run())


@app.command()
def serve(
    host: Annotated[str, typer.Option(help="Interface to bind.")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Port to listen on.")] = 8777,
):
    """Start the HTTP API server."""
    import uvicorn

    uvicorn.run("polyglot.server:app", host=host, port=port)


# ---------------------------------------------------------------------------
# Sync subgroup
# ---------------------------------------------------------------------------


@sync_app.command("retry")
def sync_retry(ctx: typer.Context):
    """Replay remote writes that previously failed."""

    async def run():
        services = build_services(_config(ctx))
        try:
            result = await services.retry_runner.process()
        finally:
            await services.aclose()
        if result is None:
            typer.secho("Cloud sync is not configured; nothing to retry.", fg="yellow")
            return
        color = "green" if result.failed == 0 else "yellow"
        typer.secho(f"Delivered {result.success}, failed {result.failed}.", fg=color)

    asyncio.run(run())


@sync_app.command("status")
def sync_status(ctx: typer.Context):
    """Show queued remote writes."""

    async def run():
        services = build_services(_config(ctx))
        queue = await services.retry_queue.get_queue()
        if not queue:
            typer.echo("Retry queue is empty.")
            return
        for item in queue:
            typer.echo(f"{item.key}  attempts={item.retry_count}  last_error={item.last_error}")

    asyncio.run(run())


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    config = _config(ctx)
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))
