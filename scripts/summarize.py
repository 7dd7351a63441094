from __future__ import annotations

from datetime import datetime, timedelta
import logging
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config.settings import get_settings
from digest.errors import DigestError
from digest.fallback import FallbackChain
from digest.parser import parse_export_file
from digest.pipeline import PipelineResult, SummaryPipeline
from digest.registry import build_provider, build_providers, resolve_specs
from digest.storage.sqlite_store import SQLiteStore

app = typer.Typer(help="Summarize group chat windows with a fallback chain of text backends.")
console = Console()


def _configure_logging(log_level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        force=True,
    )
    for noisy_name in ("httpx", "httpcore", "openai", "openai._base_client"):
        logging.getLogger(noisy_name).setLevel(logging.WARNING)


@app.command("import-export")
def import_export(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Telegram Desktop result.json."),
    chat_id: int | None = typer.Option(None, help="Override the chat id stored with the messages."),
    log_level: str = typer.Option("INFO", help="Logging level (DEBUG, INFO, WARNING)."),
) -> None:
    _configure_logging(log_level)
    settings = get_settings()
    chat = parse_export_file(path, chat_id=chat_id)
    inserted = SQLiteStore(settings.sqlite_path).upsert_messages(chat.messages)

    table = Table(title="Export Import Summary")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Chat", f"{chat.name} ({chat.chat_id})")
    table.add_row("Messages Parsed", str(len(chat.messages)))
    table.add_row("Messages Stored", str(inserted))
    table.add_row("Entries Skipped", str(chat.skipped))
    console.print(table)


def _show_progress(message: str) -> None:
    console.print(f"[dim]{message}[/dim]")


def _show_partial(text: str) -> None:
    console.print(Panel(Markdown(text), border_style="cyan"))


def _print_result(result: PipelineResult, title: str) -> None:
    if result.streamed:
        console.print(f"[green]{result.text}[/green]")
    else:
        console.print(Panel(Markdown(result.text), title=title, border_style="green"))

    metadata = result.metadata
    if metadata is None:
        return
    table = Table(title=f"Summary {result.summary_id}")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Messages", str(result.message_count))
    table.add_row("Sentiment", metadata.sentiment)
    table.add_row("Credibility", f"{metadata.credibility_score}/5")
    table.add_row("Products", ", ".join(p.product_name for p in metadata.products) or "-")
    table.add_row("Red Flags", str(metadata.red_flags_count))
    table.add_row("Status", metadata.validation_status)
    console.print(table)


@app.command("summarize")
def summarize(
    chat_id: int = typer.Argument(..., help="Chat id to summarize."),
    hours: int = typer.Option(24, min=1, help="Window length ending at --until."),
    group_name: str = typer.Option("Group", help="Group name used in prompts and headers."),
    until: datetime | None = typer.Option(None, help="Window end (defaults to now)."),
    summary_type: str = typer.Option("manual", help="Summary type stored with the result."),
    log_level: str = typer.Option("WARNING", help="Logging level (DEBUG, INFO, WARNING)."),
) -> None:
    _configure_logging(log_level)
    settings = get_settings()
    end = until or datetime.now()
    start = end - timedelta(hours=hours)

    with FallbackChain(build_providers(settings)) as chain:
        pipeline = SummaryPipeline.from_settings(settings, chain)
        try:
            result = pipeline.run_window(
                chat_id,
                group_name,
                start,
                end,
                summary_type=summary_type,
                on_progress=_show_progress,
                on_partial_result=_show_partial,
            )
        except DigestError as exc:
            console.print(f"[red]Summarization failed:[/red] {exc}")
            raise typer.Exit(code=1) from exc

    if result.status == "skipped":
        console.print(
            f"[yellow]Not enough messages to summarize ({result.message_count}).[/yellow]"
        )
        return
    _print_result(result, group_name)


@app.command("rollup")
def rollup(
    chat_id: int = typer.Argument(..., help="Chat id to roll up."),
    day: datetime | None = typer.Option(None, help="Day to roll up (defaults to yesterday)."),
    group_name: str = typer.Option("Group", help="Group name used in prompts and headers."),
    source_type: str = typer.Option("1h", help="Summary type merged into the daily summary."),
    retention_hours: int = typer.Option(
        24, min=0, help="Delete messages older than this many hours before the day end (0 keeps all)."
    ),
    log_level: str = typer.Option("WARNING", help="Logging level (DEBUG, INFO, WARNING)."),
) -> None:
    _configure_logging(log_level)
    settings = get_settings()
    day_start = (day or datetime.now() - timedelta(days=1)).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    day_end = day_start + timedelta(days=1)
    retention = timedelta(hours=retention_hours) if retention_hours else None

    with FallbackChain(build_providers(settings)) as chain:
        pipeline = SummaryPipeline.from_settings(settings, chain)
        try:
            result = pipeline.run_daily_rollup(
                chat_id,
                group_name,
                day_start,
                day_end,
                source_type=source_type,
                retention=retention,
                on_progress=_show_progress,
            )
        except DigestError as exc:
            console.print(f"[red]Daily roll-up failed:[/red] {exc}")
            raise typer.Exit(code=1) from exc

    if result.status == "skipped":
        console.print(f"[yellow]No {source_type} summaries found for {day_start:%Y-%m-%d}.[/yellow]")
        return
    _print_result(result, f"{group_name} {day_start:%Y-%m-%d}")
    console.print(
        f"[dim]Merged {result.source_summaries} summaries, "
        f"deleted {result.deleted_messages} old messages.[/dim]"
    )


@app.command("trends")
def trends(
    product_name: str = typer.Argument(..., help="Product name as extracted from summaries."),
    days: int = typer.Option(7, min=1, help="Look-back window in days."),
    log_level: str = typer.Option("WARNING", help="Logging level (DEBUG, INFO, WARNING)."),
) -> None:
    _configure_logging(log_level)
    mentions = SQLiteStore(get_settings().sqlite_path).get_product_trends(product_name, days)

    table = Table(title=f"{product_name} - last {days} days")
    table.add_column("Recorded")
    table.add_column("Summary", justify="right")
    table.add_column("Mentions", justify="right")
    table.add_column("Credibility", justify="right")
    table.add_column("Sentiment")
    table.add_column("Status")
    table.add_column("Price")
    for mention in mentions:
        recorded = f"{mention.created_at:%Y-%m-%d %H:%M}" if mention.created_at else "-"
        table.add_row(
            recorded,
            str(mention.summary_id),
            str(mention.mention_count),
            f"{mention.credibility_score}/5",
            mention.sentiment,
            mention.validation_status,
            mention.price_mentioned or "-",
        )
    console.print(table)


@app.command("providers")
def providers(
    check: bool = typer.Option(False, help="Probe each backend for availability."),
    log_level: str = typer.Option("WARNING", help="Logging level (DEBUG, INFO, WARNING)."),
) -> None:
    _configure_logging(log_level)
    settings = get_settings()

    table = Table(title="Provider Chain")
    table.add_column("#", justify="right")
    table.add_column("Key")
    table.add_column("Name")
    table.add_column("Available")
    for position, spec in enumerate(resolve_specs(settings.fallback_providers), start=1):
        available = "-"
        if check:
            provider = build_provider(spec, settings)
            try:
                available = "yes" if provider.is_available() else "no"
            finally:
                provider.close()
        table.add_row(str(position), spec.key, spec.name, available)
    console.print(table)


if __name__ == "__main__":
    app()
