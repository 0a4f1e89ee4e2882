"""Diagram Forge CLI — operator tools for the content-safety pipeline."""

import json
import logging

import click
import yaml
from rich.console import Console
from rich.table import Table

from diagram_forge import __version__
from diagram_forge.config import ConfigError, load_config
from diagram_forge.logging_config import configure_logging

console = Console()


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, help="Path to a YAML config file")
@click.option("-v", "--verbose", is_flag=True, help="Log pipeline activity")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """Diagram Forge: content-safety pipeline for shared diagrams.

    Sanitize and scan text, run AI moderation on a content file, and inspect
    the moderation audit log.
    """
    configure_logging(logging.INFO if verbose else logging.WARNING)
    try:
        ctx.obj = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e))


# ── Scan ─────────────────────────────────────────────────────────────


@main.command()
@click.argument("text")
@click.pass_obj
def scan(config, text: str):
    """Check TEXT for prompt-injection patterns."""
    from diagram_forge.content.injection_detector import InjectionDetector

    result = InjectionDetector(config.injection_detector).scan(text)
    if result.clean:
        console.print("[green]Clean[/] — no injection patterns found.")
        return

    console.print(f"[yellow]Suspicious[/] — action: {config.injection_detector.action.value}")
    for reason in result.reasons:
        console.print(f"  [yellow]•[/] {reason}")
    raise SystemExit(1)


# ── Sanitize ─────────────────────────────────────────────────────────


@main.command()
@click.argument("text")
@click.option("--keep-urls", is_flag=True, help="Strip HTML only")
@click.pass_obj
def sanitize(config, text: str, keep_urls: bool):
    """Print TEXT after HTML and link removal."""
    from diagram_forge.content.sanitizer import Sanitizer, strip_urls

    sanitizer = Sanitizer(config.sanitizer)
    click.echo(sanitizer.sanitize_field(text, strip_urls=False if keep_urls else None))
    if not keep_urls:
        _, removed = strip_urls(text)
        for url in removed:
            console.print(f"  [dim]removed:[/] {url}", highlight=False)


# ── Moderate ─────────────────────────────────────────────────────────


@main.command()
@click.argument("content_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--user-id", default=None, help="Submitting user (enables per-user rate limits)")
@click.option("--ip", "ip_address", default=None, help="Submitting IP for anonymous content")
@click.pass_obj
def moderate(config, content_path: str, user_id: str | None, ip_address: str | None):
    """Run the full pipeline on a YAML/JSON content file.

    The file holds ``id``, ``title``, ``summary``, ``source_text`` and
    ``format``.
    """
    from diagram_forge.content.models import CandidateContent
    from diagram_forge.content.pipeline import OutcomeStatus, build_pipeline

    try:
        with open(content_path) as f:
            data = yaml.safe_load(f)
        content = CandidateContent(
            id=str(data["id"]),
            title=data.get("title", ""),
            summary=data.get("summary"),
            source_text=data.get("source_text", ""),
            format=data.get("format", "mermaid"),
        )
    except (yaml.YAMLError, KeyError, TypeError, ValueError) as e:
        raise click.ClickException(f"Invalid content file: {e}")

    pipeline = build_pipeline(config)
    outcome = pipeline.submit(content, user_id=user_id, ip_address=ip_address)

    if outcome.detection.suspicious:
        console.print("[yellow]Injection patterns detected:[/]")
        for reason in outcome.detection.reasons:
            console.print(f"  [yellow]•[/] {reason}")

    if outcome.status is OutcomeStatus.rate_limited:
        console.print(f"[red]Rate limited[/] ({outcome.rate_limit.key}). Try again later.")
        raise SystemExit(2)
    if outcome.status is OutcomeStatus.error:
        console.print(f"[red]Moderation failed:[/] {outcome.error.message}")
        raise SystemExit(1)
    if outcome.status is OutcomeStatus.skipped:
        console.print("[dim]Moderation is disabled; content left pending.[/]")
        return
    if outcome.status is OutcomeStatus.unchanged:
        current = pipeline.service.store.get_status(content.id)
        console.print(f"Content unchanged and already [bold]{current.value}[/]; not moderated again.")
        return

    result = outcome.result
    table = Table(title=f"Moderation: {content.id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Decision", result.decision.value)
    table.add_row("Confidence", f"{result.confidence:.2f}")
    table.add_row("Reason", result.reason)
    table.add_row("Flags", ", ".join(result.flags) or "-")
    table.add_row("Status", outcome.moderation_status.value)
    console.print(table)


# ── Logs ─────────────────────────────────────────────────────────────


@main.command()
@click.argument("content_id")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.pass_obj
def logs(config, content_id: str, as_json: bool):
    """Show the moderation audit log for CONTENT_ID."""
    from diagram_forge.content.store import ModerationStore

    entries = ModerationStore(config.data_dir or None).list_logs(content_id)
    if as_json:
        click.echo(json.dumps([e.to_dict() for e in entries], indent=2))
        return
    if not entries:
        console.print(f"[yellow]No moderation log entries for {content_id}.[/]")
        return

    table = Table(title=f"Moderation log: {content_id} ({len(entries)} entries)")
    table.add_column("When", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("Transition")
    table.add_column("By")
    table.add_column("Confidence", justify="right")
    table.add_column("Reason")

    for e in entries:
        table.add_row(
            e.inserted_at[:19],
            e.action,
            f"{e.previous_status or '-'} → {e.new_status}",
            e.performed_by or "ai",
            f"{e.ai_confidence:.2f}" if e.ai_confidence is not None else "-",
            e.reason[:60],
        )
    console.print(table)


# ── Queue ────────────────────────────────────────────────────────────


@main.command()
@click.option("--limit", default=50, show_default=True)
@click.pass_obj
def queue(config, limit: int):
    """List content waiting for manual review."""
    from diagram_forge.content.store import ModerationStore

    store = ModerationStore(config.data_dir or None)
    stats = store.get_stats()
    console.print(
        "  ".join(f"[bold]{status}[/]: {count}" for status, count in stats.items())
    )

    items = store.list_pending_review(limit=limit)
    if not items:
        console.print("[green]Review queue is empty.[/]")
        return

    table = Table(title=f"Manual review queue ({len(items)})")
    table.add_column("Content", style="cyan")
    table.add_column("Submitted", style="dim")
    table.add_column("Reason")
    for item in items:
        table.add_row(item["content_id"], item["submitted_at"][:19], (item["reason"] or "")[:60])
    console.print(table)


if __name__ == "__main__":
    main()
