"""Command-line interface for replytriage."""

from __future__ import annotations

import logging
import sys

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from replytriage import __version__
from replytriage.classifier import GeminiClient
from replytriage.config import Config, load_config
from replytriage.exceptions import LabelError, SelectionError
from replytriage.imap_client import IMAPClient
from replytriage.labeler import LabelApplicator
from replytriage.mailbox import Mailbox
from replytriage.orchestrator import BatchOrchestrator, BatchReport, Classifier, OutcomeStatus
from replytriage.selector import CandidateSelector
from replytriage.structured_logger import StructuredLogger

console = Console(width=200, soft_wrap=False)
logger = logging.getLogger("replytriage")


def setup_logging(level: str, log_file: str | None = None) -> None:
    """Configure logging."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [
        RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
    ]

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,
    )

    # Request URLs carry the API key as a query parameter
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_orchestrator(
    cfg: Config,
    mailbox: Mailbox,
    classifier: Classifier,
    batch_size: int | None = None,
    dry_run: bool | None = None,
) -> BatchOrchestrator:
    """Wire the pipeline components for one run."""
    selector = CandidateSelector(
        mailbox,
        inclusion_label=cfg.labels.inclusion,
        processed_label=cfg.labels.processed,
        batch_size=batch_size or cfg.batch_size,
    )
    applicator = LabelApplicator(
        mailbox,
        processed_label=cfg.labels.processed,
        to_respond_label=cfg.labels.to_respond,
    )
    return BatchOrchestrator(
        selector,
        classifier,
        applicator,
        audit=StructuredLogger(cfg.logging.audit_file),
        dry_run=cfg.dry_run if dry_run is None else dry_run,
    )


def print_report(report: BatchReport) -> None:
    """Render the outcomes of a run as a table."""
    if not report.outcomes:
        console.print("[green]No threads to triage[/green]")
        return

    table = Table(title="Triage results")
    table.add_column("Thread", style="cyan")
    table.add_column("Subject")
    table.add_column("Status")
    table.add_column("Labels")
    table.add_column("Error", style="red")

    styles = {
        OutcomeStatus.LABELED: "green",
        OutcomeStatus.DRY_RUN: "yellow",
        OutcomeStatus.FAILED: "red",
    }
    for outcome in report.outcomes:
        subject = outcome.subject[:60] if outcome.subject else "(no subject)"
        style = styles[outcome.status]
        table.add_row(
            outcome.thread_id,
            escape(subject),
            f"[{style}]{outcome.status.value}[/{style}]",
            ", ".join(outcome.labels),
            escape(outcome.error or ""),
        )

    console.print(table)
    console.print(f"Selected: {report.selected}  Labelled: {report.labeled}  Failed: {report.failed}")


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Triage unread, tagged mail into ToRespond and Processed labels."""
    pass


@cli.command()
@click.option(
    "--config",
    "-c",
    required=True,
    type=click.Path(exists=True),
    help="Path to configuration YAML file",
)
@click.option("--dry-run", is_flag=True, default=False, help="Classify but do not write labels")
@click.option(
    "--limit",
    "-l",
    type=click.IntRange(1, 100),
    default=None,
    help="Maximum threads to triage (overrides batch_size)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def run(config: str, dry_run: bool, limit: int | None, verbose: bool) -> None:
    """Triage one batch of candidate threads."""
    try:
        cfg = load_config(config)
    except (ValidationError, ValueError) as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        sys.exit(1)

    setup_logging("DEBUG" if verbose else cfg.logging.level, cfg.logging.log_file)
    console.print(f"[bold blue]replytriage v{__version__}[/bold blue]")

    try:
        with IMAPClient(cfg.imap) as mailbox, GeminiClient(cfg.gemini) as classifier:
            console.print(f"[OK] Connected to {cfg.imap.host} as {cfg.imap.username}")
            orchestrator = build_orchestrator(cfg, mailbox, classifier, batch_size=limit, dry_run=dry_run or None)
            if orchestrator.dry_run:
                console.print("[yellow]DRY-RUN: labels will not be written[/yellow]")
            report = orchestrator.run()
    except SelectionError as e:
        console.print(f"[red]Could not select candidates: {escape(str(e))}[/red]")
        sys.exit(1)
    except (ConnectionError, ValueError) as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)

    print_report(report)


@cli.command()
@click.option(
    "--config",
    "-c",
    required=True,
    type=click.Path(exists=True),
    help="Path to configuration YAML file",
)
def check(config: str) -> None:
    """Check mailbox access and generation service configuration."""
    try:
        cfg = load_config(config)
    except (ValidationError, ValueError) as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        sys.exit(1)

    setup_logging(cfg.logging.level, cfg.logging.log_file)
    healthy = True

    if cfg.gemini.has_api_key:
        console.print("[OK] Generation service API key configured")
    else:
        console.print("[red][FAIL] No generation service API key configured[/red]")
        healthy = False

    try:
        with IMAPClient(cfg.imap) as mailbox:
            console.print(f"[OK] Logged in to {cfg.imap.host} as {cfg.imap.username}")
            for name in (cfg.labels.inclusion, cfg.labels.processed, cfg.labels.to_respond):
                if mailbox.get_user_label_by_name(name):
                    console.print(f"[OK] Label {name} exists")
                elif name == cfg.labels.inclusion:
                    console.print(f"[yellow][WARNING] Inclusion label {name} does not exist, nothing will be selected[/yellow]")
                else:
                    console.print(f"  Label {name} will be created on first use")
    except (ConnectionError, ValueError, LabelError) as e:
        console.print(f"[red][FAIL] {escape(str(e))}[/red]")
        healthy = False

    if not healthy:
        sys.exit(1)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
