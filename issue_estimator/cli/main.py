"""
CLI interface for the issue estimator.

Provides command-line access to the tier catalog, config validation and
batch analysis of exported issues.
"""

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

import openai
import typer
import yaml
from rich.console import Console
from rich.table import Table

from issue_estimator.config.loader import EstimatorConfig, default_config, load_estimator_config
from issue_estimator.config.logging_config import setup_logging
from issue_estimator.core.errors import CancellationToken
from issue_estimator.core.models import WorkItem
from issue_estimator.core.orchestrator import BatchResult, EventType, ProgressEvent, build_pipeline
from issue_estimator.sdk.openai_client import TierCompletionClient

app = typer.Typer()
console = Console()
logger = logging.getLogger(__name__)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Issue cost estimator CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Issue Cost Estimator - Use --help to see available commands")


def _load_config(path: Optional[Path]) -> EstimatorConfig:
    if path is None:
        return default_config()
    return load_estimator_config(str(path))


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.0f}"


@app.command()
def tiers(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to an estimator YAML config"
    )
):
    """Show the tier catalog."""
    try:
        estimator_config = _load_config(config)
    except (ValueError, FileNotFoundError, yaml.YAMLError) as e:
        console.print(f"[red]Error loading config:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="Tier Catalog")
    table.add_column("Class")
    table.add_column("Model")
    table.add_column("Context", justify="right")
    table.add_column("Max completion", justify="right")
    table.add_column("$/1M in", justify="right")
    table.add_column("$/1M out", justify="right")
    table.add_column("TPM", justify="right")
    table.add_column("Latency")

    for tier in estimator_config.tier_catalog():
        table.add_row(
            tier.tier_class,
            tier.id,
            f"{tier.max_context:,}",
            f"{tier.max_completion:,}",
            f"{tier.price_input:.3f}",
            f"{tier.price_output:.3f}",
            f"{tier.tpm:,}",
            tier.latency_class,
        )
    console.print(table)


@app.command("check-config")
def check_config(path: Path = typer.Argument(..., help="Path to an estimator YAML config")):
    """Validate an estimator config file."""
    try:
        estimator_config = load_estimator_config(str(path))
    except (ValueError, FileNotFoundError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid config:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] Config is valid "
        f"({len(estimator_config.tiers)} tiers, batch size {estimator_config.analysis.batch_size})"
    )


def _read_items(path: Path) -> List[WorkItem]:
    with open(path, "r") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError("Issues file must contain a JSON list")

    items = []
    for entry in data:
        if not isinstance(entry, dict):
            raise ValueError("Each issue must be a JSON object")
        # Pull requests share the issues endpoint
        if entry.get("pull_request"):
            continue
        items.append(WorkItem.from_dict(entry))
    return items


def _print_event(event: ProgressEvent) -> None:
    if event.type is EventType.BATCH_START:
        console.print(
            f"[bold]Batch {event.payload['batch']}/{event.payload['total_batches']}[/] "
            f"({len(event.payload['items'])} issues)"
        )
    elif event.type is EventType.PROGRESS:
        stage = event.payload["stage"]
        if stage in ("complete", "cancelled"):
            console.print(
                f"{stage.capitalize()}: {event.payload['analyzed_items']}/{event.payload['total_items']} analyzed"
            )
    elif event.type is EventType.BATCH_COMPLETE:
        console.print(f"[green]✓[/] Batch {event.payload['batch']} done, {event.payload['analyzed_items']} analyzed")


def _display_result(result: BatchResult) -> None:
    """Display analyzed issues and budget totals."""
    table = Table(title="Issue Estimates")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Category")
    table.add_column("Complexity", justify="right")
    table.add_column("Cost")
    table.add_column("Confidence", justify="right")
    table.add_column("Tier")

    for analyzed in result.items:
        table.add_row(
            str(analyzed.item.number),
            analyzed.item.title[:60],
            analyzed.result.category,
            str(analyzed.result.complexity),
            analyzed.result.estimated_cost,
            f"{analyzed.result.confidence:.0%}",
            analyzed.tier_used,
        )
    console.print(table)

    summary = result.summary
    console.print(f"\n[bold]Total issues:[/bold] {summary.total_items}")
    console.print(
        f"[bold]Budget:[/bold] {_format_currency(summary.total_budget_min)}"
        f" - {_format_currency(summary.total_budget_max)}"
    )
    console.print(f"[bold]Average confidence:[/bold] {summary.average_confidence:.0%}")
    if result.cancelled:
        console.print("[yellow]Analysis was cancelled; results are partial[/]")


async def _run_analysis(orchestrator, items: List[WorkItem]) -> BatchResult:
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
        installed = True
    except NotImplementedError:
        logger.debug("Signal handlers unsupported, Ctrl-C will not cancel cooperatively")
    try:
        return await orchestrator.analyze(items, token, on_event=_print_event)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


@app.command()
def analyze(
    issues: Path = typer.Argument(..., help="JSON file with a list of GitHub issues"),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to an estimator YAML config"
    ),
    batch_size: Optional[int] = typer.Option(
        None,
        "--batch-size",
        "-b",
        help="Override the configured batch size"
    ),
    api_key: Optional[str] = typer.Option(
        None,
        "--api-key",
        envvar="OPENAI_API_KEY",
        help="API key for the completion service"
    ),
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        envvar="OPENAI_BASE_URL",
        help="OpenAI-compatible endpoint"
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write results and summary as JSON"
    ),
    offline: bool = typer.Option(
        False,
        "--offline",
        help="Use local keyword analysis instead of the completion service"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging"
    )
):
    """
    Estimate cost and complexity of exported GitHub issues.

    Issues are analyzed sequentially in batches. Press Ctrl-C to stop early;
    issues analyzed so far are still reported.
    """
    setup_logging("DEBUG" if verbose else "WARNING")

    try:
        estimator_config = _load_config(config)
        if batch_size is not None:
            estimator_config = estimator_config.with_analysis(batch_size=batch_size)
        items = _read_items(issues)
    except (ValueError, TypeError, FileNotFoundError, json.JSONDecodeError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not items:
        console.print("[yellow]No issues to analyze[/]")
        sys.exit(EXIT_CODE_PASS)

    client = None
    if not offline and not api_key:
        console.print("[yellow]No API key found, using offline analysis[/]")
    elif not offline:
        try:
            client = TierCompletionClient(api_key=api_key, base_url=base_url)
        except openai.OpenAIError as e:
            console.print(f"[red]Error creating completion client:[/] {str(e)}")
            sys.exit(EXIT_CODE_FAIL)
    orchestrator = build_pipeline(estimator_config, client)
    result = asyncio.run(_run_analysis(orchestrator, items))

    _display_result(result)

    if output is not None:
        with open(output, "w") as f:
            json.dump(
                {
                    "issues": [analyzed.to_dict() for analyzed in result.items],
                    "summary": result.summary.to_dict(),
                    "cancelled": result.cancelled,
                },
                f,
                indent=2,
            )
        console.print(f"[green]✓[/] Results written to {output}")


if __name__ == "__main__":
    app()
