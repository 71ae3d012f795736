"""CLI entry point for the page comparer."""

from __future__ import annotations

import json
import logging
import re
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from pixelperfect.exceptions import ComparerError
from pixelperfect.models.comparison import ComparisonResult
from pixelperfect.models.config import ComparerConfig, ViewportConfig, describe_options
from pixelperfect.orchestrator import ComparisonOrchestrator
from pixelperfect.reporter.json_report import write_comparison, write_multi

console = Console()
# Logging and error output go to stderr so --json keeps stdout parseable.
err_console = Console(stderr=True)

_VIEWPORT_RE = re.compile(r"^(\d+)x(\d+)(?::(.+))?$")


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
    )


def _load_config(path: Optional[str]) -> ComparerConfig:
    if not path:
        return ComparerConfig()
    try:
        return ComparerConfig.load(path)
    except FileNotFoundError:
        err_console.print(f"[red]Config file not found: {path}[/red]")
        err_console.print("Run 'pixelperfect init' to create a default config.")
        sys.exit(1)


def _build_options(cfg: ComparerConfig, **overrides) -> dict:
    options = cfg.options.model_dump()
    options.update({k: v for k, v in overrides.items() if v is not None})
    return options


def _parse_viewport(value: str) -> ViewportConfig:
    match = _VIEWPORT_RE.match(value.strip())
    if not match:
        raise click.BadParameter(f"Expected WIDTHxHEIGHT[:name], got '{value}'")
    width, height, name = int(match.group(1)), int(match.group(2)), match.group(3)
    return ViewportConfig(width=width, height=height, name=name or f"{width}x{height}")


def _fail(error: ComparerError) -> None:
    err_console.print(f"[red]{error.code}:[/red] {error.message}")
    sys.exit(1)


def _metrics_table(result: ComparisonResult, title: str = "Comparison") -> Table:
    m = result.metrics
    table = Table(title=title)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("ID", result.id)
    table.add_row("Size", f"{m.width}x{m.height}")
    table.add_row("Changed Pixels", f"{m.changed_pixels:,} / {m.total_pixels:,}")
    color = "green" if m.changed_pixels == 0 else "yellow" if m.mismatch_percent < 1 else "red"
    table.add_row("Mismatch", f"[{color}]{m.mismatch_percent:.2f}%[/{color}]")
    table.add_row("Similarity", f"{m.ssim_score:.4f}")
    table.add_row("Capture A", result.capture_a.capture_method.value)
    table.add_row("Capture B", result.capture_b.capture_method.value)
    table.add_row("Duration", f"{result.duration_ms / 1000:.1f}s")
    return table


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Visual regression comparer: screenshot two URLs and diff them."""
    setup_logging(verbose)


@cli.command()
@click.argument("url_a")
@click.argument("url_b")
@click.option("--config", "-c", default=None, help="Config file path")
@click.option("--threshold", "-t", type=float, default=None, help="Per-pixel colour threshold, 0..1")
@click.option("--full-page/--no-full-page", default=None, help="Capture the full scrollable page")
@click.option("--wait-for", default=None, help="networkidle, load, domcontentloaded or css:<selector>")
@click.option("--mask", "-m", multiple=True, help="CSS selector to hide before capture (repeatable)")
@click.option("--aa/--no-aa", "include_aa", default=None, help="Count anti-aliased pixels as changes")
@click.option("--timeout", type=int, default=None, help="Navigation timeout in ms")
@click.option("--delay", type=int, default=None, help="Stabilization delay in ms")
@click.option("--output", "-o", default=None, help="Directory for PNG and JSON artifacts")
@click.option("--json", "as_json", is_flag=True, help="Print the result payload as JSON")
def compare(
    url_a: str, url_b: str, config: Optional[str], threshold: Optional[float],
    full_page: Optional[bool], wait_for: Optional[str], mask: tuple[str, ...],
    include_aa: Optional[bool], timeout: Optional[int], delay: Optional[int],
    output: Optional[str], as_json: bool,
) -> None:
    """Compare URL_A against URL_B."""
    cfg = _load_config(config)
    options = _build_options(
        cfg,
        diff_threshold=threshold,
        full_page=full_page,
        wait_for=wait_for,
        mask_selectors=list(mask) if mask else None,
        include_aa=include_aa,
        timeout_ms=timeout,
        stabilization_delay_ms=delay,
    )

    orchestrator = ComparisonOrchestrator(cfg)
    try:
        result = orchestrator.run_compare(url_a, url_b, options)
    except ComparerError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(result.to_payload(include_images=False), indent=2))
    else:
        console.print(_metrics_table(result))
        for label, cap in (("A", result.capture_a), ("B", result.capture_b)):
            if cap.degraded:
                console.print(f"[yellow]Page {label}: full page requested, viewport captured[/yellow]")

    run_dir = write_comparison(result, Path(output or cfg.output_dir))
    (err_console if as_json else console).print(f"  Artifacts: [blue]{run_dir}[/blue]")


@cli.command()
@click.argument("url_a")
@click.argument("url_b")
@click.option("--config", "-c", default=None, help="Config file path")
@click.option("--viewport", "viewports", multiple=True, help="WIDTHxHEIGHT[:name] (repeatable)")
@click.option("--threshold", "-t", type=float, default=None, help="Per-pixel colour threshold, 0..1")
@click.option("--output", "-o", default=None, help="Directory for PNG and JSON artifacts")
def multi(
    url_a: str, url_b: str, config: Optional[str], viewports: tuple[str, ...],
    threshold: Optional[float], output: Optional[str],
) -> None:
    """Compare URL_A against URL_B at several viewport sizes."""
    cfg = _load_config(config)
    targets = [_parse_viewport(v) for v in viewports] or None
    options = _build_options(cfg, diff_threshold=threshold)

    orchestrator = ComparisonOrchestrator(cfg)
    try:
        result = orchestrator.run_compare_viewports(url_a, url_b, targets, options)
    except ComparerError as e:
        _fail(e)

    table = Table(title="Viewport Results")
    table.add_column("Viewport", style="bold")
    table.add_column("Size")
    table.add_column("Mismatch")
    table.add_column("Status")
    for outcome in result.outcomes:
        vp = outcome.viewport
        if outcome.failed:
            table.add_row(vp.name, f"{vp.width}x{vp.height}", "-", f"[red]{outcome.code}[/red]")
        else:
            table.add_row(
                vp.name, f"{vp.width}x{vp.height}",
                f"{outcome.result.metrics.mismatch_percent:.2f}%", "[green]ok[/green]",
            )
    console.print(table)

    summary = result.summary()
    console.print(
        f"{summary['successful']}/{summary['total']} viewports compared, "
        f"average mismatch {summary['avgMismatch']:.2f}%"
    )
    path = write_multi(result, Path(output or cfg.output_dir))
    console.print(f"  Summary: [blue]{path}[/blue]")
    if summary["failed"]:
        sys.exit(1)


@cli.command()
def options() -> None:
    """Show default options and supported capabilities."""
    click.echo(json.dumps(describe_options(), indent=2))


@cli.command()
@click.option("--path", "-p", default="pixelperfect.json", help="Where to write the config")
def init(path: str) -> None:
    """Create a default configuration file."""
    config_path = Path(path)
    if config_path.exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            return

    ComparerConfig().save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nYou can now customize this file and run:")
    console.print(f"  [blue]pixelperfect compare URL_A URL_B --config {config_path}[/blue]")


if __name__ == "__main__":
    cli()
