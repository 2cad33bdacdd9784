"""
CLI Interface
=============
Command-line interface for the linker engine.

Usage:
    python -m linker link <pdf_path> <questions_json> [options]
    python -m linker info <pdf_path> [--min-image-width N]

Relative paths are looked up under ./data unless they already start
with `data`.
"""

from __future__ import annotations

import json
import os
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from .engine import LinkerConfig, LinkerEngine
from .errors import InputContractError
from .layout import group_lines, locate_anchors
from .models import PAINT_KINDS
from .operators import OperatorInterpreter
from .pdf_source import PdfPageSource
from .storage import resolve_data_path

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="linker")
def cli():
    """PDF Question Image Linker: rebuilds question content with images."""
    pass


@cli.command()
@click.argument("pdf_path")
@click.argument("questions_json")
@click.option(
    "--output", "-o",
    default=None,
    help="Output JSON path (defaults to overwriting QUESTIONS_JSON)",
)
@click.option(
    "--document-name", "-n",
    default=None,
    help="Image folder name under images/ (defaults to the PDF name)",
)
@click.option(
    "--min-image-width",
    default=80,
    type=int,
    help="Minimum image width to extract (pixels)",
)
@click.option(
    "--min-image-height",
    default=80,
    type=int,
    help="Minimum image height to extract (pixels)",
)
@click.option(
    "--paragraph-gap",
    default=18.0,
    type=float,
    help="Largest vertical gap between lines of one paragraph",
)
@click.option(
    "--line-bucket",
    default=2.0,
    type=float,
    help="Vertical tolerance used to group text into lines",
)
@click.option(
    "--page-start",
    default=None,
    type=int,
    help="Start page (1-indexed)",
)
@click.option(
    "--page-end",
    default=None,
    type=int,
    help="End page (1-indexed, inclusive)",
)
@click.option(
    "--require-images",
    is_flag=True,
    default=False,
    help="Only rewrite questions whose band contains an image",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option(
    "--log-file",
    default=None,
    help="Path to log file",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only the JSON report to stdout",
)
def link(
    pdf_path: str,
    questions_json: str,
    output: str,
    document_name: str,
    min_image_width: int,
    min_image_height: int,
    paragraph_gap: float,
    line_bucket: float,
    page_start: int,
    page_end: int,
    require_images: bool,
    log_level: str,
    log_file: str,
    json_output: bool,
):
    """Link the images of PDF_PATH into the questions of QUESTIONS_JSON."""

    if json_output:
        log_level = "ERROR"

    pdf_path = resolve_data_path(pdf_path)
    questions_json = resolve_data_path(questions_json)
    output = resolve_data_path(output) if output else None

    page_range = None
    if page_start is not None or page_end is not None:
        page_range = (page_start or 1, page_end or 99999)

    config = LinkerConfig(
        min_image_width=min_image_width,
        min_image_height=min_image_height,
        line_bucket=line_bucket,
        paragraph_gap=paragraph_gap,
        document_name=document_name,
        page_range=page_range,
        require_images=require_images,
        log_level=log_level,
        log_file=log_file,
    )

    try:
        engine = LinkerEngine(config)

        if json_output:
            report = engine.link(pdf_path, questions_json, output)
            print(json.dumps(report.model_dump(), indent=2, ensure_ascii=False))
            return

        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]PDF Question Image Linker v{__version__}[/]\n"
                f"[dim]Linking: {os.path.basename(pdf_path)}[/]",
                border_style="cyan",
            )
        )
        console.print()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Processing pages...", total=None)

            def on_page(done: int, total: int):
                progress.update(task, completed=done, total=total)

            report = engine.link(
                pdf_path, questions_json, output, progress_callback=on_page
            )

        _display_report(report)

    except FileNotFoundError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)
    except InputContractError as e:
        console.print(f"[red]Invalid input:[/] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/] {e}")
        if log_level == "DEBUG":
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument("pdf_path")
@click.option("--min-image-width", default=80, show_default=True, type=int)
@click.option("--min-image-height", default=80, show_default=True, type=int)
def info(pdf_path: str, min_image_width: int, min_image_height: int):
    """Survey the question anchors and images of every page."""

    pdf_path = resolve_data_path(pdf_path)
    if not os.path.exists(pdf_path):
        console.print(f"[red]Error:[/] PDF not found: {pdf_path}")
        sys.exit(1)

    interpreter = OperatorInterpreter(
        min_width=min_image_width, min_height=min_image_height
    )

    table = Table(
        title=os.path.basename(pdf_path),
        border_style="cyan",
    )
    table.add_column("Page", justify="right", style="bold")
    table.add_column("Questions")
    table.add_column("Image Paints", justify="right")
    table.add_column("Content Images", justify="right")

    totals = {"anchors": 0, "paints": 0, "content": 0}
    with PdfPageSource(pdf_path) as source:
        for page_number in range(1, source.page_count + 1):
            page = source.load_page(page_number)
            operators = list(page.operators)
            paints = sum(1 for op in operators if op.kind in PAINT_KINDS)
            images = interpreter.run(operators, page.resolver)
            anchors = locate_anchors(group_lines(page.fragments))

            totals["anchors"] += len(anchors)
            totals["paints"] += paints
            totals["content"] += len(images)
            table.add_row(
                str(page_number),
                ", ".join(f"#{a.question_number}" for a in anchors) or "-",
                str(paints),
                str(len(images)),
            )
        page_count = source.page_count

    table.add_section()
    table.add_row(
        f"{page_count}",
        f"{totals['anchors']} anchor(s)",
        str(totals["paints"]),
        str(totals["content"]),
        style="bold",
    )

    console.print()
    console.print(table)
    console.print(
        f"Content images are at least "
        f"{min_image_width}x{min_image_height} pixels."
    )
    console.print()


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_report(report):
    """Display a link report as a rich table."""
    console.print()

    table = Table(title="Link Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    failed = len(report.failed_pages)
    table.add_row("Document", report.document_name, "")
    table.add_row(
        "Pages Processed",
        f"{report.pages_processed}/{report.total_pages}",
        "[green]✓[/]" if not failed else "[yellow]⚠[/]",
    )
    if failed:
        table.add_row(
            "Failed Pages",
            ", ".join(str(p) for p in report.failed_pages),
            "[red]✗[/]",
        )
    table.add_row("Images Extracted", str(report.images_extracted), "")
    table.add_row(
        "Images Linked",
        str(report.images_linked),
        "[green]✓[/]" if report.images_linked else "[yellow]⚠[/]",
    )
    table.add_row("Questions Updated", str(report.updated_count), "")

    console.print(table)
    console.print()

    if report.updated_questions:
        console.print(
            f"[bold]Updated:[/] "
            f"{', '.join(str(n) for n in report.updated_questions)}"
        )
    console.print(
        f"[dim]Output: {report.output_json} | "
        f"Elapsed: {report.elapsed_seconds:.2f}s[/]"
    )
    console.print()


# ─── Entry point (for python -m linker.cli) ───────────────────────────────────


if __name__ == "__main__":
    cli()
