"""CLI entry point for dicom2vol."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import typer
from rich.console import Console
from rich.table import Table

from dicom2vol import __version__
from dicom2vol.core.errors import ReaderError
from dicom2vol.core.types import ReaderConfig, RowOrder, VolumeData, VolumeInfo

app = typer.Typer(
    name="dicom2vol",
    help="Assemble DICOM files into an oriented, rescaled volume and describe it.",
    add_completion=False,
)

logger = logging.getLogger("dicom2vol")

console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool):
    if value:
        console.print(f"dicom2vol {__version__}")
        raise typer.Exit()


def list_sorters_callback(value: bool):
    if value:
        from dicom2vol.sorting.registry import list_sorters

        console.print("\n[bold]Available slice sorters:[/bold]\n")
        for s in list_sorters():
            console.print(f"  [bold]{s['name']:<14}[/bold] {s['description']}")
        console.print()
        raise typer.Exit()


@app.command()
def main(
    inputs: list[Path] = typer.Argument(
        ...,
        help="DICOM files, or one directory to scan for a series.",
        exists=True,
    ),
    series: str = typer.Option(
        None,
        "--series",
        help="Select a DICOM series by UID when scanning a directory (partial match supported).",
    ),
    stack: str = typer.Option(
        None,
        "--stack",
        help="StackID of the stack to read (default: first stack found).",
    ),
    time_index: int = typer.Option(
        -1,
        "--time",
        help="Time index to read (-1 for all).",
    ),
    no_sort: bool = typer.Option(
        False,
        "--no-sort",
        help="Keep files in the given order instead of sorting spatially.",
    ),
    sorter: str = typer.Option(
        "default",
        "--sorter",
        help="Registered slice sorter to use.",
    ),
    row_order: str = typer.Option(
        "bottom-up",
        "--row-order",
        help="Row order in memory: native, top-down, bottom-up.",
    ),
    no_rescale: bool = typer.Option(
        False,
        "--no-rescale",
        help="Do not harmonize per-slice rescale slope/intercept.",
    ),
    no_ybr: bool = typer.Option(
        False,
        "--no-ybr",
        help="Keep YBR colour data instead of converting to RGB.",
    ),
    time_as_vector: bool = typer.Option(
        False,
        "--time-as-vector",
        help="Store time steps as scalar components.",
    ),
    workers: int = typer.Option(
        1,
        "--workers",
        help="Threads used to decode files.",
    ),
    skip_unreadable: bool = typer.Option(
        False,
        "--skip-unreadable",
        help="Report unreadable files and continue without them.",
    ),
    decode: bool = typer.Option(
        False,
        "--decode",
        help="Decode the pixel data and print per-component ranges.",
    ),
    do_list_sorters: bool = typer.Option(
        False,
        "--list-sorters",
        callback=list_sorters_callback,
        is_eager=True,
        help="List available slice sorters and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "-v",
        "--verbose",
        help="Show detailed processing information.",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
):
    """Assemble DICOM files into an oriented, rescaled volume and describe it."""
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=log_level, format="%(levelname)s: %(message)s")

    from dicom2vol.io.scan import resolve_inputs
    from dicom2vol.reader import DicomVolumeReader

    try:
        files = resolve_inputs(inputs, series)
        config = ReaderConfig(
            desired_stack_id=stack,
            desired_time_index=time_index,
            sorting=not no_sort,
            sorter=sorter,
            memory_row_order=RowOrder.parse(row_order),
            auto_rescale=not no_rescale,
            auto_ybr_to_rgb=not no_ybr,
            time_as_vector=time_as_vector,
            skip_unreadable=skip_unreadable,
            workers=workers,
        )
        reader = DicomVolumeReader(
            files,
            config,
            on_error=_warn_error if skip_unreadable else None,
        )
        info = reader.update_information()
        print_volume_info(info, len(files))
        if decode:
            print_component_ranges(reader.read())
    except FileNotFoundError as e:
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=4)
    except (ReaderError, ValueError) as e:
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)
    except Exception as e:
        err_console.print(f"[red]Error: {e}[/red]")
        if verbose:
            import traceback
            err_console.print(traceback.format_exc())
        raise typer.Exit(code=1)


def _warn_error(error: ReaderError) -> None:
    err_console.print(f"[yellow]Warning: {error}[/yellow]")


def print_volume_info(info: VolumeInfo, file_count: int) -> None:
    """Display the metadata-phase result as Rich tables."""
    geometry = info.geometry
    columns, rows, slices = geometry.dimensions

    table = Table(title=f"Volume from {file_count} file(s)")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("Dimensions", f"{columns} x {rows} x {slices}")
    table.add_row("Spacing (mm)", " x ".join(f"{s:g}" for s in geometry.spacing))
    table.add_row("Time steps", f"{geometry.time_dimension} (spacing {geometry.time_spacing:g})")
    table.add_row("Vector components", str(geometry.vector_dimension))
    table.add_row("Scalar components", str(info.number_of_components))
    table.add_row("Scalar type", str(info.scalar_type))
    table.add_row("Photometric", info.photometric_interpretation
                  + (" (converted to RGB)" if info.ybr_to_rgb else ""))
    table.add_row("Row order", str(geometry.row_order) + (" (flipped)" if geometry.flipped else ""))
    rescale = info.rescale
    state = "harmonized" if rescale.harmonized else ("uniform" if rescale.uniform else "not applied")
    table.add_row("Rescale", f"slope={rescale.slope:g} intercept={rescale.intercept:g} [{state}]")
    table.add_row("Stacks", ", ".join(info.stack_ids) if info.stack_ids else "[dim](unnamed)[/dim]")
    console.print(table)

    matrix = Table(title="Patient matrix")
    for _ in range(4):
        matrix.add_column(justify="right")
    for row in geometry.patient_matrix:
        matrix.add_row(*(f"{v:.4f}" for v in row))
    console.print(matrix)

    for w in info.warnings:
        err_console.print(f"[yellow]Warning: {w}[/yellow]")


def print_component_ranges(data: VolumeData) -> None:
    """Display the value range of every scalar component."""
    table = Table(title="Decoded components")
    table.add_column("#", justify="right")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")
    voxels = data.voxels
    for c in range(voxels.shape[-1]):
        component = voxels[..., c]
        table.add_row(str(c), str(np.min(component)), str(np.max(component)))
    console.print(table)
