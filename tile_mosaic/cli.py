"""Rich command-line interface powered by Typer."""

from __future__ import annotations

import logging
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from tile_mosaic.config import MosaicConfig, parse_max_usage
from tile_mosaic.errors import MosaicError
from tile_mosaic.materials import collect_material_paths
from tile_mosaic.pipeline import generate_from_files, load_for_target
from tile_mosaic.selector import SelectionStage
from tile_mosaic.similarity import SimilarityDatabase

app = typer.Typer(
    name="tile-mosaic",
    help="Build photo mosaics from a folder of tile images.",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=True)],
    )


def _material_paths(folder: Path) -> list[Path]:
    paths = collect_material_paths(folder, MosaicConfig.SUPPORTED_EXTENSIONS)
    if not paths:
        console.print(f"\n[yellow]No tile images found in {folder}/[/yellow]\n")
        raise typer.Exit(1)
    return paths


# Defaults come from MosaicConfig - single source of truth
_DEFAULTS = MosaicConfig()


# -- generate command --------------------------------------------------

@app.command()
def generate(
    target: Path = typer.Option(..., "--target", "-t", help="Target image"),
    materials: Path = typer.Option(..., "--materials", "-m", help="Folder with tile images"),
    output: Path = typer.Option(..., "--output", "-o", help="Output image path"),
    grid_w: int = typer.Option(_DEFAULTS.grid_width, "--grid-w", help="Tiles horizontally"),
    grid_h: int = typer.Option(_DEFAULTS.grid_height, "--grid-h", help="Tiles vertically"),
    max_materials: int = typer.Option(
        _DEFAULTS.max_materials, "--max-materials", help="Maximum number of materials to load",
    ),
    max_usage: str = typer.Option(
        str(_DEFAULTS.max_usage_per_image), "--max-usage",
        help="Maximum uses per tile image, or 'auto'",
    ),
    aspect_tolerance: float = typer.Option(
        _DEFAULTS.aspect_tolerance, "--aspect-tolerance", help="Accepted aspect ratio difference",
    ),
    adjacency_weight: float = typer.Option(
        _DEFAULTS.adjacency_penalty_weight, "--adjacency-weight",
        help="Penalty for similar neighbours, 0-1 (0 disables)",
    ),
    optimize: bool = typer.Option(
        _DEFAULTS.enable_optimization, "--optimize/--no-optimize",
        help="Refine placement with simulated annealing",
    ),
    iterations: int = typer.Option(
        _DEFAULTS.optimization_iterations, "--iterations", help="Optimization iterations",
    ),
    greedy: bool = typer.Option(
        _DEFAULTS.greedy_optimization, "--greedy/--anneal", help="Only accept improving swaps",
    ),
    color_adjustment: float = typer.Option(
        _DEFAULTS.color_adjustment_strength, "--color-adjustment",
        help="Tile colour correction strength, 0-1",
    ),
    similarity_db: Path = typer.Option(
        _DEFAULTS.similarity_db, "--similarity-db", help="Similarity cache file",
    ),
    rebuild_db: bool = typer.Option(
        _DEFAULTS.rebuild_similarity_db, "--rebuild-db", help="Force a similarity cache rebuild",
    ),
    seed: int | None = typer.Option(_DEFAULTS.seed, "--seed", "-s", help="Optimizer seed"),
    workers: int | None = typer.Option(_DEFAULTS.workers, "--workers", help="Loader threads"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Generate a mosaic of TARGET from the images in MATERIALS."""
    _setup_logging(verbose)
    t_total = time.perf_counter()

    try:
        cfg = MosaicConfig(
            grid_width=grid_w,
            grid_height=grid_h,
            max_materials=max_materials,
            max_usage_per_image=parse_max_usage(max_usage),
            aspect_tolerance=aspect_tolerance,
            adjacency_penalty_weight=adjacency_weight,
            enable_optimization=optimize,
            optimization_iterations=iterations,
            greedy_optimization=greedy,
            color_adjustment_strength=color_adjustment,
            similarity_db=similarity_db,
            rebuild_similarity_db=rebuild_db,
            seed=seed,
            workers=workers,
        ).validate()
    except MosaicError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(1) from exc

    paths = _material_paths(materials)

    if cfg.enable_optimization:
        mode = "greedy" if cfg.greedy_optimization else "annealing"
        opt_desc = f"{mode} x{cfg.optimization_iterations}"
    else:
        opt_desc = "off"

    console.print(Panel.fit(
        f"[bold]TILE MOSAIC[/bold]\n"
        f"Grid: {cfg.grid_width}x{cfg.grid_height}  |  Materials: {len(paths)} files\n"
        f"Max usage: {cfg.max_usage_per_image}  |  Adjacency weight: {cfg.adjacency_penalty_weight}\n"
        f"Optimization: {opt_desc}",
        border_style="cyan",
    ))

    try:
        result = generate_from_files(target, paths, output, cfg)
    except MosaicError as exc:
        console.print(f"[red]Mosaic generation failed:[/red] {exc}")
        raise typer.Exit(1) from exc

    stats = result.selection_stats
    opt = result.optimization
    opt_line = (
        f"cost {opt.initial_cost:.2f} → {opt.best_cost:.2f} "
        f"({opt.improvement_percentage():.1f}%)"
        if opt is not None else "skipped"
    )
    console.print(Panel.fit(
        f"[bold green]DONE[/bold green] - saved to [bold]{output}[/bold]\n"
        f"Cells: primary={stats.get(SelectionStage.PRIMARY, 0)}  "
        f"reset={stats.get(SelectionStage.RESET_RETRY, 0)}  "
        f"unconstrained={stats.get(SelectionStage.UNCONSTRAINED, 0)}\n"
        f"Usage cap: {result.max_usage}  |  Optimization: {opt_line}\n"
        f"[dim]time={time.perf_counter() - t_total:.1f}s[/dim]",
        border_style="green",
    ))


# -- index command -----------------------------------------------------

@app.command()
def index(
    target: Path = typer.Option(..., "--target", "-t", help="Target image the cache is for"),
    materials: Path = typer.Option(..., "--materials", "-m", help="Folder with tile images"),
    grid_w: int = typer.Option(_DEFAULTS.grid_width, "--grid-w", help="Tiles horizontally"),
    grid_h: int = typer.Option(_DEFAULTS.grid_height, "--grid-h", help="Tiles vertically"),
    max_materials: int = typer.Option(_DEFAULTS.max_materials, "--max-materials"),
    aspect_tolerance: float = typer.Option(
        _DEFAULTS.aspect_tolerance, "--aspect-tolerance", help="Accepted aspect ratio difference",
    ),
    similarity_db: Path = typer.Option(
        _DEFAULTS.similarity_db, "--similarity-db", help="Similarity cache file",
    ),
    rebuild_db: bool = typer.Option(False, "--rebuild-db", help="Ignore an existing cache"),
    workers: int | None = typer.Option(None, "--workers", help="Loader threads"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Build or refresh the similarity cache that `generate` will reuse.

    Target, grid and aspect options decide which tiles are kept, so they
    must match the later `generate` run.
    """
    _setup_logging(verbose)

    try:
        cfg = MosaicConfig(
            grid_width=grid_w,
            grid_height=grid_h,
            max_materials=max_materials,
            aspect_tolerance=aspect_tolerance,
            similarity_db=similarity_db,
            rebuild_similarity_db=rebuild_db,
            workers=workers,
        ).validate()
    except MosaicError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(1) from exc

    paths = _material_paths(materials)
    try:
        _, _, loaded = load_for_target(target, paths, cfg)
    except MosaicError as exc:
        console.print(f"[red]Indexing failed:[/red] {exc}")
        raise typer.Exit(1) from exc
    if not loaded:
        console.print("[red]None of the tile images could be loaded[/red]")
        raise typer.Exit(1)

    db = SimilarityDatabase.load_or_build(loaded, similarity_db, rebuild=rebuild_db)
    console.print(
        f"[green]✓[/green] Similarity cache {similarity_db}  "
        f"[dim]{len(db)} materials[/dim]"
    )


if __name__ == "__main__":
    app()
