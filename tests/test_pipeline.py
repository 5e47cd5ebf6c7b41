"""End-to-end tests: material loading, compositing, pipeline and CLI."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pytest
from PIL import Image
from typer.testing import CliRunner

from tile_mosaic.cli import app
from tile_mosaic.config import MosaicConfig
from tile_mosaic.errors import ConfigurationError, MaterialLoadError, ResourceExhaustion
from tile_mosaic.grid import EMPTY
from tile_mosaic.image_io import compose_mosaic, load_rgb, resize_rgb, save_image
from tile_mosaic.materials import (
    Material,
    collect_material_paths,
    load_material,
    load_materials,
    material_from_pixels,
)
from tile_mosaic.pipeline import MosaicGenerator, generate_from_files
from tile_mosaic.selector import SelectionStage
from tile_mosaic.similarity import SimilarityDatabase

# -- Fixtures ----------------------------------------------------------

COLOURS = {
    "blue": (0, 0, 255),
    "green": (0, 255, 0),
    "red": (255, 0, 0),
    "white": (255, 255, 255),
}


def solid(rgb, width: int = 10, height: int = 10) -> np.ndarray:
    img = np.zeros((height, width, 3), dtype=np.uint8)
    img[:] = rgb
    return img


def write_png(path: Path, pixels: np.ndarray) -> Path:
    Image.fromarray(pixels).save(path)
    return path


@pytest.fixture
def tile_dir(tmp_path: Path) -> Path:
    folder = tmp_path / "tiles"
    folder.mkdir()
    for name, rgb in COLOURS.items():
        write_png(folder / f"{name}.png", solid(rgb))
    write_png(folder / "wide.png", solid((128, 128, 0), width=20, height=10))
    (folder / "broken.png").write_bytes(b"not an image")
    (folder / "notes.txt").write_text("ignored")
    return folder


@pytest.fixture
def target_path(tmp_path: Path) -> Path:
    # 40x40 quadrants: red | green / blue | white
    img = np.zeros((40, 40, 3), dtype=np.uint8)
    img[:20, :20] = COLOURS["red"]
    img[:20, 20:] = COLOURS["green"]
    img[20:, :20] = COLOURS["blue"]
    img[20:, 20:] = COLOURS["white"]
    return write_png(tmp_path / "target.png", img)


def lab_materials() -> list[Material]:
    labs = [(50, 70, 50), (30, 0, -60), (90, -5, 5), (20, 10, 10), (60, -50, 40)]
    return [Material(f"m{i}", lab) for i, lab in enumerate(labs)]


# -- Materials ---------------------------------------------------------

class TestMaterials:
    def test_collect_paths(self, tile_dir: Path) -> None:
        paths = collect_material_paths(tile_dir, MosaicConfig.SUPPORTED_EXTENSIONS)
        assert [p.name for p in paths] == [
            "blue.png", "broken.png", "green.png", "red.png", "white.png", "wide.png",
        ]

    def test_collect_missing_folder(self, tmp_path: Path) -> None:
        assert collect_material_paths(tmp_path / "nope", {".png"}) == []

    def test_load_material(self, tile_dir: Path) -> None:
        material = load_material(tile_dir / "red.png")
        assert material.id == str(tile_dir / "red.png")
        assert material.path == tile_dir / "red.png"
        assert material.aspect_ratio == 1.0
        assert material.lab[0] == pytest.approx(53.24, abs=1.0)

    def test_load_corrupt(self, tile_dir: Path) -> None:
        with pytest.raises(MaterialLoadError) as info:
            load_material(tile_dir / "broken.png")
        assert info.value.path == tile_dir / "broken.png"

    def test_load_missing(self, tmp_path: Path) -> None:
        with pytest.raises(MaterialLoadError):
            load_material(tmp_path / "missing.png")

    def test_from_pixels_empty(self) -> None:
        with pytest.raises(MaterialLoadError):
            material_from_pixels("empty", np.zeros((0, 4, 3), dtype=np.uint8))

    def test_skips_failures_and_keeps_order(self, tile_dir: Path) -> None:
        paths = collect_material_paths(tile_dir, MosaicConfig.SUPPORTED_EXTENSIONS)
        materials = load_materials(paths, workers=2)
        assert [Path(m.id).stem for m in materials] == [
            "blue", "green", "red", "white", "wide",
        ]

    def test_aspect_filter(self, tile_dir: Path) -> None:
        paths = collect_material_paths(tile_dir, MosaicConfig.SUPPORTED_EXTENSIONS)
        square = load_materials(paths, target_aspect=1.0, aspect_tolerance=0.1)
        assert [Path(m.id).stem for m in square] == ["blue", "green", "red", "white"]
        wide = load_materials(paths, target_aspect=2.0, aspect_tolerance=0.1)
        assert [Path(m.id).stem for m in wide] == ["wide"]

    def test_aspect_fallback(self, tile_dir: Path) -> None:
        paths = collect_material_paths(tile_dir, MosaicConfig.SUPPORTED_EXTENSIONS)
        # Nothing is 5:1: the first 2 * max_materials files (blue, broken, green,
        # red) are used unfiltered, then truncated.
        materials = load_materials(paths, max_materials=2, target_aspect=5.0)
        assert [Path(m.id).stem for m in materials] == ["blue", "green"]

    def test_max_materials(self, tile_dir: Path) -> None:
        paths = collect_material_paths(tile_dir, MosaicConfig.SUPPORTED_EXTENSIONS)
        materials = load_materials(paths, max_materials=3)
        assert [Path(m.id).stem for m in materials] == ["blue", "green", "red"]


# -- Image I/O ---------------------------------------------------------

class TestImageIO:
    def test_save_and_load(self, tmp_path: Path) -> None:
        pixels = solid((10, 20, 30), 6, 4)
        path = tmp_path / "nested" / "out.png"
        save_image(pixels, path)
        np.testing.assert_array_equal(load_rgb(path), pixels)

    def test_resize(self) -> None:
        out = resize_rgb(solid((200, 100, 50), 30, 30), 7, 5)
        assert out.shape == (5, 7, 3)
        np.testing.assert_allclose(out[2, 3], [200, 100, 50], atol=1)

    def test_compose(self) -> None:
        tiles = {0: solid((255, 0, 0), 16, 16), 1: solid((0, 0, 255), 8, 8)}
        grid = np.array([[0, 1], [1, 0]])
        out = compose_mosaic(grid, tiles.__getitem__, 4, 3)
        assert out.shape == (6, 8, 3)
        np.testing.assert_allclose(out[0, 0], [255, 0, 0], atol=1)
        np.testing.assert_allclose(out[0, 7], [0, 0, 255], atol=1)
        np.testing.assert_allclose(out[5, 0], [0, 0, 255], atol=1)

    def test_compose_rejects_empty_cells(self) -> None:
        grid = np.array([[0, EMPTY]])
        with pytest.raises(ValueError):
            compose_mosaic(grid, lambda i: solid((0, 0, 0)), 2, 2)

    def test_compose_adjustment_needs_cell_colours(self) -> None:
        with pytest.raises(ValueError):
            compose_mosaic(np.zeros((1, 1), dtype=int), lambda i: solid((0, 0, 0)), 2, 2,
                           adjustment_strength=0.5)

    def test_compose_adjusts_towards_cell(self) -> None:
        grid = np.zeros((1, 1), dtype=int)
        cell_rgb = np.array([[[200, 200, 200]]], dtype=np.uint8)
        plain = compose_mosaic(grid, lambda i: solid((60, 60, 60)), 4, 4)
        adjusted = compose_mosaic(grid, lambda i: solid((60, 60, 60)), 4, 4,
                                  cell_rgb=cell_rgb, adjustment_strength=0.5)
        assert adjusted.mean() > plain.mean()


# -- Generator ---------------------------------------------------------

class TestMosaicGenerator:
    def config(self, **overrides) -> MosaicConfig:
        base = {
            "grid_width": 3,
            "grid_height": 2,
            "similarity_db": None,
            "enable_optimization": False,
        }
        base.update(overrides)
        return MosaicConfig(**base)

    def test_generate_without_optimization(self) -> None:
        gen = MosaicGenerator(lab_materials(), self.config())
        colors = np.array([m.lab for m in lab_materials()] + [(50, 0, 0)]).reshape(2, 3, 3)
        result = gen.generate(colors)
        assert result.optimization is None
        assert result.grid.shape == (2, 3)
        assert np.all(result.grid != EMPTY)
        assert result.grid[0, 0] == 0
        assert sum(result.selection_stats.values()) == 6
        assert result.selection_stats[SelectionStage.PRIMARY] == 6

    def test_generate_with_optimization(self) -> None:
        gen = MosaicGenerator(
            lab_materials(),
            self.config(enable_optimization=True, optimization_iterations=200, seed=1),
        )
        colors = np.tile(np.array([50.0, 0, 0]), (2, 3, 1))
        result = gen.generate(colors)
        assert result.optimization is not None
        assert result.optimization.best_cost <= result.optimization.initial_cost
        assert gen.adjacency.total_cost(result.grid) == pytest.approx(result.optimization.best_cost)

    def test_auto_usage(self) -> None:
        gen = MosaicGenerator(lab_materials(), self.config(max_usage_per_image="auto"))
        assert gen.max_usage == 2  # ceil(6 / 5)

    def test_grid_shape_mismatch(self) -> None:
        gen = MosaicGenerator(lab_materials(), self.config())
        with pytest.raises(ConfigurationError):
            gen.generate(np.zeros((3, 3, 3)))

    def test_no_materials(self) -> None:
        with pytest.raises(ResourceExhaustion):
            MosaicGenerator([], self.config())

    def test_invalid_config(self) -> None:
        with pytest.raises(ConfigurationError):
            MosaicGenerator(lab_materials(), self.config(adjacency_penalty_weight=2.0))

    def test_mismatched_database(self) -> None:
        db = SimilarityDatabase.from_materials(lab_materials()[:3])
        with pytest.raises(ConfigurationError):
            MosaicGenerator(lab_materials(), self.config(), similarity_db=db)

    def test_uses_persistent_cache(self, tmp_path: Path) -> None:
        path = tmp_path / "db.npz"
        MosaicGenerator(lab_materials(), self.config(similarity_db=path))
        assert SimilarityDatabase.load(path).matches([m.id for m in lab_materials()])

    def test_tile_pixels_requires_path(self) -> None:
        gen = MosaicGenerator(lab_materials(), self.config())
        with pytest.raises(ValueError):
            gen.tile_pixels(0)


class TestGenerateFromFiles:
    def test_quadrants(self, tmp_path: Path, tile_dir: Path, target_path: Path) -> None:
        paths = collect_material_paths(tile_dir, MosaicConfig.SUPPORTED_EXTENSIONS)
        output = tmp_path / "out" / "mosaic.png"
        cfg = MosaicConfig(
            grid_width=4,
            grid_height=4,
            max_usage_per_image="auto",
            enable_optimization=False,
            similarity_db=tmp_path / "db.npz",
        )
        result = generate_from_files(target_path, paths, output, cfg)

        # Materials after filtering: blue, green, red, white (wide is 2:1).
        expected = np.array([
            [2, 2, 1, 1],
            [2, 2, 1, 1],
            [0, 0, 3, 3],
            [0, 0, 3, 3],
        ])
        np.testing.assert_array_equal(result.grid, expected)
        assert result.max_usage == 4

        mosaic = load_rgb(output)
        assert mosaic.shape == (40, 40, 3)
        np.testing.assert_allclose(mosaic[5, 5], COLOURS["red"], atol=2)
        np.testing.assert_allclose(mosaic[35, 35], COLOURS["white"], atol=2)
        assert (tmp_path / "db.npz").exists()

    def test_with_optimization(self, tmp_path: Path, tile_dir: Path, target_path: Path) -> None:
        paths = collect_material_paths(tile_dir, MosaicConfig.SUPPORTED_EXTENSIONS)
        cfg = MosaicConfig(
            grid_width=4,
            grid_height=4,
            optimization_iterations=100,
            seed=3,
            similarity_db=None,
        )
        result = generate_from_files(target_path, paths, tmp_path / "m.png", cfg)
        assert result.optimization is not None
        assert np.all(result.grid != EMPTY)
        assert load_rgb(tmp_path / "m.png").shape == (40, 40, 3)


# -- CLI ---------------------------------------------------------------

class TestCli:
    runner = CliRunner()

    def test_generate(self, tmp_path: Path, tile_dir: Path, target_path: Path) -> None:
        output = tmp_path / "cli.png"
        result = self.runner.invoke(app, [
            "generate",
            "--target", str(target_path),
            "--materials", str(tile_dir),
            "--output", str(output),
            "--grid-w", "4",
            "--grid-h", "4",
            "--no-optimize",
            "--similarity-db", str(tmp_path / "db.npz"),
        ])
        assert result.exit_code == 0, result.output
        assert output.exists()

    def test_invalid_weight(self, tmp_path: Path, tile_dir: Path, target_path: Path) -> None:
        result = self.runner.invoke(app, [
            "generate",
            "--target", str(target_path),
            "--materials", str(tile_dir),
            "--output", str(tmp_path / "x.png"),
            "--adjacency-weight=1.5",
        ])
        assert result.exit_code == 1
        assert not (tmp_path / "x.png").exists()

    def test_empty_material_folder(self, tmp_path: Path, target_path: Path) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()
        result = self.runner.invoke(app, [
            "generate",
            "--target", str(target_path),
            "--materials", str(empty),
            "--output", str(tmp_path / "x.png"),
        ])
        assert result.exit_code == 1

    def test_index(self, tmp_path: Path, tile_dir: Path, target_path: Path) -> None:
        db_path = tmp_path / "cache" / "db.npz"
        result = self.runner.invoke(app, [
            "index",
            "--target", str(target_path),
            "--materials", str(tile_dir),
            "--grid-w", "4",
            "--grid-h", "4",
            "--similarity-db", str(db_path),
        ])
        assert result.exit_code == 0, result.output
        # Square cells: the 2:1 tile is left out, as it is by `generate`.
        assert [Path(i).stem for i in SimilarityDatabase.load(db_path).ids] == [
            "blue", "green", "red", "white",
        ]

    def test_generate_reuses_index_cache(
        self,
        tmp_path: Path,
        tile_dir: Path,
        target_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        db_path = tmp_path / "db.npz"
        shared = [
            "--target", str(target_path),
            "--materials", str(tile_dir),
            "--grid-w", "4",
            "--grid-h", "4",
            "--similarity-db", str(db_path),
        ]
        indexed = self.runner.invoke(app, ["index", *shared])
        assert indexed.exit_code == 0, indexed.output
        mtime = db_path.stat().st_mtime_ns

        caplog.set_level(logging.INFO, logger="tile_mosaic")
        caplog.clear()
        generated = self.runner.invoke(app, [
            "generate", *shared, "--output", str(tmp_path / "out.png"), "--no-optimize",
        ])
        assert generated.exit_code == 0, generated.output
        assert "Loaded similarity cache" in caplog.text
        assert "stale" not in caplog.text
        assert db_path.stat().st_mtime_ns == mtime
