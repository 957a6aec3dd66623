import io
from pathlib import Path

import numpy as np

import hashlife_bench
from hashlife import Universe
from hashlife_bench import (
    FULL_BLOCK,
    LOWER_HALF,
    UPPER_HALF,
    StatsLogger,
    render_half_blocks,
    run_benchmark,
)


def test_render_half_blocks_pairs_rows() -> None:
    grid = np.array(
        [
            [1, 0, 1, 0],
            [1, 1, 0, 0],
            [0, 0, 0, 1],
        ],
        dtype=np.bool_,
    )
    lines = render_half_blocks(grid)
    assert lines == [
        FULL_BLOCK + LOWER_HALF + UPPER_HALF,
        "   " + UPPER_HALF,
    ]


def test_stats_logger_writes_a_row_per_call(tmp_path: Path) -> None:
    path = tmp_path / "stats.csv"
    universe = Universe(16, 16)
    universe.stamp("blinker", 4, 4)

    logger = StatsLogger(path)
    logger.open()
    assert logger.is_open
    logger.log(universe, 0.0, "seed")
    universe.step()
    logger.log(universe, 0.0015)
    logger.close()
    assert not logger.is_open

    rows = path.read_text().splitlines()
    assert rows[0] == StatsLogger.HEADER.strip()
    assert len(rows) == 3
    gen, _, step_ms, pop, level, *_, event = rows[2].split(",")
    assert (gen, step_ms, pop, level, event) == ("1", "1.500", "3", "2", "")
    assert rows[1].endswith(",seed")


def test_stats_logger_is_silent_when_the_file_cannot_open(tmp_path: Path) -> None:
    logger = StatsLogger(tmp_path / "missing" / "stats.csv")
    logger.open()
    assert not logger.is_open
    logger.log(Universe(8, 8), 0.0)
    logger.close()


def test_run_benchmark_line_timing(tmp_path: Path) -> None:
    out = io.StringIO()
    log_path = tmp_path / "bench.csv"
    universe = run_benchmark(
        n_steps=5,
        size=16,
        seed=3,
        line_timing=True,
        log_path=log_path,
        show=True,
        out=out,
    )
    assert universe.generation == 5
    text = out.getvalue()
    assert "Grid: 16x16" in text
    assert "Per-Step Timing" in text
    assert "Root level: 2" in text
    # header + randomize row + one row per step
    assert len(log_path.read_text().splitlines()) == 7


def test_main_parses_flags(monkeypatch) -> None:
    seen = {}

    def fake_run(**kwargs):
        seen.update(kwargs)

    monkeypatch.setattr(hashlife_bench, "run_benchmark", fake_run)
    hashlife_bench.main(["-n", "7", "--size", "32", "--seed", "1", "--line-timing", "--show"])
    assert seen["n_steps"] == 7
    assert seen["size"] == 32
    assert seen["seed"] == 1
    assert seen["line_timing"] is True
    assert seen["show"] is True
    assert seen["log_path"] is None
