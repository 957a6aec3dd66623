import numpy as np
import pytest
from numpy.typing import NDArray

from hashlife import Universe


def reference_step(grid: NDArray[np.bool_]) -> NDArray[np.bool_]:
    """Plain toroidal Life step on a row-major grid, shift-and-add with np.roll."""
    g = grid.astype(np.int16)
    n = np.zeros_like(g)
    for dr in (-1, 0, 1):
        for dc in (-1, 0, 1):
            if dr == 0 and dc == 0:
                continue
            n += np.roll(np.roll(g, -dr, axis=0), -dc, axis=1)
    return (n == 3) | (grid & (n == 2))


def live_cells(universe: Universe) -> set[tuple[int, int]]:
    return {(int(r), int(c)) for r, c in np.argwhere(universe.to_array())}


@pytest.fixture()
def universe() -> Universe:
    return Universe()


@pytest.fixture()
def small() -> Universe:
    return Universe(16, 16, seed=7)
