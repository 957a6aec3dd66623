"""
Morton space: Z-order addressing for square power-of-two grids.

A cell at (row, col) lives at flat index ``spread(col) | spread(row) << 1``.
The two low bits of that index pick the quadrant in nw, ne, sw, se order,
so a depth-first walk of a quadtree that visits children in that order
produces exactly the Morton-ordered buffer. Every bit buffer in the engine
uses this layout.
"""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import NDArray

# ── Bit twiddling masks (64-bit) ────────────────────────────────────────
_SPREAD_MASKS: tuple[tuple[int, int], ...] = (
    (16, 0x0000_FFFF_0000_FFFF),
    (8, 0x00FF_00FF_00FF_00FF),
    (4, 0x0F0F_0F0F_0F0F_0F0F),
    (2, 0x3333_3333_3333_3333),
    (1, 0x5555_5555_5555_5555),
)

_COMPACT_MASKS: tuple[tuple[int, int], ...] = (
    (1, 0x3333_3333_3333_3333),
    (2, 0x0F0F_0F0F_0F0F_0F0F),
    (4, 0x00FF_00FF_00FF_00FF),
    (8, 0x0000_FFFF_0000_FFFF),
    (16, 0x0000_0000_FFFF_FFFF),
)

UNSET: int = -1


def spread_bits(n):
    """Insert a zero bit above every bit of ``n`` (32-bit input).

    Works on Python ints and on integer numpy arrays alike.
    """
    for shift, mask in _SPREAD_MASKS:
        n = (n ^ (n << shift)) & mask
    return n


def compact_bits(n):
    """Inverse of :func:`spread_bits`: keep every even bit, packed."""
    n = n & 0x5555_5555_5555_5555
    for shift, mask in _COMPACT_MASKS:
        n = (n | (n >> shift)) & mask
    return n


def index(row: int, col: int) -> int:
    """Flat Z-order index of (row, col)."""
    return spread_bits(col) | (spread_bits(row) << 1)


def unravel(flat: int) -> tuple[int, int]:
    """(row, col) for a flat Z-order index."""
    return compact_bits(flat >> 1), compact_bits(flat)


def index_grid(side: int) -> NDArray[np.int64]:
    """``side x side`` array whose [row, col] entry is ``index(row, col)``."""
    coords = np.arange(side, dtype=np.int64)
    return (spread_bits(coords)[None, :] | (spread_bits(coords)[:, None] << 1)).astype(np.int64)


# ═══════════════════════════════════════════════════════════════════════
#  Cached space
# ═══════════════════════════════════════════════════════════════════════

class MortonSpace:
    """
    Per-universe lookup table of Morton indices.

    The table has one slot per grid cell, all unset until first use.
    ``index`` fills a single slot on a miss; ``plane`` fills a whole
    top-left square at once and hands back the 2D view, which is what the
    slow simulation uses to lift a Morton buffer into a row-major plane.
    """

    def __init__(self, width: int, height: int) -> None:
        self.width: int = width
        self.height: int = height
        self._table: NDArray[np.int64] = np.full((height, width), UNSET, dtype=np.int64)
        self._planes: dict[int, NDArray[np.int64]] = {}

    def index(self, row: int, col: int) -> int:
        cached = int(self._table[row, col])
        if cached != UNSET:
            return cached
        flat = index(row, col)
        self._table[row, col] = flat
        return flat

    def peek(self, row: int, col: int) -> int:
        """Index without populating the cache."""
        cached = int(self._table[row, col])
        return cached if cached != UNSET else index(row, col)

    def is_cached(self, row: int, col: int) -> bool:
        return bool(self._table[row, col] != UNSET)

    def plane(self, side: int) -> NDArray[np.int64]:
        """Index grid for the ``side x side`` square anchored at (0, 0)."""
        view = self._planes.get(side)
        if view is not None:
            return view
        if side > self.width or side > self.height:
            raise ValueError(f"plane {side}x{side} exceeds {self.width}x{self.height} space")
        block = self._table[:side, :side]
        missing = block == UNSET
        if missing.any():
            block[missing] = index_grid(side)[missing]
        view = block.copy()
        view.setflags(write=False)
        self._planes[side] = view
        return view

    def cached_count(self) -> int:
        return int((self._table != UNSET).sum())

    def to_rows(self, flat: NDArray[np.bool_]) -> NDArray[np.bool_]:
        """Morton-ordered square buffer -> row-major (side, side) array."""
        side = math.isqrt(flat.size)
        return flat[self.plane(side)]

    def from_rows(self, grid: NDArray[np.bool_]) -> NDArray[np.bool_]:
        """Row-major (side, side) array -> Morton-ordered flat buffer."""
        side = grid.shape[0]
        flat = np.zeros(side * side, dtype=np.bool_)
        flat[self.plane(side)] = grid
        return flat
