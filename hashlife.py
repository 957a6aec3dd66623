"""
  H A S H L I F E
  Conway's Game of Life on a toroidal grid, backed by a memoized quadtree.

  The grid lives in a hash-consed quadtree: every distinct square of cells
  is stored exactly once in an arena and referred to by an integer handle.
  Stepping works on handles, and the one-generation successor of every
  handle ever stepped is remembered forever, so an idle background or a
  recurring oscillator costs a dictionary lookup instead of a simulation.

  Cell buffers handed in and out of the engine are flat numpy boolean
  arrays in Morton (Z-order) layout, not row-major. See ``morton.py`` and
  ``Universe.to_array`` for the row-major view.

  The arena and the memo table only ever grow. That is fine for sessions
  of a few hundred thousand generations; a long-running process that keeps
  randomizing should build a fresh ``Universe`` now and then.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import ClassVar, NewType, Union

import numpy as np
from numpy.typing import NDArray
from scipy.ndimage import convolve

from morton import MortonSpace

# ── Tree geometry ───────────────────────────────────────────────────────
MIN_NODE_SIZE: int = 4      # leaf edge; halving stops at or below this
BASE_LEVEL: int = 2         # level simulated cell-by-cell
MIN_STEP_LEVEL: int = 3     # wrapped root is padded up to this level
BASE_SIDE: int = MIN_NODE_SIZE << BASE_LEVEL

# ── Defaults ────────────────────────────────────────────────────────────
DEFAULT_WIDTH: int = 64
DEFAULT_HEIGHT: int = 64
DEFAULT_DENSITY: float = 0.5

# ── Convolution kernel (reused every base-case step) ───────────────────
NEIGHBOR_KERNEL: NDArray = np.array([[1, 1, 1], [1, 0, 1], [1, 1, 1]], dtype=np.int16)


# ── Pattern library ─────────────────────────────────────────────────────
# (row, col) offsets from the pattern's top-left corner.
def _mirror4(cells: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """Reflect a quadrant pattern into full 4-fold symmetry around (0,0)."""
    full: set[tuple[int, int]] = set()
    for r, c in cells:
        full.update([(r, c), (r, -c), (-r, c), (-r, -c)])
    return sorted(full)


# Centred offsets, matching the stamp_* helpers
GLIDER_OFFSETS: list[tuple[int, int]] = [
    (-1, -1),
    (0, 0), (0, 1),
    (1, -1), (1, 0),
]
PULSAR_OFFSETS: list[tuple[int, int]] = _mirror4([
    (1, 2), (1, 3), (1, 4),
    (6, 2), (6, 3), (6, 4),
    (2, 1), (3, 1), (4, 1),
    (2, 6), (3, 6), (4, 6),
])

PATTERNS: dict[str, list[tuple[int, int]]] = {
    "glider": [(0, 1), (1, 2), (2, 0), (2, 1), (2, 2)],
    "lwss": [
        (0, 1), (0, 4), (1, 0), (2, 0), (2, 4),
        (3, 0), (3, 1), (3, 2), (3, 3),
    ],
    "hwss": [
        (0, 1), (0, 2), (1, 0), (1, 5), (2, 0),
        (3, 0), (3, 5), (4, 0), (4, 1), (4, 2), (4, 3), (4, 4),
    ],
    "block": [(0, 0), (0, 1), (1, 0), (1, 1)],
    "blinker": [(0, 0), (0, 1), (0, 2)],
    "r_pentomino": [(0, 1), (0, 2), (1, 0), (1, 1), (2, 1)],
    "acorn": [(0, 1), (1, 3), (2, 0), (2, 1), (2, 4), (2, 5), (2, 6)],
    "diehard": [(0, 6), (1, 0), (1, 1), (2, 1), (2, 5), (2, 6), (2, 7)],
    "pulsar": [(r + 6, c + 6) for r, c in PULSAR_OFFSETS],
    "pentadecathlon": [
        (0, 1), (1, 1), (2, 0), (2, 2), (3, 1), (4, 1),
        (5, 1), (6, 1), (7, 0), (7, 2), (8, 1), (9, 1),
    ],
}


# ═══════════════════════════════════════════════════════════════════════
#  Errors
# ═══════════════════════════════════════════════════════════════════════

class CellRangeError(IndexError):
    """A (row, col) outside the grid."""


class GridShapeError(ValueError):
    """Grid dimensions the quadtree cannot tile exactly."""


class TreeCorruptionError(RuntimeError):
    """
    An internal invariant of the node store was broken.

    Raised when a leaf is asked for children, a branch for bits, or
    children of mismatched size are combined. These mean a bug in the
    engine, so nothing inside the engine catches them.
    """


# ═══════════════════════════════════════════════════════════════════════
#  Nodes
# ═══════════════════════════════════════════════════════════════════════

NodeHandle = NewType("NodeHandle", int)


@dataclass(frozen=True)
class Rectangle:
    """Width and height of the region a node covers."""
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height

    def halved(self) -> Rectangle:
        return Rectangle(self.width // 2, self.height // 2)

    def doubled(self) -> Rectangle:
        return Rectangle(self.width * 2, self.height * 2)


@dataclass(frozen=True)
class Leaf:
    """A block of raw cells, one byte per cell, in local Morton order."""
    rect: Rectangle
    bits: bytes
    population: int = field(compare=False)

    level: ClassVar[int] = 0

    def cells(self) -> NDArray[np.bool_]:
        return np.frombuffer(self.bits, dtype=np.bool_)


@dataclass(frozen=True)
class Branch:
    """
    Four equally sized child handles.

    Equality and hashing only look at the children: they are canonical,
    so equal handles already mean equal content. Rect, population and
    level are derived from the children and cached here.
    """
    nw: NodeHandle
    ne: NodeHandle
    sw: NodeHandle
    se: NodeHandle
    rect: Rectangle = field(compare=False)
    population: int = field(compare=False)
    level: int = field(compare=False)

    def children(self) -> tuple[NodeHandle, NodeHandle, NodeHandle, NodeHandle]:
        return self.nw, self.ne, self.sw, self.se


Node = Union[Leaf, Branch]


# ═══════════════════════════════════════════════════════════════════════
#  Canonicalization store
# ═══════════════════════════════════════════════════════════════════════

class NodeStore:
    """
    Arena of immutable nodes with one handle per distinct content.

    Every constructor goes through ``canonicalize``: a candidate equal to
    a node already in the arena is dropped and the existing handle is
    returned. Two side tables short-circuit the common builds: the
    all-dead node per (width, height), and the node built from a given
    bit buffer.
    """

    def __init__(self, leaf_size: int = MIN_NODE_SIZE) -> None:
        self.leaf_size: int = leaf_size
        self.arena: list[Node] = []
        self._node_map: dict[Node, NodeHandle] = {}
        self._empty_map: dict[tuple[int, int], NodeHandle] = {}
        self._bits_map: dict[tuple[int, int, bytes], NodeHandle] = {}

    def __len__(self) -> int:
        return len(self.arena)

    def __getitem__(self, handle: NodeHandle) -> Node:
        return self.arena[handle]

    @property
    def empty_cache_size(self) -> int:
        return len(self._empty_map)

    @property
    def bits_cache_size(self) -> int:
        return len(self._bits_map)

    def canonicalize(self, candidate: Node) -> NodeHandle:
        existing = self._node_map.get(candidate)
        if existing is not None:
            return existing
        handle = NodeHandle(len(self.arena))
        self.arena.append(candidate)
        self._node_map[candidate] = handle
        return handle

    # ── Typed access ────────────────────────────────────────────────

    def leaf(self, handle: NodeHandle) -> Leaf:
        node = self.arena[handle]
        if not isinstance(node, Leaf):
            raise TreeCorruptionError(f"node {handle} is a branch, expected a leaf")
        return node

    def branch(self, handle: NodeHandle) -> Branch:
        node = self.arena[handle]
        if not isinstance(node, Branch):
            raise TreeCorruptionError(f"node {handle} is a leaf, expected a branch")
        return node

    def children(self, handle: NodeHandle) -> tuple[NodeHandle, NodeHandle, NodeHandle, NodeHandle]:
        return self.branch(handle).children()

    def population(self, handle: NodeHandle) -> int:
        return self.arena[handle].population

    def level(self, handle: NodeHandle) -> int:
        return self.arena[handle].level

    def rect(self, handle: NodeHandle) -> Rectangle:
        return self.arena[handle].rect

    def _is_leaf_size(self, width: int, height: int) -> bool:
        return width <= self.leaf_size or height <= self.leaf_size

    # ── Construction ────────────────────────────────────────────────

    def empty(self, width: int, height: int) -> NodeHandle:
        """The canonical all-dead node of the given dimensions."""
        key = (width, height)
        handle = self._empty_map.get(key)
        if handle is not None:
            return handle
        if self._is_leaf_size(width, height):
            handle = self.canonicalize(
                Leaf(Rectangle(width, height), bytes(width * height), 0)
            )
        else:
            child = self.empty(width // 2, height // 2)
            handle = self.from_children(child, child, child, child)
        self._empty_map[key] = handle
        return handle

    def from_bits(self, width: int, height: int, bits: NDArray[np.bool_]) -> NodeHandle:
        """
        Materialize a Morton-ordered buffer into the tree.

        The buffer is cut into four contiguous quarters (nw, ne, sw, se)
        until leaf size, and canonicalized bottom-up.
        """
        bits = np.asarray(bits, dtype=np.bool_)
        if bits.size != width * height:
            raise TreeCorruptionError(
                f"{bits.size} bits do not fill a {width}x{height} node"
            )
        raw = bits.tobytes()
        key = (width, height, raw)
        handle = self._bits_map.get(key)
        if handle is not None:
            return handle
        if self._is_leaf_size(width, height):
            handle = self.canonicalize(
                Leaf(Rectangle(width, height), raw, int(np.count_nonzero(bits)))
            )
        else:
            w2, h2 = width // 2, height // 2
            q = w2 * h2
            handle = self.from_children(
                self.from_bits(w2, h2, bits[0:q]),
                self.from_bits(w2, h2, bits[q : 2 * q]),
                self.from_bits(w2, h2, bits[2 * q : 3 * q]),
                self.from_bits(w2, h2, bits[3 * q :]),
            )
        self._bits_map[key] = handle
        return handle

    def from_children(
        self, nw: NodeHandle, ne: NodeHandle, sw: NodeHandle, se: NodeHandle
    ) -> NodeHandle:
        kids = (self.arena[nw], self.arena[ne], self.arena[sw], self.arena[se])
        first = kids[0]
        for kid in kids[1:]:
            if kid.level != first.level or kid.rect != first.rect:
                raise TreeCorruptionError(
                    f"children disagree: {first.rect}@{first.level} vs {kid.rect}@{kid.level}"
                )
        return self.canonicalize(
            Branch(
                nw, ne, sw, se,
                rect=first.rect.doubled(),
                population=sum(k.population for k in kids),
                level=first.level + 1,
            )
        )

    # ── Read back ───────────────────────────────────────────────────

    def cells(self, handle: NodeHandle) -> NDArray[np.bool_]:
        """All cells under ``handle``, leaves concatenated nw, ne, sw, se."""
        chunks: list[NDArray[np.bool_]] = []
        self._collect(handle, chunks)
        return np.concatenate(chunks)

    def _collect(self, handle: NodeHandle, out: list[NDArray[np.bool_]]) -> None:
        node = self.arena[handle]
        if isinstance(node, Leaf):
            out.append(node.cells())
            return
        for child in node.children():
            self._collect(child, out)

    def check_invariants(self) -> None:
        """Walk the whole arena; raise TreeCorruptionError on the first violation."""
        for handle, node in enumerate(self.arena):
            if self._node_map.get(node) != handle:
                raise TreeCorruptionError(f"node {handle} is not the canonical copy")
            if isinstance(node, Leaf):
                if len(node.bits) != node.rect.area:
                    raise TreeCorruptionError(f"leaf {handle} has {len(node.bits)} bits")
                if node.population != node.cells().sum():
                    raise TreeCorruptionError(f"leaf {handle} population is stale")
                continue
            kids = [self.arena[k] for k in node.children()]
            if any(k.level != node.level - 1 for k in kids):
                raise TreeCorruptionError(f"branch {handle} has children at the wrong level")
            if any(k.rect.doubled() != node.rect for k in kids):
                raise TreeCorruptionError(f"branch {handle} has children of the wrong size")
            if node.population != sum(k.population for k in kids):
                raise TreeCorruptionError(f"branch {handle} population is stale")


# ═══════════════════════════════════════════════════════════════════════
#  The universe
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class EngineStats:
    """Point-in-time engine telemetry."""
    generation: int = 0
    population: int = 0
    root_level: int = 0
    arena_size: int = 0
    memo_size: int = 0
    memo_hits: int = 0
    memo_misses: int = 0
    empty_cache_size: int = 0
    bits_cache_size: int = 0


def grid_shape(width: int, height: int) -> tuple[int, int]:
    """
    Round dimensions up to even and check the quadtree can tile them.

    The grid must end up square, a power of two, and big enough that the
    root has children.
    """
    w = width + (width % 2)
    h = height + (height % 2)
    if w != h:
        raise GridShapeError(f"grid must be square, got {w}x{h}")
    if w < 2 * MIN_NODE_SIZE:
        raise GridShapeError(f"grid side {w} is below the minimum {2 * MIN_NODE_SIZE}")
    if w & (w - 1):
        raise GridShapeError(f"grid side {w} is not a power of two")
    return w, h


class Universe:
    """
    A toroidal Game of Life grid stored as a hash-consed quadtree.

    ``step`` advances exactly one generation. Edits (``set_cells``,
    ``toggle_cell``, stamps) rebuild the whole tree from a flat buffer,
    which costs O(grid size) per call: fine for clicks, too slow to do
    every frame.
    """

    def __init__(
        self,
        width: int = DEFAULT_WIDTH,
        height: int = DEFAULT_HEIGHT,
        *,
        seed: int | None = None,
    ) -> None:
        self._width, self._height = grid_shape(width, height)
        self.store: NodeStore = NodeStore()
        self.next_node_map: dict[NodeHandle, NodeHandle] = {}
        self.morton: MortonSpace = MortonSpace(
            max(self._width, BASE_SIDE), max(self._height, BASE_SIDE)
        )
        self._rng: np.random.Generator = np.random.default_rng(seed)

        self.generation: int = 0
        self.memo_hits: int = 0
        self.memo_misses: int = 0
        self.root: NodeHandle = self.store.empty(self._width, self._height)

    # ── Shape ───────────────────────────────────────────────────────

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    def resize(self, width: int, height: int) -> None:
        """Change grid dimensions and clear the grid. Nodes and memo stay valid."""
        self._width, self._height = grid_shape(width, height)
        self.morton = MortonSpace(
            max(self._width, BASE_SIDE), max(self._height, BASE_SIDE)
        )
        self.reset()

    # ── Whole-grid edits ────────────────────────────────────────────

    def randomize(self, density: float = DEFAULT_DENSITY) -> None:
        """Fill every cell independently, alive with probability ``density``."""
        bits = self._rng.random(self._width * self._height) < density
        self.root = self.store.from_bits(self._width, self._height, bits)
        self.generation = 0

    def reset(self) -> None:
        self.root = self.store.empty(self._width, self._height)
        self.generation = 0

    clear = reset

    # ── Cell access ─────────────────────────────────────────────────

    def _check_range(self, row: int, col: int) -> None:
        if not (0 <= row < self._height and 0 <= col < self._width):
            raise CellRangeError(
                f"cell ({row}, {col}) outside {self._height}x{self._width} grid"
            )

    def get_cell(self, row: int, col: int) -> bool:
        self._check_range(row, col)
        handle = self.root
        while True:
            node = self.store[handle]
            if isinstance(node, Leaf):
                return bool(node.bits[self.morton.index(row, col)])
            pivot_r = node.rect.height // 2
            pivot_c = node.rect.width // 2
            if row < pivot_r:
                if col < pivot_c:
                    handle = node.nw
                else:
                    handle = node.ne
                    col %= pivot_c
            else:
                row %= pivot_r
                if col < pivot_c:
                    handle = node.sw
                else:
                    handle = node.se
                    col %= pivot_c

    def get_cells(self) -> NDArray[np.bool_]:
        """Every cell, Morton order (quadtree block order, not row-major)."""
        return self.store.cells(self.root)

    def to_array(self) -> NDArray[np.bool_]:
        """Row-major (height, width) copy of the grid."""
        return self.morton.to_rows(self.get_cells())

    def population(self) -> int:
        return self.store.population(self.root)

    def _rebuild(self, updates: dict[int, bool]) -> None:
        bits = self.get_cells()
        for flat, alive in updates.items():
            bits[flat] = alive
        self.root = self.store.from_bits(self._width, self._height, bits)

    def set_cells(self, cells: Iterable[tuple[int, int]]) -> None:
        """Bring the given cells to life. Rebuilds the whole tree."""
        updates: dict[int, bool] = {}
        for row, col in cells:
            self._check_range(row, col)
            updates[self.morton.index(row, col)] = True
        self._rebuild(updates)

    def toggle_cell(self, row: int, col: int) -> None:
        alive = self.get_cell(row, col)
        self._rebuild({self.morton.index(row, col): not alive})

    # ── Stamps ──────────────────────────────────────────────────────

    def stamp(self, name: str, row: int, col: int) -> None:
        """Place a named pattern with its top-left corner at (row, col)."""
        offsets = PATTERNS.get(name)
        if offsets is None:
            raise KeyError(f"unknown pattern {name!r}")
        self.set_cells([(row + dr, col + dc) for dr, dc in offsets])

    def stamp_glider(self, row: int, col: int) -> None:
        self.set_cells([(row + dr, col + dc) for dr, dc in GLIDER_OFFSETS])

    def stamp_pulsar(self, row: int, col: int) -> None:
        self.set_cells([(row + dr, col + dc) for dr, dc in PULSAR_OFFSETS])

    # ── Simulation ──────────────────────────────────────────────────

    def step(self) -> None:
        """Advance one generation with wrap-around edges."""
        root = self._wrap_expand(self.root)

        # Pad with dead space until the tree is deep enough to decompose
        expansions = 0
        while self.store.level(root) < MIN_STEP_LEVEL:
            root = self._expand(root)
            expansions += 1

        root = self.step_node(root)

        for _ in range(expansions):
            root = self._centered(root)

        self.root = root
        self.generation += 1

    def step_node(self, handle: NodeHandle) -> NodeHandle:
        """
        Centred half-size region of ``handle``, one generation later.

        Results are memoized by handle; since nodes are immutable and
        canonical, an entry never goes stale.
        """
        cached = self.next_node_map.get(handle)
        if cached is not None:
            self.memo_hits += 1
            return cached
        self.memo_misses += 1

        node = self.store.branch(handle)
        if node.level < BASE_LEVEL:
            raise TreeCorruptionError(f"cannot step node {handle} at level {node.level}")

        half = node.rect.halved()
        if node.population == 0:
            nxt = node.nw
        elif node.population < 3:
            # Nothing is born or survives with fewer than 3 live cells
            nxt = self.store.empty(half.width, half.height)
        elif node.level == BASE_LEVEL:
            nxt = self._slow_step(handle)
        else:
            nw, ne, sw, se = node.children()

            n00 = self._centered(nw)
            n01 = self._centered_horizontal(nw, ne)
            n02 = self._centered(ne)
            n10 = self._centered_vertical(nw, sw)
            n11 = self._centered_twice(handle)
            n12 = self._centered_vertical(ne, se)
            n20 = self._centered(sw)
            n21 = self._centered_horizontal(sw, se)
            n22 = self._centered(se)

            store = self.store
            nxt = store.from_children(
                self.step_node(store.from_children(n00, n01, n10, n11)),
                self.step_node(store.from_children(n01, n02, n11, n12)),
                self.step_node(store.from_children(n10, n11, n20, n21)),
                self.step_node(store.from_children(n11, n12, n21, n22)),
            )

        self.next_node_map[handle] = nxt
        return nxt

    def _slow_step(self, handle: NodeHandle) -> NodeHandle:
        """Direct simulation of a base-level node's centre."""
        rect = self.store.rect(handle)
        side = rect.width
        half = side // 2
        lo, hi = side // 4, side // 4 + half

        plane = self.store.cells(handle)[self.morton.plane(side)]
        counts = convolve(plane.astype(np.int16), NEIGHBOR_KERNEL, mode="constant", cval=0)

        g = plane[lo:hi, lo:hi]
        n = counts[lo:hi, lo:hi]
        n_is_3 = n == 3
        alive = n_is_3 | (g & (n == 2))

        out = np.zeros(half * half, dtype=np.bool_)
        out[self.morton.plane(half)] = alive
        return self.store.from_bits(half, half, out)

    # ── Tree surgery ────────────────────────────────────────────────

    def _grandchild(self, handle: NodeHandle, quadrant: int) -> NodeHandle:
        return self.store.children(handle)[quadrant]

    def _centered(self, handle: NodeHandle) -> NodeHandle:
        nw, ne, sw, se = self.store.children(handle)
        g = self._grandchild
        return self.store.from_children(g(nw, 3), g(ne, 2), g(sw, 1), g(se, 0))

    def _centered_horizontal(self, west: NodeHandle, east: NodeHandle) -> NodeHandle:
        _, w_ne, _, w_se = self.store.children(west)
        e_nw, _, e_sw, _ = self.store.children(east)
        g = self._grandchild
        return self.store.from_children(g(w_ne, 3), g(e_nw, 2), g(w_se, 1), g(e_sw, 0))

    def _centered_vertical(self, north: NodeHandle, south: NodeHandle) -> NodeHandle:
        _, _, n_sw, n_se = self.store.children(north)
        s_nw, s_ne, _, _ = self.store.children(south)
        g = self._grandchild
        return self.store.from_children(g(n_sw, 3), g(n_se, 2), g(s_nw, 1), g(s_ne, 0))

    def _centered_twice(self, handle: NodeHandle) -> NodeHandle:
        nw, ne, sw, se = self.store.children(handle)
        g = self._grandchild
        return self.store.from_children(
            g(g(nw, 3), 3), g(g(ne, 2), 2), g(g(sw, 1), 1), g(g(se, 0), 0)
        )

    def _expand(self, handle: NodeHandle) -> NodeHandle:
        """Double the node, centred in dead space."""
        nw, ne, sw, se = self.store.children(handle)
        half = self.store.rect(nw)
        e = self.store.empty(half.width, half.height)
        store = self.store
        return store.from_children(
            store.from_children(e, e, e, nw),
            store.from_children(e, e, ne, e),
            store.from_children(e, sw, e, e),
            store.from_children(se, e, e, e),
        )

    def _wrap_expand(self, handle: NodeHandle) -> NodeHandle:
        """
        Double the node, centred in copies of itself.

        On a torus every aligned window of the root's size, shifted by half
        a root, shows the same four quadrants swapped diagonally, so all
        four children of the result are the same node.
        """
        nw, ne, sw, se = self.store.children(handle)
        swapped = self.store.from_children(se, sw, ne, nw)
        return self.store.from_children(swapped, swapped, swapped, swapped)

    # ── Telemetry ───────────────────────────────────────────────────

    def stats(self) -> EngineStats:
        return EngineStats(
            generation=self.generation,
            population=self.population(),
            root_level=self.store.level(self.root),
            arena_size=len(self.store),
            memo_size=len(self.next_node_map),
            memo_hits=self.memo_hits,
            memo_misses=self.memo_misses,
            empty_cache_size=self.store.empty_cache_size,
            bits_cache_size=self.store.bits_cache_size,
        )
