import numpy as np
import pytest

import morton
from hashlife import (
    Branch,
    Leaf,
    NodeStore,
    Rectangle,
    TreeCorruptionError,
    Universe,
)


@pytest.fixture()
def store() -> NodeStore:
    return NodeStore()


def glider_bits(side: int) -> np.ndarray:
    bits = np.zeros(side * side, dtype=np.bool_)
    for row, col in [(1, 2), (2, 3), (3, 1), (3, 2), (3, 3)]:
        bits[morton.index(row, col)] = True
    return bits


def test_empty_node_is_shared_by_all_four_children(store: NodeStore) -> None:
    handle = store.empty(16, 16)
    node = store.branch(handle)
    assert len(set(node.children())) == 1
    child = node.nw
    assert child == store.empty(8, 8)
    assert node.population == 0
    assert node.level == 2
    assert node.rect == Rectangle(16, 16)


def test_empty_is_cached_by_dimensions(store: NodeStore) -> None:
    first = store.empty(32, 32)
    size = len(store)
    assert store.empty(32, 32) == first
    assert len(store) == size
    assert store.empty_cache_size == 4  # 32, 16, 8, 4


def test_all_dead_bits_canonicalize_to_the_empty_node(store: NodeStore) -> None:
    empty = store.empty(16, 16)
    assert store.from_bits(16, 16, np.zeros(256, dtype=np.bool_)) == empty


def test_equal_buffers_built_independently_share_a_handle(store: NodeStore) -> None:
    a = store.from_bits(16, 16, glider_bits(16))
    b = store.from_bits(16, 16, glider_bits(16).copy())
    assert a == b


def test_equal_children_share_a_handle(store: NodeStore) -> None:
    leaf_a = store.from_bits(4, 4, np.eye(4, dtype=np.bool_).ravel())
    leaf_b = store.empty(4, 4)
    first = store.from_children(leaf_a, leaf_b, leaf_b, leaf_a)
    size = len(store)
    second = store.from_children(leaf_a, leaf_b, leaf_b, leaf_a)
    assert first == second
    assert len(store) == size
    assert store.from_children(leaf_b, leaf_a, leaf_a, leaf_b) != first


def test_leaf_and_branch_equality_is_structural() -> None:
    rect = Rectangle(4, 4)
    assert Leaf(rect, bytes(16), 0) == Leaf(rect, bytes(16), 0)
    assert hash(Leaf(rect, bytes(16), 0)) == hash(Leaf(rect, bytes(16), 0))
    a = Branch(1, 2, 3, 4, rect=Rectangle(8, 8), population=0, level=1)
    b = Branch(1, 2, 3, 4, rect=Rectangle(8, 8), population=0, level=1)
    assert a == b and hash(a) == hash(b)
    assert a != Branch(4, 3, 2, 1, rect=Rectangle(8, 8), population=0, level=1)


def test_population_and_level_are_derived(store: NodeStore) -> None:
    handle = store.from_bits(16, 16, glider_bits(16))
    node = store.branch(handle)
    assert node.population == 5
    assert node.level == 2
    assert sum(store.population(c) for c in node.children()) == 5
    store.check_invariants()


def test_cells_reads_back_in_morton_order(store: NodeStore) -> None:
    bits = glider_bits(16)
    handle = store.from_bits(16, 16, bits)
    assert np.array_equal(store.cells(handle), bits)


def test_leaf_asked_for_children_is_corruption(store: NodeStore) -> None:
    leaf = store.empty(4, 4)
    with pytest.raises(TreeCorruptionError):
        store.children(leaf)
    branch = store.empty(8, 8)
    with pytest.raises(TreeCorruptionError):
        store.leaf(branch)


def test_mismatched_children_are_corruption(store: NodeStore) -> None:
    small = store.empty(4, 4)
    big = store.empty(8, 8)
    with pytest.raises(TreeCorruptionError):
        store.from_children(small, small, small, big)


def test_wrong_buffer_length_is_corruption(store: NodeStore) -> None:
    with pytest.raises(TreeCorruptionError):
        store.from_bits(8, 8, np.zeros(10, dtype=np.bool_))


def test_invariants_hold_after_a_busy_session() -> None:
    universe = Universe(32, 32, seed=11)
    universe.randomize()
    for _ in range(10):
        universe.step()
    universe.stamp_pulsar(16, 16)
    universe.toggle_cell(0, 0)
    universe.step()
    universe.store.check_invariants()


def test_invariant_check_catches_a_stale_population(store: NodeStore) -> None:
    store.from_bits(8, 8, np.ones(64, dtype=np.bool_))
    bad = Leaf(Rectangle(4, 4), b"\x01" + bytes(15), 3)
    store.canonicalize(bad)
    with pytest.raises(TreeCorruptionError):
        store.check_invariants()
