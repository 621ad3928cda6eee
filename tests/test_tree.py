from datetime import timedelta

import pytest

from gpumanager.config import Config
from gpumanager.registry import new_func_for_name
from gpumanager.topology import (
    HUNDRED_CORE,
    DeviceMeta,
    NvidiaNode,
    by_allocatable_cores,
    by_allocatable_memory,
    by_available,
    by_id,
    by_memory,
    by_pids,
    by_type,
    sort_nodes,
)
from gpumanager.tree import NvidiaTree, new_nvidia_tree

SIX_CARDS = """    GPU0    GPU1    GPU2    GPU3    GPU4    GPU5
GPU0      X      PIX     PHB     PHB     SOC     SOC
GPU1     PIX      X      PHB     PHB     SOC     SOC
GPU2     PHB     PHB      X      PIX     SOC     SOC
GPU3     PHB     PHB     PIX      X      SOC     SOC
GPU4     SOC     SOC     SOC     SOC      X      PIX
GPU5     SOC     SOC     SOC     SOC     PIX      X
"""

ONE_CARD = """ GPU0
GPU0   x"""

MEMORY_BLOCK = 256 * 1024 * 1024


def make_tree(text):
    tree = new_nvidia_tree(None)
    tree.init(text)
    for leaf in tree.leaves():
        leaf.allocatable_meta.cores = HUNDRED_CORE
        leaf.allocatable_meta.memory = 1024
    return tree


@pytest.mark.parametrize("text, count", [(SIX_CARDS, 6), (ONE_CARD, 1)])
def test_tree(text, count):
    tree = make_tree(text)
    leaves = tree.leaves()
    assert tree.available() == count
    assert len(leaves) == count
    assert tree.total() == count

    available = tree.root().available_leaves()
    assert len(available) == count
    assert all(a is b for a, b in zip(available, leaves))

    tree.mark_occupied(leaves[0], 50, MEMORY_BLOCK)
    assert tree.available() == count - 1
    tree.mark_free(leaves[0], 50, MEMORY_BLOCK)
    assert tree.available() == count

    tree.mark_occupied(leaves[0], 100, MEMORY_BLOCK)
    assert tree.available() == count - 1
    tree.mark_free(leaves[0], 100, MEMORY_BLOCK)
    assert tree.available() == count

    assert tree.query("/dev/nvidia0") is leaves[0]


def test_sort():
    tree = make_tree(SIX_CARDS)
    leaves = tree.leaves()
    tree.mark_occupied(leaves[5], 100, MEMORY_BLOCK)
    sort_nodes(
        leaves,
        [by_allocatable_cores, by_available, by_type, by_id,
         by_allocatable_memory, by_pids, by_memory],
    )
    assert [str(n) for n in leaves] == ["GPU5", "GPU0", "GPU1", "GPU2", "GPU3", "GPU4"]


def test_structure_groups_linked_cards():
    tree = make_tree(SIX_CARDS)
    leaves = tree.leaves()
    root = tree.root()
    assert [str(child) for child in root.children] == ["CPU"]
    pix = leaves[0].parent
    assert str(pix) == "PIX"
    assert [n.minor_name() for n in pix.available_leaves()] == ["/dev/nvidia0", "/dev/nvidia1"]
    assert str(pix.parent) == "PHB"
    assert leaves[4].parent.parent is root.children[0]
    assert str(root) == "ROOT"


def test_one_card_hangs_from_root():
    tree = make_tree(ONE_CARD)
    leaf = tree.leaves()[0]
    assert leaf.parent is tree.root()
    assert tree.root().children == [leaf]


def test_mark_occupied_clamps_at_zero():
    tree = make_tree(SIX_CARDS)
    leaf = tree.leaves()[1]
    tree.mark_occupied(leaf, 50, 2048)
    tree.mark_occupied(leaf, 60, 10)
    assert leaf.allocatable_meta.cores == 0
    assert leaf.allocatable_meta.memory == 0
    assert tree.available() == 5


def test_mark_free_caps_memory_at_total():
    tree = make_tree(SIX_CARDS)
    leaf = tree.leaves()[2]
    leaf.meta.total_memory = 1024
    tree.mark_occupied(leaf, 100, 0)
    tree.mark_free(leaf, 50, 4096)
    assert leaf.allocatable_meta.memory == 1024
    assert leaf.allocatable_meta.cores == 50
    assert tree.available() == 5


def test_mark_on_unknown_node_changes_nothing():
    tree = make_tree(SIX_CARDS)
    stranger = NvidiaNode(meta=DeviceMeta(minor_id=99))
    tree.mark_occupied(stranger, 100, 0)
    assert tree.available() == 6
    assert tree.query("/dev/nvidia99") is None


def test_empty_input_is_rejected():
    tree = new_nvidia_tree(None)
    with pytest.raises(ValueError):
        tree.init("")


def test_unconnected_cards_are_rejected():
    tree = new_nvidia_tree(None)
    with pytest.raises(ValueError):
        tree.init("GPU0 GPU1\nGPU0 X GPU1\nGPU1 GPU0 X")


def test_available_before_init_raises():
    with pytest.raises(RuntimeError):
        NvidiaTree().available()


def test_update_rolls_usage_up():
    tree = make_tree(SIX_CARDS)
    leaves = tree.leaves()
    leaves[0].meta.pids = [1, 2]
    leaves[0].meta.used_memory = 10
    leaves[1].meta.pids = [3]
    leaves[1].meta.used_memory = 5
    tree.update()
    pix = leaves[0].parent
    assert pix.meta.used_memory == 15
    assert sorted(tree.root().meta.pids) == [1, 2, 3]
    assert tree.root().meta.used_memory == 15


def test_sample_period_comes_from_config():
    tree = new_nvidia_tree(Config(sample_period=timedelta(seconds=3)))
    assert tree.sample_period == timedelta(seconds=3)


def test_registered_as_nvidia_driver():
    factory = new_func_for_name("nvidia")
    tree = factory(None)
    tree.init(ONE_CARD)
    assert isinstance(tree, NvidiaTree)
    assert tree.total() == 1