import pytest

from gpumanager.graph import format_node, print_graph
from gpumanager.topology import DeviceMeta, NvidiaNode, SchedulerCache, TopologyLevel
from gpumanager.tree import new_nvidia_tree

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


def _tree(text):
    tree = new_nvidia_tree(None)
    tree.init(text)
    return tree


def _all_nodes(node):
    yield node
    for child in node.children:
        yield from _all_nodes(child)


def _depth(node):
    depth = 0
    while node.parent is not None:
        depth += 1
        node = node.parent
    return depth


def test_header_shows_root_and_free_count():
    tree = _tree(SIX_CARDS)
    graph = print_graph(tree)
    assert graph.splitlines()[0] == "ROOT:6"


def test_one_line_per_node():
    tree = _tree(SIX_CARDS)
    graph = print_graph(tree)
    nodes = list(_all_nodes(tree.root()))
    assert len(graph.splitlines()) == len(nodes)
    assert graph.endswith("\n")


def test_every_gpu_appears_once():
    tree = _tree(SIX_CARDS)
    lines = print_graph(tree).splitlines()
    for leaf in tree.leaves():
        name = f"|---{leaf} ("
        assert sum(1 for line in lines if name in line) == 1


def test_indentation_matches_depth():
    tree = _tree(SIX_CARDS)
    lines = print_graph(tree).splitlines()[1:]
    for leaf in tree.leaves():
        line = next(line for line in lines if f"|---{leaf} (" in line)
        prefix = line[: line.index("|---")]
        assert prefix == "|   " * (_depth(leaf) - 1)


def test_leaves_under_same_parent_in_id_order():
    tree = _tree(SIX_CARDS)
    lines = print_graph(tree).splitlines()
    positions = [
        next(i for i, line in enumerate(lines) if f"|---{leaf} (" in line)
        for leaf in tree.leaves()
    ]
    for leaf_a, leaf_b in zip(tree.leaves(), tree.leaves()[1:]):
        if leaf_a.parent is leaf_b.parent:
            assert positions[leaf_a.meta.id] < positions[leaf_b.meta.id]


def test_occupied_gpu_changes_header_and_line():
    tree = _tree(SIX_CARDS)
    leaves = tree.leaves()
    for leaf in leaves:
        leaf.allocatable_meta.cores = 100
        leaf.allocatable_meta.memory = 1024
    tree.mark_occupied(leaves[0], 100, 0)
    lines = print_graph(tree).splitlines()
    assert lines[0] == "ROOT:5"
    gpu0 = next(line for line in lines if "|---GPU0 (" in line)
    assert "allocatableCores: 0" in gpu0
    assert "allocatableMemory: 0" in gpu0


def test_single_card_graph():
    tree = _tree(ONE_CARD)
    lines = print_graph(tree).splitlines()
    assert lines[0] == "ROOT:1"
    assert len(lines) == 2
    assert lines[1].startswith("|---GPU0 (pids: [], ")


def test_uninitialized_tree_raises():
    with pytest.raises(RuntimeError):
        print_graph(new_nvidia_tree(None))


def test_format_leaf_node():
    node = NvidiaNode(
        meta=DeviceMeta(id=3, pids=[11, 12], used_memory=7, total_memory=9),
        allocatable_meta=SchedulerCache(cores=40, memory=5),
        ntype=TopologyLevel.INTERNAL,
    )
    assert format_node(node) == (
        "GPU3 (pids: [11 12], usedMemory: 7, totalMemory: 9, "
        "allocatableCores: 40, allocatableMemory: 5)\n"
    )


def test_format_inner_node_shows_available():
    node = NvidiaNode(
        meta=DeviceMeta(id=99, used_memory=2, total_memory=8),
        allocatable_meta=SchedulerCache(cores=0, memory=0),
        ntype=TopologyLevel.SINGLE,
        mask=0b11,
    )
    assert format_node(node) == (
        "PIX (aval: 2, pids: [], usedMemory: 2, totalMemory: 8, "
        "allocatableCores: 0, allocatableMemory: 0)\n"
    )