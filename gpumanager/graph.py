"""Text drawings of a GPU topology tree."""

from __future__ import annotations

from typing import Iterator

from .topology import LEVEL_STEP, PRINT_ORDER, NvidiaNode, TopologyLevel, sort_nodes
from .tree import NvidiaTree


def _format_pids(pids: list[int]) -> str:
    return "[" + " ".join(str(pid) for pid in pids) + "]"


def format_node(node: NvidiaNode) -> str:
    """One line describing ``node``, ending with a newline."""
    meta = node.meta
    alloc = node.allocatable_meta
    details = (
        f"pids: {_format_pids(meta.pids)}, usedMemory: {meta.used_memory}, "
        f"totalMemory: {meta.total_memory}, allocatableCores: {alloc.cores}, "
        f"allocatableMemory: {alloc.memory}"
    )
    if node.ntype != TopologyLevel.INTERNAL:
        return f"{node} (aval: {node.available()}, {details})\n"
    return f"{node} ({details})\n"


def _walk(node: NvidiaNode, level: int) -> Iterator[str]:
    if level > 0:
        indent = "|   " * max(0, (level - int(TopologyLevel.INTERNAL)) // LEVEL_STEP - 1)
        yield indent + "|---" + format_node(node)

    sort_nodes(node.children, PRINT_ORDER)
    for child in node.children:
        yield from _walk(child, level + LEVEL_STEP)


def print_graph(tree: NvidiaTree) -> str:
    """Draw ``tree`` as indented text, children ordered by level, free GPUs and id."""
    root = tree.root()
    if root is None:
        raise RuntimeError("tree is not initialized")
    header = f"{root}:{root.available()}\n"
    return header + "".join(_walk(root, int(TopologyLevel.INTERNAL)))