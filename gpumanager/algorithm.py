"""Strategies that pick GPUs of a topology tree for an allocation request."""

from __future__ import annotations

import logging

from .topology import (
    HUNDRED_CORE,
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
from .tree import NvidiaTree

log = logging.getLogger(__name__)

_FRAGMENT_ORDER = (by_available, by_memory, by_pids, by_id)
_LINK_ORDER = (by_type, by_available, by_memory, by_pids, by_id)
_SHARE_ORDER = (by_allocatable_cores, by_allocatable_memory, by_pids, by_id)


def _take_leaves(node: NvidiaNode, count: int) -> list[NvidiaNode]:
    """The first ``count`` free leaves below ``node``, or [] if there are fewer."""
    picked: list[NvidiaNode] = []
    for leaf in node.available_leaves():
        if len(picked) == count:
            break
        log.debug("Pick up %d mask %s", leaf.meta.id, bin(leaf.mask))
        picked.append(leaf)
    if len(picked) < count:
        return []
    return picked


class FragmentMode:
    """Take whole GPUs from the most fragmented group that still fits.

    Filling fragmented groups first keeps well-connected groups intact for
    link mode.
    """

    def __init__(self, tree: NvidiaTree) -> None:
        self.tree = tree

    def evaluate(self, cores: int, memory: int) -> list[NvidiaNode]:
        """GPUs for ``cores`` virtual cores, or [] when the request cannot be met."""
        wanted = int(cores // HUNDRED_CORE)
        root = self.tree.root()
        if root is None:
            raise RuntimeError("tree is not initialized")

        candidate = root
        previous = None
        while previous is not candidate:
            previous = candidate
            sort_nodes(candidate.children, _FRAGMENT_ORDER)
            for node in candidate.children:
                if not node.children or node.available() < wanted:
                    continue
                candidate = node
                log.debug("Choose id %d, mask %s", candidate.meta.id, bin(candidate.mask))
                break

        return _take_leaves(candidate, wanted)


class LinkMode:
    """Take whole GPUs that are connected to each other as closely as possible."""

    def __init__(self, tree: NvidiaTree) -> None:
        self.tree = tree

    def evaluate(self, cores: int, memory: int) -> list[NvidiaNode]:
        """GPUs for ``cores`` virtual cores, or [] when the request cannot be met."""
        wanted = int(cores // HUNDRED_CORE)
        root = self.tree.root()
        if root is None:
            raise RuntimeError("tree is not initialized")

        found: dict[int, NvidiaNode] = {}
        for leaf in self.tree.leaves():
            node = leaf
            while node is not root and node is not None:
                log.debug("Test %d mask %s", node.meta.id, bin(node.mask))
                if node.available() < wanted:
                    node = node.parent
                    continue
                found[node.meta.id] = node
                log.debug("Choose %d mask %s", node.meta.id, bin(node.mask))
                break

        if not found:
            found[-1] = root

        candidates = sort_nodes(list(found.values()), _LINK_ORDER)
        return _take_leaves(candidates[0], wanted)


class ShareMode:
    """Take one GPU, the one with the least spare capacity that still fits.

    Several applications may then share a GPU, which uses it more fully.
    """

    def __init__(self, tree: NvidiaTree) -> None:
        self.tree = tree

    def evaluate(self, cores: int, memory: int) -> list[NvidiaNode]:
        """A single GPU with at least ``cores`` and ``memory`` free, or []."""
        for node in sort_nodes(self.tree.leaves(), _SHARE_ORDER):
            alloc = node.allocatable_meta
            if alloc.cores >= cores and alloc.memory >= memory:
                log.debug(
                    "Pick up %d mask %s, cores: %d, memory: %d",
                    node.meta.id,
                    bin(node.mask),
                    alloc.cores,
                    alloc.memory,
                )
                return [node]
        return []