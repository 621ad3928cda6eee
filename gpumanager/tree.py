"""The GPU topology tree built from a topology matrix."""

from __future__ import annotations

import logging
import re
import threading
from collections import defaultdict
from datetime import timedelta
from typing import Optional

from .config import Config
from .registry import GPUTree, register
from .topology import (
    HUNDRED_CORE,
    LEVEL_STEP,
    DeviceMeta,
    NvidiaNode,
    TopologyLevel,
    parse_topology_level,
)

log = logging.getLogger(__name__)

_SPLITTER = re.compile(r"[ \t]+")

LevelMap = dict  # TopologyLevel -> list[NvidiaNode]


def _attach(node: NvidiaNode, parent: NvidiaNode) -> None:
    node.parent = parent
    parent.vchildren[node.meta.id] = node


class NvidiaTree(GPUTree):
    """GPUs arranged by how closely they are connected.

    Leaves are GPUs; each inner node groups the GPUs that share a connection
    level, and its mask records which of them are free.
    """

    def __init__(self, config: Optional[Config] = None) -> None:
        self._lock = threading.Lock()
        self._root: Optional[NvidiaNode] = None
        self._leaves: list[NvidiaNode] = []
        self._query: dict[str, NvidiaNode] = {}
        self.sample_period: timedelta = (
            config.sample_period if config is not None else timedelta(0)
        )

    def init(self, text: str) -> None:
        """Build the tree from an ``nvidia-smi topo -m`` style matrix."""
        try:
            self._parse_from_string(text)
        except ValueError as exc:
            raise ValueError(f"Can not initialize nvidia tree, err {exc}") from exc

    def update(self) -> None:
        """Recompute each inner node's processes and memory from its children."""
        with self._lock:
            for leaf in self._leaves:
                node = leaf.parent
                while node is not None:
                    node.meta.pids = [pid for child in node.children for pid in child.meta.pids]
                    node.meta.used_memory = sum(c.meta.used_memory for c in node.children)
                    node.meta.total_memory = sum(c.meta.total_memory for c in node.children)
                    node = node.parent

    def _allocate_node(self, index: int) -> NvidiaNode:
        node = NvidiaNode(tree=self)
        node.ntype = TopologyLevel.INTERNAL
        node.meta.id = index
        node.mask = 1 << index
        return node

    def _add_node(self, node: NvidiaNode) -> None:
        self._query[node.minor_name()] = node
        self._leaves[node.meta.id] = node

    def _parse_from_string(self, text: str) -> None:
        if not text:
            raise ValueError("no input")

        self._query = {}
        self._leaves = []
        nodes: LevelMap = defaultdict(list)

        for count, line in enumerate(text.splitlines()):
            cells = [cell for cell in _SPLITTER.split(line) if cell]

            if count == 0:
                self._leaves = [None] * len(cells)  # type: ignore[list-item]
                for index in range(len(cells)):
                    leaf = self._allocate_node(index)
                    leaf.meta.minor_id = index
                    self._add_node(leaf)
                continue

            card_a = count - 1
            for column, cell in enumerate(cells):
                if column == 0 or column == count:
                    continue
                level = parse_topology_level(cell)
                new_node = self._join(nodes, level, card_a, column - 1)
                if new_node is not None:
                    nodes[level].append(new_node)

        self._build_tree(nodes)

    def _join(
        self, nodes: LevelMap, level: TopologyLevel, index_a: int, index_b: int
    ) -> Optional[NvidiaNode]:
        log.debug("Join %d and %d in type %d", index_a, index_b, int(level))
        mask = self._leaves[index_a].mask | self._leaves[index_b].mask
        for node in nodes.get(level, ()):
            if node.mask & mask:
                node.mask |= mask
                log.debug("Join to mask %s", bin(node.mask))
                return None
        new_node = NvidiaNode(tree=self)
        new_node.mask = mask
        new_node.ntype = level
        return new_node

    def _build_tree(self, nodes: LevelMap) -> None:
        for leaf in self._leaves:
            current = leaf
            for level in range(TopologyLevel.SINGLE, TopologyLevel.SYSTEM + 1, LEVEL_STEP):
                for upper in nodes.get(TopologyLevel(level), ()):
                    if upper.mask & current.mask:
                        _attach(current, upper)
                        current = upper
                        break

        root = NvidiaNode(tree=self)
        self._root = root

        first_level: list[NvidiaNode] = []
        level = int(TopologyLevel.SYSTEM)
        while level > 0:
            candidates = nodes.get(TopologyLevel(level))
            if candidates:
                first_level = candidates
                break
            level -= LEVEL_STEP

        if not first_level:
            log.error("No topology level found at %d", level)
            if len(self._leaves) == 1:
                only = self._leaves[0]
                root.mask |= only.mask
                _attach(only, root)
                root.children.append(only)
                return
            raise ValueError("no topology level connects the cards")

        for node in first_level:
            root.mask |= node.mask
            _attach(node, root)

        for leaf in self._leaves:
            current = leaf.parent
            while current is not None:
                if not current.children:
                    current.children = list(current.vchildren.values())
                current = current.parent

    def _require_root(self) -> NvidiaNode:
        if self._root is None:
            raise RuntimeError("tree is not initialized")
        return self._root

    def available(self) -> int:
        """Number of free GPUs in the tree."""
        with self._lock:
            return self._require_root().available()

    def mark_free(self, node: NvidiaNode, cores: int, memory: int) -> None:
        """Give back ``cores`` and ``memory`` to the GPU named like ``node``.

        Returning a whole GPU's worth of cores restores its full capacity; a
        GPU whose cores are all free again is marked free in its ancestors.
        """
        with self._lock:
            found = self._query.get(node.minor_name())
            if found is None:
                log.debug("Can not find node with name(%s)", node.minor_name())
                return

            log.debug("Free %s with %d %d", found.minor_name(), cores, memory)
            alloc = found.allocatable_meta
            total = found.meta.total_memory
            if cores >= HUNDRED_CORE:
                alloc.cores = HUNDRED_CORE
                alloc.memory = total
            else:
                alloc.cores = min(alloc.cores + cores, HUNDRED_CORE)
                alloc.memory = min(alloc.memory + memory, total)

            if alloc.cores == HUNDRED_CORE:
                log.debug("Free %s, mask %s", found.minor_name(), bin(found.mask))
                self._free_node(found)

    def _free_node(self, node: NvidiaNode) -> None:
        parent = node.parent
        while parent is not None:
            parent.mask |= node.mask
            parent = parent.parent

    def mark_occupied(self, node: NvidiaNode, cores: int, memory: int) -> None:
        """Take ``cores`` and ``memory`` from the GPU named like ``node``.

        The GPU is marked busy in its ancestors; a whole GPU's worth of
        cores takes all its capacity.
        """
        with self._lock:
            found = self._query.get(node.minor_name())
            if found is None:
                log.debug("Can not find node with name(%s)", node.minor_name())
                return

            log.debug("Occupy %s with %d %d", found.minor_name(), cores, memory)
            self._occupy_node(found)

            alloc = found.allocatable_meta
            if cores >= HUNDRED_CORE:
                alloc.cores = 0
                alloc.memory = 0
            else:
                alloc.cores = max(alloc.cores - cores, 0)
                alloc.memory = max(alloc.memory - memory, 0)

    def _occupy_node(self, node: NvidiaNode) -> None:
        parent = node.parent
        while parent is not None:
            if parent.mask & node.mask == node.mask:
                parent.mask ^= node.mask
            parent = parent.parent

    def leaves(self) -> list[NvidiaNode]:
        """The GPUs of the tree, indexed by id."""
        return list(self._leaves)

    def total(self) -> int:
        """Number of GPUs in the tree."""
        return len(self._leaves)

    def root(self) -> Optional[NvidiaNode]:
        """The root node, or None before :meth:`init`."""
        return self._root

    def query(self, name: str) -> Optional[NvidiaNode]:
        """The GPU with device file ``name``, or None."""
        node = self._query.get(name)
        if node is None:
            log.debug("Can not find node with name(%s)", name)
        return node


def new_nvidia_tree(config: Optional[Config]) -> NvidiaTree:
    """Create an empty :class:`NvidiaTree` configured by ``config``."""
    return NvidiaTree(config)


register("nvidia", new_nvidia_tree)

__all__ = ["NvidiaTree", "new_nvidia_tree", "DeviceMeta"]