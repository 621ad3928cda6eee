"""Nodes of the GPU topology tree and the orderings used to rank them."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Iterable, Optional

HUNDRED_CORE = 100
"""Virtual cores of one whole GPU."""
MAX_PROCESS = 64
"""Maximum number of processes sampled on one device."""
NAME_PATTERN = "/dev/nvidia{}"
"""Device file name of a GPU, filled with its minor number."""
LEVEL_STEP = 10
"""Distance between two neighbouring topology levels."""


class TopologyLevel(IntEnum):
    """How closely two GPUs are connected; larger means farther apart."""

    INTERNAL = 0
    SINGLE = 10
    MULTIPLE = 20
    HOSTBRIDGE = 30
    CPU = 40
    SYSTEM = 50
    UNKNOWN = 60


_LEVEL_NAMES = {
    TopologyLevel.SINGLE: "PIX",
    TopologyLevel.MULTIPLE: "PXB",
    TopologyLevel.HOSTBRIDGE: "PHB",
    TopologyLevel.CPU: "CPU",
    TopologyLevel.SYSTEM: "SYS",
}

_MATRIX_LEVELS = {
    "PIX": TopologyLevel.SINGLE,
    "PXB": TopologyLevel.MULTIPLE,
    "PHB": TopologyLevel.HOSTBRIDGE,
    "SOC": TopologyLevel.CPU,
}

_node_ids = itertools.count()


@dataclass
class SchedulerCache:
    """Cores and memory of a GPU that can still be handed out."""

    cores: int = 0
    memory: int = 0


@dataclass
class DeviceMeta:
    """Metadata of a GPU device or of a group of them."""

    id: int = 0
    minor_id: int = 0
    used_memory: int = 0
    total_memory: int = 0
    pids: list[int] = field(default_factory=list)
    bus_id: str = ""
    utilization: int = 0
    uuid: str = ""


def _next_meta() -> DeviceMeta:
    return DeviceMeta(id=next(_node_ids))


@dataclass(eq=False)
class NvidiaNode:
    """A GPU (leaf) or a connection level grouping GPUs (inner node).

    ``mask`` holds one bit per leaf below this node that is still free.
    """

    meta: DeviceMeta = field(default_factory=_next_meta)
    allocatable_meta: SchedulerCache = field(default_factory=SchedulerCache)
    parent: Optional["NvidiaNode"] = field(default=None, repr=False)
    children: list["NvidiaNode"] = field(default_factory=list, repr=False)
    mask: int = 0
    ntype: TopologyLevel = TopologyLevel.UNKNOWN
    tree: Any = field(default=None, repr=False)
    pending_reset: bool = False
    vchildren: dict[int, "NvidiaNode"] = field(default_factory=dict, repr=False)

    def minor_name(self) -> str:
        """The device file name of this node."""
        return NAME_PATTERN.format(self.meta.minor_id)

    def type(self) -> int:
        """The topology level of this node as an integer."""
        return int(self.ntype)

    def available_leaves(self) -> list["NvidiaNode"]:
        """The free leaves below this node, lowest index first."""
        mask = self.mask
        if not mask:
            return []
        if self.tree is None:
            raise ValueError("node is not attached to a tree")
        leaves = self.tree.leaves()
        result = []
        while mask:
            lowest = mask & -mask
            result.append(leaves[lowest.bit_length() - 1])
            mask ^= lowest
        return result

    def available(self) -> int:
        """The number of free leaves below this node."""
        return bin(self.mask).count("1")

    def __str__(self) -> str:
        if self.ntype == TopologyLevel.INTERNAL:
            return f"GPU{self.meta.id}"
        return _LEVEL_NAMES.get(self.ntype, "ROOT")


def parse_topology_level(text: str) -> TopologyLevel:
    """Read one cell of a topology matrix."""
    level = _MATRIX_LEVELS.get(text)
    if level is not None:
        return level
    if text.startswith("GPU"):
        return TopologyLevel.INTERNAL
    return TopologyLevel.UNKNOWN


SortKey = Callable[[NvidiaNode], int]


def by_type(node: NvidiaNode) -> int:
    """Rank by topology level."""
    return node.type()


def by_available(node: NvidiaNode) -> int:
    """Rank by number of free leaves."""
    return node.available()


def by_id(node: NvidiaNode) -> int:
    """Rank by node id."""
    return node.meta.id


def by_memory(node: NvidiaNode) -> int:
    """Rank by memory already in use."""
    return node.meta.used_memory


def by_pids(node: NvidiaNode) -> int:
    """Rank by number of processes running on the node."""
    return len(node.meta.pids)


def by_allocatable_cores(node: NvidiaNode) -> int:
    """Rank by cores still available."""
    return node.allocatable_meta.cores


def by_allocatable_memory(node: NvidiaNode) -> int:
    """Rank by memory still available."""
    return node.allocatable_meta.memory


PRINT_ORDER: tuple[SortKey, ...] = (by_type, by_available, by_id)
"""Ordering used when drawing a tree."""


def sort_nodes(nodes: list[NvidiaNode], keys: Iterable[SortKey]) -> list[NvidiaNode]:
    """Sort ``nodes`` in place by ``keys``, earlier keys first; returns ``nodes``."""
    keys = tuple(keys)
    nodes.sort(key=lambda node: tuple(key(node) for key in keys))
    return nodes