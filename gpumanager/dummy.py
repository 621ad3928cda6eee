"""A GPU tree without devices, for running the manager on machines with no GPU."""

from __future__ import annotations

from typing import Optional

from .config import Config
from .registry import GPUTree, register


class DummyTree(GPUTree):
    """A tree with no topology; it only remembers the text it was given."""

    def __init__(self) -> None:
        self.source: Optional[str] = None

    def init(self, text: str) -> None:
        """Remember ``text``; no topology is built from it."""
        self.source = text

    def update(self) -> None:
        """There are no devices to read, so the tree stays as it is."""
        return None


def new_dummy_tree(config: Optional[Config]) -> DummyTree:
    """Create a :class:`DummyTree`; the configuration is not used."""
    return DummyTree()


register("dummy", new_dummy_tree)