"""Registry of GPU tree factories keyed by driver name."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from .config import Config

log = logging.getLogger(__name__)


class GPUTree(ABC):
    """A GPU topology that can be built from text and refreshed."""

    @abstractmethod
    def init(self, text: str) -> None:
        """Build the tree, using ``text`` when no device library is available."""

    @abstractmethod
    def update(self) -> None:
        """Refresh the tree from the devices."""


TreeFactory = Callable[[Optional[Config]], GPUTree]

_factories: dict[str, TreeFactory] = {}
_builtins_loaded = False


def register(name: str, factory: TreeFactory) -> None:
    """Register ``factory`` under ``name``; an existing entry is kept."""
    if name in _factories:
        return
    log.debug("Register NewFunc with name %s", name)
    _factories[name] = factory


def _load_builtin_drivers() -> None:
    global _builtins_loaded
    if _builtins_loaded:
        return
    _builtins_loaded = True
    from .dummy import new_dummy_tree
    from .tree import new_nvidia_tree

    register("dummy", new_dummy_tree)
    register("nvidia", new_nvidia_tree)


def new_func_for_name(name: str) -> Optional[TreeFactory]:
    """Return the factory registered under ``name``, or None."""
    _load_builtin_drivers()
    factory = _factories.get(name)
    if factory is None:
        log.debug("Can not find NewFunc with name %s", name)
    return factory