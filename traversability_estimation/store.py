# store.py
# --------
# Named grids shared between threads. Each grid has its own reentrant lock.
# Work happens on value copies: lock, copy, unlock, compute, lock, swap back.

from __future__ import annotations
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional, TypeVar
import logging
import threading

from traversability_estimation.grid import GridMap

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Slot:
    __slots__ = ("lock", "grid", "generation")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.grid: Optional[GridMap] = None
        self.generation = 0


class MapStore:
    def __init__(self, names=()):
        self._slots: Dict[str, _Slot] = {name: _Slot() for name in names}

    def _slot(self, name: str) -> _Slot:
        return self._slots[name]

    def lock(self, name: str) -> threading.RLock:
        return self._slot(name).lock

    def get(self, name: str) -> Optional[GridMap]:
        """Private copy of the current grid (None when nothing was stored yet)."""
        slot = self._slot(name)
        with slot.lock:
            return None if slot.grid is None else slot.grid.copy()

    def read(self, name: str, fn: Callable[[Optional[GridMap]], T]) -> T:
        """Apply `fn` to the shared grid under its lock; `fn` must not keep or mutate it."""
        slot = self._slot(name)
        with slot.lock:
            return fn(slot.grid)

    def replace(self, name: str, grid: Optional[GridMap]) -> None:
        slot = self._slot(name)
        with slot.lock:
            slot.grid = grid
            slot.generation += 1

    def generation(self, name: str) -> int:
        slot = self._slot(name)
        with slot.lock:
            return slot.generation

    @contextmanager
    def snapshot(self, name: str, write_back: bool = True) -> Iterator[Optional[GridMap]]:
        """
        Yield a copy of the named grid to work on without holding the lock.

        On normal exit the copy (with any cache layers written into it) replaces
        the shared grid, unless the shared grid was replaced in the meantime;
        newer data always wins over write-back of an older snapshot.
        """
        slot = self._slot(name)
        with slot.lock:
            generation = slot.generation
            grid = None if slot.grid is None else slot.grid.copy()

        yield grid

        if not write_back or grid is None:
            return
        with slot.lock:
            if slot.generation != generation:
                logger.debug("Map '%s' changed during computation; dropping snapshot write-back.", name)
                return
            slot.grid = grid
