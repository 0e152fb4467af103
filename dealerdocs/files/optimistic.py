"""
Optimistic local mutation with server reconciliation.

A change is applied to the local collection first, the server call is
awaited, and on failure the change is rolled back item-by-item so that
unrelated concurrent changes survive. This is the single rollback path used
by rename (catalog) and revoke (shares).
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Generic, Iterable, List, Optional, Set, TypeVar

logger = logging.getLogger("dealerdocs.files.optimistic")

T = TypeVar("T")
R = TypeVar("R")


class OptimisticCollection(Generic[T]):
    """
    Ordered items keyed by ``key(item)``.

    ``remove`` and ``patch`` are optimistic: applied immediately, confirmed
    by an awaitable, reverted if it raises. The original exception is
    re-raised after rollback so the caller can notify.
    """

    def __init__(self, key: Callable[[T], Any], items: Iterable[T] = ()):
        self._key = key
        self._items: List[T] = list(items)
        self._pending: Set[Any] = set()

    @property
    def items(self) -> List[T]:
        return list(self._items)

    @property
    def pending(self) -> Set[Any]:
        """Keys with an unconfirmed change."""
        return set(self._pending)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))

    def reset(self, items: Iterable[T]) -> None:
        self._items = list(items)

    def get(self, item_key: Any) -> Optional[T]:
        for item in self._items:
            if self._key(item) == item_key:
                return item
        return None

    def index_of(self, item_key: Any) -> int:
        for i, item in enumerate(self._items):
            if self._key(item) == item_key:
                return i
        return -1

    def prepend(self, item: T) -> None:
        self.discard(self._key(item))
        self._items.insert(0, item)

    def replace(self, item: T) -> bool:
        """Swap in a newer copy of an existing item. Returns False if absent."""
        i = self.index_of(self._key(item))
        if i < 0:
            return False
        self._items[i] = item
        return True

    def discard(self, item_key: Any) -> Optional[T]:
        """Non-optimistic removal (after the server acknowledged)."""
        i = self.index_of(item_key)
        if i < 0:
            return None
        return self._items.pop(i)

    async def remove(self, item_key: Any, confirm: Callable[[], Awaitable[R]]) -> R:
        index = self.index_of(item_key)
        removed = self._items.pop(index) if index >= 0 else None
        self._pending.add(item_key)
        try:
            result = await confirm()
        except BaseException:
            if removed is not None and self.index_of(item_key) < 0:
                self._items.insert(min(index, len(self._items)), removed)
                logger.info(f"Rolled back removal of {item_key}")
            raise
        finally:
            self._pending.discard(item_key)
        return result

    async def patch(self, item_key: Any, update: Callable[[T], T], confirm: Callable[[], Awaitable[R]]) -> R:
        index = self.index_of(item_key)
        if index < 0:
            return await confirm()
        original = self._items[index]
        patched = update(original)
        self._items[index] = patched
        self._pending.add(item_key)
        try:
            result = await confirm()
        except BaseException:
            # Only revert if nobody replaced the item in the meantime
            current = self.index_of(item_key)
            if current >= 0 and self._items[current] is patched:
                self._items[current] = original
                logger.info(f"Rolled back patch of {item_key}")
            raise
        finally:
            self._pending.discard(item_key)
        return result
