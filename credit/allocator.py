"""
allocator.py - Reference account slot allocator

Each credit account's funds sit in a slot: a wallet in the token ledger.
Slots are recycled rather than created per account. Released slots join the
tail of a FIFO stock; acquire() takes from the head and only mints a new
slot when the stock is empty.
"""

from collections import deque
from typing import Deque, Dict, Optional, Set

from .core import StateError
from .ledger import TokenLedger


class SlotAllocator:
    """FIFO stock of reusable credit account slots."""

    def __init__(self, book: TokenLedger, prefix: str = "slot", initial_slots: int = 0):
        self.book = book
        self.prefix = prefix
        self._created = 0
        self._free: Deque[str] = deque()
        self._in_use: Set[str] = set()
        # slot -> owner hint it was last handed out for
        self.assigned_to: Dict[str, str] = {}
        for _ in range(initial_slots):
            self._free.append(self._mint_slot())

    def _mint_slot(self) -> str:
        self._created += 1
        slot = f"{self.prefix}-{self._created:04d}"
        return self.book.ensure_wallet(slot)

    def acquire(self, owner_hint: str) -> str:
        slot = self._free.popleft() if self._free else self._mint_slot()
        self._in_use.add(slot)
        self.assigned_to[slot] = owner_hint
        return slot

    def release(self, slot: str) -> None:
        """
        Return a slot to the tail of the stock.

        Raises:
            StateError: If the slot is not currently in use
        """
        if slot not in self._in_use:
            raise StateError(f"SlotNotInUse: {slot}")
        self._in_use.remove(slot)
        self._free.append(slot)

    @property
    def free_slots(self) -> list:
        return list(self._free)

    @property
    def head(self) -> Optional[str]:
        return self._free[0] if self._free else None

    @property
    def tail(self) -> Optional[str]:
        return self._free[-1] if self._free else None

    def is_in_use(self, slot: str) -> bool:
        return slot in self._in_use

    def count_created(self) -> int:
        return self._created
