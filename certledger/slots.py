"""
certledger Identity-Slot Allocator

Slots are strictly increasing, 1-based integers handed out once per
successful issuance and never reused. Slot 0 is the "absent" sentinel.
Every slot is bound to the identity that issued it; transfer is refused.
"""

from typing import Dict

from .errors import TokenNotExists, TransferAttempted

ABSENT_SLOT = 0


class SlotAllocator:

    def __init__(self):
        self._next_slot = 1
        self._owners: Dict[int, str] = {}

    def allocate(self, owner: str) -> int:
        """Return the next slot, bound permanently to owner."""
        slot_id = self._next_slot
        self._next_slot += 1
        self._owners[slot_id] = owner
        return slot_id

    def exists(self, slot_id: int) -> bool:
        return slot_id != ABSENT_SLOT and slot_id in self._owners

    def owner_of(self, slot_id: int) -> str:
        if not self.exists(slot_id):
            raise TokenNotExists(slot_id)
        return self._owners[slot_id]

    def total_allocated(self) -> int:
        return self._next_slot - 1

    def balance_of(self, identity: str) -> int:
        return sum(1 for owner in self._owners.values() if owner == identity)

    def transfer(self, caller: str, slot_id: int, to: str) -> None:
        """Records never change hands."""
        raise TransferAttempted(slot_id)

    def restore(self, next_slot: int, owners: Dict[int, str]) -> None:
        self._next_slot = next_slot
        self._owners = dict(owners)

    def to_dict(self) -> Dict[str, object]:
        return {
            "next_slot": self._next_slot,
            "owners": {str(k): v for k, v in self._owners.items()},
        }
