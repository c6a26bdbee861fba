"""In-memory index of on-chain cranks, shared between watchers and the sweep loop."""

from __future__ import annotations

import struct
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from ..address import Pubkey
from ..consts import CRANK_HEADER_SIZE, CRANKER_REWARD, STALENESS_THRESHOLD_SLOTS, U64_MAX

_U64 = struct.Struct("<Q")
_U32 = struct.Struct("<I")


def _saturating_add(left: int, right: int) -> int:
    return min(U64_MAX, left + right)


@dataclass(frozen=True)
class CrankEntry:
    """The header fields the cranker needs, plus the raw account data."""

    pubkey: Pubkey
    lamports: int
    #: All zeros means no authority; ``Close`` may then refund anyone.
    authority: bytes
    next_exec_slot: int
    remaining: int
    priority_tip: int
    rent_min: int
    #: ``0`` means no compute-unit limit instruction.
    cu_limit: int
    data: bytes

    @classmethod
    def from_raw(cls, pubkey: Pubkey, lamports: int, data: bytes) -> CrankEntry | None:
        """Decode an entry from account data; ``None`` if it is too short."""
        data = bytes(data)
        if len(data) < CRANK_HEADER_SIZE:
            return None
        return cls(
            pubkey=pubkey,
            lamports=lamports,
            authority=data[0:32],
            next_exec_slot=_U64.unpack_from(data, 64)[0],
            remaining=_U64.unpack_from(data, 80)[0],
            priority_tip=_U64.unpack_from(data, 88)[0],
            rent_min=_U64.unpack_from(data, 104)[0],
            cu_limit=_U32.unpack_from(data, 115)[0],
            data=data,
        )

    def is_eligible(self, current_slot: int) -> bool:
        """Whether ``Trigger`` would pass its slot, exhaustion and funding checks."""
        if current_slot < self.next_exec_slot:
            return False
        if self.remaining == 0:
            return False
        reward = _saturating_add(CRANKER_REWARD, self.priority_tip)
        return self.lamports >= _saturating_add(self.rent_min, reward)

    def is_closable(self, current_slot: int) -> bool:
        """Whether ``Close`` would accept: exhausted, underfunded or stuck."""
        if self.remaining == 0:
            return True
        next_reward = _saturating_add(CRANKER_REWARD, self.priority_tip)
        if self.lamports < _saturating_add(self.rent_min, next_reward):
            return True
        # Future-scheduled cranks are never stale.
        return max(0, current_slot - self.next_exec_slot) > STALENESS_THRESHOLD_SLOTS


class CacheOutcome(Enum):
    """What a cache update did."""

    INSERTED = "insert"
    UPDATED = "update"
    REMOVED = "remove"
    UNCHANGED = "unchanged"


class CrankCache:
    """Thread-safe map from crank address to its latest decoded entry."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[Pubkey, CrankEntry] = {}

    def apply_update(self, pubkey: Pubkey, lamports: int, data: bytes) -> CacheOutcome:
        """Apply one account update.

        Closed accounts (no lamports or no data) and malformed ones are
        removed; anything else is inserted or replaced.
        """
        entry = None
        if lamports != 0 and data:
            entry = CrankEntry.from_raw(pubkey, lamports, data)
        with self._lock:
            if entry is None:
                if self._entries.pop(pubkey, None) is not None:
                    return CacheOutcome.REMOVED
                return CacheOutcome.UNCHANGED
            existed = pubkey in self._entries
            self._entries[pubkey] = entry
            return CacheOutcome.UPDATED if existed else CacheOutcome.INSERTED

    def reset(self, accounts: Iterable[tuple[Pubkey, int, bytes]]) -> int:
        """Replace the contents with ``(pubkey, lamports, data)`` accounts; return the count."""
        fresh = {}
        for pubkey, lamports, data in accounts:
            entry = CrankEntry.from_raw(pubkey, lamports, data)
            if entry is not None:
                fresh[pubkey] = entry
        with self._lock:
            self._entries = fresh
            return len(fresh)

    def snapshot(self) -> dict[Pubkey, CrankEntry]:
        """A copy of the current entries."""
        with self._lock:
            return dict(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)