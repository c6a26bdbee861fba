"""Crank account header layout and helpers.

The account holds a fixed 120-byte header followed by the scheduled
instruction, stored verbatim in the instructions-sysvar wire format::

    [0..2]                    num_accounts  u16 LE
    [2..2 + 33*num_accounts]  metas: [flag:u8][pubkey:32] each
    [+32]                     program_id
    [+2]                      data_len      u16 LE
    [..data_len]              data
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import ClassVar

from .address import PROGRAM_ID, Pubkey, find_program_address
from .consts import CRANK_HEADER_SIZE, CRANK_SEED_PREFIX, SERIALIZED_META_SIZE
from .errors import ErrorKind, ProgramError

_HEADER = struct.Struct("<32s32sQQQQQQHBIB")
assert _HEADER.size == CRANK_HEADER_SIZE


@dataclass
class Crank:
    """Decoded crank header."""

    LEN: ClassVar[int] = CRANK_HEADER_SIZE

    #: All zeros means no cancel authority.
    authority: bytes = field(default=bytes(32))
    #: The 32 seed bytes the PDA was derived from.
    seed: bytes = field(default=bytes(32))
    next_exec_slot: int = 0
    interval_slots: int = 0
    #: ``REMAINING_INFINITE`` means execute forever.
    remaining: int = 0
    priority_tip: int = 0
    executed: int = 0
    #: Rent-exempt minimum cached at ``Create``.
    rent_min: int = 0
    #: Size of the tail region in bytes.
    region_len: int = 0
    bump: int = 0
    #: Compute-unit limit for the cranker; ``0`` omits the limit instruction.
    cu_limit: int = 0
    #: ``1`` when the payer was the authority at ``Create``.
    authority_signer: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> Crank:
        """Decode the header from account data; extra tail bytes are ignored."""
        if len(data) < CRANK_HEADER_SIZE:
            raise ProgramError(ErrorKind.ACCOUNT_DATA_TOO_SMALL)
        (
            authority,
            seed,
            next_exec_slot,
            interval_slots,
            remaining,
            priority_tip,
            executed,
            rent_min,
            region_len,
            bump,
            cu_limit,
            authority_signer,
        ) = _HEADER.unpack_from(bytes(data[:CRANK_HEADER_SIZE]))
        return cls(
            authority=authority,
            seed=seed,
            next_exec_slot=next_exec_slot,
            interval_slots=interval_slots,
            remaining=remaining,
            priority_tip=priority_tip,
            executed=executed,
            rent_min=rent_min,
            region_len=region_len,
            bump=bump,
            cu_limit=cu_limit,
            authority_signer=authority_signer,
        )

    def to_bytes(self) -> bytes:
        """Encode the header as its 120-byte on-chain layout."""
        if len(self.authority) != 32 or len(self.seed) != 32:
            raise ValueError("authority and seed must be 32 bytes")
        return _HEADER.pack(
            bytes(self.authority),
            bytes(self.seed),
            self.next_exec_slot,
            self.interval_slots,
            self.remaining,
            self.priority_tip,
            self.executed,
            self.rent_min,
            self.region_len,
            self.bump,
            self.cu_limit,
            self.authority_signer,
        )


def crank_account_size(region_len: int) -> int:
    """Total account size for a crank with the given tail region length."""
    return CRANK_HEADER_SIZE + region_len


def region_len_for(num_accounts: int, data_len: int) -> int:
    """Region length for a scheduled instruction with these metas and data."""
    return 2 + SERIALIZED_META_SIZE * num_accounts + 32 + 2 + data_len


def find_crank_pda(seed: bytes) -> tuple[Pubkey, int]:
    """Derive the crank address and bump for a 32-byte seed."""
    seed = bytes(seed)
    if len(seed) != 32:
        raise ValueError("crank seed must be 32 bytes")
    return find_program_address([CRANK_SEED_PREFIX, seed], PROGRAM_ID)