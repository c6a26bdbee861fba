"""Instruction wire layouts and client-side instruction builders.

``Create`` (discriminator 0) data, after the discriminator byte::

    seed            [u8; 32]
    authority       [u8; 32]   all zeros = none
    start_slot      u64 LE
    interval_slots  u64 LE
    remaining       u64 LE     0 on the wire = infinite
    priority_tip    u64 LE
    cu_limit        u32 LE     0 = cranker omits SetComputeUnitLimit
    num_accounts    u8
    data_len        u16 LE
    program_id      [u8; 32]
    metas           [[flag:u8][pubkey:32]; num_accounts]
    data            [u8; data_len]

``Trigger`` accounts: ``[crank(w), cranker(w,s), instructions_sysvar]``.
``Cancel`` accounts: ``[authority(s), crank(w), recipient(w)]``.
``Close`` accounts: ``[reporter(s,w), crank(w), recipient(w)]``.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Sequence

from .address import PROGRAM_ID, Pubkey
from .consts import (
    CRANK_HEADER_SIZE,
    META_FLAG_WRITABLE,
    SERIALIZED_META_SIZE,
    U16_MAX,
    U32_MAX,
    U64_MAX,
    Ix,
)

#: Size of the fixed ``Create`` prefix before the metas and data.
CREATE_FIXED_PREFIX_LEN: int = 32 + 32 + 8 + 8 + 8 + 8 + 4 + 1 + 2 + 32

_CREATE_PREFIX = struct.Struct("<32s32sQQQQIBH32s")
assert _CREATE_PREFIX.size == CREATE_FIXED_PREFIX_LEN

#: The instructions sysvar address.
INSTRUCTIONS_SYSVAR_ID = Pubkey.from_string("Sysvar1nstructions1111111111111111111111111")

#: The system program address.
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")


@dataclass(frozen=True)
class AccountMeta:
    """An account referenced by an instruction."""

    pubkey: Pubkey
    is_signer: bool = False
    is_writable: bool = False


@dataclass
class Instruction:
    """A program id, its accounts and its data."""

    program_id: Pubkey
    accounts: list[AccountMeta] = field(default_factory=list)
    data: bytes = b""

    def __post_init__(self) -> None:
        self.accounts = list(self.accounts)
        self.data = bytes(self.data)


@dataclass(frozen=True)
class SchedMeta:
    """A scheduled-instruction account; scheduled metas never carry a signer flag."""

    pubkey: Pubkey
    is_writable: bool = False

    @classmethod
    def readonly(cls, pubkey: Pubkey) -> SchedMeta:
        return cls(pubkey, False)

    @classmethod
    def writable(cls, pubkey: Pubkey) -> SchedMeta:
        return cls(pubkey, True)


@dataclass
class CreateArgs:
    """All the scheduling settings for ``Create``."""

    seed: bytes
    #: All zeros means nobody can cancel the crank.
    authority: bytes
    start_slot: int
    interval_slots: int
    #: ``0`` means infinite.
    remaining: int
    priority_tip: int
    #: ``0`` means the cranker emits no compute-unit limit instruction.
    cu_limit: int
    scheduled_program_id: Pubkey
    scheduled_metas: Sequence[SchedMeta] = ()
    scheduled_data: bytes = b""

    def __post_init__(self) -> None:
        self.seed = bytes(self.seed)
        self.authority = bytes(self.authority)
        if len(self.seed) != 32 or len(self.authority) != 32:
            raise ValueError("seed and authority must be 32 bytes")
        for name in ("start_slot", "interval_slots", "remaining", "priority_tip"):
            if not 0 <= getattr(self, name) <= U64_MAX:
                raise ValueError(f"{name} must fit in an unsigned 64-bit integer")
        if not 0 <= self.cu_limit <= U32_MAX:
            raise ValueError("cu_limit must fit in an unsigned 32-bit integer")
        self.scheduled_metas = tuple(self.scheduled_metas)
        self.scheduled_data = bytes(self.scheduled_data)
        if len(self.scheduled_metas) > 0xFF:
            raise ValueError("at most 255 scheduled metas fit in the wire format")
        if len(self.scheduled_data) > U16_MAX:
            raise ValueError("scheduled data is too long for the wire format")


def program_id() -> Pubkey:
    """The crank program's address."""
    return PROGRAM_ID


def create(payer: Pubkey, crank: Pubkey, args: CreateArgs) -> Instruction:
    """Build a ``Create`` instruction."""
    prefix = _CREATE_PREFIX.pack(
        args.seed,
        args.authority,
        args.start_slot,
        args.interval_slots,
        args.remaining,
        args.priority_tip,
        args.cu_limit,
        len(args.scheduled_metas),
        len(args.scheduled_data),
        args.scheduled_program_id.to_bytes(),
    )
    metas = b"".join(
        bytes([META_FLAG_WRITABLE if meta.is_writable else 0]) + meta.pubkey.to_bytes()
        for meta in args.scheduled_metas
    )
    return Instruction(
        program_id=program_id(),
        accounts=[
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(crank, is_signer=False, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
        data=bytes([Ix.CREATE]) + prefix + metas + args.scheduled_data,
    )


def trigger(crank: Pubkey, cranker: Pubkey) -> Instruction:
    """Build a ``Trigger``; the scheduled instruction must follow it directly."""
    return Instruction(
        program_id=program_id(),
        accounts=[
            AccountMeta(crank, is_signer=False, is_writable=True),
            AccountMeta(cranker, is_signer=True, is_writable=True),
            AccountMeta(INSTRUCTIONS_SYSVAR_ID, is_signer=False, is_writable=False),
        ],
        data=bytes([Ix.TRIGGER]),
    )


def cancel(authority: Pubkey, crank: Pubkey, recipient: Pubkey) -> Instruction:
    """Build a ``Cancel`` instruction."""
    return Instruction(
        program_id=program_id(),
        accounts=[
            AccountMeta(authority, is_signer=True, is_writable=False),
            AccountMeta(crank, is_signer=False, is_writable=True),
            AccountMeta(recipient, is_signer=False, is_writable=True),
        ],
        data=bytes([Ix.CANCEL]),
    )


def close(reporter: Pubkey, crank: Pubkey, recipient: Pubkey) -> Instruction:
    """Build a ``Close`` instruction (permissionless cleanup)."""
    return Instruction(
        program_id=program_id(),
        accounts=[
            AccountMeta(reporter, is_signer=True, is_writable=True),
            AccountMeta(crank, is_signer=False, is_writable=True),
            AccountMeta(recipient, is_signer=False, is_writable=True),
        ],
        data=bytes([Ix.CLOSE]),
    )


def scheduled_ix_from_crank(data: bytes) -> Instruction | None:
    """Rebuild the scheduled instruction from raw crank account data.

    Returns ``None`` when the data is too short or the tail is malformed.
    """
    data = bytes(data)
    if len(data) < CRANK_HEADER_SIZE + 2:
        return None
    tail = data[CRANK_HEADER_SIZE:]
    num_accounts = int.from_bytes(tail[0:2], "little")
    metas_end = 2 + num_accounts * SERIALIZED_META_SIZE
    if len(tail) < metas_end + 32 + 2:
        return None
    scheduled_program = Pubkey(tail[metas_end : metas_end + 32])
    data_len = int.from_bytes(tail[metas_end + 32 : metas_end + 34], "little")
    data_start = metas_end + 34
    if len(tail) < data_start + data_len:
        return None
    accounts = [
        AccountMeta(
            Pubkey(tail[base + 1 : base + SERIALIZED_META_SIZE]),
            is_signer=False,
            is_writable=bool(tail[base] & META_FLAG_WRITABLE),
        )
        for base in range(2, metas_end, SERIALIZED_META_SIZE)
    ]
    return Instruction(
        program_id=scheduled_program,
        accounts=accounts,
        data=tail[data_start : data_start + data_len],
    )