"""In-process execution environment for the crank program.

Accounts, views onto them, rent, the clock and stack height, the system
program operations the program invokes, and the instructions sysvar
serializer.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from itertools import accumulate
from typing import Iterable

from ..address import PROGRAM_ID, Pubkey
from ..consts import META_FLAG_SIGNER, META_FLAG_WRITABLE, U16_MAX
from ..errors import ErrorKind, ProgramError
from ..instruction import SYSTEM_PROGRAM_ID, Instruction

#: Stack height of a top-level instruction; any nested invocation is higher.
TRANSACTION_LEVEL_STACK_HEIGHT: int = 1

#: Bytes of per-account overhead charged by rent.
ACCOUNT_STORAGE_OVERHEAD: int = 128

#: Largest account data size the runtime permits.
MAX_PERMITTED_DATA_LENGTH: int = 10 * 1024 * 1024


@dataclass
class Account:
    """Stored state of one account."""

    lamports: int = 0
    data: bytearray = field(default_factory=bytearray)
    owner: Pubkey = SYSTEM_PROGRAM_ID
    executable: bool = False

    def __post_init__(self) -> None:
        self.data = bytearray(self.data)


@dataclass
class AccountView:
    """An account as seen by an executing instruction.

    Two views of the same ``Account`` see each other's writes.
    """

    address: Pubkey
    account: Account
    is_signer: bool = False
    is_writable: bool = False

    @property
    def lamports(self) -> int:
        return self.account.lamports

    @lamports.setter
    def lamports(self, value: int) -> None:
        if value < 0:
            raise ValueError("lamports cannot be negative")
        self.account.lamports = value

    @property
    def data(self) -> bytearray:
        return self.account.data

    @property
    def owner(self) -> Pubkey:
        return self.account.owner

    def owned_by(self, owner: Pubkey) -> bool:
        return self.account.owner == owner


@dataclass(frozen=True)
class Rent:
    """Rent parameters."""

    lamports_per_byte_year: int = 3480
    exemption_threshold: float = 2.0
    burn_percent: int = 50

    def minimum_balance(self, data_len: int) -> int:
        """Lamports an account of ``data_len`` bytes needs to be rent exempt."""
        if data_len < 0 or data_len > MAX_PERMITTED_DATA_LENGTH:
            raise ProgramError(ErrorKind.INVALID_ARGUMENT)
        bytes_charged = ACCOUNT_STORAGE_OVERHEAD + data_len
        return int(bytes_charged * self.lamports_per_byte_year * self.exemption_threshold)


@dataclass
class ExecutionContext:
    """Clock slot, stack height and rent visible to the executing program."""

    slot: int = 0
    stack_height: int = TRANSACTION_LEVEL_STACK_HEIGHT
    rent: Rent = field(default_factory=Rent)
    program_id: Pubkey = PROGRAM_ID


def system_transfer(source: AccountView, destination: AccountView, lamports: int) -> None:
    """Move lamports between accounts; the source must have signed."""
    if lamports < 0:
        raise ProgramError(ErrorKind.INVALID_ARGUMENT)
    if not source.is_signer:
        raise ProgramError(ErrorKind.MISSING_REQUIRED_SIGNATURE)
    if source.data:
        raise ProgramError(ErrorKind.INVALID_ARGUMENT)
    if source.lamports < lamports:
        raise ProgramError(ErrorKind.INSUFFICIENT_FUNDS)
    source.lamports -= lamports
    destination.lamports += lamports


def system_allocate(account: AccountView, space: int) -> None:
    """Give an empty system-owned account ``space`` zeroed bytes.

    The account must have signed, directly or through program-derived seeds.
    """
    if not account.is_signer:
        raise ProgramError(ErrorKind.MISSING_REQUIRED_SIGNATURE)
    if account.data or not account.owned_by(SYSTEM_PROGRAM_ID):
        raise ProgramError(ErrorKind.ACCOUNT_ALREADY_INITIALIZED)
    if space < 0 or space > MAX_PERMITTED_DATA_LENGTH:
        raise ProgramError(ErrorKind.INVALID_ARGUMENT)
    account.account.data = bytearray(space)


def system_assign(account: AccountView, owner: Pubkey) -> None:
    """Hand ownership of a signed account to ``owner``."""
    if account.owned_by(owner):
        return
    if not account.is_signer:
        raise ProgramError(ErrorKind.MISSING_REQUIRED_SIGNATURE)
    account.account.owner = owner


def _u16(value: int) -> bytes:
    if not 0 <= value <= U16_MAX:
        raise ValueError("value does not fit the instructions sysvar layout")
    return struct.pack("<H", value)


def _region(instruction: Instruction) -> bytes:
    metas = b"".join(
        bytes(
            [
                (META_FLAG_SIGNER if meta.is_signer else 0)
                | (META_FLAG_WRITABLE if meta.is_writable else 0)
            ]
        )
        + meta.pubkey.to_bytes()
        for meta in instruction.accounts
    )
    return (
        _u16(len(instruction.accounts))
        + metas
        + instruction.program_id.to_bytes()
        + _u16(len(instruction.data))
        + instruction.data
    )


def serialize_instructions_sysvar(
    instructions: Iterable[Instruction], current_index: int
) -> bytes:
    """Encode a transaction's instructions as the instructions sysvar holds them.

    Layout: instruction count, one absolute offset per instruction, each
    instruction's region, then the index of the executing instruction.
    """
    regions = [_region(instruction) for instruction in instructions]
    header_len = 2 + 2 * len(regions)
    offsets = accumulate((len(region) for region in regions[:-1]), initial=header_len)
    out = bytearray(_u16(len(regions)))
    if regions:
        out += b"".join(_u16(offset) for offset in offsets)
    out += b"".join(regions)
    out += _u16(current_index)
    return bytes(out)