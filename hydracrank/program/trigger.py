"""``Trigger``: pay the cranker and advance a crank bound to its follow-up instruction.

The transaction must carry, right after ``Trigger``, an instruction whose
instructions-sysvar region matches the crank's stored tail byte for byte.
"""

from __future__ import annotations

import struct
from dataclasses import replace
from typing import Sequence

from ..consts import CRANK_HEADER_SIZE, CRANKER_REWARD, REMAINING_INFINITE, U64_MAX
from ..errors import ErrorKind, HydraError, ProgramError
from ..instruction import INSTRUCTIONS_SYSVAR_ID
from ..state import Crank
from .runtime import TRANSACTION_LEVEL_STACK_HEIGHT, AccountView, ExecutionContext

_U16 = struct.Struct("<H")


def _checked_add(left: int, right: int) -> int:
    total = left + right
    if total > U64_MAX:
        raise ProgramError(ErrorKind.ARITHMETIC_OVERFLOW)
    return total


def process(
    accounts: Sequence[AccountView], data: bytes, context: ExecutionContext
) -> None:
    """Pay the reward to the cranker and advance the crank's schedule.

    Accounts: ``[crank(w), cranker(w, s), instructions_sysvar]``.
    """
    try:
        crank_view, cranker, ix_sysvar = accounts
    except ValueError:
        raise ProgramError(ErrorKind.NOT_ENOUGH_ACCOUNT_KEYS) from None

    if not cranker.is_signer:
        raise ProgramError(ErrorKind.MISSING_REQUIRED_SIGNATURE)
    if not crank_view.owned_by(context.program_id):
        raise ProgramError(ErrorKind.INVALID_ACCOUNT_OWNER)
    if ix_sysvar.address != INSTRUCTIONS_SYSVAR_ID:
        raise ProgramError(ErrorKind.UNSUPPORTED_SYSVAR)

    # Only at top level does "current index + 1" name a sibling instruction.
    if context.stack_height != TRANSACTION_LEVEL_STACK_HEIGHT:
        raise HydraError.INVALID_INSTRUCTION.to_error()

    if len(crank_view.data) < CRANK_HEADER_SIZE:
        raise ProgramError(ErrorKind.ACCOUNT_DATA_TOO_SMALL)

    current_slot = context.slot
    header = Crank.from_bytes(crank_view.data)

    if current_slot < header.next_exec_slot:
        raise HydraError.NOT_YET_EXECUTABLE.to_error()
    if header.remaining == 0:
        raise HydraError.EXHAUSTED.to_error()

    reward = _checked_add(CRANKER_REWARD, header.priority_tip)
    new_crank_lamports = crank_view.lamports - reward
    if new_crank_lamports < 0 or new_crank_lamports < header.rent_min:
        raise HydraError.INSUFFICIENT_FUNDS.to_error()

    verify_followup(ix_sysvar, crank_view, header.region_len)

    new_cranker_lamports = _checked_add(cranker.lamports, reward)
    next_slot = _checked_add(header.next_exec_slot, header.interval_slots)
    executed = _checked_add(header.executed, 1)
    remaining = (
        header.remaining
        if header.remaining == REMAINING_INFINITE
        else header.remaining - 1
    )

    crank_view.lamports = new_crank_lamports
    cranker.lamports = new_cranker_lamports
    updated = replace(
        header, next_exec_slot=next_slot, executed=executed, remaining=remaining
    )
    crank_view.data[:CRANK_HEADER_SIZE] = updated.to_bytes()


def verify_followup(sysvar: AccountView, crank: AccountView, region_len: int) -> None:
    """Check that the instruction after the current one matches the crank's tail."""
    sv = bytes(sysvar.data)
    cr = bytes(crank.data)

    if len(sv) < 4:
        raise ProgramError(ErrorKind.INVALID_ACCOUNT_DATA)

    (current,) = _U16.unpack_from(sv, len(sv) - 2)
    target = current + 1

    (num_instructions,) = _U16.unpack_from(sv, 0)
    if target >= num_instructions:
        raise HydraError.MISSING_FOLLOWUP_INSTRUCTION.to_error()

    offset_pos = 2 + 2 * target
    if offset_pos + 2 > len(sv):
        raise ProgramError(ErrorKind.INVALID_ACCOUNT_DATA)
    (region_start,) = _U16.unpack_from(sv, offset_pos)
    region_end = region_start + region_len
    if region_end > max(0, len(sv) - 2):
        raise HydraError.MISMATCHED_FOLLOWUP_IX.to_error()

    tail_end = CRANK_HEADER_SIZE + region_len
    if tail_end > len(cr):
        raise ProgramError(ErrorKind.INVALID_ACCOUNT_DATA)

    if sv[region_start:region_end] != cr[CRANK_HEADER_SIZE:tail_end]:
        raise HydraError.MISMATCHED_FOLLOWUP_IX.to_error()