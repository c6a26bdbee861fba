"""``Create``: validate a schedule, fund and allocate the crank account, write it."""

from __future__ import annotations

import struct
from dataclasses import replace
from typing import Sequence

from ..address import find_program_address
from ..consts import (
    CRANK_HEADER_SIZE,
    CRANK_SEED_PREFIX,
    MAX_ACCOUNTS,
    MAX_COMPUTE_UNIT_LIMIT,
    MAX_DATA_LEN,
    META_FLAG_SIGNER,
    REMAINING_INFINITE,
    SERIALIZED_META_SIZE,
)
from ..errors import ErrorKind, HydraError, ProgramError
from ..instruction import CREATE_FIXED_PREFIX_LEN
from ..state import Crank, region_len_for
from .runtime import (
    AccountView,
    ExecutionContext,
    system_allocate,
    system_assign,
    system_transfer,
)

_PREFIX = struct.Struct("<32s32sQQQQIBH32s")
_U16 = struct.Struct("<H")


def process(
    accounts: Sequence[AccountView], data: bytes, context: ExecutionContext
) -> None:
    """Create a crank from ``Create`` instruction data (discriminator removed).

    Accounts: ``[payer(s, w), crank(w), system_program]``.
    """
    try:
        payer, crank_view, _system_program = accounts
    except ValueError:
        raise ProgramError(ErrorKind.NOT_ENOUGH_ACCOUNT_KEYS) from None

    data = bytes(data)
    if len(data) < CREATE_FIXED_PREFIX_LEN:
        raise ProgramError(ErrorKind.INVALID_INSTRUCTION_DATA)

    (
        seed,
        authority,
        start_slot,
        interval_slots,
        remaining_wire,
        priority_tip,
        cu_limit,
        num_accounts,
        data_len,
        scheduled_program,
    ) = _PREFIX.unpack_from(data)

    if num_accounts > MAX_ACCOUNTS or data_len > MAX_DATA_LEN:
        raise HydraError.INVALID_SCHEDULE.to_error()
    # 0 opts out; anything else must fit the per-transaction ceiling.
    if cu_limit > MAX_COMPUTE_UNIT_LIMIT:
        raise HydraError.INVALID_SCHEDULE.to_error()
    # A never-advancing infinite crank makes no sense.
    if remaining_wire == 0 and interval_slots == 0:
        raise HydraError.INVALID_SCHEDULE.to_error()

    authority_signer = int(payer.address.to_bytes() == authority)

    metas_offset = CREATE_FIXED_PREFIX_LEN
    data_offset = metas_offset + num_accounts * SERIALIZED_META_SIZE
    if len(data) != data_offset + data_len:
        raise ProgramError(ErrorKind.INVALID_INSTRUCTION_DATA)

    metas = data[metas_offset:data_offset]
    inner_data = data[data_offset:]

    # Scheduled instructions run top level; nothing can sign for them.
    if any(
        metas[offset] & META_FLAG_SIGNER
        for offset in range(0, len(metas), SERIALIZED_META_SIZE)
    ):
        raise HydraError.SIGNER_IN_SCHEDULED_IX.to_error()

    expected, bump = find_program_address([CRANK_SEED_PREFIX, seed], context.program_id)
    if crank_view.address != expected:
        raise ProgramError(ErrorKind.INVALID_SEEDS)

    region_len = region_len_for(num_accounts, data_len)
    total_size = CRANK_HEADER_SIZE + region_len
    rent_min = context.rent.minimum_balance(total_size)

    funding = max(0, rent_min - crank_view.lamports)
    if funding == 0 and not payer.is_signer:
        raise ProgramError(ErrorKind.MISSING_REQUIRED_SIGNATURE)
    if funding > 0:
        system_transfer(payer, crank_view, funding)

    # The program signs for its own PDA with the derivation seeds.
    pda_signed = replace(crank_view, is_signer=True, is_writable=True)
    system_allocate(pda_signed, total_size)
    system_assign(pda_signed, context.program_id)

    header = Crank(
        authority=authority,
        seed=seed,
        next_exec_slot=start_slot,
        interval_slots=interval_slots,
        remaining=REMAINING_INFINITE if remaining_wire == 0 else remaining_wire,
        priority_tip=priority_tip,
        executed=0,
        rent_min=rent_min,
        region_len=region_len,
        bump=bump,
        cu_limit=cu_limit,
        authority_signer=authority_signer,
    )
    tail = (
        _U16.pack(num_accounts)
        + metas
        + scheduled_program
        + _U16.pack(data_len)
        + inner_data
    )
    crank_view.data[:] = header.to_bytes() + tail