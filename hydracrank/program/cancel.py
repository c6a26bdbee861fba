"""``Cancel``: authority-gated close of a crank with a full refund."""

from __future__ import annotations

from typing import Sequence

from ..consts import U64_MAX
from ..errors import ErrorKind, HydraError, ProgramError
from ..state import Crank
from .runtime import AccountView, ExecutionContext


def process(
    accounts: Sequence[AccountView], data: bytes, context: ExecutionContext
) -> None:
    """Drain the crank into the recipient if the signer is its authority.

    Accounts: ``[authority(s), crank(w), recipient(w)]``.
    """
    try:
        authority, crank_view, recipient = accounts
    except ValueError:
        raise ProgramError(ErrorKind.NOT_ENOUGH_ACCOUNT_KEYS) from None

    if not authority.is_signer:
        raise ProgramError(ErrorKind.MISSING_REQUIRED_SIGNATURE)
    if not crank_view.owned_by(context.program_id):
        raise ProgramError(ErrorKind.INVALID_ACCOUNT_OWNER)

    stored_authority = Crank.from_bytes(crank_view.data).authority
    # An all-zero authority means nobody may cancel.
    if stored_authority == bytes(32):
        raise HydraError.UNAUTHORIZED_AUTHORITY.to_error()
    if authority.address.to_bytes() != stored_authority:
        raise HydraError.UNAUTHORIZED_AUTHORITY.to_error()

    drain_lamports(crank_view, recipient)


def drain_lamports(source: AccountView, destination: AccountView) -> None:
    """Move every lamport from ``source`` to ``destination``."""
    amount = source.lamports
    new_destination = destination.lamports + amount
    if new_destination > U64_MAX:
        raise ProgramError(ErrorKind.ARITHMETIC_OVERFLOW)
    source.lamports = 0
    destination.lamports = new_destination