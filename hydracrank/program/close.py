"""``Close``: permissionless cleanup of exhausted, underfunded or stuck cranks."""

from __future__ import annotations

from typing import Sequence

from ..consts import CRANKER_REWARD, STALENESS_THRESHOLD_SLOTS, U64_MAX
from ..errors import ErrorKind, HydraError, ProgramError
from ..state import Crank
from .runtime import AccountView, ExecutionContext


def _checked_add(left: int, right: int) -> int:
    total = left + right
    if total > U64_MAX:
        raise ProgramError(ErrorKind.ARITHMETIC_OVERFLOW)
    return total


def process(
    accounts: Sequence[AccountView], data: bytes, context: ExecutionContext
) -> None:
    """Close a crank, paying the reporter a bounty and refunding the rest.

    Accounts: ``[reporter(s, w), crank(w), recipient(w)]``.
    """
    try:
        reporter, crank_view, recipient = accounts
    except ValueError:
        raise ProgramError(ErrorKind.NOT_ENOUGH_ACCOUNT_KEYS) from None

    if not reporter.is_signer:
        raise ProgramError(ErrorKind.MISSING_REQUIRED_SIGNATURE)
    if not crank_view.owned_by(context.program_id):
        raise ProgramError(ErrorKind.INVALID_ACCOUNT_OWNER)

    state = Crank.from_bytes(crank_view.data)
    lamports_now = crank_view.lamports

    exhausted = state.remaining == 0
    next_reward = _checked_add(CRANKER_REWARD, state.priority_tip)
    underfunded = lamports_now < _checked_add(state.rent_min, next_reward)
    # Future-scheduled cranks are never stale.
    stuck = max(0, context.slot - state.next_exec_slot) > STALENESS_THRESHOLD_SLOTS

    if not (exhausted or underfunded or stuck):
        raise HydraError.NOT_CLOSABLE.to_error()

    # With an authority set, only the authority may receive the refund.
    if state.authority != bytes(32) and recipient.address.to_bytes() != state.authority:
        raise HydraError.UNAUTHORIZED_AUTHORITY.to_error()

    bounty = min(CRANKER_REWARD, lamports_now)
    refund = lamports_now - bounty

    crank_view.lamports = 0
    reporter.lamports = _checked_add(reporter.lamports, bounty)
    # Reads after the reporter write, so an aliased recipient keeps the sum.
    recipient.lamports = _checked_add(recipient.lamports, refund)