"""Program entry point: dispatches on the one-byte instruction discriminator."""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from ..address import PROGRAM_ID, Pubkey
from ..consts import Ix
from ..errors import HydraError, ProgramError
from . import cancel, close, create, trigger
from .runtime import AccountView, ExecutionContext

logger = logging.getLogger(__name__)

#: Address the program is deployed at.
ID = PROGRAM_ID

_Processor = Callable[[Sequence[AccountView], bytes, ExecutionContext], None]

_PROCESSORS: dict[Ix, _Processor] = {
    Ix.CREATE: create.process,
    Ix.TRIGGER: trigger.process,
    Ix.CANCEL: cancel.process,
    Ix.CLOSE: close.process,
}


def process_instruction(
    program_id: Pubkey,
    accounts: Sequence[AccountView],
    instruction_data: bytes,
    context: ExecutionContext | None = None,
) -> None:
    """Run one instruction; ``program_id`` is accepted but not consulted.

    Raises ``ProgramError`` on failure, after logging its name.
    """
    if context is None:
        context = ExecutionContext()
    try:
        _dispatch(accounts, bytes(instruction_data), context)
    except ProgramError as err:
        logger.debug("%s", err.to_str())
        raise


def _dispatch(
    accounts: Sequence[AccountView], data: bytes, context: ExecutionContext
) -> None:
    if not data:
        raise HydraError.INVALID_INSTRUCTION.to_error()
    try:
        discriminator = Ix(data[0])
    except ValueError:
        raise HydraError.INVALID_INSTRUCTION.to_error() from None
    logger.debug("ix: %s", discriminator.name.capitalize())
    _PROCESSORS[discriminator](accounts, data[1:], context)