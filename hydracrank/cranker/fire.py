"""Build and submit trigger and close transactions."""

from __future__ import annotations

import struct
import time

from ..address import Pubkey
from ..instruction import Instruction, close, scheduled_ix_from_crank, trigger
from .cache import CrankEntry
from .metrics import metrics
from .rpc import RpcClient, RpcError
from .transaction import Keypair, sign_transaction

#: How long to wait for a ``skip_preflight`` transaction to be observed.
SKIP_PREFLIGHT_CONFIRM_TIMEOUT = 15.0
SKIP_PREFLIGHT_POLL_INTERVAL = 0.4

COMPUTE_BUDGET_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")

_MAX_RETRIES = 5
_PREFLIGHT_COMMITMENT = "processed"


class FireError(Exception):
    """A trigger or close transaction could not be built, sent or confirmed."""


def _count_rpc_error(op: str) -> None:
    metrics().rpc_errors_total.labels(op).inc()


def set_compute_unit_price(micro_lamports_per_cu: int) -> Instruction:
    """``SetComputeUnitPrice``: discriminator 3, then the price as u64 LE."""
    return Instruction(COMPUTE_BUDGET_ID, [], bytes([3]) + struct.pack("<Q", micro_lamports_per_cu))


def set_compute_unit_limit(units: int) -> Instruction:
    """``SetComputeUnitLimit``: discriminator 2, then the limit as u32 LE."""
    return Instruction(COMPUTE_BUDGET_ID, [], bytes([2]) + struct.pack("<I", units))


def trigger_instructions(
    entry: CrankEntry, cranker_pubkey: Pubkey, priority_fee_micro_lamports: int
) -> list[Instruction]:
    """Compute-budget instructions, then ``Trigger``, then the scheduled instruction."""
    scheduled = scheduled_ix_from_crank(entry.data)
    if scheduled is None:
        raise FireError(f"malformed crank tail for {entry.pubkey}")
    instructions = []
    if entry.cu_limit > 0:
        instructions.append(set_compute_unit_limit(entry.cu_limit))
    if priority_fee_micro_lamports > 0:
        instructions.append(set_compute_unit_price(priority_fee_micro_lamports))
    # The scheduled instruction must sit right after Trigger.
    instructions += [trigger(entry.pubkey, cranker_pubkey), scheduled]
    return instructions


def close_instructions(
    entry: CrankEntry, cranker_pubkey: Pubkey, priority_fee_micro_lamports: int
) -> list[Instruction]:
    """An optional price instruction, then ``Close`` refunding the authority or the cranker."""
    recipient = cranker_pubkey if entry.authority == bytes(32) else Pubkey(entry.authority)
    instructions = []
    if priority_fee_micro_lamports > 0:
        instructions.append(set_compute_unit_price(priority_fee_micro_lamports))
    instructions.append(close(cranker_pubkey, entry.pubkey, recipient))
    return instructions


def _latest_blockhash(rpc: RpcClient) -> bytes:
    try:
        return rpc.get_latest_blockhash()
    except RpcError as err:
        _count_rpc_error("get_latest_blockhash")
        raise FireError(f"latest_blockhash: {err}") from err


def _send(rpc: RpcClient, wire: bytes, skip_preflight: bool) -> str:
    try:
        return rpc.send_transaction(
            wire,
            skip_preflight=skip_preflight,
            max_retries=_MAX_RETRIES,
            preflight_commitment=_PREFLIGHT_COMMITMENT,
        )
    except RpcError as err:
        _count_rpc_error("send_transaction")
        raise FireError(f"send_transaction: {err}") from err


def fire_trigger(
    rpc: RpcClient,
    cranker: Keypair,
    entry: CrankEntry,
    priority_fee_micro_lamports: int,
    skip_preflight: bool,
) -> str:
    """Send a trigger transaction for ``entry``; returns its signature.

    With ``skip_preflight`` the signature is polled so that on-chain reverts
    and dropped transactions raise like preflight failures.
    """
    instructions = trigger_instructions(entry, cranker.pubkey(), priority_fee_micro_lamports)
    blockhash = _latest_blockhash(rpc)
    wire = sign_transaction(instructions, cranker, blockhash)
    signature = _send(rpc, wire, skip_preflight)
    if skip_preflight:
        confirm_or_fail(rpc, signature)
    return signature


def confirm_or_fail(
    rpc: RpcClient,
    signature: str,
    timeout: float = SKIP_PREFLIGHT_CONFIRM_TIMEOUT,
    poll_interval: float = SKIP_PREFLIGHT_POLL_INTERVAL,
) -> None:
    """Poll until ``signature`` lands; raise if it reverted or never shows up."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            status = rpc.get_signature_status(signature)
        except RpcError as err:
            _count_rpc_error("get_signature_status")
            raise FireError(f"get_signature_status: {err}") from err
        if status is not None:
            if status.err is not None:
                _count_rpc_error("on_chain_err")
                raise FireError(f"tx {signature} reverted on-chain: {status.err!r}")
            return
        if time.monotonic() >= deadline:
            raise FireError(f"tx {signature} not observed within {timeout}s")
        time.sleep(poll_interval)


def fire_close(
    rpc: RpcClient,
    cranker: Keypair,
    entry: CrankEntry,
    priority_fee_micro_lamports: int,
) -> str:
    """Send a permissionless ``Close`` for ``entry``; returns its signature."""
    instructions = close_instructions(entry, cranker.pubkey(), priority_fee_micro_lamports)
    blockhash = _latest_blockhash(rpc)
    wire = sign_transaction(instructions, cranker, blockhash)
    return _send(rpc, wire, False)