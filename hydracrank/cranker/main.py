"""Event-driven crank runner: triggers cranks that are due and closes dead ones."""

from __future__ import annotations

import argparse
import itertools
import json
import logging
import os
import queue
import signal
import threading
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Callable, Sequence

from ..address import Pubkey
from ..consts import U32_MAX, U64_MAX
from ..instruction import program_id
from . import fire
from .cache import CrankCache, CrankEntry
from .metrics import metrics, spawn_server
from .rpc import RpcClient, RpcError
from .transaction import Keypair
from .watch import bootstrap, spawn_program_watcher, spawn_slot_watcher

logger = logging.getLogger(__name__)

#: Consecutive failures at one ``next_exec_slot`` before a crank is parked.
MAX_CONSECUTIVE_FAILURES = 10

#: Slots to skip a crank after a successful submit, covering the window in
#: which both the cache and the node's preflight bank are still stale.
POST_SUBMIT_COOLDOWN_SLOTS = 3

#: Slots between ``Close`` attempts on the same crank after a failure.
CLOSE_RETRY_COOLDOWN_SLOTS = 10

DEFAULT_RPC_URL = "http://127.0.0.1:8899"

_SLOT_WAIT = 0.5


def retry_backoff_slots(count: int) -> int:
    """Slots to wait after ``count`` consecutive failures: 1, 1, then doubling, capped."""
    if count <= 2:
        return 1
    return 1 << min(count - 2, 10)


def default_ws_url(rpc_url: str) -> str:
    """Derive the WebSocket URL from the RPC URL (``http``→``ws``, ``https``→``wss``)."""
    if rpc_url.startswith("https://"):
        return "wss://" + rpc_url[len("https://"):]
    if rpc_url.startswith("http://"):
        return "ws://" + rpc_url[len("http://"):]
    # Unknown scheme: let the WebSocket client reject it.
    return rpc_url


def _keypair_from_json(text: str) -> Keypair:
    values = json.loads(text)
    if not isinstance(values, list):
        raise ValueError("keypair JSON must be an array of bytes")
    try:
        raw = bytes(values)
    except TypeError as err:
        raise ValueError("keypair JSON must hold integers") from err
    return Keypair.from_secret_bytes(raw)


def _path_exists(text: str) -> bool:
    if not text:
        return False
    try:
        return Path(text).exists()
    except (OSError, ValueError):
        return False


def load_keypair(text: str) -> Keypair:
    """Load a keypair from a file path, a JSON byte array or a base58 string."""
    if _path_exists(text):
        try:
            return _keypair_from_json(Path(text).read_text())
        except (OSError, ValueError) as err:
            raise ValueError(f"load keypair file {text}: {err}") from err
    try:
        return _keypair_from_json(text)
    except ValueError:
        pass
    try:
        return Keypair.from_base58(text)
    except (ValueError, KeyError):
        pass
    raise ValueError(
        "invalid keypair input: expected an existing file path, a JSON array with "
        "64 bytes, or a base58-encoded keypair"
    )


@dataclass
class FailureState:
    """Consecutive trigger failures anchored to one observed ``next_exec_slot``."""

    count: int
    at_slot: int
    next_retry_slot: int


class Sweeper:
    """Per-slot scan of the cache that fires triggers and closes with backoff.

    ``fire_trigger`` and ``fire_close`` take a ``CrankEntry`` and raise on
    failure.
    """

    def __init__(
        self,
        fire_trigger: Callable[[CrankEntry], object],
        fire_close: Callable[[CrankEntry], object],
    ) -> None:
        self._fire_trigger = fire_trigger
        self._fire_close = fire_close
        self.failures: dict[Pubkey, FailureState] = {}
        self.last_submit: dict[Pubkey, int] = {}
        self.last_close_attempt: dict[Pubkey, int] = {}

    def sweep(self, slot: int, cache: CrankCache) -> None:
        """Handle one slot tick."""
        registry = metrics()
        registry.current_slot.set(slot)
        with registry.sweep_duration_seconds.time():
            eligible, closable = self._scan(slot, cache)
            registry.eligible_now.set(len(eligible))
            for entry in eligible:
                self._trigger(slot, entry)
            for entry in closable:
                self._close(slot, entry)

    def _scan(self, slot: int, cache: CrankCache) -> tuple[list[CrankEntry], list[CrankEntry]]:
        entries = cache.snapshot()
        eligible, closable = [], []
        for entry in entries.values():
            # Close wins: a stuck crank should be cleaned up, not re-fired.
            if entry.is_closable(slot):
                closable.append(entry)
            elif entry.is_eligible(slot):
                eligible.append(entry)
        for table in (self.failures, self.last_submit, self.last_close_attempt):
            for pubkey in [pubkey for pubkey in table if pubkey not in entries]:
                del table[pubkey]
        return eligible, closable

    def _trigger(self, slot: int, entry: CrankEntry) -> None:
        pubkey = entry.pubkey
        submitted = self.last_submit.get(pubkey)
        if submitted is not None and slot < submitted + POST_SUBMIT_COOLDOWN_SLOTS:
            return
        # A record for an older next_exec_slot is stale and does not block.
        state = self.failures.get(pubkey)
        if state is not None and state.at_slot == entry.next_exec_slot:
            if state.count >= MAX_CONSECUTIVE_FAILURES or slot < state.next_retry_slot:
                return
        try:
            self._fire_trigger(entry)
        except Exception as err:
            logger.debug("slot %d: trigger %s dropped: %s", slot, pubkey, err)
            metrics().triggers_submitted_total.labels("err").inc()
            self._record_failure(slot, entry, err)
            return
        logger.info("slot %d: triggered %s", slot, pubkey)
        metrics().triggers_submitted_total.labels("ok").inc()
        # The failure record clears only once the cache shows the crank advanced.
        self.last_submit[pubkey] = slot

    def _record_failure(self, slot: int, entry: CrankEntry, err: Exception) -> None:
        state = self.failures.setdefault(
            entry.pubkey, FailureState(count=0, at_slot=entry.next_exec_slot, next_retry_slot=0)
        )
        if state.at_slot != entry.next_exec_slot:
            self.failures[entry.pubkey] = FailureState(
                count=1,
                at_slot=entry.next_exec_slot,
                next_retry_slot=slot + retry_backoff_slots(1),
            )
            return
        state.count = min(state.count + 1, U32_MAX)
        state.next_retry_slot = slot + retry_backoff_slots(state.count)
        if state.count == MAX_CONSECUTIVE_FAILURES:
            logger.warning(
                "parking crank %s after %d consecutive failures at slot %d: %s",
                entry.pubkey,
                state.count,
                entry.next_exec_slot,
                err,
            )

    def _close(self, slot: int, entry: CrankEntry) -> None:
        pubkey = entry.pubkey
        attempted = self.last_close_attempt.get(pubkey)
        if attempted is not None and slot < attempted + CLOSE_RETRY_COOLDOWN_SLOTS:
            return
        try:
            self._fire_close(entry)
        except Exception as err:
            logger.debug("slot %d: close %s dropped: %s", slot, pubkey, err)
            metrics().closes_submitted_total.labels("err").inc()
            self.last_close_attempt[pubkey] = slot
            return
        logger.info("slot %d: closed %s", slot, pubkey)
        metrics().closes_submitted_total.labels("ok").inc()


def _bounded_int(limit: int, name: str) -> Callable[[str], int]:
    def parse(text: str) -> int:
        try:
            value = int(text)
        except (TypeError, ValueError):
            raise argparse.ArgumentTypeError(f"invalid {name}: {text!r}") from None
        if not 0 <= value <= limit:
            raise argparse.ArgumentTypeError(f"{name} out of range: {value}")
        return value

    return parse


def _env_flag(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse the command line, taking defaults from ``HYDRA_CRANKER_*`` variables."""
    env = os.environ
    parser = argparse.ArgumentParser(
        prog="hydra-cranker", description="Permissionless Hydra crank runner"
    )
    parser.add_argument(
        "--rpc-url",
        default=env.get("HYDRA_CRANKER_RPC_URL", DEFAULT_RPC_URL),
        help="JSON-RPC endpoint",
    )
    parser.add_argument(
        "--ws-url",
        default=env.get("HYDRA_CRANKER_WS_URL"),
        help="WebSocket endpoint; derived from --rpc-url if omitted",
    )
    keypair = env.get("HYDRA_CRANKER_KEYPAIR")
    parser.add_argument(
        "--keypair",
        default=keypair,
        required=keypair is None,
        help="cranker keypair: file path, JSON byte array or base58 string",
    )
    parser.add_argument(
        "--prometheus-port",
        type=_bounded_int(0xFFFF, "port"),
        default=env.get("HYDRA_CRANKER_PROMETHEUS_PORT"),
        help="serve metrics at http://0.0.0.0:PORT/metrics",
    )
    parser.add_argument(
        "--priority-fee-micro-lamports",
        type=_bounded_int(U64_MAX, "priority fee"),
        default=env.get("HYDRA_CRANKER_PRIORITY_FEE_MICRO_LAMPORTS", "0"),
        help="compute-unit price attached to every trigger; 0 omits it",
    )
    parser.add_argument(
        "--trigger-skip-preflight",
        action="store_true",
        default=_env_flag(env.get("HYDRA_CRANKER_TRIGGER_SKIP_PREFLIGHT")),
        help="send triggers without preflight so failures land on-chain",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the cranker until interrupted; returns the exit status."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    args = parse_args(argv)
    try:
        cranker = load_keypair(args.keypair)
    except ValueError as err:
        logger.error("%s", err)
        return 1
    logger.info("cranker pubkey = %s", cranker.pubkey())

    # Bootstrap at the same commitment the program subscription uses.
    rpc = RpcClient(args.rpc_url, "processed")
    ws_url = args.ws_url or default_ws_url(args.rpc_url)
    logger.info("rpc = %s", args.rpc_url)
    logger.info("ws  = %s", ws_url)

    crank_program = program_id()
    cache = CrankCache()
    shutdown = threading.Event()

    if args.prometheus_port is not None:
        spawn_server(args.prometheus_port)

    try:
        count = bootstrap(rpc, crank_program, cache)
    except RpcError as err:
        logger.error("%s", err)
        return 1
    logger.info("bootstrap: %d crank(s) cached", count)

    slots: queue.Queue = queue.Queue()
    spawn_program_watcher(args.rpc_url, ws_url, crank_program, cache, shutdown)
    spawn_slot_watcher(ws_url, shutdown, slots)

    hits = itertools.count()

    def on_interrupt(signum: int, frame: object) -> None:
        if next(hits) == 0:
            logger.info("shutdown requested (Ctrl-C again to force-exit)")
            shutdown.set()
        else:
            logger.warning("force-exiting")
            os._exit(130)

    signal.signal(signal.SIGINT, on_interrupt)

    sweeper = Sweeper(
        partial(
            fire.fire_trigger,
            rpc,
            cranker,
            priority_fee_micro_lamports=args.priority_fee_micro_lamports,
            skip_preflight=args.trigger_skip_preflight,
        ),
        partial(
            fire.fire_close,
            rpc,
            cranker,
            priority_fee_micro_lamports=args.priority_fee_micro_lamports,
        ),
    )

    while not shutdown.is_set():
        try:
            slot = slots.get(timeout=_SLOT_WAIT)
        except queue.Empty:
            continue
        sweeper.sweep(slot, cache)

    shutdown.set()
    return 0