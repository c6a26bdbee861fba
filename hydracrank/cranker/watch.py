"""WebSocket subscriptions that keep the crank cache fresh and emit slot ticks.

Two long-running daemon threads:

* the program watcher subscribes to ``programSubscribe`` for the crank
  program and upserts or removes cache entries from each notification;
* the slot watcher subscribes to ``slotSubscribe`` and puts every slot
  number on a queue the sweep loop reads.

Both reconnect after a fixed delay. Before every program subscription the
cache is rebuilt with ``getProgramAccounts`` so it never silently drifts.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import queue
import threading
from typing import Any, Iterator, Mapping

import websocket

from ..address import Pubkey
from .cache import CacheOutcome, CrankCache
from .metrics import metrics
from .rpc import RpcClient, RpcError

logger = logging.getLogger(__name__)

#: Seconds to wait before reconnecting a failed subscription.
RECONNECT_DELAY = 5.0

#: Seconds a receive may block before the shutdown flag is checked again.
RECV_TIMEOUT = 10.0

_WATCH_ERRORS = (
    OSError,
    websocket.WebSocketException,
    ValueError,
    KeyError,
    TypeError,
)


def bootstrap(rpc: RpcClient, program_id: Pubkey, cache: CrankCache) -> int:
    """Rebuild ``cache`` from ``getProgramAccounts``; return the number of cranks."""
    try:
        accounts = rpc.get_program_accounts(program_id)
    except RpcError as err:
        metrics().rpc_errors_total.labels("get_program_accounts").inc()
        raise RpcError(f"getProgramAccounts bootstrap: {err}", code=err.code) from err
    count = cache.reset(accounts)
    metrics().cranks_cached.set(count)
    return count


def record_outcome(cache: CrankCache, pubkey: Pubkey, outcome: CacheOutcome) -> None:
    """Log a cache update, count it and refresh the cached-cranks gauge."""
    if outcome is not CacheOutcome.UNCHANGED:
        logger.debug("cache: %s %s", outcome.value, pubkey)
        metrics().cache_events_total.labels(outcome.value).inc()
    metrics().cranks_cached.set(len(cache))


def _decode_data(account: Mapping[str, Any]) -> bytes:
    data = account.get("data")
    try:
        if isinstance(data, (list, tuple)) and data:
            return base64.b64decode(data[0], validate=True)
        if isinstance(data, str):
            return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError, TypeError):
        pass
    return b""


def apply_account_notification(
    cache: CrankCache, notification: Mapping[str, Any]
) -> CacheOutcome | None:
    """Apply one ``programNotification`` result to the cache.

    Accepts either the keyed account itself or the result wrapping it under
    ``value``. Returns ``None`` when the notification names no valid address.
    """
    keyed = notification.get("value", notification)
    try:
        pubkey = Pubkey.from_string(keyed["pubkey"])
    except Exception as err:  # any malformed notification is skipped
        logger.warning("skip notification: bad pubkey %r: %s", keyed.get("pubkey"), err)
        return None
    account = keyed.get("account") or {}
    try:
        lamports = int(account.get("lamports", 0))
    except (TypeError, ValueError):
        lamports = 0
    outcome = cache.apply_update(pubkey, lamports, _decode_data(account))
    record_outcome(cache, pubkey, outcome)
    return outcome


def _stream(
    connection: Any,
    method: str,
    params: list,
    notification: str,
    shutdown: threading.Event,
) -> Iterator[Any]:
    """Subscribe on ``connection`` and yield each notification's result.

    Returns when ``shutdown`` is set; raises ``ConnectionError`` when the
    socket closes or the subscription is refused.
    """
    connection.send(json.dumps({"jsonrpc": "2.0", "id": 1, "method": method, "params": params}))
    while not shutdown.is_set():
        try:
            raw = connection.recv()
        except websocket.WebSocketTimeoutException:
            continue
        except websocket.WebSocketConnectionClosedException as err:
            raise ConnectionError(f"{method} channel disconnected") from err
        if not raw:
            raise ConnectionError(f"{method} channel disconnected")
        message = json.loads(raw)
        if "error" in message:
            raise ConnectionError(f"{method} failed: {message['error']}")
        if message.get("method") == notification:
            yield message["params"]["result"]


def _run_program_watch(
    ws_url: str, program_id: Pubkey, cache: CrankCache, shutdown: threading.Event
) -> None:
    params = [str(program_id), {"encoding": "base64", "commitment": "processed"}]
    connection = websocket.create_connection(ws_url, timeout=RECV_TIMEOUT)
    try:
        logger.info("programSubscribe connected")
        for result in _stream(
            connection, "programSubscribe", params, "programNotification", shutdown
        ):
            apply_account_notification(cache, result)
    finally:
        connection.close()


def spawn_program_watcher(
    rpc_url: str,
    ws_url: str,
    program_id: Pubkey,
    cache: CrankCache,
    shutdown: threading.Event,
) -> threading.Thread:
    """Start the program watcher thread; it runs until ``shutdown`` is set."""

    def run() -> None:
        while not shutdown.is_set():
            # A fresh client each attempt in case the previous one is wedged.
            rpc = RpcClient(rpc_url)
            try:
                bootstrap(rpc, program_id, cache)
            except RpcError as err:
                logger.warning("bootstrap failed: %s; retrying in 5s", err)
                shutdown.wait(RECONNECT_DELAY)
                continue
            metrics().ws_reconnects_total.labels("program").inc()
            try:
                _run_program_watch(ws_url, program_id, cache, shutdown)
            except _WATCH_ERRORS as err:
                logger.warning("programSubscribe loop ended: %s; reconnecting in 5s", err)
                shutdown.wait(RECONNECT_DELAY)

    thread = threading.Thread(target=run, name="program-watcher", daemon=True)
    thread.start()
    return thread


def _run_slot_watch(ws_url: str, shutdown: threading.Event, tick: queue.Queue) -> None:
    connection = websocket.create_connection(ws_url, timeout=RECV_TIMEOUT)
    try:
        logger.info("slotSubscribe connected")
        for result in _stream(connection, "slotSubscribe", [], "slotNotification", shutdown):
            tick.put(int(result["slot"]))
    finally:
        connection.close()


def spawn_slot_watcher(
    ws_url: str, shutdown: threading.Event, tick: queue.Queue
) -> threading.Thread:
    """Start the slot watcher thread; every new slot is put on ``tick``."""

    def run() -> None:
        while not shutdown.is_set():
            metrics().ws_reconnects_total.labels("slot").inc()
            try:
                _run_slot_watch(ws_url, shutdown, tick)
            except _WATCH_ERRORS as err:
                logger.warning("slotSubscribe loop ended: %s; reconnecting in 5s", err)
                shutdown.wait(RECONNECT_DELAY)

    thread = threading.Thread(target=run, name="slot-watcher", daemon=True)
    thread.start()
    return thread