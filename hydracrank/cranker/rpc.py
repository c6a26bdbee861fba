"""Minimal blocking JSON-RPC client for the calls the cranker makes."""

from __future__ import annotations

import base64
import itertools
from dataclasses import dataclass
from typing import Any

import requests

from ..address import Pubkey, b58decode

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


class RpcError(Exception):
    """A failed RPC call: transport error, bad response or JSON-RPC error."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class SignatureStatus:
    """Status of an observed transaction; ``err`` is ``None`` on success."""

    err: Any = None
    confirmation_status: str | None = None

    @property
    def ok(self) -> bool:
        return self.err is None


class RpcClient:
    """JSON-RPC over HTTP at a fixed commitment level."""

    TIMEOUT = 30.0

    def __init__(self, url: str, commitment: str = "finalized") -> None:
        if commitment not in _COMMITMENT_RANK:
            raise ValueError(f"unknown commitment {commitment!r}")
        self.url = url
        self.commitment = commitment
        self._session = requests.Session()
        self._ids = itertools.count(1)

    def _call(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self._session.post(self.url, json=payload, timeout=self.TIMEOUT)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as err:
            raise RpcError(f"{method}: {err}") from err
        except ValueError as err:
            raise RpcError(f"{method}: invalid JSON response") from err
        if not isinstance(body, dict):
            raise RpcError(f"{method}: malformed response")
        if "error" in body:
            error = body["error"] or {}
            raise RpcError(f"{method}: {error.get('message', error)}", code=error.get("code"))
        if "result" not in body:
            raise RpcError(f"{method}: response has no result")
        return body["result"]

    def get_latest_blockhash(self) -> bytes:
        """The latest blockhash as 32 bytes."""
        result = self._call("getLatestBlockhash", [{"commitment": self.commitment}])
        try:
            return b58decode(result["value"]["blockhash"])
        except (KeyError, TypeError, ValueError) as err:
            raise RpcError("getLatestBlockhash: malformed result") from err

    def send_transaction(
        self,
        wire: bytes,
        skip_preflight: bool = False,
        max_retries: int | None = None,
        preflight_commitment: str | None = None,
    ) -> str:
        """Submit a signed transaction; returns its base58 signature."""
        config: dict[str, Any] = {
            "encoding": "base64",
            "skipPreflight": skip_preflight,
            "preflightCommitment": preflight_commitment or self.commitment,
        }
        if max_retries is not None:
            config["maxRetries"] = max_retries
        encoded = base64.b64encode(bytes(wire)).decode()
        result = self._call("sendTransaction", [encoded, config])
        if not isinstance(result, str):
            raise RpcError("sendTransaction: malformed result")
        return result

    def get_signature_status(self, signature: str) -> SignatureStatus | None:
        """The status at this client's commitment, or ``None`` if not yet observed."""
        result = self._call("getSignatureStatuses", [[signature]])
        try:
            value = result["value"][0]
        except (KeyError, IndexError, TypeError) as err:
            raise RpcError("getSignatureStatuses: malformed result") from err
        if value is None:
            return None
        status = value.get("confirmationStatus")
        if status in _COMMITMENT_RANK and (
            _COMMITMENT_RANK[status] < _COMMITMENT_RANK[self.commitment]
        ):
            return None
        return SignatureStatus(err=value.get("err"), confirmation_status=status)

    def get_program_accounts(self, program_id: Pubkey) -> list[tuple[Pubkey, int, bytes]]:
        """Every account owned by ``program_id`` as ``(pubkey, lamports, data)``."""
        config = {"encoding": "base64", "commitment": self.commitment}
        result = self._call("getProgramAccounts", [str(program_id), config])
        try:
            return [
                (
                    Pubkey.from_string(item["pubkey"]),
                    int(item["account"]["lamports"]),
                    base64.b64decode(item["account"]["data"][0]),
                )
                for item in result
            ]
        except (KeyError, IndexError, TypeError, ValueError) as err:
            raise RpcError("getProgramAccounts: malformed result") from err