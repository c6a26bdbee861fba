"""Ed25519 keypairs and legacy transaction message compilation and signing."""

from __future__ import annotations

import struct
from typing import Sequence

from nacl.signing import SigningKey

from ..address import Pubkey, b58decode
from ..instruction import Instruction

_SECRET_LEN = 64


class Keypair:
    """An Ed25519 keypair that signs transactions."""

    def __init__(self, signing_key: SigningKey) -> None:
        self._signing_key = signing_key

    @classmethod
    def from_secret_bytes(cls, data: bytes) -> Keypair:
        """Load 64 bytes: the 32-byte secret seed followed by the public key."""
        data = bytes(data)
        if len(data) != _SECRET_LEN:
            raise ValueError(f"keypair must be {_SECRET_LEN} bytes, got {len(data)}")
        signing_key = SigningKey(data[:32])
        if signing_key.verify_key.encode() != data[32:]:
            raise ValueError("keypair public key does not match its secret")
        return cls(signing_key)

    @classmethod
    def from_base58(cls, text: str) -> Keypair:
        """Load a base58-encoded 64-byte keypair."""
        return cls.from_secret_bytes(b58decode(text.strip()))

    def pubkey(self) -> Pubkey:
        return Pubkey(self._signing_key.verify_key.encode())

    def sign(self, message: bytes) -> bytes:
        """The 64-byte detached signature of ``message``."""
        return self._signing_key.sign(bytes(message)).signature

    def __repr__(self) -> str:
        return f"Keypair({self.pubkey()})"


def _shortvec(value: int) -> bytes:
    if not 0 <= value <= 0xFFFF:
        raise ValueError("compact length out of range")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _hash_bytes(blockhash: bytes | str) -> bytes:
    raw = b58decode(blockhash) if isinstance(blockhash, str) else bytes(blockhash)
    if len(raw) != 32:
        raise ValueError("blockhash must be 32 bytes")
    return raw


def compile_message(
    instructions: Sequence[Instruction], payer: Pubkey, blockhash: bytes | str
) -> bytes:
    """Serialize a legacy message with ``payer`` as fee payer.

    Keys are ordered payer first, then writable signers, readonly signers,
    writable non-signers and readonly non-signers, each group by address.
    """
    flags: dict[Pubkey, list[bool]] = {}
    for instruction in instructions:
        flags.setdefault(instruction.program_id, [False, False])
        for meta in instruction.accounts:
            entry = flags.setdefault(meta.pubkey, [False, False])
            entry[0] = entry[0] or meta.is_signer
            entry[1] = entry[1] or meta.is_writable
    flags.pop(payer, None)
    ordered = sorted(flags.items(), key=lambda item: item[0].to_bytes())

    def group(signer: bool, writable: bool) -> list[Pubkey]:
        return [key for key, (s, w) in ordered if s is signer and w is writable]

    readonly_signed = group(True, False)
    readonly_unsigned = group(False, False)
    keys = [payer, *group(True, True), *readonly_signed, *group(False, True), *readonly_unsigned]
    num_signers = 1 + len(group(True, True)) + len(readonly_signed)
    if len(keys) > 256:
        raise ValueError("too many accounts for one message")
    index = {key: position for position, key in enumerate(keys)}

    out = bytearray(struct.pack("<BBB", num_signers, len(readonly_signed), len(readonly_unsigned)))
    out += _shortvec(len(keys))
    out += b"".join(key.to_bytes() for key in keys)
    out += _hash_bytes(blockhash)
    out += _shortvec(len(instructions))
    for instruction in instructions:
        out.append(index[instruction.program_id])
        out += _shortvec(len(instruction.accounts))
        out += bytes(index[meta.pubkey] for meta in instruction.accounts)
        out += _shortvec(len(instruction.data))
        out += instruction.data
    return bytes(out)


def sign_transaction(
    instructions: Sequence[Instruction], keypair: Keypair, blockhash: bytes | str
) -> bytes:
    """Compile, sign with ``keypair`` as sole signer and fee payer, return wire bytes."""
    message = compile_message(instructions, keypair.pubkey(), blockhash)
    if message[0] != 1:
        raise ValueError("transaction needs signatures from keys other than the payer")
    return _shortvec(1) + keypair.sign(message) + message