"""Base58 public keys, curve checks and program-derived addresses."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterable

from .errors import ErrorKind, ProgramError

_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_INDEX = {char: value for value, char in enumerate(_ALPHABET)}

PUBKEY_BYTES = 32
MAX_SEEDS = 16
MAX_SEED_LEN = 32
_PDA_MARKER = b"ProgramDerivedAddress"

# Edwards25519 field parameters.
_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


def b58encode(data: bytes) -> str:
    """Encode bytes as base58 text, keeping leading zero bytes as ``1``."""
    data = bytes(data)
    stripped = data.lstrip(b"\x00")
    zeros = len(data) - len(stripped)
    number = int.from_bytes(stripped, "big")
    digits = []
    while number:
        number, rem = divmod(number, 58)
        digits.append(_ALPHABET[rem])
    return "1" * zeros + "".join(reversed(digits))


def b58decode(text: str) -> bytes:
    """Decode base58 text; raises ``ValueError`` on a character outside the alphabet."""
    number = 0
    for char in text:
        try:
            number = number * 58 + _INDEX[char]
        except KeyError:
            raise ValueError(f"invalid base58 character {char!r}") from None
    zeros = len(text) - len(text.lstrip("1"))
    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    return b"\x00" * zeros + body


@dataclass(frozen=True)
class Pubkey:
    """A 32-byte account address."""

    raw: bytes

    def __post_init__(self) -> None:
        raw = bytes(self.raw)
        if len(raw) != PUBKEY_BYTES:
            raise ValueError(f"pubkey must be {PUBKEY_BYTES} bytes, got {len(raw)}")
        object.__setattr__(self, "raw", raw)

    @classmethod
    def from_string(cls, text: str) -> Pubkey:
        """Parse a base58-encoded address."""
        return cls(b58decode(text))

    def to_bytes(self) -> bytes:
        return self.raw

    def __bytes__(self) -> bytes:
        return self.raw

    def __str__(self) -> str:
        return b58encode(self.raw)

    def __repr__(self) -> str:
        return f"Pubkey({self})"


def is_on_curve(data: bytes) -> bool:
    """Whether 32 bytes decompress to a point on the Edwards25519 curve."""
    data = bytes(data)
    if len(data) != PUBKEY_BYTES:
        return False
    y = (int.from_bytes(data, "little") & ((1 << 255) - 1)) % _P
    y2 = y * y % _P
    u = (y2 - 1) % _P
    v = (_D * y2 + 1) % _P
    x2 = u * pow(v, _P - 2, _P) % _P
    return x2 == 0 or pow(x2, (_P - 1) // 2, _P) == 1


def _as_bytes(key: Pubkey | bytes) -> bytes:
    return key.to_bytes() if isinstance(key, Pubkey) else bytes(key)


def create_program_address(seeds: Iterable[bytes], program_id: Pubkey | bytes) -> Pubkey:
    """Derive an off-curve address from seeds; raises if the hash lands on the curve."""
    seeds = [bytes(seed) for seed in seeds]
    if len(seeds) > MAX_SEEDS or any(len(seed) > MAX_SEED_LEN for seed in seeds):
        raise ProgramError(ErrorKind.MAX_SEED_LENGTH_EXCEEDED)
    hasher = hashlib.sha256()
    for seed in seeds:
        hasher.update(seed)
    hasher.update(_as_bytes(program_id))
    hasher.update(_PDA_MARKER)
    digest = hasher.digest()
    if is_on_curve(digest):
        raise ProgramError(ErrorKind.INVALID_SEEDS)
    return Pubkey(digest)


def find_program_address(
    seeds: Iterable[bytes], program_id: Pubkey | bytes
) -> tuple[Pubkey, int]:
    """Find the address for the highest bump seed that yields an off-curve point."""
    seeds = [bytes(seed) for seed in seeds]
    for bump in range(255, -1, -1):
        try:
            return create_program_address([*seeds, bytes([bump])], program_id), bump
        except ProgramError as err:
            if err.kind is not ErrorKind.INVALID_SEEDS:
                raise
    raise ProgramError(ErrorKind.INVALID_SEEDS)


#: Address of the crank program.
PROGRAM_ID = Pubkey.from_string("Hydra17i1feui9deaxu6d1TzSQMRNHeBRkDR1Awy7zea")