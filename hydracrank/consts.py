"""Constants, flag bits and bounds shared by the program and its clients."""

from enum import IntEnum

CRANK_SEED_PREFIX: bytes = b"crank"

BASE_FEE_LAMPORTS: int = 5_000
CRANKER_REWARD: int = 2 * BASE_FEE_LAMPORTS

MAX_ACCOUNTS: int = 32
MAX_DATA_LEN: int = 1024

U64_MAX: int = (1 << 64) - 1
U32_MAX: int = (1 << 32) - 1
U16_MAX: int = (1 << 16) - 1

# A wire-level ``remaining`` of 0 is stored as this: execute forever.
REMAINING_INFINITE: int = U64_MAX

CRANK_HEADER_SIZE: int = 120

# ``0`` means the cranker emits no SetComputeUnitLimit instruction.
MAX_COMPUTE_UNIT_LIMIT: int = 1_400_000

# About ten days of slots; past this a crank is stuck and anyone may close it.
STALENESS_THRESHOLD_SLOTS: int = 2_160_000

SERIALIZED_META_SIZE: int = 33

META_FLAG_SIGNER: int = 0b0000_0001
META_FLAG_WRITABLE: int = 0b0000_0010


class Ix(IntEnum):
    """One-byte instruction discriminators."""

    CREATE = 0
    TRIGGER = 1
    CANCEL = 2
    CLOSE = 3