"""Program errors and the custom error codes the crank program reports."""

from __future__ import annotations

from enum import Enum, IntEnum


class ErrorKind(Enum):
    """Built-in program error categories; ``CUSTOM`` carries a numeric code."""

    CUSTOM = "Custom"
    INVALID_ARGUMENT = "InvalidArgument"
    INVALID_INSTRUCTION_DATA = "InvalidInstructionData"
    INVALID_ACCOUNT_DATA = "InvalidAccountData"
    ACCOUNT_DATA_TOO_SMALL = "AccountDataTooSmall"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    INCORRECT_PROGRAM_ID = "IncorrectProgramId"
    MISSING_REQUIRED_SIGNATURE = "MissingRequiredSignature"
    ACCOUNT_ALREADY_INITIALIZED = "AccountAlreadyInitialized"
    UNINITIALIZED_ACCOUNT = "UninitializedAccount"
    NOT_ENOUGH_ACCOUNT_KEYS = "NotEnoughAccountKeys"
    ACCOUNT_BORROW_FAILED = "AccountBorrowFailed"
    MAX_SEED_LENGTH_EXCEEDED = "MaxSeedLengthExceeded"
    INVALID_SEEDS = "InvalidSeeds"
    ARITHMETIC_OVERFLOW = "ArithmeticOverflow"
    UNSUPPORTED_SYSVAR = "UnsupportedSysvar"
    INVALID_ACCOUNT_OWNER = "InvalidAccountOwner"
    ILLEGAL_OWNER = "IllegalOwner"


class ProgramError(Exception):
    """An error raised by program logic; ``code`` is set for custom errors."""

    def __init__(self, kind: ErrorKind, code: int | None = None) -> None:
        if kind is ErrorKind.CUSTOM and code is None:
            raise ValueError("a custom program error needs a code")
        self.kind = kind
        self.code = code if kind is ErrorKind.CUSTOM else None
        super().__init__(self.to_str())

    @property
    def hydra_error(self) -> HydraError | None:
        """The matching ``HydraError`` for a known custom code, else ``None``."""
        if self.kind is not ErrorKind.CUSTOM:
            return None
        try:
            return HydraError.from_code(self.code)
        except ProgramError:
            return None

    def to_str(self) -> str:
        """Name of the error, resolving known custom codes to their names."""
        if self.kind is ErrorKind.CUSTOM:
            known = self.hydra_error
            return known.to_str() if known is not None else "Error: Unknown"
        return self.kind.value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProgramError):
            return NotImplemented
        return self.kind is other.kind and self.code == other.code

    def __hash__(self) -> int:
        return hash((self.kind, self.code))

    def __repr__(self) -> str:
        if self.kind is ErrorKind.CUSTOM:
            return f"ProgramError(Custom({self.code}))"
        return f"ProgramError({self.kind.value})"


class HydraError(IntEnum):
    """Custom error codes; each maps to a custom ``ProgramError``."""

    INVALID_INSTRUCTION = 0
    NOT_YET_EXECUTABLE = 1
    EXHAUSTED = 2
    #: The crank can't afford reward plus tip while staying rent-exempt.
    INSUFFICIENT_FUNDS = 3
    UNAUTHORIZED_AUTHORITY = 4
    #: ``Close`` pre-conditions unmet (not exhausted, underfunded or stale).
    NOT_CLOSABLE = 5
    #: No instruction at ``current_index + 1``.
    MISSING_FOLLOWUP_INSTRUCTION = 6
    #: The follow-up instruction does not match the stored template.
    MISMATCHED_FOLLOWUP_IX = 7
    #: ``Create`` was given a meta with the signer flag set.
    SIGNER_IN_SCHEDULED_IX = 8
    #: ``Create`` data was well formed but semantically invalid.
    INVALID_SCHEDULE = 9

    @classmethod
    def from_code(cls, value: int) -> HydraError:
        """Look up an error by code; unknown codes raise ``InvalidArgument``."""
        try:
            return cls(value)
        except ValueError:
            raise ProgramError(ErrorKind.INVALID_ARGUMENT) from None

    def to_str(self) -> str:
        """Qualified error name, e.g. ``HydraError::Exhausted``."""
        camel = "".join(part.capitalize() for part in self.name.split("_"))
        return f"HydraError::{camel}"

    def to_error(self) -> ProgramError:
        """The custom ``ProgramError`` carrying this code."""
        return ProgramError(ErrorKind.CUSTOM, int(self))