import pytest

from hydracrank.errors import ErrorKind, HydraError, ProgramError


@pytest.mark.parametrize("member", list(HydraError))
def test_from_code_round_trip(member):
    assert HydraError.from_code(int(member)) is member


def test_from_code_unknown_raises_invalid_argument():
    with pytest.raises(ProgramError) as info:
        HydraError.from_code(len(HydraError))
    assert info.value.kind is ErrorKind.INVALID_ARGUMENT


def test_to_str_names_match_source():
    assert HydraError.NOT_YET_EXECUTABLE.to_str() == "HydraError::NotYetExecutable"
    assert HydraError.MISMATCHED_FOLLOWUP_IX.to_str() == "HydraError::MismatchedFollowupIx"
    assert HydraError.SIGNER_IN_SCHEDULED_IX.to_str() == "HydraError::SignerInScheduledIx"
    assert HydraError.INVALID_SCHEDULE.to_str() == "HydraError::InvalidSchedule"


def test_to_error_is_custom_with_code():
    err = HydraError.EXHAUSTED.to_error()
    assert err.kind is ErrorKind.CUSTOM
    assert err.code == int(HydraError.EXHAUSTED)
    assert err.hydra_error is HydraError.EXHAUSTED


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        (0, "HydraError::InvalidInstruction"),
        (2, "HydraError::Exhausted"),
        (5, "HydraError::NotClosable"),
        (9, "HydraError::InvalidSchedule"),
    ],
)
def test_program_error_to_str_resolves_custom(code, expected):
    assert ProgramError(ErrorKind.CUSTOM, code).to_str() == expected


def test_program_error_builtin_to_str():
    assert ProgramError(ErrorKind.INVALID_SEEDS).to_str() == "InvalidSeeds"


def test_program_error_unknown_custom_code():
    err = ProgramError(ErrorKind.CUSTOM, 999)
    assert err.hydra_error is None
    assert err.to_str() == "Error: Unknown"


def test_program_error_equality():
    assert HydraError.NOT_CLOSABLE.to_error() == ProgramError(ErrorKind.CUSTOM, 5)
    assert ProgramError(ErrorKind.ARITHMETIC_OVERFLOW) == ProgramError(
        ErrorKind.ARITHMETIC_OVERFLOW
    )
    assert not (
        ProgramError(ErrorKind.ARITHMETIC_OVERFLOW) == ProgramError(ErrorKind.INVALID_SEEDS)
    )


def test_custom_without_code_rejected():
    with pytest.raises(ValueError):
        ProgramError(ErrorKind.CUSTOM)


def test_program_error_is_raisable():
    err = HydraError.UNAUTHORIZED_AUTHORITY.to_error()
    with pytest.raises(ProgramError) as info:
        raise err
    assert info.value is err
    assert err.code == 4
    assert err.hydra_error is HydraError.UNAUTHORIZED_AUTHORITY