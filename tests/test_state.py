import pytest

from hydracrank.address import PROGRAM_ID, find_program_address, is_on_curve
from hydracrank.consts import (
    CRANK_HEADER_SIZE,
    REMAINING_INFINITE,
    SERIALIZED_META_SIZE,
)
from hydracrank.errors import ErrorKind, ProgramError
from hydracrank.state import Crank, crank_account_size, find_crank_pda, region_len_for


def _sample():
    return Crank(
        authority=b"\x07" * 32,
        seed=b"\x11" * 32,
        next_exec_slot=7,
        interval_slots=100,
        remaining=REMAINING_INFINITE,
        priority_tip=1_000,
        executed=3,
        rent_min=1_500_000,
        region_len=region_len_for(1, 4),
        bump=254,
        cu_limit=321_000,
        authority_signer=1,
    )


def test_header_is_exact_length():
    assert len(_sample().to_bytes()) == CRANK_HEADER_SIZE == Crank.LEN


def test_round_trip():
    crank = _sample()
    assert Crank.from_bytes(crank.to_bytes()) == crank


def test_trailing_region_ignored():
    crank = _sample()
    assert Crank.from_bytes(crank.to_bytes() + b"tail bytes") == crank


def test_field_offsets_match_layout():
    crank = _sample()
    raw = crank.to_bytes()
    assert raw[0:32] == crank.authority
    assert raw[32:64] == crank.seed
    assert int.from_bytes(raw[64:72], "little") == crank.next_exec_slot
    assert int.from_bytes(raw[72:80], "little") == crank.interval_slots
    assert int.from_bytes(raw[80:88], "little") == crank.remaining
    assert int.from_bytes(raw[88:96], "little") == crank.priority_tip
    assert int.from_bytes(raw[96:104], "little") == crank.executed
    assert int.from_bytes(raw[104:112], "little") == crank.rent_min
    assert int.from_bytes(raw[112:114], "little") == crank.region_len
    assert raw[114] == crank.bump
    assert int.from_bytes(raw[115:119], "little") == crank.cu_limit
    assert raw[119] == crank.authority_signer


def test_from_bytes_too_small():
    with pytest.raises(ProgramError) as info:
        Crank.from_bytes(bytes(CRANK_HEADER_SIZE - 1))
    assert info.value.kind is ErrorKind.ACCOUNT_DATA_TOO_SMALL


def test_default_header_is_zeroed():
    assert Crank().to_bytes() == bytes(CRANK_HEADER_SIZE)


def test_to_bytes_rejects_bad_authority_length():
    with pytest.raises(ValueError):
        Crank(authority=b"\x01" * 31).to_bytes()


@pytest.mark.parametrize("region_len", [0, 36, 73, 1024])
def test_crank_account_size(region_len):
    assert crank_account_size(region_len) == CRANK_HEADER_SIZE + region_len


@pytest.mark.parametrize("num_accounts,data_len", [(0, 0), (1, 4), (32, 1024)])
def test_region_len_grows_per_meta_and_byte(num_accounts, data_len):
    base = region_len_for(num_accounts, data_len)
    assert region_len_for(num_accounts + 1, data_len) - base == SERIALIZED_META_SIZE
    assert region_len_for(num_accounts, data_len + 1) - base == 1


def test_region_len_empty_is_framing_only():
    # num_accounts u16 + program_id + data_len u16
    assert region_len_for(0, 0) == 2 + 32 + 2


def test_find_crank_pda_matches_program_derivation():
    seed = b"\x11" * 32
    address, bump = find_crank_pda(seed)
    assert (address, bump) == find_program_address([b"crank", seed], PROGRAM_ID)
    assert not is_on_curve(address.to_bytes())


def test_find_crank_pda_distinct_seeds():
    assert find_crank_pda(b"\x11" * 32)[0] != find_crank_pda(b"\x22" * 32)[0]


def test_find_crank_pda_rejects_short_seed():
    with pytest.raises(ValueError):
        find_crank_pda(b"\x11" * 31)