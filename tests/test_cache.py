import pytest

from hydracrank.address import Pubkey
from hydracrank.consts import CRANK_HEADER_SIZE, CRANKER_REWARD, STALENESS_THRESHOLD_SLOTS
from hydracrank.cranker.cache import CacheOutcome, CrankCache, CrankEntry
from hydracrank.state import Crank

KEY_A = Pubkey(bytes([1] * 32))
KEY_B = Pubkey(bytes([2] * 32))
AUTHORITY = bytes([9] * 32)
TAIL = b"\x00\x00" + bytes([3] * 32) + b"\x04\x00tick"


def raw_crank(**fields) -> bytes:
    return Crank(**fields).to_bytes() + TAIL


def entry(lamports, **fields) -> CrankEntry:
    return CrankEntry.from_raw(KEY_A, lamports, raw_crank(**fields))


def test_from_raw_decodes_header_fields():
    data = raw_crank(
        authority=AUTHORITY,
        next_exec_slot=42,
        remaining=5,
        priority_tip=1_000,
        rent_min=2_000,
        cu_limit=321_000,
        interval_slots=7,
        executed=3,
    )
    decoded = CrankEntry.from_raw(KEY_A, 99, data)
    assert decoded.pubkey == KEY_A
    assert decoded.lamports == 99
    assert decoded.authority == AUTHORITY
    assert decoded.next_exec_slot == 42
    assert decoded.remaining == 5
    assert decoded.priority_tip == 1_000
    assert decoded.rent_min == 2_000
    assert decoded.cu_limit == 321_000
    assert decoded.data == data


def test_from_raw_rejects_short_data():
    assert CrankEntry.from_raw(KEY_A, 1, bytes(CRANK_HEADER_SIZE - 1)) is None


def test_from_raw_accepts_bare_header():
    decoded = CrankEntry.from_raw(KEY_A, 1, bytes(CRANK_HEADER_SIZE))
    assert decoded.remaining == 0
    assert decoded.data == bytes(CRANK_HEADER_SIZE)


def test_eligible_when_slot_reached_and_funded():
    funded = 500 + CRANKER_REWARD + 100
    crank = entry(funded, next_exec_slot=10, remaining=1, priority_tip=100, rent_min=500)
    assert crank.is_eligible(10) is True
    assert crank.is_eligible(9) is False


def test_not_eligible_one_lamport_short():
    short = 500 + CRANKER_REWARD + 100 - 1
    crank = entry(short, next_exec_slot=0, remaining=1, priority_tip=100, rent_min=500)
    assert crank.is_eligible(0) is False


def test_not_eligible_when_exhausted():
    crank = entry(10**9, next_exec_slot=0, remaining=0, rent_min=500)
    assert crank.is_eligible(100) is False


def test_closable_when_exhausted():
    crank = entry(10**9, remaining=0, rent_min=500)
    assert crank.is_closable(0) is True


def test_closable_when_underfunded():
    crank = entry(500 + CRANKER_REWARD - 1, remaining=3, rent_min=500)
    assert crank.is_closable(0) is True
    healthy = entry(500 + CRANKER_REWARD, remaining=3, rent_min=500)
    assert healthy.is_closable(0) is False


def test_closable_when_stale():
    crank = entry(10**9, next_exec_slot=100, remaining=3, rent_min=500)
    assert crank.is_closable(100 + STALENESS_THRESHOLD_SLOTS) is False
    assert crank.is_closable(100 + STALENESS_THRESHOLD_SLOTS + 1) is True


def test_future_crank_never_stale():
    crank = entry(10**9, next_exec_slot=10**12, remaining=3, rent_min=500)
    assert crank.is_closable(0) is False


def test_apply_update_insert_then_update():
    cache = CrankCache()
    assert cache.apply_update(KEY_A, 1_000, raw_crank(remaining=1)) is CacheOutcome.INSERTED
    assert cache.apply_update(KEY_A, 2_000, raw_crank(remaining=2)) is CacheOutcome.UPDATED
    assert len(cache) == 1
    assert cache.snapshot()[KEY_A].lamports == 2_000
    assert cache.snapshot()[KEY_A].remaining == 2


def test_apply_update_removes_closed_accounts():
    cache = CrankCache()
    cache.apply_update(KEY_A, 1_000, raw_crank())
    assert cache.apply_update(KEY_A, 0, raw_crank()) is CacheOutcome.REMOVED
    assert len(cache) == 0
    assert cache.apply_update(KEY_A, 0, b"") is CacheOutcome.UNCHANGED


def test_apply_update_empty_data_removes():
    cache = CrankCache()
    cache.apply_update(KEY_A, 1_000, raw_crank())
    assert cache.apply_update(KEY_A, 1_000, b"") is CacheOutcome.REMOVED
    assert KEY_A not in cache.snapshot()


def test_apply_update_malformed_removes():
    cache = CrankCache()
    cache.apply_update(KEY_A, 1_000, raw_crank())
    assert cache.apply_update(KEY_A, 1_000, b"\x01\x02") is CacheOutcome.REMOVED
    assert cache.apply_update(KEY_B, 1_000, b"\x01\x02") is CacheOutcome.UNCHANGED
    assert len(cache) == 0


def test_reset_replaces_contents_and_skips_malformed():
    cache = CrankCache()
    cache.apply_update(KEY_B, 1_000, raw_crank())
    count = cache.reset([(KEY_A, 1_000, raw_crank()), (KEY_B, 1_000, b"short")])
    assert count == 1
    assert set(cache.snapshot()) == {KEY_A}


def test_snapshot_is_a_copy():
    cache = CrankCache()
    cache.apply_update(KEY_A, 1_000, raw_crank())
    snap = cache.snapshot()
    snap.clear()
    assert len(cache) == 1


def test_entry_is_immutable():
    crank = entry(1_000)
    with pytest.raises(AttributeError):
        crank.lamports = 5
    assert crank.lamports == 1_000