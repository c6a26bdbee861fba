import pytest

from hydracrank.address import PROGRAM_ID, Pubkey
from hydracrank.consts import CRANKER_REWARD, STALENESS_THRESHOLD_SLOTS, U64_MAX
from hydracrank.errors import ErrorKind, HydraError, ProgramError
from hydracrank.instruction import SYSTEM_PROGRAM_ID
from hydracrank.program.close import process
from hydracrank.program.runtime import Account, AccountView, ExecutionContext
from hydracrank.state import Crank, find_crank_pda, region_len_for

SEED = bytes([0x11]) * 32
CRANK_PDA, _ = find_crank_pda(SEED)
RENT = 1_837_440


def key(n: int) -> Pubkey:
    return Pubkey(bytes([n]) * 32)


def crank_view(lamports=RENT, authority=bytes(32), remaining=10, priority_tip=0,
               next_exec_slot=0, rent_min=RENT, owner=PROGRAM_ID):
    region_len = region_len_for(0, 4)
    header = Crank(
        authority=authority,
        seed=SEED,
        next_exec_slot=next_exec_slot,
        interval_slots=100,
        remaining=remaining,
        priority_tip=priority_tip,
        rent_min=rent_min,
        region_len=region_len,
    )
    data = header.to_bytes() + bytes(region_len)
    return AccountView(
        CRANK_PDA, Account(lamports=lamports, data=data, owner=owner), is_writable=True
    )


def reporter_view(address=None, signer=True):
    return AccountView(address or key(7), Account(), is_signer=signer, is_writable=True)


def receiver(address):
    return AccountView(address, Account(), is_writable=True)


def test_permissionless_when_underfunded_reporter_takes_all():
    reporter = reporter_view()
    crank = crank_view()
    process([reporter, crank, reporter], b"", ExecutionContext())
    assert reporter.lamports == RENT
    assert crank.lamports == 0


def test_bounty_and_refund_split_between_accounts():
    reporter = reporter_view()
    recipient = receiver(key(8))
    crank = crank_view()
    process([reporter, crank, recipient], b"", ExecutionContext())
    assert reporter.lamports == CRANKER_REWARD
    assert recipient.lamports == RENT - CRANKER_REWARD
    assert crank.lamports == 0


def test_refuses_healthy_crank():
    reporter = reporter_view()
    crank = crank_view(lamports=RENT + 10_000_000)
    with pytest.raises(ProgramError) as err:
        process([reporter, crank, reporter], b"", ExecutionContext())
    assert err.value == HydraError.NOT_CLOSABLE.to_error()
    assert crank.lamports == RENT + 10_000_000


def test_permissionless_when_stuck():
    reporter = reporter_view()
    crank = crank_view(lamports=RENT + 10_000_000)
    process([reporter, crank, reporter], b"", ExecutionContext(slot=STALENESS_THRESHOLD_SLOTS + 1))
    assert reporter.lamports == RENT + 10_000_000
    assert crank.lamports == 0


def test_exactly_at_threshold_is_not_stuck():
    reporter = reporter_view()
    crank = crank_view(lamports=RENT + 10_000_000)
    with pytest.raises(ProgramError) as err:
        process([reporter, crank, reporter], b"", ExecutionContext(slot=STALENESS_THRESHOLD_SLOTS))
    assert err.value.hydra_error is HydraError.NOT_CLOSABLE


def test_future_schedule_is_not_stale():
    reporter = reporter_view()
    crank = crank_view(lamports=RENT + 10_000_000, next_exec_slot=10**12)
    with pytest.raises(ProgramError) as err:
        process([reporter, crank, reporter], b"", ExecutionContext(slot=0))
    assert err.value.hydra_error is HydraError.NOT_CLOSABLE


def test_exhausted_crank_closes():
    reporter = reporter_view()
    crank = crank_view(lamports=RENT + 10_000_000, remaining=0)
    process([reporter, crank, reporter], b"", ExecutionContext())
    assert reporter.lamports == RENT + 10_000_000


def test_refund_must_go_to_authority():
    authority = key(4)
    reporter = reporter_view()
    crank = crank_view(authority=authority.to_bytes())
    with pytest.raises(ProgramError) as err:
        process([reporter, crank, reporter], b"", ExecutionContext())
    assert err.value.hydra_error is HydraError.UNAUTHORIZED_AUTHORITY

    recipient = receiver(authority)
    process([reporter, crank, recipient], b"", ExecutionContext())
    assert recipient.lamports == RENT - CRANKER_REWARD
    assert reporter.lamports == CRANKER_REWARD


def test_crank_holding_less_than_bounty():
    reporter = reporter_view()
    recipient = receiver(key(8))
    crank = crank_view(lamports=3_000, rent_min=5_000)
    process([reporter, crank, recipient], b"", ExecutionContext())
    assert reporter.lamports == 3_000
    assert recipient.lamports == 0


def test_requires_reporter_signature():
    reporter = reporter_view(signer=False)
    with pytest.raises(ProgramError) as err:
        process([reporter, crank_view(), reporter], b"", ExecutionContext())
    assert err.value.kind is ErrorKind.MISSING_REQUIRED_SIGNATURE


def test_rejects_foreign_owner():
    reporter = reporter_view()
    with pytest.raises(ProgramError) as err:
        process([reporter, crank_view(owner=SYSTEM_PROGRAM_ID), reporter], b"", ExecutionContext())
    assert err.value.kind is ErrorKind.INVALID_ACCOUNT_OWNER


def test_tip_overflow():
    reporter = reporter_view()
    with pytest.raises(ProgramError) as err:
        process([reporter, crank_view(priority_tip=U64_MAX), reporter], b"", ExecutionContext())
    assert err.value.kind is ErrorKind.ARITHMETIC_OVERFLOW


def test_rejects_wrong_account_count():
    with pytest.raises(ProgramError) as err:
        process([reporter_view(), crank_view()], b"", ExecutionContext())
    assert err.value.kind is ErrorKind.NOT_ENOUGH_ACCOUNT_KEYS