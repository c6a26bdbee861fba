import pytest
from nacl.signing import SigningKey, VerifyKey

from hydracrank.address import Pubkey, b58encode
from hydracrank.consts import Ix
from hydracrank.cranker.transaction import (
    Keypair,
    compile_message,
    sign_transaction,
)
from hydracrank.instruction import AccountMeta, Instruction, close, program_id

SEED = bytes([7]) * 32
BLOCKHASH = bytes(range(32))


def _secret():
    return SEED + SigningKey(SEED).verify_key.encode()


def _keys(message):
    count = message[3]
    return [Pubkey(message[4 + 32 * i : 36 + 32 * i]) for i in range(count)]


def test_keypair_from_secret_bytes_pubkey():
    keypair = Keypair.from_secret_bytes(_secret())
    assert keypair.pubkey().to_bytes() == _secret()[32:]


def test_keypair_base58_round_trip():
    keypair = Keypair.from_base58(b58encode(_secret()))
    assert keypair.pubkey() == Keypair.from_secret_bytes(_secret()).pubkey()


def test_keypair_rejects_wrong_length():
    with pytest.raises(ValueError):
        Keypair.from_secret_bytes(bytes(32))


def test_keypair_rejects_mismatched_public_half():
    with pytest.raises(ValueError):
        Keypair.from_secret_bytes(SEED + bytes(32))


def test_keypair_signature_verifies():
    keypair = Keypair.from_secret_bytes(_secret())
    signature = keypair.sign(b"hello")
    assert VerifyKey(keypair.pubkey().to_bytes()).verify(b"hello", signature) == b"hello"


def test_compile_message_orders_keys_and_header():
    payer = Keypair.from_secret_bytes(_secret()).pubkey()
    crank = Pubkey(bytes([5]) * 32)
    recipient = Pubkey(bytes([3]) * 32)
    message = compile_message([close(payer, crank, recipient)], payer, BLOCKHASH)
    assert message[0:3] == bytes([1, 0, 1])
    keys = _keys(message)
    assert keys == [payer, recipient, crank, program_id()]
    start = 4 + 32 * len(keys)
    assert message[start : start + 32] == BLOCKHASH
    assert message[-1] == Ix.CLOSE


def test_compile_message_accepts_base58_blockhash():
    payer = Keypair.from_secret_bytes(_secret()).pubkey()
    ix = close(payer, Pubkey(bytes([5]) * 32), payer)
    assert compile_message([ix], payer, b58encode(BLOCKHASH)) == compile_message(
        [ix], payer, BLOCKHASH
    )


def test_compile_message_rejects_bad_blockhash():
    payer = Keypair.from_secret_bytes(_secret()).pubkey()
    with pytest.raises(ValueError):
        compile_message([], payer, bytes(5))


def test_sign_transaction_wire_layout():
    keypair = Keypair.from_secret_bytes(_secret())
    ix = close(keypair.pubkey(), Pubkey(bytes([5]) * 32), keypair.pubkey())
    wire = sign_transaction([ix], keypair, BLOCKHASH)
    message = compile_message([ix], keypair.pubkey(), BLOCKHASH)
    assert wire[0] == 1
    assert wire[65:] == message
    VerifyKey(keypair.pubkey().to_bytes()).verify(message, wire[1:65])


def test_sign_transaction_rejects_extra_signers():
    keypair = Keypair.from_secret_bytes(_secret())
    other = Pubkey(bytes([9]) * 32)
    ix = Instruction(program_id(), [AccountMeta(other, is_signer=True)], b"\x01")
    with pytest.raises(ValueError):
        sign_transaction([ix], keypair, BLOCKHASH)