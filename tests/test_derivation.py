"""Tests for entropy combination and key derivation."""

import pytest
from eth_account import Account
from eth_utils import keccak

from shuffler.entropy import (
    combine_entropy,
    entropy_from_hex,
    generate_random_entropy,
    nonce_digest,
    recover_random,
)
from shuffler.errors import DerivationError, InvalidInput
from shuffler.hdwallet import eth as eth_wallet
from shuffler.hdwallet.base import KeyDisposedError, OneOffAddress
from shuffler.hdwallet.eth import (
    address_from_mnemonic,
    derive_escape_hatch,
    derive_indexed_addresses,
    derive_one_off,
    mnemonic_from_entropy,
    one_off_message,
    recover_escape_hatch,
    validate_address,
)

ABANDON_MNEMONIC = " ".join(["abandon"] * 11 + ["about"])
ABANDON_ADDRESS = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"

SIGNATURE_A = "0x" + "ab" * 65
SIGNATURE_B = "0x" + "cd" * 65


class TestEntropyCombiner:
    """Tests for nonce/random entropy mixing."""

    def test_combine_is_deterministic(self):
        random_bytes = bytes(range(16))
        assert combine_entropy("nonce", random_bytes) == combine_entropy("nonce", random_bytes)

    def test_zero_random_yields_nonce_digest(self):
        combined = combine_entropy("my-secret", bytes(16))
        assert combined == keccak(text="my-secret")[:16]

    def test_xor_with_digest_recovers_random(self):
        random_bytes = bytes.fromhex("00112233445566778899aabbccddeeff")
        combined = combine_entropy("recovery", random_bytes)
        digest = nonce_digest("recovery")

        assert bytes(c ^ h for c, h in zip(combined, digest)) == random_bytes
        assert recover_random("recovery", combined) == random_bytes

    def test_different_nonces_give_different_entropy(self):
        random_bytes = bytes(16)
        assert combine_entropy("a", random_bytes) != combine_entropy("b", random_bytes)

    def test_empty_nonce_rejected(self):
        with pytest.raises(InvalidInput):
            combine_entropy("", bytes(16))

    def test_wrong_random_length_rejected(self):
        with pytest.raises(InvalidInput):
            combine_entropy("nonce", bytes(15))

    def test_generate_random_entropy_length(self):
        first = generate_random_entropy()
        assert len(first) == 16
        assert first != generate_random_entropy()

    def test_entropy_from_hex(self):
        assert entropy_from_hex("0x" + "00" * 16) == bytes(16)
        with pytest.raises(InvalidInput):
            entropy_from_hex("zz" * 16)
        with pytest.raises(InvalidInput):
            entropy_from_hex("00" * 8)


class TestEscapeHatch:
    """Tests for escape hatch derivation."""

    def test_known_mnemonic_vector(self):
        assert mnemonic_from_entropy(bytes(16)) == ABANDON_MNEMONIC
        assert address_from_mnemonic(ABANDON_MNEMONIC) == ABANDON_ADDRESS

    def test_random_equal_to_digest_gives_zero_entropy(self):
        """XOR of the digest with itself is all zeros -> the abandon wallet."""
        identity = derive_escape_hatch("my-secret", nonce_digest("my-secret"))
        assert identity.mnemonic == ABANDON_MNEMONIC
        assert identity.address == ABANDON_ADDRESS

    def test_my_secret_with_zero_random_is_stable(self):
        first = derive_escape_hatch("my-secret", bytes(16))
        second = derive_escape_hatch("my-secret", bytes(16))

        assert first.address == second.address
        assert first.mnemonic == second.mnemonic
        assert len(first.mnemonic.split()) == 12
        assert first.nonce == "my-secret"
        assert first.address.startswith("0x") and len(first.address) == 42

    def test_fresh_random_gives_new_address(self):
        first = derive_escape_hatch("my-secret", bytes(16))
        second = derive_escape_hatch("my-secret", b"\x01" * 16)
        assert first.address != second.address

    def test_recover_from_stored_entropy(self):
        random_bytes = bytes.fromhex("0f" * 16)
        original = derive_escape_hatch("nonce-1", random_bytes)
        recovered = recover_escape_hatch("nonce-1", random_bytes.hex())

        assert recovered == original

    def test_nonce_alone_is_not_enough(self):
        original = derive_escape_hatch("nonce-1", bytes.fromhex("0f" * 16))
        guessed = recover_escape_hatch("nonce-1", "00" * 16)
        assert guessed.address != original.address

    def test_repr_hides_secrets(self):
        identity = derive_escape_hatch("hidden-nonce", bytes(16))
        text = repr(identity)
        assert "hidden-nonce" not in text
        assert identity.mnemonic not in text
        assert identity.address in text


class TestOneOffDerivation:
    """Tests for signature-based one-off addresses."""

    def test_same_signature_same_address(self):
        assert derive_one_off(SIGNATURE_A).address == derive_one_off(SIGNATURE_A).address

    def test_distinct_signatures_distinct_addresses(self):
        assert derive_one_off(SIGNATURE_A).address != derive_one_off(SIGNATURE_B).address

    def test_key_is_keccak_of_signature_text(self):
        one_off = derive_one_off(SIGNATURE_A)
        expected_key = keccak(text=SIGNATURE_A)

        assert one_off.private_key == expected_key
        assert one_off.address == Account.from_key(expected_key).address

    def test_signature_text_is_hashed_verbatim(self):
        reference = derive_one_off(SIGNATURE_A).address

        assert derive_one_off(SIGNATURE_A[2:]).address != reference
        assert derive_one_off("0x" + SIGNATURE_A[2:].upper()).address != reference
        assert derive_one_off(SIGNATURE_A[2:]).private_key == keccak(text=SIGNATURE_A[2:])

    def test_zero_scalar_rejected(self, monkeypatch):
        monkeypatch.setattr(eth_wallet, "keccak", lambda *args, **kwargs: bytes(32))
        with pytest.raises(DerivationError):
            derive_one_off(SIGNATURE_A)

    def test_scalar_above_curve_order_rejected(self, monkeypatch):
        monkeypatch.setattr(eth_wallet, "keccak", lambda *args, **kwargs: b"\xff" * 32)
        with pytest.raises(DerivationError):
            derive_one_off(SIGNATURE_A)

    @pytest.mark.parametrize("signature", ["", "   "])
    def test_empty_signature_rejected(self, signature):
        with pytest.raises(InvalidInput):
            derive_one_off(signature)

    def test_message_format(self):
        message = one_off_message("0xAbC", 1700000000000)
        assert message == "Generate one-off privacy address for 0xAbC at 1700000000000"

    @pytest.mark.asyncio
    async def test_signed_messages_at_different_times_differ(self, signer):
        first = await signer.sign_message(one_off_message(signer.address, 1))
        second = await signer.sign_message(one_off_message(signer.address, 2))

        assert derive_one_off(first).address != derive_one_off(second).address


class TestOneOffAddress:
    """Tests for key disposal."""

    def test_dispose_zeroes_key(self):
        one_off = derive_one_off(SIGNATURE_A)
        one_off.dispose()

        assert one_off.disposed
        with pytest.raises(KeyDisposedError):
            _ = one_off.private_key

    def test_dispose_is_idempotent(self):
        one_off = derive_one_off(SIGNATURE_A)
        one_off.dispose()
        one_off.dispose()
        assert one_off.disposed

    def test_context_manager_disposes(self):
        with derive_one_off(SIGNATURE_A) as one_off:
            assert len(one_off.private_key) == 32
        assert one_off.disposed
        with pytest.raises(KeyDisposedError):
            _ = one_off.private_key

    def test_repr_hides_key(self):
        one_off = OneOffAddress("0x" + "11" * 20, b"\x22" * 32)
        assert "2222" not in repr(one_off)
        assert "live" in repr(one_off)


class TestIndexedAddresses:
    """Tests for the verification address chain."""

    def test_deterministic_and_distinct(self):
        first = derive_indexed_addresses(SIGNATURE_A, 5)
        second = derive_indexed_addresses(SIGNATURE_A, 5)

        assert [a.address for a in first] == [a.address for a in second]
        assert len({a.address for a in first}) == 5
        assert [a.index for a in first] == [0, 1, 2, 3, 4]

    def test_matches_hash_chain(self):
        base = keccak(text=SIGNATURE_A)
        key = keccak(base + (2).to_bytes(32, "big"))
        assert derive_indexed_addresses(SIGNATURE_A, 3)[2].address == Account.from_key(key).address

    def test_count_must_be_positive(self):
        with pytest.raises(InvalidInput):
            derive_indexed_addresses(SIGNATURE_A, 0)


class TestValidateAddress:
    def test_checksums_valid_address(self):
        assert validate_address(ABANDON_ADDRESS.lower()) == ABANDON_ADDRESS

    @pytest.mark.parametrize("value", ["", "0x123", "not-an-address"])
    def test_rejects_malformed(self, value):
        with pytest.raises(InvalidInput):
            validate_address(value)
