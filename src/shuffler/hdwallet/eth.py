"""EVM key derivation for escape hatches and one-off addresses.

Escape hatch: entropy -> BIP-39 mnemonic -> BIP-44 m/44'/60'/0'/0/0.
One-off:      keccak256(utf8(signature)) used directly as the private key.

Works for Base, Ethereum and other EVM-compatible chains.
"""

from bip_utils import (
    Bip39Languages,
    Bip39MnemonicGenerator,
    Bip39SeedGenerator,
    Bip44,
    Bip44Changes,
    Bip44Coins,
)
from eth_account import Account
from eth_utils import is_address, keccak, to_checksum_address

from shuffler.entropy import combine_entropy, entropy_from_hex
from shuffler.errors import DerivationError, InvalidInput
from shuffler.hdwallet.base import AddressInfo, EscapeHatchIdentity, OneOffAddress

# secp256k1 group order
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

ONE_OFF_MESSAGE = "Generate one-off privacy address for {address} at {timestamp}"
VERIFY_MESSAGE = "Generate verification addresses for {address} at {timestamp}"


def validate_address(address: str) -> str:
    """Return the checksum form of an EVM address.

    Raises:
        InvalidInput: If the address is malformed
    """
    if not address or not is_address(address):
        raise InvalidInput(f"Malformed address: {address!r}")
    return to_checksum_address(address)


def mnemonic_from_entropy(entropy: bytes) -> str:
    """Encode 16 bytes of entropy as a 12-word English mnemonic."""
    if len(entropy) != 16:
        raise InvalidInput(f"Mnemonic entropy must be 16 bytes, got {len(entropy)}")
    mnemonic = Bip39MnemonicGenerator(Bip39Languages.ENGLISH).FromEntropy(entropy)
    return mnemonic.ToStr()


def address_from_mnemonic(mnemonic: str) -> str:
    """Derive the first BIP-44 Ethereum address of a mnemonic."""
    seed_bytes = Bip39SeedGenerator(mnemonic).Generate()
    bip44 = Bip44.FromSeed(seed_bytes, Bip44Coins.ETHEREUM)
    account = bip44.Purpose().Coin().Account(0).Change(Bip44Changes.CHAIN_EXT).AddressIndex(0)
    return account.PublicKey().ToAddress()


def derive_escape_hatch(nonce: str, random_bytes: bytes) -> EscapeHatchIdentity:
    """Derive the escape hatch identity from a nonce and device randomness.

    Args:
        nonce: User recovery nonce
        random_bytes: 16 bytes of device randomness (must be persisted by caller)

    Returns:
        EscapeHatchIdentity with address, mnemonic and nonce
    """
    combined = combine_entropy(nonce, random_bytes)
    mnemonic = mnemonic_from_entropy(combined)
    address = address_from_mnemonic(mnemonic)
    return EscapeHatchIdentity(address=address, mnemonic=mnemonic, nonce=nonce)


def recover_escape_hatch(nonce: str, entropy_hex: str) -> EscapeHatchIdentity:
    """Rebuild an escape hatch from its nonce and stored random entropy."""
    return derive_escape_hatch(nonce, entropy_from_hex(entropy_hex))


def one_off_message(user_address: str, timestamp_ms: int) -> str:
    """Message the user signs to mint a one-off address."""
    return ONE_OFF_MESSAGE.format(address=user_address, timestamp=timestamp_ms)


def verification_message(user_address: str, timestamp_ms: int) -> str:
    """Message the user signs to produce verification addresses."""
    return VERIFY_MESSAGE.format(address=user_address, timestamp=timestamp_ms)


def _signature_text(signature: str) -> str:
    # Hashed exactly as the wallet returned it: case and prefix change the key
    if not signature or not signature.strip():
        raise InvalidInput("Signature must not be empty")
    return signature


def _check_scalar(key: bytes) -> bytes:
    scalar = int.from_bytes(key, "big")
    if scalar == 0 or scalar >= SECP256K1_ORDER:
        raise DerivationError("Derived key is outside the secp256k1 range, sign again")
    return key


def private_key_from_signature(signature: str) -> bytes:
    """keccak256 of the signature text, checked as a secp256k1 scalar."""
    return _check_scalar(keccak(text=_signature_text(signature)))


def derive_one_off(signature: str) -> OneOffAddress:
    """Derive a one-off address from a wallet signature.

    The signature is not stored; the caller should drop it after this call.

    Raises:
        DerivationError: If the hash is not a usable private key
    """
    key = private_key_from_signature(signature)
    address = Account.from_key(key).address
    return OneOffAddress(address=address, private_key=key)


def derive_indexed_addresses(signature: str, count: int = 5) -> list[AddressInfo]:
    """Derive a numbered chain of addresses from one signature.

    key_i = keccak256(keccak256(utf8(signature)) || uint256(i))

    Used to let users check that derivation from their wallet is
    deterministic. Private keys are not returned.
    """
    if count < 1:
        raise InvalidInput("count must be at least 1")

    base_hash = keccak(text=_signature_text(signature))
    results = []
    for index in range(count):
        key = _check_scalar(keccak(base_hash + index.to_bytes(32, "big")))
        results.append(AddressInfo(address=Account.from_key(key).address, index=index))
    return results
