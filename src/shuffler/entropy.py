"""Entropy combination for escape hatch seeds.

The escape hatch seed is the XOR of 16 bytes of device randomness with the
first 16 bytes of keccak256(nonce). Either half alone is useless: the random
half gives the 128-bit security floor, the nonce binds the seed to the user.
"""

import secrets

from eth_utils import keccak

from shuffler.errors import InvalidInput

ENTROPY_BYTES = 16


def nonce_digest(nonce: str) -> bytes:
    """First 16 bytes of keccak256(utf8(nonce))."""
    if not nonce:
        raise InvalidInput("Recovery nonce must not be empty")
    return keccak(text=nonce)[:ENTROPY_BYTES]


def generate_random_entropy() -> bytes:
    """Read 16 bytes from the OS CSPRNG."""
    return secrets.token_bytes(ENTROPY_BYTES)


def combine_entropy(nonce: str, random_bytes: bytes) -> bytes:
    """Mix a recovery nonce with device randomness.

    Args:
        nonce: User-chosen recovery nonce (non-empty)
        random_bytes: Exactly 16 random bytes

    Returns:
        16 bytes of BIP-39 entropy

    Raises:
        InvalidInput: If the nonce is empty or random_bytes has the wrong length
    """
    digest = nonce_digest(nonce)
    if len(random_bytes) != ENTROPY_BYTES:
        raise InvalidInput(
            f"Random entropy must be {ENTROPY_BYTES} bytes, got {len(random_bytes)}"
        )
    return bytes(r ^ h for r, h in zip(random_bytes, digest))


def recover_random(nonce: str, combined: bytes) -> bytes:
    """Invert combine_entropy for a fixed nonce."""
    return combine_entropy(nonce, combined)


def entropy_from_hex(entropy_hex: str) -> bytes:
    """Parse a stored 16-byte entropy hex string."""
    value = entropy_hex.strip()
    if value.startswith("0x"):
        value = value[2:]
    try:
        raw = bytes.fromhex(value)
    except ValueError:
        raise InvalidInput("Stored entropy is not valid hex")
    if len(raw) != ENTROPY_BYTES:
        raise InvalidInput(
            f"Stored entropy must be {ENTROPY_BYTES} bytes, got {len(raw)}"
        )
    return raw
