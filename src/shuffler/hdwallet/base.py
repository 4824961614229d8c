"""Identity types produced by key derivation.

Security: the one-off private key lives in a mutable buffer that is zeroed
on dispose(). It is never included in repr() or logged.
"""

from dataclasses import dataclass

from shuffler.errors import ShufflerError


@dataclass(frozen=True)
class EscapeHatchIdentity:
    """Long-lived destination derived from combined entropy."""

    address: str
    mnemonic: str
    nonce: str

    def __repr__(self) -> str:
        return f"EscapeHatchIdentity(address={self.address!r}, nonce=***)"


@dataclass(frozen=True)
class AddressInfo:
    """Information about an address derived for verification."""

    address: str
    index: int


class KeyDisposedError(ShufflerError):
    """Raised when a disposed one-off key is used."""

    pass


class OneOffAddress:
    """Single-use deposit address and its private key.

    Usage:
        with derive_one_off(signature) as one_off:
            Account.sign_transaction(tx, one_off.private_key)
        # key buffer is zeroed here

    private_key returns an immutable copy that lives until it is garbage
    collected. dispose() only zeroes the buffer owned by this object.
    """

    __slots__ = ("address", "_key")

    def __init__(self, address: str, private_key: bytes):
        self.address = address
        self._key = bytearray(private_key)

    @property
    def disposed(self) -> bool:
        return not any(self._key)

    @property
    def private_key(self) -> bytes:
        """Copy of the raw 32-byte key."""
        if self.disposed:
            raise KeyDisposedError(f"One-off key for {self.address} has been disposed")
        return bytes(self._key)

    def dispose(self) -> None:
        """Overwrite the key buffer. Safe to call more than once."""
        for i in range(len(self._key)):
            self._key[i] = 0

    def __enter__(self) -> "OneOffAddress":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()
        return False

    def __repr__(self) -> str:
        state = "disposed" if self.disposed else "live"
        return f"OneOffAddress(address={self.address!r}, key=<{state}>)"
