"""Base interface for the user's wallet.

The shuffler never holds the user's primary key. It only asks the wallet
to sign a text message; the signature seeds the one-off address.
"""

from abc import ABC, abstractmethod
from enum import Enum


class SignerType(str, Enum):
    """Type of signing backend."""
    LOCAL = "local"           # Private key in memory


class WalletSigner(ABC):
    """Abstract base class for wallet signers.

    Implementations raise SigningRejected when the user declines or the
    wallet is unavailable.
    """

    def __init__(self, signer_type: SignerType):
        self.signer_type = signer_type

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksum address of the connected wallet."""
        pass

    @abstractmethod
    async def sign_message(self, text: str) -> str:
        """Sign a text message (EIP-191 personal_sign).

        Args:
            text: Message to sign

        Returns:
            0x-prefixed 65-byte signature hex
        """
        pass

    async def health_check(self) -> bool:
        """Check if the wallet is connected."""
        return True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self.signer_type.value})"
