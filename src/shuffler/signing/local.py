"""Local signing backend.

Uses an in-memory private key to answer sign requests. Suitable for:
- Development/testing
- Dry runs from the command line

WARNING: the key is held in memory. A real deployment bridges the user's
own wallet instead.
"""

import logging
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from shuffler.errors import SigningRejected
from shuffler.signing.base import SignerType, WalletSigner

logger = logging.getLogger(__name__)


class LocalWalletSigner(WalletSigner):
    """Wallet signer backed by an eth-account LocalAccount."""

    def __init__(self, private_key: Optional[str] = None):
        super().__init__(SignerType.LOCAL)
        if private_key:
            self._account = Account.from_key(private_key)
        else:
            self._account = Account.create()
            logger.info(f"Created ephemeral local wallet {self._account.address}")
        self.enabled = True

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_message(self, text: str) -> str:
        """Sign a text message with the local key."""
        if not self.enabled:
            raise SigningRejected("Wallet is disconnected")

        try:
            signed = self._account.sign_message(encode_defunct(text=text))
        except Exception as e:
            logger.error(f"Local signing failed: {e}")
            raise SigningRejected(f"Local signing failed: {e}")

        return "0x" + bytes(signed.signature).hex()

    async def health_check(self) -> bool:
        return self.enabled

    def disconnect(self) -> None:
        """Refuse further signing requests."""
        self.enabled = False
