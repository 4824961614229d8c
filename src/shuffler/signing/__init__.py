"""Wallet signing backends."""

from shuffler.signing.base import SignerType, WalletSigner
from shuffler.signing.local import LocalWalletSigner

__all__ = ["LocalWalletSigner", "SignerType", "WalletSigner"]
