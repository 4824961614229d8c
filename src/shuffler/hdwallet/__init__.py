"""Key derivation for escape hatch and one-off addresses."""

from shuffler.hdwallet.base import AddressInfo, EscapeHatchIdentity, OneOffAddress
from shuffler.hdwallet.eth import (
    derive_escape_hatch,
    derive_indexed_addresses,
    derive_one_off,
    recover_escape_hatch,
)

__all__ = [
    "AddressInfo",
    "EscapeHatchIdentity",
    "OneOffAddress",
    "derive_escape_hatch",
    "derive_indexed_addresses",
    "derive_one_off",
    "recover_escape_hatch",
]
