"""Recovery material export and escape hatch recovery.

The export document carries the nonce and the stored random entropy:
    {"nonce": "...", "entropy": "<32 hex chars>", "created": "<ISO-8601>"}
Together they re-derive the escape hatch on any device.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from shuffler.entropy import ENTROPY_BYTES, entropy_from_hex
from shuffler.errors import InvalidInput, RecoveryNotFound
from shuffler.hdwallet.base import EscapeHatchIdentity
from shuffler.hdwallet.eth import recover_escape_hatch
from shuffler.storage import EntropyStore

logger = logging.getLogger(__name__)


class RecoveryDocument(BaseModel):
    """Exportable recovery document."""

    nonce: str = Field(..., min_length=1, description="User recovery nonce")
    entropy: str = Field(..., description="Hex of the 16 device-random bytes")
    created: datetime = Field(..., description="Export time (UTC)")

    @field_validator("entropy")
    @classmethod
    def validate_entropy(cls, v: str) -> str:
        """Normalize to lowercase hex without prefix."""
        return entropy_from_hex(v).hex()


class RecoveryExporter:
    """Persists, exports and re-imports recovery entropy.

    Example:
        exporter = RecoveryExporter(store)
        exporter.save("my-secret", random_bytes)
        path = exporter.export_to_file("my-secret", "recovery.json")
    """

    def __init__(self, store: EntropyStore):
        self.store = store

    def save(self, nonce: str, random_bytes: bytes) -> None:
        """Persist the random half of the entropy under its nonce."""
        if not nonce:
            raise InvalidInput("Recovery nonce must not be empty")
        if len(random_bytes) != ENTROPY_BYTES:
            raise InvalidInput(f"Random entropy must be {ENTROPY_BYTES} bytes")
        if self.store.contains(nonce):
            logger.warning("Replacing stored entropy for an existing recovery nonce")
        self.store.put(nonce, random_bytes.hex())

    def build_document(
        self, nonce: str, created: Optional[datetime] = None
    ) -> RecoveryDocument:
        """Build the export document for a nonce.

        Raises:
            RecoveryNotFound: If nothing is stored for the nonce
        """
        if not nonce:
            raise InvalidInput("Recovery nonce must not be empty")
        entropy_hex = self.store.get(nonce)
        if not entropy_hex:
            raise RecoveryNotFound(nonce)
        return RecoveryDocument(
            nonce=nonce,
            entropy=entropy_hex,
            created=created or datetime.now(timezone.utc),
        )

    def export_json(self, nonce: str, created: Optional[datetime] = None) -> str:
        """Serialize the recovery document to JSON."""
        return self.build_document(nonce, created).model_dump_json()

    def export_to_file(self, nonce: str, path: str | Path) -> Path:
        """Write the recovery document to a file (mode 0600)."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.export_json(nonce), encoding="utf-8")
        target.chmod(0o600)
        logger.info(f"Recovery information exported to {target}")
        return target

    @staticmethod
    def load_document(source: str | Path) -> RecoveryDocument:
        """Parse a recovery document from a file path or a JSON string.

        Raises:
            InvalidInput: If the file cannot be read or is not a recovery document
        """
        if isinstance(source, Path) or not source.lstrip().startswith("{"):
            try:
                text = Path(source).read_text(encoding="utf-8")
            except OSError as e:
                raise InvalidInput(f"Cannot read recovery file {source}: {e.strerror}") from e
        else:
            text = source

        try:
            return RecoveryDocument.model_validate_json(text)
        except ValidationError as e:
            raise InvalidInput(
                f"Not a valid recovery document ({e.error_count()} errors)"
            ) from e

    def import_document(self, document: RecoveryDocument) -> EscapeHatchIdentity:
        """Store a document's entropy on this device and recover its escape hatch."""
        identity = recover_escape_hatch(document.nonce, document.entropy)
        self.store.put(document.nonce, document.entropy)
        return identity

    def recover(self, nonce: str, entropy_hex: Optional[str] = None) -> EscapeHatchIdentity:
        """Re-derive the escape hatch from a nonce and stored (or given) entropy."""
        if entropy_hex is None:
            entropy_hex = self.store.get(nonce)
            if not entropy_hex:
                raise RecoveryNotFound(nonce)
        return recover_escape_hatch(nonce, entropy_hex)
