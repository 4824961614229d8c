"""Device-side storage for the random half of escape hatch entropy.

Entries are keyed by recovery nonce and hold the hex of the 16 random
bytes. Without this value the escape hatch cannot be re-derived.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

KEY_PREFIX = "entropy_"


class EntropyStore(ABC):
    """Key-value store: recovery nonce -> hex-encoded random entropy."""

    @abstractmethod
    def get(self, nonce: str) -> Optional[str]:
        """Stored entropy hex for a nonce, or None."""
        pass

    @abstractmethod
    def put(self, nonce: str, entropy_hex: str) -> None:
        """Store entropy hex for a nonce, replacing any previous value."""
        pass

    def contains(self, nonce: str) -> bool:
        return self.get(nonce) is not None


class MemoryEntropyStore(EntropyStore):
    """Process-local store (lost on exit)."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, nonce: str) -> Optional[str]:
        return self._data.get(KEY_PREFIX + nonce)

    def put(self, nonce: str, entropy_hex: str) -> None:
        self._data[KEY_PREFIX + nonce] = entropy_hex


class FileEntropyStore(EntropyStore):
    """JSON file store. The file is rewritten atomically on every put."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Entropy store {self.path} is not a JSON object")
        return data

    def get(self, nonce: str) -> Optional[str]:
        return self._load().get(KEY_PREFIX + nonce)

    def put(self, nonce: str, entropy_hex: str) -> None:
        data = self._load()
        data[KEY_PREFIX + nonce] = entropy_hex

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)
        try:
            os.chmod(self.path, 0o600)
        except OSError as e:
            logger.warning(f"Could not restrict permissions on {self.path}: {e}")


def get_entropy_store(path: Optional[str]) -> EntropyStore:
    """File store when a path is configured, memory store otherwise."""
    if path:
        return FileEntropyStore(path)
    return MemoryEntropyStore()
