"""
Persistence for the node identity

What gets stored is the import record of the node DID (private key plus the
public key it was imported under). Re-importing it after a restart yields the
same DID deterministically.

WARNING: the JSON file holds a raw private key. Protect it with filesystem
permissions or replace the backend with a proper KMS.
"""

import json
import logging
import os
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Protocol, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentityRecord:
    """Import data for a persisted identity"""
    private_key_hex: str
    public_key_or_address: str
    alias: str = "default"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "IdentityRecord":
        return cls(
            private_key_hex=data["private_key_hex"],
            public_key_or_address=data["public_key_or_address"],
            alias=data.get("alias", "default"),
        )


class IdentityPersistence(Protocol):
    def load(self) -> Optional[IdentityRecord]: ...

    def save(self, record: IdentityRecord) -> None: ...


class MemoryPersistence:
    """In-process persistence, used by tests and ephemeral nodes"""

    def __init__(self, record: Optional[IdentityRecord] = None):
        self._record = record
        self.save_count = 0

    def load(self) -> Optional[IdentityRecord]:
        return self._record

    def save(self, record: IdentityRecord) -> None:
        self._record = record
        self.save_count += 1


class JsonFilePersistence:
    """Stores the identity record as a JSON file"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> Optional[IdentityRecord]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            return IdentityRecord.from_dict(data)
        except (OSError, ValueError, KeyError) as e:
            # an unreadable record must not silently become a second identity
            raise RuntimeError(f"Identity record at {self.path} is unreadable: {e}") from e

    def save(self, record: IdentityRecord) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w") as f:
                json.dump(record.to_dict(), f, indent=2)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        logger.info("Saved identity record to %s", self.path)
