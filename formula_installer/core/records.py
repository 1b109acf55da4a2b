"""
InstallRecord persistence.
"""

import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..models.installation import InstallRecord
from ..utils.logging import get_logger
from .errors import RecordStoreError


class InstallRecordStore:
    """JSON-backed store of install records keyed by (name, version)."""

    def __init__(self, path: Path):
        """
        Initialize the store.

        Args:
            path: JSON document holding every record
        """
        self.logger = get_logger(__name__)
        self.path = Path(path)
        self._lock = threading.Lock()

    @staticmethod
    def _key(name: str, version: str) -> str:
        return f"{name}@{version}"

    def get(self, name: str, version: str) -> Optional[InstallRecord]:
        with self._lock:
            data = self._load().get(self._key(name, version))
        return self._parse(data) if data is not None else None

    def put(self, record: InstallRecord) -> None:
        """Insert or replace the record for (record.name, record.version)."""
        with self._lock:
            records = self._load()
            records[self._key(record.name, record.version)] = record.model_dump(mode="json")
            self._save(records)
        self.logger.info(f"Recorded install of {record.name} {record.version} at {record.revision}")

    def remove(self, name: str, version: str) -> Optional[InstallRecord]:
        with self._lock:
            records = self._load()
            data = records.pop(self._key(name, version), None)
            if data is not None:
                self._save(records)
        return self._parse(data) if data is not None else None

    def list(self, name: Optional[str] = None) -> List[InstallRecord]:
        with self._lock:
            records = self._load()
        parsed = [self._parse(data) for data in records.values()]
        if name is not None:
            parsed = [record for record in parsed if record.name == name]
        return sorted(parsed, key=lambda record: record.key)

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise RecordStoreError(f"Cannot read install records from {self.path}: {e}") from e
        return document.get("records", {})

    def _save(self, records: Dict[str, Any]) -> None:
        document = {
            "records": records,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp",
                                            dir=self.path.parent)
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(document, f, indent=2, default=str)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise RecordStoreError(f"Cannot write install records to {self.path}: {e}") from e

    def _parse(self, data: Dict[str, Any]) -> InstallRecord:
        try:
            return InstallRecord.model_validate(data)
        except PydanticValidationError as e:
            raise RecordStoreError(f"Corrupt install record in {self.path}: {e}") from e
