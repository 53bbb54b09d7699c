"""
JSON-file-backed record stores.

Domain and certificate records live in pretty-printed JSON arrays keyed
by domain name. Mutations go through `locked()`, which holds an exclusive
flock on a sidecar lock file for the whole load-mutate-save cycle.
"""

import fcntl
import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

from webstack.config import Settings, get_settings
from webstack.core.errors import RecordNotFoundError, StoreError
from webstack.models.certificate import CertificateRecord
from webstack.models.domain import DomainRecord

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class JsonRecordStore(Generic[RecordT]):
    """
    Ordered collection of records persisted as a JSON array.

    Records are matched by exact comparison of their key field. A missing
    backing file is an empty store, not an error.
    """

    def __init__(self, path: Path | str, model: type[RecordT], key: str, kind: str):
        self.path = Path(path)
        self.model = model
        self.key = key
        self.kind = kind
        self._held: list[RecordT] | None = None

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    def _key_of(self, record: RecordT) -> str:
        return getattr(record, self.key)

    def _encode(self, record: RecordT) -> dict:
        to_storage: Callable[[], dict] | None = getattr(record, "to_storage", None)
        if to_storage is not None:
            return to_storage()
        return record.model_dump(mode="json")

    def load(self) -> list[RecordT]:
        """Read every record, in file order."""
        try:
            if not self.path.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
                return []
            raw = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StoreError(
                f"Could not read {self.kind} store {self.path}: {e}",
                suggestion=f"Check the permissions and encoding of {self.path} (UTF-8 JSON expected)",
            )

        if not raw.strip():
            return []

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StoreError(
                f"Could not parse {self.kind} store {self.path}: {e}",
                suggestion=f"Fix or remove {self.path}",
            )

        if data is None:
            return []
        if not isinstance(data, list):
            raise StoreError(f"{self.kind.capitalize()} store {self.path} must contain a JSON array")

        records = []
        for item in data:
            try:
                records.append(self.model.model_validate(item))
            except ValidationError as e:
                raise StoreError(f"Invalid {self.kind} record in {self.path}: {e}")
        return records

    def save(self, records: list[RecordT]) -> None:
        """Overwrite the whole collection."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps([self._encode(r) for r in records], indent=2)

        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(payload)
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, self.path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise StoreError(f"Could not write {self.kind} store {self.path}: {e}")

        logger.debug(f"Saved {len(records)} {self.kind} record(s) to {self.path}")

    @contextmanager
    def locked(self) -> Iterator[list[RecordT]]:
        """
        Load the records under an exclusive lock and save them on clean exit.

        Usage:
            with store.locked() as records:
                records.append(record)

        An exception inside the block leaves the file untouched. Nested use
        on the same store shares the outer list; only the outermost block
        saves and releases the lock.
        """
        if self._held is not None:
            yield self._held
            return

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            try:
                self._held = self.load()
                yield self._held
                self.save(self._held)
            finally:
                self._held = None
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def find(self, key: str) -> RecordT:
        """Return the record with this key or raise RecordNotFoundError."""
        records = self._held if self._held is not None else self.load()
        for record in records:
            if self._key_of(record) == key:
                return record
        raise RecordNotFoundError(f"{self.kind.capitalize()} {key} not found", domain=key)

    def get(self, key: str) -> RecordT | None:
        try:
            return self.find(key)
        except RecordNotFoundError:
            return None

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def upsert(self, record: RecordT) -> None:
        """Replace the record with the same key, or append it."""
        key = self._key_of(record)
        with self.locked() as records:
            for i, existing in enumerate(records):
                if self._key_of(existing) == key:
                    records[i] = record
                    break
            else:
                records.append(record)

    def remove(self, key: str) -> RecordT:
        """Delete and return the record with this key."""
        with self.locked() as records:
            for i, existing in enumerate(records):
                if self._key_of(existing) == key:
                    return records.pop(i)
        raise RecordNotFoundError(f"{self.kind.capitalize()} {key} not found", domain=key)


class DomainStore(JsonRecordStore[DomainRecord]):
    """Domain records keyed by name."""

    def __init__(self, path: Path | str):
        super().__init__(path, DomainRecord, key="name", kind="domain")


class CertificateStore(JsonRecordStore[CertificateRecord]):
    """Certificate records keyed by domain."""

    def __init__(self, path: Path | str):
        super().__init__(path, CertificateRecord, key="domain", kind="certificate")


def get_domain_store(config: Settings | None = None) -> DomainStore:
    config = config or get_settings()
    return DomainStore(config.domains_file)


def get_certificate_store(config: Settings | None = None) -> CertificateStore:
    config = config or get_settings()
    return CertificateStore(config.ssl_file)
