"""Character store — whole-record CRUD over a persistence backend."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from sketchfriends.models import Character

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """The persistence backend is full, unavailable or holds unreadable data."""


class CharacterNotFoundError(KeyError):
    """No character with the requested id exists."""

    def __init__(self, character_id: str) -> None:
        self.character_id = character_id
        super().__init__(character_id)

    def __str__(self) -> str:
        return f"character not found: {self.character_id}"


class Persistence(Protocol):
    """A single collection of JSON-ready records keyed by id."""

    def read_all(self) -> dict[str, dict[str, Any]]: ...

    def write_all(self, records: dict[str, dict[str, Any]]) -> None: ...


class MemoryPersistence:
    """Keeps records in a dict; nothing survives the process."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}

    def read_all(self) -> dict[str, dict[str, Any]]:
        return json.loads(json.dumps(self._records))

    def write_all(self, records: dict[str, dict[str, Any]]) -> None:
        self._records = json.loads(json.dumps(records))


class JsonFilePersistence:
    """One JSON document on disk, replaced atomically on every write."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def read_all(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise StorageError(f"cannot read {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise StorageError(f"{self.path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"{self.path} does not hold a character collection")
        return data

    def write_all(self, records: dict[str, dict[str, Any]]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(records, fh, ensure_ascii=False, indent=2)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(f"cannot write {self.path}: {exc}") from exc


class CharacterStore:
    """list / get / upsert / delete — never partial updates."""

    def __init__(self, backend: Persistence | None = None) -> None:
        self.backend: Persistence = backend or MemoryPersistence()

    @classmethod
    def at(cls, path: Path) -> CharacterStore:
        return cls(JsonFilePersistence(path))

    def _load(self, character_id: str, record: dict[str, Any]) -> Character:
        try:
            return Character.model_validate(record)
        except ValidationError as exc:
            raise StorageError(f"stored character {character_id} is corrupt: {exc}") from exc

    def list(self) -> list[Character]:
        return [self._load(cid, rec) for cid, rec in self.backend.read_all().items()]

    def get(self, character_id: str) -> Character | None:
        record = self.backend.read_all().get(character_id)
        if record is None:
            return None
        return self._load(character_id, record)

    def require(self, character_id: str) -> Character:
        character = self.get(character_id)
        if character is None:
            raise CharacterNotFoundError(character_id)
        return character

    def upsert(self, character: Character) -> Character:
        """Insert *character*, or replace the record with the same id."""
        record = character.model_dump(mode="json", by_alias=True)
        # model_copy() skips validation; re-check lineage before anything is written.
        Character.model_validate(record)
        records = self.backend.read_all()
        action = "Replaced" if character.id in records else "Inserted"
        records[character.id] = record
        self.backend.write_all(records)
        logger.debug("%s character %s", action, character.id)
        return character

    def delete(self, character_id: str) -> bool:
        """Remove a character and everything it owns. Returns False if unknown."""
        records = self.backend.read_all()
        if records.pop(character_id, None) is None:
            return False
        self.backend.write_all(records)
        logger.info("Deleted character %s", character_id)
        return True
