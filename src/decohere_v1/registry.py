from __future__ import annotations

from pathlib import Path
from typing import Dict, Generic, List, Optional, Sequence, Type, TypeVar

import orjson
from pydantic import ValidationError

from .log import get_logger
from .schemas import HelperCategory, HelperRegistryEntry, PredicateRegistryEntry
from .utils import hash_text, read_json, write_json_atomic

EntryT = TypeVar("EntryT", PredicateRegistryEntry, HelperRegistryEntry)


class Registry(Generic[EntryT]):
    entry_model: Type[EntryT]

    def __init__(self, path: Optional[Path]) -> None:
        self.path = path
        self._entries: Dict[str, EntryT] = {}
        self._dirty = False
        self.logger = get_logger("registry", kind=self.entry_model.__name__)
        self._load()

    def _load(self) -> None:
        self._entries = {}
        if self.path is None or not self.path.exists():
            return
        try:
            raw = read_json(self.path)
        except (OSError, orjson.JSONDecodeError) as exc:
            self.logger.warning("registry unreadable, starting empty", path=str(self.path), error=str(exc))
            return
        if not isinstance(raw, list):
            self.logger.warning("registry is not a list, starting empty", path=str(self.path))
            return
        for item in raw:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            try:
                entry = self.entry_model.model_validate(item)
            except ValidationError:
                self.logger.warning("skipping malformed registry entry", id=item.get("id"))
                continue
            self._entries[entry.id] = entry

    def register(self, entry: EntryT) -> str:
        if not entry.id:
            return ""
        existing = self._entries.get(entry.id)
        if existing is None or existing != entry:
            self._entries[entry.id] = entry
            self._dirty = True
        return entry.id

    def get(self, entry_id: str) -> Optional[EntryT]:
        return self._entries.get(entry_id)

    def all(self) -> List[EntryT]:
        return list(self._entries.values())

    def sorted_entries(self) -> List[EntryT]:
        return [self._entries[key] for key in sorted(self._entries)]

    def is_dirty(self) -> bool:
        return self._dirty

    def size(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries = {}
        self._dirty = True

    def identities(self) -> List[str]:
        return [f"{entry.name} ({entry.id[:12]})" for entry in self.sorted_entries()]

    def persist(self) -> bool:
        if not self._dirty or self.path is None:
            return False
        write_json_atomic(self.path, [entry.to_json() for entry in self.sorted_entries()])
        self._dirty = False
        self.logger.debug("registry persisted", path=str(self.path), entries=self.size())
        return True


class PredicateRegistry(Registry[PredicateRegistryEntry]):
    entry_model = PredicateRegistryEntry

    def register(self, entry: PredicateRegistryEntry) -> str:
        entry_id = hash_text(entry.predicate_source)
        if entry.id != entry_id:
            entry = entry.model_copy(update={"id": entry_id})
        return super().register(entry)

    def register_predicate(self, name: str, description: str, predicate_source: str) -> str:
        source = predicate_source.strip()
        return self.register(
            PredicateRegistryEntry(
                id=hash_text(source),
                name=name,
                description=description,
                predicate_source=source,
            )
        )


class HelperRegistry(Registry[HelperRegistryEntry]):
    entry_model = HelperRegistryEntry

    def register_helper(
        self,
        name: str,
        description: str,
        category: HelperCategory,
        source: str,
        signature: str,
        input_types: Sequence[str] = (),
        output_type: str = "unknown",
    ) -> str:
        return self.register(
            HelperRegistryEntry(
                id=hash_text(source.strip()),
                name=name,
                description=description,
                category=category,
                source=source.strip(),
                signature=signature,
                input_types=list(input_types),
                output_type=output_type,
            )
        )
