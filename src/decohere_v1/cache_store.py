from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence

import orjson
from pydantic import ValidationError

from .constraints import Constraint, compile_heuristics, merge, validate
from .log import get_logger
from .schemas import CacheEntry
from .utils import hash_text, read_json, write_json_atomic

KEY_BASE_LIMIT = 40
KEY_HASH_CHARS = 12


def make_cache_key(identity: str) -> str:
    base = re.sub(r"[^A-Za-z0-9]+", "_", identity).strip("_")
    truncated = base[:KEY_BASE_LIMIT] if base else "type"
    return f"{truncated}_{hash_text(identity)[:KEY_HASH_CHARS]}"


@dataclass
class CachedMaterialization:
    entry: CacheEntry
    heuristic_constraints: List[Constraint]
    constraints: List[Constraint]


class CacheStore:
    def __init__(self, cache_dir: Path, reserved: Iterable[str] = (), step_limit: int = 10_000) -> None:
        self.cache_dir = cache_dir
        self.reserved = set(reserved)
        self.step_limit = step_limit
        self.logger = get_logger("cache_store", cache_dir=str(cache_dir))

    def path_for(self, identity: str) -> Path:
        return self.cache_dir / f"{make_cache_key(identity)}.json"

    def load(self, identity: str) -> Optional[CacheEntry]:
        path = self.path_for(identity)
        if not path.exists():
            return None
        try:
            return CacheEntry.model_validate(read_json(path))
        except (OSError, orjson.JSONDecodeError, ValidationError) as exc:
            self.logger.warning("cache entry unreadable", identity=identity, path=str(path), error=str(exc))
            return None

    def save(self, entry: CacheEntry) -> Path:
        path = self.path_for(entry.type_text)
        write_json_atomic(path, entry.to_json())
        self.logger.debug("cache entry saved", identity=entry.type_text, path=str(path))
        return path

    def delete(self, identity: str) -> bool:
        path = self.path_for(identity)
        if not path.exists():
            return False
        path.unlink()
        return True

    def entry_paths(self) -> Iterator[Path]:
        if not self.cache_dir.exists():
            return iter(())
        return (
            path
            for path in sorted(self.cache_dir.iterdir())
            if path.is_file() and path.suffix == ".json" and path.name not in self.reserved
        )

    def materialize(
        self, identity: str, fingerprint: str, constraints: Sequence[Constraint]
    ) -> Optional[CachedMaterialization]:
        entry = self.load(identity)
        if entry is None:
            return None
        if entry.fingerprint != fingerprint:
            self.logger.info("cache entry stale", identity=identity, reason="fingerprint changed")
            return None
        heuristic_constraints, _ = compile_heuristics(entry.heuristics, step_limit=self.step_limit)
        if len(heuristic_constraints) != len(entry.heuristics):
            self.logger.info("cache entry stale", identity=identity, reason="heuristic failed to compile")
            return None
        combined = merge(constraints, heuristic_constraints)
        outcome = validate(combined, entry.value)
        if not outcome.ok:
            self.logger.info(
                "cache entry stale",
                identity=identity,
                reason="cached value failed validation",
                errors=list(outcome.errors),
            )
            return None
        return CachedMaterialization(
            entry=entry,
            heuristic_constraints=heuristic_constraints,
            constraints=combined,
        )
