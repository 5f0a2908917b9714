from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Tuple

import orjson

from ..utils import now_ts_ns, read_jsonl, stable_hash, to_jsonable, write_jsonl_line

GENESIS_HASH = ""


def _event_body(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "ts": entry.get("ts"),
        "type": entry.get("type"),
        "type_text": entry.get("type_text"),
        "payload": entry.get("payload"),
        "prev_hash": entry.get("prev_hash"),
    }


class AuditJournal:
    def __init__(self, path: Path) -> None:
        self.path = path
        self._last_hash = GENESIS_HASH
        self._count = 0
        if path.exists():
            entries = read_jsonl(path)
            self._count = len(entries)
            if entries:
                self._last_hash = entries[-1].get("hash", GENESIS_HASH)

    @property
    def last_hash(self) -> str:
        return self._last_hash

    def __len__(self) -> int:
        return self._count

    def append(self, event_type: str, type_text: str, payload: Dict[str, Any]) -> str:
        event: Dict[str, Any] = {
            "ts": now_ts_ns(),
            "type": event_type,
            "type_text": type_text,
            "payload": to_jsonable(payload),
            "prev_hash": self._last_hash,
        }
        event_hash = stable_hash(event)
        event["hash"] = event_hash
        write_jsonl_line(self.path, event)
        self._last_hash = event_hash
        self._count += 1
        return event_hash

    def read(self) -> List[Dict[str, Any]]:
        return read_jsonl(self.path)

    @staticmethod
    def verify_chain(path: Path) -> Tuple[bool, str]:
        try:
            entries = read_jsonl(path)
        except orjson.JSONDecodeError as exc:
            return False, f"unreadable journal: {exc}"
        prev_hash = GENESIS_HASH
        for idx, entry in enumerate(entries):
            if entry.get("prev_hash") != prev_hash:
                return False, f"prev_hash mismatch at {idx}"
            if stable_hash(_event_body(entry)) != entry.get("hash", ""):
                return False, f"hash mismatch at {idx}"
            prev_hash = entry["hash"]
        return True, f"ok ({len(entries)} events)"
