from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import orjson
from pydantic import ValidationError

from .errors import EmptyCandidateSet
from .ledger.journal import AuditJournal
from .log import get_logger
from .schemas import (
    AuditEntry,
    AuditEntryType,
    AuditSummary,
    CandidateScore,
    CandidateSelectionAudit,
    PredicateAudit,
    ValidationAudit,
)
from .scoring import to_rankings
from .utils import now_iso, read_json, write_json_atomic


def _compact(details: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in details.items() if value is not None}


class AuditLog:
    def __init__(
        self,
        journal: Optional[AuditJournal] = None,
        clock: Callable[[], str] = now_iso,
    ) -> None:
        self.journal = journal
        self.clock = clock
        self._entries: List[AuditEntry] = []
        self._predicate_audits: Dict[str, PredicateAudit] = {}
        self._candidate_audits: Dict[str, List[CandidateSelectionAudit]] = {}
        self._validation_audits: Dict[str, List[ValidationAudit]] = {}

    def _append(
        self, timestamp: str, entry_type: AuditEntryType, type_text: str, details: Mapping[str, Any]
    ) -> AuditEntry:
        entry = AuditEntry(
            timestamp=timestamp,
            type=entry_type,
            type_text=type_text,
            details=_compact(details),
        )
        self._entries.append(entry)
        if self.journal is not None:
            self.journal.append(entry_type, type_text, entry.details)
        return entry

    def record_predicate_discovery(
        self,
        predicate_id: str,
        name: str,
        discovered_from: str,
        confidence: float,
        context: Optional[str] = None,
    ) -> PredicateAudit:
        now = self.clock()
        existing = self._predicate_audits.get(predicate_id)
        if existing is None:
            audit = PredicateAudit(
                predicate_id=predicate_id,
                name=name,
                discovered_at=now,
                discovered_from=discovered_from,
                confidence=confidence,
                usage_count=1,
                last_used_at=now,
                context=context,
            )
        else:
            audit = existing.model_copy(
                update={
                    "usage_count": existing.usage_count + 1,
                    "last_used_at": now,
                    "confidence": max(existing.confidence, confidence),
                }
            )
        self._predicate_audits[predicate_id] = audit
        self._append(
            now,
            "predicate_discovered",
            discovered_from,
            {
                "predicateId": predicate_id,
                "name": name,
                "confidence": confidence,
                "context": context,
            },
        )
        return audit

    def record_candidate_ranking(
        self, type_text: str, attempt: int, scores: Sequence[CandidateScore]
    ) -> AuditEntry:
        return self._append(
            self.clock(),
            "candidate_ranked",
            type_text,
            {
                "attempt": attempt,
                "candidateCount": len(scores),
                "rankings": [item.to_json() for item in to_rankings(scores)],
            },
        )

    def record_candidate_selection(
        self,
        type_text: str,
        attempt: int,
        scores: Sequence[CandidateScore],
        selected_index: int,
        confidence: float,
        selection_reason: str,
    ) -> CandidateSelectionAudit:
        if not scores:
            raise EmptyCandidateSet()
        if not 0 <= selected_index < len(scores):
            raise IndexError(f"selected_index {selected_index} out of range for {len(scores)} candidates")
        selected = scores[selected_index]
        audit = CandidateSelectionAudit(
            attempt=attempt,
            candidate_rankings=to_rankings(scores),
            selected_index=selected_index,
            selected_name=selected.candidate.name,
            selected_score=selected.total_score,
            confidence=confidence,
            selection_reason=selection_reason,
        )
        self._candidate_audits.setdefault(type_text, []).append(audit)
        self._append(
            self.clock(),
            "candidate_selected",
            type_text,
            {
                "attempt": attempt,
                "candidateCount": len(scores),
                "selectedName": selected.candidate.name,
                "selectedScore": selected.total_score,
                "confidence": confidence,
                "selectionReason": selection_reason,
            },
        )
        return audit

    def record_validation(
        self,
        type_text: str,
        attempt: int,
        valid: bool,
        errors: Optional[Sequence[str]] = None,
        feedback: Optional[str] = None,
    ) -> ValidationAudit:
        audit = ValidationAudit(
            attempt=attempt,
            valid=valid,
            errors=list(errors) if errors is not None else None,
            feedback=feedback,
        )
        self._validation_audits.setdefault(type_text, []).append(audit)
        self._append(
            self.clock(),
            "validation_passed" if valid else "validation_failed",
            type_text,
            {"attempt": attempt, "errors": audit.errors, "feedback": feedback},
        )
        return audit

    def get_entries(self) -> List[AuditEntry]:
        return list(self._entries)

    def get_predicate_audit(self, predicate_id: str) -> Optional[PredicateAudit]:
        return self._predicate_audits.get(predicate_id)

    def get_all_predicate_audits(self) -> List[PredicateAudit]:
        return list(self._predicate_audits.values())

    def get_candidate_audits(self, type_text: str) -> List[CandidateSelectionAudit]:
        return list(self._candidate_audits.get(type_text, []))

    def get_latest_candidate_audit(self, type_text: str) -> Optional[CandidateSelectionAudit]:
        audits = self._candidate_audits.get(type_text)
        return audits[-1] if audits else None

    def get_validation_audits(self, type_text: str) -> List[ValidationAudit]:
        return list(self._validation_audits.get(type_text, []))

    def get_summary(self) -> AuditSummary:
        validations = [item for audits in self._validation_audits.values() for item in audits]
        passed = sum(1 for item in validations if item.valid)
        total = len(validations)
        return AuditSummary(
            total_entries=len(self._entries),
            total_predicates=len(self._predicate_audits),
            total_candidate_selections=sum(len(items) for items in self._candidate_audits.values()),
            total_validations=total,
            success_rate=passed / total if total else 0.0,
        )

    def export(self) -> Dict[str, Any]:
        return {
            "entries": [entry.to_json() for entry in self._entries],
            "predicateAudits": [audit.to_json() for audit in self._predicate_audits.values()],
            "candidateAudits": {
                key: [audit.to_json() for audit in audits]
                for key, audits in self._candidate_audits.items()
            },
            "validationAudits": {
                key: [audit.to_json() for audit in audits]
                for key, audits in self._validation_audits.items()
            },
        }

    @classmethod
    def from_export(
        cls, data: Mapping[str, Any], journal: Optional[AuditJournal] = None
    ) -> "AuditLog":
        log = cls(journal=journal)
        log._entries = [AuditEntry.model_validate(item) for item in data.get("entries", [])]
        for item in data.get("predicateAudits", []):
            audit = PredicateAudit.model_validate(item)
            log._predicate_audits[audit.predicate_id] = audit
        for key, audits in dict(data.get("candidateAudits", {})).items():
            log._candidate_audits[key] = [
                CandidateSelectionAudit.model_validate(item) for item in audits
            ]
        for key, audits in dict(data.get("validationAudits", {})).items():
            log._validation_audits[key] = [ValidationAudit.model_validate(item) for item in audits]
        return log

    def save(self, path: Path) -> None:
        write_json_atomic(path, self.export())

    @classmethod
    def load(cls, path: Path, journal: Optional[AuditJournal] = None) -> "AuditLog":
        logger = get_logger("audit")
        if not path.exists():
            return cls(journal=journal)
        try:
            data = read_json(path)
            if not isinstance(data, dict):
                raise ValueError("audit export must be an object")
            return cls.from_export(data, journal=journal)
        except (OSError, orjson.JSONDecodeError, ValidationError, ValueError) as exc:
            logger.warning("audit export unreadable, starting empty", path=str(path), error=str(exc))
            return cls(journal=journal)

    def clear(self) -> None:
        self._entries.clear()
        self._predicate_audits.clear()
        self._candidate_audits.clear()
        self._validation_audits.clear()
