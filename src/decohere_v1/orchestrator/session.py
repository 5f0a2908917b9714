from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

from ..audit import AuditLog
from ..bundle import BundleSpec
from ..cache_manager import CacheManager
from ..cache_store import CacheStore
from ..config import Settings
from ..constraints import Constraint, ConstraintSpecification
from ..ledger.journal import AuditJournal
from ..log import get_logger
from ..oracle_api import BaseOracle
from ..registry import HelperRegistry, PredicateRegistry
from ..schemas import (
    CacheEntry,
    CandidateSelectionAudit,
    DeclarationFingerprint,
    HeuristicDefinition,
    RegenerationReport,
)
from ..utils import now_iso
from .synthesis import SynthesisResult, Synthesizer


@dataclass
class SynthesisOutcome:
    identity: str
    value: Any
    heuristics: List[HeuristicDefinition]
    constraints: List[Constraint]
    candidate_selection_audit: Optional[CandidateSelectionAudit]
    entry: CacheEntry
    from_cache: bool = False
    attempts: int = 0
    confidence: Optional[float] = None
    ranked_names: List[str] = field(default_factory=list)


class DecohereSession:
    def __init__(self, settings: Settings, oracle: BaseOracle, logger: Any = None) -> None:
        self.settings = settings
        self.oracle = oracle
        self.logger = logger or get_logger("session")
        cache_dir = settings.cache_path()
        journal_path = settings.journal_path()
        self.journal = AuditJournal(journal_path) if journal_path is not None else None
        self.registry = PredicateRegistry(settings.registry_path())
        self.helper_registry = HelperRegistry(settings.helper_registry_path())
        self.audit_log = AuditLog.load(settings.audit_path(), journal=self.journal)
        self.cache_store = CacheStore(
            cache_dir,
            reserved=settings.reserved_cache_files(),
            step_limit=settings.predicate_step_limit,
        )
        self.cache_manager = CacheManager(
            cache_dir,
            self.audit_log,
            reserved=settings.reserved_cache_files(),
            confidence_threshold=settings.confidence_threshold,
            high_confidence_threshold=settings.high_confidence_threshold,
        )
        self.synthesizer = Synthesizer(
            oracle,
            self.registry,
            self.audit_log,
            helper_registry=self.helper_registry,
            max_attempts=settings.max_attempts,
            weights=settings.scoring_weights,
            candidate_confidence_threshold=settings.candidate_confidence_threshold,
            step_limit=settings.predicate_step_limit,
        )
        self._closed = False

    def __enter__(self) -> "DecohereSession":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

    def _from_cache(
        self, identity: str, fingerprint: str, specification: ConstraintSpecification
    ) -> Optional[SynthesisOutcome]:
        cached = self.cache_store.materialize(identity, fingerprint, specification.must)
        if cached is None:
            return None
        latest = self.audit_log.get_latest_candidate_audit(identity)
        self.logger.info("cache hit", identity=identity, attempts=cached.entry.attempts)
        return SynthesisOutcome(
            identity=identity,
            value=cached.entry.value,
            heuristics=list(cached.entry.heuristics),
            constraints=cached.constraints,
            candidate_selection_audit=latest,
            entry=cached.entry,
            from_cache=True,
            attempts=cached.entry.attempts,
            confidence=latest.confidence if latest is not None else None,
        )

    def _persist_result(
        self,
        result: SynthesisResult,
        fingerprint: str,
        dependencies: List[DeclarationFingerprint],
    ) -> CacheEntry:
        entry = CacheEntry(
            type_text=result.identity,
            fingerprint=fingerprint,
            dependencies=dependencies,
            model=result.model,
            value=result.value,
            created_at=now_iso(),
            attempts=result.attempts,
            attempt_log=result.attempt_log,
            heuristics=result.heuristics,
            constraints=[item.description for item in result.constraints],
            predicate_ids=result.predicate_ids,
        )
        self.cache_store.save(entry)
        self.registry.persist()
        return entry

    def synthesize(
        self,
        identity: str,
        fingerprint: str,
        specification: ConstraintSpecification,
        context: str = "",
        *,
        dependencies: Optional[List[DeclarationFingerprint]] = None,
    ) -> SynthesisOutcome:
        cached = self._from_cache(identity, fingerprint, specification)
        if cached is not None:
            return cached
        result = self.synthesizer.synthesize(identity, specification, context)
        entry = self._persist_result(result, fingerprint, dependencies or [])
        return SynthesisOutcome(
            identity=identity,
            value=result.value,
            heuristics=result.heuristics,
            constraints=result.constraints,
            candidate_selection_audit=result.candidate_selection_audit,
            entry=entry,
            from_cache=False,
            attempts=result.attempts,
            confidence=result.confidence,
            ranked_names=[item.candidate.name for item in result.ranked_candidates],
        )

    def materialize_bundle(self, bundle: BundleSpec) -> SynthesisOutcome:
        return self.synthesize(
            bundle.identity,
            bundle.fingerprint(),
            bundle.specification(),
            bundle.context_snippet(self.settings.context_snippet_limit),
            dependencies=bundle.resolved_dependencies(),
        )

    def audit_and_report(self, cache_dir: Optional[Path] = None) -> RegenerationReport:
        audits = self.cache_manager.audit_cache_entries(cache_dir)
        return self.cache_manager.generate_regeneration_report(audits)

    def close(self) -> None:
        if self._closed:
            return
        self.registry.persist()
        self.helper_registry.persist()
        self.audit_log.save(self.settings.audit_path())
        self._closed = True
        self.logger.debug("session closed", summary=self.audit_log.get_summary().to_json())
