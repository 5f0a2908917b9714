from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

AuditEntryType = Literal[
    "predicate_discovered",
    "candidate_ranked",
    "candidate_selected",
    "validation_passed",
    "validation_failed",
]
HelperCategory = Literal["humanizer", "validator", "generator", "transformer"]
RegenerationAction = Literal["preserve", "regenerate"]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class HeuristicDefinition(WireModel):
    name: str
    description: str
    predicate: str


class CandidateValidator(WireModel):
    name: Optional[str] = None
    description: Optional[str] = None
    predicate: str

    def as_definition(self, index: int) -> HeuristicDefinition:
        return HeuristicDefinition(
            name=self.name or f"candidate_{index + 1}",
            description=self.description or "Candidate validator",
            predicate=self.predicate,
        )


class PredicateRegistryEntry(WireModel):
    id: str
    name: str
    description: str
    predicate_source: str


class HelperRegistryEntry(WireModel):
    id: str
    name: str
    description: str
    category: HelperCategory
    source: str
    signature: str
    input_types: List[str] = Field(default_factory=list)
    output_type: str = "unknown"


class CandidateScore(WireModel):
    candidate: HeuristicDefinition
    complexity_score: float
    coverage_score: float
    reusability_score: float
    total_score: float
    reasoning: List[str] = Field(default_factory=list)


class PredicateAudit(WireModel):
    predicate_id: str
    name: str
    discovered_at: str
    discovered_from: str
    confidence: float
    usage_count: int = 1
    last_used_at: Optional[str] = None
    context: Optional[str] = None


class CandidateRanking(WireModel):
    model_config = ConfigDict(frozen=True)

    rank: int
    name: str
    total_score: float
    complexity_score: float
    coverage_score: float
    reusability_score: float
    reasoning: List[str] = Field(default_factory=list)


class CandidateSelectionAudit(WireModel):
    model_config = ConfigDict(frozen=True)

    attempt: int
    candidate_rankings: List[CandidateRanking]
    selected_index: int
    selected_name: str
    selected_score: float
    confidence: float
    selection_reason: str


class ValidationAudit(WireModel):
    model_config = ConfigDict(frozen=True)

    attempt: int
    valid: bool
    errors: Optional[List[str]] = None
    feedback: Optional[str] = None


class AuditEntry(WireModel):
    timestamp: str
    type: AuditEntryType
    type_text: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AuditSummary(WireModel):
    total_entries: int
    total_predicates: int
    total_candidate_selections: int
    total_validations: int
    success_rate: float


class DeclarationFingerprint(WireModel):
    name: str
    source_file: str = ""
    hash: str = ""
    text: str


class AttemptRecord(WireModel):
    attempt: int
    model: str
    feedback: str = ""
    explanation: Optional[str] = None


class CacheEntry(WireModel):
    type_text: str
    fingerprint: str
    dependencies: List[DeclarationFingerprint] = Field(default_factory=list)
    model: str = "unknown"
    value: Any
    created_at: str = ""
    attempts: int = 0
    attempt_log: List[AttemptRecord] = Field(default_factory=list)
    heuristics: List[HeuristicDefinition] = Field(default_factory=list)
    constraints: List[str] = Field(default_factory=list)
    predicate_ids: List[str] = Field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        data["value"] = self.value
        return data


class CacheAudit(WireModel):
    path: str
    type_text: str
    created_at: datetime
    last_modified: datetime
    size_bytes: int
    confidence: float = 0.5
    selected_candidate: Optional[str] = None
    selected_score: Optional[float] = None
    predicate_ids: Optional[List[str]] = None


class RegenerationDetail(WireModel):
    type_text: str
    cache_key: str
    action: RegenerationAction
    reason: str
    confidence: Optional[float] = None


class RegenerationReport(WireModel):
    total_cache_entries: int
    entries_checked: int
    entries_preserved: int
    entries_marked_for_regeneration: int
    high_confidence_preserved: int
    average_confidence: float
    details: List[RegenerationDetail] = Field(default_factory=list)
    regeneration_time: Optional[float] = None


class CacheHealthMetrics(WireModel):
    total: int
    excellent: int
    good: int
    acceptable: int
    poor: int
    percentage_excellent: float
    percentage_good: float
    percentage_acceptable: float
    percentage_poor: float


class OracleRequest(WireModel):
    system_instruction: str
    user_prompt: str


class OracleResponse(WireModel):
    value: Any
    heuristics: List[HeuristicDefinition] = Field(default_factory=list)
    candidate_validators: List[CandidateValidator] = Field(default_factory=list)
    explanation: Optional[str] = None


SCHEMA_REGISTRY: List[type[BaseModel]] = [
    PredicateRegistryEntry,
    HelperRegistryEntry,
    CacheEntry,
    PredicateAudit,
    CandidateSelectionAudit,
    ValidationAudit,
    AuditEntry,
    RegenerationReport,
    OracleRequest,
    OracleResponse,
]


def export_schemas(output_dir: str) -> None:
    output = Path(output_dir)
    output.mkdir(parents=True, exist_ok=True)
    for model in SCHEMA_REGISTRY:
        schema = model.model_json_schema(by_alias=True)
        path = output / f"{model.__name__}.schema.json"
        path.write_bytes(orjson.dumps(schema, option=orjson.OPT_SORT_KEYS))
