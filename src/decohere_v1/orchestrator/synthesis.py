from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..audit import AuditLog
from ..config import ScoringWeights
from ..constraints import (
    Constraint,
    ConstraintSpecification,
    build_constraint_summary,
    compile_heuristics,
    merge,
    merge_heuristic_definitions,
    validate,
)
from ..errors import DecohereError, OracleError, SynthesisExhausted
from ..log import get_logger
from ..oracle_api import BaseOracle
from ..prompts import (
    GENERALIZE_FEEDBACK,
    PromptContext,
    build_heuristic_library_snippet,
    build_request,
)
from ..registry import HelperRegistry, PredicateRegistry
from ..responses import format_oracle_response, is_infeasible, parse_oracle_response
from ..schemas import (
    AttemptRecord,
    CandidateScore,
    CandidateSelectionAudit,
    HeuristicDefinition,
    OracleRequest,
    OracleResponse,
)
from ..scoring import format_candidate_score, is_confident, rank
from ..utils import dedupe_values
from .results import Fatal, Ok, Retry, RetryableResult, StepResult

DEFAULT_DISCOVERY_CONFIDENCE = 0.5


class SynthesisState(str, Enum):
    REQUESTING = "requesting"
    PARSING = "parsing"
    SCORING = "scoring"
    VALIDATING = "validating"
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    INFEASIBLE_RETRY = "infeasible_retry"
    EXHAUSTED = "exhausted"


@dataclass
class SynthesisResult:
    identity: str
    value: Any
    model: str
    attempts: int
    constraints: List[Constraint]
    heuristics: List[HeuristicDefinition]
    ranked_candidates: List[CandidateScore] = field(default_factory=list)
    candidate_selection_audit: Optional[CandidateSelectionAudit] = None
    attempt_log: List[AttemptRecord] = field(default_factory=list)
    predicate_ids: List[str] = field(default_factory=list)
    transitions: List[SynthesisState] = field(default_factory=list)

    @property
    def confidence(self) -> Optional[float]:
        if self.candidate_selection_audit is None:
            return None
        return self.candidate_selection_audit.confidence


@dataclass
class _Scored:
    ranked: List[CandidateScore]
    selection: Optional[CandidateSelectionAudit]
    heuristic_scores: Dict[str, float]


def validation_feedback(errors: Sequence[str]) -> str:
    summary = "; ".join(errors)
    return (
        f"Validation failed: {summary}. Satisfy every listed constraint while respecting inferred "
        "patterns; do not restrict to the literal sample values."
    )


class Synthesizer:
    def __init__(
        self,
        oracle: BaseOracle,
        registry: PredicateRegistry,
        audit_log: AuditLog,
        *,
        helper_registry: Optional[HelperRegistry] = None,
        max_attempts: int = 5,
        weights: Optional[ScoringWeights] = None,
        candidate_confidence_threshold: float = 0.6,
        step_limit: int = 10_000,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.oracle = oracle
        self.registry = registry
        self.audit_log = audit_log
        self.helper_registry = helper_registry
        self.max_attempts = max_attempts
        self.weights = weights or ScoringWeights()
        self.candidate_confidence_threshold = candidate_confidence_threshold
        self.step_limit = step_limit
        self.logger = get_logger("synthesis")

    def _predicate_patterns(self) -> List[str]:
        return [
            f"{entry.name} ({entry.id[:12]}): {entry.predicate_source}"
            for entry in self.registry.sorted_entries()
        ]

    def _build_request(
        self,
        identity: str,
        specification: ConstraintSpecification,
        constraints: Sequence[Constraint],
        heuristics: Sequence[HeuristicDefinition],
        context: str,
        attempt: int,
        feedback: str,
    ) -> OracleRequest:
        helpers = self.helper_registry.sorted_entries() if self.helper_registry else []
        prompt = PromptContext(
            type_text=identity,
            context=context or identity,
            summary=build_constraint_summary(constraints),
            must_constraints=list(constraints),
            suggested_patterns=list(specification.suggested),
            heuristics_library=build_heuristic_library_snippet(heuristics),
            attempt=attempt,
            feedback=feedback,
            available_helpers=helpers,
            available_predicate_patterns=self._predicate_patterns(),
        )
        return build_request(prompt)

    def _request(
        self, request: OracleRequest, identity: str, attempt: int
    ) -> RetryableResult[str]:
        try:
            return Ok(self.oracle.complete(request, identity=identity, attempt=attempt))
        except OracleError as exc:
            reason = exc.reason
            detail = str(exc)
        except Exception as exc:  # noqa: BLE001
            reason = "transport"
            detail = f"{type(exc).__name__}: {exc}"
        return Retry(
            reason=reason,
            feedback=f"The previous request failed ({detail}). Respond with a complete JSON object.",
            errors=(f"ORACLE_ERROR:{reason}",),
        )

    def _score(
        self,
        identity: str,
        attempt: int,
        response: OracleResponse,
        heuristics: Sequence[HeuristicDefinition],
        constraints: Sequence[Constraint],
        samples: Sequence[Any],
    ) -> StepResult[_Scored]:
        heuristic_ranked = rank(heuristics, constraints, samples, self.weights, self.step_limit)
        heuristic_scores = {item.candidate.name: item.total_score for item in heuristic_ranked}
        if response.candidate_validators:
            candidates = [
                item.as_definition(index) for index, item in enumerate(response.candidate_validators)
            ]
            ranked = rank(candidates, constraints, samples, self.weights, self.step_limit)
            source = "candidate validators"
        else:
            ranked = heuristic_ranked
            source = "heuristics"
        if not ranked:
            return Ok(_Scored(ranked=[], selection=None, heuristic_scores=heuristic_scores))
        self.audit_log.record_candidate_ranking(identity, attempt, ranked)
        self.logger.debug(
            "candidates ranked",
            identity=identity,
            attempt=attempt,
            ranked=[format_candidate_score(item, index) for index, item in enumerate(ranked)],
        )
        best = ranked[0]
        confident = is_confident(best, self.candidate_confidence_threshold)
        reason = (
            f"Highest total score among {len(ranked)} {source}"
            f" ({'confident' if confident else 'below confidence threshold'})"
        )
        try:
            selection = self.audit_log.record_candidate_selection(
                identity,
                attempt,
                ranked,
                0,
                best.total_score,
                reason,
            )
        except DecohereError as exc:
            return Fatal(exc)
        return Ok(_Scored(ranked=ranked, selection=selection, heuristic_scores=heuristic_scores))

    def _register_heuristics(
        self,
        identity: str,
        constraints: Sequence[Constraint],
        scores: Dict[str, float],
    ) -> List[str]:
        predicate_ids: List[str] = []
        for constraint in constraints:
            if not constraint.predicate_source:
                continue
            predicate_id = self.registry.register_predicate(
                constraint.name, constraint.description, constraint.predicate_source
            )
            self.audit_log.record_predicate_discovery(
                predicate_id,
                constraint.name,
                identity,
                scores.get(constraint.name, DEFAULT_DISCOVERY_CONFIDENCE),
                context=constraint.description,
            )
            predicate_ids.append(predicate_id)
        return predicate_ids

    def _record_retry(
        self,
        identity: str,
        attempt: int,
        retry: Retry,
        attempt_log: List[AttemptRecord],
        previous_feedback: str,
        explanation: Optional[str] = None,
    ) -> None:
        errors: Optional[Tuple[str, ...]] = retry.errors if retry.errors else None
        self.audit_log.record_validation(identity, attempt, False, errors, retry.feedback)
        attempt_log.append(
            AttemptRecord(
                attempt=attempt,
                model=self.oracle.model,
                feedback=previous_feedback,
                explanation=explanation,
            )
        )
        self.logger.info(
            "attempt rejected",
            identity=identity,
            attempt=attempt,
            reason=retry.reason,
            errors=list(retry.errors),
        )

    def synthesize(
        self,
        identity: str,
        specification: ConstraintSpecification,
        context: str = "",
        *,
        heuristics: Sequence[HeuristicDefinition] = (),
    ) -> SynthesisResult:
        seed_constraints, seed_heuristics = compile_heuristics(heuristics, step_limit=self.step_limit)
        constraints = merge(specification.must, seed_constraints)
        accumulated = list(seed_heuristics)
        transitions: List[SynthesisState] = []
        attempt_log: List[AttemptRecord] = []
        predicate_ids: List[str] = []
        feedback = ""

        for attempt in range(1, self.max_attempts + 1):
            transitions.append(SynthesisState.REQUESTING)
            request = self._build_request(
                identity, specification, constraints, accumulated, context, attempt, feedback
            )
            raw = self._request(request, identity, attempt)
            if isinstance(raw, Retry):
                self._record_retry(identity, attempt, raw, attempt_log, feedback)
                transitions.append(SynthesisState.RETRYING)
                feedback = raw.feedback
                continue

            transitions.append(SynthesisState.PARSING)
            parsed = parse_oracle_response(raw.value)
            if isinstance(parsed, Retry):
                self._record_retry(identity, attempt, parsed, attempt_log, feedback)
                transitions.append(SynthesisState.RETRYING)
                feedback = parsed.feedback
                continue
            response: OracleResponse = parsed.value
            self.logger.debug(
                "oracle response parsed",
                identity=identity,
                attempt=attempt,
                summary=format_oracle_response(response),
            )

            if is_infeasible(response):
                infeasible = Retry(reason="infeasible", feedback=GENERALIZE_FEEDBACK, infeasible=True)
                self._record_retry(
                    identity, attempt, infeasible, attempt_log, feedback, response.explanation
                )
                transitions.append(SynthesisState.INFEASIBLE_RETRY)
                feedback = infeasible.feedback
                continue

            new_constraints, normalized = compile_heuristics(
                response.heuristics, step_limit=self.step_limit
            )
            accumulated = merge_heuristic_definitions(accumulated, normalized)
            constraints = merge(constraints, new_constraints)

            transitions.append(SynthesisState.SCORING)
            samples = dedupe_values([*specification.examples, response.value])
            scored = self._score(identity, attempt, response, normalized, constraints, samples)
            if isinstance(scored, Fatal):
                transitions.append(SynthesisState.EXHAUSTED)
                raise scored.error
            for predicate_id in self._register_heuristics(
                identity, new_constraints, scored.value.heuristic_scores
            ):
                if predicate_id not in predicate_ids:
                    predicate_ids.append(predicate_id)

            transitions.append(SynthesisState.VALIDATING)
            outcome = validate(constraints, response.value)
            if outcome.ok:
                self.audit_log.record_validation(identity, attempt, True)
                attempt_log.append(
                    AttemptRecord(
                        attempt=attempt,
                        model=self.oracle.model,
                        feedback=feedback,
                        explanation=response.explanation,
                    )
                )
                transitions.append(SynthesisState.SUCCEEDED)
                self.logger.info(
                    "synthesis succeeded",
                    identity=identity,
                    attempt=attempt,
                    heuristics=len(accumulated),
                )
                return SynthesisResult(
                    identity=identity,
                    value=response.value,
                    model=self.oracle.model,
                    attempts=attempt,
                    constraints=constraints,
                    heuristics=accumulated,
                    ranked_candidates=scored.value.ranked,
                    candidate_selection_audit=scored.value.selection,
                    attempt_log=attempt_log,
                    predicate_ids=predicate_ids,
                    transitions=transitions,
                )

            rejected = Retry(
                reason="validation",
                feedback=validation_feedback(outcome.errors),
                errors=outcome.errors,
            )
            self._record_retry(
                identity, attempt, rejected, attempt_log, feedback, response.explanation
            )
            transitions.append(SynthesisState.RETRYING)
            feedback = rejected.feedback

        transitions.append(SynthesisState.EXHAUSTED)
        self.logger.warning("synthesis exhausted", identity=identity, attempts=self.max_attempts)
        raise SynthesisExhausted(identity, self.max_attempts, feedback)
