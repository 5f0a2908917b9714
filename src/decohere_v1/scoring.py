from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence

from .config import ScoringWeights
from .constraints import Constraint, check_constraint
from .errors import EmptyCandidateSet
from .predicates import compile_predicate
from .schemas import CandidateRanking, CandidateScore, HeuristicDefinition

SIMPLE_LENGTH = 50
COMPLEX_LENGTH = 500
LONG_REUSE_LENGTH = 300
SHORT_COMPARISON_LENGTH = 100
COVERAGE_NORMALIZER = 1.5

_WRAPPER_RE = re.compile(r"^(?:lambda\s+[a-z_]\w*\s*:|\(?\s*[a-z_]\w*\s*\)?\s*=>)\s*")
_NUMERIC_COMPARISON_RE = re.compile(r"^[a-z_]\w*\s*[<>=!]+\s*-?\d+(\.\d+)?$")
_TYPE_CHECK_RE = re.compile(r"^(typeof|array\.isarray|isinstance)\b")
_MODULO_RE = re.compile(r"^[a-z_]\w*\s*%\s*\d+\s*===?")
_VALUE_COMPARISON_RE = re.compile(r"value\s*[<>=!]+")
_BOOLEAN_RE = re.compile(r"&&|\|\||\band\b|\bor\b")


@dataclass(frozen=True)
class Selection:
    best: CandidateScore
    alternatives: List[CandidateScore]


def complexity_score(predicate_source: str) -> float:
    length = len(predicate_source)
    if length < SIMPLE_LENGTH:
        return 1.0
    if length > COMPLEX_LENGTH:
        return 0.1
    return 1.0 - (length - SIMPLE_LENGTH) / (COMPLEX_LENGTH - SIMPLE_LENGTH) * 0.9


def coverage_score(
    predicate_source: str,
    constraints: Sequence[Constraint],
    sample_values: Sequence[Any],
    step_limit: int = 10_000,
) -> float:
    if not constraints or not sample_values:
        return 0.5
    predicate = compile_predicate(predicate_source, step_limit=step_limit)
    if predicate is None:
        return 0.1
    matched = 0
    passed = 0
    for sample in sample_values:
        passes = predicate(sample)
        if not passes:
            continue
        passed += 1
        matched += sum(1 for constraint in constraints if check_constraint(constraint, sample))
    if matched == 0:
        return 0.2
    max_score = len(constraints) * len(sample_values)
    return min(1.0, (matched + passed) / (max_score * COVERAGE_NORMALIZER))


def reusability_score(predicate_source: str) -> float:
    source = predicate_source.strip().lower()
    if len(source) > LONG_REUSE_LENGTH:
        return 0.3
    if _BOOLEAN_RE.search(source):
        return 0.5
    body = _WRAPPER_RE.sub("", source, count=1)
    if _NUMERIC_COMPARISON_RE.match(body):
        return 0.9
    if _TYPE_CHECK_RE.match(body):
        return 0.85
    if _MODULO_RE.match(body):
        return 0.8
    if _VALUE_COMPARISON_RE.search(source) and len(source) < SHORT_COMPARISON_LENGTH:
        return 0.7
    return 0.5


def _reasoning(complexity: float, coverage: float, reusability: float) -> List[str]:
    notes: List[str] = []
    if complexity > 0.8:
        notes.append("Very simple predicate")
    elif complexity < 0.3:
        notes.append("Complex predicate")
    if coverage > 0.7:
        notes.append("Good constraint coverage")
    elif coverage < 0.3:
        notes.append("Limited constraint coverage")
    if reusability > 0.7:
        notes.append("Highly reusable pattern")
    elif reusability < 0.4:
        notes.append("Low reusability")
    return notes


def score(
    candidate: HeuristicDefinition,
    constraints: Sequence[Constraint],
    sample_values: Sequence[Any] = (),
    weights: Optional[ScoringWeights] = None,
    step_limit: int = 10_000,
) -> CandidateScore:
    weights = weights or ScoringWeights()
    complexity = complexity_score(candidate.predicate)
    coverage = coverage_score(candidate.predicate, constraints, sample_values, step_limit)
    reusability = reusability_score(candidate.predicate)
    total = (
        complexity * weights.complexity
        + coverage * weights.coverage
        + reusability * weights.reusability
    )
    return CandidateScore(
        candidate=candidate,
        complexity_score=complexity,
        coverage_score=coverage,
        reusability_score=reusability,
        total_score=total,
        reasoning=_reasoning(complexity, coverage, reusability),
    )


def rank(
    candidates: Iterable[HeuristicDefinition],
    constraints: Sequence[Constraint],
    sample_values: Sequence[Any] = (),
    weights: Optional[ScoringWeights] = None,
    step_limit: int = 10_000,
) -> List[CandidateScore]:
    scored = [score(item, constraints, sample_values, weights, step_limit) for item in candidates]
    return sorted(scored, key=lambda item: -item.total_score)


def select_best(
    candidates: Iterable[HeuristicDefinition],
    constraints: Sequence[Constraint],
    sample_values: Sequence[Any] = (),
    weights: Optional[ScoringWeights] = None,
    step_limit: int = 10_000,
) -> Selection:
    ranked = rank(candidates, constraints, sample_values, weights, step_limit)
    if not ranked:
        raise EmptyCandidateSet()
    return Selection(best=ranked[0], alternatives=ranked[1:])


def is_confident(candidate_score: CandidateScore, threshold: float = 0.6) -> bool:
    return candidate_score.total_score >= threshold


def combine_and_rank(
    candidate_lists: Iterable[Iterable[HeuristicDefinition]],
    constraints: Sequence[Constraint],
    sample_values: Sequence[Any] = (),
    weights: Optional[ScoringWeights] = None,
    step_limit: int = 10_000,
) -> List[CandidateScore]:
    seen: set[tuple[str, str]] = set()
    unique: List[HeuristicDefinition] = []
    for candidates in candidate_lists:
        for candidate in candidates:
            key = (candidate.name, candidate.predicate)
            if key in seen:
                continue
            seen.add(key)
            unique.append(candidate)
    return rank(unique, constraints, sample_values, weights, step_limit)


def to_rankings(ranked: Sequence[CandidateScore]) -> List[CandidateRanking]:
    return [
        CandidateRanking(
            rank=index + 1,
            name=item.candidate.name,
            total_score=item.total_score,
            complexity_score=item.complexity_score,
            coverage_score=item.coverage_score,
            reusability_score=item.reusability_score,
            reasoning=list(item.reasoning),
        )
        for index, item in enumerate(ranked)
    ]


def format_candidate_score(candidate_score: CandidateScore, index: int = 0) -> str:
    lines = [
        f"Candidate {index + 1}: {candidate_score.candidate.name or 'unnamed'}",
        f"  Score: {candidate_score.total_score * 100:.1f}%",
        f"    Complexity: {candidate_score.complexity_score * 100:.0f}%",
        f"    Coverage: {candidate_score.coverage_score * 100:.0f}%",
        f"    Reusability: {candidate_score.reusability_score * 100:.0f}%",
    ]
    if candidate_score.reasoning:
        lines.append(f"  Notes: {', '.join(candidate_score.reasoning)}")
    return "\n".join(lines)
