from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from .predicates import PredicateFn, compile_predicate
from .schemas import HeuristicDefinition
from .utils import dedupe_values, hash_text, is_number, sanitize_identifier

ConstraintSource = Literal["inferred", "heuristic"]
ComponentKind = Literal["examples", "usage", "greater_than", "description"]

GENERALIZE_HINT = "Treat example sets as illustrative patterns to extrapolate from."
EMPTY_SUMMARY = "(no explicit heuristics available)"


@dataclass(frozen=True)
class Constraint:
    name: str
    description: str
    test: PredicateFn = field(compare=False, repr=False)
    source: ConstraintSource = "inferred"
    predicate_source: Optional[str] = None
    predicate_id: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    errors: Tuple[str, ...] = ()


class ComponentSpec(BaseModel):
    name: str
    kind: ComponentKind
    examples: List[Any] = Field(default_factory=list)
    minimum: Optional[float] = None
    description: Optional[str] = None
    required: bool = True


@dataclass
class ConstraintSpecification:
    must: List[Constraint] = field(default_factory=list)
    suggested: List[Constraint] = field(default_factory=list)
    examples: List[Any] = field(default_factory=list)

    def names(self) -> List[str]:
        return [item.name for item in self.must] + [item.name for item in self.suggested]


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _is_finite_number(value: Any) -> bool:
    return is_number(value) and math.isfinite(value)


def _is_integer_number(value: Any) -> bool:
    if not _is_finite_number(value):
        return False
    return isinstance(value, int) or float(value).is_integer()


def is_prime_candidate(value: Any) -> bool:
    if not _is_integer_number(value) or value < 2:
        return False
    number = int(value)
    factor = 2
    while factor * factor <= number:
        if number % factor == 0:
            return False
        factor += 1
    return True


def _greater_than(minimum: float) -> PredicateFn:
    return lambda value: _is_finite_number(value) and value > minimum


def _has_field(key: str) -> PredicateFn:
    return lambda value: isinstance(value, dict) and key in value


def _json_kind(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "null"


def _field_kind(key: str, kind: str) -> PredicateFn:
    return lambda value: isinstance(value, dict) and key in value and _json_kind(value[key]) == kind


def _derive_numeric(numbers: Sequence[float]) -> List[Constraint]:
    constraints = [
        Constraint(
            name="isFiniteNumber",
            description="Value must be a finite number",
            test=_is_finite_number,
        )
    ]
    if all(_is_integer_number(n) for n in numbers):
        constraints.append(
            Constraint(
                name="isIntegerNumber",
                description="Value must be an integer",
                test=_is_integer_number,
            )
        )
    if all(n >= 0 for n in numbers):
        constraints.append(
            Constraint(
                name="isNonNegativeNumber",
                description="Value must be non-negative",
                test=lambda value: is_number(value) and value >= 0,
            )
        )
    all_even = all(_is_integer_number(n) and int(n) % 2 == 0 for n in numbers)
    all_odd = all(_is_integer_number(n) and abs(int(n)) % 2 == 1 for n in numbers)
    if all_even:
        constraints.append(
            Constraint(
                name="isEvenNumber",
                description="Value must be even",
                test=lambda value: _is_integer_number(value) and int(value) % 2 == 0,
            )
        )
    elif all_odd:
        constraints.append(
            Constraint(
                name="isOddNumber",
                description="Value must be odd",
                test=lambda value: _is_integer_number(value) and abs(int(value)) % 2 == 1,
            )
        )
    if all(is_prime_candidate(n) for n in numbers):
        constraints.append(
            Constraint(
                name="isPrimeNumber",
                description="Value must be prime",
                test=is_prime_candidate,
            )
        )
    return constraints


def _derive_usage(examples: Sequence[Dict[str, Any]]) -> List[Constraint]:
    constraints = [
        Constraint(
            name="isObject",
            description="Value must be an object",
            test=lambda value: isinstance(value, dict),
        )
    ]
    shared = [key for key in examples[0] if all(key in example for example in examples[1:])]
    for key in shared:
        constraints.append(
            Constraint(
                name=sanitize_identifier(f"hasField_{key}"),
                description=f"Value must have a '{key}' field",
                test=_has_field(key),
            )
        )
        kinds = {_json_kind(example[key]) for example in examples}
        if len(kinds) == 1:
            kind = kinds.pop()
            constraints.append(
                Constraint(
                    name=sanitize_identifier(f"fieldType_{key}"),
                    description=f"Field '{key}' must be of type {kind}",
                    test=_field_kind(key, kind),
                )
            )
    return constraints


def derive_from_component(spec: ComponentSpec) -> List[Constraint]:
    if spec.kind == "greater_than":
        if spec.minimum is None or not math.isfinite(spec.minimum):
            return []
        bound = _format_number(spec.minimum)
        return [
            Constraint(
                name=sanitize_identifier(f"greaterThan_{bound}"),
                description=f"Value must be a number strictly greater than {bound}",
                test=_greater_than(spec.minimum),
            )
        ]
    if spec.kind == "examples":
        numbers = [item for item in spec.examples if is_number(item)]
        if not numbers:
            return []
        return _derive_numeric(numbers)
    if spec.kind == "usage":
        objects = [item for item in spec.examples if isinstance(item, dict)]
        if not objects:
            return []
        return _derive_usage(objects)
    if spec.description:
        return [
            Constraint(
                name=sanitize_identifier(f"suggested_{spec.name}"),
                description=spec.description,
                test=lambda value: True,
            )
        ]
    return []


def collect_constraints(components: Iterable[ComponentSpec]) -> ConstraintSpecification:
    specification = ConstraintSpecification()
    seen: set[str] = set()
    examples: List[Any] = []
    for component in components:
        if component.kind in ("examples", "usage"):
            examples.extend(component.examples)
        soft = component.kind == "description" or not component.required
        for constraint in derive_from_component(component):
            if constraint.name in seen:
                continue
            seen.add(constraint.name)
            if soft:
                specification.suggested.append(constraint)
            else:
                specification.must.append(constraint)
    specification.examples = dedupe_values(examples)
    return specification


def compile_heuristic(definition: HeuristicDefinition, step_limit: int = 10_000) -> Optional[Constraint]:
    source = definition.predicate.strip()
    test = compile_predicate(source, step_limit=step_limit)
    if test is None:
        return None
    return Constraint(
        name=sanitize_identifier(definition.name or "heuristic"),
        description=definition.description or "Heuristic predicate",
        test=test,
        source="heuristic",
        predicate_source=source,
        predicate_id=hash_text(source),
    )


def compile_heuristics(
    definitions: Iterable[HeuristicDefinition], step_limit: int = 10_000
) -> Tuple[List[Constraint], List[HeuristicDefinition]]:
    constraints: List[Constraint] = []
    normalized: List[HeuristicDefinition] = []
    for definition in definitions:
        constraint = compile_heuristic(definition, step_limit=step_limit)
        if constraint is None:
            continue
        constraints.append(constraint)
        normalized.append(
            HeuristicDefinition(
                name=constraint.name,
                description=constraint.description,
                predicate=constraint.predicate_source or "",
            )
        )
    return constraints, normalized


def check_constraint(constraint: Constraint, value: Any) -> bool:
    try:
        return bool(constraint.test(value))
    except Exception:  # noqa: BLE001
        return False


def validate(constraints: Iterable[Constraint], value: Any) -> ValidationResult:
    errors = tuple(item.description for item in constraints if not check_constraint(item, value))
    return ValidationResult(ok=not errors, errors=errors)


def merge(existing: Iterable[Constraint], additions: Iterable[Constraint]) -> List[Constraint]:
    merged: Dict[str, Constraint] = {}
    for constraint in existing:
        merged[constraint.name] = constraint
    for constraint in additions:
        merged[constraint.name] = constraint
    return list(merged.values())


def merge_heuristic_definitions(
    existing: Iterable[HeuristicDefinition], additions: Iterable[HeuristicDefinition]
) -> List[HeuristicDefinition]:
    merged: Dict[str, HeuristicDefinition] = {}
    for definition in existing:
        merged[definition.name] = definition
    for definition in additions:
        merged[definition.name] = definition
    return list(merged.values())


def build_constraint_summary(constraints: Sequence[Constraint]) -> str:
    if not constraints:
        return EMPTY_SUMMARY
    base = " | ".join(item.description for item in constraints)
    return f"{base} | {GENERALIZE_HINT}"
