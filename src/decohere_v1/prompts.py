from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from .constraints import Constraint
from .schemas import HelperRegistryEntry, HeuristicDefinition, OracleRequest

INFEASIBLE_SENTINEL = "__INFEASIBLE__"
GENERALIZE_FEEDBACK = (
    "The constraint set is satisfiable. Please generalize beyond given examples "
    "and try another candidate."
)

RESPONSE_SHAPE = (
    'Respond with JSON matching {"value": <literal>, "heuristics": [ { "name": string, '
    '"description": string, "predicate": string } ], "candidateValidators": [ { "name"?: string, '
    '"description"?: string, "predicate": string } ]?, "explanation": string }.'
)


@dataclass
class PromptContext:
    type_text: str
    context: str
    summary: str
    must_constraints: List[Constraint] = field(default_factory=list)
    suggested_patterns: List[Constraint] = field(default_factory=list)
    heuristics_library: str = ""
    attempt: int = 1
    feedback: str = ""
    available_helpers: List[HelperRegistryEntry] = field(default_factory=list)
    available_predicate_patterns: List[str] = field(default_factory=list)


def build_system_prompt(include_helpers: bool = False) -> str:
    lines = [
        "You generate JSON describing candidate values and reusable validation predicates for typed constraint bundles.",
        RESPONSE_SHAPE,
        "All strings must use standard JSON string syntax with escaped newlines.",
        "Each predicate must be a single Python expression: either `lambda value: <expr>` or an expression over `value`.",
        "Predicates may only use comparisons, arithmetic, boolean logic, comprehensions, and the builtins "
        "abs, len, min, max, sum, all, any, round, sorted, isinstance, int, float, str, bool, list, dict, set, tuple.",
        "You must satisfy all MUST constraints; suggested patterns are optional but desirable heuristics.",
        "Look for patterns in example sets and treat them as illustrative, not exhaustive.",
        "Provide at least three distinct candidate validators capturing different perspectives of the pattern.",
        f'If the constraints are impossible, set explanation to "{INFEASIBLE_SENTINEL}" and return a null value.',
    ]
    if include_helpers:
        lines.append(
            "You may also reference the listed helper functions by name when describing complex patterns."
        )
    return " ".join(lines)


def build_helper_context(helpers: Sequence[HelperRegistryEntry]) -> str:
    if not helpers:
        return ""
    lines = ["Available helper functions:"]
    for helper in helpers:
        lines.append(f"- {helper.name} ({helper.category}): {helper.description}")
        lines.append(f"  Input: {' | '.join(helper.input_types)}")
        lines.append(f"  Output: {helper.output_type}")
    return "\n".join(lines)


def build_predicate_suggestions(patterns: Sequence[str]) -> str:
    lines = [
        "Available single-line predicate patterns:",
        "- Comparisons: x > N, x < N, x >= N, x <= N",
        "- Modulo: x % N == M (for even/odd, divisibility)",
        '- Type checks: isinstance(x, int), isinstance(x, list)',
        '- Literals: x == "value"',
    ]
    if patterns:
        lines.append("Previously discovered patterns:")
        lines.extend(f"- {pattern}" for pattern in patterns)
    return "\n".join(lines)


def build_constraint_sections(
    must_constraints: Sequence[Constraint], suggested_patterns: Sequence[Constraint]
) -> Tuple[str, str]:
    must = "\n".join(f"- {item.description}" for item in must_constraints) or "(none)"
    suggested = "\n".join(f"- {item.description}" for item in suggested_patterns) or "(none)"
    return must, suggested


def build_heuristic_library_snippet(definitions: Sequence[HeuristicDefinition]) -> str:
    if not definitions:
        return ""
    lines = ["# Previously discovered heuristics:"]
    for definition in definitions:
        lines.append(f"# {definition.name}: {definition.description}")
        lines.append(f"{definition.name} = {definition.predicate}")
    return "\n".join(lines)


def build_user_message(context: PromptContext) -> str:
    must, suggested = build_constraint_sections(context.must_constraints, context.suggested_patterns)
    sections = [
        f"Attempt: {context.attempt}",
        f"Type expression: {context.type_text}",
        f"Must constraints:\n{must}",
        f"Suggested patterns:\n{suggested}",
        f"Derived guard summary: {context.summary or '(none)'}",
        f"Existing heuristics:\n{context.heuristics_library}"
        if context.heuristics_library
        else "Existing heuristics: (none)",
    ]
    if context.available_helpers:
        sections.append(build_helper_context(context.available_helpers))
    if context.available_predicate_patterns:
        sections.append(build_predicate_suggestions(context.available_predicate_patterns))
    sections.extend(["Context snippets:", context.context])
    if context.feedback:
        sections.append(f"Previous feedback: {context.feedback}")
    sections.append("Respond with JSON only.")
    return "\n".join(section for section in sections if section)


def build_request(context: PromptContext) -> OracleRequest:
    return OracleRequest(
        system_instruction=build_system_prompt(include_helpers=bool(context.available_helpers)),
        user_prompt=build_user_message(context),
    )
