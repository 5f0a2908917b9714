from .compiler import (
    PredicateFn,
    compile_predicate,
    compile_single_line_predicate,
    extract_predicate_pattern,
)
from .interpreter import (
    PredicateInterpreter,
    PredicateProgram,
    PredicateSyntaxError,
    parse_predicate,
)

__all__ = [
    "PredicateFn",
    "compile_predicate",
    "compile_single_line_predicate",
    "extract_predicate_pattern",
    "PredicateInterpreter",
    "PredicateProgram",
    "PredicateSyntaxError",
    "parse_predicate",
]
