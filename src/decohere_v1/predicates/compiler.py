from __future__ import annotations

import re
from typing import Any, Callable, Optional

from ..utils import is_number
from .interpreter import PredicateSyntaxError, parse_predicate, run_predicate, truncated_mod

PredicateFn = Callable[[Any], bool]

_SUBJECT = r"(?:x|value)"
_NUMBER = r"(-?\d+(?:\.\d+)?)"

COMPARISON_RE = re.compile(rf"^{_SUBJECT}\s*(>=|<=|>|<)\s*{_NUMBER}$")
MODULO_RE = re.compile(rf"^{_SUBJECT}\s*%\s*(\d+)\s*(===|==)\s*(\d+)$")
TYPEOF_RE = re.compile(
    rf"^typeof\s+{_SUBJECT}\s*===?\s*[\"'](string|number|boolean|object|undefined|function)[\"']$"
)
ISINSTANCE_RE = re.compile(
    rf"^isinstance\(\s*{_SUBJECT}\s*,\s*(int|float|str|bool|list|dict|tuple)\s*\)$"
)
IS_ARRAY_RE = re.compile(rf"^Array\.isArray\(\s*{_SUBJECT}\s*\)$")
STRING_EQ_RE = re.compile(rf"^{_SUBJECT}\s*===?\s*\"([^\"]*)\"$|^{_SUBJECT}\s*===?\s*'([^']*)'$")
ARROW_RE = re.compile(r"^\(?\s*([A-Za-z_]\w*)\s*\)?\s*=>\s*(.+)$", re.DOTALL)

COMPARISON_PATTERNS = {
    ">": "greaterThan",
    "<": "lessThan",
    ">=": "greaterThanOrEqual",
    "<=": "lessThanOrEqual",
}

PYTHON_TYPES = {
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "list": list,
    "dict": dict,
    "tuple": tuple,
}


def _typeof_check(kind: str) -> PredicateFn:
    if kind == "string":
        return lambda value: isinstance(value, str)
    if kind == "number":
        return is_number
    if kind == "boolean":
        return lambda value: isinstance(value, bool)
    if kind == "object":
        return lambda value: value is None or isinstance(value, (dict, list))
    if kind == "undefined":
        return lambda value: value is None
    return callable


def _comparison_check(op: str, bound: float) -> PredicateFn:
    def _check(value: Any) -> bool:
        if not is_number(value):
            return False
        if op == ">":
            return value > bound
        if op == ">=":
            return value >= bound
        if op == "<":
            return value < bound
        return value <= bound

    return _check


def _modulo_check(divisor: int, remainder: int, truncated: bool) -> PredicateFn:
    def _check(value: Any) -> bool:
        if not is_number(value):
            return False
        if truncated:
            return truncated_mod(value, divisor) == remainder
        return value % divisor == remainder

    return _check


def compile_single_line_predicate(source: str) -> Optional[PredicateFn]:
    text = source.strip().rstrip(";").strip()
    match = COMPARISON_RE.match(text)
    if match:
        return _comparison_check(match.group(1), float(match.group(2)))
    match = MODULO_RE.match(text)
    if match:
        divisor = int(match.group(1))
        if divisor == 0:
            return None
        return _modulo_check(divisor, int(match.group(3)), truncated=match.group(2) == "===")
    match = TYPEOF_RE.match(text)
    if match:
        return _typeof_check(match.group(1))
    match = ISINSTANCE_RE.match(text)
    if match:
        expected = PYTHON_TYPES[match.group(1)]
        return lambda value: isinstance(value, expected)
    if IS_ARRAY_RE.match(text):
        return lambda value: isinstance(value, (list, tuple))
    match = STRING_EQ_RE.match(text)
    if match:
        literal = match.group(1) if match.group(1) is not None else match.group(2)
        return lambda value: value == literal
    return None


def extract_predicate_pattern(source: str) -> Optional[str]:
    text = source.strip().rstrip(";").strip()
    match = COMPARISON_RE.match(text)
    if match:
        return COMPARISON_PATTERNS[match.group(1)]
    if MODULO_RE.match(text):
        return "modulo"
    if TYPEOF_RE.match(text) or ISINSTANCE_RE.match(text):
        return "typeCheck"
    if IS_ARRAY_RE.match(text):
        return "arrayCheck"
    if STRING_EQ_RE.match(text):
        return "stringLiteral"
    return None


JS_TYPEOF_RE = re.compile(r"typeof\s+([A-Za-z_]\w*)\s*(==|!=)\s*[\"'](\w+)[\"']")
JS_NOT_RE = re.compile(r"!(?!=)")
JS_MARKERS = ("===", "!==", "&&", "||", "typeof ")

JS_TYPE_CHECKS = {
    "string": "isinstance({name}, str)",
    "number": "(isinstance({name}, (int, float)) and not isinstance({name}, bool))",
    "boolean": "isinstance({name}, bool)",
    "object": "({name} is None or isinstance({name}, (dict, list)))",
    "undefined": "{name} is None",
}


def is_javascript_source(source: str) -> bool:
    text = source.strip()
    return bool(ARROW_RE.match(text)) or any(marker in text for marker in JS_MARKERS)


def _typeof_expression(match: re.Match[str]) -> str:
    name, op, kind = match.group(1), match.group(2), match.group(3)
    check = JS_TYPE_CHECKS.get(kind, "False").format(name=name)
    if op == "!=":
        return f"(not {check})"
    return f"({check})"


def normalize_arrow_source(source: str) -> str:
    text = source.strip().rstrip(";").strip()
    if not is_javascript_source(text):
        return text
    match = ARROW_RE.match(text)
    if match and "{" in match.group(2):
        return text
    param, body = (match.group(1), match.group(2)) if match else (None, text)
    body = (
        body.replace("!==", "!=")
        .replace("===", "==")
        .replace("&&", " and ")
        .replace("||", " or ")
    )
    body = JS_TYPEOF_RE.sub(_typeof_expression, body)
    body = JS_NOT_RE.sub(" not ", body).strip()
    if param is None:
        return body
    return f"lambda {param}: {body}"


def compile_predicate(source: str, step_limit: int = 10_000) -> Optional[PredicateFn]:
    if not isinstance(source, str) or not source.strip():
        return None
    fast = compile_single_line_predicate(source)
    if fast is not None:
        return fast
    try:
        program = parse_predicate(
            normalize_arrow_source(source), truncated_modulo=is_javascript_source(source)
        )
    except (SyntaxError, ValueError, PredicateSyntaxError):
        return None

    def _predicate(value: Any) -> bool:
        try:
            return run_predicate(program, value, step_limit=step_limit)
        except Exception:  # noqa: BLE001
            return False

    return _predicate
