from __future__ import annotations

import ast
import math
import operator
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Tuple

MAX_POWER_EXPONENT = 64
MAX_INT_BITS = 4096
MAX_SEQUENCE_REPEAT = 10_000
BOUND_NAMES = ("value", "x")

SAFE_CALLS: Dict[str, Callable[..., Any]] = {
    "abs": abs,
    "all": all,
    "any": any,
    "len": len,
    "max": max,
    "min": min,
    "round": round,
    "sorted": sorted,
    "sum": sum,
    "isinstance": isinstance,
}
TYPE_NAMES: Dict[str, type] = {
    "bool": bool,
    "dict": dict,
    "float": float,
    "int": int,
    "list": list,
    "set": set,
    "str": str,
    "tuple": tuple,
}
ALLOWED_METHODS = {
    "count",
    "endswith",
    "get",
    "isalnum",
    "isalpha",
    "isdigit",
    "islower",
    "isupper",
    "items",
    "keys",
    "lower",
    "split",
    "startswith",
    "strip",
    "upper",
    "values",
}

ALLOWED_NODE_TYPES = (
    ast.Expression,
    ast.Lambda,
    ast.arguments,
    ast.arg,
    ast.BoolOp,
    ast.BinOp,
    ast.UnaryOp,
    ast.Compare,
    ast.IfExp,
    ast.Call,
    ast.Attribute,
    ast.Subscript,
    ast.Slice,
    ast.Name,
    ast.Constant,
    ast.List,
    ast.Tuple,
    ast.Set,
    ast.Dict,
    ast.GeneratorExp,
    ast.ListComp,
    ast.SetComp,
    ast.comprehension,
    ast.Load,
    ast.Store,
    ast.And,
    ast.Or,
    ast.Not,
    ast.USub,
    ast.UAdd,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.FloorDiv,
    ast.Mod,
    ast.Pow,
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
    ast.In,
    ast.NotIn,
    ast.Is,
    ast.IsNot,
)

BINARY_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
COMPARE_OPS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}


class PredicateSyntaxError(Exception):
    def __init__(self, failure_atom: str) -> None:
        super().__init__(failure_atom)
        self.failure_atom = failure_atom


class PredicateRuntimeError(Exception):
    pass


@dataclass(frozen=True)
class PredicateProgram:
    source: str
    params: Tuple[str, ...]
    body: ast.expr
    truncated_modulo: bool = False


class _SafePredicateVisitor(ast.NodeVisitor):
    def __init__(self, bound: Tuple[str, ...]) -> None:
        self.scopes: List[set[str]] = [set(bound)]
        super().__init__()

    def _is_bound(self, name: str) -> bool:
        return any(name in scope for scope in self.scopes)

    def generic_visit(self, node: ast.AST) -> None:
        if not isinstance(node, ALLOWED_NODE_TYPES):
            raise PredicateSyntaxError(f"AST_FORBIDDEN_NODE:{type(node).__name__}")
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if isinstance(node.ctx, ast.Load):
            if not (self._is_bound(node.id) or node.id in TYPE_NAMES):
                raise PredicateSyntaxError(f"AST_UNBOUND_NAME:{node.id}")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        raise PredicateSyntaxError("AST_FORBIDDEN_ATTRIBUTE")

    def visit_Call(self, node: ast.Call) -> None:
        func = node.func
        if node.keywords:
            raise PredicateSyntaxError("AST_FORBIDDEN_KEYWORDS")
        if isinstance(func, ast.Name):
            if func.id not in SAFE_CALLS and func.id not in TYPE_NAMES:
                raise PredicateSyntaxError(f"AST_FORBIDDEN_CALL:{func.id}")
        elif isinstance(func, ast.Attribute):
            if func.attr.startswith("_") or func.attr not in ALLOWED_METHODS:
                raise PredicateSyntaxError(f"AST_FORBIDDEN_METHOD:{func.attr}")
            self.visit(func.value)
        else:
            raise PredicateSyntaxError("AST_FORBIDDEN_CALL")
        for arg in node.args:
            self.visit(arg)

    def _visit_comprehension(self, node: ast.AST, elements: List[ast.expr]) -> None:
        generators = getattr(node, "generators")
        scope: set[str] = set()
        self.scopes.append(scope)
        for generator in generators:
            if generator.is_async:
                raise PredicateSyntaxError("AST_FORBIDDEN_NODE:async")
            self.visit(generator.iter)
            for target in ast.walk(generator.target):
                if isinstance(target, ast.Name):
                    scope.add(target.id)
                elif not isinstance(target, (ast.Tuple, ast.Store)):
                    raise PredicateSyntaxError("AST_FORBIDDEN_TARGET")
            for condition in generator.ifs:
                self.visit(condition)
        for element in elements:
            self.visit(element)
        self.scopes.pop()

    def visit_GeneratorExp(self, node: ast.GeneratorExp) -> None:
        self._visit_comprehension(node, [node.elt])

    def visit_ListComp(self, node: ast.ListComp) -> None:
        self._visit_comprehension(node, [node.elt])

    def visit_SetComp(self, node: ast.SetComp) -> None:
        self._visit_comprehension(node, [node.elt])

    def visit_Lambda(self, node: ast.Lambda) -> None:
        raise PredicateSyntaxError("AST_NESTED_LAMBDA")


def parse_predicate(source: str, truncated_modulo: bool = False) -> PredicateProgram:
    text = source.strip()
    if not text:
        raise PredicateSyntaxError("EMPTY_SOURCE")
    tree = ast.parse(text, mode="eval")
    body = tree.body
    params: Tuple[str, ...] = BOUND_NAMES
    if isinstance(body, ast.Lambda):
        args = body.args
        if (
            len(args.args) != 1
            or args.posonlyargs
            or args.kwonlyargs
            or args.vararg
            or args.kwarg
            or args.defaults
        ):
            raise PredicateSyntaxError("LAMBDA_ARITY")
        params = (args.args[0].arg,)
        body = body.body
    _SafePredicateVisitor(params).visit(body)
    return PredicateProgram(
        source=text, params=params, body=body, truncated_modulo=truncated_modulo
    )


def truncated_mod(left: Any, right: Any) -> Any:
    """Remainder with the sign of the dividend, as JavaScript `%` computes it."""
    if isinstance(left, int) and isinstance(right, int):
        if right == 0:
            raise PredicateRuntimeError("modulo by zero")
        remainder = abs(left) % abs(right)
        return -remainder if left < 0 else remainder
    return math.fmod(left, right)


@dataclass
class PredicateInterpreter:
    step_limit: int = 10_000
    _steps: int = 0
    _truncated_modulo: bool = False

    def _tick(self) -> None:
        self._steps += 1
        if self._steps > self.step_limit:
            raise PredicateRuntimeError("step limit exceeded")

    def _eval(self, node: ast.expr, env: Dict[str, Any]) -> Any:
        self._tick()
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            if node.id in env:
                return env[node.id]
            return TYPE_NAMES[node.id]
        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result: Any = True
                for item in node.values:
                    result = self._eval(item, env)
                    if not result:
                        return result
                return result
            result = False
            for item in node.values:
                result = self._eval(item, env)
                if result:
                    return result
            return result
        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, env)
            if isinstance(node.op, ast.Not):
                return not operand
            if isinstance(node.op, ast.USub):
                return -operand
            return +operand
        if isinstance(node, ast.BinOp):
            left = self._eval(node.left, env)
            right = self._eval(node.right, env)
            self._guard_binop(node.op, left, right)
            if self._truncated_modulo and isinstance(node.op, ast.Mod):
                return truncated_mod(left, right)
            return BINARY_OPS[type(node.op)](left, right)
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, env)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, env)
                if not COMPARE_OPS[type(op)](left, right):
                    return False
                left = right
            return True
        if isinstance(node, ast.IfExp):
            branch = node.body if self._eval(node.test, env) else node.orelse
            return self._eval(branch, env)
        if isinstance(node, ast.Call):
            args = [self._eval(arg, env) for arg in node.args]
            func = node.func
            if isinstance(func, ast.Attribute):
                target = self._eval(func.value, env)
                method = getattr(target, func.attr, None)
                if method is None:
                    raise PredicateRuntimeError(f"no method {func.attr}")
                return method(*args)
            if not isinstance(func, ast.Name):
                raise PredicateRuntimeError("unsupported call target")
            if func.id in SAFE_CALLS:
                return SAFE_CALLS[func.id](*args)
            return TYPE_NAMES[func.id](*args)
        if isinstance(node, ast.Subscript):
            container = self._eval(node.value, env)
            if isinstance(node.slice, ast.Slice):
                lower = self._eval(node.slice.lower, env) if node.slice.lower else None
                upper = self._eval(node.slice.upper, env) if node.slice.upper else None
                step = self._eval(node.slice.step, env) if node.slice.step else None
                return container[lower:upper:step]
            return container[self._eval(node.slice, env)]
        if isinstance(node, ast.List):
            return [self._eval(item, env) for item in node.elts]
        if isinstance(node, ast.Tuple):
            return tuple(self._eval(item, env) for item in node.elts)
        if isinstance(node, ast.Set):
            return {self._eval(item, env) for item in node.elts}
        if isinstance(node, ast.Dict):
            result_dict: Dict[Any, Any] = {}
            for key, item in zip(node.keys, node.values):
                if key is None:
                    raise PredicateRuntimeError("dict unpacking is not supported")
                result_dict[self._eval(key, env)] = self._eval(item, env)
            return result_dict
        if isinstance(node, ast.GeneratorExp):
            return list(self._comprehension(node.elt, node.generators, env))
        if isinstance(node, ast.ListComp):
            return list(self._comprehension(node.elt, node.generators, env))
        if isinstance(node, ast.SetComp):
            return set(self._comprehension(node.elt, node.generators, env))
        raise PredicateRuntimeError(f"unknown node {type(node).__name__}")

    def _comprehension(
        self, elt: ast.expr, generators: List[ast.comprehension], env: Dict[str, Any]
    ) -> List[Any]:
        results: List[Any] = []

        def _walk(index: int, scope: Dict[str, Any]) -> None:
            if index == len(generators):
                results.append(self._eval(elt, scope))
                return
            generator = generators[index]
            for item in self._eval(generator.iter, scope):
                self._tick()
                inner = dict(scope)
                self._bind(generator.target, item, inner)
                if all(self._eval(cond, inner) for cond in generator.ifs):
                    _walk(index + 1, inner)

        _walk(0, env)
        return results

    def _bind(self, target: ast.expr, item: Any, scope: Dict[str, Any]) -> None:
        if isinstance(target, ast.Name):
            scope[target.id] = item
            return
        if isinstance(target, ast.Tuple):
            values = list(item)
            if len(values) != len(target.elts):
                raise PredicateRuntimeError("unpack mismatch")
            for sub_target, sub_item in zip(target.elts, values):
                self._bind(sub_target, sub_item, scope)
            return
        raise PredicateRuntimeError("unsupported comprehension target")

    @staticmethod
    def _guard_binop(op: ast.operator, left: Any, right: Any) -> None:
        # bound the size of the result, operands alone let nested forms through
        if isinstance(op, ast.Pow):
            if isinstance(left, int) and isinstance(right, int):
                if right > 0 and max(abs(left).bit_length(), 1) * right > MAX_INT_BITS:
                    raise PredicateRuntimeError("power result too large")
            elif isinstance(right, (int, float)) and abs(right) > MAX_POWER_EXPONENT:
                raise PredicateRuntimeError("exponent too large")
        if isinstance(op, ast.Mult):
            if isinstance(left, int) and isinstance(right, int):
                if abs(left).bit_length() + abs(right).bit_length() > MAX_INT_BITS:
                    raise PredicateRuntimeError("product too large")
                return
            for sequence, count in ((left, right), (right, left)):
                if isinstance(sequence, (str, list, tuple)) and isinstance(count, int):
                    if len(sequence) * count > MAX_SEQUENCE_REPEAT:
                        raise PredicateRuntimeError("sequence repeat too large")

    def evaluate(self, program: PredicateProgram, value: Any) -> Any:
        self._steps = 0
        self._truncated_modulo = program.truncated_modulo
        env = {name: value for name in program.params}
        return self._eval(program.body, env)


def run_predicate(program: PredicateProgram, value: Any, step_limit: int = 10_000) -> bool:
    interpreter = PredicateInterpreter(step_limit=step_limit)
    return bool(interpreter.evaluate(program, value))
