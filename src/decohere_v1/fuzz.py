from __future__ import annotations

from typing import Any, List, Optional, Sequence

from hypothesis import HealthCheck, given
from hypothesis import seed as hypo_seed
from hypothesis import settings as hypo_settings
from hypothesis import strategies as st

from .constraints import Constraint, compile_heuristics, merge, validate
from .schemas import CacheEntry, HeuristicDefinition
from .utils import canonical_dumps

OVERSAMPLE = 10
MAX_EXAMPLES = 2_000
POOL_SIZE = 64


def strategy_for(template: Any) -> st.SearchStrategy[Any]:
    if template is None:
        return st.none()
    if isinstance(template, bool):
        return st.booleans()
    if isinstance(template, int):
        span = max(10, abs(template) * 2)
        return st.one_of(
            st.just(template),
            st.integers(min_value=template - span, max_value=template + span),
        )
    if isinstance(template, float):
        span = max(10.0, abs(template) * 2)
        return st.one_of(
            st.just(template),
            st.floats(
                min_value=template - span,
                max_value=template + span,
                allow_nan=False,
                allow_infinity=False,
            ),
        )
    if isinstance(template, str):
        alphabet = "".join(sorted(set(template))) or "abcdefghijklmnopqrstuvwxyz"
        return st.one_of(
            st.just(template),
            st.text(alphabet=alphabet, min_size=0, max_size=len(template) * 2 + 5),
        )
    if isinstance(template, list):
        if not template:
            return st.just([])
        return st.lists(strategy_for(template[0]), min_size=0, max_size=len(template) + 3)
    if isinstance(template, dict):
        return st.fixed_dictionaries({str(key): strategy_for(value) for key, value in template.items()})
    return st.just(template)


class FuzzGenerator:
    def __init__(
        self,
        constraints: Sequence[Constraint],
        seed_value: Any,
        heuristics: Sequence[HeuristicDefinition] = (),
        seed: int = 1337,
        step_limit: int = 10_000,
    ) -> None:
        heuristic_constraints, normalized = compile_heuristics(heuristics, step_limit=step_limit)
        self.constraints = merge(constraints, heuristic_constraints)
        self.seed_value = seed_value
        self.seed = seed
        self._heuristics = list(normalized)
        self._strategy = strategy_for(seed_value)
        self._pool: Optional[List[Any]] = None
        self._cursor = 0

    @classmethod
    def from_cache_entry(
        cls, entry: CacheEntry, constraints: Sequence[Constraint], seed: int = 1337
    ) -> "FuzzGenerator":
        return cls(constraints, entry.value, heuristics=entry.heuristics, seed=seed)

    def heuristics(self) -> List[HeuristicDefinition]:
        return list(self._heuristics)

    def accepts(self, value: Any) -> bool:
        return validate(self.constraints, value).ok

    def _sample(self, count: int) -> List[Any]:
        drawn: List[Any] = []

        @hypo_settings(
            derandomize=True,
            max_examples=count,
            deadline=None,
            database=None,
            suppress_health_check=[HealthCheck.too_slow],
        )
        @hypo_seed(self.seed)
        @given(value=self._strategy)
        def _collect(value: Any) -> None:
            drawn.append(value)

        _collect()
        return drawn

    def generate_n(self, count: int) -> List[Any]:
        if count <= 0:
            return []
        values: List[Any] = []
        seen: set[bytes] = set()
        candidates = [self.seed_value, *self._sample(min(count * OVERSAMPLE, MAX_EXAMPLES))]
        for candidate in candidates:
            key = canonical_dumps(candidate)
            if key in seen or not self.accepts(candidate):
                continue
            seen.add(key)
            values.append(candidate)
            if len(values) >= count:
                break
        return values

    def generate(self) -> Any:
        if self._pool is None:
            self._pool = self.generate_n(POOL_SIZE)
        if not self._pool:
            raise ValueError("no generated value satisfies the constraints")
        value = self._pool[self._cursor % len(self._pool)]
        self._cursor += 1
        return value
