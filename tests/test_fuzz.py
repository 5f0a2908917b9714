import pytest

from decohere_v1.constraints import ComponentSpec, collect_constraints, validate
from decohere_v1.fuzz import FuzzGenerator
from decohere_v1.schemas import CacheEntry, HeuristicDefinition
from decohere_v1.utils import canonical_dumps


def _even_generator(seed: int = 1337) -> FuzzGenerator:
    spec = collect_constraints(
        [ComponentSpec(name="Even", kind="examples", examples=[2, 4, 6, 8, 10])]
    )
    heuristics = [HeuristicDefinition(name="aboveTen", description="Above ten", predicate="x > 10")]
    return FuzzGenerator(spec.must, 12, heuristics=heuristics, seed=seed)


def test_generated_values_satisfy_constraints() -> None:
    generator = _even_generator()
    values = generator.generate_n(20)
    assert values
    assert values[0] == 12
    for value in values:
        assert validate(generator.constraints, value).ok
        assert value % 2 == 0 and value > 10


def test_generation_is_deterministic() -> None:
    assert _even_generator().generate_n(15) == _even_generator().generate_n(15)


def test_generated_values_are_distinct() -> None:
    values = _even_generator().generate_n(25)
    keys = [canonical_dumps(value) for value in values]
    assert len(keys) == len(set(keys))


def test_generate_cycles_pool() -> None:
    generator = _even_generator()
    first = generator.generate()
    assert first == 12
    drawn = [generator.generate() for _ in range(5)]
    assert all(value % 2 == 0 for value in drawn)


def test_from_cache_entry_uses_cached_heuristics() -> None:
    entry = CacheEntry(
        type_text="Word",
        fingerprint="f",
        value="abc",
        heuristics=[
            HeuristicDefinition(
                name="shortWord", description="At most five chars", predicate="lambda s: len(s) <= 5"
            )
        ],
    )
    generator = FuzzGenerator.from_cache_entry(entry, [], seed=7)
    assert [item.name for item in generator.heuristics()] == ["shortWord"]
    values = generator.generate_n(10)
    assert values[0] == "abc"
    assert all(isinstance(value, str) and len(value) <= 5 for value in values)


def test_nested_templates_keep_shape() -> None:
    generator = FuzzGenerator([], {"id": 3, "tags": ["a"]}, seed=11)
    for value in generator.generate_n(10):
        assert set(value) == {"id", "tags"}
        assert isinstance(value["id"], int)
        assert all(isinstance(tag, str) for tag in value["tags"])
    assert FuzzGenerator([], None).generate_n(3) == [None]


def test_zero_count_returns_empty() -> None:
    assert _even_generator().generate_n(0) == []


@pytest.mark.slow
def test_large_batches_stay_valid_and_distinct() -> None:
    generator = _even_generator(seed=2024)
    values = generator.generate_n(300)
    assert len({canonical_dumps(value) for value in values}) == len(values)
    assert all(validate(generator.constraints, value).ok and value > 10 for value in values)
