from pathlib import Path
from typing import Any

import pytest

from decohere_v1.bundle import (
    BundleSpec,
    build_context_snippet,
    compute_fingerprint,
    load_bundle,
)
from decohere_v1.cache_store import CacheStore, make_cache_key
from decohere_v1.config import Settings
from decohere_v1.constraints import ComponentSpec
from decohere_v1.errors import BundleError, SynthesisExhausted
from decohere_v1.oracle_api import StaticOracle
from decohere_v1.orchestrator.session import DecohereSession
from decohere_v1.schemas import DeclarationFingerprint
from decohere_v1.utils import read_json, write_json


def _bundle(text: str = "type Even = number") -> BundleSpec:
    return BundleSpec(
        identity="Even",
        components=[ComponentSpec(name="Even", kind="examples", examples=[2, 4, 6, 8, 10])],
        dependencies=[DeclarationFingerprint(name="Even", source_file="types.ts", text=text)],
    )


def _response(value: Any) -> dict:
    return {
        "value": value,
        "heuristics": [
            {"name": "aboveOne", "description": "Above one", "predicate": "lambda x: x > 1"}
        ],
        "candidateValidators": [{"name": "evenModulo", "predicate": "x % 2 === 0"}],
        "explanation": "even",
    }


def _settings(tmp_path: Path) -> Settings:
    return Settings(project_root=tmp_path, cache_dir="cache")


def test_cache_hit_makes_no_oracle_calls(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    first_oracle = StaticOracle([_response(12)])
    with DecohereSession(settings, first_oracle) as session:
        first = session.materialize_bundle(_bundle())
        repeat = session.materialize_bundle(_bundle())
    assert not first.from_cache
    assert repeat.from_cache
    assert first_oracle.calls == 1

    second_oracle = StaticOracle([])
    with DecohereSession(settings, second_oracle) as session:
        cached = session.materialize_bundle(_bundle())
    assert cached.from_cache
    assert cached.value == 12
    assert second_oracle.calls == 0
    assert cached.confidence == first.confidence
    assert [item.name for item in cached.heuristics] == ["aboveOne"]


def test_session_persists_cache_registry_and_audit(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    with DecohereSession(settings, StaticOracle([_response(12)])) as session:
        outcome = session.materialize_bundle(_bundle())
    cache_file = settings.cache_path() / f"{make_cache_key('Even')}.json"
    entry = read_json(cache_file)
    assert entry["typeText"] == "Even"
    assert entry["value"] == 12
    assert entry["fingerprint"] == _bundle().fingerprint()
    assert entry["predicateIds"] == outcome.entry.predicate_ids
    assert entry["dependencies"][0]["hash"]
    registry = read_json(settings.registry_path())
    assert [item["name"] for item in registry] == ["aboveOne"]
    audit = read_json(settings.audit_path())
    assert audit["validationAudits"]["Even"][0]["valid"] is True


def test_changed_dependency_text_invalidates_cache(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    with DecohereSession(settings, StaticOracle([_response(12)])) as session:
        session.materialize_bundle(_bundle())
    oracle = StaticOracle([_response(14)])
    with DecohereSession(settings, oracle) as session:
        outcome = session.materialize_bundle(_bundle("type Even = number & { even: true }"))
    assert not outcome.from_cache
    assert outcome.value == 14
    assert oracle.calls == 1


def test_cached_value_failing_validation_is_regenerated(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    with DecohereSession(settings, StaticOracle([_response(12)])) as session:
        session.materialize_bundle(_bundle())
    cache_file = settings.cache_path() / f"{make_cache_key('Even')}.json"
    entry = read_json(cache_file)
    entry["value"] = 7
    write_json(cache_file, entry)
    oracle = StaticOracle([_response(16)])
    with DecohereSession(settings, oracle) as session:
        outcome = session.materialize_bundle(_bundle())
    assert outcome.value == 16
    assert oracle.calls == 1


def test_exhaustion_leaves_no_cache_entry(tmp_path: Path) -> None:
    settings = Settings(project_root=tmp_path, cache_dir="cache", max_attempts=2)
    with DecohereSession(settings, StaticOracle([_response(7), _response(9)])) as session:
        with pytest.raises(SynthesisExhausted):
            session.materialize_bundle(_bundle())
    assert not (settings.cache_path() / f"{make_cache_key('Even')}.json").exists()
    audit = read_json(settings.audit_path())
    assert len(audit["validationAudits"]["Even"]) == 2


def test_journal_is_written_when_configured(tmp_path: Path) -> None:
    settings = Settings(project_root=tmp_path, cache_dir="cache", journal_file="audit.jsonl")
    with DecohereSession(settings, StaticOracle([_response(12)])) as session:
        session.materialize_bundle(_bundle())
        ok, message = session.journal.verify_chain(tmp_path / "audit.jsonl")
    assert ok, message


def test_audit_and_report_covers_cached_entries(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    with DecohereSession(settings, StaticOracle([_response(12)])) as session:
        outcome = session.materialize_bundle(_bundle())
        report = session.audit_and_report()
    assert report.total_cache_entries == 1
    detail = report.details[0]
    assert detail.type_text == "Even"
    assert detail.confidence == outcome.confidence


def test_fingerprint_is_order_independent_and_text_sensitive() -> None:
    first = DeclarationFingerprint(name="A", source_file="a.ts", text="type A = string")
    second = DeclarationFingerprint(name="B", source_file="b.ts", text="type B = number")
    assert compute_fingerprint("T", [first, second]) == compute_fingerprint("T", [second, first])
    changed = second.model_copy(update={"text": "type B = boolean"})
    assert compute_fingerprint("T", [first, second]) != compute_fingerprint("T", [first, changed])
    assert compute_fingerprint("T", []) != compute_fingerprint("U", [])


def test_context_snippet() -> None:
    deps = [
        DeclarationFingerprint(name="A", text="type A = string"),
        DeclarationFingerprint(name="B", text="type B = number"),
    ]
    assert build_context_snippet("T", deps) == "type A = string\n\ntype B = number"
    assert build_context_snippet("T", []) == "T"
    assert len(build_context_snippet("T", [DeclarationFingerprint(name="L", text="x" * 5000)])) == 4000
    bundle = BundleSpec(identity="T", context="explicit context")
    assert bundle.context_snippet() == "explicit context"


def test_bundle_identity_is_normalized() -> None:
    bundle = BundleSpec(identity="  Array<  Even >  ")
    assert bundle.identity == "Array< Even >"
    with pytest.raises(ValueError):
        BundleSpec(identity="   ")


def test_load_bundle_errors(tmp_path: Path) -> None:
    with pytest.raises(BundleError):
        load_bundle(tmp_path / "missing.json")
    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(BundleError):
        load_bundle(broken)
    invalid = tmp_path / "invalid.json"
    write_json(invalid, {"components": []})
    with pytest.raises(BundleError):
        load_bundle(invalid)
    valid = tmp_path / "valid.json"
    write_json(valid, _bundle().to_json())
    assert load_bundle(valid).fingerprint() == _bundle().fingerprint()


def test_make_cache_key() -> None:
    key = make_cache_key("Array<Even>")
    assert key.startswith("Array_Even_")
    assert len(key.rsplit("_", 1)[1]) == 12
    assert make_cache_key("!!!").startswith("type_")
    long_key = make_cache_key("A" * 80)
    assert long_key.startswith("A" * 40 + "_")
    assert make_cache_key("Array<Even>") == key


def test_cache_store_delete_and_listing(tmp_path: Path) -> None:
    store = CacheStore(tmp_path, reserved={"predicate-registry.json"})
    write_json(tmp_path / "predicate-registry.json", [])
    write_json(store.path_for("Even"), {"typeText": "Even", "fingerprint": "f", "value": 2})
    assert [path.name for path in store.entry_paths()] == [store.path_for("Even").name]
    assert store.load("Even") is not None
    assert store.delete("Even")
    assert not store.delete("Even")
    assert store.load("Even") is None
