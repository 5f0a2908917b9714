from pathlib import Path

from typer.testing import CliRunner

from decohere_v1.cli import app
from decohere_v1.schemas import SCHEMA_REGISTRY
from decohere_v1.utils import canonical_dumps, read_json, write_json

RESPONSE = canonical_dumps(
    {
        "value": 12,
        "heuristics": [
            {
                "name": "divisibleByTwo",
                "description": "Divisible by two",
                "predicate": "lambda x: x % 2 == 0",
            }
        ],
        "candidateValidators": [{"name": "evenModulo", "predicate": "x % 2 === 0"}],
        "explanation": "even",
    }
).decode("utf-8")


def _bundle_file(tmp_path: Path) -> Path:
    path = tmp_path / "even.bundle.json"
    write_json(
        path,
        {
            "identity": "Even",
            "components": [{"name": "Even", "kind": "examples", "examples": [2, 4, 6, 8, 10]}],
            "dependencies": [
                {"name": "Even", "sourceFile": "types.ts", "text": "type Even = number"}
            ],
        },
    )
    return path


def _synth(runner: CliRunner, tmp_path: Path, *extra: str) -> object:
    return runner.invoke(
        app,
        [
            "synth",
            "--bundle-file",
            str(_bundle_file(tmp_path)),
            "--cache-dir",
            str(tmp_path / "cache"),
            *extra,
        ],
    )


def test_synth_then_cache_and_registry_commands(tmp_path: Path) -> None:
    runner = CliRunner()
    result = _synth(runner, tmp_path, "--oracle", "static", "--static-response", RESPONSE)
    assert result.exit_code == 0, result.output
    assert "Synthesis Summary" in result.output
    assert "divisibleByTwo" in result.output

    again = _synth(runner, tmp_path, "--oracle", "static", "--static-response", "{}")
    assert again.exit_code == 0, again.output
    assert "True" in again.output

    cache_dir = str(tmp_path / "cache")
    audit = runner.invoke(app, ["cache", "audit", "--cache-dir", cache_dir])
    assert audit.exit_code == 0, audit.output
    assert "Regeneration Report" in audit.output
    assert "Even" in audit.output

    health = runner.invoke(app, ["cache", "health", "--cache-dir", cache_dir])
    assert health.exit_code == 0, health.output
    assert "Cache Health" in health.output

    registry = runner.invoke(app, ["registry", "list", "--cache-dir", cache_dir])
    assert registry.exit_code == 0, registry.output
    assert "divisibleByTwo" in registry.output

    summary = runner.invoke(app, ["audit", "summary", "--cache-dir", cache_dir])
    assert summary.exit_code == 0, summary.output
    assert "successRate" in summary.output


def test_fuzz_after_synth(tmp_path: Path) -> None:
    runner = CliRunner()
    result = _synth(runner, tmp_path, "--oracle", "static", "--static-response", RESPONSE)
    assert result.exit_code == 0, result.output
    fuzz = runner.invoke(
        app,
        [
            "fuzz",
            "--bundle-file",
            str(_bundle_file(tmp_path)),
            "--cache-dir",
            str(tmp_path / "cache"),
            "--count",
            "5",
        ],
    )
    assert fuzz.exit_code == 0, fuzz.output
    assert "12" in fuzz.output


def test_fuzz_without_cache_fails(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(
        app,
        ["fuzz", "--bundle-file", str(_bundle_file(tmp_path)), "--cache-dir", str(tmp_path / "c")],
    )
    assert result.exit_code == 1
    assert "run synth first" in result.output


def test_synth_exhaustion_exits_nonzero(tmp_path: Path) -> None:
    config = tmp_path / "config.json"
    write_json(config, {"max_attempts": 1})
    runner = CliRunner()
    result = _synth(
        runner,
        tmp_path,
        "--config",
        str(config),
        "--oracle",
        "static",
        "--static-response",
        '{"value": 7}',
    )
    assert result.exit_code == 1
    assert "error:" in result.output
    assert not any((tmp_path / "cache").glob("Even_*.json"))


def test_synth_requires_oracle_inputs(tmp_path: Path) -> None:
    runner = CliRunner()
    result = _synth(runner, tmp_path, "--oracle", "static")
    assert result.exit_code != 0
    unknown = _synth(runner, tmp_path, "--oracle", "telepathy")
    assert unknown.exit_code != 0


def test_audit_verify_journal(tmp_path: Path) -> None:
    config = tmp_path / "config.json"
    write_json(config, {"journal_file": str(tmp_path / "audit.jsonl")})
    runner = CliRunner()
    result = _synth(
        runner, tmp_path, "--config", str(config), "--oracle", "static", "--static-response", RESPONSE
    )
    assert result.exit_code == 0, result.output
    journal = tmp_path / "audit.jsonl"
    ok = runner.invoke(app, ["audit", "verify", "--journal", str(journal)])
    assert ok.exit_code == 0, ok.output

    events = [line for line in journal.read_text(encoding="utf-8").splitlines() if line]
    journal.write_text("\n".join(reversed(events)) + "\n", encoding="utf-8")
    bad = runner.invoke(app, ["audit", "verify", "--journal", str(journal)])
    assert bad.exit_code == 1


def test_schema_export(tmp_path: Path) -> None:
    runner = CliRunner()
    out_dir = tmp_path / "schemas"
    result = runner.invoke(app, ["schema", "export", "--out-dir", str(out_dir)])
    assert result.exit_code == 0, result.output
    schema = read_json(out_dir / "CacheEntry.schema.json")
    assert "typeText" in schema["properties"]
    exported = sorted(path.name for path in out_dir.glob("*.schema.json"))
    assert exported == sorted(f"{model.__name__}.schema.json" for model in SCHEMA_REGISTRY)
