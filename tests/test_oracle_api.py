import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import orjson
import pytest

from decohere_v1.audit import AuditLog
from decohere_v1.constraints import ComponentSpec, collect_constraints
from decohere_v1.errors import OracleError
from decohere_v1.oracle_api import OpenAIOracle, ReplayOracle, StaticOracle, SubprocessOracle
from decohere_v1.orchestrator.synthesis import Synthesizer
from decohere_v1.registry import PredicateRegistry
from decohere_v1.schemas import OracleRequest
from decohere_v1.utils import write_json, write_jsonl_line

FIXTURES = Path(__file__).resolve().parent / "fixtures"


def _request(prompt: str = "Must constraints:\n- Value must be even") -> OracleRequest:
    return OracleRequest(system_instruction="system", user_prompt=prompt)


def _echo_cmd() -> list[str]:
    return [sys.executable, str(FIXTURES / "oracle_echo.py")]


def test_static_oracle_scripts_responses() -> None:
    oracle = StaticOracle([{"value": 1}, ValueError("boom"), "raw text"])
    assert oracle.complete(_request(), identity="T", attempt=1) == '{"value":1}'
    with pytest.raises(ValueError):
        oracle.complete(_request(), identity="T", attempt=2)
    assert oracle.complete(_request(), identity="T", attempt=3) == "raw text"
    with pytest.raises(OracleError) as excinfo:
        oracle.complete(_request(), identity="T", attempt=4)
    assert excinfo.value.reason == "exhausted"
    assert oracle.calls == 4


def test_replay_oracle_prefers_attempt_specific_records(tmp_path: Path) -> None:
    path = tmp_path / "replay.jsonl"
    write_jsonl_line(path, {"identity": "T", "response": {"value": 0}})
    write_jsonl_line(path, {"identity": "T", "attempt": 2, "response": {"value": 2}})
    oracle = ReplayOracle(path)
    assert orjson.loads(oracle.complete(_request(), identity="T", attempt=1)) == {"value": 0}
    assert orjson.loads(oracle.complete(_request(), identity="T", attempt=2)) == {"value": 2}
    with pytest.raises(OracleError) as excinfo:
        oracle.complete(_request(), identity="Other", attempt=1)
    assert excinfo.value.reason == "missing"


def test_replay_oracle_reads_json_list(tmp_path: Path) -> None:
    path = tmp_path / "replay.json"
    write_json(path, [{"identity": "T", "response": '{"value": 5}'}])
    oracle = ReplayOracle(path)
    assert oracle.complete(_request(), identity="T", attempt=3) == '{"value": 5}'
    assert ReplayOracle(tmp_path / "missing.json").records == {}


def test_subprocess_oracle_round_trip() -> None:
    oracle = SubprocessOracle(_echo_cmd(), timeout_s=30)
    text = oracle.complete(_request(), identity="Even", attempt=1)
    assert orjson.loads(text)["value"] == 12


def test_subprocess_oracle_failures() -> None:
    oracle = SubprocessOracle(_echo_cmd(), timeout_s=30)
    with pytest.raises(OracleError) as nonzero:
        oracle.complete(_request(), identity="Broken", attempt=1)
    assert nonzero.value.reason == "nonzero"
    with pytest.raises(OracleError) as empty:
        oracle.complete(_request(), identity="Silent", attempt=1)
    assert empty.value.reason == "empty"
    missing = SubprocessOracle(["/nonexistent/decohere-oracle"], timeout_s=5)
    with pytest.raises(OracleError) as spawn:
        missing.complete(_request(), identity="Even", attempt=1)
    assert spawn.value.reason == "spawn_failed"


def test_subprocess_oracle_drives_synthesis() -> None:
    spec = collect_constraints(
        [ComponentSpec(name="Even", kind="examples", examples=[2, 4, 6, 8, 10])]
    )
    synthesizer = Synthesizer(
        SubprocessOracle(_echo_cmd(), timeout_s=30), PredicateRegistry(None), AuditLog()
    )
    result = synthesizer.synthesize("Even", spec)
    assert result.value == 12
    assert result.model == "subprocess"


class _FakeResponses:
    def __init__(self, outcome: Any) -> None:
        self.outcome = outcome
        self.calls: list[dict] = []

    def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return SimpleNamespace(output_text=self.outcome)


def test_openai_oracle_with_injected_client() -> None:
    responses = _FakeResponses('{"value": 4}')
    oracle = OpenAIOracle("test-model", client=SimpleNamespace(responses=responses))
    assert oracle.complete(_request("hello"), identity="T", attempt=1) == '{"value": 4}'
    call = responses.calls[0]
    assert call["model"] == "test-model"
    assert call["input"][1] == {"role": "user", "content": "hello"}


def test_openai_oracle_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    failing = OpenAIOracle(client=SimpleNamespace(responses=_FakeResponses(RuntimeError("429"))))
    with pytest.raises(OracleError) as failed:
        failing.complete(_request(), identity="T", attempt=1)
    assert failed.value.reason == "request_failed"
    blank = OpenAIOracle(client=SimpleNamespace(responses=_FakeResponses("  ")))
    with pytest.raises(OracleError) as empty:
        blank.complete(_request(), identity="T", attempt=1)
    assert empty.value.reason == "empty"
    monkeypatch.delenv("DECOHERE_TEST_KEY", raising=False)
    unconfigured = OpenAIOracle(api_key_env="DECOHERE_TEST_KEY")
    with pytest.raises(OracleError) as unavailable:
        unconfigured.complete(_request(), identity="T", attempt=1)
    assert unavailable.value.reason == "unavailable"

