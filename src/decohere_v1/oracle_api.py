from __future__ import annotations

import importlib
import os
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, Union

import orjson

from .errors import OracleError
from .schemas import OracleRequest
from .utils import canonical_dumps, read_json

ScriptedResponse = Union[str, Dict[str, Any], Exception]


def _as_text(response: Any) -> str:
    if isinstance(response, str):
        return response
    return canonical_dumps(response).decode("utf-8")


class BaseOracle(Protocol):
    model: str

    def complete(self, request: OracleRequest, *, identity: str, attempt: int) -> str:
        ...


class StaticOracle:
    def __init__(self, responses: Sequence[ScriptedResponse], model: str = "static") -> None:
        self.responses = list(responses)
        self.model = model
        self.requests: List[OracleRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def complete(self, request: OracleRequest, *, identity: str, attempt: int) -> str:
        _ = (identity, attempt)
        index = len(self.requests)
        self.requests.append(request)
        if index >= len(self.responses):
            raise OracleError("exhausted", f"no scripted response for call {index + 1}")
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return _as_text(response)


class ReplayOracle:
    def __init__(self, replay_path: Path, model: str = "replay") -> None:
        self.replay_path = Path(replay_path)
        self.model = model
        self.records = self._load_records(self.replay_path)

    def _load_records(self, path: Path) -> Dict[Tuple[str, Optional[int]], Dict[str, Any]]:
        if not path.exists():
            return {}
        records: List[Dict[str, Any]] = []
        if path.suffix == ".jsonl":
            for line in path.read_bytes().splitlines():
                if not line:
                    continue
                try:
                    record = orjson.loads(line)
                except orjson.JSONDecodeError:
                    continue
                if isinstance(record, dict):
                    records.append(record)
        else:
            data = read_json(path)
            if isinstance(data, list):
                records = [item for item in data if isinstance(item, dict)]
            elif isinstance(data, dict):
                if isinstance(data.get("responses"), list):
                    records = [item for item in data["responses"] if isinstance(item, dict)]
                elif "response" in data:
                    records = [data]
        indexed: Dict[Tuple[str, Optional[int]], Dict[str, Any]] = {}
        for record in records:
            identity = record.get("identity")
            if not isinstance(identity, str) or "response" not in record:
                continue
            attempt = record.get("attempt")
            indexed[(identity, attempt if isinstance(attempt, int) else None)] = record
        return indexed

    def complete(self, request: OracleRequest, *, identity: str, attempt: int) -> str:
        _ = request
        record = self.records.get((identity, attempt)) or self.records.get((identity, None))
        if record is None:
            raise OracleError("missing", f"no replay record for {identity!r} attempt {attempt}")
        return _as_text(record["response"])


class SubprocessOracle:
    def __init__(self, command: List[str], timeout_s: float = 60.0, model: str = "subprocess") -> None:
        self.command = list(command)
        self.timeout_s = timeout_s
        self.model = model

    def complete(self, request: OracleRequest, *, identity: str, attempt: int) -> str:
        payload = {
            "identity": identity,
            "attempt": attempt,
            "request": request.to_json(),
        }
        try:
            result = subprocess.run(
                self.command,
                input=canonical_dumps(payload),
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                timeout=self.timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise OracleError("timeout", f"after {self.timeout_s}s") from exc
        except OSError as exc:
            raise OracleError("spawn_failed", str(exc)) from exc
        if result.returncode != 0:
            raise OracleError("nonzero", f"exit code {result.returncode}")
        text = result.stdout.decode("utf-8", errors="replace").strip()
        if not text:
            raise OracleError("empty")
        return text


class OpenAIOracle:
    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        *,
        api_key_env: str = "OPENAI_API_KEY",
        timeout_s: float = 60.0,
        client: Any = None,
    ) -> None:
        self.model = model
        self.api_key_env = api_key_env
        self.timeout_s = timeout_s
        self._client = client

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            openai_module = importlib.import_module("openai")
        except ImportError as exc:
            raise OracleError("unavailable", "openai SDK is not installed") from exc
        api_key = os.environ.get(self.api_key_env, "")
        if not api_key:
            raise OracleError("unavailable", f"{self.api_key_env} is not set")
        self._client = openai_module.OpenAI(api_key=api_key, timeout=self.timeout_s)
        return self._client

    def complete(self, request: OracleRequest, *, identity: str, attempt: int) -> str:
        _ = attempt
        client = self._ensure_client()
        try:
            completion = client.responses.create(
                model=self.model,
                input=[
                    {"role": "system", "content": request.system_instruction},
                    {"role": "user", "content": request.user_prompt},
                ],
            )
        except Exception as exc:  # noqa: BLE001
            raise OracleError("request_failed", f"{type(exc).__name__}: {exc}") from exc
        text = (getattr(completion, "output_text", None) or "").strip()
        if not text:
            raise OracleError("empty", f"empty response for {identity!r}")
        return text
