from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CACHE_DIR = "generated/decohere-cache"
DEFAULT_MAX_ATTEMPTS = 5


class ScoringWeights(BaseModel):
    complexity: float = 0.3
    coverage: float = 0.4
    reusability: float = 0.3


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DECOHERE_")

    project_root: Path = Path(".")
    cache_dir: str = DEFAULT_CACHE_DIR
    registry_file: str = "predicate-registry.json"
    helper_registry_file: str = "helper-registry.json"
    audit_file: str = "audit-log.json"
    journal_file: Optional[str] = None
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    confidence_threshold: float = 0.75
    high_confidence_threshold: float = 0.9
    candidate_confidence_threshold: float = 0.6
    scoring_weights: ScoringWeights = Field(default_factory=ScoringWeights)
    context_snippet_limit: int = 4000
    oracle_model: str = "gpt-4.1-mini"
    oracle_timeout_s: float = 60.0
    openai_api_key_env: str = "OPENAI_API_KEY"
    log_level: str = "info"
    fuzz_seed: int = 1337
    predicate_step_limit: int = 10_000

    @model_validator(mode="after")
    def _check_bounds(self) -> "Settings":
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        for name in (
            "confidence_threshold",
            "high_confidence_threshold",
            "candidate_confidence_threshold",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1]")
        return self

    def expand_path(self, raw_path: str) -> Path:
        path = Path(raw_path).expanduser()
        if path.is_absolute():
            return path
        return self.project_root / path

    def cache_path(self) -> Path:
        return self.expand_path(self.cache_dir)

    def registry_path(self) -> Path:
        return self.cache_path() / self.registry_file

    def helper_registry_path(self) -> Path:
        return self.cache_path() / self.helper_registry_file

    def audit_path(self) -> Path:
        return self.cache_path() / self.audit_file

    def journal_path(self) -> Optional[Path]:
        if not self.journal_file:
            return None
        return self.expand_path(self.journal_file)

    def reserved_cache_files(self) -> set[str]:
        return {self.registry_file, self.helper_registry_file, self.audit_file}
