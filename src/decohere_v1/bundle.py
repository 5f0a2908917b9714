from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import orjson
from blake3 import blake3
from pydantic import Field, ValidationError, field_validator

from .constraints import ComponentSpec, ConstraintSpecification, collect_constraints
from .errors import BundleError
from .schemas import DeclarationFingerprint, WireModel
from .utils import hash_text, normalize_whitespace, read_json

CONTEXT_SNIPPET_LIMIT = 4000


def resolve_dependency(dependency: DeclarationFingerprint) -> DeclarationFingerprint:
    expected = hash_text(dependency.text)
    if dependency.hash == expected:
        return dependency
    return dependency.model_copy(update={"hash": expected})


def compute_fingerprint(identity: str, dependencies: List[DeclarationFingerprint]) -> str:
    hasher = blake3()
    hasher.update(identity.encode("utf-8"))
    lines = sorted(
        f"{dep.name}:{dep.source_file}:{hash_text(dep.text)}" for dep in dependencies
    )
    for line in lines:
        hasher.update(line.encode("utf-8"))
    return hasher.hexdigest()


def build_context_snippet(
    identity: str, dependencies: List[DeclarationFingerprint], limit: int = CONTEXT_SNIPPET_LIMIT
) -> str:
    if not dependencies:
        return identity
    combined = "\n\n".join(dep.text for dep in dependencies)
    return combined[:limit]


class BundleSpec(WireModel):
    identity: str
    components: List[ComponentSpec] = Field(default_factory=list)
    dependencies: List[DeclarationFingerprint] = Field(default_factory=list)
    context: Optional[str] = None

    @field_validator("identity")
    @classmethod
    def _normalize_identity(cls, value: str) -> str:
        normalized = normalize_whitespace(value)
        if not normalized:
            raise ValueError("identity must not be empty")
        return normalized

    def resolved_dependencies(self) -> List[DeclarationFingerprint]:
        resolved = [resolve_dependency(dep) for dep in self.dependencies]
        return sorted(resolved, key=lambda dep: dep.name)

    def fingerprint(self) -> str:
        return compute_fingerprint(self.identity, self.dependencies)

    def specification(self) -> ConstraintSpecification:
        return collect_constraints(self.components)

    def context_snippet(self, limit: int = CONTEXT_SNIPPET_LIMIT) -> str:
        if self.context:
            return self.context[:limit]
        return build_context_snippet(self.identity, self.dependencies, limit)


def load_bundle(path: Path) -> BundleSpec:
    if not path.exists():
        raise BundleError(f"bundle file not found: {path}")
    try:
        data = read_json(path)
    except orjson.JSONDecodeError as exc:
        raise BundleError(f"bundle file is not valid JSON: {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise BundleError(f"bundle file must contain an object: {path}")
    try:
        return BundleSpec.model_validate(data)
    except ValidationError as exc:
        raise BundleError(f"invalid bundle {path}: {exc.error_count()} error(s): {exc}") from exc
