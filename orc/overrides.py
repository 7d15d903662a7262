from __future__ import annotations

import json

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ManifestError


class DeployOverrides(BaseModel):
    """Plain key/value overrides applied on top of the default manifest set."""

    namespace: str | None = Field(None, description="Target namespace (dns-safe)")
    image_tag: str | None = Field(None, description="Tag for locally built images")
    images: dict[str, str] = Field(default_factory=dict, description="unit -> full image reference")
    replicas: dict[str, int] = Field(default_factory=dict, description="unit -> replica count")
    config: dict[str, str] = Field(default_factory=dict, description="ConfigEntry key -> value")
    secrets: dict[str, str] = Field(default_factory=dict, description="SecretEntry key -> value")
    env: dict[str, dict[str, str]] = Field(
        default_factory=dict, description="unit -> {VAR: 'config:KEY' | 'secret:KEY' | literal}"
    )

    model_config = {"extra": "forbid"}

    @field_validator("replicas")
    @classmethod
    def _replicas_positive(cls, v: dict[str, int]) -> dict[str, int]:
        for unit, count in v.items():
            if count < 1:
                raise ValueError(f"replicas for '{unit}' must be >= 1")
        return v


def load_overrides(path: str | None) -> DeployOverrides:
    if not path:
        return DeployOverrides()
    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ManifestError(f"Cannot read overrides file '{path}': {e}") from e
    try:
        return DeployOverrides.model_validate(raw)
    except ValidationError as e:
        raise ManifestError(f"Invalid overrides file '{path}': {e}") from e
