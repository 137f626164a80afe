"""
Pack manifest schema definitions.

This module defines the Pydantic models for pack.yaml:
- CrdOverride: Per-CRD overrides of the pack defaults
- CrdSettings: The `crds:` block (policy, strategy, waits, externals)
- PackManifest: Complete pack manifest

Example pack.yaml:

    name: widgets
    version: 1.2.0
    dependencies:
      - gadgets
    crds:
      policy: managed
      strategy: safe
      wait_timeout_seconds: 60
      external:
        - certificates.cert-manager.io
      overrides:
        legacy.example.com:
          policy: shared
          wait: false

Design Decisions:
    - All models use strict validation (extra="forbid")
    - PackManifest is frozen (immutable after creation)
    - Pack names follow lowercase alphanumeric with hyphens/underscores
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

from crdwise.crd.strategy import UpdateStrategy
from crdwise.schema import CrdPolicy


# =============================================================================
# CRD Settings
# =============================================================================


class CrdOverride(BaseModel):
    """
    Overrides for one CRD, keyed by CRD name in CrdSettings.overrides.

    Unset fields fall back to the pack-level CrdSettings.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy: CrdPolicy | None = None
    strategy: UpdateStrategy | None = None
    wait: bool | None = None
    wait_timeout_seconds: float | None = Field(default=None, gt=0)


class CrdSettings(BaseModel):
    """
    The `crds:` block of pack.yaml.

    Attributes:
        policy: Default policy for CRDs shipped by this pack
        strategy: Update strategy (None = engine default)
        wait: Whether to wait for CRDs to be Established
        wait_timeout_seconds: Readiness timeout (None = engine default)
        external: Names of CRDs provisioned outside this pack that its
            resources depend on; they are waited on but never applied
        overrides: Per-CRD overrides by CRD name
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy: CrdPolicy = Field(
        default=CrdPolicy.MANAGED,
        description="Default policy for CRDs in this pack",
    )
    strategy: UpdateStrategy | None = Field(
        default=None,
        description="CRD update strategy",
    )
    wait: bool = Field(
        default=True,
        description="Wait for CRDs to become Established",
    )
    wait_timeout_seconds: float | None = Field(
        default=None,
        description="CRD readiness timeout",
        gt=0,
    )
    external: list[str] = Field(
        default_factory=list,
        description="CRDs provisioned elsewhere that this pack waits for",
    )
    overrides: dict[str, CrdOverride] = Field(
        default_factory=dict,
        description="Per-CRD overrides keyed by CRD name",
    )

    @field_validator("external")
    @classmethod
    def validate_external(cls, v: list[str]) -> list[str]:
        """External CRD names must be fully qualified (plural.group)."""
        for name in v:
            if "." not in name:
                msg = f"External CRD name must look like <plural>.<group>: {name}"
                raise ValueError(msg)
        return v

    def override_for(self, crd_name: str) -> CrdOverride:
        return self.overrides.get(crd_name, CrdOverride())

    def strategy_for(self, crd_name: str) -> UpdateStrategy | None:
        override = self.override_for(crd_name)
        return override.strategy or self.strategy

    def skip_wait_for(self, crd_name: str) -> bool:
        override = self.override_for(crd_name)
        wait = self.wait if override.wait is None else override.wait
        return not wait

    def wait_timeout_for(self, crd_name: str) -> float | None:
        override = self.override_for(crd_name)
        return override.wait_timeout_seconds or self.wait_timeout_seconds


# =============================================================================
# Pack Manifest Model
# =============================================================================


class PackManifest(BaseModel):
    """
    Complete manifest for a pack, loaded from pack.yaml.

    Attributes:
        name: Unique pack identifier (lowercase alphanumeric with hyphens/underscores)
        version: Semantic version string (e.g., "1.0.0")
        description: Human-readable description
        dependencies: Names of packs this pack depends on (found under packs/)
        crds: CRD handling settings
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(
        ...,
        description="Unique pack identifier",
        min_length=1,
        max_length=64,
    )
    version: str = Field(
        ...,
        description="Semantic version string",
    )
    description: str = Field(
        default="",
        description="Human-readable description",
    )
    dependencies: list[str] = Field(
        default_factory=list,
        description="Packs this pack depends on",
    )
    crds: CrdSettings = Field(
        default_factory=CrdSettings,
        description="CRD handling settings",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate pack name format (lowercase alphanumeric with hyphens/underscores)."""
        if not re.match(r"^[a-z][a-z0-9_-]*$", v):
            msg = (
                f"Invalid pack name: {v}. "
                "Must start with lowercase letter, contain only lowercase letters, "
                "numbers, hyphens, and underscores."
            )
            raise ValueError(msg)
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate semantic version format."""
        if not re.match(r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$", v):
            msg = f"Invalid version format: {v}. Expected semver (e.g., '1.0.0')"
            raise ValueError(msg)
        return v

    @field_validator("dependencies")
    @classmethod
    def validate_dependencies(cls, v: list[str]) -> list[str]:
        """Dependencies must be unique."""
        if len(set(v)) != len(v):
            msg = f"Duplicate dependencies: {', '.join(v)}"
            raise ValueError(msg)
        return v
