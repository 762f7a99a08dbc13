from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from appharbor.exceptions import ValidationError

KEY_PATTERN = r"^[a-z0-9]+(-[a-z0-9]+)*$"
SEMVER_PATTERN = (
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(-[0-9A-Za-z-]+(\.[0-9A-Za-z-]+)*)?"
    r"(\+[0-9A-Za-z-]+(\.[0-9A-Za-z-]+)*)?$"
)

FeatureValue = Union[bool, int, float, str]


def format_errors(exc: PydanticValidationError) -> List[str]:
    """Render pydantic errors as "path: message" strings."""
    errors = []
    for err in exc.errors():
        path = ".".join(str(part) for part in err.get("loc", ()))
        errors.append(f"{path}: {err.get('msg')}" if path else str(err.get("msg")))
    return errors


# ============================================================================
# Tenant config / overrides
# ============================================================================


class BrandingConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    logo_url: Optional[str] = None


class LimitsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    max_records: Optional[int] = None
    max_users: Optional[int] = None


class AppConfig(BaseModel):
    """Per-tenant app configuration; merged over definition defaults at runtime."""

    model_config = ConfigDict(extra="allow")

    branding: Optional[BrandingConfig] = None
    features: Optional[Dict[str, FeatureValue]] = None
    ui_overrides: Optional[Dict[str, Any]] = None
    integrations: Optional[Dict[str, str]] = None
    limits: Optional[LimitsConfig] = None


class AppOverrides(BaseModel):
    """Tenant-owned customizations; stored as-is, never merged."""

    forms: Optional[List[Dict[str, Any]]] = None
    score_models: Optional[List[Dict[str, Any]]] = None
    ui_layouts: Optional[List[Dict[str, Any]]] = None
    workflows: Optional[List[Dict[str, Any]]] = None


def validate_config(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    try:
        parsed = AppConfig.model_validate(config or {})
    except PydanticValidationError as exc:
        errors = format_errors(exc)
        raise ValidationError("Invalid app config", field="config", errors=errors) from exc
    return parsed.model_dump(exclude_none=True)


def validate_overrides(overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    try:
        parsed = AppOverrides.model_validate(overrides or {})
    except PydanticValidationError as exc:
        errors = format_errors(exc)
        raise ValidationError(
            "Invalid app overrides", field="overrides", errors=errors
        ) from exc
    return parsed.model_dump(exclude_none=True)


# ============================================================================
# Manifest
# ============================================================================


class McpActionDefinition(BaseModel):
    key: str = Field(..., min_length=1, max_length=100)
    version: str = Field(..., pattern=SEMVER_PATTERN)
    description: Optional[str] = None
    input_schema: Optional[Dict[str, Any]] = None
    output_schema: Optional[Dict[str, Any]] = None


class AppManifest(BaseModel):
    key: str = Field(..., pattern=KEY_PATTERN, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    version: str = Field(..., pattern=SEMVER_PATTERN)
    description: Optional[str] = None
    app_type: str = Field(default="custom", pattern=r"^(core|addon|custom)$")
    icon_name: str = Field(default="Package")
    domain_tables: List[str] = Field(..., min_length=1)
    shared_tables: List[str] = Field(default_factory=list)
    hooks: List[Dict[str, Any]] = Field(default_factory=list)
    ui_components: List[Dict[str, Any]] = Field(default_factory=list)
    capabilities: List[str] = Field(default_factory=list)
    integration_requirements: Dict[str, Any] = Field(default_factory=dict)
    routes: List[str] = Field(default_factory=list)
    modules: List[str] = Field(default_factory=list)
    extension_points: Dict[str, Any] = Field(default_factory=dict)
    mcp_actions: List[McpActionDefinition] = Field(default_factory=list)


# ============================================================================
# Results
# ============================================================================


@dataclass
class CompatibilityCheck:
    ok: bool
    reasons: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "reasons": list(self.reasons),
            "warnings": list(self.warnings),
        }


@dataclass
class ManifestValidation:
    ok: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "errors": list(self.errors)}
