"""UAPF manifest models and validation.

Package layout (zip):
  manifest.json
  workflows/...              (BPMN/DMN/CMMN definitions, referenced by manifest.workflows)
  resources/...              (forms, scripts, data, referenced by manifest.resources)

Notes:
- Structural validation is done with pydantic (strict strings, lists of objects).
- `metadata` is an opaque mapping; it is round-tripped verbatim and never interpreted.
- Reference paths go through the archive path codec; see `extract_references`.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError, field_validator, model_validator

from ..core.errors import InvalidReferenceError, PathError, SchemaError
from .paths import canonicalize_path


class PackageInfo(BaseModel):
    """Optional `package` block; overrides the top-level identity when set."""

    model_config = ConfigDict(frozen=True, extra="allow")

    name: StrictStr = ""
    version: StrictStr = ""
    summary: StrictStr = ""
    maintainers: List[StrictStr] = Field(default_factory=list)

    @field_validator("maintainers", mode="before")
    @classmethod
    def _null_maintainers(cls, v: Any) -> Any:
        return [] if v is None else v


class PackageReference(BaseModel):
    """A `{path, type}` entry pointing at a file inside the package."""

    model_config = ConfigDict(frozen=True, extra="allow")

    path: StrictStr
    type: StrictStr = ""


class Manifest(BaseModel):
    """Package manifest (manifest.json)."""

    model_config = ConfigDict(frozen=True, extra="allow")

    name: StrictStr = ""
    version: StrictStr = ""
    package: Optional[PackageInfo] = None
    workflows: List[PackageReference] = Field(default_factory=list)
    resources: List[PackageReference] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("workflows", "resources", mode="before")
    @classmethod
    def _null_lists(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("metadata", mode="before")
    @classmethod
    def _null_metadata(cls, v: Any) -> Any:
        return {} if v is None else v

    @model_validator(mode="after")
    def _check_identity(self) -> "Manifest":
        if self.name and self.version:
            return self
        pkg = self.package
        if pkg is not None and pkg.name and pkg.version:
            return self
        raise ValueError("manifest must include name and version or package.name and package.version")

    @property
    def display_name(self) -> str:
        if self.package is not None and self.package.name:
            return self.package.name
        return self.name

    @property
    def display_version(self) -> str:
        if self.package is not None and self.package.version:
            return self.package.version
        return self.version

    @property
    def extra(self) -> Dict[str, Any]:
        """Top-level keys this model does not know about (preserved as-is)."""
        return dict(self.model_extra or {})


def _format_validation_error(e: ValidationError) -> str:
    parts: list[str] = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc") or ()) or "manifest"
        msg = str(err.get("msg") or "invalid value")
        parts.append(f"{loc}: {msg}")
    return "; ".join(parts)


def manifest_from_dict(raw: Any) -> Manifest:
    if not isinstance(raw, dict):
        raise SchemaError("manifest.json must be a JSON object")
    try:
        return Manifest.model_validate(raw)
    except ValidationError as e:
        raise SchemaError(f"manifest validation failed: {_format_validation_error(e)}") from e


def validate_manifest_bytes(data: bytes) -> Manifest:
    """Structural check of manifest.json content (no business rules on paths)."""
    try:
        raw = json.loads(bytes(data).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SchemaError(f"manifest.json is not valid JSON: {e}") from e
    return manifest_from_dict(raw)


def manifest_to_dict(manifest: Manifest) -> Dict[str, Any]:
    out = manifest.model_dump(mode="json")
    if manifest.package is None:
        out.pop("package", None)
    return out


def extract_references(manifest: Manifest) -> List[str]:
    """Return canonical reference paths (workflows first, then resources).

    Duplicates are removed keeping first-seen order. Any bad path fails the whole
    extraction; the error names every offending path.
    """
    ordered: Dict[str, None] = {}
    bad: list[str] = []
    for ref in list(manifest.workflows) + list(manifest.resources):
        try:
            clean = canonicalize_path(ref.path)
        except PathError:
            bad.append(ref.path)
            continue
        ordered.setdefault(clean, None)

    if bad:
        shown = ", ".join(repr(p) for p in bad)
        raise InvalidReferenceError(f"manifest references invalid paths: {shown}", paths=bad)
    return list(ordered.keys())


def load_manifest(data: bytes) -> Tuple[Manifest, List[str]]:
    """Schema validation + reference extraction, as done by both export and import."""
    manifest = validate_manifest_bytes(data)
    return manifest, extract_references(manifest)
