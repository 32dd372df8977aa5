from __future__ import annotations

import json

import pytest

from uapftransfer.core.errors import InvalidReferenceError, SchemaError
from uapftransfer.package.models import (
    Manifest,
    extract_references,
    load_manifest,
    manifest_from_dict,
    manifest_to_dict,
    validate_manifest_bytes,
)


pytestmark = pytest.mark.basic


def _manifest(**overrides) -> dict:
    raw = {
        "name": "claims-intake",
        "version": "1.2.0",
        "workflows": [{"path": "workflows/intake.bpmn", "type": "bpmn"}],
        "resources": [{"path": "resources/form.json", "type": "form"}],
        "metadata": {"owner": "ops", "tags": ["claims"]},
    }
    raw.update(overrides)
    return raw


def test_validate_manifest_bytes_accepts_valid_manifest() -> None:
    m = validate_manifest_bytes(json.dumps(_manifest()).encode("utf-8"))
    assert isinstance(m, Manifest)
    assert m.name == "claims-intake"
    assert m.version == "1.2.0"
    assert [w.path for w in m.workflows] == ["workflows/intake.bpmn"]
    assert m.resources[0].type == "form"
    assert m.metadata == {"owner": "ops", "tags": ["claims"]}


def test_validate_manifest_bytes_rejects_invalid_json() -> None:
    with pytest.raises(SchemaError, match="not valid JSON"):
        validate_manifest_bytes(b"{not json")
    with pytest.raises(SchemaError):
        validate_manifest_bytes(b"\xff\xfe")


def test_manifest_must_be_an_object() -> None:
    with pytest.raises(SchemaError, match="JSON object"):
        validate_manifest_bytes(b"[1, 2, 3]")


def test_structural_errors_are_reported_together() -> None:
    raw = _manifest(version=3, workflows=[{"type": "bpmn"}], metadata="oops")
    with pytest.raises(SchemaError) as excinfo:
        manifest_from_dict(raw)
    msg = str(excinfo.value)
    assert "version" in msg
    assert "workflows.0.path" in msg
    assert "metadata" in msg


def test_reference_type_is_optional() -> None:
    m = manifest_from_dict(_manifest(workflows=[{"path": "workflows/a.bpmn"}]))
    assert m.workflows[0].type == ""


def test_identity_from_package_block() -> None:
    raw = _manifest(name="", version="")
    raw["package"] = {"name": "Claims Intake", "version": "2.0.0", "maintainers": ["ops@example.com"]}
    m = manifest_from_dict(raw)
    assert m.display_name == "Claims Intake"
    assert m.display_version == "2.0.0"


def test_package_block_overrides_top_level_identity() -> None:
    raw = _manifest()
    raw["package"] = {"name": "pkg-name", "version": ""}
    m = manifest_from_dict(raw)
    assert m.display_name == "pkg-name"
    assert m.display_version == "1.2.0"


def test_identity_is_required() -> None:
    with pytest.raises(SchemaError, match="name and version"):
        manifest_from_dict(_manifest(version=""))
    with pytest.raises(SchemaError):
        manifest_from_dict({"package": {"name": "only-name"}})


def test_null_lists_are_treated_as_empty() -> None:
    m = manifest_from_dict(_manifest(workflows=None, resources=None, metadata=None))
    assert m.workflows == []
    assert m.resources == []
    assert m.metadata == {}
    assert extract_references(m) == []


def test_extract_references_orders_and_deduplicates() -> None:
    m = manifest_from_dict(
        _manifest(
            workflows=[{"path": "workflows/b.bpmn"}, {"path": "./workflows/a.bpmn"}],
            resources=[{"path": "workflows/b.bpmn"}, {"path": "resources\\form.json"}],
        )
    )
    refs = extract_references(m)
    assert refs == ["workflows/b.bpmn", "workflows/a.bpmn", "resources/form.json"]
    assert extract_references(m) == refs


def test_extract_references_names_every_bad_path() -> None:
    m = manifest_from_dict(
        _manifest(
            workflows=[{"path": "../evil.bpmn"}, {"path": "workflows/ok.bpmn"}],
            resources=[{"path": "/etc/passwd"}, {"path": ""}],
        )
    )
    with pytest.raises(InvalidReferenceError) as excinfo:
        extract_references(m)
    assert excinfo.value.paths == ("../evil.bpmn", "/etc/passwd", "")


def test_manifest_to_dict_preserves_metadata_and_unknown_keys() -> None:
    raw = _manifest(metadata={"z": 1, "a": {"nested": [1, 2]}}, x_custom="kept")
    m = manifest_from_dict(raw)
    assert m.extra == {"x_custom": "kept"}

    out = manifest_to_dict(m)
    assert out["metadata"] == {"z": 1, "a": {"nested": [1, 2]}}
    assert list(out["metadata"].keys()) == ["z", "a"]
    assert out["x_custom"] == "kept"
    assert "package" not in out
    assert manifest_from_dict(out) == m


def test_load_manifest_returns_manifest_and_references() -> None:
    manifest, refs = load_manifest(json.dumps(_manifest()).encode("utf-8"))
    assert manifest.name == "claims-intake"
    assert refs == ["workflows/intake.bpmn", "resources/form.json"]
