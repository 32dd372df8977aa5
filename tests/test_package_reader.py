from __future__ import annotations

import io
import json
import zipfile
from pathlib import Path
from typing import Dict

import pytest

from uapftransfer import (
    ArchiveFormatError,
    ManifestMissingError,
    PathError,
    ReferencedPathMissingError,
    open_package,
    validate_package,
)


pytestmark = pytest.mark.basic


def _zip(entries: Dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buf.getvalue()


def _manifest_bytes(**overrides) -> bytes:
    raw = {"name": "demo", "version": "0.1.0", "workflows": [{"path": "workflows/a.bpmn"}], "resources": []}
    raw.update(overrides)
    return json.dumps(raw).encode("utf-8")


def test_open_package_from_path(tmp_path: Path) -> None:
    path = tmp_path / "demo_0.1.0.uapf"
    path.write_bytes(_zip({"manifest.json": _manifest_bytes(), "workflows/a.bpmn": b"<a/>", "notes.txt": b"n"}))

    with open_package(path) as pkg:
        assert pkg.manifest.name == "demo"
        assert pkg.references == ["workflows/a.bpmn"]
        assert sorted(pkg.names()) == ["manifest.json", "notes.txt", "workflows/a.bpmn"]
        assert pkg.read_bytes("./workflows/a.bpmn") == b"<a/>"
        with pytest.raises(FileNotFoundError):
            pkg.read_bytes("workflows/missing.bpmn")
        with pytest.raises(PathError):
            pkg.read_bytes("../manifest.json")


def test_open_package_detects_wrapper_directory() -> None:
    data = _zip({"demo/manifest.json": _manifest_bytes(), "demo/workflows/a.bpmn": b"<a/>"})
    with open_package(data) as pkg:
        assert pkg.root_prefix == "demo/"
        assert sorted(pkg.names()) == ["manifest.json", "workflows/a.bpmn"]
        assert pkg.read_bytes("workflows/a.bpmn") == b"<a/>"


def test_validate_package_returns_manifest() -> None:
    manifest = validate_package(_zip({"manifest.json": _manifest_bytes(), "workflows/a.bpmn": b"<a/>"}))
    assert manifest.version == "0.1.0"


def test_validate_package_errors() -> None:
    with pytest.raises(ArchiveFormatError):
        validate_package(b"garbage")
    with pytest.raises(ManifestMissingError):
        validate_package(_zip({"workflows/a.bpmn": b"<a/>"}))
    with pytest.raises(ManifestMissingError):
        validate_package(_zip({"a/manifest.json": _manifest_bytes(), "b/workflows/a.bpmn": b"<a/>"}))
    with pytest.raises(PathError):
        validate_package(_zip({"manifest.json": _manifest_bytes(), "../evil": b"x"}))
    with pytest.raises(ReferencedPathMissingError) as excinfo:
        validate_package(_zip({"manifest.json": _manifest_bytes()}))
    assert excinfo.value.paths == ("workflows/a.bpmn",)
