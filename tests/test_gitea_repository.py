from __future__ import annotations

import base64
import io
import json
import zipfile
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import unquote

import httpx
import pytest

from uapftransfer import (
    Actor,
    CommitError,
    ConflictError,
    EntryKind,
    FileOperation,
    GiteaApiError,
    GiteaRepository,
    RefNotFoundError,
    export_package,
    import_package,
)


pytestmark = pytest.mark.basic

_PREFIX = "/api/v1/repos/acme/claims"
_HEAD = "a" * 40


class _FakeGitea:
    """Just enough of the Gitea API for the adapter, with a 2-item tree page size."""

    def __init__(self, files: Dict[str, bytes], *, executable: tuple = ()) -> None:
        self.files = dict(files)
        self.executable = set(executable)
        self.head: Optional[str] = _HEAD
        self.posted: Optional[Dict[str, Any]] = None
        self.post_status = 201
        self.after_branch_read: Optional[Callable[[], None]] = None
        self.requests: List[httpx.Request] = []

    def _tree(self) -> List[Dict[str, Any]]:
        items: Dict[str, Dict[str, Any]] = {}
        for path, data in sorted(self.files.items()):
            parts = path.split("/")
            for i in range(1, len(parts)):
                d = "/".join(parts[:i])
                items.setdefault(d, {"path": d, "type": "tree", "mode": "040000", "sha": "t" * 40})
            mode = "100755" if path in self.executable else "100644"
            items[path] = {"path": path, "type": "blob", "mode": mode, "size": len(data), "sha": "b" * 40}
        return [items[k] for k in sorted(items)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        assert request.headers.get("Authorization") == "token secret"
        path = unquote(request.url.path)
        assert path.startswith(_PREFIX)
        sub = path[len(_PREFIX):]

        if sub == "":
            return httpx.Response(200, json={"name": "claims", "default_branch": "main"})
        if sub.startswith("/git/commits/"):
            ref = sub[len("/git/commits/"):]
            if self.head and ref in ("main", self.head):
                return httpx.Response(200, json={"sha": self.head})
            return httpx.Response(404, json={"message": "commit not found"})
        if sub.startswith("/branches/"):
            if sub == "/branches/main" and self.head:
                if self.after_branch_read is not None:
                    self.after_branch_read()
                return httpx.Response(200, json={"name": "main", "commit": {"id": self.head}})
            return httpx.Response(404, json={"message": "branch not found"})
        if sub.startswith("/git/trees/"):
            page = int(request.url.params.get("page", "1"))
            tree = self._tree()
            items = tree[(page - 1) * 2 : page * 2]
            return httpx.Response(
                200,
                json={"sha": self.head, "tree": items, "truncated": page * 2 < len(tree), "total_count": len(tree)},
            )
        if sub.startswith("/contents/"):
            p = sub[len("/contents/"):]
            if p in self.files:
                return httpx.Response(200, json={"type": "file", "path": p, "size": len(self.files[p])})
            if any(f.startswith(p + "/") for f in self.files):
                return httpx.Response(200, json=[])
            return httpx.Response(404, json={"message": "not found"})
        if sub.startswith("/raw/"):
            p = sub[len("/raw/"):]
            if p in self.files:
                return httpx.Response(200, content=self.files[p])
            return httpx.Response(404, json={"message": "not found"})
        if sub == "/contents" and request.method == "POST":
            self.posted = json.loads(request.content)
            exists = any(f["path"] in self.files for f in self.posted["files"])
            if exists or self.post_status >= 400:
                return httpx.Response(self.post_status, json={"message": "file already exists"})
            return httpx.Response(201, json={"commit": {"sha": "d" * 40}})
        return httpx.Response(404, json={"message": f"no route for {sub}"})


def _gitea(fake: _FakeGitea) -> GiteaRepository:
    client = httpx.Client(base_url="https://gitea.example/api/v1", transport=httpx.MockTransport(fake.handler))
    return GiteaRepository(base_url="https://gitea.example", owner="acme", repo="claims", token="secret", client=client)


def _package_files() -> Dict[str, bytes]:
    manifest = {
        "name": "claims",
        "version": "1.0.0",
        "workflows": [{"path": "workflows/a.bpmn", "type": "bpmn"}],
        "resources": [],
    }
    return {
        "manifest.json": json.dumps(manifest).encode("utf-8"),
        "workflows/a.bpmn": b"<definitions id='a'/>",
        "scripts/run.sh": b"#!/bin/sh\n",
    }


def test_repository_info_and_refs() -> None:
    fake = _FakeGitea(_package_files())
    repo = _gitea(fake)

    assert repo.name == "claims"
    assert repo.default_branch == "main"
    assert repo.resolve_ref("") == _HEAD
    assert repo.branch_head("main") == _HEAD
    assert repo.branch_head("feature") is None
    with pytest.raises(RefNotFoundError):
        repo.resolve_ref("v9")


def test_entries_are_paginated_and_typed() -> None:
    fake = _FakeGitea(_package_files(), executable=("scripts/run.sh",))
    repo = _gitea(fake)

    entries = {e.path: e for e in repo.list_entries(_HEAD)}
    assert set(entries) == {"manifest.json", "scripts", "scripts/run.sh", "workflows", "workflows/a.bpmn"}
    assert entries["scripts"].kind == EntryKind.TREE
    assert entries["scripts/run.sh"].executable is True
    assert entries["workflows/a.bpmn"].size == len(b"<definitions id='a'/>")
    tree_calls = [r for r in fake.requests if "/git/trees/" in r.url.path]
    assert len(tree_calls) == 3

    assert repo.get_entry(_HEAD, "workflows").is_dir
    assert repo.get_entry(_HEAD, "workflows/a.bpmn").is_regular_file
    assert repo.get_entry(_HEAD, "nope.txt") is None


def test_export_through_gitea() -> None:
    fake = _FakeGitea(_package_files(), executable=("scripts/run.sh",))
    exported = export_package(_gitea(fake))

    assert exported.filename == "claims_1.0.0.uapf"
    zf = zipfile.ZipFile(io.BytesIO(exported.stream.read()))
    assert zf.namelist()[0] == "manifest.json"
    assert zf.read("workflows/a.bpmn") == b"<definitions id='a'/>"
    assert (zf.getinfo("scripts/run.sh").external_attr >> 16) & 0o777 == 0o755


def _zip(files: Dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return buf.getvalue()


def test_import_posts_single_multi_file_commit() -> None:
    fake = _FakeGitea({"README.md": b"hello"})
    repo = _gitea(fake)

    result = import_package(repo, Actor("Bot", "bot@example.com"), _zip(_package_files()), target_path="processes")

    assert result.commit_id == "d" * 40
    posted = fake.posted
    assert posted is not None
    assert posted["branch"] == "main"
    assert posted["message"] == "Import UAPF package claims@1.0.0"
    assert posted["author"] == {"name": "Bot", "email": "bot@example.com"}
    uploaded = {f["path"]: base64.b64decode(f["content"]) for f in posted["files"]}
    assert uploaded == {f"processes/{p}": data for p, data in _package_files().items()}
    assert {f["operation"] for f in posted["files"]} == {"create"}


def test_import_conflict_never_posts() -> None:
    fake = _FakeGitea({"workflows/a.bpmn": b"existing"})
    with pytest.raises(ConflictError) as excinfo:
        import_package(_gitea(fake), Actor("Bot", "bot@example.com"), _zip(_package_files()))
    assert excinfo.value.paths == ("workflows/a.bpmn",)
    assert fake.posted is None


def test_commit_files_checks_head_and_maps_rejections(tmp_path) -> None:
    fake = _FakeGitea({"README.md": b"hello"})
    repo = _gitea(fake)
    src = tmp_path / "x.txt"
    src.write_bytes(b"x")
    ops = [FileOperation(target_path="x.txt", content_source=src)]
    actor = Actor("Bot", "bot@example.com")

    with pytest.raises(CommitError, match="moved"):
        repo.commit_files(branch="main", parent_commit_id="0" * 40, actor=actor, message="m", operations=ops)
    assert fake.posted is None

    fake.post_status = 422
    with pytest.raises(CommitError, match="file already exists"):
        repo.commit_files(branch="main", parent_commit_id=_HEAD, actor=actor, message="m", operations=ops)


def test_write_racing_the_head_check_is_refused_by_the_server(tmp_path) -> None:
    fake = _FakeGitea({"README.md": b"hello"})
    repo = _gitea(fake)
    src = tmp_path / "x.txt"
    src.write_bytes(b"ours")
    ops = [FileOperation(target_path="x.txt", content_source=src)]

    def concurrent_push() -> None:
        fake.files["x.txt"] = b"theirs"

    fake.after_branch_read = concurrent_push
    with pytest.raises(CommitError, match="file already exists"):
        repo.commit_files(
            branch="main", parent_commit_id=_HEAD, actor=Actor("Bot", "bot@example.com"), message="m", operations=ops
        )
    assert fake.posted is not None
    assert fake.files["x.txt"] == b"theirs"


def test_transport_errors_become_api_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.Client(base_url="https://gitea.example/api/v1", transport=httpx.MockTransport(handler))
    repo = GiteaRepository(base_url="https://gitea.example", owner="acme", repo="claims", client=client)
    with pytest.raises(GiteaApiError, match="connection refused"):
        repo.resolve_ref("main")


def test_server_errors_carry_status_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"message": "internal error"})

    client = httpx.Client(base_url="https://gitea.example/api/v1", transport=httpx.MockTransport(handler))
    repo = GiteaRepository(base_url="https://gitea.example", owner="acme", repo="claims", client=client)
    with pytest.raises(GiteaApiError) as excinfo:
        repo.branch_head("main")
    assert excinfo.value.status_code == 500
    assert "internal error" in str(excinfo.value)
