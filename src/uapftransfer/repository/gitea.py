"""uapftransfer.repository.gitea

Remote repository adapter for the Gitea REST API (TreeReader + CommitWriter).

Endpoints used (all under `/api/v1`):
- `GET  /repos/{owner}/{repo}`                      repository info (name, default branch)
- `GET  /repos/{owner}/{repo}/git/commits/{ref}`    ref -> commit sha
- `GET  /repos/{owner}/{repo}/branches/{branch}`    branch head
- `GET  /repos/{owner}/{repo}/git/trees/{sha}`      recursive, paginated tree listing
- `GET  /repos/{owner}/{repo}/contents/{path}`      single entry lookup
- `GET  /repos/{owner}/{repo}/raw/{path}`           blob content
- `POST /repos/{owner}/{repo}/contents`             multi-file commit

Limitations of the remote API: file content is uploaded base64-encoded in one
request body, and the executable bit cannot be set through it.
"""

from __future__ import annotations

import base64
import io
from typing import Any, BinaryIO, Dict, Iterator, List, Optional
from urllib.parse import quote

import httpx

from ..core.errors import CommitError, RefNotFoundError, UapfError
from ..core.logging import get_logger
from ..package.paths import canonicalize_path
from .base import Actor, EntryKind, FileOperation, TreeEntry

logger = get_logger(__name__)

_TREE_PAGE_SIZE = 1000
_KIND_BY_TREE_TYPE = {"blob": EntryKind.BLOB, "tree": EntryKind.TREE, "commit": EntryKind.SUBMODULE}
_KIND_BY_CONTENT_TYPE = {
    "file": EntryKind.BLOB,
    "symlink": EntryKind.BLOB,
    "dir": EntryKind.TREE,
    "submodule": EntryKind.SUBMODULE,
}


class GiteaApiError(UapfError):
    """Unexpected response from the Gitea API."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("message"), str) and body["message"].strip():
        return body["message"].strip()
    return resp.text.strip() or resp.reason_phrase


class GiteaRepository:
    """A repository hosted on a Gitea server.

    The contents API takes no expected parent commit. `commit_files` reads the
    branch head first and refuses a moved branch, but a push that lands between
    that read and the POST is not detected. The server still rejects a "create"
    for a path that already exists, so such a race cannot overwrite files.
    """

    def __init__(
        self,
        *,
        base_url: str,
        owner: str,
        repo: str,
        token: Optional[str] = None,
        timeout_s: float = 30.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._owner = str(owner)
        self._repo = str(repo)
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"token {token}"
        self._client = client or httpx.Client(base_url=base_url.rstrip("/") + "/api/v1", timeout=timeout_s)
        self._headers = headers
        self._info: Optional[Dict[str, Any]] = None

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GiteaRepository":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _url(self, suffix: str) -> str:
        return f"/repos/{quote(self._owner, safe='')}/{quote(self._repo, safe='')}{suffix}"

    def _request(self, method: str, suffix: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, self._url(suffix), headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            raise GiteaApiError(f"{method} {suffix} failed: {e}") from e

    def _json(self, resp: httpx.Response) -> Any:
        if resp.status_code >= 400:
            raise GiteaApiError(
                f"{resp.request.method} {resp.request.url.path} returned {resp.status_code}: {_error_message(resp)}",
                status_code=resp.status_code,
            )
        return resp.json()

    def _repo_info(self) -> Dict[str, Any]:
        if self._info is None:
            info = self._json(self._request("GET", ""))
            if not isinstance(info, dict):
                raise GiteaApiError("repository info must be a JSON object")
            self._info = info
        return self._info

    @property
    def name(self) -> str:
        return str(self._repo_info().get("name") or self._repo)

    @property
    def default_branch(self) -> str:
        return str(self._repo_info().get("default_branch") or "main")

    # ------------------------------------------------------------------
    # TreeReader
    # ------------------------------------------------------------------

    def resolve_ref(self, ref: str) -> str:
        r = str(ref or "").strip() or self.default_branch
        resp = self._request("GET", f"/git/commits/{quote(r, safe='')}", params={"stat": "false", "files": "false"})
        if resp.status_code in (404, 422):
            raise RefNotFoundError(r)
        body = self._json(resp)
        sha = body.get("sha") if isinstance(body, dict) else None
        if not isinstance(sha, str) or not sha:
            raise GiteaApiError(f"commit response for '{r}' has no sha")
        return sha

    def branch_head(self, branch: str) -> Optional[str]:
        br = str(branch or self.default_branch)
        resp = self._request("GET", f"/branches/{quote(br, safe='')}")
        if resp.status_code == 404:
            return None
        body = self._json(resp)
        commit = body.get("commit") if isinstance(body, dict) else None
        sha = commit.get("id") if isinstance(commit, dict) else None
        return str(sha) if isinstance(sha, str) and sha else None

    def get_entry(self, commit_id: str, path: str) -> Optional[TreeEntry]:
        p = str(path)
        resp = self._request("GET", f"/contents/{quote(p, safe='/')}", params={"ref": commit_id})
        if resp.status_code == 404:
            return None
        body = self._json(resp)
        if isinstance(body, list):
            return TreeEntry(path=p, kind=EntryKind.TREE)
        if not isinstance(body, dict):
            raise GiteaApiError(f"unexpected contents response for '{p}'")
        kind = _KIND_BY_CONTENT_TYPE.get(str(body.get("type") or ""))
        if kind is None:
            raise GiteaApiError(f"unknown entry type '{body.get('type')}' for '{p}'")
        size = body.get("size")
        return TreeEntry(path=p, kind=kind, size=int(size) if isinstance(size, int) and kind == EntryKind.BLOB else None)

    def list_entries(self, commit_id: str) -> Iterator[TreeEntry]:
        page = 1
        seen = 0
        while True:
            body = self._json(
                self._request(
                    "GET",
                    f"/git/trees/{quote(commit_id, safe='')}",
                    params={"recursive": "true", "page": page, "per_page": _TREE_PAGE_SIZE},
                )
            )
            items = body.get("tree") if isinstance(body, dict) else None
            if not isinstance(items, list) or not items:
                return
            for item in items:
                yield self._tree_item(item)
            seen += len(items)
            total = body.get("total_count")
            if not body.get("truncated") or (isinstance(total, int) and seen >= total):
                return
            page += 1

    @staticmethod
    def _tree_item(item: Any) -> TreeEntry:
        if not isinstance(item, dict):
            raise GiteaApiError("tree entry must be a JSON object")
        kind = _KIND_BY_TREE_TYPE.get(str(item.get("type") or ""))
        if kind is None:
            raise GiteaApiError(f"unknown tree entry type '{item.get('type')}'")
        mode = str(item.get("mode") or "")
        size = item.get("size")
        return TreeEntry(
            path=str(item.get("path") or ""),
            kind=kind,
            executable=mode == "100755",
            size=int(size) if isinstance(size, int) and kind == EntryKind.BLOB else None,
        )

    def open_blob(self, commit_id: str, path: str) -> BinaryIO:
        p = str(path)
        resp = self._request("GET", f"/raw/{quote(p, safe='/')}", params={"ref": commit_id})
        if resp.status_code == 404:
            raise FileNotFoundError(p)
        if resp.status_code >= 400:
            raise GiteaApiError(f"GET raw {p} returned {resp.status_code}: {_error_message(resp)}", status_code=resp.status_code)
        return io.BytesIO(resp.content)

    # ------------------------------------------------------------------
    # CommitWriter
    # ------------------------------------------------------------------

    def commit_files(
        self,
        *,
        branch: str,
        parent_commit_id: Optional[str],
        actor: Actor,
        message: str,
        operations: List[FileOperation],
    ) -> str:
        br = str(branch or self.default_branch)
        head = self.branch_head(br)
        if head != parent_commit_id:
            raise CommitError(f"branch '{br}' moved: expected {parent_commit_id or '<empty>'}, found {head or '<empty>'}")

        files: list[Dict[str, str]] = []
        for op in operations:
            if op.operation != "create":
                raise CommitError(f"unsupported file operation '{op.operation}' for {op.target_path}")
            with op.open() as f:
                content = base64.b64encode(f.read()).decode("ascii")
            files.append({"operation": "create", "path": canonicalize_path(op.target_path), "content": content})

        identity = {"name": actor.name, "email": actor.email}
        payload = {"branch": br, "message": message, "author": identity, "committer": identity, "files": files}
        try:
            resp = self._request("POST", "/contents", json=payload)
        except GiteaApiError as e:
            raise CommitError(str(e)) from e
        if resp.status_code >= 400:
            raise CommitError(f"commit to '{br}' rejected ({resp.status_code}): {_error_message(resp)}")

        body = resp.json()
        commit = body.get("commit") if isinstance(body, dict) else None
        sha = commit.get("sha") if isinstance(commit, dict) else None
        if not isinstance(sha, str) or not sha:
            raise CommitError("commit response has no sha")
        logger.info("Committed files", repository=self._repo, branch=br, commit_id=sha, files=len(files))
        return sha
