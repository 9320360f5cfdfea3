"""GitHub git data API による公開トランザクションのバックエンド.

blob / tree / commit をそれぞれ作成し、最後に非強制の ref 更新で公開ブランチを進める。
"""

from __future__ import annotations

import base64
import tarfile
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from ..core.exceptions import PublishError, TransactionConflictError
from .base_adapter import CommitInfo, PublishBackend, TreeEntry
from .github_source import extract_tarball


class GithubPublishBackend(PublishBackend):
    """公開ブランチを持つ GitHub リポジトリ."""

    def __init__(
        self,
        owner: str,
        repo: str,
        client: httpx.Client,
        committer: dict[str, str] | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self._client = client
        self._committer = committer

    def _api(self, path: str) -> str:
        return f"/repos/{self.owner}/{self.repo}/{path}"

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        try:
            response = self._client.request(method, self._api(path), json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise PublishError(
                f"{method} {path} failed with HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise PublishError(f"{method} {path} failed: {exc}") from exc

    def get_ref(self, branch: str) -> str:
        return self._request("GET", f"git/ref/heads/{branch}")["object"]["sha"]

    def get_commit(self, sha: str) -> CommitInfo:
        data = self._request("GET", f"git/commits/{sha}")
        return CommitInfo(sha=data["sha"], tree_sha=data["tree"]["sha"])

    def get_tree(self, sha: str) -> list[TreeEntry]:
        data = self._request("GET", f"git/trees/{sha}")
        return [
            TreeEntry(path=item["path"], mode=item["mode"], type=item["type"], sha=item["sha"])
            for item in data.get("tree", [])
        ]

    def create_blob(self, content: bytes, mode: str) -> str:
        # モードは blob ではなくツリーエントリ側に記録される
        data = self._request(
            "POST",
            "git/blobs",
            {"content": base64.b64encode(content).decode("ascii"), "encoding": "base64"},
        )
        return data["sha"]

    def create_tree(self, entries: Sequence[TreeEntry]) -> str:
        payload = {"tree": [{"path": e.path, "mode": e.mode, "type": e.type, "sha": e.sha} for e in entries]}
        data = self._request("POST", "git/trees", payload)
        logger.debug(f"Created tree {data['sha'][:8]} with {len(entries)} entries")
        return data["sha"]

    def create_commit(self, tree_sha: str, parents: Sequence[str], message: str) -> str:
        payload: dict[str, Any] = {"message": message, "tree": tree_sha, "parents": list(parents)}
        if self._committer:
            payload["committer"] = dict(self._committer)
        return self._request("POST", "git/commits", payload)["sha"]

    def update_ref(self, branch: str, sha: str) -> None:
        """ブランチを sha へ進める.

        Raises:
            TransactionConflictError: fast-forward でない（422）場合
            PublishError: その他の失敗
        """
        try:
            self._request("PATCH", f"git/refs/heads/{branch}", {"sha": sha, "force": False})
        except PublishError as exc:
            cause = exc.__cause__
            if isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code == 422:
                parents = self._request("GET", f"git/commits/{sha}").get("parents") or [{}]
                expected = parents[0].get("sha", "")
                raise TransactionConflictError(branch, expected, self.get_ref(branch)) from exc
            raise

    def download_content(self, branch: str, dest_dir: Path) -> None:
        logger.info(f"Downloading published content of {self.owner}/{self.repo}@{branch}")
        dest_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="cdn-content-") as tmp:
            archive = Path(tmp) / "content.tar.gz"
            try:
                with self._client.stream("GET", self._api(f"tarball/{branch}")) as response:
                    response.raise_for_status()
                    with open(archive, "wb") as f:
                        for chunk in response.iter_bytes():
                            f.write(chunk)
                extract_tarball(archive, dest_dir)
            except (httpx.HTTPError, tarfile.TarError) as exc:
                raise PublishError(f"Failed to download {branch}: {exc}") from exc
