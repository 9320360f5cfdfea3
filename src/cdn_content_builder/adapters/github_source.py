"""GitHub ソースプロバイダ.

"github:owner/repo" 形式のソースについて、REST API で ref 一覧・リソース宣言・
tarball スナップショットを取得する。
"""

from __future__ import annotations

import base64
import os
import tarfile
import tempfile
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from ..core.declaration import DECLARATION_FILE, parse_declaration
from ..core.exceptions import ConfigError, SourceUnavailableError
from ..core.models import RefInfo, RefListing, ResourceDeclaration
from .base_adapter import SourceProvider

GITHUB_API = "https://api.github.com"
GITHUB_WEB = "https://github.com"
SOURCE_PREFIX = "github"
USER_AGENT = "cdn-content-builder"


def make_github_client(token: str | None = None, timeout: float = 30.0) -> httpx.Client:
    """GitHub API 用の httpx クライアントを作る（token があれば認証付き）."""
    headers = {
        "Accept": "application/vnd.github+json",
        "User-Agent": USER_AGENT,
        "X-GitHub-Api-Version": "2022-11-28",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.Client(base_url=GITHUB_API, headers=headers, timeout=timeout, follow_redirects=True)


def parse_source(source: str) -> tuple[str, str]:
    """"github:owner/repo" を (owner, repo) に分解する.

    Raises:
        ConfigError: 形式が不正、または未対応のソース種別の場合
    """
    kind, sep, location = source.partition(":")
    if not sep:
        raise ConfigError(f"Invalid source (expected '<type>:<location>'): {source}")
    if kind != SOURCE_PREFIX:
        raise ConfigError(f"Unknown source type: {kind}")
    owner, _, repo = location.strip("/").partition("/")
    if not owner or not repo or "/" in repo:
        raise ConfigError(f"Invalid GitHub source (expected 'github:owner/repo'): {source}")
    return owner, repo


def _paginate(client: httpx.Client, url: str) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    next_url: str | None = url
    params: dict[str, Any] | None = {"per_page": 100}
    while next_url:
        response = client.get(next_url, params=params)
        response.raise_for_status()
        items.extend(response.json())
        next_url = response.links.get("next", {}).get("url")
        params = None
    return items


def extract_tarball(archive: Path, dest: Path) -> None:
    """tarball を先頭ディレクトリ（owner-repo-sha/）を取り除いて展開する."""
    with tarfile.open(archive, "r:*") as tar:
        members = []
        for member in tar.getmembers():
            _, sep, rest = member.name.partition("/")
            if not sep or not rest:
                continue
            member.name = rest
            if member.islnk():
                member.linkname = member.linkname.partition("/")[2]
            members.append(member)
        tar.extractall(dest, members=members, filter="data")


class GithubSourceProvider(SourceProvider):
    """GitHub リポジトリをソースとするプロバイダ."""

    def __init__(
        self,
        owner: str,
        repo: str,
        client: httpx.Client | None = None,
        declaration_path: str = DECLARATION_FILE,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self._client = client or make_github_client(os.environ.get("GITHUB_TOKEN"))
        self._declaration_path = declaration_path

    @classmethod
    def from_source(cls, source: str, client: httpx.Client | None = None) -> GithubSourceProvider:
        owner, repo = parse_source(source)
        return cls(owner, repo, client=client)

    @property
    def source(self) -> str:
        return f"{SOURCE_PREFIX}:{self.owner}/{self.repo}"

    def _api(self, path: str) -> str:
        return f"/repos/{self.owner}/{self.repo}/{path}"

    def _ref_info(self, item: dict[str, Any]) -> RefInfo:
        name = item["name"]
        return RefInfo(
            name=name,
            ref=name,
            tarball_url=item.get("tarball_url") or f"{GITHUB_API}{self._api(f'tarball/{name}')}",
            commit_sha=item["commit"]["sha"],
        )

    def list_refs(self) -> RefListing:
        """タグとブランチの一覧を返す.

        Raises:
            SourceUnavailableError: API 呼び出しに失敗した場合
        """
        try:
            tags = _paginate(self._client, self._api("tags"))
            branches = _paginate(self._client, self._api("branches"))
            return RefListing(
                tags=tuple(self._ref_info(t) for t in tags),
                branches=tuple(self._ref_info(b) for b in branches),
            )
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            raise SourceUnavailableError(self.source, "*", f"failed to list refs: {exc}") from exc

    def fetch_declaration(self, ref: str) -> ResourceDeclaration:
        logger.debug(f"Fetching {self._declaration_path} from {self.source}@{ref}")
        try:
            response = self._client.get(self._api(f"contents/{self._declaration_path}"), params={"ref": ref})
            response.raise_for_status()
            payload = response.json()
            text = base64.b64decode(payload["content"]).decode("utf-8")
            return parse_declaration(text)
        except httpx.HTTPStatusError as exc:
            reason = f"HTTP {exc.response.status_code} fetching {self._declaration_path}"
            raise SourceUnavailableError(self.source, ref, reason) from exc
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            raise SourceUnavailableError(self.source, ref, str(exc)) from exc

    def download_snapshot(self, ref: str, dest_dir: Path) -> None:
        logger.debug(f"Downloading tarball {self.source}@{ref} to {dest_dir}")
        dest_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="cdn-tarball-") as tmp:
            archive = Path(tmp) / "snapshot.tar.gz"
            try:
                with self._client.stream("GET", self._api(f"tarball/{ref}")) as response:
                    response.raise_for_status()
                    with open(archive, "wb") as f:
                        for chunk in response.iter_bytes():
                            f.write(chunk)
                extract_tarball(archive, dest_dir)
            except (httpx.HTTPError, tarfile.TarError) as exc:
                raise SourceUnavailableError(self.source, ref, f"snapshot download failed: {exc}") from exc

    def view_url(self, ref: str) -> str:
        return f"{GITHUB_WEB}/{self.owner}/{self.repo}/tree/{ref}"
