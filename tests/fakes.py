"""テスト用のインメモリ実装（ソースプロバイダ / 公開バックエンド / ストレージ / パージ）."""

from __future__ import annotations

import hashlib
import itertools
import os
import threading
from collections.abc import Mapping, Sequence
from pathlib import Path

from cdn_content_builder.adapters.base_adapter import (
    MODE_EXECUTABLE,
    MODE_SYMLINK,
    MODE_TREE,
    CacheInvalidationBackend,
    CommitInfo,
    PublishBackend,
    SourceProvider,
    StorageSync,
    TreeEntry,
)
from cdn_content_builder.core.declaration import parse_declaration
from cdn_content_builder.core.exceptions import InvalidationError, SourceUnavailableError, TransactionConflictError
from cdn_content_builder.core.models import RefInfo, RefListing, ResourceDeclaration

DEMO_DECLARATION = """\
name: Demo
description: Demo library
docs: https://demo.example.com
resources:
  - src: dist/**
entrypoints:
  demo.js: Main bundle
"""


def sha_for(label: str) -> str:
    return hashlib.sha1(label.encode("utf-8")).hexdigest()


class FakeSourceProvider(SourceProvider):
    """ref 毎の宣言とスナップショットを辞書で持つプロバイダ.

    Args:
        name: "fake:<name>" のソース名
        tags: タグ名 -> commit SHA
        branches: ブランチ名 -> commit SHA
        declarations: ref -> 宣言 YAML テキスト（無い ref は取得失敗）
        snapshots: ref -> {相対パス: 内容}
    """

    def __init__(
        self,
        name: str,
        tags: Mapping[str, str] | None = None,
        branches: Mapping[str, str] | None = None,
        declarations: Mapping[str, str] | None = None,
        snapshots: Mapping[str, Mapping[str, bytes]] | None = None,
    ) -> None:
        self.name = name
        self.tags = dict(tags or {})
        self.branches = dict(branches or {})
        self.declarations = dict(declarations or {})
        self.snapshots = {ref: dict(files) for ref, files in (snapshots or {}).items()}
        self.downloads: list[str] = []
        self.failing_downloads: set[str] = set()
        self._lock = threading.Lock()

    @property
    def source(self) -> str:
        return f"fake:{self.name}"

    def _ref(self, name: str, sha: str) -> RefInfo:
        return RefInfo(name=name, ref=name, tarball_url=f"https://fake/{self.name}/{name}.tar.gz", commit_sha=sha)

    def list_refs(self) -> RefListing:
        return RefListing(
            tags=tuple(self._ref(n, s) for n, s in self.tags.items()),
            branches=tuple(self._ref(n, s) for n, s in self.branches.items()),
        )

    def fetch_declaration(self, ref: str) -> ResourceDeclaration:
        text = self.declarations.get(ref)
        if text is None:
            raise SourceUnavailableError(self.source, ref, "no declaration")
        try:
            return parse_declaration(text)
        except ValueError as exc:
            raise SourceUnavailableError(self.source, ref, str(exc)) from exc

    def download_snapshot(self, ref: str, dest_dir: Path) -> None:
        with self._lock:
            self.downloads.append(ref)
        if ref in self.failing_downloads or ref not in self.snapshots:
            raise SourceUnavailableError(self.source, ref, "snapshot unavailable")
        for relative, content in self.snapshots[ref].items():
            target = dest_dir / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)

    def view_url(self, ref: str) -> str:
        return f"https://fake/{self.name}/tree/{ref}"

    def publish(
        self, ref: str, files: Mapping[str, bytes], declaration: str = DEMO_DECLARATION, tag: bool = True
    ) -> None:
        """ref を新しい内容で（再）公開する."""
        sha = sha_for(f"{self.name}:{ref}:{sorted(files.items())}:{declaration}")
        (self.tags if tag else self.branches)[ref] = sha
        self.snapshots[ref] = dict(files)
        self.declarations[ref] = declaration


class InMemoryBackend(PublishBackend):
    """git オブジェクトを辞書で保持する公開バックエンド."""

    def __init__(self, branch: str = "gh-pages") -> None:
        self.blobs: dict[str, bytes] = {}
        self.trees: dict[str, list[TreeEntry]] = {}
        self.commits: dict[str, tuple[CommitInfo, tuple[str, ...]]] = {}
        self.refs: dict[str, str] = {}
        self.uploaded: list[bytes] = []
        self._counter = itertools.count()
        self._lock = threading.Lock()
        empty_tree = self.create_tree([])
        self.refs[branch] = self.create_commit(empty_tree, [], "init")

    def get_ref(self, branch: str) -> str:
        return self.refs[branch]

    def get_commit(self, sha: str) -> CommitInfo:
        return self.commits[sha][0]

    def get_tree(self, sha: str) -> list[TreeEntry]:
        return list(self.trees[sha])

    def create_blob(self, content: bytes, mode: str) -> str:
        sha = hashlib.sha1(b"blob\0" + content).hexdigest()
        with self._lock:
            self.blobs[sha] = content
            self.uploaded.append(content)
        return sha

    def _store_tree(self, entries: Mapping[str, TreeEntry]) -> str:
        children: dict[str, dict[str, TreeEntry]] = {}
        direct: list[TreeEntry] = []
        for path, entry in entries.items():
            head, sep, rest = path.partition("/")
            if sep:
                children.setdefault(head, {})[rest] = entry
            else:
                direct.append(TreeEntry(path=head, mode=entry.mode, type=entry.type, sha=entry.sha))
        for name, sub in children.items():
            direct.append(TreeEntry(path=name, mode=MODE_TREE, type="tree", sha=self._store_tree(sub)))
        direct.sort(key=lambda e: e.path)
        sha = hashlib.sha1(repr([(e.path, e.mode, e.type, e.sha) for e in direct]).encode("utf-8")).hexdigest()
        self.trees[sha] = direct
        return sha

    def create_tree(self, entries: Sequence[TreeEntry]) -> str:
        return self._store_tree({entry.path: entry for entry in entries})

    def create_commit(self, tree_sha: str, parents: Sequence[str], message: str) -> str:
        sha = sha_for(f"commit:{tree_sha}:{list(parents)}:{message}:{next(self._counter)}")
        self.commits[sha] = (CommitInfo(sha=sha, tree_sha=tree_sha), tuple(parents))
        return sha

    def update_ref(self, branch: str, sha: str) -> None:
        parents = self.commits[sha][1]
        current = self.refs[branch]
        if current not in parents:
            raise TransactionConflictError(branch, parents[0] if parents else "", current)
        self.refs[branch] = sha

    def files(self, branch: str = "gh-pages") -> dict[str, TreeEntry]:
        """ブランチ先頭のツリーを {パス: blob エントリ} に展開する."""
        result: dict[str, TreeEntry] = {}
        stack = [(self.get_commit(self.refs[branch]).tree_sha, "")]
        while stack:
            tree_sha, base = stack.pop()
            for entry in self.trees[tree_sha]:
                path = f"{base}/{entry.path}" if base else entry.path
                if entry.type == "tree":
                    stack.append((entry.sha, path))
                else:
                    result[path] = entry
        return result

    def download_content(self, branch: str, dest_dir: Path) -> None:
        for path, entry in self.files(branch).items():
            target = dest_dir / path
            target.parent.mkdir(parents=True, exist_ok=True)
            content = self.blobs[entry.sha]
            if entry.mode == MODE_SYMLINK:
                os.symlink(os.fsdecode(content), target)
            else:
                target.write_bytes(content)
                if entry.mode == MODE_EXECUTABLE:
                    target.chmod(0o755)


class RecordingStorage(StorageSync):
    def __init__(self) -> None:
        self.synced: list[Path] = []

    def sync_directory(self, local_dir: Path) -> bool:
        self.synced.append(local_dir)
        return False


class RecordingInvalidator(CacheInvalidationBackend):
    def __init__(self, fail: bool = False) -> None:
        self.requests: list[list[str]] = []
        self.fail = fail

    def invalidate(self, paths: Sequence[str]) -> str:
        self.requests.append(list(paths))
        if self.fail:
            raise InvalidationError("purge endpoint unavailable")
        return f"inv-{len(self.requests)}"
