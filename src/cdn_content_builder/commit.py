"""増分コミット（Incremental Commit Builder）.

変更セットから最小の公開トランザクションを組み立てる。
unchanged のパスは前回公開したツリーの blob をそのまま再利用し、
added / modified のパスだけ新しい blob をアップロードする。

二相トランザクション:
    >>> tx = PublishTransaction(backend, "gh-pages")
    >>> pending = tx.prepare(changes, content_dir, extra_files={"manifest.json": data})
    >>> new_sha = tx.commit(pending)

prepare と commit の間に ref が動いた場合は TransactionConflictError になる。
"""

from __future__ import annotations

import os
import stat
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .adapters.base_adapter import (
    MODE_EXECUTABLE,
    MODE_FILE,
    MODE_SYMLINK,
    PublishBackend,
    TreeEntry,
)
from .core.changes import BOOKKEEPING_NAMES, TYPE_FILE, scan_tree
from .core.exceptions import TransactionConflictError
from .core.models import ChangeSet

DEFAULT_COMMIT_MESSAGE = "Update CDN Contents"


@dataclass(frozen=True)
class PendingCommit:
    """prepare 済みで ref 未更新のコミット."""

    branch: str
    base_commit_sha: str
    tree_sha: str
    commit_sha: str
    reused: tuple[str, ...] = ()
    uploaded: tuple[str, ...] = ()
    entries: tuple[TreeEntry, ...] = field(default=(), repr=False)


def index_tree(backend: PublishBackend, tree_sha: str) -> dict[str, TreeEntry]:
    """公開済みツリーを 1 回だけ走査し、パス -> blob エントリの索引を作る."""
    index: dict[str, TreeEntry] = {}
    stack: list[tuple[str, str]] = [(tree_sha, "")]
    while stack:
        sha, base = stack.pop()
        for entry in backend.get_tree(sha):
            path = f"{base}/{entry.path}" if base else entry.path
            if entry.type == "tree":
                stack.append((entry.sha, path))
            elif entry.type == "blob":
                index[path] = TreeEntry(path=path, mode=entry.mode, type="blob", sha=entry.sha)
    return index


def file_mode(path: Path) -> str:
    """ファイルの git モード（シンボリックリンク / 実行可能 / 通常）."""
    info = path.lstat()
    if stat.S_ISLNK(info.st_mode):
        return MODE_SYMLINK
    if info.st_mode & stat.S_IXUSR:
        return MODE_EXECUTABLE
    return MODE_FILE


def read_blob_content(path: Path) -> bytes:
    if path.is_symlink():
        return os.fsencode(os.readlink(path))
    return path.read_bytes()


def bookkeeping_files(content_dir: Path) -> list[str]:
    """正規ツリー内の来歴マーカーの相対パス（分類対象外だが公開ツリーに含める）."""
    return sorted(
        relative
        for relative, entry_type, _ in scan_tree(content_dir)
        if entry_type == TYPE_FILE and "/" in relative and relative.rsplit("/", 1)[-1] in BOOKKEEPING_NAMES
    )


class PublishTransaction:
    """公開ブランチを進める二相トランザクション."""

    def __init__(
        self,
        backend: PublishBackend,
        branch: str,
        message: str = DEFAULT_COMMIT_MESSAGE,
        max_workers: int = 4,
    ) -> None:
        self._backend = backend
        self._branch = branch
        self._message = message
        self._max_workers = max(1, max_workers)

    def _upload(self, content_dir: Path, path: str) -> TreeEntry:
        full = content_dir / path
        mode = file_mode(full)
        sha = self._backend.create_blob(read_blob_content(full), mode)
        logger.debug(f"Uploaded blob {sha[:8]} for {path} ({mode})")
        return TreeEntry(path=path, mode=mode, type="blob", sha=sha)

    def _upload_bytes(self, path: str, content: bytes) -> TreeEntry:
        sha = self._backend.create_blob(content, MODE_FILE)
        return TreeEntry(path=path, mode=MODE_FILE, type="blob", sha=sha)

    def prepare(
        self,
        changes: ChangeSet,
        content_dir: Path,
        extra_files: Mapping[str, bytes] | None = None,
        extra_paths: Iterable[str] = (),
        refreshed_paths: Iterable[str] = (),
        expected_base: str | None = None,
    ) -> PendingCommit:
        """新しいツリーとコミットを作成する（ref はまだ動かさない）.

        Args:
            changes: 変更セット
            content_dir: 正規コンテンツツリー
            extra_files: メモリ上の内容で追加するファイル（マニフェスト等）
            extra_paths: 分類対象外だが公開ツリーに含めるパス（来歴マーカー等）。
                前回ツリーにあれば blob を再利用する
            refreshed_paths: extra_paths のうち今回書き直したパス（常にアップロードする）
            expected_base: content_dir の同期元コミット（指定時、ブランチ先頭と一致しなければ失敗）

        Returns:
            PendingCommit

        Raises:
            TransactionConflictError: ブランチ先頭が expected_base と異なる場合
        """
        base_commit_sha = self._backend.get_ref(self._branch)
        if expected_base is not None and base_commit_sha != expected_base:
            raise TransactionConflictError(self._branch, expected_base, base_commit_sha)
        base = self._backend.get_commit(base_commit_sha)
        logger.info(f"Preparing commit on {self._branch} from {base_commit_sha[:8]}")

        previous = index_tree(self._backend, base.tree_sha)

        reused: list[TreeEntry] = []
        to_upload: list[str] = list(changes.uploads)
        for path in changes.unchanged:
            entry = previous.get(path)
            if entry is None:
                logger.warning(f"Unchanged path missing from published tree, uploading: {path}")
                to_upload.append(path)
            else:
                reused.append(entry)

        extra_files = dict(extra_files or {})
        refreshed = set(refreshed_paths)
        for path in extra_paths:
            if path in extra_files:
                continue
            entry = previous.get(path)
            if entry is None or path in refreshed:
                to_upload.append(path)
            else:
                reused.append(entry)
        to_upload = sorted(set(to_upload))

        with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
            uploaded = list(executor.map(lambda p: self._upload(content_dir, p), to_upload))
        uploaded.extend(self._upload_bytes(path, content) for path, content in sorted(extra_files.items()))

        entries = sorted((*reused, *uploaded), key=lambda e: e.path)
        tree_sha = self._backend.create_tree(entries)
        commit_sha = self._backend.create_commit(tree_sha, [base_commit_sha], self._message)
        logger.info(
            f"Prepared commit {commit_sha[:8]}: {len(reused)} blobs reused, {len(uploaded)} uploaded"
        )

        return PendingCommit(
            branch=self._branch,
            base_commit_sha=base_commit_sha,
            tree_sha=tree_sha,
            commit_sha=commit_sha,
            reused=tuple(e.path for e in reused),
            uploaded=tuple(e.path for e in uploaded),
            entries=tuple(entries),
        )

    def commit(self, pending: PendingCommit) -> str:
        """公開ブランチを pending のコミットへ進める.

        Raises:
            TransactionConflictError: prepare 後に ref が移動していた場合
        """
        current = self._backend.get_ref(pending.branch)
        if current != pending.base_commit_sha:
            raise TransactionConflictError(pending.branch, pending.base_commit_sha, current)
        self._backend.update_ref(pending.branch, pending.commit_sha)
        logger.info(f"Advanced {pending.branch} to {pending.commit_sha[:8]}")
        return pending.commit_sha
