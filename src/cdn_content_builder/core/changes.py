"""正規コンテンツツリーの変更検出（Change Detector）.

ステージング前後でツリー全体をハッシュし、各パスを added / modified / deleted / unchanged に分類する。
ダイジェストはファイル種別（通常ファイル/シンボリックリンク）と内容の両方を含むため、
同じバイト列のファイルがリンクに置き換わった場合も modified として検出される。
"""

from __future__ import annotations

import hashlib
import os
from collections.abc import Collection, Iterator, Mapping
from pathlib import Path

from .models import MANIFEST_FILE, PENDING_MARKER, PROVENANCE_FILE, PUBLISHED_HEAD_MARKER, ChangeSet

TYPE_FILE = "FILE"
TYPE_SYMLINK = "SYMLINK"

# 分類の入力から除外する管理用ファイル（常に書き直される）
BOOKKEEPING_NAMES = frozenset({PROVENANCE_FILE, PENDING_MARKER, PUBLISHED_HEAD_MARKER})


def is_bookkeeping_path(path: str, manifest_path: str = MANIFEST_FILE) -> bool:
    return path == manifest_path or path.rsplit("/", 1)[-1] in BOOKKEEPING_NAMES


def scan_tree(root: Path) -> Iterator[tuple[str, str, Path]]:
    """root 以下のファイルとシンボリックリンクを列挙する.

    ディレクトリを指すリンクも辿らずに 1 エントリとして扱う。

    Yields:
        (相対パス, 種別, 絶対パス)
    """
    if not root.is_dir():
        return
    stack = [root]
    while stack:
        current = stack.pop()
        with os.scandir(current) as entries:
            for entry in entries:
                full = Path(entry.path)
                if entry.is_symlink():
                    yield full.relative_to(root).as_posix(), TYPE_SYMLINK, full
                elif entry.is_dir(follow_symlinks=False):
                    stack.append(full)
                elif entry.is_file(follow_symlinks=False):
                    yield full.relative_to(root).as_posix(), TYPE_FILE, full


def digest_entry(path: Path, entry_type: str) -> str:
    hasher = hashlib.sha256()
    hasher.update(entry_type.encode("ascii"))
    hasher.update(b"\0")
    if entry_type == TYPE_SYMLINK:
        hasher.update(os.fsencode(os.readlink(path)))
    else:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(1024 * 1024), b""):
                hasher.update(chunk)
    return hasher.hexdigest()


def hash_tree(root: Path, manifest_path: str = MANIFEST_FILE) -> dict[str, str]:
    """ツリー全体の {相対パス: ダイジェスト} を返す.

    マニフェストと管理用ファイル（来歴マーカー等）は分類対象外なので含めない。
    """
    hashes: dict[str, str] = {}
    for relative, entry_type, full in scan_tree(root):
        if is_bookkeeping_path(relative, manifest_path):
            continue
        hashes[relative] = digest_entry(full, entry_type)
    return hashes


def classify_changes(
    old_hashes: Mapping[str, str],
    new_hashes: Mapping[str, str],
    manifest_path: str = MANIFEST_FILE,
) -> ChangeSet:
    """2 つのハッシュスナップショットから変更を分類する.

    added = new - old, deleted = old - new,
    modified/unchanged = 両方に存在しダイジェストが異なる/等しい。
    出力はソート済みで、走査順・ハッシュ計算順に依存しない。

    Args:
        old_hashes: ステージング前のスナップショット
        new_hashes: ステージング後のスナップショット
        manifest_path: マニフェストの相対パス

    Returns:
        ChangeSet
    """
    old_paths = set(old_hashes)
    new_paths = set(new_hashes)
    common = old_paths & new_paths

    added = sorted(new_paths - old_paths)
    deleted = sorted(old_paths - new_paths)
    modified = sorted(p for p in common if old_hashes[p] != new_hashes[p])
    unchanged = sorted(p for p in common if old_hashes[p] == new_hashes[p])

    return ChangeSet(
        added=tuple(added),
        modified=tuple(modified),
        deleted=tuple(deleted),
        unchanged=tuple(unchanged),
        only_manifest_changed=only_manifest_changed((*added, *modified, *deleted), manifest_path),
    )


def only_manifest_changed(changed: Collection[str], manifest_path: str = MANIFEST_FILE) -> bool:
    return all(path == manifest_path for path in changed)
