"""キャッシュ無効化パスの計算（Cache Invalidator）.

変更セットとライブラリ一覧から、パージが必要な公開パスの最小集合を求める純関数。
実際のパージ要求は CacheInvalidationBackend が行う。
"""

from __future__ import annotations

from collections.abc import Iterable

from .core.models import MANIFEST_FILE, ChangeSet, Library
from .core.versions import aliases_for_version


def public_pattern(library_id: str, name: str) -> str:
    return f"/{library_id}/{name}/*"


def invalidation_paths(
    libraries: Iterable[Library],
    changes: ChangeSet,
    manifest_path: str = MANIFEST_FILE,
) -> list[str]:
    """パージ対象の公開パスパターン一覧を返す.

    更新が必要なバージョン毎に、バージョン名とそれを指す全エイリアスを
    "/<lib>/<name>/*" として含める。変更されたパスのうちライブラリ配下のもの
    （付け替えられたエイリアスのリンクなど）も同じ形で含める。
    最後にマニフェスト自身のパスを加える。
    onlyManifestChanged の場合は空リスト。

    Args:
        libraries: 解決済みライブラリ
        changes: 変更セット
        manifest_path: マニフェストの相対パス

    Returns:
        ソート済みのパス一覧
    """
    if changes.only_manifest_changed:
        return []

    libraries = list(libraries)
    known = {library.id for library in libraries}
    paths: set[str] = set()

    for library in libraries:
        for version in library.versions:
            if not version.needs_update:
                continue
            paths.add(public_pattern(library.id, version.name))
            for alias in aliases_for_version(library.aliases, version.name):
                paths.add(public_pattern(library.id, alias))

    for changed in changes.changed:
        parts = changed.split("/")
        if len(parts) >= 2 and parts[0] in known:
            paths.add(public_pattern(parts[0], parts[1]))

    paths.add(f"/{manifest_path}")
    return sorted(paths)
