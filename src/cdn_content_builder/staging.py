"""ステージング（Staging Engine）.

更新が必要なバージョンだけを正規コンテンツツリーに展開する:

1. ソーススナップショットを作業ディレクトリへダウンロード/展開
2. バージョンの公開ディレクトリを空にする
3. リソースマッピングに従ってファイルをコピー
4. 来歴マーカー（.git-sha）に commit SHA を書く

全バージョンの処理後、ライブラリ毎にエイリアスのシンボリックリンクを書き直す。
"""

from __future__ import annotations

import shutil
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path, PurePosixPath

from loguru import logger

from .adapters.base_adapter import SourceProvider
from .core.exceptions import SourceUnavailableError, StagingError
from .core.models import PENDING_MARKER, PROVENANCE_FILE, PUBLISHED_HEAD_MARKER, Library, ResourceMapping, Version

_GLOB_CHARS = frozenset("*?[")


def content_dir_for(content_dir: Path, library_id: str, version_name: str) -> Path:
    return content_dir / library_id / version_name


def work_dir_for(work_dir: Path, library_id: str, version_name: str) -> Path:
    return work_dir / library_id / version_name


def _safe_join(root: Path, relative: str) -> Path:
    candidate = (root / relative).resolve()
    if not candidate.is_relative_to(root.resolve()):
        raise ValueError(f"Path escapes its root: {relative}")
    return candidate


def _clean_relative(value: str) -> str:
    cleaned = value.strip()
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned.lstrip("/")


def _copy_file(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, target)


def copy_mapping(snapshot_dir: Path, mapping: ResourceMapping, dest_dir: Path) -> int:
    """1 つのリソースマッピングをコピーする.

    src はファイル（dest へそのままコピー）、ディレクトリ（中身を dest へ）、
    glob（マッチしたファイルを glob の固定部分からの相対パスで dest へ）のいずれか。
    src / dest の先頭の "/" は無視し、それぞれのルートからの相対パスとして扱う。

    Args:
        snapshot_dir: 展開済みソーススナップショット
        mapping: リソースマッピング
        dest_dir: バージョンの公開ディレクトリ

    Returns:
        コピーしたファイル数

    Raises:
        ValueError: src / dest がそれぞれのルート外を指す場合
    """
    dest_relative = _clean_relative(mapping.dest or "")
    dest = _safe_join(dest_dir, dest_relative) if dest_relative else dest_dir.resolve()
    src = _clean_relative(mapping.src)
    parts = PurePosixPath(src).parts

    glob_index = next((i for i, part in enumerate(parts) if _GLOB_CHARS & set(part)), None)
    if glob_index is not None:
        base = _safe_join(snapshot_dir, "/".join(parts[:glob_index]) or ".")
        pattern = "/".join(parts[glob_index:])
        if pattern.endswith("**"):
            pattern += "/*"
        copied = 0
        for match in sorted(base.glob(pattern)):
            if not match.is_file():
                continue
            _safe_join(snapshot_dir, match.relative_to(snapshot_dir.resolve()).as_posix())
            _copy_file(match, dest / match.relative_to(base))
            copied += 1
        if not copied:
            logger.warning(f"Resource pattern matched no files: {mapping.src}")
        return copied

    source = _safe_join(snapshot_dir, src or ".")
    if source.is_dir():
        shutil.copytree(source, dest, dirs_exist_ok=True)
        return sum(1 for p in source.rglob("*") if p.is_file())
    if source.is_file():
        _copy_file(source, dest / source.name)
        return 1
    logger.warning(f"Resource not found in snapshot: {mapping.src}")
    return 0


def clear_destination(dest: Path) -> None:
    if dest.is_symlink() or dest.is_file():
        dest.unlink()
    elif dest.exists():
        shutil.rmtree(dest)
    dest.mkdir(parents=True, exist_ok=True)


def write_provenance(dest: Path, commit_sha: str) -> None:
    (dest / PROVENANCE_FILE).write_text(commit_sha, encoding="utf-8")


def stage_version(
    provider: SourceProvider,
    library_id: str,
    version: Version,
    content_dir: Path,
    work_dir: Path,
) -> None:
    """単一バージョンをステージングする.

    Raises:
        StagingError: ダウンロード/展開/コピーのいずれかに失敗した場合
    """
    scratch = work_dir_for(work_dir, library_id, version.name)
    dest = content_dir_for(content_dir, library_id, version.name)
    logger.info(f"Staging {library_id}@{version.ref} ({version.commit_sha[:8]}) -> {library_id}/{version.name}")
    try:
        if scratch.exists():
            shutil.rmtree(scratch)
        scratch.mkdir(parents=True)
        provider.download_snapshot(version.ref, scratch)

        clear_destination(dest)
        for mapping in version.mappings:
            target = mapping.dest or "."
            logger.debug(f"Copying {mapping.src} to {library_id}/{version.name}/{target}")
            copy_mapping(scratch, mapping, dest)
        write_provenance(dest, version.commit_sha)
    except SourceUnavailableError as exc:
        raise StagingError(library_id, version.name, exc.reason) from exc
    except (OSError, ValueError) as exc:
        raise StagingError(library_id, version.name, str(exc)) from exc


def stage_versions(
    targets: Iterable[tuple[Library, Version]],
    providers: Mapping[str, SourceProvider],
    content_dir: Path,
    work_dir: Path,
    max_workers: int = 4,
) -> int:
    """更新が必要なバージョンをまとめてステージングする.

    各バージョンは自分の公開ディレクトリだけを書き換えるので並行に処理できる。
    1 つでも失敗すれば StagingError を送出する（部分的な変更は残す）。

    Returns:
        ステージングしたバージョン数
    """
    targets = list(targets)
    if not targets:
        logger.info("No versions need staging")
        return 0

    def _stage(target: tuple[Library, Version]) -> None:
        library, version = target
        stage_version(providers[library.id], library.id, version, content_dir, work_dir)

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        for _ in executor.map(_stage, targets):
            pass

    logger.info(f"Staged {len(targets)} versions")
    return len(targets)


def write_alias_links(content_dir: Path, library: Library) -> None:
    """ライブラリのエイリアスのシンボリックリンクを書き直す.

    エイリアス毎に <lib>/<alias> -> <version> を作る。
    既存リンクの削除は、リンクが存在しなくても失敗しない。
    計算されなくなったエイリアスのリンクは削除する。

    Raises:
        StagingError: エイリアス名の位置に実ディレクトリ/ファイルがある場合
    """
    lib_dir = content_dir / library.id
    lib_dir.mkdir(parents=True, exist_ok=True)

    for entry in lib_dir.iterdir():
        if entry.is_symlink() and entry.name not in library.aliases:
            logger.info(f"Removing stale alias {library.id}/{entry.name}")
            entry.unlink(missing_ok=True)

    for alias, target in library.aliases.items():
        link = lib_dir / alias
        if link.exists() and not link.is_symlink():
            raise StagingError(library.id, alias, "alias name collides with a version directory")
        link.unlink(missing_ok=True)
        link.symlink_to(target, target_is_directory=True)
        logger.debug(f"Alias {library.id}/{alias} -> {target}")


def write_all_alias_links(content_dir: Path, libraries: Iterable[Library]) -> None:
    for library in libraries:
        try:
            write_alias_links(content_dir, library)
        except OSError as exc:
            raise StagingError(library.id, "aliases", str(exc)) from exc


def mark_pending(content_dir: Path) -> None:
    """ステージング開始前に未完了マーカーを書く（ラン完了まで残す）."""
    content_dir.mkdir(parents=True, exist_ok=True)
    (content_dir / PENDING_MARKER).write_text("staging\n", encoding="utf-8")


def clear_pending(content_dir: Path) -> None:
    (content_dir / PENDING_MARKER).unlink(missing_ok=True)


def is_pending(content_dir: Path) -> bool:
    return (content_dir / PENDING_MARKER).exists()


def read_published_head(content_dir: Path) -> str | None:
    """正規ツリーが最後に同期/公開した公開ブランチのコミット SHA."""
    marker = content_dir / PUBLISHED_HEAD_MARKER
    if not marker.is_file():
        return None
    return marker.read_text(encoding="utf-8").strip() or None


def record_published_head(content_dir: Path, commit_sha: str) -> None:
    content_dir.mkdir(parents=True, exist_ok=True)
    (content_dir / PUBLISHED_HEAD_MARKER).write_text(f"{commit_sha}\n", encoding="utf-8")
