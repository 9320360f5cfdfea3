"""公開パイプライン（逐次ステージのドライバ）.

Resolve -> Stage -> Detect -> Manifest -> Commit -> Sync -> Invalidate の順に実行する。
各ステージ内のライブラリ/バージョン単位の処理はスレッドプールで並行に行う。

正規ツリーが公開ブランチの先頭と一致しない場合（初回、別の作業ディレクトリ、
他のランによる公開後）は、解決の前に公開ブランチから再同期する。
前回ランがステージング途中で中断した場合（.publish-pending が残っている場合）は
再同期に加えて全バージョンを強制再読み込みする。
"""

from __future__ import annotations

import shutil
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .adapters.base_adapter import CacheInvalidationBackend, PublishBackend, SourceProvider, StorageSync
from .commit import DEFAULT_COMMIT_MESSAGE, PublishTransaction, bookkeeping_files
from .core.changes import classify_changes, hash_tree
from .core.configuration import load_library
from .core.exceptions import InvalidationError
from .core.models import MANIFEST_FILE, PROVENANCE_FILE, ChangeSet, RunSnapshot, versions_needing_update
from .core.versions import DEFAULT_TRACKED_BRANCH
from .invalidation import invalidation_paths
from .manifest import create_manifest, load_manifest, prior_library_entry, serialize_manifest, write_manifest
from .staging import (
    clear_pending,
    is_pending,
    mark_pending,
    read_published_head,
    record_published_head,
    stage_versions,
    write_all_alias_links,
)


@dataclass(frozen=True)
class LibrarySource:
    """パイプラインに登録するライブラリ."""

    id: str
    provider: SourceProvider
    tracked_branch: str = DEFAULT_TRACKED_BRANCH


@dataclass(frozen=True)
class PipelineOptions:
    cdn_version: str
    content_dir: Path
    work_dir: Path
    branch: str
    manifest_name: str = MANIFEST_FILE
    commit_message: str = DEFAULT_COMMIT_MESSAGE
    force: bool = False
    refresh_content: bool = False
    dry_run: bool = False
    max_workers: int = 4


@dataclass(frozen=True)
class PipelineResult:
    """1 ランの結果."""

    snapshot: RunSnapshot
    changes: ChangeSet | None = None
    commit_sha: str | None = None
    invalidated: tuple[str, ...] = ()
    invalidation_id: str | None = None
    storage_deleted: bool = False
    staged: tuple[str, ...] = field(default=())

    @property
    def published(self) -> bool:
        return self.commit_sha is not None


def resync_content(backend: PublishBackend, branch: str, content_dir: Path) -> str:
    """正規ツリーを破棄し、公開ブランチの内容で置き換える.

    Returns:
        同期元のコミット SHA（content_dir に記録される）
    """
    head = backend.get_ref(branch)
    logger.warning(f"Re-synchronising {content_dir} from published branch {branch} ({head[:8]})")
    if content_dir.exists():
        shutil.rmtree(content_dir)
    content_dir.mkdir(parents=True)
    backend.download_content(branch, content_dir)
    record_published_head(content_dir, head)
    return head


def needs_resync(backend: PublishBackend, branch: str, content_dir: Path) -> bool:
    """正規ツリーが公開ブランチの先頭から外れているか（同期記録が無い場合を含む）."""
    return read_published_head(content_dir) != backend.get_ref(branch)


def resolve_snapshot(
    libraries: Sequence[LibrarySource],
    options: PipelineOptions,
    prior_manifest: dict,
    force: bool,
    state_dir: Path | None = None,
) -> RunSnapshot:
    """全ライブラリのバージョンを解決してラン状態を作る.

    state_dir は来歴マーカーを読む正規ツリー（省略時は options.content_dir）。
    """
    resolved = tuple(
        load_library(
            source.id,
            source.provider,
            prior_library=prior_library_entry(prior_manifest, source.id),
            content_dir=state_dir or options.content_dir,
            tracked_branch=source.tracked_branch,
            force=force,
            max_workers=options.max_workers,
        )
        for source in libraries
    )
    return RunSnapshot(cdn_version=options.cdn_version, libraries=resolved, prior_manifest=prior_manifest)


def run_pipeline(
    libraries: Sequence[LibrarySource],
    backend: PublishBackend,
    options: PipelineOptions,
    storage: StorageSync | None = None,
    invalidator: CacheInvalidationBackend | None = None,
) -> PipelineResult:
    """公開パイプラインを 1 回実行する.

    ドライランは正規ツリーを変更しない。再同期が必要な場合は作業ディレクトリに
    公開ブランチを展開して解決に使う。

    Args:
        libraries: 登録ライブラリ
        backend: 公開トランザクションのバックエンド
        options: ラン設定
        storage: オブジェクトストレージ同期（省略可）
        invalidator: キャッシュ無効化（省略可）

    Returns:
        PipelineResult

    Raises:
        StagingError: ステージングに失敗した場合（"after" ハッシュ前に中断）
        TransactionConflictError: 公開ブランチが同期後または並行して更新された場合
        PublishError: バックエンドとの通信に失敗した場合
        InvalidationError: コミット後のキャッシュ無効化に失敗した場合
    """
    content_dir = options.content_dir
    manifest_path = content_dir / options.manifest_name

    force = options.force
    pending_run = is_pending(content_dir)
    if pending_run:
        logger.warning("Previous run did not finish; forcing a conservative re-resolution")
    state_dir = content_dir
    if options.refresh_content or pending_run or needs_resync(backend, options.branch, content_dir):
        if options.dry_run:
            state_dir = options.work_dir / "published"
        resync_content(backend, options.branch, state_dir)
        force = force or options.refresh_content or pending_run
    synced_head = read_published_head(state_dir)

    # Resolve
    prior_manifest = load_manifest(state_dir / options.manifest_name)
    snapshot = resolve_snapshot(libraries, options, prior_manifest, force, state_dir=state_dir)

    targets = versions_needing_update(snapshot)
    for library, version in targets:
        logger.info(f"{library.id}@{version.name}: {version.manifest_sha or '-'} -> {version.commit_sha}")
    staged = tuple(f"{library.id}@{version.name}" for library, version in targets)
    if options.dry_run:
        logger.info(f"Dry run: {len(targets)} versions would be staged: {', '.join(staged) or '-'}")
        return PipelineResult(snapshot=snapshot, staged=staged)

    # Stage (the "before" pass covers the whole tree first)
    before = hash_tree(content_dir, options.manifest_name)
    mark_pending(content_dir)
    providers = {source.id: source.provider for source in libraries}
    stage_versions(targets, providers, content_dir, options.work_dir, max_workers=options.max_workers)
    write_all_alias_links(content_dir, snapshot.libraries)

    # Detect
    after = hash_tree(content_dir, options.manifest_name)
    changes = classify_changes(before, after, options.manifest_name)
    logger.info(
        f"Changes: {len(changes.added)} added, {len(changes.modified)} modified, "
        f"{len(changes.deleted)} deleted, {len(changes.unchanged)} unchanged"
    )

    manifest = create_manifest(snapshot, content_dir)

    if changes.only_manifest_changed:
        write_manifest(manifest, manifest_path)
        clear_pending(content_dir)
        logger.info("Only the manifest changed; skipping commit and invalidation")
        return PipelineResult(snapshot=snapshot, changes=changes, staged=staged)

    # Commit
    transaction = PublishTransaction(
        backend, options.branch, message=options.commit_message, max_workers=options.max_workers
    )
    pending = transaction.prepare(
        changes,
        content_dir,
        extra_files={options.manifest_name: serialize_manifest(manifest)},
        extra_paths=bookkeeping_files(content_dir),
        refreshed_paths=[f"{library.id}/{version.name}/{PROVENANCE_FILE}" for library, version in targets],
        expected_base=synced_head,
    )
    write_manifest(manifest, manifest_path)
    commit_sha = transaction.commit(pending)
    record_published_head(content_dir, commit_sha)

    # Sync
    storage_deleted = False
    if storage is not None:
        storage_deleted = storage.sync_directory(content_dir)
        logger.info(f"Storage sync finished (deleted files: {storage_deleted})")

    # Invalidate
    paths = invalidation_paths(snapshot.libraries, changes, options.manifest_name)
    invalidation_id = None
    if invalidator is not None and paths:
        try:
            invalidation_id = invalidator.invalidate(paths)
        except InvalidationError:
            logger.error(f"Invalidation of {len(paths)} paths failed after commit {commit_sha[:8]}")
            clear_pending(content_dir)
            raise
        logger.info(f"Invalidation {invalidation_id} submitted for {len(paths)} paths")

    clear_pending(content_dir)
    return PipelineResult(
        snapshot=snapshot,
        changes=changes,
        commit_sha=commit_sha,
        invalidated=tuple(paths),
        invalidation_id=invalidation_id,
        storage_deleted=storage_deleted,
        staged=staged,
    )
