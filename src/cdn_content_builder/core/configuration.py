"""ライブラリ設定の読み込み（Configuration Loader）.

各バージョンについてリソース宣言を取得し、次のいずれかに決定する:

- Publishable: 宣言の取得に成功
- Skipped: 取得に失敗したが前回マニフェストに同名エントリがある（内容は据え置き）
- Ignored: 取得に失敗し、前回マニフェストにも無い（ステージング/マニフェスト/エイリアスから除外）

取得失敗はランを中断せず、そのバージョンだけを降格させる。
"""

from __future__ import annotations

from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

from .exceptions import SourceUnavailableError
from .models import (
    LATEST_ALIAS,
    PROVENANCE_FILE,
    Display,
    Ignored,
    Library,
    Publishable,
    Skipped,
    Version,
)
from .versions import DEFAULT_TRACKED_BRANCH, compute_aliases, refs_to_versions

if TYPE_CHECKING:
    from ..adapters.base_adapter import SourceProvider

REASON_IGNORED = "There is no valid .cdn-config.yml present"
REASON_SKIPPED = "There is no longer a valid .cdn-config.yml present"


def read_staged_sha(content_dir: Path | None, library_id: str, version_name: str) -> str | None:
    """正規ツリーに書かれた来歴マーカー（.git-sha）を読む."""
    if content_dir is None:
        return None
    marker = content_dir / library_id / version_name / PROVENANCE_FILE
    try:
        return marker.read_text(encoding="utf-8").strip() or None
    except (FileNotFoundError, NotADirectoryError):
        return None


def prior_versions_by_name(prior_library: Mapping[str, Any] | None) -> dict[str, Mapping[str, Any]]:
    if not prior_library:
        return {}
    versions = prior_library.get("versions") or []
    return {
        v["name"]: v for v in versions if isinstance(v, Mapping) and isinstance(v.get("name"), str)
    }


def load_version(
    provider: SourceProvider,
    version: Version,
    prior_entry: Mapping[str, Any] | None,
    staged_sha: str | None = None,
    force: bool = False,
) -> Version:
    """単一バージョンの状態を決定する.

    Args:
        provider: ソースプロバイダ
        version: Resolver が作った status 未設定のバージョン
        prior_entry: 前回マニフェストの同名バージョンエントリ（無ければ None）
        staged_sha: 正規ツリーの来歴マーカーの値
        force: 強制再読み込み

    Returns:
        status / manifest_sha / staged_sha を設定したバージョン
    """
    manifest_sha = prior_entry.get("git_sha") if prior_entry else None
    try:
        declaration = provider.fetch_declaration(version.ref)
    except SourceUnavailableError as exc:
        if prior_entry is not None:
            logger.warning(f"Skipping {provider.source}@{version.ref}: {exc.reason}")
            status = Skipped(reason=REASON_SKIPPED, prior_entry=prior_entry)
        else:
            logger.warning(f"Ignoring {provider.source}@{version.ref}: {exc.reason}")
            status = Ignored(reason=REASON_IGNORED)
    else:
        status = Publishable(declaration=declaration)

    return replace(
        version,
        status=status,
        manifest_sha=manifest_sha if isinstance(manifest_sha, str) else None,
        staged_sha=staged_sha,
        force_reload=force,
    )


def resolve_display(
    versions: tuple[Version, ...] | list[Version],
    aliases: Mapping[str, str],
    prior_library: Mapping[str, Any] | None,
    library_id: str,
) -> Display:
    """表示用メタデータを決定する.

    latest が指すバージョンの宣言が解決できればそれを使い、
    できなければ前回マニフェストの値にフォールバックする。
    """
    latest_name = aliases.get(LATEST_ALIAS)
    latest = next((v for v in versions if v.name == latest_name), None)
    if latest is not None and isinstance(latest.status, Publishable):
        declaration = latest.status.declaration
        return Display(
            name=declaration.name or library_id,
            description=declaration.description or "",
            docs_url=declaration.docs or "",
        )
    if prior_library:
        return Display(
            name=str(prior_library.get("name") or library_id),
            description=str(prior_library.get("description") or ""),
            docs_url=str(prior_library.get("docs_url") or ""),
        )
    return Display(name=library_id)


def load_library(
    library_id: str,
    provider: SourceProvider,
    prior_library: Mapping[str, Any] | None = None,
    content_dir: Path | None = None,
    tracked_branch: str = DEFAULT_TRACKED_BRANCH,
    force: bool = False,
    max_workers: int = 4,
) -> Library:
    """ライブラリのバージョン・エイリアス・表示情報を解決する.

    宣言の取得はバージョン毎に独立なので、スレッドプールで並行に行う。

    Args:
        library_id: ライブラリID
        provider: ソースプロバイダ
        prior_library: 前回マニフェストのライブラリエントリ
        content_dir: 正規コンテンツツリー（来歴マーカーの読み取り用）
        tracked_branch: unstable として公開するブランチ
        force: 全バージョンを強制再読み込みする
        max_workers: 並行数の上限

    Returns:
        解決済みの Library
    """
    logger.info(f"Resolving library {library_id} from {provider.source}")
    listing = provider.list_refs()
    raw_versions = refs_to_versions(listing, tracked_branch=tracked_branch, view_url=provider.view_url)
    prior = prior_versions_by_name(prior_library)

    def _load(version: Version) -> Version:
        return load_version(
            provider,
            version,
            prior.get(version.name),
            staged_sha=read_staged_sha(content_dir, library_id, version.name),
            force=force,
        )

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        versions = tuple(executor.map(_load, raw_versions))

    aliases = compute_aliases(v for v in versions if not v.ignored)
    display = resolve_display(versions, aliases, prior_library, library_id)

    ignored = sum(1 for v in versions if v.ignored)
    skipped = sum(1 for v in versions if v.skipped)
    stale = sum(1 for v in versions if v.needs_update)
    logger.info(
        f"{library_id}: {len(versions)} versions ({stale} need update, {skipped} skipped, {ignored} ignored)"
    )

    return Library(
        id=library_id,
        source=provider.source,
        versions=versions,
        aliases=aliases,
        display=display,
    )
