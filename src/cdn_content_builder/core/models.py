"""パイプラインで共有するデータモデル.

ラン毎にソースから再解決して構築し、ラン終了時に破棄する。
ランを跨いで残るのはマニフェスト経由で往復する情報だけ。
Resolver / Configuration Loader 以外では変更しない（frozen dataclass）。
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

UNSTABLE_VERSION = "unstable"
LATEST_ALIAS = "latest"
PROVENANCE_FILE = ".git-sha"
PENDING_MARKER = ".publish-pending"
PUBLISHED_HEAD_MARKER = ".published-head"
MANIFEST_FILE = "manifest.json"


@dataclass(frozen=True)
class RefInfo:
    """ソースプロバイダが列挙した ref（タグまたはブランチ）."""

    name: str
    ref: str
    tarball_url: str
    commit_sha: str


@dataclass(frozen=True)
class RefListing:
    tags: tuple[RefInfo, ...] = ()
    branches: tuple[RefInfo, ...] = ()


@dataclass(frozen=True)
class ResourceMapping:
    """スナップショット内の src を公開ディレクトリ内の dest へ写す宣言."""

    src: str
    dest: str | None = None


@dataclass(frozen=True)
class ResourceDeclaration:
    """バージョン毎のリソース宣言（.cdn-config.yml）."""

    name: str | None = None
    description: str | None = None
    docs: str | None = None
    mappings: tuple[ResourceMapping, ...] = ()
    entrypoints: Mapping[str, str | None] = field(default_factory=dict)


@dataclass(frozen=True)
class Ignored:
    """有効なリソース宣言が一度も存在しない（CDN に載せない）."""

    reason: str


@dataclass(frozen=True)
class Skipped:
    """公開済みだが宣言が解決できない（内容は据え置き、更新不可）."""

    reason: str
    prior_entry: Mapping[str, Any]


@dataclass(frozen=True)
class Publishable:
    declaration: ResourceDeclaration


VersionStatus = Ignored | Skipped | Publishable


@dataclass(frozen=True)
class Version:
    """ライブラリの 1 バージョン.

    status は Configuration Loader が一度だけ決定する。
    それ以外の場所では isinstance / match で分岐し、None チェックを繰り返さない。
    """

    name: str
    ref: str
    commit_sha: str
    tarball_url: str
    view_url: str = ""
    status: VersionStatus | None = None
    manifest_sha: str | None = None
    staged_sha: str | None = None
    force_reload: bool = False

    @property
    def ignored(self) -> bool:
        return isinstance(self.status, Ignored)

    @property
    def skipped(self) -> bool:
        return isinstance(self.status, Skipped)

    @property
    def publishable(self) -> bool:
        return isinstance(self.status, Publishable)

    @property
    def reason(self) -> str | None:
        match self.status:
            case Ignored(reason=reason) | Skipped(reason=reason):
                return reason
        return None

    @property
    def needs_update(self) -> bool:
        """公開可能かつ（強制 / マニフェスト SHA 不一致 / ステージ済み SHA 不一致）."""
        if not self.publishable:
            return False
        return (
            self.force_reload
            or self.commit_sha != self.manifest_sha
            or self.commit_sha != self.staged_sha
        )

    @property
    def entrypoints(self) -> dict[str, str | None]:
        match self.status:
            case Publishable(declaration=declaration):
                return dict(declaration.entrypoints)
            case Skipped(prior_entry=prior_entry):
                return entrypoints_from_manifest_entry(prior_entry)
        return {}

    @property
    def mappings(self) -> tuple[ResourceMapping, ...]:
        if isinstance(self.status, Publishable):
            return self.status.declaration.mappings
        return ()


@dataclass(frozen=True)
class Display:
    name: str = ""
    description: str = ""
    docs_url: str = ""


@dataclass(frozen=True)
class Library:
    """ソースリポジトリ 1 つに対応するライブラリ.

    aliases["latest"] が存在する場合、versions 内の既存エントリを指す。
    """

    id: str
    source: str
    versions: tuple[Version, ...] = ()
    aliases: Mapping[str, str] = field(default_factory=dict)
    display: Display = field(default_factory=Display)

    def version(self, name: str) -> Version | None:
        for each in self.versions:
            if each.name == name:
                return each
        return None


@dataclass(frozen=True)
class RunSnapshot:
    """1 ラン分の解決済み状態（不変）."""

    cdn_version: str
    libraries: tuple[Library, ...]
    prior_manifest: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChangeSet:
    """before/after の 2 つのハッシュスナップショットから求めた変更分類."""

    added: tuple[str, ...] = ()
    modified: tuple[str, ...] = ()
    deleted: tuple[str, ...] = ()
    unchanged: tuple[str, ...] = ()
    only_manifest_changed: bool = True

    @property
    def changed(self) -> tuple[str, ...]:
        return tuple(sorted((*self.added, *self.modified, *self.deleted)))

    @property
    def uploads(self) -> tuple[str, ...]:
        return tuple(sorted((*self.added, *self.modified)))


def entrypoints_from_manifest_entry(entry: Mapping[str, Any]) -> dict[str, str | None]:
    """前回マニフェストのバージョンエントリからエントリポイントを再構成する."""
    resources = entry.get("resources") or {}
    if not isinstance(resources, Mapping):
        return {}
    result: dict[str, str | None] = {}
    for path, value in resources.items():
        if isinstance(value, Mapping) and value.get("entrypoint"):
            result[path] = value.get("description")
    return result


def publishable_versions(library: Library) -> list[Version]:
    return [v for v in library.versions if v.publishable]


def listed_versions(library: Library) -> list[Version]:
    """ignored 以外（publishable + skipped）のバージョン."""
    return [v for v in library.versions if not v.ignored]


def iter_library_versions(
    snapshot: RunSnapshot, include_ignored: bool = False
) -> Iterator[tuple[Library, Version]]:
    for library in snapshot.libraries:
        for version in library.versions:
            if version.ignored and not include_ignored:
                continue
            yield library, version


def versions_needing_update(snapshot: RunSnapshot) -> list[tuple[Library, Version]]:
    return [(lib, ver) for lib, ver in iter_library_versions(snapshot) if ver.needs_update]
