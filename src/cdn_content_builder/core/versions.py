"""バージョン解決とエイリアス計算.

ソースプロバイダが返した生の ref（タグ + 追跡ブランチ 1 本）を正規化したバージョン一覧に変換し、
セマンティックバージョンのエイリアス（1.x.x / 1.2.x / latest）を計算する。
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping

import semver
from loguru import logger

from .models import LATEST_ALIAS, UNSTABLE_VERSION, RefInfo, RefListing, Version

DEFAULT_TRACKED_BRANCH = "master"


def parse_semver(name: str) -> semver.Version | None:
    try:
        return semver.Version.parse(name)
    except (TypeError, ValueError):
        return None


def normalize_ref_name(name: str) -> str:
    """ref 名を正規化する.

    前後の空白と、先頭に連続する "=" / "v"（小文字のみ、例: "=v1.2.0"）を除いた残りが
    semver として解釈できればそれを返し、それ以外は元の ref 名をそのまま返す。

    Args:
        name: タグ名またはブランチ名（例: "v1.2.0"）

    Returns:
        正規化済みのバージョン名（例: "1.2.0"）
    """
    stripped = name.strip().lstrip("=v")
    if parse_semver(stripped) is not None:
        return stripped
    return name


def refs_to_versions(
    listing: RefListing,
    tracked_branch: str = DEFAULT_TRACKED_BRANCH,
    view_url: Callable[[str], str] | None = None,
) -> list[Version]:
    """ref 一覧をバージョン一覧に変換する.

    タグはすべてバージョンになり、追跡ブランチ 1 本だけが予約名 "unstable" として加わる。
    正規化後の名前が重複した場合はプロバイダの列挙順で後のものが勝つ。

    Args:
        listing: プロバイダの ref 一覧
        tracked_branch: unstable として公開するブランチ名
        view_url: ref -> 閲覧 URL を返す関数（省略時は空文字）

    Returns:
        バージョンのリスト（status 未設定）
    """
    by_name: dict[str, Version] = {}

    def _add(ref: RefInfo, name: str) -> None:
        if name in by_name:
            logger.debug(f"Ref {ref.ref} shadows earlier ref {by_name[name].ref} for version {name}")
        by_name[name] = Version(
            name=name,
            ref=ref.ref,
            commit_sha=ref.commit_sha,
            tarball_url=ref.tarball_url,
            view_url=view_url(ref.ref) if view_url else "",
        )

    for tag in listing.tags:
        _add(tag, normalize_ref_name(tag.ref))

    branch = next((b for b in listing.branches if b.ref == tracked_branch), None)
    if branch is not None:
        _add(branch, UNSTABLE_VERSION)
    else:
        logger.warning(f"Tracked branch '{tracked_branch}' not found; no {UNSTABLE_VERSION} version")

    return list(by_name.values())


def _highest(candidates: Iterable[tuple[semver.Version, str]]) -> str | None:
    best = max(candidates, default=None)
    return best[1] if best else None


def compute_aliases(versions: Iterable[Version | str]) -> dict[str, str]:
    """バージョン一覧からエイリアスを計算する（純関数・冪等）.

    有効な semver のバージョン毎に "major.x.x" と "major.minor.x" を作り、
    それぞれを満たす最大のバージョンへ向ける。"latest" は全体で最大の semver。
    プレリリースはエイリアスを作らず、満たしもしない。
    入力順に依存しない（同順位は名前で決定的に解決する）。

    Args:
        versions: Version または バージョン名の列

    Returns:
        エイリアス -> バージョン名 の辞書（キー順はソート済み）
    """
    parsed: list[tuple[semver.Version, str]] = []
    for each in versions:
        name = each.name if isinstance(each, Version) else each
        version = parse_semver(name)
        if version is None or version.prerelease:
            continue
        parsed.append((version, name))

    aliases: dict[str, str] = {}
    majors = {v.major for v, _ in parsed}
    minors = {(v.major, v.minor) for v, _ in parsed}

    for major in majors:
        best = _highest(p for p in parsed if p[0].major == major)
        if best:
            aliases[f"{major}.x.x"] = best
    for major, minor in minors:
        best = _highest(p for p in parsed if p[0].major == major and p[0].minor == minor)
        if best:
            aliases[f"{major}.{minor}.x"] = best

    latest = _highest(parsed)
    if latest:
        aliases[LATEST_ALIAS] = latest

    return dict(sorted(aliases.items()))


def aliases_for_version(aliases: Mapping[str, str], version_name: str) -> list[str]:
    """指定バージョンを指しているエイリアス名の一覧."""
    return sorted(alias for alias, target in aliases.items() if target == version_name)
