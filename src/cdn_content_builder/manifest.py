"""公開マニフェスト（manifest.json）の生成と管理."""

from __future__ import annotations

import base64
import gzip
import hashlib
import json
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger

from .core.changes import TYPE_FILE, scan_tree
from .core.models import PROVENANCE_FILE, Library, RunSnapshot, Skipped, Version, listed_versions
from .staging import content_dir_for

HASH_ALGORITHMS = ("sha256", "sha384", "sha512")
GZIP_LEVEL = 6


def summarize_file(path: Path) -> dict[str, Any]:
    """ファイルのサイズ、gzip 後サイズ、各アルゴリズムのダイジェストを求める.

    gzip は固定レベル・mtime=0 で圧縮するので、同じ内容なら常に同じサイズになる。

    Args:
        path: 対象ファイル

    Returns:
        {"size", "gzip_size", "hashes": {algo: {"hex", "base64"}}}
    """
    content = path.read_bytes()
    hashes = {}
    for algorithm in HASH_ALGORITHMS:
        digest = hashlib.new(algorithm, content).digest()
        hashes[algorithm] = {
            "hex": digest.hex(),
            "base64": base64.b64encode(digest).decode("ascii"),
        }
    return {
        "size": len(content),
        "gzip_size": len(gzip.compress(content, compresslevel=GZIP_LEVEL, mtime=0)),
        "hashes": hashes,
    }


def version_resources(content_dir: Path, library_id: str, version: Version) -> dict[str, Any]:
    """バージョンの公開ディレクトリ内の全ファイルのリソース情報（来歴マーカーを除く）.

    エントリポイントかどうかは宣言の entrypoints のキーと相対パスの一致で決める。
    ディレクトリが存在しない skipped バージョンは前回マニフェストの値をそのまま引き継ぐ。
    """
    version_dir = content_dir_for(content_dir, library_id, version.name)
    if not version_dir.is_dir():
        if isinstance(version.status, Skipped):
            prior = version.status.prior_entry.get("resources") or {}
            logger.debug(f"{library_id}@{version.name} not staged locally; carrying prior resources")
            return dict(prior)
        logger.warning(f"Missing content directory for {library_id}@{version.name}")
        return {}

    entrypoints = version.entrypoints
    resources: dict[str, Any] = {}
    for relative, entry_type, full in scan_tree(version_dir):
        if entry_type != TYPE_FILE or relative == PROVENANCE_FILE:
            continue
        description = entrypoints.get(relative)
        resources[relative] = {
            "entrypoint": relative in entrypoints,
            "description": description,
            **summarize_file(full),
        }
    return dict(sorted(resources.items()))


def published_sha(version: Version) -> str:
    """マニフェストに記録する commit SHA（skipped は前回公開した SHA のまま）."""
    match version.status:
        case Skipped(prior_entry=prior_entry) if isinstance(prior_entry.get("git_sha"), str):
            return prior_entry["git_sha"]
    return version.commit_sha


def library_entry(library: Library, content_dir: Path) -> dict[str, Any]:
    return {
        "name": library.display.name,
        "description": library.display.description,
        "docs_url": library.display.docs_url,
        "source": library.source,
        "aliases": dict(library.aliases),
        "versions": [
            {
                "name": version.name,
                "ref": version.ref,
                "tarball_url": version.tarball_url,
                "git_sha": published_sha(version),
                "link": version.view_url,
                "resources": version_resources(content_dir, library.id, version),
            }
            for version in listed_versions(library)
        ],
    }


def create_manifest(
    snapshot: RunSnapshot,
    content_dir: Path,
    built_at: datetime | None = None,
) -> dict[str, Any]:
    """公開マニフェストを作成する.

    ignored 以外の全バージョンを含める。

    Args:
        snapshot: 解決済みのラン状態
        content_dir: 正規コンテンツツリー
        built_at: ビルド時刻（省略時は現在時刻）

    Returns:
        マニフェスト辞書
    """
    built = (built_at or datetime.now(UTC)).isoformat().replace("+00:00", "Z")
    return {
        "$cdn-version": snapshot.cdn_version,
        "$built": built,
        "libraries": {
            library.id: library_entry(library, content_dir) for library in snapshot.libraries
        },
    }


def serialize_manifest(manifest: Mapping[str, Any]) -> bytes:
    return (json.dumps(manifest, indent=2, sort_keys=True, ensure_ascii=False) + "\n").encode("utf-8")


def write_manifest(manifest: Mapping[str, Any], output_path: Path) -> None:
    """マニフェストを JSON ファイルとして保存."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(serialize_manifest(manifest))
    logger.info(f"Manifest written to {output_path}")


def load_manifest(manifest_path: Path) -> dict[str, Any]:
    """既存のマニフェストを読み込む.

    存在しない、または壊れている場合は空の辞書を返す（初回ラン扱い）。
    未知のフィールドは無視される。
    """
    if not manifest_path.exists():
        logger.warning(f"Manifest not found: {manifest_path}")
        return {}

    try:
        with open(manifest_path, encoding="utf-8") as f:
            manifest = json.load(f)
    except json.JSONDecodeError as exc:
        logger.warning(f"Ignoring unreadable manifest {manifest_path}: {exc}")
        return {}

    if not isinstance(manifest, dict):
        logger.warning(f"Ignoring manifest with unexpected root type: {manifest_path}")
        return {}

    logger.info(f"Loaded manifest from {manifest_path}")
    return manifest


def prior_library_entry(manifest: Mapping[str, Any], library_id: str) -> dict[str, Any] | None:
    libraries = manifest.get("libraries")
    if not isinstance(libraries, Mapping):
        return None
    entry = libraries.get(library_id)
    return entry if isinstance(entry, dict) else None
