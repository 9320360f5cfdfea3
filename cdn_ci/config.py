"""cdn.yml の読み込み."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from cdn_ci import __version__
from cdn_content_builder.commit import DEFAULT_COMMIT_MESSAGE
from cdn_content_builder.core.exceptions import ConfigError
from cdn_content_builder.core.models import MANIFEST_FILE
from cdn_content_builder.core.versions import DEFAULT_TRACKED_BRANCH

DEFAULT_MAX_WORKERS = 4


@dataclass(frozen=True)
class LibraryConfig:
    id: str
    source: str
    branch: str = DEFAULT_TRACKED_BRANCH


@dataclass(frozen=True)
class PublishConfig:
    owner: str
    repo: str
    branch: str = "gh-pages"
    token_env: str = "GITHUB_TOKEN"
    message: str = DEFAULT_COMMIT_MESSAGE
    committer: Mapping[str, str] | None = None


@dataclass(frozen=True)
class InvalidationConfig:
    endpoint: str
    token_env: str = "CDN_PURGE_TOKEN"


@dataclass(frozen=True)
class CdnConfig:
    version: str
    content_dir: Path
    work_dir: Path
    publish: PublishConfig
    libraries: tuple[LibraryConfig, ...]
    manifest_name: str = MANIFEST_FILE
    mirror_dir: Path | None = None
    invalidation: InvalidationConfig | None = None
    max_workers: int = DEFAULT_MAX_WORKERS


def _section(data: Mapping[str, Any], key: str, required: bool = True) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None and not required:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{key}' must be a mapping")
    return value


def _string(section: Mapping[str, Any], key: str, where: str, default: str | None = None) -> str:
    value = section.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"'{where}.{key}' must be a non-empty string")
    return value


def _path(base_dir: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else (base_dir / path).resolve()


def _parse_library(library_id: Any, entry: Any) -> LibraryConfig:
    if not isinstance(library_id, str) or not library_id or "/" in library_id or library_id.startswith("."):
        raise ConfigError(f"Invalid library id: {library_id!r}")
    # 文字列だけの場合は source として扱う
    if isinstance(entry, str):
        entry = {"source": entry}
    if not isinstance(entry, Mapping):
        raise ConfigError(f"'libraries.{library_id}' must be a mapping or a source string")
    source = _string(entry, "source", f"libraries.{library_id}")
    if ":" not in source:
        raise ConfigError(f"'libraries.{library_id}.source' must look like '<type>:<location>'")
    branch = _string(entry, "branch", f"libraries.{library_id}", DEFAULT_TRACKED_BRANCH)
    return LibraryConfig(id=library_id, source=source, branch=branch)


def parse_cdn_config(data: Any, base_dir: Path) -> CdnConfig:
    """cdn.yml の内容を CdnConfig に変換する.

    Args:
        data: yaml.safe_load の結果
        base_dir: 相対パスの基準ディレクトリ（設定ファイルの場所）

    Raises:
        ConfigError: 構造が不正な場合
    """
    if not isinstance(data, Mapping):
        raise ConfigError("cdn.yml must contain a mapping")

    cdn = _section(data, "cdn")
    publish = _section(data, "publish")
    storage = _section(data, "storage", required=False)
    invalidation = _section(data, "invalidation", required=False)
    concurrency = _section(data, "concurrency", required=False)
    libraries = _section(data, "libraries")

    committer = publish.get("committer")
    if committer is not None and not (
        isinstance(committer, Mapping)
        and isinstance(committer.get("name"), str)
        and isinstance(committer.get("email"), str)
    ):
        raise ConfigError("'publish.committer' must have 'name' and 'email'")

    max_workers = concurrency.get("max_workers", DEFAULT_MAX_WORKERS)
    if not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers < 1:
        raise ConfigError("'concurrency.max_workers' must be a positive integer")

    mirror_dir = storage.get("mirror_dir")
    if mirror_dir is not None and not isinstance(mirror_dir, str):
        raise ConfigError("'storage.mirror_dir' must be a string")

    return CdnConfig(
        version=str(cdn.get("version") or __version__),
        content_dir=_path(base_dir, _string(cdn, "content_dir", "cdn", "content")),
        work_dir=_path(base_dir, _string(cdn, "work_dir", "cdn", "work")),
        manifest_name=_string(cdn, "manifest", "cdn", MANIFEST_FILE),
        publish=PublishConfig(
            owner=_string(publish, "owner", "publish"),
            repo=_string(publish, "repo", "publish"),
            branch=_string(publish, "branch", "publish", "gh-pages"),
            token_env=_string(publish, "token_env", "publish", "GITHUB_TOKEN"),
            message=_string(publish, "message", "publish", DEFAULT_COMMIT_MESSAGE),
            committer=dict(committer) if committer else None,
        ),
        libraries=tuple(_parse_library(key, value) for key, value in libraries.items()),
        mirror_dir=_path(base_dir, mirror_dir) if mirror_dir else None,
        invalidation=(
            InvalidationConfig(
                endpoint=_string(invalidation, "endpoint", "invalidation"),
                token_env=_string(invalidation, "token_env", "invalidation", "CDN_PURGE_TOKEN"),
            )
            if invalidation
            else None
        ),
        max_workers=max_workers,
    )


def load_cdn_config(config_path: Path) -> CdnConfig:
    """cdn.yml を読み込む.

    Args:
        config_path: cdn.yml ファイルのパス

    Returns:
        CdnConfig

    Raises:
        ConfigError: 読み込めない、または構造が不正な場合
    """
    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"Cannot read {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    config = parse_cdn_config(data, Path(config_path).resolve().parent)
    logger.info(f"Loaded {len(config.libraries)} libraries from {config_path}")
    return config
