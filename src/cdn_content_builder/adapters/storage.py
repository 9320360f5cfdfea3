"""オブジェクトストレージ同期とキャッシュ無効化のアダプタ.

- LocalMirrorSync: ローカルのミラーディレクトリへリンクを実体化してコピーする
- HttpPurgeInvalidator: パージ API へ JSON でパス一覧を POST する
"""

from __future__ import annotations

import filecmp
import os
import shutil
from collections.abc import Sequence
from pathlib import Path

import httpx
from loguru import logger

from ..core.exceptions import InvalidationError
from ..core.models import PENDING_MARKER, PUBLISHED_HEAD_MARKER
from .base_adapter import CacheInvalidationBackend, StorageSync


class LocalMirrorSync(StorageSync):
    """ミラーディレクトリへの同期.

    エイリアスのリンクは辿って実ファイルとしてコピーする（オブジェクトストレージには
    シンボリックリンクが無いため）。ローカルに存在しないファイルはミラーから削除する。
    """

    def __init__(
        self,
        mirror_dir: Path,
        exclude: frozenset[str] = frozenset({PENDING_MARKER, PUBLISHED_HEAD_MARKER}),
    ) -> None:
        self.mirror_dir = mirror_dir
        self._exclude = exclude

    def _local_files(self, local_dir: Path) -> dict[str, Path]:
        files: dict[str, Path] = {}
        for dirpath, _, filenames in os.walk(local_dir, followlinks=True):
            for filename in filenames:
                if filename in self._exclude:
                    continue
                full = Path(dirpath) / filename
                files[full.relative_to(local_dir).as_posix()] = full
        return files

    def sync_directory(self, local_dir: Path) -> bool:
        self.mirror_dir.mkdir(parents=True, exist_ok=True)
        local = self._local_files(local_dir)

        copied = 0
        for relative, source in sorted(local.items()):
            target = self.mirror_dir / relative
            if target.is_file() and filecmp.cmp(source, target, shallow=False):
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
            copied += 1

        removed = 0
        for dirpath, _, filenames in os.walk(self.mirror_dir):
            for filename in filenames:
                full = Path(dirpath) / filename
                if full.relative_to(self.mirror_dir).as_posix() not in local:
                    full.unlink()
                    removed += 1

        logger.info(f"Mirrored {local_dir} to {self.mirror_dir}: {copied} copied, {removed} removed")
        return removed > 0


class HttpPurgeInvalidator(CacheInvalidationBackend):
    """HTTP パージエンドポイントのクライアント."""

    def __init__(self, endpoint: str, client: httpx.Client | None = None, token: str | None = None) -> None:
        self.endpoint = endpoint
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.Client(timeout=30.0, headers=headers)

    def invalidate(self, paths: Sequence[str]) -> str:
        logger.info(f"Purging {len(paths)} paths via {self.endpoint}")
        try:
            response = self._client.post(self.endpoint, json={"paths": list(paths)})
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise InvalidationError(f"Purge request failed with HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise InvalidationError(f"Purge request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        return str(body.get("id", "")) if isinstance(body, dict) else ""
