"""Unit tests for the local mirror sync and HTTP purge client."""

import json
import os
from pathlib import Path

import httpx
import pytest

from cdn_content_builder.adapters.storage import HttpPurgeInvalidator, LocalMirrorSync
from cdn_content_builder.core.exceptions import InvalidationError


@pytest.fixture
def content_dir(tmp_path: Path) -> Path:
    root = tmp_path / "content"
    version_dir = root / "demo" / "1.0.0"
    version_dir.mkdir(parents=True)
    (version_dir / "demo.js").write_bytes(b"js")
    os.symlink("1.0.0", root / "demo" / "latest", target_is_directory=True)
    (root / "manifest.json").write_bytes(b"{}\n")
    (root / ".publish-pending").write_text("staging\n", encoding="utf-8")
    (root / ".published-head").write_text("c" * 40, encoding="utf-8")
    return root


class TestLocalMirrorSync:
    def test_aliases_are_dereferenced(self, content_dir: Path, tmp_path: Path) -> None:
        """エイリアスのリンクは実ファイルとしてミラーされ、管理用マーカーは除外されること."""
        mirror = tmp_path / "mirror"

        deleted = LocalMirrorSync(mirror).sync_directory(content_dir)

        assert not deleted
        assert (mirror / "demo" / "latest" / "demo.js").read_bytes() == b"js"
        assert not (mirror / "demo" / "latest").is_symlink()
        assert (mirror / "manifest.json").exists()
        assert not (mirror / ".publish-pending").exists()
        assert not (mirror / ".published-head").exists()

    def test_stale_files_removed(self, content_dir: Path, tmp_path: Path) -> None:
        """ローカルに無いファイルはミラーから削除され、True が返ること."""
        mirror = tmp_path / "mirror"
        stale = mirror / "demo" / "0.9.0" / "demo.js"
        stale.parent.mkdir(parents=True)
        stale.write_bytes(b"old")

        deleted = LocalMirrorSync(mirror).sync_directory(content_dir)

        assert deleted
        assert not stale.exists()

    def test_changed_file_is_recopied(self, content_dir: Path, tmp_path: Path) -> None:
        mirror = tmp_path / "mirror"
        sync = LocalMirrorSync(mirror)
        sync.sync_directory(content_dir)

        (content_dir / "demo" / "1.0.0" / "demo.js").write_bytes(b"js v2")
        sync.sync_directory(content_dir)

        assert (mirror / "demo" / "1.0.0" / "demo.js").read_bytes() == b"js v2"


class TestHttpPurgeInvalidator:
    def test_posts_paths(self) -> None:
        """パス一覧を JSON で POST し、無効化 ID を返すこと."""
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(201, json={"id": "inv-42"})

        client = httpx.Client(transport=httpx.MockTransport(handler))
        invalidator = HttpPurgeInvalidator("https://purge.example.com/v1/invalidations", client=client)

        invalidation_id = invalidator.invalidate(["/demo/1.1.0/*", "/manifest.json"])

        assert invalidation_id == "inv-42"
        assert seen == [{"paths": ["/demo/1.1.0/*", "/manifest.json"]}]

    def test_failure_raises(self) -> None:
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        invalidator = HttpPurgeInvalidator("https://purge.example.com/v1/invalidations", client=client)

        with pytest.raises(InvalidationError) as excinfo:
            invalidator.invalidate(["/manifest.json"])

        assert excinfo.value.stage == "invalidate"
