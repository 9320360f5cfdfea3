"""Unit tests for content-hash change detection."""

import os
from pathlib import Path

from cdn_content_builder.core.changes import (
    TYPE_FILE,
    TYPE_SYMLINK,
    classify_changes,
    hash_tree,
    only_manifest_changed,
    scan_tree,
)


def _write(root: Path, relative: str, content: bytes) -> None:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


class TestHashTree:
    def test_excludes_manifest_and_bookkeeping(self, tmp_path: Path) -> None:
        """マニフェスト・来歴マーカー・未完了マーカーはハッシュ対象外であること."""
        _write(tmp_path, "demo/1.0.0/demo.js", b"js")
        _write(tmp_path, "demo/1.0.0/.git-sha", b"a" * 40)
        _write(tmp_path, "manifest.json", b"{}")
        _write(tmp_path, ".publish-pending", b"staging")

        hashes = hash_tree(tmp_path)

        assert set(hashes) == {"demo/1.0.0/demo.js"}

    def test_directory_symlink_is_one_entry(self, tmp_path: Path) -> None:
        """ディレクトリを指すリンクは辿らずに 1 エントリとして扱うこと."""
        _write(tmp_path, "demo/1.0.0/demo.js", b"js")
        os.symlink("1.0.0", tmp_path / "demo" / "latest", target_is_directory=True)

        entries = {relative: kind for relative, kind, _ in scan_tree(tmp_path)}

        assert entries == {"demo/1.0.0/demo.js": TYPE_FILE, "demo/latest": TYPE_SYMLINK}

    def test_missing_root(self, tmp_path: Path) -> None:
        assert hash_tree(tmp_path / "missing") == {}


class TestClassifyChanges:
    def test_partition(self) -> None:
        """4 分類が互いに素で、和集合が新旧パスの和集合に一致すること."""
        old = {"a": "1", "b": "2", "c": "3", "d": "4"}
        new = {"b": "2", "c": "changed", "e": "5", "f": "6"}

        changes = classify_changes(old, new)

        assert changes.added == ("e", "f")
        assert changes.deleted == ("a", "d")
        assert changes.modified == ("c",)
        assert changes.unchanged == ("b",)
        groups = [set(changes.added), set(changes.modified), set(changes.deleted), set(changes.unchanged)]
        assert set().union(*groups) == set(old) | set(new)
        assert sum(len(g) for g in groups) == len(set(old) | set(new))
        assert not changes.only_manifest_changed

    def test_insensitive_to_order(self) -> None:
        old = {"x": "1", "a": "2", "m": "3"}
        new = {"m": "3", "z": "9", "a": "0"}

        forward = classify_changes(old, new)
        backward = classify_changes(dict(reversed(list(old.items()))), dict(reversed(list(new.items()))))

        assert forward == backward

    def test_no_changes_is_only_manifest(self) -> None:
        changes = classify_changes({"a": "1"}, {"a": "1"})

        assert changes.changed == ()
        assert changes.only_manifest_changed

    def test_file_replaced_by_symlink_is_modified(self, tmp_path: Path) -> None:
        """同じバイト列でもファイルがリンクに置き換われば modified になること."""
        _write(tmp_path, "demo/current", b"1.0.0")
        before = hash_tree(tmp_path)

        (tmp_path / "demo" / "current").unlink()
        os.symlink("1.0.0", tmp_path / "demo" / "current")
        after = hash_tree(tmp_path)

        changes = classify_changes(before, after)

        assert changes.modified == ("demo/current",)

    def test_provenance_only_change(self, tmp_path: Path) -> None:
        """来歴マーカーだけが変わった場合は onlyManifestChanged になること."""
        _write(tmp_path, "demo/1.0.0/demo.js", b"js")
        _write(tmp_path, "demo/1.0.0/.git-sha", b"a" * 40)
        before = hash_tree(tmp_path)

        _write(tmp_path, "demo/1.0.0/.git-sha", b"b" * 40)
        _write(tmp_path, "manifest.json", b"{}")
        changes = classify_changes(before, hash_tree(tmp_path))

        assert changes.only_manifest_changed


def test_only_manifest_changed() -> None:
    assert only_manifest_changed([])
    assert only_manifest_changed(["manifest.json"])
    assert not only_manifest_changed(["manifest.json", "demo/1.0.0/demo.js"])
    assert only_manifest_changed(["cdn.json"], manifest_path="cdn.json")
