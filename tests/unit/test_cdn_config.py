"""Unit tests for cdn.yml loading."""

from pathlib import Path

import pytest

from cdn_ci import __version__
from cdn_ci.config import load_cdn_config, parse_cdn_config
from cdn_content_builder.core.exceptions import ConfigError

MINIMAL = {
    "publish": {"owner": "example-org", "repo": "cdn-content"},
    "libraries": {"demo": "github:example-org/demo"},
    "cdn": {},
}


def test_load_full_config(tmp_path: Path) -> None:
    """全セクションを読み込み、相対パスは設定ファイルの場所から解決されること."""
    config_path = tmp_path / "conf" / "cdn.yml"
    config_path.parent.mkdir()
    config_path.write_text(
        """
cdn:
  version: "2.1.0"
  content_dir: out/content
  work_dir: /var/tmp/cdn-work
  manifest: cdn.json
publish:
  owner: example-org
  repo: cdn-content
  branch: pages
  committer:
    name: bot
    email: bot@example.com
storage:
  mirror_dir: out/mirror
invalidation:
  endpoint: https://purge.example.com
concurrency:
  max_workers: 8
libraries:
  demo:
    source: github:example-org/demo
    branch: main
  widgets: github:example-org/widgets
""",
        encoding="utf-8",
    )

    config = load_cdn_config(config_path)

    assert config.version == "2.1.0"
    assert config.content_dir == (tmp_path / "conf" / "out" / "content").resolve()
    assert config.work_dir == Path("/var/tmp/cdn-work")
    assert config.manifest_name == "cdn.json"
    assert config.publish.branch == "pages"
    assert config.publish.committer == {"name": "bot", "email": "bot@example.com"}
    assert config.mirror_dir == (tmp_path / "conf" / "out" / "mirror").resolve()
    assert config.invalidation.endpoint == "https://purge.example.com"
    assert config.invalidation.token_env == "CDN_PURGE_TOKEN"
    assert config.max_workers == 8
    assert [(lib.id, lib.source, lib.branch) for lib in config.libraries] == [
        ("demo", "github:example-org/demo", "main"),
        ("widgets", "github:example-org/widgets", "master"),
    ]


def test_defaults(tmp_path: Path) -> None:
    config = parse_cdn_config(MINIMAL, tmp_path)

    assert config.version == __version__
    assert config.manifest_name == "manifest.json"
    assert config.publish.branch == "gh-pages"
    assert config.publish.token_env == "GITHUB_TOKEN"
    assert config.mirror_dir is None
    assert config.invalidation is None
    assert config.max_workers == 4


@pytest.mark.parametrize(
    "override",
    [
        {"publish": None},
        {"publish": {"owner": "example-org"}},
        {"libraries": ["demo"]},
        {"libraries": {"../demo": "github:example-org/demo"}},
        {"libraries": {"demo": "example-org/demo"}},
        {"concurrency": {"max_workers": 0}},
        {"publish": {"owner": "o", "repo": "r", "committer": {"name": "bot"}}},
    ],
)
def test_invalid_structure(tmp_path: Path, override: dict) -> None:
    """構造が不正な設定は ConfigError になること."""
    with pytest.raises(ConfigError):
        parse_cdn_config({**MINIMAL, **override}, tmp_path)


def test_unreadable_files(tmp_path: Path) -> None:
    broken = tmp_path / "broken.yml"
    broken.write_text("cdn: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_cdn_config(tmp_path / "missing.yml")
    with pytest.raises(ConfigError):
        load_cdn_config(broken)


def test_bundled_example_config() -> None:
    config = load_cdn_config(Path(__file__).resolve().parents[2] / "cdn_ci" / "cdn.yml")

    assert {lib.id for lib in config.libraries} == {"demo", "widgets"}
