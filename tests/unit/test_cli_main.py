"""Unit tests for the CI orchestrator CLI."""

from pathlib import Path

import pytest

import cdn_ci.main as cli
from cdn_content_builder.core.exceptions import StagingError
from cdn_content_builder.core.models import RunSnapshot
from cdn_content_builder.pipeline import PipelineResult

CONFIG = """
cdn:
  content_dir: content
  work_dir: work
publish:
  owner: example-org
  repo: cdn-content
storage:
  mirror_dir: mirror
libraries:
  demo: github:example-org/demo
"""


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "cdn.yml"
    path.write_text(CONFIG, encoding="utf-8")
    return path


@pytest.fixture
def recorded(monkeypatch: pytest.MonkeyPatch) -> list[dict]:
    calls: list[dict] = []

    def fake_run_pipeline(libraries, backend, options, storage=None, invalidator=None):
        calls.append({"libraries": libraries, "options": options, "storage": storage, "invalidator": invalidator})
        return PipelineResult(snapshot=RunSnapshot(cdn_version=options.cdn_version, libraries=()))

    monkeypatch.setattr(cli, "run_pipeline", fake_run_pipeline)
    return calls


def test_dry_run_wires_pipeline(config_path: Path, recorded: list[dict], monkeypatch: pytest.MonkeyPatch) -> None:
    """設定からライブラリとオプションを組み立ててパイプラインを呼ぶこと."""
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)

    exit_code = cli.main(["--config", str(config_path), "--dry-run", "--force"])

    assert exit_code == 0
    call = recorded[0]
    assert [lib.id for lib in call["libraries"]] == ["demo"]
    assert call["libraries"][0].provider.source == "github:example-org/demo"
    assert call["options"].dry_run
    assert call["options"].force
    assert call["options"].content_dir == config_path.parent.resolve() / "content"
    assert call["storage"] is not None
    assert call["invalidator"] is None


def test_missing_token_fails(config_path: Path, recorded: list[dict], monkeypatch: pytest.MonkeyPatch) -> None:
    """公開時にトークンが無ければ終了コード 1 になること."""
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)

    assert cli.main(["--config", str(config_path)]) == 1
    assert recorded == []


def test_stage_failure_exit_code(config_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_run_pipeline(*args, **kwargs):
        raise StagingError("demo", "1.0.0", "snapshot unavailable")

    monkeypatch.setattr(cli, "run_pipeline", failing_run_pipeline)
    monkeypatch.setenv("GITHUB_TOKEN", "token")

    assert cli.main(["--config", str(config_path), "--verbose"]) == 1


def test_missing_config(tmp_path: Path) -> None:
    assert cli.main(["--config", str(tmp_path / "missing.yml")]) == 1
