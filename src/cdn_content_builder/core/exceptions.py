"""CDN content builder exceptions.

パイプラインの各ステージで発生する例外クラスを定義します。
ステージ名を保持し、CLI 側でどのステージが失敗したかを報告できるようにする。
"""

from __future__ import annotations


class CdnBuildError(Exception):
    """パイプライン例外の基底クラス.

    Attributes:
        stage: 失敗したステージ名（"resolve", "stage", "commit" など）
    """

    stage = "build"

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        if stage is not None:
            self.stage = stage
        super().__init__(message)


class ConfigError(CdnBuildError):
    """cdn.yml の構造が不正な場合の例外."""

    stage = "config"


class SourceUnavailableError(CdnBuildError):
    """単一バージョンの宣言/スナップショット取得に失敗した例外.

    ランを中断しない。Configuration Loader が該当バージョンを
    skipped / ignored に降格させて回復する。

    Attributes:
        source: ソースロケータ（例: "github:owner/repo"）
        ref: 取得対象の ref
    """

    stage = "resolve"

    def __init__(self, source: str, ref: str, reason: str) -> None:
        self.source = source
        self.ref = ref
        self.reason = reason
        super().__init__(f"Source unavailable: {source}@{ref}: {reason}")


class StagingError(CdnBuildError):
    """更新対象バージョンのコピー/展開に失敗した例外.

    致命的。"after" ハッシュの前にランを中断する。
    正規ツリーの部分的な変更はロールバックしない。

    Attributes:
        library_id: ライブラリID
        version: バージョン名
    """

    stage = "stage"

    def __init__(self, library_id: str, version: str, reason: str) -> None:
        self.library_id = library_id
        self.version = version
        self.reason = reason
        super().__init__(f"Staging failed for {library_id}@{version}: {reason}")


class PublishError(CdnBuildError):
    """公開バックエンドとの通信に失敗した例外."""

    stage = "commit"


class TransactionConflictError(PublishError):
    """prepare 後に公開ブランチの ref が移動していた例外.

    自動リトライはしない。トランザクションを最初から再計算するのが安全な回復方法。

    Attributes:
        branch: 公開ブランチ名
        expected: prepare 時点の commit SHA
        actual: commit 時点の commit SHA
    """

    def __init__(self, branch: str, expected: str, actual: str) -> None:
        self.branch = branch
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Publish ref '{branch}' moved from {expected[:8]} to {actual[:8]} since the transaction was prepared"
        )


class InvalidationError(CdnBuildError):
    """エッジキャッシュのパージに失敗した例外.

    コミット済みの公開はロールバックしない（TTL で自然回復する）。
    """

    stage = "invalidate"
