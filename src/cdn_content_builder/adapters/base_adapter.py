"""外部コラボレータのインターフェース（基底クラス）.

ソースホスティング、公開トランザクション、オブジェクトストレージ同期、
エッジキャッシュ無効化をそれぞれ抽象基底クラスとして定義します。
パイプラインはこのインターフェースだけに依存する。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..core.models import RefListing, ResourceDeclaration

MODE_FILE = "100644"
MODE_EXECUTABLE = "100755"
MODE_SYMLINK = "120000"
MODE_TREE = "040000"


@dataclass(frozen=True)
class TreeEntry:
    """git ツリーの 1 エントリ（path はツリー内の相対パス）."""

    path: str
    mode: str
    type: str
    sha: str


@dataclass(frozen=True)
class CommitInfo:
    sha: str
    tree_sha: str


class SourceProvider(ABC):
    """ソース種別（例: github）毎の ref 列挙・宣言取得・スナップショット取得.

    宣言やスナップショットの取得失敗は SourceUnavailableError で通知する。
    """

    @property
    @abstractmethod
    def source(self) -> str:
        """ソースロケータ（例: "github:owner/repo"）."""
        ...

    @abstractmethod
    def list_refs(self) -> RefListing:
        """タグとブランチの一覧を返す."""
        ...

    @abstractmethod
    def fetch_declaration(self, ref: str) -> ResourceDeclaration:
        """ref 時点のリソース宣言を取得する.

        Raises:
            SourceUnavailableError: 宣言が存在しない/取得できない/不正な場合
        """
        ...

    @abstractmethod
    def download_snapshot(self, ref: str, dest_dir: Path) -> None:
        """ref 時点のソース一式を dest_dir に展開する.

        Raises:
            SourceUnavailableError: ダウンロード/展開に失敗した場合
        """
        ...

    @abstractmethod
    def view_url(self, ref: str) -> str: ...


class PublishBackend(ABC):
    """公開ブランチを持つ git ストアへのトランザクション操作."""

    @abstractmethod
    def get_ref(self, branch: str) -> str:
        """ブランチ先頭の commit SHA を返す."""
        ...

    @abstractmethod
    def get_commit(self, sha: str) -> CommitInfo: ...

    @abstractmethod
    def get_tree(self, sha: str) -> list[TreeEntry]:
        """ツリー直下のエントリ一覧（非再帰）."""
        ...

    @abstractmethod
    def create_blob(self, content: bytes, mode: str) -> str: ...

    @abstractmethod
    def create_tree(self, entries: Sequence[TreeEntry]) -> str: ...

    @abstractmethod
    def create_commit(self, tree_sha: str, parents: Sequence[str], message: str) -> str: ...

    @abstractmethod
    def update_ref(self, branch: str, sha: str) -> None:
        """ブランチを sha へ進める（非強制）.

        Raises:
            TransactionConflictError: fast-forward できない場合
        """
        ...

    @abstractmethod
    def download_content(self, branch: str, dest_dir: Path) -> None:
        """公開ブランチの内容を dest_dir に展開する（正規ツリーの再同期用）."""
        ...


class StorageSync(ABC):
    """オブジェクトストレージへのディレクトリ同期."""

    @abstractmethod
    def sync_directory(self, local_dir: Path) -> bool:
        """local_dir をストレージへ同期する.

        Returns:
            リモートから削除されたファイルがあれば True
        """
        ...


class CacheInvalidationBackend(ABC):
    """エッジキャッシュのパージ."""

    @abstractmethod
    def invalidate(self, paths: Sequence[str]) -> str:
        """paths をパージし、無効化 ID を返す.

        Raises:
            InvalidationError: パージ要求が失敗した場合
        """
        ...
