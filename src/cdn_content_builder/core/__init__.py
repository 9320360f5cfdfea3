"""公開パイプラインのコア処理群.

- バージョン解決（ref → バージョン、エイリアス計算）
- ライブラリ設定の読み込み（ignored / skipped / publishable の判定）
- 変更検出（ステージング前後のツリーハッシュ比較）
"""

from .changes import classify_changes, hash_tree
from .configuration import load_library
from .versions import compute_aliases, normalize_ref_name, refs_to_versions

__all__ = [
    "normalize_ref_name",
    "refs_to_versions",
    "compute_aliases",
    "load_library",
    "hash_tree",
    "classify_changes",
]
