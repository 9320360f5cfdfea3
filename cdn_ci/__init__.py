"""cdn_ci: CI 統合レイヤ.

cdn.yml の読み込みと、公開パイプラインのオーケストレーションを提供する。
"""

__version__ = "0.1.0"

from cdn_ci.config import CdnConfig, LibraryConfig, load_cdn_config  # noqa: E402

__all__ = [
    "CdnConfig",
    "LibraryConfig",
    "load_cdn_config",
]
