"""リソース宣言（.cdn-config.yml）の解析.

使用例:
    >>> declaration = parse_declaration(text)
    >>> [m.src for m in declaration.mappings]
    ['dist/**']
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import yaml

from .models import ResourceDeclaration, ResourceMapping

DECLARATION_FILE = ".cdn-config.yml"


def _as_optional_str(value: Any, key: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ValueError(f"'{key}' must be a string, got {type(value).__name__}")


def _parse_mapping(entry: Any) -> ResourceMapping:
    if isinstance(entry, str):
        return ResourceMapping(src=entry)
    if isinstance(entry, Mapping):
        src = entry.get("src")
        if not isinstance(src, str) or not src:
            raise ValueError(f"Resource entry requires a 'src' string: {entry!r}")
        return ResourceMapping(src=src, dest=_as_optional_str(entry.get("dest"), "dest"))
    raise ValueError(f"Invalid type for resource entry: {type(entry).__name__}")


def declaration_from_dict(data: Any) -> ResourceDeclaration:
    """読み込み済みの YAML 構造からリソース宣言を作る.

    Args:
        data: yaml.safe_load の結果

    Returns:
        ResourceDeclaration

    Raises:
        ValueError: 構造が不正な場合
    """
    if not isinstance(data, Mapping):
        raise ValueError(f"{DECLARATION_FILE} must contain a mapping at the root")

    resources = data.get("resources")
    if resources is None:
        raise ValueError(f"{DECLARATION_FILE} does not declare any resources")
    if isinstance(resources, (str, Mapping)):
        resources = [resources]
    if not isinstance(resources, list):
        raise ValueError("'resources' must be a list")

    entrypoints_raw = data.get("entrypoints") or {}
    if not isinstance(entrypoints_raw, Mapping):
        raise ValueError("'entrypoints' must be a mapping of path -> description")
    entrypoints = {
        str(path).lstrip("/"): _as_optional_str(description, f"entrypoints.{path}")
        for path, description in entrypoints_raw.items()
    }

    return ResourceDeclaration(
        name=_as_optional_str(data.get("name"), "name"),
        description=_as_optional_str(data.get("description"), "description"),
        docs=_as_optional_str(data.get("docs"), "docs"),
        mappings=tuple(_parse_mapping(entry) for entry in resources),
        entrypoints=entrypoints,
    )


def parse_declaration(text: str) -> ResourceDeclaration:
    """YAML テキストをリソース宣言として解析する.

    Raises:
        ValueError: YAML として解釈できない、または構造が不正な場合
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {DECLARATION_FILE}: {exc}") from exc
    return declaration_from_dict(data)
