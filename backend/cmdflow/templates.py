# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Template substitution for command strings and node config.

Supported placeholders:
    {{input}}              - the whole upstream value, stringified
    {{input.a.b}}          - dotted path into the upstream value
    {{input.items[0].id}}  - bracketed list indices

Everything here is a pure function of (template, value).
"""

import json
import re
from typing import Any, Dict, Optional

PLACEHOLDER_RE = re.compile(r"\{\{\s*input(?:\.([^}]+?))?\s*\}\}")
_PATH_SPLIT_RE = re.compile(r"\.|\[(\d+)\]")


def resolve_path(value: Any, path: Optional[str]) -> Any:
    """
    Walk a dot/bracket path into nested dicts and lists.

    Returns None when any segment is missing.

    Examples:
        >>> resolve_path({"data": {"items": [{"id": 7}]}}, "data.items[0].id")
        7
        >>> resolve_path([1, 2, 3], "length")
        3
    """
    if not path or value is None:
        return value

    parts = [p for p in _PATH_SPLIT_RE.split(path) if p]
    cursor = value
    for part in parts:
        if cursor is None:
            return None
        if part.isdigit():
            index = int(part)
            if isinstance(cursor, (list, tuple)) and index < len(cursor):
                cursor = cursor[index]
            elif isinstance(cursor, dict):
                cursor = cursor.get(part)
            else:
                return None
        elif isinstance(cursor, dict):
            cursor = cursor.get(part)
        elif part == "length" and isinstance(cursor, (list, tuple, str)):
            cursor = len(cursor)
        else:
            return None
    return cursor


def stringify(value: Any) -> str:
    """Render a value for embedding in text"""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, default=str)


def has_placeholder(text: Any) -> bool:
    return isinstance(text, str) and PLACEHOLDER_RE.search(text) is not None


def render_template(text: Any, value: Any) -> Any:
    """Substitute every input placeholder in text; non-strings pass through"""
    if not isinstance(text, str):
        return text

    def replace(match: re.Match) -> str:
        path = match.group(1)
        if not path:
            return stringify(value)
        return stringify(resolve_path(value, path.strip()))

    return PLACEHOLDER_RE.sub(replace, text)


def render_mapping(mapping: Optional[Dict[str, Any]], value: Any) -> Dict[str, Any]:
    """Render keys and string values of a flat mapping"""
    return {
        render_template(k, value): render_template(v, value)
        for k, v in (mapping or {}).items()
    }
