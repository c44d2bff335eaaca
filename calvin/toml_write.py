from __future__ import annotations

"""Small TOML writer helpers.

Calvin reads TOML with stdlib `tomllib` but has to emit the lockfile itself.
Writing is deterministic and minimal: we only implement the subset of TOML
that the lockfile uses (integers, strings, dotted table headers).
"""

import json
import re
from typing import Any, Mapping


_BARE_KEY = re.compile(r"^[A-Za-z0-9_-]+$")


def toml_basic_string(s: str) -> str:
    """Quote a string as a TOML basic string.

    We use JSON encoding for predictable escaping + double quotes.
    """

    if not isinstance(s, str):
        raise TypeError("toml_basic_string: expected str")
    return json.dumps(s, ensure_ascii=False)


def toml_int(v: int) -> str:
    if not isinstance(v, int) or isinstance(v, bool):
        raise TypeError("toml_int: expected int")
    return str(v)


def toml_value(v: Any) -> str:
    if isinstance(v, int) and not isinstance(v, bool):
        return toml_int(v)
    if isinstance(v, str):
        return toml_basic_string(v)
    raise TypeError(f"toml_value: unsupported type: {type(v).__name__}")


def toml_key(k: str) -> str:
    """Emit a bare key when possible, otherwise a quoted one."""

    if not isinstance(k, str) or not k:
        raise TypeError("toml_key: keys must be non-empty strings")
    return k if _BARE_KEY.match(k) else toml_basic_string(k)


def toml_table_header(*parts: str) -> str:
    return "[" + ".".join(toml_key(p) for p in parts) + "]"


def toml_assignments(tbl: Mapping[str, Any]) -> list[str]:
    """`key = value` lines in sorted key order, skipping None values."""

    lines: list[str] = []
    for k in sorted(tbl.keys()):
        v = tbl[k]
        if v is None:
            continue
        lines.append(f"{toml_key(k)} = {toml_value(v)}")
    return lines
