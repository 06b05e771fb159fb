"""Readers for VM service response objects.

Refs carry an ``@`` prefixed type (``@Class``, ``@Function``, ``@Instance``);
full objects drop it (``Class``, ``Function``, ``Script``).
"""

from __future__ import annotations

import bisect
from typing import Any, Optional

Obj = dict[str, Any]


def ref_type(obj: Optional[Obj]) -> str:
    if not isinstance(obj, dict):
        return ""
    return str(obj.get("type", ""))


def bare_type(obj: Optional[Obj]) -> str:
    return ref_type(obj).lstrip("@")


def is_class(obj: Optional[Obj]) -> bool:
    return bare_type(obj) == "Class"


def is_function(obj: Optional[Obj]) -> bool:
    return bare_type(obj) == "Function"


def is_script(obj: Optional[Obj]) -> bool:
    return bare_type(obj) == "Script"


def is_sentinel(obj: Optional[Obj]) -> bool:
    return bare_type(obj) == "Sentinel"


def library_uri_of_owner(owner: Optional[Obj]) -> Optional[str]:
    """Library URI of a function owner (a class ref or a library ref)."""
    kind = bare_type(owner)
    if kind == "Class":
        return (owner.get("library") or {}).get("uri")
    if kind == "Library":
        return owner.get("uri")
    return None


def class_name_of_owner(owner: Optional[Obj]) -> Optional[str]:
    if bare_type(owner) == "Class":
        return owner.get("name")
    return None


def script_ref_of(obj: Obj) -> Optional[Obj]:
    location = obj.get("location") or {}
    script = location.get("script")
    return script if isinstance(script, dict) else None


def line_for_token_pos(script: Obj, token_pos: Optional[int]) -> Optional[int]:
    """Map a token position to a 1-based line via the script's tokenPosTable.

    Each table row is ``[line, tokenPos, column, tokenPos, column, ...]``.
    """
    if token_pos is None:
        return None
    table = script.get("tokenPosTable") or []
    starts: list[tuple[int, int]] = []
    for row in table:
        if not row:
            continue
        line = row[0]
        for i in range(1, len(row), 2):
            starts.append((row[i], line))
            if row[i] == token_pos:
                return line
    if not starts:
        return None
    starts.sort()
    idx = bisect.bisect_right(starts, (token_pos, float("inf"))) - 1
    if idx < 0:
        return None
    return starts[idx][1]


def isolate_refs(vm: Obj) -> list[Obj]:
    return [iso for iso in (vm.get("isolates") or []) if isinstance(iso, dict)]
