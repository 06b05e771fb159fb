"""Retention-path reconstruction from a flat retaining-path response.

The remote walk is bounded by the ``limit`` passed to the runtime; elements
arrive ordered from the target object towards a GC root, so nothing is
traversed locally and cycles never arise here.

Root classification is a naming heuristic over the last element, not proof
of the actual root kind.
"""

from __future__ import annotations

from typing import Any, Optional

from vmlens.models import RetentionInfo, RetentionStep
from vmlens.protocol.shapes import bare_type

ROOT_WIDGET_TREE = "Widget Tree"
ROOT_STATIC_FIELD = "Static Field"
ROOT_ISOLATE = "Isolate/Process Root"
ROOT_UNKNOWN = "unknown"


def describe_value(value: Optional[dict[str, Any]]) -> tuple[str, Optional[str]]:
    """``(description, class_name)`` of one retaining element's value."""
    kind = bare_type(value)
    if kind == "Instance":
        class_name = (value.get("class") or {}).get("name")
        return class_name or "Instance", class_name
    if kind == "Context":
        return "Closure Context", None
    if kind == "Sentinel":
        return "Sentinel", None
    return "unknown", None


def field_label(element: dict[str, Any]) -> Optional[str]:
    parent_field = element.get("parentField")
    if parent_field is not None:
        if isinstance(parent_field, dict):
            return parent_field.get("name")
        return str(parent_field)
    if element.get("parentListIndex") is not None:
        return f"[{element['parentListIndex']}]"
    key = element.get("parentMapKey")
    if key is not None:
        if bare_type(key) == "Instance":
            label = key.get("valueAsString") or (key.get("class") or {}).get("name")
            return f"[{label}]"
        return "[key]"
    return None


def classify_root(last: RetentionStep) -> str:
    if "State" in last.description:
        return ROOT_WIDGET_TREE
    if last.field_name and last.field_name.startswith("_"):
        return ROOT_STATIC_FIELD
    return ROOT_ISOLATE


def parse_retaining_path(class_name: str, payload: dict[str, Any]) -> RetentionInfo:
    steps: list[RetentionStep] = []
    for element in payload.get("elements") or []:
        description, step_class = describe_value(element.get("value"))
        steps.append(
            RetentionStep(
                description=description,
                field_name=field_label(element),
                class_name=step_class,
            )
        )
    root_type = classify_root(steps[-1]) if steps else ROOT_UNKNOWN
    steps.append(RetentionStep(description=f"GC Root ({root_type})", is_gc_root=True))
    return RetentionInfo(class_name=class_name, path=steps, root_type=root_type)
