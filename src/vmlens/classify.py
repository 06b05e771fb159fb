"""User-code vs framework classification heuristics.

These are naming heuristics over library URIs; they carry no guarantee under
adversarial naming.
"""

from __future__ import annotations

from typing import Optional

CORE_LIBRARY_PREFIX = "dart:"

# Libraries never treated as application code.
FRAMEWORK_LIBRARY_MARKERS = (
    "package:flutter/",
    "package:flutter_",
    "package:cupertino_",
    "package:devtools",
    "package:vm_service",
)

# Third-party dependencies skipped when scanning scripts for usages.
DEPENDENCY_PACKAGE_PREFIXES = (
    "package:flutter/",
    "package:cupertino_icons/",
    "package:flutter_riverpod/",
    "package:riverpod/",
    "package:shared_preferences/",
    "package:http/",
    "package:fl_chart/",
    "package:devtools_extensions/",
    "package:devtools_app_shared/",
    "package:vm_service/",
    "package:dtd/",
    "package:json_annotation/",
    "package:url_launcher",
    "package:material_color_utilities/",
    "package:collection/",
    "package:meta/",
    "package:vector_math/",
    "package:path/",
    "package:async/",
    "package:characters/",
    "package:typed_data/",
    "package:intl/",
    "package:provider/",
    "package:bloc/",
    "package:flutter_bloc/",
    "package:get/",
    "package:dio/",
    "package:retrofit/",
    "package:freezed/",
    "package:equatable/",
    "package:dartz/",
)

INTERNAL_TYPE_NAMES = frozenset(
    {
        # core value types
        "String", "List", "Map", "Set", "int", "double", "bool",
        "Object", "Type", "Null", "Function", "Symbol",
        "Future", "Stream", "Completer", "Timer",
        # VM internals
        "Instructions", "Code", "Context", "Closure",
        "TypeArguments", "TypeParameters", "TypeParameter",
        "OneByteString", "TwoByteString", "Uint8List",
        "ICData", "PcDescriptors", "ObjectPool", "CodeSourceMap",
        "Class", "Library", "Script", "Field", "LocalVarDescriptors",
        "ExceptionHandlers", "UnlinkedCall", "MegamorphicCache",
        "SubtypeTestCache", "LoadingUnit", "WeakProperty", "WeakReference",
        "FinalizerEntry", "MirrorReference", "UserTag",
    }
)


def package_name(uri: str) -> Optional[str]:
    """``package:foo/bar.dart`` -> ``foo``."""
    if not uri.startswith("package:"):
        return None
    rest = uri[len("package:"):]
    return rest.split("/", 1)[0]


def is_user_library(uri: Optional[str]) -> bool:
    if not uri:
        return False
    if uri.startswith(CORE_LIBRARY_PREFIX):
        return False
    if any(marker in uri for marker in FRAMEWORK_LIBRARY_MARKERS):
        return False
    if uri.startswith("package:"):
        name = package_name(uri) or ""
        return bool(name) and not name.startswith("_")
    return uri.startswith("file://")


def is_user_class(class_name: str, uri: Optional[str]) -> bool:
    if class_name.startswith("_"):
        return False
    if not is_user_library(uri):
        return False
    # file:// libraries count as user functions but not as user classes
    if not uri or not uri.startswith("package:"):
        return False
    return class_name not in INTERNAL_TYPE_NAMES


def is_dependency_package(uri: str) -> bool:
    return any(uri.startswith(prefix) for prefix in DEPENDENCY_PACKAGE_PREFIXES)


def is_user_script(uri: str) -> bool:
    """Scripts worth scanning for class usages."""
    if not uri or uri.startswith(CORE_LIBRARY_PREFIX) or is_dependency_package(uri):
        return False
    return uri.startswith("package:") or (uri.startswith("file:") and "/lib/" in uri)
