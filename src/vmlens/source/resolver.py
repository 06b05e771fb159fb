"""Source resolution for classes and functions.

Three tiers, in order: the line the runtime reports, a textual search of
the source the runtime embeds, and a workspace read through ``FileAccess``.
Every remote call runs under the configured timeout; a timeout degrades to
a path-only ``CodeLocation`` (or ``None`` when even the path is unknown).
"""

from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Optional, TypeVar

from vmlens.classify import is_user_script
from vmlens.core.config import SourceConfig
from vmlens.core.errors import VmLensError
from vmlens.files.access import FileAccess
from vmlens.models import ClassUsage, CodeLocation
from vmlens.protocol.client import ProtocolClient, call_with_timeout
from vmlens.protocol.shapes import (
    class_name_of_owner,
    is_class,
    is_function,
    is_script,
    line_for_token_pos,
    script_ref_of,
)

from .cache import SourceCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLASS_SNIPPET_LINES = 15
FUNCTION_SNIPPET_LINES = 30


def normalize_source_path(uri: str) -> str:
    """``package:app/x/y.dart`` -> ``lib/x/y.dart``; ``file:///a/b`` -> ``/a/b``."""
    if uri.startswith("package:"):
        parts = uri.split("/", 1)
        if len(parts) == 2:
            return f"lib/{parts[1]}"
        return uri
    if uri.startswith("file://"):
        return uri[len("file://"):]
    return uri


def extract_snippet(source: str, line_number: int, num_lines: int) -> str:
    lines = source.split("\n")
    start = max(0, min(line_number - 1, len(lines) - 1))
    end = min(start + num_lines, len(lines))
    return "\n".join(lines[start:end])


def extract_context(lines: list[str], index: int, before: int, after: int) -> str:
    start = max(0, index - before)
    end = min(len(lines), index + after + 1)
    return "\n".join(lines[start:end])


def find_class_line(source: str, class_name: str) -> Optional[int]:
    markers = (f"class {class_name} ", f"class {class_name}{{", f"class {class_name}<")
    for i, line in enumerate(source.split("\n")):
        if any(m in line for m in markers):
            return i + 1
    return None


def find_function_line(source: str, function_name: str) -> Optional[int]:
    """First line that looks like a definition of ``function_name``."""
    name = function_name.split(".")[-1]
    pattern = re.compile(rf"(^|[\s>]){re.escape(name)}\s*(<[^>]*>)?\s*\(")
    for i, line in enumerate(source.split("\n")):
        stripped = line.strip()
        if not stripped or stripped.startswith("//"):
            continue
        if pattern.search(line) and not stripped.endswith(";") and not stripped.startswith("return "):
            return i + 1
    return None


def find_usage_context(source: str, class_name: str) -> Optional[str]:
    """Context around the first collection field holding ``class_name``."""
    lines = source.split("\n")
    for i, line in enumerate(lines):
        if f"List<{class_name}>" in line or ("Map<" in line and class_name in line):
            start = max(0, min(i - 5, len(lines) - 1))
            end = min(i + 20, len(lines))
            return "\n".join(lines[start:end])
    return None


def find_usages_in_source(source: str, class_name: str, file_path: str) -> list[ClassUsage]:
    usages: list[ClassUsage] = []
    lines = source.split("\n")
    for i, line in enumerate(lines):
        stripped = line.lstrip()
        if class_name not in line:
            continue
        if f"class {class_name}" in line or stripped.startswith("//") or stripped.startswith("import "):
            continue
        usages.append(
            ClassUsage(
                file_path=file_path,
                line_number=i + 1,
                line_content=line.strip(),
                context=extract_context(lines, i, 5, 10),
            )
        )
    return usages


class SourceResolver:
    def __init__(
        self,
        client: ProtocolClient,
        config: Optional[SourceConfig] = None,
        file_access: Optional[FileAccess] = None,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.config = config or SourceConfig()
        self.file_access = file_access
        self.cache = SourceCache(self.config.cache_size)
        self.log = log or logger

    async def _call(self, awaitable: Awaitable[T], what: str) -> T:
        return await call_with_timeout(awaitable, self.config.timeout_sec, what)

    async def _load_script(self, isolate_id: str, script_ref: dict[str, Any]) -> Optional[dict[str, Any]]:
        script_id = script_ref.get("id")
        if not script_id:
            return None
        script = await self._call(self.client.get_object(isolate_id, script_id), "getObject(script)")
        return script if is_script(script) else None

    async def _source_for(
        self, uri: str, script: Optional[dict[str, Any]]
    ) -> Optional[str]:
        source = script.get("source") if script else None
        if source is not None:
            await self.cache.put(normalize_source_path(uri), source)
            return source
        self.log.debug("No embedded source for %s, trying workspace", uri)
        return await self._read_workspace(uri)

    async def _read_workspace(self, uri: str) -> Optional[str]:
        key = normalize_source_path(uri)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached
        if self.file_access is None:
            return None
        try:
            text = await self._call(self.file_access.read_file(key), f"read {key}")
        except VmLensError as exc:
            self.log.debug("Workspace read failed for %s: %s", key, exc)
            return None
        if text is not None:
            await self.cache.put(key, text)
        return text

    async def resolve_class(self, isolate_id: str, class_id: str) -> Optional[CodeLocation]:
        try:
            obj = await self._call(self.client.get_object(isolate_id, class_id), "getObject(class)")
        except VmLensError as exc:
            self.log.warning("resolve_class: lookup of %s failed: %s", class_id, exc)
            return None
        if not is_class(obj):
            self.log.debug("resolve_class: %s is not a class (%s)", class_id, obj.get("type"))
            return None
        script_ref = script_ref_of(obj)
        uri = (script_ref or {}).get("uri")
        if not uri:
            self.log.debug("resolve_class: no script for %s", obj.get("name"))
            return None

        class_name = obj.get("name", "")
        location = obj.get("location") or {}
        line = location.get("line")
        try:
            script = await self._load_script(isolate_id, script_ref)
        except VmLensError as exc:
            self.log.warning("resolve_class: script load for %s failed: %s", class_name, exc)
            source = await self._read_workspace(uri)
            script = None
        else:
            source = await self._source_for(uri, script)

        if line is None and script is not None:
            line = line_for_token_pos(script, location.get("tokenPos"))
        if not (line and line > 1) and source:
            line = find_class_line(source, class_name) or (line if line and line > 1 else None)

        snippet = extract_snippet(source, line, CLASS_SNIPPET_LINES) if source and line else None
        usage_context = find_usage_context(source, class_name) if source else None
        self.log.debug("resolve_class: %s -> %s:%s snippet=%s", class_name, uri, line, snippet is not None)
        return CodeLocation(
            file_path=uri,
            line_number=line,
            class_name=class_name,
            code_snippet=snippet,
            usage_context=usage_context,
        )

    async def resolve_function(self, isolate_id: str, function_id: str) -> Optional[CodeLocation]:
        try:
            obj = await self._call(
                self.client.get_object(isolate_id, function_id), "getObject(function)"
            )
        except VmLensError as exc:
            self.log.warning("resolve_function: lookup of %s failed: %s", function_id, exc)
            return None
        if not is_function(obj):
            return None
        script_ref = script_ref_of(obj)
        uri = (script_ref or {}).get("uri")
        if not uri:
            return None

        name = obj.get("name", "")
        owner_name = class_name_of_owner(obj.get("owner"))
        location = obj.get("location") or {}
        line = location.get("line")
        try:
            script = await self._load_script(isolate_id, script_ref)
        except VmLensError as exc:
            self.log.warning("resolve_function: script load for %s failed: %s", name, exc)
            script = None
            source = await self._read_workspace(uri)
        else:
            source = await self._source_for(uri, script)

        if line is None and script is not None:
            line = line_for_token_pos(script, location.get("tokenPos"))
        if not (line and line > 1) and source:
            line = find_function_line(source, name) or (line if line and line > 1 else None)

        snippet = extract_snippet(source, line, FUNCTION_SNIPPET_LINES) if source and line else None
        return CodeLocation(
            file_path=uri,
            line_number=line,
            function_name=name,
            class_name=owner_name,
            code_snippet=snippet,
        )

    async def get_file_source(self, uri: str, isolate_id: Optional[str] = None) -> Optional[str]:
        """Cache, then workspace, then a scan of the runtime's scripts."""
        source = await self._read_workspace(uri)
        if source is not None or isolate_id is None:
            return source
        key = normalize_source_path(uri)
        try:
            scripts = await self._call(self.client.get_scripts(isolate_id), "getScripts")
            for ref in scripts.get("scripts") or []:
                script_uri = ref.get("uri") or ""
                if uri not in script_uri and key not in script_uri:
                    continue
                script = await self._load_script(isolate_id, ref)
                if script and script.get("source") is not None:
                    await self.cache.put(key, script["source"])
                    return script["source"]
        except VmLensError as exc:
            self.log.debug("get_file_source: script scan for %s failed: %s", uri, exc)
        return None

    async def list_source_files(self, directory: str = "lib") -> list[str]:
        """Dart files under ``directory``, bounded by depth and count."""
        if self.file_access is None:
            return []
        found: list[str] = []
        pending: list[tuple[str, int]] = [(directory, 0)]
        skip = set(self.config.skip_directories)
        while pending and len(found) < self.config.max_files:
            current, depth = pending.pop()
            if depth > self.config.max_directory_depth:
                continue
            try:
                entries = await self._call(self.file_access.list_directory(current), f"list {current}")
            except (VmLensError, OSError) as exc:
                self.log.debug("Could not list %s: %s", current, exc)
                continue
            for entry in entries:
                if entry.name in skip:
                    continue
                if entry.is_dir:
                    pending.append((entry.path, depth + 1))
                elif entry.name.endswith(".dart"):
                    found.append(entry.path)
                    if len(found) >= self.config.max_files:
                        break
        return sorted(found)

    async def find_class_usages(
        self, class_name: str, isolate_id: Optional[str] = None, limit: Optional[int] = None
    ) -> list[ClassUsage]:
        usages: list[ClassUsage] = []
        files = await self.list_source_files("lib")
        if files:
            for path in files:
                source = await self._read_workspace(path)
                if source is None:
                    continue
                usages.extend(find_usages_in_source(source, class_name, path))
        elif isolate_id is not None:
            self.log.debug("No workspace files, scanning runtime scripts for %s", class_name)
            usages.extend(await self._usages_from_scripts(class_name, isolate_id))
        self.log.debug("find_class_usages: %s -> %d usages", class_name, len(usages))
        return usages[:limit] if limit is not None else usages

    async def _usages_from_scripts(self, class_name: str, isolate_id: str) -> list[ClassUsage]:
        usages: list[ClassUsage] = []
        try:
            scripts = await self._call(self.client.get_scripts(isolate_id), "getScripts")
        except VmLensError as exc:
            self.log.debug("Script listing failed: %s", exc)
            return usages
        refs = [r for r in scripts.get("scripts") or [] if is_user_script(r.get("uri") or "")]
        searched = 0
        for ref in refs[: self.config.max_scripts_to_search]:
            uri = ref.get("uri") or ""
            try:
                script = await self._load_script(isolate_id, ref)
            except VmLensError as exc:
                self.log.debug("Could not read script %s: %s", uri, exc)
                continue
            source = script.get("source") if script else None
            if source is None:
                continue
            searched += 1
            await self.cache.put(normalize_source_path(uri), source)
            usages.extend(find_usages_in_source(source, class_name, uri))
        self.log.debug("Searched %d of %d user scripts", searched, len(refs))
        return usages
