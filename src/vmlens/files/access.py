"""Workspace file access used when embedded source is unavailable."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirEntry:
    name: str
    path: str
    is_dir: bool


class FileAccess(Protocol):
    async def workspace_roots(self) -> list[str]: ...

    async def list_directory(self, path: str) -> list[DirEntry]: ...

    async def read_file(self, path: str) -> Optional[str]: ...


class LocalFileAccess:
    """FileAccess over the local filesystem, rooted at a workspace directory.

    Relative paths resolve against the root; blocking IO runs in a worker thread.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        if path.startswith("file://"):
            path = path[len("file://"):]
        p = Path(path)
        return p if p.is_absolute() else self.root / p

    async def workspace_roots(self) -> list[str]:
        return [str(self.root)]

    async def list_directory(self, path: str) -> list[DirEntry]:
        target = self._resolve(path)

        def _list() -> list[DirEntry]:
            if not target.is_dir():
                return []
            entries = []
            for child in sorted(target.iterdir()):
                rel = child.relative_to(self.root) if child.is_relative_to(self.root) else child
                entries.append(DirEntry(name=child.name, path=str(rel), is_dir=child.is_dir()))
            return entries

        return await asyncio.to_thread(_list)

    async def read_file(self, path: str) -> Optional[str]:
        target = self._resolve(path)

        def _read() -> Optional[str]:
            if not target.is_file():
                return None
            return target.read_text(encoding="utf-8", errors="ignore")

        try:
            return await asyncio.to_thread(_read)
        except OSError as exc:
            logger.debug("Could not read %s: %s", target, exc)
            return None
