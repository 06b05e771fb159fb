"""Source resolution and file caching."""

from .cache import SourceCache
from .resolver import SourceResolver, normalize_source_path

__all__ = ["SourceCache", "SourceResolver", "normalize_source_path"]
