from .access import DirEntry, FileAccess, LocalFileAccess

__all__ = ["DirEntry", "FileAccess", "LocalFileAccess"]
