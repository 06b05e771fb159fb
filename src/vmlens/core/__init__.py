"""Core utilities."""

from .config import AppConfig
from .errors import (
    ConfigError,
    LLMError,
    MalformedResponseError,
    NoInstancesError,
    NotFoundError,
    RemoteError,
    RemoteTimeoutError,
    UnavailableError,
    VmLensError,
)

__all__ = [
    "AppConfig",
    "VmLensError",
    "ConfigError",
    "LLMError",
    "UnavailableError",
    "RemoteTimeoutError",
    "NotFoundError",
    "NoInstancesError",
    "MalformedResponseError",
    "RemoteError",
]
