"""Custom exception hierarchy."""


class VmLensError(Exception):
    """Base error."""


class ConfigError(VmLensError):
    """Invalid configuration."""


class UnavailableError(VmLensError):
    """Target process not connected or no execution context found."""


class RemoteTimeoutError(VmLensError, TimeoutError):
    """A single remote call exceeded its time budget."""


class NotFoundError(VmLensError):
    """Handle did not resolve to the expected kind of object."""


class NoInstancesError(NotFoundError):
    """Class currently has no live instances."""


class MalformedResponseError(VmLensError):
    """Protocol response did not have the expected shape."""


class RemoteError(VmLensError):
    """The target answered a request with a JSON-RPC error object."""

    def __init__(self, method: str, code: int | None, message: str, data=None):
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code = code
        self.message = message
        self.data = data


class LLMError(VmLensError):
    """LLM provider request failed or returned an unusable payload."""
