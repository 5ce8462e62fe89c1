class ProviderError(Exception):
    """Base class for provider-level failures."""

class ProviderClientError(ProviderError):
    """
    Non-retryable: caller/config issue (missing API key, unknown model,
    invalid request). The fix is to change input/config, not to retry.
    """

class ProviderTransientError(ProviderError):
    """
    Retryable: rate limits, timeouts, network hiccups, 5xx, etc.
    """

class ProviderConnectionError(ProviderError):
    """
    The HTTP handshake for a stream could not be established.
    `status_code` is None when no response was received at all.
    """

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable

class TransportDisconnect(ProviderTransientError):
    """An established stream dropped and could not be re-established."""

class DecodeError(ProviderError):
    """A single wire event could not be parsed into the backend's event shape."""

class CleanEof(ProviderError):
    """The server closed the stream normally. Not a failure."""

class RenderError(Exception):
    """The highlighter failed to render the accumulated reply."""
