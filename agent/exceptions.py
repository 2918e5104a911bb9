"""Custom exceptions for the Ollama agent loop."""


class OllamaConnectionError(Exception):
    """Raised when the Ollama server cannot be reached (probe, listing, show)."""
    pass


class OllamaModelError(Exception):
    """Raised when the requested model is not available."""
    pass


class ChatError(Exception):
    """Base class for failures of a single chat pass."""
    pass


class RequestFailed(ChatError):
    """Raised when /api/chat answers with a non-success status or the connection drops."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class StreamUnavailable(ChatError):
    """Raised when a successful chat response carries no readable body."""

    def __init__(self, message: str = "Response stream not available"):
        super().__init__(message)


class ChatCancelled(Exception):
    """Raised when the run's cancellation token fires. Not reported as an error."""
    pass


class ToolExecutionError(Exception):
    """Raised when a tool fails during execution."""
    pass


class SessionBusyError(Exception):
    """Raised when a run is requested while another run owns the session."""
    pass


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass
