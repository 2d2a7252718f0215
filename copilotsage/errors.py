"""Error types reported back to the owner loop instead of aborting the process."""


class CopilotError(Exception):
    """Base class for reportable CopilotSage errors."""

    kind: str = "error"
    title: str = "ERROR"

    def is_retryable(self) -> bool:
        """Override in subclasses to control retry behavior."""
        return False


class ConfigError(CopilotError):
    """Credential file missing, unreadable or malformed (non-retryable)."""

    kind = "config"
    title = "CREDENTIAL ERROR"

    def __init__(self, message: str, path: str = ""):
        msg = f"Credential error: {message}"
        if path:
            msg += f" ({path})"
        super().__init__(msg)
        self.path = path


class AuthError(CopilotError):
    """Identity endpoint refused or failed to issue a token (retryable)."""

    kind = "auth"
    title = "AUTH ERROR"

    def __init__(self, message: str, status_code: int | None = None):
        msg = f"Token request failed: {message}"
        if status_code is not None:
            msg += f" (HTTP {status_code})"
        super().__init__(msg)
        self.status_code = status_code

    def is_retryable(self) -> bool:
        return True


class TransportError(CopilotError):
    """Connection failure or timeout talking to the completion endpoint (retryable)."""

    kind = "transport"
    title = "API ERROR"

    def __init__(self, message: str):
        super().__init__(f"Network error: {message}")

    def is_retryable(self) -> bool:
        return True
