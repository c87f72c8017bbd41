"""Errors raised by model services.

Every failure of the external model process surfaces as one of these.
The message text carries a kind prefix so a reader of the chat log can tell
a backend failure from a malformed reply without a structured error code.
"""


class ModelServiceError(Exception):
    """Base class for model service errors."""


class ModelStartError(ModelServiceError):
    """The model process could not be started or never became ready."""

    def __init__(self, message: str):
        super().__init__(f"Model start failed: {message}")


class BackendUnavailableError(ModelServiceError):
    """The model server could not be reached."""

    def __init__(self, message: str):
        super().__init__(f"Backend unavailable: {message}")


class BackendError(ModelServiceError):
    """The model server answered with an error status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(f"Backend error: {message}")
        self.status_code = status_code


class MalformedResponseError(ModelServiceError):
    """The model server answered, but not with a usable completion."""

    def __init__(self, message: str):
        super().__init__(f"Malformed response: {message}")


class CompletionTimeoutError(ModelServiceError):
    """No reply arrived within the allowed time."""

    def __init__(self, message: str):
        super().__init__(f"Timed out: {message}")


class InvalidPromptError(ModelServiceError):
    """The prompt cannot be sent (empty or whitespace-only)."""

    def __init__(self, message: str):
        super().__init__(f"Invalid prompt: {message}")
