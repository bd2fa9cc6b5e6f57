"""
Custom exception classes

Every error carries the HTTP status it should surface with; the handlers in
``app.main`` render them as ``{"error": message}``.
"""


class OrchestratorError(Exception):
    """Base class for errors raised while serving a case command"""
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class RequestValidationFailed(OrchestratorError):
    """Raised when a request body is missing required fields"""
    status_code = 400


class ConfigurationError(OrchestratorError):
    """Raised when a vendor credential or endpoint is not configured"""


class CaseNotFoundError(OrchestratorError):
    """Raised when the case row doesn't exist"""
    def __init__(self, case_id: str | None = None):
        super().__init__("Case not found")
        self.case_id = case_id


class UnsupportedModelError(OrchestratorError):
    """Raised when a case names an AI backend we don't route to"""
    def __init__(self, ai_model: str | None):
        super().__init__(f"Unsupported AI model: {ai_model}")
        self.ai_model = ai_model


class UnsupportedCommandError(OrchestratorError):
    """Raised when a handler is asked for a command it doesn't know"""
    status_code = 400

    def __init__(self, command: str | None, backend: str = ""):
        prefix = f"Unsupported {backend} command" if backend else "Unsupported command"
        super().__init__(f"{prefix}: {command}")
        self.command = command


class RunFailedError(OrchestratorError):
    """Raised when an OpenAI run ends in a terminal status other than completed"""
    def __init__(self, status: str, last_error: str | None = None):
        message = f"OpenAI Assistant run failed with status: {status}"
        if last_error:
            message = f"{message} ({last_error})"
        super().__init__(message)
        self.status = status


class RunTimeoutError(OrchestratorError):
    """Raised when polling a run exceeds its deadline or is cancelled"""
    status_code = 504

    def __init__(self, run_id: str, reason: str = "timed out"):
        super().__init__(f"OpenAI run {run_id} {reason}")
        self.run_id = run_id


class GeminiRetryExhaustedError(OrchestratorError):
    """Raised when Gemini keeps rejecting calls on quota"""
    status_code = 503

    def __init__(self, attempts: int, last_error: str):
        super().__init__(
            f"Gemini API call failed after {attempts} attempts due to rate limiting: {last_error}"
        )
        self.attempts = attempts


class ChatHistoryConflictError(OrchestratorError):
    """Raised when another request appended Gemini turns first"""
    status_code = 409

    def __init__(self, case_id: str):
        super().__init__(
            f"Chat history for case {case_id} was modified by another request. Please retry."
        )
        self.case_id = case_id


class StructuredOutputError(OrchestratorError):
    """Raised when a ```json block is present but unusable"""
    status_code = 422


class StorageDownloadError(OrchestratorError):
    """Raised when an evidence blob can't be read from the bucket"""
    def __init__(self, path: str, reason: str = "Unknown error"):
        super().__init__(f"Failed to download {path}: {reason}")
        self.path = path


class WebSearchError(OrchestratorError):
    """Raised when the web search provider fails"""
    status_code = 502


class GraphStoreError(OrchestratorError):
    """Raised when the Neo4j graph has nothing for a case or can't be reached"""


class NoFilesToArchiveError(OrchestratorError):
    """Raised when a zip request matches no categorized files"""
    def __init__(self, category: str | None = None):
        if category:
            message = f'No categorized files found in category "{category}".'
        else:
            message = "No categorized files found to zip."
        super().__init__(message)
        self.category = category
