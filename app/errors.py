"""Domain exception hierarchy for Plugsmith.

Services raise these instead of bare ``ValueError`` so that the global
exception handler in ``main.py`` can map them to the correct HTTP status
code without fragile string matching.

Errors raised out of a generation run (``RunError`` subclasses) also carry
the job id and the run log collected so far, so the HTTP layer can return
them to the caller.
"""


class PlugsmithError(Exception):
    """Base for all domain exceptions."""

    def __init__(self, message: str = "An unexpected error occurred", *, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(PlugsmithError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class JobNotFoundError(NotFoundError):
    """No tracked build job with the given id (404)."""

    def __init__(self, job_id: str):
        super().__init__(f"Build not found: {job_id}")
        self.job_id = job_id


class RunError(PlugsmithError):
    """Base for errors that abort a generation run."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        job_id: str = "",
        raw_log: str = "",
    ):
        super().__init__(message, status_code=status_code)
        self.job_id = job_id
        self.raw_log = raw_log


class ValidationError(RunError):
    """The generation request is invalid (400)."""

    def __init__(self, message: str = "Invalid request", **kwargs):
        super().__init__(message, status_code=400, **kwargs)


class UpstreamError(RunError):
    """The remote generation/fix service failed or answered garbage (502)."""

    def __init__(self, message: str = "Upstream service error", *, status_code: int = 502, **kwargs):
        super().__init__(message, status_code=status_code, **kwargs)


class UpstreamTimeout(UpstreamError):
    """The remote service did not answer in time (504)."""

    def __init__(self, message: str = "Upstream service timed out", **kwargs):
        super().__init__(message, status_code=504, **kwargs)


class BuildError(RunError):
    """The project could not be built, repair included (500)."""

    def __init__(self, message: str = "Build failed", **kwargs):
        super().__init__(message, status_code=500, **kwargs)


class WorkspaceError(RunError):
    """Project files could not be written or read back (500)."""

    def __init__(self, message: str = "Workspace error", **kwargs):
        super().__init__(message, status_code=500, **kwargs)


class RunTimeoutError(RunError):
    """The whole generation run exceeded its time limit (504)."""

    def __init__(self, message: str = "Generation run timed out", **kwargs):
        super().__init__(message, status_code=504, **kwargs)


def format_error_response(
    *,
    error: str,
    detail: object = None,
    request_id: str = "",
) -> dict:
    """Build a structured error response dict.

    Parameters
    ----------
    error : str
        Short error title (e.g. ``"Internal Server Error"``).
    detail : object
        Human-readable detail string or validation error list.
    request_id : str
        The request ID for tracing.

    Returns
    -------
    dict
        ``{"error": ..., "detail": ..., "request_id": ...}``
    """
    return {
        "error": error,
        "detail": detail if detail is not None else error,
        "request_id": request_id,
    }
