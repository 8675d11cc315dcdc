"""
loudscan Errors - Failure taxonomy and structured error objects.

Responsibilities:
- ValidationError for malformed configuration or requests
- ProcessChainError hierarchy for chain invocation failures
- Error object builder for ScanOutcome.errors

Invariants:
- ValidationError is raised before any process is spawned
- Every ProcessChainError is raised only after all stages were reaped
- ParseWarning never leaves loudscan.loudness (it is logged, not raised)
"""


# =============================================================================
# ValidationError - Structured Configuration Failure
# =============================================================================


class ValidationError(Exception):
    """
    Raised when configuration or a request fails validation.

    Attributes:
        field: Name of the offending field
        value: The rejected value
        reason: Why it was rejected
    """

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


# =============================================================================
# ProcessChainError - Chain Invocation Failures
# =============================================================================


class ProcessChainError(Exception):
    """
    Base class for a failed chain invocation.

    Attributes:
        code: Stable error code used in error objects
        pids: Process ids of the stages that were started
        returncodes: Observed exit status per started stage
        partial_lines: Analysis lines captured before the failure
    """

    code = "CHAIN_ERROR"

    def __init__(
        self,
        message: str,
        pids: list[int] | None = None,
        returncodes: list[int | None] | None = None,
        partial_lines: list[str] | None = None,
    ):
        self.pids = [] if pids is None else pids
        self.returncodes = [] if returncodes is None else returncodes
        self.partial_lines = [] if partial_lines is None else partial_lines
        super().__init__(message)


class SpawnFailure(ProcessChainError):
    """A stage executable is missing or could not be started."""

    code = "CHAIN_SPAWN"


class ProcessTimeoutError(ProcessChainError):
    """The chain did not finish before its deadline."""

    code = "CHAIN_TIMEOUT"

    def __init__(self, message: str, timeout: float, **kwargs):
        self.timeout = timeout
        super().__init__(message, **kwargs)


class ProcessIOError(ProcessChainError):
    """Feeding the first stage or reading the analysis stream failed."""

    code = "CHAIN_IO"


class NonZeroExitError(ProcessIOError):
    """At least one stage exited with a non-zero status."""

    code = "CHAIN_EXIT"


# =============================================================================
# Error Objects
# =============================================================================


def build_error(
    code: str,
    message: str,
    candidate: str,
    detail: dict | None = None,
) -> dict:
    """
    Build a structured error object.

    Args:
        code: Error code (e.g., "CHAIN_TIMEOUT", "MEDIA_UNAVAILABLE")
        message: Human-readable error message
        candidate: Name of the candidate the error belongs to
        detail: Optional additional details

    Returns:
        Structured error dictionary.
    """
    error: dict = {
        "code": code,
        "message": message,
        "candidate": candidate,
    }
    if detail is not None:
        error["detail"] = detail
    return error


def error_from_chain(exc: ProcessChainError, candidate: str) -> dict:
    """Build the error object for a failed chain invocation."""
    return build_error(
        code=exc.code,
        message=str(exc),
        candidate=candidate,
        detail={
            "returncodes": list(exc.returncodes),
            "partial_lines": len(exc.partial_lines),
        },
    )
