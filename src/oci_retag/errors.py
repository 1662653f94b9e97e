"""Exception hierarchy for oci-retag.

All exceptions inherit from RetagError, the base exception class. Each
exception carries the CLI exit code used when it terminates an invocation.

Exception Hierarchy:
    RetagError (base)
    ├── InvalidReferenceError      # Source image or tag cannot be parsed
    ├── ArtifactNotFoundError      # Registry reported the manifest as missing
    │   └── SourceNotFoundError    # The source image does not exist
    ├── AuthenticationError        # Credentials rejected or unavailable
    ├── RegistryUnavailableError   # Transient: network, timeout, 429, 5xx
    ├── RegistryResponseError      # Malformed or unexpected registry response
    ├── DestinationLookupError     # Destination tag could not be inspected
    ├── TagWriteError              # Tag write failed, final state ambiguous
    └── OperationCancelledError    # Invocation cancelled by a signal

Exit Codes:
    0 - Success (including no-op)
    1 - General error (RetagError)
    2 - Invalid reference (InvalidReferenceError)
    3 - Source not found (SourceNotFoundError, ArtifactNotFoundError)
    4 - Authentication or permission denied (AuthenticationError)
    5 - Registry unavailable after retries (RegistryUnavailableError)
    6 - Malformed registry response (RegistryResponseError)
    7 - Destination lookup failed (DestinationLookupError)
    8 - Tag write failed (TagWriteError)
    130 - Cancelled (OperationCancelledError)

Example:
    >>> from oci_retag.errors import SourceNotFoundError
    >>> raise SourceNotFoundError("ghcr.io/acme/api:build-123")
    Traceback (most recent call last):
        ...
    SourceNotFoundError: Source image 'ghcr.io/acme/api:build-123' not found
"""

from __future__ import annotations


class RetagError(Exception):
    """Base exception for all oci-retag errors.

    Attributes:
        exit_code: CLI exit code for this error type (default: 1).
        transient: Whether retrying the operation may succeed.
    """

    exit_code: int = 1
    transient: bool = False


class InvalidReferenceError(RetagError):
    """Raised when a source image or tag string cannot be parsed.

    No registry is contacted when this is raised.

    Attributes:
        reference: The offending input string.
        reason: Why the string was rejected.
    """

    exit_code: int = 2

    def __init__(self, reference: str, reason: str) -> None:
        self.reference = reference
        self.reason = reason
        super().__init__(f"Invalid image reference '{reference}': {reason}")


class ArtifactNotFoundError(RetagError):
    """Raised when the registry reports a manifest or repository as missing.

    The metadata client turns this into a NotFound outcome. It only
    reaches the CLI when a write step finds its source gone.

    Attributes:
        reference: Canonical reference that was looked up.
        registry: Registry host that answered.
    """

    exit_code: int = 3

    def __init__(self, reference: str, registry: str) -> None:
        self.reference = reference
        self.registry = registry
        super().__init__(f"Manifest not found: {reference} in {registry}")


class SourceNotFoundError(ArtifactNotFoundError):
    """Raised when the source image cannot be resolved on the registry.

    There is nothing valid to promote, so this is always fatal.
    """

    def __init__(self, reference: str, registry: str | None = None) -> None:
        self.reference = reference
        self.registry = registry or ""
        RetagError.__init__(self, f"Source image '{reference}' not found")


class AuthenticationError(RetagError):
    """Raised when registry authentication or authorization fails.

    Covers 401/403 responses and credential helper failures. Never retried.

    Attributes:
        registry: Registry host where authentication failed.
        reason: Description of why authentication failed.
    """

    exit_code: int = 4

    def __init__(self, registry: str, reason: str) -> None:
        self.registry = registry
        self.reason = reason
        super().__init__(f"Authentication failed for {registry}: {reason}")


class RegistryUnavailableError(RetagError):
    """Raised when the registry is unreachable or temporarily failing.

    Network errors, timeouts, rate limiting (429) and 5xx responses end up
    here. The retry policy retries this error; it becomes fatal only once
    attempts are exhausted.

    Attributes:
        registry: Registry host that is unreachable.
        reason: Description of the failure.
        status_code: HTTP status code, if a response was received.
    """

    exit_code: int = 5
    transient: bool = True

    def __init__(self, registry: str, reason: str, status_code: int | None = None) -> None:
        self.registry = registry
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Registry unavailable: {registry}: {reason}")


class RegistryResponseError(RetagError):
    """Raised when the registry answers with something unusable.

    Unexpected 4xx codes, unparseable manifests and digest mismatches are
    permanent failures and are not retried.

    Attributes:
        registry: Registry host that answered.
        reason: Description of the problem.
        status_code: HTTP status code, if relevant.
    """

    exit_code: int = 6

    def __init__(self, registry: str, reason: str, status_code: int | None = None) -> None:
        self.registry = registry
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Unexpected response from {registry}: {reason}")


class DestinationLookupError(RetagError):
    """Raised when the destination tag could not be inspected.

    A missing destination tag is not an error; this covers every other
    failure. The destination tag has not been touched.

    Attributes:
        reference: Destination reference that was looked up.
        cause: The classified registry error.
    """

    exit_code: int = 7

    def __init__(self, reference: str, cause: RetagError) -> None:
        self.reference = reference
        self.cause = cause
        super().__init__(
            f"Could not inspect destination '{reference}': {cause}. The tag was not modified."
        )


class TagWriteError(RetagError):
    """Raised when pointing the destination tag at the source manifest fails.

    The registry gives no transactional guarantee, so after a failed write
    the tag may hold its previous digest or the new one. Re-running is safe:
    an already-correct tag is detected and left alone.

    Attributes:
        tag: Destination tag name.
        reference: Canonical destination reference.
        cause: The underlying error raised by the last attempt.
        attempts: Number of write attempts made.
    """

    exit_code: int = 8

    def __init__(
        self,
        tag: str,
        reference: str,
        cause: Exception,
        attempts: int = 1,
    ) -> None:
        self.tag = tag
        self.reference = reference
        self.cause = cause
        self.attempts = attempts
        super().__init__(
            f"Failed to point tag '{tag}' to new image after {attempts} attempt(s): {cause}. "
            f"The state of '{reference}' is unknown; re-run to converge."
        )


class OperationCancelledError(RetagError):
    """Raised when an invocation is cancelled before it completes.

    Attributes:
        operation: The operation that was interrupted.
    """

    exit_code: int = 130

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Operation cancelled: {operation}")


__all__ = [
    "ArtifactNotFoundError",
    "AuthenticationError",
    "DestinationLookupError",
    "InvalidReferenceError",
    "OperationCancelledError",
    "RegistryResponseError",
    "RegistryUnavailableError",
    "RetagError",
    "SourceNotFoundError",
    "TagWriteError",
]
