"""oci-retag: idempotently point a registry tag at a source image.

Example:
    >>> from oci_retag import RetagController, get_settings
    >>> controller = RetagController.from_settings(get_settings())
    >>> result = controller.retag("ghcr.io/acme/api:build-123", "production", dry_run=True)
    >>> print(result.line)
"""

from __future__ import annotations

from oci_retag.auth import (
    AnonymousAuthProvider,
    AuthProvider,
    Credentials,
    DockerConfigAuthProvider,
    EnvironmentAuthProvider,
    KeychainAuthProvider,
    StaticAuthProvider,
    default_keychain,
)
from oci_retag.config import RetagSettings, RetryConfig, get_settings
from oci_retag.decision import decide
from oci_retag.errors import (
    ArtifactNotFoundError,
    AuthenticationError,
    DestinationLookupError,
    InvalidReferenceError,
    OperationCancelledError,
    RegistryResponseError,
    RegistryUnavailableError,
    RetagError,
    SourceNotFoundError,
    TagWriteError,
)
from oci_retag.metadata import MetadataClient
from oci_retag.outcomes import (
    Create,
    FetchOutcome,
    Found,
    ImageMetadata,
    NoOpAlreadyCorrect,
    NotFound,
    Overwrite,
    PermanentFailure,
    RetagDecision,
    TransientFailure,
    WouldCreate,
    WouldOverwrite,
)
from oci_retag.reference import ImageReference, parse_reference, resolve_references
from oci_retag.report import Report, render, render_failure
from oci_retag.resilience import RetryPolicy
from oci_retag.retag import RetagController, RetagResult, RetagState
from oci_retag.transport import ManifestResponse, OrasRegistryTransport, RegistryTransport
from oci_retag.writer import TagWriter

__all__ = [
    "AnonymousAuthProvider",
    "ArtifactNotFoundError",
    "AuthProvider",
    "AuthenticationError",
    "Create",
    "Credentials",
    "DestinationLookupError",
    "DockerConfigAuthProvider",
    "EnvironmentAuthProvider",
    "FetchOutcome",
    "Found",
    "ImageMetadata",
    "ImageReference",
    "InvalidReferenceError",
    "KeychainAuthProvider",
    "ManifestResponse",
    "MetadataClient",
    "NoOpAlreadyCorrect",
    "NotFound",
    "OperationCancelledError",
    "OrasRegistryTransport",
    "Overwrite",
    "PermanentFailure",
    "RegistryResponseError",
    "RegistryTransport",
    "RegistryUnavailableError",
    "Report",
    "RetagController",
    "RetagDecision",
    "RetagError",
    "RetagResult",
    "RetagSettings",
    "RetagState",
    "RetryConfig",
    "RetryPolicy",
    "SourceNotFoundError",
    "StaticAuthProvider",
    "TagWriteError",
    "TransientFailure",
    "WouldCreate",
    "WouldOverwrite",
    "decide",
    "default_keychain",
    "get_settings",
    "parse_reference",
    "render",
    "render_failure",
    "resolve_references",
]
