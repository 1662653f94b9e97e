"""Retag controller: the end-to-end promotion of a source image to a tag.

The controller sequences the flow as a small state machine:

    resolving_references -> fetching_source -> fetching_destination -> deciding
        -> dry_run_reporting                      (preview, no write)
        -> final_reporting                        (already correct, no write)
        -> writing -> final_reporting             (create / overwrite)
    terminal: succeeded | failed

Failure policy:
    - Invalid input fails before any registry call.
    - Any source lookup failure is fatal; a missing source raises
      SourceNotFoundError.
    - A missing destination tag is the normal first-promotion case.
      Any other destination lookup failure is fatal and leaves the tag
      untouched (DestinationLookupError).
    - A failed write is reported as TagWriteError: the registry may hold
      either digest afterwards, and re-running converges.

Concurrency:
    Read-compare-write is best-effort idempotency, not atomic. A concurrent
    writer to the same tag between the destination read and the write wins
    or loses according to the registry, not this tool.

Example:
    >>> controller = RetagController.from_settings(get_settings())
    >>> result = controller.retag("ghcr.io/acme/api:build-123", "production")
    >>> result.line
    "[OK] Successfully pointed tag 'production' to sha256:3f2a9c1b7d4e... (created ...)."
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import assert_never

from oci_retag.auth import AuthProvider, default_keychain
from oci_retag.config import RetagSettings
from oci_retag.decision import decide
from oci_retag.errors import (
    DestinationLookupError,
    OperationCancelledError,
    RetagError,
    SourceNotFoundError,
    TagWriteError,
)
from oci_retag.metadata import MetadataClient
from oci_retag.outcomes import (
    FetchOutcome,
    Found,
    ImageMetadata,
    NotFound,
    PermanentFailure,
    TransientFailure,
    previous_metadata,
)
from oci_retag.reference import ImageReference, resolve_references
from oci_retag.report import render
from oci_retag.resilience import RetryPolicy
from oci_retag.telemetry import create_span, current_trace_id, sanitize_error_message
from oci_retag.transport import OrasRegistryTransport, RegistryTransport
from oci_retag.writer import TagWriter

logger = structlog.get_logger(__name__)


class RetagState(str, Enum):
    """States of a retag invocation."""

    RESOLVING_REFERENCES = "resolving_references"
    FETCHING_SOURCE = "fetching_source"
    FETCHING_DESTINATION = "fetching_destination"
    DECIDING = "deciding"
    DRY_RUN_REPORTING = "dry_run_reporting"
    WRITING = "writing"
    FINAL_REPORTING = "final_reporting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RetagResult(BaseModel):
    """Audit record of a successful (or previewed) retag.

    Attributes:
        source: Canonical source reference as given.
        destination: Canonical destination reference.
        decision: Decision kind (noop, create, overwrite, would_create,
            would_overwrite).
        dry_run: Whether the invocation was a preview.
        performed_write: Whether a tag write was issued.
        source_digest: Digest the destination now points to (or would).
        source_created_at: Source image creation time, if known.
        previous_digest: Digest the destination pointed to before, if any.
        previous_created_at: Creation time of the previous image, if known.
        write_attempts: Number of write attempts (0 when no write).
        marker: Report marker ([OK] or [DRY-RUN]).
        message: Report text after the marker.
        trace_id: OpenTelemetry trace id, empty when tracing is off.
        completed_at: When the invocation finished (UTC).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: str = Field(..., description="Source image reference")
    destination: str = Field(..., description="Destination tag reference")
    decision: str = Field(..., description="Decision kind")
    dry_run: bool = Field(default=False, description="Preview only")
    performed_write: bool = Field(default=False, description="A tag write was issued")
    source_digest: str = Field(..., description="Source manifest digest")
    source_created_at: datetime | None = Field(default=None, description="Source creation time")
    previous_digest: str | None = Field(default=None, description="Prior destination digest")
    previous_created_at: datetime | None = Field(
        default=None, description="Prior destination creation time"
    )
    write_attempts: int = Field(default=0, ge=0, description="Write attempts made")
    marker: str = Field(..., description="Report marker")
    message: str = Field(..., description="Report message")
    trace_id: str = Field(default="", description="OpenTelemetry trace id")
    completed_at: datetime = Field(..., description="Completion time (UTC)")

    @property
    def line(self) -> str:
        """Return the report line including the marker."""
        return f"{self.marker} {self.message}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_transient(outcome: Any) -> bool:
    return isinstance(outcome, TransientFailure)


class RetagController:
    """Point a tag at the manifest of a source image, idempotently.

    Attributes:
        metadata_client: Looks up source and destination metadata.
        writer: Performs the tag write.
        state: Current state of the most recent invocation.

    Example:
        >>> controller = RetagController(MetadataClient(transport), TagWriter(transport))
        >>> controller.retag("ghcr.io/acme/api:build-123", "production", dry_run=True).marker
        '[DRY-RUN]'
    """

    def __init__(
        self,
        metadata_client: MetadataClient,
        writer: TagWriter,
        *,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize RetagController.

        Args:
            metadata_client: Client for registry lookups.
            writer: Tag writer.
            retry_policy: Policy for metadata lookups. Lookups returning
                TransientFailure are retried under it.
            clock: Source of "now" for reports and audit timestamps.
        """
        self.metadata_client = metadata_client
        self.writer = writer
        self._fetch_policy = (retry_policy or RetryPolicy()).with_result_predicate(_is_transient)
        self._clock = clock
        self.state = RetagState.RESOLVING_REFERENCES
        self._log = logger

    @classmethod
    def from_settings(
        cls,
        settings: RetagSettings,
        *,
        auth_provider: AuthProvider | None = None,
        transport: RegistryTransport | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RetagController:
        """Build a controller wired from settings.

        Args:
            settings: Runtime settings.
            auth_provider: Credential source. Defaults to default_keychain().
            transport: Registry transport. Defaults to OrasRegistryTransport.
            cancel_event: Event that cancels retries when set.

        Returns:
            Configured RetagController.
        """
        if transport is None:
            transport = OrasRegistryTransport(
                auth_provider=auth_provider or default_keychain(),
                insecure_registries=settings.insecure_registries,
                timeout_seconds=settings.timeout_seconds,
            )

        return cls(
            MetadataClient(transport, platform=settings.platform),
            TagWriter(transport, RetryPolicy(settings.retry, cancel_event=cancel_event)),
            retry_policy=RetryPolicy(settings.retry, cancel_event=cancel_event),
        )

    def _transition(self, state: RetagState, **context: Any) -> None:
        previous = self.state
        self.state = state
        self._log.debug(
            "retag_state_changed",
            from_state=previous.value,
            to_state=state.value,
            **context,
        )

    def _fetch(self, ref: ImageReference) -> FetchOutcome:
        return self._fetch_policy.call(self.metadata_client.fetch, ref)

    @staticmethod
    def _require_source(outcome: FetchOutcome, source_ref: ImageReference) -> ImageMetadata:
        if isinstance(outcome, Found):
            return outcome.metadata
        if isinstance(outcome, NotFound):
            raise SourceNotFoundError(str(source_ref), source_ref.registry)
        if isinstance(outcome, (TransientFailure, PermanentFailure)):
            raise outcome.cause
        assert_never(outcome)

    def retag(self, source: str, new_tag: str, *, dry_run: bool = False) -> RetagResult:
        """Point ``new_tag`` (in the source's repository) at ``source``.

        Args:
            source: Source image (``[registry/]repository[:tag|@digest]``).
            new_tag: Bare destination tag.
            dry_run: Report what would happen without writing.

        Returns:
            RetagResult describing what happened (or would happen).

        Raises:
            InvalidReferenceError: If either input is malformed.
            SourceNotFoundError: If the source does not exist.
            AuthenticationError: If the registry denies access to the source.
            RegistryUnavailableError: If the source lookup keeps failing.
            RegistryResponseError: If the source lookup returns garbage.
            DestinationLookupError: If the destination cannot be inspected.
            TagWriteError: If the write fails after retries.
            OperationCancelledError: If cancelled between attempts.
        """
        self.state = RetagState.RESOLVING_REFERENCES
        self._log = logger.bind(source=source, new_tag=new_tag, dry_run=dry_run)

        with create_span(
            "oci_retag.retag",
            attributes={"oci_retag.source": source, "oci_retag.tag": new_tag, "dry_run": dry_run},
        ) as span:
            trace_id = current_trace_id(span)
            self._log.info("retag_started", trace_id=trace_id)

            try:
                result = self._run(source, new_tag, dry_run=dry_run, trace_id=trace_id)
            except Exception as e:
                error = sanitize_error_message(str(e))
                self._transition(RetagState.FAILED, error=error, error_type=type(e).__name__)
                self._log.warning("retag_failed", error=error, error_type=type(e).__name__)
                raise

            span.set_attribute("oci_retag.decision", result.decision)
            span.set_attribute("oci.artifact.digest", result.source_digest)

        return result

    def _run(self, source: str, new_tag: str, *, dry_run: bool, trace_id: str) -> RetagResult:
        source_ref, dest_ref = resolve_references(source, new_tag)

        self._transition(RetagState.FETCHING_SOURCE, reference=str(source_ref))
        source_meta = self._require_source(self._fetch(source_ref), source_ref)

        self._transition(RetagState.FETCHING_DESTINATION, reference=str(dest_ref))
        dest_outcome = self._fetch(dest_ref)
        if isinstance(dest_outcome, (TransientFailure, PermanentFailure)):
            raise DestinationLookupError(str(dest_ref), dest_outcome.cause)

        self._transition(RetagState.DECIDING)
        decision = decide(source_meta, dest_outcome, dry_run=dry_run)
        self._log.info("retag_decided", decision=decision.kind, source_digest=source_meta.digest)

        write_attempts = 0
        if dry_run:
            self._transition(RetagState.DRY_RUN_REPORTING, decision=decision.kind)
        elif decision.performs_write:
            self._transition(RetagState.WRITING, decision=decision.kind)
            try:
                self.writer.write(source_ref, new_tag, expected_digest=source_meta.digest)
            except OperationCancelledError:
                raise
            except RetagError as e:
                raise TagWriteError(
                    new_tag, str(dest_ref), e, attempts=self.writer.attempts
                ) from e
            write_attempts = self.writer.attempts
            self._transition(RetagState.FINAL_REPORTING)
        else:
            self._transition(RetagState.FINAL_REPORTING, decision=decision.kind)

        now = self._clock()
        report = render(decision, source_ref, dest_ref, source_meta, now=now)
        previous = previous_metadata(decision)

        result = RetagResult(
            source=str(source_ref),
            destination=str(dest_ref),
            decision=decision.kind,
            dry_run=dry_run,
            performed_write=decision.performs_write and not dry_run,
            source_digest=source_meta.digest,
            source_created_at=source_meta.created_at,
            previous_digest=previous.digest if previous else None,
            previous_created_at=previous.created_at if previous else None,
            write_attempts=write_attempts,
            marker=report.marker,
            message=report.message,
            trace_id=trace_id,
            completed_at=now,
        )

        self._transition(RetagState.SUCCEEDED)
        self._log.info("retag_completed", decision=decision.kind, write_attempts=write_attempts)
        return result


__all__ = ["RetagController", "RetagResult", "RetagState"]
