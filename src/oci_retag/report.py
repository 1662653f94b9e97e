"""Human-readable reports for retag outcomes.

Pure formatting: nothing here performs I/O or decides success. Each report
carries its marker, the text after it, and the stream it belongs on.

Message shapes:
    [OK] Tag 'prod' already points to the correct image (digest D, created T). No action needed.
    [DRY-RUN] Would create tag 'prod' from SRC (digest D, created T).
    [DRY-RUN] Would move tag 'prod' from OLD (created T0) to D (created T).
    [OK] Successfully pointed tag 'prod' to D (created T).
    [OK] Successfully pointed tag 'prod' to D (created T) (was OLD, created T0).
    [FAIL] Error: ...
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from typing_extensions import assert_never

from oci_retag.outcomes import (
    Create,
    ImageMetadata,
    NoOpAlreadyCorrect,
    Overwrite,
    RetagDecision,
    WouldCreate,
    WouldOverwrite,
)
from oci_retag.reference import ImageReference
from oci_retag.telemetry.sanitization import sanitize_error_message

OK_MARKER = "[OK]"
DRY_RUN_MARKER = "[DRY-RUN]"
FAIL_MARKER = "[FAIL]"

DIGEST_DISPLAY_LENGTH = 19
"""``sha256:`` plus 12 hex characters."""

UNKNOWN_TIME = "unknown"


@dataclass(frozen=True)
class Report:
    """A rendered report line.

    Attributes:
        marker: ``[OK]``, ``[DRY-RUN]`` or ``[FAIL]``.
        message: Text following the marker.
        stream: ``stdout`` for success and previews, ``stderr`` for failures.
    """

    marker: str
    message: str
    stream: Literal["stdout", "stderr"] = "stdout"

    @property
    def line(self) -> str:
        """Return the full line including the marker."""
        return f"{self.marker} {self.message}"

    @property
    def is_error(self) -> bool:
        """Check if this report belongs on the error stream."""
        return self.stream == "stderr"


def format_digest(digest: str) -> str:
    """Shorten a digest for display.

    Example:
        >>> format_digest("sha256:" + "0123456789abcdef" * 4)
        'sha256:0123456789ab...'
    """
    if len(digest) <= DIGEST_DISPLAY_LENGTH:
        return digest
    return digest[:DIGEST_DISPLAY_LENGTH] + "..."


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" + ("" if count == 1 else "s")


def format_relative(then: datetime, now: datetime | None = None) -> str:
    """Describe ``then`` relative to ``now`` ("3 hours ago")."""
    now = now or datetime.now(timezone.utc)
    seconds = int((now - then).total_seconds())
    suffix = "ago"
    if seconds < 0:
        seconds, suffix = -seconds, "from now"

    if seconds < 60:
        return "just now" if suffix == "ago" else "in under a minute"

    for unit, size in (
        ("year", 365 * 86400),
        ("month", 30 * 86400),
        ("day", 86400),
        ("hour", 3600),
        ("minute", 60),
    ):
        if seconds >= size:
            return f"{_plural(seconds // size, unit)} {suffix}"

    return "just now"  # pragma: no cover


def format_timestamp(timestamp: datetime | None, now: datetime | None = None) -> str:
    """Render a timestamp as ``<relative> (<ISO-8601 UTC>)``.

    Args:
        timestamp: Aware datetime, or None when unknown.
        now: Reference time for the relative part (defaults to current UTC).

    Returns:
        Display string, or ``unknown`` when timestamp is None.

    Example:
        >>> ts = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        >>> format_timestamp(ts, now=datetime(2024, 5, 1, 15, 0, tzinfo=timezone.utc))
        '3 hours ago (2024-05-01T12:00:00Z)'
    """
    if timestamp is None:
        return UNKNOWN_TIME
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    absolute = timestamp.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return f"{format_relative(timestamp, now)} ({absolute})"


def render(
    decision: RetagDecision,
    source_ref: ImageReference,
    dest_ref: ImageReference,
    source_meta: ImageMetadata,
    now: datetime | None = None,
) -> Report:
    """Render the report for a completed (or previewed) retag.

    Args:
        decision: The decision that was carried out or previewed.
        source_ref: Source image reference.
        dest_ref: Destination tag reference.
        source_meta: Source digest and creation time.
        now: Reference time for relative timestamps.

    Returns:
        The Report to print.
    """
    tag = dest_ref.tag
    digest = format_digest(source_meta.digest)
    created = format_timestamp(source_meta.created_at, now)

    if isinstance(decision, NoOpAlreadyCorrect):
        return Report(
            OK_MARKER,
            f"Tag '{tag}' already points to the correct image "
            f"(digest {digest}, created {created}). No action needed.",
        )
    if isinstance(decision, WouldCreate):
        return Report(
            DRY_RUN_MARKER,
            f"Would create tag '{tag}' from {source_ref} (digest {digest}, created {created}).",
        )
    if isinstance(decision, WouldOverwrite):
        previous = decision.previous
        return Report(
            DRY_RUN_MARKER,
            f"Would move tag '{tag}' from {format_digest(previous.digest)} "
            f"(created {format_timestamp(previous.created_at, now)}) "
            f"to {digest} (created {created}).",
        )
    if isinstance(decision, Create):
        return Report(
            OK_MARKER,
            f"Successfully pointed tag '{tag}' to {digest} (created {created}).",
        )
    if isinstance(decision, Overwrite):
        previous = decision.previous
        return Report(
            OK_MARKER,
            f"Successfully pointed tag '{tag}' to {digest} (created {created}) "
            f"(was {format_digest(previous.digest)}, "
            f"created {format_timestamp(previous.created_at, now)}).",
        )
    assert_never(decision)


def render_failure(error: BaseException) -> Report:
    """Render the error-stream report for a failed invocation.

    Credentials echoed in the error text are redacted.
    """
    message = sanitize_error_message(str(error))
    return Report(FAIL_MARKER, f"Error: {message}", stream="stderr")


__all__ = [
    "DIGEST_DISPLAY_LENGTH",
    "DRY_RUN_MARKER",
    "FAIL_MARKER",
    "OK_MARKER",
    "Report",
    "UNKNOWN_TIME",
    "format_digest",
    "format_relative",
    "format_timestamp",
    "render",
    "render_failure",
]
