"""Tag writer: point a tag at the manifest of a source image.

The source manifest is copied byte-for-byte (same media type) to
``PUT /v2/<repository>/manifests/<tag>``, which creates the tag or moves it
unconditionally. Registries offer no compare-and-swap for tags, so the
caller's read-compare-write sequence is best-effort, not atomic.
"""

from __future__ import annotations

from typing import Any

import structlog

from oci_retag.errors import RegistryResponseError
from oci_retag.reference import ImageReference, validate_tag
from oci_retag.resilience import RetryPolicy
from oci_retag.telemetry import create_span
from oci_retag.transport import RegistryTransport

logger = structlog.get_logger(__name__)


class TagWriter:
    """Create or overwrite a tag in the source image's repository.

    Args:
        transport: Registry transport used for the manifest copy.
        retry_policy: Policy applied to the whole copy (read + put).
            Defaults to RetryPolicy().

    Example:
        >>> writer = TagWriter(transport)
        >>> writer.write(source_ref, "production", expected_digest="sha256:abc...")
    """

    def __init__(
        self,
        transport: RegistryTransport,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._transport = transport
        self._retry_policy = retry_policy or RetryPolicy()

    @property
    def attempts(self) -> int:
        """Return the number of attempts made by the last write."""
        return self._retry_policy.attempts_made

    def write(
        self,
        source_ref: ImageReference,
        dest_tag: str,
        *,
        expected_digest: str | None = None,
    ) -> None:
        """Point ``dest_tag`` at the manifest ``source_ref`` resolves to.

        Args:
            source_ref: Source image reference.
            dest_tag: Bare destination tag, in the source's repository.
            expected_digest: When given, the source manifest is read by this
                digest so a concurrently moved source tag cannot change what
                gets written.

        Raises:
            InvalidReferenceError: If ``dest_tag`` is not a valid tag.
            RetagError: Classified registry failure after retries.
        """
        dest_ref = source_ref.with_tag(validate_tag(dest_tag))
        pinned_ref = source_ref.with_digest(expected_digest) if expected_digest else source_ref

        log = logger.bind(source=str(pinned_ref), destination=str(dest_ref))
        log.info("tag_write_started")

        span_attributes: dict[str, Any] = {
            "oci.registry": dest_ref.registry,
            "oci.repository": dest_ref.repository,
            "oci.tag": dest_tag,
            "oci.artifact.digest": expected_digest,
        }

        def copy_manifest() -> str:
            manifest = self._transport.get_manifest(pinned_ref)
            if expected_digest is not None and manifest.digest != expected_digest:
                raise RegistryResponseError(
                    source_ref.registry,
                    f"source manifest hashes to {manifest.digest}, expected {expected_digest}",
                )

            reported = self._transport.put_manifest(dest_ref, manifest)
            if reported and reported != manifest.digest:
                raise RegistryResponseError(
                    dest_ref.registry,
                    f"registry stored {dest_ref} as {reported}, expected {manifest.digest}",
                )
            return manifest.digest

        with create_span("oci_retag.write", span_attributes) as span:
            digest = self._retry_policy.call(copy_manifest)
            span.set_attribute("oci_retag.write.attempts", self.attempts)

        log.info("tag_write_completed", digest=digest, attempts=self.attempts)


__all__ = ["TagWriter"]
