"""Registry metadata client.

Resolves a reference to its manifest digest and image creation time without
reading layer content, and reports the result as a FetchOutcome.

Timestamp resolution:
    - Image manifest: ``created`` from the config blob.
    - Image index / manifest list: the digest is the index digest (what the
      tag points at); ``created`` comes from the child manifest matching the
      configured platform, else the first runnable child.
    - Artifacts with a non-image config, configs without ``created`` and
      unparseable configs yield ``created_at=None``.

Example:
    >>> client = MetadataClient(transport)
    >>> outcome = client.fetch(parse_reference("ghcr.io/acme/api:build-123"))
    >>> isinstance(outcome, Found)
    True
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any

import structlog

from oci_retag.errors import ArtifactNotFoundError, RegistryResponseError, RetagError
from oci_retag.outcomes import (
    FetchOutcome,
    Found,
    ImageMetadata,
    NotFound,
    PermanentFailure,
    TransientFailure,
)
from oci_retag.reference import ImageReference
from oci_retag.telemetry import create_span
from oci_retag.transport import ManifestResponse, RegistryTransport

logger = structlog.get_logger(__name__)

IMAGE_CONFIG_MEDIA_TYPES = frozenset(
    {
        "application/vnd.oci.image.config.v1+json",
        "application/vnd.docker.container.image.v1+json",
    }
)

_FRACTION_PATTERN = re.compile(r"(\.\d{6})\d+")


def parse_created(value: Any) -> datetime | None:
    """Parse an image config ``created`` value into an aware UTC datetime.

    Accepts RFC 3339 strings with ``Z`` or numeric offsets and up to
    nanosecond precision. The Go zero time (year 1) means "unset".

    Args:
        value: The raw ``created`` value.

    Returns:
        UTC datetime, or None when absent or unparseable.

    Example:
        >>> parse_created("2024-05-01T12:30:00.123456789Z").isoformat()
        '2024-05-01T12:30:00.123456+00:00'
    """
    if not isinstance(value, str) or not value:
        return None

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_PATTERN.sub(r"\1", text)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("created_timestamp_unparseable", value=value)
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    parsed = parsed.astimezone(timezone.utc)
    if parsed.year <= 1:
        return None
    return parsed


def _load_json(manifest: ManifestResponse, ref: ImageReference) -> dict[str, Any]:
    try:
        body = json.loads(manifest.content)
    except ValueError as e:
        raise RegistryResponseError(ref.registry, f"manifest for {ref} is not valid JSON") from e
    if not isinstance(body, dict):
        raise RegistryResponseError(ref.registry, f"manifest for {ref} is not a JSON object")
    return body


def _platform_matches(platform: dict[str, Any], wanted: str) -> bool:
    parts = wanted.split("/")
    if platform.get("os") != parts[0] or platform.get("architecture") != parts[1]:
        return False
    return len(parts) < 3 or platform.get("variant") == parts[2]


def select_platform_child(index: dict[str, Any], platform: str) -> str | None:
    """Pick the child manifest digest to read a timestamp from.

    Args:
        index: Parsed image index / manifest list.
        platform: ``os/arch[/variant]``.

    Returns:
        Digest of the matching child, else of the first child with a real
        platform (attestations use ``unknown/unknown``), else of the first
        child. None for an empty index.
    """
    children = [
        c for c in index.get("manifests") or [] if isinstance(c, dict) and c.get("digest")
    ]
    if not children:
        return None

    for child in children:
        if _platform_matches(child.get("platform") or {}, platform):
            return str(child["digest"])

    for child in children:
        if (child.get("platform") or {}).get("os", "unknown") != "unknown":
            return str(child["digest"])

    return str(children[0]["digest"])


class MetadataClient:
    """Fetch digest and creation time for image references.

    Args:
        transport: Registry transport used for manifest and blob reads.
        platform: Platform whose child manifest supplies the timestamp of an
            image index.
    """

    def __init__(self, transport: RegistryTransport, platform: str = "linux/amd64") -> None:
        self._transport = transport
        self._platform = platform

    @property
    def transport(self) -> RegistryTransport:
        """Return the underlying registry transport."""
        return self._transport

    @property
    def platform(self) -> str:
        """Return the platform used to pick index children."""
        return self._platform

    def fetch(self, ref: ImageReference) -> FetchOutcome:
        """Resolve ``ref`` to its metadata.

        Never raises for registry failures; they are returned as outcomes.

        Args:
            ref: Reference to look up.

        Returns:
            Found, NotFound, TransientFailure or PermanentFailure.
        """
        log = logger.bind(reference=str(ref))
        log.debug("fetch_started")

        span_attributes: dict[str, Any] = {
            "oci.registry": ref.registry,
            "oci.repository": ref.repository,
            "oci.reference": ref.identifier,
        }

        with create_span("oci_retag.fetch", span_attributes) as span:
            try:
                metadata = self._resolve(ref)
            except ArtifactNotFoundError:
                log.debug("fetch_not_found")
                span.set_attribute("oci_retag.fetch.outcome", "not_found")
                return NotFound(reference=str(ref))
            except RetagError as e:
                outcome: FetchOutcome = (
                    TransientFailure(cause=e) if e.transient else PermanentFailure(cause=e)
                )
                log.debug(
                    "fetch_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    transient=e.transient,
                )
                span.set_attribute(
                    "oci_retag.fetch.outcome", "transient" if e.transient else "permanent"
                )
                return outcome

            span.set_attribute("oci_retag.fetch.outcome", "found")
            span.set_attribute("oci.artifact.digest", metadata.digest)
            log.debug(
                "fetch_completed",
                digest=metadata.digest,
                created_at=metadata.created_at.isoformat() if metadata.created_at else None,
            )
            return Found(metadata=metadata)

    def _resolve(self, ref: ImageReference) -> ImageMetadata:
        manifest = self._transport.get_manifest(ref)
        created_at = self._created_at(ref, manifest)
        return ImageMetadata(digest=manifest.digest, created_at=created_at)

    def _created_at(self, ref: ImageReference, manifest: ManifestResponse) -> datetime | None:
        body = _load_json(manifest, ref)

        if manifest.is_index:
            child_digest = select_platform_child(body, self._platform)
            if child_digest is None:
                return None
            try:
                child = self._transport.get_manifest(ref.with_digest(child_digest))
            except ArtifactNotFoundError:
                logger.warning("index_child_missing", reference=str(ref), child=child_digest)
                return None
            body = _load_json(child, ref)

        config = body.get("config")
        if not isinstance(config, dict) or not config.get("digest"):
            return None
        if config.get("mediaType") not in IMAGE_CONFIG_MEDIA_TYPES:
            return None

        try:
            blob = self._transport.get_blob(ref, str(config["digest"]))
        except ArtifactNotFoundError:
            logger.warning("config_blob_missing", reference=str(ref), blob=config["digest"])
            return None

        try:
            config_body = json.loads(blob)
        except ValueError:
            return None
        if not isinstance(config_body, dict):
            return None
        return parse_created(config_body.get("created"))


__all__ = [
    "IMAGE_CONFIG_MEDIA_TYPES",
    "MetadataClient",
    "parse_created",
    "select_platform_child",
]
