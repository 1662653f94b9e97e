"""Idempotency check: decide whether the destination tag needs a write."""

from __future__ import annotations

from typing_extensions import assert_never

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


def decide(
    source_meta: ImageMetadata,
    dest_outcome: FetchOutcome,
    dry_run: bool = False,
) -> RetagDecision:
    """Decide what retagging the destination requires.

    Digests are compared as canonical strings. Timestamps are audit data
    only and never influence the decision.

    Args:
        source_meta: Metadata of the source image.
        dest_outcome: Lookup result for the destination tag.
        dry_run: Return the preview variants instead of the live ones.

    Returns:
        NoOpAlreadyCorrect, Create/WouldCreate or Overwrite/WouldOverwrite.

    Raises:
        TypeError: If ``dest_outcome`` is a failure. Failed destination
            lookups must be handled before deciding.

    Example:
        >>> source = ImageMetadata(digest="sha256:" + "a" * 64)
        >>> decide(source, NotFound(reference="ghcr.io/acme/api:prod"), dry_run=True)
        WouldCreate()
    """
    if isinstance(dest_outcome, Found):
        current = dest_outcome.metadata
        if current.digest == source_meta.digest:
            return NoOpAlreadyCorrect()
        return WouldOverwrite(previous=current) if dry_run else Overwrite(previous=current)
    if isinstance(dest_outcome, NotFound):
        return WouldCreate() if dry_run else Create()
    if isinstance(dest_outcome, (TransientFailure, PermanentFailure)):
        raise TypeError(
            f"cannot decide on a failed destination lookup: {type(dest_outcome).__name__}"
        )
    assert_never(dest_outcome)


__all__ = ["decide"]
