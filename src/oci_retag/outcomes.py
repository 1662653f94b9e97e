"""Result types for registry lookups and retag decisions.

Both ``FetchOutcome`` and ``RetagDecision`` are closed unions of frozen
dataclasses. Call sites dispatch with ``isinstance`` (or ``match``) and end
with ``assert_never`` so a type checker flags any unhandled variant.

Example:
    >>> outcome = Found(ImageMetadata(digest="sha256:" + "a" * 64))
    >>> isinstance(outcome, Found)
    True
    >>> Create.performs_write, WouldCreate.performs_write
    (True, False)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar, Union

from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import TypeAlias

from oci_retag.errors import RetagError


class ImageMetadata(BaseModel):
    """Digest and creation time of the manifest a reference resolves to.

    Attributes:
        digest: Content-addressed manifest digest (``algorithm:hex``).
        created_at: Image creation time from the config blob, or None when
            the config carries no timestamp.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    digest: str = Field(
        ...,
        pattern=r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$",
        description="Manifest digest",
    )
    created_at: datetime | None = Field(
        default=None,
        description="Image creation time (UTC) if recorded in the config",
    )


# Fetch outcomes


@dataclass(frozen=True)
class Found:
    """The reference resolved to a manifest."""

    metadata: ImageMetadata


@dataclass(frozen=True)
class NotFound:
    """The registry reported the manifest or repository as missing."""

    reference: str


@dataclass(frozen=True)
class TransientFailure:
    """The lookup failed in a way a later attempt may not (network, 429, 5xx)."""

    cause: RetagError


@dataclass(frozen=True)
class PermanentFailure:
    """The lookup failed definitively (auth denial, malformed response)."""

    cause: RetagError


FetchOutcome: TypeAlias = Union[Found, NotFound, TransientFailure, PermanentFailure]


# Retag decisions


@dataclass(frozen=True)
class NoOpAlreadyCorrect:
    """Destination already points at the source digest."""

    performs_write: ClassVar[bool] = False
    is_preview: ClassVar[bool] = False
    kind: ClassVar[str] = "noop"


@dataclass(frozen=True)
class WouldCreate:
    """Dry-run: destination tag is absent and would be created."""

    performs_write: ClassVar[bool] = False
    is_preview: ClassVar[bool] = True
    kind: ClassVar[str] = "would_create"


@dataclass(frozen=True)
class WouldOverwrite:
    """Dry-run: destination tag points elsewhere and would be moved."""

    previous: ImageMetadata

    performs_write: ClassVar[bool] = False
    is_preview: ClassVar[bool] = True
    kind: ClassVar[str] = "would_overwrite"


@dataclass(frozen=True)
class Create:
    """Destination tag is absent and will be created."""

    performs_write: ClassVar[bool] = True
    is_preview: ClassVar[bool] = False
    kind: ClassVar[str] = "create"


@dataclass(frozen=True)
class Overwrite:
    """Destination tag points elsewhere and will be moved."""

    previous: ImageMetadata

    performs_write: ClassVar[bool] = True
    is_preview: ClassVar[bool] = False
    kind: ClassVar[str] = "overwrite"


RetagDecision: TypeAlias = Union[NoOpAlreadyCorrect, WouldCreate, WouldOverwrite, Create, Overwrite]


def previous_metadata(decision: RetagDecision) -> ImageMetadata | None:
    """Return the destination's prior metadata for overwrite variants."""
    if isinstance(decision, (WouldOverwrite, Overwrite)):
        return decision.previous
    return None


__all__ = [
    "Create",
    "FetchOutcome",
    "Found",
    "ImageMetadata",
    "NoOpAlreadyCorrect",
    "NotFound",
    "Overwrite",
    "PermanentFailure",
    "RetagDecision",
    "TransientFailure",
    "WouldCreate",
    "WouldOverwrite",
    "previous_metadata",
]
