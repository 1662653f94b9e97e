"""Image reference parsing for oci-retag.

Parses ``[registry/]repository[:tag|@digest]`` strings using Docker's
naming rules and scopes a bare tag name to the source repository.

Normalization:
    - The first path component is a registry host only when it contains a
      ``.`` or ``:`` or is ``localhost``; otherwise Docker Hub is assumed.
    - ``docker.io`` is normalized to ``index.docker.io``.
    - Single-component Docker Hub repositories get the ``library/`` prefix.
    - A reference with neither tag nor digest gets the ``latest`` tag.
    - When both ``:tag`` and ``@digest`` are given, the digest wins.

Example:
    >>> source, dest = resolve_references("ghcr.io/acme/api:build-123", "production")
    >>> str(source)
    'ghcr.io/acme/api:build-123'
    >>> str(dest)
    'ghcr.io/acme/api:production'
    >>> str(parse_reference("nginx"))
    'index.docker.io/library/nginx:latest'
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing_extensions import Self

from oci_retag.errors import InvalidReferenceError

DEFAULT_REGISTRY = "index.docker.io"
"""Registry assumed when a reference names no host."""

DEFAULT_TAG = "latest"
"""Tag assumed when a reference names neither tag nor digest."""

_DOCKER_HUB_ALIASES = frozenset({"docker.io", "index.docker.io", "registry-1.docker.io"})

_HOST_LABEL = r"[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?"
REGISTRY_PATTERN = re.compile(
    rf"^(?:{_HOST_LABEL}(?:\.{_HOST_LABEL})*|\[[0-9a-fA-F:]+\])(?::[0-9]+)?$"
)
REPOSITORY_COMPONENT_PATTERN = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|[-]*)[a-z0-9]+)*$")
TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
DIGEST_PATTERN = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$")

_DIGEST_HEX_LENGTHS = {"sha256": 64, "sha384": 96, "sha512": 128}
_MAX_REPOSITORY_LENGTH = 255


class ImageReference(BaseModel):
    """Structured identity of an image in a registry.

    Exactly one of ``tag`` and ``digest`` is set. Instances are immutable;
    derive new references with ``with_tag`` / ``with_digest``.

    Attributes:
        registry: Registry host, optionally with port (e.g. ``ghcr.io``).
        repository: Repository path (e.g. ``acme/api``).
        tag: Tag name, when the reference is by tag.
        digest: Manifest digest, when the reference is by digest.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    registry: str = Field(..., min_length=1, description="Registry host[:port]")
    repository: str = Field(..., min_length=1, description="Repository path")
    tag: str | None = Field(default=None, description="Tag name")
    digest: str | None = Field(default=None, description="Manifest digest (algorithm:hex)")

    @model_validator(mode="after")
    def validate_identifier(self) -> Self:
        """Ensure exactly one of tag/digest is present and well-formed."""
        if (self.tag is None) == (self.digest is None):
            raise ValueError("exactly one of tag or digest must be set")
        if self.tag is not None and not TAG_PATTERN.match(self.tag):
            raise ValueError(f"invalid tag '{self.tag}'")
        if self.digest is not None:
            _check_digest(self.digest)
        return self

    @property
    def context(self) -> str:
        """Return ``registry/repository`` without tag or digest."""
        return f"{self.registry}/{self.repository}"

    @property
    def identifier(self) -> str:
        """Return the tag or digest, whichever identifies this reference."""
        return self.digest if self.digest is not None else str(self.tag)

    @property
    def is_digest(self) -> bool:
        """Check if this reference pins a digest."""
        return self.digest is not None

    def with_tag(self, tag: str) -> ImageReference:
        """Return a reference to ``tag`` in the same repository."""
        return ImageReference(registry=self.registry, repository=self.repository, tag=tag)

    def with_digest(self, digest: str) -> ImageReference:
        """Return a reference to ``digest`` in the same repository."""
        return ImageReference(registry=self.registry, repository=self.repository, digest=digest)

    def __str__(self) -> str:
        if self.digest is not None:
            return f"{self.context}@{self.digest}"
        return f"{self.context}:{self.tag}"


def _check_digest(digest: str) -> None:
    if not DIGEST_PATTERN.match(digest):
        raise ValueError(f"invalid digest '{digest}'")
    algorithm, hex_part = digest.split(":", 1)
    expected = _DIGEST_HEX_LENGTHS.get(algorithm)
    if expected is not None and not re.fullmatch(rf"[a-f0-9]{{{expected}}}", hex_part):
        raise ValueError(f"{algorithm} digest must be {expected} lowercase hex characters")


def validate_tag(tag: str) -> str:
    """Validate a bare tag name.

    Args:
        tag: Tag name such as ``production``.

    Returns:
        The tag, unchanged.

    Raises:
        InvalidReferenceError: If the tag does not match the tag grammar.
    """
    if not TAG_PATTERN.match(tag):
        raise InvalidReferenceError(
            tag,
            "tag must start with a letter, digit or '_' and contain at most 128 "
            "characters from [A-Za-z0-9_.-]",
        )
    return tag


def _split_registry(name: str) -> tuple[str, str]:
    head, sep, rest = name.partition("/")
    if sep and ("." in head or ":" in head or head == "localhost"):
        return head, rest
    return DEFAULT_REGISTRY, name


def parse_reference(value: str) -> ImageReference:
    """Parse an image reference string.

    Args:
        value: ``[registry/]repository[:tag|@digest]``.

    Returns:
        The parsed ImageReference.

    Raises:
        InvalidReferenceError: If the string is not a valid reference.

    Example:
        >>> ref = parse_reference("localhost:5000/team/app@sha256:" + "a" * 64)
        >>> ref.registry, ref.repository, ref.tag
        ('localhost:5000', 'team/app', None)
    """
    if not value or value != value.strip():
        raise InvalidReferenceError(value, "reference must be a non-empty string without spaces")

    name, at, digest = value.partition("@")
    if at:
        try:
            _check_digest(digest)
        except ValueError as e:
            raise InvalidReferenceError(value, str(e)) from e

    tag: str | None = None
    last_slash = name.rfind("/")
    last_colon = name.rfind(":")
    if last_colon > last_slash:
        name, tag = name[:last_colon], name[last_colon + 1 :]
        if not TAG_PATTERN.match(tag):
            raise InvalidReferenceError(value, f"invalid tag '{tag}'")

    registry, repository = _split_registry(name)
    if not REGISTRY_PATTERN.match(registry):
        raise InvalidReferenceError(value, f"invalid registry host '{registry}'")
    if registry in _DOCKER_HUB_ALIASES:
        registry = DEFAULT_REGISTRY
        if repository and "/" not in repository:
            repository = f"library/{repository}"

    if not repository:
        raise InvalidReferenceError(value, "repository name is empty")
    if len(repository) > _MAX_REPOSITORY_LENGTH:
        raise InvalidReferenceError(
            value, f"repository name exceeds {_MAX_REPOSITORY_LENGTH} characters"
        )
    for component in repository.split("/"):
        if not REPOSITORY_COMPONENT_PATTERN.match(component):
            reason = (
                "repository name must be lowercase"
                if component.lower() != component
                else f"invalid repository path component '{component}'"
            )
            raise InvalidReferenceError(value, reason)

    if at:
        return ImageReference(registry=registry, repository=repository, digest=digest)
    return ImageReference(registry=registry, repository=repository, tag=tag or DEFAULT_TAG)


def resolve_references(source: str, new_tag: str) -> tuple[ImageReference, ImageReference]:
    """Resolve the source image and the destination tag into references.

    The destination shares the source's registry and repository and differs
    only in its tag.

    Args:
        source: Source image string (tag or digest reference).
        new_tag: Bare destination tag name.

    Returns:
        Tuple of (source_ref, dest_ref).

    Raises:
        InvalidReferenceError: If either input is malformed.
    """
    source_ref = parse_reference(source)
    dest_ref = source_ref.with_tag(validate_tag(new_tag))
    return source_ref, dest_ref


__all__ = [
    "DEFAULT_REGISTRY",
    "DEFAULT_TAG",
    "ImageReference",
    "parse_reference",
    "resolve_references",
    "validate_tag",
]
