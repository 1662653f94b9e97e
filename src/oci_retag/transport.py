"""Registry transport: the HTTP calls behind metadata fetches and tag writes.

This module is the only place that speaks the OCI distribution API. It
exposes three operations (fetch a manifest, fetch a blob, put a manifest)
and turns every failure into a classified RetagError:

    404 / MANIFEST_UNKNOWN / NAME_UNKNOWN   -> ArtifactNotFoundError
    connection error, timeout, 408/429/5xx  -> RegistryUnavailableError
    401 / 403                               -> AuthenticationError
    any other 4xx, malformed response       -> RegistryResponseError

OrasRegistryTransport rides on the ORAS Python client: its session carries the
requests and its auth backend answers bearer-token challenges. Manifests are
moved as raw bytes so that a copied manifest keeps its digest.

Example:
    >>> transport = OrasRegistryTransport(auth_provider=default_keychain())
    >>> manifest = transport.get_manifest(parse_reference("ghcr.io/acme/api:build-123"))
    >>> manifest.digest
    'sha256:...'
"""

from __future__ import annotations

import hashlib
import json
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import requests
import structlog
from oras.auth import AuthenticationException
from oras.auth.utils import get_basic_auth
from oras.client import OrasClient
from requests.adapters import HTTPAdapter

from oci_retag.auth import AnonymousAuthProvider, AuthProvider
from oci_retag.errors import (
    ArtifactNotFoundError,
    AuthenticationError,
    RegistryResponseError,
    RegistryUnavailableError,
    RetagError,
)
from oci_retag.reference import DEFAULT_REGISTRY, ImageReference

logger = structlog.get_logger(__name__)

# Media types
OCI_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"

INDEX_MEDIA_TYPES = frozenset({OCI_IMAGE_INDEX, DOCKER_MANIFEST_LIST})
MANIFEST_MEDIA_TYPES = frozenset({OCI_IMAGE_MANIFEST, DOCKER_MANIFEST_V2})

MANIFEST_ACCEPT = ", ".join(
    [OCI_IMAGE_INDEX, OCI_IMAGE_MANIFEST, DOCKER_MANIFEST_LIST, DOCKER_MANIFEST_V2]
)

DOCKER_HUB_API_HOST = "registry-1.docker.io"

_NOT_FOUND_CODES = frozenset({"MANIFEST_UNKNOWN", "NAME_UNKNOWN", "BLOB_UNKNOWN"})
_TRANSIENT_STATUS_CODES = frozenset({408, 429})
_LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "[::1]", "::1"})


@dataclass(frozen=True)
class ManifestResponse:
    """A manifest exactly as the registry served it.

    Attributes:
        content: Raw manifest bytes. The digest is computed over these bytes.
        media_type: Manifest media type from Content-Type (or the body).
        digest: ``sha256:<hex>`` of ``content``.
    """

    content: bytes
    media_type: str
    digest: str

    @property
    def is_index(self) -> bool:
        """Check if this is an image index / manifest list."""
        return self.media_type in INDEX_MEDIA_TYPES


def compute_digest(content: bytes) -> str:
    """Return the sha256 content digest of ``content``."""
    return f"sha256:{hashlib.sha256(content).hexdigest()}"


class RegistryTransport(ABC):
    """Network operations the retag flow needs from a registry."""

    @abstractmethod
    def get_manifest(self, ref: ImageReference) -> ManifestResponse:
        """Fetch the manifest ``ref`` points to.

        Raises:
            ArtifactNotFoundError: If the manifest or repository is missing.
            RegistryUnavailableError: On transient failures.
            AuthenticationError: If access is denied.
            RegistryResponseError: If the response is unusable.
        """
        ...

    @abstractmethod
    def get_blob(self, ref: ImageReference, digest: str) -> bytes:
        """Fetch a blob (e.g. an image config) from ``ref``'s repository."""
        ...

    @abstractmethod
    def put_manifest(self, ref: ImageReference, manifest: ManifestResponse) -> str | None:
        """Upload ``manifest`` under ``ref``'s tag.

        Returns:
            The digest reported by the registry, or None if it reported none.
        """
        ...


def api_host(registry: str) -> str:
    """Return the host serving the distribution API for ``registry``."""
    if registry == DEFAULT_REGISTRY:
        return DOCKER_HUB_API_HOST
    return registry


def _hostname(registry: str) -> str:
    if registry.startswith("["):
        return registry.split("]", 1)[0] + "]"
    return registry.split(":", 1)[0]


def is_insecure_registry(registry: str, insecure_registries: Iterable[str] = ()) -> bool:
    """Check whether ``registry`` should be reached over plain HTTP.

    Loopback hosts and ``*.local`` names are always plain HTTP.
    """
    if registry in insecure_registries:
        return True
    host = _hostname(registry)
    return host in _LOCAL_HOSTS or host.endswith(".local")


def _error_codes(response: requests.Response) -> set[str]:
    try:
        body = response.json()
    except ValueError:
        return set()
    if not isinstance(body, dict):
        return set()
    errors = body.get("errors") or []
    return {str(e.get("code", "")).upper() for e in errors if isinstance(e, dict)}


def _response_detail(response: requests.Response) -> str:
    text = (response.text or "").strip()
    if len(text) > 200:
        text = text[:200] + "..."
    return f"HTTP {response.status_code}" + (f": {text}" if text else "")


def classify_response(
    response: requests.Response,
    registry: str,
    reference: str,
) -> RetagError:
    """Map a non-success registry response to a classified error.

    Args:
        response: The registry response (status >= 300).
        registry: Registry host, for error messages.
        reference: Reference being operated on.

    Returns:
        The RetagError describing the failure. Callers raise it.
    """
    status = response.status_code
    codes = _error_codes(response)

    if status == 404 or codes & _NOT_FOUND_CODES:
        return ArtifactNotFoundError(reference, registry)
    if status in _TRANSIENT_STATUS_CODES or status >= 500:
        return RegistryUnavailableError(registry, _response_detail(response), status_code=status)
    if status in (401, 403):
        reason = "access denied" if status == 403 else "unauthorized"
        return AuthenticationError(
            registry, f"{reason} for {reference} ({_response_detail(response)})"
        )
    return RegistryResponseError(registry, _response_detail(response), status_code=status)


class _TimeoutHTTPAdapter(HTTPAdapter):
    """HTTPAdapter applying a default timeout to every request."""

    def __init__(self, timeout: float, *args: Any, **kwargs: Any) -> None:
        self._timeout = timeout
        super().__init__(*args, **kwargs)

    def send(self, request: Any, **kwargs: Any) -> Any:  # type: ignore[override]
        if kwargs.get("timeout") is None:
            kwargs["timeout"] = self._timeout
        return super().send(request, **kwargs)


class OrasRegistryTransport(RegistryTransport):
    """RegistryTransport backed by the ORAS Python client.

    One authenticated OrasClient is created per registry host and reused for
    the rest of the invocation.

    Args:
        auth_provider: Source of per-registry credentials.
        insecure_registries: Hosts reached over plain HTTP.
        timeout_seconds: Per-request timeout.
    """

    def __init__(
        self,
        auth_provider: AuthProvider | None = None,
        insecure_registries: Iterable[str] = (),
        timeout_seconds: float = 30.0,
    ) -> None:
        self._auth_provider = auth_provider or AnonymousAuthProvider()
        self._insecure_registries = frozenset(insecure_registries)
        self._timeout = timeout_seconds
        self._clients: dict[str, OrasClient] = {}
        self._basic_auth: dict[str, str] = {}

    def _base_url(self, registry: str) -> str:
        scheme = "http" if is_insecure_registry(registry, self._insecure_registries) else "https"
        return f"{scheme}://{api_host(registry)}"

    def _create_oras_client(self, registry: str) -> OrasClient:
        """Create an ORAS client for ``registry`` with credentials attached.

        Credentials live only in memory on the client's auth backend and are
        never written to the Docker config.
        """
        insecure = is_insecure_registry(registry, self._insecure_registries)
        oras_client = OrasClient(insecure=insecure)

        adapter = _TimeoutHTTPAdapter(self._timeout)
        oras_client.session.mount("https://", adapter)
        oras_client.session.mount("http://", adapter)

        credentials = self._auth_provider.get_credentials(registry)
        if credentials is not None and credentials.username and credentials.password:
            oras_client.auth.set_basic_auth(credentials.username, credentials.password)
            self._basic_auth[registry] = get_basic_auth(credentials.username, credentials.password)
            logger.debug("registry_credentials_attached", registry=registry)

        return oras_client

    def _client(self, registry: str) -> OrasClient:
        client = self._clients.get(registry)
        if client is None:
            client = self._create_oras_client(registry)
            self._clients[registry] = client
        return client

    def _answer_challenge(
        self,
        client: OrasClient,
        ref: ImageReference,
        response: requests.Response,
        headers: dict[str, str],
    ) -> tuple[dict[str, str], bool]:
        """Build headers answering a 401/403 challenge.

        Returns:
            The headers to re-send with and whether they changed. Unchanged
            headers mean the challenge cannot be answered and the original
            response stands.

        Raises:
            AuthenticationError: If the token endpoint rejects the exchange.
        """
        challenge = response.headers.get("Www-Authenticate", "")
        if challenge.lower().startswith("basic"):
            basic = self._basic_auth.get(ref.registry)
            if basic is None or headers.get("Authorization") == f"Basic {basic}":
                return headers, False
            return {**headers, "Authorization": f"Basic {basic}"}, True

        try:
            new_headers, changed = client.auth.authenticate_request(
                response, headers, refresh=True
            )
        except (ValueError, AuthenticationException) as e:
            raise AuthenticationError(ref.registry, f"token exchange failed for {ref}: {e}") from e
        return new_headers, bool(changed)

    def _request(
        self,
        ref: ImageReference,
        method: str,
        url: str,
        *,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        """Issue one request through the ORAS session and classify failures.

        The request is sent once. A 401/403 carrying a bearer challenge is
        answered through the ORAS auth backend and the request is re-sent
        once with the new credentials. Nothing here sleeps or retries;
        that is RetryPolicy's job.

        Raises:
            RetagError: Classified failure for any non-2xx response or
                network error.
        """
        client = self._client(ref.registry)
        log = logger.bind(registry=ref.registry, method=method, url=url)
        request_headers = dict(headers or {})
        request_headers.update(client.auth.get_auth_header())

        try:
            response: requests.Response = client.session.request(
                method, url, data=data, headers=request_headers
            )
            if response.status_code in (401, 403):
                log.debug("registry_auth_challenge", status_code=response.status_code)
                request_headers, changed = self._answer_challenge(
                    client, ref, response, request_headers
                )
                if changed:
                    response = client.session.request(
                        method, url, data=data, headers=request_headers
                    )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise RegistryUnavailableError(ref.registry, f"{type(e).__name__}: {e}") from e
        except requests.RequestException as e:
            raise RegistryResponseError(ref.registry, str(e)) from e

        log.debug("registry_response", status_code=response.status_code)
        if response.status_code >= 300:
            raise classify_response(response, ref.registry, str(ref))
        return response

    def get_manifest(self, ref: ImageReference) -> ManifestResponse:
        url = f"{self._base_url(ref.registry)}/v2/{ref.repository}/manifests/{ref.identifier}"
        response = self._request(ref, "GET", url, headers={"Accept": MANIFEST_ACCEPT})

        content = response.content
        digest = compute_digest(content)

        header_digest = response.headers.get("Docker-Content-Digest")
        if header_digest and header_digest.startswith("sha256:") and header_digest != digest:
            raise RegistryResponseError(
                ref.registry,
                f"manifest digest mismatch for {ref}: registry reported {header_digest}, "
                f"content hashes to {digest}",
            )
        if ref.digest is not None and ref.digest.startswith("sha256:") and ref.digest != digest:
            raise RegistryResponseError(
                ref.registry,
                f"manifest for {ref} hashes to {digest}",
            )

        media_type = (response.headers.get("Content-Type") or "").split(";", 1)[0].strip()
        if not media_type or media_type == "application/json":
            media_type = _media_type_from_body(content, ref)

        return ManifestResponse(content=content, media_type=media_type, digest=digest)

    def get_blob(self, ref: ImageReference, digest: str) -> bytes:
        url = f"{self._base_url(ref.registry)}/v2/{ref.repository}/blobs/{digest}"
        response = self._request(ref.with_digest(digest), "GET", url)
        return response.content

    def put_manifest(self, ref: ImageReference, manifest: ManifestResponse) -> str | None:
        url = f"{self._base_url(ref.registry)}/v2/{ref.repository}/manifests/{ref.identifier}"
        response = self._request(
            ref,
            "PUT",
            url,
            data=manifest.content,
            headers={"Content-Type": manifest.media_type},
        )
        return response.headers.get("Docker-Content-Digest")


def _media_type_from_body(content: bytes, ref: ImageReference) -> str:
    try:
        body = json.loads(content)
    except ValueError as e:
        raise RegistryResponseError(ref.registry, f"manifest for {ref} is not JSON") from e
    media_type = body.get("mediaType") if isinstance(body, dict) else None
    if not media_type:
        # OCI manifests may omit mediaType; an index is recognised by its manifests list.
        if isinstance(body, dict) and "manifests" in body:
            return OCI_IMAGE_INDEX
        return OCI_IMAGE_MANIFEST
    return str(media_type)


__all__ = [
    "DOCKER_HUB_API_HOST",
    "DOCKER_MANIFEST_LIST",
    "DOCKER_MANIFEST_V2",
    "INDEX_MEDIA_TYPES",
    "MANIFEST_ACCEPT",
    "MANIFEST_MEDIA_TYPES",
    "ManifestResponse",
    "OCI_IMAGE_INDEX",
    "OCI_IMAGE_MANIFEST",
    "OrasRegistryTransport",
    "RegistryTransport",
    "api_host",
    "classify_response",
    "compute_digest",
    "is_insecure_registry",
]
