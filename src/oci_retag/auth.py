"""Credential providers for registry access.

Providers answer one question: which credentials, if any, should be used for
a given registry host. They never log in themselves; the transport passes the
returned credentials to the ORAS client.

Supported Providers:
- AnonymousAuthProvider: No credentials (public registries)
- StaticAuthProvider: Fixed username/password (tests, scripted use)
- EnvironmentAuthProvider: RETAG_REGISTRY_USERNAME / RETAG_REGISTRY_PASSWORD
- DockerConfigAuthProvider: ``~/.docker/config.json`` auths, credHelpers
  and credsStore (via ``docker-credential-<helper> get``)
- KeychainAuthProvider: First provider that returns credentials wins

Example:
    >>> provider = default_keychain()
    >>> creds = provider.get_credentials("ghcr.io")
    >>> creds is None or bool(creds.username)
    True
"""

from __future__ import annotations

import base64
import json
import os
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from oci_retag.errors import AuthenticationError

logger = structlog.get_logger(__name__)

USERNAME_ENV_VAR = "RETAG_REGISTRY_USERNAME"
PASSWORD_ENV_VAR = "RETAG_REGISTRY_PASSWORD"

# Docker Hub credentials are stored under the legacy index URL.
_DOCKER_HUB_KEYS = (
    "https://index.docker.io/v1/",
    "index.docker.io",
    "docker.io",
    "registry-1.docker.io",
)

# Identity tokens are stored with this placeholder username.
_TOKEN_USERNAME = "<token>"


@dataclass(frozen=True)
class Credentials:
    """Username/password pair for a registry.

    Attributes:
        username: Username (or a placeholder for token auth).
        password: Password or token. Excluded from repr.
    """

    username: str
    password: str = field(repr=False)


class AuthProvider(ABC):
    """Abstract source of per-registry credentials.

    Example:
        >>> class MyProvider(AuthProvider):
        ...     def get_credentials(self, registry: str) -> Credentials | None:
        ...         return Credentials(username="ci", password="s3cret")
    """

    @abstractmethod
    def get_credentials(self, registry: str) -> Credentials | None:
        """Return credentials for ``registry``, or None for anonymous access.

        Args:
            registry: Registry host[:port] as it appears in the reference.

        Raises:
            AuthenticationError: If a configured credential source fails.
        """
        ...


class AnonymousAuthProvider(AuthProvider):
    """Provider that never supplies credentials."""

    def get_credentials(self, registry: str) -> Credentials | None:  # noqa: ARG002
        return None


class StaticAuthProvider(AuthProvider):
    """Provider with a fixed credential table.

    Args:
        credentials: Mapping of registry host to Credentials. A ``"*"`` key
            applies to every host not listed explicitly.
    """

    def __init__(self, credentials: Mapping[str, Credentials]) -> None:
        self._credentials = dict(credentials)

    def get_credentials(self, registry: str) -> Credentials | None:
        return self._credentials.get(registry, self._credentials.get("*"))


class EnvironmentAuthProvider(AuthProvider):
    """Provider reading one username/password pair from the environment.

    The pair applies to every registry. Both variables must be set; a
    username without a password is treated as a configuration error.
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ if environ is not None else os.environ

    def get_credentials(self, registry: str) -> Credentials | None:
        username = self._environ.get(USERNAME_ENV_VAR)
        password = self._environ.get(PASSWORD_ENV_VAR)

        if not username and not password:
            return None
        if not username or not password:
            raise AuthenticationError(
                registry,
                f"both {USERNAME_ENV_VAR} and {PASSWORD_ENV_VAR} must be set",
            )

        logger.debug("env_credentials_loaded", registry=registry)
        return Credentials(username=username, password=password)


class DockerConfigAuthProvider(AuthProvider):
    """Provider backed by the Docker CLI configuration file.

    Lookup order for a registry host:
        1. ``credHelpers[host]`` -> ``docker-credential-<helper> get``
        2. ``auths[host].auth`` (base64 ``user:password``) or
           ``auths[host].identitytoken``
        3. ``credsStore`` -> ``docker-credential-<store> get``

    Args:
        config_path: Explicit config file. Defaults to
            ``$DOCKER_CONFIG/config.json`` or ``~/.docker/config.json``.
        helper_timeout: Seconds to wait for a credential helper.
    """

    def __init__(self, config_path: Path | None = None, helper_timeout: float = 30.0) -> None:
        self._config_path = config_path or self.default_config_path()
        self._helper_timeout = helper_timeout
        self._config: dict[str, Any] | None = None

    @staticmethod
    def default_config_path() -> Path:
        """Return the Docker config path honouring ``DOCKER_CONFIG``."""
        docker_config = os.environ.get("DOCKER_CONFIG")
        if docker_config:
            return Path(docker_config) / "config.json"
        return Path.home() / ".docker" / "config.json"

    def _load_config(self) -> dict[str, Any]:
        if self._config is not None:
            return self._config

        if not self._config_path.exists():
            self._config = {}
            return self._config

        try:
            data = json.loads(self._config_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(
                "docker_config_unreadable",
                path=str(self._config_path),
                error=str(e),
            )
            data = {}

        self._config = data if isinstance(data, dict) else {}
        return self._config

    @staticmethod
    def _candidate_keys(registry: str) -> tuple[str, ...]:
        if registry in _DOCKER_HUB_KEYS:
            return _DOCKER_HUB_KEYS
        return (registry, f"https://{registry}", f"http://{registry}")

    def get_credentials(self, registry: str) -> Credentials | None:
        config = self._load_config()
        keys = self._candidate_keys(registry)

        cred_helpers: dict[str, str] = config.get("credHelpers") or {}
        for key in keys:
            helper = cred_helpers.get(key)
            if helper:
                return self._run_helper(helper, key, registry)

        auths: dict[str, Any] = config.get("auths") or {}
        for key in keys:
            entry = auths.get(key)
            if isinstance(entry, dict):
                creds = self._decode_auth_entry(entry, registry)
                if creds is not None:
                    return creds

        store = config.get("credsStore")
        if store:
            return self._run_helper(store, keys[0], registry)

        return None

    @staticmethod
    def _decode_auth_entry(entry: dict[str, Any], registry: str) -> Credentials | None:
        token = entry.get("identitytoken")
        if token:
            return Credentials(username=_TOKEN_USERNAME, password=token)

        auth = entry.get("auth")
        if not auth:
            username = entry.get("username")
            password = entry.get("password")
            if username and password:
                return Credentials(username=username, password=password)
            return None

        try:
            decoded = base64.b64decode(auth).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise AuthenticationError(registry, f"invalid auth entry in docker config: {e}") from e

        username, sep, password = decoded.partition(":")
        if not sep:
            raise AuthenticationError(registry, "docker config auth entry is not 'user:password'")
        return Credentials(username=username, password=password)

    def _run_helper(self, helper: str, server: str, registry: str) -> Credentials | None:
        """Query a Docker credential helper.

        A helper reporting "credentials not found" yields None; any other
        failure is an AuthenticationError.
        """
        program = f"docker-credential-{helper}"
        log = logger.bind(helper=program, registry=registry)

        try:
            result = subprocess.run(  # noqa: S603
                [program, "get"],
                input=server,
                capture_output=True,
                text=True,
                timeout=self._helper_timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise AuthenticationError(registry, f"credential helper '{program}' not found") from e
        except subprocess.TimeoutExpired as e:
            raise AuthenticationError(registry, f"credential helper '{program}' timed out") from e

        if result.returncode != 0:
            message = (result.stdout or result.stderr).strip()
            if "credentials not found" in message.lower():
                log.debug("credential_helper_no_entry")
                return None
            raise AuthenticationError(registry, f"credential helper '{program}' failed: {message}")

        try:
            payload = json.loads(result.stdout)
            username = payload["Username"]
            secret = payload["Secret"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise AuthenticationError(
                registry, f"credential helper '{program}' returned invalid output"
            ) from e

        log.debug("credential_helper_resolved")
        return Credentials(username=username or _TOKEN_USERNAME, password=secret)


class KeychainAuthProvider(AuthProvider):
    """Chain of providers; the first one returning credentials wins.

    Example:
        >>> keychain = KeychainAuthProvider([EnvironmentAuthProvider(), AnonymousAuthProvider()])
    """

    def __init__(self, providers: Sequence[AuthProvider]) -> None:
        self._providers = tuple(providers)

    @property
    def providers(self) -> tuple[AuthProvider, ...]:
        """Return the providers in lookup order."""
        return self._providers

    def get_credentials(self, registry: str) -> Credentials | None:
        for provider in self._providers:
            creds = provider.get_credentials(registry)
            if creds is not None:
                return creds
        return None


def default_keychain() -> KeychainAuthProvider:
    """Return the keychain used by the CLI: environment, then Docker config."""
    return KeychainAuthProvider([EnvironmentAuthProvider(), DockerConfigAuthProvider()])


__all__ = [
    "AnonymousAuthProvider",
    "AuthProvider",
    "Credentials",
    "DockerConfigAuthProvider",
    "EnvironmentAuthProvider",
    "KeychainAuthProvider",
    "PASSWORD_ENV_VAR",
    "StaticAuthProvider",
    "USERNAME_ENV_VAR",
    "default_keychain",
]
