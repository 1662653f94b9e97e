"""Unit tests for credential providers."""

from __future__ import annotations

import base64
import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from oci_retag.auth import (
    PASSWORD_ENV_VAR,
    USERNAME_ENV_VAR,
    AnonymousAuthProvider,
    Credentials,
    DockerConfigAuthProvider,
    EnvironmentAuthProvider,
    KeychainAuthProvider,
    StaticAuthProvider,
    default_keychain,
)
from oci_retag.errors import AuthenticationError


def write_docker_config(tmp_path: Path, config: dict[str, object]) -> Path:
    """Write a Docker config.json and return its path."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config))
    return path


def basic_auth(username: str, password: str) -> str:
    """Encode a docker config 'auth' value."""
    return base64.b64encode(f"{username}:{password}".encode()).decode()


class TestSimpleProviders:
    """Tests for anonymous, static and environment providers."""

    def test_anonymous(self) -> None:
        """Test anonymous access never yields credentials."""
        assert AnonymousAuthProvider().get_credentials("ghcr.io") is None

    def test_static_with_wildcard(self) -> None:
        """Test exact hosts win over the '*' fallback."""
        provider = StaticAuthProvider(
            {"ghcr.io": Credentials("gh", "a"), "*": Credentials("any", "b")}
        )

        assert provider.get_credentials("ghcr.io") == Credentials("gh", "a")
        assert provider.get_credentials("quay.io") == Credentials("any", "b")

    def test_password_hidden_from_repr(self) -> None:
        """Test secrets never appear in repr."""
        assert "s3cret" not in repr(Credentials("ci", "s3cret"))

    def test_environment_pair(self) -> None:
        """Test both variables set yield credentials for any registry."""
        provider = EnvironmentAuthProvider({USERNAME_ENV_VAR: "ci", PASSWORD_ENV_VAR: "tok"})

        assert provider.get_credentials("ghcr.io") == Credentials("ci", "tok")

    def test_environment_unset(self) -> None:
        """Test no variables means no credentials."""
        assert EnvironmentAuthProvider({}).get_credentials("ghcr.io") is None

    def test_environment_half_configured(self) -> None:
        """Test a username without a password is an error."""
        provider = EnvironmentAuthProvider({USERNAME_ENV_VAR: "ci"})

        with pytest.raises(AuthenticationError, match=PASSWORD_ENV_VAR):
            provider.get_credentials("ghcr.io")


class TestDockerConfigAuthProvider:
    """Tests for ~/.docker/config.json lookups."""

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test a missing config file means anonymous."""
        provider = DockerConfigAuthProvider(tmp_path / "nope.json")

        assert provider.get_credentials("ghcr.io") is None

    def test_auths_basic(self, tmp_path: Path) -> None:
        """Test base64 'auth' entries are decoded."""
        path = write_docker_config(
            tmp_path, {"auths": {"ghcr.io": {"auth": basic_auth("ci", "pa:ss")}}}
        )

        creds = DockerConfigAuthProvider(path).get_credentials("ghcr.io")

        assert creds == Credentials("ci", "pa:ss")

    def test_auths_identity_token(self, tmp_path: Path) -> None:
        """Test identity tokens use the placeholder username."""
        path = write_docker_config(tmp_path, {"auths": {"myacr.io": {"identitytoken": "tok"}}})

        creds = DockerConfigAuthProvider(path).get_credentials("myacr.io")

        assert creds == Credentials("<token>", "tok")

    def test_docker_hub_legacy_key(self, tmp_path: Path) -> None:
        """Test Docker Hub credentials under the v1 index URL are found."""
        path = write_docker_config(
            tmp_path,
            {"auths": {"https://index.docker.io/v1/": {"auth": basic_auth("hub", "pw")}}},
        )

        creds = DockerConfigAuthProvider(path).get_credentials("index.docker.io")

        assert creds == Credentials("hub", "pw")

    def test_invalid_auth_entry(self, tmp_path: Path) -> None:
        """Test an auth value without a colon is rejected."""
        encoded = base64.b64encode(b"nocolon").decode()
        path = write_docker_config(tmp_path, {"auths": {"ghcr.io": {"auth": encoded}}})

        with pytest.raises(AuthenticationError):
            DockerConfigAuthProvider(path).get_credentials("ghcr.io")

    def test_cred_helper(self, tmp_path: Path) -> None:
        """Test credHelpers entries run docker-credential-<helper> get."""
        path = write_docker_config(tmp_path, {"credHelpers": {"123.dkr.ecr.aws": "ecr-login"}})
        completed = subprocess.CompletedProcess(
            args=[], returncode=0, stdout=json.dumps({"Username": "AWS", "Secret": "tok"}), stderr=""
        )

        with patch("oci_retag.auth.subprocess.run", return_value=completed) as mock_run:
            creds = DockerConfigAuthProvider(path).get_credentials("123.dkr.ecr.aws")

        assert creds == Credentials("AWS", "tok")
        args, kwargs = mock_run.call_args
        assert args[0] == ["docker-credential-ecr-login", "get"]
        assert kwargs["input"] == "123.dkr.ecr.aws"

    def test_creds_store_not_found(self, tmp_path: Path) -> None:
        """Test a helper reporting no entry yields anonymous access."""
        path = write_docker_config(tmp_path, {"credsStore": "desktop"})
        completed = subprocess.CompletedProcess(
            args=[], returncode=1, stdout="credentials not found in native keychain", stderr=""
        )

        with patch("oci_retag.auth.subprocess.run", return_value=completed):
            assert DockerConfigAuthProvider(path).get_credentials("ghcr.io") is None

    def test_helper_missing_binary(self, tmp_path: Path) -> None:
        """Test a configured helper that is not installed is an error."""
        path = write_docker_config(tmp_path, {"credsStore": "pass"})

        with (
            patch("oci_retag.auth.subprocess.run", side_effect=FileNotFoundError()),
            pytest.raises(AuthenticationError, match="docker-credential-pass"),
        ):
            DockerConfigAuthProvider(path).get_credentials("ghcr.io")

    def test_helper_failure(self, tmp_path: Path) -> None:
        """Test other helper failures are errors."""
        path = write_docker_config(tmp_path, {"credsStore": "desktop"})
        completed = subprocess.CompletedProcess(
            args=[], returncode=1, stdout="", stderr="keychain locked"
        )

        with (
            patch("oci_retag.auth.subprocess.run", return_value=completed),
            pytest.raises(AuthenticationError, match="keychain locked"),
        ):
            DockerConfigAuthProvider(path).get_credentials("ghcr.io")

    def test_docker_config_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test DOCKER_CONFIG selects the config directory."""
        monkeypatch.setenv("DOCKER_CONFIG", str(tmp_path))

        assert DockerConfigAuthProvider.default_config_path() == tmp_path / "config.json"


class TestKeychain:
    """Tests for KeychainAuthProvider."""

    def test_first_match_wins(self) -> None:
        """Test providers are consulted in order."""
        first = MagicMock()
        first.get_credentials.return_value = None
        second = StaticAuthProvider({"*": Credentials("b", "2")})
        third = MagicMock()

        keychain = KeychainAuthProvider([first, second, third])

        assert keychain.get_credentials("ghcr.io") == Credentials("b", "2")
        first.get_credentials.assert_called_once_with("ghcr.io")
        third.get_credentials.assert_not_called()

    def test_empty_keychain(self) -> None:
        """Test an exhausted chain is anonymous."""
        assert KeychainAuthProvider([AnonymousAuthProvider()]).get_credentials("x.io") is None

    def test_default_keychain_order(self) -> None:
        """Test the CLI keychain checks the environment before Docker config."""
        providers = default_keychain().providers

        assert [type(p) for p in providers] == [EnvironmentAuthProvider, DockerConfigAuthProvider]
