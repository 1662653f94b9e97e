"""Unit tests for RetagController.

End-to-end flows against the in-memory registry: first promotion, re-run
no-op, dry-run previews, failure classification and the audit record.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from fakes import FIXED_NOW, REGISTRY, FakeRegistryTransport

from oci_retag.config import RetagSettings, RetryConfig
from oci_retag.errors import (
    AuthenticationError,
    DestinationLookupError,
    InvalidReferenceError,
    RegistryUnavailableError,
    SourceNotFoundError,
    TagWriteError,
)
from oci_retag.metadata import MetadataClient
from oci_retag.retag import RetagController, RetagResult, RetagState
from oci_retag.writer import TagWriter

SOURCE = f"{REGISTRY}/acme/api:build-123"
DEST = f"{REGISTRY}/acme/api:production"


class TestRetagScenarios:
    """Tests for the create / no-op / preview flows."""

    def test_first_promotion_creates_tag(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test a missing destination is created with exactly one write."""
        digest = fake_registry.add_image("build-123", created="2024-06-01T09:00:00Z")

        result = controller.retag(SOURCE, "production")

        assert result.decision == "create"
        assert result.performed_write is True
        assert result.marker == "[OK]"
        assert result.message.startswith(f"Successfully pointed tag 'production' to {digest[:19]}")
        assert "3 hours ago" in result.message
        assert "was" not in result.message
        assert fake_registry.put_calls == [(DEST, digest)]
        assert fake_registry.digest_of("production") == digest

    def test_already_correct_is_noop(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test a destination already at the source digest is not written."""
        digest = fake_registry.add_image("build-123")
        fake_registry.point("production", digest)

        result = controller.retag(SOURCE, "production")

        assert result.decision == "noop"
        assert result.performed_write is False
        assert result.write_attempts == 0
        assert "already points to the correct image" in result.message
        assert result.message.endswith("No action needed.")
        assert fake_registry.put_calls == []

    def test_dry_run_overwrite_previews_both_digests(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test dry-run reports the move without writing."""
        old = fake_registry.add_image("production", created="2024-05-30T12:00:00Z", seed="old")
        new = fake_registry.add_image("build-123")

        result = controller.retag(SOURCE, "production", dry_run=True)

        assert result.decision == "would_overwrite"
        assert result.marker == "[DRY-RUN]"
        assert result.dry_run is True
        assert result.performed_write is False
        assert old[:19] in result.message
        assert new[:19] in result.message
        assert fake_registry.put_calls == []
        assert fake_registry.digest_of("production") == old

    def test_dry_run_create(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test dry-run against a missing destination previews creation."""
        fake_registry.add_image("build-123")

        result = controller.retag(SOURCE, "production", dry_run=True)

        assert result.decision == "would_create"
        assert result.message.startswith(f"Would create tag 'production' from {SOURCE}")
        assert fake_registry.put_calls == []

    def test_dry_run_noop(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test dry-run against an already-correct tag is the plain no-op."""
        digest = fake_registry.add_image("build-123")
        fake_registry.point("production", digest)

        result = controller.retag(SOURCE, "production", dry_run=True)

        assert result.decision == "noop"
        assert result.marker == "[OK]"

    def test_overwrite_reports_previous(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test moving a tag records and reports the previous digest."""
        old = fake_registry.add_image("production", created="2024-05-30T12:00:00Z", seed="old")
        new = fake_registry.add_image("build-123")

        result = controller.retag(SOURCE, "production")

        assert result.decision == "overwrite"
        assert result.previous_digest == old
        assert result.previous_created_at == datetime(2024, 5, 30, 12, tzinfo=timezone.utc)
        assert f"(was {old[:19]}..." in result.message
        assert fake_registry.digest_of("production") == new

    def test_rerun_is_idempotent(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test a second identical invocation performs no write."""
        fake_registry.add_image("build-123")

        first = controller.retag(SOURCE, "production")
        second = controller.retag(SOURCE, "production")

        assert first.decision == "create"
        assert second.decision == "noop"
        assert len(fake_registry.put_calls) == 1

    def test_digest_source(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test a digest-pinned source is promoted."""
        digest = fake_registry.add_image("build-123")

        result = controller.retag(f"{REGISTRY}/acme/api@{digest}", "production")

        assert result.decision == "create"
        assert fake_registry.digest_of("production") == digest


class TestRetagFailures:
    """Tests for failure classification."""

    def test_invalid_reference_makes_no_calls(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test malformed input fails before contacting the registry."""
        with pytest.raises(InvalidReferenceError):
            controller.retag("Not A Reference", "production")

        with pytest.raises(InvalidReferenceError):
            controller.retag(SOURCE, "bad tag")

        assert fake_registry.get_calls == []
        assert controller.state is RetagState.FAILED

    def test_missing_source(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test a missing source is fatal and never looks at the destination."""
        with pytest.raises(SourceNotFoundError) as exc_info:
            controller.retag(f"{REGISTRY}/acme/api:build-999", "production")

        assert exc_info.value.exit_code == 3
        assert fake_registry.get_calls == [f"{REGISTRY}/acme/api:build-999"]
        assert fake_registry.put_calls == []

    def test_source_permission_denied(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test an auth failure on the source propagates unchanged."""
        fake_registry.add_image("build-123")
        fake_registry.fail_get(SOURCE, AuthenticationError(REGISTRY, "denied"))

        with pytest.raises(AuthenticationError):
            controller.retag(SOURCE, "production")

        assert fake_registry.put_calls == []

    @pytest.mark.usefixtures("no_sleep")
    def test_transient_source_lookup_retried(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test transient lookup failures are retried before succeeding."""
        fake_registry.add_image("build-123")
        fake_registry.fail_get(
            SOURCE,
            RegistryUnavailableError(REGISTRY, "HTTP 503", status_code=503),
            RegistryUnavailableError(REGISTRY, "HTTP 503", status_code=503),
        )

        result = controller.retag(SOURCE, "production")

        assert result.decision == "create"
        assert fake_registry.get_calls.count(SOURCE) == 3

    @pytest.mark.usefixtures("no_sleep")
    def test_source_unavailable_after_retries(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test persistent unavailability surfaces RegistryUnavailableError."""
        fake_registry.add_image("build-123")
        fake_registry.fail_get(
            SOURCE, *[RegistryUnavailableError(REGISTRY, "HTTP 503") for _ in range(3)]
        )

        with pytest.raises(RegistryUnavailableError) as exc_info:
            controller.retag(SOURCE, "production")

        assert exc_info.value.exit_code == 5
        assert fake_registry.get_calls.count(SOURCE) == 3

    def test_destination_lookup_failure_is_fatal(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test a destination error other than not-found aborts without writing."""
        fake_registry.add_image("build-123")
        fake_registry.fail_get(DEST, AuthenticationError(REGISTRY, "denied"))

        with pytest.raises(DestinationLookupError) as exc_info:
            controller.retag(SOURCE, "production")

        assert exc_info.value.exit_code == 7
        assert isinstance(exc_info.value.cause, AuthenticationError)
        assert "not modified" in str(exc_info.value)
        assert fake_registry.put_calls == []

    @pytest.mark.usefixtures("no_sleep")
    def test_destination_unavailable_after_retries_is_fatal(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test a destination lookup still failing after retries aborts without writing."""
        fake_registry.add_image("build-123")
        fake_registry.fail_get(
            DEST,
            *[RegistryUnavailableError(REGISTRY, "HTTP 503", status_code=503) for _ in range(3)],
        )

        with pytest.raises(DestinationLookupError) as exc_info:
            controller.retag(SOURCE, "production")

        assert exc_info.value.exit_code == 7
        assert isinstance(exc_info.value.cause, RegistryUnavailableError)
        assert fake_registry.get_calls.count(DEST) == 3
        assert fake_registry.put_calls == []
        assert controller.state is RetagState.FAILED

    def test_unexpected_error_marks_failed(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test an unclassified exception still ends in the failed state."""
        fake_registry.add_image("build-123")
        fake_registry.fail_get(SOURCE, ValueError("unexpected payload"))

        with pytest.raises(ValueError, match="unexpected payload"):
            controller.retag(SOURCE, "production")

        assert controller.state is RetagState.FAILED
        assert fake_registry.put_calls == []

    @pytest.mark.usefixtures("no_sleep")
    def test_write_failure_is_tag_write_error(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test a failed write reports attempts and the ambiguous state."""
        fake_registry.add_image("build-123")
        fake_registry.fail_put(*[RegistryUnavailableError(REGISTRY, "HTTP 502") for _ in range(3)])

        with pytest.raises(TagWriteError) as exc_info:
            controller.retag(SOURCE, "production")

        error = exc_info.value
        assert error.exit_code == 8
        assert error.attempts == 3
        assert error.tag == "production"
        assert isinstance(error.cause, RegistryUnavailableError)
        assert "re-run" in str(error)
        assert controller.state is RetagState.FAILED


class TestRetagResult:
    """Tests for the audit record and state tracking."""

    def test_result_fields(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test the audit record carries digests, times and attempts."""
        digest = fake_registry.add_image("build-123", created="2024-05-01T12:00:00Z")

        result = controller.retag(SOURCE, "production")

        assert isinstance(result, RetagResult)
        assert result.source == SOURCE
        assert result.destination == DEST
        assert result.source_digest == digest
        assert result.source_created_at == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        assert result.previous_digest is None
        assert result.write_attempts == 1
        assert result.completed_at == FIXED_NOW
        assert result.trace_id == ""
        assert result.line == f"{result.marker} {result.message}"
        assert controller.state is RetagState.SUCCEEDED

    def test_result_is_json_serializable(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test the record dumps to JSON for --output json."""
        fake_registry.add_image("build-123")

        payload = controller.retag(SOURCE, "production").model_dump(mode="json")

        assert payload["decision"] == "create"
        assert payload["completed_at"] == "2024-06-01T12:00:00Z"

    def test_states_visited(
        self, controller: RetagController, fake_registry: FakeRegistryTransport
    ) -> None:
        """Test the controller walks the write path in order."""
        fake_registry.add_image("build-123")
        visited: list[RetagState] = []
        original = controller._transition

        def record(state: RetagState, **context: object) -> None:
            visited.append(state)
            original(state, **context)

        controller._transition = record  # type: ignore[method-assign]
        controller.retag(SOURCE, "production")

        assert visited == [
            RetagState.FETCHING_SOURCE,
            RetagState.FETCHING_DESTINATION,
            RetagState.DECIDING,
            RetagState.WRITING,
            RetagState.FINAL_REPORTING,
            RetagState.SUCCEEDED,
        ]


class TestFromSettings:
    """Tests for RetagController.from_settings."""

    def test_uses_given_transport_and_settings(self, fake_registry: FakeRegistryTransport) -> None:
        """Test settings flow into the metadata client and retry policies."""
        settings = RetagSettings(
            platform="linux/arm64",
            retry=RetryConfig(max_attempts=2, jitter=False),
        )

        controller = RetagController.from_settings(settings, transport=fake_registry)

        assert isinstance(controller.metadata_client, MetadataClient)
        assert isinstance(controller.writer, TagWriter)
        assert controller.metadata_client.platform == "linux/arm64"

    def test_builds_oras_transport(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the default transport receives auth, insecure hosts and timeout."""
        mock_transport_cls = MagicMock()
        monkeypatch.setattr("oci_retag.retag.OrasRegistryTransport", mock_transport_cls)
        provider = MagicMock()
        settings = RetagSettings(insecure_registries=["localhost:5000"], timeout_seconds=5)

        RetagController.from_settings(settings, auth_provider=provider)

        mock_transport_cls.assert_called_once_with(
            auth_provider=provider,
            insecure_registries=["localhost:5000"],
            timeout_seconds=5.0,
        )
