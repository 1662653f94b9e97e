"""Shared pytest fixtures for oci-retag tests.

Every test runs against an in-memory registry (see fakes.py); no test
touches the network.

NOTE: Do NOT add __init__.py to test directories - pytest runs in importlib
mode and test modules are collected by path.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
import structlog
from fakes import FIXED_NOW, REGISTRY, REPOSITORY, FakeRegistryTransport

from oci_retag.config import RetryConfig
from oci_retag.metadata import MetadataClient
from oci_retag.reference import ImageReference
from oci_retag.resilience import RetryPolicy
from oci_retag.retag import RetagController
from oci_retag.telemetry import set_tracer
from oci_retag.writer import TagWriter

if TYPE_CHECKING:
    from collections.abc import Generator


@pytest.fixture(autouse=True)
def reset_telemetry() -> Generator[None, None, None]:
    """Restore structlog defaults and the module tracer after each test."""
    yield
    structlog.reset_defaults()
    set_tracer(None)


@pytest.fixture
def fake_registry() -> FakeRegistryTransport:
    """Provide an empty in-memory registry."""
    return FakeRegistryTransport()


@pytest.fixture
def fast_retry_config() -> RetryConfig:
    """Retry config with three attempts and no jitter."""
    return RetryConfig(max_attempts=3, initial_delay_ms=10, max_delay_ms=100, jitter=False)


@pytest.fixture
def source_ref() -> ImageReference:
    """Source reference in the fake registry."""
    return ImageReference(registry=REGISTRY, repository=REPOSITORY, tag="build-123")


@pytest.fixture
def controller(
    fake_registry: FakeRegistryTransport,
    fast_retry_config: RetryConfig,
) -> RetagController:
    """RetagController wired to the fake registry with a fixed clock."""
    return RetagController(
        MetadataClient(fake_registry),
        TagWriter(fake_registry, RetryPolicy(fast_retry_config)),
        retry_policy=RetryPolicy(fast_retry_config),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def no_sleep() -> Generator[None, None, None]:
    """Skip real backoff delays."""
    with patch("time.sleep"):
        yield
