"""Shared pytest configuration and fixtures for all tests."""

import os
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from cinegenius.video_dispatch.config import DEFAULT_PROVIDER_CONFIGS
from cinegenius.video_dispatch.models import GenerationRequest

_PROVIDER_KEYS = {
    "runway": "RUNWAY_API_KEY",
    "seedance": "SEEDANCE_API_KEY",
    "stable_video": "STABILITY_API_KEY",
}


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run only e2e tests (default: run only unit tests)",
    )


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers",
        "unit: Unit tests that use mocks and don't make real API calls",
    )
    config.addinivalue_line(
        "markers",
        "e2e: End-to-end tests that make real (paid) API calls",
    )


def pytest_collection_modifyitems(config, items):
    """Mark tests by directory and skip the suite that was not requested."""
    run_e2e = config.getoption("--e2e")

    for item in items:
        if "/e2e/" in item.nodeid:
            item.add_marker(pytest.mark.e2e)
        elif "/unit/" in item.nodeid:
            item.add_marker(pytest.mark.unit)

        if not run_e2e and "e2e" in item.keywords:
            item.add_marker(
                pytest.mark.skip(
                    reason="E2E tests skipped by default. Use --e2e to run them."
                )
            )

        if run_e2e and "unit" in item.keywords:
            item.add_marker(
                pytest.mark.skip(reason="Unit tests skipped when --e2e flag is used.")
            )

        if run_e2e and "e2e" in item.keywords:
            for fragment, env_var in _PROVIDER_KEYS.items():
                if fragment in item.nodeid.lower() and not os.getenv(env_var):
                    item.add_marker(
                        pytest.mark.skip(reason=f"{env_var} environment variable not set")
                    )


class FakeClock:
    """Manually advanced UTC clock for guard tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeTimer:
    """Monotonic time plus an async sleep that advances it instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def i2v_request():
    """Short image-to-video request every provider can serve."""
    return GenerationRequest(
        prompt="A lighthouse at dusk, waves crashing",
        image_url="https://example.com/lighthouse.png",
        duration_seconds=4,
        quality="medium",
        style="realistic",
        aspect_ratio="16:9",
        fps=24,
        motion_level=0.5,
    )


@pytest.fixture
def t2v_request():
    """Text-to-video request only Runway can serve."""
    return GenerationRequest(
        prompt="A fox running through fresh snow",
        duration_seconds=5,
        quality="high",
        style="cinematic",
        aspect_ratio="9:16",
        fps=30,
        seed=42,
    )


@pytest.fixture
def make_client(timer):
    """Build a provider client whose HTTP calls go to ``handler``.

    ``handler`` receives each ``httpx.Request`` and returns an ``httpx.Response``.
    Sleeps are instant and advance the fake monotonic clock.
    """

    def _make(client_cls, handler, guard=None, **config_overrides):
        config = DEFAULT_PROVIDER_CONFIGS[client_cls.provider].model_copy(
            update={"api_key": "test-api-key", **config_overrides}
        )
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return client_cls(
            config,
            guard=guard,
            http_client=http_client,
            sleep=timer.sleep,
            monotonic=timer.monotonic,
        )

    return _make
