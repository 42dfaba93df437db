"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from foundry.config import ExportConfig  # noqa: E402
from foundry.retry import RetryPolicy  # noqa: E402
from foundry.storage.local import LocalObjectStore  # noqa: E402
from tests.fakes import FakeClock, FakeRemoteService  # noqa: E402


@pytest.fixture
def clock():
    """Fake monotonic clock; pass ``clock.sleep`` and ``clock`` to components."""
    return FakeClock()


@pytest.fixture
def remote():
    return FakeRemoteService()


@pytest.fixture
def local_store():
    return LocalObjectStore()


@pytest.fixture
def fast_policy():
    """Deterministic retry policy without jitter."""
    return RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=4.0, backoff_multiplier=2.0, jitter=0.0)


@pytest.fixture
def sample_config_dict(tmp_path):
    """Provide a sample valid configuration."""
    return {
        "export": {
            "table": "analytics.events",
            "export_root": str(tmp_path / "export"),
            "parallelism_hint": 3,
            "sharded": True,
            "file_format": "json",
        },
        "polling": {
            "base_delay": 1.0,
            "max_delay": 4.0,
            "jitter": 0.0,
            "export_timeout_seconds": 60,
            "reader_timeout_seconds": 60,
        },
    }


@pytest.fixture
def sample_config(sample_config_dict):
    return ExportConfig.from_dict(sample_config_dict)


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mock AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
