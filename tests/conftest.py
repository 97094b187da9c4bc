"""Root pytest configuration for volstore tests."""
import pytest

from volstore.object_types import LogicalObjectPath
from volstore.settings import Settings
from volstore.storage.fakes import FakeVolume
from volstore.storage.registry import VolumeRegistry


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "xattr: needs a filesystem with user extended attributes"
    )


# Keep the environment from leaking into settings under test
@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Automatically clear volstore environment variables."""
    for key in (
        "VOLSTORE_DEVICES_CONFIG",
        "VOLSTORE_MOUNT_CHECK",
        "VOLSTORE_MOUNT_RETRY",
        "VOLSTORE_METADATA_CHUNK_SIZE",
        "VOLSTORE_IO_CHUNK_SIZE",
        "VOLSTORE_DISABLE_FALLOCATE",
        "VOLSTORE_DEFAULT_CONTENT_TYPE",
    ):
        monkeypatch.delenv(key, raising=False)


class Clock:
    """Manually advanced clock for deterministic mtimes."""

    def __init__(self, start: float = 1700000000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 1.0) -> float:
        self.now += seconds
        return self.now


# Standardized test fixtures
@pytest.fixture
def settings():
    """Standard test settings."""
    return Settings(mount_check=False)


@pytest.fixture
def clock():
    """Deterministic clock shared with the fake volume."""
    return Clock()


@pytest.fixture
def volume(clock):
    """In-memory volume for testing."""
    return FakeVolume(clock=clock)


@pytest.fixture
def object_path():
    """Standard logical object path."""
    return LogicalObjectPath("AUTH_test", "photos", "2024/cat.jpg")


@pytest.fixture
def registry(volume):
    """Registry serving the fake volume as device 'vol0'."""
    return VolumeRegistry({"vol0": volume})
