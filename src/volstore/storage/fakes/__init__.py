# Fake implementations for testing

from .fake_volume import FakeVolume, FakeVolumeFile

__all__ = ["FakeVolume", "FakeVolumeFile"]
