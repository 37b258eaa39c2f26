import numpy as np
import pytest

from spectrohelio.core.events import Broadcaster, EventRecorder
from tests.helpers.synthetic import scan_video


@pytest.fixture(scope="module")
def scan():
    """128 frames of 64x128 crossing a disk of radius 40."""
    return scan_video()


@pytest.fixture
def scan_path(temp_dir, scan):
    path = temp_dir / "scan.npy"
    np.save(path, scan)
    return path


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def broadcaster(recorder):
    return Broadcaster([recorder])


@pytest.fixture
def make_processor(broadcaster):
    """Factory for processors sharing the recording broadcaster; pools are shut down on teardown."""
    from spectrohelio.pipeline.processor import SolexVideoProcessor

    created = []

    def _make(config, **kwargs):
        kwargs.setdefault("broadcaster", broadcaster)
        processor = SolexVideoProcessor(config, **kwargs)
        created.append(processor)
        return processor

    yield _make
    for processor in created:
        processor.shutdown()
