import numpy as np
import pytest

from spectrohelio.core.regression import DistortionPolynomial
from spectrohelio.sun import MagnitudeSunEdgeDetector, PixelShiftRange, SunEdges
from tests.helpers.synthetic import scan_video

pytestmark = pytest.mark.unit


class TestPixelShiftRange:

    def test_flat_line(self):
        poly = DistortionPolynomial((0.0, 0.0, 30.5))

        shifts = PixelShiftRange.compute(poly, 0, 99, height=64, step=0.5)

        # floor(30.5) = 30 rows above, 64 - 2 - 30.5 rows below
        assert shifts.min_shift == -30.0
        assert shifts.max_shift == 31.0
        assert shifts.contains(0.0)
        assert not shifts.contains(31.5)

    def test_curved_line_uses_extremes(self):
        poly = DistortionPolynomial((0.001, -0.2, 20.0))  # min 10 at x=100

        shifts = PixelShiftRange.compute(poly, 0, 200, height=100, step=1.0)

        assert shifts.min_shift == -10.0
        assert shifts.max_shift == 78.0

    def test_values(self):
        shifts = PixelShiftRange(-1.0, 1.0, 0.5)

        assert shifts.values() == [-1.0, -0.5, 0.0, 0.5, 1.0]

    def test_empty_range_has_no_values(self):
        assert PixelShiftRange(2.0, 1.0, 0.5).values() == []


class TestSunEdges:

    @pytest.fixture
    def detector(self, make_config):
        return MagnitudeSunEdgeDetector(make_config(processor={"edge_margin_frames": 2}))

    def test_find_edges(self, detector):
        edges = detector.find_edges([1, 1, 9, 10, 10, 9, 1, 1])

        assert edges == SunEdges(2, 5)

    @pytest.mark.parametrize("magnitudes", [[], [5, 5, 5]])
    def test_no_edges(self, detector, magnitudes):
        assert detector.find_edges(magnitudes) is None

    def test_range_widened_by_margin(self, detector):
        assert detector.reconstruction_range(SunEdges(5, 10), 100) == (3, 13)

    def test_range_clamped(self, detector):
        assert detector.reconstruction_range(SunEdges(1, 9), 10) == (0, 10)

    def test_full_video_without_edges(self, detector):
        assert detector.reconstruction_range(None, 42) == (0, 42)

    def test_magnitude_is_frame_mean(self):
        frame = np.zeros((4, 3))
        frame[:, 1] = [2, 4, 6, 8]

        assert MagnitudeSunEdgeDetector.magnitude(frame) == pytest.approx(20 / 12)

    def test_magnitude_peaks_at_disk_centre(self):
        scan = scan_video(frames=128, center=(64.0, 64.0), radius=40.0)

        magnitudes = [MagnitudeSunEdgeDetector.magnitude(frame.astype(np.float32)) for frame in scan]

        assert int(np.argmax(magnitudes)) == 64
        assert magnitudes[64] > magnitudes[44] > magnitudes[30] > magnitudes[10]

    def test_edges_cover_the_disk(self, detector):
        scan = scan_video(frames=128, center=(64.0, 64.0), radius=40.0)
        magnitudes = [MagnitudeSunEdgeDetector.magnitude(frame.astype(np.float32)) for frame in scan]

        edges = detector.find_edges(magnitudes)

        assert edges.start <= 30 and edges.end >= 98
        assert edges.start > 23 and edges.end < 105
