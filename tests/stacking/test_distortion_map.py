import io

import numpy as np
import pytest

from spectrohelio.contracts import ContractViolation, ProcessingError
from spectrohelio.stacking import DistortionMap
from spectrohelio.stacking.distortion_map import CUBIC_WEIGHT_LUT, LUT_SIZE, legacy_bytes

pytestmark = pytest.mark.unit


def constant_map(dx, dy, rows=10, cols=10, step=16, tile_size=32):
    dxy = np.empty((rows, cols, 2))
    dxy[..., 0] = dx
    dxy[..., 1] = dy
    return DistortionMap.from_arrays(step, tile_size, dxy)


class TestGrid:

    def test_grid_dimensions(self):
        m = DistortionMap(100, 80, 32, 16)

        assert (m.cols, m.rows) == (9, 8)
        assert not m.sampled.any()

    def test_record_and_find_on_node(self):
        m = DistortionMap(100, 80, 32, 16)

        m.record(48, 64, 1.5, -0.5)

        assert m.cell_of(48, 64) == (3, 2)
        assert m.sampled[3, 2]
        assert m.find(32, 48) == pytest.approx((1.5, -0.5))

    def test_find_outside_interior_is_zero(self):
        m = constant_map(1.0, 1.0)

        assert m.find(-1, 10) == (0.0, 0.0)
        assert m.find(10, 9 * 16) == (0.0, 0.0)

    @pytest.mark.parametrize("x, y", [(0, 0), (1000, 40)])
    def test_record_outside_grid(self, x, y):
        with pytest.raises(IndexError):
            DistortionMap(100, 80, 32, 16).record(x, y, 1.0, 1.0)

    def test_invalid_construction(self):
        with pytest.raises(ValueError):
            DistortionMap(100, 80, 32, 0)
        with pytest.raises(ValueError):
            DistortionMap.from_arrays(16, 32, np.zeros((3, 3)))

    def test_constant_field_interpolates_to_constant(self):
        m = constant_map(0.75, -2.0)

        dx, dy = m.find_many(np.array([17.3, 40.9, 100.0]), np.array([33.3, 21.0, 99.9]))

        np.testing.assert_allclose(dx, 0.75, atol=1e-9)
        np.testing.assert_allclose(dy, -2.0, atol=1e-9)

    def test_lut_rows_sum_to_one(self):
        assert CUBIC_WEIGHT_LUT.shape == (LUT_SIZE, 4)
        np.testing.assert_allclose(CUBIC_WEIGHT_LUT.sum(axis=1), 1.0, atol=1e-12)
        np.testing.assert_allclose(CUBIC_WEIGHT_LUT[0], [0, 1, 0, 0], atol=1e-12)


class TestCombination:

    def test_average_counts_sampled_cells_only(self):
        a = constant_map(1.0, 0.0, rows=3, cols=3)
        b = DistortionMap.from_arrays(16, 32, np.full((3, 3, 2), 3.0),
                                      sampled=np.eye(3, dtype=bool))

        avg = DistortionMap.average([a, b])

        assert avg.dxy[0, 0, 0] == pytest.approx(2.0)
        assert avg.dxy[0, 1, 0] == pytest.approx(1.0)
        assert avg.sampled.all()

    def test_average_requires_same_grid(self):
        with pytest.raises(ContractViolation):
            DistortionMap.average([constant_map(0, 0, rows=3), constant_map(0, 0, rows=4)])

    def test_synthesize_chains_displacements(self):
        combined = DistortionMap.synthesize([constant_map(1.0, 0.0), constant_map(2.0, 0.5)])

        assert combined.dxy[1, 1] == pytest.approx((3.0, 0.5))

    def test_tile_errors_cached(self):
        m = constant_map(3.0, 4.0)

        errors = m.tile_errors()

        np.testing.assert_allclose(errors, 5.0)
        assert m.tile_errors() is errors
        assert m.tile_error(40.0, 40.0) == pytest.approx(5.0)

    def test_total_magnitude(self):
        assert constant_map(3.0, 4.0, rows=2, cols=2).total_magnitude() == pytest.approx(20.0)


class TestSerialization:

    @pytest.fixture
    def sparse_map(self):
        m = DistortionMap(100, 80, 32, 16)
        m.record(48, 64, 1.5, -0.5)
        m.record(16, 16, -0.25, 2.0)
        return m

    def test_round_trip_keeps_sampled_flags(self, sparse_map):
        restored = DistortionMap.from_bytes(sparse_map.to_bytes())

        assert (restored.step, restored.tile_size, restored.grid_shape) == (16, 32, (8, 9))
        np.testing.assert_array_equal(restored.dxy, sparse_map.dxy)
        np.testing.assert_array_equal(restored.sampled, sparse_map.sampled)

    def test_stream_round_trip(self, sparse_map):
        buffer = io.BytesIO()
        sparse_map.save_to(buffer)
        buffer.seek(0)

        restored = DistortionMap.load_from(buffer)

        np.testing.assert_array_equal(restored.dxy, sparse_map.dxy)

    def test_file_round_trip(self, sparse_map, temp_dir):
        path = temp_dir / "map.bin"
        sparse_map.save(path)

        assert DistortionMap.load(path).sampled.sum() == 2

    def test_version_2_header(self, sparse_map):
        payload = sparse_map.to_bytes()

        assert payload[:4] == b"\x00\x00\x00\x02"
        assert len(payload) == 20 + 72 * 16 + 9

    def test_legacy_payload_is_fully_sampled(self, sparse_map):
        restored = DistortionMap.from_bytes(legacy_bytes(sparse_map))

        np.testing.assert_array_equal(restored.dxy, sparse_map.dxy)
        assert restored.sampled.all()

    def test_legacy_payload_with_step_two(self):
        legacy = constant_map(0.5, 0.25, rows=4, cols=5, step=2, tile_size=4)

        restored = DistortionMap.from_bytes(legacy_bytes(legacy))

        assert (restored.step, restored.tile_size, restored.grid_shape) == (2, 4, (4, 5))
        np.testing.assert_allclose(restored.dxy[..., 0], 0.5)

    @pytest.mark.parametrize("payload", [b"", b"garbage", b"\x00" * 37])
    def test_garbage_rejected(self, payload):
        with pytest.raises(ProcessingError):
            DistortionMap.from_bytes(payload)
