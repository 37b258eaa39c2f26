import numpy as np
import pytest

from spectrohelio.stacking import DistortionMap, FilterParameters, filter_and_smooth
from spectrohelio.stacking.grid_filter import _filter_reference, _filter_vectorized, mad

pytestmark = pytest.mark.unit


@pytest.fixture
def params(internal_config):
    return FilterParameters.for_step(32, internal_config.distortion)


@pytest.fixture
def noisy_grid():
    rng = np.random.default_rng(42)
    dxy = rng.normal(0.5, 0.3, size=(12, 15, 2))
    sampled = rng.random((12, 15)) > 0.3
    dxy[~sampled] = 0.0
    dxy[5, 7] = (15.0, -12.0)
    sampled[5, 7] = True
    return dxy, sampled


class TestFilterParameters:

    def test_reference_step(self, internal_config):
        params = FilterParameters.for_step(64, internal_config.distortion)

        assert params.window == 5
        assert params.sigma == pytest.approx(1.0)

    def test_small_step_clamped_to_max_window(self, internal_config):
        params = FilterParameters.for_step(16, internal_config.distortion)

        assert params.window == 11
        assert params.sigma == pytest.approx(4.0)

    def test_large_step_uses_min_window_and_sigma_floor(self, internal_config):
        params = FilterParameters.for_step(256, internal_config.distortion)

        assert params.window == 3
        assert params.sigma == pytest.approx(0.5)

    def test_window_is_odd(self, internal_config):
        for step in (8, 16, 24, 32, 40, 48, 64, 96, 128):
            assert FilterParameters.for_step(step, internal_config.distortion).window % 2 == 1


def test_mad_floor():
    assert mad(np.ones(10), 1.0) == pytest.approx(0.1)
    assert mad(np.array([0.0, 1.0, 2.0]), 1.0) == pytest.approx(1.4826)


def test_paths_agree(noisy_grid, params):
    dxy, sampled = noisy_grid

    reference = _filter_reference(dxy, sampled, params)
    vectorized = _filter_vectorized(dxy, sampled, params)

    np.testing.assert_allclose(vectorized.dxy, reference.dxy, atol=1e-9)
    np.testing.assert_array_equal(vectorized.rejected, reference.rejected)


def test_single_outlier_rejected(params):
    dxy = np.ones((9, 9, 2))
    dxy[4, 4] = (20.0, 1.0)
    sampled = np.ones((9, 9), dtype=bool)

    output = filter_and_smooth(dxy, sampled, params)

    assert output.rejected.sum() == 1
    assert output.rejected[4, 4]
    np.testing.assert_allclose(output.dxy, 1.0)


def test_gaps_interpolated(params):
    dxy = np.full((9, 9, 2), 2.0)
    sampled = np.ones((9, 9), dtype=bool)
    sampled[3:5, 3:5] = False
    dxy[3:5, 3:5] = 0.0

    output = filter_and_smooth(dxy, sampled, params, accelerated=False)

    np.testing.assert_allclose(output.dxy, 2.0)


def test_cells_without_neighbours_stay_zero(params):
    dxy = np.zeros((12, 12, 2))
    sampled = np.zeros((12, 12), dtype=bool)
    dxy[0, 0] = (1.0, 1.0)
    sampled[0, 0] = True

    output = filter_and_smooth(dxy, sampled, params)

    # Beyond the interpolation radius nothing is known
    np.testing.assert_array_equal(output.dxy[8:, 8:], 0.0)


def test_inputs_not_modified(noisy_grid, params):
    dxy, sampled = noisy_grid
    dxy_before, sampled_before = dxy.copy(), sampled.copy()

    filter_and_smooth(dxy, sampled, params)
    filter_and_smooth(dxy, sampled, params, accelerated=False)

    np.testing.assert_array_equal(dxy, dxy_before)
    np.testing.assert_array_equal(sampled, sampled_before)


def test_vectorized_failure_falls_back(monkeypatch, noisy_grid, params):
    from spectrohelio.stacking import grid_filter

    def broken(*args):
        raise MemoryError("no room")

    monkeypatch.setattr(grid_filter, "_filter_vectorized", broken)
    dxy, sampled = noisy_grid

    output = filter_and_smooth(dxy, sampled, params)

    np.testing.assert_allclose(output.dxy, _filter_reference(dxy, sampled, params).dxy)


@pytest.mark.parametrize("seed", range(5))
def test_filtering_a_filtered_map_is_near_identity(internal_config, seed):
    rng = np.random.default_rng(seed)
    dxy = rng.normal(0.5, 0.3, size=(12, 15, 2))
    sampled = rng.random((12, 15)) > 0.3
    dxy[~sampled] = 0.0

    once = DistortionMap.from_arrays(32, 64, dxy, sampled).filter_and_smooth(internal_config.distortion)
    twice = DistortionMap.from_arrays(32, 64, once.dxy).filter_and_smooth(internal_config.distortion)

    assert not twice.rejected.any()
    assert twice.total_magnitude() == pytest.approx(once.total_magnitude(), rel=0.01)


def test_smooth_field_survives_filtering(params):
    rows, cols = np.mgrid[0:12, 0:15]
    dxy = np.stack([1.0 + 0.1 * np.sin(2 * np.pi * cols / 15),
                    -0.5 + 0.1 * np.cos(2 * np.pi * rows / 12)], axis=-1)
    sampled = np.ones((12, 15), dtype=bool)

    output = filter_and_smooth(dxy, sampled, params)

    assert not output.rejected.any()
    np.testing.assert_allclose(output.dxy, dxy, atol=0.1)
