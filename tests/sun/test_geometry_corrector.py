"""Tests for shear/scale rectification of the solar disk."""

import math

import numpy as np
import pytest

from spectrohelio.core.ellipse import Ellipse
from spectrohelio.sun import GeometryCorrector
from spectrohelio.sun.geometry_corrector import compute_scale, compute_shear
from tests.helpers.synthetic import disk_image, tilted_ellipse

pytestmark = pytest.mark.unit


def test_shear_and_scale_of_circle():
    assert compute_shear(0.3, 50.0, 50.0) == pytest.approx(0.0, abs=1e-12)
    assert compute_scale(0.3, 50.0, 50.0) == pytest.approx(1.0)


def test_circle_is_left_untouched(internal_config):
    circle = Ellipse.circle(100, 100, 60)
    image = disk_image(200, 200, circle)

    result = GeometryCorrector(internal_config).correct(image, circle)

    np.testing.assert_array_equal(result.corrected.data, image.data)
    assert result.shear == 0.0
    assert (result.sx, result.sy) == (1.0, 1.0)
    assert result.blackpoint == pytest.approx(1000.0)
    assert result.corrected.metadata.ellipse == result.circle


def test_tilted_ellipse_becomes_circle(internal_config):
    ellipse = tilted_ellipse(150, 150, 100, 70, 20)
    image = disk_image(300, 300, ellipse)

    result = GeometryCorrector(internal_config).correct(image, ellipse)

    major, minor = result.circle.semi_axes
    assert abs(major - minor) / major < 0.02
    assert result.shear != 0.0
    assert result.corrected.metadata.transformation_history[-1].startswith("geometry correction")


@pytest.mark.parametrize("semi_b, tilt", [
    (90, -40), (80, -10), (70, 5), (60, 35), (95, 60), (75, 85),
])
def test_refit_circle_is_round(internal_config, semi_b, tilt):
    ellipse = tilted_ellipse(150, 150, 100, semi_b, tilt)

    result = GeometryCorrector(internal_config).correct(disk_image(300, 300, ellipse), ellipse)

    major, minor = result.circle.semi_axes
    assert abs(major - minor) / major < 0.02
    assert result.corrected.metadata.ellipse == result.circle


def test_tall_ellipse_expanded_by_default(internal_config):
    ellipse = Ellipse.from_parameters(150, 150, 100, 50, math.pi / 2)
    image = disk_image(300, 300, ellipse)

    result = GeometryCorrector(internal_config).correct(image, ellipse)

    assert result.sy == 1.0
    assert result.sx == pytest.approx(2.0)
    assert result.corrected.data.shape == (300, 600)
    assert result.circle.semi_axes == pytest.approx((100.0, 100.0), rel=1e-3)


def test_downsampling_shrinks_wide_ellipse(internal_config):
    ellipse = Ellipse.from_parameters(150, 150, 100, 50, 0.0)
    image = disk_image(300, 300, ellipse)

    result = GeometryCorrector(internal_config).correct(image, ellipse)

    assert result.sx == pytest.approx(0.5)
    assert result.circle.semi_axes == pytest.approx((50.0, 50.0), rel=1e-3)


def test_disallow_downsampling_stretches_y(make_config):
    config = make_config(disallow_downsampling=True)
    ellipse = Ellipse.from_parameters(150, 150, 100, 50, 0.0)

    result = GeometryCorrector(config).correct(disk_image(300, 300, ellipse), ellipse)

    assert (result.sx, result.sy) == pytest.approx((1.0, 2.0))
    assert result.corrected.data.shape == (600, 300)
    assert result.circle.semi_axes == pytest.approx((100.0, 100.0), rel=1e-3)


def test_forced_tilt_overrides_detection(make_config):
    config = make_config(forced_tilt=0.0)
    ellipse = tilted_ellipse(150, 150, 100, 70, 20)

    result = GeometryCorrector(config).correct(disk_image(300, 300, ellipse), ellipse)

    assert result.shear == 0.0


def test_parallactic_rotation_moves_disk(make_config):
    config = make_config(geometry={"parallactic_angle": 90.0})
    circle = Ellipse.circle(100, 150, 40)

    result = GeometryCorrector(config).correct(disk_image(300, 300, circle), circle)

    assert result.circle.center == pytest.approx((149.0, 100.0), abs=1e-6)
    assert result.corrected.data[100, 149] == pytest.approx(30000.0)
    assert result.corrected.data[150, 100] == pytest.approx(1000.0)


def test_autocrop_square(make_config):
    config = make_config(autocrop="radius-1-2")
    circle = Ellipse.circle(100, 80, 50)

    result = GeometryCorrector(config).correct(disk_image(200, 160, circle), circle)

    assert result.corrected.data.shape == (112, 112)
    assert result.circle.center == pytest.approx((56.0, 56.0))


def test_autocrop_source_width_skipped_when_disk_too_large(make_config):
    config = make_config(autocrop="source_width")
    ellipse = Ellipse.from_parameters(60, 100, 95, 50, math.pi / 2)

    result = GeometryCorrector(config).correct(disk_image(120, 200, ellipse), ellipse)

    # Expanded to a 190 px disk, wider than the 120 px source
    assert result.corrected.width > 120
