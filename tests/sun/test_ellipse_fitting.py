import math

import numpy as np
import pytest
from scipy.ndimage import gaussian_filter

from spectrohelio.core.image import MonoImage
from spectrohelio.core.events import Broadcaster, EventRecorder, ProgressEvent
from spectrohelio.sun import EllipseFittingTask
from tests.helpers.synthetic import disk_image, tilted_ellipse

pytestmark = pytest.mark.unit


@pytest.fixture
def task(internal_config):
    return EllipseFittingTask(internal_config)


def test_detects_tilted_disk(task):
    truth = tilted_ellipse(256, 256, 200, 150, 15)

    result = task.run(disk_image(512, 512, truth))

    assert result is not None
    cx, cy = result.ellipse.center
    major, minor = result.ellipse.semi_axes
    assert (cx, cy) == pytest.approx((256.0, 256.0), abs=2.0)
    assert major == pytest.approx(200.0, rel=0.03)
    assert minor == pytest.approx(150.0, rel=0.03)
    assert math.degrees(result.ellipse.rotation_angle) == pytest.approx(15.0, abs=2.0)
    assert len(result.samples) >= 32


@pytest.mark.parametrize("cx, cy, tilt, seed", [
    (256.0, 256.0, 0.0, 0),
    (256.0, 256.0, 15.0, 1),
    (261.2, 248.7, -30.0, 2),
    (255.0, 258.0, 60.0, 3),
])
def test_fit_on_blurred_noisy_disk(task, cx, cy, tilt, seed):
    truth = tilted_ellipse(cx, cy, 200, 150, tilt)
    rng = np.random.default_rng(seed)
    data = gaussian_filter(disk_image(512, 512, truth).data, 1.5)
    data = np.clip(data + rng.normal(0, 500, data.shape), 0, 65535).astype(np.float32)

    result = task.run(MonoImage(data))

    assert result is not None
    assert result.ellipse.center == pytest.approx((cx, cy), abs=1.0)
    major, minor = result.ellipse.semi_axes
    assert major == pytest.approx(200.0, rel=0.02)
    assert minor == pytest.approx(150.0, rel=0.02)
    angle_error = (math.degrees(result.ellipse.rotation_angle) - tilt + 90) % 180 - 90
    assert abs(angle_error) < 2.0


def test_black_image_has_no_ellipse(task):
    assert task.run(MonoImage(np.zeros((128, 128)))) is None


def test_progress_reported(internal_config):
    broadcaster = Broadcaster()
    recorder = EventRecorder()
    broadcaster.add_listener(recorder)

    EllipseFittingTask(internal_config, broadcaster).run(
        disk_image(200, 200, tilted_ellipse(100, 100, 70, 60, 0))
    )

    values = [e.progress for e in recorder.of_type(ProgressEvent)]
    assert values[0] == 0.0
    assert values[-1] == 1.0


def test_line_filter_drops_crowded_rows(task):
    rng = np.random.default_rng(3)
    angles = rng.uniform(0, 2 * math.pi, 100)
    xs = 100 + 50 * np.cos(angles)
    ys = 100 + 40 * np.sin(angles)
    # A spectral artifact: a whole row of fake samples
    xs = np.concatenate([xs, np.arange(0, 200, 2.0)])
    ys = np.concatenate([ys, np.full(100, 20.0)])

    fx, fy = task.filter_lines(xs, ys)

    assert not np.any(fy.astype(int) == 20)
    assert fx.size >= 95


def test_distance_filter_drops_outliers(task):
    truth = tilted_ellipse(100, 100, 60, 40, 10)
    xs, ys = truth.sample_boundary(120)
    xs = np.append(xs, [10.0, 190.0])
    ys = np.append(ys, [10.0, 190.0])

    fx, fy = task.filter_by_distance(xs, ys)

    assert not np.any(np.isclose(fx, 10.0) & np.isclose(fy, 10.0))
    assert not np.any(np.isclose(fx, 190.0) & np.isclose(fy, 190.0))
    assert fx.size >= task.min_samples


def test_decimate_keeps_farthest(task):
    xs = np.arange(100, dtype=float)
    ys = np.zeros(100)

    dx, _ = task.decimate(xs, ys, width=100, height=0)

    assert dx.size == 80
    assert 50.0 not in dx
    assert 0.0 in dx and 99.0 in dx
