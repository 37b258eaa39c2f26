import numpy as np
import pytest

from spectrohelio.core.ellipse import Ellipse
from spectrohelio.core.image import FileBackedImage, MonoImage, RGBImage, materialize
from spectrohelio.core.metadata import (
    ActiveRegion,
    ImageMetadata,
    RedshiftArea,
    ReferenceCoords,
)

pytestmark = pytest.mark.unit


def shift_by(dx, dy):
    return lambda xs, ys: (xs + dx, ys + dy)


class TestImages:

    def test_mono_image_is_float32(self):
        image = MonoImage(np.arange(12, dtype=np.uint16).reshape(3, 4))

        assert image.data.dtype == np.float32
        assert (image.width, image.height) == (4, 3)

    def test_mono_image_rejects_3d(self):
        with pytest.raises(ValueError):
            MonoImage(np.zeros((2, 2, 2)))

    def test_rgb_planes_must_match(self):
        with pytest.raises(ValueError):
            RGBImage(np.zeros((2, 2)), np.zeros((2, 2)), np.zeros((3, 2)))

    def test_rgb_to_mono_averages(self):
        image = RGBImage(np.full((2, 2), 3.0), np.full((2, 2), 6.0), np.full((2, 2), 9.0))

        np.testing.assert_allclose(image.to_mono().data, 6.0)

    def test_with_data_keeps_metadata(self):
        metadata = ImageMetadata(pixel_shift=1.5)
        image = MonoImage(np.zeros((2, 2)), metadata)

        assert image.with_data(np.ones((3, 3))).metadata is metadata

    def test_file_backed_round_trip(self, temp_dir):
        metadata = ImageMetadata(pixel_shift=-2.0)
        image = MonoImage(np.arange(20, dtype=np.float32).reshape(4, 5), metadata)

        backed = FileBackedImage.wrap(image, temp_dir)

        assert backed.path.exists()
        assert (backed.kind, backed.width, backed.height) == ("mono", 5, 4)
        restored = materialize(backed)
        np.testing.assert_array_equal(restored.data, image.data)
        assert restored.metadata.pixel_shift == -2.0

        backed.discard()
        assert not backed.path.exists()

    def test_file_backed_rgb(self, temp_dir):
        image = RGBImage(np.zeros((2, 3)), np.ones((2, 3)), np.full((2, 3), 2.0))

        restored = FileBackedImage.wrap(image, temp_dir).materialize()

        assert isinstance(restored, RGBImage)
        np.testing.assert_array_equal(restored.b, 2.0)

    def test_wrap_is_idempotent(self, temp_dir):
        backed = FileBackedImage.wrap(MonoImage(np.zeros((2, 2))), temp_dir)

        assert FileBackedImage.wrap(backed) is backed


class TestMetadata:

    def test_with_transform_appends_history(self):
        metadata = ImageMetadata().with_transform("rotate left").with_transform("crop")

        assert metadata.transformation_history == ("rotate left", "crop")

    def test_transform_points_moves_every_field(self):
        metadata = ImageMetadata(
            ellipse=Ellipse.circle(0, 0, 1),
            redshifts=(RedshiftArea(1.0, 2.5, 0, 0, 10, 10, 5, 5),),
            active_regions=(ActiveRegion("AR1", ((1.0, 1.0), (2.0, 3.0))),),
            reference_coords=ReferenceCoords.of([(4, 4)]),
            extra={"note": "kept"},
        )

        moved = metadata.transform_points(shift_by(10, -1), "translate", ellipse=Ellipse.circle(10, -1, 1))

        assert moved.redshifts[0].x1 == 10.0 and moved.redshifts[0].y2 == 9.0
        assert moved.redshifts[0].max_x == 15.0
        assert moved.active_regions[0].points == ((11.0, 0.0), (12.0, 2.0))
        assert moved.reference_coords.original == ((4.0, 4.0),)
        assert moved.reference_coords.current == ((14.0, 3.0),)
        assert moved.ellipse.center == pytest.approx((10.0, -1.0))
        assert moved.extra == {"note": "kept"}
        assert moved.transformation_history == ("translate",)

    def test_transform_points_drops_stale_ellipse(self):
        metadata = ImageMetadata(ellipse=Ellipse.circle(0, 0, 1))

        assert metadata.transform_points(shift_by(1, 1)).ellipse is None

    def test_redshift_box_stays_ordered_under_mirror(self):
        area = RedshiftArea(0.5, 1.0, 2, 3, 8, 9, 4, 4)

        mirrored = area.transform(lambda xs, ys: (10 - xs, ys))

        assert (mirrored.x1, mirrored.x2) == (2.0, 8.0)
        assert mirrored.max_x == 6.0

    def test_metadata_is_immutable(self):
        metadata = ImageMetadata()
        updated = metadata.replace(pixel_shift=3.0)

        assert metadata.pixel_shift is None
        assert updated.pixel_shift == 3.0
