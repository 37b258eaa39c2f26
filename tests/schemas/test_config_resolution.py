"""Tests for Param < User < CLI configuration resolution."""

import pytest
from pydantic import ValidationError

from spectrohelio.schemas import InternalConfig, ParamConfig, UserConfig, resolve_config
from spectrohelio.schemas.resolve import deep_merge

pytestmark = pytest.mark.unit


def test_defaults_resolve_to_internal_config():
    config = resolve_config(ParamConfig())

    assert isinstance(config, InternalConfig)
    assert config.mode == "single"
    assert config.inputs == ()
    assert config.spectrum.pixel_shift == 0.0
    assert config.spectrum.requested_shifts == (0.0,)
    assert config.banding.passes == 4
    assert config.distortion.mad_multiplier == 3.0
    assert config.distortion.global_mad_multiplier == 5.0
    assert config.geometry.autocrop == "off"


def test_accepts_plain_dicts():
    config = resolve_config({}, {"PIXEL_SHIFT": -1.5}, {"base_dir": "/tmp/out"})

    assert config.spectrum.pixel_shift == -1.5
    assert config.base_dir == "/tmp/out"


def test_internal_config_is_frozen(internal_config):
    with pytest.raises(ValidationError):
        internal_config.mode = "batch"
    with pytest.raises(ValidationError):
        internal_config.banding.passes = 2


def test_pixel_shift_always_requested(make_config):
    config = make_config(pixel_shift=2.0, requested_shifts=[-1.0, 0.5])

    assert config.spectrum.requested_shifts == (-1.0, 0.5, 2.0)


def test_requested_shifts_are_sorted_and_unique(make_config):
    config = make_config(SHIFTS="1, -1, 1, 0")

    assert config.spectrum.requested_shifts == (-1.0, 0.0, 1.0)


def test_flat_aliases_map_to_sections(make_config):
    config = make_config(
        BANDING_PASSES=6,
        BANDING_WIDTH=32,
        BACKGROUND_ITERATIONS=8,
        FLAT_CORRECTION=True,
        FORCED_TILT=1.5,
        AUTOCROP="Radius-1-2",
        DEBUG_IMAGES=True,
    )

    assert config.banding.passes == 6
    assert config.banding.band_size == 32
    assert config.background.max_iterations == 8
    assert config.flat.enabled is True
    assert config.geometry.forced_tilt == 1.5
    assert config.geometry.autocrop == "radius_1_2"
    assert config.processor.generate_debug_images is True


def test_nested_sections_merge_with_defaults(make_config):
    config = make_config(distortion={"tile_size": 64}, output={"image_format": "png"})

    assert config.distortion.tile_size == 64
    assert config.distortion.sampling == 0.5
    assert config.output.image_format == "png"
    assert config.output.save_images is True


def test_nested_geometry_overrides_flat_alias(make_config):
    config = make_config(forced_tilt=1.0, geometry={"forced_tilt": 2.0, "vertical_mirror": True})

    assert config.geometry.forced_tilt == 2.0
    assert config.geometry.vertical_mirror is True


def test_window_bounds_are_made_odd(make_config):
    config = make_config(distortion={"min_window": 4, "max_window": 10})

    assert config.distortion.min_window == 5
    assert config.distortion.max_window == 11


def test_several_inputs_imply_batch_mode():
    config = resolve_config(ParamConfig(), UserConfig(inputs=["a.npy", "b.npy"]))

    assert config.mode == "batch"
    assert config.inputs == ("a.npy", "b.npy")


def test_explicit_mode_wins_over_inference():
    config = resolve_config(ParamConfig(), UserConfig(inputs=["a.npy", "b.npy"], mode="single"))

    assert config.mode == "single"


def test_invalid_values_rejected(make_config):
    with pytest.raises(ValidationError):
        make_config(output={"image_format": "tiff"})


def test_param_config_rejects_unknown_fields():
    with pytest.raises(ValidationError):
        ParamConfig(unknown_field=1)


def test_flat_percentiles_must_be_ordered():
    with pytest.raises(ValidationError):
        ParamConfig(flat={"lo_percentile": 0.9, "hi_percentile": 0.5})


def test_deep_merge_nested():
    base = {"a": 1, "b": {"c": 2, "d": 3}}
    merged = deep_merge(base, {"b": {"d": 4, "e": 5}, "f": 6})

    assert merged == {"a": 1, "b": {"c": 2, "d": 4, "e": 5}, "f": 6}
    assert base == {"a": 1, "b": {"c": 2, "d": 3}}
