import pytest

from spectrohelio.schemas.user import UserConfig

pytestmark = pytest.mark.unit


def test_uppercase_keys_are_handled():
    raw = {
        "MODE": "batch",
        "INPUTS": ["scan.npy"],
        "PIXEL_SHIFT": -2,
        "BASE_DIR": "/tmp/solex_out",
    }

    user = UserConfig.model_validate(raw)

    assert user.mode == "batch"
    assert user.inputs == ["scan.npy"]
    assert isinstance(user.pixel_shift, float) and user.pixel_shift == -2.0
    assert user.base_dir == "/tmp/solex_out"


def test_unknown_keys_are_ignored():
    user = UserConfig.model_validate({"MODE": "single", "UNKNOWN_LEGACY": 12345})

    assert user.mode == "single"
    assert not hasattr(user, "UNKNOWN_LEGACY")


def test_single_shift_coerced_to_list():
    assert UserConfig(SHIFTS=1.5).requested_shifts == [1.5]
    assert UserConfig(SHIFTS="-1,0, 2").requested_shifts == [-1.0, 0.0, 2.0]


def test_log_level_and_autocrop_normalized():
    user = UserConfig(LOG_LEVEL=" debug ", AUTOCROP="Radius-1-5")

    assert user.log_level == "DEBUG"
    assert user.autocrop == "radius_1_5"


def test_overrides_only_contain_given_values():
    overrides = UserConfig(BANDING_WIDTH=16).to_internal_overrides()

    assert overrides == {"banding": {"band_size": 16}}
