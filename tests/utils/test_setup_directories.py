from pathlib import Path

import pytest

from spectrohelio.setup_directories import (
    format_shift,
    get_analysis_path,
    get_image_path,
    get_log_path,
    get_plot_path,
    setup_output_directories,
    video_id,
    with_format,
)

pytestmark = pytest.mark.unit


def test_setup_output_directories_creates_all(tmp_path):
    dirs = setup_output_directories(tmp_path)

    assert set(dirs.keys()) == {"base", "images", "analysis", "plots", "logs"}

    for path in dirs.values():
        assert isinstance(path, Path)
        assert path.exists()
        assert path.is_dir()


def test_setup_output_directories_is_idempotent(tmp_path):
    dirs1 = setup_output_directories(tmp_path)
    dirs2 = setup_output_directories(tmp_path)

    assert dirs1 == dirs2


def test_video_id():
    assert video_id("/data/2024/scan_01.npy") == "scan_01"
    assert video_id(Path("scan_02.ser")) == "scan_02"
    assert video_id("scan") == "scan"


@pytest.mark.parametrize("shift, expected", [(-1.5, "m1.50"), (0.0, "0.00"), (2.25, "2.25")])
def test_format_shift(shift, expected):
    assert format_shift(shift) == expected


def test_image_path_per_video(tmp_path):
    dirs = setup_output_directories(tmp_path)

    path = get_image_path(dirs, "scan_01.npy", "geometry_corrected", -1.5)

    assert path == dirs["images"] / "scan_01" / "scan_01_geometry_corrected_shift_m1.50"
    assert path.parent.is_dir()
    assert get_image_path(dirs, "scan_01.npy", "average").name == "scan_01_average"


def test_analysis_path(tmp_path):
    dirs = setup_output_directories(tmp_path)

    assert get_analysis_path(dirs, "results.csv") == dirs["analysis"] / "results.csv"


def test_plot_path(tmp_path):
    dirs = setup_output_directories(tmp_path)

    path = get_plot_path(dirs, "scan_01.npy", "ellipse")

    assert path == dirs["plots"] / "scan_01" / "scan_01_ellipse.png"
    assert path.parent.is_dir()


def test_log_path(tmp_path):
    dirs = setup_output_directories(tmp_path)

    assert get_log_path(dirs).name == "pipeline_latest.log"
    named = get_log_path(dirs, "solex")
    assert named.name.startswith("pipeline_solex_")
    assert named.suffix == ".log"


@pytest.mark.parametrize("name, file_format, expected", [
    ("scan_reconstruction_shift_0.00", "npy", "scan_reconstruction_shift_0.00.npy"),
    ("scan_reconstruction_shift_0.50", "png", "scan_reconstruction_shift_0.50.png"),
    ("scan_average", "npy", "scan_average.npy"),
    ("disk.npy", "png", "disk.png"),
])
def test_with_format(name, file_format, expected):
    assert with_format(Path("out") / name, file_format) == Path("out") / expected


def test_fractional_shifts_get_distinct_names(tmp_path):
    dirs = setup_output_directories(tmp_path)

    names = {with_format(get_image_path(dirs, "scan", "reconstruction", shift), "npy")
             for shift in (0.0, 0.5, 1.25)}

    assert len(names) == 3
