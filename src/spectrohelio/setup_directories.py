"""
Directory setup for the reconstruction pipeline.

One directory per output kind, one subdirectory per processed video:
- images/<video>/: reconstructed and corrected images, one per pixel shift
- analysis/: run summaries (CSV) and distortion maps
- plots/<video>/: debug figures
- logs/: pipeline logs
"""

from pathlib import Path
from datetime import datetime, timezone

__all__ = [
    'setup_output_directories',
    'video_id',
    'format_shift',
    'get_image_path',
    'with_format',
    'get_analysis_path',
    'get_plot_path',
    'get_log_path',
]


def setup_output_directories(base_output_dir=None):
    """
    Set up organized output directory structure.

    Parameters
    ----------
    base_output_dir : str or Path, optional
        Base output directory. If None, ``./output`` is used.

    Returns
    -------
    dict
        Dictionary with paths: 'base', 'images', 'analysis', 'plots', 'logs'
    """
    if base_output_dir is None:
        base_output_dir = Path.cwd() / "output"

    base_output_dir = Path(base_output_dir).expanduser().resolve()

    directories = {
        "base": base_output_dir,
        "images": base_output_dir / "images",
        "analysis": base_output_dir / "analysis",
        "plots": base_output_dir / "plots",
        "logs": base_output_dir / "logs",
    }

    for key, path in directories.items():
        path.mkdir(parents=True, exist_ok=True)

    return directories


def video_id(video) -> str:
    """Identifier of a video: its file stem, or the given name."""
    return Path(str(video)).stem


def format_shift(pixel_shift: float) -> str:
    """File-name friendly pixel shift, e.g. ``-1.5`` -> ``m1.50``."""
    sign = "m" if pixel_shift < 0 else ""
    return f"{sign}{abs(pixel_shift):.2f}"


def get_image_path(output_dirs, video, kind, pixel_shift=None):
    """
    Get image file path (without extension; the writer adds it).

    Returns
    -------
    Path
        images/<video>/<video>_<kind>[_shift_<shift>]

    Example
    -------
    >>> get_image_path(dirs, 'scan_01.npy', 'geometry_corrected', 1.5)
    Path('output/images/scan_01/scan_01_geometry_corrected_shift_1.50')
    """
    vid = video_id(video)
    output_dir = Path(output_dirs["images"]) / vid
    output_dir.mkdir(parents=True, exist_ok=True)
    name = f"{vid}_{kind}"
    if pixel_shift is not None:
        name = f"{name}_shift_{format_shift(pixel_shift)}"
    return output_dir / name


_FILE_FORMATS = {".npy", ".png", ".svg", ".pdf", ".jpg"}


def with_format(path, file_format):
    """
    Give ``path`` the extension of ``file_format``.

    A known image extension is replaced, anything else is kept: names such
    as ``..._shift_0.50`` contain a dot that is not an extension.

    Example
    -------
    >>> with_format(Path("scan_shift_0.50"), "npy")
    Path("scan_shift_0.50.npy")
    """
    path = Path(path)
    if path.suffix.lower() in _FILE_FORMATS:
        path = path.with_suffix("")
    return path.with_name(f"{path.name}.{file_format}")


def get_analysis_path(output_dirs, filename):
    """analysis/<filename>"""
    analysis_dir = Path(output_dirs["analysis"])
    analysis_dir.mkdir(parents=True, exist_ok=True)
    return analysis_dir / filename


def get_plot_path(output_dirs, video, plot_type):
    """
    Get debug plot path.

    Returns
    -------
    Path
        plots/<video>/<video>_<plot_type>.png
    """
    vid = video_id(video)
    plot_dir = Path(output_dirs["plots"]) / vid
    plot_dir.mkdir(parents=True, exist_ok=True)
    return plot_dir / f"{vid}_{plot_type}.png"


def get_log_path(output_dirs, run_name=None):
    """
    Get log file path.

    Returns
    -------
    Path
        logs/pipeline_<run_name>_<UTC timestamp>.log, or logs/pipeline_latest.log
    """
    log_dir = Path(output_dirs["logs"])
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")

    if run_name:
        filename = f"pipeline_{run_name}_{timestamp}.log"
    else:
        filename = "pipeline_latest.log"

    return log_dir / filename
