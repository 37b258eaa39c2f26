"""Per pixel-shift run summary."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Iterable, Optional

import pandas as pd

__all__ = ['ShiftStatus', 'ShiftResult', 'results_dataframe']

RESULT_COLUMNS = [
    "video", "pixel_shift", "status", "width", "height",
    "center_x", "center_y", "semi_major", "semi_minor", "angle_deg",
    "output_path", "error",
]


class ShiftStatus(str, Enum):
    OK = "ok"
    NO_ELLIPSE = "no_ellipse"
    FAILED = "failed"


@dataclass(frozen=True)
class ShiftResult:
    """Outcome of the processing of one pixel shift of one video."""
    video: str
    pixel_shift: float
    status: ShiftStatus
    width: int = 0
    height: int = 0
    center_x: Optional[float] = None
    center_y: Optional[float] = None
    semi_major: Optional[float] = None
    semi_minor: Optional[float] = None
    angle_deg: Optional[float] = None
    output_path: Optional[str] = None
    error: Optional[str] = None


def results_dataframe(results: Iterable[ShiftResult]) -> pd.DataFrame:
    """One row per pixel shift, ordered by video then shift."""
    rows = []
    for result in results:
        row = asdict(result)
        row["status"] = ShiftStatus(result.status).value
        rows.append(row)
    df = pd.DataFrame(rows, columns=RESULT_COLUMNS)
    if not df.empty:
        df = df.sort_values(["video", "pixel_shift"]).reset_index(drop=True)
    return df
