"""Reconstruction stage contract.

Enforces the guarantee that after the frame stream has been consumed,
each requested pixel shift owns a complete, in-range row buffer.
"""

import numpy as np

from spectrohelio.contracts.base import require
from spectrohelio.core.image import MAX_PIXEL_VALUE


def assert_reconstructed(buffer: np.ndarray, lines: int, width: int) -> None:
    """Enforce reconstruction stage contract.

    Parameters
    ----------
    buffer : np.ndarray
        Reconstructed row buffer, one row per scanned frame.
    lines : int
        Number of frames that were reconstructed.
    width : int
        Frame width.

    Raises
    ------
    ContractViolation
        If any invariant is violated
    """
    require(
        buffer.ndim == 2,
        f"Reconstruction contract violated: buffer has {buffer.ndim} dims, expected 2"
    )
    require(
        buffer.shape == (lines, width),
        f"Reconstruction contract violated: shape {buffer.shape}, expected {(lines, width)}"
    )
    require(
        bool(np.all(np.isfinite(buffer))),
        "Reconstruction contract violated: non-finite values in buffer"
    )
    if buffer.size:
        require(
            float(buffer.min()) >= 0 and float(buffer.max()) <= MAX_PIXEL_VALUE,
            "Reconstruction contract violated: values outside [0, 65535]"
        )
