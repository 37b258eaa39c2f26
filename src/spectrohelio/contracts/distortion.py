"""Distortion map contract.

Maps can only be combined when their grids are identical.
"""

from spectrohelio.contracts.base import require


def assert_same_grid(maps) -> None:
    """Enforce that all maps share step, tile size and grid shape.

    Raises
    ------
    ContractViolation
        If the list is empty or any grid differs from the first one
    """
    require(len(maps) > 0, "Distortion contract violated: no maps to combine")
    first = maps[0]
    for other in maps[1:]:
        require(
            (other.step, other.tile_size, other.grid_shape) == (first.step, first.tile_size, first.grid_shape),
            "Distortion contract violated: grid mismatch "
            f"({other.step}, {other.tile_size}, {other.grid_shape}) vs "
            f"({first.step}, {first.tile_size}, {first.grid_shape})"
        )
