"""Geometry stage contract.

After geometry correction, the corrected image must carry the calibrated
circle in its metadata and record the transform in its history.
"""

from spectrohelio.contracts.base import require


def assert_geometry_corrected(result) -> None:
    """Enforce geometry correction contract.

    Parameters
    ----------
    result : GeometryCorrectionResult
        Output of GeometryCorrector.correct()

    Raises
    ------
    ContractViolation
        If any invariant is violated
    """
    image = result.corrected
    require(
        image.metadata.ellipse is not None,
        "Geometry contract violated: corrected image has no ellipse metadata"
    )
    require(
        image.metadata.ellipse == result.circle,
        "Geometry contract violated: metadata ellipse differs from corrected circle"
    )
    require(
        len(image.metadata.transformation_history) > 0,
        "Geometry contract violated: transformation history is empty"
    )
    require(
        image.width > 0 and image.height > 0,
        f"Geometry contract violated: empty image {image.width}x{image.height}"
    )
