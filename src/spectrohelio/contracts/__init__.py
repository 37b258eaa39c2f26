"""Pipeline contracts: fail-fast enforcement of stage invariants.

Contracts fail immediately and loudly when pipeline stages don't produce
their promised invariants.

Key principle:
- Pydantic validates config correctness
- Contracts validate pipeline correctness
- Algorithms return None / FitResult for expected science failures
"""

from spectrohelio.contracts.failure import (
    ContractViolation,
    FailurePolicy,
    ProcessingError,
    GeometryError,
)
from spectrohelio.contracts.base import require
from spectrohelio.contracts.reconstruction import assert_reconstructed
from spectrohelio.contracts.geometry import assert_geometry_corrected
from spectrohelio.contracts.distortion import assert_same_grid

__all__ = [
    "ContractViolation",
    "FailurePolicy",
    "ProcessingError",
    "GeometryError",
    "require",
    "assert_reconstructed",
    "assert_geometry_corrected",
    "assert_same_grid",
]
