"""Base contract enforcement utilities.

The require() function is the single enforcement mechanism for all contracts.
"""

from spectrohelio.contracts.failure import ContractViolation


def require(condition: bool, message: str) -> None:
    """Enforce a pipeline contract.

    This is called at stage boundaries to verify the preceding stage
    produced the guaranteed invariants. It is fail-fast: no recovery,
    no fallback, no silence.

    Parameters
    ----------
    condition : bool
        The invariant that must be true. If False, ContractViolation is raised.

    message : str
        Error message explaining the contract violation (for debugging).

    Raises
    ------
    ContractViolation
        If condition is False. This indicates a bug in pipeline logic.

    Examples
    --------
    >>> require(buffer.ndim == 2, "Reconstruction contract: 2D buffer expected")
    >>> require(len(maps) > 0, "Distortion contract: at least one map expected")
    """
    if not condition:
        raise ContractViolation(message)
