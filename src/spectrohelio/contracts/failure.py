"""Centralized failure types for the reconstruction pipeline.

Contracts fail fast and loud. Infrastructure failures (I/O, threading,
unexpected values in the frame stream) are funneled into a single
unchecked ProcessingError which the orchestrator turns into a user
notification.
"""

from enum import Enum


class FailurePolicy(str, Enum):
    """Failure policy for contract violations.

    FAIL_FAST (default): Raise immediately on contract violation
    SKIP_SHIFT: Drop the offending pixel shift, keep the other images
    """
    FAIL_FAST = "fail_fast"
    SKIP_SHIFT = "skip_shift"


class ContractViolation(RuntimeError):
    """Raised when a pipeline contract is violated.

    This indicates a bug in pipeline logic, not bad user input or an
    expected science outcome. It means a stage did not produce the
    invariants it promised.

    Key distinction:
    - ValueError: User/config error (handled by Pydantic)
    - ContractViolation: Pipeline bug (programmer error)
    - ProcessingError: Infrastructure failure (I/O, threads, corrupt data)
    - None / FitResult errors: Expected "could not fit" outcomes
    """
    pass


class ProcessingError(RuntimeError):
    """Unchecked error for infrastructure failures during processing."""

    @classmethod
    def wrap(cls, error: BaseException) -> "ProcessingError":
        """Return ``error`` if it already is a ProcessingError, else wrap it."""
        if isinstance(error, ProcessingError):
            return error
        wrapped = cls(f"{type(error).__name__}: {error}")
        wrapped.__cause__ = error
        return wrapped


class GeometryError(ProcessingError):
    """Raised when a calibrated circle cannot be derived after all retries."""
    pass
