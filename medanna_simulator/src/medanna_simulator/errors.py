"""
Simulator Errors

Typed failures raised across the case pipeline. Every failure is scoped to a
single case attempt and is reported to the caller, never fatal to the process.
"""

from typing import List, Optional


class SimulatorError(Exception):
    """Base class for all simulator failures."""


class GenerationFailure(SimulatorError):
    """
    The language model returned a malformed or incomplete document.

    Retryable: nothing has been committed when this is raised.
    """

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message)
        self.raw_response = raw_response


class EvaluationFailure(SimulatorError):
    """EPA evaluation output could not be parsed into two scored competencies."""


class BudgetExhausted(SimulatorError):
    """No hints remain for today."""

    def __init__(self, message: str = "No hints remaining for today"):
        super().__init__(message)


class PersistenceFailure(SimulatorError):
    """
    One or more completion writes failed.

    Writes that already succeeded are not rolled back, so state may be
    partially updated when this is raised.
    """

    def __init__(self, failed_writes: List[str], errors: Optional[List[BaseException]] = None):
        self.failed_writes = failed_writes
        self.errors = errors or []
        super().__init__(
            f"Failed to persist case completion ({', '.join(failed_writes)}); state may be partially updated"
        )
