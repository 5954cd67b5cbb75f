"""Exceptions raised by the credit portfolio simulator."""

from typing import Hashable, List, Optional, Union


class CreditSimulationError(Exception):
    """Base class for all simulator errors."""


class ConfigurationError(CreditSimulationError, ValueError):
    """Raised when simulation inputs are inconsistent.

    Covers dimension mismatches between the portfolio and the scenario or
    loading matrices, malformed aggregation keys, duplicate obligor ids and
    out-of-bounds scenario-draw subsets. Always raised before any simulation
    work starts.

    Attributes:
        issues: List of specific problems found.
    """

    def __init__(self, issues: Union[str, List[str]]):
        if isinstance(issues, str):
            issues = [issues]
        self.issues = list(issues)
        if len(self.issues) == 1:
            message = self.issues[0]
        else:
            bullet_list = "\n".join(f"  - {issue}" for issue in self.issues)
            message = f"Simulation inputs have {len(self.issues)} issues:\n{bullet_list}"
        super().__init__(message)


class NumericDomainError(CreditSimulationError, ValueError):
    """Raised when an obligor parameter lies outside its numeric domain.

    Attributes:
        obligor_id: Id of the offending obligor, if known.
    """

    def __init__(self, message: str, obligor_id: Optional[Hashable] = None):
        self.obligor_id = obligor_id
        if obligor_id is not None:
            message = f"Obligor {obligor_id!r}: {message}"
        super().__init__(message)


class OutOfRangeError(CreditSimulationError, IndexError):
    """Raised when a random stream coordinate lies outside its domain."""
