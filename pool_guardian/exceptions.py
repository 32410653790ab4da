"""
Exception hierarchy for the pool guardian.

Detection and decision logic is pure and raises almost nothing; these classes
cover configuration problems, malformed collaborator input and failures
reported back by the executor.
"""

from typing import Any, Dict, Optional


class PoolGuardianError(Exception):
    """Root of the guardian error tree; `details` carries structured context for logs."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(PoolGuardianError):
    """Configuration file missing, empty or not parseable."""


class ValidationError(PoolGuardianError):
    """Configuration values rejected by the schema."""


class InvalidInputError(PoolGuardianError):
    """Raised when trade records cannot form a valid sandwich candidate."""

    def __init__(
        self,
        message: str,
        sequence: Optional[tuple] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.sequence = sequence


class TreasuryError(PoolGuardianError):
    """Raised on misuse of the treasury (negative funding, overdraft)."""

    def __init__(
        self,
        message: str,
        requested: Optional[int] = None,
        balance: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.requested = requested
        self.balance = balance


class ExecutionError(PoolGuardianError):
    """Raised when the executor collaborator fails to carry out an action."""

    def __init__(
        self,
        message: str,
        action_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.action_type = action_type


class DataError(PoolGuardianError):
    """Raised when observer payloads are malformed."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.source = source
