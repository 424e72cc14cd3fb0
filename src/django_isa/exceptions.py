"""Custom exceptions for django-isa.

Every service raises a subclass of IsaError. Services run inside a database
transaction, so any raised error leaves no partial mutation behind.
"""

from django.core.exceptions import PermissionDenied


class IsaError(Exception):
    """Base exception for income share agreement errors."""
    pass


class InvalidParameter(IsaError):
    """Raised for a bad percent, amount or argument."""
    pass


class FundingExceedsCourseCost(InvalidParameter):
    """Raised when an investment would push total_invested past course_cost."""
    pass


class NoInvestors(InvalidParameter):
    """Raised when a distribution has no stakes or zero total stake weight."""
    pass


class InvalidState(IsaError):
    """Raised when an operation is illegal in the agreement's current status."""

    def __init__(self, message: str, status: str = None, operation: str = None):
        self.status = status
        self.operation = operation
        super().__init__(message)


class NoSalary(InvalidState):
    """Raised when an operation needs a reported salary and none is set."""
    pass


class ConfigNotInitialized(InvalidState):
    """Raised when the global configuration has not been created yet."""
    pass


class ConfigAlreadyInitialized(InvalidState):
    """Raised when initialize_config runs a second time."""
    pass


class ImmutableRecordError(InvalidState):
    """Raised when modifying or deleting a record that is retained for audit."""
    pass


class Unauthorized(IsaError, PermissionDenied):
    """Raised when the caller does not hold the role an operation requires."""

    role = None

    def __init__(self, caller=None, message: str = None):
        self.caller = caller
        super().__init__(message or f"Caller {caller!r} is not the configured {self.role}")


class AdminRequired(Unauthorized):
    role = "admin"


class OracleRequired(Unauthorized):
    role = "oracle"


class RecipientRequired(Unauthorized):
    role = "recipient"


class ArithmeticOverflow(IsaError):
    """Raised when checked arithmetic leaves the representable range."""
    pass


class InsufficientFunds(IsaError):
    """Raised when escrow or a payer cannot cover the required amount."""
    pass


class NothingToPay(InsufficientFunds):
    """Raised when the clamped repayment due is zero."""
    pass


class InvalidReference(IsaError):
    """Raised when a stake or account does not belong to this agreement or caller."""
    pass


class ConfigurationMismatch(IsaError):
    """Raised when escrow, mint or owner are inconsistent with the agreement."""
    pass
