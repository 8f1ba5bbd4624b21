class LoanError(Exception):
    """Base class for loan rule violations surfaced to the caller."""


class NotFound(LoanError):
    """Raised when a customer or loan id does not resolve."""


class InvalidArgument(LoanError):
    """Raised for a disallowed installment count, rate or amount."""


class InsufficientCredit(LoanError):
    """Raised when available credit is below the loan's total due."""
