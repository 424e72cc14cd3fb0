"""Exceptions for django-escrow."""


class LedgerError(Exception):
    """Base exception for ledger errors."""
    pass


class ImmutableTransferError(LedgerError):
    """Raised when attempting to modify or delete a posted transfer."""
    pass


class TransferError(LedgerError):
    """Base exception for a rejected transfer. Nothing is posted."""
    pass


class InvalidTransferAmount(TransferError):
    """Raised when the amount is not a positive integer."""
    pass


class InsufficientBalanceError(TransferError):
    """Raised when the source account cannot cover the transfer."""

    def __init__(self, account, balance: int, amount: int):
        self.account = account
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"Account {account.pk} holds {balance}, cannot transfer {amount}"
        )


class MintMismatchError(TransferError):
    """Raised when source and destination are denominated in different mints."""
    pass


class InactiveAccountError(TransferError):
    """Raised when either side of a transfer is deactivated."""
    pass


class UnauthorizedTransferError(TransferError):
    """Raised when the transfer authority does not own the source account."""
    pass
