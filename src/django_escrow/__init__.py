"""Django Escrow - Integer-unit value-transfer ledger.

Models:
    Mint: A unit of value
    TokenAccount: Balance-holding account owned by any model instance
    Transfer: Immutable movement between two accounts

Services (the only supported write path):
    open_account: Open an account for an owner in a mint
    issue: Create new units in an account
    transfer: Atomic all-or-nothing movement between accounts
    get_balance: Derived balance of an account
"""

__version__ = "0.1.0"

__all__ = [
    # Models
    "Mint",
    "TokenAccount",
    "Transfer",
    # Services
    "create_mint",
    "open_account",
    "deactivate_account",
    "issue",
    "transfer",
    "get_balance",
    "balance_of",
]


def __getattr__(name):
    """Lazy import to avoid AppRegistryNotReady errors."""
    if name in ("Mint", "TokenAccount", "Transfer"):
        from . import models
        return getattr(models, name)

    if name in __all__:
        from . import services
        return getattr(services, name)

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
