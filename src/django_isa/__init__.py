"""
django-isa: Income share agreement primitives.

Investors fund a student's course cost into a pooled escrow; the student
repays a percentage of salary up to a cap; repayments are distributed back to
investors pro rata to their stakes.

Provides:
- IsaConfig: The admin, oracle and university identities
- IncomeShareAgreement: Lifecycle state machine and totals
- InvestorStake: One record per (agreement, investor)
- Settlement engine for proportional distribution
- Authorization gate for privileged operations
"""

__version__ = "0.1.0"

__all__ = [
    # Models
    "IsaConfig",
    "IncomeShareAgreement",
    "InvestorStake",
    "StatusTransition",
    "Distribution",
    "DistributionShare",
    # Status
    "IsaStatus",
    # Services
    "initialize_config",
    "set_oracle",
    "set_university",
    "initialize_isa",
    "invest",
    "release_funds_to_university",
    "update_salary",
    "pay_share",
    "distribute_payments",
    "preview_distribution",
    "report_dropout",
    "report_delinquency",
]

_MODELS = (
    "IsaConfig",
    "IncomeShareAgreement",
    "InvestorStake",
    "StatusTransition",
    "Distribution",
    "DistributionShare",
)


def __getattr__(name):
    """Lazy imports to prevent AppRegistryNotReady errors."""
    if name in _MODELS:
        from . import models
        return getattr(models, name)

    if name == "IsaStatus":
        from .graph import IsaStatus
        return IsaStatus

    if name in __all__:
        from . import services
        return getattr(services, name)

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
