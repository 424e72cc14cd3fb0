"""
Proportional settlement engine.

Splits an amount leaving escrow across a supplied set of stakes in two
passes:

1. aggregate: sum every stake amount into the wide accumulator
2. allocate: share = floor(amount * stake.amount / total), multiplying
   before dividing so the only rounding is the final floor

Every share is computed against the same fixed denominator. Floor division
means sum(shares) <= amount; the difference stays in escrow as remainder.

This module is pure computation and validation. Transfers and the agreement
counter update live in services.distribute_payments.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from .arithmetic import WIDE_MAX, checked_add, checked_sub, mul_div
from .exceptions import ConfigurationMismatch, InvalidParameter, InvalidReference, NoInvestors


@dataclass(frozen=True)
class ShareAllocation:
    """One stake's computed share and where it is paid."""

    stake: Any
    recipient_account: Any
    share: int


@dataclass(frozen=True)
class SettlementPlan:
    """Result of both passes, before any value moves."""

    amount: int
    total_weight: int
    allocations: tuple

    @property
    def distributed(self) -> int:
        total = 0
        for allocation in self.allocations:
            total = checked_add(total, allocation.share)
        return total

    @property
    def remainder(self) -> int:
        return checked_sub(self.amount, self.distributed)

    @property
    def payable(self) -> list:
        """Allocations that move value; zero shares are skipped."""
        return [allocation for allocation in self.allocations if allocation.share > 0]


def aggregate_stake_weight(stakes: Iterable) -> int:
    """Pass 1: total of stake amounts, accumulated in the wide range."""
    total = 0
    for stake in stakes:
        total = checked_add(total, stake.amount, limit=WIDE_MAX)
    if total == 0:
        raise NoInvestors("Supplied stakes have no invested amount")
    return total


def compute_share(amount: int, stake_amount: int, total_weight: int) -> int:
    """floor(amount * stake_amount / total_weight)."""
    return mul_div(amount, stake_amount, total_weight)


def plan_distribution(amount: int, allocations: Sequence[tuple]) -> SettlementPlan:
    """
    Compute every share for ``amount`` over ``(stake, recipient_account)`` pairs.

    The denominator is fully known before the first share is computed.

    Raises:
        NoInvestors: empty set or zero total weight
        ArithmeticOverflow: accumulator or product left the wide range
    """
    pairs = list(allocations)
    if not pairs:
        raise NoInvestors("No stakes supplied")

    total_weight = aggregate_stake_weight(stake for stake, _ in pairs)

    planned = tuple(
        ShareAllocation(
            stake=stake,
            recipient_account=account,
            share=compute_share(amount, stake.amount, total_weight),
        )
        for stake, account in pairs
    )
    return SettlementPlan(amount=amount, total_weight=total_weight, allocations=planned)


def validate_allocations(
    agreement,
    allocations: Sequence[tuple],
    max_stakes: Optional[int] = None,
) -> None:
    """
    Check a caller-supplied ``(stake, recipient_account)`` set against ``agreement``.

    The set is trusted to be complete: a subset is accepted and skews shares
    toward the stakes it contains. A stake listed twice is rejected, since it
    would count its weight twice.
    """
    if not allocations:
        raise NoInvestors("No stakes supplied")

    if max_stakes is not None and len(allocations) > max_stakes:
        raise InvalidParameter(
            f"{len(allocations)} stakes supplied, at most {max_stakes} allowed per distribution"
        )

    seen = set()
    for stake, account in allocations:
        if stake.agreement_id != agreement.pk:
            raise InvalidReference(f"Stake {stake.pk} does not belong to agreement {agreement.pk}")

        if stake.pk in seen:
            raise InvalidParameter(f"Stake {stake.pk} supplied more than once")
        seen.add(stake.pk)

        if not account.is_owned_by(stake.investor):
            raise InvalidReference(
                f"Account {account.pk} is not owned by investor {stake.investor_id}"
            )

        if account.mint_id != agreement.funding_mint_id:
            raise ConfigurationMismatch(
                f"Account {account.pk} is not in mint {agreement.funding_mint_id}"
            )
