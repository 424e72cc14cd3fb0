"""Read-side queries for income share agreements."""

from dataclasses import dataclass
from fractions import Fraction

from django.db.models import QuerySet, Sum

from django_escrow.models import TokenAccount
from django_escrow.services import get_balance

from .exceptions import InvalidReference
from .models import DistributionShare, IncomeShareAgreement, InvestorStake, IsaConfig


@dataclass(frozen=True)
class FundingStatus:
    """Funding snapshot of one agreement, for display."""

    student_id: int
    address: str
    mint: str
    course_cost: int
    total_invested: int
    remaining_to_invest: int
    is_fully_funded: bool
    percent: int
    max_cap: int
    status: str
    status_code: int


@dataclass(frozen=True)
class InvestorPosition:
    """One investor's stake in an agreement and what it has returned."""

    stake: InvestorStake
    ownership: Fraction
    received: int


def get_config() -> IsaConfig:
    """Return the global configuration, or raise ConfigNotInitialized."""
    return IsaConfig.load()


def get_agreement_for_student(student) -> IncomeShareAgreement:
    try:
        return IncomeShareAgreement.objects.select_related("escrow_account", "funding_mint").get(owner=student)
    except IncomeShareAgreement.DoesNotExist:
        raise InvalidReference(f"No agreement found for student {student.pk}")


def get_funding_status(student) -> FundingStatus:
    agreement = get_agreement_for_student(student)
    remaining = agreement.remaining_to_invest
    return FundingStatus(
        student_id=agreement.owner_id,
        address=agreement.address,
        mint=agreement.funding_mint.code,
        course_cost=agreement.course_cost,
        total_invested=agreement.total_invested,
        remaining_to_invest=remaining,
        is_fully_funded=remaining == 0,
        percent=agreement.percent,
        max_cap=agreement.max_cap,
        status=agreement.status,
        status_code=agreement.status_code,
    )


def get_stakes_for_agreement(agreement: IncomeShareAgreement) -> QuerySet:
    return InvestorStake.objects.filter(agreement=agreement).select_related("investor").order_by("created_at", "pk")


def get_escrow_balance(agreement: IncomeShareAgreement) -> int:
    return get_balance(agreement.escrow_account)


def get_investor_position(agreement: IncomeShareAgreement, investor) -> InvestorPosition:
    """
    Stake, share of the funding pool, and total distributions received.

    Raises:
        InvalidReference: investor has no stake in the agreement
    """
    try:
        stake = InvestorStake.objects.get(agreement=agreement, investor=investor)
    except InvestorStake.DoesNotExist:
        raise InvalidReference(f"Investor {investor.pk} has no stake in agreement {agreement.pk}")

    pool = InvestorStake.objects.filter(agreement=agreement).aggregate(total=Sum("amount"))["total"] or 0
    received = DistributionShare.objects.filter(stake=stake).aggregate(total=Sum("share"))["total"] or 0
    return InvestorPosition(
        stake=stake,
        ownership=Fraction(stake.amount, pool) if pool else Fraction(0),
        received=received,
    )


def stake_allocations(agreement: IncomeShareAgreement) -> list:
    """
    The complete (stake, recipient_account) set for a distribution.

    Each investor is paid into their oldest active account in the agreement's
    mint.

    Raises:
        InvalidReference: an investor has no active account in the mint
    """
    pairs = []
    for stake in get_stakes_for_agreement(agreement):
        account = (
            TokenAccount.objects.for_owner(stake.investor)
            .active()
            .in_mint(agreement.funding_mint_id)
            .order_by("created_at", "pk")
            .first()
        )
        if account is None:
            raise InvalidReference(
                f"Investor {stake.investor_id} has no active account in mint {agreement.funding_mint_id}"
            )
        pairs.append((stake, account))
    return pairs
