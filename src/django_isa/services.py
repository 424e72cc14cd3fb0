"""Income share agreement service layer.

All write operations go through these functions.
Direct model manipulation bypasses invariants and is unsupported.

Every function runs in one database transaction and re-reads the agreement
with select_for_update(), so operations on the same agreement serialize and
any error rolls back every transfer and counter update. The updated, locked
instance is returned; the instance passed in is left untouched.

Privileged functions take the IsaConfig explicitly as their first argument
and the calling identity as their second.

Functions:
- initialize_config(), set_oracle(), set_university()
- initialize_isa(), invest(), release_funds_to_university()
- update_salary(), pay_share(), distribute_payments(), preview_distribution()
- report_delinquency(), report_dropout()
"""

import logging

from django.db import IntegrityError, transaction

from django_escrow import services as ledger
from django_escrow.exceptions import (
    InactiveAccountError,
    InsufficientBalanceError,
    InvalidTransferAmount,
    MintMismatchError,
    TransferError,
    UnauthorizedTransferError,
)

from .addressing import agreement_address, stake_address
from .arithmetic import AMOUNT_MAX, checked_add, checked_div, checked_mul, saturating_sub
from .authorization import Role, requires_role
from .conf import get_setting
from .exceptions import (
    ConfigAlreadyInitialized,
    ConfigurationMismatch,
    FundingExceedsCourseCost,
    InsufficientFunds,
    InvalidParameter,
    InvalidReference,
    InvalidState,
    NoSalary,
    NothingToPay,
)
from .graph import INITIAL_STATUS, IsaStatus, can_transition
from .models import (
    Distribution,
    DistributionShare,
    IncomeShareAgreement,
    InvestorStake,
    IsaConfig,
    StatusTransition,
)
from .settlement import SettlementPlan, plan_distribution, validate_allocations

logger = logging.getLogger(__name__)

PERCENT_DENOMINATOR = 100


# =============================================================================
# Helpers
# =============================================================================


def _require_amount(value, name: str, allow_zero: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameter(f"{name} must be an integer, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise InvalidParameter(f"{name} must be {'non-negative' if allow_zero else 'positive'}, got {value}")
    if value > AMOUNT_MAX:
        raise InvalidParameter(f"{name} exceeds {AMOUNT_MAX}")


def _lock(agreement: IncomeShareAgreement) -> IncomeShareAgreement:
    return (
        IncomeShareAgreement.objects.select_for_update(of=("self",))
        .select_related("escrow_account", "funding_mint")
        .get(pk=agreement.pk)
    )


def _require_status(agreement, allowed, operation: str) -> None:
    if agreement.status not in allowed:
        raise InvalidState(
            f"Cannot {operation} while agreement is {agreement.status}",
            status=agreement.status,
            operation=operation,
        )


def _set_status(agreement, to_status, operation: str, actor=None, metadata: dict = None) -> None:
    """Move along one graph edge and record it. Same-status is a no-op."""
    from_status = agreement.status
    if from_status == to_status:
        return

    if not can_transition(from_status, to_status):
        raise InvalidState(
            f"Transition from '{from_status}' to '{to_status}' not allowed",
            status=from_status,
            operation=operation,
        )

    StatusTransition.objects.create(
        agreement=agreement,
        from_status=from_status,
        to_status=to_status,
        operation=operation,
        actor=actor,
        metadata=metadata or {},
    )
    agreement.status = to_status


def _check_escrow(agreement) -> None:
    escrow = agreement.escrow_account
    if escrow is None:
        raise ConfigurationMismatch(f"Agreement {agreement.pk} has no escrow account")
    if escrow.mint_id != agreement.funding_mint_id:
        raise ConfigurationMismatch(
            f"Escrow {escrow.pk} holds {escrow.mint_id}, agreement is funded in {agreement.funding_mint_id}"
        )
    if not escrow.is_owned_by(agreement):
        raise ConfigurationMismatch(f"Escrow {escrow.pk} is not owned by agreement {agreement.pk}")


def _check_account(account, owner, agreement, label: str) -> None:
    if not account.is_owned_by(owner):
        raise InvalidReference(f"{label} account {account.pk} is not owned by {owner!r}")
    if account.mint_id != agreement.funding_mint_id:
        raise ConfigurationMismatch(
            f"{label} account {account.pk} holds {account.mint_id}, "
            f"agreement is funded in {agreement.funding_mint_id}"
        )


def _move(from_account, to_account, amount: int, authority, agreement, operation: str):
    """Ledger transfer with ledger errors translated to agreement errors."""
    try:
        return ledger.transfer(
            from_account,
            to_account,
            amount,
            authority=authority,
            memo=f"{operation} {agreement.address[:12]}",
            metadata={"agreement": agreement.address, "operation": operation},
        )
    except InsufficientBalanceError as exc:
        raise InsufficientFunds(str(exc)) from exc
    except MintMismatchError as exc:
        raise ConfigurationMismatch(str(exc)) from exc
    except (UnauthorizedTransferError, InactiveAccountError) as exc:
        raise InvalidReference(str(exc)) from exc
    except InvalidTransferAmount as exc:
        raise InvalidParameter(str(exc)) from exc
    except TransferError as exc:
        raise InvalidReference(str(exc)) from exc


# =============================================================================
# Global configuration
# =============================================================================


@transaction.atomic
def initialize_config(admin, oracle, university) -> IsaConfig:
    """
    Create the global configuration. The caller becomes admin.

    Raises:
        ConfigAlreadyInitialized: if the configuration already exists
    """
    if IsaConfig.objects.exists():
        raise ConfigAlreadyInitialized("ISA configuration is already initialized")

    config = IsaConfig(admin=admin, oracle=oracle, university=university)
    try:
        with transaction.atomic():
            config.save(force_insert=True)
    except IntegrityError as exc:
        # Another initializer inserted row 1 after the check above
        raise ConfigAlreadyInitialized("ISA configuration is already initialized") from exc

    logger.info(
        f"ISA config initialized: admin={admin.pk} oracle={oracle.pk} university={university.pk}"
    )
    return config


@requires_role(Role.ADMIN)
@transaction.atomic
def set_oracle(config: IsaConfig, caller, oracle) -> IsaConfig:
    """Replace the salary oracle. Admin only."""
    config = IsaConfig.objects.select_for_update().get(pk=config.pk)
    previous = config.oracle_id
    config.oracle = oracle
    config.save(update_fields=["oracle", "updated_at"])

    logger.info(f"ISA oracle changed from {previous} to {oracle.pk} by {caller.pk}")
    return config


@requires_role(Role.ADMIN)
@transaction.atomic
def set_university(config: IsaConfig, caller, university) -> IsaConfig:
    """Replace the university / repayment recipient. Admin only."""
    config = IsaConfig.objects.select_for_update().get(pk=config.pk)
    previous = config.university_id
    config.university = university
    config.save(update_fields=["university", "updated_at"])

    logger.info(f"ISA university changed from {previous} to {university.pk} by {caller.pk}")
    return config


# =============================================================================
# Funding phase
# =============================================================================


@transaction.atomic
def initialize_isa(student, mint, course_cost: int, percent: int, max_cap: int) -> IncomeShareAgreement:
    """
    Create a student's agreement and its escrow account.

    Args:
        student: The student (one agreement per student)
        mint: Unit of value for funding and repayment
        course_cost: Funding ceiling
        percent: Share of each salary owed, 1-100
        max_cap: Total repayment ceiling

    Returns:
        The agreement, in learning status with all totals zero

    Raises:
        InvalidParameter: bad percent or amount
        InvalidState: the student already has an agreement
        ConfigurationMismatch: escrow owner or mint inconsistent with the agreement
    """
    if isinstance(percent, bool) or not isinstance(percent, int) or not 0 < percent <= PERCENT_DENOMINATOR:
        raise InvalidParameter(f"percent must be between 1 and {PERCENT_DENOMINATOR}, got {percent!r}")
    _require_amount(course_cost, "course_cost", allow_zero=True)
    _require_amount(max_cap, "max_cap", allow_zero=True)

    if IncomeShareAgreement.objects.filter(owner=student).exists():
        raise InvalidState(
            f"Student {student.pk} already has an agreement",
            operation="initialize_isa",
        )

    agreement = IncomeShareAgreement.objects.create(
        owner=student,
        address=agreement_address(student),
        funding_mint=mint,
        course_cost=course_cost,
        percent=percent,
        max_cap=max_cap,
        status=INITIAL_STATUS,
    )

    agreement.escrow_account = ledger.open_account(
        owner=agreement,
        mint=mint,
        name=f"{get_setting('ESCROW_ACCOUNT_NAME')} {agreement.address[:12]}",
    )
    _check_escrow(agreement)
    agreement.save(update_fields=["escrow_account", "updated_at"])

    StatusTransition.objects.create(
        agreement=agreement,
        from_status="",
        to_status=INITIAL_STATUS,
        operation="initialize_isa",
        actor=student,
        metadata={"course_cost": course_cost, "percent": percent, "max_cap": max_cap},
    )

    logger.info(
        f"ISA {agreement.pk} initialized for student {student.pk}: "
        f"course_cost={course_cost} percent={percent} max_cap={max_cap}"
    )
    return agreement


@transaction.atomic
def invest(agreement: IncomeShareAgreement, investor, source_account, amount: int) -> InvestorStake:
    """
    Fund the agreement's escrow and record the investor's stake.

    Repeat investment by the same investor accumulates into one stake.

    Returns:
        The investor's stake; stake.agreement is the updated agreement

    Raises:
        InvalidState: agreement is not learning
        InvalidParameter: amount is not positive
        FundingExceedsCourseCost: total_invested would exceed course_cost
        InvalidReference: source account is not the investor's
        ConfigurationMismatch: source account is in another mint
        InsufficientFunds: source account cannot cover amount
    """
    agreement = _lock(agreement)
    _require_status(agreement, {IsaStatus.LEARNING}, "invest")
    _require_amount(amount, "amount")

    new_total = checked_add(agreement.total_invested, amount)
    if new_total > agreement.course_cost:
        raise FundingExceedsCourseCost(
            f"Investing {amount} would raise total_invested to {new_total}, "
            f"above course_cost {agreement.course_cost}"
        )

    _check_escrow(agreement)
    _check_account(source_account, investor, agreement, "Source")
    _move(source_account, agreement.escrow_account, amount, investor, agreement, "invest")

    agreement.total_invested = new_total
    agreement.save(update_fields=["total_invested", "updated_at"])

    address = stake_address(agreement, investor)
    stake = (
        InvestorStake.objects.select_for_update()
        .filter(agreement=agreement, investor=investor)
        .first()
    )
    if stake is None:
        stake = InvestorStake.objects.create(
            agreement=agreement,
            investor=investor,
            address=address,
            amount=amount,
            initialized=True,
        )
    else:
        if stake.address != address:
            raise InvalidReference(f"Stake {stake.pk} address does not match investor {investor.pk}")
        stake.amount = checked_add(stake.amount, amount)
        stake.save(update_fields=["amount", "updated_at"])
    stake.agreement = agreement

    logger.info(
        f"ISA {agreement.pk}: investor {investor.pk} invested {amount} "
        f"(stake={stake.amount}, total_invested={new_total}/{agreement.course_cost})"
    )
    return stake


@requires_role(Role.RECIPIENT)
@transaction.atomic
def release_funds_to_university(
    config: IsaConfig,
    caller,
    agreement: IncomeShareAgreement,
    recipient_account,
) -> IncomeShareAgreement:
    """
    Release the whole escrow balance to the university. University only.

    The agreement signs the transfer out of its own escrow.

    Raises:
        InvalidState: agreement is not learning
        InvalidReference: recipient account is not the university's
        ConfigurationMismatch: recipient account is in another mint
        InsufficientFunds: escrow is empty
    """
    agreement = _lock(agreement)
    _require_status(agreement, {IsaStatus.LEARNING}, "release_funds_to_university")
    _check_escrow(agreement)
    _check_account(recipient_account, config.university, agreement, "Recipient")

    balance = ledger.get_balance(agreement.escrow_account)
    if balance <= 0:
        raise InsufficientFunds(f"Escrow for agreement {agreement.pk} is empty")

    _move(
        agreement.escrow_account,
        recipient_account,
        balance,
        agreement,
        agreement,
        "release_funds_to_university",
    )

    _set_status(
        agreement,
        IsaStatus.STUDYING_PAID,
        "release_funds_to_university",
        actor=caller,
        metadata={"amount": balance, "recipient_account": recipient_account.pk},
    )
    agreement.save(update_fields=["status", "updated_at"])

    logger.info(f"ISA {agreement.pk}: released {balance} to university account {recipient_account.pk}")
    return agreement


# =============================================================================
# Repayment phase
# =============================================================================


@requires_role(Role.ORACLE)
@transaction.atomic
def update_salary(config: IsaConfig, caller, agreement: IncomeShareAgreement, salary: int) -> IncomeShareAgreement:
    """
    Record the student's latest salary. Oracle only.

    A zero salary marks the student unemployed, any other salary working.
    This is an override channel: it applies from every non-terminal status,
    including learning and delinquent.

    Raises:
        InvalidParameter: salary is negative or not an integer
        InvalidState: agreement is completed or dropped out
    """
    _require_amount(salary, "salary", allow_zero=True)
    agreement = _lock(agreement)
    if agreement.is_terminal:
        raise InvalidState(
            f"Cannot update salary of a {agreement.status} agreement",
            status=agreement.status,
            operation="update_salary",
        )

    from_status = agreement.status
    agreement.last_salary = salary
    _set_status(
        agreement,
        IsaStatus.UNEMPLOYED if salary == 0 else IsaStatus.WORKING,
        "update_salary",
        actor=caller,
        metadata={"salary": salary},
    )
    agreement.save(update_fields=["last_salary", "status", "updated_at"])

    logger.info(f"ISA {agreement.pk}: salary {salary} reported ({from_status} -> {agreement.status})")
    return agreement


def compute_due(agreement: IncomeShareAgreement) -> int:
    """
    Repayment owed for the current cycle.

    floor(last_salary * percent / 100), clamped so already_paid never
    exceeds max_cap. The clamp floors at zero.
    """
    due = checked_div(checked_mul(agreement.last_salary, agreement.percent), PERCENT_DENOMINATOR)
    if checked_add(agreement.already_paid, due) > agreement.max_cap:
        due = saturating_sub(agreement.max_cap, agreement.already_paid)
    return due


@transaction.atomic
def pay_share(agreement: IncomeShareAgreement, student, source_account) -> IncomeShareAgreement:
    """
    Pay the current cycle's due from the student into escrow.

    A delinquent agreement returns to working; reaching max_cap completes it.

    Raises:
        InvalidReference: caller is not the agreement owner, or source account not theirs
        InvalidState: agreement is not working or delinquent
        NoSalary: no salary reported
        NothingToPay: clamped due is zero
        ConfigurationMismatch: source account is in another mint
        InsufficientFunds: source account cannot cover the due
    """
    agreement = _lock(agreement)
    if agreement.owner_id != student.pk:
        raise InvalidReference(f"{student!r} is not the owner of agreement {agreement.pk}")
    _require_status(agreement, {IsaStatus.WORKING, IsaStatus.DELINQUENT}, "pay_share")
    if agreement.last_salary <= 0:
        raise NoSalary(
            f"No salary reported for agreement {agreement.pk}",
            status=agreement.status,
            operation="pay_share",
        )

    due = compute_due(agreement)
    if due == 0:
        raise NothingToPay(f"Nothing to pay on agreement {agreement.pk}")

    _check_escrow(agreement)
    _check_account(source_account, student, agreement, "Source")
    _move(source_account, agreement.escrow_account, due, student, agreement, "pay_share")

    from_status = agreement.status
    agreement.already_paid = checked_add(agreement.already_paid, due)
    if agreement.already_paid >= agreement.max_cap:
        to_status = IsaStatus.COMPLETED
    else:
        to_status = IsaStatus.WORKING
    _set_status(
        agreement,
        to_status,
        "pay_share",
        actor=student,
        metadata={"due": due, "already_paid": agreement.already_paid},
    )
    agreement.save(update_fields=["already_paid", "status", "updated_at"])

    logger.info(
        f"ISA {agreement.pk}: paid {due} ({agreement.already_paid}/{agreement.max_cap}, "
        f"{from_status} -> {agreement.status})"
    )
    return agreement


@requires_role(Role.ORACLE)
@transaction.atomic
def report_delinquency(config: IsaConfig, caller, agreement: IncomeShareAgreement) -> IncomeShareAgreement:
    """
    Flag a student who has income but is not paying. Oracle only.

    Raises:
        InvalidState: agreement is not working or unemployed
        NoSalary: no salary reported
    """
    agreement = _lock(agreement)
    _require_status(agreement, {IsaStatus.WORKING, IsaStatus.UNEMPLOYED}, "report_delinquency")
    if agreement.last_salary <= 0:
        raise NoSalary(
            f"Cannot flag delinquency without reported income on agreement {agreement.pk}",
            status=agreement.status,
            operation="report_delinquency",
        )

    _set_status(agreement, IsaStatus.DELINQUENT, "report_delinquency", actor=caller)
    agreement.save(update_fields=["status", "updated_at"])

    logger.info(f"ISA {agreement.pk}: reported delinquent")
    return agreement


@requires_role(Role.RECIPIENT)
@transaction.atomic
def report_dropout(config: IsaConfig, caller, agreement: IncomeShareAgreement) -> IncomeShareAgreement:
    """
    Record that the student dropped out. University only.

    Zeroes percent and max_cap, permanently extinguishing the repayment
    obligation. Irreversible.

    Raises:
        InvalidState: agreement is already completed or dropped out
    """
    agreement = _lock(agreement)
    if agreement.is_terminal:
        raise InvalidState(
            f"Cannot report dropout on a {agreement.status} agreement",
            status=agreement.status,
            operation="report_dropout",
        )

    metadata = {"percent": agreement.percent, "max_cap": agreement.max_cap, "already_paid": agreement.already_paid}
    _set_status(agreement, IsaStatus.DROPPED_OUT, "report_dropout", actor=caller, metadata=metadata)
    agreement.percent = 0
    agreement.max_cap = 0
    agreement.save(update_fields=["percent", "max_cap", "status", "updated_at"])

    logger.info(f"ISA {agreement.pk}: student dropped out (already_paid={agreement.already_paid})")
    return agreement


# =============================================================================
# Settlement
# =============================================================================


def _reload_allocations(allocations) -> list:
    """Re-read supplied stakes and accounts so in-memory edits cannot skew shares."""
    from django_escrow.models import TokenAccount

    pairs = list(allocations)
    stakes = InvestorStake.objects.select_related("investor").in_bulk([stake.pk for stake, _ in pairs])
    accounts = TokenAccount.objects.in_bulk([account.pk for _, account in pairs])

    reloaded = []
    for stake, account in pairs:
        if stake.pk not in stakes:
            raise InvalidReference(f"Stake {stake.pk} does not exist")
        if account.pk not in accounts:
            raise InvalidReference(f"Account {account.pk} does not exist")
        reloaded.append((stakes[stake.pk], accounts[account.pk]))
    return reloaded


def _plan(agreement, amount: int, allocations) -> SettlementPlan:
    """Every distribution check that needs no write, then the share plan."""
    _check_escrow(agreement)

    balance = ledger.get_balance(agreement.escrow_account)
    if balance < amount:
        raise InsufficientFunds(f"Escrow holds {balance}, cannot distribute {amount}")

    pairs = _reload_allocations(allocations)
    validate_allocations(agreement, pairs, max_stakes=get_setting("MAX_DISTRIBUTION_STAKES"))
    return plan_distribution(amount, pairs)


def preview_distribution(agreement: IncomeShareAgreement, amount: int, allocations) -> SettlementPlan:
    """
    The plan distribute_payments would execute, without moving anything.

    Raises the same errors distribute_payments raises before its first transfer.
    """
    _require_amount(amount, "amount")
    agreement = IncomeShareAgreement.objects.select_related("escrow_account", "funding_mint").get(pk=agreement.pk)
    return _plan(agreement, amount, allocations)


@transaction.atomic
def distribute_payments(
    agreement: IncomeShareAgreement,
    amount: int,
    allocations,
    executed_by=None,
) -> Distribution:
    """
    Push ``amount`` out of escrow to investors, pro rata to their stakes.

    Legal in any status. ``allocations`` is the caller-supplied set of
    ``(stake, recipient_account)`` pairs; see selectors.stake_allocations()
    for the complete set. The set is trusted: a subset is accepted.

    Either every share is transferred and total_distributed is updated, or
    nothing happens.

    Returns:
        The Distribution record with its shares

    Raises:
        InvalidParameter: amount not positive, duplicate stake, batch too large
        InsufficientFunds: escrow below amount, or inflows exceeded
        NoInvestors: empty set or zero total stake
        InvalidReference: stake not in this agreement, account not the investor's
        ConfigurationMismatch: recipient account in another mint
        ArithmeticOverflow: checked arithmetic failed
    """
    _require_amount(amount, "amount")
    agreement = _lock(agreement)
    plan = _plan(agreement, amount, allocations)

    posted = []
    total_share_distributed = 0
    for allocation in plan.payable:
        transfer = _move(
            agreement.escrow_account,
            allocation.recipient_account,
            allocation.share,
            agreement,
            agreement,
            "distribute_payments",
        )
        total_share_distributed = checked_add(total_share_distributed, allocation.share)
        posted.append((allocation, transfer))

    new_total = checked_add(agreement.total_distributed, total_share_distributed)
    inflows = checked_add(agreement.total_invested, agreement.already_paid)
    if new_total > inflows:
        raise InsufficientFunds(
            f"Distributing {total_share_distributed} would exceed the {inflows} paid into agreement {agreement.pk}"
        )
    agreement.total_distributed = new_total
    agreement.save(update_fields=["total_distributed", "updated_at"])

    distribution = Distribution.objects.create(
        agreement=agreement,
        requested_amount=amount,
        distributed_amount=total_share_distributed,
        remainder=amount - total_share_distributed,
        stake_count=len(plan.allocations),
        total_stake_weight=plan.total_weight,
        executed_by=executed_by,
    )
    DistributionShare.objects.bulk_create([
        DistributionShare(
            distribution=distribution,
            stake=allocation.stake,
            recipient_account=allocation.recipient_account,
            stake_amount=allocation.stake.amount,
            share=allocation.share,
            transfer=transfer,
        )
        for allocation, transfer in posted
    ])

    logger.info(
        f"ISA {agreement.pk}: distributed {total_share_distributed}/{amount} "
        f"over {len(plan.allocations)} stakes (remainder={distribution.remainder})"
    )
    return distribution
