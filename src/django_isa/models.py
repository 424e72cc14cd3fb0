"""Income share agreement models.

Provides:
- IsaConfig: Singleton holding the privileged identities
- IncomeShareAgreement: One student's financing terms, totals and status
- InvestorStake: One investor's cumulative contribution to one agreement
- StatusTransition: Audit log of every status change
- Distribution / DistributionShare: Audit of each settlement batch

Write through services only:
    from django_isa.services import initialize_isa, invest, pay_share, ...
"""

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from .exceptions import (
    ConfigAlreadyInitialized,
    ConfigNotInitialized,
    ConfigurationMismatch,
    ImmutableRecordError,
)
from .graph import INITIAL_STATUS, STATUS_CODES, IsaStatus, is_terminal


class IsaBaseModel(models.Model):
    """Base model with timestamps. ISA records are never deleted."""

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True

    def delete(self, *args, **kwargs):
        raise ImmutableRecordError(
            f"Cannot delete {self.__class__.__name__} {self.pk} - retained for audit"
        )


class AppendOnlyModel(IsaBaseModel):
    """Ledger-style record: created once, never updated or deleted."""

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecordError(
                f"Cannot modify {self.__class__.__name__} {self.pk} - records are append-only"
            )
        super().save(*args, **kwargs)


class SingletonModel(IsaBaseModel):
    """
    Abstract base for a single-row model.

    Enforces pk=1. Unlike a settings singleton, the row is never created
    implicitly: load() raises until an initializer has saved it, and a second
    unsaved instance cannot replace it.
    """

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        self.pk = 1

        if self._state.adding and self.__class__.objects.filter(pk=1).exists():
            raise ConfigAlreadyInitialized(
                f"{self.__class__.__name__} already exists; update the saved row instead"
            )

        # Extra rows can only come from bulk ops or fixtures
        if self.__class__.objects.exclude(pk=1).exists():
            raise ConfigurationMismatch(
                f"Multiple rows exist for singleton {self.__class__.__name__}. "
                "Remove extra rows before saving."
            )

        super().save(*args, **kwargs)

    @classmethod
    def load(cls):
        """Return the singleton row, or raise ConfigNotInitialized."""
        try:
            return cls.objects.get(pk=1)
        except cls.DoesNotExist:
            raise ConfigNotInitialized(f"{cls.__name__} has not been initialized")


class IsaConfig(SingletonModel):
    """
    The three privileged identities.

    - admin: may replace the oracle and the university
    - oracle: reports salaries and delinquency
    - university: receives released funds and reports dropouts
    """

    admin = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
        help_text="Identity allowed to change the oracle and university",
    )
    oracle = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
        help_text="Identity allowed to report salaries and delinquency",
    )
    university = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
        help_text="Recipient of released funds; reports dropouts",
    )

    class Meta:
        verbose_name = "ISA configuration"

    def __str__(self):
        return f"ISA config (admin={self.admin_id}, oracle={self.oracle_id}, university={self.university_id})"


class IncomeShareAgreementQuerySet(models.QuerySet):
    """Custom queryset for IncomeShareAgreement model."""

    def for_student(self, student):
        return self.filter(owner=student)

    def with_status(self, *statuses):
        return self.filter(status__in=statuses)

    def open(self):
        """Agreements not yet in a terminal status."""
        return self.exclude(status__in=[IsaStatus.COMPLETED, IsaStatus.DROPPED_OUT])

    def in_repayment(self):
        return self.filter(status__in=[IsaStatus.WORKING, IsaStatus.DELINQUENT])


class IncomeShareAgreement(IsaBaseModel):
    """
    One student's income share agreement.

    Investors fund up to course_cost into the escrow account while the
    agreement is learning. After funds are released to the university the
    student repays percent of each reported salary into the same escrow, up to
    max_cap, and escrowed repayments are distributed to investors pro rata.

    Amounts are integers in base units of funding_mint.
    """

    owner = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="income_share_agreement",
        help_text="The student; one agreement per student",
    )
    address = models.CharField(
        max_length=64,
        unique=True,
        help_text="Derived address ('isa', student)",
    )
    funding_mint = models.ForeignKey(
        "django_escrow.Mint",
        on_delete=models.PROTECT,
        related_name="+",
        help_text="Unit of value the agreement is funded and repaid in",
    )
    escrow_account = models.OneToOneField(
        "django_escrow.TokenAccount",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
        help_text="Pooled funds account owned by this agreement (set on initialize)",
    )

    course_cost = models.PositiveBigIntegerField(help_text="Funding ceiling")
    percent = models.PositiveSmallIntegerField(help_text="Repayment rate, 1-100")
    max_cap = models.PositiveBigIntegerField(help_text="Total repayment ceiling")

    total_invested = models.PositiveBigIntegerField(default=0)
    already_paid = models.PositiveBigIntegerField(default=0)
    total_distributed = models.PositiveBigIntegerField(default=0)
    last_salary = models.PositiveBigIntegerField(default=0)

    status = models.CharField(
        max_length=20,
        choices=IsaStatus.choices,
        default=INITIAL_STATUS,
        db_index=True,
    )

    objects = IncomeShareAgreementQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            # Dropout zeroes percent and max_cap
            models.CheckConstraint(
                condition=Q(percent__gte=1, percent__lte=100)
                | Q(status=IsaStatus.DROPPED_OUT, percent=0),
                name="isa_percent_in_range",
            ),
            models.CheckConstraint(
                condition=Q(total_invested__lte=F("course_cost")),
                name="isa_invested_within_course_cost",
            ),
            models.CheckConstraint(
                condition=Q(already_paid__lte=F("max_cap")) | Q(status=IsaStatus.DROPPED_OUT),
                name="isa_paid_within_cap",
            ),
            models.CheckConstraint(
                condition=Q(total_distributed__lte=F("total_invested") + F("already_paid")),
                name="isa_distributed_within_inflows",
            ),
        ]

    def __str__(self):
        return f"ISA {self.address[:12]} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.status]

    @property
    def remaining_to_invest(self) -> int:
        return max(0, self.course_cost - self.total_invested)

    @property
    def remaining_to_repay(self) -> int:
        return max(0, self.max_cap - self.already_paid)


class InvestorStake(IsaBaseModel):
    """
    One investor's cumulative contribution to one agreement.

    Exactly one row per (agreement, investor); repeat investment accumulates
    into amount. Frozen once the agreement leaves the learning status.
    """

    agreement = models.ForeignKey(
        IncomeShareAgreement,
        on_delete=models.PROTECT,
        related_name="stakes",
    )
    investor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="isa_stakes",
    )
    address = models.CharField(
        max_length=64,
        unique=True,
        help_text="Derived address ('stake', agreement address, investor)",
    )
    amount = models.PositiveBigIntegerField(default=0)
    initialized = models.BooleanField(default=False)

    class Meta:
        ordering = ["created_at", "pk"]
        constraints = [
            models.UniqueConstraint(
                fields=["agreement", "investor"],
                name="unique_stake_per_agreement_investor",
            ),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            status = (
                IncomeShareAgreement.objects.filter(pk=self.agreement_id)
                .values_list("status", flat=True)
                .first()
            )
            if status != IsaStatus.LEARNING:
                raise ImmutableRecordError(
                    f"Stake {self.pk} is frozen: agreement is {status}",
                    status=status,
                )
        super().save(*args, **kwargs)

    def __str__(self):
        return f"Stake {self.investor_id} in {self.agreement_id}: {self.amount}"


class StatusTransition(AppendOnlyModel):
    """Audit log of agreement status changes."""

    agreement = models.ForeignKey(
        IncomeShareAgreement,
        on_delete=models.PROTECT,
        related_name="transitions",
    )
    from_status = models.CharField(
        max_length=20,
        blank=True,
        help_text="Status before transition (blank on creation)",
    )
    to_status = models.CharField(max_length=20)
    operation = models.CharField(
        max_length=50,
        help_text="Service operation that caused the transition",
    )
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["created_at", "pk"]
        indexes = [
            models.Index(fields=["agreement", "created_at"]),
        ]

    def __str__(self):
        return f"{self.agreement_id}: {self.from_status or '-'} -> {self.to_status}"


class Distribution(AppendOnlyModel):
    """
    One settlement batch pushed out of escrow.

    Written only after every transfer of the batch succeeded.
    remainder is the floor-division dust that stayed in escrow.
    """

    agreement = models.ForeignKey(
        IncomeShareAgreement,
        on_delete=models.PROTECT,
        related_name="distributions",
    )
    requested_amount = models.PositiveBigIntegerField()
    distributed_amount = models.PositiveBigIntegerField()
    remainder = models.PositiveBigIntegerField()
    stake_count = models.PositiveIntegerField()
    total_stake_weight = models.PositiveBigIntegerField(
        help_text="Sum of stake amounts in the supplied set",
    )
    executed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        ordering = ["-created_at", "-pk"]
        constraints = [
            models.CheckConstraint(
                condition=Q(distributed_amount__lte=F("requested_amount")),
                name="isa_distribution_within_request",
            ),
        ]

    def __str__(self):
        return f"Distribution {self.pk}: {self.distributed_amount}/{self.requested_amount}"


class DistributionShare(AppendOnlyModel):
    """One investor's slice of a distribution."""

    distribution = models.ForeignKey(
        Distribution,
        on_delete=models.PROTECT,
        related_name="shares",
    )
    stake = models.ForeignKey(
        InvestorStake,
        on_delete=models.PROTECT,
        related_name="shares",
    )
    recipient_account = models.ForeignKey(
        "django_escrow.TokenAccount",
        on_delete=models.PROTECT,
        related_name="+",
    )
    stake_amount = models.PositiveBigIntegerField()
    share = models.PositiveBigIntegerField()
    transfer = models.OneToOneField(
        "django_escrow.Transfer",
        on_delete=models.PROTECT,
        related_name="+",
    )

    class Meta:
        ordering = ["pk"]

    def __str__(self):
        return f"{self.stake_id}: {self.share}"
