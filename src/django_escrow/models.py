"""Mint, TokenAccount and Transfer models for the escrow ledger."""

from django.contrib.contenttypes.fields import GenericForeignKey
from django.contrib.contenttypes.models import ContentType
from django.db import models

from django_escrow.exceptions import ImmutableTransferError


class EscrowBaseModel(models.Model):
    """Base model with created/updated timestamps."""

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class Mint(EscrowBaseModel):
    """
    A unit of value.

    Every account and every transfer is denominated in exactly one mint.
    Amounts are integers in the mint's base unit; ``decimals`` is display
    metadata only.
    """

    code = models.SlugField(
        max_length=32,
        unique=True,
        help_text="Unique code for this unit of value (e.g., 'usdc')",
    )
    name = models.CharField(
        max_length=100,
        blank=True,
        default='',
        help_text="Human-readable name",
    )
    decimals = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of decimal places of the display unit",
    )

    class Meta:
        app_label = 'django_escrow'
        ordering = ['code']

    def __str__(self):
        return self.code


class TokenAccountQuerySet(models.QuerySet):
    """Custom queryset for TokenAccount model."""

    def active(self):
        """Return only active accounts."""
        return self.filter(is_active=True)

    def for_owner(self, owner):
        """Return accounts for the given owner."""
        content_type = ContentType.objects.get_for_model(owner)
        return self.filter(
            owner_content_type=content_type,
            owner_id=str(owner.pk),
        )

    def in_mint(self, mint):
        """Return accounts denominated in the given mint."""
        return self.filter(mint=mint)


class TokenAccount(EscrowBaseModel):
    """
    Balance-holding account for one owner in one mint.

    The owner can be any model instance: a user, or a record such as an
    agreement that holds pooled funds and signs its own transfers.

    Usage:
        account = TokenAccount.objects.create(owner=investor, mint=usdc)
    """

    owner_content_type = models.ForeignKey(
        ContentType,
        on_delete=models.PROTECT,
        help_text="Content type of the account owner",
    )
    owner_id = models.CharField(
        max_length=255,
        help_text="ID of the account owner (CharField for UUID support)",
    )
    owner = GenericForeignKey('owner_content_type', 'owner_id')

    mint = models.ForeignKey(
        Mint,
        on_delete=models.PROTECT,
        related_name='accounts',
        help_text="Unit of value held by this account",
    )
    name = models.CharField(
        max_length=255,
        blank=True,
        default='',
        help_text="Optional account name",
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive accounts can neither send nor receive transfers.",
    )

    objects = TokenAccountQuerySet.as_manager()

    class Meta:
        app_label = 'django_escrow'
        indexes = [
            models.Index(fields=['owner_content_type', 'owner_id']),
        ]

    def save(self, *args, **kwargs):
        """Ensure owner_id is always stored as string."""
        if self.owner_id is not None:
            self.owner_id = str(self.owner_id)
        super().save(*args, **kwargs)

    def is_owned_by(self, owner) -> bool:
        """Check whether ``owner`` is this account's owner."""
        if owner is None or owner.pk is None:
            return False
        content_type = ContentType.objects.get_for_model(owner)
        return (
            self.owner_content_type_id == content_type.pk
            and self.owner_id == str(owner.pk)
        )

    def __str__(self):
        return f"{self.name or 'account'} #{self.pk} ({self.mint_id})"


class Transfer(models.Model):
    """
    Immutable movement of ``amount`` units between two accounts.

    ``from_account`` is null for issuance (new units entering the ledger).
    Balances are derived: incoming transfers minus outgoing transfers.
    """

    from_account = models.ForeignKey(
        TokenAccount,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name='outgoing_transfers',
        help_text="Source account (null = issuance)",
    )
    to_account = models.ForeignKey(
        TokenAccount,
        on_delete=models.PROTECT,
        related_name='incoming_transfers',
        help_text="Destination account",
    )
    amount = models.PositiveBigIntegerField(
        help_text="Amount in base units of the mint",
    )
    memo = models.CharField(
        max_length=500,
        blank=True,
        default='',
        help_text="Short description of the movement",
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Additional metadata",
    )
    recorded_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When the transfer was posted (system time)",
    )

    class Meta:
        app_label = 'django_escrow'
        ordering = ['-recorded_at', '-pk']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="escrow_transfer_amount_positive",
            ),
        ]

    def save(self, *args, **kwargs):
        """Transfers are ledger records: create once, never update."""
        if not self._state.adding:
            raise ImmutableTransferError(
                f"Cannot modify transfer {self.pk} - post a new transfer instead."
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableTransferError(f"Cannot delete transfer {self.pk}")

    @property
    def is_issuance(self) -> bool:
        return self.from_account_id is None

    def __str__(self):
        source = self.from_account_id or 'issue'
        return f"{source} -> {self.to_account_id}: {self.amount}"
