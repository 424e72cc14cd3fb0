"""Escrow ledger services: the only supported write path for balances."""

import logging
from typing import Any, Dict, Optional

from django.db import models, transaction

from django_escrow.exceptions import (
    InactiveAccountError,
    InsufficientBalanceError,
    InvalidTransferAmount,
    MintMismatchError,
    TransferError,
    UnauthorizedTransferError,
)
from django_escrow.models import Mint, TokenAccount, Transfer

logger = logging.getLogger(__name__)


def _require_amount(amount) -> None:
    # bool is an int subclass; True must not move one unit
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidTransferAmount(f"Transfer amount must be a positive integer, got {amount!r}")


def create_mint(code: str, name: str = '', decimals: int = 0) -> Mint:
    """Create a new unit of value."""
    return Mint.objects.create(code=code, name=name, decimals=decimals)


def open_account(owner, mint: Mint, name: str = '') -> TokenAccount:
    """
    Open an empty account for ``owner`` in ``mint``.

    Usage:
        vault = open_account(owner=agreement, mint=usdc, name="ISA escrow")
    """
    return TokenAccount.objects.create(owner=owner, mint=mint, name=name)


def deactivate_account(account: TokenAccount) -> TokenAccount:
    """Stop an account from sending or receiving transfers."""
    account.is_active = False
    account.save(update_fields=['is_active', 'updated_at'])
    return account


def get_balance(account: TokenAccount) -> int:
    """
    Get the balance of an account.

    Calculates balance as sum(incoming) - sum(outgoing) over posted transfers.
    """
    incoming = Transfer.objects.filter(to_account=account).aggregate(
        total=models.Sum('amount')
    )['total'] or 0
    outgoing = Transfer.objects.filter(from_account=account).aggregate(
        total=models.Sum('amount')
    )['total'] or 0
    return incoming - outgoing


balance_of = get_balance


@transaction.atomic
def issue(account: TokenAccount, amount: int, memo: str = '') -> Transfer:
    """
    Create ``amount`` new units directly in ``account``.

    Used to bootstrap balances; the transfer has no source account.
    """
    _require_amount(amount)
    account = TokenAccount.objects.select_for_update().get(pk=account.pk)
    if not account.is_active:
        raise InactiveAccountError(f"Cannot issue into inactive account {account.pk}")

    posted = Transfer.objects.create(
        from_account=None,
        to_account=account,
        amount=amount,
        memo=memo or 'issue',
    )
    logger.debug(f"Issued {amount} {account.mint_id} into account {account.pk}")
    return posted


@transaction.atomic
def transfer(
    from_account: TokenAccount,
    to_account: TokenAccount,
    amount: int,
    authority,
    memo: str = '',
    metadata: Optional[Dict[str, Any]] = None,
) -> Transfer:
    """
    Move ``amount`` units from one account to another, all or nothing.

    Both accounts are locked (in primary key order) before the balance check,
    so concurrent transfers from the same account serialize.

    Args:
        from_account: Source account.
        to_account: Destination account.
        amount: Positive integer amount in base units.
        authority: The owner of the source account authorizing the movement.
            An agreement signs for its own escrow; a user signs for theirs.
        memo: Short description.
        metadata: Additional metadata stored on the transfer.

    Returns:
        The posted Transfer.

    Raises:
        InvalidTransferAmount: amount is not a positive integer.
        InactiveAccountError: either account is deactivated.
        MintMismatchError: accounts are in different mints.
        UnauthorizedTransferError: authority does not own the source account.
        InsufficientBalanceError: the source cannot cover the amount.
    """
    _require_amount(amount)
    if from_account.pk == to_account.pk:
        raise TransferError(f"Cannot transfer from account {from_account.pk} to itself")

    locked = {
        account.pk: account
        for account in TokenAccount.objects.select_for_update()
        .filter(pk__in=[from_account.pk, to_account.pk])
        .order_by('pk')
    }
    source = locked[from_account.pk]
    destination = locked[to_account.pk]

    for account in (source, destination):
        if not account.is_active:
            raise InactiveAccountError(f"Account {account.pk} is inactive")

    if source.mint_id != destination.mint_id:
        raise MintMismatchError(
            f"Cannot transfer {source.mint_id} from account {source.pk} "
            f"into {destination.mint_id} account {destination.pk}"
        )

    if not source.is_owned_by(authority):
        raise UnauthorizedTransferError(
            f"{authority!r} is not the owner of account {source.pk}"
        )

    balance = get_balance(source)
    if balance < amount:
        raise InsufficientBalanceError(source, balance, amount)

    posted = Transfer.objects.create(
        from_account=source,
        to_account=destination,
        amount=amount,
        memo=memo,
        metadata=metadata or {},
    )
    logger.debug(
        f"Transferred {amount} {source.mint_id} from account {source.pk} "
        f"to account {destination.pk}"
    )
    return posted
