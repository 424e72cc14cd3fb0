"""Management command to distribute escrowed repayments to every investor."""

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from django_isa.exceptions import IsaError
from django_isa.selectors import get_agreement_for_student, get_escrow_balance, stake_allocations
from django_isa.services import distribute_payments, preview_distribution


class Command(BaseCommand):
    help = "Distribute an amount from a student's escrow to all investors pro rata"

    def add_arguments(self, parser):
        parser.add_argument('--student', required=True, help='Username of the student')
        parser.add_argument('--amount', type=int, required=True, help='Amount to distribute, in base units')
        parser.add_argument('--executed-by', help='Username recorded as executing the distribution')
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show the computed shares without moving any funds',
        )

    def _get_user(self, username):
        User = get_user_model()
        try:
            return User.objects.get(username=username)
        except User.DoesNotExist:
            raise CommandError(f"User '{username}' not found")

    def handle(self, *args, **options):
        student = self._get_user(options['student'])
        executed_by = self._get_user(options['executed_by']) if options['executed_by'] else None
        amount = options['amount']

        try:
            agreement = get_agreement_for_student(student)
            allocations = stake_allocations(agreement)

            if options['dry_run']:
                plan = preview_distribution(agreement, amount, allocations)
                self.stdout.write(
                    f'Would distribute {plan.distributed} of {amount} '
                    f'(escrow balance {get_escrow_balance(agreement)})'
                )
                for allocation in plan.allocations:
                    self.stdout.write(
                        f'  - investor {allocation.stake.investor_id}: '
                        f'stake {allocation.stake.amount} -> {allocation.share}'
                    )
                return

            distribution = distribute_payments(agreement, amount, allocations, executed_by=executed_by)
        except IsaError as e:
            raise CommandError(str(e))

        self.stdout.write(
            self.style.SUCCESS(
                f'Distributed {distribution.distributed_amount} of {amount} '
                f'to {distribution.shares.count()} investors (remainder {distribution.remainder})'
            )
        )
