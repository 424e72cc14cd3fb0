"""Management command to create the ISA global configuration."""

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from django_isa.exceptions import IsaError
from django_isa.services import initialize_config


class Command(BaseCommand):
    help = 'Create the ISA configuration with its admin, oracle and university'

    def add_arguments(self, parser):
        parser.add_argument('--admin', required=True, help='Username of the admin')
        parser.add_argument('--oracle', required=True, help='Username of the salary oracle')
        parser.add_argument('--university', required=True, help='Username of the university')

    def handle(self, *args, **options):
        User = get_user_model()
        identities = {}
        for role in ('admin', 'oracle', 'university'):
            username = options[role]
            try:
                identities[role] = User.objects.get(username=username)
            except User.DoesNotExist:
                raise CommandError(f"User '{username}' not found for --{role}")

        try:
            config = initialize_config(**identities)
        except IsaError as e:
            raise CommandError(str(e))

        self.stdout.write(self.style.SUCCESS(f'Created {config}'))
