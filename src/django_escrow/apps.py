"""Django app configuration for django-escrow."""

from django.apps import AppConfig


class DjangoEscrowConfig(AppConfig):
    """App configuration for django-escrow."""

    name = 'django_escrow'
    verbose_name = 'Django Escrow'
    default_auto_field = 'django.db.models.BigAutoField'
