"""Configuration helpers for django-isa."""

from django.conf import settings


DEFAULTS = {
    # Upper bound on stakes in one distribution batch (None = unbounded)
    "MAX_DISTRIBUTION_STAKES": None,
    "ESCROW_ACCOUNT_NAME": "ISA escrow",
}


def get_setting(name: str, default=None):
    """Get a setting with ISA_ prefix, falling back to DEFAULTS."""
    return getattr(settings, f"ISA_{name}", DEFAULTS.get(name, default))
