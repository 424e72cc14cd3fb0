"""
Authorization gate for privileged agreement operations.

A single place compares a caller against the identities held in IsaConfig.
Every privileged service runs the check before it reads or mutates any
agreement state.

Usage:
    @requires_role(Role.ORACLE)
    def update_salary(config, caller, agreement, salary):
        ...

    require_role(config, request.user, Role.ADMIN)
"""

import logging
from functools import wraps

from django.db import models

from .exceptions import AdminRequired, ConfigNotInitialized, OracleRequired, RecipientRequired

logger = logging.getLogger(__name__)


class Role(models.TextChoices):
    ADMIN = "admin", "Admin"
    ORACLE = "oracle", "Salary oracle"
    RECIPIENT = "recipient", "University / repayment recipient"


_ROLE_FIELDS = {
    Role.ADMIN: "admin_id",
    Role.ORACLE: "oracle_id",
    Role.RECIPIENT: "university_id",
}

_ROLE_ERRORS = {
    Role.ADMIN: AdminRequired,
    Role.ORACLE: OracleRequired,
    Role.RECIPIENT: RecipientRequired,
}


def has_role(config, caller, role: str) -> bool:
    """Check whether ``caller`` is the identity configured for ``role``."""
    if config is None or caller is None or caller.pk is None:
        return False
    return getattr(config, _ROLE_FIELDS[role]) == caller.pk


def require_role(config, caller, role: str) -> None:
    """
    Raise the role's Unauthorized subclass unless ``caller`` holds ``role``.

    Raises:
        ConfigNotInitialized: config is None
        AdminRequired / OracleRequired / RecipientRequired: role mismatch
    """
    if config is None:
        raise ConfigNotInitialized("ISA configuration is required for privileged operations")

    if not has_role(config, caller, role):
        logger.warning(f"Rejected {role}-only operation for caller {getattr(caller, 'pk', None)}")
        raise _ROLE_ERRORS[role](caller)


def requires_role(role: str):
    """Decorator for services whose first two arguments are (config, caller)."""
    def decorator(func):
        @wraps(func)
        def wrapper(config, caller, *args, **kwargs):
            require_role(config, caller, role)
            return func(config, caller, *args, **kwargs)
        return wrapper
    return decorator
