"""Deterministic record addresses.

An address is derived from a namespace plus owning identities, so the same
inputs always locate the same agreement or stake and distinct inputs never
collide. Each part is length-prefixed before hashing, which keeps
("ab", "c") and ("a", "bc") apart.
"""

import hashlib

AGREEMENT_NAMESPACE = "isa"
STAKE_NAMESPACE = "stake"


def derive_address(namespace: str, *seeds) -> str:
    """Return the hex SHA-256 address for ``namespace`` and ``seeds``."""
    if not namespace:
        raise ValueError("namespace is required")

    digest = hashlib.sha256()
    for part in (namespace, *seeds):
        encoded = str(part).encode("utf-8")
        digest.update(len(encoded).to_bytes(8, "big"))
        digest.update(encoded)
    return digest.hexdigest()


def agreement_address(student) -> str:
    return derive_address(AGREEMENT_NAMESPACE, student.pk)


def stake_address(agreement, investor) -> str:
    return derive_address(STAKE_NAMESPACE, agreement.address, investor.pk)
