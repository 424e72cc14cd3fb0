"""
Agreement status graph.

The lifecycle is data: TRANSITIONS maps each status to the statuses it may
move to. Services never assign a status directly; they go through
can_transition() so an edge missing here is an edge nobody can take.

check_status_graph() runs when the app loads, so a broken edit to the graph
stops startup instead of stranding agreements.
"""

from collections import deque

from django.core.exceptions import ImproperlyConfigured
from django.db import models


class IsaStatus(models.TextChoices):
    LEARNING = "learning", "Learning"
    STUDYING_PAID = "studying_paid", "Studying (funds released)"
    WORKING = "working", "Working"
    DELINQUENT = "delinquent", "Delinquent"
    DROPPED_OUT = "dropped_out", "Dropped out"
    COMPLETED = "completed", "Completed"
    UNEMPLOYED = "unemployed", "Unemployed"

    @property
    def code(self) -> int:
        """Stable numeric code, as exported to external systems."""
        return STATUS_CODES[self]


STATUS_CODES = {
    IsaStatus.LEARNING: 0,
    IsaStatus.STUDYING_PAID: 1,
    IsaStatus.WORKING: 2,
    IsaStatus.DELINQUENT: 3,
    IsaStatus.DROPPED_OUT: 4,
    IsaStatus.COMPLETED: 5,
    IsaStatus.UNEMPLOYED: 6,
}

INITIAL_STATUS = IsaStatus.LEARNING

TERMINAL_STATUSES = frozenset({IsaStatus.COMPLETED, IsaStatus.DROPPED_OUT})

# Salary updates may land on working/unemployed from any non-terminal status.
TRANSITIONS = {
    IsaStatus.LEARNING: [
        IsaStatus.STUDYING_PAID,
        IsaStatus.WORKING,
        IsaStatus.UNEMPLOYED,
        IsaStatus.DROPPED_OUT,
    ],
    IsaStatus.STUDYING_PAID: [
        IsaStatus.WORKING,
        IsaStatus.UNEMPLOYED,
        IsaStatus.DROPPED_OUT,
    ],
    IsaStatus.WORKING: [
        IsaStatus.UNEMPLOYED,
        IsaStatus.DELINQUENT,
        IsaStatus.COMPLETED,
        IsaStatus.DROPPED_OUT,
    ],
    IsaStatus.UNEMPLOYED: [
        IsaStatus.WORKING,
        IsaStatus.DELINQUENT,
        IsaStatus.DROPPED_OUT,
    ],
    IsaStatus.DELINQUENT: [
        IsaStatus.WORKING,
        IsaStatus.UNEMPLOYED,
        IsaStatus.COMPLETED,
        IsaStatus.DROPPED_OUT,
    ],
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def allowed_transitions(status: str) -> list[str]:
    """Statuses reachable in one step from ``status``."""
    if is_terminal(status):
        return []
    return list(TRANSITIONS.get(status, []))


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in allowed_transitions(from_status)


def reachable_from(start: str, transitions: dict) -> set:
    """Every status reachable from ``start`` in zero or more steps."""
    seen = {start}
    pending = deque([start])
    while pending:
        for target in transitions.get(pending.popleft(), ()):
            if target not in seen:
                seen.add(target)
                pending.append(target)
    return seen


def validate_status_graph(transitions=None, initial=None, terminal=None, statuses=None) -> list[str]:
    """
    Problems with a status graph, as messages. An empty list means usable.

    Defaults to the shipped graph. A usable graph only names known statuses,
    gives terminal statuses no exits, reaches every status from the initial
    one, and lets every open status still end.
    """
    transitions = TRANSITIONS if transitions is None else transitions
    initial = INITIAL_STATUS if initial is None else initial
    terminal = set(TERMINAL_STATUSES if terminal is None else terminal)
    known = set(IsaStatus.values if statuses is None else statuses)

    errors = []
    if initial not in known:
        errors.append(f"initial status '{initial}' is not a known status")
    for status in sorted(terminal - known):
        errors.append(f"terminal status '{status}' is not a known status")

    for source, targets in transitions.items():
        if source not in known:
            errors.append(f"edges leave unknown status '{source}'")
        elif source in terminal and targets:
            errors.append(f"terminal status '{source}' has exits")
        for target in targets:
            if target not in known:
                errors.append(f"'{source}' moves to unknown status '{target}'")

    if initial in known:
        for status in sorted(known - reachable_from(initial, transitions)):
            errors.append(f"status '{status}' cannot be reached from '{initial}'")

    for status in sorted(known - terminal):
        if not terminal & reachable_from(status, transitions):
            errors.append(f"status '{status}' never reaches a terminal status")

    return errors


def check_status_graph(**kwargs) -> None:
    """Raise ImproperlyConfigured unless the graph is usable. Run at app startup."""
    errors = validate_status_graph(**kwargs)
    if errors:
        raise ImproperlyConfigured("Invalid ISA status graph: " + "; ".join(errors))
