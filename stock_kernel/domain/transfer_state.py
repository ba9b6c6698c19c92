"""
Transfer state machine.

Lifecycle::

    PENDING --> COMPLETED
       |
       +------> FAILED

COMPLETED and FAILED are terminal.  A record is created PENDING once the
request has passed structural validation and moves to exactly one terminal
state in the same call that created it.

Pure module: no I/O, no ORM imports.
"""

from enum import Enum

from stock_kernel.exceptions import InvalidTransferTransitionError


class TransferStatus(str, Enum):
    """Status of a stock transfer record."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


ALLOWED_TRANSITIONS: dict[TransferStatus, frozenset[TransferStatus]] = {
    TransferStatus.PENDING: frozenset({TransferStatus.COMPLETED, TransferStatus.FAILED}),
    TransferStatus.COMPLETED: frozenset(),
    TransferStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)


def is_terminal(status: TransferStatus | str) -> bool:
    return TransferStatus(status) in TERMINAL_STATUSES


def can_transition(current: TransferStatus | str, target: TransferStatus | str) -> bool:
    return TransferStatus(target) in ALLOWED_TRANSITIONS[TransferStatus(current)]


def validate_transition(
    transfer_id: str,
    current: TransferStatus | str,
    target: TransferStatus | str,
) -> TransferStatus:
    """
    Check a transition and return the target status.

    Raises:
        InvalidTransferTransitionError: if ``current -> target`` is not allowed.
    """
    current = TransferStatus(current)
    target = TransferStatus(target)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransferTransitionError(transfer_id, current.value, target.value)
    return target
