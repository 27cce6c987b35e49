from enum import Enum
from typing import Optional

from stk_service.errors import InvalidTransition


class ReceiptStatus(str, Enum):
    PENDING = "pending"
    STK_FAILED = "stk_failed"
    ERROR = "error"
    PROCESSING = "processing"
    CANCELLED = "cancelled"


RETRYABLE_STATUSES = frozenset(
    {ReceiptStatus.STK_FAILED, ReceiptStatus.ERROR, ReceiptStatus.CANCELLED}
)

# None is a record that has not been stored yet.
TRANSITIONS = {
    None: frozenset(ReceiptStatus),
    ReceiptStatus.PENDING: frozenset({ReceiptStatus.PROCESSING, ReceiptStatus.CANCELLED}),
    # No provider transaction was opened, but a stray callback still merges.
    ReceiptStatus.STK_FAILED: frozenset({ReceiptStatus.PROCESSING, ReceiptStatus.CANCELLED}),
    ReceiptStatus.ERROR: frozenset({ReceiptStatus.PROCESSING, ReceiptStatus.CANCELLED}),
    ReceiptStatus.PROCESSING: frozenset(),
    ReceiptStatus.CANCELLED: frozenset(),
}


def advance(current: Optional[str], target: ReceiptStatus) -> ReceiptStatus:
    """Validate a status change and return the target status."""
    try:
        current_status = ReceiptStatus(current) if current is not None else None
    except ValueError:
        raise InvalidTransition(current, target)
    if target not in TRANSITIONS[current_status]:
        raise InvalidTransition(current_status, target)
    return target


def is_retryable(status: Optional[str]) -> bool:
    return status in {s.value for s in RETRYABLE_STATUSES}
