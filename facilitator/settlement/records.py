from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from django.db import models

from facilitator.errors import ExecutionReason


class SettlementStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    SUBMITTED = 'submitted', 'Submitted'
    CONFIRMED = 'confirmed', 'Confirmed'
    REVERTED = 'reverted', 'Reverted'
    EXPIRED = 'expired', 'Expired'

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: 'SettlementStatus') -> bool:
        return SettlementStatus(target) in ALLOWED_TRANSITIONS[self]


TERMINAL_STATUSES = frozenset({
    SettlementStatus.CONFIRMED,
    SettlementStatus.REVERTED,
    SettlementStatus.EXPIRED,
})

ALLOWED_TRANSITIONS = {
    SettlementStatus.PENDING: frozenset({
        SettlementStatus.SUBMITTED,
        SettlementStatus.REVERTED,
        SettlementStatus.EXPIRED,
    }),
    SettlementStatus.SUBMITTED: frozenset({
        SettlementStatus.CONFIRMED,
        SettlementStatus.REVERTED,
        SettlementStatus.EXPIRED,
    }),
    SettlementStatus.CONFIRMED: frozenset(),
    SettlementStatus.REVERTED: frozenset(),
    SettlementStatus.EXPIRED: frozenset(),
}


@dataclass(frozen=True)
class SettlementRecord:
    """Snapshot of one authorization's settlement, keyed by its nonce."""
    nonce: str
    network: str
    payer: str
    value: int
    status: SettlementStatus
    deadline: float
    transaction_ref: Optional[str] = None
    attempts: int = 0
    last_error: Optional[str] = None
    updated_at: float = 0.0
    signature: Optional[str] = None
    claimed_by: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return SettlementStatus(self.status).is_terminal

    def matches(self, *, network: str, payer: str, value: int, signature: str) -> bool:
        """Whether a request carries the same signed authorization as this record."""
        return (
            self.network == network
            and self.payer == payer
            and self.value == value
            and (self.signature or '').lower() == signature.lower()
        )


@dataclass(frozen=True)
class SettlementOutcome:
    success: bool
    status: Optional[str] = None
    transaction_ref: Optional[str] = None
    error_reason: Optional[str] = None
    payer: Optional[str] = None
    network: Optional[str] = None
    attempts: int = 0
    invalid_reason: Optional[str] = None

    @property
    def indeterminate(self) -> bool:
        return self.status == SettlementStatus.EXPIRED

    @classmethod
    def from_record(cls, record: SettlementRecord) -> 'SettlementOutcome':
        status = SettlementStatus(record.status)
        error_reason = record.last_error
        if status == SettlementStatus.EXPIRED:
            error_reason = ExecutionReason.SETTLEMENT_TIMEOUT.value
        elif status == SettlementStatus.CONFIRMED:
            error_reason = None
        return cls(
            success=status == SettlementStatus.CONFIRMED,
            status=status.value,
            transaction_ref=record.transaction_ref,
            error_reason=error_reason,
            payer=record.payer,
            network=record.network,
            attempts=record.attempts,
        )

    @classmethod
    def rejected(
        cls,
        invalid_reason: Optional[str],
        payer: Optional[str] = None,
        network: Optional[str] = None,
        error_reason: str = ExecutionReason.VERIFICATION_FAILED.value,
    ) -> 'SettlementOutcome':
        """Outcome for a payment refused without touching its settlement record."""
        return cls(
            success=False,
            error_reason=error_reason,
            invalid_reason=invalid_reason,
            payer=payer,
            network=network,
        )

    def to_response(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'status': self.status,
            'transactionRef': self.transaction_ref,
            'transaction': self.transaction_ref,
            'errorReason': self.error_reason,
            'invalidReason': self.invalid_reason,
            'payer': self.payer,
            'network': self.network,
            'attempts': self.attempts,
            'indeterminate': self.indeterminate,
        }
