from typing import Optional

from django.db import models
from django.utils import timezone

from facilitator.settlement.records import SettlementRecord, SettlementStatus


class Settlement(models.Model):
    nonce = models.CharField(max_length=66, unique=True)
    network = models.CharField(max_length=32)
    payer = models.CharField(max_length=42)
    value = models.CharField(max_length=78)
    status = models.CharField(
        max_length=16,
        choices=SettlementStatus.choices,
        default=SettlementStatus.PENDING,
    )
    transaction_ref = models.CharField(max_length=66, blank=True, null=True, db_index=True)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.CharField(max_length=64, blank=True, null=True)
    deadline = models.DateTimeField()
    payment_requirements = models.JSONField(default=dict)
    signature = models.CharField(max_length=256, blank=True, default='')
    payment_payload = models.JSONField(default=dict)
    claimed_by = models.CharField(max_length=64, blank=True, null=True)
    finalized_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self) -> str:
        return f'{self.nonce} ({self.status})'

    def mark(
        self,
        status: SettlementStatus,
        transaction_ref: Optional[str] = None,
        last_error: Optional[str] = None,
    ) -> None:
        self.status = status
        if status != SettlementStatus.PENDING:
            self.claimed_by = None
        if transaction_ref:
            self.transaction_ref = transaction_ref
        if last_error is not None:
            self.last_error = last_error
        if status.is_terminal:
            self.finalized_at = timezone.now()

    def to_record(self) -> SettlementRecord:
        return SettlementRecord(
            nonce=self.nonce,
            network=self.network,
            payer=self.payer,
            value=int(self.value),
            status=SettlementStatus(self.status),
            deadline=self.deadline.timestamp(),
            transaction_ref=self.transaction_ref,
            attempts=self.attempts,
            last_error=self.last_error,
            updated_at=self.updated_at.timestamp() if self.updated_at else 0.0,
            signature=self.signature or None,
            claimed_by=self.claimed_by,
        )
