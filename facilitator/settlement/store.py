"""
Persistence for settlement records.

Two interchangeable backends: ``DatabaseSettlementStore`` keeps records in
the ``Settlement`` table so they survive restarts and can be shared between
worker processes, ``MemorySettlementStore`` keeps them in-process and lets
terminal records be evicted. Both enforce the status transition rules from
``records`` and the single-claimant rule for submissions.
"""
from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone as datetime_timezone
from typing import Callable, Dict, List, Optional, Tuple

from django.db import IntegrityError, transaction

from facilitator.errors import InvalidTransition
from facilitator.settlement.records import SettlementRecord, SettlementStatus


class SettlementStore(ABC):

    @abstractmethod
    def get(self, nonce: str) -> Optional[SettlementRecord]:
        pass

    @abstractmethod
    def get_by_transaction(self, transaction_ref: str) -> Optional[SettlementRecord]:
        pass

    @abstractmethod
    def get_or_create(
        self,
        nonce: str,
        *,
        network: str,
        payer: str,
        value: int,
        deadline: float,
        signature: str = '',
        requirements: Optional[dict] = None,
        payload: Optional[dict] = None,
    ) -> Tuple[SettlementRecord, bool]:
        pass

    @abstractmethod
    def claim(self, nonce: str, owner: str) -> Tuple[SettlementRecord, bool]:
        """
        Take the right to submit a Pending record.

        Succeeds when the record is Pending and unclaimed, or already claimed
        by ``owner``. Returns the current record and whether ``owner`` holds it.
        """

    @abstractmethod
    def release(self, nonce: str, owner: str) -> SettlementRecord:
        """Give up a claim held by ``owner``; other owners' claims are left alone."""

    @abstractmethod
    def record_attempt(self, nonce: str, last_error: Optional[str] = None) -> SettlementRecord:
        """Count one submission attempt and remember its error, if any."""

    @abstractmethod
    def transition(
        self,
        nonce: str,
        status: SettlementStatus,
        *,
        transaction_ref: Optional[str] = None,
        last_error: Optional[str] = None,
    ) -> SettlementRecord:
        """
        Move a record forward. Leaving Pending releases any claim.

        Raises:
            InvalidTransition: if the move is not allowed from the current status
        """

    @abstractmethod
    def unfinished(self) -> List[SettlementRecord]:
        """Records still Pending or Submitted."""

    def evict_terminal(self, older_than_seconds: float) -> int:
        """Drop terminal records last updated before the cutoff. Durable stores keep them."""
        return 0


def _check_transition(nonce: str, current: str, target: SettlementStatus) -> None:
    if not SettlementStatus(current).can_transition_to(target):
        raise InvalidTransition(nonce, str(current), str(target))


def _claimable(record: SettlementRecord, owner: str) -> bool:
    return (
        record.status == SettlementStatus.PENDING
        and record.claimed_by in (None, '', owner)
    )


class MemorySettlementStore(SettlementStore):

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._records: Dict[str, SettlementRecord] = {}
        self._by_transaction: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, nonce):
        with self._lock:
            return self._records.get(nonce)

    def get_by_transaction(self, transaction_ref):
        with self._lock:
            nonce = self._by_transaction.get(transaction_ref)
            return self._records.get(nonce) if nonce else None

    def get_or_create(
        self, nonce, *, network, payer, value, deadline, signature='', requirements=None, payload=None,
    ):
        with self._lock:
            record = self._records.get(nonce)
            if record is not None:
                return record, False
            record = SettlementRecord(
                nonce=nonce,
                network=network,
                payer=payer,
                value=value,
                status=SettlementStatus.PENDING,
                deadline=deadline,
                updated_at=self.clock(),
                signature=signature or None,
            )
            self._records[nonce] = record
            return record, True

    def claim(self, nonce, owner):
        with self._lock:
            record = self._records[nonce]
            if not _claimable(record, owner):
                return record, False
            record = replace(record, claimed_by=owner)
            self._records[nonce] = record
            return record, True

    def release(self, nonce, owner):
        with self._lock:
            record = self._records[nonce]
            if record.claimed_by == owner:
                record = replace(record, claimed_by=None)
                self._records[nonce] = record
            return record

    def record_attempt(self, nonce, last_error=None):
        with self._lock:
            record = self._records[nonce]
            record = replace(
                record,
                attempts=record.attempts + 1,
                last_error=last_error,
                updated_at=self.clock(),
            )
            self._records[nonce] = record
            return record

    def transition(self, nonce, status, *, transaction_ref=None, last_error=None):
        with self._lock:
            record = self._records[nonce]
            _check_transition(nonce, record.status, status)
            status = SettlementStatus(status)
            record = replace(
                record,
                status=status,
                transaction_ref=transaction_ref or record.transaction_ref,
                last_error=last_error if last_error is not None else record.last_error,
                claimed_by=record.claimed_by if status == SettlementStatus.PENDING else None,
                updated_at=self.clock(),
            )
            self._records[nonce] = record
            if record.transaction_ref:
                self._by_transaction[record.transaction_ref] = nonce
            return record

    def unfinished(self):
        with self._lock:
            return [r for r in self._records.values() if not r.is_terminal]

    def evict(self, nonce: str) -> bool:
        """Drop a terminal record. Non-terminal records are never evicted."""
        with self._lock:
            record = self._records.get(nonce)
            if record is None or not record.is_terminal:
                return False
            self._drop(record)
            return True

    def evict_terminal(self, older_than_seconds):
        cutoff = self.clock() - older_than_seconds
        with self._lock:
            stale = [
                record for record in self._records.values()
                if record.is_terminal and record.updated_at <= cutoff
            ]
            for record in stale:
                self._drop(record)
        return len(stale)

    def _drop(self, record: SettlementRecord) -> None:
        del self._records[record.nonce]
        if record.transaction_ref:
            self._by_transaction.pop(record.transaction_ref, None)


def _to_datetime(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=datetime_timezone.utc)


class DatabaseSettlementStore(SettlementStore):
    """Settlement records in the ``Settlement`` model, updated under row locks."""

    @property
    def model(self):
        from facilitator.models import Settlement
        return Settlement

    def get(self, nonce):
        row = self.model.objects.filter(nonce=nonce).first()
        return row.to_record() if row else None

    def get_by_transaction(self, transaction_ref):
        row = self.model.objects.filter(transaction_ref=transaction_ref).first()
        return row.to_record() if row else None

    def get_or_create(
        self, nonce, *, network, payer, value, deadline, signature='', requirements=None, payload=None,
    ):
        try:
            with transaction.atomic():
                row = self.model(
                    nonce=nonce,
                    network=network,
                    payer=payer,
                    value=str(value),
                    deadline=_to_datetime(deadline),
                    signature=signature or '',
                    payment_requirements=requirements or {},
                    payment_payload=payload or {},
                )
                row.save(force_insert=True)
        except IntegrityError:
            return self.model.objects.get(nonce=nonce).to_record(), False
        return row.to_record(), True

    def claim(self, nonce, owner):
        with transaction.atomic():
            row = self.model.objects.select_for_update().get(nonce=nonce)
            record = row.to_record()
            if not _claimable(record, owner):
                return record, False
            row.claimed_by = owner
            row.save(update_fields=['claimed_by', 'updated_at'])
        return row.to_record(), True

    def release(self, nonce, owner):
        with transaction.atomic():
            row = self.model.objects.select_for_update().get(nonce=nonce)
            if row.claimed_by == owner:
                row.claimed_by = None
                row.save(update_fields=['claimed_by', 'updated_at'])
        return row.to_record()

    def record_attempt(self, nonce, last_error=None):
        with transaction.atomic():
            row = self.model.objects.select_for_update().get(nonce=nonce)
            row.attempts += 1
            row.last_error = last_error
            row.save(update_fields=['attempts', 'last_error', 'updated_at'])
        return row.to_record()

    def transition(self, nonce, status, *, transaction_ref=None, last_error=None):
        with transaction.atomic():
            row = self.model.objects.select_for_update().get(nonce=nonce)
            _check_transition(nonce, row.status, status)
            row.mark(SettlementStatus(status), transaction_ref=transaction_ref, last_error=last_error)
            row.save(update_fields=[
                'status', 'transaction_ref', 'last_error', 'claimed_by', 'finalized_at', 'updated_at'])
        return row.to_record()

    def unfinished(self):
        rows = self.model.objects.filter(
            status__in=[SettlementStatus.PENDING, SettlementStatus.SUBMITTED])
        return [row.to_record() for row in rows]


def create_store(backend: str) -> SettlementStore:
    if backend == 'memory':
        return MemorySettlementStore()
    if backend == 'database':
        return DatabaseSettlementStore()
    raise ValueError(f'Unknown settlement store backend: {backend}')
