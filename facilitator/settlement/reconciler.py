from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from loguru import logger

from facilitator.chain_adapters import ChainAdapterFactory
from facilitator.chain_adapters.evm import classify_revert_reason
from facilitator.config import FacilitatorConfig
from facilitator.errors import (
    ExecutionReason,
    InvalidTransition,
    SettlementCancelled,
    TransientExecutionError,
)
from facilitator.settlement.records import SettlementRecord, SettlementStatus
from facilitator.settlement.store import SettlementStore


class Reconciler:
    """
    Follows submitted transactions until they are final.

    Confirmed and Reverted come from the receipt; Expired means the deadline
    passed without a final receipt, so the payment may still land. A
    cancelled wait leaves the record Submitted for a later pass.
    """

    def __init__(
        self,
        store: SettlementStore,
        adapters: ChainAdapterFactory,
        config: FacilitatorConfig,
        clock: Callable[[], float] = time.time,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.store = store
        self.adapters = adapters
        self.config = config
        self.clock = clock
        self.sleep = sleep
        self._shutdown = threading.Event()

    def shutdown(self) -> None:
        """Abort every wait in progress; records stay where they are."""
        self._shutdown.set()

    def await_finality(
        self,
        transaction_ref: str,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> SettlementRecord:
        record = self.store.get_by_transaction(transaction_ref)
        if record is None:
            raise ValueError(f'No settlement recorded for transaction {transaction_ref}')
        if record.is_terminal:
            return record

        adapter = self.adapters.get(record.network)
        if timeout is None:
            timeout = self.config.tx_timeout_seconds
        deadline = min(self.clock() + timeout, record.deadline)

        while True:
            self._check_cancelled(transaction_ref, cancel)

            try:
                receipt = adapter.poll_receipt(transaction_ref)
            except TransientExecutionError as exc:
                logger.warning('Receipt poll for {} failed: {}', transaction_ref, exc.detail)
                receipt = None

            if receipt is not None:
                if not receipt.succeeded:
                    reason = classify_revert_reason(receipt.revert_reason or '')
                    logger.error(
                        'x402 settlement {} reverted on-chain in block {}: {}',
                        record.nonce, receipt.block_number, reason.value)
                    return self._finish(record, SettlementStatus.REVERTED, reason.value)
                if receipt.confirmations >= self.config.min_confirmations:
                    logger.info(
                        'x402 settlement {} confirmed in block {} ({} confirmations)',
                        record.nonce, receipt.block_number, receipt.confirmations)
                    return self._finish(record, SettlementStatus.CONFIRMED)
                logger.debug(
                    'Transaction {} included with {} confirmations, waiting',
                    transaction_ref, receipt.confirmations)

            now = self.clock()
            if now >= deadline:
                logger.warning(
                    'x402 settlement {} not final before deadline, tx {} is indeterminate',
                    record.nonce, transaction_ref)
                return self._finish(
                    record, SettlementStatus.EXPIRED, ExecutionReason.SETTLEMENT_TIMEOUT.value)

            self._pause(min(self.config.poll_interval_seconds, deadline - now), cancel)

    def _finish(
        self,
        record: SettlementRecord,
        status: SettlementStatus,
        last_error: Optional[str] = None,
    ) -> SettlementRecord:
        try:
            return self.store.transition(record.nonce, status, last_error=last_error)
        except InvalidTransition:
            # Another process sharing the store finished the record first.
            current = self.store.get(record.nonce)
            if current is None or not current.is_terminal:
                raise
            logger.info(
                'x402 settlement {} was already finalized as {}', record.nonce, current.status)
            return current

    def _check_cancelled(self, transaction_ref: str, cancel: Optional[threading.Event]) -> None:
        if self._shutdown.is_set() or (cancel is not None and cancel.is_set()):
            logger.info('Reconciliation of {} cancelled', transaction_ref)
            raise SettlementCancelled(transaction_ref)

    def _pause(self, seconds: float, cancel: Optional[threading.Event]) -> None:
        if self.sleep is not None:
            self.sleep(seconds)
        elif cancel is not None:
            cancel.wait(seconds)
        else:
            self._shutdown.wait(seconds)
