from __future__ import annotations

import os
import threading
import time
import uuid
from typing import Callable, Optional

from loguru import logger
from web3 import Web3

from facilitator.chain_adapters import ChainAdapter, ChainAdapterFactory
from facilitator.config import FacilitatorConfig
from facilitator.errors import (
    ExecutionReason,
    InvalidReason,
    PermanentExecutionError,
    TransientExecutionError,
)
from facilitator.schemas import PaymentPayload, PaymentRequirements
from facilitator.settlement.locks import NonceLockRegistry
from facilitator.settlement.reconciler import Reconciler
from facilitator.settlement.records import SettlementOutcome, SettlementRecord, SettlementStatus
from facilitator.settlement.store import SettlementStore
from facilitator.signer import Signer
from facilitator.terminal import TerminalPayment, build_terminal_payment
from facilitator.verifier import PaymentVerifier


class SettlementExecutor:
    """
    Submits verified authorizations to the payment terminal, once per nonce.

    Calls for the same nonce are serialized on a per-nonce lock and observe
    the record left by the first caller instead of submitting again. Across
    processes sharing a store, only the executor holding the record's claim
    submits. A nonce already recorded for a different authorization is
    refused. Calls for different nonces run in parallel, bounded by
    ``max_concurrent_submissions``.
    """

    def __init__(
        self,
        config: FacilitatorConfig,
        verifier: PaymentVerifier,
        adapters: ChainAdapterFactory,
        store: SettlementStore,
        reconciler: Reconciler,
        locks: Optional[NonceLockRegistry] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.verifier = verifier
        self.adapters = adapters
        self.store = store
        self.reconciler = reconciler
        self.locks = locks or NonceLockRegistry()
        self.clock = clock
        self.sleep = sleep
        self._submissions = threading.BoundedSemaphore(max(1, config.max_concurrent_submissions))
        # Identifies this executor when claiming records shared with other processes.
        self.owner = f'{os.getpid()}-{uuid.uuid4().hex}'
        self._last_eviction = float('-inf')

    def settle(
        self,
        signer: Signer,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
        cancel: Optional[threading.Event] = None,
    ) -> SettlementOutcome:
        verification = self.verifier.verify(requirements, payload)
        if not verification.is_valid:
            logger.info(
                'x402 settlement refused, verification failed: {}', verification.detail)
            return SettlementOutcome.rejected(
                verification.invalid_reason, network=requirements.network)

        if requirements.recipient != Web3.to_checksum_address(self.config.terminal_address):
            logger.info(
                'x402 settlement refused, recipient {} is not the payment terminal',
                requirements.recipient)
            return SettlementOutcome.rejected(
                InvalidReason.RECIPIENT_MISMATCH.value,
                payer=verification.payer,
                network=requirements.network,
            )

        nonce = payload.nonce
        with self.locks.hold(nonce):
            record, created = self.store.get_or_create(
                nonce,
                network=requirements.network,
                payer=verification.payer,
                value=payload.authorization.value,
                deadline=self.clock() + requirements.max_timeout_seconds,
                signature=payload.signature,
                requirements=requirements.model_dump(mode='json', by_alias=True),
                payload=payload.model_dump(mode='json', by_alias=True),
            )
            if not created:
                if not record.matches(
                    network=requirements.network,
                    payer=verification.payer,
                    value=payload.authorization.value,
                    signature=payload.signature,
                ):
                    logger.warning(
                        'x402 settlement refused, nonce {} belongs to another authorization', nonce)
                    return SettlementOutcome.rejected(
                        None,
                        payer=verification.payer,
                        network=requirements.network,
                        error_reason=ExecutionReason.AUTHORIZATION_USED.value,
                    )
                logger.info(
                    'x402 settlement for nonce {} already exists with status {}',
                    nonce, record.status)

            if record.status == SettlementStatus.PENDING:
                record = self._claim_and_submit(signer, record, requirements, payload)

            if record.status == SettlementStatus.SUBMITTED:
                record = self.reconciler.await_finality(
                    record.transaction_ref,
                    timeout=self.config.tx_timeout_seconds,
                    cancel=cancel,
                )

        outcome = SettlementOutcome.from_record(record)
        self._evict_stale()
        return outcome

    def _claim_and_submit(
        self,
        signer: Signer,
        record: SettlementRecord,
        requirements: PaymentRequirements,
        payload: PaymentPayload,
    ) -> SettlementRecord:
        """
        Submit a Pending record if this executor can claim it.

        Another process holding the claim is waited on until the record
        leaves Pending, the claim is released or the deadline passes.
        """
        nonce = record.nonce
        while True:
            record, claimed = self.store.claim(nonce, self.owner)
            if claimed or record.status != SettlementStatus.PENDING:
                break
            remaining = record.deadline - self.clock()
            if remaining <= 0:
                logger.warning(
                    'x402 settlement {} still claimed by {} at its deadline', nonce, record.claimed_by)
                return record
            logger.debug('x402 settlement {} is being submitted by {}, waiting', nonce, record.claimed_by)
            self.sleep(min(self.config.poll_interval_seconds, remaining))

        if not claimed:
            return record
        try:
            adapter = self.adapters.get(record.network)
            payment = build_terminal_payment(self.config, requirements, payload)
            return self._submit(adapter, signer, record, payment)
        finally:
            self.store.release(nonce, self.owner)

    def _submit(
        self,
        adapter: ChainAdapter,
        signer: Signer,
        record: SettlementRecord,
        payment: TerminalPayment,
    ) -> SettlementRecord:
        nonce = record.nonce
        attempt = 0
        while True:
            if self.clock() >= record.deadline:
                logger.warning('x402 settlement {} expired before submission', nonce)
                return self.store.transition(
                    nonce,
                    SettlementStatus.EXPIRED,
                    last_error=ExecutionReason.SETTLEMENT_TIMEOUT.value,
                )

            attempt += 1
            try:
                with self._submissions:
                    transaction_ref = adapter.submit(signer, payment)
            except PermanentExecutionError as exc:
                self.store.record_attempt(nonce, exc.reason)
                logger.error('x402 settlement {} rejected on-chain: {}', nonce, exc.detail)
                return self.store.transition(
                    nonce, SettlementStatus.REVERTED, last_error=exc.reason)
            except TransientExecutionError as exc:
                record = self.store.record_attempt(nonce, exc.reason)
                if attempt >= self.config.max_submission_attempts:
                    logger.error(
                        'x402 settlement {} gave up after {} attempts: {}',
                        nonce, attempt, exc.detail)
                    return record
                delay = self._backoff(attempt)
                logger.warning(
                    'x402 settlement {} attempt {} failed ({}), retrying in {}s',
                    nonce, attempt, exc.reason, delay)
                self.sleep(min(delay, max(0.0, record.deadline - self.clock())))
                continue

            self.store.record_attempt(nonce)
            logger.info('x402 settlement {} submitted as {}', nonce, transaction_ref)
            return self.store.transition(
                nonce, SettlementStatus.SUBMITTED, transaction_ref=transaction_ref)

    def _backoff(self, attempt: int) -> float:
        delay = self.config.retry_base_delay_seconds * (2 ** (attempt - 1))
        return min(delay, self.config.retry_max_delay_seconds)

    def _evict_stale(self) -> None:
        now = self.clock()
        if now - self._last_eviction < self.config.eviction_interval_seconds:
            return
        self._last_eviction = now
        evicted = self.store.evict_terminal(self.config.terminal_retention_seconds)
        if evicted:
            logger.debug('Evicted {} finished settlement records', evicted)
