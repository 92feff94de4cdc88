from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from django.apps import apps

from facilitator.chain_adapters import ChainAdapterFactory
from facilitator.config import FacilitatorConfig
from facilitator.schemas import PaymentPayload, PaymentRequirements, validate
from facilitator.settlement import (
    Reconciler,
    SettlementExecutor,
    SettlementOutcome,
    SettlementStore,
    create_store,
)
from facilitator.signer import Signer, create_signer
from facilitator.verifier import PaymentVerifier, VerificationResult

X402_VERSION = 1


class Facilitator:
    """Validator, verifier and settlement executor wired to one configuration."""

    def __init__(
        self,
        config: FacilitatorConfig,
        store: Optional[SettlementStore] = None,
        adapters: Optional[ChainAdapterFactory] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        poll_sleep: Optional[Callable[[float], None]] = None,
    ):
        self.config = config
        self.adapters = adapters or ChainAdapterFactory(config)
        self.store = store or create_store(config.settlement_store)
        self.verifier = PaymentVerifier(self.adapters, clock=clock)
        self.reconciler = Reconciler(
            self.store, self.adapters, config, clock=clock, sleep=poll_sleep)
        self.executor = SettlementExecutor(
            config,
            self.verifier,
            self.adapters,
            self.store,
            self.reconciler,
            clock=clock,
            sleep=sleep,
        )
        self._signers: Dict[str, Signer] = {}
        self._signers_lock = threading.Lock()

    def supported_kinds(self) -> List[Dict[str, Any]]:
        return [
            {'x402Version': X402_VERSION, 'scheme': 'exact', 'network': network}
            for network in self.adapters.supported_networks()
        ]

    def validate(self, raw_requirements: Any, raw_payload: Any) -> Tuple[PaymentRequirements, PaymentPayload]:
        return validate(raw_requirements, raw_payload, self.adapters.supported_networks())

    def verify(self, requirements: PaymentRequirements, payload: PaymentPayload) -> VerificationResult:
        return self.verifier.verify(requirements, payload)

    def signer_for(self, network: str) -> Signer:
        """One signer per network, so account nonces are allocated in one place."""
        with self._signers_lock:
            signer = self._signers.get(network)
            if signer is None:
                signer = create_signer(
                    network, self.config.signer_private_key, self.config.signer_address)
                self._signers[network] = signer
            return signer

    def settle(
        self,
        signer: Signer,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
        cancel: Optional[threading.Event] = None,
    ) -> SettlementOutcome:
        return self.executor.settle(signer, payload, requirements, cancel=cancel)

    def shutdown(self) -> None:
        self.reconciler.shutdown()


def get_facilitator() -> Facilitator:
    return apps.get_app_config('facilitator').facilitator
