"""
Error taxonomy shared by the validator, verifier and settlement layers.

Every error carries a machine readable ``kind`` and ``reason`` plus a human
``detail`` so the HTTP layer can render it without parsing messages.
"""
from typing import Any, Dict, Optional

from django.db import models


class ValidationReason(models.TextChoices):
    MALFORMED_PAYLOAD = 'malformed_payload', 'Malformed payload'
    UNSUPPORTED_NETWORK = 'unsupported_network', 'Unsupported network'
    UNSUPPORTED_SCHEME = 'unsupported_scheme', 'Unsupported scheme'
    AMOUNT_MISMATCH = 'amount_mismatch', 'Amount mismatch'


class InvalidReason(models.TextChoices):
    SCHEME_MISMATCH = 'scheme_mismatch', 'Scheme mismatch'
    NETWORK_MISMATCH = 'network_mismatch', 'Network mismatch'
    UNSUPPORTED_NETWORK = 'unsupported_network', 'Unsupported network'
    RECIPIENT_MISMATCH = 'recipient_mismatch', 'Recipient mismatch'
    AMOUNT_MISMATCH = 'amount_mismatch', 'Amount mismatch'
    EXPIRED = 'expired', 'Authorization outside validity window'
    INVALID_SIGNATURE = 'invalid_signature', 'Invalid signature'


class ExecutionReason(models.TextChoices):
    # transient
    RPC_UNAVAILABLE = 'rpc_unavailable', 'RPC node unavailable'
    RPC_TIMEOUT = 'rpc_timeout', 'RPC request timed out'
    UNDERPRICED = 'underpriced', 'Transaction underpriced'
    NONCE_CONFLICT = 'nonce_conflict', 'Signer account nonce conflict'
    # permanent
    AUTHORIZATION_USED = 'authorization_used', 'Authorization already used'
    INSUFFICIENT_FUNDS = 'insufficient_funds', 'Payer has insufficient funds'
    INSUFFICIENT_GAS = 'insufficient_gas', 'Facilitator has insufficient gas funds'
    CONTRACT_REVERT = 'contract_revert', 'Contract reverted'
    INVALID_TRANSACTION = 'invalid_transaction', 'Transaction could not be built'
    # outcome level
    VERIFICATION_FAILED = 'verification_failed', 'Verification failed'
    SETTLEMENT_TIMEOUT = 'settlement_timeout', 'Settlement not final before deadline'


class FacilitatorError(Exception):
    """Base error for facilitator failures."""

    kind = 'facilitator_error'

    def __init__(self, reason: str, detail: Optional[str] = None):
        self.reason = str(reason)
        self.detail = detail or self.reason
        super().__init__(self.detail)

    @property
    def message(self) -> str:
        return self.detail

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'reason': self.reason, 'detail': self.detail}


class FacilitatorConfigurationError(FacilitatorError):
    """Raised when the facilitator is missing configuration it needs."""

    kind = 'configuration_error'

    def __init__(self, detail: str):
        super().__init__('misconfigured', detail)


class FacilitatorValidationError(FacilitatorError):
    """Raised when incoming payload fails validation. Always client fault."""

    kind = 'validation_error'


class ExecutionError(FacilitatorError):
    retryable = False


class TransientExecutionError(ExecutionError):
    """RPC level failure that may succeed when retried."""

    kind = 'transient_execution_error'
    retryable = True


class PermanentExecutionError(ExecutionError):
    """On-chain rejection; retrying cannot succeed."""

    kind = 'permanent_execution_error'


class SettlementCancelled(FacilitatorError):
    """Reconciliation was aborted before the transaction reached finality."""

    kind = 'cancelled'

    def __init__(self, transaction_ref: str):
        super().__init__('cancelled', f'Reconciliation of {transaction_ref} was cancelled.')
        self.transaction_ref = transaction_ref


class InvalidTransition(FacilitatorError):
    kind = 'invalid_transition'

    def __init__(self, nonce: str, current: str, target: str):
        super().__init__(
            'invalid_transition',
            f'Settlement {nonce} cannot move from {current} to {target}.',
        )
        self.current = current
        self.target = target
