from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from hexbytes import HexBytes
from loguru import logger
from web3 import Web3

from facilitator.chain_adapters import ChainAdapterFactory
from facilitator.errors import FacilitatorConfigurationError, InvalidReason
from facilitator.schemas import PaymentPayload, PaymentRequirements

TRANSFER_WITH_AUTHORIZATION_TYPES = {
    'EIP712Domain': [
        {'name': 'name', 'type': 'string'},
        {'name': 'version', 'type': 'string'},
        {'name': 'chainId', 'type': 'uint256'},
        {'name': 'verifyingContract', 'type': 'address'},
    ],
    'TransferWithAuthorization': [
        {'name': 'from', 'type': 'address'},
        {'name': 'to', 'type': 'address'},
        {'name': 'value', 'type': 'uint256'},
        {'name': 'validAfter', 'type': 'uint256'},
        {'name': 'validBefore', 'type': 'uint256'},
        {'name': 'nonce', 'type': 'bytes32'},
    ],
}


@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    payer: Optional[str] = None
    invalid_reason: Optional[str] = None
    detail: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return {
            'isValid': self.is_valid,
            'invalidReason': self.invalid_reason,
            'payer': self.payer,
        }


def build_typed_data(domain: Dict[str, Any], payload: PaymentPayload) -> dict:
    authorization = payload.authorization
    return {
        'types': TRANSFER_WITH_AUTHORIZATION_TYPES,
        'primaryType': 'TransferWithAuthorization',
        'domain': {
            'name': domain['name'],
            'version': domain['version'],
            'chainId': int(domain['chainId']),
            'verifyingContract': Web3.to_checksum_address(domain['verifyingContract']),
        },
        'message': {
            'from': authorization.from_,
            'to': authorization.to,
            'value': authorization.value,
            'validAfter': authorization.valid_after,
            'validBefore': authorization.valid_before,
            'nonce': HexBytes(authorization.nonce),
        },
    }


def recover_signer(typed_data: dict, signature: str) -> Optional[str]:
    """Recover the address that signed ``typed_data``; None if it cannot be recovered."""
    try:
        signable = encode_typed_data(full_message=typed_data)
    except Exception as exc:  # pragma: no cover - encode_typed_data raises many exception types
        logger.debug('Failed to encode authorization for signature recovery: {}', exc)
        return None

    try:
        recovered = Account.recover_message(signable, signature=HexBytes(signature))
    except Exception as exc:
        logger.debug('Unable to recover signer from signature: {}', exc)
        return None
    return Web3.to_checksum_address(recovered)


class PaymentVerifier:
    """
    Checks a payment authorization against its requirements.

    Read only: never touches settlement state and never calls the chain. Every
    rejection is reported through ``VerificationResult`` instead of raising.
    """

    def __init__(self, adapters: ChainAdapterFactory, clock: Callable[[], float] = time.time):
        self.adapters = adapters
        self.clock = clock

    def verify(self, requirements: PaymentRequirements, payload: PaymentPayload) -> VerificationResult:
        authorization = payload.authorization

        if payload.scheme != requirements.scheme:
            return self._reject(
                InvalidReason.SCHEME_MISMATCH,
                f'Payload scheme {payload.scheme} does not match {requirements.scheme}.')

        if payload.network != requirements.network:
            return self._reject(
                InvalidReason.NETWORK_MISMATCH,
                f'Payload network {payload.network} does not match {requirements.network}.')

        try:
            adapter = self.adapters.get(requirements.network)
        except (ValueError, FacilitatorConfigurationError) as exc:
            return self._reject(InvalidReason.UNSUPPORTED_NETWORK, str(exc))

        if authorization.to != requirements.recipient:
            return self._reject(
                InvalidReason.RECIPIENT_MISMATCH,
                f'Authorization recipient {authorization.to} does not match {requirements.recipient}.')

        if authorization.value <= 0:
            return self._reject(InvalidReason.AMOUNT_MISMATCH, 'Authorization value must be positive.')
        if authorization.value < requirements.amount:
            return self._reject(
                InvalidReason.AMOUNT_MISMATCH,
                f'Authorization value {authorization.value} is below {requirements.amount}.')

        now_ts = int(self.clock())
        if authorization.valid_before <= now_ts:
            return self._reject(InvalidReason.EXPIRED, 'Authorization window has expired.')
        if authorization.valid_after > now_ts:
            return self._reject(InvalidReason.EXPIRED, 'Authorization not yet valid.')

        typed_data = build_typed_data(adapter.domain_params(requirements), payload)
        recovered = recover_signer(typed_data, payload.signature)
        if recovered is None:
            return self._reject(InvalidReason.INVALID_SIGNATURE, 'Unable to recover signer from signature.')
        if recovered != authorization.from_:
            return self._reject(
                InvalidReason.INVALID_SIGNATURE,
                'Signature does not match authorization originator.')

        return VerificationResult(is_valid=True, payer=authorization.from_)

    @staticmethod
    def _reject(reason: InvalidReason, detail: str) -> VerificationResult:
        logger.debug('x402 authorization rejected ({}): {}', reason.value, detail)
        return VerificationResult(is_valid=False, invalid_reason=reason.value, detail=detail)
