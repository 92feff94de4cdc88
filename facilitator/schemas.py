"""
Wire models for the two x402 payment structures and the request validator.

Accepts both the compact field names (``amount``, ``recipient``) and the x402
v1 names (``maxAmountRequired``, ``payTo``) on input.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Tuple

from hexbytes import HexBytes
from loguru import logger
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    ValidationError as PydanticValidationError,
    field_validator,
)
from web3 import Web3

from facilitator.errors import FacilitatorValidationError, ValidationReason

SUPPORTED_SCHEMES = ('exact',)
SUPPORTED_X402_VERSIONS = (1,)

# CAIP-2 identifiers mapped to the network names used on the wire.
NETWORK_ALIASES = {
    'eip155:8453': 'base',
    'eip155:84532': 'base-sepolia',
}


def normalize_network(network: str) -> str:
    value = str(network).strip().lower()
    return NETWORK_ALIASES.get(value, value)


def normalize_scheme(scheme: str) -> str:
    return str(scheme).strip().lower()


def _checksum(value: str) -> str:
    try:
        return Web3.to_checksum_address(value)
    except (ValueError, TypeError) as exc:
        raise ValueError(f'Invalid ethereum address: {value}') from exc


def _hex_bytes(value: Any, length: Optional[int] = None) -> str:
    if not isinstance(value, str):
        raise ValueError('must be a hex string')
    try:
        raw = bytes(HexBytes(value))
    except (ValueError, TypeError) as exc:
        raise ValueError('must be hex encoded') from exc
    if not raw:
        raise ValueError('must not be empty')
    if length is not None and len(raw) != length:
        raise ValueError(f'must be {length} bytes')
    return '0x' + raw.hex()


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra='ignore')


class PaymentRequirements(_WireModel):
    scheme: str
    network: str
    asset: str
    amount: NonNegativeInt = Field(
        validation_alias=AliasChoices('amount', 'maxAmountRequired', 'max_amount_required'),
        serialization_alias='amount',
    )
    recipient: str = Field(
        validation_alias=AliasChoices('recipient', 'payTo', 'pay_to'),
        serialization_alias='recipient',
    )
    max_timeout_seconds: NonNegativeInt = Field(
        validation_alias=AliasChoices('maxTimeoutSeconds', 'max_timeout_seconds'),
        serialization_alias='maxTimeoutSeconds',
    )
    extra: Optional[Dict[str, Any]] = None

    @field_validator('network')
    @classmethod
    def _network(cls, value: str) -> str:
        return normalize_network(value)

    @field_validator('scheme')
    @classmethod
    def _scheme(cls, value: str) -> str:
        return normalize_scheme(value)

    @field_validator('asset', 'recipient')
    @classmethod
    def _address(cls, value: str) -> str:
        return _checksum(value)


class Authorization(_WireModel):
    from_: str = Field(validation_alias=AliasChoices('from', 'from_'), serialization_alias='from')
    to: str
    value: NonNegativeInt
    valid_after: NonNegativeInt = Field(
        validation_alias=AliasChoices('validAfter', 'valid_after'),
        serialization_alias='validAfter',
    )
    valid_before: NonNegativeInt = Field(
        validation_alias=AliasChoices('validBefore', 'valid_before'),
        serialization_alias='validBefore',
    )
    nonce: str

    @field_validator('from_', 'to')
    @classmethod
    def _address(cls, value: str) -> str:
        return _checksum(value)

    @field_validator('nonce', mode='before')
    @classmethod
    def _nonce(cls, value: Any) -> str:
        return _hex_bytes(value, length=32)


class ExactEvmPayload(_WireModel):
    signature: str
    authorization: Authorization

    @field_validator('signature', mode='before')
    @classmethod
    def _signature(cls, value: Any) -> str:
        return _hex_bytes(value)


class PaymentPayload(_WireModel):
    x402_version: int = Field(
        validation_alias=AliasChoices('x402Version', 'protocolVersion', 'x402_version'),
        serialization_alias='x402Version',
    )
    scheme: str
    network: str
    payload: ExactEvmPayload

    @field_validator('network')
    @classmethod
    def _network(cls, value: str) -> str:
        return normalize_network(value)

    @field_validator('scheme')
    @classmethod
    def _scheme(cls, value: str) -> str:
        return normalize_scheme(value)

    @property
    def authorization(self) -> Authorization:
        return self.payload.authorization

    @property
    def signature(self) -> str:
        return self.payload.signature

    @property
    def nonce(self) -> str:
        return self.payload.authorization.nonce


def _invalid(reason: ValidationReason, detail: str) -> FacilitatorValidationError:
    return FacilitatorValidationError(reason, detail)


def validate(
    raw_requirements: Any,
    raw_payload: Any,
    supported_networks: Iterable[str],
) -> Tuple[PaymentRequirements, PaymentPayload]:
    """
    Parse and structurally validate a requirements/payload pair.

    Raises:
        FacilitatorValidationError: with one of the ``ValidationReason`` values.
    """
    if not isinstance(raw_requirements, dict) or not isinstance(raw_payload, dict):
        raise _invalid(
            ValidationReason.MALFORMED_PAYLOAD,
            'Missing paymentPayload or paymentRequirements.',
        )

    try:
        requirements = PaymentRequirements.model_validate(raw_requirements)
        payload = PaymentPayload.model_validate(raw_payload)
    except PydanticValidationError as exc:
        logger.debug('pydantic validation failed: {}', exc)
        raise _invalid(
            ValidationReason.MALFORMED_PAYLOAD,
            'Invalid payment payload or requirements.',
        ) from exc

    if payload.x402_version not in SUPPORTED_X402_VERSIONS:
        raise _invalid(
            ValidationReason.MALFORMED_PAYLOAD,
            f'Unsupported x402Version: {payload.x402_version}.',
        )

    supported = set(supported_networks)
    for network in (requirements.network, payload.network):
        if network not in supported:
            raise _invalid(
                ValidationReason.UNSUPPORTED_NETWORK,
                f'Unsupported network: {network}. Supported networks: {", ".join(sorted(supported))}',
            )

    for scheme in (requirements.scheme, payload.scheme):
        if scheme not in SUPPORTED_SCHEMES:
            raise _invalid(
                ValidationReason.UNSUPPORTED_SCHEME,
                f'Unsupported scheme: {scheme}.',
            )

    if payload.authorization.value < requirements.amount:
        raise _invalid(
            ValidationReason.AMOUNT_MISMATCH,
            f'Authorization value {payload.authorization.value} is below the required amount {requirements.amount}.',
        )

    return requirements, payload
