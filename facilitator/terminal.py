"""
Payment terminal call construction.

Settled funds go to a Juicebox style multi-terminal through ``pay``. The payer
stays the beneficiary of the project tokens, and the signed EIP-3009
authorization travels in ``_metadata`` so the terminal can redeem it itself;
the facilitator never holds the funds.
"""
from dataclasses import dataclass

from eth_abi import encode
from hexbytes import HexBytes
from web3 import Web3

from facilitator.config import FacilitatorConfig
from facilitator.schemas import PaymentPayload, PaymentRequirements

JB_MULTI_TERMINAL_PAY_ABI = [
    {
        'inputs': [
            {'internalType': 'uint256', 'name': '_projectId', 'type': 'uint256'},
            {'internalType': 'address', 'name': '_token', 'type': 'address'},
            {'internalType': 'uint256', 'name': '_amount', 'type': 'uint256'},
            {'internalType': 'address', 'name': '_beneficiary', 'type': 'address'},
            {'internalType': 'uint256', 'name': '_minReturnedTokens', 'type': 'uint256'},
            {'internalType': 'string', 'name': '_memo', 'type': 'string'},
            {'internalType': 'bytes', 'name': '_metadata', 'type': 'bytes'},
        ],
        'name': 'pay',
        'outputs': [
            {'internalType': 'uint256', 'name': 'beneficiaryTokenCount', 'type': 'uint256'},
        ],
        'stateMutability': 'payable',
        'type': 'function',
    }
]

AUTHORIZATION_METADATA_TYPES = [
    'address',  # from
    'address',  # to
    'uint256',  # value
    'uint256',  # validAfter
    'uint256',  # validBefore
    'bytes32',  # nonce
    'bytes',    # signature
]


@dataclass(frozen=True)
class TerminalPayment:
    terminal: str
    project_id: int
    token: str
    amount: int
    beneficiary: str
    min_returned_tokens: int
    memo: str
    metadata: bytes

    def as_args(self) -> tuple:
        return (
            self.project_id,
            self.token,
            self.amount,
            self.beneficiary,
            self.min_returned_tokens,
            self.memo,
            self.metadata,
        )


def encode_authorization_metadata(payload: PaymentPayload) -> bytes:
    authorization = payload.authorization
    return encode(
        AUTHORIZATION_METADATA_TYPES,
        [
            authorization.from_,
            authorization.to,
            authorization.value,
            authorization.valid_after,
            authorization.valid_before,
            bytes(HexBytes(authorization.nonce)),
            bytes(HexBytes(payload.signature)),
        ],
    )


def build_terminal_payment(
    config: FacilitatorConfig,
    requirements: PaymentRequirements,
    payload: PaymentPayload,
) -> TerminalPayment:
    authorization = payload.authorization
    return TerminalPayment(
        terminal=Web3.to_checksum_address(config.terminal_address),
        project_id=int(config.terminal_project_id),
        token=requirements.asset,
        amount=authorization.value,
        beneficiary=authorization.from_,
        min_returned_tokens=0,
        memo=f'{config.terminal_memo} {authorization.nonce}',
        metadata=encode_authorization_metadata(payload),
    )
