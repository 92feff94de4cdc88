"""
EVM chain adapters for Base networks.
"""
import threading
from typing import Any, Dict, Optional

import requests
from loguru import logger
from web3 import HTTPProvider, Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
    Web3Exception,
)

from facilitator.errors import (
    ExecutionError,
    ExecutionReason,
    PermanentExecutionError,
    TransientExecutionError,
)
from facilitator.signer import Signer
from facilitator.terminal import JB_MULTI_TERMINAL_PAY_ABI, TerminalPayment

from .base import ChainAdapter, Receipt

RPC_ERRORS = (ValueError, Web3Exception, requests.RequestException, OSError)


def classify_revert_reason(message: str) -> ExecutionReason:
    """Map contract revert messages to the settlement taxonomy."""
    message = (message or '').lower()
    if 'authorization is used' in message or 'authorization is used or canceled' in message:
        return ExecutionReason.AUTHORIZATION_USED
    if 'amount exceeds balance' in message or 'insufficient balance' in message:
        return ExecutionReason.INSUFFICIENT_FUNDS
    if 'insufficient funds' in message:
        return ExecutionReason.INSUFFICIENT_GAS
    return ExecutionReason.CONTRACT_REVERT


def _from_node(exc: BaseException) -> bool:
    """Whether the error was reported by the RPC node rather than raised locally."""
    if isinstance(exc, ValueError):
        # web3 raises JSON-RPC error objects as ValueError({'code': ..., 'message': ...}).
        return bool(exc.args) and isinstance(exc.args[0], dict)
    return isinstance(exc, Web3Exception)


def classify_rpc_error(exc: BaseException) -> ExecutionError:
    """Split RPC failures into retryable and terminal ones."""
    if isinstance(exc, ContractLogicError):
        reason = classify_revert_reason(str(exc))
        return PermanentExecutionError(reason, f'Contract reverted: {exc}')
    if isinstance(exc, (requests.Timeout, TimeExhausted)):
        return TransientExecutionError(ExecutionReason.RPC_TIMEOUT, f'RPC request timed out: {exc}')
    if isinstance(exc, (requests.ConnectionError, OSError)):
        return TransientExecutionError(ExecutionReason.RPC_UNAVAILABLE, f'RPC node unavailable: {exc}')
    if not _from_node(exc):
        return PermanentExecutionError(
            ExecutionReason.INVALID_TRANSACTION, f'Transaction could not be built: {exc}')

    message = str(exc).lower()
    if 'insufficient funds' in message:
        return PermanentExecutionError(
            ExecutionReason.INSUFFICIENT_GAS, f'Facilitator has insufficient gas funds: {exc}')
    if 'execution reverted' in message:
        return PermanentExecutionError(classify_revert_reason(message), f'Contract reverted: {exc}')
    if 'underpriced' in message:
        return TransientExecutionError(ExecutionReason.UNDERPRICED, f'Transaction underpriced: {exc}')
    if 'nonce too low' in message or 'nonce too high' in message:
        return TransientExecutionError(ExecutionReason.NONCE_CONFLICT, f'Account nonce conflict: {exc}')
    return TransientExecutionError(ExecutionReason.RPC_UNAVAILABLE, f'RPC error: {exc}')


class EvmChainAdapter(ChainAdapter):
    """Submits terminal payments through a JSON-RPC node with web3."""

    def __init__(self, network_config, config):
        super().__init__(network_config, config)
        self._web3: Optional[Web3] = None
        # Signed transactions whose broadcast outcome is unknown, reused on retry
        # so a retried payment keeps its hash and account nonce.
        self._unconfirmed_broadcasts: Dict[TerminalPayment, Any] = {}
        self._unconfirmed_lock = threading.Lock()

    @property
    def web3(self) -> Web3:
        if self._web3 is None:
            self._web3 = Web3(HTTPProvider(
                self.network_config.rpc_url,
                request_kwargs={'timeout': self.config.rpc_timeout_seconds},
            ))
        return self._web3

    def submit(self, signer: Signer, payment: TerminalPayment) -> str:
        with self._unconfirmed_lock:
            signed = self._unconfirmed_broadcasts.get(payment)
        if signed is not None:
            return self._rebroadcast(payment, signed)

        web3 = self.web3
        contract = web3.eth.contract(
            address=Web3.to_checksum_address(payment.terminal),
            abi=JB_MULTI_TERMINAL_PAY_ABI,
        )
        pay_fn = contract.functions.pay(*payment.as_args())

        # Pre-flight simulation
        try:
            pay_fn.call({'from': signer.address})
        except BadFunctionCallOutput:
            logger.warning('Terminal simulation returned empty data, continuing')
        except RPC_ERRORS as exc:
            raise classify_rpc_error(exc) from exc

        try:
            estimated_gas = pay_fn.estimate_gas({'from': signer.address})
        except ContractLogicError as exc:
            raise classify_rpc_error(exc) from exc
        except RPC_ERRORS as exc:
            logger.debug(
                'Gas estimation failed, falling back to configured gas limit: {}', exc)
            estimated_gas = self.config.gas_limit

        def pending_count() -> int:
            try:
                return web3.eth.get_transaction_count(signer.address, 'pending')
            except RPC_ERRORS as exc:
                raise classify_rpc_error(exc) from exc

        with signer.account_nonce(pending_count) as account_nonce:
            tx_params = {
                'chainId': self.chain_id,
                'from': signer.address,
                'nonce': account_nonce,
                'gas': max(estimated_gas, self.config.gas_limit),
                'value': 0,
            }
            try:
                if self.config.max_fee_per_gas_wei and self.config.max_priority_fee_per_gas_wei:
                    tx_params['maxFeePerGas'] = int(self.config.max_fee_per_gas_wei)
                    tx_params['maxPriorityFeePerGas'] = int(
                        self.config.max_priority_fee_per_gas_wei)
                else:
                    tx_params['gasPrice'] = web3.eth.gas_price
                transaction = pay_fn.build_transaction(tx_params)
            except RPC_ERRORS as exc:
                raise classify_rpc_error(exc) from exc

            signed = signer.sign_transaction(transaction)
            transaction_ref = Web3.to_hex(signed.hash)
            with self._unconfirmed_lock:
                self._unconfirmed_broadcasts[payment] = signed
            try:
                self._broadcast(signed, transaction_ref)
            except PermanentExecutionError:
                self._forget(payment)
                raise
            self._forget(payment)

        logger.info('Terminal payment submitted on {}: {}', self.network, transaction_ref)
        return transaction_ref

    def _rebroadcast(self, payment: TerminalPayment, signed) -> str:
        transaction_ref = Web3.to_hex(signed.hash)
        logger.info('Re-broadcasting {} for a retried terminal payment', transaction_ref)
        try:
            self._broadcast(signed, transaction_ref)
        except TransientExecutionError as exc:
            if exc.reason in (ExecutionReason.NONCE_CONFLICT, ExecutionReason.UNDERPRICED):
                # The account nonce slot went to another transaction; sign afresh next time.
                self._forget(payment)
            raise
        except PermanentExecutionError:
            self._forget(payment)
            raise
        self._forget(payment)
        logger.info('Terminal payment submitted on {}: {}', self.network, transaction_ref)
        return transaction_ref

    def _forget(self, payment: TerminalPayment) -> None:
        with self._unconfirmed_lock:
            self._unconfirmed_broadcasts.pop(payment, None)

    def _broadcast(self, signed, transaction_ref: str) -> None:
        raw_tx = getattr(signed, 'raw_transaction', None)
        if raw_tx is None:
            raw_tx = getattr(signed, 'rawTransaction', None)
        if raw_tx is None:
            raise PermanentExecutionError(
                ExecutionReason.CONTRACT_REVERT,
                'Signer returned unexpected transaction encoding.')

        try:
            self.web3.eth.send_raw_transaction(raw_tx)
        except RPC_ERRORS as exc:
            if 'already known' in str(exc).lower():
                logger.debug('Transaction {} already in mempool', transaction_ref)
                return
            error = classify_rpc_error(exc)
            # A timed out broadcast may still have reached the node.
            if error.retryable and self._is_known(transaction_ref):
                logger.info(
                    'Broadcast of {} failed ({}) but the node knows it', transaction_ref, exc)
                return
            raise error from exc

    def _is_known(self, transaction_ref: str) -> bool:
        try:
            self.web3.eth.get_transaction(transaction_ref)
        except TransactionNotFound:
            return False
        except RPC_ERRORS as exc:
            logger.debug('Could not look up {}: {}', transaction_ref, exc)
            return False
        return True

    def poll_receipt(self, transaction_ref: str) -> Optional[Receipt]:
        web3 = self.web3
        try:
            receipt = web3.eth.get_transaction_receipt(transaction_ref)
        except TransactionNotFound:
            return None
        except RPC_ERRORS as exc:
            raise classify_rpc_error(exc) from exc

        try:
            latest_block = web3.eth.block_number
        except RPC_ERRORS as exc:
            raise classify_rpc_error(exc) from exc

        block_number = int(receipt['blockNumber'])
        succeeded = int(receipt['status']) == 1
        return Receipt(
            transaction_ref=transaction_ref,
            succeeded=succeeded,
            block_number=block_number,
            confirmations=max(0, latest_block - block_number + 1),
            revert_reason=None if succeeded else self._revert_reason(transaction_ref, block_number),
        )

    def _revert_reason(self, transaction_ref: str, block_number: int) -> Optional[str]:
        """Replay a reverted transaction to read its revert message."""
        web3 = self.web3
        try:
            tx = web3.eth.get_transaction(transaction_ref)
            web3.eth.call(
                {
                    'from': tx['from'],
                    'to': tx['to'],
                    'data': tx['input'],
                    'value': tx['value'],
                },
                block_number - 1,
            )
        except ContractLogicError as exc:
            return str(exc)
        except RPC_ERRORS as exc:
            logger.debug('Revert reason replay failed for {}: {}', transaction_ref, exc)
        return None


class BaseChainAdapter(EvmChainAdapter):
    """Base mainnet."""

    network = 'base'
    chain_id = 8453
    token_name = 'USD Coin'
    token_version = '2'
    USDC_CONTRACT = '0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913'


class BaseSepoliaChainAdapter(EvmChainAdapter):
    """Base Sepolia testnet."""

    network = 'base-sepolia'
    chain_id = 84532
    token_name = 'USDC'
    token_version = '2'
    USDC_CONTRACT = '0x036CbD53842c5426634e7929541eC2318f3dCF7e'
