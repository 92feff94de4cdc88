import unittest
from unittest.mock import MagicMock

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception

from facilitator.chain_adapters import BaseChainAdapter, ChainAdapterFactory
from facilitator.chain_adapters.evm import classify_revert_reason, classify_rpc_error
from facilitator.config import NetworkConfig
from facilitator.errors import (
    ExecutionReason,
    FacilitatorConfigurationError,
    PermanentExecutionError,
    TransientExecutionError,
)
from facilitator.schemas import validate
from facilitator.signer import Signer
from facilitator.terminal import build_terminal_payment
from facilitator.tests.fakes import TERMINAL, PaymentBuilder, make_config

TX = '0x' + '12' * 32


class ClassificationTests(unittest.TestCase):
    def test_revert_reasons(self):
        self.assertEqual(
            classify_revert_reason('execution reverted: FiatTokenV2: authorization is used or canceled'),
            ExecutionReason.AUTHORIZATION_USED,
        )
        self.assertEqual(
            classify_revert_reason('ERC20: transfer amount exceeds balance'),
            ExecutionReason.INSUFFICIENT_FUNDS,
        )
        self.assertEqual(classify_revert_reason(None), ExecutionReason.CONTRACT_REVERT)

    def test_rpc_errors(self):
        cases = [
            (requests.Timeout('read timed out'), TransientExecutionError, ExecutionReason.RPC_TIMEOUT),
            (requests.ConnectionError('refused'), TransientExecutionError, ExecutionReason.RPC_UNAVAILABLE),
            (ValueError({'message': 'replacement transaction underpriced'}),
             TransientExecutionError, ExecutionReason.UNDERPRICED),
            (ValueError({'message': 'nonce too low'}), TransientExecutionError, ExecutionReason.NONCE_CONFLICT),
            (ValueError({'message': 'insufficient funds for gas * price + value'}),
             PermanentExecutionError, ExecutionReason.INSUFFICIENT_GAS),
            (ContractLogicError('execution reverted'), PermanentExecutionError, ExecutionReason.CONTRACT_REVERT),
            (ValueError({'code': -32603, 'message': 'internal error'}),
             TransientExecutionError, ExecutionReason.RPC_UNAVAILABLE),
            (Web3Exception('node hiccup'), TransientExecutionError, ExecutionReason.RPC_UNAVAILABLE),
            (ValueError('Unknown format 42, attempted to normalize to 0x2a'),
             PermanentExecutionError, ExecutionReason.INVALID_TRANSACTION),
        ]
        for exc, error_class, reason in cases:
            with self.subTest(exc=exc):
                error = classify_rpc_error(exc)
                self.assertIsInstance(error, error_class)
                self.assertEqual(error.reason, reason)


class ChainAdapterFactoryTests(unittest.TestCase):
    def test_unsupported_network(self):
        with self.assertRaises(ValueError):
            ChainAdapterFactory(make_config()).get('polygon')

    def test_adapters_are_cached(self):
        factory = ChainAdapterFactory(make_config())

        adapter = factory.get('base')

        self.assertIsInstance(adapter, BaseChainAdapter)
        self.assertIs(factory.get(' BASE '), adapter)
        self.assertEqual(adapter.get_explorer_url(TX), f'https://basescan.org/tx/{TX}')

    def test_network_without_rpc_configuration(self):
        config = make_config(networks={'base': NetworkConfig(rpc_url='http://localhost:8545')})

        with self.assertRaises(FacilitatorConfigurationError):
            ChainAdapterFactory(config).get('base-sepolia')


class EvmChainAdapterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = make_config()
        self.adapter = BaseChainAdapter(self.config.networks['base'], self.config)
        self.web3 = MagicMock()
        self.adapter._web3 = self.web3
        self.pay_fn = self.web3.eth.contract.return_value.functions.pay.return_value
        self.pay_fn.call.return_value = 0
        self.pay_fn.estimate_gas.return_value = 120000
        self.pay_fn.build_transaction.side_effect = self._build_transaction
        self.web3.eth.get_transaction_count.return_value = 7
        self.web3.eth.gas_price = 1_000_000_000
        self.signer = Signer('base', Account.create())

        builder = PaymentBuilder()
        requirements, payload = validate(
            builder.requirements(), builder.payload(), ChainAdapterFactory.supported_networks())
        self.payment = build_terminal_payment(self.config, requirements, payload)

    @staticmethod
    def _build_transaction(params):
        transaction = {key: value for key, value in params.items() if key != 'from'}
        transaction.update({'to': TERMINAL, 'data': '0x'})
        return transaction

    def test_submit_signs_and_broadcasts(self):
        transaction_ref = self.adapter.submit(self.signer, self.payment)

        raw_tx = self.web3.eth.send_raw_transaction.call_args[0][0]
        self.assertEqual(transaction_ref, Web3.to_hex(Web3.keccak(raw_tx)))
        params = self.pay_fn.build_transaction.call_args[0][0]
        self.assertEqual(params['nonce'], 7)
        self.assertEqual(params['chainId'], 8453)
        self.assertEqual(params['gas'], 250000)
        self.assertEqual(params['gasPrice'], 1_000_000_000)
        self.web3.eth.contract.return_value.functions.pay.assert_called_with(*self.payment.as_args())

    def test_consecutive_submissions_use_consecutive_nonces(self):
        self.adapter.submit(self.signer, self.payment)
        self.adapter.submit(self.signer, self.payment)

        nonces = [c[0][0]['nonce'] for c in self.pay_fn.build_transaction.call_args_list]
        self.assertEqual(nonces, [7, 8])

    def test_eip1559_fees_when_configured(self):
        config = make_config(max_fee_per_gas_wei=3_000_000_000, max_priority_fee_per_gas_wei=1_000_000)
        adapter = BaseChainAdapter(config.networks['base'], config)
        adapter._web3 = self.web3

        adapter.submit(self.signer, self.payment)

        params = self.pay_fn.build_transaction.call_args[0][0]
        self.assertEqual(params['maxFeePerGas'], 3_000_000_000)
        self.assertEqual(params['maxPriorityFeePerGas'], 1_000_000)
        self.assertNotIn('gasPrice', params)

    def test_already_known_counts_as_submitted(self):
        self.web3.eth.send_raw_transaction.side_effect = ValueError(
            {'code': -32000, 'message': 'already known'})

        transaction_ref = self.adapter.submit(self.signer, self.payment)

        self.assertTrue(transaction_ref.startswith('0x'))

    def test_broadcast_timeout_for_unknown_transaction_is_transient(self):
        self.web3.eth.send_raw_transaction.side_effect = requests.Timeout('read timed out')
        self.web3.eth.get_transaction.side_effect = TransactionNotFound('not found')

        with self.assertRaises(TransientExecutionError) as ctx:
            self.adapter.submit(self.signer, self.payment)

        self.assertEqual(ctx.exception.reason, ExecutionReason.RPC_TIMEOUT)
        self.assertIsNone(self.signer._next_nonce)

    def test_broadcast_timeout_for_known_transaction_succeeds(self):
        self.web3.eth.send_raw_transaction.side_effect = requests.Timeout('read timed out')
        self.web3.eth.get_transaction.return_value = {'hash': TX}

        transaction_ref = self.adapter.submit(self.signer, self.payment)

        self.assertTrue(transaction_ref.startswith('0x'))
        self.assertEqual(self.signer._next_nonce, 8)

    def test_retry_after_ambiguous_broadcast_resends_same_transaction(self):
        self.web3.eth.send_raw_transaction.side_effect = [requests.Timeout('read timed out'), None]
        self.web3.eth.get_transaction.side_effect = requests.ConnectionError('refused')

        with self.assertRaises(TransientExecutionError):
            self.adapter.submit(self.signer, self.payment)
        transaction_ref = self.adapter.submit(self.signer, self.payment)

        raw_txs = [c[0][0] for c in self.web3.eth.send_raw_transaction.call_args_list]
        self.assertEqual(len(raw_txs), 2)
        self.assertEqual(raw_txs[0], raw_txs[1])
        self.assertEqual(transaction_ref, Web3.to_hex(Web3.keccak(raw_txs[0])))
        self.assertEqual(self.pay_fn.build_transaction.call_count, 1)
        self.assertEqual(self.pay_fn.call.call_count, 1)
        self.assertEqual(self.adapter._unconfirmed_broadcasts, {})

    def test_resend_that_lost_its_nonce_is_signed_again(self):
        self.web3.eth.send_raw_transaction.side_effect = [
            requests.Timeout('read timed out'),
            ValueError({'code': -32000, 'message': 'nonce too low'}),
            None,
        ]
        self.web3.eth.get_transaction.side_effect = TransactionNotFound('not found')
        self.web3.eth.get_transaction_count.side_effect = [7, 8]

        with self.assertRaises(TransientExecutionError):
            self.adapter.submit(self.signer, self.payment)
        with self.assertRaises(TransientExecutionError) as ctx:
            self.adapter.submit(self.signer, self.payment)
        self.adapter.submit(self.signer, self.payment)

        self.assertEqual(ctx.exception.reason, ExecutionReason.NONCE_CONFLICT)
        self.assertEqual(self.pay_fn.build_transaction.call_count, 2)
        raw_txs = [c[0][0] for c in self.web3.eth.send_raw_transaction.call_args_list]
        self.assertEqual(raw_txs[0], raw_txs[1])
        self.assertNotEqual(raw_txs[1], raw_txs[2])
        nonces = [c[0][0]['nonce'] for c in self.pay_fn.build_transaction.call_args_list]
        self.assertEqual(nonces, [7, 8])

    def test_rejected_broadcast_is_not_resent(self):
        self.web3.eth.send_raw_transaction.side_effect = [
            ValueError({'code': -32000, 'message': 'insufficient funds for gas * price + value'}),
            None,
        ]

        with self.assertRaises(PermanentExecutionError):
            self.adapter.submit(self.signer, self.payment)

        self.assertEqual(self.adapter._unconfirmed_broadcasts, {})

    def test_simulated_revert_is_permanent(self):
        self.pay_fn.call.side_effect = ContractLogicError(
            'execution reverted: FiatTokenV2: authorization is used or canceled')

        with self.assertRaises(PermanentExecutionError) as ctx:
            self.adapter.submit(self.signer, self.payment)

        self.assertEqual(ctx.exception.reason, ExecutionReason.AUTHORIZATION_USED)
        self.web3.eth.send_raw_transaction.assert_not_called()

    def test_gas_estimation_failure_falls_back_to_gas_limit(self):
        self.pay_fn.estimate_gas.side_effect = requests.ConnectionError('reset')

        self.adapter.submit(self.signer, self.payment)

        self.assertEqual(self.pay_fn.build_transaction.call_args[0][0]['gas'], 250000)

    def test_poll_receipt_counts_confirmations(self):
        self.web3.eth.get_transaction_receipt.return_value = {'blockNumber': 100, 'status': 1}
        self.web3.eth.block_number = 102

        receipt = self.adapter.poll_receipt(TX)

        self.assertTrue(receipt.succeeded)
        self.assertEqual(receipt.confirmations, 3)
        self.assertIsNone(receipt.revert_reason)

    def test_poll_receipt_reads_revert_reason(self):
        self.web3.eth.get_transaction_receipt.return_value = {'blockNumber': 100, 'status': 0}
        self.web3.eth.block_number = 100
        self.web3.eth.get_transaction.return_value = {
            'from': self.signer.address, 'to': TERMINAL, 'input': '0x', 'value': 0}
        self.web3.eth.call.side_effect = ContractLogicError(
            'execution reverted: transfer amount exceeds balance')

        receipt = self.adapter.poll_receipt(TX)

        self.assertFalse(receipt.succeeded)
        self.assertIn('exceeds balance', receipt.revert_reason)

    def test_pending_transaction_has_no_receipt(self):
        self.web3.eth.get_transaction_receipt.side_effect = TransactionNotFound('pending')

        self.assertIsNone(self.adapter.poll_receipt(TX))

    def test_poll_failure_is_transient(self):
        self.web3.eth.get_transaction_receipt.side_effect = requests.ConnectionError('refused')

        with self.assertRaises(TransientExecutionError):
            self.adapter.poll_receipt(TX)
