from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.test import TestCase

from facilitator.services import Facilitator
from facilitator.settlement import DatabaseSettlementStore, SettlementStatus
from facilitator.tests.fakes import (
    FakeChainAdapter,
    FakeClock,
    adapter_factory,
    confirmed,
    make_config,
)

PAYER = '0x' + '44' * 20


class ReconcileSettlementsCommandTests(TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.config = make_config()
        self.store = DatabaseSettlementStore()

    def _run(self, adapter):
        facilitator = Facilitator(
            self.config,
            store=self.store,
            adapters=adapter_factory(self.config, adapter),
            clock=self.clock,
            sleep=self.clock.sleep,
            poll_sleep=self.clock.sleep,
        )
        out = StringIO()
        with patch(
            'facilitator.management.commands.reconcile_settlements.get_facilitator',
            return_value=facilitator,
        ):
            call_command('reconcile_settlements', stdout=out)
        return out.getvalue()

    def _record(self, nonce, deadline, transaction_ref=None):
        self.store.get_or_create(nonce, network='base', payer=PAYER, value=1, deadline=deadline)
        if transaction_ref:
            self.store.transition(nonce, SettlementStatus.SUBMITTED, transaction_ref=transaction_ref)

    def test_submitted_records_are_resolved(self):
        tx = '0x' + '77' * 32
        self._record('0x' + '01' * 32, self.clock.now + 60, transaction_ref=tx)

        output = self._run(FakeChainAdapter(self.config, receipts=[confirmed(tx)]))

        self.assertEqual(self.store.get('0x' + '01' * 32).status, SettlementStatus.CONFIRMED)
        self.assertIn('confirmed=1', output)

    def test_stale_pending_records_expire(self):
        self._record('0x' + '02' * 32, self.clock.now - 1)
        self._record('0x' + '03' * 32, self.clock.now + 60)

        output = self._run(FakeChainAdapter(self.config))

        self.assertEqual(self.store.get('0x' + '02' * 32).status, SettlementStatus.EXPIRED)
        self.assertEqual(self.store.get('0x' + '03' * 32).status, SettlementStatus.PENDING)
        self.assertIn('expired=1', output)
        self.assertIn('pending=1', output)

    def test_nothing_to_reconcile(self):
        output = self._run(FakeChainAdapter(self.config))

        self.assertIn('none', output)
