import unittest

from django.test import TestCase

from facilitator.errors import InvalidTransition
from facilitator.models import Settlement
from facilitator.settlement import (
    DatabaseSettlementStore,
    MemorySettlementStore,
    SettlementStatus,
    create_store,
)
from facilitator.tests.fakes import NOW, FakeClock

NONCE = '0x' + '0a' * 32
PAYER = '0x' + '33' * 20
TX = '0x' + 'ef' * 32


class StoreContract:
    """Behaviour shared by every settlement store backend."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self) -> None:
        self.store = self.make_store()
        self.record, self.created = self.store.get_or_create(
            NONCE, network='base', payer=PAYER, value=1000, deadline=NOW + 60)

    def test_get_or_create_is_idempotent(self):
        again, created = self.store.get_or_create(
            NONCE, network='base', payer=PAYER, value=1000, deadline=NOW + 600)

        self.assertTrue(self.created)
        self.assertFalse(created)
        self.assertEqual(again.status, SettlementStatus.PENDING)
        self.assertEqual(again.deadline, NOW + 60)

    def test_happy_path_transitions(self):
        submitted = self.store.transition(NONCE, SettlementStatus.SUBMITTED, transaction_ref=TX)
        confirmed = self.store.transition(NONCE, SettlementStatus.CONFIRMED)

        self.assertEqual(submitted.transaction_ref, TX)
        self.assertEqual(confirmed.status, SettlementStatus.CONFIRMED)
        self.assertEqual(confirmed.transaction_ref, TX)
        self.assertEqual(self.store.get_by_transaction(TX).nonce, NONCE)

    def test_terminal_states_never_change(self):
        self.store.transition(NONCE, SettlementStatus.REVERTED, last_error='contract_revert')

        for target in SettlementStatus:
            with self.assertRaises(InvalidTransition):
                self.store.transition(NONCE, target)
        self.assertEqual(self.store.get(NONCE).status, SettlementStatus.REVERTED)

    def test_pending_cannot_confirm_without_submission(self):
        with self.assertRaises(InvalidTransition):
            self.store.transition(NONCE, SettlementStatus.CONFIRMED)

    def test_submitted_cannot_go_back_to_pending(self):
        self.store.transition(NONCE, SettlementStatus.SUBMITTED, transaction_ref=TX)

        with self.assertRaises(InvalidTransition):
            self.store.transition(NONCE, SettlementStatus.PENDING)

    def test_record_attempt(self):
        self.store.record_attempt(NONCE, 'rpc_timeout')
        record = self.store.record_attempt(NONCE)

        self.assertEqual(record.attempts, 2)
        self.assertIsNone(record.last_error)

    def test_unfinished(self):
        other = '0x' + '0b' * 32
        self.store.get_or_create(other, network='base', payer=PAYER, value=1, deadline=NOW)
        self.store.transition(other, SettlementStatus.EXPIRED)

        self.assertEqual([r.nonce for r in self.store.unfinished()], [NONCE])

    def test_only_one_owner_holds_a_claim(self):
        _, first = self.store.claim(NONCE, 'worker-a')
        record, second = self.store.claim(NONCE, 'worker-b')

        self.assertTrue(first)
        self.assertFalse(second)
        self.assertEqual(record.claimed_by, 'worker-a')
        self.assertTrue(self.store.claim(NONCE, 'worker-a')[1])

    def test_released_claim_can_be_taken(self):
        self.store.claim(NONCE, 'worker-a')
        self.store.release(NONCE, 'worker-b')
        self.assertFalse(self.store.claim(NONCE, 'worker-b')[1])

        released = self.store.release(NONCE, 'worker-a')

        self.assertIsNone(released.claimed_by)
        self.assertTrue(self.store.claim(NONCE, 'worker-b')[1])

    def test_leaving_pending_ends_the_claim(self):
        self.store.claim(NONCE, 'worker-a')

        submitted = self.store.transition(NONCE, SettlementStatus.SUBMITTED, transaction_ref=TX)
        record, claimed = self.store.claim(NONCE, 'worker-b')

        self.assertIsNone(submitted.claimed_by)
        self.assertFalse(claimed)
        self.assertEqual(record.status, SettlementStatus.SUBMITTED)

    def test_signature_is_kept(self):
        other = '0x' + '0d' * 32
        signature = '0x' + 'ab' * 65
        record, _ = self.store.get_or_create(
            other, network='base', payer=PAYER, value=1000, deadline=NOW, signature=signature)

        self.assertEqual(self.store.get(other).signature, signature)
        self.assertTrue(record.matches(
            network='base', payer=PAYER, value=1000, signature='0x' + 'AB' * 65))
        self.assertFalse(record.matches(
            network='base', payer=PAYER, value=2000, signature=signature))


class MemorySettlementStoreTests(StoreContract, unittest.TestCase):
    def make_store(self):
        self.clock = FakeClock()
        return MemorySettlementStore(clock=self.clock)

    def test_only_terminal_records_are_evicted(self):
        self.assertFalse(self.store.evict(NONCE))

        self.store.transition(NONCE, SettlementStatus.EXPIRED)

        self.assertTrue(self.store.evict(NONCE))
        self.assertIsNone(self.store.get(NONCE))

    def test_evict_terminal_by_age(self):
        self.store.transition(NONCE, SettlementStatus.SUBMITTED, transaction_ref=TX)
        self.store.transition(NONCE, SettlementStatus.CONFIRMED)
        fresh = '0x' + '0c' * 32
        self.clock.sleep(100)
        self.store.get_or_create(fresh, network='base', payer=PAYER, value=1, deadline=NOW)
        self.store.transition(fresh, SettlementStatus.REVERTED)

        evicted = self.store.evict_terminal(older_than_seconds=50)

        self.assertEqual(evicted, 1)
        self.assertIsNone(self.store.get(NONCE))
        self.assertIsNotNone(self.store.get(fresh))

    def test_evicted_record_leaves_transaction_index(self):
        self.store.transition(NONCE, SettlementStatus.SUBMITTED, transaction_ref=TX)
        self.store.transition(NONCE, SettlementStatus.CONFIRMED)
        self.clock.sleep(10)

        self.store.evict_terminal(older_than_seconds=5)

        self.assertIsNone(self.store.get_by_transaction(TX))
        self.assertEqual(self.store._by_transaction, {})


class DatabaseSettlementStoreTests(StoreContract, TestCase):
    def make_store(self):
        return DatabaseSettlementStore()

    def test_rows_follow_transitions(self):
        self.store.transition(NONCE, SettlementStatus.SUBMITTED, transaction_ref=TX)
        self.store.transition(NONCE, SettlementStatus.CONFIRMED)

        row = Settlement.objects.get(nonce=NONCE)
        self.assertEqual(row.status, SettlementStatus.CONFIRMED)
        self.assertEqual(row.transaction_ref, TX)
        self.assertIsNotNone(row.finalized_at)
        self.assertEqual(Settlement.objects.count(), 1)


class CreateStoreTests(unittest.TestCase):
    def test_backends(self):
        self.assertIsInstance(create_store('memory'), MemorySettlementStore)
        self.assertIsInstance(create_store('database'), DatabaseSettlementStore)
        with self.assertRaises(ValueError):
            create_store('redis')
