from django.core.management.base import BaseCommand
from loguru import logger

from facilitator.errors import ExecutionReason, SettlementCancelled
from facilitator.services import get_facilitator
from facilitator.settlement import SettlementStatus


class Command(BaseCommand):
    help = 'Resume settlements left Pending or Submitted by an interrupted process.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--timeout',
            type=float,
            default=None,
            help='Seconds to wait for each submitted transaction (default: X402_TX_TIMEOUT_SECONDS).',
        )

    def handle(self, *args, **options):
        facilitator = get_facilitator()
        store = facilitator.store
        now = facilitator.executor.clock()
        counts = {status.value: 0 for status in SettlementStatus}

        for record in store.unfinished():
            if record.status == SettlementStatus.SUBMITTED and record.transaction_ref:
                try:
                    record = facilitator.reconciler.await_finality(
                        record.transaction_ref, timeout=options['timeout'])
                except SettlementCancelled:
                    logger.warning('Reconciliation interrupted at {}', record.nonce)
                    break
            elif record.deadline <= now:
                record = store.transition(
                    record.nonce,
                    SettlementStatus.EXPIRED,
                    last_error=ExecutionReason.SETTLEMENT_TIMEOUT.value,
                )
            counts[str(record.status)] += 1

        summary = ', '.join(f'{status}={count}' for status, count in counts.items() if count)
        self.stdout.write(f'Reconciled settlements: {summary or "none"}')
