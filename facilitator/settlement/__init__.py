"""
Settlement state machine: executor, reconciler and record stores.
"""
from .executor import SettlementExecutor
from .locks import NonceLockRegistry
from .reconciler import Reconciler
from .records import SettlementOutcome, SettlementRecord, SettlementStatus
from .store import DatabaseSettlementStore, MemorySettlementStore, SettlementStore, create_store

__all__ = [
    'SettlementExecutor',
    'NonceLockRegistry',
    'Reconciler',
    'SettlementOutcome',
    'SettlementRecord',
    'SettlementStatus',
    'SettlementStore',
    'DatabaseSettlementStore',
    'MemorySettlementStore',
    'create_store',
]
