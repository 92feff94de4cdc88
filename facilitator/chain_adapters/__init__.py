"""
Chain adapters for settling payments on supported networks.
"""
from .base import ChainAdapter, Receipt
from .evm import BaseChainAdapter, BaseSepoliaChainAdapter, EvmChainAdapter
from .factory import ChainAdapterFactory

__all__ = [
    'ChainAdapter',
    'Receipt',
    'EvmChainAdapter',
    'BaseChainAdapter',
    'BaseSepoliaChainAdapter',
    'ChainAdapterFactory',
]
