"""
Factory for creating chain adapters.
"""
from typing import Dict, List, Optional, Type

from facilitator.config import FacilitatorConfig
from facilitator.errors import FacilitatorConfigurationError

from .base import ChainAdapter
from .evm import BaseChainAdapter, BaseSepoliaChainAdapter


class ChainAdapterFactory:
    """Creates and caches one chain adapter per supported network."""

    _adapters: Dict[str, Type[ChainAdapter]] = {
        'base': BaseChainAdapter,
        'base-sepolia': BaseSepoliaChainAdapter,
    }

    def __init__(self, config: FacilitatorConfig, instances: Optional[Dict[str, ChainAdapter]] = None):
        self.config = config
        self._instances: Dict[str, ChainAdapter] = dict(instances or {})

    @classmethod
    def supported_networks(cls) -> List[str]:
        """Get list of supported network names."""
        return list(cls._adapters.keys())

    def get(self, network: str) -> ChainAdapter:
        """
        Return the adapter for a validated network name.

        Raises:
            ValueError: If network is not supported
            FacilitatorConfigurationError: If the network has no RPC configuration
        """
        network_lower = network.lower().strip()
        adapter = self._instances.get(network_lower)
        if adapter is not None:
            return adapter

        adapter_class = self._adapters.get(network_lower)
        if adapter_class is None:
            supported = ', '.join(self._adapters.keys())
            raise ValueError(
                f'Unsupported network: {network}. '
                f'Supported networks: {supported}'
            )

        network_config = self.config.network(network_lower)
        if network_config is None:
            raise FacilitatorConfigurationError(f'No RPC configuration for network {network}.')

        adapter = adapter_class(network_config, self.config)
        self._instances[network_lower] = adapter
        return adapter
