from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class NetworkConfig:
    rpc_url: str
    explorer_url: str = ''


@dataclass(frozen=True)
class FacilitatorConfig:
    """
    Everything the facilitator needs at runtime, resolved once from settings.

    Instances are passed to the services at construction; nothing below this
    layer reads Django settings directly.
    """
    networks: Dict[str, NetworkConfig] = field(default_factory=dict)
    signer_private_key: str = ''
    signer_address: str = ''
    terminal_address: str = ''
    terminal_project_id: int = 0
    terminal_memo: str = 'x402 settlement'
    gas_limit: int = 250000
    max_fee_per_gas_wei: int = 0
    max_priority_fee_per_gas_wei: int = 0
    tx_timeout_seconds: float = 120
    rpc_timeout_seconds: float = 10
    max_submission_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 8.0
    max_concurrent_submissions: int = 4
    min_confirmations: int = 1
    poll_interval_seconds: float = 2.0
    settlement_store: str = 'database'
    terminal_retention_seconds: float = 3600
    eviction_interval_seconds: float = 60

    @classmethod
    def from_settings(cls, settings) -> 'FacilitatorConfig':
        networks = {
            'base': NetworkConfig(
                rpc_url=getattr(settings, 'X402_BASE_RPC_URL', ''),
                explorer_url='https://basescan.org',
            ),
            'base-sepolia': NetworkConfig(
                rpc_url=getattr(settings, 'X402_BASE_SEPOLIA_RPC_URL', ''),
                explorer_url='https://sepolia.basescan.org',
            ),
        }
        return cls(
            networks=networks,
            signer_private_key=getattr(settings, 'X402_SIGNER_PRIVATE_KEY', ''),
            signer_address=getattr(settings, 'X402_SIGNER_ADDRESS', ''),
            terminal_address=getattr(settings, 'X402_TERMINAL_ADDRESS', ''),
            terminal_project_id=getattr(settings, 'X402_TERMINAL_PROJECT_ID', 0),
            terminal_memo=getattr(settings, 'X402_TERMINAL_MEMO', 'x402 settlement'),
            gas_limit=getattr(settings, 'X402_GAS_LIMIT', 250000),
            max_fee_per_gas_wei=getattr(settings, 'X402_MAX_FEE_PER_GAS_WEI', 0),
            max_priority_fee_per_gas_wei=getattr(
                settings, 'X402_MAX_PRIORITY_FEE_PER_GAS_WEI', 0),
            tx_timeout_seconds=getattr(settings, 'X402_TX_TIMEOUT_SECONDS', 120),
            rpc_timeout_seconds=getattr(settings, 'X402_RPC_TIMEOUT_SECONDS', 10),
            max_submission_attempts=getattr(settings, 'X402_MAX_SUBMISSION_ATTEMPTS', 3),
            retry_base_delay_seconds=getattr(settings, 'X402_RETRY_BASE_DELAY_SECONDS', 1.0),
            retry_max_delay_seconds=getattr(settings, 'X402_RETRY_MAX_DELAY_SECONDS', 8.0),
            max_concurrent_submissions=getattr(settings, 'X402_MAX_CONCURRENT_SUBMISSIONS', 4),
            min_confirmations=getattr(settings, 'X402_MIN_CONFIRMATIONS', 1),
            poll_interval_seconds=getattr(settings, 'X402_POLL_INTERVAL_SECONDS', 2.0),
            settlement_store=getattr(settings, 'X402_SETTLEMENT_STORE', 'database'),
            terminal_retention_seconds=getattr(settings, 'X402_TERMINAL_RETENTION_SECONDS', 3600),
            eviction_interval_seconds=getattr(settings, 'X402_EVICTION_INTERVAL_SECONDS', 60),
        )

    def network(self, name: str) -> Optional[NetworkConfig]:
        return self.networks.get(name)
