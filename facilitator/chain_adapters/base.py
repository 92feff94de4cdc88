"""
Chain adapter interface.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from facilitator.config import FacilitatorConfig, NetworkConfig
from facilitator.schemas import PaymentRequirements
from facilitator.signer import Signer
from facilitator.terminal import TerminalPayment


@dataclass(frozen=True)
class Receipt:
    """Inclusion status of a submitted transaction."""
    transaction_ref: str
    succeeded: bool
    block_number: int
    confirmations: int
    revert_reason: Optional[str] = None


class ChainAdapter(ABC):
    """
    Network specific capabilities the settlement core depends on.
    Each supported network (Base, Base Sepolia, ...) provides one variant.
    """

    network: str = ''
    chain_id: int = 0
    token_name: str = ''
    token_version: str = ''

    def __init__(self, network_config: NetworkConfig, config: FacilitatorConfig):
        """
        Initialize the chain adapter.

        Args:
            network_config: RPC endpoint and explorer for this network
            config: Facilitator wide configuration (gas, timeouts, terminal)
        """
        self.network_config = network_config
        self.config = config

    def domain_params(self, requirements: PaymentRequirements) -> Dict[str, Any]:
        """
        EIP-712 domain for the token named in the requirements.

        ``requirements.extra`` may override the token name and version, as
        resource servers advertise them for tokens the adapter does not know.
        """
        extra = requirements.extra or {}
        return {
            'name': extra.get('name') or self.token_name,
            'version': extra.get('version') or self.token_version,
            'chainId': self.chain_id,
            'verifyingContract': requirements.asset,
        }

    @abstractmethod
    def submit(self, signer: Signer, payment: TerminalPayment) -> str:
        """
        Broadcast the terminal payment.

        Returns:
            The transaction reference (hash)

        Raises:
            TransientExecutionError: RPC failure, safe to retry
            PermanentExecutionError: the chain rejected the call
        """

    @abstractmethod
    def poll_receipt(self, transaction_ref: str) -> Optional[Receipt]:
        """
        Return the receipt of a transaction, or None while it is pending.

        Raises:
            TransientExecutionError: when the node cannot be queried
        """

    def get_explorer_url(self, transaction_ref: str) -> str:
        return f'{self.network_config.explorer_url}/tx/{transaction_ref}'
