import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from facilitator.errors import FacilitatorConfigurationError


class Signer:
    """
    Signing account for one network.

    A single account can only have one transaction per account-nonce slot, so
    nonce allocation, signing and broadcasting happen inside ``account_nonce``
    which serializes callers sharing this signer.
    """

    def __init__(self, network: str, account: LocalAccount):
        self.network = network
        self._account = account
        self._nonce_lock = threading.Lock()
        self._next_nonce: Optional[int] = None

    @property
    def address(self) -> str:
        return Web3.to_checksum_address(self._account.address)

    def sign_transaction(self, transaction: dict):
        return self._account.sign_transaction(transaction)

    @contextmanager
    def account_nonce(self, fetch_pending_count: Callable[[], int]) -> Iterator[int]:
        with self._nonce_lock:
            nonce = max(fetch_pending_count(), self._next_nonce or 0)
            try:
                yield nonce
            except BaseException:
                # The slot may or may not have been consumed; refetch next time.
                self._next_nonce = None
                raise
            self._next_nonce = nonce + 1


def create_signer(network: str, private_key: str, expected_address: str = '') -> Signer:
    if not private_key:
        raise FacilitatorConfigurationError('X402_SIGNER_PRIVATE_KEY is not configured.')
    try:
        account = Account.from_key(private_key)
    except (ValueError, TypeError) as exc:
        raise FacilitatorConfigurationError('X402_SIGNER_PRIVATE_KEY is invalid.') from exc
    if expected_address and Web3.to_checksum_address(expected_address) != account.address:
        raise FacilitatorConfigurationError(
            'X402_SIGNER_ADDRESS does not match X402_SIGNER_PRIVATE_KEY.')
    return Signer(network, account)
