import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_keys.exceptions import ValidationError as KeyValidationError
from eth_typing import ChecksumAddress

from identity_deployment.errors import ConfigurationError, DeploymentError


class SignerSession:
    """
    Sequential nonce source for a single run. Created by SignerContext.session
    and threaded through every transaction the run submits.
    """

    def __init__(self, account: LocalAccount, nonce: int):
        self._account = account
        self._nonce = nonce

    @property
    def address(self) -> ChecksumAddress:
        return self._account.address

    @property
    def nonce(self) -> int:
        return self._nonce

    def next_nonce(self) -> int:
        nonce = self._nonce
        self._nonce += 1
        return nonce

    def sign_transaction(self, transaction: Dict[str, Any]):
        return self._account.sign_transaction(transaction)


class SignerContext:
    """The single account used to submit every transaction of a run."""

    def __init__(self, account: LocalAccount):
        self._account = account
        self._lock = threading.Lock()

    @classmethod
    def from_private_key(cls, private_key: str) -> "SignerContext":
        if not private_key:
            raise ConfigurationError("No signer private key configured.")
        try:
            account = Account.from_key(private_key)
        except (ValueError, TypeError, KeyValidationError):
            # never echo key material
            raise ConfigurationError("Configured signer private key is invalid.") from None
        return cls(account)

    @property
    def address(self) -> ChecksumAddress:
        return self._account.address

    @contextmanager
    def session(self, endpoint) -> Iterator[SignerSession]:
        """Acquires the signer for one run; nonces are read once from the endpoint."""
        if not self._lock.acquire(blocking=False):
            raise DeploymentError(
                f"Signer {self.address} is already in use by another deployment run."
            )
        try:
            nonce = endpoint.get_nonce(self.address)
            yield SignerSession(self._account, nonce)
        finally:
            self._lock.release()
