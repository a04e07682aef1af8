from abc import ABC, abstractmethod
from typing import Any, Dict, NamedTuple, Optional

from eth_typing import ChecksumAddress
from eth_utils import to_hex
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

from identity_deployment.constants import DEFAULT_PRIORITY_FEE
from identity_deployment.errors import (
    ConfigurationError,
    ConfirmationTimeoutError,
    RevertError,
    SubmissionError,
    TransactionError,
)
from identity_deployment.signer import SignerSession

# errors web3 surfaces for rejected transactions and unreachable nodes
NODE_ERRORS = (Web3Exception, ValueError, OSError)


class Receipt(NamedTuple):
    tx_hash: str
    contract_address: Optional[ChecksumAddress]
    block_number: int
    status: int


class ChainEndpoint(ABC):
    """Submit-and-wait-for-receipt interface the orchestrator needs from a network."""

    @property
    @abstractmethod
    def chain_id(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def get_nonce(self, address: ChecksumAddress) -> int:
        raise NotImplementedError

    @abstractmethod
    def submit(self, session: SignerSession, transaction: Dict[str, Any]) -> str:
        """Signs and sends a transaction; returns its hash. Raises SubmissionError."""
        raise NotImplementedError

    @abstractmethod
    def wait_for_receipt(self, tx_hash: str, timeout: float) -> Receipt:
        """
        Blocks until the transaction is included.
        Raises ConfirmationTimeoutError or RevertError.
        """
        raise NotImplementedError


class Web3Endpoint(ChainEndpoint):
    def __init__(self, w3: Web3, priority_fee: int = DEFAULT_PRIORITY_FEE):
        self.w3 = w3
        self.priority_fee = priority_fee
        self._chain_id = None

    @classmethod
    def from_url(
        cls, url: str, poa: bool = False, request_timeout: int = 30, **kwargs
    ) -> "Web3Endpoint":
        w3 = Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": request_timeout}))
        if poa:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return cls(w3, **kwargs)

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            try:
                self._chain_id = self.w3.eth.chain_id
            except NODE_ERRORS as e:
                raise ConfigurationError(f"Unable to reach network: {e}") from e
        return self._chain_id

    def get_nonce(self, address: ChecksumAddress) -> int:
        try:
            return self.w3.eth.get_transaction_count(address, "pending")
        except NODE_ERRORS as e:
            raise ConfigurationError(f"Unable to read nonce for {address}: {e}") from e

    def _fee_fields(self) -> Dict[str, int]:
        latest = self.w3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is not None:
            return {
                "maxPriorityFeePerGas": self.priority_fee,
                "maxFeePerGas": 2 * base_fee + self.priority_fee,
            }
        return {"gasPrice": self.w3.eth.gas_price}

    def submit(self, session: SignerSession, transaction: Dict[str, Any]) -> str:
        tx = {"value": 0, **transaction, "from": session.address}
        try:
            tx.update(self._fee_fields())
            if "gas" not in tx:
                tx["gas"] = self.w3.eth.estimate_gas(tx)
            tx["chainId"] = self.chain_id
            tx["nonce"] = session.nonce
            signed = session.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except NODE_ERRORS as e:
            raise SubmissionError(f"Transaction rejected: {e}") from e
        except Exception as e:
            # providers raise their own errors for failed estimation (e.g. eth-tester)
            raise SubmissionError(f"Transaction rejected: {e.__class__.__name__}: {e}") from e
        session.next_nonce()  # only consumed once the node accepted it
        return to_hex(tx_hash)

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> Receipt:
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted:
            raise ConfirmationTimeoutError(
                f"Transaction {tx_hash} not confirmed within {timeout} seconds.",
                tx_hash=tx_hash,
                timeout=timeout,
            )
        except NODE_ERRORS as e:
            raise TransactionError(f"Failed waiting for {tx_hash}: {e}", tx_hash=tx_hash) from e

        result = Receipt(
            tx_hash=to_hex(receipt["transactionHash"]),
            contract_address=receipt.get("contractAddress"),
            block_number=receipt["blockNumber"],
            status=receipt["status"],
        )
        if result.status == 0:
            raise RevertError(
                f"Transaction {tx_hash} reverted in block {result.block_number}.", tx_hash=tx_hash
            )
        return result
