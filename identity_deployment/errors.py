from typing import List, Optional


class DeploymentError(Exception):
    """Base class for every error raised while preparing or running a deployment."""


class ConfigurationError(DeploymentError):
    """Raised when signer, network or external constant settings are missing or invalid."""


class PlanValidationError(DeploymentError):
    """Raised when a deployment plan is malformed"""


class FactoryResolutionError(DeploymentError):
    """Raised when a contract name cannot be turned into deployable bytecode."""


class TransactionError(DeploymentError):
    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class SubmissionError(TransactionError):
    """Raised when the node rejects a transaction."""


class RevertError(TransactionError):
    """Raised when a transaction is included but reverted."""


class ConfirmationTimeoutError(TransactionError):
    """Raised when no receipt is available within the confirmation timeout."""

    def __init__(self, message: str, tx_hash: Optional[str] = None, timeout: float = 0):
        super().__init__(message, tx_hash=tx_hash)
        self.timeout = timeout


class DeploymentCancelled(DeploymentError):
    """Raised when the operator declines to continue or interrupts the run."""


class StepFailed(DeploymentError):
    """
    Raised (or reported) when a plan step fails. Artifacts of earlier steps
    stay on-chain and are carried along as partial progress.
    """

    def __init__(
        self,
        index: int,
        name: str,
        error: BaseException,
        artifacts: Optional[List] = None,
        address: Optional[str] = None,
    ):
        self.index = index
        self.name = name
        self.error = error
        self.artifacts = list(artifacts or [])
        self.address = address
        message = f"Step #{index + 1} ({name}) failed: {error.__class__.__name__}: {error}"
        if address:
            message += f" (contract was created at {address} before the failure)"
        super().__init__(message)
