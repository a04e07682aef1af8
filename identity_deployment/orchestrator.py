from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

from eth_typing import ChecksumAddress
from eth_utils import to_hex
from hexbytes import HexBytes

from identity_deployment.chain import ChainEndpoint
from identity_deployment.confirm import _confirm_resolution, _pretty
from identity_deployment.constants import DEFAULT_CONFIRMATION_TIMEOUT
from identity_deployment.encoding import encode_constructor_args
from identity_deployment.errors import (
    DeploymentCancelled,
    StepFailed,
    TransactionError,
)
from identity_deployment.factory import ContractArtifact, ContractFactory
from identity_deployment.plan import DeploymentPlan, DeploymentStep, ResolutionContext
from identity_deployment.signer import SignerContext, SignerSession


class StepState(Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class RunState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class DeployedArtifact(NamedTuple):
    """Result of a confirmed step. Held for the duration of a run only."""

    name: str
    contract: str
    kind: str
    address: ChecksumAddress
    tx_hash: str
    block_number: int
    initializer_tx_hash: Optional[str] = None


class ResolvedStep(NamedTuple):
    step: DeploymentStep
    artifact: ContractArtifact
    constructor_args: Any
    libraries: Dict[str, str]
    payload: str
    initializer_data: Optional[HexBytes]


class DeploymentResult:
    def __init__(self, plan: DeploymentPlan):
        self.plan = plan
        self.state = RunState.PENDING
        self.step_states = [StepState.PENDING for _ in plan.steps]
        self.artifacts: List[DeployedArtifact] = list()
        self.failure: Optional[StepFailed] = None

    @property
    def ok(self) -> bool:
        return self.state == RunState.COMPLETED

    def addresses(self) -> Dict[str, ChecksumAddress]:
        return {artifact.name: artifact.address for artifact in self.artifacts}

    def raise_for_status(self) -> None:
        if self.failure is not None:
            raise self.failure


def _label(step: DeploymentStep) -> str:
    if step.name == step.contract:
        return step.name
    return f"{step.name} ({step.contract})"


class Orchestrator:
    """
    Executes a deployment plan step by step with a single signer.

    Steps run strictly in plan order; each one may use the addresses of the
    steps before it. The first failure aborts the rest of the plan, and
    whatever was confirmed before it is reported as partial progress.
    Nothing is retried.
    """

    def __init__(
        self,
        factory: ContractFactory,
        endpoint: ChainEndpoint,
        signer: SignerContext,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        constants: Optional[Dict[str, Any]] = None,
        interactive: bool = False,
    ):
        self.factory = factory
        self.endpoint = endpoint
        self.signer = signer
        self.confirmation_timeout = confirmation_timeout
        self.constants = constants or dict()
        self.interactive = interactive

    def _context(
        self,
        plan: DeploymentPlan,
        deployer: ChecksumAddress,
        addresses: Dict[str, ChecksumAddress],
        eager: bool = False,
    ) -> ResolutionContext:
        constants = dict(plan.constants)
        constants.update(self.constants)  # configuration wins over plan defaults
        return ResolutionContext(
            addresses=dict(addresses), deployer=deployer, constants=constants, eager=eager
        )

    def resolve_step(self, step: DeploymentStep, context: ResolutionContext) -> ResolvedStep:
        """Resolves arguments, links libraries and builds the creation payload of a step."""
        constructor_args = step.resolve_constructor(context)
        libraries = step.resolve_libraries(context)
        artifact, bytecode = self.factory.deployable(step.contract, libraries)
        encoded_args = encode_constructor_args(step.name, artifact.abi, constructor_args)
        initializer_data = step.initializer.encode(context) if step.initializer else None
        return ResolvedStep(
            step=step,
            artifact=artifact,
            constructor_args=constructor_args,
            libraries=libraries,
            payload=bytecode + encoded_args.hex(),
            initializer_data=initializer_data,
        )

    def dry_run(self, plan: DeploymentPlan) -> List[ResolvedStep]:
        """
        Eagerly validates a plan without submitting anything.
        Addresses of steps that would be deployed earlier resolve to the zero address.
        """
        print(f"Validating deployment plan '{plan.name}'...")
        context = self._context(plan, deployer=self.signer.address, addresses={}, eager=True)
        resolved_steps = list()
        for index, step in enumerate(plan):
            resolved = self.resolve_step(step, context)
            print(f"\n#{index + 1} [{step.kind}] {_label(step)}")
            for library, address in resolved.libraries.items():
                print(f"\tlink {library}={address}")
            constructor_args = resolved.constructor_args
            if isinstance(constructor_args, dict):
                for name, value in constructor_args.items():
                    print(f"\t{name}={_pretty(value)}")
            else:
                for position, value in enumerate(constructor_args):
                    print(f"\t[{position}]={_pretty(value)}")
            if step.initializer:
                print(f"\tthen {step.initializer.signature} ({to_hex(resolved.initializer_data)})")
            resolved_steps.append(resolved)
        print(f"\n(i) Plan '{plan.name}' is valid: {len(resolved_steps)} step(s).")
        return resolved_steps

    def _initialize(
        self,
        step: DeploymentStep,
        address: ChecksumAddress,
        calldata: HexBytes,
        session: SignerSession,
    ) -> str:
        print(f"\nCalling {step.initializer.signature} on {step.name} at {address}")
        tx_hash = self.endpoint.submit(session, {"to": address, "data": to_hex(calldata)})
        self.endpoint.wait_for_receipt(tx_hash, timeout=self.confirmation_timeout)
        return tx_hash

    def _execute_step(
        self,
        index: int,
        step: DeploymentStep,
        plan: DeploymentPlan,
        session: SignerSession,
        result: DeploymentResult,
    ) -> DeployedArtifact:
        context = self._context(plan, deployer=session.address, addresses=result.addresses())
        created_address = None
        try:
            resolved = self.resolve_step(step, context)
            if self.interactive:
                _confirm_resolution(resolved.constructor_args, step.name)

            tx_hash = self.endpoint.submit(session, {"data": resolved.payload})
            result.step_states[index] = StepState.SUBMITTED
            receipt = self.endpoint.wait_for_receipt(tx_hash, timeout=self.confirmation_timeout)
            if not receipt.contract_address:
                raise TransactionError(
                    f"Receipt of {tx_hash} does not contain a contract address.", tx_hash=tx_hash
                )
            created_address = receipt.contract_address

            initializer_tx_hash = None
            if step.initializer:
                initializer_tx_hash = self._initialize(
                    step, created_address, resolved.initializer_data, session
                )
        except KeyboardInterrupt:
            result.step_states[index] = StepState.FAILED
            error = DeploymentCancelled("Interrupted by operator.")
            raise StepFailed(index, step.name, error, result.artifacts, created_address)
        except Exception as e:
            result.step_states[index] = StepState.FAILED
            raise StepFailed(index, step.name, e, result.artifacts, created_address) from e

        result.step_states[index] = StepState.CONFIRMED
        return DeployedArtifact(
            name=step.name,
            contract=step.contract,
            kind=step.kind,
            address=created_address,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            initializer_tx_hash=initializer_tx_hash,
        )

    def run(self, plan: DeploymentPlan) -> DeploymentResult:
        """Deploys every step of the plan in order; never raises for step failures."""
        result = DeploymentResult(plan)
        result.state = RunState.RUNNING
        print(f"\nDeploying plan '{plan.name}' ({len(plan)} steps) from {self.signer.address}")
        try:
            with self.signer.session(self.endpoint) as session:
                for index, step in enumerate(plan):
                    artifact = self._execute_step(index, step, plan, session, result)
                    result.artifacts.append(artifact)
                    print(f"[{step.kind}] {_label(step)} deployed to: {artifact.address}")
        except StepFailed as failure:
            self._abort(result, failure)
        except (Exception, KeyboardInterrupt) as e:
            # failed outside of a step (e.g. acquiring the signer); blame the next pending step
            index = len(result.artifacts)
            if isinstance(e, KeyboardInterrupt):
                e = DeploymentCancelled("Interrupted by operator.")
            step_name = plan.steps[index].name if index < len(plan) else plan.name
            self._abort(result, StepFailed(index, step_name, e, result.artifacts))
        else:
            result.state = RunState.COMPLETED
            print(f"\n(i) Plan '{plan.name}' completed: {len(result.artifacts)} artifact(s).")
        return result

    @staticmethod
    def _abort(result: DeploymentResult, failure: StepFailed) -> None:
        result.state = RunState.ABORTED
        result.failure = failure
        print(f"\n(!) Deployment aborted. {failure}")
        if not result.artifacts:
            print("No steps were completed.")
            return
        print("Completed steps (already on-chain):")
        for artifact in result.artifacts:
            print(f"\t[{artifact.kind}] {artifact.name} at {artifact.address}")
