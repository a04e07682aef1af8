import typing
from abc import ABC, abstractmethod
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

from hexbytes import HexBytes

from identity_deployment.constants import CONTRACT_KIND, STEP_KINDS, ZERO_ADDRESS
from identity_deployment.encoding import encode_call, split_encode_expression
from identity_deployment.errors import ConfigurationError, PlanValidationError
from identity_deployment.utils import _load_yaml

STEP_CONTRACT_KEY = "contract"
STEP_KIND_KEY = "kind"
STEP_CONSTRUCTOR_KEY = "constructor"
STEP_LIBRARIES_KEY = "libraries"
STEP_INITIALIZER_KEY = "initializer"
STEP_KEYS = {
    STEP_CONTRACT_KEY,
    STEP_KIND_KEY,
    STEP_CONSTRUCTOR_KEY,
    STEP_LIBRARIES_KEY,
    STEP_INITIALIZER_KEY,
}


class ResolutionContext(NamedTuple):
    """Everything a variable may resolve against: prior step addresses, signer and constants."""

    addresses: Dict[str, str]
    deployer: str
    constants: Dict[str, Any]
    eager: bool = False  # dry-run: steps not yet deployed resolve to the zero address


class VariableContext:
    def __init__(
        self,
        prior_steps: List[str],
        step_name: str,
        plan_steps: Optional[List[str]] = None,
    ):
        self.prior_steps = prior_steps or list()
        self.step_name = step_name
        self.plan_steps = plan_steps or list()


# Variables


class Variable(ABC):
    VARIABLE_PREFIX = "$"

    @abstractmethod
    def resolve(self, context: ResolutionContext) -> Any:
        raise NotImplementedError

    @classmethod
    def is_variable(cls, param: Any) -> bool:
        """Returns True if the param is a variable."""
        result = isinstance(param, str) and param.startswith(cls.VARIABLE_PREFIX)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self})"


class DeployerAccount(Variable):
    DEPLOYER_INDICATOR = "deployer"

    @classmethod
    def is_deployer(cls, value: str) -> bool:
        """Returns True if the variable is a special deployer variable."""
        return value == cls.DEPLOYER_INDICATOR

    def resolve(self, context: ResolutionContext) -> Any:
        return context.deployer or ZERO_ADDRESS

    def __str__(self) -> str:
        return f"${self.DEPLOYER_INDICATOR}"


class Constant(Variable):
    def __init__(self, constant_name: str):
        self.constant_name = constant_name

    @classmethod
    def is_constant(cls, value: str) -> bool:
        """Returns True if the variable is a deployment constant."""
        return value.isupper()

    def resolve(self, context: ResolutionContext) -> Any:
        try:
            return context.constants[self.constant_name]
        except KeyError:
            raise ConfigurationError(
                f"Constant '{self.constant_name}' not found in the plan file or configuration."
            )

    def __str__(self) -> str:
        return f"${self.constant_name}"


class Encode(Variable):
    ENCODE_PREFIX = "encode:"

    def __init__(self, variable: str, context: VariableContext):
        expression = variable[len(self.ENCODE_PREFIX) :]
        self.signature, raw_args = split_encode_expression(expression)
        self.method_args = [_process_raw_value(arg, context) for arg in raw_args]

    @classmethod
    def is_encode(cls, value: str) -> bool:
        """Returns True if the variable is a variable that needs encoding to bytes"""
        return value.startswith(cls.ENCODE_PREFIX)

    def resolve(self, context: ResolutionContext) -> Any:
        resolved_method_args = [_resolve_param(arg, context) for arg in self.method_args]
        return HexBytes(encode_call(self.signature, resolved_method_args))

    def __str__(self) -> str:
        args = "".join(f",{arg}" for arg in self.method_args)
        return f"${self.ENCODE_PREFIX}{self.signature}{args}"


class StepAddress(Variable):
    def __init__(self, step_name: str, context: VariableContext):
        if step_name not in context.prior_steps:
            if step_name in context.plan_steps:
                raise PlanValidationError(
                    f"Step '{context.step_name}' references '{step_name}' "
                    f"which is deployed later in the plan."
                )
            raise PlanValidationError(
                f"Step '{context.step_name}' references unknown step '{step_name}'."
            )
        self.step_name = step_name

    def resolve(self, context: ResolutionContext) -> Any:
        """Resolves the address of a previously deployed step."""
        try:
            return context.addresses[self.step_name]
        except KeyError:
            if context.eager:
                return ZERO_ADDRESS
            raise PlanValidationError(f"Step '{self.step_name}' has not been deployed yet.")

    def __str__(self) -> str:
        return f"${self.step_name}"


def _resolve_param(value: Any, context: ResolutionContext) -> Any:
    """Resolves a single parameter value or a list of parameter values."""
    if isinstance(value, list):
        return [_resolve_param(v, context) for v in value]

    if isinstance(value, Variable):
        return value.resolve(context)

    return value  # literally a value


def _resolve_params(parameters: Any, context: ResolutionContext) -> Any:
    if isinstance(parameters, dict):
        resolved_parameters = OrderedDict()
        for name, value in parameters.items():
            resolved_parameters[name] = _resolve_param(value, context)
        return resolved_parameters
    return [_resolve_param(value, context) for value in parameters]


def _variable_from_value(variable: str, context: VariableContext) -> Variable:
    variable = variable[len(Variable.VARIABLE_PREFIX) :]
    if DeployerAccount.is_deployer(variable):
        return DeployerAccount()
    elif Encode.is_encode(variable):
        return Encode(variable, context)
    elif Constant.is_constant(variable):
        return Constant(variable)
    else:
        return StepAddress(variable, context)


def _process_raw_value(value: Any, variable_context: VariableContext) -> Any:
    if isinstance(value, list):
        return [_process_raw_value(v, variable_context) for v in value]

    if Variable.is_variable(value):
        value = _variable_from_value(value, variable_context)

    return value


def _process_raw_values(values: Any, variable_context: VariableContext) -> Any:
    if values is None:
        return OrderedDict()
    if isinstance(values, dict):
        processed_parameters = OrderedDict()
        for name, value in values.items():
            processed_parameters[name] = _process_raw_value(value, variable_context)
        return processed_parameters
    if isinstance(values, list):
        return [_process_raw_value(value, variable_context) for value in values]
    raise PlanValidationError(
        f"Malformed parameters for step '{variable_context.step_name}': "
        f"expected a mapping or a list."
    )


class Initializer(NamedTuple):
    """A post-deployment call submitted to the freshly created contract."""

    signature: str
    args: List[Any]

    def encode(self, context: ResolutionContext) -> HexBytes:
        resolved_args = [_resolve_param(arg, context) for arg in self.args]
        return HexBytes(encode_call(self.signature, resolved_args))


class DeploymentStep(NamedTuple):
    name: str
    contract: str
    kind: str = CONTRACT_KIND
    constructor: Any = None
    libraries: Optional[Dict[str, Any]] = None
    initializer: Optional[Initializer] = None

    def resolve_constructor(self, context: ResolutionContext) -> Any:
        return _resolve_params(self.constructor or OrderedDict(), context)

    def resolve_libraries(self, context: ResolutionContext) -> Dict[str, str]:
        return _resolve_params(self.libraries or OrderedDict(), context)

    def references(self) -> List[str]:
        """Names of earlier steps this step depends on."""
        found = list()

        def _collect(value):
            if isinstance(value, list):
                for v in value:
                    _collect(v)
            elif isinstance(value, StepAddress):
                if value.step_name not in found:
                    found.append(value.step_name)
            elif isinstance(value, Encode):
                _collect(value.method_args)

        constructor = self.constructor or list()
        _collect(list(constructor.values()) if isinstance(constructor, dict) else constructor)
        _collect(list((self.libraries or dict()).values()))
        if self.initializer:
            _collect(self.initializer.args)
        return found


def _get_step_names(config: typing.Dict) -> List[str]:
    step_names = list()
    for step_info in config["steps"]:
        if isinstance(step_info, str):
            step_names.append(step_info)
        elif isinstance(step_info, dict) and len(step_info) == 1:
            step_names.extend(list(step_info.keys()))
        else:
            raise PlanValidationError("Malformed deployment plan YAML.")

    for step_name in step_names:
        if Constant.is_constant(step_name) or DeployerAccount.is_deployer(step_name):
            # would be shadowed by a constant or the deployer variable
            raise PlanValidationError(f"Step name '{step_name}' is reserved.")

    return step_names


def _step_from_config(
    step_info: Any, prior_steps: List[str], plan_steps: List[str]
) -> DeploymentStep:
    if isinstance(step_info, str):
        return DeploymentStep(name=step_info, contract=step_info)

    step_name = list(step_info.keys())[0]  # only one entry
    step_data = step_info[step_name] or dict()
    if not isinstance(step_data, dict):
        raise PlanValidationError(f"Malformed step '{step_name}' in deployment plan YAML.")
    unknown_keys = set(step_data) - STEP_KEYS
    if unknown_keys:
        raise PlanValidationError(
            f"Unknown key(s) {', '.join(sorted(unknown_keys))} for step '{step_name}'."
        )

    kind = step_data.get(STEP_KIND_KEY, CONTRACT_KIND)
    if kind not in STEP_KINDS:
        raise PlanValidationError(f"Step '{step_name}' has unknown kind '{kind}'.")

    context = VariableContext(
        prior_steps=prior_steps, step_name=step_name, plan_steps=plan_steps
    )
    constructor = _process_raw_values(step_data.get(STEP_CONSTRUCTOR_KEY), context)

    libraries = step_data.get(STEP_LIBRARIES_KEY) or dict()
    if not isinstance(libraries, dict):
        raise PlanValidationError(f"Libraries for step '{step_name}' must be a mapping.")
    libraries = _process_raw_values(libraries, context)

    initializer = None
    initializer_data = step_data.get(STEP_INITIALIZER_KEY)
    if initializer_data:
        if not isinstance(initializer_data, dict) or "signature" not in initializer_data:
            raise PlanValidationError(
                f"Initializer for step '{step_name}' requires a 'signature'."
            )
        args = initializer_data.get("args") or list()
        initializer = Initializer(
            signature=initializer_data["signature"],
            args=[_process_raw_value(arg, context) for arg in args],
        )

    return DeploymentStep(
        name=step_name,
        contract=step_data.get(STEP_CONTRACT_KEY, step_name),
        kind=kind,
        constructor=constructor,
        libraries=libraries,
        initializer=initializer,
    )


class DeploymentPlan:
    """
    Ordered sequence of deployment steps. Every address reference in a step
    names a step earlier in the sequence; this is checked on construction.
    """

    def __init__(
        self,
        steps: List[DeploymentStep],
        name: str = "",
        chain_id: Optional[int] = None,
        constants: Optional[Dict[str, Any]] = None,
        artifacts: Optional[Dict[str, Any]] = None,
    ):
        self.steps = list(steps)
        self.name = name
        self.chain_id = chain_id
        self.constants = constants or dict()
        self.artifacts = artifacts or dict()
        self._validate()

    def _validate(self) -> None:
        if not self.steps:
            raise PlanValidationError("Deployment plan has no steps.")
        seen = list()
        for step in self.steps:
            if step.name in seen:
                raise PlanValidationError(f"Duplicate step name '{step.name}' in plan.")
            for reference in step.references():
                if reference not in seen:
                    raise PlanValidationError(
                        f"Step '{step.name}' references '{reference}' "
                        f"which is not deployed before it."
                    )
            seen.append(step.name)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self):
        return iter(self.steps)

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    @classmethod
    def from_config(cls, config: typing.Dict) -> "DeploymentPlan":
        """Builds a plan from a parsed YAML mapping."""
        if not isinstance(config, dict):
            raise PlanValidationError("Deployment plan must be a mapping.")
        if not config.get("steps"):
            raise PlanValidationError("Deployment plan missing 'steps' field.")

        deployment = config.get("deployment") or dict()
        chain_id = deployment.get("chain_id")
        constants = config.get("constants") or dict()
        for constant_name in constants:
            if not Constant.is_constant(constant_name):
                raise PlanValidationError(f"Constant name '{constant_name}' must be upper case.")

        plan_steps = _get_step_names(config)
        steps = list()
        for step_info in config["steps"]:
            prior_steps = [step.name for step in steps]
            steps.append(_step_from_config(step_info, prior_steps, plan_steps))

        return cls(
            steps=steps,
            name=deployment.get("name", ""),
            chain_id=int(chain_id) if chain_id is not None else None,
            constants=constants,
            artifacts=config.get("artifacts"),
        )

    @classmethod
    def from_yaml(cls, filepath: Path) -> "DeploymentPlan":
        try:
            config = _load_yaml(filepath)
        except FileNotFoundError:
            raise PlanValidationError(f"Deployment plan not found at {filepath}")
        return cls.from_config(config)
