from typing import Any

from identity_deployment.constants import ZERO_ADDRESS
from identity_deployment.errors import DeploymentCancelled


def _abort_unless_confirmed(prompt: str) -> None:
    answer = input(prompt)
    if answer.lower().strip() == "n":
        print("Aborting deployment!")
        raise DeploymentCancelled("Deployment declined by operator.")


def _confirm_deployment(step_name: str) -> None:
    """Asks the user to confirm the deployment of a single step."""
    _abort_unless_confirmed(f"Deploy {step_name} Y/N? ")


def _continue() -> None:
    """Asks the user to continue."""
    _abort_unless_confirmed("Continue Y/N? ")


def _confirm_zero_address() -> None:
    _abort_unless_confirmed("Zero Address detected for deployment parameter; Continue? Y/N? ")


def _contains_zero_address(value: Any) -> bool:
    if isinstance(value, (list, tuple)):
        return any(_contains_zero_address(v) for v in value)
    return value == ZERO_ADDRESS


def _confirm_resolution(resolved_params: Any, step_name: str) -> None:
    """Asks the user to confirm the resolved constructor parameters for a single step."""
    if len(resolved_params) == 0:
        print(f"\n(i) No constructor parameters for {step_name}")
        _confirm_deployment(step_name)
        return

    if isinstance(resolved_params, dict):
        items = list(resolved_params.items())
    else:
        items = [(f"[{position}]", value) for position, value in enumerate(resolved_params)]

    print(f"\nConstructor parameters for {step_name}")
    contains_zero_address = False
    for name, resolved_value in items:
        print(f"\t{name}={_pretty(resolved_value)}")
        if not contains_zero_address:
            contains_zero_address = _contains_zero_address(resolved_value)
    _confirm_deployment(step_name)
    if contains_zero_address:
        _confirm_zero_address()


def _pretty(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)
