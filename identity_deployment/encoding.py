import typing
from typing import Any, List, Sequence, Tuple

from eth_abi import decode, encode, is_encodable, is_encodable_type
from eth_utils import function_signature_to_4byte_selector, to_bytes

from identity_deployment.errors import PlanValidationError

ABI = List[typing.Dict[str, Any]]


def abi_type(abi_input: typing.Dict[str, Any]) -> str:
    """Returns the canonical type string of an ABI input (tuples are expanded)."""
    input_type = abi_input["type"]
    if input_type.startswith("tuple"):
        array_suffix = input_type[len("tuple") :]
        components = ",".join(abi_type(c) for c in abi_input.get("components", []))
        return f"({components}){array_suffix}"
    return input_type


def abi_types(abi_inputs: Sequence[typing.Dict[str, Any]]) -> List[str]:
    return [abi_type(abi_input) for abi_input in abi_inputs]


def _split_types(types: str) -> List[str]:
    """Splits a comma separated list of ABI types, respecting tuple parentheses."""
    if not types:
        return []
    result, depth, current = list(), 0, ""
    for char in types:
        if char == "," and depth == 0:
            result.append(current)
            current = ""
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        current += char
    result.append(current)
    return result


def _closing_parenthesis(value: str, open_index: int) -> int:
    depth = 0
    for index in range(open_index, len(value)):
        if value[index] == "(":
            depth += 1
        elif value[index] == ")":
            depth -= 1
            if depth == 0:
                return index
    raise PlanValidationError(f"Unbalanced parentheses in function signature '{value}'")


def parse_signature(signature: str) -> Tuple[str, List[str]]:
    """Parses 'name(type1,type2)' into its name and argument types."""
    signature = signature.replace(" ", "")
    open_index = signature.find("(")
    if open_index <= 0:
        raise PlanValidationError(f"Malformed function signature '{signature}'")
    close_index = _closing_parenthesis(signature, open_index)
    if close_index != len(signature) - 1:
        raise PlanValidationError(f"Malformed function signature '{signature}'")

    name = signature[:open_index]
    types = _split_types(signature[open_index + 1 : close_index])
    for arg_type in types:
        if not is_encodable_type(arg_type):
            raise PlanValidationError(f"Unknown ABI type '{arg_type}' in signature '{signature}'")
    return name, types


def split_encode_expression(expression: str) -> Tuple[str, List[str]]:
    """
    Splits 'initialize(address,address),$A,$B' into the function signature
    and the raw (unprocessed) argument strings.
    """
    expression = expression.strip()
    open_index = expression.find("(")
    if open_index <= 0:
        raise PlanValidationError(f"Malformed encode expression '{expression}'")
    close_index = _closing_parenthesis(expression, open_index)
    signature = expression[: close_index + 1]
    remainder = expression[close_index + 1 :].strip()
    if not remainder:
        return signature, []
    if not remainder.startswith(","):
        raise PlanValidationError(f"Malformed encode expression '{expression}'")
    return signature, [arg.strip() for arg in remainder[1:].split(",")]


def normalize_arg(arg_type: str, value: Any) -> Any:
    """Coerces values read from YAML or the command line into what eth-abi expects."""
    if arg_type.endswith("]") and isinstance(value, (list, tuple)):
        element_type = arg_type[: arg_type.rindex("[")]
        return [normalize_arg(element_type, v) for v in value]
    if arg_type.startswith("bytes") and isinstance(value, str):
        return to_bytes(hexstr=value)
    if arg_type.startswith(("uint", "int")) and isinstance(value, str):
        return int(value, 0)
    return value


def validate_args(types: Sequence[str], args: Sequence[Any], description: str) -> List[Any]:
    """Normalizes and checks that every argument is encodable as its ABI type."""
    if len(types) != len(args):
        raise PlanValidationError(
            f"{description} requires {len(types)} argument(s), got {len(args)}."
        )
    normalized = list()
    for position, (arg_type, value) in enumerate(zip(types, args)):
        try:
            value = normalize_arg(arg_type, value)
        except ValueError:
            pass  # reported by the encodability check below
        if not is_encodable(arg_type, value):
            raise PlanValidationError(
                f"{description} argument at position {position} has a value '{value}' "
                f"whose type does not match expected ABI type '{arg_type}'"
            )
        normalized.append(value)
    return normalized


def encode_call(signature: str, args: Sequence[Any]) -> bytes:
    """ABI encodes a function call: 4-byte selector followed by the encoded arguments."""
    name, types = parse_signature(signature)
    normalized = validate_args(types, args, description=f"Function '{signature}'")
    canonical_signature = f"{name}({','.join(types)})"
    selector = function_signature_to_4byte_selector(canonical_signature)
    return selector + encode(types, normalized)


def decode_call(signature: str, calldata: bytes) -> Tuple[Any, ...]:
    """Decodes calldata produced for the given signature; the selector must match."""
    name, types = parse_signature(signature)
    selector = function_signature_to_4byte_selector(f"{name}({','.join(types)})")
    if bytes(calldata[:4]) != selector:
        raise ValueError(f"Calldata does not start with the selector of '{signature}'")
    return decode(types, bytes(calldata[4:]))


def constructor_inputs(abi: ABI) -> List[typing.Dict[str, Any]]:
    for entry in abi:
        if entry.get("type") == "constructor":
            return list(entry.get("inputs", []))
    return list()


def encode_constructor_args(contract_name: str, abi: ABI, params: Any) -> bytes:
    """
    Validates constructor parameters against the constructor ABI and encodes them.

    ``params`` is either a mapping of parameter name to value (names and order
    must match the ABI) or a positional sequence.
    """
    abi_inputs = constructor_inputs(abi)
    if isinstance(params, dict):
        if len(params) != len(abi_inputs):
            raise PlanValidationError(
                f"Constructor parameters length mismatch - "
                f"{contract_name} ABI requires {len(abi_inputs)}, Got {len(params)}."
            )
        codex = enumerate(zip(abi_inputs, params.keys()))
        for position, (abi_input, name) in codex:
            if abi_input.get("name") != name:
                raise PlanValidationError(
                    f"{contract_name} constructor parameter '{name}' at position {position} does "
                    f"not match the expected ABI name '{abi_input.get('name')}'."
                )
        values = list(params.values())
    else:
        values = list(params or [])

    types = abi_types(abi_inputs)
    normalized = validate_args(types, values, description=f"{contract_name} constructor")
    if not types:
        return b""
    return encode(types, normalized)
