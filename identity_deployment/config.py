import os
from typing import Dict, Mapping, NamedTuple, Optional, Tuple

from eth_utils import is_address, to_checksum_address

from identity_deployment.constants import (
    PRIVATE_KEY_ENVVAR,
    PROVIDER_URL_ENVVAR,
    PUBLIC_ADDRESS_ENVVAR,
)
from identity_deployment.errors import ConfigurationError
from identity_deployment.networks import NetworkConfig, get_network

# constants taken from the environment when set; referenced in plans as $NAME
ENVIRONMENT_CONSTANTS = [PUBLIC_ADDRESS_ENVVAR]


class Settings(NamedTuple):
    network: NetworkConfig
    provider_url: str
    private_key: str
    constants: Dict[str, str]

    def __repr__(self) -> str:
        # keep key material out of tracebacks and logs
        return (
            f"Settings(network={self.network.name!r}, provider_url={self.provider_url!r}, "
            f"constants={self.constants!r})"
        )


def _checksum_constant(name: str, value: str) -> str:
    if not is_address(value):
        raise ConfigurationError(f"{name} is not a valid address: '{value}'")
    return to_checksum_address(value)


def parse_constant(text: str) -> Tuple[str, str]:
    """Splits a NAME=VALUE constant override given on the command line."""
    name, separator, value = text.partition("=")
    name = name.strip()
    if not separator or not name:
        raise ConfigurationError(f"Malformed constant '{text}'; expected NAME=VALUE.")
    if not name.isupper():
        raise ConfigurationError(f"Constant name '{name}' must be upper case.")
    return name, value.strip()


def load_settings(
    network_name: str,
    env: Optional[Mapping[str, str]] = None,
    networks: Optional[Dict[str, NetworkConfig]] = None,
    constant_overrides: Optional[Dict[str, str]] = None,
) -> Settings:
    """
    Reads signer, provider and external constants for a network.
    The environment is expected to be populated already (e.g. by load_dotenv).
    """
    env = os.environ if env is None else env
    network = get_network(network_name, networks=networks)

    private_key = env.get(PRIVATE_KEY_ENVVAR)
    if not private_key:
        raise ConfigurationError(f"{PRIVATE_KEY_ENVVAR} is not set.")

    provider_url = env.get(PROVIDER_URL_ENVVAR) or network.url
    if not provider_url:
        raise ConfigurationError(f"No provider url for network '{network.name}'.")

    constants = dict()
    for name in ENVIRONMENT_CONSTANTS:
        value = env.get(name)
        if value:
            constants[name] = _checksum_constant(name, value)
    for name, value in (constant_overrides or dict()).items():
        if name in ENVIRONMENT_CONSTANTS:
            value = _checksum_constant(name, value)
        constants[name] = value

    return Settings(
        network=network,
        provider_url=provider_url,
        private_key=private_key,
        constants=constants,
    )
