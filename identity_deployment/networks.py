from pathlib import Path
from typing import Dict, NamedTuple, Optional

from identity_deployment.constants import (
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_PRIORITY_FEE,
    NETWORKS_FILEPATH,
)
from identity_deployment.errors import ConfigurationError
from identity_deployment.utils import _load_yaml


class NetworkConfig(NamedTuple):
    name: str
    url: str
    chain_id: Optional[int] = None
    local: bool = False
    poa: bool = False
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    priority_fee: int = DEFAULT_PRIORITY_FEE


def load_networks(filepath: Path = NETWORKS_FILEPATH) -> Dict[str, NetworkConfig]:
    """Loads the network table (name -> NetworkConfig) from a YAML file."""
    try:
        data = _load_yaml(filepath) or dict()
    except FileNotFoundError:
        raise ConfigurationError(f"Networks file not found at {filepath}")

    networks = dict()
    for name, info in data.items():
        if not isinstance(info, dict) or not info.get("url"):
            raise ConfigurationError(f"Network '{name}' has no url in {filepath}")
        chain_id = info.get("chain_id")
        networks[name] = NetworkConfig(
            name=name,
            url=info["url"],
            chain_id=int(chain_id) if chain_id is not None else None,
            local=bool(info.get("local", False)),
            poa=bool(info.get("poa", False)),
            confirmation_timeout=info.get("confirmation_timeout", DEFAULT_CONFIRMATION_TIMEOUT),
            priority_fee=int(info.get("priority_fee", DEFAULT_PRIORITY_FEE)),
        )
    return networks


def get_network(name: str, networks: Optional[Dict[str, NetworkConfig]] = None) -> NetworkConfig:
    networks = load_networks() if networks is None else networks
    try:
        return networks[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown network '{name}'; expected one of: {', '.join(sorted(networks))}."
        )


def is_local_network(network: NetworkConfig) -> bool:
    return network.local


def check_chain_id(network: NetworkConfig, chain_id: int) -> None:
    """Checks the node is on the chain the network (or plan) expects."""
    if network.chain_id is None or is_local_network(network):
        return
    if network.chain_id != chain_id:
        raise ConfigurationError(
            f"chain_id of network '{network.name}' ({network.chain_id}) does not match "
            f"chain_id of the connected node ({chain_id})."
        )
