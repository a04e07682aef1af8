import json
from pathlib import Path
from typing import Dict, List, Set

import yaml

from identity_deployment.constants import ARTIFACTS_DIR, PLANS_DIR
from identity_deployment.errors import ConfigurationError


def _load_yaml(filepath: Path) -> dict:
    with open(filepath, "r") as file:
        return yaml.safe_load(file)


def _load_json(filepath: Path) -> dict:
    with open(filepath, "r") as file:
        return json.load(file)


def get_artifact_filepath(artifacts: Dict) -> Path:
    """Registry file named by the 'artifacts' section of a plan; 'dir' defaults to the package."""
    filename = artifacts.get("filename")
    if not filename:
        raise ConfigurationError("The plan's 'artifacts' section has no 'filename'.")
    return Path(artifacts.get("dir", ARTIFACTS_DIR)) / filename


def published_chain_ids(registry_filepath: Path) -> Set[int]:
    if not registry_filepath.exists():
        return set()
    return {int(chain_id) for chain_id in _load_json(registry_filepath)}


def check_registry_filepath(registry_filepath: Path, chain_id: int) -> None:
    """Refuses to deploy to a chain the registry file already records."""
    if chain_id in published_chain_ids(registry_filepath):
        raise ConfigurationError(
            f"Deployment is already published for chain_id {chain_id} in {registry_filepath}."
        )


def bundled_plans() -> List[str]:
    return sorted(path.stem for path in PLANS_DIR.glob("*.yml"))


def plan_filepath_from_name(name: str) -> Path:
    filepath = PLANS_DIR / f"{name}.yml"
    if not filepath.exists():
        raise ConfigurationError(
            f"No deployment plan found named '{name}'; bundled plans: {', '.join(bundled_plans())}"
        )
    return filepath
