import json
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, NamedTuple

from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address

from identity_deployment.encoding import ABI
from identity_deployment.factory import ContractFactory
from identity_deployment.orchestrator import DeployedArtifact
from identity_deployment.utils import _load_json

ChainId = int
StepName = str
RegistryData = Dict[str, Dict[StepName, Dict]]

REGISTRY_JSON_FORMAT = {"indent": 4, "separators": (",", ": ")}
RECORD_FIELDS = ("contract", "kind", "address", "abi", "tx_hash", "block_number", "deployer")


class RegistryEntry(NamedTuple):
    """One deployed step as recorded for a chain."""

    chain_id: ChainId
    name: StepName
    contract: str
    kind: str
    address: ChecksumAddress
    abi: ABI
    tx_hash: str
    block_number: int
    deployer: ChecksumAddress

    def record(self) -> Dict:
        abi = sorted(self.abi, key=lambda item: (item["type"], item.get("name", "")))
        record = {field: getattr(self, field) for field in RECORD_FIELDS}
        record.update(abi=abi, block_number=int(self.block_number))
        return record


def entries_from_artifacts(
    artifacts: List[DeployedArtifact],
    factory: ContractFactory,
    chain_id: ChainId,
    deployer: ChecksumAddress,
) -> List[RegistryEntry]:
    """Pairs each confirmed step with the ABI its contract was deployed from."""
    return [
        RegistryEntry(
            chain_id=chain_id,
            name=artifact.name,
            contract=artifact.contract,
            kind=artifact.kind,
            address=to_checksum_address(artifact.address),
            abi=factory.get_artifact(artifact.contract).abi,
            tx_hash=artifact.tx_hash,
            block_number=artifact.block_number,
            deployer=deployer,
        )
        for artifact in artifacts
    ]


def read_registry(filepath: Path) -> List[RegistryEntry]:
    entries = list()
    for chain_id, steps in _load_json(filepath).items():
        for name, record in steps.items():
            fields = {field: record[field] for field in RECORD_FIELDS}
            entries.append(RegistryEntry(chain_id=int(chain_id), name=name, **fields))
    return entries


def _registry_data(entries: List[RegistryEntry]) -> RegistryData:
    data = defaultdict(dict)
    for entry in sorted(entries, key=lambda e: (e.chain_id, e.name)):
        data[str(entry.chain_id)][entry.name] = entry.record()
    return dict(data)


def write_registry(entries: List[RegistryEntry], filepath: Path, silent: bool = False) -> Path:
    """
    Writes entries to a registry file, merging with the chains already in it.
    A chain id already present is never rewritten; the new data goes to a
    sibling ``.unmerged.json`` file instead.
    """
    if not entries:
        print("No entries provided.")
        return filepath

    data = _registry_data(entries)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    if filepath.exists():
        existing = _load_json(filepath)
        overlap = sorted(set(existing) & set(data))
        if overlap:
            filepath = filepath.with_suffix(".unmerged.json")
            if not silent:
                print(
                    f"Registry already holds chain id(s) {', '.join(overlap)}; "
                    f"writing to {filepath} instead."
                )
        else:
            if not silent:
                print(f"Adding chain id(s) {', '.join(data)} to {filepath}.")
            data = dict(existing, **data)
    elif not silent:
        print(f"Creating new registry at {filepath}.")

    with open(filepath, "w") as file:
        json.dump(data, file, **REGISTRY_JSON_FORMAT)
    return filepath


def registry_from_artifacts(
    artifacts: List[DeployedArtifact],
    factory: ContractFactory,
    chain_id: ChainId,
    deployer: ChecksumAddress,
    output_filepath: Path,
) -> Path:
    """Records the (possibly partial) artifacts of a run."""
    entries = entries_from_artifacts(artifacts, factory, chain_id=chain_id, deployer=deployer)
    output_filepath = write_registry(entries, filepath=output_filepath)
    print(f"(i) Registry written to {output_filepath}")
    return output_filepath
