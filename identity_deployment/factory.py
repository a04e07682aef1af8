import re
import typing
from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

from eth_utils import is_address, keccak, remove_0x_prefix, to_checksum_address

from identity_deployment.constants import APE_FACTORY, HARDHAT_FACTORY
from identity_deployment.encoding import ABI
from identity_deployment.errors import FactoryResolutionError
from identity_deployment.utils import _load_json

# source name -> library name -> [{"start": byte offset, "length": 20}, ...]
LinkReferences = Dict[str, Dict[str, List[Dict[str, int]]]]

PLACEHOLDER_PATTERN = re.compile(r"__\$[0-9a-fA-F]{34}\$__")


class ContractArtifact(NamedTuple):
    """Deployable representation of a compiled contract."""

    name: str
    source_name: str
    abi: ABI
    bytecode: str
    link_references: Optional[LinkReferences] = None

    @property
    def fully_qualified_name(self) -> str:
        return f"{self.source_name}:{self.name}"

    def library_names(self) -> List[str]:
        """Fully qualified names of the libraries this contract must be linked against."""
        names = list()
        for source_name, libraries in (self.link_references or dict()).items():
            for library_name in libraries:
                names.append(f"{source_name}:{library_name}")
        return names


def library_placeholder(fully_qualified_name: str) -> str:
    """Returns the solc (>=0.5) placeholder for a fully qualified library name."""
    return f"__${keccak(text=fully_qualified_name).hex()[:34]}$__"


def _match_library(given_name: str, library_names: List[str]) -> List[str]:
    return [
        name
        for name in library_names
        if name == given_name or name.rsplit(":", 1)[-1] == given_name
    ]


def _link_by_offsets(
    artifact: ContractArtifact, code: str, libraries: Dict[str, str]
) -> str:
    library_names = artifact.library_names()
    resolved = dict()
    for given_name, address in libraries.items():
        matches = _match_library(given_name, library_names)
        if not matches:
            raise FactoryResolutionError(
                f"{artifact.name} is not linked against a library named '{given_name}'; "
                f"expected one of: {', '.join(library_names) or 'none'}."
            )
        if len(matches) > 1:
            raise FactoryResolutionError(
                f"Ambiguous library name '{given_name}' for {artifact.name}; "
                f"use one of: {', '.join(matches)}."
            )
        if matches[0] in resolved:
            raise FactoryResolutionError(
                f"Library {matches[0]} linked more than once for {artifact.name}."
            )
        resolved[matches[0]] = address

    missing = [name for name in library_names if name not in resolved]
    if missing:
        raise FactoryResolutionError(
            f"Missing library link(s) for {artifact.name}: {', '.join(missing)}."
        )

    for source_name, source_libraries in artifact.link_references.items():
        for library_name, positions in source_libraries.items():
            address_hex = resolved[f"{source_name}:{library_name}"]
            for position in positions:
                start, length = position["start"] * 2, position["length"] * 2
                if length != len(address_hex):
                    raise FactoryResolutionError(
                        f"Unexpected link reference length {position['length']} "
                        f"for {library_name} in {artifact.name}."
                    )
                code = code[:start] + address_hex + code[start + length :]
    return code


def _link_by_placeholders(
    artifact: ContractArtifact, code: str, libraries: Dict[str, str]
) -> str:
    for given_name, address_hex in libraries.items():
        placeholder = library_placeholder(given_name) if ":" in given_name else None
        if not placeholder or placeholder not in code:
            raise FactoryResolutionError(
                f"{artifact.name} is not linked against a library named '{given_name}' "
                f"(libraries must be fully qualified when the artifact has no link references)."
            )
        code = code.replace(placeholder, address_hex)
    return code


def link_bytecode(artifact: ContractArtifact, libraries: Optional[Dict[str, str]] = None) -> str:
    """
    Substitutes library addresses into the artifact's creation bytecode.
    Every library the bytecode refers to must be provided, and nothing else.
    """
    # library name -> unprefixed lower case address, as spliced into the bytecode
    addresses = dict()
    for given_name, address in (libraries or dict()).items():
        if not is_address(address):
            raise FactoryResolutionError(
                f"Invalid address '{address}' for library '{given_name}' of {artifact.name}."
            )
        addresses[given_name] = remove_0x_prefix(to_checksum_address(address)).lower()

    code = artifact.bytecode[2:] if artifact.bytecode.startswith("0x") else artifact.bytecode
    if artifact.link_references:
        code = _link_by_offsets(artifact, code, addresses)
    else:
        code = _link_by_placeholders(artifact, code, addresses)

    if PLACEHOLDER_PATTERN.search(code):
        raise FactoryResolutionError(
            f"{artifact.name} bytecode still contains unlinked library placeholders."
        )
    return "0x" + code


class ContractFactory(ABC):
    """Maps a contract name to its deployable representation."""

    @abstractmethod
    def get_artifact(self, name: str) -> ContractArtifact:
        raise NotImplementedError

    def deployable(
        self, name: str, libraries: Optional[Dict[str, str]] = None
    ) -> typing.Tuple[ContractArtifact, str]:
        """Returns the artifact and its creation bytecode with libraries linked."""
        artifact = self.get_artifact(name)
        if artifact.bytecode in ("", "0x"):
            raise FactoryResolutionError(
                f"{artifact.fully_qualified_name} has no bytecode; "
                f"is it abstract or an interface?"
            )
        return artifact, link_bytecode(artifact, libraries)


def _artifact_from_json(filepath: Path, data: Any) -> Optional[ContractArtifact]:
    """Reads a hardhat or foundry artifact; returns None for other JSON files."""
    if not isinstance(data, dict) or "abi" not in data or "bytecode" not in data:
        return None

    bytecode = data["bytecode"]
    if isinstance(bytecode, str):
        # hardhat
        return ContractArtifact(
            name=data.get("contractName", filepath.stem),
            source_name=data.get("sourceName", filepath.parent.name),
            abi=data["abi"],
            bytecode=bytecode,
            link_references=data.get("linkReferences") or dict(),
        )

    if isinstance(bytecode, dict):
        # foundry
        source_name = filepath.parent.name
        compilation_target = data.get("metadata", {}).get("settings", {}).get(
            "compilationTarget", {}
        )
        for target_source, target_name in compilation_target.items():
            if target_name == filepath.stem:
                source_name = target_source
        return ContractArtifact(
            name=filepath.stem,
            source_name=source_name,
            abi=data["abi"],
            bytecode=bytecode.get("object", ""),
            link_references=bytecode.get("linkReferences") or dict(),
        )

    return None


class ArtifactFactory(ContractFactory):
    """Resolves contracts from a hardhat ``artifacts/`` or foundry ``out/`` directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self._index: Optional[Dict[str, List[ContractArtifact]]] = None

    def _build_index(self) -> Dict[str, List[ContractArtifact]]:
        if not self.directory.is_dir():
            raise FactoryResolutionError(
                f"Build artifacts directory {self.directory} does not exist."
            )
        index = defaultdict(list)
        for filepath in sorted(self.directory.rglob("*.json")):
            if filepath.name.endswith(".dbg.json") or "build-info" in filepath.parts:
                continue
            try:
                data = _load_json(filepath)
            except ValueError:
                continue  # not a JSON artifact
            artifact = _artifact_from_json(filepath, data)
            if artifact is not None:
                index[artifact.name].append(artifact)
        return index

    @property
    def index(self) -> Dict[str, List[ContractArtifact]]:
        if self._index is None:
            self._index = self._build_index()
        return self._index

    def get_artifact(self, name: str) -> ContractArtifact:
        if ":" in name:
            source_name, contract_name = name.rsplit(":", 1)
            candidates = [
                artifact
                for artifact in self.index.get(contract_name, [])
                if artifact.source_name == source_name
            ]
        else:
            candidates = self.index.get(name, [])

        if not candidates:
            raise FactoryResolutionError(
                f"No contract found with name '{name}' in {self.directory}."
            )
        if len(candidates) > 1:
            names = ", ".join(artifact.fully_qualified_name for artifact in candidates)
            raise FactoryResolutionError(
                f"Ambiguous contract name '{name}'; use a fully qualified name: {names}."
            )
        return candidates[0]


class ApeProjectFactory(ContractFactory):
    """Resolves contracts from the compiled contract types of an ape project."""

    def __init__(self, project=None):
        self._project = project

    @property
    def project(self):
        if self._project is None:
            from ape import project  # connects to the ape project only when selected

            self._project = project
        return self._project

    def _get_dependency_contract_container(self, contract: str):
        for dependency in self.project.dependencies.specified:
            try:
                return getattr(dependency.project, contract)
            except AttributeError:
                continue
        raise FactoryResolutionError(f"No contract found with name '{contract}'.")

    def get_contract_container(self, contract: str):
        try:
            contract_container = getattr(self.project, contract)
        except AttributeError:
            # not in root project; check dependencies
            contract_container = self._get_dependency_contract_container(contract)
        return contract_container

    def get_artifact(self, name: str) -> ContractArtifact:
        contract_type = self.get_contract_container(name).contract_type
        abi = [entry.model_dump(mode="json", by_alias=True) for entry in contract_type.abi]

        deployment_bytecode = contract_type.deployment_bytecode
        bytecode = (deployment_bytecode.bytecode if deployment_bytecode else None) or ""
        source_name = contract_type.source_id or name

        link_references = defaultdict(dict)
        for reference in getattr(deployment_bytecode, "link_references", None) or []:
            link_references[source_name][reference.name] = [
                {"start": offset, "length": reference.length} for offset in reference.offsets
            ]

        return ContractArtifact(
            name=contract_type.name or name,
            source_name=source_name,
            abi=abi,
            bytecode=bytecode,
            link_references=dict(link_references),
        )


def get_contract_factory(backend: str, artifacts_dir: Path) -> ContractFactory:
    if backend == APE_FACTORY:
        return ApeProjectFactory()
    if backend == HARDHAT_FACTORY:
        return ArtifactFactory(artifacts_dir)
    raise FactoryResolutionError(f"Unknown contract factory backend '{backend}'.")
