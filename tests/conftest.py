import json

import pytest
from eth_utils import keccak, to_checksum_address

from identity_deployment.chain import ChainEndpoint, Receipt
from identity_deployment.errors import FactoryResolutionError
from identity_deployment.factory import ContractArtifact, ContractFactory, library_placeholder
from identity_deployment.signer import SignerContext

# Common constants
# hardhat / anvil development account #0 - never holds real funds
DEV_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
ADMIN_ADDRESS = to_checksum_address("0x" + "ad" * 20)
CHAIN_ID = 7672
START_NONCE = 5

UTILS_SOURCE = "src/libraries/Utils.sol"
UTILS_FQN = f"{UTILS_SOURCE}:Utils"

# "0x00" (STOP) keeps creation code trivially executable; the placeholder follows it
LINKED_BYTECODE = "0x00" + library_placeholder(UTILS_FQN)
UTILS_LINK_REFERENCES = {UTILS_SOURCE: {"Utils": [{"start": 1, "length": 20}]}}

PROXY_ABI = [
    {
        "type": "constructor",
        "stateMutability": "payable",
        "inputs": [
            {"name": "_logic", "type": "address", "internalType": "address"},
            {"name": "admin_", "type": "address", "internalType": "address"},
            {"name": "_data", "type": "bytes", "internalType": "bytes"},
        ],
    }
]

REGISTRY_ABI = [
    {
        "type": "function",
        "name": "initialize",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "walletImplementation", "type": "address"},
            {"name": "keyManagerImplementation", "type": "address"},
        ],
        "outputs": [],
    }
]

INITIALIZE_SIGNATURE = "initialize(address,address)"


def make_artifacts():
    return {
        "E2EWallet": ContractArtifact("E2EWallet", "src/E2EWallet.sol", [], "0x00"),
        "E2EWalletKeyManager": ContractArtifact(
            "E2EWalletKeyManager", "src/E2EWalletKeyManager.sol", [], "0x00"
        ),
        "Utils": ContractArtifact("Utils", UTILS_SOURCE, [], "0x00"),
        "E2EWalletRegistry": ContractArtifact(
            "E2EWalletRegistry",
            "src/E2EWalletRegistry.sol",
            REGISTRY_ABI,
            LINKED_BYTECODE,
            UTILS_LINK_REFERENCES,
        ),
        "TransparentUpgradeableProxy": ContractArtifact(
            "TransparentUpgradeableProxy",
            "lib/openzeppelin-contracts/contracts/proxy/transparent/"
            "TransparentUpgradeableProxy.sol",
            PROXY_ABI,
            "0x00",
        ),
    }


def e2ewallet_plan_config():
    return {
        "deployment": {"name": "e2ewallet"},
        "steps": [
            "E2EWallet",
            "E2EWalletKeyManager",
            {"Utils": {"kind": "library"}},
            {"E2EWalletRegistry": {"libraries": {"Utils": "$Utils"}}},
            {
                "TransparentUpgradeableProxy": {
                    "constructor": {
                        "_logic": "$E2EWalletRegistry",
                        "admin_": "$PUBLIC_ADDRESS",
                        "_data": f"$encode:{INITIALIZE_SIGNATURE},$E2EWallet,$E2EWalletKeyManager",
                    }
                }
            },
        ],
    }


class FakeFactory(ContractFactory):
    def __init__(self, artifacts=None):
        self.artifacts = make_artifacts() if artifacts is None else artifacts
        self.lookups = list()

    def get_artifact(self, name):
        self.lookups.append(name)
        try:
            return self.artifacts[name]
        except KeyError:
            raise FactoryResolutionError(f"No contract found with name '{name}'.")


class FakeChain(ChainEndpoint):
    """
    In-memory chain. Failures are keyed by transaction number (0-based, in
    submission order) and raised on submit or while waiting for the receipt.
    """

    def __init__(self, submit_failures=None, wait_failures=None, start_nonce=START_NONCE):
        self.submit_failures = submit_failures or dict()
        self.wait_failures = wait_failures or dict()
        self.start_nonce = start_nonce
        self.transactions = list()
        self.events = list()
        self.timeouts = list()
        self._submissions = 0
        self._deployments = 0

    @property
    def chain_id(self):
        return CHAIN_ID

    def get_nonce(self, address):
        return self.start_nonce

    def submit(self, session, transaction):
        number = self._submissions
        self._submissions += 1
        if number in self.submit_failures:
            raise self.submit_failures[number]
        tx_hash = "0x" + keccak(text=f"{id(self)}-tx-{number}").hex()
        self.transactions.append(
            dict(transaction, nonce=session.next_nonce(), hash=tx_hash, number=number)
        )
        self.events.append(("submit", tx_hash))
        return tx_hash

    def wait_for_receipt(self, tx_hash, timeout):
        self.timeouts.append(timeout)
        transaction = next(tx for tx in self.transactions if tx["hash"] == tx_hash)
        number = transaction["number"]
        if number in self.wait_failures:
            raise self.wait_failures[number]
        contract_address = None
        if "to" not in transaction:
            self._deployments += 1
            seed = f"{id(self)}-contract-{self._deployments}"
            contract_address = to_checksum_address(keccak(text=seed)[-20:])
        self.events.append(("confirm", tx_hash))
        return Receipt(
            tx_hash=tx_hash, contract_address=contract_address, block_number=100 + number, status=1
        )


@pytest.fixture
def artifacts():
    return make_artifacts()


@pytest.fixture
def factory(artifacts):
    return FakeFactory(artifacts)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def signer():
    return SignerContext.from_private_key(DEV_PRIVATE_KEY)


@pytest.fixture
def plan_config():
    return e2ewallet_plan_config()


@pytest.fixture
def constants():
    return {"PUBLIC_ADDRESS": ADMIN_ADDRESS}


def write_hardhat_artifact(directory, artifact):
    source_dir = directory / artifact.source_name
    source_dir.mkdir(parents=True, exist_ok=True)
    data = {
        "_format": "hh-sol-artifact-1",
        "contractName": artifact.name,
        "sourceName": artifact.source_name,
        "abi": artifact.abi,
        "bytecode": artifact.bytecode,
        "deployedBytecode": "0x",
        "linkReferences": artifact.link_references,
        "deployedLinkReferences": {},
    }
    filepath = source_dir / f"{artifact.name}.json"
    filepath.write_text(json.dumps(data))
    (source_dir / f"{artifact.name}.dbg.json").write_text(
        json.dumps({"_format": "hh-sol-dbg-1", "buildInfo": "../build-info/abc.json"})
    )
    return filepath


@pytest.fixture
def hardhat_artifacts_dir(tmp_path, artifacts):
    directory = tmp_path / "artifacts"
    for artifact in artifacts.values():
        write_hardhat_artifact(directory, artifact)
    build_info = directory / "build-info"
    build_info.mkdir(parents=True, exist_ok=True)
    (build_info / "abc.json").write_text(json.dumps({"id": "abc", "input": {}, "output": {}}))
    return directory
