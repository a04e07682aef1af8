import pytest
from hexbytes import HexBytes

from conftest import ADMIN_ADDRESS, INITIALIZE_SIGNATURE
from identity_deployment.constants import CONTRACT_KIND, LIBRARY_KIND, ZERO_ADDRESS
from identity_deployment.encoding import encode_call
from identity_deployment.errors import ConfigurationError, PlanValidationError
from identity_deployment.plan import (
    Constant,
    DeployerAccount,
    DeploymentPlan,
    DeploymentStep,
    Encode,
    ResolutionContext,
    StepAddress,
)
from identity_deployment.utils import plan_filepath_from_name

WALLET = "0x" + "aa" * 20
KEY_MANAGER = "0x" + "bb" * 20
DEPLOYER = "0x" + "cc" * 20


def _context(**addresses):
    return ResolutionContext(
        addresses=addresses, deployer=DEPLOYER, constants={"PUBLIC_ADDRESS": ADMIN_ADDRESS}
    )


def test_plan_from_config(plan_config):
    plan = DeploymentPlan.from_config(plan_config)

    assert plan.name == "e2ewallet"
    assert len(plan) == 5
    assert plan.step_names == [
        "E2EWallet",
        "E2EWalletKeyManager",
        "Utils",
        "E2EWalletRegistry",
        "TransparentUpgradeableProxy",
    ]

    wallet, _, utils, registry, proxy = plan.steps
    assert wallet.kind == CONTRACT_KIND
    assert wallet.contract == "E2EWallet"
    assert utils.kind == LIBRARY_KIND
    assert isinstance(registry.libraries["Utils"], StepAddress)
    assert registry.references() == ["Utils"]
    assert proxy.references() == ["E2EWalletRegistry", "E2EWallet", "E2EWalletKeyManager"]
    assert isinstance(proxy.constructor["admin_"], Constant)
    assert isinstance(proxy.constructor["_data"], Encode)


def test_constructor_resolution(plan_config):
    plan = DeploymentPlan.from_config(plan_config)
    proxy = plan.steps[-1]
    context = _context(
        E2EWallet=WALLET, E2EWalletKeyManager=KEY_MANAGER, E2EWalletRegistry="0x" + "dd" * 20
    )

    resolved = proxy.resolve_constructor(context)

    assert list(resolved) == ["_logic", "admin_", "_data"]
    assert resolved["_logic"] == "0x" + "dd" * 20
    assert resolved["admin_"] == ADMIN_ADDRESS
    assert resolved["_data"] == HexBytes(encode_call(INITIALIZE_SIGNATURE, [WALLET, KEY_MANAGER]))


def test_positional_constructor_and_alias():
    config = {
        "steps": [
            "E2EWallet",
            {
                "WalletProxy": {
                    "contract": "TransparentUpgradeableProxy",
                    "constructor": ["$E2EWallet", "$deployer", "0x"],
                }
            },
        ]
    }
    plan = DeploymentPlan.from_config(config)
    step = plan.steps[1]

    assert step.name == "WalletProxy"
    assert step.contract == "TransparentUpgradeableProxy"
    assert isinstance(step.constructor[1], DeployerAccount)
    assert step.resolve_constructor(_context(E2EWallet=WALLET)) == [WALLET, DEPLOYER, "0x"]


def test_eager_resolution_uses_zero_address(plan_config):
    plan = DeploymentPlan.from_config(plan_config)
    registry = plan.steps[3]
    context = ResolutionContext(addresses={}, deployer=DEPLOYER, constants={}, eager=True)
    assert registry.resolve_libraries(context) == {"Utils": ZERO_ADDRESS}


def test_unresolved_step_address_is_an_error(plan_config):
    plan = DeploymentPlan.from_config(plan_config)
    with pytest.raises(PlanValidationError, match="has not been deployed"):
        plan.steps[3].resolve_libraries(_context())


def test_missing_constant():
    plan = DeploymentPlan.from_config({"steps": [{"Wallet": {"constructor": ["$UNSET"]}}]})
    with pytest.raises(ConfigurationError, match="UNSET"):
        plan.steps[0].resolve_constructor(_context())


def test_forward_reference_is_rejected():
    config = {"steps": [{"Wallet": {"constructor": ["$Manager"]}}, "Manager"]}
    with pytest.raises(PlanValidationError, match="deployed later"):
        DeploymentPlan.from_config(config)


def test_forward_reference_in_encode_is_rejected():
    config = {
        "steps": [
            {"Wallet": {"constructor": [f"$encode:{INITIALIZE_SIGNATURE},$Manager,$Manager"]}},
            "Manager",
        ]
    }
    with pytest.raises(PlanValidationError, match="deployed later"):
        DeploymentPlan.from_config(config)


def test_self_reference_is_rejected():
    with pytest.raises(PlanValidationError):
        DeploymentPlan.from_config({"steps": [{"Wallet": {"libraries": {"Utils": "$Wallet"}}}]})


def test_unknown_reference_is_rejected():
    with pytest.raises(PlanValidationError, match="unknown step 'Nope'"):
        DeploymentPlan.from_config({"steps": [{"Wallet": {"constructor": ["$Nope"]}}]})


def test_duplicate_step_names_are_rejected():
    with pytest.raises(PlanValidationError, match="Duplicate"):
        DeploymentPlan.from_config({"steps": ["Wallet", "Wallet"]})


@pytest.mark.parametrize("name", ["deployer", "PUBLIC_ADDRESS"])
def test_reserved_step_names(name):
    with pytest.raises(PlanValidationError, match="reserved"):
        DeploymentPlan.from_config({"steps": [name]})


@pytest.mark.parametrize(
    "config, message",
    [
        ({}, "missing 'steps'"),
        ({"steps": []}, "missing 'steps'"),
        ({"steps": [{"Wallet": {}, "Manager": {}}]}, "Malformed"),
        ({"steps": [{"Wallet": {"constuctor": []}}]}, "Unknown key"),
        ({"steps": [{"Wallet": {"kind": "interface"}}]}, "unknown kind"),
        ({"steps": [{"Wallet": {"libraries": ["$Manager"]}}]}, "must be a mapping"),
        ({"steps": [{"Wallet": {"initializer": {"args": []}}}]}, "requires a 'signature'"),
        ({"constants": {"lower": 1}, "steps": ["Wallet"]}, "upper case"),
    ],
)
def test_malformed_plans(config, message):
    with pytest.raises(PlanValidationError, match=message):
        DeploymentPlan.from_config(config)


def test_empty_plan_is_rejected():
    with pytest.raises(PlanValidationError, match="no steps"):
        DeploymentPlan(steps=[])


def test_malformed_encode_signature():
    with pytest.raises(PlanValidationError):
        DeploymentPlan.from_config(
            {"steps": [{"Wallet": {"constructor": ["$encode:initialize"]}}]}
        )


def test_initializer(plan_config):
    config = {
        "steps": [
            "E2EWallet",
            "E2EWalletKeyManager",
            {
                "E2EWalletRegistry": {
                    "initializer": {
                        "signature": INITIALIZE_SIGNATURE,
                        "args": ["$E2EWallet", "$E2EWalletKeyManager"],
                    }
                }
            },
        ]
    }
    registry = DeploymentPlan.from_config(config).steps[-1]
    assert registry.references() == ["E2EWallet", "E2EWalletKeyManager"]

    context = _context(E2EWallet=WALLET, E2EWalletKeyManager=KEY_MANAGER)
    calldata = registry.initializer.encode(context)
    assert calldata == HexBytes(encode_call(INITIALIZE_SIGNATURE, [WALLET, KEY_MANAGER]))


def test_variable_repr(plan_config):
    proxy = DeploymentPlan.from_config(plan_config).steps[-1]
    assert str(proxy.constructor["_logic"]) == "$E2EWalletRegistry"
    assert str(proxy.constructor["_data"]) == (
        f"$encode:{INITIALIZE_SIGNATURE},$E2EWallet,$E2EWalletKeyManager"
    )


def test_plan_from_yaml(tmp_path):
    filepath = tmp_path / "plan.yml"
    filepath.write_text(
        "deployment:\n"
        "  name: local\n"
        "  chain_id: 1337\n"
        "constants:\n"
        "  OWNER: '0x0000000000000000000000000000000000000001'\n"
        "steps:\n"
        "  - E2EWallet\n"
        "  - TransparentUpgradeableProxy:\n"
        "      constructor: [$E2EWallet, $OWNER, '0x']\n"
    )
    plan = DeploymentPlan.from_yaml(filepath)
    assert plan.name == "local"
    assert plan.chain_id == 1337
    assert plan.constants == {"OWNER": "0x0000000000000000000000000000000000000001"}
    assert plan.step_names == ["E2EWallet", "TransparentUpgradeableProxy"]


def test_missing_plan_file(tmp_path):
    with pytest.raises(PlanValidationError, match="not found"):
        DeploymentPlan.from_yaml(tmp_path / "missing.yml")


@pytest.mark.parametrize(
    "name, registry",
    [("e2ewallet", "E2EWalletRegistry"), ("futurepass", "FuturePassIdentityRegistry")],
)
def test_bundled_plans(name, registry):
    plan = DeploymentPlan.from_yaml(plan_filepath_from_name(name))
    assert plan.step_names[-1] == "TransparentUpgradeableProxy"
    assert registry in plan.step_names
    assert plan.artifacts["filename"] == f"{name}.json"


def test_unknown_bundled_plan():
    with pytest.raises(ConfigurationError, match="bundled plans: e2ewallet, futurepass"):
        plan_filepath_from_name("nonexistent")


def test_steps_do_not_share_parameters():
    wallet = DeploymentStep("E2EWallet", "E2EWallet")
    key_manager = DeploymentStep("E2EWalletKeyManager", "E2EWalletKeyManager")
    assert wallet.constructor is None and wallet.libraries is None

    constructor = wallet.resolve_constructor(_context())
    constructor["injected"] = 1
    assert key_manager.resolve_constructor(_context()) == {}
    assert wallet.resolve_libraries(_context()) == {}
    assert wallet.references() == []
