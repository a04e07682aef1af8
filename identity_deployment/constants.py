from pathlib import Path

import identity_deployment

#
# Filesystem
#

DEPLOYMENT_DIR = Path(identity_deployment.__file__).parent
PLANS_DIR = DEPLOYMENT_DIR / "plans"
ARTIFACTS_DIR = DEPLOYMENT_DIR / "artifacts"
NETWORKS_FILEPATH = DEPLOYMENT_DIR / "networks.yml"

# compiler outputs of the contracts project (hardhat by default, foundry also indexed)
DEFAULT_BUILD_ARTIFACTS_DIR = Path("artifacts")
DEFAULT_REMAPPINGS_FILEPATH = Path("remappings.txt")

#
# Environment
#

PRIVATE_KEY_ENVVAR = "PRIVATE_KEY"
PUBLIC_ADDRESS_ENVVAR = "PUBLIC_ADDRESS"
PROVIDER_URL_ENVVAR = "PROVIDER_URL"

#
# Networks
#

LOCALHOST = "localhost"
SEED = "seed"
PORCINI = "porcini"
ROOT = "root"

SUPPORTED_NETWORKS = [LOCALHOST, SEED, PORCINI, ROOT]

DEFAULT_CONFIRMATION_TIMEOUT = 120  # seconds
DEFAULT_PRIORITY_FEE = 1_000_000_000  # 1 gwei

#
# Contracts
#

ZERO_ADDRESS = "0x" + "0" * 40

CONTRACT_KIND = "contract"
LIBRARY_KIND = "library"
STEP_KINDS = [CONTRACT_KIND, LIBRARY_KIND]

#
# Factories
#

HARDHAT_FACTORY = "hardhat"
APE_FACTORY = "ape"
FACTORY_BACKENDS = [HARDHAT_FACTORY, APE_FACTORY]
