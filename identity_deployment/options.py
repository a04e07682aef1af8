from pathlib import Path

import click

from identity_deployment.constants import (
    DEFAULT_BUILD_ARTIFACTS_DIR,
    FACTORY_BACKENDS,
    HARDHAT_FACTORY,
    SUPPORTED_NETWORKS,
)
from identity_deployment.types import AdminAddress, ConstantAssignment, Seconds

network_option = click.option(
    "--network",
    "-n",
    help="Network to deploy to",
    type=click.Choice(SUPPORTED_NETWORKS),
    required=True,
)

plan_option = click.option(
    "--plan",
    "-p",
    "plan_name",
    help="Name of a bundled deployment plan (e.g. e2ewallet, futurepass)",
    type=click.STRING,
    required=False,
)

plan_file_option = click.option(
    "--plan-file",
    "-f",
    help="Path to a deployment plan YAML file",
    type=click.Path(dir_okay=False, exists=True, path_type=Path),
    required=False,
)

artifacts_dir_option = click.option(
    "--artifacts-dir",
    "-a",
    help="Compiler output directory (hardhat artifacts/ or foundry out/)",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_BUILD_ARTIFACTS_DIR,
    show_default=True,
)

factory_option = click.option(
    "--factory",
    help="Where contract bytecode and ABIs are read from",
    type=click.Choice(FACTORY_BACKENDS),
    default=HARDHAT_FACTORY,
    show_default=True,
)

timeout_option = click.option(
    "--timeout",
    "-t",
    help="Seconds to wait for each transaction receipt (defaults to the network setting)",
    type=Seconds(),
    required=False,
)

constant_option = click.option(
    "--constant",
    "-c",
    "constants",
    help="Plan constant override as NAME=VALUE",
    type=ConstantAssignment(),
    multiple=True,
)

admin_option = click.option(
    "--admin",
    help="Upgrade admin address for proxies (overrides PUBLIC_ADDRESS)",
    type=AdminAddress(),
    required=False,
)

autosign_option = click.option(
    "--autosign",
    help="Do not ask for confirmation before each transaction",
    is_flag=True,
    default=False,
)

dry_run_option = click.option(
    "--dry-run",
    help="Validate and print the resolved plan without submitting transactions",
    is_flag=True,
    default=False,
)

registry_filepath_option = click.option(
    "--registry-filepath",
    "-r",
    help="Registry file for deployed addresses (defaults to the plan's artifacts setting)",
    type=click.Path(dir_okay=False, path_type=Path),
    required=False,
)
