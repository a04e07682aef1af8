from pathlib import Path

import click
from dotenv import load_dotenv

from identity_deployment.chain import Web3Endpoint
from identity_deployment.config import load_settings
from identity_deployment.confirm import _continue
from identity_deployment.constants import DEFAULT_REMAPPINGS_FILEPATH, PUBLIC_ADDRESS_ENVVAR
from identity_deployment.errors import ConfigurationError, DeploymentError
from identity_deployment.factory import get_contract_factory
from identity_deployment.networks import check_chain_id, is_local_network
from identity_deployment.options import (
    admin_option,
    artifacts_dir_option,
    autosign_option,
    constant_option,
    dry_run_option,
    factory_option,
    network_option,
    plan_file_option,
    plan_option,
    registry_filepath_option,
    timeout_option,
)
from identity_deployment.orchestrator import Orchestrator
from identity_deployment.plan import DeploymentPlan
from identity_deployment.registry import registry_from_artifacts
from identity_deployment.remappings import load_remappings, remap_sources
from identity_deployment.signer import SignerContext
from identity_deployment.utils import (
    check_registry_filepath,
    get_artifact_filepath,
    plan_filepath_from_name,
)


@click.group()
def cli():
    """Deploy the identity registry contracts (wallets, key managers, registries, proxies)."""
    load_dotenv(override=True)


def _print_deployment_info(signer, settings, plan, plan_filepath, chain_id, registry_filepath):
    click.echo(
        "\n".join(
            [
                f"Account: {signer.address}",
                f"Plan: {plan.name or plan_filepath.stem} ({plan_filepath})",
                f"Steps: {', '.join(plan.step_names)}",
                f"Network: {settings.network.name}",
                f"Provider: {settings.provider_url}",
                f"Chain ID: {chain_id}",
                f"Registry: {registry_filepath or '-'}",
            ]
        )
    )


@cli.command()
@network_option
@plan_option
@plan_file_option
@artifacts_dir_option
@factory_option
@timeout_option
@constant_option
@admin_option
@autosign_option
@dry_run_option
@registry_filepath_option
@click.pass_context
def deploy(
    ctx,
    network,
    plan_name,
    plan_file,
    artifacts_dir,
    factory,
    timeout,
    constants,
    admin,
    autosign,
    dry_run,
    registry_filepath,
):
    """Deploy a plan of libraries, contracts and proxies, in order."""
    if not (bool(plan_name) ^ bool(plan_file)):
        raise click.BadOptionUsage(
            option_name="--plan",
            message=f"Provide either 'plan' or 'plan-file'; got {plan_name}, {plan_file}",
        )

    try:
        plan_filepath = plan_file or plan_filepath_from_name(plan_name)
        overrides = dict(constants)
        if admin:
            overrides[PUBLIC_ADDRESS_ENVVAR] = admin
        settings = load_settings(network, constant_overrides=overrides)
        plan = DeploymentPlan.from_yaml(plan_filepath)
        signer = SignerContext.from_private_key(settings.private_key)
        contract_factory = get_contract_factory(factory, artifacts_dir)
        endpoint = Web3Endpoint.from_url(
            settings.provider_url,
            poa=settings.network.poa,
            priority_fee=settings.network.priority_fee,
        )
        orchestrator = Orchestrator(
            factory=contract_factory,
            endpoint=endpoint,
            signer=signer,
            confirmation_timeout=timeout or settings.network.confirmation_timeout,
            constants=settings.constants,
            interactive=not autosign,
        )

        if dry_run:
            orchestrator.dry_run(plan)
            return

        chain_id = endpoint.chain_id
        check_chain_id(settings.network, chain_id)
        if plan.chain_id and plan.chain_id != chain_id and not is_local_network(settings.network):
            raise ConfigurationError(
                f"chain_id in plan file ({plan.chain_id}) does not match "
                f"chain_id of current network ({chain_id})."
            )

        if not registry_filepath and plan.artifacts:
            registry_filepath = get_artifact_filepath(plan.artifacts)
        if registry_filepath:
            check_registry_filepath(registry_filepath, chain_id=chain_id)

        _print_deployment_info(
            signer, settings, plan, Path(plan_filepath), chain_id, registry_filepath
        )
        if autosign:
            click.echo("WARNING: Autosign is enabled. Transactions will be signed automatically.")
        else:
            # Confirms the start of the deployment.
            _continue()
    except (DeploymentError, ValueError) as e:
        raise click.ClickException(str(e))

    result = orchestrator.run(plan)

    if registry_filepath and result.artifacts:
        registry_from_artifacts(
            artifacts=result.artifacts,
            factory=contract_factory,
            chain_id=chain_id,
            deployer=signer.address,
            output_filepath=registry_filepath,
        )

    if not result.ok:
        ctx.exit(1)


@cli.command()
@click.argument(
    "source_dir", type=click.Path(file_okay=False, exists=True, path_type=Path)
)
@click.option(
    "--remappings",
    "remappings_filepath",
    help="Remappings file with one from=to entry per line",
    type=click.Path(dir_okay=False, exists=True, path_type=Path),
    default=DEFAULT_REMAPPINGS_FILEPATH,
    show_default=True,
)
@click.option(
    "--output-dir",
    "-o",
    help="Write remapped sources here instead of rewriting them in place",
    type=click.Path(file_okay=False, path_type=Path),
    required=False,
)
def remap(source_dir, remappings_filepath, output_dir):
    """Rewrite Solidity import paths in SOURCE_DIR using remappings."""
    try:
        remappings = load_remappings(remappings_filepath)
    except ValueError as e:
        raise click.ClickException(str(e))
    changed = remap_sources(source_dir, remappings, output_dir=output_dir)
    for filepath in changed:
        click.echo(f"Remapped {filepath}")
    click.echo(f"(i) {len(changed)} file(s) remapped using {len(remappings)} remapping(s).")


if __name__ == "__main__":
    cli()
