"""Network injection provisioner CLI entrypoint."""
from typing import Optional, Sequence

import typer
from azure.identity import DefaultAzureCredential
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from netinjection.backend.azure import AzureResourceBackend
from netinjection.deploy.errors import DependentDeploymentFailed, ProvisioningError, RecordCorrupted
from netinjection.deploy.models import (
    DeploymentStatus,
    ProvisioningRecord,
    ResourceHandle,
    ReversalOptions,
    Scope,
)
from netinjection.deploy.naming import UniqueNameGenerator
from netinjection.deploy.orchestrator import DeploymentOrchestrator
from netinjection.deploy.parameters import BaseParameters
from netinjection.deploy.renderer import TemplateLibrary
from netinjection.identity.resolver import IdentityResolver
from netinjection.logging_utils import configure_logging
from netinjection.settings.parser import SettingsParser
from netinjection.settings.schema import ProvisionSettings
from netinjection.state.store import ResultStore

app = typer.Typer(help="Network injection provisioner - dual-region networks and enterprise policy for Power Platform")
console = Console()


def _fail(e: Exception) -> int:
    kind = getattr(e, "kind", "Error")
    console.print(f"[bold red]{kind}: {escape(str(e))}[/]")
    return 1


def _load_settings(config: Optional[str], overrides: dict) -> ProvisionSettings:
    settings = SettingsParser.load(config)
    return SettingsParser.apply_overrides(settings, overrides)


def _subscription(subscription_id: Optional[str], settings: ProvisionSettings) -> str:
    subscription = subscription_id or settings.subscription
    if not subscription:
        raise ProvisioningError("No subscription given", "pass --subscription-id or set 'subscription' in the settings file")
    return subscription


def _build_orchestrator(
    settings: ProvisionSettings, subscription: str, resource_group: str, backend, store: ResultStore
) -> DeploymentOrchestrator:
    scope = Scope(subscription, resource_group, settings.network.primary_region)
    return DeploymentOrchestrator(
        backend,
        store,
        scope,
        templates=TemplateLibrary(defaults={"tags": settings.tags}),
        template_context=settings.template_context(),
        max_name_attempts=settings.policy.max_attempts,
        timeout=settings.orchestration.deployment_timeout_seconds,
    )


def _load_record(store: ResultStore) -> Optional[ProvisioningRecord]:
    try:
        return store.load()
    except RecordCorrupted as e:
        console.print(f"[yellow]Warning: {escape(str(e))}; continuing without it[/]")
        return None


def _print_record(record: ProvisioningRecord) -> None:
    table = Table(title="Provisioning Record")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Resource group", record.resource_group_name)
    for role, resource_id in sorted(record.base_resource_ids.items()):
        table.add_row(role, resource_id)
    table.add_row("Enterprise policy", record.dependent_resource_name or "[dim]none[/]")
    table.add_row("Created", record.created_at.isoformat())
    console.print(table)


def _confirm_teardown(scope: Scope, dependents: Sequence[ResourceHandle]) -> bool:
    if dependents:
        console.print("[yellow]Enterprise policies that will be deleted:[/]")
        for handle in dependents:
            console.print(f"  - {handle.name} ({handle.region or 'unknown region'})")
    return typer.confirm(f"Are you sure you want to delete resource group '{scope.resource_group}'?")


@app.command("provision")
def provision(
    subscription_id: Optional[str] = typer.Option(None, "--subscription-id", "-s", help="Target subscription id"),
    principal: str = typer.Option(..., "--principal", "-p", help="UPN or mail of the principal granted network permissions"),
    resource_group: Optional[str] = typer.Option(None, "--resource-group", "-g", help="Resource group name (default rg-pp-vnet)"),
    primary_region: Optional[str] = typer.Option(None, "--primary-region", help="Primary network region (default westeurope)"),
    secondary_region: Optional[str] = typer.Option(None, "--secondary-region", help="Secondary network region (default northeurope)"),
    primary_network: Optional[str] = typer.Option(None, "--primary-network", help="Primary virtual network name"),
    secondary_network: Optional[str] = typer.Option(None, "--secondary-network", help="Secondary virtual network name"),
    deploy_policy: bool = typer.Option(False, "--deploy-policy", help="Also deploy the enterprise policy referencing both networks"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds to wait for each deployment"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to the settings YAML file"),
    debug: bool = typer.Option(False, "--debug", help="Print verbose debug information"),
):
    """Deploy the networks and, optionally, the enterprise policy."""
    configure_logging(debug)
    code = _provision(
        subscription_id, principal, deploy_policy, config,
        {
            "resource_group": resource_group,
            "network.primary_region": primary_region,
            "network.secondary_region": secondary_region,
            "network.primary_network_name": primary_network,
            "network.secondary_network_name": secondary_network,
            "orchestration.deployment_timeout_seconds": timeout,
        },
    )
    raise typer.Exit(code)


def _provision(subscription_id, principal, deploy_policy, config, overrides) -> int:
    console.print("[bold blue]Provisioning network injection resources...[/]")
    try:
        settings = _load_settings(config, overrides)
        subscription = _subscription(subscription_id, settings)
        credential = DefaultAzureCredential()
        store = ResultStore(settings.orchestration.record_path)

        with store.lock():
            resolver = IdentityResolver(credential, settle_seconds=settings.orchestration.identity_settle_seconds)
            principal_id = resolver.resolve_principal(principal)
            console.print(f"[green]Using principal {principal_id.object_id} ({principal_id.source})[/]")
            resolver.settle(principal_id)

            orchestrator = _build_orchestrator(
                settings, subscription, settings.resource_group, AzureResourceBackend(credential), store
            )
            parameters = BaseParameters(
                primary_region=settings.network.primary_region,
                secondary_region=settings.network.secondary_region,
                primary_network_name=settings.network.effective_primary_network_name(),
                secondary_network_name=settings.network.effective_secondary_network_name(),
                principal_id=principal_id.object_id,
                principal_identifier=principal,
            )
            base_result = orchestrator.provision_base(orchestrator.build_base_request(parameters))
            console.print(f"[green]Networks deployed in resource group {orchestrator.record.resource_group_name}[/]")

            if deploy_policy:
                existing = orchestrator.record.dependent_resource_name
                if existing:
                    console.print(f"[yellow]Enterprise policy {existing} already exists; not deploying another[/]")
                else:
                    try:
                        orchestrator.provision_dependent(
                            base_result, UniqueNameGenerator(settings.policy.name_prefix)
                        )
                    except DependentDeploymentFailed:
                        console.print("[yellow]The networks were deployed and remain usable without the policy.[/]")
                        raise
                    console.print(f"[green]Enterprise policy {orchestrator.record.dependent_resource_name} deployed[/]")

        _print_record(orchestrator.record)
        return 0

    except Exception as e:
        return _fail(e)


@app.command("teardown")
def teardown(
    subscription_id: Optional[str] = typer.Option(None, "--subscription-id", "-s", help="Target subscription id"),
    resource_group: Optional[str] = typer.Option(None, "--resource-group", "-g", help="Resource group to delete (default: from the record)"),
    delete_policies: bool = typer.Option(False, "--delete-policies", help="Delete enterprise policies in the group first"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
    wait: bool = typer.Option(False, "--wait", help="Wait until the resource group is gone"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to the settings YAML file"),
    debug: bool = typer.Option(False, "--debug", help="Print verbose debug information"),
):
    """Delete the enterprise policies (optional) and the resource group."""
    configure_logging(debug)
    raise typer.Exit(_teardown(subscription_id, resource_group, delete_policies, force, wait, config))


def _teardown(subscription_id, resource_group, delete_policies, force, wait, config) -> int:
    console.print("[bold red]WARNING: This will delete all resources in the resource group![/]")
    try:
        settings = _load_settings(config, {})
        subscription = _subscription(subscription_id, settings)
        store = ResultStore(settings.orchestration.record_path)

        with store.lock():
            record = _load_record(store)
            target = resource_group or (record.resource_group_name if record else settings.resource_group)
            orchestrator = _build_orchestrator(
                settings, subscription, target, AzureResourceBackend(DefaultAzureCredential()), store
            )
            result = orchestrator.reverse(
                record,
                ReversalOptions(include_dependent=delete_policies, force=force),
                resource_group=target,
                confirm=_confirm_teardown,
            )

        if not result.scope_existed:
            console.print(f"[green]Resource group {target} does not exist; nothing to delete[/]")
            return 0
        if result.cancelled:
            console.print("Deletion cancelled")
            return 0

        for handle in result.deleted:
            console.print(f"[green]Deleted enterprise policy {handle.name}[/]")
        if result.failures:
            table = Table(title="Failed Deletions")
            table.add_column("Resource", style="cyan")
            table.add_column("Error", style="red")
            for failure in result.failures:
                table.add_row(failure.handle.name, failure.message)
            console.print(table)

        if wait:
            console.print(f"[yellow]Waiting for resource group {target} to be deleted...[/]")
            result.scope_deletion.wait()
            console.print(f"[green]Resource group {target} deleted ({result.scope_deletion.status()})[/]")
        else:
            console.print(f"[green]Deletion of resource group {target} submitted; it continues in the background[/]")

        result.raise_for_failures()
        return 0

    except Exception as e:
        return _fail(e)


@app.command("reconcile")
def reconcile(
    subscription_id: Optional[str] = typer.Option(None, "--subscription-id", "-s", help="Target subscription id"),
    resource_group: Optional[str] = typer.Option(None, "--resource-group", "-g", help="Resource group (default: from the record)"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to the settings YAML file"),
    debug: bool = typer.Option(False, "--debug", help="Print verbose debug information"),
):
    """Re-read the base deployment state after an interrupted run."""
    configure_logging(debug)
    raise typer.Exit(_reconcile(subscription_id, resource_group, config))


def _reconcile(subscription_id, resource_group, config) -> int:
    try:
        settings = _load_settings(config, {})
        subscription = _subscription(subscription_id, settings)
        store = ResultStore(settings.orchestration.record_path)

        with store.lock():
            record = _load_record(store)
            target = resource_group or (record.resource_group_name if record else settings.resource_group)
            orchestrator = _build_orchestrator(
                settings, subscription, target, AzureResourceBackend(DefaultAzureCredential()), store
            )
            result = orchestrator.reconcile(record)

        if result.status == DeploymentStatus.RUNNING:
            console.print(f"[yellow]Deployment {result.deployment_name} is still running; check again later[/]")
            return 0
        if not result.succeeded:
            detail = f"{result.error.code}: {result.error.message}" if result.error else "no error detail"
            console.print(f"[bold red]Deployment {result.deployment_name} ended {result.status.value}: {escape(detail)}[/]")
            return 1

        console.print(f"[green]Deployment {result.deployment_name} succeeded; record refreshed[/]")
        _print_record(orchestrator.record)
        return 0

    except Exception as e:
        return _fail(e)


@app.command("status")
def status(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to the settings YAML file"),
):
    """Show the locally stored provisioning record."""
    try:
        settings = _load_settings(config, {})
        record = ResultStore(settings.orchestration.record_path).load()
    except Exception as e:
        raise typer.Exit(_fail(e))

    if record is None:
        console.print("[yellow]No provisioning record in this directory[/]")
        raise typer.Exit(0)
    _print_record(record)


if __name__ == "__main__":
    app()
