"""
moraine CLI - publish assets, resolve endpoints, inspect firewall rules and
drive Pulumi deployments of the to-do stack.
"""

import json
import logging
import sys
from datetime import timedelta

import click

from moraine.cli.deploy import DeploymentCLI, DeploymentError
from moraine.config.settings import SettingsError, load_settings
from moraine.core.context import ExecutionGate, ExecutionMode
from moraine.core.effects import EffectPlanError
from moraine.logging import configure_logging
from moraine.network.firewall import RuleSynthesizer, reconcile
from moraine.providers.local import LocalProvider
from moraine.publishing.assets import AssetPublisher, PublishError, SigningPolicy
from moraine.publishing.blob_store import AzureBlobStore
from moraine.resolver.endpoint import EndpointResolutionError, EndpointResolver
from moraine.stack import TodoStack


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default="warning",
    help="Log level",
)
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON")
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    help="Settings file (YAML)",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str, json_logs: bool, config_file: str | None):
    """
    moraine - provision the to-do application stack on Azure.
    """
    configure_logging(getattr(logging, log_level.upper()), json_output=json_logs)
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file


@cli.command()
@click.argument("root", type=click.Path(exists=True, file_okay=False))
@click.option(
    "--connection-string",
    "-c",
    envvar="AZURE_STORAGE_CONNECTION_STRING",
    required=True,
    help="Storage account connection string",
)
@click.option("--container", default="$web", show_default=True, help="Target container")
@click.option("--sign", is_flag=True, help="Mint a signed read URL per object")
@click.option("--hours", type=float, default=2.0, show_default=True, help="Signed URL lifetime")
@click.option("--workers", type=click.IntRange(min=1), default=1, show_default=True, help="Parallel uploads")
@click.option("--dry-run", is_flag=True, help="Show what would be uploaded")
@click.option("--format", "fmt", type=click.Choice(["text", "json"]), default="text")
def publish(
    root: str,
    connection_string: str,
    container: str,
    sign: bool,
    hours: float,
    workers: int,
    dry_run: bool,
    fmt: str,
):
    """
    Upload a folder to a blob container.

    Example:
        moraine publish ./build --container '$web'
        moraine publish ./batch-inputs --container inputs --sign --hours 4
    """
    gate = ExecutionGate(ExecutionMode.PREVIEW if dry_run else ExecutionMode.APPLY)

    try:
        publisher = AssetPublisher(
            AzureBlobStore.from_connection_string(connection_string),
            gate,
            max_workers=workers,
        )
        objects = publisher.publish(
            root,
            container,
            sign=sign,
            signing=SigningPolicy(timedelta(hours=hours)),
        )
    except (PublishError, ValueError) as e:
        click.echo(f"✗ Publish failed: {e}", err=True)
        sys.exit(1)

    if dry_run:
        click.echo(f"Dry run: nothing uploaded from {root}")
        return

    if fmt == "json":
        click.echo(json.dumps(
            [
                {
                    "name": obj.name,
                    "content_type": obj.content_type,
                    "url": obj.url,
                    "signed_url": obj.signed_url,
                    "expires_at": obj.expires_at.isoformat() if obj.expires_at else None,
                }
                for obj in objects
            ],
            indent=2,
        ))
        return

    click.echo(f"✓ Published {len(objects)} object(s) to '{container}'")
    for obj in objects:
        click.echo(f"  - {obj.name} ({obj.content_type})")
        if obj.signed_url:
            click.echo(f"    {obj.signed_url}")


@cli.command()
@click.argument("name")
@click.option("--resource-group", "-g", required=True, help="Resource group of the storage account")
def endpoint(name: str, resource_group: str):
    """
    Resolve the public static website endpoint of a storage account.

    Example:
        moraine endpoint todofront1a2b3c -g todo-rg
    """
    resolver = EndpointResolver(ExecutionGate(ExecutionMode.APPLY))
    try:
        click.echo(resolver.resolve(name, resource_group=resource_group))
    except EndpointResolutionError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("addresses")
@click.option("--scope", default="sql-server", show_default=True, help="Resource the rules protect")
@click.option("--prefix", default="outbound", show_default=True, help="Rule name prefix")
@click.option("--previous", multiple=True, help="Rule ids declared by a previous run")
def rules(addresses: str, scope: str, prefix: str, previous: tuple[str, ...]):
    """
    Show the firewall rules for a comma-separated address list.

    Example:
        moraine rules "1.2.3.4,5.6.7.8" --previous outbound-9-9-9-9
    """
    synthesized = RuleSynthesizer(prefix).rules_for(addresses, scope)

    click.echo(f"Rules for '{scope}': {len(synthesized)}")
    for rule in synthesized:
        click.echo(f"  - {rule.rule_id}: {rule.start_address} - {rule.end_address}")

    if previous:
        changes = reconcile(previous, synthesized)
        click.echo("\nChanges:")
        for label, ids in (("create", changes.create), ("keep", changes.keep), ("retire", changes.retire)):
            for rule_id in ids:
                click.echo(f"  {label:<7}{rule_id}")


@cli.command()
@click.pass_context
def plan(ctx: click.Context):
    """
    Show the declared resources and side-effect order without a cloud backend.

    Builds the stack against the in-memory provider in preview mode.
    """
    try:
        settings = load_settings(ctx.obj.get("config_file"))
        provider = LocalProvider()
        stack = TodoStack(provider, settings, ExecutionGate(ExecutionMode.PREVIEW), sql_password="preview")
        stack.build()
    except (SettingsError, EffectPlanError) as e:
        click.echo(f"✗ Plan failed: {e}", err=True)
        sys.exit(1)

    click.echo(f"\n Stack: {settings.project} ({settings.location})")
    click.echo(f" Provider: {provider.get_provider_name()}")
    click.echo(f"{'=' * 50}")

    click.echo(f"\n Resources: {len(provider.declarations)}")
    for kind, name, _ in provider.declarations:
        click.echo(f"  - {kind}: {name}")

    click.echo("\n Side effects:")
    for i, level in enumerate(stack.plan.describe(), 1):
        click.echo(f"  {i}. {', '.join(level)}")


def _deployment(stack: str | None, project_dir: str, action: str, yes: bool = False) -> None:
    deployer = DeploymentCLI(project_dir)
    try:
        if action == "preview":
            deployer.pulumi_preview(stack)
        elif action == "up":
            deployer.pulumi_up(stack, yes=yes)
        elif action == "destroy":
            deployer.pulumi_destroy(stack, yes=yes)
        else:
            outputs = deployer.pulumi_stack_output(stack)
            for key, value in outputs.items():
                click.echo(f"  {key}: {value}")
    except DeploymentError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)


stack_option = click.option("--stack", "-s", help="Pulumi stack name")
dir_option = click.option(
    "--dir", "project_dir", default="infra", show_default=True, help="Pulumi project directory"
)


@cli.command()
@stack_option
@dir_option
def preview(stack: str | None, project_dir: str):
    """Run 'pulumi preview' (no uploads, no queries)."""
    _deployment(stack, project_dir, "preview")


@cli.command()
@stack_option
@dir_option
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def up(stack: str | None, project_dir: str, yes: bool):
    """Run 'pulumi up'."""
    _deployment(stack, project_dir, "up", yes=yes)


@cli.command()
@stack_option
@dir_option
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def destroy(stack: str | None, project_dir: str, yes: bool):
    """Run 'pulumi destroy'."""
    _deployment(stack, project_dir, "destroy", yes=yes)


@cli.command()
@stack_option
@dir_option
def outputs(stack: str | None, project_dir: str):
    """Show the stack outputs."""
    _deployment(stack, project_dir, "outputs")


if __name__ == "__main__":
    cli()
