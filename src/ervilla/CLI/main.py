"""
Command Line Interface for ervilla.
"""
import time
import uuid
from pathlib import Path

import click
from pydantic import ValidationError

from ..MANAGERS.supervisor_factory import ContainerSupervisors
from ..MODELS.configuration import ContainerConfiguration, StopMethod, SupervisorScope
from ..PARSERS.spec_parser import SpecParser
from ..STORE.container_store import ContainerStore
from ..UTILS.directories import project_store_path
from ..UTILS.exceptions import ErvillaError
from ..UTILS.logs import configure_logging


@click.group()
@click.option('--project', '-p', default=None, help='Project name (default: $ERVILLA_PROJECT_NAME)')
@click.option('--runtime', default=None, help='Container runtime executable (default: podman)')
@click.option('--data-dir', default=None, type=click.Path(file_okay=False, path_type=Path),
              help='Directory holding the per-project container stores')
@click.option('--env-file', default='.env', help='Dotenv file with ERVILLA_* settings')
@click.option('--debug', is_flag=True, help='Debug logging, also requested from the runtime')
@click.pass_context
def cli(ctx, project, runtime, data_dir, env_file, debug):
    """
    Ervilla - containers for test suites.

    Starts containers through podman, and removes the ones that a crashed
    test run left behind.
    """
    configure_logging(debug)
    ctx.ensure_object(dict)
    overrides = {}
    if project:
        overrides['project_name'] = project
    if runtime:
        overrides['runtime_executable'] = runtime
    if debug:
        overrides['debug_logging'] = True
    ctx.obj['overrides'] = overrides
    ctx.obj['env_file'] = env_file
    ctx.obj['data_dir'] = data_dir
    ctx.obj['supervisors'] = ContainerSupervisors(data_dir)


def _configuration(ctx) -> ContainerConfiguration:
    """
    Builds the configuration from the environment and the global options.

    :param ctx: The click context.
    :return: The validated configuration.
    """
    try:
        return ContainerConfiguration.from_environment(
            env_file=ctx.obj['env_file'], **ctx.obj['overrides']
        )
    except ValidationError as e:
        raise click.UsageError(f"Invalid configuration (is --project set?): {e}")


@cli.command()
@click.pass_context
def check(ctx):
    """Check that the container runtime works."""
    configuration = _configuration(ctx)
    backend = ctx.obj['supervisors'].is_supported(configuration)
    if backend is None:
        click.echo(f"{configuration.runtime_executable} is not supported.")
        ctx.exit(1)

    click.echo(f"{configuration.runtime_executable} is supported.")
    for key, value in sorted(backend.attributes.items()):
        click.echo(f"{key}: {value}")


@cli.command()
@click.pass_context
def ps(ctx):
    """List containers and pods recorded for the project."""
    configuration = _configuration(ctx)
    path = project_store_path(configuration.project_name, ctx.obj['data_dir'])
    try:
        with ContainerStore.open(configuration.project_name, path, uuid.uuid4(),
                                 SupervisorScope.PER_SUITE) as store:
            containers = sorted(store.container_list(), key=lambda r: r.name)
            pods = sorted(store.pod_list())
    except ErvillaError as e:
        raise click.ClickException(str(e))

    click.echo(f"{'CONTAINER':50} {'POD':50}")
    click.echo("-" * 101)
    for reference in containers:
        click.echo(f"{reference.name:50} {reference.pod or '-':50}")
    for pod in pods:
        if not any(r.pod == pod for r in containers):
            click.echo(f"{'-':50} {pod:50}")


@cli.command()
@click.pass_context
def cleanup(ctx):
    """Remove containers and pods left behind by a crashed run."""
    configuration = _configuration(ctx)
    try:
        supervisor = ctx.obj['supervisors'].create(configuration, SupervisorScope.PER_SUITE)
        supervisor.close()
    except ErvillaError as e:
        raise click.ClickException(str(e))
    click.echo("Cleanup complete.")


@cli.command()
@click.argument('spec_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--hold/--no-hold', default=True, help='Keep the containers until interrupted')
@click.option('--kill', is_flag=True, help='Kill containers instead of stopping them')
@click.pass_context
def up(ctx, spec_file, hold, kill):
    """Start the containers described in SPEC_FILE."""
    if kill:
        ctx.obj['overrides']['stop_method'] = StopMethod.KILL
    configuration = _configuration(ctx)
    try:
        specs = SpecParser().parse(spec_file)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Could not read {spec_file}: {e}")

    try:
        with ctx.obj['supervisors'].create(configuration, SupervisorScope.PER_SUITE) as supervisor:
            target = supervisor
            if specs.pod_ports is not None:
                target = supervisor.create_pod(specs.pod_ports)
                click.echo(f"Pod {target.name} created.")
            for spec in specs.containers:
                container = target.start(spec)
                click.echo(f"Container {container.name} ({spec.full_image_name}) is ready.")

            if hold:
                click.echo("Running... Press Ctrl+C to stop.")
                try:
                    while True:
                        time.sleep(1)
                except KeyboardInterrupt:
                    click.echo("\nStopping containers...")
    except ErvillaError as e:
        raise click.ClickException(str(e))
    except OSError as e:
        raise click.ClickException(f"Could not run {configuration.runtime_executable}: {e}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
